"""SQLAlchemy models for the workflow result tables.

Config tables (bindings, AI configs, tasks, analyte catalog) are authored
elsewhere and only read here. Audit tables are append-only. ``results`` and
``result_values`` are the canonical rows downstream reporting reads.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, new_id, utcnow


# --- Intake ---


class WorkflowResult(Base):
    """One raw submission per workflow instance + step."""

    __tablename__ = "workflow_results"
    __table_args__ = (
        UniqueConstraint("workflow_instance_id", "step_id", name="uq_workflow_results_instance_step"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workflow_instance_id: Mapped[str] = mapped_column(String(64), nullable=False)
    step_id: Mapped[str] = mapped_column(String(128), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    patient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lab_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    test_group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    test_name: Mapped[str] = mapped_column(String(255), nullable=False)
    test_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    review_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sample_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    qc_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="received"
    )  # received | committed | error
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    committed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Attachment(Base):
    __tablename__ = "attachments"
    __table_args__ = (Index("ix_attachments_related", "related_table", "related_id", "tag"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    related_table: Mapped[str] = mapped_column(String(64), nullable=False)
    related_id: Mapped[str] = mapped_column(String(36), nullable=False)
    tag: Mapped[str] = mapped_column(String(64), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# --- Configuration (read-only here) ---


class WorkflowBinding(Base):
    """Binds a lab's test group or test code to a workflow version."""

    __tablename__ = "test_workflow_map"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    lab_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    test_group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    test_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    workflow_version_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class WorkflowAIConfigRow(Base):
    __tablename__ = "workflow_ai_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workflow_version_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    parser_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    validator_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    analyte_map: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    unit_map: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    required_fields: Mapped[list | None] = mapped_column(JSON, nullable=True)
    numeric_rules: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    enum_rules: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class WorkflowTaskRow(Base):
    __tablename__ = "workflow_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workflow_version_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    run_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # vision_color | ocr | text_extract | cell_count | custom_webhook
    input_selector: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    params: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    output_map: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tool_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class AnalyteRow(Base):
    """Analyte catalog: default unit and reference range per analyte name."""

    __tablename__ = "analytes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    unit: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_range: Mapped[str | None] = mapped_column(String(128), nullable=True)


# --- Audit (append-only) ---


class WorkflowTaskRun(Base):
    __tablename__ = "workflow_task_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workflow_result_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflow_results.id"), nullable=False, index=True
    )
    task_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(8), nullable=False)  # ok | error
    input: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    output: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AIRun(Base):
    __tablename__ = "ai_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workflow_result_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflow_results.id"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # parser | validator | vision | ocr
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    request: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AIIssue(Base):
    __tablename__ = "ai_issues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workflow_result_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflow_results.id"), nullable=False, index=True
    )
    severity: Mapped[str] = mapped_column(String(8), nullable=False)  # error | warn
    field: Mapped[str | None] = mapped_column(String(255), nullable=True)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# --- Canonical results ---


class CanonicalResult(Base):
    """Order-scoped committed result, one per (order_id, test_name)."""

    __tablename__ = "results"
    __table_args__ = (Index("ix_results_order_test", "order_id", "test_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    workflow_instance_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    patient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    patient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    test_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Entered")
    entered_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entered_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    technician_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    result_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class CanonicalResultValue(Base):
    __tablename__ = "result_values"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    result_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("results.id"), nullable=False, index=True
    )
    analyte_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    analyte_name: Mapped[str] = mapped_column(String(255), nullable=False)
    parameter: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    reference_range: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    flag: Mapped[str | None] = mapped_column(String(8), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


# --- Workflow progress ---


class OrderWorkflowInstance(Base):
    __tablename__ = "order_workflow_instances"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_step_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
