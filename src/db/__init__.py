"""Persistence layer: engine/session setup, tables and repositories."""

from .base import Base, build_engine, build_session_factory, init_db
from .repositories import AuditRepository, ConfigRepository, SubmissionRepository

__all__ = [
    "Base",
    "build_engine",
    "build_session_factory",
    "init_db",
    "AuditRepository",
    "ConfigRepository",
    "SubmissionRepository",
]
