"""HTTP entry point for workflow result processing.

Usage:
    uv run python main.py
    uv run uvicorn src.app:create_app --factory --reload
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from src.api.tools import ToolClient
from src.config import Settings, get_settings
from src.db import build_engine, build_session_factory, init_db
from src.errors import InvalidSubmission, PipelineError
from src.inference.client import InferenceClient
from src.io.attachments import AttachmentFetcher
from src.logger import get_logger
from src.models import SubmissionRequest
from src.pipelines import process_workflow_result

logger = get_logger("src.app")

PROCESS_PATH = "/process-workflow-result"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    inference_client: InferenceClient | None = None,
    fetcher: AttachmentFetcher | None = None,
    tools: ToolClient | None = None,
) -> FastAPI:
    """Build the application; collaborators default to ones built from settings."""
    settings = settings or get_settings()
    if session_factory is None:
        engine = build_engine(settings.database_url)
        session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        engine = session_factory.kw["bind"]
        init_db(engine)
        logger.info(
            "Starting workflow result service (backend=%s, db=%s)",
            settings.inference_backend,
            engine.url.render_as_string(hide_password=True),
        )
        yield
        logger.info("Shutting down workflow result service")

    app = FastAPI(title="Workflow Result Processor", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS", "GET"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    app.state.session_factory = session_factory
    app.state.inference_client = inference_client or InferenceClient.from_settings(settings)
    app.state.fetcher = fetcher or AttachmentFetcher(timeout_s=settings.attachment_timeout_s)
    app.state.tools = tools or ToolClient(timeout_s=settings.tool_timeout_s)

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        return {"status": "ok", "model": app.state.inference_client.model_name}

    @app.post(PROCESS_PATH)
    async def process(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error("Request body is not valid JSON", 400)

        try:
            submission = SubmissionRequest.from_payload(payload)
        except InvalidSubmission as exc:
            return _error(exc.message, exc.http_status)

        try:
            response = await run_in_threadpool(_run, submission)
        except PipelineError as exc:
            logger.error("%s for instance=%s: %s", type(exc).__name__, submission.workflow_instance_id, exc.message)
            return _error(exc.message, exc.http_status)
        except Exception as exc:
            logger.exception("process-workflow-result error")
            return _error(str(exc), 500)

        return JSONResponse(response.to_dict(), status_code=200)

    def _run(submission: SubmissionRequest):
        with app.state.session_factory() as session:
            return process_workflow_result(
                submission,
                session=session,
                inference_client=app.state.inference_client,
                fetcher=app.state.fetcher,
                tools=app.state.tools,
            )

    return app
