"""FastAPI surface for the code generation orchestrator.

Endpoints:
- GET /health
- POST /generate  { "prompt": "...", "language": "python", "context": "..." }
"""
from __future__ import annotations
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from codegen_service.common.errors import (
    CodegenError,
    ExplanationFailed,
    InvalidRequest,
    OrchestrationError,
    UpstreamAuthFailure,
    UpstreamError,
    UpstreamMalformedResponse,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from codegen_service.common.logging_setup import setup_logging
from codegen_service.common.schema import MIN_PROMPT_LENGTH, GenerationRequest, Language
from codegen_service.common.settings import load_settings
from codegen_service.core.orchestrator import GenerationOrchestrator

LOGGER = logging.getLogger("codegen.api")

DISCONNECT_POLL_S = 0.5

class GenerateIn(BaseModel):
    prompt: str = Field(..., min_length=MIN_PROMPT_LENGTH, max_length=20000)
    language: Language
    context: str | None = Field(None, max_length=100000)

class GenerateOut(BaseModel):
    code: str
    language: Language
    explanation: str
    tokens_used: int
    generation_time_seconds: float


def _status_for(error: UpstreamError) -> int:
    if isinstance(error, UpstreamAuthFailure):
        return 500
    if isinstance(error, UpstreamRateLimited):
        return 429
    if isinstance(error, UpstreamTimeout):
        return 504
    if isinstance(error, UpstreamMalformedResponse):
        return 502
    return 503 if error.retryable else 502


def to_http_exception(exc: CodegenError) -> HTTPException:
    """Map the error taxonomy onto an HTTP status and a JSON detail body."""
    detail: dict[str, Any] = {
        "error": exc.kind,
        "phase": None,
        "retryable": exc.retryable,
        "message": str(exc),
    }
    headers: dict[str, str] | None = None

    if isinstance(exc, OrchestrationError):
        error = exc.error
        status = _status_for(error)
        detail.update(error=error.kind, phase=exc.phase.value, message=str(error))
        if isinstance(exc, ExplanationFailed):
            detail["code"] = exc.code
        if isinstance(error, UpstreamRateLimited) and error.retry_after_seconds is not None:
            headers = {"Retry-After": str(int(error.retry_after_seconds))}
    elif isinstance(exc, InvalidRequest):
        status = 400
    elif isinstance(exc, UpstreamError):
        status = _status_for(exc)
    else:
        status = 500
    return HTTPException(status_code=status, detail=detail, headers=headers)


def create_app(orchestrator: GenerationOrchestrator | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        orchestrator: Pre-built orchestrator. When omitted, one is built from
            settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.orchestrator is None
        if owned:
            settings = load_settings()
            app.state.orchestrator = GenerationOrchestrator.from_settings(settings)
            LOGGER.info("Orchestrator ready (model=%s, base_url=%s)", settings.model_id, settings.base_url)
        try:
            yield
        finally:
            if owned:
                await app.state.orchestrator.aclose()
                app.state.orchestrator = None

    app = FastAPI(title="codegen-service", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.get("/health")
    def health() -> dict[str, str]:
        orch: GenerationOrchestrator | None = app.state.orchestrator
        if orch is None:
            raise HTTPException(status_code=503, detail="Orchestrator not initialized")
        return {"status": "ok", "model": orch.model_id}

    @app.post("/generate", response_model=GenerateOut)
    async def generate(body: GenerateIn, request: Request) -> GenerateOut:
        orch: GenerationOrchestrator | None = app.state.orchestrator
        if orch is None:
            raise HTTPException(status_code=503, detail="Orchestrator not initialized")

        gen_request = GenerationRequest(prompt=body.prompt, language=body.language, context=body.context)
        task = asyncio.create_task(orch.generate_code(gen_request))
        try:
            while not task.done():
                await asyncio.wait({task}, timeout=DISCONNECT_POLL_S)
                if not task.done() and await request.is_disconnected():
                    # Client went away; stop the in-flight provider call.
                    LOGGER.info("Client disconnected; cancelling generation")
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task
                    raise HTTPException(status_code=499, detail="Client closed request")
        except asyncio.CancelledError:
            task.cancel()
            raise

        try:
            response = task.result()
        except CodegenError as e:
            LOGGER.warning("Generation failed: %s", e)
            raise to_http_exception(e) from e

        return GenerateOut(**response.to_dict())

    return app


setup_logging()
app = create_app()
