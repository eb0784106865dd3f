"""
HTTP edge for the streaming orchestrator.

Endpoints:
    POST /chat          conversational request; event stream or single JSON reply
    POST /tasks/{task}  one task through the fallback executor
    GET  /health        liveness plus the executor's per-backend metrics

Run with: uvicorn ai_router.server:create_app --factory
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from .collaborators import RemoteFunctions
from .config import RouterConfig, default_config
from .context_assembly import ContextAssembler
from .executor import FallbackExecutor, build_executor
from .interaction_log import JsonlInteractionLog, LogConfig
from .metrics import MetricsStore
from .orchestrator import AgentReply, StreamingOrchestrator
from .streaming import AnthropicStreamer, GatewayStreamer, ModelStreamer
from .types import (
    Caller,
    MisconfiguredEnvironment,
    RouterError,
    TaskRequest,
    TaskType,
    ValidationError,
)

logger = logging.getLogger(__name__)

API_TOKENS_ENV = "AI_ROUTER_API_TOKENS"


class StaticTokenAuthenticator:
    """Bearer tokens mapped to user ids."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = dict(tokens)

    @classmethod
    def from_env(cls, name: str = API_TOKENS_ENV) -> StaticTokenAuthenticator:
        """Parse `token:user_id` pairs separated by commas."""
        tokens: dict[str, str] = {}
        for pair in os.environ.get(name, "").split(","):
            token, sep, user_id = pair.strip().partition(":")
            if sep and token and user_id:
                tokens[token] = user_id
        if not tokens:
            logger.warning(f"No API tokens configured in {name}; only anonymous access possible")
        return cls(tokens)

    async def verify(self, token: str) -> Caller | None:
        user_id = self.tokens.get(token)
        return Caller(user_id=user_id) if user_id else None


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def build_orchestrator(config: RouterConfig | None = None) -> StreamingOrchestrator:
    """
    Wire the orchestrator with remote-function collaborators.

    Streamers whose credentials are absent are left unconfigured; requests
    that need them fail as MisconfiguredEnvironment.
    """
    config = config or default_config
    functions = RemoteFunctions(config.functions, api_key=os.environ.get(config.functions.api_key_env))

    gateway: ModelStreamer | None = None
    high_capability: ModelStreamer | None = None
    try:
        gateway = GatewayStreamer(config.gateway)
    except MisconfiguredEnvironment as e:
        logger.warning(f"Gateway streaming disabled: {e}")
    try:
        high_capability = AnthropicStreamer(api_key_env=config.orchestrator.anthropic_api_key_env)
    except MisconfiguredEnvironment as e:
        logger.warning(f"High-capability streaming disabled: {e}")

    return StreamingOrchestrator(
        config=config.orchestrator,
        authenticator=StaticTokenAuthenticator.from_env(),
        gateway=gateway,
        high_capability=high_capability,
        coordinator=functions,
        agents=functions,
        assembler=ContextAssembler(
            config.orchestrator,
            web_search=functions,
            memory=functions,
            behaviors=functions,
        ),
        interaction_log=JsonlInteractionLog(
            LogConfig(log_path=config.orchestrator.interaction_log_path)
        ),
        telemetry=functions,
    )


async def read_json(request: Request) -> Any:
    """Request body as JSON, or an empty object when it does not parse."""
    try:
        return await request.json()
    except ValueError:
        return {}


def parse_task_request(task: str, payload: Any) -> tuple[TaskType, TaskRequest]:
    try:
        task_type = TaskType(task)
    except ValueError as e:
        raise ValidationError(f"Unknown task type '{task}'", field="task") from e
    try:
        return task_type, TaskRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed task request: {e.error_count()} error(s)") from e


def create_app(
    orchestrator: StreamingOrchestrator | None = None,
    executor: FallbackExecutor | None = None,
    metrics: MetricsStore | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        orchestrator: Pre-wired orchestrator; built from default config if None
        executor: Fallback executor behind /tasks; built from default config if None
        metrics: Metrics store for a built executor; ignored when executor is given

    Returns:
        Configured FastAPI app
    """
    orchestrator = orchestrator or build_orchestrator()
    executor = executor or build_executor(metrics=metrics)
    # /health reports what the executor records
    metrics = executor.metrics

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("AI router starting")
        yield
        await orchestrator.drain()
        logger.info("AI router stopped")

    app = FastAPI(title="AI Task Router", version="0.1.0", lifespan=lifespan)
    app.state.executor = executor

    @app.exception_handler(RouterError)
    async def router_error_handler(request: Request, exc: RouterError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] {type(exc).__name__}: {exc}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(request_id))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        logger.exception(f"[{request_id}] Unhandled {type(exc).__name__}: {exc}")
        error = RouterError("Internal server error.", details=type(exc).__name__)
        return JSONResponse(status_code=error.status_code, content=error.to_dict(request_id))

    @app.post("/chat")
    async def chat(request: Request):
        request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        payload = await read_json(request)

        reply = await orchestrator.handle(
            bearer_token(request), payload, request_id=request.state.request_id
        )
        headers = {"X-Request-ID": reply.request_id}
        if isinstance(reply, AgentReply):
            return JSONResponse(content=reply.to_dict(), headers=headers)
        return StreamingResponse(
            reply.stream,
            media_type="text/event-stream",
            headers={**headers, "Cache-Control": "no-cache", "X-Model": reply.model},
        )

    @app.post("/tasks/{task}")
    async def run_task(task: str, request: Request) -> JSONResponse:
        request.state.request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        await orchestrator.authenticate(bearer_token(request))
        task_type, body = parse_task_request(task, await read_json(request))

        result = await executor.execute(task_type, body.input, body.to_options())
        return JSONResponse(
            content=jsonable_encoder(
                {
                    "result": result.result,
                    "backend": result.backend.value,
                    "model": result.model,
                    "latency_ms": result.latency_ms,
                    "cost": result.cost,
                }
            ),
            headers={"X-Request-ID": request.state.request_id},
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        snapshot = metrics.snapshot()
        return {
            "status": "healthy",
            "load_balance": {b.value: pct for b, pct in metrics.load_balance().items()},
            "backends": {
                b.value: {
                    "success_rate": m.success_rate,
                    "avg_latency_ms": m.avg_latency_ms,
                    "total_calls": m.total_calls,
                    "failed_calls": m.failed_calls,
                }
                for b, m in snapshot.items()
            },
        }

    return app


__all__ = [
    "StaticTokenAuthenticator",
    "bearer_token",
    "build_orchestrator",
    "create_app",
    "parse_task_request",
    "read_json",
]
