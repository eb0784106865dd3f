"""
Shared type definitions for the AI task router.

Backends, task types, routing options and decisions, execution results,
conversation turns, and the error taxonomy used by every component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class Backend(str, Enum):
    """AI execution targets."""

    LOCAL_INFERENCE = "localInference"  # In-process, zero marginal cost
    PRIMARY_GATEWAY = "primaryGateway"  # Hosted multi-model gateway
    SECONDARY_INFERENCE = "secondaryInference"  # Cheaper/slower hosted inference


class TaskType(str, Enum):
    """Units of AI work the router understands."""

    CHAT = "chat"
    TEXT_GENERATION = "textGeneration"
    EMBEDDING = "embedding"
    CLASSIFICATION = "classification"
    IMAGE_GEN = "imageGen"
    OBJECT_DETECTION = "objectDetection"
    CAPTIONING = "captioning"


class Priority(str, Enum):
    """Caller intent used to steer routing."""

    SPEED = "speed"
    COST = "cost"
    QUALITY = "quality"
    PRIVACY = "privacy"


# Backends that structurally implement each task
ELIGIBLE_BACKENDS: dict[TaskType, frozenset[Backend]] = {
    TaskType.CHAT: frozenset({Backend.PRIMARY_GATEWAY, Backend.SECONDARY_INFERENCE}),
    TaskType.TEXT_GENERATION: frozenset({Backend.PRIMARY_GATEWAY, Backend.SECONDARY_INFERENCE}),
    TaskType.IMAGE_GEN: frozenset({Backend.PRIMARY_GATEWAY, Backend.SECONDARY_INFERENCE}),
    TaskType.EMBEDDING: frozenset(Backend),
    TaskType.CLASSIFICATION: frozenset(Backend),
    TaskType.OBJECT_DETECTION: frozenset({Backend.LOCAL_INFERENCE}),
    TaskType.CAPTIONING: frozenset({Backend.LOCAL_INFERENCE}),
}

LOCAL_ONLY_TASKS: frozenset[TaskType] = frozenset(
    {TaskType.OBJECT_DETECTION, TaskType.CAPTIONING}
)


@dataclass(frozen=True)
class RouterOptions:
    """Per-call routing preferences. Immutable."""

    priority: Priority = Priority.QUALITY
    max_cost: float | None = None  # Advisory
    max_latency: float | None = None  # Advisory, milliseconds
    preferred_backend: Backend | None = None
    requires_auth: bool = False


@dataclass(frozen=True)
class RouteDecision:
    """Which backend/model to try first and what to try next on failure."""

    backend: Backend
    model: str
    reason: str
    estimated_cost: float
    estimated_latency: float  # milliseconds
    fallbacks: tuple[Backend, ...] = ()

    @property
    def all_backends(self) -> list[Backend]:
        """All backends in order of preference."""
        return [self.backend, *self.fallbacks]


@dataclass
class BackendMetrics:
    """Rolling statistics for one backend."""

    backend: Backend
    success_rate: float
    avg_latency_ms: float
    total_calls: int = 0
    failed_calls: int = 0
    total_cost: float = 0.0
    last_used_at: datetime | None = None


@dataclass
class ExecutionResult(Generic[T]):
    """Typed response returned to the caller of the executor."""

    result: T
    backend: Backend
    model: str
    latency_ms: float
    cost: float
    from_cache: bool = False


class TurnRole(str, Enum):
    """Role in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """A single message in conversation history."""

    role: TurnRole
    content: str


class ChatRequest(BaseModel):
    """Inbound conversational request (accepts snake_case or camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ConversationTurn] = Field(default_factory=list)
    session_id: str | None = Field(default=None, alias="sessionId")
    force_agent: str | None = Field(default=None, alias="forceAgent")

    @property
    def latest_user_message(self) -> str:
        """Content of the last message, empty when there is none."""
        return self.messages[-1].content if self.messages else ""


class TaskRequest(BaseModel):
    """Inbound task execution request body."""

    model_config = ConfigDict(populate_by_name=True)

    input: Any = None
    priority: Priority = Priority.QUALITY
    max_cost: float | None = Field(default=None, alias="maxCost")
    max_latency: float | None = Field(default=None, alias="maxLatency")
    preferred_backend: Backend | None = Field(default=None, alias="preferredBackend")

    def to_options(self) -> RouterOptions:
        return RouterOptions(
            priority=self.priority,
            max_cost=self.max_cost,
            max_latency=self.max_latency,
            preferred_backend=self.preferred_backend,
        )


@dataclass
class Caller:
    """Authenticated (or anonymous) identity of a request."""

    user_id: str
    anonymous: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


# Error taxonomy


class RouterError(Exception):
    """Base class for routing and execution errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Structured error payload for callers."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "request_id": request_id,
        }


class Unauthorized(RouterError):
    """Missing or invalid caller credential."""

    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class ValidationError(RouterError):
    """Request payload is malformed."""

    status_code = 400
    error_code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, details=f"field={field}" if field else None)
        self.field = field


class MisconfiguredEnvironment(RouterError):
    """A required backend credential or setting is absent."""

    status_code = 500
    error_code = "misconfigured_environment"


class CapabilityUnavailable(RouterError):
    """Task requires local acceleration that is not present."""

    status_code = 422
    error_code = "capability_unavailable"

    def __init__(self, task: TaskType):
        self.task = task
        super().__init__(f"{task.value} requires local acceleration, which is unavailable")


class BackendExecutionError(RouterError):
    """One backend attempt failed."""

    status_code = 502
    error_code = "backend_error"

    def __init__(
        self,
        backend: Backend | str,
        message: str,
        upstream_status: int | None = None,
    ):
        self.backend = backend
        self.upstream_status = upstream_status
        label = backend.value if isinstance(backend, Backend) else backend
        super().__init__(f"{label}: {message}")
        # Rate limit and payment errors keep their upstream meaning
        if upstream_status in (402, 429):
            self.status_code = upstream_status


class AllBackendsExhausted(RouterError):
    """Every backend in the fallback chain failed."""

    status_code = 503
    error_code = "all_backends_exhausted"

    def __init__(self, task: TaskType, attempted: list[Backend], last_error: Exception | None):
        self.task = task
        self.attempted = attempted
        self.last_error = last_error
        tried = ", ".join(b.value for b in attempted)
        super().__init__(
            f"All backends failed for {task.value} (tried: {tried})",
            details=str(last_error) if last_error else None,
        )


class UpstreamStreamError(RouterError):
    """The model stream failed after output was already delivered."""

    status_code = 502
    error_code = "upstream_stream_error"


__all__ = [
    "AllBackendsExhausted",
    "Backend",
    "BackendExecutionError",
    "BackendMetrics",
    "Caller",
    "CapabilityUnavailable",
    "ChatRequest",
    "ConversationTurn",
    "ELIGIBLE_BACKENDS",
    "ExecutionResult",
    "LOCAL_ONLY_TASKS",
    "MisconfiguredEnvironment",
    "Priority",
    "RouteDecision",
    "RouterError",
    "RouterOptions",
    "TaskRequest",
    "TaskType",
    "TurnRole",
    "Unauthorized",
    "UpstreamStreamError",
    "ValidationError",
]
