"""
AI Task Router: capability-aware routing and execution of AI work.

Routes each unit of AI work (chat, embeddings, classification, image
generation, vision) to one of three backends:
- In-process local inference when acceleration and policy allow
- A hosted multi-model gateway
- A cheaper secondary hosted inference service

with ordered fallback, rolling per-backend metrics, and a streaming
conversational orchestrator that layers web search, memory recall and
adaptive behaviors over a model event stream.
"""

__version__ = "0.1.0"

# Core types and errors
from .types import (
    ELIGIBLE_BACKENDS,
    LOCAL_ONLY_TASKS,
    AllBackendsExhausted,
    Backend,
    BackendExecutionError,
    BackendMetrics,
    Caller,
    CapabilityUnavailable,
    ChatRequest,
    ConversationTurn,
    ExecutionResult,
    MisconfiguredEnvironment,
    Priority,
    RouteDecision,
    RouterError,
    RouterOptions,
    TaskRequest,
    TaskType,
    TurnRole,
    Unauthorized,
    UpstreamStreamError,
    ValidationError,
)

# Configuration
from .config import RouterConfig, default_config

# Routing and execution
from .capability import CapabilityDetector
from .executor import FallbackExecutor, build_executor
from .metrics import SEED_METRICS, MetricsStore
from .smart_router import MODEL_CATALOG, SmartRouter

# Backend clients
from .api_client import GatewayClient, LocalPipeline, RemoteBackend, SecondaryInferenceClient

# Conversational orchestration
from .collaborators import RemoteFunctions
from .context_assembly import ContextAssembler, StepResult
from .interaction_log import JsonlInteractionLog
from .orchestrator import AgentReply, StreamingOrchestrator, StreamReply
from .streaming import AnthropicStreamer, GatewayStreamer, StreamAccumulator

__all__ = [
    "__version__",
    # Types
    "AllBackendsExhausted",
    "Backend",
    "BackendExecutionError",
    "BackendMetrics",
    "Caller",
    "CapabilityUnavailable",
    "ChatRequest",
    "TaskRequest",
    "ConversationTurn",
    "ELIGIBLE_BACKENDS",
    "ExecutionResult",
    "LOCAL_ONLY_TASKS",
    "MisconfiguredEnvironment",
    "Priority",
    "RouteDecision",
    "RouterError",
    "RouterOptions",
    "TaskType",
    "TurnRole",
    "Unauthorized",
    "UpstreamStreamError",
    "ValidationError",
    # Config
    "RouterConfig",
    "default_config",
    # Routing
    "CapabilityDetector",
    "FallbackExecutor",
    "MODEL_CATALOG",
    "MetricsStore",
    "SEED_METRICS",
    "SmartRouter",
    "build_executor",
    # Clients
    "GatewayClient",
    "LocalPipeline",
    "RemoteBackend",
    "SecondaryInferenceClient",
    # Orchestration
    "AgentReply",
    "AnthropicStreamer",
    "ContextAssembler",
    "GatewayStreamer",
    "JsonlInteractionLog",
    "RemoteFunctions",
    "StepResult",
    "StreamAccumulator",
    "StreamReply",
    "StreamingOrchestrator",
]
