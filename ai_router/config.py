"""
Configuration management for the AI task router.

Credentials are never stored here, only the names of the environment
variables that hold them.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path

DEFAULT_CONFIG_PATH = Path.home() / ".ai-router" / "config.json"


@dataclass
class GatewayConfig:
    """Hosted multi-model gateway (OpenAI-compatible API)."""

    base_url: str = "https://ai.gateway.lovable.dev/v1"
    api_key_env: str = "AI_GATEWAY_API_KEY"
    timeout_s: float = 60.0


@dataclass
class SecondaryInferenceConfig:
    """Alternative hosted inference service."""

    base_url: str = "https://api-inference.huggingface.co"
    api_key_env: str = "HF_API_TOKEN"
    timeout_s: float = 120.0


@dataclass
class LocalInferenceConfig:
    """
    In-process inference.

    `enabled` is the execution environment's security policy; the
    `disable_env` variable acts as an operator kill switch.
    """

    enabled: bool = True
    disable_env: str = "AI_ROUTER_DISABLE_LOCAL"


@dataclass
class ExecutorConfig:
    """Fallback execution controls."""

    attempt_timeout_s: float | None = None  # None = wait for each backend
    degraded_success_rate: float = 0.5  # Noted in route reasons below this


@dataclass
class FunctionsConfig:
    """Server-side collaborators exposed as named remote functions."""

    base_url: str = "http://localhost:54321/functions/v1"
    api_key_env: str = "AI_ROUTER_FUNCTIONS_KEY"
    timeout_s: float = 30.0
    coordinator: str = "coordinator-agent"
    reasoning_agent: str = "reasoning-agent"
    creative_agent: str = "creative-agent"
    learning_agent: str = "learning-agent"
    web_search: str = "tavily-search"
    semantic_search: str = "semantic-search"
    memory_lookup: str = "memory-recall"
    behaviors: str = "adaptive-behaviors"
    telemetry: str = "track-llm-observation"


@dataclass
class OrchestratorConfig:
    """Conversational path configuration."""

    default_model: str = "google/gemini-2.5-flash"
    high_capability_model: str = "claude-sonnet-4-5"
    anthropic_api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = 4096
    allow_anonymous: bool = False
    search_max_results: int = 5
    semantic_limit: int = 5
    session_memory_limit: int = 3
    global_memory_limit: int = 5
    memory_cap: int = 10
    behavior_limit: int = 10
    recency_pattern: str = r"(?:latest|recent|current|today|news|weather|stock|price|now)"
    interaction_log_path: str = "~/.ai-router/interactions.jsonl"


@dataclass
class RouterConfig:
    """Complete router configuration."""

    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    secondary: SecondaryInferenceConfig = field(default_factory=SecondaryInferenceConfig)
    local: LocalInferenceConfig = field(default_factory=LocalInferenceConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    functions: FunctionsConfig = field(default_factory=FunctionsConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "RouterConfig":
        """Load configuration from file, falling back to defaults."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        return cls(
            gateway=GatewayConfig(**data.get("gateway", {})),
            secondary=SecondaryInferenceConfig(**data.get("secondary", {})),
            local=LocalInferenceConfig(**data.get("local", {})),
            executor=ExecutorConfig(**data.get("executor", {})),
            functions=FunctionsConfig(**data.get("functions", {})),
            orchestrator=OrchestratorConfig(**data.get("orchestrator", {})),
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)


# Default configuration instance
default_config = RouterConfig()
