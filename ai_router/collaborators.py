"""
Contracts for the server-side collaborators of the streaming orchestrator.

Each collaborator is a single request/response call. `RemoteFunctions`
implements all of them by posting JSON to named remote functions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .config import FunctionsConfig
from .types import ConversationTurn

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorAnalysis:
    """Intent classification for one conversational turn."""

    recommended_agents: list[str] = field(default_factory=list)
    complexity: str = "medium"  # low, medium, high
    requires_web_search: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoordinatorAnalysis:
        return cls(
            recommended_agents=list(data.get("recommended_agents") or []),
            complexity=data.get("complexity") or "medium",
            requires_web_search=bool(data.get("requires_web_search", False)),
        )


@dataclass
class SearchHit:
    title: str
    url: str


@dataclass
class SearchResults:
    """Synthesized answer plus citations."""

    answer: str | None = None
    results: list[SearchHit] = field(default_factory=list)


@dataclass
class MemoryItem:
    """A recalled memory row."""

    id: str
    content: str = ""
    memory_type: str = "general"
    context_summary: str = ""
    importance_score: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryItem:
        return cls(
            id=str(data["id"]),
            content=data.get("content") or "",
            memory_type=data.get("memory_type") or "general",
            context_summary=data.get("context_summary") or data.get("content") or "",
            importance_score=float(data.get("importance_score") or 0.0),
        )


@dataclass
class BehaviorHint:
    """An active adaptive-behavior descriptor."""

    id: str
    behavior_type: str
    description: str
    effectiveness_score: float = 0.0


@dataclass
class InteractionRecord:
    """Durable record of one exchange."""

    id: str
    user_id: str
    session_id: str | None
    message: str
    model_used: str
    response: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMObservation:
    """Telemetry for one completed model call."""

    agent_type: str
    model_used: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: float
    estimated_cost: float
    user_id: str
    session_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


class Coordinator(Protocol):
    """Classifies a turn's intent and complexity."""

    async def analyze(self, message: str, session_id: str | None) -> CoordinatorAnalysis: ...


class SpecializedAgents(Protocol):
    """Named non-streaming agents (reasoning, creative, learning)."""

    async def respond(self, agent: str, messages: list[ConversationTurn], problem: str) -> str: ...


class WebSearch(Protocol):
    async def search(self, query: str, max_results: int) -> SearchResults: ...


class MemoryRecall(Protocol):
    """Semantic and importance-ranked memory lookups."""

    async def semantic(self, user_id: str, query: str, limit: int) -> list[MemoryItem]: ...

    async def by_importance(
        self, user_id: str, session_id: str | None, limit: int
    ) -> list[MemoryItem]: ...


class BehaviorSource(Protocol):
    async def active_behaviors(self, user_id: str, limit: int) -> list[BehaviorHint]: ...


class TelemetrySink(Protocol):
    async def observe(self, observation: LLMObservation) -> None: ...


class InteractionLog(Protocol):
    """Insert-then-update durability keyed by a generated id."""

    async def insert(self, record: InteractionRecord) -> None: ...

    async def update(self, record_id: str, response: str) -> None: ...


class RemoteFunctionError(Exception):
    """A named remote function returned an error."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"{name}: {message}")


class RemoteFunctions:
    """
    All server collaborators backed by named remote functions.

    Each call is a JSON POST to `{base_url}/{function_name}`.
    """

    def __init__(
        self,
        config: FunctionsConfig | None = None,
        api_key: str | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.config = config or FunctionsConfig()
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http = http or httpx.AsyncClient(timeout=self.config.timeout_s, headers=headers)

    async def invoke(self, name: str, body: dict[str, Any]) -> Any:
        """Call a named function and return its JSON payload."""
        try:
            response = await self.http.post(f"{self.config.base_url}/{name}", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteFunctionError(name, str(e)) from e
        data = response.json()
        if isinstance(data, dict) and data.get("error"):
            raise RemoteFunctionError(name, str(data["error"]))
        return data

    async def analyze(self, message: str, session_id: str | None) -> CoordinatorAnalysis:
        data = await self.invoke(
            self.config.coordinator, {"message": message, "sessionId": session_id}
        )
        return CoordinatorAnalysis.from_dict(data.get("analysis") or {})

    async def respond(self, agent: str, messages: list[ConversationTurn], problem: str) -> str:
        names = {
            "reasoning": self.config.reasoning_agent,
            "creative": self.config.creative_agent,
            "learning": self.config.learning_agent,
        }
        body: dict[str, Any] = {"messages": [m.model_dump(mode="json") for m in messages]}
        if agent == "reasoning":
            body["problem"] = problem
        data = await self.invoke(names[agent], body)
        text = data.get("solution") if agent == "reasoning" else data.get("response")
        if not text:
            raise RemoteFunctionError(names[agent], "empty agent response")
        return text

    async def search(self, query: str, max_results: int) -> SearchResults:
        data = await self.invoke(
            self.config.web_search,
            {"query": query, "searchDepth": "basic", "maxResults": max_results},
        )
        return SearchResults(
            answer=data.get("answer"),
            results=[
                SearchHit(title=r.get("title", ""), url=r.get("url", ""))
                for r in data.get("results") or []
            ],
        )

    async def semantic(self, user_id: str, query: str, limit: int) -> list[MemoryItem]:
        data = await self.invoke(
            self.config.semantic_search,
            {"query": query, "userId": user_id, "table": "agent_memory", "limit": limit},
        )
        return [MemoryItem.from_dict(row) for row in data.get("results") or []]

    async def by_importance(
        self, user_id: str, session_id: str | None, limit: int
    ) -> list[MemoryItem]:
        data = await self.invoke(
            self.config.memory_lookup,
            {"userId": user_id, "sessionId": session_id, "limit": limit},
        )
        return [MemoryItem.from_dict(row) for row in data.get("memories") or []]

    async def active_behaviors(self, user_id: str, limit: int) -> list[BehaviorHint]:
        data = await self.invoke(self.config.behaviors, {"userId": user_id, "limit": limit})
        return [
            BehaviorHint(
                id=str(row["id"]),
                behavior_type=row.get("behavior_type", ""),
                description=row.get("description", ""),
                effectiveness_score=float(row.get("effectiveness_score") or 0.0),
            )
            for row in data.get("behaviors") or []
        ]

    async def observe(self, observation: LLMObservation) -> None:
        await self.invoke(
            self.config.telemetry,
            {
                "agentType": observation.agent_type,
                "modelUsed": observation.model_used,
                "promptTokens": observation.prompt_tokens,
                "completionTokens": observation.completion_tokens,
                "latencyMs": observation.latency_ms,
                "estimatedCost": observation.estimated_cost,
                "userId": observation.user_id,
                "sessionId": observation.session_id,
                "metadata": observation.metadata,
            },
        )

    async def aclose(self) -> None:
        await self.http.aclose()


__all__ = [
    "BehaviorHint",
    "BehaviorSource",
    "Coordinator",
    "CoordinatorAnalysis",
    "InteractionLog",
    "InteractionRecord",
    "LLMObservation",
    "MemoryItem",
    "MemoryRecall",
    "RemoteFunctionError",
    "RemoteFunctions",
    "SearchHit",
    "SearchResults",
    "SpecializedAgents",
    "TelemetrySink",
    "WebSearch",
]
