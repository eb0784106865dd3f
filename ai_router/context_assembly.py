"""
Prompt context assembly for the general conversational path.

Web search, memory recall and adaptive behaviors each run as a step whose
failure is folded into a default value, so a broken collaborator shapes
the prompt but never fails the request.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .collaborators import (
    BehaviorHint,
    BehaviorSource,
    MemoryItem,
    MemoryRecall,
    SearchResults,
    WebSearch,
)
from .config import OrchestratorConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_PROMPT = "You are a helpful AI assistant"


@dataclass
class StepResult(Generic[T]):
    """Outcome of one context step."""

    value: T
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(name: str, step: Callable[[], Awaitable[T]], default: T) -> StepResult[T]:
    """
    Run a context step, folding any failure into `default`.

    Args:
        name: Step name for logging
        step: Zero-argument coroutine factory
        default: Value used when the step raises

    Returns:
        StepResult carrying the value and the error, if any
    """
    try:
        return StepResult(await step())
    except Exception as e:
        logger.warning(f"Context step '{name}' failed: {e}")
        return StepResult(default, error=e)


@dataclass
class AssembledContext:
    """Everything folded into the system prompt for one turn."""

    system_prompt: str
    web_search_used: bool = False
    memories: list[MemoryItem] = field(default_factory=list)
    behaviors: list[BehaviorHint] = field(default_factory=list)


def needs_recency(message: str, pattern: str) -> bool:
    """True when the message asks about something time-sensitive."""
    return re.search(pattern, message, re.IGNORECASE) is not None


def format_search_block(results: SearchResults) -> str:
    if not results.answer:
        return ""
    sources = "\n".join(f"{i}. {r.title} - {r.url}" for i, r in enumerate(results.results, 1))
    return f"\n## Real-Time Web Information:\n{results.answer}\n\nSources:\n{sources}\n"


def format_memory_block(memories: list[MemoryItem]) -> str:
    if not memories:
        return ""
    lines = "\n".join(f"- [{m.memory_type}] {m.context_summary}" for m in memories)
    return f"\n## Context:\n{lines}\n"


def format_style_block(behaviors: list[BehaviorHint]) -> str:
    if not behaviors:
        return ""
    lines = "\n".join(f"- {b.description}" for b in behaviors)
    return f"\n## Style:\n{lines}\n"


def build_system_prompt(
    personalized: bool,
    search_block: str = "",
    memories: list[MemoryItem] | None = None,
    behaviors: list[BehaviorHint] | None = None,
) -> str:
    """Base instruction followed by style, memory and web blocks, in that order."""
    head = f"{BASE_PROMPT} with learning capabilities." if personalized else f"{BASE_PROMPT}."
    return (
        head
        + format_style_block(behaviors or [])
        + format_memory_block(memories or [])
        + search_block
    )


def dedupe_memories(memories: list[MemoryItem], cap: int) -> list[MemoryItem]:
    """Drop repeated ids, keeping first occurrence, then cap."""
    seen: set[str] = set()
    unique: list[MemoryItem] = []
    for memory in memories:
        if memory.id in seen:
            continue
        seen.add(memory.id)
        unique.append(memory)
    return unique[:cap]


class ContextAssembler:
    """Gathers web, memory and behavior context for the general path."""

    def __init__(
        self,
        config: OrchestratorConfig,
        web_search: WebSearch | None = None,
        memory: MemoryRecall | None = None,
        behaviors: BehaviorSource | None = None,
    ):
        self.config = config
        self.web_search = web_search
        self.memory = memory
        self.behaviors = behaviors

    async def search_block(self, message: str, coordinator_flag: bool) -> StepResult[str]:
        """Run web search when the turn needs fresh information."""
        if self.web_search is None:
            return StepResult("")
        if not (coordinator_flag or needs_recency(message, self.config.recency_pattern)):
            return StepResult("")

        async def run() -> str:
            results = await self.web_search.search(message, self.config.search_max_results)
            logger.debug(f"Web search returned {len(results.results)} results")
            return format_search_block(results)

        return await attempt("web_search", run, "")

    async def recall(self, user_id: str, session_id: str | None, query: str) -> list[MemoryItem]:
        """Semantic recall, supplemented by importance-ranked lookups when sparse."""
        if self.memory is None:
            return []
        memory = self.memory
        cfg = self.config

        semantic = await attempt(
            "semantic_memory",
            lambda: memory.semantic(user_id, query, cfg.semantic_limit),
            [],
        )
        memories = list(semantic.value)

        if len(memories) < cfg.semantic_limit:
            if session_id:
                session = await attempt(
                    "session_memory",
                    lambda: memory.by_importance(user_id, session_id, cfg.session_memory_limit),
                    [],
                )
                memories.extend(session.value)
            global_ = await attempt(
                "global_memory",
                lambda: memory.by_importance(user_id, None, cfg.global_memory_limit),
                [],
            )
            memories.extend(global_.value)

        return dedupe_memories(memories, cfg.memory_cap)

    async def active_behaviors(self, user_id: str) -> list[BehaviorHint]:
        if self.behaviors is None:
            return []
        source = self.behaviors
        step = await attempt(
            "adaptive_behaviors",
            lambda: source.active_behaviors(user_id, self.config.behavior_limit),
            [],
        )
        ranked = sorted(step.value, key=lambda b: b.effectiveness_score, reverse=True)
        return ranked[: self.config.behavior_limit]

    async def assemble(
        self,
        message: str,
        user_id: str,
        session_id: str | None,
        personalized: bool,
        coordinator_flag: bool = False,
    ) -> AssembledContext:
        """
        Build the system prompt for one turn.

        Args:
            message: Latest user message
            user_id: Caller id
            session_id: Conversation session, if any
            personalized: False for anonymous callers (web search only)
            coordinator_flag: Coordinator asked for web search

        Returns:
            AssembledContext with the prompt and what went into it
        """
        search = await self.search_block(message, coordinator_flag)

        memories: list[MemoryItem] = []
        behaviors: list[BehaviorHint] = []
        if personalized:
            memories = await self.recall(user_id, session_id, message)
            behaviors = await self.active_behaviors(user_id)

        return AssembledContext(
            system_prompt=build_system_prompt(personalized, search.value, memories, behaviors),
            web_search_used=bool(search.value),
            memories=memories,
            behaviors=behaviors,
        )


__all__ = [
    "AssembledContext",
    "BASE_PROMPT",
    "ContextAssembler",
    "StepResult",
    "attempt",
    "build_system_prompt",
    "dedupe_memories",
    "format_memory_block",
    "format_search_block",
    "format_style_block",
    "needs_recency",
]
