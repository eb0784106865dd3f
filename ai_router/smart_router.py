"""
Smart routing of AI tasks across backends.

Routes a task to a backend/model based on:
- Task type (which backends implement it at all)
- Caller priority (speed, cost, quality, privacy)
- Local acceleration availability
- An optional preferred backend

Estimates come from a static model catalog. Live metrics are read only
as a soft signal that annotates the decision's reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, assert_never

from .capability import CapabilityDetector
from .metrics import MetricsStore
from .types import (
    ELIGIBLE_BACKENDS,
    Backend,
    CapabilityUnavailable,
    Priority,
    RouteDecision,
    RouterOptions,
    TaskType,
)

logger = logging.getLogger(__name__)


class ModelTier(Enum):
    """Model tiers by capability and cost."""

    FAST = "fast"
    BALANCED = "balanced"
    POWERFUL = "powerful"
    SPECIALIST = "specialist"  # Single-purpose (embeddings, vision, images)


@dataclass(frozen=True)
class ModelOption:
    """A model option with planning estimates."""

    model_id: str
    backend: Backend
    tier: ModelTier
    tasks: frozenset[TaskType]
    estimated_cost: float  # Dollars per call
    estimated_latency: float  # Milliseconds


def _tasks(*tasks: TaskType) -> frozenset[TaskType]:
    return frozenset(tasks)


# Model catalog keyed by short alias
MODEL_CATALOG: dict[str, ModelOption] = {
    # Primary gateway
    "gemini-flash": ModelOption(
        model_id="google/gemini-2.5-flash",
        backend=Backend.PRIMARY_GATEWAY,
        tier=ModelTier.FAST,
        tasks=_tasks(
            TaskType.CHAT,
            TaskType.TEXT_GENERATION,
            TaskType.EMBEDDING,
            TaskType.CLASSIFICATION,
        ),
        estimated_cost=0.0002,
        estimated_latency=1200,
    ),
    "gemini-pro": ModelOption(
        model_id="google/gemini-2.5-pro",
        backend=Backend.PRIMARY_GATEWAY,
        tier=ModelTier.POWERFUL,
        tasks=_tasks(TaskType.CHAT, TaskType.TEXT_GENERATION),
        estimated_cost=0.0005,
        estimated_latency=1800,
    ),
    "gemini-flash-image": ModelOption(
        model_id="google/gemini-2.5-flash-image",
        backend=Backend.PRIMARY_GATEWAY,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.IMAGE_GEN),
        estimated_cost=0.004,
        estimated_latency=3000,
    ),
    # Secondary inference
    "llama-3b": ModelOption(
        model_id="meta-llama/Llama-3.2-3B-Instruct",
        backend=Backend.SECONDARY_INFERENCE,
        tier=ModelTier.FAST,
        tasks=_tasks(TaskType.CHAT, TaskType.TEXT_GENERATION),
        estimated_cost=0.0001,
        estimated_latency=2500,
    ),
    "minilm-hosted": ModelOption(
        model_id="sentence-transformers/all-MiniLM-L6-v2",
        backend=Backend.SECONDARY_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.EMBEDDING),
        estimated_cost=0.0001,
        estimated_latency=1500,
    ),
    "bart-mnli": ModelOption(
        model_id="facebook/bart-large-mnli",
        backend=Backend.SECONDARY_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.CLASSIFICATION),
        estimated_cost=0.0001,
        estimated_latency=1800,
    ),
    "flux-schnell": ModelOption(
        model_id="black-forest-labs/FLUX.1-schnell",
        backend=Backend.SECONDARY_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.IMAGE_GEN),
        estimated_cost=0.001,
        estimated_latency=2000,
    ),
    # Local inference
    "minilm-local": ModelOption(
        model_id="sentence-transformers/all-MiniLM-L6-v2",
        backend=Backend.LOCAL_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.EMBEDDING),
        estimated_cost=0.0,
        estimated_latency=800,
    ),
    "distilbert-mnli-local": ModelOption(
        model_id="typeform/distilbert-base-uncased-mnli",
        backend=Backend.LOCAL_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.CLASSIFICATION),
        estimated_cost=0.0,
        estimated_latency=800,
    ),
    "detr-local": ModelOption(
        model_id="facebook/detr-resnet-50",
        backend=Backend.LOCAL_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.OBJECT_DETECTION),
        estimated_cost=0.0,
        estimated_latency=1600,  # Twice the local baseline
    ),
    "vit-gpt2-local": ModelOption(
        model_id="nlpconnect/vit-gpt2-image-captioning",
        backend=Backend.LOCAL_INFERENCE,
        tier=ModelTier.SPECIALIST,
        tasks=_tasks(TaskType.CAPTIONING),
        estimated_cost=0.0,
        estimated_latency=1600,
    ),
}

# Default model per backend and task, used when a backend is preferred
PREFERRED_MODELS: dict[Backend, dict[TaskType, str]] = {
    Backend.PRIMARY_GATEWAY: {
        TaskType.CHAT: "gemini-flash",
        TaskType.TEXT_GENERATION: "gemini-flash",
        TaskType.EMBEDDING: "gemini-flash",
        TaskType.CLASSIFICATION: "gemini-flash",
        TaskType.IMAGE_GEN: "gemini-flash-image",
    },
    Backend.SECONDARY_INFERENCE: {
        TaskType.CHAT: "llama-3b",
        TaskType.TEXT_GENERATION: "llama-3b",
        TaskType.EMBEDDING: "minilm-hosted",
        TaskType.CLASSIFICATION: "bart-mnli",
        TaskType.IMAGE_GEN: "flux-schnell",
    },
    Backend.LOCAL_INFERENCE: {
        TaskType.EMBEDDING: "minilm-local",
        TaskType.CLASSIFICATION: "distilbert-mnli-local",
        TaskType.OBJECT_DETECTION: "detr-local",
        TaskType.CAPTIONING: "vit-gpt2-local",
    },
}

# Per-backend planning baselines (cost per call, latency ms)
BASELINE_COST: dict[Backend, float] = {
    Backend.PRIMARY_GATEWAY: 0.0002,
    Backend.SECONDARY_INFERENCE: 0.0001,
    Backend.LOCAL_INFERENCE: 0.0,
}
BASELINE_LATENCY: dict[Backend, float] = {
    Backend.PRIMARY_GATEWAY: 1200,
    Backend.SECONDARY_INFERENCE: 2000,
    Backend.LOCAL_INFERENCE: 800,
}

# Fallback order when a backend is chosen by preference
PREFERRED_FALLBACKS: dict[Backend, tuple[Backend, ...]] = {
    Backend.LOCAL_INFERENCE: (Backend.SECONDARY_INFERENCE, Backend.PRIMARY_GATEWAY),
    Backend.PRIMARY_GATEWAY: (Backend.SECONDARY_INFERENCE,),
    Backend.SECONDARY_INFERENCE: (Backend.PRIMARY_GATEWAY,),
}

LOCAL_FRIENDLY_PRIORITIES = frozenset({Priority.PRIVACY, Priority.COST, Priority.SPEED})


class SmartRouter:
    """
    Select a backend, model, and fallback chain for a task.

    Deterministic given the environment (capability detector) and options.
    """

    def __init__(
        self,
        detector: CapabilityDetector | None = None,
        metrics: MetricsStore | None = None,
        degraded_success_rate: float = 0.5,
        history_limit: int = 1000,
    ):
        """
        Initialize router.

        Args:
            detector: Local acceleration probe
            metrics: Live metrics, read as a soft signal only
            degraded_success_rate: Success rate below which reasons carry a warning
            history_limit: Maximum routing history entries kept
        """
        self.detector = detector or CapabilityDetector()
        self.metrics = metrics
        self.degraded_success_rate = degraded_success_rate
        self.history_limit = history_limit
        self._routing_history: list[dict[str, Any]] = []

    async def select(self, task: TaskType, options: RouterOptions | None = None) -> RouteDecision:
        """
        Route a task to a backend.

        Raises:
            CapabilityUnavailable: local-only task without local acceleration
        """
        options = options or RouterOptions()
        decision = await self._select(task, options)
        decision = self._annotate(decision, options)
        self._track(task, options, decision)
        return decision

    async def _select(self, task: TaskType, options: RouterOptions) -> RouteDecision:
        preferred = options.preferred_backend
        if preferred is not None:
            if preferred not in ELIGIBLE_BACKENDS[task]:
                logger.info(
                    f"{preferred.value} does not implement {task.value}, routing to alternative"
                )
            elif preferred is Backend.LOCAL_INFERENCE and not await self.detector.has_local_acceleration():
                logger.info("Local inference unavailable, routing to alternative")
            else:
                return self._preferred_decision(preferred, task)
            options = replace(options, preferred_backend=None)

        return await self._dispatch(task, options)

    async def _dispatch(self, task: TaskType, options: RouterOptions) -> RouteDecision:
        priority = options.priority

        match task:
            case TaskType.EMBEDDING | TaskType.CLASSIFICATION:
                if priority in LOCAL_FRIENDLY_PRIORITIES and await self.detector.has_local_acceleration():
                    reason = (
                        "Fastest with local acceleration"
                        if priority is Priority.SPEED
                        else "Free and private in-process inference"
                    )
                    return self._decision(
                        PREFERRED_MODELS[Backend.LOCAL_INFERENCE][task],
                        reason,
                        PREFERRED_FALLBACKS[Backend.LOCAL_INFERENCE],
                    )
                alias = PREFERRED_MODELS[Backend.SECONDARY_INFERENCE][task]
                return self._decision(
                    alias,
                    f"Reliable server-side {task.value}",
                    (Backend.PRIMARY_GATEWAY,),
                )

            case TaskType.CHAT | TaskType.TEXT_GENERATION:
                if priority is Priority.SPEED:
                    return self._decision(
                        "gemini-flash", "Fastest hosted response", (Backend.SECONDARY_INFERENCE,)
                    )
                if priority is Priority.COST and not options.requires_auth:
                    return self._decision(
                        "llama-3b", "Cost-effective generation", (Backend.PRIMARY_GATEWAY,)
                    )
                if priority is Priority.QUALITY:
                    return self._decision(
                        "gemini-pro", "Highest quality responses", (Backend.SECONDARY_INFERENCE,)
                    )
                return self._decision(
                    "gemini-flash", "Balanced quality and speed", (Backend.SECONDARY_INFERENCE,)
                )

            case TaskType.IMAGE_GEN:
                if priority is Priority.QUALITY:
                    return self._decision(
                        "gemini-flash-image",
                        "Highest quality image generation",
                        (Backend.SECONDARY_INFERENCE,),
                    )
                return self._decision(
                    "flux-schnell", "Fast and cost-effective images", (Backend.PRIMARY_GATEWAY,)
                )

            case TaskType.OBJECT_DETECTION | TaskType.CAPTIONING:
                if not await self.detector.has_local_acceleration():
                    raise CapabilityUnavailable(task)
                return self._decision(
                    PREFERRED_MODELS[Backend.LOCAL_INFERENCE][task],
                    f"Local-only {task.value}",
                    (),
                )

            case _:
                assert_never(task)

    def _decision(
        self, alias: str, reason: str, fallbacks: tuple[Backend, ...]
    ) -> RouteDecision:
        option = MODEL_CATALOG[alias]
        return RouteDecision(
            backend=option.backend,
            model=option.model_id,
            reason=reason,
            estimated_cost=option.estimated_cost,
            estimated_latency=option.estimated_latency,
            fallbacks=fallbacks,
        )

    def _preferred_decision(self, backend: Backend, task: TaskType) -> RouteDecision:
        alias = PREFERRED_MODELS[backend].get(task, "gemini-flash")
        return RouteDecision(
            backend=backend,
            model=MODEL_CATALOG[alias].model_id,
            reason=f"User preferred {backend.value}",
            estimated_cost=BASELINE_COST[backend],
            estimated_latency=BASELINE_LATENCY[backend],
            fallbacks=tuple(
                fb for fb in PREFERRED_FALLBACKS[backend] if fb in ELIGIBLE_BACKENDS[task]
            ),
        )

    def _annotate(self, decision: RouteDecision, options: RouterOptions) -> RouteDecision:
        """Append advisory notes (budget overruns, degraded backend) to the reason."""
        notes = []

        if options.max_cost is not None and decision.estimated_cost > options.max_cost:
            logger.warning(
                f"Estimated cost {decision.estimated_cost} exceeds max_cost {options.max_cost}"
            )
            notes.append("over cost budget")
        if options.max_latency is not None and decision.estimated_latency > options.max_latency:
            logger.warning(
                f"Estimated latency {decision.estimated_latency}ms exceeds "
                f"max_latency {options.max_latency}ms"
            )
            notes.append("over latency budget")

        if self.metrics is not None:
            live = self.metrics.get(decision.backend)
            if live.total_calls > 0 and live.success_rate < self.degraded_success_rate:
                notes.append(f"recent success rate {live.success_rate:.0%}")

        if not notes:
            return decision
        return replace(decision, reason=f"{decision.reason} ({'; '.join(notes)})")

    def _track(self, task: TaskType, options: RouterOptions, decision: RouteDecision) -> None:
        self._routing_history.append(
            {
                "task": task.value,
                "priority": options.priority.value,
                "backend": decision.backend.value,
                "model": decision.model,
            }
        )
        if len(self._routing_history) > self.history_limit:
            del self._routing_history[: -self.history_limit]

    def get_statistics(self) -> dict[str, Any]:
        """Get routing statistics."""
        if not self._routing_history:
            return {"total_routes": 0}

        by_task: dict[str, int] = {}
        by_backend: dict[str, int] = {}
        by_model: dict[str, int] = {}

        for entry in self._routing_history:
            by_task[entry["task"]] = by_task.get(entry["task"], 0) + 1
            by_backend[entry["backend"]] = by_backend.get(entry["backend"], 0) + 1
            by_model[entry["model"]] = by_model.get(entry["model"], 0) + 1

        return {
            "total_routes": len(self._routing_history),
            "by_task": by_task,
            "by_backend": by_backend,
            "by_model": by_model,
        }


__all__ = [
    "BASELINE_COST",
    "BASELINE_LATENCY",
    "MODEL_CATALOG",
    "ModelOption",
    "ModelTier",
    "PREFERRED_FALLBACKS",
    "PREFERRED_MODELS",
    "SmartRouter",
]
