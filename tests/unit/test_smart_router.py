"""
Unit tests for smart_router module.
"""

import pytest

from ai_router.smart_router import (
    BASELINE_COST,
    MODEL_CATALOG,
    PREFERRED_MODELS,
    ModelTier,
    SmartRouter,
)
from ai_router.types import (
    ELIGIBLE_BACKENDS,
    Backend,
    CapabilityUnavailable,
    Priority,
    RouterOptions,
    TaskType,
)
from fakes import FakeDetector


class TestModelCatalog:
    """Tests for the static catalog."""

    def test_catalog_backends_implement_their_tasks(self):
        for alias, option in MODEL_CATALOG.items():
            for task in option.tasks:
                assert option.backend in ELIGIBLE_BACKENDS[task], alias

    def test_local_models_are_free(self):
        for option in MODEL_CATALOG.values():
            if option.backend is Backend.LOCAL_INFERENCE:
                assert option.estimated_cost == 0.0

    def test_preferred_models_exist(self):
        for backend, by_task in PREFERRED_MODELS.items():
            for task, alias in by_task.items():
                assert MODEL_CATALOG[alias].backend is backend
                assert task in MODEL_CATALOG[alias].tasks

    def test_tiers(self):
        assert MODEL_CATALOG["gemini-pro"].tier is ModelTier.POWERFUL
        assert MODEL_CATALOG["gemini-flash"].tier is ModelTier.FAST


class TestChatRouting:
    """Tests for chat and text generation."""

    @pytest.mark.asyncio
    async def test_quality_uses_gateway_pro(self, unaccelerated_router):
        decision = await unaccelerated_router.select(TaskType.CHAT)
        assert decision.backend is Backend.PRIMARY_GATEWAY
        assert decision.model == "google/gemini-2.5-pro"
        assert decision.fallbacks == (Backend.SECONDARY_INFERENCE,)

    @pytest.mark.asyncio
    async def test_speed_uses_gateway_flash(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.TEXT_GENERATION, RouterOptions(priority=Priority.SPEED)
        )
        assert decision.backend is Backend.PRIMARY_GATEWAY
        assert decision.model == "google/gemini-2.5-flash"

    @pytest.mark.asyncio
    async def test_cost_without_auth_uses_secondary(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.CHAT, RouterOptions(priority=Priority.COST, requires_auth=False)
        )
        assert decision.backend is Backend.SECONDARY_INFERENCE
        assert decision.fallbacks == (Backend.PRIMARY_GATEWAY,)

    @pytest.mark.asyncio
    async def test_cost_with_auth_uses_gateway(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.CHAT, RouterOptions(priority=Priority.COST, requires_auth=True)
        )
        assert decision.backend is Backend.PRIMARY_GATEWAY
        assert decision.model == "google/gemini-2.5-flash"

    @pytest.mark.asyncio
    async def test_privacy_never_routes_chat_locally(self, accelerated_router):
        decision = await accelerated_router.select(
            TaskType.CHAT, RouterOptions(priority=Priority.PRIVACY)
        )
        assert decision.backend is Backend.PRIMARY_GATEWAY


class TestEmbeddingAndClassification:
    @pytest.mark.asyncio
    async def test_privacy_with_acceleration_is_local_and_free(self, accelerated_router):
        decision = await accelerated_router.select(
            TaskType.EMBEDDING, RouterOptions(priority=Priority.PRIVACY)
        )
        assert decision.backend is Backend.LOCAL_INFERENCE
        assert decision.estimated_cost == 0.0
        assert decision.fallbacks == (Backend.SECONDARY_INFERENCE, Backend.PRIMARY_GATEWAY)

    @pytest.mark.asyncio
    async def test_without_acceleration_uses_secondary(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.CLASSIFICATION, RouterOptions(priority=Priority.PRIVACY)
        )
        assert decision.backend is Backend.SECONDARY_INFERENCE
        assert decision.model == "facebook/bart-large-mnli"
        assert decision.fallbacks == (Backend.PRIMARY_GATEWAY,)

    @pytest.mark.asyncio
    async def test_quality_skips_local_even_when_accelerated(self, accelerated_router):
        decision = await accelerated_router.select(
            TaskType.EMBEDDING, RouterOptions(priority=Priority.QUALITY)
        )
        assert decision.backend is Backend.SECONDARY_INFERENCE


class TestImageGeneration:
    @pytest.mark.asyncio
    async def test_quality_image(self, unaccelerated_router):
        decision = await unaccelerated_router.select(TaskType.IMAGE_GEN)
        assert decision.model == "google/gemini-2.5-flash-image"
        assert decision.fallbacks == (Backend.SECONDARY_INFERENCE,)

    @pytest.mark.asyncio
    async def test_cheap_image(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.IMAGE_GEN, RouterOptions(priority=Priority.COST)
        )
        assert decision.backend is Backend.SECONDARY_INFERENCE
        assert decision.model == "black-forest-labs/FLUX.1-schnell"


class TestLocalOnlyTasks:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("task", [TaskType.OBJECT_DETECTION, TaskType.CAPTIONING])
    async def test_unavailable_without_acceleration(self, unaccelerated_router, task):
        with pytest.raises(CapabilityUnavailable):
            await unaccelerated_router.select(task)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("task", [TaskType.OBJECT_DETECTION, TaskType.CAPTIONING])
    async def test_local_with_no_fallbacks(self, accelerated_router, task):
        decision = await accelerated_router.select(task)
        assert decision.backend is Backend.LOCAL_INFERENCE
        assert decision.fallbacks == ()
        assert decision.estimated_latency == 1600


class TestPreferredBackend:
    """Tests for caller backend preference."""

    @pytest.mark.asyncio
    async def test_eligible_preference_honored(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.CHAT,
            RouterOptions(priority=Priority.QUALITY, preferred_backend=Backend.SECONDARY_INFERENCE),
        )
        assert decision.backend is Backend.SECONDARY_INFERENCE
        assert decision.estimated_cost == BASELINE_COST[Backend.SECONDARY_INFERENCE]
        assert "preferred" in decision.reason

    @pytest.mark.asyncio
    async def test_ineligible_preference_ignored(self, accelerated_router):
        decision = await accelerated_router.select(
            TaskType.CHAT, RouterOptions(preferred_backend=Backend.LOCAL_INFERENCE)
        )
        assert decision.backend is Backend.PRIMARY_GATEWAY

    @pytest.mark.asyncio
    async def test_local_preference_without_acceleration_ignored(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.EMBEDDING,
            RouterOptions(priority=Priority.COST, preferred_backend=Backend.LOCAL_INFERENCE),
        )
        assert decision.backend is Backend.SECONDARY_INFERENCE

    @pytest.mark.asyncio
    async def test_local_preference_for_vision_has_no_hosted_fallbacks(self, accelerated_router):
        decision = await accelerated_router.select(
            TaskType.CAPTIONING, RouterOptions(preferred_backend=Backend.LOCAL_INFERENCE)
        )
        assert decision.backend is Backend.LOCAL_INFERENCE
        assert decision.fallbacks == ()


class TestAdvisoryNotes:
    @pytest.mark.asyncio
    async def test_over_budget_is_noted_not_enforced(self, unaccelerated_router):
        decision = await unaccelerated_router.select(
            TaskType.CHAT, RouterOptions(max_cost=0.00001, max_latency=10)
        )
        assert decision.backend is Backend.PRIMARY_GATEWAY
        assert "over cost budget" in decision.reason
        assert "over latency budget" in decision.reason

    @pytest.mark.asyncio
    async def test_degraded_backend_noted(self, metrics):
        router = SmartRouter(detector=FakeDetector(False), metrics=metrics)
        for _ in range(4):
            metrics.record_failure(Backend.PRIMARY_GATEWAY)

        decision = await router.select(TaskType.CHAT)
        assert decision.backend is Backend.PRIMARY_GATEWAY
        assert "recent success rate 0%" in decision.reason

    @pytest.mark.asyncio
    async def test_seeded_metrics_do_not_annotate(self, unaccelerated_router):
        decision = await unaccelerated_router.select(TaskType.CHAT)
        assert "(" not in decision.reason


class TestStatistics:
    @pytest.mark.asyncio
    async def test_history_counts(self, unaccelerated_router):
        await unaccelerated_router.select(TaskType.CHAT)
        await unaccelerated_router.select(TaskType.CHAT)
        await unaccelerated_router.select(TaskType.EMBEDDING)

        stats = unaccelerated_router.get_statistics()
        assert stats["total_routes"] == 3
        assert stats["by_task"] == {"chat": 2, "embedding": 1}

    def test_empty_statistics(self, unaccelerated_router):
        assert unaccelerated_router.get_statistics() == {"total_routes": 0}

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        router = SmartRouter(detector=FakeDetector(False), history_limit=2)
        for _ in range(5):
            await router.select(TaskType.CHAT)
        assert router.get_statistics()["total_routes"] == 2
