"""
Unit tests for executor module.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ai_router.api_client import LocalPipeline, RemoteBackend
from ai_router.config import RouterConfig
from ai_router.executor import FallbackExecutor, build_executor
from ai_router.metrics import seeded_metrics
from ai_router.smart_router import SmartRouter
from ai_router.types import (
    AllBackendsExhausted,
    Backend,
    BackendExecutionError,
    CapabilityUnavailable,
    MisconfiguredEnvironment,
    Priority,
    RouterOptions,
    TaskType,
)
from fakes import FakeDetector


def remote(result=None, error=None):
    client = MagicMock(spec=RemoteBackend)
    client.invoke = AsyncMock(return_value=result, side_effect=error)
    return client


def local(result=None, error=None):
    runner = MagicMock(spec=LocalPipeline)
    runner.run = AsyncMock(return_value=result, side_effect=error)
    return runner


def make_executor(metrics, accelerated=False, **clients):
    router = SmartRouter(detector=FakeDetector(accelerated), metrics=metrics)
    return FallbackExecutor(router=router, metrics=metrics, **clients)


class TestSuccess:
    """Tests for first-attempt success."""

    @pytest.mark.asyncio
    async def test_primary_success(self, metrics):
        gateway = remote(result="hello")
        executor = make_executor(metrics, gateway=gateway, secondary=remote())

        result = await executor.execute(TaskType.CHAT, "hi")

        assert result.result == "hello"
        assert result.backend is Backend.PRIMARY_GATEWAY
        assert result.model == "google/gemini-2.5-pro"
        assert result.cost == pytest.approx(0.0005)
        assert result.latency_ms >= 0
        assert result.from_cache is False
        gateway.invoke.assert_awaited_once_with(TaskType.CHAT, "google/gemini-2.5-pro", "hi")

    @pytest.mark.asyncio
    async def test_two_successes_touch_only_primary(self, metrics):
        executor = make_executor(metrics, gateway=remote(result="ok"), secondary=remote())

        await executor.execute(TaskType.CHAT, "a")
        await executor.execute(TaskType.CHAT, "b")

        snapshot = metrics.snapshot()
        seeds = seeded_metrics()
        assert snapshot[Backend.PRIMARY_GATEWAY].total_calls == 2
        assert snapshot[Backend.PRIMARY_GATEWAY].failed_calls == 0
        assert snapshot[Backend.SECONDARY_INFERENCE] == seeds[Backend.SECONDARY_INFERENCE]
        assert snapshot[Backend.LOCAL_INFERENCE] == seeds[Backend.LOCAL_INFERENCE]

    @pytest.mark.asyncio
    async def test_local_execution(self, metrics):
        runner = local(result=[0.1, 0.2])
        executor = make_executor(metrics, accelerated=True, local=runner)

        result = await executor.execute(
            TaskType.EMBEDDING, "text", RouterOptions(priority=Priority.PRIVACY)
        )

        assert result.backend is Backend.LOCAL_INFERENCE
        assert result.cost == 0.0
        runner.run.assert_awaited_once()


class TestFallback:
    """Tests for the fallback chain."""

    @pytest.mark.asyncio
    async def test_fallback_after_primary_failure(self, metrics):
        gateway = remote(error=BackendExecutionError(Backend.PRIMARY_GATEWAY, "503"))
        secondary = remote(result="from secondary")
        executor = make_executor(metrics, gateway=gateway, secondary=secondary)

        result = await executor.execute(TaskType.CHAT, "hi")

        assert result.result == "from secondary"
        assert result.backend is Backend.SECONDARY_INFERENCE
        assert result.model == "meta-llama/Llama-3.2-3B-Instruct"
        assert metrics.get(Backend.PRIMARY_GATEWAY).failed_calls == 1
        assert metrics.get(Backend.SECONDARY_INFERENCE).total_calls == 1
        assert metrics.get(Backend.SECONDARY_INFERENCE).failed_calls == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped_and_falls_back(self, metrics):
        executor = make_executor(
            metrics, gateway=remote(error=ValueError("bad json")), secondary=remote(result="ok")
        )

        result = await executor.execute(TaskType.CHAT, "hi")

        assert result.backend is Backend.SECONDARY_INFERENCE
        assert metrics.get(Backend.PRIMARY_GATEWAY).failed_calls == 1

    @pytest.mark.asyncio
    async def test_local_failure_walks_hosted_chain(self, metrics):
        secondary = remote(error=BackendExecutionError(Backend.SECONDARY_INFERENCE, "down"))
        gateway = remote(result={"labels": ["positive"]})
        executor = make_executor(
            metrics,
            accelerated=True,
            local=local(error=RuntimeError("oom")),
            secondary=secondary,
            gateway=gateway,
        )

        result = await executor.execute(
            TaskType.CLASSIFICATION, "great", RouterOptions(priority=Priority.COST)
        )

        assert result.backend is Backend.PRIMARY_GATEWAY
        assert metrics.get(Backend.LOCAL_INFERENCE).failed_calls == 1
        assert metrics.get(Backend.SECONDARY_INFERENCE).failed_calls == 1
        assert metrics.get(Backend.PRIMARY_GATEWAY).total_calls == 1

    @pytest.mark.asyncio
    async def test_all_fail(self, metrics):
        executor = make_executor(
            metrics,
            gateway=remote(error=BackendExecutionError(Backend.PRIMARY_GATEWAY, "a")),
            secondary=remote(error=BackendExecutionError(Backend.SECONDARY_INFERENCE, "b")),
        )

        with pytest.raises(AllBackendsExhausted) as exc_info:
            await executor.execute(TaskType.CHAT, "hi")

        error = exc_info.value
        assert error.attempted == [Backend.PRIMARY_GATEWAY, Backend.SECONDARY_INFERENCE]
        assert "secondaryInference: b" in str(error.last_error)
        assert error.__cause__ is error.last_error
        assert metrics.get(Backend.PRIMARY_GATEWAY).failed_calls == 1
        assert metrics.get(Backend.SECONDARY_INFERENCE).failed_calls == 1

    @pytest.mark.asyncio
    async def test_no_fallbacks_for_local_only_task(self, metrics):
        executor = make_executor(
            metrics, accelerated=True, local=local(error=RuntimeError("model load failed"))
        )

        with pytest.raises(AllBackendsExhausted) as exc_info:
            await executor.execute(TaskType.OBJECT_DETECTION, b"image")

        assert exc_info.value.attempted == [Backend.LOCAL_INFERENCE]


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_capability_unavailable_propagates(self, metrics):
        executor = make_executor(metrics, local=local())

        with pytest.raises(CapabilityUnavailable):
            await executor.execute(TaskType.CAPTIONING, b"image")

        assert metrics.snapshot() == seeded_metrics()

    @pytest.mark.asyncio
    async def test_missing_client_is_misconfigured(self, metrics):
        secondary = remote(result="unused")
        executor = make_executor(metrics, gateway=None, secondary=secondary)

        with pytest.raises(MisconfiguredEnvironment):
            await executor.execute(TaskType.CHAT, "hi")

        secondary.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconfigured_primary_does_not_fall_back(self, metrics):
        # Cost-priority chat routes to secondary first; a configured gateway is not tried
        gateway = remote(result="unused")
        executor = make_executor(metrics, gateway=gateway, secondary=None)

        with pytest.raises(MisconfiguredEnvironment):
            await executor.execute(TaskType.CHAT, "hi", RouterOptions(priority=Priority.COST))

        gateway.invoke.assert_not_awaited()
        assert metrics.snapshot() == seeded_metrics()


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_slow_attempt_abandoned(self, metrics):
        async def slow(*args):
            await asyncio.sleep(5)

        gateway = MagicMock(spec=RemoteBackend)
        gateway.invoke = slow
        router = SmartRouter(detector=FakeDetector(False), metrics=metrics)
        executor = FallbackExecutor(
            router=router,
            metrics=metrics,
            gateway=gateway,
            secondary=remote(result="fast"),
            attempt_timeout_s=0.05,
        )

        result = await executor.execute(TaskType.CHAT, "hi")

        assert result.backend is Backend.SECONDARY_INFERENCE
        assert metrics.get(Backend.PRIMARY_GATEWAY).failed_calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, metrics):
        started = asyncio.Event()

        async def hang(*args):
            started.set()
            await asyncio.sleep(5)

        gateway = MagicMock(spec=RemoteBackend)
        gateway.invoke = hang
        executor = make_executor(metrics, gateway=gateway, secondary=remote(result="x"))

        task = asyncio.create_task(executor.execute(TaskType.CHAT, "hi"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestBuildExecutor:
    def test_missing_credentials_leave_clients_unset(self, monkeypatch):
        monkeypatch.delenv("AI_GATEWAY_API_KEY", raising=False)
        monkeypatch.delenv("HF_API_TOKEN", raising=False)

        executor = build_executor(RouterConfig())

        assert executor.gateway is None
        assert executor.secondary is None
        assert executor.local is not None

    def test_credentials_configure_clients(self, monkeypatch):
        monkeypatch.setenv("AI_GATEWAY_API_KEY", "gw-key")
        monkeypatch.setenv("HF_API_TOKEN", "hf-key")

        executor = build_executor(RouterConfig())

        assert executor.gateway is not None
        assert executor.secondary is not None
