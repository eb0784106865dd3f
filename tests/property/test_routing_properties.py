"""
Property-based tests for route selection and fallback execution.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from ai_router.api_client import LocalPipeline, RemoteBackend
from ai_router.executor import FallbackExecutor
from ai_router.metrics import MetricsStore
from ai_router.smart_router import SmartRouter
from ai_router.types import (
    ELIGIBLE_BACKENDS,
    LOCAL_ONLY_TASKS,
    AllBackendsExhausted,
    Backend,
    BackendExecutionError,
    CapabilityUnavailable,
    Priority,
    RouterOptions,
    TaskType,
)
from fakes import FakeDetector

options_strategy = st.builds(
    RouterOptions,
    priority=st.sampled_from(Priority),
    max_cost=st.none() | st.floats(min_value=0, max_value=1),
    max_latency=st.none() | st.floats(min_value=0, max_value=5000),
    preferred_backend=st.none() | st.sampled_from(Backend),
    requires_auth=st.booleans(),
)


def select(accelerated, task, options):
    router = SmartRouter(detector=FakeDetector(accelerated))
    return asyncio.run(router.select(task, options))


class TestSelectionProperties:
    """Invariants of select() across all inputs."""

    @given(st.booleans(), st.sampled_from(TaskType), options_strategy)
    @settings(max_examples=300)
    def test_backend_and_fallbacks_eligible(self, accelerated, task, options):
        if task in LOCAL_ONLY_TASKS and not accelerated:
            with pytest.raises(CapabilityUnavailable):
                select(accelerated, task, options)
            return

        decision = select(accelerated, task, options)

        eligible = ELIGIBLE_BACKENDS[task]
        assert decision.backend in eligible
        assert all(fb in eligible for fb in decision.fallbacks)
        assert decision.backend not in decision.fallbacks
        assert len(set(decision.fallbacks)) == len(decision.fallbacks)

    @given(st.sampled_from(TaskType), options_strategy)
    @settings(max_examples=200)
    def test_no_local_without_acceleration(self, task, options):
        if task in LOCAL_ONLY_TASKS:
            return
        decision = select(False, task, options)
        assert decision.backend is not Backend.LOCAL_INFERENCE

    @given(st.booleans(), st.sampled_from(TaskType), options_strategy)
    @settings(max_examples=200)
    def test_local_never_a_fallback(self, accelerated, task, options):
        try:
            decision = select(accelerated, task, options)
        except CapabilityUnavailable:
            return
        assert Backend.LOCAL_INFERENCE not in decision.fallbacks

    @given(st.booleans(), st.sampled_from(TaskType), options_strategy)
    @settings(max_examples=100)
    def test_deterministic(self, accelerated, task, options):
        try:
            first = select(accelerated, task, options)
        except CapabilityUnavailable:
            return
        assert select(accelerated, task, options) == first

    @given(st.sampled_from(sorted(LOCAL_ONLY_TASKS, key=lambda t: t.value)), options_strategy)
    @settings(max_examples=50)
    def test_local_only_tasks_have_empty_chain(self, task, options):
        decision = select(True, task, options)
        assert decision.backend is Backend.LOCAL_INFERENCE
        assert decision.fallbacks == ()


def client(fails: bool):
    c = MagicMock(spec=RemoteBackend)
    c.invoke = AsyncMock(
        return_value="ok", side_effect=BackendExecutionError(Backend.PRIMARY_GATEWAY, "x") if fails else None
    )
    return c


class TestExecutionProperties:
    """Metrics bookkeeping under arbitrary backend failures."""

    @given(
        st.sampled_from([TaskType.CHAT, TaskType.EMBEDDING, TaskType.CLASSIFICATION, TaskType.IMAGE_GEN]),
        st.sampled_from(Priority),
        st.booleans(),
        st.booleans(),
        st.booleans(),
        st.booleans(),
    )
    @settings(max_examples=200)
    def test_attempts_are_recorded_exactly_once(
        self, task, priority, accelerated, gw_fails, sec_fails, local_fails
    ):
        metrics = MetricsStore()
        local = MagicMock(spec=LocalPipeline)
        local.run = AsyncMock(return_value=[0.0], side_effect=RuntimeError("x") if local_fails else None)
        executor = FallbackExecutor(
            router=SmartRouter(detector=FakeDetector(accelerated), metrics=metrics),
            metrics=metrics,
            gateway=client(gw_fails),
            secondary=client(sec_fails),
            local=local,
        )

        try:
            result = asyncio.run(executor.execute(task, "input", RouterOptions(priority=priority)))
        except AllBackendsExhausted as e:
            attempted = e.attempted
            succeeded = None
        else:
            succeeded = result.backend
            attempted = None

        snapshot = metrics.snapshot()
        total_calls = sum(m.total_calls for m in snapshot.values())
        total_failed = sum(m.failed_calls for m in snapshot.values())
        for m in snapshot.values():
            assert m.failed_calls <= m.total_calls
        if succeeded is not None:
            assert total_calls - total_failed == 1
            assert snapshot[succeeded].failed_calls == 0
        else:
            assert total_calls == total_failed == len(attempted)
