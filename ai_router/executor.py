"""
Task execution with automatic fallback across backends.

The executor is the only writer of the metrics store. It tries the
routed backend first and, on failure, walks the decision's fallback
chain, re-routing with each fallback preferred so the model matches
that backend's catalog.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, assert_never

from .api_client import GatewayClient, LocalPipeline, RemoteBackend, SecondaryInferenceClient
from .capability import CapabilityDetector
from .config import RouterConfig, default_config
from .metrics import MetricsStore
from .smart_router import SmartRouter
from .types import (
    AllBackendsExhausted,
    Backend,
    BackendExecutionError,
    CapabilityUnavailable,
    ExecutionResult,
    MisconfiguredEnvironment,
    RouteDecision,
    RouterOptions,
    TaskType,
)

logger = logging.getLogger(__name__)

# Errors that end execution immediately instead of triggering fallback
FATAL_ERRORS = (CapabilityUnavailable, MisconfiguredEnvironment)


class FallbackExecutor:
    """Execute tasks with automatic fallback on failure."""

    def __init__(
        self,
        router: SmartRouter,
        metrics: MetricsStore,
        gateway: RemoteBackend | None = None,
        secondary: RemoteBackend | None = None,
        local: LocalPipeline | None = None,
        attempt_timeout_s: float | None = None,
    ):
        """
        Initialize executor.

        Args:
            router: Route selector
            metrics: Metrics store updated after every attempt
            gateway: Primary gateway client
            secondary: Secondary inference client
            local: In-process pipeline runner
            attempt_timeout_s: Abandon a single backend attempt after this long
        """
        self.router = router
        self.metrics = metrics
        self.gateway = gateway
        self.secondary = secondary
        self.local = local
        self.attempt_timeout_s = attempt_timeout_s

    async def execute(
        self,
        task: TaskType,
        input: Any,
        options: RouterOptions | None = None,
    ) -> ExecutionResult[Any]:
        """
        Execute a task, falling back through alternative backends.

        Args:
            task: Task type
            input: Task input (text, messages, image, ...)
            options: Routing preferences

        Returns:
            ExecutionResult from the first backend that succeeded

        Raises:
            CapabilityUnavailable: local-only task without local acceleration
            MisconfiguredEnvironment: a needed backend has no credentials
            AllBackendsExhausted: every backend in the chain failed
        """
        options = options or RouterOptions()
        start = time.perf_counter()

        decision = await self.router.select(task, options)
        attempted: list[Backend] = []
        last_error: Exception | None = None

        try:
            return await self._try(decision, task, input, start, attempted)
        except FATAL_ERRORS:
            raise
        except BackendExecutionError as e:
            last_error = e
            logger.warning(f"Primary backend {decision.backend.value} failed: {e}")

        for fallback in decision.fallbacks:
            logger.info(f"Trying {fallback.value} as fallback for {task.value}")
            fallback_decision = await self.router.select(
                task, replace(options, preferred_backend=fallback)
            )
            if fallback_decision.backend is not fallback:
                # Preference could not be honored (e.g. acceleration revoked)
                last_error = BackendExecutionError(fallback, "backend unavailable for this task")
                continue
            try:
                result = await self._try(fallback_decision, task, input, start, attempted)
                logger.info(f"Completed {task.value} via fallback {fallback.value}")
                return result
            except FATAL_ERRORS:
                raise
            except BackendExecutionError as e:
                last_error = e
                logger.warning(f"Fallback {fallback.value} failed: {e}")

        raise AllBackendsExhausted(task, attempted, last_error) from last_error

    async def _try(
        self,
        decision: RouteDecision,
        task: TaskType,
        input: Any,
        start: float,
        attempted: list[Backend],
    ) -> ExecutionResult[Any]:
        """Run one attempt and record its outcome."""
        backend = decision.backend
        attempted.append(backend)
        attempt_start = time.perf_counter()

        try:
            call = self._dispatch(backend, task, decision.model, input)
            if self.attempt_timeout_s is not None:
                result = await asyncio.wait_for(call, timeout=self.attempt_timeout_s)
            else:
                result = await call
        except FATAL_ERRORS:
            raise
        except TimeoutError as e:
            self.metrics.record_failure(backend)
            raise BackendExecutionError(
                backend, f"timed out after {self.attempt_timeout_s}s"
            ) from e
        except BackendExecutionError:
            self.metrics.record_failure(backend)
            raise
        except Exception as e:
            self.metrics.record_failure(backend)
            raise BackendExecutionError(backend, str(e) or type(e).__name__) from e

        now = time.perf_counter()
        self.metrics.record_success(
            backend,
            latency_ms=(now - attempt_start) * 1000,
            cost=decision.estimated_cost,
        )
        latency_ms = (now - start) * 1000
        logger.info(f"Completed {task.value} via {backend.value} in {latency_ms:.0f}ms")

        return ExecutionResult(
            result=result,
            backend=backend,
            model=decision.model,
            latency_ms=latency_ms,
            cost=decision.estimated_cost,
        )

    def _dispatch(self, backend: Backend, task: TaskType, model: str, input: Any) -> Any:
        """Build the awaitable for one backend call."""
        match backend:
            case Backend.LOCAL_INFERENCE:
                if self.local is None:
                    raise MisconfiguredEnvironment("Local inference runner not configured")
                return self.local.run(task, model, input)
            case Backend.PRIMARY_GATEWAY:
                return self._remote(self.gateway, backend).invoke(task, model, input)
            case Backend.SECONDARY_INFERENCE:
                return self._remote(self.secondary, backend).invoke(task, model, input)
            case _:
                assert_never(backend)

    @staticmethod
    def _remote(client: RemoteBackend | None, backend: Backend) -> RemoteBackend:
        if client is None:
            raise MisconfiguredEnvironment(f"No client configured for {backend.value}")
        return client


def build_executor(
    config: RouterConfig | None = None,
    metrics: MetricsStore | None = None,
) -> FallbackExecutor:
    """
    Wire an executor from configuration.

    Hosted backends whose credentials are absent are left unconfigured;
    routing to them then fails as MisconfiguredEnvironment.
    """
    config = config or default_config
    metrics = metrics or MetricsStore()
    detector = CapabilityDetector(config.local)

    gateway: RemoteBackend | None = None
    secondary: RemoteBackend | None = None
    try:
        gateway = GatewayClient(config.gateway)
    except MisconfiguredEnvironment as e:
        logger.warning(
            f"Primary gateway disabled; tasks routed to it fail without fallback: {e}"
        )
    try:
        secondary = SecondaryInferenceClient(config.secondary)
    except MisconfiguredEnvironment as e:
        logger.warning(
            f"Secondary inference disabled; tasks routed to it fail without fallback: {e}"
        )

    router = SmartRouter(
        detector=detector,
        metrics=metrics,
        degraded_success_rate=config.executor.degraded_success_rate,
    )
    return FallbackExecutor(
        router=router,
        metrics=metrics,
        gateway=gateway,
        secondary=secondary,
        local=LocalPipeline(detector),
        attempt_timeout_s=config.executor.attempt_timeout_s,
    )


__all__ = ["FATAL_ERRORS", "FallbackExecutor", "build_executor"]
