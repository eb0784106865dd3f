"""
Streaming orchestrator for conversational requests.

One request flows through:
    authenticate -> validate -> classify intent -> specialized agent | general path
    -> respond -> persist -> telemetry (background)

Specialized agents reply once with a JSON body. The general path assembles
context, picks a model tier, and relays the upstream event stream
chunk-by-chunk while keeping a running transcript for persistence and
telemetry.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from .collaborators import (
    Coordinator,
    CoordinatorAnalysis,
    InteractionLog,
    InteractionRecord,
    LLMObservation,
    SpecializedAgents,
    TelemetrySink,
)
from .config import OrchestratorConfig
from .context_assembly import AssembledContext, ContextAssembler
from .pricing import estimate_call_cost, estimate_tokens
from .streaming import ModelStreamer, StreamAccumulator, UpstreamStream
from .types import (
    BackendExecutionError,
    Caller,
    ChatRequest,
    MisconfiguredEnvironment,
    RouterError,
    Unauthorized,
    UpstreamStreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SPECIALIZED_AGENTS = frozenset({"reasoning", "creative", "learning"})
HIGH_TIER_FORCE = "claude"
ANONYMOUS_USER_ID = "anonymous"


class Authenticator(Protocol):
    """Resolves a bearer credential to a caller, or None when invalid."""

    async def verify(self, token: str) -> Caller | None: ...


def normalize_agent(name: str | None) -> str | None:
    """Lowercase an agent name and strip a trailing `-agent`."""
    if not name:
        return None
    name = name.strip().lower()
    if name.endswith("-agent"):
        name = name[: -len("-agent")]
    return name or None


@dataclass
class AgentReply:
    """Single non-streamed reply from a specialized agent."""

    response: str
    agent: str
    request_id: str
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"response": self.response, "success": self.success, "agent": self.agent}


@dataclass
class StreamReply:
    """Event stream for the general path."""

    stream: AsyncIterator[bytes]
    model: str
    request_id: str
    web_search_used: bool = False
    memory_count: int = 0


@dataclass
class _Turn:
    """Per-request state carried through the general path."""

    request_id: str
    caller: Caller
    request: ChatRequest
    message: str
    started: float
    analysis: CoordinatorAnalysis | None = None
    context: AssembledContext | None = None
    model: str = ""
    record_id: str | None = None

    @property
    def complexity(self) -> str:
        return self.analysis.complexity if self.analysis else "medium"


class StreamingOrchestrator:
    """
    Handles one conversational request end to end.

    Collaborators are injected; any that is None is treated as absent
    (classification falls back to the general path, context steps
    contribute nothing, persistence and telemetry are skipped).
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        authenticator: Authenticator,
        gateway: ModelStreamer | None = None,
        high_capability: ModelStreamer | None = None,
        coordinator: Coordinator | None = None,
        agents: SpecializedAgents | None = None,
        assembler: ContextAssembler | None = None,
        interaction_log: InteractionLog | None = None,
        telemetry: TelemetrySink | None = None,
    ):
        self.config = config
        self.authenticator = authenticator
        self.gateway = gateway
        self.high_capability = high_capability
        self.coordinator = coordinator
        self.agents = agents
        self.assembler = assembler or ContextAssembler(config)
        self.interaction_log = interaction_log
        self.telemetry = telemetry
        self._background: set[asyncio.Task[None]] = set()

    # Entry point

    async def handle(
        self,
        credential: str | None,
        payload: ChatRequest | dict[str, Any],
        request_id: str | None = None,
    ) -> AgentReply | StreamReply:
        """
        Process one conversational request.

        Args:
            credential: Bearer token, or None when the caller sent none
            payload: Parsed request or raw JSON body
            request_id: Correlation id for logs and error payloads

        Returns:
            AgentReply for specialized agents, StreamReply otherwise

        Raises:
            Unauthorized, ValidationError, MisconfiguredEnvironment,
            BackendExecutionError (agent failed, or upstream rejected before streaming)
        """
        request_id = request_id or uuid.uuid4().hex
        caller = await self.authenticate(credential)
        request = self.validate(payload)
        message = request.latest_user_message
        turn = _Turn(
            request_id=request_id,
            caller=caller,
            request=request,
            message=message,
            started=time.monotonic(),
        )

        forced = normalize_agent(request.force_agent)
        if forced is not None:
            agent = forced
            logger.info(f"[{request_id}] Forced agent: {agent}")
        else:
            turn.analysis = await self._classify(turn)
            agent = self._pick_agent(turn.analysis)

        if agent in SPECIALIZED_AGENTS:
            return await self._run_agent(turn, agent)
        return await self._run_general(turn, force_high=forced == HIGH_TIER_FORCE)

    async def authenticate(self, credential: str | None) -> Caller:
        if credential:
            caller = await self.authenticator.verify(credential)
            if caller is not None:
                return caller
            raise Unauthorized("Invalid credential.")
        if self.config.allow_anonymous:
            return Caller(user_id=ANONYMOUS_USER_ID, anonymous=True)
        raise Unauthorized()

    def validate(self, payload: ChatRequest | dict[str, Any]) -> ChatRequest:
        if isinstance(payload, ChatRequest):
            request = payload
        else:
            try:
                request = ChatRequest.model_validate(payload)
            except PydanticValidationError as e:
                raise ValidationError(f"Malformed request: {e.error_count()} error(s)") from e
        if not request.messages:
            raise ValidationError("messages must be a non-empty list", field="messages")
        return request

    # Classification

    async def _classify(self, turn: _Turn) -> CoordinatorAnalysis | None:
        if self.coordinator is None:
            return None
        try:
            analysis = await self.coordinator.analyze(turn.message, turn.request.session_id)
        except Exception as e:
            logger.warning(f"[{turn.request_id}] Coordinator failed, using general path: {e}")
            return None
        logger.debug(
            f"[{turn.request_id}] Coordinator: agents={analysis.recommended_agents} "
            f"complexity={analysis.complexity} search={analysis.requires_web_search}"
        )
        return analysis

    @staticmethod
    def _pick_agent(analysis: CoordinatorAnalysis | None) -> str | None:
        if analysis is None or not analysis.recommended_agents:
            return None
        # Only the top recommendation counts; "general" keeps the streamed path
        agent = normalize_agent(analysis.recommended_agents[0])
        if agent and agent != "general":
            return agent
        return None

    # Specialized agents

    async def _run_agent(self, turn: _Turn, agent: str) -> AgentReply:
        if self.agents is None:
            raise MisconfiguredEnvironment(f"No specialized agents configured for '{agent}'")

        try:
            text = await self.agents.respond(agent, turn.request.messages, turn.message)
        except RouterError:
            raise
        except Exception as e:
            logger.error(f"[{turn.request_id}] {agent} agent failed: {e}")
            raise BackendExecutionError(f"{agent}-agent", str(e) or type(e).__name__) from e
        if agent == "reasoning":
            text = f"## Reasoning Analysis\n\n{text}"

        if not turn.caller.anonymous and self.interaction_log is not None:
            record = InteractionRecord(
                id=uuid.uuid4().hex,
                user_id=turn.caller.user_id,
                session_id=turn.request.session_id,
                message=turn.message,
                model_used=f"{agent}-agent",
                response=text,
                context={"agent": agent},
            )
            await self._safe_insert(turn, record)

        logger.info(f"[{turn.request_id}] {agent} agent replied ({len(text)} chars)")
        return AgentReply(response=text, agent=agent, request_id=turn.request_id)

    # General path

    async def _run_general(self, turn: _Turn, force_high: bool) -> StreamReply:
        personalized = not turn.caller.anonymous
        turn.context = await self.assembler.assemble(
            message=turn.message,
            user_id=turn.caller.user_id,
            session_id=turn.request.session_id,
            personalized=personalized,
            coordinator_flag=bool(turn.analysis and turn.analysis.requires_web_search),
        )

        high = force_high or turn.complexity == "high"
        streamer = self.high_capability if high else self.gateway
        turn.model = self.config.high_capability_model if high else self.config.default_model
        if streamer is None:
            tier = "high-capability" if high else "default"
            raise MisconfiguredEnvironment(f"No {tier} model streamer configured")

        history = [m.model_dump(mode="json") for m in turn.request.messages]
        upstream = await streamer.open(
            turn.model, history, turn.context.system_prompt, self.config.max_tokens
        )
        logger.info(f"[{turn.request_id}] Streaming from {turn.model}")

        if personalized and self.interaction_log is not None:
            turn.record_id = uuid.uuid4().hex
            record = InteractionRecord(
                id=turn.record_id,
                user_id=turn.caller.user_id,
                session_id=turn.request.session_id,
                message=turn.message,
                model_used=turn.model,
                context={
                    "complexity": turn.complexity,
                    "web_search_used": turn.context.web_search_used,
                    "memories_used": len(turn.context.memories),
                },
            )
            if not await self._safe_insert(turn, record):
                turn.record_id = None

        return StreamReply(
            stream=self._relay(turn, upstream),
            model=turn.model,
            request_id=turn.request_id,
            web_search_used=turn.context.web_search_used,
            memory_count=len(turn.context.memories),
        )

    async def _relay(self, turn: _Turn, upstream: UpstreamStream) -> AsyncIterator[bytes]:
        """Yield upstream chunks as-is while accumulating the transcript."""
        accumulator = StreamAccumulator()
        try:
            async for chunk in upstream.chunks():
                accumulator.feed(chunk)
                yield chunk
        except Exception as e:
            logger.error(f"[{turn.request_id}] Upstream stream failed: {e}")
            raise UpstreamStreamError(f"Upstream stream failed: {e}") from e
        finally:
            await upstream.aclose()

        accumulator.finish()
        if turn.record_id is not None and self.interaction_log is not None:
            await self._safe_update(turn, turn.record_id, accumulator.text)
        if not turn.caller.anonymous and self.telemetry is not None:
            self._submit_telemetry(self._observation(turn, accumulator))

    # Persistence

    async def _safe_insert(self, turn: _Turn, record: InteractionRecord) -> bool:
        try:
            await self.interaction_log.insert(record)
            return True
        except Exception as e:
            logger.error(f"[{turn.request_id}] Failed to persist interaction: {e}")
            return False

    async def _safe_update(self, turn: _Turn, record_id: str, response: str) -> None:
        try:
            await self.interaction_log.update(record_id, response)
        except Exception as e:
            logger.error(f"[{turn.request_id}] Failed to update interaction {record_id}: {e}")

    # Telemetry

    def _observation(self, turn: _Turn, accumulator: StreamAccumulator) -> LLMObservation:
        if accumulator.usage_seen:
            prompt_tokens = accumulator.prompt_tokens
            completion_tokens = accumulator.completion_tokens
        else:
            prompt_text = turn.context.system_prompt + "".join(
                m.content for m in turn.request.messages
            )
            prompt_tokens = estimate_tokens(prompt_text)
            completion_tokens = estimate_tokens(accumulator.text)

        return LLMObservation(
            agent_type="chat-stream",
            model_used=turn.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=(time.monotonic() - turn.started) * 1000,
            estimated_cost=estimate_call_cost(prompt_tokens, completion_tokens, turn.model),
            user_id=turn.caller.user_id,
            session_id=turn.request.session_id,
            metadata={
                "complexity": turn.complexity,
                "web_search_used": turn.context.web_search_used,
                "memory_count": len(turn.context.memories),
                "usage_reported": accumulator.usage_seen,
                "request_id": turn.request_id,
            },
        )

    def _submit_telemetry(self, observation: LLMObservation) -> None:
        """Fire-and-forget; failures are logged only."""
        task = asyncio.create_task(self.telemetry.observe(observation))
        self._background.add(task)
        task.add_done_callback(self._telemetry_done)

    def _telemetry_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Telemetry submission failed: {error}")

    async def drain(self) -> None:
        """Wait for outstanding background telemetry (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


__all__ = [
    "AgentReply",
    "Authenticator",
    "SPECIALIZED_AGENTS",
    "StreamReply",
    "StreamingOrchestrator",
    "normalize_agent",
]
