from typing import Any, Awaitable, Callable, List, Optional
from dataclasses import dataclass, field
import asyncio
import random
import time
import structlog

from memory_palace.application.websocket.schema.events import (
    OutboundEvent, AIMessageEvent, UserMessageConfirmedEvent, FadeMessagesEvent,
    AIErrorEvent, ConversationStoppedEvent, ConversationStoppedPayload,
    MessagePayload, ErrorPayload,
)
from memory_palace.domain.context.context_selector import (
    select_context, DEFAULT_MAX_COUNT, DEFAULT_MIN_FADE_LEVEL
)
from memory_palace.domain.errors import GenerationError, InvalidInput
from memory_palace.domain.memory.conversation_state import ConversationState
from memory_palace.domain.memory.decay_policy import DecayPolicy, RandomSource
from memory_palace.domain.models.conversation import (
    ContextMessage, Message, Role, SessionStatus
)
from memory_palace.domain.orchestration.prompt import GREETING, SYSTEM_FRAMING
from memory_palace.infrastructure.llm.chat_generator import TextGenerator
from memory_palace.infrastructure.observability.logging import session_logger, metrics

logger = structlog.get_logger(__name__)

EventSink = Callable[[OutboundEvent], Awaitable[Any]]


@dataclass
class EngineConfig:
    """Knobs for one session engine"""
    policy: DecayPolicy = field(default_factory=DecayPolicy)
    max_context: int = DEFAULT_MAX_COUNT
    min_context_fade: float = DEFAULT_MIN_FADE_LEVEL
    # Stricter than min_context_fade: "clearly remembered" at the end
    preserved_fade_level: float = 0.3
    greeting: str = GREETING
    system_framing: str = SYSTEM_FRAMING
    max_tokens: int = 200
    generation_timeout_seconds: float = 30.0
    error_message: str = "I'm having trouble remembering... Please try again."


class SessionEngine:
    """Turn-taking state machine for one connected client.

    IDLE -> AWAITING_REPLY -> IDLE while the conversation runs, STOPPED once
    the user ends it or the connection goes away. Only one generation is ever
    outstanding; messages that arrive meanwhile are dropped.
    """

    def __init__(
        self,
        session_id: str,
        generator: TextGenerator,
        emit: EventSink,
        config: Optional[EngineConfig] = None,
        rng: Optional[RandomSource] = None,
    ):
        self.session_id = session_id
        self.generator = generator
        self.config = config or EngineConfig()
        self.rng = rng or random.Random()
        self.state = ConversationState(session_id)
        self.status = SessionStatus.IDLE
        self._emit = emit
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Inbound intents
    # ------------------------------------------------------------------

    async def on_connect(self) -> Message:
        """Seed the conversation with the assistant greeting"""

        greeting = self.state.append(Role.ASSISTANT, self.config.greeting)
        await self._emit(AIMessageEvent(payload=MessagePayload.from_message(greeting)))
        self._transition(SessionStatus.IDLE, "connected")
        session_logger.log_session_event("connected", self.session_id)
        return greeting

    async def on_user_message(self, text: str) -> bool:
        """Run one full turn. Returns False when the message was not accepted."""

        if self._closed or self.status == SessionStatus.STOPPED:
            logger.info("Ignoring message for finished session", session_id=self.session_id)
            return False

        if self.status != SessionStatus.IDLE:
            logger.warning("Turn already in progress, message dropped", session_id=self.session_id)
            metrics.increment_counter("turns.rejected")
            return False

        try:
            content = self._validate(text)
        except InvalidInput as e:
            logger.info("Ignoring invalid user message", session_id=self.session_id, reason=str(e))
            return False

        # Claim the turn before the first await so overlapping tasks see it
        self._transition(SessionStatus.AWAITING_REPLY, "user message accepted")
        try:
            await self._run_turn(content)
        finally:
            if self.status == SessionStatus.AWAITING_REPLY:
                self._transition(SessionStatus.IDLE, "turn finished")
        return True

    async def on_stop(self) -> Optional[ConversationStoppedPayload]:
        """End the conversation and report what is still clearly remembered"""

        if self._closed or self.status == SessionStatus.STOPPED:
            logger.info("Stop requested for finished session", session_id=self.session_id)
            return None

        messages = self.state.snapshot()
        payload = ConversationStoppedPayload(
            message_count=len(messages),
            preserved_messages=[
                m for m in messages if m.fade_level > self.config.preserved_fade_level
            ],
            memory_integrity=self.state.memory_integrity(),
        )
        self._transition(SessionStatus.STOPPED, "stopped by user")
        await self._emit(ConversationStoppedEvent(payload=payload))

        session_logger.log_session_event(
            "stopped",
            self.session_id,
            data={
                "message_count": payload.message_count,
                "preserved": len(payload.preserved_messages),
                "turns": self.state.turn_count,
            },
        )
        return payload

    def on_disconnect(self) -> None:
        """Discard the session. Any reply still in flight will be dropped."""

        if self._closed:
            return
        self._closed = True
        self._transition(SessionStatus.STOPPED, "disconnected")
        session_logger.log_session_event(
            "discarded",
            self.session_id,
            data={"message_count": len(self.state)},
        )

    # ------------------------------------------------------------------
    # Turn internals
    # ------------------------------------------------------------------

    async def _run_turn(self, content: str) -> None:
        user_message = self.state.append(Role.USER, content)
        await self._emit(UserMessageConfirmedEvent(payload=MessagePayload.from_message(user_message)))
        await self._decay()

        context = select_context(
            self.state.snapshot(),
            max_count=self.config.max_context,
            min_fade_level=self.config.min_context_fade,
        )

        try:
            reply = await self._generate(context)
        except GenerationError as e:
            if self._closed or self.status != SessionStatus.AWAITING_REPLY:
                return
            metrics.increment_counter("generation.failed")
            self._transition(SessionStatus.IDLE, "generation failed")
            await self._emit(AIErrorEvent(payload=ErrorPayload(message=self.config.error_message)))
            logger.warning("Turn ended without reply", session_id=self.session_id, error=str(e))
            return

        if self._closed or self.status != SessionStatus.AWAITING_REPLY:
            logger.info("Dropping reply for finished session", session_id=self.session_id)
            return

        assistant_message = self.state.append(Role.ASSISTANT, reply)
        metrics.increment_counter("turns.completed")
        await self._emit(AIMessageEvent(payload=MessagePayload.from_message(assistant_message)))
        await self._decay()

    async def _generate(self, context: List[ContextMessage]) -> str:
        started = time.perf_counter()
        try:
            reply = await asyncio.wait_for(
                self.generator.generate(
                    self.config.system_framing,
                    context,
                    self.config.max_tokens,
                ),
                timeout=self.config.generation_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            self._log_generation(context, started, error="timeout")
            raise GenerationError(
                f"Generation timed out after {self.config.generation_timeout_seconds}s"
            ) from e
        except GenerationError as e:
            self._log_generation(context, started, error=str(e))
            raise

        self._log_generation(context, started)
        return reply

    async def _decay(self) -> None:
        newest = self.state.newest_index
        updates = self.state.recompute_fades(newest, self.config.policy, self.rng)
        await self._emit(FadeMessagesEvent(payload=updates))

        session_logger.log_fade_pass(
            session_id=self.session_id,
            newest_index=newest,
            updated=len(updates),
            corrupted=sum(1 for u in updates if u.should_corrupt),
            memory_integrity=self.state.memory_integrity(),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate(self, text: Any) -> str:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("empty message")
        return text

    def _transition(self, to_state: SessionStatus, reason: str) -> None:
        from_state = self.status
        self.status = to_state
        session_logger.log_state_transition(
            self.session_id, from_state.value, to_state.value, reason
        )

    def _log_generation(self, context: List[ContextMessage], started: float, error: Optional[str] = None) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency("generation", duration_ms)
        session_logger.log_generation(
            session_id=self.session_id,
            context_size=len(context),
            duration_ms=round(duration_ms, 1),
            success=error is None,
            error=error,
        )

