from typing import Callable, Dict, List, Optional
from dataclasses import dataclass, field
from fastapi import WebSocket
from starlette.websockets import WebSocketState
import asyncio
from datetime import datetime, timezone
import structlog

from .schema.events import BaseEvent
from memory_palace.domain.errors import SessionNotFound
from memory_palace.domain.orchestration.session_engine import SessionEngine, EventSink
from memory_palace.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

# Close code for "try again later"
CLOSE_TRY_AGAIN_LATER = 1013

EngineFactory = Callable[[str, EventSink], SessionEngine]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionHandle:
    """Everything the registry owns for one connection"""
    websocket: WebSocket
    engine: SessionEngine
    connected_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    turn_task: Optional[asyncio.Task] = None


class ConnectionManager:
    """Registry of live sessions: connection, engine and in-flight turn.

    Sessions are created on connect and evicted on disconnect or after
    ``idle_timeout_seconds`` without inbound activity.
    """

    def __init__(self, max_sessions: int = 100, idle_timeout_seconds: float = 1800.0):
        self.active_connections: Dict[str, SessionHandle] = {}
        self.max_sessions = max_sessions
        self.idle_timeout_seconds = idle_timeout_seconds
        self._lock = asyncio.Lock()

    async def connect(
        self,
        websocket: WebSocket,
        session_id: str,
        engine_factory: EngineFactory,
    ) -> Optional[SessionEngine]:
        """Accept a WebSocket and register a fresh engine for it.

        Returns None (after closing the socket) when the registry is full.
        """
        await websocket.accept()

        async with self._lock:
            if len(self.active_connections) >= self.max_sessions:
                engine = None
            else:
                engine = engine_factory(
                    session_id,
                    lambda event: self.send_event(session_id, event),
                )
                self.active_connections[session_id] = SessionHandle(websocket=websocket, engine=engine)

        if engine is None:
            logger.warning("Session limit reached, refusing connection", max_sessions=self.max_sessions)
            metrics.increment_counter("sessions.refused")
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Too many sessions")
            return None

        metrics.set_gauge("sessions.active", len(self.active_connections))
        logger.info("WebSocket connected", session_id=session_id)
        return engine

    async def disconnect(self, session_id: str):
        """Tear a session down: discard the engine, cancel its turn, close the socket"""
        async with self._lock:
            handle = self.active_connections.pop(session_id, None)

        if handle is None:
            return

        handle.engine.on_disconnect()
        if handle.turn_task and not handle.turn_task.done():
            handle.turn_task.cancel()

        if handle.websocket.client_state == WebSocketState.CONNECTED:
            try:
                await handle.websocket.close()
            except Exception as e:
                logger.error("Error closing WebSocket", session_id=session_id, error=str(e))

        metrics.set_gauge("sessions.active", len(self.active_connections))
        logger.info(
            "WebSocket disconnected",
            session_id=session_id,
            duration_seconds=round((_utcnow() - handle.connected_at).total_seconds(), 1),
        )

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        """Send an event to a specific session"""
        handle = self.active_connections.get(session_id)
        if handle is None:
            logger.warning("Attempted to send to disconnected session", session_id=session_id)
            return False

        try:
            await handle.websocket.send_json(event.to_wire())
            return True

        except Exception as e:
            # The receive loop notices the dead socket and tears the session down
            logger.error("Failed to send event", session_id=session_id, error=str(e))
            return False

    def get_engine(self, session_id: str) -> SessionEngine:
        handle = self.active_connections.get(session_id)
        if handle is None:
            raise SessionNotFound(session_id)
        return handle.engine

    def touch(self, session_id: str) -> None:
        handle = self.active_connections.get(session_id)
        if handle is not None:
            handle.last_activity = _utcnow()

    def start_turn(self, session_id: str, text: str) -> asyncio.Task:
        """Run ``on_user_message`` as its own task so the socket keeps reading"""
        handle = self.active_connections.get(session_id)
        if handle is None:
            raise SessionNotFound(session_id)

        task = asyncio.create_task(
            handle.engine.on_user_message(text),
            name=f"turn-{session_id}",
        )
        task.add_done_callback(lambda t: self._on_turn_done(session_id, t))
        # Later messages are rejected by the engine; keep tracking the live turn
        if handle.turn_task is None or handle.turn_task.done():
            handle.turn_task = task
        return task

    def _on_turn_done(self, session_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Turn cancelled", session_id=session_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Turn failed",
                session_id=session_id,
                error=str(exc),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def stop_conversation(self, session_id: str) -> None:
        """Stop the conversation and abandon any generation still in flight"""
        handle = self.active_connections.get(session_id)
        if handle is None:
            raise SessionNotFound(session_id)

        await handle.engine.on_stop()
        if handle.turn_task and not handle.turn_task.done():
            handle.turn_task.cancel()

    def get_active_sessions(self) -> List[str]:
        return list(self.active_connections.keys())

    async def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        """Disconnect sessions idle for longer than the timeout"""
        now = now or _utcnow()
        stale_sessions = [
            session_id
            for session_id, handle in list(self.active_connections.items())
            if (now - handle.last_activity).total_seconds() > self.idle_timeout_seconds
        ]

        for session_id in stale_sessions:
            logger.warning("Disconnecting idle session", session_id=session_id)
            metrics.increment_counter("sessions.evicted")
            await self.disconnect(session_id)

        return stale_sessions

    async def health_check(self, interval_seconds: float = 60.0):
        """Periodic sweep for idle sessions"""
        while True:
            try:
                await self.evict_idle()
            except Exception as e:
                logger.error("Health check error", error=str(e))

            await asyncio.sleep(interval_seconds)

    async def shutdown(self) -> None:
        for session_id in self.get_active_sessions():
            await self.disconnect(session_id)
