from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from typing import Any, Dict, Optional
from pathlib import Path
import asyncio
import os
import random
import uuid
from datetime import datetime, timezone
import structlog

from .connection_manager import ConnectionManager
from .schema.events import UserMessage, StopConversation, parse_client_event
from memory_palace.domain.errors import SessionNotFound
from memory_palace.domain.orchestration.session_engine import SessionEngine, EngineConfig, EventSink
from memory_palace.infrastructure.config.settings import ENV_CONFIG_PATH, Settings, load_settings
from memory_palace.infrastructure.llm.chat_generator import TextGenerator, create_anthropic_generator
from memory_palace.infrastructure.observability.logging import setup_logging, metrics

logger = structlog.get_logger(__name__)


def build_engine_config(settings: Settings) -> EngineConfig:
    return EngineConfig(
        policy=settings.decay.to_policy(),
        max_context=settings.context.max_count,
        min_context_fade=settings.context.min_fade_level,
        preserved_fade_level=settings.session.preserved_fade_level,
        greeting=settings.session.greeting,
        system_framing=settings.session.system_framing,
        max_tokens=settings.model.max_tokens,
        generation_timeout_seconds=settings.session.generation_timeout_seconds,
        error_message=settings.session.error_message,
    )


def create_app(
    settings: Optional[Settings] = None,
    generator: Optional[TextGenerator] = None,
    rng_factory=random.Random,
) -> FastAPI:
    """Build the Memory Palace app.

    ``generator`` defaults to the Anthropic chat model from settings;
    ``rng_factory`` is called once per session to get its randomness source.
    """
    settings = settings or load_settings()
    setup_logging(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        service_name=settings.logging.service_name,
    )

    generator = generator or create_anthropic_generator(settings.model)
    engine_config = build_engine_config(settings)
    connection_manager = ConnectionManager(
        max_sessions=settings.server.max_sessions,
        idle_timeout_seconds=settings.server.idle_timeout_seconds,
    )

    app = FastAPI(title="Memory Palace")
    app.state.settings = settings
    app.state.connection_manager = connection_manager

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def engine_factory(session_id: str, emit: EventSink) -> SessionEngine:
        return SessionEngine(
            session_id=session_id,
            generator=generator,
            emit=emit,
            config=engine_config,
            rng=rng_factory(),
        )

    @app.on_event("startup")
    async def startup_event():
        """Start the idle-session sweep"""
        app.state.health_task = asyncio.create_task(
            connection_manager.health_check(settings.server.health_check_interval_seconds)
        )
        logger.info("Memory Palace server started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        task = getattr(app.state, "health_task", None)
        if task is not None:
            task.cancel()
        await connection_manager.shutdown()
        logger.info("Memory Palace server shutdown")

    @app.websocket("/ws")
    async def conversation_websocket(websocket: WebSocket):
        """One WebSocket per conversation; the session lives as long as the socket"""

        session_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(session_id=session_id)

        engine = await connection_manager.connect(websocket, session_id, engine_factory)
        if engine is None:
            structlog.contextvars.unbind_contextvars("session_id")
            return

        try:
            await engine.on_connect()

            # Main message loop
            while True:
                raw = await websocket.receive_text()
                connection_manager.touch(session_id)

                try:
                    event = parse_client_event(raw)
                except ValidationError as e:
                    logger.warning("Ignoring malformed client event", error_count=e.error_count())
                    continue

                await dispatch_client_event(session_id, event)

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=session_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), session_id=session_id)
        finally:
            await connection_manager.disconnect(session_id)
            structlog.contextvars.unbind_contextvars("session_id")

    async def dispatch_client_event(session_id: str, event: Any) -> None:
        """Map inbound client intents to engine calls"""
        try:
            if isinstance(event, UserMessage):
                connection_manager.start_turn(session_id, event.message)
            elif isinstance(event, StopConversation):
                await connection_manager.stop_conversation(session_id)
        except SessionNotFound:
            logger.info("Event for unknown session ignored", session_id=session_id)

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_sessions": len(connection_manager.active_connections),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/metrics")
    async def get_metrics() -> Dict[str, Any]:
        return metrics.get_metrics_summary()

    static_dir = settings.server.static_dir
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app


def main(argv=None) -> None:
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Run the Memory Palace server.")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config file")
    parser.add_argument("--host", type=str, default=None, help="Host to bind (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (overrides config)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    options = dict(
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        log_level=settings.logging.level.lower(),
    )

    if args.reload:
        # The reloader imports the factory in a fresh process; it finds the config through the env
        if args.config:
            os.environ[ENV_CONFIG_PATH] = args.config
        uvicorn.run(
            "memory_palace.application.websocket.ws_server:create_app",
            factory=True,
            reload=True,
            **options,
        )
    else:
        uvicorn.run(create_app(settings), **options)


if __name__ == "__main__":
    main()
