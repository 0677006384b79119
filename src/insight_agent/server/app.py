"""
FastAPI application factory.

Wires the WebSocket transport to the session registry and manages the
lifecycle of:
- WebSocket connections
- Agent sessions and their running queries
- The execution mode shared by all agents
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI

from .. import __version__
from ..agent.base import AgentConfig, AgentFactory, BaseAgent, ExecutionMode
from ..agent.compaction import CompactionConfig
from ..config import Settings, get_settings, load_object
from ..errors import ExecutionError
from .protocol import ClientMessage, ClientMessageType, error_message
from .session import AgentSession, SessionManager
from .websocket import Connection, WebSocketServer

logger = structlog.get_logger()

SHUTDOWN_TIMEOUT_SECONDS = 3.0


def _unconfigured_agent_factory(config: AgentConfig) -> BaseAgent:
    raise ExecutionError(
        "No agent factory configured. Set AGENT_FACTORY to 'module:callable'."
    )


def _resolve_agent_factory(settings: Settings) -> AgentFactory:
    if not settings.agent_factory:
        logger.warning("No agent factory configured, queries will fail")
        return _unconfigured_agent_factory
    return load_object(settings.agent_factory)


def _resolve_execution_mode(settings: Settings) -> ExecutionMode | None:
    if not settings.execution_mode:
        return None
    return load_object(settings.execution_mode)()


def new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


async def _run_query(
    ws_server: WebSocketServer,
    connection: Connection,
    session: AgentSession,
    content: str,
    history: list[Any] | None,
) -> None:
    """Run a query task; nothing it raises may escape the event loop."""
    try:
        await session.execute_query(content, history=history)
    except Exception as e:
        logger.error("Error executing query", session_id=session.id, error=str(e), exc_info=True)
        await ws_server.send_to_client(
            connection,
            error_message(str(e) or "An error occurred while executing the query", session.id),
        )


def create_app(
    settings: Settings | None = None,
    agent_factory: AgentFactory | None = None,
    mode: ExecutionMode | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    if agent_factory is None:
        agent_factory = _resolve_agent_factory(settings)
    if mode is None:
        mode = _resolve_execution_mode(settings)

    sessions = SessionManager(
        agent_factory=agent_factory,
        mode=mode,
        max_steps=settings.max_steps,
        compaction_config=CompactionConfig(
            keep_first_n=settings.compaction_keep_first,
            keep_last_n=settings.compaction_keep_last,
            enabled=settings.compaction_enabled,
        ),
    )
    query_tasks: set[asyncio.Task] = set()

    async def on_message(message: ClientMessage, connection: Connection) -> None:
        if message.type == ClientMessageType.QUERY:
            payload = message.payload
            session = None if payload.session_id else sessions.get_session_for_client(connection)

            if session is None:
                async def deliver(msg: dict[str, Any]) -> None:
                    await ws_server.send_to_client(connection, msg)

                session_id = payload.session_id or new_session_id()
                session = sessions.get_or_create_session(connection, session_id, deliver)

            # Run in the background so this connection can still send cancel
            task = asyncio.create_task(
                _run_query(ws_server, connection, session, payload.content, payload.history)
            )
            query_tasks.add(task)
            task.add_done_callback(query_tasks.discard)

        elif message.type == ClientMessageType.CANCEL:
            session_id = message.payload.session_id
            if session_id:
                session = sessions.get_session(session_id)
            else:
                session = sessions.get_session_for_client(connection)
            if session is not None:
                await session.cancel()

    async def on_disconnection(connection: Connection, code: int, reason: str) -> None:
        await sessions.remove_session(connection)

    def on_error(error: Exception, connection: Connection | None) -> None:
        logger.warning(
            "Transport error",
            error=str(error),
            connection_id=connection.id if connection else None,
        )

    ws_server = WebSocketServer(
        path=settings.ws_path,
        on_message=on_message,
        on_disconnection=on_disconnection,
        on_error=on_error,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        logger.info("Session server started", ws_path=settings.ws_path)

        yield

        # Shutdown
        await ws_server.close()
        await sessions.cleanup()

        if query_tasks:
            _, pending = await asyncio.wait(list(query_tasks), timeout=SHUTDOWN_TIMEOUT_SECONDS)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Shutdown timeout reached, cancelled queries", count=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        if mode is not None:
            try:
                await mode.cleanup()
            except Exception as e:
                logger.error("Execution mode cleanup failed", error=str(e))

        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Real-time agent session server",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sessions = sessions
    app.state.ws_server = ws_server

    ws_server.attach(app)

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "ws_path": settings.ws_path,
            "clients": ws_server.client_count,
            "sessions": sessions.session_count,
        }

    return app
