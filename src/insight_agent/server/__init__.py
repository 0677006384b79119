"""WebSocket server, session registry and application factory."""

from .app import create_app
from .session import AgentSession, SessionManager
from .websocket import Connection, WebSocketServer

__all__ = ["create_app", "AgentSession", "SessionManager", "Connection", "WebSocketServer"]
