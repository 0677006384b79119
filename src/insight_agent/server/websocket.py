"""
WebSocket Transport - holds client connections and speaks the wire protocol.

This transport is a pure connection handler. It:
  1. Registers a WebSocket route on an existing FastAPI app
  2. Parses and validates every inbound frame
  3. Replies with an error envelope to malformed frames (the connection stays open)
  4. Hands valid messages to the on_message callback
  5. Serializes outbound messages back to clients

It does not know about sessions or agents; the app wires those in through
the callbacks.
"""

import inspect
import json
import uuid
from typing import Any, Awaitable, Callable, Union

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..errors import ProtocolError, TransportError
from .protocol import ClientMessage, error_message, parse_client_message

logger = structlog.get_logger()

DEFAULT_PATH = "/ws"
NORMAL_CLOSURE = 1000
NO_STATUS_RECEIVED = 1005
SHUTDOWN_REASON = "Server shutting down"

MessageHandler = Callable[[ClientMessage, "Connection"], Union[None, Awaitable[None]]]
ConnectionHandler = Callable[["Connection"], Union[None, Awaitable[None]]]
DisconnectionHandler = Callable[["Connection", int, str], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[Exception, Union["Connection", None]], Union[None, Awaitable[None]]]


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Connection:
    """One open client socket.

    Connections compare by identity, so they can key the session registry.
    """

    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex[:8]
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message, default=str))

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if not self.is_open:
            self._closed = True
            return
        self._closed = True
        await self.websocket.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r})"


class WebSocketServer:
    """WebSocket endpoint with typed message handling and connection tracking."""

    def __init__(
        self,
        path: str = DEFAULT_PATH,
        on_message: MessageHandler | None = None,
        on_connection: ConnectionHandler | None = None,
        on_disconnection: DisconnectionHandler | None = None,
        on_error: ErrorHandler | None = None,
    ):
        self.path = path
        self.on_message = on_message
        self.on_connection = on_connection
        self.on_disconnection = on_disconnection
        self.on_error = on_error

        self._clients: set[Connection] = set()
        self._attached = False
        self._closed = False

    def attach(self, app: FastAPI) -> None:
        """Register the endpoint on app. Other paths never reach this server."""
        if self._attached:
            raise RuntimeError("WebSocket server is already attached")
        app.add_api_websocket_route(self.path, self.handle_connection)
        self._attached = True
        logger.info("WebSocket endpoint attached", path=self.path)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def get_clients(self) -> set[Connection]:
        return set(self._clients)

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Accept a client and run its receive loop until it disconnects."""
        if self._closed:
            await websocket.close(code=NORMAL_CLOSURE, reason=SHUTDOWN_REASON)
            return

        await websocket.accept()
        connection = Connection(websocket)
        self._clients.add(connection)
        logger.info("Client connected", connection_id=connection.id, clients=self.client_count)

        code, reason = NO_STATUS_RECEIVED, ""
        try:
            await _invoke(self.on_connection, connection)
            code, reason = await self._receive_loop(connection)
        except WebSocketDisconnect as e:
            code, reason = e.code, e.reason or ""
        except Exception as e:
            error = TransportError(f"Connection failed: {e}", connection.id)
            logger.error("WebSocket error", connection_id=connection.id, error=str(e), exc_info=True)
            await _invoke(self.on_error, error, connection)
            await connection.close(NORMAL_CLOSURE, "Connection error")
        finally:
            connection.mark_closed()
            self._clients.discard(connection)
            logger.info("Client disconnected", connection_id=connection.id, code=code, reason=reason)
            await _invoke(self.on_disconnection, connection, code, reason)

    async def _receive_loop(self, connection: Connection) -> tuple[int, str]:
        websocket = connection.websocket
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                return frame.get("code", NO_STATUS_RECEIVED), frame.get("reason") or ""

            data = frame.get("text")
            if data is None:
                data = frame.get("bytes") or b""
            await self._handle_frame(data, connection)

    async def _handle_frame(self, data: str | bytes, connection: Connection) -> None:
        """Parse one frame; reply inline on protocol errors."""
        try:
            message = parse_client_message(data)
        except ProtocolError as e:
            logger.warning("Rejected client message", connection_id=connection.id, error=str(e))
            await self.send_to_client(connection, error_message(str(e)))
            return

        logger.debug("Client message", connection_id=connection.id, type=message.type.value)
        try:
            await _invoke(self.on_message, message, connection)
        except Exception as e:
            logger.error("Message handler error", connection_id=connection.id, error=str(e), exc_info=True)
            await self.send_to_client(connection, error_message(str(e) or "Failed to handle message"))

    async def send_to_client(self, connection: Connection, message: dict[str, Any]) -> None:
        """Send a message to one client; no-op if it is not open."""
        if not connection.is_open:
            return
        try:
            await connection.send_json(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            connection.mark_closed()
            error = TransportError(f"Failed to send to client: {e}", connection.id)
            logger.warning("Send failed", connection_id=connection.id, error=str(e))
            await _invoke(self.on_error, error, connection)

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a message to every open client."""
        for connection in list(self._clients):
            await self.send_to_client(connection, message)

    async def close(self) -> None:
        """Close every client connection with a normal status."""
        if not self._attached or self._closed:
            return
        self._closed = True

        for connection in list(self._clients):
            try:
                await connection.close(NORMAL_CLOSURE, SHUTDOWN_REASON)
            except (RuntimeError, OSError) as e:
                logger.debug("Close failed", connection_id=connection.id, error=str(e))
        self._clients.clear()
        logger.info("WebSocket server closed")
