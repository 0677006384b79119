"""
Wire protocol for the session WebSocket.

Every frame in both directions is a JSON envelope ``{"type": ..., "payload": {...}}``.
Inbound frames are parsed into ClientMessage; outbound messages are plain dicts
built with the helpers at the bottom of this module.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from ..errors import ProtocolError


class ClientMessageType(str, Enum):
    """Messages a client may send."""
    QUERY = "query"
    CANCEL = "cancel"


class ServerMessageType(str, Enum):
    """Messages the server sends."""
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    REPORT = "report"
    CONTEXT_COMPACTED = "context_compacted"
    ERROR = "error"
    DONE = "done"


class QueryPayload(BaseModel):
    """Payload of a query message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    content: StrictStr
    session_id: str | None = Field(default=None, alias="sessionId")
    history: list[Any] | None = None


class CancelPayload(BaseModel):
    """Payload of a cancel message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str | None = Field(default=None, alias="sessionId")


_PAYLOAD_MODELS: dict[ClientMessageType, type[BaseModel]] = {
    ClientMessageType.QUERY: QueryPayload,
    ClientMessageType.CANCEL: CancelPayload,
}


@dataclass
class ClientMessage:
    """A validated inbound envelope."""

    type: ClientMessageType
    payload: Union[QueryPayload, CancelPayload]


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg', 'invalid value')}"


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse and validate one inbound frame.

    Raises:
        ProtocolError: if the frame is not a valid client envelope
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError("Invalid message encoding: expected UTF-8 text")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e.msg}")

    if not isinstance(parsed, dict):
        raise ProtocolError("Invalid message structure: expected object")

    message_type = parsed.get("type")
    if not isinstance(message_type, str):
        raise ProtocolError("Invalid message structure: missing type field")

    try:
        client_type = ClientMessageType(message_type)
    except ValueError:
        raise ProtocolError(f"Unknown message type: {message_type}")

    if "payload" not in parsed:
        raise ProtocolError("Invalid message structure: missing payload field")
    payload = parsed["payload"]
    if not isinstance(payload, dict):
        raise ProtocolError("Invalid message structure: payload must be an object")

    try:
        model = _PAYLOAD_MODELS[client_type].model_validate(payload)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {message_type} payload: {_describe_validation_error(e)}")

    return ClientMessage(type=client_type, payload=model)  # type: ignore[arg-type]


# Outbound message builders


def _envelope(message_type: ServerMessageType, payload: dict[str, Any]) -> dict[str, Any]:
    return {"type": message_type.value, "payload": payload}


def text_message(content: str, session_id: str) -> dict[str, Any]:
    return _envelope(ServerMessageType.TEXT, {"content": content, "sessionId": session_id})


def tool_call_message(tool_name: str, args: Any, session_id: str) -> dict[str, Any]:
    return _envelope(
        ServerMessageType.TOOL_CALL,
        {"toolName": tool_name, "args": args, "sessionId": session_id},
    )


def tool_result_message(tool_name: str, result: Any, session_id: str) -> dict[str, Any]:
    return _envelope(
        ServerMessageType.TOOL_RESULT,
        {"toolName": tool_name, "result": result, "sessionId": session_id},
    )


def report_message(content: Any, session_id: str) -> dict[str, Any]:
    return _envelope(ServerMessageType.REPORT, {"content": content, "sessionId": session_id})


def context_compacted_message(reason: str, session_id: str) -> dict[str, Any]:
    return _envelope(
        ServerMessageType.CONTEXT_COMPACTED,
        {"sessionId": session_id, "reason": reason},
    )


def error_message(message: str, session_id: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"message": message}
    if session_id is not None:
        payload["sessionId"] = session_id
    return _envelope(ServerMessageType.ERROR, payload)


def done_message(session_id: str) -> dict[str, Any]:
    return _envelope(ServerMessageType.DONE, {"sessionId": session_id})
