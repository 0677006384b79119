"""
Conversation history types for multi-turn agent sessions.

A history is a list of ConversationMessage. User messages carry plain text;
assistant messages carry text and/or tool-call parts; tool messages carry the
results of the calls made by the assistant message right before them.

The wire form (used by clients that manage their own history) is plain JSON
with camelCase keys, e.g.::

    {"role": "assistant", "content": [
        {"type": "tool-call", "toolCallId": "c1", "toolName": "bash", "args": {...}}
    ]}
"""

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal, Union

import structlog

from ..tools.report import REPORT_TOOL_NAME

logger = structlog.get_logger()

TRUNCATED_REPORT_PLACEHOLDER = "[Report content truncated to save tokens]"


@dataclass
class TextPart:
    """A text content part."""

    text: str
    type: Literal["text"] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolCallPart:
    """A tool call made by the assistant."""

    tool_call_id: str
    tool_name: str
    args: Any = None
    type: Literal["tool-call"] = "tool-call"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "args": self.args,
        }


@dataclass
class ToolResultPart:
    """The result of a tool call."""

    tool_call_id: str
    tool_name: str
    result: Any = None
    is_error: bool = False
    type: Literal["tool-result"] = "tool-result"

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": self.result,
        }
        if self.is_error:
            data["isError"] = True
        return data


ContentPart = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass
class ConversationMessage:
    """A message in the conversation history."""

    role: Literal["user", "assistant", "tool"]
    content: str | list[ContentPart] = field(default_factory=str)

    @property
    def text(self) -> str:
        """Concatenated text content, empty if there is none."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ToolResultPart)]

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [p.to_dict() for p in self.content]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationMessage":
        """Build a message from its wire form.

        Raises ValueError for an unknown role.
        """
        role = data.get("role")
        content = data.get("content", "")

        if role == "user":
            if isinstance(content, list):
                content = "".join(
                    str(p.get("text", "")) for p in content
                    if isinstance(p, dict) and p.get("type") == "text"
                )
            return cls(role="user", content=str(content or ""))

        if role == "assistant":
            if not isinstance(content, list):
                return cls(role="assistant", content=str(content or ""))
            parts: list[ContentPart] = []
            for part in content:
                if not isinstance(part, dict):
                    continue
                if part.get("type") == "text":
                    parts.append(TextPart(text=str(part.get("text", ""))))
                elif part.get("type") == "tool-call":
                    parts.append(ToolCallPart(
                        tool_call_id=str(part.get("toolCallId", "")),
                        tool_name=str(part.get("toolName", "")),
                        args=part.get("args"),
                    ))
            return cls(role="assistant", content=parts)

        if role == "tool":
            results: list[ContentPart] = [
                ToolResultPart(
                    tool_call_id=str(part.get("toolCallId", "")),
                    tool_name=str(part.get("toolName", "")),
                    result=part.get("result"),
                    is_error=bool(part.get("isError", False)),
                )
                for part in (content if isinstance(content, list) else [])
                if isinstance(part, dict) and part.get("type") == "tool-result"
            ]
            return cls(role="tool", content=results)

        raise ValueError(f"Unknown message role: {role!r}")


def create_user_message(content: str) -> ConversationMessage:
    return ConversationMessage(role="user", content=content)


def create_assistant_message(
    text: str = "",
    tool_calls: Iterable[ToolCallPart] = (),
) -> ConversationMessage:
    """Create an assistant message.

    Text-only messages use plain string content; messages with tool calls use
    parts (text first, then calls).
    """
    calls = list(tool_calls)
    if not calls:
        return ConversationMessage(role="assistant", content=text)

    parts: list[ContentPart] = []
    if text:
        parts.append(TextPart(text=text))
    parts.extend(calls)
    return ConversationMessage(role="assistant", content=parts)


def create_tool_message(results: Iterable[ToolResultPart]) -> ConversationMessage:
    return ConversationMessage(role="tool", content=list(results))


def from_wire_messages(items: Any) -> list[ConversationMessage]:
    """Convert client-provided history into ConversationMessages.

    Entries that are not objects or have an unknown role are skipped.
    """
    if not isinstance(items, list):
        return []

    messages = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            messages.append(ConversationMessage.from_dict(item))
        except ValueError:
            logger.debug("Skipping history entry", role=item.get("role"))
    return messages


def to_wire_messages(messages: Iterable[ConversationMessage]) -> list[dict[str, Any]]:
    return [m.to_dict() for m in messages]


def messages_from_steps(steps: Iterable[Any]) -> list[ConversationMessage]:
    """Convert finished agent steps into history messages.

    Each step yields one assistant message when it produced text or tool
    calls, followed by one tool message when it produced tool results.
    """
    messages: list[ConversationMessage] = []

    for step in steps or []:
        text = getattr(step, "text", "") or ""
        calls = [
            ToolCallPart(tool_call_id=c.tool_call_id, tool_name=c.tool_name, args=c.args)
            for c in getattr(step, "tool_calls", None) or []
        ]
        results = [
            ToolResultPart(
                tool_call_id=r.tool_call_id,
                tool_name=r.tool_name,
                result=r.result,
                is_error=getattr(r, "is_error", False),
            )
            for r in getattr(step, "tool_results", None) or []
        ]

        if text or calls:
            messages.append(create_assistant_message(text, calls))
        if results:
            messages.append(create_tool_message(results))

    return messages


def truncate_report_tool_calls(
    messages: Iterable[ConversationMessage],
) -> list[ConversationMessage]:
    """Replace generate_report arguments with a placeholder.

    Report trees are large and carry no useful context for later queries. The
    title is kept when present. The input messages are not modified.
    """
    truncated = []
    for message in messages:
        if message.role != "assistant" or isinstance(message.content, str):
            truncated.append(message)
            continue

        parts: list[ContentPart] = []
        for part in message.content:
            if isinstance(part, ToolCallPart) and part.tool_name == REPORT_TOOL_NAME:
                args: dict[str, Any] = {"content": TRUNCATED_REPORT_PLACEHOLDER}
                if isinstance(part.args, dict) and part.args.get("title"):
                    args["title"] = part.args["title"]
                part = replace(part, args=args)
            parts.append(part)
        truncated.append(replace(message, content=parts))
    return truncated
