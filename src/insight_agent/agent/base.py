"""
Base classes for the agent collaborator.

The model call itself lives outside this package. An agent implementation
receives the query plus prior history and returns an AgentStream: an async
iterator of stream events, plus awaitables for the final response and the
finished steps.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from ..tools.base import Tool
from .conversation import ConversationMessage


# Stream events


@dataclass
class TextDelta:
    """A chunk of generated text."""

    text: str


@dataclass
class TextEnd:
    """A text block finished."""


@dataclass
class ToolCallEvent:
    """The model called a tool (sent before the tool runs)."""

    tool_call_id: str
    tool_name: str
    args: Any = None


@dataclass
class ToolResultEvent:
    """A tool finished running."""

    tool_call_id: str
    tool_name: str
    result: Any = None
    is_error: bool = False


StreamEvent = Union[TextDelta, TextEnd, ToolCallEvent, ToolResultEvent]


# Finished steps


@dataclass
class StepToolCall:
    tool_call_id: str
    tool_name: str
    args: Any = None


@dataclass
class StepToolResult:
    tool_call_id: str
    tool_name: str
    result: Any = None
    is_error: bool = False


@dataclass
class AgentStep:
    """One model round trip: its text and the tools it used."""

    text: str = ""
    tool_calls: list[StepToolCall] = field(default_factory=list)
    tool_results: list[StepToolResult] = field(default_factory=list)


@dataclass
class AgentStream:
    """Result of starting an agent run.

    ``response`` and ``steps`` may be plain values or awaitables; they are
    only resolved after ``full_stream`` is exhausted.
    """

    full_stream: AsyncIterator[Any]
    response: Any = None
    steps: Any = field(default_factory=list)


async def resolve(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it."""
    if inspect.isawaitable(value):
        return await value
    return value


class ExecutionMode(ABC):
    """Where the agent's bash tool runs (sandbox or local shell)."""

    @abstractmethod
    async def get_bash_tool(self) -> Any:
        """Get the bash tool for the agent."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release the execution environment."""
        pass


@dataclass
class AgentConfig:
    """What a session hands to the agent factory."""

    mode: ExecutionMode | None = None
    max_steps: int = 25
    additional_tools: dict[str, Tool] = field(default_factory=dict)


class BaseAgent(ABC):
    """Base class for agent implementations."""

    @abstractmethod
    async def stream(
        self,
        query: str,
        messages: list[ConversationMessage],
        on_step_finish: Callable[[AgentStep], Any] | None = None,
    ) -> AgentStream:
        """Start an agent run for query on top of messages."""
        pass

    async def cleanup(self) -> None:
        """Release resources held by the agent."""
        return None


AgentFactory = Callable[[AgentConfig], Union[BaseAgent, Awaitable[BaseAgent]]]
