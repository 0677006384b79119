"""
Shared fixtures: a scripted agent and a message recorder.
"""

import asyncio
from typing import Any

import pytest

from insight_agent.agent.base import (
    AgentConfig,
    AgentStep,
    AgentStream,
    BaseAgent,
    StepToolCall,
    StepToolResult,
    TextDelta,
    TextEnd,
    ToolCallEvent,
    ToolResultEvent,
)


class ScriptedRun:
    """What one agent.stream() call does."""

    def __init__(
        self,
        events: list[Any] | None = None,
        steps: list[AgentStep] | None = None,
        error: Exception | None = None,
        raise_on_stream: bool = False,
        gate: asyncio.Event | None = None,
    ):
        self.events = events if events is not None else []
        self.steps = steps if steps is not None else []
        self.error = error
        self.raise_on_stream = raise_on_stream
        # When set, the stream waits on the gate after its first event
        self.gate = gate


def text_run(text: str = "Hello!") -> ScriptedRun:
    return ScriptedRun(
        events=[TextDelta(text), TextEnd()],
        steps=[AgentStep(text=text)],
    )


def tool_run(
    tool_name: str = "bash",
    args: Any = None,
    result: Any = "ok",
    text: str = "Done.",
    call_id: str = "call-1",
) -> ScriptedRun:
    args = args if args is not None else {"command": "ls"}
    return ScriptedRun(
        events=[
            ToolCallEvent(call_id, tool_name, args),
            ToolResultEvent(call_id, tool_name, result),
            TextDelta(text),
            TextEnd(),
        ],
        steps=[
            AgentStep(
                text=text,
                tool_calls=[StepToolCall(call_id, tool_name, args)],
                tool_results=[StepToolResult(call_id, tool_name, result)],
            )
        ],
    )


def error_run(error: Exception, raise_on_stream: bool = True) -> ScriptedRun:
    return ScriptedRun(error=error, raise_on_stream=raise_on_stream)


class ScriptedAgent(BaseAgent):
    """Agent that plays back ScriptedRuns and records its calls."""

    def __init__(self, runs: list[ScriptedRun] | None = None):
        self.runs = list(runs or [])
        self.calls: list[tuple[str, list]] = []

    async def stream(self, query, messages, on_step_finish=None):
        self.calls.append((query, list(messages)))
        run = self.runs.pop(0) if self.runs else text_run()

        if run.error is not None and run.raise_on_stream:
            raise run.error

        async def events():
            for index, event in enumerate(run.events):
                yield event
                if index == 0 and run.gate is not None:
                    await run.gate.wait()
            if run.error is not None:
                raise run.error

        async def response():
            return {"ok": True}

        return AgentStream(full_stream=events(), response=response(), steps=run.steps)


class AgentFactoryStub:
    """Agent factory that hands out one agent and remembers the configs."""

    def __init__(self, agent: BaseAgent):
        self.agent = agent
        self.configs: list[AgentConfig] = []

    def __call__(self, config: AgentConfig) -> BaseAgent:
        self.configs.append(config)
        return self.agent


class Recorder:
    """Async broadcast callable that keeps every message."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == message_type]


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() is true."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
