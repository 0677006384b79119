"""
Tools a session hands to the agent next to the agent's own tools.

A tool is a pydantic model describing its arguments plus an async handler.
Agent implementations advertise ``input_schema()`` to the model and call
``execute()`` with whatever arguments the model produced; arguments that do
not fit the model come back as a failed ToolResult instead of raising.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError


@dataclass
class ToolResult:
    """Outcome of a tool call, reported back to the model."""

    success: bool
    output: str = ""
    error: str | None = None

    def to_text(self) -> str:
        return self.output if self.success else f"Error: {self.error}"


@dataclass
class Tool:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[ToolResult]]

    def input_schema(self) -> dict[str, Any]:
        """JSON Schema of the arguments."""
        return self.args_model.model_json_schema()

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.args_model.model_validate(kwargs)
        except ValidationError as e:
            return ToolResult(success=False, error=f"Invalid arguments for {self.name}: {e}")
        return await self.handler(args)
