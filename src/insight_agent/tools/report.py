"""
Report generation tool.

Lets the agent push a structured report to the client, separate from its
text answer. A report is a flat UI tree::

    {
        "root": "card-1",
        "elements": {
            "card-1": {"key": "card-1", "type": "Card", "props": {...}, "children": ["t-1"]},
            "t-1": {"key": "t-1", "type": "Text", "props": {...}, "parentKey": "card-1"}
        }
    }
"""

import inspect
from typing import Any, Awaitable, Callable, Literal, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from .base import Tool, ToolResult

logger = structlog.get_logger()

REPORT_TOOL_NAME = "generate_report"

ComponentType = Literal[
    "Card",
    "Chart",
    "Text",
    "Heading",
    "List",
    "Table",
    "Metric",
    "Badge",
    "Alert",
    "Separator",
    "Code",
]

ReportCallback = Callable[[dict[str, Any], Union[str, None]], Union[None, Awaitable[None]]]


class UIElement(BaseModel):
    """One node of the report tree."""

    key: str
    type: ComponentType
    props: dict[str, Any] = Field(default_factory=dict)
    children: list[str] | None = None
    parentKey: str | None = None


class UITree(BaseModel):
    """A report: a root key plus all elements by key."""

    root: str
    elements: dict[str, UIElement]


class ReportArgs(BaseModel):
    """Arguments of the generate_report tool."""

    content: Any = Field(
        description="UI tree with 'root' (element key) and 'elements' (key -> element)",
    )
    title: str | None = Field(default=None, description="Optional report title")


def validate_report_content(content: Any) -> tuple[bool, str | None]:
    """Validate a report tree.

    Returns (True, None) when valid, (False, reason) otherwise.
    """
    try:
        tree = UITree.model_validate(content)
    except ValidationError as e:
        return False, f"Invalid tree structure: {e}"

    if tree.root not in tree.elements:
        return False, f'Root element "{tree.root}" not found in elements'

    for key, element in tree.elements.items():
        for child_key in element.children or []:
            if child_key not in tree.elements:
                return False, f'Child element "{child_key}" not found for parent "{key}"'
        if element.parentKey and element.parentKey not in tree.elements:
            return False, f'Parent element "{element.parentKey}" not found for element "{key}"'

    return True, None


def create_report_tool(callback: ReportCallback) -> Tool:
    """Create the generate_report tool bound to a report callback."""

    async def generate_report(args: ReportArgs) -> ToolResult:
        ok, error = validate_report_content(args.content)
        if not ok:
            logger.warning("Rejected report", error=error)
            return ToolResult(success=False, error=error)

        delivered = callback(args.content, args.title)
        if inspect.isawaitable(delivered):
            await delivered
        return ToolResult(
            success=True,
            output=f"Report generated{f': {args.title}' if args.title else ''}",
        )

    return Tool(
        name=REPORT_TOOL_NAME,
        description=(
            "Generate a structured report to display in the UI. Use this to present "
            "findings as cards, tables, metrics and charts alongside the text answer."
        ),
        args_model=ReportArgs,
        handler=generate_report,
    )
