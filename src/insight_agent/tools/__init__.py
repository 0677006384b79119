"""Tools the session hands to the agent."""

from .base import Tool, ToolResult
from .report import ReportArgs, create_report_tool, validate_report_content

__all__ = [
    "Tool",
    "ToolResult",
    "ReportArgs",
    "create_report_tool",
    "validate_report_content",
]
