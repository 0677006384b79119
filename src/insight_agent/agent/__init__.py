"""
Agent module - conversation state around the external agent.

Includes:
- BaseAgent / AgentStream: the contract agent implementations follow
- ConversationMessage: in-memory conversation history
- Compaction: shrinking history after a context-limit failure
- Token errors: classifying context-limit failures
"""

from .base import (
    AgentConfig,
    AgentStep,
    AgentStream,
    BaseAgent,
    ExecutionMode,
    StepToolCall,
    StepToolResult,
    TextDelta,
    TextEnd,
    ToolCallEvent,
    ToolResultEvent,
)
from .compaction import CompactionConfig, CompactionResult, compact_conversation
from .conversation import ConversationMessage, TextPart, ToolCallPart, ToolResultPart
from .token_errors import classify_error, is_token_limit_error

__all__ = [
    "AgentConfig",
    "AgentStep",
    "AgentStream",
    "BaseAgent",
    "ExecutionMode",
    "StepToolCall",
    "StepToolResult",
    "TextDelta",
    "TextEnd",
    "ToolCallEvent",
    "ToolResultEvent",
    "CompactionConfig",
    "CompactionResult",
    "compact_conversation",
    "ConversationMessage",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "classify_error",
    "is_token_limit_error",
]
