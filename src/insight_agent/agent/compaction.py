"""
Conversation Compaction - shrinking history under context pressure.

When the model rejects a request because the prompt is too large, the
session compacts its history and retries once. Compaction keeps the start
of the conversation (initial instructions) and the most recent exchanges
verbatim, and strips the tool traffic from everything in between:

- tool messages in the middle range are dropped
- tool-call parts are removed from middle assistant messages
- an assistant message that only called tools becomes a one-line note
  naming those tools
- plain text messages are left as they are

Tool calls and their results dominate token usage (command output, report
trees), so this usually frees most of the budget while keeping the thread
of the conversation readable.
"""

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from .conversation import ConversationMessage

logger = structlog.get_logger()

# Approximate tokens per character (conservative estimate)
CHARS_PER_TOKEN = 4

DEFAULT_KEEP_FIRST = 2
DEFAULT_KEEP_LAST = 6


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    keep_first_n: int = DEFAULT_KEEP_FIRST
    keep_last_n: int = DEFAULT_KEEP_LAST
    enabled: bool = True


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    messages: list[ConversationMessage] = field(default_factory=list)
    original_message_count: int = 0
    compacted_message_count: int = 0
    tokens_saved_estimate: int = 0

    @property
    def changed(self) -> bool:
        return self.tokens_saved_estimate > 0 or (
            self.compacted_message_count != self.original_message_count
        )


def _part_size(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value)
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return len(str(value))


def estimate_tokens(messages: list[ConversationMessage]) -> int:
    """Estimate token count for a list of messages."""
    total_chars = 0
    for message in messages:
        total_chars += len(message.text)
        for call in message.tool_calls:
            total_chars += len(call.tool_name) + _part_size(call.args)
        for result in message.tool_results:
            total_chars += len(result.tool_name) + _part_size(result.result)
    # Add overhead for role markers and formatting
    overhead = len(messages) * 20
    return (total_chars + overhead) // CHARS_PER_TOKEN


def _summarize_tool_calls(message: ConversationMessage) -> str:
    names = list(dict.fromkeys(call.tool_name for call in message.tool_calls))
    return f"[Called tools: {', '.join(names)}]"


def _prune_message(message: ConversationMessage) -> ConversationMessage | None:
    """Strip tool traffic from a middle-range message, None to drop it."""
    if message.role == "tool":
        return None

    if message.role == "user":
        return message

    if isinstance(message.content, str):
        return message if message.content else None

    text = message.text
    if text:
        return ConversationMessage(role="assistant", content=text)
    if message.has_tool_calls:
        return ConversationMessage(role="assistant", content=_summarize_tool_calls(message))
    return None


def _widen_boundaries(
    messages: list[ConversationMessage],
    head_end: int,
    tail_start: int,
) -> tuple[int, int]:
    """Keep each tool message in the same range as the assistant that called it."""
    total = len(messages)
    while head_end < total and messages[head_end].role == "tool":
        head_end += 1
    while tail_start > head_end and tail_start < total and messages[tail_start].role == "tool":
        tail_start -= 1
    return head_end, tail_start


def compact_conversation(
    messages: list[ConversationMessage],
    config: CompactionConfig | None = None,
) -> CompactionResult:
    """Compact a conversation by pruning tool traffic from its middle range.

    Args:
        messages: Full message history (not modified)
        config: Compaction configuration

    Returns:
        CompactionResult whose messages are never longer than the input
    """
    config = config or CompactionConfig()
    original = list(messages)
    unchanged = CompactionResult(
        messages=original,
        original_message_count=len(original),
        compacted_message_count=len(original),
        tokens_saved_estimate=0,
    )

    if not config.enabled:
        return unchanged

    keep_first = max(0, config.keep_first_n)
    keep_last = max(0, config.keep_last_n)

    if len(original) <= keep_first + keep_last:
        return unchanged

    head_end, tail_start = _widen_boundaries(original, keep_first, len(original) - keep_last)
    if tail_start <= head_end:
        return unchanged

    head = original[:head_end]
    tail = original[tail_start:]

    middle: list[ConversationMessage] = []
    for message in original[head_end:tail_start]:
        pruned = _prune_message(message)
        if pruned is not None:
            middle.append(pruned)

    compacted = head + middle + tail
    tokens_saved = estimate_tokens(original) - estimate_tokens(compacted)

    result = CompactionResult(
        messages=compacted,
        original_message_count=len(original),
        compacted_message_count=len(compacted),
        tokens_saved_estimate=max(0, tokens_saved),
    )

    logger.info(
        "Compaction complete",
        original=result.original_message_count,
        compacted=result.compacted_message_count,
        tokens_saved=result.tokens_saved_estimate,
    )

    return result
