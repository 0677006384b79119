"""
Agent sessions for WebSocket clients.

An AgentSession owns one conversation: it runs queries through the agent,
streams text and tool events to the client, keeps the conversation history,
and recovers from context-limit failures by compacting history and retrying
once. The SessionManager maps sessions to ids and to the connections that
created them.

Sessions never touch sockets. Output goes through the async broadcast
callable they are constructed with.
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Hashable

import structlog

from ..agent.base import (
    AgentConfig,
    AgentFactory,
    BaseAgent,
    ExecutionMode,
    TextDelta,
    TextEnd,
    ToolCallEvent,
    ToolResultEvent,
    resolve,
)
from ..agent.compaction import CompactionConfig, compact_conversation
from ..agent.conversation import (
    ConversationMessage,
    create_user_message,
    from_wire_messages,
    messages_from_steps,
)
from ..agent.token_errors import classify_error, get_token_limit_error_description
from ..errors import AlreadyExecutingError, ContextLimitError
from ..tools.report import REPORT_TOOL_NAME, ReportCallback, create_report_tool
from .protocol import (
    context_compacted_message,
    done_message,
    error_message,
    report_message,
    text_message,
    tool_call_message,
    tool_result_message,
)

logger = structlog.get_logger()

BroadcastCallback = Callable[[dict[str, Any]], Awaitable[None]]

DEFAULT_MAX_STEPS = 25
STEP_SEPARATOR = "\n\n"


def _coerce_history(history: Any) -> list[ConversationMessage]:
    if not history:
        return []
    if all(isinstance(m, ConversationMessage) for m in history):
        return list(history)
    return from_wire_messages(list(history))


async def _close_stream(stream: AsyncIterator[Any]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class AgentSession:
    """Manages one client's conversation with the agent.

    States are Idle and Executing; only one query runs at a time. History is
    only mutated after a query fully succeeds.
    """

    def __init__(
        self,
        session_id: str,
        broadcast: BroadcastCallback,
        agent_factory: AgentFactory,
        mode: ExecutionMode | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        compaction_config: CompactionConfig | None = None,
    ):
        self._session_id = session_id
        self._broadcast = broadcast
        self._agent_factory = agent_factory
        self._mode = mode
        self.max_steps = max_steps
        self.compaction_config = compaction_config or CompactionConfig()

        self._agent: BaseAgent | None = None
        self._history: list[ConversationMessage] = []
        self._executing = False
        self._cancel_event: asyncio.Event | None = None

    @property
    def id(self) -> str:
        return self._session_id

    @property
    def executing(self) -> bool:
        """Whether a query is currently running."""
        return self._executing

    @property
    def history(self) -> list[ConversationMessage]:
        """A copy of the conversation history."""
        return list(self._history)

    async def _get_agent(self) -> BaseAgent:
        """Create the agent on first use, with the report tool attached."""
        if self._agent is None:
            config = AgentConfig(
                mode=self._mode,
                max_steps=self.max_steps,
                additional_tools={
                    REPORT_TOOL_NAME: create_report_tool(self.get_report_callback()),
                },
            )
            self._agent = await resolve(self._agent_factory(config))
            logger.info("Agent created", session_id=self.id)
        return self._agent

    async def _send(self, message: dict[str, Any]) -> None:
        await self._broadcast(message)

    async def send_report(self, content: Any, title: str | None = None) -> None:
        """Push a report to the client, independent of the text stream."""
        logger.debug("Sending report", session_id=self.id, title=title)
        await self._send(report_message(content, self.id))

    def get_report_callback(self) -> ReportCallback:
        """Callback for tools that want to push reports to this client."""
        return self.send_report

    async def execute_query(self, query: str, history: Any = None) -> None:
        """Run a query and stream the response to the client.

        Args:
            query: The user's query
            history: Optional client-managed history (ConversationMessages or
                their wire form). When non-empty it replaces the server-side
                history for this query and the server-side history is left
                untouched.
        """
        if self._executing:
            error = AlreadyExecutingError(self.id)
            logger.warning("Rejected concurrent query", session_id=self.id)
            await self._send(error_message(str(error), self.id))
            return

        self._executing = True
        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event

        client_history = _coerce_history(history)
        using_client_history = bool(client_history)
        history_to_use = client_history if using_client_history else list(self._history)

        logger.info(
            "Executing query",
            session_id=self.id,
            history_length=len(history_to_use),
            client_history=using_client_history,
        )

        # The closing done/error is sent once the session is Idle again
        final: dict[str, Any] | None = None
        try:
            try:
                new_messages = await self._attempt(query, history_to_use, cancel_event)
            except Exception as e:
                failure = classify_error(e)
                if cancel_event.is_set():
                    logger.info("Query failed after cancellation", session_id=self.id, error=str(failure))
                elif (
                    isinstance(failure, ContextLimitError)
                    and history_to_use
                    and self.compaction_config.enabled
                ):
                    final = await self._compact_and_retry(
                        query, history_to_use, failure, using_client_history, cancel_event
                    )
                else:
                    logger.error("Query failed", session_id=self.id, error=str(failure))
                    final = error_message(f"Query failed: {failure}", self.id)
            else:
                if new_messages is not None and not cancel_event.is_set():
                    if not using_client_history:
                        self._history.extend(new_messages)
                    final = done_message(self.id)
        finally:
            self._executing = False
            self._cancel_event = None

        if final is not None:
            await self._send(final)

    async def _compact_and_retry(
        self,
        query: str,
        history: list[ConversationMessage],
        failure: ContextLimitError,
        using_client_history: bool,
        cancel_event: asyncio.Event,
    ) -> dict[str, Any] | None:
        """Compact history and retry once.

        Returns the message that ends the query (done or error), or None if
        the query was cancelled.
        """
        compaction = compact_conversation(history, self.compaction_config)
        description = get_token_limit_error_description(failure)
        counts = (
            f"Conversation compacted from {compaction.original_message_count} "
            f"to {compaction.compacted_message_count} messages to fit model limits."
        )
        reason = f"{description} {counts}" if description else counts

        logger.warning(
            "Context limit exceeded, retrying with compacted history",
            session_id=self.id,
            error=str(failure),
            original=compaction.original_message_count,
            compacted=compaction.compacted_message_count,
        )
        await self._send(context_compacted_message(reason, self.id))

        try:
            new_messages = await self._attempt(query, compaction.messages, cancel_event)
        except Exception as e:
            if cancel_event.is_set():
                return None
            retry_failure = classify_error(e)
            logger.error("Query failed after compaction", session_id=self.id, error=str(retry_failure))
            return error_message(f"Query failed after compaction: {retry_failure}", self.id)

        if new_messages is None or cancel_event.is_set():
            return None

        if not using_client_history:
            self._history = compaction.messages + new_messages
        return done_message(self.id)

    async def _attempt(
        self,
        query: str,
        history: list[ConversationMessage],
        cancel_event: asyncio.Event,
    ) -> list[ConversationMessage] | None:
        """Run the agent once and forward its events.

        Returns the messages to append to history (user message first), or
        None if the query was cancelled. Raises whatever the agent raises.
        """
        agent = await self._get_agent()
        result = await agent.stream(query, messages=list(history))

        stream = result.full_stream
        last_step_had_text = False
        cancelled = False

        async for event in stream:
            if cancel_event.is_set():
                cancelled = True
                break

            if isinstance(event, TextDelta):
                if last_step_had_text and event.text.strip():
                    await self._send(text_message(STEP_SEPARATOR, self.id))
                    last_step_had_text = False
                await self._send(text_message(event.text, self.id))
            elif isinstance(event, ToolCallEvent):
                await self._send(tool_call_message(
                    event.tool_name,
                    event.args if event.args is not None else {},
                    self.id,
                ))
            elif isinstance(event, ToolResultEvent):
                await self._send(tool_result_message(event.tool_name, event.result, self.id))
            elif isinstance(event, TextEnd):
                last_step_had_text = True
            else:
                logger.debug("Ignoring stream event", session_id=self.id, event_type=type(event).__name__)

        if cancelled or cancel_event.is_set():
            await _close_stream(stream)
            return None

        await resolve(result.response)
        steps = await resolve(result.steps)
        return [create_user_message(query)] + messages_from_steps(steps)

    async def cancel(self) -> None:
        """Cancel the running query, if any.

        Cancellation is cooperative: the stream stops being consumed at the
        next event, and anything the agent produces afterwards is discarded.
        The client gets its done message right away.
        """
        if not self._executing or self._cancel_event is None:
            return
        if self._cancel_event.is_set():
            return

        self._cancel_event.set()
        logger.info("Query cancelled", session_id=self.id)
        await self._send(done_message(self.id))

    def clear_history(self) -> None:
        """Clear the conversation history."""
        self._history = []

    async def cleanup(self) -> None:
        """Cancel any running query and release the agent and history."""
        if self._cancel_event is not None:
            self._cancel_event.set()

        agent, self._agent = self._agent, None
        if agent is not None:
            try:
                await agent.cleanup()
            except Exception as e:
                logger.error("Agent cleanup failed", session_id=self.id, error=str(e))
        self._history = []


class SessionManager:
    """Maps session ids to AgentSessions and connections to session ids.

    A connection may open several sessions over its lifetime. The most recent
    one answers get_session_for_client; all of them are torn down when the
    connection goes away.
    """

    def __init__(
        self,
        agent_factory: AgentFactory,
        mode: ExecutionMode | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        compaction_config: CompactionConfig | None = None,
    ):
        self.agent_factory = agent_factory
        self.mode = mode
        self.max_steps = max_steps
        self.compaction_config = compaction_config or CompactionConfig()
        self._sessions: dict[str, AgentSession] = {}
        self._client_sessions: dict[Hashable, str] = {}
        self._client_session_ids: dict[Hashable, set[str]] = {}

    def get_or_create_session(
        self,
        connection: Hashable,
        session_id: str,
        broadcast: BroadcastCallback,
    ) -> AgentSession:
        """Get the session for session_id, creating it if needed."""
        session = self._sessions.get(session_id)

        if session is None:
            async def forward(message: dict[str, Any]) -> None:
                await broadcast(message)

            session = AgentSession(
                session_id=session_id,
                broadcast=forward,
                agent_factory=self.agent_factory,
                mode=self.mode,
                max_steps=self.max_steps,
                compaction_config=self.compaction_config,
            )
            self._sessions[session_id] = session
            logger.info("Created session", session_id=session_id)

        self._client_sessions[connection] = session_id
        self._client_session_ids.setdefault(connection, set()).add(session_id)
        return session

    def get_session_for_client(self, connection: Hashable) -> AgentSession | None:
        session_id = self._client_sessions.get(connection)
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def get_session(self, session_id: str) -> AgentSession | None:
        return self._sessions.get(session_id)

    async def remove_session(self, connection: Hashable) -> None:
        """Tear down every session a disconnected client used."""
        self._client_sessions.pop(connection, None)
        session_ids = self._client_session_ids.pop(connection, set())

        for session_id in sorted(session_ids):
            session = self._sessions.pop(session_id, None)
            for other, mapped_id in list(self._client_sessions.items()):
                if mapped_id == session_id:
                    del self._client_sessions[other]
            for ids in self._client_session_ids.values():
                ids.discard(session_id)

            if session is not None:
                await session.cleanup()
                logger.info("Removed session", session_id=session_id)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def cleanup(self) -> None:
        """Clean up all sessions."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._client_sessions.clear()
        self._client_session_ids.clear()
        for session in sessions:
            await session.cleanup()
        logger.info("All sessions cleaned up", count=len(sessions))
