"""
Error taxonomy for the session server.

- ProtocolError: malformed or unknown envelope, replied inline
- AlreadyExecutingError: a second query on a busy session
- ContextLimitError: the model's input budget was exceeded (retryable once)
- ExecutionError: any other agent failure
- TransportError: connection-level failure
"""


class InsightAgentError(Exception):
    """Base class for all session server errors."""


class ProtocolError(InsightAgentError):
    """An inbound envelope could not be parsed or validated."""


class AlreadyExecutingError(InsightAgentError):
    """A query arrived while the session was already executing one."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("A query is already being executed for this session")


class ExecutionError(InsightAgentError):
    """The agent failed for a reason other than its context limit."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class ContextLimitError(ExecutionError):
    """The agent rejected the request because the context was too large."""


class TransportError(InsightAgentError):
    """Sending to or receiving from a connection failed."""

    def __init__(self, message: str, connection_id: str | None = None):
        super().__init__(message)
        self.connection_id = connection_id
