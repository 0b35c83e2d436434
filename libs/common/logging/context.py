"""Session ID context propagation for notebook logging.

Every notebook session (one loaded file, possibly rebuilt after a
cancellation) gets a session ID. The ID lives in a context variable so that
log records emitted from the scheduler, the broker client and the transfer
sender can be grouped per session, including from asyncio tasks spawned
inside the session.

Example:
    >>> from libs.common.logging.context import LogContext, get_session_id
    >>> with LogContext("nb-123"):
    ...     get_session_id()
    'nb-123'
"""

import contextvars
import uuid
from types import TracebackType

_session_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "notebook_session_id", default=None
)


def generate_session_id() -> str:
    """Generate a new session ID (UUID4 hex, 32 characters)."""
    return uuid.uuid4().hex


def get_session_id() -> str | None:
    """Return the session ID bound to the current context, if any."""
    return _session_id_var.get()


def set_session_id(session_id: str) -> None:
    """Bind a session ID to the current context.

    Args:
        session_id: The session ID to set

    Raises:
        ValueError: If session_id is empty
    """
    if not session_id:
        raise ValueError("Session ID cannot be empty")
    _session_id_var.set(session_id)


def clear_session_id() -> None:
    """Remove the session ID from the current context."""
    _session_id_var.set(None)


class LogContext:
    """Context manager for scoped session ID management.

    Sets a session ID for a block of code and restores the previous value on
    exit.

    Args:
        session_id: The session ID to set. If None, generates a new one.

    Example:
        >>> with LogContext() as session_id:
        ...     logger.info("bootstrap_started")  # carries session_id
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id or generate_session_id()
        self.previous_session_id: str | None = None

    def __enter__(self) -> str:
        self.previous_session_id = get_session_id()
        set_session_id(self.session_id)
        return self.session_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.previous_session_id is not None:
            set_session_id(self.previous_session_id)
        else:
            clear_session_id()
