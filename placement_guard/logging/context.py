"""Context propagation for structured logging.

Fields pushed here (run_id, introduction_id, check_in_id, flag_id ...) are added
to every log record emitted inside the scope. Context lives in a ContextVar, so
work handed to a thread pool must be wrapped with ``bind_log_context`` to keep
the submitting scope's fields.
"""

import contextvars
from contextvars import ContextVar, Token
from typing import Any, Callable, Dict, Optional, TypeVar

T = TypeVar("T")

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Returns:
        Token to pass to ``pop_log_context`` to restore the previous state

    Example:
        >>> token = push_log_context(run_id="abc123", introduction_id="intro-1")
        >>> pop_log_context(token)
    """
    current = LogContextVar.get()
    return LogContextVar.set({**current, **kwargs})


def pop_log_context(token: Token) -> None:
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Clear all logging context fields (used by tests)."""
    LogContextVar.set({})


def bind_log_context(func: Callable[..., T]) -> Callable[..., T]:
    """Wrap ``func`` so it runs with a snapshot of the caller's context.

    Example:
        >>> with log_context(run_id="abc123"):
        ...     executor.submit(bind_log_context(send_one), check_in)
    """
    ctx = contextvars.copy_context()

    def runner(*args, **kwargs):
        return ctx.copy().run(func, *args, **kwargs)

    return runner


class log_context:
    """Context manager for scoped logging context.

    Example:
        >>> with log_context(run_id="abc123", job="check-ins"):
        ...     logger.info("Dispatching")  # includes run_id and job
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False
