"""Correlation IDs for request and background-event tracing."""

import time
import uuid
from contextvars import ContextVar, Token

# Accessible across awaits and inherited by background tasks
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


def to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


def new_error_id(prefix: str) -> str:
    """Short user-quotable error reference, e.g. "TG-lx3k9a2b".

    Logged next to the exception so support can find the failing event
    from what the candidate reports.
    """
    return f"{prefix}-{to_base36(int(time.time() * 1000))}"
