"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_client_id: ContextVar[str] = ContextVar("client_id", default="")
_flow: ContextVar[str] = ContextVar("flow", default="")
_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def set_log_context(
    client_id: Optional[str] = None,
    flow: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> None:
    if client_id is not None:
        _client_id.set(client_id)
    if flow is not None:
        _flow.set(flow)
    if trace_id is not None:
        _trace_id.set(trace_id)


def get_log_context() -> Dict[str, str]:
    return {
        "client_id": _client_id.get(),
        "flow": _flow.get(),
        "trace_id": _trace_id.get(),
    }


def clear_log_context() -> None:
    _client_id.set("")
    _flow.set("")
    _trace_id.set("")


class LogContext:
    """
    Context manager for temporary log context.

    Usage:
        with LogContext(flow="login"):
            # All logs in this block carry flow=login
            await client.login(code)
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        flow: Optional[str] = None,
        trace_id: Optional[str] = None,
    ):
        self.new_context = {"client_id": client_id, "flow": flow, "trace_id": trace_id}
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        set_log_context(**self.new_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**self.old_context)
        return False
