"""
Structured logging module.

Provides JSON logging with credential redaction and context propagation.
"""

from spid_client.logging.context import (
    LogContext,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from spid_client.logging.formatters import ConsoleFormatter, JSONFormatter
from spid_client.logging.setup import generate_trace_id, get_log_file_path, setup_logging

__all__ = [
    # Setup
    "setup_logging",
    "get_log_file_path",
    "generate_trace_id",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "LogContext",
]
