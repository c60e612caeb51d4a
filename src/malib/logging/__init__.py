"""Logging setup for malib."""

from malib.logging.config import configure_logging
from malib.logging.context import (
    OperationContextFilter,
    get_operation_context,
    operation_context,
)
from malib.logging.handlers import JSONFormatter

__all__ = [
    "configure_logging",
    "JSONFormatter",
    "OperationContextFilter",
    "get_operation_context",
    "operation_context",
]
