"""
Node executors.

Importing this package registers every built-in executor in the
process-wide registry returned by ``get_executor_registry()``.
"""

from flowrun.executors import http_request, integrations, logic, notifiers, triggers, utility  # noqa: F401
from flowrun.executors.base import (
    ExecutionContext,
    ExecutorRegistry,
    default_executor,
    executor,
    get_executor_registry,
)

__all__ = [
    "ExecutionContext",
    "ExecutorRegistry",
    "default_executor",
    "executor",
    "get_executor_registry",
]
