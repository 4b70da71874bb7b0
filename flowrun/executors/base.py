"""
Executor registry and execution context.

An executor is an async function ``(node, input, ctx) -> output`` registered
under one or more node type names:

    @executor("Merge")
    async def execute_merge(node, input_data, ctx):
        return {"success": True, "merged": True, "data": input_data, "mode": "merge"}

Unregistered types go to the default executor. ``ExecutorRegistry.execute``
never raises: a stray exception becomes an ``{"error", "success": False}``
output so the run can go on.
"""

import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from flowrun.config import EngineConfig
from flowrun.credentials import CredentialLookup, EnvCredentialLookup
from flowrun.graph.model import Node

logger = logging.getLogger(__name__)

USER_AGENT = "flowrun-Workflow-Automation/1.0"


@dataclass
class ExecutionContext:
    """Per-run facilities handed to executors."""

    workflow_id: str = ""
    run_id: str = ""
    config: EngineConfig = field(default_factory=EngineConfig)
    credentials: CredentialLookup = field(default_factory=EnvCredentialLookup)
    # Injected in tests (httpx.MockTransport)
    transport: httpx.AsyncBaseTransport | None = None

    def secret(self, name: str) -> str | None:
        """Opaque credential lookup; values are passed through untouched."""
        return self.credentials.get(name)

    def http_client(
        self,
        *,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        follow_redirects: bool = False,
        verify: bool = True,
    ) -> httpx.AsyncClient:
        total = timeout if timeout is not None else self.config.http_timeout
        connect = connect_timeout if connect_timeout is not None else min(total, self.config.http_connect_timeout)
        return httpx.AsyncClient(
            timeout=httpx.Timeout(total, connect=connect),
            follow_redirects=follow_redirects,
            max_redirects=self.config.http_max_redirects,
            verify=verify,
            transport=self.transport,
            headers={"User-Agent": USER_AGENT},
        )

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{self.config.timezone}', using UTC")
            return ZoneInfo("UTC")

    def now(self) -> datetime:
        return datetime.now(self.tz)


def timestamp() -> str:
    """Current UTC time as ISO-8601."""
    return datetime.now(UTC).isoformat()


ExecutorFunc = Callable[[Node, Any, ExecutionContext], Awaitable[Any]]


async def default_executor(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    """Fallback for node types nobody registered: echo input plus a stable value."""
    digest = hashlib.sha256(node.id.encode("utf-8")).hexdigest()
    return {
        "executed": True,
        "node_type": node.resolved_type,
        "timestamp": timestamp(),
        "input_data": input_data,
        "output_value": {"value": int(digest, 16) % 100 + 1},
    }


class ExecutorRegistry:
    """Maps node type names to executors."""

    def __init__(self, default: ExecutorFunc = default_executor):
        self._executors: dict[str, ExecutorFunc] = {}
        self.default = default

    def register(self, *node_types: str) -> Callable[[ExecutorFunc], ExecutorFunc]:
        """Decorator registering ``func`` for every name in ``node_types``."""

        def decorator(func: ExecutorFunc) -> ExecutorFunc:
            for node_type in node_types:
                if node_type in self._executors:
                    logger.debug(f"Replacing executor for '{node_type}'")
                self._executors[node_type] = func
            return func

        return decorator

    def get(self, node_type: str) -> ExecutorFunc:
        return self._executors.get(node_type, self.default)

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._executors

    def types(self) -> list[str]:
        return sorted(self._executors)

    async def execute(self, node: Node, input_data: Any, ctx: ExecutionContext) -> Any:
        """Run the executor for ``node``; exceptions come back as error output."""
        node_type = node.resolved_type
        func = self.get(node_type)
        try:
            return await func(node, input_data, ctx)
        except Exception as e:
            logger.warning(f"Executor for '{node_type}' raised on node '{node.id}': {e}", exc_info=True)
            return {"error": f"{node_type} execution failed: {e}", "success": False}


_registry = ExecutorRegistry()


def get_executor_registry() -> ExecutorRegistry:
    """The process-wide registry populated by ``flowrun.executors``."""
    return _registry


def executor(*node_types: str) -> Callable[[ExecutorFunc], ExecutorFunc]:
    """Register into the process-wide registry."""
    return _registry.register(*node_types)


def to_text(value: Any) -> str:
    """Strings as-is, anything else as JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)
