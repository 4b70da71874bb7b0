"""Small pure transforms: Date & Time, Set, JSON, Crypto and friends."""

import hashlib
import json
from typing import Any

from flowrun.executors.base import ExecutionContext, executor
from flowrun.graph.model import Node


def json_type(value: Any) -> str:
    """JSON type name of a value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    return "object"


@executor("Date & Time")
async def execute_date_time(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    now = ctx.now()
    return {
        "success": True,
        "current_time": now.isoformat(),
        "timestamp": int(now.timestamp()),
        "formatted": now.strftime("%Y-%m-%d %H:%M:%S"),
        "timezone": str(ctx.tz),
    }


@executor("Set")
async def execute_set(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    return {"success": True, "values_set": dict(node.config), "input_data": input_data}


@executor("JSON")
async def execute_json(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    parsed = input_data
    if isinstance(input_data, str):
        try:
            parsed = json.loads(input_data)
        except ValueError:
            parsed = input_data
    return {"success": True, "parsed": parsed, "type": json_type(parsed)}


@executor("Crypto")
async def execute_crypto(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    # Compact, key-order-preserving encoding so equal inputs hash equally
    encoded = json.dumps(input_data, separators=(",", ":"), ensure_ascii=False, default=str)
    return {
        "success": True,
        "operation": "hash",
        "result": hashlib.sha256(encoded.encode("utf-8")).hexdigest(),
    }


@executor("Function", "XML", "HTML Extract", "Compression")
async def execute_passthrough_utility(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    return {"success": True, "utility": node.resolved_type, "processed": True, "data": input_data}
