"""
Flow-control executors: IF, Switch, Merge, Split In Batches, Code.

Comparisons are loose the way workflow editors expect: ``"5" == 5`` is true,
numeric strings compare as numbers, and emptiness follows the usual
"falsy or ``"0"``" rule.
"""

import logging
from typing import Any

from flowrun.executors.base import ExecutionContext, executor, timestamp
from flowrun.graph.model import Node

logger = logging.getLogger(__name__)

IF_OPERATIONS = (
    "equal",
    "notEqual",
    "larger",
    "largerEqual",
    "smaller",
    "smallerEqual",
    "contains",
    "notContains",
    "isEmpty",
    "isNotEmpty",
)


# ---------------------------------------------------------------------------
# Loose comparison helpers
# ---------------------------------------------------------------------------


def is_empty(value: Any) -> bool:
    """Falsy, or the string ``"0"``."""
    return not value or value == "0"


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def loose_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return (not is_empty(a)) == (not is_empty(b))
    if a is None or b is None:
        other = b if a is None else a
        if isinstance(other, str):
            return other == ""
        return not other
    num_a, num_b = _as_number(a), _as_number(b)
    if num_a is not None and num_b is not None:
        return num_a == num_b
    if isinstance(a, str | int | float) and isinstance(b, str | int | float):
        return _as_text(a) == _as_text(b)
    return a == b


def _ordering_pair(a: Any, b: Any) -> tuple[Any, Any]:
    num_a, num_b = _as_number(a if a is not None else 0), _as_number(b if b is not None else 0)
    if num_a is not None and num_b is not None:
        return num_a, num_b
    return _as_text(a), _as_text(b)


def loose_compare(a: Any, b: Any) -> int:
    """-1, 0 or 1."""
    if loose_equal(a, b):
        return 0
    left, right = _ordering_pair(a, b)
    return -1 if left < right else 1


def evaluate_operation(value1: Any, operation: str, value2: Any) -> bool:
    """Evaluate ``value1 <operation> value2``; unknown operations test ``value1``."""
    match operation:
        case "equal":
            return loose_equal(value1, value2)
        case "notEqual":
            return not loose_equal(value1, value2)
        case "larger":
            return loose_compare(value1, value2) > 0
        case "largerEqual":
            return loose_compare(value1, value2) >= 0
        case "smaller":
            return loose_compare(value1, value2) < 0
        case "smallerEqual":
            return loose_compare(value1, value2) <= 0
        case "contains":
            return _as_text(value2) in _as_text(value1)
        case "notContains":
            return _as_text(value2) not in _as_text(value1)
        case "isEmpty":
            return is_empty(value1)
        case "isNotEmpty":
            return not is_empty(value1)
        case _:
            return not is_empty(value1)


def _truthiness_of_input(input_data: Any) -> bool:
    if isinstance(input_data, dict):
        if input_data.get("condition") is not None:
            return bool(input_data["condition"]) and input_data["condition"] != "0"
        if input_data.get("value") is not None:
            return loose_compare(input_data["value"], 0) > 0
    return not is_empty(input_data)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


@executor("IF")
async def execute_if(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    """
    Boolean branch. ``output_index`` 0 selects the true port, 1 the false port.

    Without ``value1`` the decision comes from the input: ``condition``,
    else ``value > 0``, else "input is non-empty".
    """
    value1 = node.param("value1")
    operation = node.param("operation", default="equal")
    value2 = node.param("value2")

    if value1 is None and not is_empty(input_data):
        result = _truthiness_of_input(input_data)
    else:
        result = evaluate_operation(value1, operation, value2)

    logger.debug(f"IF '{node.id}': {value1!r} {operation} {value2!r} -> {result}")
    return {
        "success": True,
        "result": result,
        "condition_met": result,
        "output_index": 0 if result else 1,
        "input_data": input_data,
    }


@executor("Switch")
async def execute_switch(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    """First matching rule wins; route 0 when nothing matches."""
    value = node.param("value", default=input_data)
    rules = node.param("rules", default=[])
    if isinstance(rules, dict):
        rules = list(rules.values())

    matched_route = 0
    for index, rule in enumerate(rules or []):
        if not isinstance(rule, dict):
            continue
        rule_value = rule.get("value")
        match rule.get("operation") or "equal":
            case "equal":
                matches = loose_equal(value, rule_value)
            case "notEqual":
                matches = not loose_equal(value, rule_value)
            case "contains":
                matches = _as_text(rule_value) in _as_text(value)
            case _:
                matches = False
        if matches:
            matched_route = index
            break

    return {
        "success": True,
        "matched_route": matched_route,
        "value": value,
        "input_data": input_data,
    }


@executor("Merge")
async def execute_merge(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    # Inputs were already combined into merged_inputs by the router
    return {"success": True, "merged": True, "data": input_data, "mode": "merge"}


@executor("Split In Batches")
async def execute_split_in_batches(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    raw_size = node.param("batchSize", default=10)
    try:
        batch_size = int(raw_size)
    except (TypeError, ValueError):
        return {"error": f"Invalid batch size: {raw_size!r}", "success": False}
    if batch_size < 1:
        return {"error": f"Batch size must be at least 1, got {batch_size}", "success": False}

    items = input_data if isinstance(input_data, list) else [input_data]

    batches = [items[i : i + batch_size] for i in range(0, len(items), batch_size)]
    return {
        "success": True,
        "total_items": len(items),
        "batch_size": batch_size,
        "total_batches": len(batches),
        "batches": batches,
    }


@executor("Code")
async def execute_code(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    """
    Placeholder for user code: the code is not evaluated.

    A dict input is passed on as a single item tagged ``processed_by_code``.
    """
    code = node.param("code")
    if not code:
        return {"error": "No code provided", "success": False}

    items = [input_data] if isinstance(input_data, dict) else []
    processed = [{**item, "processed_by_code": True, "timestamp": timestamp()} for item in items]
    return {"success": True, "items": processed, "code_executed": True}
