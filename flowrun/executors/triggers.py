"""Trigger nodes: the entry points of a workflow. They ignore their input."""

from typing import Any

from flowrun.executors.base import ExecutionContext, executor, timestamp
from flowrun.graph.model import Node

TRIGGER_TYPES = ("Start", "Webhook", "Manual Trigger", "Schedule Trigger")


@executor(*TRIGGER_TYPES)
async def execute_trigger(node: Node, input_data: Any, ctx: ExecutionContext) -> dict[str, Any]:
    return {
        "triggered": True,
        "type": node.resolved_type,
        "timestamp": timestamp(),
        "workflow_id": ctx.workflow_id,
    }
