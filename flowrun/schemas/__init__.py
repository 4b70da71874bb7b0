"""Schema definitions for runs and workflow versions."""

from flowrun.schemas.run import NodeResult, NodeStatus, Run, RunStatus, WorkflowVersion

__all__ = ["NodeResult", "NodeStatus", "Run", "RunStatus", "WorkflowVersion"]
