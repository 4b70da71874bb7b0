"""
Run Schema - one execution of a workflow version.

A Run owns a frozen copy of the graph it executes and a map of per-node
results. It is created ``running`` and mutated incrementally, one write per
node state transition, until it becomes ``success`` or ``failed``.
"""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_run_id() -> str:
    return f"run_{utc_now().strftime('%Y%m%dT%H%M%S')}_{uuid.uuid4().hex[:8]}"


class RunStatus(StrEnum):
    """Status of a run."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class NodeStatus(StrEnum):
    """Status of a single node within a run. Pending is implicit (no result yet)."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class NodeResult(BaseModel):
    """Input, output, status and timing of one node in one run."""

    node_id: str
    status: NodeStatus = NodeStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    input: Any = None
    output: Any = None
    execution_time_ms: int | None = None
    error: str | None = None

    model_config = {"extra": "allow"}


class WorkflowVersion(BaseModel):
    """An immutable published graph of a workflow, the unit of execution."""

    workflow_id: str
    id: str = Field(default_factory=lambda: f"ver_{uuid.uuid4().hex[:12]}")
    graph: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}


class Run(BaseModel):
    """
    A complete execution of a workflow version.

    ``graph_snapshot`` is copied at launch; later edits to the workflow never
    reach a run that is already executing.
    """

    id: str = Field(default_factory=new_run_id)
    workflow_id: str
    version_id: str
    status: RunStatus = RunStatus.RUNNING
    graph_snapshot: dict[str, Any] = Field(default_factory=dict)
    node_results: dict[str, NodeResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    error: str | None = None

    model_config = {"extra": "allow"}

    @computed_field
    @property
    def duration_ms(self) -> int:
        """Duration of the run in milliseconds."""
        if self.finished_at is None:
            return 0
        delta = self.finished_at - self.started_at
        return int(delta.total_seconds() * 1000)

    def complete(self, status: RunStatus, error: str | None = None) -> None:
        """Mark the run as terminal."""
        self.status = status
        self.finished_at = utc_now()
        if error is not None:
            self.error = error
