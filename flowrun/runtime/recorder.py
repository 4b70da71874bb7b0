"""RunRecorder: persists run and node state transitions as they happen.

Injected into WorkflowEngine. Every call awaits its store write before
returning, so a client polling the store sees a node as ``running`` before
its executor starts and sees its output as soon as it finishes.

Usage::

    recorder = RunRecorder(InMemoryRunStore())
    await recorder.begin(run)
    await recorder.record_node_start(run, "http", input_data)
    await recorder.record_node_end(run, "http", output, NodeStatus.SUCCESS)
    await recorder.finish(run, RunStatus.SUCCESS)

The ``run`` object passed in is kept in sync with what was written, so the
engine can route from ``run.node_results`` without reading the store back.
"""

from __future__ import annotations

import logging
from typing import Any

from flowrun.schemas.run import NodeResult, NodeStatus, Run, RunStatus, utc_now
from flowrun.storage.run_store import RunStore

logger = logging.getLogger(__name__)


class RunRecorder:
    """Write-through recorder of run/node state transitions.

    One writer per run id: only the engine executing the run calls it.
    """

    def __init__(self, store: RunStore) -> None:
        self.store = store

    async def begin(self, run: Run) -> Run:
        """Persist a new run in ``running`` state with its graph snapshot."""
        run.status = RunStatus.RUNNING
        await self.store.create_run(run)
        logger.info(f"✅ Run {run.id} created for workflow {run.workflow_id}")
        return run

    async def record_node_start(self, run: Run, node_id: str, input_data: Any) -> NodeResult:
        """pending -> running."""
        result = NodeResult(node_id=node_id, status=NodeStatus.RUNNING, input=input_data)
        run.node_results[node_id] = result
        await self.store.upsert_node_result(run.id, result)
        logger.info(f"🔵 Node {node_id} running", extra={"event": "node_running"})
        return result

    async def record_node_end(
        self,
        run: Run,
        node_id: str,
        output: Any,
        status: NodeStatus,
        execution_time_ms: int | None = None,
        error: str | None = None,
    ) -> NodeResult:
        """running -> success/failed. Updates the same node key in place."""
        previous = run.node_results.get(node_id)
        result = NodeResult(
            node_id=node_id,
            status=status,
            started_at=previous.started_at if previous else utc_now(),
            finished_at=utc_now(),
            input=previous.input if previous else None,
            output=output,
            execution_time_ms=execution_time_ms,
            error=error,
        )
        run.node_results[node_id] = result
        await self.store.upsert_node_result(run.id, result)
        logger.info(
            f"{'✓' if status == NodeStatus.SUCCESS else '✗'} Node {node_id} {status}",
            extra={"event": "node_complete", "status": str(status), "execution_time_ms": execution_time_ms},
        )
        return result

    async def finish(self, run: Run, status: RunStatus, error: str | None = None) -> Run:
        """running -> success/failed for the whole run."""
        run.complete(status, error=error)
        await self.store.update_run(
            run.id,
            status=run.status,
            finished_at=run.finished_at,
            error=run.error,
        )
        logger.info(f"🏁 Run {run.id} finished: {status}", extra={"event": "run_finished", "status": str(status)})
        return run
