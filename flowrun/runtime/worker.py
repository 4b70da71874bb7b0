"""
Run Worker - background execution of workflow runs.

One job per run. Jobs run concurrently up to ``max_concurrent``; inside a
job the engine is strictly sequential. Each job has a hard time limit: a
run still going after ``job_timeout_seconds`` is cancelled and recorded as
failed.

Example:
    worker = RunWorker(engine, store)
    await worker.start()
    run_id = await worker.submit(version)
    run = await worker.wait_for_completion(run_id, timeout=60)
"""

import asyncio
import logging
import time
from collections import OrderedDict

from flowrun.config import WorkerConfig
from flowrun.graph.model import normalize
from flowrun.runtime.engine import WorkflowEngine
from flowrun.schemas.run import NodeStatus, Run, RunStatus, WorkflowVersion, new_run_id, utc_now
from flowrun.storage.run_store import RunStore, RunStoreError

logger = logging.getLogger(__name__)


class RunWorker:
    """Bounded pool of concurrent run jobs."""

    def __init__(
        self,
        engine: WorkflowEngine,
        store: RunStore | None = None,
        config: WorkerConfig | None = None,
    ):
        self.engine = engine
        self.store = store or engine.store
        self.config = config or WorkerConfig()

        self._tasks: dict[str, asyncio.Task] = {}
        self._completion_events: dict[str, asyncio.Event] = {}
        self._results: OrderedDict[str, Run] = OrderedDict()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._lock = asyncio.Lock()
        self._running = False
        self._started_at: float | None = None
        self._failed_count = 0
        self._timed_out_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._started_at = time.time()
        logger.info(f"RunWorker started (max_concurrent={self.config.max_concurrent})")

    async def stop(self) -> None:
        """Stop accepting jobs and cancel the rest; cancelled runs are stored as failed."""
        if not self._running:
            return
        self._running = False

        for task in list(self._tasks.values()):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._tasks.clear()
        logger.info("RunWorker stopped")

    async def submit(self, version: WorkflowVersion) -> str:
        """
        Queue a run of ``version`` and return its run id immediately.

        Raises:
            RuntimeError: the worker is not started
            GraphStructureError: the graph has no nodes
        """
        if not self._running:
            raise RuntimeError("RunWorker is not running")

        normalize(version.graph)
        run_id = new_run_id()

        async with self._lock:
            self._completion_events[run_id] = asyncio.Event()

        self._tasks[run_id] = asyncio.create_task(self._run_job(run_id, version))
        logger.debug(f"Queued run {run_id} for workflow {version.workflow_id}")
        return run_id

    async def _run_job(self, run_id: str, version: WorkflowVersion) -> None:
        run: Run | None = None
        try:
            async with self._semaphore:
                try:
                    run = await asyncio.wait_for(
                        self.engine.execute(version, run_id=run_id),
                        timeout=self.config.job_timeout_seconds,
                    )
                except TimeoutError:
                    self._timed_out_count += 1
                    error = f"Run exceeded {self.config.job_timeout_seconds:g}s timeout"
                    logger.error(f"⏱ Run {run_id}: {error}")
                    run = await self._fail_unfinished(run_id, version, error)
                except Exception as e:
                    logger.exception(f"Run {run_id} crashed")
                    run = await self._mark_failed(run_id, version, f"Run crashed: {e}")
        except asyncio.CancelledError:
            # stop() while queued or running: the run must still end terminal
            logger.warning(f"Run {run_id} cancelled by worker shutdown")
            run = await self._fail_unfinished(run_id, version, "Run cancelled: worker stopped")
            raise
        finally:
            self._tasks.pop(run_id, None)
            if run is not None:
                if run.status == RunStatus.FAILED:
                    self._failed_count += 1
                self._record_result(run_id, run)

            event = self._completion_events.pop(run_id, None)
            if event is not None:
                event.set()

    async def _fail_unfinished(self, run_id: str, version: WorkflowVersion, error: str) -> Run:
        """Fail the nodes still marked running, then the run itself."""
        stored = await self.store.get_run(run_id)
        if stored is not None:
            for result in stored.node_results.values():
                if result.status == NodeStatus.RUNNING:
                    result.status = NodeStatus.FAILED
                    result.finished_at = utc_now()
                    result.error = error
                    try:
                        await self.store.upsert_node_result(run_id, result)
                    except RunStoreError as e:
                        logger.error(f"Could not mark node {result.node_id} failed: {e}")
        return await self._mark_failed(run_id, version, error)

    async def _mark_failed(self, run_id: str, version: WorkflowVersion, error: str) -> Run:
        finished_at = utc_now()
        try:
            await self.store.update_run(run_id, status=RunStatus.FAILED, finished_at=finished_at, error=error)
        except RunStoreError as e:
            logger.error(f"Could not mark run {run_id} failed: {e}")

        stored = await self.store.get_run(run_id)
        if stored is not None:
            return stored
        return Run(
            id=run_id,
            workflow_id=version.workflow_id,
            version_id=version.id,
            status=RunStatus.FAILED,
            finished_at=finished_at,
            error=error,
        )

    def _record_result(self, run_id: str, run: Run) -> None:
        self._results[run_id] = run
        self._results.move_to_end(run_id)
        while len(self._results) > self.config.result_retention_max:
            self._results.popitem(last=False)

    async def wait_for_completion(self, run_id: str, timeout: float | None = None) -> Run | None:
        """
        Wait for a run to finish.

        Returns:
            The terminal Run, or None on timeout / unknown run id
        """
        event = self._completion_events.get(run_id)
        if event is None:
            return self._results.get(run_id)

        try:
            if timeout:
                await asyncio.wait_for(event.wait(), timeout=timeout)
            else:
                await event.wait()
        except TimeoutError:
            return None
        return self._results.get(run_id)

    def get_result(self, run_id: str) -> Run | None:
        return self._results.get(run_id)

    def get_active_count(self) -> int:
        return len(self._tasks)

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "active_runs": len(self._tasks),
            "completed_runs": len(self._results),
            "failed_runs": self._failed_count,
            "timed_out_runs": self._timed_out_count,
            "max_concurrent": self.config.max_concurrent,
            "uptime_seconds": time.time() - self._started_at if self._started_at else 0.0,
        }
