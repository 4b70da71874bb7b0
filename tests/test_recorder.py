"""Tests for RunRecorder write-through behaviour."""

from unittest.mock import AsyncMock

import pytest

from flowrun.runtime.recorder import RunRecorder
from flowrun.schemas.run import NodeStatus, Run, RunStatus
from flowrun.storage import InMemoryRunStore


def make_run() -> Run:
    return Run(id="run_rec", workflow_id="wf", version_id="ver", graph_snapshot={"nodes": [], "edges": []})


class TestRunRecorder:
    """Each transition is visible in the store as soon as the call returns."""

    @pytest.mark.asyncio
    async def test_begin_persists_running_run(self):
        store = InMemoryRunStore()
        recorder = RunRecorder(store)

        await recorder.begin(make_run())

        stored = await store.get_run("run_rec")
        assert stored.status == RunStatus.RUNNING
        assert stored.finished_at is None

    @pytest.mark.asyncio
    async def test_node_start_visible_before_end(self):
        store = InMemoryRunStore()
        recorder = RunRecorder(store)
        run = await recorder.begin(make_run())

        await recorder.record_node_start(run, "a", {"in": 1})

        stored = await store.get_run(run.id)
        assert stored.node_results["a"].status == NodeStatus.RUNNING
        assert stored.node_results["a"].input == {"in": 1}
        assert stored.node_results["a"].output is None

    @pytest.mark.asyncio
    async def test_node_end_keeps_start_time_and_input(self):
        store = InMemoryRunStore()
        recorder = RunRecorder(store)
        run = await recorder.begin(make_run())

        started = await recorder.record_node_start(run, "a", {"in": 1})
        ended = await recorder.record_node_end(run, "a", {"out": 2}, NodeStatus.SUCCESS, execution_time_ms=12)

        assert ended.started_at == started.started_at
        assert ended.input == {"in": 1}
        assert ended.finished_at is not None
        stored = await store.get_run(run.id)
        assert stored.node_results["a"].output == {"out": 2}
        assert stored.node_results["a"].execution_time_ms == 12

    @pytest.mark.asyncio
    async def test_node_end_records_error(self):
        store = InMemoryRunStore()
        recorder = RunRecorder(store)
        run = await recorder.begin(make_run())
        await recorder.record_node_start(run, "a", None)

        await recorder.record_node_end(run, "a", {"error": "x"}, NodeStatus.SUCCESS, error="x")

        assert run.node_results["a"].error == "x"
        assert (await store.get_run(run.id)).node_results["a"].error == "x"

    @pytest.mark.asyncio
    async def test_finish(self):
        store = InMemoryRunStore()
        recorder = RunRecorder(store)
        run = await recorder.begin(make_run())

        await recorder.finish(run, RunStatus.FAILED, error="engine broke")

        stored = await store.get_run(run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.error == "engine broke"
        assert stored.finished_at is not None
        assert run.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_one_write_per_transition(self):
        store = AsyncMock()
        recorder = RunRecorder(store)
        run = make_run()

        await recorder.begin(run)
        await recorder.record_node_start(run, "a", None)
        await recorder.record_node_end(run, "a", {}, NodeStatus.SUCCESS)
        await recorder.finish(run, RunStatus.SUCCESS)

        store.create_run.assert_awaited_once()
        assert store.upsert_node_result.await_count == 2
        store.update_run.assert_awaited_once()
        assert store.update_run.await_args.kwargs["status"] == RunStatus.SUCCESS
