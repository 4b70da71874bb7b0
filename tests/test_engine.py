"""
End-to-end tests for WorkflowEngine: ordering, routing, recording and the
node-error policy, with all outbound HTTP served by httpx.MockTransport.
"""

from unittest.mock import patch

import httpx
import pytest

from flowrun.config import EngineConfig
from flowrun.credentials import InMemoryCredentialLookup
from flowrun.executors import ExecutorRegistry, get_executor_registry
from flowrun.graph.model import GraphStructureError
from flowrun.observability import get_trace_context
from flowrun.runtime.engine import WorkflowEngine, output_error
from flowrun.schemas.run import NodeStatus, RunStatus, WorkflowVersion
from flowrun.storage import InMemoryRunStore, RunStoreError

# === HELPER FUNCTIONS ===


def node(node_id: str, node_type: str, **parameters) -> dict:
    return {"id": node_id, "type": "custom", "label": node_id, "data": {"type": node_type, "parameters": parameters}}


def edge(source: str, target: str, handle: str | None = None) -> dict:
    payload = {"source": source, "target": target}
    if handle:
        payload["sourceHandle"] = handle
    return payload


def version(nodes: list[dict], edges: list[dict], workflow_id: str = "wf_engine") -> WorkflowVersion:
    return WorkflowVersion(workflow_id=workflow_id, graph={"nodes": nodes, "edges": edges})


def ok_transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))


def make_engine(store=None, transport=None, **config) -> WorkflowEngine:
    return WorkflowEngine(
        store=store or InMemoryRunStore(),
        config=EngineConfig(**config),
        credentials=InMemoryCredentialLookup(),
        transport=transport or ok_transport(),
    )


class ExplodingRegistry(ExecutorRegistry):
    """Registry whose dispatch itself raises for node ``b``, after the engine recorded its start."""

    async def execute(self, node, input_data, ctx):
        if node.id == "b":
            raise RuntimeError("dispatch exploded")
        return await super().execute(node, input_data, ctx)


class FailingStore(InMemoryRunStore):
    """Store that starts rejecting node writes after ``fail_after`` of them."""

    def __init__(self, fail_after: int):
        super().__init__()
        self.fail_after = fail_after
        self.writes = 0

    async def upsert_node_result(self, run_id, result):
        self.writes += 1
        if self.writes > self.fail_after:
            raise RunStoreError("disk full")
        await super().upsert_node_result(run_id, result)


class BrokenCreateStore(InMemoryRunStore):
    async def create_run(self, run):
        raise RunStoreError("database unavailable")


# === END-TO-END SCENARIOS ===


class TestBranchingWorkflow:
    """Start -> IF -> {Slack on true, Gmail on false}."""

    def graph(self, condition: bool) -> WorkflowVersion:
        return version(
            [
                node("start", "Start"),
                node("check", "IF", value1=1 if condition else 0, operation="equal", value2=1),
                node("slack", "Slack", webhookUrl="https://hooks.slack.test/T1", message="yes"),
                node("gmail", "Gmail"),
            ],
            [
                edge("start", "check"),
                edge("check", "slack", "output-0"),
                edge("check", "gmail", "output-1"),
            ],
        )

    @pytest.mark.asyncio
    async def test_true_branch_only_feeds_slack(self):
        store = InMemoryRunStore()
        engine = make_engine(store)

        run = await engine.execute(self.graph(condition=True))

        assert run.status == RunStatus.SUCCESS
        assert list(run.node_results) == ["start", "check", "slack", "gmail"]
        check_output = run.node_results["check"].output
        assert check_output["output_index"] == 0
        assert run.node_results["slack"].input == check_output
        assert run.node_results["gmail"].input is None
        for result in run.node_results.values():
            assert result.status == NodeStatus.SUCCESS

        # Gmail had no recipient: error data, node still success
        assert run.node_results["gmail"].error == "No recipient email address"
        assert run.node_results["slack"].output["success"] is True

        stored = await store.get_run(run.id)
        assert stored.status == RunStatus.SUCCESS
        assert list(stored.node_results) == ["start", "check", "slack", "gmail"]

    @pytest.mark.asyncio
    async def test_false_branch_only_feeds_gmail(self):
        run = await make_engine().execute(self.graph(condition=False))

        assert run.node_results["check"].output["output_index"] == 1
        assert run.node_results["slack"].input is None
        assert run.node_results["gmail"].input["result"] is False


class TestEngineBehaviour:
    @pytest.mark.asyncio
    async def test_start_node_input_is_none(self):
        run = await make_engine().execute(version([node("s", "Start")], []))
        assert run.node_results["s"].input is None
        assert run.node_results["s"].output["triggered"] is True
        assert run.node_results["s"].output["workflow_id"] == "wf_engine"

    @pytest.mark.asyncio
    async def test_merge_receives_merged_inputs(self):
        v = version(
            [node("a", "Start"), node("b", "Manual Trigger"), node("m", "Merge")],
            [edge("a", "m"), edge("b", "m")],
        )
        run = await make_engine().execute(v)
        data = run.node_results["m"].output["data"]
        assert [item["type"] for item in data["merged_inputs"]] == ["Start", "Manual Trigger"]

    @pytest.mark.asyncio
    async def test_unreachable_http_host_does_not_stop_run(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        v = version(
            [node("s", "Start"), node("http", "HTTP Request", url="https://down.invalid"), node("after", "Set")],
            [edge("s", "http"), edge("http", "after")],
        )
        run = await make_engine(transport=httpx.MockTransport(handler)).execute(v)

        assert run.status == RunStatus.SUCCESS
        http_result = run.node_results["http"]
        assert http_result.status == NodeStatus.SUCCESS
        assert http_result.output["statusCode"] == 0
        assert http_result.error.startswith("Request failed")
        assert run.node_results["after"].input["statusCode"] == 0

    @pytest.mark.asyncio
    async def test_unknown_type_uses_fallback(self):
        run = await make_engine().execute(version([node("x", "TotallyUnknownThing")], []))
        assert run.status == RunStatus.SUCCESS
        assert run.node_results["x"].output["executed"] is True

    @pytest.mark.asyncio
    async def test_dangling_edges_ignored(self):
        v = version([node("s", "Start")], [edge("s", "ghost")])
        run = await make_engine().execute(v)
        assert run.status == RunStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_zero_nodes_refused_without_run(self):
        store = InMemoryRunStore()
        with pytest.raises(GraphStructureError):
            await make_engine(store).execute(version([], []))
        assert await store.list_runs() == []

    @pytest.mark.asyncio
    async def test_snapshot_isolated_from_later_edits(self):
        v = version([node("s", "Start")], [])
        run = await make_engine().execute(v)
        v.graph["nodes"].append(node("late", "Start"))
        assert len(run.graph_snapshot["nodes"]) == 1

    @pytest.mark.asyncio
    async def test_explicit_run_id(self):
        run = await make_engine().execute(version([node("s", "Start")], []), run_id="run_fixed")
        assert run.id == "run_fixed"

    @pytest.mark.asyncio
    async def test_identical_graphs_same_order(self):
        v = version(
            [node("a", "Start"), node("b", "Set"), node("c", "Set"), node("d", "Set")],
            [edge("a", "c"), edge("a", "b"), edge("c", "d")],
        )
        first = await make_engine().execute(v)
        second = await make_engine().execute(v)
        assert list(first.node_results) == list(second.node_results) == ["a", "c", "b", "d"]

    @pytest.mark.asyncio
    async def test_node_delay_disabled_by_default(self):
        with patch("flowrun.runtime.engine.asyncio.sleep") as mock_sleep:
            await make_engine().execute(version([node("s", "Start")], []))
        mock_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_node_delay_knob(self):
        with patch("flowrun.runtime.engine.asyncio.sleep") as mock_sleep:
            await make_engine(node_delay_ms=250).execute(version([node("s", "Start"), node("t", "Set")], []))
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.25)

    @pytest.mark.asyncio
    async def test_custom_registry(self):
        registry = ExecutorRegistry()

        @registry.register("Double")
        async def double(node, input_data, ctx):
            return {"value": (input_data or {}).get("value", 1) * 2}

        engine = WorkflowEngine(InMemoryRunStore(), registry=registry, credentials=InMemoryCredentialLookup())
        v = version([node("a", "Double"), node("b", "Double")], [edge("a", "b")])
        run = await engine.execute(v)
        assert run.node_results["b"].output == {"value": 4}


# === FAILURE POLICY ===


class TestNodeErrorPolicy:
    """Node errors are data by default; the toggle makes them fatal."""

    def failing_graph(self) -> WorkflowVersion:
        return version(
            [node("s", "Start"), node("code", "Code"), node("after", "Set")],
            [edge("s", "code"), edge("code", "after")],
        )

    @pytest.mark.asyncio
    async def test_default_keeps_going(self):
        run = await make_engine().execute(self.failing_graph())
        assert run.status == RunStatus.SUCCESS
        assert run.node_results["code"].status == NodeStatus.SUCCESS
        assert run.node_results["code"].error == "No code provided"
        assert "after" in run.node_results

    @pytest.mark.asyncio
    async def test_fail_on_node_error_stops(self):
        store = InMemoryRunStore()
        run = await make_engine(store, fail_on_node_error=True).execute(self.failing_graph())

        assert run.status == RunStatus.FAILED
        assert run.node_results["code"].status == NodeStatus.FAILED
        assert "after" not in run.node_results
        assert "code" in run.error
        assert (await store.get_run(run.id)).status == RunStatus.FAILED

    def test_output_error(self):
        assert output_error({"error": "bad"}) == "bad"
        assert output_error({"success": False}) is None
        assert output_error({"success": False}, strict=True) is not None
        assert output_error("plain text") is None


class TestEngineFailures:
    """Engine-level errors fail the run instead of raising."""

    @pytest.mark.asyncio
    async def test_store_failure_mid_run(self):
        store = FailingStore(fail_after=2)
        v = version([node("a", "Start"), node("b", "Set"), node("c", "Set")], [edge("a", "b"), edge("b", "c")])

        run = await make_engine(store).execute(v)

        assert run.status == RunStatus.FAILED
        assert "disk full" in run.error
        assert "c" not in run.node_results
        stored = await store.get_run(run.id)
        assert stored.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_create_failure_returns_failed_run(self):
        run = await make_engine(BrokenCreateStore()).execute(version([node("s", "Start")], []))
        assert run.status == RunStatus.FAILED
        assert "database unavailable" in run.error
        assert run.node_results == {}

    @pytest.mark.asyncio
    async def test_routing_failure_fails_run_before_node_starts(self):
        engine = make_engine()
        with patch("flowrun.runtime.engine.resolve_input", side_effect=[None, KeyError("boom")]):
            run = await engine.execute(version([node("a", "Start"), node("b", "Set")], [edge("a", "b")]))

        assert run.status == RunStatus.FAILED
        assert run.node_results["a"].status == NodeStatus.SUCCESS
        assert "b" not in run.node_results
        assert "boom" in run.error

    @pytest.mark.asyncio
    async def test_unexpected_exception_marks_running_node_failed(self):
        store = InMemoryRunStore()
        engine = WorkflowEngine(store, registry=ExplodingRegistry(), credentials=InMemoryCredentialLookup())

        run = await engine.execute(version([node("a", "Start"), node("b", "Set")], [edge("a", "b")]))

        assert run.status == RunStatus.FAILED
        assert run.error == "Engine error: dispatch exploded"
        stored = await store.get_run(run.id)
        assert stored.status == RunStatus.FAILED
        assert stored.node_results["a"].status == NodeStatus.SUCCESS
        assert stored.node_results["b"].status == NodeStatus.FAILED
        assert stored.node_results["b"].error == "Engine error: dispatch exploded"
        assert stored.node_results["b"].finished_at is not None

    @pytest.mark.asyncio
    async def test_builtin_registry_is_default(self):
        engine = WorkflowEngine(InMemoryRunStore())
        assert engine.registry is get_executor_registry()

    @pytest.mark.asyncio
    async def test_trace_context_cleared_after_run(self):
        seen = {}
        registry = ExecutorRegistry()

        @registry.register("Capture")
        async def capture(node, input_data, ctx):
            seen.update(get_trace_context())
            return {"ok": True}

        engine = WorkflowEngine(InMemoryRunStore(), registry=registry, credentials=InMemoryCredentialLookup())
        run = await engine.execute(version([node("a", "Capture")], []))

        assert seen["run_id"] == run.id
        assert seen["node_id"] == "a"
        assert get_trace_context() == {}
