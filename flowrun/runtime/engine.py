"""
Workflow Engine - runs one workflow version start to finish.

The engine:
1. Normalizes the version's graph (refusing graphs with no nodes)
2. Creates the run with a frozen snapshot of that graph
3. Walks the nodes in scheduler order, strictly one at a time
4. Routes each node's input from its predecessors' recorded outputs
5. Dispatches to the executor registry and records every transition

Executor failures are data: they land in the node's output and ``error``
field and the run carries on. Only engine-level failures (e.g. the run
store rejecting a write) fail the run. Set
``EngineConfig.fail_on_node_error`` to stop at the first failing node.
"""

import asyncio
import copy
import logging
import time
from typing import Any

import httpx

from flowrun.config import EngineConfig
from flowrun.credentials import CredentialLookup, EnvCredentialLookup
from flowrun.executors import ExecutionContext, ExecutorRegistry, get_executor_registry
from flowrun.graph.model import Graph, Node, NodeConfigSchema, normalize
from flowrun.graph.router import resolve_input
from flowrun.graph.scheduler import order
from flowrun.observability import clear_trace_context, set_trace_context
from flowrun.runtime.recorder import RunRecorder
from flowrun.schemas.run import NodeStatus, Run, RunStatus, WorkflowVersion
from flowrun.storage.run_store import RunStore

logger = logging.getLogger(__name__)


class NodeExecutionFailed(RuntimeError):
    """A node reported an error while ``fail_on_node_error`` is enabled."""

    def __init__(self, node_id: str, error: str):
        super().__init__(f"Node '{node_id}' failed: {error}")
        self.node_id = node_id
        self.error = error


def output_error(output: Any, strict: bool = False) -> str | None:
    """
    The error carried by an executor output, if any.

    ``{"error": ...}`` always counts; with ``strict`` a bare
    ``{"success": False}`` counts too.
    """
    if not isinstance(output, dict):
        return None
    error = output.get("error")
    if error:
        return str(error)
    if strict and output.get("success") is False:
        return "Node reported success: false"
    return None


class WorkflowEngine:
    """
    Executes workflow versions against a run store.

    Example:
        engine = WorkflowEngine(store=InMemoryRunStore())
        run = await engine.execute(WorkflowVersion(workflow_id="wf-1", graph=graph))
        print(run.status, run.node_results["http"].output)
    """

    def __init__(
        self,
        store: RunStore,
        registry: ExecutorRegistry | None = None,
        config: EngineConfig | None = None,
        credentials: CredentialLookup | None = None,
        schema: NodeConfigSchema | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            store: Where runs and node results are written
            registry: Executor lookup (defaults to the built-in registry)
            config: Engine behaviour (timeouts, failure policy, demo delay)
            credentials: Secret lookup passed through to executors
            schema: Optional node config schema, used to warn about missing fields
            transport: httpx transport override for every executor HTTP call
        """
        self.store = store
        self.recorder = RunRecorder(store)
        self.registry = registry or get_executor_registry()
        self.config = config or EngineConfig()
        self.credentials = credentials or EnvCredentialLookup()
        self.schema = schema
        self.transport = transport
        self.logger = logger

    def _context(self, run: Run) -> ExecutionContext:
        return ExecutionContext(
            workflow_id=run.workflow_id,
            run_id=run.id,
            config=self.config,
            credentials=self.credentials,
            transport=self.transport,
        )

    async def execute(self, version: WorkflowVersion, run_id: str | None = None) -> Run:
        """
        Execute a workflow version and return its terminal run.

        Raises:
            GraphStructureError: the graph has no nodes; no run is created
        """
        graph = normalize(version.graph, self.schema)

        run_kwargs: dict[str, Any] = {
            "workflow_id": version.workflow_id,
            "version_id": version.id,
            "graph_snapshot": copy.deepcopy(version.graph),
        }
        if run_id:
            run_kwargs["id"] = run_id
        run = Run(**run_kwargs)

        clear_trace_context()
        set_trace_context(run_id=run.id, workflow_id=run.workflow_id, version_id=run.version_id)

        try:
            try:
                await self.recorder.begin(run)
            except Exception as e:
                self.logger.exception(f"❌ Could not create run {run.id}")
                run.complete(RunStatus.FAILED, error=f"Could not create run: {e}")
                return run

            await self._run_nodes(run, graph)
            return run
        finally:
            clear_trace_context()

    async def _run_nodes(self, run: Run, graph: Graph) -> None:
        current: Node | None = None
        try:
            ordered = order(graph.nodes, graph.edges)
            self.logger.info(
                f"📋 Starting workflow execution: {len(ordered)} nodes "
                f"[{', '.join(node.id for node in ordered)}]"
            )

            ctx = self._context(run)
            for step, node in enumerate(ordered):
                current = node
                await self._run_node(run, graph, node, step, ctx)

            current = None
            await self.recorder.finish(run, RunStatus.SUCCESS)

        except NodeExecutionFailed as e:
            self.logger.error(f"✗ Stopping run: {e}")
            await self._fail(run, str(e))

        except Exception as e:
            self.logger.exception(f"❌ Engine error during run {run.id}")
            if current is not None:
                await self._fail_node(run, current, f"Engine error: {e}")
            await self._fail(run, f"Engine error: {e}")

    async def _run_node(self, run: Run, graph: Graph, node: Node, step: int, ctx: ExecutionContext) -> None:
        node_type = node.resolved_type
        set_trace_context(node_id=node.id, node_type=node_type)

        input_data = resolve_input(node, run.node_results, graph.edges)
        await self.recorder.record_node_start(run, node.id, input_data)

        if self.config.node_delay_ms > 0:
            await asyncio.sleep(self.config.node_delay_ms / 1000)

        self.logger.info(f"▶ Step {step + 1}: {node.id} ({node_type})")
        started = time.perf_counter()
        output = await self.registry.execute(node, input_data, ctx)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        strict = self.config.fail_on_node_error
        error = output_error(output, strict=strict)
        status = NodeStatus.FAILED if error and strict else NodeStatus.SUCCESS
        await self.recorder.record_node_end(run, node.id, output, status, elapsed_ms, error)

        if status == NodeStatus.FAILED:
            raise NodeExecutionFailed(node.id, error or "unknown error")

    async def _fail_node(self, run: Run, node: Node, error: str) -> None:
        result = run.node_results.get(node.id)
        if result is None or result.status != NodeStatus.RUNNING:
            return
        try:
            await self.recorder.record_node_end(run, node.id, result.output, NodeStatus.FAILED, error=error)
        except Exception:
            self.logger.exception(f"Could not mark node {node.id} failed")

    async def _fail(self, run: Run, error: str) -> None:
        try:
            await self.recorder.finish(run, RunStatus.FAILED, error=error)
        except Exception:
            self.logger.exception(f"Could not mark run {run.id} failed")
            if not run.status.is_terminal:
                run.complete(RunStatus.FAILED, error=error)
