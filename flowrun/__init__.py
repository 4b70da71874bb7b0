"""
flowrun - execution engine for node-graph workflows.

A workflow is a graph of nodes (triggers, HTTP calls, branches,
notifications, ...) joined by edges. The engine orders the nodes, routes
each node's input from its predecessors, runs the node's executor and
records every state transition so a poller can follow the run live.
"""

from flowrun.config import EngineConfig, ServerConfig, WorkerConfig
from flowrun.executors import ExecutionContext, ExecutorRegistry, get_executor_registry
from flowrun.graph import Edge, Graph, GraphStructureError, Node, normalize, order, resolve_input
from flowrun.runtime import (
    CreditGate,
    NodeExecutionFailed,
    PreflightRejected,
    RunRecorder,
    RunWorker,
    WorkflowEngine,
)
from flowrun.schemas import NodeResult, NodeStatus, Run, RunStatus, WorkflowVersion
from flowrun.storage import FileRunStore, InMemoryRunStore, RunStoreError

__version__ = "0.1.0"

__all__ = [
    "CreditGate",
    "Edge",
    "EngineConfig",
    "ExecutionContext",
    "ExecutorRegistry",
    "FileRunStore",
    "Graph",
    "GraphStructureError",
    "InMemoryRunStore",
    "Node",
    "NodeExecutionFailed",
    "NodeResult",
    "NodeStatus",
    "PreflightRejected",
    "Run",
    "RunRecorder",
    "RunStatus",
    "RunStoreError",
    "RunWorker",
    "ServerConfig",
    "WorkerConfig",
    "WorkflowEngine",
    "WorkflowVersion",
    "get_executor_registry",
    "normalize",
    "order",
    "resolve_input",
]
