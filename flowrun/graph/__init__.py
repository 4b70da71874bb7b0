"""Graph structures: model, scheduling and input routing."""

from flowrun.graph.model import (
    BUILTIN_NODE_SCHEMAS,
    Edge,
    Graph,
    GraphStructureError,
    Node,
    NodeConfigSchema,
    StaticNodeConfigSchema,
    normalize,
)
from flowrun.graph.router import resolve_input
from flowrun.graph.scheduler import order

__all__ = [
    "BUILTIN_NODE_SCHEMAS",
    "Edge",
    "Graph",
    "GraphStructureError",
    "Node",
    "NodeConfigSchema",
    "StaticNodeConfigSchema",
    "normalize",
    "order",
    "resolve_input",
]
