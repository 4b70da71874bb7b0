"""
Graph Model - nodes, edges and structural normalization.

A workflow graph is what the visual editor saves: a list of nodes and a list
of edges between them. Editors in the wild are sloppy, so the model is
lenient:

1. Node configuration lives in ``data`` and is never rewritten
2. The semantic node type may sit in ``data.type``, ``data.name`` or ``type``
3. Edges pointing at unknown nodes are dropped, not fatal
4. Edges without an id get ``"<source>-<target>"``

The only structural error is a graph with no nodes at all.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

UNKNOWN_NODE_TYPE = "Unknown"

_MISSING = object()


class GraphStructureError(ValueError):
    """The graph cannot be executed at all (e.g. it has no nodes)."""


class Node(BaseModel):
    """
    A unit of work in a workflow graph.

    ``type`` is the editor's rendering type (often just ``"custom"``); the
    semantic type that selects an executor is ``resolved_type``.
    """

    id: str
    type: str = ""
    label: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    @property
    def resolved_type(self) -> str:
        """Executor key: ``data.type``, then ``data.name``, then ``type``."""
        for candidate in (self.data.get("type"), self.data.get("name"), self.type):
            if candidate:
                return str(candidate)
        return UNKNOWN_NODE_TYPE

    @property
    def config(self) -> dict[str, Any]:
        """The node's ``data.parameters`` block (empty dict if absent)."""
        params = self.data.get("parameters")
        return params if isinstance(params, dict) else {}

    def param(self, *keys: str, default: Any = None) -> Any:
        """
        Look up a configuration value by the first key that is set.

        For each key, in order: ``data.parameters.<key>``, ``data.<key>``,
        node-level ``parameters.<key>``. ``None`` counts as unset.
        """
        for key in keys:
            for source in (self.config, self.data, self.parameters):
                value = source.get(key, _MISSING)
                if value is not _MISSING and value is not None:
                    return value
        return default


class Edge(BaseModel):
    """
    A directed connection between two nodes.

    ``source_handle``/``target_handle`` name the ports the edge is attached
    to; branching nodes use ``"output-<n>"`` handles.
    """

    id: str = ""
    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target_handle: str | None = Field(default=None, alias="targetHandle")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Graph(BaseModel):
    """Normalized graph: every edge references a node of this graph."""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_edges(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NodeConfigSchema(Protocol):
    """
    Source of per-type configuration defaults and required fields.

    Consulted only while normalizing; it never changes node data.
    """

    def get_defaults(self, node_type: str) -> dict[str, Any]: ...

    def get_required_fields(self, node_type: str) -> list[str]: ...


class StaticNodeConfigSchema:
    """NodeConfigSchema backed by a ``{type: {"required": [...], "defaults": {...}}}`` table."""

    def __init__(self, schemas: dict[str, dict[str, Any]] | None = None):
        self.schemas = schemas if schemas is not None else dict(BUILTIN_NODE_SCHEMAS)

    def get_defaults(self, node_type: str) -> dict[str, Any]:
        return dict(self.schemas.get(node_type, {}).get("defaults", {}))

    def get_required_fields(self, node_type: str) -> list[str]:
        return list(self.schemas.get(node_type, {}).get("required", []))


BUILTIN_NODE_SCHEMAS: dict[str, dict[str, Any]] = {
    "HTTP Request": {"required": ["method", "url"], "defaults": {"method": "GET"}},
    "Code": {"required": ["code"], "defaults": {}},
    "Split In Batches": {"required": ["batchSize"], "defaults": {"batchSize": 10}},
    "Discord": {"required": ["webhookUrl", "content"], "defaults": {}},
    "Slack": {"required": ["webhookUrl", "message"], "defaults": {}},
    "Telegram": {"required": ["botToken", "chatId", "text"], "defaults": {}},
    "Gmail": {"required": ["to", "subject", "message"], "defaults": {}},
    "Merge": {"required": ["mode"], "defaults": {"mode": "append"}},
}


def missing_required_fields(node: Node, schema: NodeConfigSchema) -> list[str]:
    """Required fields that are neither configured on the node nor defaulted."""
    node_type = node.resolved_type
    defaults = schema.get_defaults(node_type)
    missing = []
    for name in schema.get_required_fields(node_type):
        value = node.param(name)
        if value is None or value == "":
            if defaults.get(name) in (None, ""):
                missing.append(name)
    return missing


def normalize(raw: dict[str, Any] | Graph, schema: NodeConfigSchema | None = None) -> Graph:
    """
    Turn a raw editor graph into a Graph.

    Raises:
        GraphStructureError: the graph has no usable nodes.
    """
    if isinstance(raw, Graph):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raise GraphStructureError(f"Graph must be a mapping, got {type(raw).__name__}")

    nodes: list[Node] = []
    seen: set[str] = set()
    for index, raw_node in enumerate(raw.get("nodes") or []):
        if not isinstance(raw_node, dict) or not raw_node.get("id"):
            logger.warning(f"Skipping node #{index}: missing id")
            continue
        payload = {**raw_node, "id": str(raw_node["id"])}
        for key in ("type", "label"):
            if payload.get(key) is None:
                payload[key] = ""
        for key in ("data", "parameters"):
            if not isinstance(payload.get(key), dict):
                payload[key] = {}
        node = Node.model_validate(payload)
        if node.id in seen:
            logger.warning(f"Skipping duplicate node id '{node.id}'")
            continue
        seen.add(node.id)
        nodes.append(node)

    if not nodes:
        raise GraphStructureError("Graph has no nodes")

    edges: list[Edge] = []
    for raw_edge in raw.get("edges") or []:
        if not isinstance(raw_edge, dict):
            logger.warning(f"Dropping malformed edge: {raw_edge!r}")
            continue
        source = raw_edge.get("source")
        target = raw_edge.get("target")
        if source is None or target is None or str(source) not in seen or str(target) not in seen:
            logger.warning(f"Dropping edge {source!r} -> {target!r}: unknown endpoint")
            continue
        edge_payload = {**raw_edge, "source": str(source), "target": str(target)}
        edge_payload["id"] = str(edge_payload.get("id") or f"{source}-{target}")
        edges.append(Edge.model_validate(edge_payload))

    if schema is not None:
        for node in nodes:
            missing = missing_required_fields(node, schema)
            if missing:
                logger.warning(
                    f"Node '{node.id}' ({node.resolved_type}) is missing required "
                    f"fields {missing}; executing with the data present"
                )

    return Graph(nodes=nodes, edges=edges)
