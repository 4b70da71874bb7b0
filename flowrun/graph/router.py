"""
Port Router - computes a node's input from its predecessors' outputs.

Branching nodes (IF) put an ``output_index`` in their output. An edge leaving
such a node through an ``output-<n>`` handle only carries data when
``output_index == n``; every other edge always carries its source's output.

Aggregation:
- no data-carrying edge  -> ``None``
- exactly one            -> that output, unwrapped
- two or more            -> ``{"merged_inputs": [...]}`` in edge order
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from flowrun.graph.model import Edge, Node

HANDLE_PATTERN = re.compile(r"output-(\d+)")


def _output_of(result: Any) -> Any:
    if result is None:
        return None
    if isinstance(result, Mapping):
        return result.get("output")
    return getattr(result, "output", None)


def edge_handle(edge: Edge) -> str | None:
    """
    The port handle used for branch matching.

    ``sourceHandle`` is authoritative; ``targetHandle`` is only consulted
    when it names an output port.
    """
    if edge.source_handle is not None:
        return edge.source_handle
    if edge.target_handle is not None and HANDLE_PATTERN.search(edge.target_handle):
        return edge.target_handle
    return None


def handle_index(handle: str) -> int:
    """``"output-1"`` -> 1; handles without an output number count as port 0."""
    match = HANDLE_PATTERN.search(handle)
    return int(match.group(1)) if match else 0


def edge_carries_data(output: Any, edge: Edge) -> bool:
    """Whether ``output`` (the edge source's output) flows along ``edge``."""
    output_index = output.get("output_index") if isinstance(output, Mapping) else None
    handle = edge_handle(edge)
    if output_index is None or handle is None:
        return True
    # Strict match: "0" or True never select port 0
    return type(output_index) is int and output_index == handle_index(handle)


def resolve_input(
    node: Node,
    completed_results: Mapping[str, Any],
    edges: Sequence[Edge],
) -> Any:
    """
    Input for ``node`` given the results recorded so far.

    Args:
        node: The node about to run
        completed_results: node id -> NodeResult (or dict with ``output``)
        edges: The run's frozen edge list

    Returns:
        ``None``, a single predecessor output, or ``{"merged_inputs": [...]}``
    """
    inputs: list[Any] = []
    for edge in edges:
        if edge.target != node.id:
            continue
        output = _output_of(completed_results.get(edge.source))
        if output is None:
            continue
        if edge_carries_data(output, edge):
            inputs.append(output)

    if not inputs:
        return None
    if len(inputs) == 1:
        return inputs[0]
    return {"merged_inputs": inputs}
