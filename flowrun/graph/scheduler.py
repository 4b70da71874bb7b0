"""
Topological Scheduler - deterministic execution order for a graph.

Breadth-first from the start nodes (nodes with no incoming edge), following
edges in the order they appear in the graph. Nodes never reached are
appended at the end in their original order. The result always contains
every node exactly once, even for cyclic graphs.
"""

from collections import deque
from collections.abc import Sequence

from flowrun.graph.model import Edge, Node


def order(nodes: Sequence[Node], edges: Sequence[Edge]) -> list[Node]:
    """
    Return the nodes in execution order.

    Rules:
    1. Start nodes are nodes that are not the target of any edge
    2. No start nodes at all (e.g. every node is in a cycle): original order
    3. BFS from the start nodes, targets enqueued in edge order
    4. Unvisited nodes appended in original order
    """
    has_incoming = {edge.target for edge in edges}
    start_nodes = [node for node in nodes if node.id not in has_incoming]

    if not start_nodes:
        return list(nodes)

    by_id: dict[str, Node] = {}
    for node in nodes:
        by_id.setdefault(node.id, node)

    successors: dict[str, list[str]] = {}
    for edge in edges:
        successors.setdefault(edge.source, []).append(edge.target)

    ordered: list[Node] = []
    visited: set[str] = set()
    queue: deque[Node] = deque(start_nodes)

    while queue:
        current = queue.popleft()
        if current.id in visited:
            continue
        ordered.append(current)
        visited.add(current.id)

        for target_id in successors.get(current.id, []):
            next_node = by_id.get(target_id)
            if next_node is not None and next_node.id not in visited:
                queue.append(next_node)

    for node in nodes:
        if node.id not in visited:
            ordered.append(node)
            visited.add(node.id)

    return ordered
