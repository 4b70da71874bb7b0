"""Tests for the port router (input resolution and conditional edges)."""

from flowrun.graph.model import Edge, Node
from flowrun.graph.router import edge_handle, handle_index, resolve_input
from flowrun.schemas.run import NodeResult, NodeStatus


def result(node_id: str, output) -> NodeResult:
    return NodeResult(node_id=node_id, status=NodeStatus.SUCCESS, output=output)


def edge(source: str, target: str, **handles) -> Edge:
    return Edge(id=f"{source}-{target}", source=source, target=target, **handles)


class TestHandles:
    def test_handle_index(self):
        assert handle_index("output-0") == 0
        assert handle_index("output-12") == 12
        assert handle_index("left") == 0

    def test_source_handle_preferred(self):
        e = Edge(source="a", target="b", sourceHandle="output-1", targetHandle="output-0")
        assert edge_handle(e) == "output-1"

    def test_target_handle_only_when_output_port(self):
        assert edge_handle(Edge(source="a", target="b", targetHandle="output-1")) == "output-1"
        assert edge_handle(Edge(source="a", target="b", targetHandle="input-0")) is None


class TestResolveInput:
    """Aggregation rules: None / passthrough / merged_inputs."""

    def test_start_node_gets_none(self):
        assert resolve_input(Node(id="a"), {}, []) is None

    def test_source_not_executed_yet(self):
        assert resolve_input(Node(id="b"), {}, [edge("a", "b")]) is None

    def test_source_without_output_skipped(self):
        running = NodeResult(node_id="a", status=NodeStatus.RUNNING)
        assert resolve_input(Node(id="b"), {"a": running}, [edge("a", "b")]) is None

    def test_single_predecessor_unwrapped(self):
        out = {"value": 1}
        assert resolve_input(Node(id="b"), {"a": result("a", out)}, [edge("a", "b")]) == out

    def test_two_predecessors_merged_in_edge_order(self):
        results = {"a": result("a", {"n": "a"}), "c": result("c", {"n": "c"})}
        es = [edge("c", "b"), edge("a", "b")]
        assert resolve_input(Node(id="b"), results, es) == {"merged_inputs": [{"n": "c"}, {"n": "a"}]}

    def test_plain_dict_results_accepted(self):
        assert resolve_input(Node(id="b"), {"a": {"output": [1, 2]}}, [edge("a", "b")]) == [1, 2]

    def test_non_dict_output_passes_through(self):
        assert resolve_input(Node(id="b"), {"a": result("a", "text")}, [edge("a", "b")]) == "text"


class TestConditionalRouting:
    """Edges leaving branching nodes carry data only on the active port."""

    def setup_method(self):
        self.edges = [
            edge("if", "yes", sourceHandle="output-0"),
            edge("if", "no", sourceHandle="output-1"),
        ]

    def test_true_branch(self):
        out = {"result": True, "output_index": 0}
        results = {"if": result("if", out)}
        assert resolve_input(Node(id="yes"), results, self.edges) == out
        assert resolve_input(Node(id="no"), results, self.edges) is None

    def test_false_branch(self):
        out = {"result": False, "output_index": 1}
        results = {"if": result("if", out)}
        assert resolve_input(Node(id="yes"), results, self.edges) is None
        assert resolve_input(Node(id="no"), results, self.edges) == out

    def test_edge_without_handle_always_propagates(self):
        out = {"output_index": 1}
        assert resolve_input(Node(id="x"), {"if": result("if", out)}, [edge("if", "x")]) == out

    def test_output_without_index_ignores_handles(self):
        out = {"matched_route": 2}
        es = [edge("sw", "x", sourceHandle="output-3")]
        assert resolve_input(Node(id="x"), {"sw": result("sw", out)}, es) == out

    def test_non_numbered_handle_counts_as_port_zero(self):
        es = [edge("if", "x", sourceHandle="true")]
        assert resolve_input(Node(id="x"), {"if": result("if", {"output_index": 0})}, es) is not None
        assert resolve_input(Node(id="x"), {"if": result("if", {"output_index": 1})}, es) is None

    def test_string_index_never_matches(self):
        es = [edge("if", "x", sourceHandle="output-0")]
        assert resolve_input(Node(id="x"), {"if": result("if", {"output_index": "0"})}, es) is None

    def test_inactive_branch_excluded_from_merge(self):
        results = {
            "if": result("if", {"output_index": 0}),
            "other": result("other", {"v": 1}),
        }
        es = [edge("if", "join", sourceHandle="output-1"), edge("other", "join")]
        assert resolve_input(Node(id="join"), results, es) == {"v": 1}
