"""Unit tests for relation collapsing."""

import pytest

from mission_control.graph.collapse import (
    collapse_relations,
    edge_key,
    find_relation_instances,
    is_relation_instance,
)
from mission_control.graph.text import DAY_MS
from mission_control.models import GraphEdge, GraphNode, GraphPayload, GraphTelemetry


class TestRelationInstances:
    """Tests for relation-instance detection."""

    def test_relation_kind_with_both_directions(self) -> None:
        node = GraphNode(id="r", label="whatever", kind="relation")
        assert is_relation_instance(node, 1, 1)
        assert not is_relation_instance(node, 0, 1)
        assert not is_relation_instance(node, 1, 0)

    def test_relation_label_hint(self) -> None:
        node = GraphNode(id="r", label="Mentions Topic", kind="fact")
        assert is_relation_instance(node, 2, 1)

    def test_plain_node_is_kept(self) -> None:
        node = GraphNode(id="n", label="Postgres", kind="tool")
        assert not is_relation_instance(node, 3, 3)

    def test_find_in_sample(self, sample_graph: GraphPayload) -> None:
        assert find_relation_instances(sample_graph.nodes, sample_graph.edges) == {"rel-supports"}


class TestCollapseRelations:
    """Tests for collapse_relations."""

    def test_removes_relation_nodes(self, sample_graph: GraphPayload) -> None:
        """Test that relation nodes disappear and nothing references them."""
        collapsed = collapse_relations(sample_graph.nodes, sample_graph.edges)

        assert "rel-supports" not in collapsed.node_by_id
        assert collapsed.relation_node_ids == frozenset({"rel-supports"})
        assert [n.id for n in collapsed.nodes] == [
            "topic-deploys",
            "fact-blue-green",
            "task-ci",
            "topic-ui",
            "pref-dark",
        ]
        ids = set(collapsed.node_by_id)
        for edge in collapsed.edges:
            assert edge.source in ids
            assert edge.target in ids

    def test_splices_relation_edge(self, sample_graph: GraphPayload) -> None:
        """Test A->R->B becomes a typed A->B edge with the mean weight."""
        collapsed = collapse_relations(sample_graph.nodes, sample_graph.edges)
        spliced = next(e for e in collapsed.edges if e.relation == "supports")

        assert spliced.source == "fact-blue-green"
        assert spliced.target == "topic-deploys"
        assert spliced.count == 1
        assert spliced.confidence == pytest.approx(0.7)
        assert spliced.evidence == ["memory.md | supports"]

    def test_aggregates_parallel_edges(self, sample_graph: GraphPayload) -> None:
        """Test parallel edges merge into one with running-mean confidence."""
        collapsed = collapse_relations(sample_graph.nodes, sample_graph.edges)
        key = edge_key("task-ci", "topic-deploys", "action_item")
        merged = next(e for e in collapsed.edges if e.id == key)

        assert merged.count == 2
        assert merged.confidence == pytest.approx(0.6)
        assert merged.max_confidence == pytest.approx(0.7)
        assert len(collapsed.edges) == 3

    def test_relation_types(self, sample_graph: GraphPayload) -> None:
        collapsed = collapse_relations(sample_graph.nodes, sample_graph.edges)
        assert collapsed.relation_types == ["action_item", "captures_preference", "supports"]

    def test_last_seen_from_document_mtimes(
        self,
        sample_graph: GraphPayload,
        sample_telemetry: GraphTelemetry,
        now_ms: float,
    ) -> None:
        """Test edge recency comes from evidence and endpoint file hints."""
        collapsed = collapse_relations(
            sample_graph.nodes, sample_graph.edges, sample_telemetry.document_mtimes()
        )
        by_relation = {e.relation: e for e in collapsed.edges}

        assert by_relation["supports"].last_seen_ms == now_ms - DAY_MS
        # topic-deploys carries a file:memory.md tag
        assert by_relation["action_item"].last_seen_ms == now_ms - DAY_MS
        # user.md is not a known document
        assert by_relation["captures_preference"].last_seen_ms == 0.0

    def test_missing_weight_uses_defaults(self) -> None:
        """Test default weights for direct and spliced edges."""
        nodes = [
            GraphNode(id="a", label="A"),
            GraphNode(id="b", label="B"),
            GraphNode(id="r", label="related_to", kind="relation"),
            GraphNode(id="c", label="C"),
        ]
        edges = [
            GraphEdge(id="1", source="a", target="b", relation="uses", weight=None),
            GraphEdge(id="2", source="a", target="r", weight=None),
            GraphEdge(id="3", source="r", target="c", weight=None),
        ]
        collapsed = collapse_relations(nodes, edges)
        by_relation = {e.relation: e for e in collapsed.edges}

        assert by_relation["uses"].confidence == pytest.approx(0.7)
        assert by_relation["related_to"].confidence == pytest.approx(0.6)

    def test_self_loop_through_relation_is_dropped(self) -> None:
        """Test A->R->A produces no edge."""
        nodes = [GraphNode(id="a", label="A"), GraphNode(id="r", label="supports", kind="relation")]
        edges = [
            GraphEdge(id="1", source="a", target="r"),
            GraphEdge(id="2", source="r", target="a"),
        ]
        collapsed = collapse_relations(nodes, edges)
        assert collapsed.edges == []
        assert [n.id for n in collapsed.nodes] == ["a"]

    def test_idempotent_aggregation(self, sample_graph: GraphPayload) -> None:
        """Test collapsing the same edges twice gives the same counts."""
        first = collapse_relations(sample_graph.nodes, sample_graph.edges)
        second = collapse_relations(sample_graph.nodes, list(reversed(sample_graph.edges)))

        def summary(collapsed):
            return {e.id: (e.count, round(e.confidence, 6)) for e in collapsed.edges}

        assert summary(first) == summary(second)

    def test_adjacency_is_undirected(self, sample_graph: GraphPayload) -> None:
        collapsed = collapse_relations(sample_graph.nodes, sample_graph.edges)
        adjacency = collapsed.adjacency()
        assert "topic-deploys" in adjacency["task-ci"]
        assert "task-ci" in adjacency["topic-deploys"]
        assert len(collapsed.incident_edges()["topic-deploys"]) == 2
