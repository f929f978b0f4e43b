"""Unit tests for conflict, duplicate and merge-suggestion detection."""

import pytest

from mission_control.graph.diagnostics import (
    compute_diagnostics,
    find_conflicts,
    find_duplicates,
    find_merge_suggestions,
    token_similarity,
)
from mission_control.models import GraphNode, GraphTelemetry, SourceDocument, SourceFact


def _doc(name: str, *facts: tuple[str, str, int]) -> SourceDocument:
    return SourceDocument(
        id=f"doc-{name}",
        name=name,
        path=f"/w/{name}",
        facts=[
            SourceFact(id=f"f-{line}", topic="Stack", statement=statement, canonical=canonical, line=line)
            for statement, canonical, line in facts
        ],
    )


class TestConflicts:
    """Tests for conflict detection."""

    def test_colliding_canonical_forms(self) -> None:
        """Test two wordings of one canonical fact form one group."""
        docs = [
            _doc("a.md", ("Uses Postgres", "database choice", 3)),
            _doc("b.md", ("Uses MySQL", "database choice", 7)),
        ]
        conflicts = find_conflicts(docs)

        assert len(conflicts) == 1
        group = conflicts[0]
        assert group.canonical == "database choice"
        assert group.statements == ["Uses Postgres", "Uses MySQL"]
        assert group.conflicts == 1
        assert [(r.doc, r.line) for r in group.refs] == [("a.md", 3), ("b.md", 7)]

    def test_identical_statements_are_not_conflicts(self) -> None:
        docs = [
            _doc("a.md", ("Uses Postgres", "uses postgres", 1)),
            _doc("b.md", ("Uses Postgres", "uses postgres", 2)),
        ]
        assert find_conflicts(docs) == []

    def test_canonical_falls_back_to_statement(self) -> None:
        docs = [_doc("a.md", ("The API is slow", "", 1), ("API is slow!", "", 2))]
        conflicts = find_conflicts(docs)
        assert len(conflicts) == 1
        assert conflicts[0].canonical == "api is slow"

    def test_sample_telemetry(self, sample_telemetry: GraphTelemetry) -> None:
        diagnostics = compute_diagnostics([], sample_telemetry.source_documents)
        assert diagnostics.conflicts_by_canonical() == {"deploys use blue green switching": 1}


class TestDuplicates:
    """Tests for duplicate clusters."""

    def test_same_canonical_label(self) -> None:
        nodes = [
            GraphNode(id="1", label="The Deploys"),
            GraphNode(id="2", label="deploys"),
            GraphNode(id="3", label="Releases"),
        ]
        clusters = find_duplicates(nodes)

        assert len(clusters) == 1
        assert clusters[0].label_key == "deploys"
        assert clusters[0].ids == ["1", "2"]
        assert clusters[0].labels == ["The Deploys", "deploys"]

    def test_empty_labels_ignored(self) -> None:
        nodes = [GraphNode(id="1", label="the"), GraphNode(id="2", label="!!")]
        assert find_duplicates(nodes) == []


class TestMergeSuggestions:
    """Tests for merge suggestions."""

    def test_token_similarity(self) -> None:
        assert token_similarity({"a", "b"}, {"a", "b"}) == 1.0
        assert token_similarity({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert token_similarity(set(), set()) == 0.0

    def test_same_kind_overlap(self) -> None:
        nodes = [
            GraphNode(id="1", label="postgres primary database cluster", kind="tool"),
            GraphNode(id="2", label="postgres primary database", kind="tool"),
            GraphNode(id="3", label="postgres primary database", kind="fact"),
        ]
        suggestions = find_merge_suggestions(nodes)

        assert len(suggestions) == 1
        assert (suggestions[0].a.id, suggestions[0].b.id) == ("1", "2")
        assert suggestions[0].similarity == pytest.approx(0.75)

    def test_threshold(self) -> None:
        nodes = [
            GraphNode(id="1", label="alpha beta", kind="tool"),
            GraphNode(id="2", label="alpha gamma", kind="tool"),
        ]
        assert find_merge_suggestions(nodes) == []
        assert len(find_merge_suggestions(nodes, threshold=0.3)) == 1

    def test_to_dict(self) -> None:
        nodes = [GraphNode(id="1", label="x y"), GraphNode(id="2", label="x y")]
        diagnostics = compute_diagnostics(nodes, [])
        data = diagnostics.to_dict()
        assert data["duplicates"][0]["ids"] == ["1", "2"]
        assert data["mergeSuggestions"] == [{"a": "1", "b": "2", "similarity": 1.0}]
