"""Unit tests for the memoized view pipeline and forensics."""

from dataclasses import replace

import pytest

from mission_control.graph.forensics import build_forensics, search_terms
from mission_control.graph.pipeline import GraphPipeline
from mission_control.graph.scope import FilterConfig, Layer
from mission_control.graph.text import DAY_MS
from mission_control.models import (
    GraphEdge,
    GraphNode,
    GraphPayload,
    GraphTelemetry,
    SourceDocument,
    SourceFact,
)


class TestForensics:
    """Tests for the forensics panel."""

    def test_search_terms_skip_short(self) -> None:
        anchor = GraphNode(id="n", label="UI", summary="Dark mode toggle")
        assert search_terms(anchor) == ["dark mode toggle"]

    def test_facts_and_diffs(self, sample_graph: GraphPayload, sample_telemetry: GraphTelemetry) -> None:
        anchor = sample_graph.node("fact-blue-green")
        topic = sample_graph.node("topic-deploys")
        forensics = build_forensics(anchor, topic, sample_telemetry.source_documents)

        assert [d.name for d in forensics.docs] == ["memory.md"]
        assert [f.fact.line for f in forensics.facts] == [3, 9]
        assert len(forensics.diffs) == 1
        assert forensics.diffs[0].statements == [
            "Deploys use blue green switching",
            "Deploys use blue-green switching",
        ]

    def test_anchor_falls_back_to_topic(self, sample_graph, sample_telemetry) -> None:
        topic = sample_graph.node("topic-deploys")
        forensics = build_forensics(None, topic, sample_telemetry.source_documents)
        assert len(forensics.docs) == 1

    def test_no_match(self, sample_graph, sample_telemetry) -> None:
        forensics = build_forensics(sample_graph.node("pref-dark"), None, sample_telemetry.source_documents)
        assert forensics.docs == []
        assert forensics.to_dict() == {"docs": [], "facts": [], "diffs": []}

    def test_nothing_selected(self, sample_telemetry) -> None:
        assert build_forensics(None, None, sample_telemetry.source_documents).docs == []


class TestGraphPipeline:
    """Tests for GraphPipeline memoization and output."""

    def test_end_to_end(self, sample_graph, sample_telemetry, now_ms) -> None:
        view = GraphPipeline().run(sample_graph, sample_telemetry, FilterConfig(), now_ms)

        assert view.selected_topic_id == "topic-deploys"
        assert {n.id for n in view.layout.nodes} == {"topic-deploys", "fact-blue-green", "task-ci"}

        data = view.to_dict()
        assert data["relationTypes"] == ["action_item", "captures_preference", "supports"]
        assert data["visibleRelationTypes"] == ["action_item", "supports"]
        assert data["diagnostics"] == {"conflicts": 1, "duplicates": 0, "mergeSuggestions": 0}
        assert data["stats"]["totalNodes"] == 5
        assert data["stats"]["relationNodesCollapsed"] == 1
        assert data["topics"][0]["topicId"] == "topic-deploys"

    def test_same_inputs_reuse_every_stage(self, sample_graph, sample_telemetry, now_ms) -> None:
        pipeline = GraphPipeline()
        first = pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        second = pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)

        assert second.layout is first.layout
        assert set(pipeline.recompute_counts.values()) == {1}

    def test_filter_change_only_recomputes_scope(self, sample_graph, sample_telemetry, now_ms) -> None:
        pipeline = GraphPipeline()
        config = FilterConfig()
        pipeline.run(sample_graph, sample_telemetry, config, now_ms)
        pipeline.run(sample_graph, sample_telemetry, replace(config, query="deploy"), now_ms)

        counts = pipeline.recompute_counts
        assert counts["collapse"] == 1
        assert counts["diagnostics"] == 1
        assert counts["insights"] == 1
        assert counts["topic_rows"] == 1
        assert counts["scope"] == 2
        assert counts["layout"] == 2
        assert counts["forensics"] == 1

    def test_chat_window_recomputes_insights_only_downstream(
        self, sample_graph, sample_telemetry, now_ms
    ) -> None:
        pipeline = GraphPipeline()
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(used_in_last_n_chats=2), now_ms)

        counts = pipeline.recompute_counts
        assert counts["collapse"] == 1
        assert counts["insights"] == 2
        assert counts["scope"] == 2

    def test_revision_bump_recomputes_all(self, sample_graph, sample_telemetry, now_ms) -> None:
        pipeline = GraphPipeline()
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms, graph_revision=1)

        assert set(pipeline.recompute_counts.values()) == {2}

    def test_clear(self, sample_graph, sample_telemetry, now_ms) -> None:
        pipeline = GraphPipeline()
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        pipeline.clear()
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        assert pipeline.recompute_counts["collapse"] == 2

    def test_forensics_follow_selection(self, sample_graph, sample_telemetry, now_ms) -> None:
        config = FilterConfig(layer=Layer.FORENSICS, selected_node_id="fact-blue-green")
        view = GraphPipeline().run(sample_graph, sample_telemetry, config, now_ms)

        assert view.scope.focus_id == "fact-blue-green"
        assert len(view.forensics.diffs) == 1
        assert view.to_dict()["forensics"]["docs"] == [
            {"id": "doc-memory-md", "name": "memory.md", "path": "/workspace/MEMORY.md"}
        ]

    def test_empty_graph(self, now_ms) -> None:
        view = GraphPipeline().run(GraphPayload(), GraphTelemetry(), FilterConfig(), now_ms)
        assert view.layout.nodes == []
        assert view.selected_topic_id is None
        assert view.to_dict()["stats"]["visibleNodes"] == 0

    @pytest.mark.parametrize("layer", list(Layer))
    def test_caps_hold_on_every_layer(self, layer, sample_graph, sample_telemetry, now_ms) -> None:
        view = GraphPipeline().run(sample_graph, sample_telemetry, FilterConfig(layer=layer), now_ms)
        assert len(view.layout.nodes) <= 20
        assert len(view.layout.edges) <= 40

    def test_live_clock_reuses_time_stages_within_bucket(
        self, sample_graph, sample_telemetry, now_ms
    ) -> None:
        pipeline = GraphPipeline()
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(query="deploy"), now_ms + 30_000)

        counts = pipeline.recompute_counts
        assert counts["insights"] == 1
        assert counts["topic_rows"] == 1
        assert counts["scope"] == 2

    def test_clock_bucket_change_recomputes_time_stages(
        self, sample_graph, sample_telemetry, now_ms
    ) -> None:
        pipeline = GraphPipeline()
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms)
        pipeline.run(sample_graph, sample_telemetry, FilterConfig(), now_ms + 60_000)

        counts = pipeline.recompute_counts
        assert counts["collapse"] == 1
        assert counts["diagnostics"] == 1
        assert counts["insights"] == 2
        assert counts["layout"] == 2

    def test_run_with_default_selection(self, sample_graph, sample_telemetry, now_ms) -> None:
        pipeline = GraphPipeline()
        view, config = pipeline.run_with_default_selection(
            sample_graph, sample_telemetry, FilterConfig(), now_ms
        )

        assert config.selected_node_id == "topic-deploys"
        assert config.selected_topic_id == "topic-deploys"
        assert view.layout.node("topic-deploys").selected

        again, same = pipeline.run_with_default_selection(sample_graph, sample_telemetry, config, now_ms)
        assert same is config
        assert again.layout is view.layout


class TestRelationInstanceScenario:
    """Three entities, one reified relation and one conflicting fact pair."""

    @pytest.fixture
    def graph(self) -> GraphPayload:
        return GraphPayload(
            nodes=[
                GraphNode(id="topic-billing", label="Billing", kind="topic", confidence=0.8),
                GraphNode(
                    id="fact-invoices",
                    label="Invoice schedule",
                    kind="fact",
                    summary="Invoices are sent monthly",
                    confidence=0.8,
                ),
                GraphNode(id="entity-stripe", label="Stripe", kind="entity", confidence=0.7),
                GraphNode(id="rel-part-of", label="part_of", kind="relation", confidence=0.6),
            ],
            edges=[
                GraphEdge(id="e1", source="fact-invoices", target="rel-part-of", weight=0.8),
                GraphEdge(id="e2", source="rel-part-of", target="topic-billing", weight=0.8),
            ],
        )

    @pytest.fixture
    def telemetry(self, now_ms) -> GraphTelemetry:
        return GraphTelemetry(
            source_documents=[
                SourceDocument(
                    id="doc-billing-md",
                    name="billing.md",
                    path="/workspace/memory/billing.md",
                    mtime_ms=now_ms - DAY_MS,
                    facts=[
                        SourceFact(
                            id="fact-2",
                            topic="Billing",
                            statement="Invoices are sent monthly",
                            canonical="invoices are sent monthly",
                            line=2,
                        ),
                        SourceFact(
                            id="fact-7",
                            topic="Billing",
                            statement="Invoices are sent monthly, on the 1st",
                            canonical="invoices are sent monthly",
                            line=7,
                        ),
                    ],
                )
            ]
        )

    def test_scenario(self, graph, telemetry, now_ms) -> None:
        view = GraphPipeline().run(graph, telemetry, FilterConfig(), now_ms)

        assert [n.id for n in view.collapsed.nodes] == ["topic-billing", "fact-invoices", "entity-stripe"]
        assert view.collapsed.relation_node_ids == {"rel-part-of"}
        assert [(e.source, e.target) for e in view.collapsed.edges] == [("fact-invoices", "topic-billing")]
        assert len(view.diagnostics.conflicts) == 1

        assert 0 < len(view.layout.nodes) <= 20
        assert len(view.layout.edges) <= 40
        invoices = view.layout.node("fact-invoices")
        assert invoices is not None
        assert invoices.conflicts == 1
        assert invoices.ring_tone == "conflict"
        assert "1 conflict" in invoices.badges
