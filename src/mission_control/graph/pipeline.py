"""Memoized view pipeline.

Each stage caches its last result keyed by exactly the inputs it reads, so a
change that does not touch a stage's inputs never recomputes it:

    collapse     <- payload revision, telemetry revision
    diagnostics  <- payload revision, telemetry revision
    insights     <- + used_in_last_n_chats, now_ms bucketed to clock_resolution_ms
    topic rows   <- insights key
    scope        <- insights key + the whole FilterConfig
    layout       <- scope key
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Hashable

from mission_control.graph.collapse import CollapsedGraph, collapse_relations
from mission_control.graph.config import DEFAULT_VIEW_CONFIG, GraphViewConfig
from mission_control.graph.diagnostics import Diagnostics, compute_diagnostics
from mission_control.graph.forensics import Forensics, build_forensics
from mission_control.graph.insights import (
    TOPIC_KINDS,
    NodeInsight,
    TopicRow,
    build_topic_rows,
    compute_node_insights,
)
from mission_control.graph.layout import GraphLayout, LayoutAlgorithm, layout_view
from mission_control.graph.scope import (
    FilterConfig,
    ScopeResult,
    filter_scope,
    resolve_selected_topic,
)
from mission_control.models import GraphPayload, GraphTelemetry

logger = logging.getLogger(__name__)


@dataclass
class GraphView:
    """Every derived structure for one (payload, telemetry, filter) state."""

    collapsed: CollapsedGraph
    diagnostics: Diagnostics
    insights: dict[str, NodeInsight]
    topic_rows: list[TopicRow]
    scope: ScopeResult
    layout: GraphLayout
    forensics: Forensics = field(default_factory=Forensics)
    selected_topic_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.layout.nodes],
            "edges": [e.to_dict() for e in self.layout.edges],
            "relationTypes": self.collapsed.relation_types,
            "visibleRelationTypes": self.layout.relation_types,
            "selectedTopicId": self.selected_topic_id,
            "focusId": self.scope.focus_id,
            "topics": [row.to_dict() for row in self.topic_rows],
            "diagnostics": {
                "conflicts": len(self.diagnostics.conflicts),
                "duplicates": len(self.diagnostics.duplicates),
                "mergeSuggestions": len(self.diagnostics.merge_suggestions),
            },
            "forensics": self.forensics.to_dict(),
            "stats": {
                "totalNodes": len(self.collapsed.nodes),
                "totalEdges": len(self.collapsed.edges),
                "visibleNodes": len(self.layout.nodes),
                "visibleEdges": len(self.layout.edges),
                "relationNodesCollapsed": len(self.collapsed.relation_node_ids),
            },
        }


class GraphPipeline:
    """Runs the pure stages with one-entry memoization per stage."""

    def __init__(
        self,
        view_config: GraphViewConfig = DEFAULT_VIEW_CONFIG,
        layout_algorithm: LayoutAlgorithm | None = None,
    ):
        self.view_config = view_config
        self.layout_algorithm = layout_algorithm
        self._memo: dict[str, tuple[Hashable, Any]] = {}
        self.recompute_counts: Counter[str] = Counter()

    def _stage(self, name: str, key: Hashable, compute: Callable[[], Any]) -> Any:
        cached = self._memo.get(name)
        if cached is not None and cached[0] == key:
            return cached[1]
        value = compute()
        self._memo[name] = (key, value)
        self.recompute_counts[name] += 1
        logger.debug(f"Recomputed stage {name}")
        return value

    def clear(self) -> None:
        self._memo.clear()

    def run(
        self,
        graph: GraphPayload,
        telemetry: GraphTelemetry,
        config: FilterConfig,
        now_ms: float,
        graph_revision: int = 0,
        telemetry_revision: int = 0,
    ) -> GraphView:
        """Compute (or reuse) every stage for the given state.

        Revisions identify the payload and telemetry contents; callers bump
        them on every change. With the default of 0, pass a fresh pipeline
        or call clear() when the inputs change.

        Time-dependent stages are keyed on `now_ms` bucketed to
        `clock_resolution_ms`, so a live clock only recomputes them once per
        bucket.
        """
        source_key = (graph_revision, telemetry_revision)
        clock_bucket = int(now_ms // self.view_config.clock_resolution_ms)

        collapsed: CollapsedGraph = self._stage(
            "collapse",
            source_key,
            lambda: collapse_relations(graph.nodes, graph.edges, telemetry.document_mtimes()),
        )
        diagnostics: Diagnostics = self._stage(
            "diagnostics",
            source_key,
            lambda: compute_diagnostics(
                collapsed.nodes,
                telemetry.source_documents,
                self.view_config.merge_similarity_threshold,
            ),
        )

        insights_key = (source_key, config.used_in_last_n_chats, clock_bucket)
        insights: dict[str, NodeInsight] = self._stage(
            "insights",
            insights_key,
            lambda: compute_node_insights(
                collapsed,
                diagnostics,
                telemetry.source_documents,
                telemetry.recent_chat_messages,
                config.used_in_last_n_chats,
                now_ms,
                self.view_config,
            ),
        )
        topic_rows: list[TopicRow] = self._stage(
            "topic_rows", insights_key, lambda: build_topic_rows(collapsed, insights)
        )

        scope_key = (insights_key, config)
        scope: ScopeResult = self._stage(
            "scope",
            scope_key,
            lambda: filter_scope(collapsed, insights, config, now_ms, topic_rows, self.view_config),
        )
        layout: GraphLayout = self._stage(
            "layout",
            scope_key,
            lambda: layout_view(
                collapsed,
                scope,
                insights,
                config,
                now_ms,
                self.layout_algorithm,
                self.view_config,
            ),
        )

        selected_topic_id = resolve_selected_topic(collapsed, config.selected_topic_id, topic_rows)
        forensics: Forensics = self._stage(
            "forensics",
            (source_key, config.selected_node_id, selected_topic_id),
            lambda: build_forensics(
                collapsed.node_by_id.get(config.selected_node_id or ""),
                collapsed.node_by_id.get(selected_topic_id or ""),
                telemetry.source_documents,
            ),
        )

        return GraphView(
            collapsed=collapsed,
            diagnostics=diagnostics,
            insights=insights,
            topic_rows=topic_rows,
            scope=scope,
            layout=layout,
            forensics=forensics,
            selected_topic_id=selected_topic_id,
        )

    def run_with_default_selection(
        self,
        graph: GraphPayload,
        telemetry: GraphTelemetry,
        config: FilterConfig,
        now_ms: float,
        graph_revision: int = 0,
        telemetry_revision: int = 0,
    ) -> tuple[GraphView, FilterConfig]:
        """Like run(), but with nothing selected the first collapsed node is selected.

        Returns the view and the filter configuration it was computed for.
        """
        view = self.run(graph, telemetry, config, now_ms, graph_revision, telemetry_revision)
        if config.selected_node_id is not None or not view.collapsed.nodes:
            return view, config

        first = view.collapsed.nodes[0]
        changes: dict[str, Any] = {"selected_node_id": first.id}
        if str(first.kind or "").lower() in TOPIC_KINDS:
            changes["selected_topic_id"] = first.id
        config = replace(config, **changes)
        view = self.run(graph, telemetry, config, now_ms, graph_revision, telemetry_revision)
        return view, config
