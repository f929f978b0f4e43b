"""Layout engine - positions and render annotations for the visible subgraph.

Non-overview layers use a ranked left-to-right layout computed with NetworkX.
Any LayoutAlgorithm can be swapped in; if it raises, nodes fall back to a
deterministic grid. The overview layer ignores all positions and places the
visible nodes on an ellipse.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence

import networkx as nx

from mission_control.graph.collapse import AggregatedEdge, CollapsedGraph
from mission_control.graph.config import DEFAULT_VIEW_CONFIG, GraphViewConfig
from mission_control.graph.insights import NodeInsight
from mission_control.graph.scope import FilterConfig, Layer, ScopeResult
from mission_control.graph.text import format_ago, kind_label, truncate
from mission_control.models import GraphNode

logger = logging.getLogger(__name__)

TITLE_TRUNCATE = 42
SUMMARY_TRUNCATE = 72

Position = tuple[float, float]


class LayoutAlgorithm(Protocol):
    """Directed-graph layout: node ids + edges -> top-left positions."""

    def layout(
        self,
        node_ids: Sequence[str],
        edges: Sequence[tuple[str, str]],
    ) -> dict[str, Position]:
        ...


class RankedLayout:
    """Left-to-right layered layout.

    Ranks are longest-path depths on the condensation DAG (cycles share a
    rank); nodes inside a rank are ordered by the barycenter of their
    neighbours in earlier ranks.
    """

    def __init__(self, config: GraphViewConfig = DEFAULT_VIEW_CONFIG):
        self.config = config

    def rank_nodes(
        self,
        node_ids: Sequence[str],
        edges: Sequence[tuple[str, str]],
    ) -> dict[str, int]:
        """Longest-path rank per node."""
        G = nx.DiGraph()
        G.add_nodes_from(node_ids)
        for source, target in edges:
            if source != target and source in G and target in G:
                G.add_edge(source, target)

        C = nx.condensation(G)
        mapping = C.graph["mapping"]

        component_rank: dict[int, int] = {}
        for component in nx.topological_sort(C):
            preds = [component_rank[p] + 1 for p in C.predecessors(component)]
            component_rank[component] = max(preds) if preds else 0

        return {node_id: component_rank[mapping[node_id]] for node_id in node_ids}

    def layout(
        self,
        node_ids: Sequence[str],
        edges: Sequence[tuple[str, str]],
    ) -> dict[str, Position]:
        if not node_ids:
            return {}

        ranks = self.rank_nodes(node_ids, edges)
        input_order = {node_id: idx for idx, node_id in enumerate(node_ids)}

        neighbors: dict[str, set[str]] = defaultdict(set)
        for source, target in edges:
            if source in ranks and target in ranks and source != target:
                neighbors[source].add(target)
                neighbors[target].add(source)

        by_rank: dict[int, list[str]] = defaultdict(list)
        for node_id in node_ids:
            by_rank[ranks[node_id]].append(node_id)

        slot: dict[str, int] = {}
        for rank in sorted(by_rank):
            members = by_rank[rank]

            def barycenter(node_id: str) -> float:
                placed = [slot[n] for n in neighbors[node_id] if n in slot and ranks[n] < rank]
                if not placed:
                    return math.inf
                return sum(placed) / len(placed)

            members.sort(key=lambda n: (barycenter(n), input_order[n]))
            for idx, node_id in enumerate(members):
                slot[node_id] = idx

        cfg = self.config
        positions: dict[str, Position] = {}
        for node_id in node_ids:
            x = cfg.margin + ranks[node_id] * (cfg.node_width + cfg.rank_separation)
            y = cfg.margin + slot[node_id] * (cfg.node_height + cfg.node_separation)
            positions[node_id] = (float(x), float(y))
        return positions


@dataclass
class RenderNode:
    """A positioned, annotated node ready for the canvas."""

    id: str
    x: float
    y: float
    draggable: bool
    opacity: float
    title: str
    subtitle: str
    kind_label: str
    conflicts: int = 0
    unverified: bool = False
    pinned: bool = False
    selected: bool = False
    ring_tone: str = "default"  # default | conflict | unverified
    hop: int | None = None

    @property
    def badges(self) -> list[str]:
        badges = []
        if self.conflicts > 0:
            badges.append(f"{self.conflicts} conflict{'' if self.conflicts == 1 else 's'}")
        if self.unverified:
            badges.append("Unverified")
        if self.pinned:
            badges.append("Pinned")
        return badges

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": {"x": self.x, "y": self.y},
            "draggable": self.draggable,
            "opacity": self.opacity,
            "title": self.title,
            "subtitle": self.subtitle,
            "kindLabel": self.kind_label,
            "badges": self.badges,
            "selected": self.selected,
            "ringTone": self.ring_tone,
            "hop": self.hop,
        }


@dataclass
class RenderEdge:
    """A styled edge ready for the canvas."""

    id: str
    source: str
    target: str
    relation: str
    count: int
    confidence: float
    last_seen_ms: float
    stroke_width: float
    opacity: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "relation": self.relation,
            "count": self.count,
            "confidence": self.confidence,
            "lastSeenMs": self.last_seen_ms,
            "strokeWidth": self.stroke_width,
            "opacity": self.opacity,
        }


@dataclass
class GraphLayout:
    """Everything the canvas draws for one scope."""

    nodes: list[RenderNode] = field(default_factory=list)
    edges: list[RenderEdge] = field(default_factory=list)

    @property
    def relation_types(self) -> list[str]:
        return sorted({edge.relation for edge in self.edges})

    def node(self, node_id: str) -> RenderNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "relationTypes": self.relation_types,
        }


def is_saved_position_reasonable(
    x: float | None,
    y: float | None,
    limit: float = DEFAULT_VIEW_CONFIG.saved_position_max,
) -> bool:
    """Saved coordinates beyond the limit are leftovers from an old layout."""
    if x is None or y is None:
        return False
    if not (math.isfinite(x) and math.isfinite(y)):
        return False
    return abs(x) <= limit and abs(y) <= limit


def grid_position(index: int, config: GraphViewConfig = DEFAULT_VIEW_CONFIG) -> Position:
    col = index % config.grid_columns
    row = index // config.grid_columns
    return (
        config.grid_origin[0] + col * config.grid_spacing[0],
        config.grid_origin[1] + row * config.grid_spacing[1],
    )


def ring_position(index: int, count: int, config: GraphViewConfig = DEFAULT_VIEW_CONFIG) -> Position:
    angle = (index / max(1, count)) * math.pi * 2
    return (
        config.ring_center[0] + math.cos(angle) * config.ring_radii[0],
        config.ring_center[1] + math.sin(angle) * config.ring_radii[1],
    )


def edge_stroke_width(edge: AggregatedEdge) -> float:
    return max(1.4, min(4.2, 1 + edge.confidence * 2.4 + math.log2(edge.count + 1) * 0.45))


def node_subtitle(
    node: GraphNode,
    insight: NodeInsight | None,
    edge_count: int,
    now_ms: float,
) -> str:
    """First applicable of: distinct summary, source file, chat usage, age, degree, kind."""
    summary = (node.summary or "").strip()
    label = (node.label or "").strip()
    summary_is_different = (
        len(summary) > 10
        and len(label) > 0
        and not label.lower().startswith(summary.lower()[: min(15, len(summary))])
    )
    primary_source = insight.sources[0] if insight and insight.sources else None
    is_file_like = str(node.kind or "").lower() == "project" or (
        primary_source is not None and primary_source.endswith(".md")
    )

    if summary_is_different:
        return truncate(summary, SUMMARY_TRUNCATE)
    if is_file_like and primary_source:
        return f"From {primary_source}"
    if insight and insight.retrieval_in_window > 0:
        n = insight.retrieval_in_window
        return "Used in 1 recent chat" if n == 1 else f"Used in {n} recent chats"
    if insight and insight.recency_ms > 0:
        return f"Updated {format_ago(insight.recency_ms, now_ms)}"
    if edge_count > 0:
        return "1 connection" if edge_count == 1 else f"{edge_count} connections"
    return kind_label(node.kind)


def layout_view(
    collapsed: CollapsedGraph,
    scope: ScopeResult,
    insights: Mapping[str, NodeInsight],
    config: FilterConfig,
    now_ms: float,
    algorithm: LayoutAlgorithm | None = None,
    view_config: GraphViewConfig = DEFAULT_VIEW_CONFIG,
) -> GraphLayout:
    """Position and annotate the nodes and edges of a scope.

    Args:
        collapsed: Collapsed graph (node order drives grid and ring order)
        scope: Output of the scope filter
        insights: Node id -> NodeInsight
        config: Filter configuration (layer, selection, pins, three-hop mode)
        now_ms: Reference time for "Updated ... ago" subtitles
        algorithm: Ranked layout implementation (defaults to RankedLayout)

    Returns:
        GraphLayout with render nodes and edges
    """
    visible_ids = set(scope.node_ids)
    visible = [node for node in collapsed.nodes if node.id in visible_ids]
    count = max(1, len(visible))
    overview = config.layer == Layer.OVERVIEW

    computed: dict[str, Position] = {}
    if not overview and visible:
        algorithm = algorithm or RankedLayout(view_config)
        try:
            computed = algorithm.layout(
                [n.id for n in visible],
                [(e.source, e.target) for e in scope.edges],
            )
        except Exception as e:
            logger.debug(f"Layout failed, using grid fallback: {e}")
            computed = {}

    edge_count_by_node: dict[str, int] = defaultdict(int)
    for edge in scope.edges:
        edge_count_by_node[edge.source] += 1
        edge_count_by_node[edge.target] += 1

    pinned = set(config.pinned_ids)
    render_nodes: list[RenderNode] = []
    for idx, node in enumerate(visible):
        insight = insights.get(node.id)
        dist = scope.hop_distance.get(node.id)
        selected = config.selected_node_id == node.id

        opacity = view_config.hop_two_opacity if dist == 2 and not selected else 1.0

        if overview:
            x, y = ring_position(idx, count, view_config)
        elif is_saved_position_reasonable(node.x, node.y, view_config.saved_position_max):
            x, y = node.x, node.y
        elif node.id in computed:
            x, y = computed[node.id]
        else:
            x, y = grid_position(idx, view_config)

        conflicts = insight.conflicts if insight else 0
        unverified = bool(insight and insight.low_provenance)
        if conflicts:
            ring_tone = "conflict"
        elif unverified:
            ring_tone = "unverified"
        else:
            ring_tone = "default"

        render_nodes.append(
            RenderNode(
                id=node.id,
                x=float(x),
                y=float(y),
                draggable=not overview,
                opacity=opacity,
                title=truncate((node.label or "").strip() or node.id, TITLE_TRUNCATE),
                subtitle=node_subtitle(node, insight, edge_count_by_node[node.id], now_ms),
                kind_label=kind_label(node.kind),
                conflicts=conflicts,
                unverified=unverified,
                pinned=node.id in pinned,
                selected=selected,
                ring_tone=ring_tone,
                hop=dist,
            )
        )

    render_edges: list[RenderEdge] = []
    for edge in scope.edges:
        faint = (
            scope.hop_distance.get(edge.source) == 2 or scope.hop_distance.get(edge.target) == 2
        ) and not config.show_three_hops
        render_edges.append(
            RenderEdge(
                id=edge.id,
                source=edge.source,
                target=edge.target,
                relation=edge.relation,
                count=edge.count,
                confidence=edge.confidence,
                last_seen_ms=edge.last_seen_ms,
                stroke_width=edge_stroke_width(edge),
                opacity=0.32 if faint else 0.85,
            )
        )

    return GraphLayout(nodes=render_nodes, edges=render_edges)
