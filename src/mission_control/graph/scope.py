"""Scope filter - picks the capped, ranked subgraph shown on the canvas.

The filter is a pure function of the collapsed graph, node insights, one
immutable FilterConfig and the reference time. The same inputs always give
the same ScopeResult.

Steps:
1. Layer base set (overview / topic neighbourhood / 2-hop forensics)
2. Eligibility (lens, query, confidence, time range, chat usage, toggles)
3. Rank by usefulness, cap at 20 with forced ids first
4. Fallback ladder so the canvas is never empty while nodes exist
5. Stitch shortest paths between pinned nodes
6. Score and cap edges at 40
7. Hop distances from the focus; drop 3+ hops unless three-hop mode is on
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping, Sequence

from mission_control.graph.collapse import AggregatedEdge, CollapsedGraph
from mission_control.graph.config import DEFAULT_VIEW_CONFIG, GraphViewConfig
from mission_control.graph.insights import TOPIC_KINDS, NodeInsight, TopicRow
from mission_control.graph.text import clamp01, score_recency, time_range_ms
from mission_control.models import GraphNode

logger = logging.getLogger(__name__)


class Layer(str, Enum):
    """Canvas layer."""

    OVERVIEW = "overview"  # Topics and systems only, ring layout
    TOPIC = "topic"  # Selected topic and its direct neighbours
    FORENSICS = "forensics"  # 2-hop neighbourhood of the focus


class Lens(str, Enum):
    """Kind allow-list applied on top of the layer."""

    TOPIC = "topic"
    ENTITY = "entity"
    DECISION = "decision"
    FILE = "file"


class TimeRange(str, Enum):
    """Recency window."""

    LAST_7D = "7d"
    LAST_30D = "30d"
    LAST_90D = "90d"
    ALL = "all"


LENS_KINDS: dict[Lens, frozenset[str]] = {
    Lens.TOPIC: frozenset(
        ["concept", "preference", "tool", "topic", "fact", "task", "profile", "project", "system"]
    ),
    Lens.ENTITY: frozenset(["person", "organization", "tool", "profile", "project", "topic", "system"]),
    Lens.DECISION: frozenset(["preference", "concept", "task", "profile", "fact", "project"]),
    Lens.FILE: frozenset(["concept", "project", "tool", "topic", "system"]),
}

OVERVIEW_KINDS = frozenset(["topic", "concept", "system"])


@dataclass(frozen=True)
class FilterConfig:
    """Every UI filter the scope filter reads, as one immutable value."""

    layer: Layer = Layer.TOPIC
    lens: Lens = Lens.TOPIC
    query: str = ""
    confidence_threshold: float = DEFAULT_VIEW_CONFIG.default_confidence_threshold
    time_range: TimeRange = TimeRange.ALL
    used_in_last_n_chats: int = 0
    conflicts_only: bool = False
    low_provenance_only: bool = False
    show_three_hops: bool = False
    # Relations switched off by the user; anything not listed is enabled
    disabled_relations: frozenset[str] = frozenset()
    selected_node_id: str | None = None
    selected_topic_id: str | None = None
    pinned_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "layer", Layer(self.layer))
        object.__setattr__(self, "lens", Lens(self.lens))
        object.__setattr__(self, "time_range", TimeRange(self.time_range))
        object.__setattr__(self, "disabled_relations", frozenset(self.disabled_relations))
        object.__setattr__(self, "pinned_ids", tuple(self.pinned_ids))
        object.__setattr__(self, "used_in_last_n_chats", max(0, int(self.used_in_last_n_chats)))

    def relation_enabled(self, relation: str) -> bool:
        return relation not in self.disabled_relations

    def with_relation(self, relation: str, enabled: bool) -> "FilterConfig":
        """Toggle one relation type."""
        disabled = set(self.disabled_relations)
        if enabled:
            disabled.discard(relation)
        else:
            disabled.add(relation)
        return replace(self, disabled_relations=frozenset(disabled))

    def toggle_pin(self, node_id: str, limit: int = DEFAULT_VIEW_CONFIG.max_pinned) -> "FilterConfig":
        """Pin or unpin a node; the oldest pin is evicted beyond `limit`."""
        if node_id in self.pinned_ids:
            return replace(self, pinned_ids=tuple(i for i in self.pinned_ids if i != node_id))
        pinned = self.pinned_ids
        if len(pinned) >= limit:
            pinned = pinned[len(pinned) - limit + 1:]
        return replace(self, pinned_ids=(*pinned, node_id))

    def reset(self) -> "FilterConfig":
        """Default filters, keeping selection and pins."""
        return FilterConfig(
            selected_node_id=self.selected_node_id,
            selected_topic_id=self.selected_topic_id,
            pinned_ids=self.pinned_ids,
        )


@dataclass
class ScopeResult:
    """The visible subgraph."""

    node_ids: list[str]  # In selection order
    edges: list[AggregatedEdge]
    hop_distance: dict[str, int] = field(default_factory=dict)
    score_by_id: dict[str, float] = field(default_factory=dict)
    focus_id: str | None = None
    relaxed: bool = False  # True when the fallback ladder kicked in

    def to_dict(self) -> dict:
        return {
            "nodeIds": list(self.node_ids),
            "edges": [e.to_dict() for e in self.edges],
            "hopDistance": dict(self.hop_distance),
            "focusId": self.focus_id,
            "relaxed": self.relaxed,
        }


def within_lens(node: GraphNode, lens: Lens, conflict_count: int) -> bool:
    """Whether a node's kind passes the lens allow-list."""
    kind = str(node.kind or "fact").lower()
    if lens == Lens.DECISION:
        return kind in LENS_KINDS[Lens.DECISION] or conflict_count > 0
    if lens == Lens.FILE and kind == "project" and node.label.lower().endswith(".md"):
        return True
    return kind in LENS_KINDS[lens]


def pick_with_cap(sorted_ids: Iterable[str], cap: int, must_include: Iterable[str]) -> list[str]:
    """Forced ids first, then fill by rank, truncated to `cap`."""
    out: list[str] = []
    seen: set[str] = set()
    for node_id in must_include:
        if not node_id or node_id in seen:
            continue
        seen.add(node_id)
        out.append(node_id)
    for node_id in sorted_ids:
        if len(out) >= cap:
            break
        if node_id in seen:
            continue
        seen.add(node_id)
        out.append(node_id)
    return out[:cap]


def shortest_path(start: str, goal: str, adjacency: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Unweighted BFS path from start to goal, or None."""
    if start == goal:
        return [start]
    previous: dict[str, str | None] = {start: None}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for neighbor in adjacency.get(current, ()):
            if neighbor in previous:
                continue
            previous[neighbor] = current
            if neighbor == goal:
                path = [goal]
                cursor: str | None = current
                while cursor is not None:
                    path.append(cursor)
                    cursor = previous[cursor]
                return path[::-1]
            queue.append(neighbor)
    return None


def bfs_hops(
    start: str,
    adjacency: Mapping[str, Sequence[str]],
    max_hops: int | None = None,
    allowed: set[str] | None = None,
) -> dict[str, int]:
    """Hop distance from `start`, optionally bounded and restricted to `allowed`."""
    distances = {start: 0}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        dist = distances[current]
        if max_hops is not None and dist >= max_hops:
            continue
        for neighbor in adjacency.get(current, ()):
            if neighbor in distances:
                continue
            if allowed is not None and neighbor not in allowed:
                continue
            distances[neighbor] = dist + 1
            queue.append(neighbor)
    return distances


def resolve_selected_topic(
    collapsed: CollapsedGraph,
    selected_topic_id: str | None,
    topic_rows: Sequence[TopicRow] = (),
) -> str | None:
    """The explicit topic if it is a topic/concept node, else the top topic row."""
    if selected_topic_id:
        explicit = collapsed.node_by_id.get(selected_topic_id)
        if explicit is not None and str(explicit.kind or "").lower() in TOPIC_KINDS:
            return explicit.id
    if topic_rows:
        fallback = topic_rows[0].topic_id
        if fallback in collapsed.node_by_id:
            return fallback
    return None


def edge_score(edge: AggregatedEdge, now_ms: float) -> float:
    """Rank edges by confidence, multiplicity and recency."""
    return clamp01(
        0.45 * edge.confidence
        + 0.30 * min(1.0, math.log2(edge.count + 1) / 3)
        + 0.25 * score_recency(edge.last_seen_ms, now_ms)
    )


def _layer_base(
    collapsed: CollapsedGraph,
    adjacency: Mapping[str, Sequence[str]],
    layer: Layer,
    selected_node_id: str | None,
    selected_topic_id: str | None,
    view_config: GraphViewConfig,
) -> set[str]:
    all_ids = {node.id for node in collapsed.nodes}
    if layer == Layer.OVERVIEW:
        return {n.id for n in collapsed.nodes if str(n.kind or "").lower() in OVERVIEW_KINDS}
    if layer == Layer.TOPIC:
        if not selected_topic_id:
            return all_ids
        ids = {selected_topic_id}
        for edge in collapsed.edges:
            if edge.source == selected_topic_id:
                ids.add(edge.target)
            if edge.target == selected_topic_id:
                ids.add(edge.source)
        return ids
    focus = selected_node_id or selected_topic_id
    if not focus:
        return all_ids
    return set(bfs_hops(focus, adjacency, max_hops=view_config.forensics_hops))


def filter_scope(
    collapsed: CollapsedGraph,
    insights: Mapping[str, NodeInsight],
    config: FilterConfig,
    now_ms: float,
    topic_rows: Sequence[TopicRow] = (),
    view_config: GraphViewConfig = DEFAULT_VIEW_CONFIG,
) -> ScopeResult:
    """Select the visible nodes and edges for one filter configuration.

    Args:
        collapsed: Output of the relation collapser
        insights: Node id -> NodeInsight
        config: Immutable filter configuration
        now_ms: Reference time for time-range and edge recency
        topic_rows: Topic table, used to default the selected topic

    Returns:
        ScopeResult with at most max_visible_nodes nodes and max_visible_edges edges
    """
    adjacency = collapsed.adjacency()
    node_by_id = collapsed.node_by_id
    score_by_id = {
        node.id: insights[node.id].usefulness if node.id in insights else 0.0
        for node in collapsed.nodes
    }

    selected_node_id = config.selected_node_id if config.selected_node_id in node_by_id else None
    selected_topic_id = resolve_selected_topic(collapsed, config.selected_topic_id, topic_rows)
    pinned_ids = [pid for pid in config.pinned_ids if pid in node_by_id]

    query = config.query.strip().lower()
    time_limit = time_range_ms(config.time_range.value)
    cap = view_config.max_visible_nodes

    layer_base = _layer_base(
        collapsed, adjacency, config.layer, selected_node_id, selected_topic_id, view_config
    )

    def conflicts_of(node_id: str) -> int:
        insight = insights.get(node_id)
        return insight.conflicts if insight else 0

    def rank(nodes: Iterable[GraphNode]) -> list[str]:
        # Stable sort keeps graph order among equal scores
        return [n.id for n in sorted(nodes, key=lambda n: score_by_id.get(n.id, 0.0), reverse=True)]

    def eligible(node: GraphNode) -> bool:
        if node.id not in layer_base:
            return False
        insight = insights.get(node.id)
        if insight is None:
            return False
        if not within_lens(node, config.lens, insight.conflicts):
            return False
        if query:
            haystack = f"{node.label} {node.summary} {node.kind} {' '.join(node.tags or [])}".lower()
            if query not in haystack:
                return False
        if node.confidence < config.confidence_threshold:
            return False
        if (
            math.isfinite(time_limit)
            and insight.recency_ms > 0
            and now_ms - insight.recency_ms > time_limit
        ):
            return False
        if config.used_in_last_n_chats > 0 and insight.retrieval_in_window <= 0:
            return False
        if config.conflicts_only and insight.conflicts <= 0:
            return False
        if config.low_provenance_only and not insight.low_provenance:
            return False
        return True

    must_include = [selected_node_id or "", selected_topic_id or "", *pinned_ids]
    selected_ids = pick_with_cap(
        rank(n for n in collapsed.nodes if eligible(n)), cap, must_include
    )

    relaxed = False
    if not selected_ids:
        relaxed = True
        in_lens = [
            n
            for n in collapsed.nodes
            if n.id in layer_base and within_lens(n, config.lens, conflicts_of(n.id))
        ]
        fallback = in_lens if in_lens else list(collapsed.nodes)
        selected_ids = pick_with_cap(rank(fallback), cap, must_include)
        logger.debug(f"Scope filter relaxed: {len(selected_ids)} nodes after fallback")

    # Two or more pins replace the selection with the pins, their connecting
    # paths and the forced selection; other eligible nodes are dropped
    if len(pinned_ids) >= 2:
        connecting: dict[str, None] = dict.fromkeys(pinned_ids)
        for i, start in enumerate(pinned_ids):
            for goal in pinned_ids[i + 1:]:
                path = shortest_path(start, goal, adjacency)
                if path:
                    connecting.update(dict.fromkeys(path))
        scored = sorted(connecting, key=lambda nid: score_by_id.get(nid, 0.0), reverse=True)
        selected_ids = pick_with_cap(scored, cap, must_include)

    selected_set = set(selected_ids)

    candidates = [
        edge
        for edge in collapsed.edges
        if edge.source in selected_set
        and edge.target in selected_set
        and config.relation_enabled(edge.relation)
        and edge.confidence >= config.confidence_threshold
        and not (
            math.isfinite(time_limit)
            and edge.last_seen_ms > 0
            and now_ms - edge.last_seen_ms > time_limit
        )
    ]
    scored_edges = sorted(candidates, key=lambda e: edge_score(e, now_ms), reverse=True)
    scored_edges = scored_edges[: view_config.max_visible_edges]

    scoped: dict[str, None] = dict.fromkeys(selected_ids)
    for edge in scored_edges:
        scoped.setdefault(edge.source)
        scoped.setdefault(edge.target)

    focus_id = selected_node_id or selected_topic_id
    hop_distance: dict[str, int] = {}
    if focus_id and focus_id in scoped:
        hop_distance = bfs_hops(focus_id, adjacency, allowed=set(scoped))

    if focus_id and not config.show_three_hops:
        for node_id in list(scoped):
            dist = hop_distance.get(node_id)
            if dist is not None and dist >= view_config.trim_hop_distance:
                del scoped[node_id]

    visible_edges = [e for e in scored_edges if e.source in scoped and e.target in scoped]

    return ScopeResult(
        node_ids=list(scoped),
        edges=visible_edges,
        hop_distance=hop_distance,
        score_by_id=score_by_id,
        focus_id=focus_id,
        relaxed=relaxed,
    )
