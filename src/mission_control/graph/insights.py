"""Node usefulness scoring.

Usefulness is a fixed weighted blend of six signals:

    usefulness = 0.28 * retrieval_frequency
               + 0.20 * recency_score
               + 0.18 * (1 - conflict_rate)
               + 0.16 * provenance_quality
               + 0.10 * task_relevance
               + 0.08 * breadth

The weights are the ranking policy of the view and must not drift, otherwise
rankings stop being comparable across versions.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from mission_control.graph.collapse import AggregatedEdge, CollapsedGraph
from mission_control.graph.config import DEFAULT_VIEW_CONFIG, GraphViewConfig
from mission_control.graph.diagnostics import Diagnostics
from mission_control.graph.text import (
    DAY_MS,
    canonical_text,
    clamp01,
    collect_node_source_hints,
    evidence_md_tokens,
    score_recency,
)
from mission_control.models import GraphNode, RecentChatMessage, SourceDocument

logger = logging.getLogger(__name__)

USEFULNESS_WEIGHTS = {
    "retrieval_frequency": 0.28,
    "recency": 0.20,
    "consistency": 0.18,
    "provenance": 0.16,
    "task_relevance": 0.10,
    "breadth": 0.08,
}

# Kind -> prior for task relevance
TASK_RELEVANCE_BY_KIND = {
    "task": 1.0,
    "project": 0.84,
    "preference": 0.76,
    "profile": 0.76,
}
ACTION_ITEM_RELEVANCE = 0.88
TASK_RELEVANCE_FALLBACK_BY_KIND = {
    "concept": 0.65,
    "tool": 0.65,
    "fact": 0.62,
    "topic": 0.58,
}
DEFAULT_TASK_RELEVANCE = 0.4

TOPIC_KINDS = frozenset(["topic", "concept"])
FACT_LIKE_KINDS = frozenset(["fact", "profile", "task", "project", "tool", "preference", "person"])


@dataclass(frozen=True)
class NodeInsight:
    """Derived per-node signals. Recomputed, never mutated."""

    usefulness: float
    retrieval_frequency: float
    retrieval_in_window: int
    recency_ms: float
    recency_score: float
    conflict_rate: float
    conflicts: int
    provenance_quality: float
    task_relevance: float
    breadth: float
    sources: tuple[str, ...] = ()
    low_provenance: bool = False
    stale: bool = True

    def to_dict(self) -> dict:
        return {
            "usefulness": self.usefulness,
            "retrievalFrequency": self.retrieval_frequency,
            "retrievalInWindow": self.retrieval_in_window,
            "recencyMs": self.recency_ms,
            "recencyScore": self.recency_score,
            "conflictRate": self.conflict_rate,
            "conflicts": self.conflicts,
            "provenanceQuality": self.provenance_quality,
            "taskRelevance": self.task_relevance,
            "breadth": self.breadth,
            "sources": list(self.sources),
            "lowProvenance": self.low_provenance,
            "stale": self.stale,
        }


@dataclass
class TopicRow:
    """One line of the topic table."""

    topic_id: str
    topic: str
    facts_count: int
    last_updated_ms: float
    usage_count: int
    conflicts_count: int
    top_source: str = "n/a"

    def to_dict(self) -> dict:
        return {
            "topicId": self.topic_id,
            "topic": self.topic,
            "factsCount": self.facts_count,
            "lastUpdatedMs": self.last_updated_ms,
            "usageCount": self.usage_count,
            "conflictsCount": self.conflicts_count,
            "topSource": self.top_source,
        }


def compute_usefulness(
    retrieval_frequency: float,
    recency_score: float,
    conflict_rate: float,
    provenance_quality: float,
    task_relevance: float,
    breadth: float,
) -> float:
    """Weighted blend of the six signals, clamped to [0, 1]."""
    return clamp01(
        USEFULNESS_WEIGHTS["retrieval_frequency"] * retrieval_frequency
        + USEFULNESS_WEIGHTS["recency"] * recency_score
        + USEFULNESS_WEIGHTS["consistency"] * (1 - conflict_rate)
        + USEFULNESS_WEIGHTS["provenance"] * provenance_quality
        + USEFULNESS_WEIGHTS["task_relevance"] * task_relevance
        + USEFULNESS_WEIGHTS["breadth"] * breadth
    )


def task_relevance_for(node: GraphNode, edges: Sequence[AggregatedEdge]) -> float:
    """Kind-keyed prior; an action_item edge outranks the generic kinds."""
    kind = str(node.kind or "").lower()
    if kind in TASK_RELEVANCE_BY_KIND:
        return TASK_RELEVANCE_BY_KIND[kind]
    if any(edge.relation == "action_item" for edge in edges):
        return ACTION_ITEM_RELEVANCE
    return TASK_RELEVANCE_FALLBACK_BY_KIND.get(kind, DEFAULT_TASK_RELEVANCE)


def provenance_quality_for(source_count: int, edge_count: int) -> float:
    return clamp01(
        (0.35 if source_count > 0 else 0.0)
        + min(0.45, source_count * 0.18)
        + min(0.2, edge_count * 0.05)
    )


def _mentions(text: str, label_key: str, summary_key: str) -> bool:
    if not text:
        return False
    if label_key and label_key in text:
        return True
    return len(summary_key) >= 5 and summary_key in text


@dataclass
class _Partial:
    retrieval_raw: int
    recency_ms: float
    conflicts: int
    provenance_quality: float
    task_relevance: float
    breadth: float
    sources: list[str] = field(default_factory=list)


def compute_node_insights(
    collapsed: CollapsedGraph,
    diagnostics: Diagnostics,
    documents: Sequence[SourceDocument],
    chat_messages: Sequence[RecentChatMessage],
    used_in_last_n_chats: int,
    now_ms: float,
    config: GraphViewConfig = DEFAULT_VIEW_CONFIG,
) -> dict[str, NodeInsight]:
    """Score every collapsed node.

    Args:
        collapsed: Output of the relation collapser
        diagnostics: Conflict groups keyed by canonical text
        documents: Source documents (for provenance mtimes)
        chat_messages: Recent chat messages, newest first
        used_in_last_n_chats: Window size for retrieval_in_window (0 disables)
        now_ms: Reference time for recency and staleness

    Returns:
        Mapping of node id -> NodeInsight
    """
    conflict_by_canonical = diagnostics.conflicts_by_canonical()
    incident = collapsed.incident_edges()
    source_times = {doc.name.lower(): float(doc.mtime_ms or 0) for doc in documents}
    chat_texts = [str(msg.text or "").lower() for msg in chat_messages]

    partials: dict[str, _Partial] = {}
    max_retrieval = 1

    for node in collapsed.nodes:
        edges = incident.get(node.id, [])
        relation_set: set[str] = set()
        neighbor_set: set[str] = set()
        sources: dict[str, None] = dict.fromkeys(collect_node_source_hints(node))

        for edge in edges:
            relation_set.add(edge.relation)
            neighbor_set.add(edge.target if edge.source == node.id else edge.source)
            for evidence in edge.evidence:
                for token in evidence_md_tokens(evidence):
                    sources[token] = None

        recency_ms = 0.0
        for source in sources:
            ts = source_times.get(source) or 0.0
            if ts > recency_ms:
                recency_ms = ts
        for edge in edges:
            if edge.last_seen_ms > recency_ms:
                recency_ms = edge.last_seen_ms

        label_key = canonical_text(node.label)
        summary_key = canonical_text(node.summary or "")
        retrieval_raw = sum(1 for text in chat_texts if _mentions(text, label_key, summary_key))
        if retrieval_raw > max_retrieval:
            max_retrieval = retrieval_raw

        conflicts = conflict_by_canonical.get(canonical_text(node.summary or node.label), 0)

        partials[node.id] = _Partial(
            retrieval_raw=retrieval_raw,
            recency_ms=recency_ms,
            conflicts=conflicts,
            provenance_quality=provenance_quality_for(len(sources), len(edges)),
            task_relevance=task_relevance_for(node, edges),
            breadth=clamp01(len(relation_set) / 6 + len(neighbor_set) / 10),
            sources=list(sources),
        )

    window_texts = chat_texts[: max(0, int(used_in_last_n_chats))]
    stale_after_ms = config.stale_after_days * DAY_MS

    insights: dict[str, NodeInsight] = {}
    for node in collapsed.nodes:
        partial = partials[node.id]
        label_key = canonical_text(node.label)
        summary_key = canonical_text(node.summary or "")
        retrieval_in_window = sum(
            1 for text in window_texts if _mentions(text, label_key, summary_key)
        )

        retrieval_frequency = clamp01(partial.retrieval_raw / max_retrieval)
        recency_score = score_recency(partial.recency_ms, now_ms)
        conflict_rate = clamp01(partial.conflicts / 4)

        insights[node.id] = NodeInsight(
            usefulness=compute_usefulness(
                retrieval_frequency,
                recency_score,
                conflict_rate,
                partial.provenance_quality,
                partial.task_relevance,
                partial.breadth,
            ),
            retrieval_frequency=retrieval_frequency,
            retrieval_in_window=retrieval_in_window,
            recency_ms=partial.recency_ms,
            recency_score=recency_score,
            conflict_rate=conflict_rate,
            conflicts=partial.conflicts,
            provenance_quality=partial.provenance_quality,
            task_relevance=partial.task_relevance,
            breadth=partial.breadth,
            sources=tuple(partial.sources),
            low_provenance=partial.provenance_quality < config.low_provenance_threshold,
            stale=(now_ms - partial.recency_ms > stale_after_ms) if partial.recency_ms > 0 else True,
        )

    logger.debug(f"Scored {len(insights)} nodes (max retrieval {max_retrieval})")
    return insights


def build_topic_rows(
    collapsed: CollapsedGraph,
    insights: dict[str, NodeInsight],
) -> list[TopicRow]:
    """Topic table: per topic/concept node, its fact-like neighbourhood stats."""
    incident = collapsed.incident_edges()
    rows: list[TopicRow] = []

    for topic in collapsed.nodes:
        if str(topic.kind or "").lower() not in TOPIC_KINDS:
            continue
        neighbor_ids = [
            edge.target if edge.source == topic.id else edge.source
            for edge in incident.get(topic.id, [])
        ]
        fact_neighbors = [
            node_id
            for node_id in neighbor_ids
            if node_id in collapsed.node_by_id
            and str(collapsed.node_by_id[node_id].kind or "").lower() in FACT_LIKE_KINDS
        ]

        usage_count = 0
        conflicts_count = 0
        last_updated_ms = 0.0
        source_counter: Counter[str] = Counter()
        for node_id in [topic.id, *fact_neighbors]:
            insight = insights.get(node_id)
            if insight is None:
                continue
            usage_count += insight.retrieval_in_window
            conflicts_count += insight.conflicts
            if insight.recency_ms > last_updated_ms:
                last_updated_ms = insight.recency_ms
            source_counter.update(insight.sources)

        top_source = source_counter.most_common(1)[0][0] if source_counter else "n/a"

        rows.append(
            TopicRow(
                topic_id=topic.id,
                topic=topic.label,
                facts_count=len(fact_neighbors),
                last_updated_ms=last_updated_ms,
                usage_count=usage_count,
                conflicts_count=conflicts_count,
                top_source=top_source,
            )
        )

    rows.sort(key=lambda r: (r.usage_count, r.conflicts_count, r.facts_count), reverse=True)
    return rows
