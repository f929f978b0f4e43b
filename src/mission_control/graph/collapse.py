"""Relation collapsing - turns reified relation nodes back into typed edges.

Some graphs encode a relationship as a node ("mentions_topic") sitting between
two entities. This pass removes those nodes, splices their in/out edges into
direct typed edges and aggregates parallel edges into one weighted edge.
It runs before any ranking or filtering touches the graph.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from mission_control.graph.text import (
    RELATION_NODE_HINTS,
    clamp01,
    collect_node_source_hints,
    evidence_md_tokens,
    normalize_relation,
)
from mission_control.models import GraphEdge, GraphNode

logger = logging.getLogger(__name__)

SPLICED_EDGE_DEFAULT_WEIGHT = 0.6
DIRECT_EDGE_DEFAULT_WEIGHT = 0.7


@dataclass
class AggregatedEdge:
    """All raw edges sharing (source, target, relation), merged."""

    id: str  # source::target::relation
    source: str
    target: str
    relation: str
    count: int
    confidence: float  # running mean
    max_confidence: float
    evidence: list[str] = field(default_factory=list)
    last_seen_ms: float = 0.0
    fact: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "relation": self.relation,
            "count": self.count,
            "confidence": self.confidence,
            "maxConfidence": self.max_confidence,
            "evidence": list(self.evidence),
            "lastSeenMs": self.last_seen_ms,
        }
        if self.fact:
            data["fact"] = self.fact
        return data


@dataclass
class TypedEdge:
    """An edge after splicing, before aggregation."""

    source: str
    target: str
    relation: str
    confidence: float
    evidence: str
    fact: str | None = None


@dataclass
class CollapsedGraph:
    """Edge-only relational model of the raw graph."""

    nodes: list[GraphNode]
    edges: list[AggregatedEdge]
    node_by_id: dict[str, GraphNode]
    relation_node_ids: frozenset[str] = frozenset()

    @property
    def relation_types(self) -> list[str]:
        """Sorted distinct relation types."""
        return sorted({edge.relation for edge in self.edges})

    def adjacency(self) -> dict[str, list[str]]:
        """Undirected adjacency over aggregated edges."""
        adjacency: dict[str, list[str]] = defaultdict(list)
        for edge in self.edges:
            adjacency[edge.source].append(edge.target)
            adjacency[edge.target].append(edge.source)
        return dict(adjacency)

    def incident_edges(self) -> dict[str, list[AggregatedEdge]]:
        """Node id -> aggregated edges touching it."""
        incident: dict[str, list[AggregatedEdge]] = defaultdict(list)
        for edge in self.edges:
            incident[edge.source].append(edge)
            incident[edge.target].append(edge)
        return dict(incident)


def edge_key(source: str, target: str, relation: str) -> str:
    return f"{source}::{target}::{relation}"


def is_relation_instance(node: GraphNode, in_degree: int, out_degree: int) -> bool:
    """A reified relation: has both inbound and outbound edges and looks like a relation."""
    if in_degree == 0 or out_degree == 0:
        return False
    if str(node.kind or "").lower() == "relation":
        return True
    return normalize_relation(node.label or node.id) in RELATION_NODE_HINTS


def find_relation_instances(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> set[str]:
    """Ids of relation-instance nodes."""
    in_degree: dict[str, int] = defaultdict(int)
    out_degree: dict[str, int] = defaultdict(int)
    for edge in edges:
        in_degree[edge.target] += 1
        out_degree[edge.source] += 1
    return {
        node.id
        for node in nodes
        if is_relation_instance(node, in_degree[node.id], out_degree[node.id])
    }


def splice_edges(
    nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    relation_node_ids: set[str],
) -> list[TypedEdge]:
    """Pass direct edges through and replace A->R->B chains with A->B."""
    node_by_id = {node.id: node for node in nodes}
    incoming: dict[str, list[GraphEdge]] = defaultdict(list)
    outgoing: dict[str, list[GraphEdge]] = defaultdict(list)
    for edge in edges:
        incoming[edge.target].append(edge)
        outgoing[edge.source].append(edge)

    typed: list[TypedEdge] = []
    for edge in edges:
        if edge.source in relation_node_ids or edge.target in relation_node_ids:
            continue
        typed.append(
            TypedEdge(
                source=edge.source,
                target=edge.target,
                relation=normalize_relation(edge.relation),
                confidence=clamp01(edge.weight or DIRECT_EDGE_DEFAULT_WEIGHT),
                evidence=str(edge.evidence or "").strip(),
                fact=edge.fact,
            )
        )

    # Sorted so the splice order does not depend on set iteration order
    for relation_node_id in sorted(relation_node_ids):
        relation_node = node_by_id.get(relation_node_id)
        label = relation_node.label if relation_node else ""
        relation = normalize_relation(label or relation_node_id)
        for edge_in in incoming.get(relation_node_id, []):
            for edge_out in outgoing.get(relation_node_id, []):
                if not edge_in.source or not edge_out.target:
                    continue
                if edge_in.source == edge_out.target:
                    continue
                weight_in = edge_in.weight or SPLICED_EDGE_DEFAULT_WEIGHT
                weight_out = edge_out.weight or SPLICED_EDGE_DEFAULT_WEIGHT
                evidence = " | ".join(
                    part
                    for part in (
                        str(edge_in.evidence or "").strip(),
                        str(edge_out.evidence or "").strip(),
                        str(label or "").strip(),
                    )
                    if part
                )
                typed.append(
                    TypedEdge(
                        source=edge_in.source,
                        target=edge_out.target,
                        relation=relation,
                        confidence=clamp01((weight_in + weight_out) / 2),
                        evidence=evidence,
                    )
                )
    return typed


def _resolve_recency(
    source: str,
    target: str,
    evidence: str,
    node_by_id: Mapping[str, GraphNode],
    doc_mtimes: Mapping[str, float],
) -> float:
    candidates = set(evidence_md_tokens(evidence)) if evidence else set()
    for node_id in (source, target):
        node = node_by_id.get(node_id)
        if node is not None:
            candidates.update(collect_node_source_hints(node))

    best = 0.0
    for name in candidates:
        mtime = doc_mtimes.get(name) or 0.0
        if mtime > best:
            best = mtime
    return best


def aggregate_edges(
    typed_edges: Sequence[TypedEdge],
    node_by_id: Mapping[str, GraphNode],
    doc_mtimes: Mapping[str, float],
) -> dict[str, AggregatedEdge]:
    """Merge typed edges keyed by source::target::relation."""
    aggregated: dict[str, AggregatedEdge] = {}
    for edge in typed_edges:
        key = edge_key(edge.source, edge.target, edge.relation)
        recency = _resolve_recency(edge.source, edge.target, edge.evidence, node_by_id, doc_mtimes)
        existing = aggregated.get(key)
        if existing is None:
            aggregated[key] = AggregatedEdge(
                id=key,
                source=edge.source,
                target=edge.target,
                relation=edge.relation,
                count=1,
                confidence=edge.confidence,
                max_confidence=edge.confidence,
                evidence=[edge.evidence] if edge.evidence else [],
                last_seen_ms=recency,
                fact=edge.fact,
            )
            continue

        existing.count += 1
        existing.confidence = clamp01(
            (existing.confidence * (existing.count - 1) + edge.confidence) / existing.count
        )
        existing.max_confidence = max(existing.max_confidence, edge.confidence)
        if edge.evidence:
            existing.evidence.append(edge.evidence)
        if recency > existing.last_seen_ms:
            existing.last_seen_ms = recency
        if edge.fact and not existing.fact:
            existing.fact = edge.fact
    return aggregated


def collapse_relations(
    nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    doc_mtimes: Mapping[str, float] | None = None,
) -> CollapsedGraph:
    """Remove relation-instance nodes and aggregate parallel edges.

    Args:
        nodes: Raw graph nodes
        edges: Raw graph edges
        doc_mtimes: Lowercased document name -> mtime (ms), for edge recency

    Returns:
        CollapsedGraph whose edges all have surviving endpoints
    """
    doc_mtimes = doc_mtimes or {}
    relation_node_ids = find_relation_instances(nodes, edges)
    typed = splice_edges(nodes, edges, relation_node_ids)

    node_by_id = {node.id: node for node in nodes}
    aggregated = aggregate_edges(typed, node_by_id, doc_mtimes)

    kept_nodes = [node for node in nodes if node.id not in relation_node_ids]
    kept_ids = {node.id for node in kept_nodes}
    kept_edges = [
        edge
        for edge in aggregated.values()
        if edge.source in kept_ids and edge.target in kept_ids
    ]

    logger.debug(
        f"Collapsed {len(nodes)} nodes/{len(edges)} edges into "
        f"{len(kept_nodes)} nodes/{len(kept_edges)} edges "
        f"({len(relation_node_ids)} relation nodes removed)"
    )

    return CollapsedGraph(
        nodes=kept_nodes,
        edges=kept_edges,
        node_by_id={node.id: node for node in kept_nodes},
        relation_node_ids=frozenset(relation_node_ids),
    )
