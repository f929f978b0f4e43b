"""Conflict, duplicate and merge-suggestion detection.

Conflicts come from source-document facts that share a canonical form but
are worded differently. Duplicates and merge suggestions come from node
labels.

The merge-suggestion scan compares every pair of same-kind nodes, so it is
O(n^2) in the collapsed node count. That is fine for the few hundred nodes a
memory graph holds; larger graphs would need bucketing by token shingles or
an approximate nearest-neighbour index instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from mission_control.graph.config import DEFAULT_VIEW_CONFIG
from mission_control.graph.text import canonical_text
from mission_control.models import GraphNode, SourceDocument

logger = logging.getLogger(__name__)


@dataclass
class FactReference:
    """Where a fact was stated."""

    doc: str
    line: int

    def to_dict(self) -> dict:
        return {"doc": self.doc, "line": self.line}


@dataclass
class ConflictGroup:
    """Differently-worded statements of the same canonical fact."""

    canonical: str
    statements: list[str]
    refs: list[FactReference] = field(default_factory=list)

    @property
    def conflicts(self) -> int:
        return len(self.statements) - 1

    def to_dict(self) -> dict:
        return {
            "canonical": self.canonical,
            "statements": list(self.statements),
            "refs": [r.to_dict() for r in self.refs],
        }


@dataclass
class DuplicateCluster:
    """Nodes whose labels canonicalize to the same text."""

    label_key: str
    ids: list[str]
    labels: list[str]

    def to_dict(self) -> dict:
        return {"labelKey": self.label_key, "ids": list(self.ids), "labels": list(self.labels)}


@dataclass
class MergeSuggestion:
    """Two same-kind nodes with heavily overlapping label tokens."""

    a: GraphNode
    b: GraphNode
    similarity: float

    def to_dict(self) -> dict:
        return {"a": self.a.id, "b": self.b.id, "similarity": self.similarity}


@dataclass
class Diagnostics:
    """All diagnostics for one graph + telemetry pair."""

    conflicts: list[ConflictGroup] = field(default_factory=list)
    duplicates: list[DuplicateCluster] = field(default_factory=list)
    merge_suggestions: list[MergeSuggestion] = field(default_factory=list)

    def conflicts_by_canonical(self) -> dict[str, int]:
        """Canonical key -> number of extra statements."""
        return {group.canonical: group.conflicts for group in self.conflicts}

    def to_dict(self) -> dict:
        return {
            "conflicts": [c.to_dict() for c in self.conflicts],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "mergeSuggestions": [m.to_dict() for m in self.merge_suggestions],
        }


def find_conflicts(documents: Sequence[SourceDocument]) -> list[ConflictGroup]:
    """Group facts by canonical text and keep groups with 2+ distinct statements."""
    groups: dict[str, ConflictGroup] = {}
    for doc in documents:
        for fact in doc.facts:
            canonical = canonical_text(fact.canonical or fact.statement)
            if not canonical:
                continue
            group = groups.get(canonical)
            if group is None:
                group = groups[canonical] = ConflictGroup(canonical=canonical, statements=[])
            statement = str(fact.statement or "")
            if statement not in group.statements:
                group.statements.append(statement)
            group.refs.append(FactReference(doc=doc.name, line=int(fact.line or 0)))
    return [group for group in groups.values() if len(group.statements) > 1]


def find_duplicates(nodes: Sequence[GraphNode]) -> list[DuplicateCluster]:
    """Clusters of nodes sharing a canonical label."""
    groups: dict[str, list[GraphNode]] = {}
    for node in nodes:
        key = canonical_text(node.label)
        if not key:
            continue
        groups.setdefault(key, []).append(node)
    return [
        DuplicateCluster(
            label_key=key,
            ids=[n.id for n in grouped],
            labels=[n.label for n in grouped],
        )
        for key, grouped in groups.items()
        if len(grouped) > 1
    ]


def token_similarity(a: set[str], b: set[str]) -> float:
    """Jaccard-like overlap of two token sets."""
    overlap = len(a & b)
    return overlap / max(1, len(a) + len(b) - overlap)


def find_merge_suggestions(
    nodes: Sequence[GraphNode],
    threshold: float = DEFAULT_VIEW_CONFIG.merge_similarity_threshold,
) -> list[MergeSuggestion]:
    """Pairs of same-kind nodes whose label token overlap reaches `threshold`."""
    tokens: list[set[str] | None] = []
    for node in nodes:
        key = canonical_text(node.label)
        tokens.append({t for t in key.split(" ") if t} if key else None)

    suggestions: list[MergeSuggestion] = []
    for i, a in enumerate(nodes):
        a_tokens = tokens[i]
        if not a_tokens:
            continue
        for j in range(i + 1, len(nodes)):
            b = nodes[j]
            if a.kind != b.kind:
                continue
            b_tokens = tokens[j]
            if not b_tokens:
                continue
            similarity = token_similarity(a_tokens, b_tokens)
            if similarity >= threshold:
                suggestions.append(MergeSuggestion(a=a, b=b, similarity=similarity))
    return suggestions


def compute_diagnostics(
    nodes: Sequence[GraphNode],
    documents: Sequence[SourceDocument],
    merge_threshold: float = DEFAULT_VIEW_CONFIG.merge_similarity_threshold,
) -> Diagnostics:
    """Run all diagnostics over collapsed nodes and source documents."""
    diagnostics = Diagnostics(
        conflicts=find_conflicts(documents),
        duplicates=find_duplicates(nodes),
        merge_suggestions=find_merge_suggestions(nodes, merge_threshold),
    )
    logger.debug(
        f"Diagnostics: {len(diagnostics.conflicts)} conflicts, "
        f"{len(diagnostics.duplicates)} duplicate clusters, "
        f"{len(diagnostics.merge_suggestions)} merge suggestions"
    )
    return diagnostics
