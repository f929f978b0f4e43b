"""Forensics panel - source evidence behind the selected node or topic."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from mission_control.graph.text import canonical_text
from mission_control.models import GraphNode, SourceDocument, SourceFact

MIN_TERM_LENGTH = 3


@dataclass
class ForensicFact:
    """A source fact together with the document it came from."""

    doc: str
    fact: SourceFact

    def to_dict(self) -> dict:
        return {**self.fact.to_dict(), "doc": self.doc}


@dataclass
class StatementDiff:
    canonical: str
    statements: list[str]

    def to_dict(self) -> dict:
        return {"canonical": self.canonical, "statements": list(self.statements)}


@dataclass
class Forensics:
    docs: list[SourceDocument] = field(default_factory=list)
    facts: list[ForensicFact] = field(default_factory=list)
    diffs: list[StatementDiff] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "docs": [{"id": d.id, "name": d.name, "path": d.path} for d in self.docs],
            "facts": [f.to_dict() for f in self.facts],
            "diffs": [d.to_dict() for d in self.diffs],
        }


def search_terms(anchor: GraphNode, selected_topic: GraphNode | None = None) -> list[str]:
    values = [anchor.label, anchor.summary, selected_topic.label if selected_topic else ""]
    terms = [canonical_text(value) for value in values]
    return [term for term in terms if len(term) >= MIN_TERM_LENGTH]


def build_forensics(
    anchor: GraphNode | None,
    selected_topic: GraphNode | None,
    documents: Sequence[SourceDocument],
) -> Forensics:
    """Documents and facts mentioning the anchor, plus conflicting wordings among them."""
    anchor = anchor or selected_topic
    if anchor is None:
        return Forensics()

    terms = search_terms(anchor, selected_topic)
    result = Forensics()
    if not terms:
        return result

    for doc in documents:
        hit = any(
            any(term in canonical_text(f"{chunk.topic} {chunk.text}") for term in terms)
            for chunk in doc.chunks
        )
        if not hit:
            continue
        result.docs.append(doc)
        for fact in doc.facts:
            haystack = canonical_text(f"{fact.topic} {fact.statement} {fact.canonical}")
            if any(term in haystack for term in terms):
                result.facts.append(ForensicFact(doc=doc.name, fact=fact))

    by_canonical: dict[str, dict[str, None]] = {}
    for item in result.facts:
        canonical = canonical_text(item.fact.canonical or item.fact.statement)
        if not canonical:
            continue
        by_canonical.setdefault(canonical, {})[item.fact.statement] = None

    result.diffs = [
        StatementDiff(canonical=canonical, statements=list(statements))
        for canonical, statements in by_canonical.items()
        if len(statements) > 1
    ]
    return result
