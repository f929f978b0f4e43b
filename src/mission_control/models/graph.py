"""Graph payload models - the unit of persistence for the memory graph."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return number


def _optional_float(value: Any) -> float | None:
    number = _as_float(value, math.nan)
    return None if math.isnan(number) or math.isinf(number) else number


@dataclass
class GraphNode:
    """
    An entity in the memory graph.

    Nodes whose kind is "relation" (or whose label is a relation hint) and
    that sit between two other nodes are reified relations; the collapser
    turns them back into edges before anything else reads the graph.
    """

    id: str
    label: str
    kind: str = "fact"
    summary: str = ""
    confidence: float = 0.75  # 0.0 - 1.0
    source: str = "manual"
    tags: list[str] = field(default_factory=list)  # may contain file:<name> hints

    # Persisted canvas coordinates
    x: float | None = None  # None until the node has been placed
    y: float | None = None

    def to_dict(self) -> dict:
        """Convert to wire/JSON dictionary."""
        data = {
            "id": self.id,
            "label": self.label,
            "kind": self.kind,
            "summary": self.summary,
            "confidence": self.confidence,
            "source": self.source,
            "tags": list(self.tags),
        }
        if self.x is not None and self.y is not None:
            data["x"] = self.x
            data["y"] = self.y
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GraphNode":
        """Create from wire/JSON dictionary."""
        return cls(
            id=str(data["id"]),
            label=str(data.get("label") or ""),
            kind=str(data.get("kind") or "fact"),
            summary=str(data.get("summary") or ""),
            confidence=_as_float(data.get("confidence"), 0.75),
            source=str(data.get("source") or "manual"),
            tags=[str(t) for t in data.get("tags") or []],
            x=_optional_float(data.get("x")),
            y=_optional_float(data.get("y")),
        )


@dataclass
class GraphEdge:
    """
    A raw directed edge. Not unique per (source, target).

    Example: memory-core --contains_topic--> topic-deploys (weight: 0.8)
    """

    id: str
    source: str
    target: str
    relation: str = "related_to"
    weight: float | None = 0.7  # None means "not given"
    evidence: str = ""
    fact: str | None = None

    def to_dict(self) -> dict:
        """Convert to wire/JSON dictionary."""
        data = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "relation": self.relation,
            "weight": self.weight,
            "evidence": self.evidence,
        }
        if self.fact:
            data["fact"] = self.fact
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GraphEdge":
        """Create from wire/JSON dictionary."""
        weight = data.get("weight")
        return cls(
            id=str(data["id"]),
            source=str(data["source"]),
            target=str(data["target"]),
            relation=str(data.get("relation") or "related_to"),
            weight=None if weight is None else _as_float(weight, 0.7),
            evidence=str(data.get("evidence") or ""),
            fact=data.get("fact") or None,
        )


@dataclass
class GraphPayload:
    """The whole graph as loaded, saved and published."""

    version: int = 1
    updated_at: str = field(default_factory=utc_now_iso)
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)

    def node(self, node_id: str) -> GraphNode | None:
        """Find a node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict:
        """Convert to wire/JSON dictionary."""
        return {
            "version": self.version,
            "updatedAt": self.updated_at,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphPayload":
        """Create from wire/JSON dictionary."""
        return cls(
            version=int(data.get("version") or 1),
            updated_at=str(data.get("updatedAt") or utc_now_iso()),
            nodes=[GraphNode.from_dict(n) for n in data.get("nodes") or []],
            edges=[GraphEdge.from_dict(e) for e in data.get("edges") or []],
        )
