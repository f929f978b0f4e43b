"""Deterministic graph bootstrap from markdown memory files.

Every heading becomes a topic node hanging off a `memory-core` root, every
extracted fact becomes a node that `supports` its topic. The file name is
kept as edge evidence and as a `file:<name>` tag so provenance survives.
"""

import logging
import re
from dataclasses import dataclass
from typing import Literal, Sequence

from mission_control.models import GraphEdge, GraphNode, GraphPayload
from mission_control.storage.evidence import clip, extract_evidence, slug

logger = logging.getLogger(__name__)

ROOT_ID = "memory-core"
LABEL_LIMIT = 64

_TASK_RE = re.compile(r"^(?:\[[ x]\]\s*|todo\b|task\b|next\b)", re.IGNORECASE)
_PREFERENCE_RE = re.compile(r"\b(?:prefers?|always|never|avoid)\b", re.IGNORECASE)


@dataclass
class BootstrapFile:
    """A markdown file used as bootstrap material."""

    name: str
    content: str
    source: Literal["indexed", "filesystem"] = "filesystem"


def classify_statement(statement: str) -> str:
    """Node kind for an extracted fact."""
    if _TASK_RE.search(statement):
        return "task"
    if _PREFERENCE_RE.search(statement):
        return "preference"
    return "fact"


def memory_core_node(summary: str) -> GraphNode:
    """The `memory-core` root every bootstrapped graph starts from."""
    return GraphNode(
        id=ROOT_ID,
        label="OpenClaw Memory Core",
        kind="system",
        summary=summary,
        confidence=1.0,
        source="bootstrap",
        tags=["memory", "core"],
        x=40.0,
        y=80.0,
    )


def build_bootstrap_graph(
    files: Sequence[BootstrapFile],
    facts_per_file: int = 24,
) -> GraphPayload:
    """
    Build a graph from markdown files without any model calls.

    Args:
        files: Bootstrap material, in priority order
        facts_per_file: Fact nodes taken from each file

    Returns:
        Raw (not yet normalized) GraphPayload
    """
    root = memory_core_node("Knowledge graph extracted from memory files.")
    nodes: dict[str, GraphNode] = {root.id: root}
    edges: dict[str, GraphEdge] = {}

    def add_edge(edge_id: str, source: str, target: str, relation: str, weight: float, evidence: str) -> None:
        if edge_id not in edges:
            edges[edge_id] = GraphEdge(
                id=edge_id,
                source=source,
                target=target,
                relation=relation,
                weight=weight,
                evidence=evidence,
            )

    for file in files:
        file_tag = f"file:{file.name}"
        _, facts = extract_evidence(file.content)

        for fact in facts[:facts_per_file]:
            topic_id = f"topic-{slug(fact.topic)}"
            topic = nodes.get(topic_id)
            if topic is None:
                topic = nodes[topic_id] = GraphNode(
                    id=topic_id,
                    label=fact.topic,
                    kind="topic",
                    summary=f"Notes filed under {fact.topic}.",
                    confidence=0.8,
                    source=file.name,
                    tags=["topic", file_tag],
                )
            elif file_tag not in topic.tags:
                topic.tags.append(file_tag)
            add_edge(
                f"edge-{ROOT_ID}-{topic_id}-{slug(file.name)}",
                ROOT_ID,
                topic_id,
                "contains_topic",
                0.8,
                file.name,
            )

            fact_id = f"fact-{slug(fact.canonical)}"
            node = nodes.get(fact_id)
            if node is None:
                node = nodes[fact_id] = GraphNode(
                    id=fact_id,
                    label=clip(fact.statement, LABEL_LIMIT),
                    kind=classify_statement(fact.statement),
                    summary=fact.statement,
                    confidence=fact.confidence_hint,
                    source=file.name,
                    tags=[file_tag],
                )
            elif file_tag not in node.tags:
                node.tags.append(file_tag)
            add_edge(
                f"edge-{fact_id}-{topic_id}-{slug(file.name)}",
                fact_id,
                topic_id,
                "supports",
                fact.confidence_hint,
                file.name,
            )

    if len(nodes) == 1:
        for node_id, label, kind, summary, confidence in (
            (
                "entity-user-preferences",
                "User Preferences",
                "preference",
                "Store stable preferences, style, constraints, and important context.",
                0.9,
            ),
            (
                "entity-project-context",
                "Project Context",
                "project",
                "Active tasks, architecture notes, and key decisions.",
                0.85,
            ),
        ):
            nodes[node_id] = GraphNode(
                id=node_id,
                label=label,
                kind=kind,
                summary=summary,
                confidence=confidence,
                source="template",
            )
            add_edge(f"edge-{ROOT_ID}-{node_id}", ROOT_ID, node_id, "tracks", 0.8, "")

    logger.info(
        f"Bootstrapped graph from {len(files)} files: "
        f"{len(nodes)} nodes, {len(edges)} edges"
    )
    return GraphPayload(nodes=list(nodes.values()), edges=list(edges.values()))
