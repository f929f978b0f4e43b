"""Workspace-backed graph store.

Layout under the workspace directory:

    MEMORY.md                     <- snapshot section upserted on publish
    *.md                          <- workspace reference documents
    memory/knowledge-graph.json   <- the graph (pretty JSON)
    memory/knowledge-graph.md     <- human-readable materialization
    memory/*.md                   <- journal / memory documents
"""

import asyncio
import json
import logging
import math
from pathlib import Path
from typing import Any, Literal

import aiofiles

from mission_control.config import Settings, settings as default_settings
from mission_control.exceptions import GraphStoreError
from mission_control.graph.text import collect_node_source_hints
from mission_control.models import (
    BootstrapInfo,
    GraphEdge,
    GraphLoadResult,
    GraphNode,
    GraphPayload,
    GraphTelemetry,
    SourceDocument,
    utc_now_iso,
)
from mission_control.storage.bootstrap import BootstrapFile, build_bootstrap_graph
from mission_control.storage.chat_log import read_recent_chat_messages
from mission_control.storage.evidence import clip, read_source_document, sanitize_text, slug
from mission_control.storage.extraction import ExtractionClient, extract_graph

logger = logging.getLogger(__name__)

MISSING_API_KEY_ERROR = "LLM_API_KEY not configured. Set it to enable LLM knowledge extraction."

SNAPSHOT_START = "<!-- KNOWLEDGE_GRAPH:START -->"
SNAPSHOT_END = "<!-- KNOWLEDGE_GRAPH:END -->"

LABEL_LIMIT = 64
SUMMARY_LIMIT = 240
TAG_LIMIT = 8
FACT_LIMIT = 300
SNAPSHOT_NODES = 12
SNAPSHOT_EDGES = 20


# =============================================================================
# Normalization
# =============================================================================


def _round_unit(value: Any, fallback: float) -> float:
    """Clamp to [0, 1] rounded to 2 decimals; unusable values give `fallback`."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return round(min(1.0, max(0.0, number)), 2)


def _finite(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def _unique_id(base: str, taken: set[str]) -> str:
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def normalize_node(raw: dict, index: int, taken: set[str]) -> GraphNode:
    label_raw = sanitize_text(raw.get("label"), f"Untitled {index + 1}")
    base_id = sanitize_text(raw.get("id")) or f"node-{slug(label_raw) if raw.get('label') else index}"
    tags = raw.get("tags") if isinstance(raw.get("tags"), list) else []
    x = _finite(raw.get("x"))
    y = _finite(raw.get("y"))
    return GraphNode(
        id=_unique_id(base_id, taken),
        label=clip(label_raw, LABEL_LIMIT),
        kind=sanitize_text(raw.get("kind"), "fact") or "fact",
        summary=clip(sanitize_text(raw.get("summary")), SUMMARY_LIMIT),
        confidence=_round_unit(raw.get("confidence"), 0.75),
        source=sanitize_text(raw.get("source"), "manual") or "manual",
        tags=[t for t in (sanitize_text(tag) for tag in tags) if t][:TAG_LIMIT],
        x=x if x is not None else float((index % 4) * 280),
        y=y if y is not None else float((index // 4) * 150),
    )


def normalize_graph(raw: Any) -> GraphPayload:
    """
    Sanitize an untrusted graph.

    Ids are made unique with -2, -3 suffixes, text is collapsed and clipped,
    and edges whose endpoints do not exist are dropped.
    """
    data = raw if isinstance(raw, dict) else {}
    raw_nodes = data.get("nodes") if isinstance(data.get("nodes"), list) else []
    raw_edges = data.get("edges") if isinstance(data.get("edges"), list) else []

    taken: set[str] = set()
    nodes = [
        normalize_node(n if isinstance(n, dict) else {}, idx, taken)
        for idx, n in enumerate(raw_nodes)
    ]
    node_ids = {n.id for n in nodes}

    edge_ids: set[str] = set()
    edges: list[GraphEdge] = []
    for idx, e in enumerate(raw_edges):
        e = e if isinstance(e, dict) else {}
        source = sanitize_text(e.get("source"))
        target = sanitize_text(e.get("target"))
        if source not in node_ids or target not in node_ids:
            continue
        base_id = sanitize_text(e.get("id")) or f"edge-{slug(source)}-{slug(target)}-{idx + 1}"
        fact = sanitize_text(e.get("fact"))[:FACT_LIMIT]
        edges.append(GraphEdge(
            id=_unique_id(base_id, edge_ids),
            source=source,
            target=target,
            relation=sanitize_text(e.get("relation"), "related_to") or "related_to",
            weight=_round_unit(e.get("weight"), 0.7),
            evidence=sanitize_text(e.get("evidence")),
            fact=fact or None,
        ))

    return GraphPayload(version=1, updated_at=utc_now_iso(), nodes=nodes, edges=edges)


# =============================================================================
# Markdown materialization
# =============================================================================


def graph_to_markdown(graph: GraphPayload) -> str:
    """Entities / Relations / Retrieval Triples document."""
    label_by_id = {n.id: n.label for n in graph.nodes}

    entity_lines = []
    for n in graph.nodes:
        summary = f" - {n.summary}" if n.summary else ""
        tags = f" | tags: {', '.join(n.tags)}" if n.tags else ""
        entity_lines.append(f"- **{n.label}** (`{n.kind}`){summary}{tags}")

    relation_lines = []
    triples = []
    for e in graph.edges:
        source = label_by_id.get(e.source) or e.source
        target = label_by_id.get(e.target) or e.target
        weight = f" ({round(e.weight * 100)}%)" if e.weight is not None else ""
        evidence = f" — evidence: {e.evidence}" if e.evidence else ""
        relation_lines.append(f"- **{source}** --`{e.relation}`--> **{target}**{weight}{evidence}")
        triples.append(f"- {source} | {e.relation} | {target}")

    return "\n".join([
        "# Knowledge Graph Memory",
        "",
        f"Generated: {graph.updated_at}",
        "",
        "This file is generated from Mission Control knowledge graph editing.",
        "",
        "## Entities",
        "\n".join(entity_lines) or "- _No entities yet_",
        "",
        "## Relations",
        "\n".join(relation_lines) or "- _No relations yet_",
        "",
        "## Retrieval Triples",
        "\n".join(triples) or "- _No triples yet_",
        "",
    ])


def build_snapshot_section(graph: GraphPayload) -> str:
    """High-signal entities and relations for MEMORY.md."""
    label_by_id = {n.id: n.label for n in graph.nodes}
    top_nodes = sorted(graph.nodes, key=lambda n: n.confidence, reverse=True)[:SNAPSHOT_NODES]
    top_edges = sorted(graph.edges, key=lambda e: e.weight or 0.0, reverse=True)[:SNAPSHOT_EDGES]

    node_lines = [
        f"- **{n.label}** (`{n.kind}`)" + (f" — {n.summary}" if n.summary else "")
        for n in top_nodes
    ]
    edge_lines = [
        f"- {label_by_id.get(e.source) or e.source} --{e.relation}--> "
        f"{label_by_id.get(e.target) or e.target}"
        for e in top_edges
    ]

    return "\n".join([
        "## Knowledge Graph Snapshot",
        "",
        f"_Generated: {graph.updated_at}_",
        "",
        "### High-Signal Entities",
        "\n".join(node_lines) or "- _None_",
        "",
        "### High-Signal Relations",
        "\n".join(edge_lines) or "- _None_",
        "",
    ])


def upsert_snapshot(raw: str, section: str) -> str:
    """Replace the marked snapshot block, or append one."""
    block = f"{SNAPSHOT_START}\n{section}\n{SNAPSHOT_END}"
    start = raw.find(SNAPSHOT_START)
    end = raw.find(SNAPSHOT_END)
    if start != -1 and end > start:
        tail = raw[end + len(SNAPSHOT_END):]
        return f"{raw[:start].rstrip()}\n\n{block}\n{tail.lstrip()}"
    base = raw.rstrip()
    separator = "\n\n" if base else ""
    return f"{base}{separator}{block}\n"


def collect_graph_source_hints(graph: GraphPayload) -> set[str]:
    """Lowercased document names the graph refers to (always includes memory.md)."""
    hints: set[str] = {"memory.md"}
    for node in graph.nodes:
        hints.update(collect_node_source_hints(node))
    for edge in graph.edges:
        evidence = sanitize_text(edge.evidence).lower()
        if evidence.endswith(".md"):
            hints.add(evidence)
    return hints


# =============================================================================
# Store
# =============================================================================


class GraphStore:
    """Reads and writes the memory graph inside an agent workspace."""

    def __init__(
        self,
        config: Settings | None = None,
        extraction_client: ExtractionClient | None = None,
    ) -> None:
        self.settings = config or default_settings
        self._extraction_client = extraction_client

    @property
    def workspace(self) -> Path:
        return self.settings.workspace_dir

    # -------------------------------------------------------------------------
    # File helpers
    # -------------------------------------------------------------------------

    @staticmethod
    async def _read_optional(path: Path) -> str | None:
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return None

    @staticmethod
    async def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)

    def _workspace_markdown(self) -> list[Path]:
        """Workspace root *.md files except MEMORY.md, sorted by name."""
        if not self.workspace.is_dir():
            return []
        memory_md = self.settings.memory_md_name.lower()
        return sorted(
            p
            for p in self.workspace.iterdir()
            if p.is_file() and p.name.endswith(".md") and p.name.lower() != memory_md
        )

    def _memory_markdown(self) -> list[Path]:
        memory_dir = self.settings.memory_dir
        if not memory_dir.is_dir():
            return []
        return sorted(
            p for p in memory_dir.iterdir() if p.is_file() and p.name.lower().endswith(".md")
        )

    # -------------------------------------------------------------------------
    # Graph persistence
    # -------------------------------------------------------------------------

    async def read_graph(self) -> GraphPayload | None:
        """The stored graph, normalized; None when nothing is stored yet."""
        raw = await self._read_optional(self.settings.graph_json_path)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise GraphStoreError(f"Stored graph is not valid JSON: {e}") from e
        return normalize_graph(data)

    async def write_graph(self, graph: GraphPayload) -> None:
        """Write the JSON graph and its markdown materialization."""
        await self._write(
            self.settings.graph_json_path,
            json.dumps(graph.to_dict(), indent=2, ensure_ascii=False),
        )
        await self._write(self.settings.graph_markdown_path, graph_to_markdown(graph))
        logger.info(
            f"Saved graph to {self.settings.graph_json_path}: "
            f"{len(graph.nodes)} nodes, {len(graph.edges)} edges"
        )

    async def publish_snapshot(self, graph: GraphPayload) -> None:
        path = self.settings.memory_md_path
        current = await self._read_optional(path) or ""
        await self._write(path, upsert_snapshot(current, build_snapshot_section(graph)))
        logger.info(f"Published graph snapshot to {path}")

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    async def read_source_documents(self, graph: GraphPayload) -> list[SourceDocument]:
        """Markdown documents, the ones the graph refers to first, then newest."""
        candidates: list[tuple[Path, Literal["workspace", "memory"]]] = [
            (self.settings.memory_md_path, "workspace"),
            *((p, "workspace") for p in self._workspace_markdown()),
            *((p, "memory") for p in self._memory_markdown()),
        ]

        docs: list[SourceDocument] = []
        seen: set[str] = set()
        for path, source in candidates:
            if path.name.lower() in seen:
                continue
            doc = await read_source_document(path, source, self.settings.source_document_max_chunks)
            if doc is None:
                continue
            seen.add(path.name.lower())
            docs.append(doc)

        hints = collect_graph_source_hints(graph)
        docs.sort(key=lambda d: (d.name.lower() in hints, d.mtime_ms), reverse=True)
        return docs[: self.settings.source_document_limit]

    async def read_telemetry(self, graph: GraphPayload) -> GraphTelemetry:
        return GraphTelemetry(
            generated_at=utc_now_iso(),
            source_documents=await self.read_source_documents(graph),
            recent_chat_messages=await read_recent_chat_messages(
                self.settings.chat_log_dir,
                self.settings.chat_session_limit,
                self.settings.chat_messages_per_session,
            ),
        )

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    async def read_bootstrap_files(self) -> list[BootstrapFile]:
        """MEMORY.md, then memory/ journals (newest first), then workspace root docs."""
        max_chars = self.settings.bootstrap_max_chars
        files: list[BootstrapFile] = []
        names: set[str] = set()

        journals = sorted(self._memory_markdown(), key=lambda p: p.name, reverse=True)
        journals = [p for p in journals if p.name != self.settings.graph_markdown_name]
        for path in [self.settings.memory_md_path, *journals, *self._workspace_markdown()]:
            if len(files) >= self.settings.bootstrap_max_files:
                break
            if path.name in names:
                continue
            content = await self._read_optional(path)
            if not content or not content.strip():
                continue
            names.add(path.name)
            files.append(BootstrapFile(name=path.name, content=content[:max_chars]))
        return files

    def _get_extraction_client(self) -> ExtractionClient:
        if self._extraction_client is None:
            self._extraction_client = ExtractionClient(self.settings)
        return self._extraction_client

    async def close(self) -> None:
        if self._extraction_client is not None:
            await self._extraction_client.close()
            self._extraction_client = None

    async def bootstrap(self) -> tuple[GraphPayload, BootstrapInfo]:
        """
        Rebuild a graph from the bootstrap files.

        With an API key the files go through LLM extraction. Without one, or
        when extraction yields nothing, the deterministic markdown extraction
        is used. Either problem is reported in `BootstrapInfo.error`.
        """
        files = await self.read_bootstrap_files()
        raw: GraphPayload | None = None
        if self.settings.llm_api_key:
            raw, error = await extract_graph(self._get_extraction_client(), files)
        else:
            error = MISSING_API_KEY_ERROR
        if raw is None:
            raw = build_bootstrap_graph(files, self.settings.bootstrap_facts_per_file)
        graph = normalize_graph(raw.to_dict())
        return graph, BootstrapInfo(source="filesystem", files=[f.name for f in files], error=error)

    # -------------------------------------------------------------------------
    # Reindex
    # -------------------------------------------------------------------------

    async def reindex(self) -> dict[str, Any]:
        """Run the reindex command; failures are reported, never raised."""
        command = list(self.settings.reindex_command)
        if not command:
            return {"indexed": False}
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Reindex command unavailable: {e}")
            return {"indexed": False, "error": str(e)}

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.settings.reindex_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"Reindex timed out after {self.settings.reindex_timeout}s")
            return {"indexed": False, "error": "Reindex timed out"}

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() or f"exit code {process.returncode}"
            logger.warning(f"Reindex failed: {message}")
            return {"indexed": False, "error": message}

        logger.info("Memory index refreshed")
        return {"indexed": True}

    # -------------------------------------------------------------------------
    # Contract operations
    # -------------------------------------------------------------------------

    async def load(self, mode: str | None = None) -> GraphLoadResult:
        """Stored graph (or a bootstrap when forced or nothing is stored) plus telemetry."""
        graph = None if mode == "bootstrap" else await self.read_graph()
        bootstrap = None
        if graph is None:
            graph, bootstrap = await self.bootstrap()
        telemetry = await self.read_telemetry(graph)
        return GraphLoadResult(graph=graph, telemetry=telemetry, bootstrap=bootstrap)

    async def save(self, raw_graph: Any, reindex: bool = True) -> dict[str, Any]:
        graph = normalize_graph(raw_graph)
        await self.write_graph(graph)
        result = await self.reindex() if reindex else {"indexed": False}
        return {
            "ok": True,
            "action": "save",
            "graph": graph.to_dict(),
            "materialized": str(self.settings.graph_markdown_path),
            **result,
        }

    async def publish(self, raw_graph: Any, reindex: bool = True) -> dict[str, Any]:
        graph = normalize_graph(raw_graph)
        await self.publish_snapshot(graph)
        result = await self.reindex() if reindex else {"indexed": False}
        return {
            "ok": True,
            "action": "publish-memory-md",
            "published": str(self.settings.memory_md_path),
            **result,
        }
