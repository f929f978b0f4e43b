"""Unit tests for the workspace graph store."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mission_control.config import Settings
from mission_control.exceptions import ExtractionError, GraphStoreError
from mission_control.models import GraphEdge, GraphNode, GraphPayload
from mission_control.storage.extraction import (
    ExtractedEntity,
    ExtractedRelation,
    ExtractionClient,
    ExtractionResult,
)
from mission_control.storage.graph_store import (
    MISSING_API_KEY_ERROR,
    SNAPSHOT_END,
    SNAPSHOT_START,
    GraphStore,
    build_snapshot_section,
    collect_graph_source_hints,
    graph_to_markdown,
    normalize_graph,
    upsert_snapshot,
)


@pytest.fixture
def store(test_settings: Settings) -> GraphStore:
    return GraphStore(test_settings)


@pytest.fixture
def workspace(test_settings: Settings) -> Path:
    test_settings.memory_dir.mkdir(parents=True)
    return test_settings.workspace_dir


class TestNormalizeGraph:
    """Tests for normalize_graph."""

    def test_unique_ids(self) -> None:
        graph = normalize_graph({"nodes": [
            {"id": "a", "label": "First"},
            {"id": "a", "label": "Second"},
            {"id": "a", "label": "Third"},
        ]})
        assert [n.id for n in graph.nodes] == ["a", "a-2", "a-3"]

    def test_sanitizes_fields(self) -> None:
        graph = normalize_graph({"nodes": [
            {"id": "a", "label": "  Spaced \n label ", "confidence": 1.7, "tags": ["x", "", 5]},
            {"label": "Needs id", "confidence": "bad"},
            {},
        ]})
        first, second, third = graph.nodes

        assert first.label == "Spaced label"
        assert first.confidence == 1.0
        assert first.tags == ["x"]
        assert second.id == "node-needs-id"
        assert second.confidence == 0.75
        assert third.label == "Untitled 3"
        assert third.id == "node-2"

    def test_fallback_positions(self) -> None:
        graph = normalize_graph({"nodes": [{"id": str(i)} for i in range(6)] + [{"id": "p", "x": 3, "y": 4}]})
        assert (graph.nodes[5].x, graph.nodes[5].y) == (280.0, 150.0)
        assert (graph.nodes[6].x, graph.nodes[6].y) == (3.0, 4.0)

    def test_drops_dangling_edges(self) -> None:
        graph = normalize_graph({
            "nodes": [{"id": "a"}, {"id": "b"}],
            "edges": [
                {"source": "a", "target": "b", "weight": 2},
                {"source": "a", "target": "ghost"},
                {"id": "keep", "source": "b", "target": "a", "relation": "", "fact": "x" * 400},
            ],
        })
        assert [e.id for e in graph.edges] == ["edge-a-b-1", "keep"]
        assert graph.edges[0].weight == 1.0
        assert graph.edges[1].relation == "related_to"
        assert len(graph.edges[1].fact) == 300

    def test_garbage(self) -> None:
        graph = normalize_graph("not a graph")
        assert graph.nodes == []
        assert graph.edges == []


class TestMarkdown:
    """Tests for markdown materialization and snapshots."""

    def test_graph_to_markdown(self, sample_graph: GraphPayload) -> None:
        markdown = graph_to_markdown(sample_graph)

        assert markdown.startswith("# Knowledge Graph Memory")
        assert "- **Deploys** (`topic`) - Release process notes | tags: topic, file:memory.md" in markdown
        assert "- **Fix CI pipeline** --`action_item`--> **Deploys** (70%)" in markdown
        assert "- Prefers dark mode | captures_preference | Interface" in markdown

    def test_empty_graph_markdown(self) -> None:
        markdown = graph_to_markdown(GraphPayload())
        assert "- _No entities yet_" in markdown
        assert "- _No relations yet_" in markdown
        assert "- _No triples yet_" in markdown

    def test_snapshot_section_ranks_by_confidence(self, sample_graph: GraphPayload) -> None:
        section = build_snapshot_section(sample_graph)
        entities = section.split("### High-Signal Entities")[1].split("###")[0]
        assert entities.strip().splitlines()[0].startswith("- **Prefers dark mode**")

    def test_upsert_appends(self) -> None:
        result = upsert_snapshot("# Memory\n\nNotes\n", "SECTION")
        assert result == f"# Memory\n\nNotes\n\n{SNAPSHOT_START}\nSECTION\n{SNAPSHOT_END}\n"

    def test_upsert_into_empty(self) -> None:
        assert upsert_snapshot("", "S") == f"{SNAPSHOT_START}\nS\n{SNAPSHOT_END}\n"

    def test_upsert_replaces(self) -> None:
        first = upsert_snapshot("# Memory\n", "OLD")
        second = upsert_snapshot(first + "\nTrailing notes\n", "NEW")

        assert second.count(SNAPSHOT_START) == 1
        assert "OLD" not in second
        assert "NEW" in second
        assert second.endswith("Trailing notes\n")

    def test_source_hints(self) -> None:
        graph = GraphPayload(
            nodes=[GraphNode(id="a", label="A", tags=["file:Journal.md"])],
            edges=[GraphEdge(id="e", source="a", target="a", evidence="Notes.md")],
        )
        assert collect_graph_source_hints(graph) == {"memory.md", "journal.md", "notes.md"}


class TestGraphStore:
    """Tests for GraphStore file operations."""

    @pytest.mark.asyncio
    async def test_read_graph_missing(self, store: GraphStore) -> None:
        assert await store.read_graph() is None

    @pytest.mark.asyncio
    async def test_save_and_read(self, store, test_settings, sample_graph) -> None:
        result = await store.save(sample_graph.to_dict())

        assert result["ok"]
        assert result["action"] == "save"
        assert result["indexed"] is False
        assert test_settings.graph_json_path.is_file()
        assert test_settings.graph_markdown_path.read_text(encoding="utf-8").startswith(
            "# Knowledge Graph Memory"
        )

        stored = json.loads(test_settings.graph_json_path.read_text(encoding="utf-8"))
        assert len(stored["nodes"]) == len(sample_graph.nodes)

        graph = await store.read_graph()
        assert [n.id for n in graph.nodes] == [n.id for n in sample_graph.nodes]
        assert graph.node("topic-deploys").x == 40.0

    @pytest.mark.asyncio
    async def test_invalid_json(self, store, test_settings, workspace) -> None:
        test_settings.graph_json_path.write_text("{broken", encoding="utf-8")
        with pytest.raises(GraphStoreError):
            await store.read_graph()

    @pytest.mark.asyncio
    async def test_publish(self, store, test_settings, workspace, sample_graph) -> None:
        test_settings.memory_md_path.write_text("# Memory\n\nKeep me.\n", encoding="utf-8")
        result = await store.publish(sample_graph.to_dict(), reindex=False)

        assert result["action"] == "publish-memory-md"
        content = test_settings.memory_md_path.read_text(encoding="utf-8")
        assert content.startswith("# Memory\n\nKeep me.")
        assert SNAPSHOT_START in content
        assert "## Knowledge Graph Snapshot" in content

    @pytest.mark.asyncio
    async def test_load_bootstraps_when_nothing_stored(self, store, test_settings, workspace) -> None:
        test_settings.memory_md_path.write_text("# Deploys\n- Uses blue green switching\n", encoding="utf-8")
        (test_settings.memory_dir / "2025-01-02.md").write_text("# Tooling\n- Ruff\n", encoding="utf-8")

        result = await store.load()

        assert result.bootstrap.source == "filesystem"
        assert result.bootstrap.files == ["MEMORY.md", "2025-01-02.md"]
        assert result.graph.node("topic-deploys") is not None
        assert {d.name for d in result.telemetry.source_documents} == {"MEMORY.md", "2025-01-02.md"}

    @pytest.mark.asyncio
    async def test_load_stored_graph(self, store, sample_graph) -> None:
        await store.save(sample_graph.to_dict(), reindex=False)
        result = await store.load()
        assert result.bootstrap is None
        assert len(result.graph.nodes) == len(sample_graph.nodes)

        forced = await store.load("bootstrap")
        assert forced.bootstrap is not None

    @pytest.mark.asyncio
    async def test_source_documents_hinted_first(self, store, test_settings, workspace) -> None:
        (test_settings.memory_dir / "a.md").write_text("- alpha\n", encoding="utf-8")
        (test_settings.memory_dir / "b.md").write_text("- beta\n", encoding="utf-8")
        graph = GraphPayload(nodes=[GraphNode(id="n", label="N", tags=["file:a.md"])])

        docs = await store.read_source_documents(graph)
        assert docs[0].name == "a.md"
        assert docs[0].source == "memory"

    @pytest.mark.asyncio
    async def test_bootstrap_skips_materialized_graph(self, store, test_settings, workspace) -> None:
        test_settings.graph_markdown_path.write_text("# Knowledge Graph Memory\n- x\n", encoding="utf-8")
        files = await store.read_bootstrap_files()
        assert files == []


class TestReindex:
    """Tests for the best-effort reindex."""

    @pytest.mark.asyncio
    async def test_disabled(self, store) -> None:
        assert await store.reindex() == {"indexed": False}

    @pytest.mark.asyncio
    async def test_success(self, test_settings) -> None:
        test_settings.reindex_command = [sys.executable, "-c", "pass"]
        assert await GraphStore(test_settings).reindex() == {"indexed": True}

    @pytest.mark.asyncio
    async def test_failure_reports_stderr(self, test_settings) -> None:
        test_settings.reindex_command = [
            sys.executable, "-c", "import sys; sys.stderr.write('index locked'); sys.exit(3)",
        ]
        assert await GraphStore(test_settings).reindex() == {"indexed": False, "error": "index locked"}

    @pytest.mark.asyncio
    async def test_missing_command(self, test_settings) -> None:
        test_settings.reindex_command = ["mission-control-no-such-command"]
        result = await GraphStore(test_settings).reindex()
        assert result["indexed"] is False
        assert result["error"]


class TestBootstrapExtraction:
    """Tests for choosing between LLM and deterministic bootstrap."""

    @pytest.fixture
    def extraction_client(self) -> ExtractionClient:
        client = MagicMock(spec=ExtractionClient)
        client.extract = AsyncMock(return_value=ExtractionResult(
            entities=[ExtractedEntity("User", "person"), ExtractedEntity("Blue green", "concept")],
            relations=[ExtractedRelation("User", "prefers", "blue-green", "User prefers blue green", 0.9)],
        ))
        client.close = AsyncMock()
        return client

    @pytest.fixture
    def notes(self, test_settings, workspace) -> None:
        test_settings.memory_md_path.write_text("# Deploys\n- Uses blue green switching\n", encoding="utf-8")

    @pytest.mark.asyncio
    async def test_without_api_key_reports_error(self, store, notes) -> None:
        graph, info = await store.bootstrap()

        assert info.error == MISSING_API_KEY_ERROR
        assert graph.node("topic-deploys") is not None

    @pytest.mark.asyncio
    async def test_llm_extraction(self, test_settings, notes, extraction_client) -> None:
        test_settings.llm_api_key = "sk-test"
        store = GraphStore(test_settings, extraction_client=extraction_client)

        graph, info = await store.bootstrap()

        extraction_client.extract.assert_awaited_once()
        assert info.error is None
        assert info.files == ["MEMORY.md"]
        assert [n.id for n in graph.nodes] == ["memory-core", "entity-user", "entity-blue-green"]
        assert graph.edges[0].relation == "prefers"
        assert graph.edges[0].fact == "User prefers blue green"

        await store.close()
        extraction_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_extraction_falls_back(self, test_settings, notes, extraction_client) -> None:
        test_settings.llm_api_key = "sk-test"
        extraction_client.extract.side_effect = ExtractionError("LLM extraction request failed: 401")
        store = GraphStore(test_settings, extraction_client=extraction_client)

        graph, info = await store.bootstrap()

        assert info.error.startswith("LLM extraction failed for 1 of 1 files")
        assert graph.node("topic-deploys") is not None
        assert graph.node("entity-user") is None
