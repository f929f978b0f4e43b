"""Pytest configuration and fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mission_control.client import GraphClient, PublishResult, SaveResult
from mission_control.config import Settings, get_test_settings
from mission_control.graph.text import DAY_MS
from mission_control.models import (
    GraphEdge,
    GraphLoadResult,
    GraphNode,
    GraphPayload,
    GraphTelemetry,
    RecentChatMessage,
    SourceChunk,
    SourceDocument,
    SourceFact,
)

# Fixed reference time so recency buckets are deterministic
NOW_MS = 1_760_000_000_000.0


@pytest.fixture
def now_ms() -> float:
    return NOW_MS


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Test settings rooted in a temporary workspace."""
    return get_test_settings(tmp_path / "workspace")


@pytest.fixture
def sample_graph() -> GraphPayload:
    """
    Small graph with one reified relation and one parallel edge pair.

    fact-blue-green -> rel-supports -> topic-deploys collapses into a
    `supports` edge; the two task-ci -> topic-deploys edges aggregate.
    """
    nodes = [
        GraphNode(
            id="topic-deploys",
            label="Deploys",
            kind="topic",
            summary="Release process notes",
            confidence=0.8,
            tags=["topic", "file:memory.md"],
            x=40.0,
            y=80.0,
        ),
        GraphNode(
            id="fact-blue-green",
            label="Blue green deploys",
            kind="fact",
            summary="Deploys use blue green switching",
            confidence=0.8,
            tags=["file:memory.md"],
        ),
        GraphNode(
            id="rel-supports",
            label="supports",
            kind="relation",
            confidence=0.6,
        ),
        GraphNode(
            id="task-ci",
            label="Fix CI pipeline",
            kind="task",
            summary="Flaky integration job",
            confidence=0.7,
        ),
        GraphNode(
            id="topic-ui",
            label="Interface",
            kind="topic",
            confidence=0.8,
        ),
        GraphNode(
            id="pref-dark",
            label="Prefers dark mode",
            kind="preference",
            confidence=0.9,
            source="user.md",
        ),
    ]
    edges = [
        GraphEdge(id="e1", source="fact-blue-green", target="rel-supports", relation="link", weight=0.8, evidence="memory.md"),
        GraphEdge(id="e2", source="rel-supports", target="topic-deploys", relation="link", weight=0.6),
        GraphEdge(id="e3", source="task-ci", target="topic-deploys", relation="action_item", weight=0.7),
        GraphEdge(id="e4", source="task-ci", target="topic-deploys", relation="action_item", weight=0.5),
        GraphEdge(id="e5", source="pref-dark", target="topic-ui", relation="captures_preference", weight=0.9, evidence="user.md"),
    ]
    return GraphPayload(nodes=nodes, edges=edges)


@pytest.fixture
def sample_telemetry() -> GraphTelemetry:
    """One recent document with two wordings of the same fact, plus chat traffic."""
    memory_doc = SourceDocument(
        id="doc-memory-md",
        name="memory.md",
        path="/workspace/MEMORY.md",
        mtime_ms=NOW_MS - DAY_MS,
        chunks=[
            SourceChunk(
                id="chunk-1",
                topic="Deploys",
                kind="bullet",
                text="Deploys use blue green switching",
                start_line=3,
                end_line=3,
            ),
        ],
        facts=[
            SourceFact(
                id="fact-3",
                topic="Deploys",
                statement="Deploys use blue green switching",
                canonical="deploys use blue green switching",
                line=3,
            ),
            SourceFact(
                id="fact-9",
                topic="Deploys",
                statement="Deploys use blue-green switching",
                canonical="deploys use blue green switching",
                line=9,
            ),
        ],
    )
    messages = [
        RecentChatMessage(
            session_key="s1",
            role="user",
            timestamp_ms=NOW_MS - 1_000,
            text="How do blue green deploys work here?",
        ),
        RecentChatMessage(
            session_key="s1",
            role="assistant",
            timestamp_ms=NOW_MS - 2_000,
            text="Blue green deploys switch traffic between two stacks.",
        ),
        RecentChatMessage(
            session_key="s0",
            role="user",
            timestamp_ms=NOW_MS - 60_000,
            text="Did anyone fix CI pipeline yet?",
        ),
    ]
    return GraphTelemetry(source_documents=[memory_doc], recent_chat_messages=messages)


@pytest.fixture
def mock_graph_client(sample_graph: GraphPayload, sample_telemetry: GraphTelemetry) -> GraphClient:
    """Mock graph client for testing without a server."""
    client = MagicMock(spec=GraphClient)
    client.load = AsyncMock(
        return_value=GraphLoadResult(graph=sample_graph, telemetry=sample_telemetry)
    )
    client.save = AsyncMock(return_value=SaveResult(graph=None, indexed=True))
    client.publish = AsyncMock(return_value=PublishResult(indexed=False))
    client.close = AsyncMock()
    return client
