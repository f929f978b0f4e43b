"""Mission Control data models."""

from mission_control.models.graph import GraphEdge, GraphNode, GraphPayload, utc_now_iso
from mission_control.models.telemetry import (
    BootstrapInfo,
    GraphLoadResult,
    GraphTelemetry,
    RecentChatMessage,
    SourceChunk,
    SourceDocument,
    SourceFact,
)

__all__ = [
    "GraphNode",
    "GraphEdge",
    "GraphPayload",
    "utc_now_iso",
    "SourceChunk",
    "SourceFact",
    "SourceDocument",
    "RecentChatMessage",
    "GraphTelemetry",
    "BootstrapInfo",
    "GraphLoadResult",
]
