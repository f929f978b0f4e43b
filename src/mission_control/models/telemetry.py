"""Telemetry models - source documents and recent chat traffic."""

from dataclasses import dataclass, field
from typing import Literal

from mission_control.models.graph import GraphPayload, utc_now_iso

ChunkKind = Literal["heading", "bullet", "paragraph"]
DocumentSource = Literal["workspace", "memory"]


@dataclass
class SourceChunk:
    """A labeled span of raw markdown text."""

    id: str
    topic: str
    kind: ChunkKind
    text: str
    start_line: int
    end_line: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "topic": self.topic,
            "kind": self.kind,
            "text": self.text,
            "startLine": self.start_line,
            "endLine": self.end_line,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceChunk":
        return cls(
            id=str(data.get("id") or ""),
            topic=str(data.get("topic") or ""),
            kind=data.get("kind") or "paragraph",
            text=str(data.get("text") or ""),
            start_line=int(data.get("startLine") or 0),
            end_line=int(data.get("endLine") or 0),
        )


@dataclass
class SourceFact:
    """A statement extracted from a document.

    `canonical` is the normalized form used to group conflicting wordings.
    """

    id: str
    topic: str
    statement: str
    canonical: str
    line: int
    confidence_hint: float = 0.72

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "topic": self.topic,
            "statement": self.statement,
            "canonical": self.canonical,
            "line": self.line,
            "confidenceHint": self.confidence_hint,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceFact":
        return cls(
            id=str(data.get("id") or ""),
            topic=str(data.get("topic") or ""),
            statement=str(data.get("statement") or ""),
            canonical=str(data.get("canonical") or ""),
            line=int(data.get("line") or 0),
            confidence_hint=float(data.get("confidenceHint") or 0.72),
        )


@dataclass
class SourceDocument:
    """A markdown document backing the graph."""

    id: str
    name: str
    path: str
    source: DocumentSource = "workspace"
    mtime_ms: float = 0.0
    size: int = 0
    chunks: list[SourceChunk] = field(default_factory=list)
    facts: list[SourceFact] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "source": self.source,
            "mtimeMs": self.mtime_ms,
            "size": self.size,
            "chunks": [c.to_dict() for c in self.chunks],
            "facts": [f.to_dict() for f in self.facts],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceDocument":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            path=str(data.get("path") or ""),
            source=data.get("source") or "workspace",
            mtime_ms=float(data.get("mtimeMs") or 0),
            size=int(data.get("size") or 0),
            chunks=[SourceChunk.from_dict(c) for c in data.get("chunks") or []],
            facts=[SourceFact.from_dict(f) for f in data.get("facts") or []],
        )


@dataclass
class RecentChatMessage:
    """A chat message, used only as a retrieval-frequency signal."""

    session_key: str
    role: str
    timestamp_ms: float
    text: str

    def to_dict(self) -> dict:
        return {
            "sessionKey": self.session_key,
            "role": self.role,
            "timestampMs": self.timestamp_ms,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecentChatMessage":
        return cls(
            session_key=str(data.get("sessionKey") or ""),
            role=str(data.get("role") or "unknown"),
            timestamp_ms=float(data.get("timestampMs") or 0),
            text=str(data.get("text") or ""),
        )


@dataclass
class GraphTelemetry:
    """Auxiliary inputs shipped with the graph."""

    generated_at: str = field(default_factory=utc_now_iso)
    source_documents: list[SourceDocument] = field(default_factory=list)
    recent_chat_messages: list[RecentChatMessage] = field(default_factory=list)

    def document_mtimes(self) -> dict[str, float]:
        """Lowercased document name -> mtime in ms."""
        return {doc.name.lower(): doc.mtime_ms for doc in self.source_documents}

    def to_dict(self) -> dict:
        return {
            "generatedAt": self.generated_at,
            "sourceDocuments": [d.to_dict() for d in self.source_documents],
            "recentChatMessages": [m.to_dict() for m in self.recent_chat_messages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphTelemetry":
        return cls(
            generated_at=str(data.get("generatedAt") or utc_now_iso()),
            source_documents=[SourceDocument.from_dict(d) for d in data.get("sourceDocuments") or []],
            recent_chat_messages=[
                RecentChatMessage.from_dict(m) for m in data.get("recentChatMessages") or []
            ],
        )


@dataclass
class BootstrapInfo:
    """Where a rebuilt graph came from."""

    source: Literal["indexed", "filesystem"]
    files: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"source": self.source, "files": list(self.files)}
        if self.error:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BootstrapInfo":
        return cls(
            source="indexed" if data.get("source") == "indexed" else "filesystem",
            files=[str(f) for f in data.get("files") or []],
            error=data.get("error"),
        )


@dataclass
class GraphLoadResult:
    """Body of a successful graph load."""

    graph: GraphPayload
    telemetry: GraphTelemetry
    bootstrap: BootstrapInfo | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "graph": self.graph.to_dict(),
            "telemetry": self.telemetry.to_dict(),
        }
        if self.bootstrap is not None:
            data["bootstrap"] = self.bootstrap.to_dict()
        return data
