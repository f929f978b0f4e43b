"""LLM entity extraction for bootstrap.

Each bootstrap file is sent to an OpenAI-compatible chat endpoint that answers
with entities and subject/predicate/object relations as JSON. Entities are
merged across files by canonical name; relations become edges between them
with the file name as evidence.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from mission_control.config import Settings, settings as default_settings
from mission_control.exceptions import ExtractionError
from mission_control.models import GraphEdge, GraphNode, GraphPayload
from mission_control.storage.bootstrap import BootstrapFile, memory_core_node
from mission_control.storage.evidence import slug

logger = logging.getLogger(__name__)

ENTITY_TYPES = frozenset(["person", "project", "tool", "concept", "preference"])
ENTITY_SUMMARY_LIMIT = 200
RELATION_FACT_LIMIT = 300
ENTITY_CONFIDENCE = 0.85
DEFAULT_RELATION_CONFIDENCE = 0.75

EXTRACTION_SYSTEM_PROMPT = """Extract a knowledge graph from personal memory notes.
Answer with ONLY a JSON object of this shape:
{
  "entities": [{"name": "string", "type": "person|project|tool|concept|preference", "summary": "string"}],
  "relations": [{"subject": "string", "predicate": "string", "object": "string", "fact": "string", "confidence": 0.0}]
}

Rules:
- Extract every meaningful named entity, not only the obvious ones
- subject and object must be names from the entities list
- Ignore markdown artifacts and placeholders
- person: named people, roles, contacts ("User" is the author of the notes)
- project: software projects, products, businesses, repositories
- tool: libraries, frameworks, CLIs, APIs, databases, services, platforms
- concept: ideas, patterns, methods, markets, places, strategies
- preference: explicit rules or strong preferences ("always use X", "never do Y")
- predicates are short verbs: uses, prefers, owns, maintains, built_with, depends_on, targets"""

_CANONICAL_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def canonical_entity_name(name: str) -> str:
    """Lowercased alphanumerics with single spaces; the entity dedup key."""
    return _WHITESPACE_RE.sub(" ", _CANONICAL_STRIP_RE.sub(" ", name.lower())).strip()


@dataclass
class ExtractedEntity:
    name: str
    type: str = "concept"
    summary: str = ""


@dataclass
class ExtractedRelation:
    subject: str
    predicate: str
    object: str
    fact: str
    confidence: float = DEFAULT_RELATION_CONFIDENCE


@dataclass
class ExtractionResult:
    """Entities and relations found in one file."""

    entities: list[ExtractedEntity] = field(default_factory=list)
    relations: list[ExtractedRelation] = field(default_factory=list)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_extraction(data: Any) -> ExtractionResult:
    """
    Validate a model answer.

    Malformed entries are dropped, unknown entity types become `concept`,
    and relation confidence is clamped to [0, 1].
    """
    if not isinstance(data, dict):
        return ExtractionResult()

    entities = []
    for raw in data.get("entities") if isinstance(data.get("entities"), list) else []:
        if not isinstance(raw, dict) or not _text(raw.get("name")):
            continue
        kind = _text(raw.get("type"))
        entities.append(ExtractedEntity(
            name=_text(raw.get("name")),
            type=kind if kind in ENTITY_TYPES else "concept",
            summary=_text(raw.get("summary"))[:ENTITY_SUMMARY_LIMIT],
        ))

    relations = []
    for raw in data.get("relations") if isinstance(data.get("relations"), list) else []:
        if not isinstance(raw, dict):
            continue
        subject = _text(raw.get("subject"))
        predicate = _text(raw.get("predicate"))
        obj = _text(raw.get("object"))
        if not (subject and predicate and obj):
            continue
        confidence = raw.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = DEFAULT_RELATION_CONFIDENCE
        relations.append(ExtractedRelation(
            subject=subject,
            predicate=predicate,
            object=obj,
            fact=_text(raw.get("fact"))[:RELATION_FACT_LIMIT] or f"{subject} {predicate} {obj}",
            confidence=min(1.0, max(0.0, float(confidence))),
        ))

    return ExtractionResult(entities=entities, relations=relations)


class ExtractionClient:
    """Async-wrapped client for an OpenAI-compatible chat endpoint using requests."""

    def __init__(self, config: Settings | None = None) -> None:
        config = config or default_settings
        self.base_url = config.llm_base_url.rstrip("/")
        self.model = config.llm_model
        self.api_key = config.llm_api_key
        self.timeout = config.llm_timeout
        self.max_tokens = config.llm_max_tokens
        self.max_input_chars = config.llm_max_input_chars
        self._session: requests.Session | None = None

    def _get_session(self) -> requests.Session:
        """Get or create requests session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            })
            adapter = HTTPAdapter(max_retries=Retry(total=2, backoff_factor=0.5))
            self._session.mount("http://", adapter)
            self._session.mount("https://", adapter)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            self._session.close()
            self._session = None

    def _sync_extract(self, content: str) -> ExtractionResult:
        """Synchronous extraction request (runs in thread)."""
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                {"role": "user", "content": content[: self.max_input_chars]},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0,
            "max_tokens": self.max_tokens,
        }
        response = self._get_session().post(
            f"{self.base_url}/chat/completions",
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices:
            raise ExtractionError("LLM returned empty choices")
        raw = (choices[0].get("message") or {}).get("content")
        if not raw:
            raise ExtractionError("LLM returned no content")
        return parse_extraction(json.loads(raw))

    async def extract(self, content: str) -> ExtractionResult:
        """Extract entities and relations from one document."""
        try:
            return await asyncio.to_thread(self._sync_extract, content)
        except requests.RequestException as e:
            logger.error(f"LLM extraction request failed: {e}")
            raise ExtractionError(f"LLM extraction request failed: {e}") from e
        except ValueError as e:
            logger.error(f"LLM extraction answer is not JSON: {e}")
            raise ExtractionError(f"LLM extraction answer is not JSON: {e}") from e


def _unique_id(base: str, taken: set[str]) -> str:
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def build_llm_graph(extractions: Sequence[tuple[str, ExtractionResult]]) -> GraphPayload | None:
    """
    Merge per-file extractions into one graph.

    Args:
        extractions: (file name, result) pairs in bootstrap priority order

    Returns:
        Raw (not yet normalized) GraphPayload, or None when no entity was found
    """
    root = memory_core_node("Knowledge graph extracted from memory files via LLM.")
    nodes: list[GraphNode] = [root]
    edges: list[GraphEdge] = []
    node_ids: set[str] = {root.id}
    edge_ids: set[str] = set()
    entity_ids: dict[str, str] = {}

    for file_name, result in extractions:
        for entity in result.entities:
            canon = canonical_entity_name(entity.name)
            if not canon or canon in entity_ids:
                continue
            position = len(nodes)
            node = GraphNode(
                id=_unique_id(f"entity-{slug(entity.name)}", node_ids),
                label=entity.name,
                kind=entity.type,
                summary=entity.summary,
                confidence=ENTITY_CONFIDENCE,
                source=file_name,
                tags=[entity.type, f"file:{file_name}"],
                x=float(400 + (position % 5) * 240),
                y=float(80 + (position // 5) * 120),
            )
            nodes.append(node)
            entity_ids[canon] = node.id

        for relation in result.relations:
            source = entity_ids.get(canonical_entity_name(relation.subject))
            target = entity_ids.get(canonical_entity_name(relation.object))
            if source is None or target is None or source == target:
                continue
            hint = f"edge-{slug(relation.subject)}-{slug(relation.predicate)}-{slug(relation.object)}"
            edges.append(GraphEdge(
                id=_unique_id(hint, edge_ids),
                source=source,
                target=target,
                relation=relation.predicate,
                weight=relation.confidence,
                evidence=file_name,
                fact=relation.fact,
            ))

    if not entity_ids:
        return None
    logger.info(
        f"Extracted graph from {len(extractions)} files: "
        f"{len(nodes)} nodes, {len(edges)} edges"
    )
    return GraphPayload(nodes=nodes, edges=edges)


async def extract_graph(
    client: ExtractionClient,
    files: Sequence[BootstrapFile],
) -> tuple[GraphPayload | None, str | None]:
    """
    Run extraction over every file.

    A failing file is skipped. Returns the merged graph (None when nothing
    was extracted) and an error message when any file failed.
    """
    extractions: list[tuple[str, ExtractionResult]] = []
    failures: list[str] = []
    last_error = ""
    for file in files:
        try:
            extractions.append((file.name, await client.extract(file.content)))
        except ExtractionError as e:
            logger.warning(f"Extraction failed for {file.name}: {e}")
            failures.append(file.name)
            last_error = str(e)

    error = None
    if failures:
        error = f"LLM extraction failed for {len(failures)} of {len(files)} files: {last_error}"
    return build_llm_graph(extractions), error
