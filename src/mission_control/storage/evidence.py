"""Markdown evidence extraction.

Turns a markdown document into labeled chunks and candidate facts:
headings set the current topic, bullets and "key: value" lines become facts.
"""

import logging
import re
from pathlib import Path
from typing import Literal

import aiofiles

from mission_control.graph.text import canonical_text
from mission_control.models import SourceChunk, SourceDocument, SourceFact

logger = logging.getLogger(__name__)

CHUNK_TEXT_LIMIT = 280
STATEMENT_LIMIT = 360
TOPIC_LIMIT = 48
DEFAULT_TOPIC = "General"

KEY_VALUE_CONFIDENCE = 0.8
BULLET_CONFIDENCE = 0.72

_HEADING_RE = re.compile(r"^#{1,4}\s+(.+)")
_BULLET_RE = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(.+)")
_KEY_VALUE_RE = re.compile(r"^\s*([A-Za-z][^:]{1,48}):\s+(.+)")
_LEADING_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}\s*[-–]?\s*")

_INLINE_PATTERNS = [
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"\*([^*]+)\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"_([^_]+)_"), r"\1"),
    (re.compile(r"!\[([^\]]*)\]\(([^)]+)\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\(([^)]+)\)"), r"\1"),
]
_WHITESPACE_RE = re.compile(r"\s+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def sanitize_text(value: object, fallback: str = "") -> str:
    """Collapse whitespace; non-strings become `fallback`."""
    if not isinstance(value, str):
        return fallback
    return _WHITESPACE_RE.sub(" ", value).strip()


def slug(value: str) -> str:
    """Lowercase dash-separated id fragment, at most 48 chars."""
    text = _SLUG_RE.sub("-", str(value or "").lower()).strip("-")
    return text[:48] or "item"


def clip(value: str, limit: int) -> str:
    """Cut to `limit` characters with a trailing '...'."""
    if len(value) <= limit:
        return value
    return f"{value[: limit - 3].rstrip()}..."


def clean_markdown_inline(value: str) -> str:
    """Strip inline code, emphasis, links and images down to their text."""
    text = sanitize_text(value)
    for pattern, replacement in _INLINE_PATTERNS:
        text = pattern.sub(replacement, text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_topic(raw: str) -> str:
    """Heading text without a leading date; "General" when empty."""
    topic = _LEADING_DATE_RE.sub("", clean_markdown_inline(raw))
    if not topic:
        return DEFAULT_TOPIC
    return clip(topic, TOPIC_LIMIT)


def canonicalize_fact(text: str) -> str:
    return canonical_text(clean_markdown_inline(text))


def extract_evidence(
    content: str,
    max_chunks: int = 120,
) -> tuple[list[SourceChunk], list[SourceFact]]:
    """
    Extract chunks and facts from markdown content.

    Args:
        content: Raw markdown
        max_chunks: Chunk cap (facts are not capped)

    Returns:
        (chunks, facts); facts are unique per topic + canonical text
    """
    chunks: list[SourceChunk] = []
    facts: list[SourceFact] = []
    seen_facts: set[str] = set()
    topic = DEFAULT_TOPIC

    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    for idx, raw in enumerate(lines):
        line_no = idx + 1
        line = raw.strip()
        if not line:
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            topic = normalize_topic(heading.group(1))
            if len(chunks) < max_chunks:
                chunks.append(SourceChunk(
                    id=f"chunk-heading-{line_no}-{slug(topic)}",
                    topic=topic,
                    kind="heading",
                    text=topic,
                    start_line=line_no,
                    end_line=line_no,
                ))
            continue

        bullet = _BULLET_RE.match(line)
        key_value = _KEY_VALUE_RE.match(line)
        if bullet:
            text = clean_markdown_inline(bullet.group(1))
        elif key_value:
            text = clean_markdown_inline(f"{key_value.group(1)}: {key_value.group(2)}")
        else:
            text = clean_markdown_inline(line)
        if not text:
            continue

        kind: Literal["bullet", "paragraph"] = "bullet" if bullet or key_value else "paragraph"
        if len(chunks) < max_chunks:
            chunks.append(SourceChunk(
                id=f"chunk-{line_no}-{slug(text)}",
                topic=topic,
                kind=kind,
                text=clip(text, CHUNK_TEXT_LIMIT),
                start_line=line_no,
                end_line=line_no,
            ))

        if kind != "bullet":
            continue
        canonical = canonicalize_fact(text)
        fact_key = f"{topic.lower()}::{canonical}"
        if not canonical or fact_key in seen_facts:
            continue
        seen_facts.add(fact_key)
        facts.append(SourceFact(
            id=f"fact-{line_no}-{slug(canonical)}",
            topic=topic,
            statement=clip(text, STATEMENT_LIMIT),
            canonical=canonical,
            line=line_no,
            confidence_hint=KEY_VALUE_CONFIDENCE if key_value else BULLET_CONFIDENCE,
        ))

    return chunks, facts


async def read_source_document(
    path: Path,
    source: Literal["workspace", "memory"],
    max_chunks: int = 140,
) -> SourceDocument | None:
    """Read and parse one markdown file; None if it is not a readable file."""
    try:
        if not path.is_file():
            return None
        stat = path.stat()
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Skipping unreadable source document {path}: {e}")
        return None

    chunks, facts = extract_evidence(content, max_chunks)
    return SourceDocument(
        id=f"doc-{slug(path.name)}",
        name=path.name,
        path=str(path),
        source=source,
        mtime_ms=stat.st_mtime * 1000,
        size=stat.st_size or len(content.encode("utf-8")),
        chunks=chunks,
        facts=facts,
    )
