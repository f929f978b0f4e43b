"""Text normalization and scoring helpers shared by the pipeline stages."""

import math
import re

from mission_control.models import GraphNode

DAY_MS = 86_400_000

# Labels that mark a node as a reified relation
RELATION_NODE_HINTS = frozenset([
    "mentions_topic",
    "contains_topic",
    "supports",
    "captures_preference",
    "action_item",
    "about_entity",
    "project_signal",
    "related_to",
])

# Node sources that carry no provenance
GENERIC_SOURCES = frozenset(["bootstrap", "manual", "template", "filesystem"])

_STOPWORDS_RE = re.compile(r"\b(a|an|the|to|for|and|or|of|in|on|at|by|with)\b")
_NON_ALNUM_SPACE_RE = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM_RUN_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")
_EVIDENCE_SPLIT_RE = re.compile(r"[|,;]+")

CANONICAL_MAX_LENGTH = 120

TIME_RANGES_MS: dict[str, float] = {
    "7d": 7 * DAY_MS,
    "30d": 30 * DAY_MS,
    "90d": 90 * DAY_MS,
    "all": math.inf,
}


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; non-finite values map to 0."""
    if value is None or not math.isfinite(value):
        return 0.0
    if value < 0:
        return 0.0
    if value > 1:
        return 1.0
    return float(value)


def normalize_relation(value: str | None) -> str:
    """Lowercase, collapse non-alphanumeric runs to '_', trim underscores.

    Empty results default to "related_to".
    """
    text = str(value or "related_to").strip().lower()
    text = _NON_ALNUM_RUN_RE.sub("_", text).strip("_")
    return text or "related_to"


def relation_label(value: str) -> str:
    """Human label for a relation: "mentions_topic" -> "Mentions Topic"."""
    parts = [p for p in normalize_relation(value).split("_") if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts)


def canonical_text(value: str | None) -> str:
    """Canonical form used for conflict grouping, duplicate detection and chat matching."""
    text = str(value or "").lower()
    text = _STOPWORDS_RE.sub(" ", text)
    text = _NON_ALNUM_SPACE_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:CANONICAL_MAX_LENGTH]


def evidence_md_tokens(evidence: str) -> list[str]:
    """Lowercased evidence tokens that name a markdown document."""
    tokens = []
    for token in _EVIDENCE_SPLIT_RE.split(evidence.lower()):
        token = token.strip()
        if token.endswith(".md"):
            tokens.append(token)
    return tokens


def collect_node_source_hints(node: GraphNode) -> list[str]:
    """Provenance hints of a node: its non-generic source plus file: tags."""
    hints: dict[str, None] = {}
    source = str(node.source or "").strip()
    if source and source.lower() not in GENERIC_SOURCES:
        hints[source.lower()] = None
    for tag in node.tags or []:
        if not tag.startswith("file:"):
            continue
        parsed = tag[len("file:"):].strip().lower()
        if parsed:
            hints[parsed] = None
    return list(hints)


def score_recency(timestamp_ms: float, now_ms: float) -> float:
    """Step function of age; 0 means unknown."""
    if not timestamp_ms:
        return 0.25
    age_days = (now_ms - timestamp_ms) / DAY_MS
    if age_days <= 3:
        return 1.0
    if age_days <= 14:
        return 0.82
    if age_days <= 30:
        return 0.64
    if age_days <= 90:
        return 0.38
    return 0.16


def time_range_ms(time_range: str) -> float:
    """Width of a time-range filter in ms (inf for "all")."""
    return TIME_RANGES_MS.get(time_range, math.inf)


def format_ago(timestamp_ms: float, now_ms: float) -> str:
    """Short relative age, e.g. "5m ago"."""
    if not timestamp_ms or not math.isfinite(timestamp_ms):
        return "unknown"
    diff = now_ms - timestamp_ms
    if diff < 60_000:
        return "just now"
    if diff < 3_600_000:
        return f"{max(1, int(diff // 60_000))}m ago"
    if diff < DAY_MS:
        return f"{max(1, int(diff // 3_600_000))}h ago"
    return f"{max(1, int(diff // DAY_MS))}d ago"


def truncate(value: str, limit: int) -> str:
    """Trim and cut to `limit` characters with an ellipsis."""
    text = str(value or "").strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].strip() + "…"


_KIND_LABELS = {
    "concept": "Concept",
    "preference": "Preference",
    "tool": "Tool",
    "organization": "Organization",
    "event": "Event",
    "person": "Person",
    "project": "Project",
    "topic": "Topic",
    "fact": "Fact",
    "task": "Task",
    "profile": "Profile",
}


def kind_label(kind: str) -> str:
    """Display label for a node kind; unknown kinds pass through."""
    return _KIND_LABELS.get(str(kind or "").lower(), kind or "Node")
