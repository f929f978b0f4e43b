"""Recent chat messages from per-session JSONL transcripts.

Each `*.jsonl` file in the chat log directory is one session; the file stem
is the session key. A line is either a message object
(`{"role", "timestamp", "content" | "text"}`) or an envelope carrying one
under `"message"`.
"""

import json
import logging
from pathlib import Path
from typing import Any

import aiofiles

from mission_control.models import RecentChatMessage
from mission_control.storage.evidence import sanitize_text

logger = logging.getLogger(__name__)

# Timestamps below this are seconds, not milliseconds
_EPOCH_MS_CUTOFF = 1_000_000_000_000


def to_epoch_ms(value: Any) -> float:
    """Normalize a seconds or milliseconds timestamp to epoch ms (0 if unusable)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number <= 0 or number == float("inf"):
        return 0.0
    return float(int(number * 1000)) if number < _EPOCH_MS_CUTOFF else float(int(number))


def extract_message_text(message: dict) -> str:
    """Joined text parts of a message; plain `text` is used when there is no content list."""
    content = message.get("content")
    if isinstance(content, list):
        parts = [
            str(part["text"])
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        ]
        return "\n".join(parts).strip()
    if isinstance(content, str):
        return content.strip()
    text = message.get("text")
    return text.strip() if isinstance(text, str) else ""


def parse_transcript_line(line: str, session_key: str) -> RecentChatMessage | None:
    """Parse one JSONL line; None for blank, malformed or text-less lines."""
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.warning(f"Skipping malformed transcript line in session {session_key}")
        return None
    if not isinstance(data, dict):
        return None
    message = data.get("message") if isinstance(data.get("message"), dict) else data

    text = extract_message_text(message)
    if not text:
        return None
    return RecentChatMessage(
        session_key=session_key,
        role=sanitize_text(message.get("role"), "unknown") or "unknown",
        timestamp_ms=to_epoch_ms(message.get("timestamp") or data.get("timestamp")),
        text=text,
    )


async def read_session(path: Path, limit: int) -> list[RecentChatMessage]:
    """The last `limit` messages of one transcript."""
    session_key = path.stem
    messages: list[RecentChatMessage] = []
    async with aiofiles.open(path, encoding="utf-8") as f:
        async for line in f:
            message = parse_transcript_line(line, session_key)
            if message is not None:
                messages.append(message)
    return messages[-limit:] if limit > 0 else []


async def read_recent_chat_messages(
    log_dir: Path | None,
    session_limit: int = 8,
    per_session_limit: int = 50,
) -> list[RecentChatMessage]:
    """
    Recent messages across the newest sessions, newest first.

    Args:
        log_dir: Directory of JSONL transcripts (None disables chat telemetry)
        session_limit: Number of most recently modified sessions to read
        per_session_limit: Messages kept per session

    Returns:
        At most session_limit * per_session_limit messages
    """
    if log_dir is None or not log_dir.is_dir():
        return []

    transcripts = sorted(
        (p for p in log_dir.glob("*.jsonl") if p.is_file()),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )[:session_limit]

    messages: list[RecentChatMessage] = []
    for path in transcripts:
        try:
            messages.extend(await read_session(path, per_session_limit))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable transcript {path}: {e}")

    messages.sort(key=lambda m: m.timestamp_ms, reverse=True)
    return messages[: session_limit * per_session_limit]
