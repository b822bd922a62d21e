"""Incremental token accounting over JSONL conversation transcripts.

A transcript is append-only JSONL, one message per line.  Each run counts
only messages after the last UUID recorded for the transcript's session in
``session-tracker.json``, so repeated invocations never feed the same
tokens twice.
"""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

TRACKER_FILE = "session-tracker.json"


@dataclass
class TokenMetrics:
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    total_tokens: int = 0
    session_total_input_tokens: int = 0
    session_total_output_tokens: int = 0
    session_total_cached_tokens: int = 0
    context_length: int = 0  # size of the latest main-chain message, not a sum


@dataclass
class Cursor:
    session_id: str
    last_processed_uuid: str
    last_processed_timestamp: str = ""
    total_processed_tokens: int = 0


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _usage_of(message: dict) -> dict | None:
    usage = message.get("usage")
    if not isinstance(usage, dict):
        inner = message.get("message")
        usage = inner.get("usage") if isinstance(inner, dict) else None
    return usage if isinstance(usage, dict) else None


def _cached_of(usage: dict) -> int:
    return _as_int(usage.get("cache_creation_input_tokens")) + _as_int(
        usage.get("cache_read_input_tokens")
    )


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def read_transcript(path: str | Path) -> list[dict]:
    """Return every parseable JSON object in the transcript, in file order.

    Raises OSError if the file cannot be read.
    """
    messages: list[dict] = []
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                messages.append(obj)
    return messages


def session_id_of(messages: list[dict]) -> str:
    """Last sessionId seen in the transcript, or empty string."""
    session_id = ""
    for message in messages:
        value = message.get("sessionId")
        if isinstance(value, str) and value:
            session_id = value
    return session_id


def _context_length(messages: list[dict]) -> int:
    latest: dict | None = None
    latest_ts: datetime | None = None
    for message in messages:
        if message.get("isSidechain") is True:
            continue
        usage = _usage_of(message)
        if usage is None:
            continue
        ts = parse_timestamp(message.get("timestamp"))
        if ts is None:
            # No timestamp: file order decides
            latest = usage
        elif latest_ts is None or ts >= latest_ts:
            latest, latest_ts = usage, ts
    if latest is None:
        return 0
    return (
        _as_int(latest.get("input_tokens"))
        + _as_int(latest.get("cache_read_input_tokens"))
        + _as_int(latest.get("cache_creation_input_tokens"))
    )


def _later_timestamp(a: str, b: str) -> str:
    ta, tb = parse_timestamp(a), parse_timestamp(b)
    if ta is None:
        return b if tb is not None else a
    if tb is None:
        return a
    return b if tb > ta else a


def compute_metrics(
    messages: list[dict], cursor: Cursor | None
) -> tuple[TokenMetrics, Cursor | None]:
    """Compute session totals, context length and the delta after *cursor*."""
    metrics = TokenMetrics()
    session_id = session_id_of(messages)
    if not session_id:
        return metrics, cursor
    if cursor is not None and cursor.session_id != session_id:
        log.debug("Cursor belongs to session %s, not %s; ignoring", cursor.session_id, session_id)
        cursor = None

    for message in messages:
        usage = _usage_of(message)
        if usage is None:
            continue
        metrics.session_total_input_tokens += _as_int(usage.get("input_tokens"))
        metrics.session_total_output_tokens += _as_int(usage.get("output_tokens"))
        metrics.session_total_cached_tokens += _cached_of(usage)

    metrics.context_length = _context_length(messages)

    started = cursor is None
    last_uuid = ""
    last_timestamp = cursor.last_processed_timestamp if cursor else ""
    for message in messages:
        uuid = message.get("uuid") if isinstance(message.get("uuid"), str) else ""
        if not started:
            if uuid and uuid == cursor.last_processed_uuid:
                started = True
            continue
        if not uuid:
            # Only messages that can anchor the cursor are counted as new
            continue

        usage = _usage_of(message)
        if usage is not None:
            metrics.input_tokens += _as_int(usage.get("input_tokens"))
            metrics.output_tokens += _as_int(usage.get("output_tokens"))
            metrics.cached_tokens += _cached_of(usage)
        last_uuid = uuid
        timestamp = message.get("timestamp")
        if isinstance(timestamp, str):
            last_timestamp = _later_timestamp(last_timestamp, timestamp)

    metrics.total_tokens = metrics.input_tokens + metrics.output_tokens + metrics.cached_tokens

    if not started:
        # Cursor UUID vanished from the transcript; count nothing and
        # re-anchor on the newest message so later appends are picked up.
        anchor = next(
            (m["uuid"] for m in reversed(messages) if isinstance(m.get("uuid"), str) and m["uuid"]),
            "",
        )
        log.warning("Cursor %s not found in transcript for session %s",
                    cursor.last_processed_uuid, session_id)
        if anchor:
            return metrics, Cursor(
                session_id=session_id,
                last_processed_uuid=anchor,
                last_processed_timestamp=cursor.last_processed_timestamp,
                total_processed_tokens=cursor.total_processed_tokens,
            )
        return metrics, cursor

    if not last_uuid:
        return metrics, cursor

    previous_total = cursor.total_processed_tokens if cursor else 0
    return metrics, Cursor(
        session_id=session_id,
        last_processed_uuid=last_uuid,
        last_processed_timestamp=last_timestamp,
        total_processed_tokens=previous_total + metrics.total_tokens,
    )


def get_incremental_metrics(
    transcript_path: str | Path, cursor: Cursor | None
) -> tuple[TokenMetrics, Cursor | None]:
    """Return new usage since *cursor* and the cursor to persist next.

    Never raises: a missing or unreadable transcript yields zero metrics and
    the cursor back unchanged.
    """
    try:
        messages = read_transcript(transcript_path)
    except OSError as e:
        log.debug("Cannot read transcript %s: %s", transcript_path, e)
        return TokenMetrics(), cursor
    try:
        return compute_metrics(messages, cursor)
    except Exception:
        log.exception("Failed to process transcript %s", transcript_path)
        return TokenMetrics(), cursor


class CursorStore:
    """Per-session cursors kept in one JSON map keyed by session id."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load_all(self) -> dict[str, Cursor]:
        """Load every cursor.  A corrupt file reads as empty.

        Raises OSError if the file exists but cannot be read.
        """
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            log.warning("Corrupt cursor store %s, starting fresh", self.path)
            return {}
        if not isinstance(raw, dict):
            log.warning("Cursor store %s is not a mapping, starting fresh", self.path)
            return {}

        cursors: dict[str, Cursor] = {}
        for session_id, entry in raw.items():
            if not isinstance(entry, dict):
                continue
            uuid = entry.get("lastProcessedUuid", entry.get("last_processed_uuid"))
            if not isinstance(uuid, str) or not uuid:
                continue
            cursors[session_id] = Cursor(
                session_id=session_id,
                last_processed_uuid=uuid,
                last_processed_timestamp=str(
                    entry.get("lastProcessedTimestamp", entry.get("last_processed_timestamp", "")) or ""
                ),
                total_processed_tokens=_as_int(
                    entry.get("totalProcessedTokens", entry.get("total_processed_tokens", 0))
                ),
            )
        return cursors

    def load(self, session_id: str) -> Cursor | None:
        return self.load_all().get(session_id)

    def save(self, cursor: Cursor) -> None:
        """Atomically write *cursor*, keeping the other sessions' cursors."""
        try:
            cursors = self.load_all()
        except OSError:
            cursors = {}
        cursors[cursor.session_id] = cursor
        data = {sid: asdict(c) for sid, c in cursors.items()}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with open(fd, "w") as f:
                json.dump(data, f, indent=2)
            Path(tmp).replace(self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class TokenAccountant:
    """Reads a transcript, looks up its cursor and persists the advanced one."""

    def __init__(self, root: str | Path) -> None:
        self.store = CursorStore(Path(root) / TRACKER_FILE)

    def collect(self, transcript_path: str | Path) -> TokenMetrics:
        try:
            messages = read_transcript(transcript_path)
        except OSError as e:
            log.debug("Cannot read transcript %s: %s", transcript_path, e)
            return TokenMetrics()

        session_id = session_id_of(messages)
        if not session_id:
            return TokenMetrics()

        try:
            cursor = self.store.load(session_id)
        except OSError as e:
            log.warning("Cannot read cursor store %s: %s", self.store.path, e)
            return TokenMetrics()

        try:
            metrics, new_cursor = compute_metrics(messages, cursor)
        except Exception:
            log.exception("Failed to process transcript %s", transcript_path)
            return TokenMetrics()

        if new_cursor is not None and new_cursor != cursor:
            try:
                self.store.save(new_cursor)
            except OSError as e:
                log.warning("Failed to save cursor store: %s", e)
        return metrics
