"""Core data models for Recall.

Defines the Event record, the EventType and Tool enums, the per-batch
ExtractorResult, ULID-based event ids, and the timestamp helpers shared by
the extractors, the store, and the snapshot generator. Everything else in
Recall depends on these types.
"""

import enum
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ulid import ULID


class EventType(enum.Enum):
    """Significance classification of an extracted session."""

    SESSION = "session"
    DECISION = "decision"
    ERROR_RESOLVED = "error_resolved"


class Tool(enum.Enum):
    """AI coding assistants Recall knows how to read."""

    CLAUDE_CODE = "claude-code"
    CURSOR = "cursor"
    CODEX = "codex"
    GEMINI = "gemini"


# WHAT: Maximum number of file references kept per event.
MAX_EVENT_FILES = 10


class _MonotonicIds:
    """ULID source whose output is strictly increasing within the process.

    Two ULIDs minted in the same millisecond are ordered by their random
    part, so a plain ULID() can sort before its predecessor. When that
    happens the previous id is incremented instead.
    """

    def __init__(self) -> None:
        self._last: ULID | None = None

    def next(self) -> str:
        candidate = ULID()
        if self._last is not None and int(candidate) <= int(self._last):
            candidate = ULID.from_int(int(self._last) + 1)
        self._last = candidate
        return str(candidate)


_ids = _MonotonicIds()


def new_event_id() -> str:
    """Return a new lexicographically sortable event id."""
    return _ids.next()


def to_iso(moment: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision.

    Naive datetimes are treated as UTC. Output looks like
    2024-01-01T10:00:00.000Z.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return to_iso(datetime.now(timezone.utc))


def mtime_to_datetime(mtime: float) -> datetime:
    """Convert a POSIX mtime to an aware UTC datetime."""
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z". Naive values are assumed to be UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Event:
    """One immutable memory event extracted from an AI coding session.

    Events are appended to .recall/events.jsonl and never rewritten.
    Snapshots are projections of the full event sequence.
    """

    id: str = field(default_factory=new_event_id)
    timestamp: str = field(default_factory=utc_now_iso)
    type: EventType = EventType.SESSION
    tool: Tool = Tool.CLAUDE_CODE
    user: str = ""
    summary: str = ""
    files: tuple[str, ...] = ()

    @property
    def date(self) -> str:
        """Calendar date portion of the timestamp (YYYY-MM-DD)."""
        return self.timestamp.split("T")[0]

    def to_dict(self) -> dict:
        """Serialize to the events.jsonl wire format.

        The timestamp is stored under "ts"; "files" is omitted when empty.
        """
        data = {
            "id": self.id,
            "ts": self.timestamp,
            "type": self.type.value,
            "tool": self.tool.value,
            "user": self.user,
            "summary": self.summary,
        }
        if self.files:
            data["files"] = list(self.files)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        """Deserialize from a wire-format dictionary.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If type or tool is not a known value.
        """
        timestamp = data["ts"] if "ts" in data else data["timestamp"]
        return cls(
            id=data["id"],
            timestamp=timestamp,
            type=EventType(data["type"]),
            tool=Tool(data["tool"]),
            user=data.get("user", ""),
            summary=data.get("summary", ""),
            files=tuple(data.get("files") or ()),
        )


def create_event(
    tool: Tool,
    summary: str,
    timestamp: str,
    user: str,
    event_type: EventType = EventType.SESSION,
    files: list[str] | tuple[str, ...] | None = None,
) -> Event:
    """Factory for a new Event with a fresh monotonic id.

    Files are de-duplicated in first-seen order and capped at
    MAX_EVENT_FILES.
    """
    unique: list[str] = []
    for path in files or ():
        if path not in unique:
            unique.append(path)
    return Event(
        id=new_event_id(),
        timestamp=timestamp,
        type=event_type,
        tool=tool,
        user=user,
        summary=summary,
        files=tuple(unique[:MAX_EVENT_FILES]),
    )


@dataclass
class ExtractorResult:
    """A batch of extracted events plus the watermark for the next run."""

    events: list[Event] = field(default_factory=list)
    last_processed: str | None = None

    @classmethod
    def from_events(cls, events: list[Event]) -> "ExtractorResult":
        """Build a result whose watermark is the last event's timestamp."""
        return cls(events=events, last_processed=events[-1].timestamp if events else None)


def content_hash(event: Event) -> str:
    """Generate a deduplication hash for an event.

    Uses tool + timestamp + user + summary, so the same raw session
    extracted twice hashes identically even though the ids differ.

    Returns a 16-character hex string.
    """
    raw = f"{event.tool.value}:{event.timestamp}:{event.user}:{event.summary}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
