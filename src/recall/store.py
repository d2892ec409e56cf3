"""Append-only event store and storage root for Recall.

Each repository keeps its memory in <repo>/.recall/:

    manifest.json    {"version": 1, "created": <ISO8601>}
    events.jsonl     one Event per line, append-only
    small.md         \
    medium.md         > snapshots, regenerated from events.jsonl
    large.md         /
    .recallignore    glob patterns for file paths left out of events
    .gitattributes   merge policy for git

The event log is the only source of truth. It is opened in append mode
only, never rewritten. Snapshot files are replaced whole via temp file +
rename, so a failed write leaves the previous snapshot in place.
"""

import json
import logging
import os
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path

from recall.errors import AlreadyInitializedError, NotInitializedError, StoreCorruptError
from recall.models import Event, parse_timestamp, utc_now_iso
from recall.snapshots import EMPTY_SNAPSHOTS, TIERS, Tier

logger = logging.getLogger(__name__)

RECALL_DIR = ".recall"
MANIFEST_FILE = "manifest.json"
EVENTS_FILE = "events.jsonl"
IGNORE_FILE = ".recallignore"
GITATTRIBUTES_FILE = ".gitattributes"
ENCRYPTED_SUFFIX = ".enc"

MANIFEST_VERSION = 1

SNAPSHOT_FILES: dict[str, str] = {tier: f"{tier}.md" for tier in TIERS}

# WHAT: Merge policy for cross-machine sharing through git.
# The log is merged as a union of lines; derived files keep the local side
# and are regenerated afterwards.
GITATTRIBUTES = """# Recall merge strategy
events.jsonl merge=union
manifest.json merge=ours
small.md merge=ours
medium.md merge=ours
large.md merge=ours
*.md.enc merge=ours
"""

DEFAULT_IGNORE = """# Recall ignore patterns (glob syntax, one per line)
# File paths matching these patterns are left out of captured events.
.env
.env.*
*.pem
*.key
"""


def _atomic_write(path: Path, content: str) -> None:
    """Replace path with content via temp file + rename."""
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def _is_partial_record(line: str) -> bool:
    """True for the fragment an interrupted append leaves behind.

    A fragment cut mid-write starts like a record but lacks the closing
    brace every complete record ends with.
    """
    text = line.strip()
    return text.startswith("{") and not text.endswith("}")


class EventStore:
    """The .recall/ directory of one repository.

    Reads parse every line strictly: the store trusts its own writes, so a
    complete-looking but unparsable line raises StoreCorruptError. The one
    tolerated defect is a partial record left by an interrupted append.
    """

    def __init__(self, repo_root: str | Path):
        self._repo_root = Path(repo_root)
        self._recall_dir = self._repo_root / RECALL_DIR

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def recall_dir(self) -> Path:
        """Path to <repo>/.recall/."""
        return self._recall_dir

    @property
    def events_path(self) -> Path:
        """Path to the events.jsonl log."""
        return self._recall_dir / EVENTS_FILE

    @property
    def manifest_path(self) -> Path:
        """Path to manifest.json, the initialization marker."""
        return self._recall_dir / MANIFEST_FILE

    @property
    def ignore_path(self) -> Path:
        return self._recall_dir / IGNORE_FILE

    def snapshot_path(self, tier: Tier, encrypted: bool = False) -> Path:
        """Path to a snapshot file, optionally its encrypted .enc variant."""
        name = SNAPSHOT_FILES[tier]
        if encrypted:
            name += ENCRYPTED_SUFFIX
        return self._recall_dir / name

    # --- storage root ---

    def is_initialized(self) -> bool:
        """True when manifest.json exists. Nothing else is checked."""
        return self.manifest_path.exists()

    def initialize(self) -> None:
        """Create the .recall/ directory structure.

        Writes an empty log, placeholder snapshots, .recallignore,
        .gitattributes, and the manifest last (so a half-finished
        initialization is not mistaken for a complete one).

        Raises:
            AlreadyInitializedError: If manifest.json already exists.
            OSError: If any file cannot be written.
        """
        if self.is_initialized():
            raise AlreadyInitializedError(str(self.manifest_path))

        self._recall_dir.mkdir(parents=True, exist_ok=True)
        self.events_path.touch(exist_ok=True)
        for tier in TIERS:
            _atomic_write(self.snapshot_path(tier), EMPTY_SNAPSHOTS[tier])
        if not self.ignore_path.exists():
            _atomic_write(self.ignore_path, DEFAULT_IGNORE)
        _atomic_write(self._recall_dir / GITATTRIBUTES_FILE, GITATTRIBUTES)

        manifest = {"version": MANIFEST_VERSION, "created": utc_now_iso()}
        _atomic_write(self.manifest_path, json.dumps(manifest, indent=2) + "\n")

    def read_manifest(self) -> dict | None:
        """Load manifest.json, or None if missing or unreadable."""
        if not self.manifest_path.exists():
            return None
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return None
        return data if isinstance(data, dict) else None

    def _require_initialized(self) -> None:
        if not self.is_initialized():
            raise NotInitializedError(str(self._repo_root))

    # --- event log ---

    def read_all(self) -> list[Event]:
        """Load every event in append order.

        Blank lines are skipped. A partial record from an interrupted append
        is logged and skipped.

        Raises:
            NotInitializedError: If the repository has no manifest.
            StoreCorruptError: If a complete line is not a valid event.
            OSError: If the log cannot be read.
        """
        self._require_initialized()
        if not self.events_path.exists():
            return []

        events: list[Event] = []
        text = self.events_path.read_text(encoding="utf-8")
        for line_number, line in enumerate(text.split("\n"), start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError("record is not a JSON object")
                events.append(Event.from_dict(data))
            except (ValueError, KeyError, TypeError) as e:
                if _is_partial_record(line):
                    logger.warning(f"Skipping partial record at {self.events_path}:{line_number}")
                    continue
                raise StoreCorruptError(str(self.events_path), line_number, str(e)) from e
        return events

    def append(self, events: list[Event]) -> None:
        """Append events to the end of the log, one JSON object per line.

        The file is opened in append mode and the whole batch is written in
        one call, then flushed and fsynced. If the log ends in a partial
        record, a newline is written first so the batch starts on its own
        line.

        Raises:
            NotInitializedError: If the repository has no manifest.
            OSError: If the write fails.
        """
        self._require_initialized()
        if not events:
            return

        payload = "".join(json.dumps(e.to_dict(), ensure_ascii=False) + "\n" for e in events)
        if self._ends_mid_line():
            payload = "\n" + payload

        with open(self.events_path, "a", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())

    def _ends_mid_line(self) -> bool:
        try:
            size = self.events_path.stat().st_size
        except FileNotFoundError:
            return False
        if size == 0:
            return False
        with open(self.events_path, "rb") as handle:
            handle.seek(-1, os.SEEK_END)
            return handle.read(1) != b"\n"

    def last_timestamp(self) -> datetime | None:
        """Timestamp of the last event in append order (not the latest timestamp).

        This is the incremental extraction watermark.
        """
        events = self.read_all()
        if not events:
            return None
        try:
            return parse_timestamp(events[-1].timestamp)
        except ValueError:
            logger.warning(f"Last event {events[-1].id} has an unparsable timestamp")
            return None

    def count(self) -> int:
        """Return the number of events in the log."""
        return len(self.read_all())

    # --- snapshots ---

    def read_snapshot(self, tier: Tier, encrypted: bool = False) -> str:
        """Read a snapshot file as stored, or "" if it does not exist."""
        path = self.snapshot_path(tier, encrypted)
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def write_snapshot(self, tier: Tier, content: str, encrypted: bool = False) -> None:
        """Replace a snapshot file atomically.

        The other variant of the same tier (plaintext or .enc) is removed
        afterwards so a tier never has two competing files.
        """
        self._require_initialized()
        _atomic_write(self.snapshot_path(tier, encrypted), content)
        self.snapshot_path(tier, not encrypted).unlink(missing_ok=True)

    def write_snapshots(self, snapshots: dict[str, str], encrypted: bool = False) -> None:
        """Write every tier in the mapping."""
        for tier in TIERS:
            if tier in snapshots:
                self.write_snapshot(tier, snapshots[tier], encrypted)

    def has_encrypted_snapshots(self) -> bool:
        return any(self.snapshot_path(tier, encrypted=True).exists() for tier in TIERS)

    # --- ignore patterns ---

    def load_ignore_patterns(self) -> list[str]:
        """Glob patterns from .recallignore (comments and blank lines removed)."""
        if not self.ignore_path.exists():
            return []
        try:
            lines = self.ignore_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return []
        return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


def is_ignored(path: str, patterns: list[str]) -> bool:
    """True if path or its basename matches any glob pattern."""
    name = path.rsplit("/", 1)[-1]
    return any(fnmatch(path, p) or fnmatch(name, p) for p in patterns)


# Module-level wrappers over EventStore, one per storage operation.


def initialize(repo_root: str | Path) -> EventStore:
    store = EventStore(repo_root)
    store.initialize()
    return store


def is_initialized(repo_root: str | Path) -> bool:
    return EventStore(repo_root).is_initialized()


def read_all(repo_root: str | Path) -> list[Event]:
    return EventStore(repo_root).read_all()


def append(repo_root: str | Path, events: list[Event]) -> None:
    EventStore(repo_root).append(events)


def last_timestamp(repo_root: str | Path) -> datetime | None:
    return EventStore(repo_root).last_timestamp()


def read_snapshot(repo_root: str | Path, tier: Tier) -> str:
    return EventStore(repo_root).read_snapshot(tier)


def write_snapshot(repo_root: str | Path, tier: Tier, content: str) -> None:
    EventStore(repo_root).write_snapshot(tier, content)
