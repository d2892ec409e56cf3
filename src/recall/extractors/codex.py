"""OpenAI Codex CLI session extractor.

Codex stores one rollout file per session in a date tree:
    ~/.codex/sessions/YYYY/MM/DD/rollout-<timestamp>-<id>.jsonl

Each line is a JSON record. Older releases write messages directly
({"type": "message", "role": ..., "content": ...}); newer ones wrap them
({"type": "response_item", "payload": {"type": "message", ...}}). Content
is a string or a list of input_text/output_text blocks.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from recall.extractors.base import (
    ASSISTANT_ROLE,
    USER_ROLE,
    Extractor,
    Message,
    SessionFile,
    canonicalize,
    get_text_content,
    list_session_files,
    list_subdirectories,
    normalize_timestamp,
)
from recall.models import Event, ExtractorResult, Tool, to_iso

logger = logging.getLogger(__name__)

_YEAR_RE = re.compile(r"^\d{4}$")
_TWO_DIGIT_RE = re.compile(r"^\d{2}$")

# WHAT: User-role messages Codex injects itself; they are not the user's words.
_INJECTED_PREFIXES = ("<environment_context>", "<user_instructions>")


def _is_rollout(name: str) -> bool:
    return name.startswith("rollout-") and name.endswith(".jsonl")


def _message_of(record: dict) -> dict | None:
    """The message object carried by a record, in either file format."""
    if record.get("type") == "response_item" and isinstance(record.get("payload"), dict):
        record = record["payload"]
    if record.get("type") == "message" and record.get("role") in (USER_ROLE, ASSISTANT_ROLE):
        return record
    return None


def parse_rollout(lines: list[str], user: str, fallback_timestamp: str) -> Event | None:
    """Build an Event from rollout lines, or None when there is no exchange."""
    messages: list[Message] = []
    timestamp = None

    for line in lines:
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict):
            continue
        if timestamp is None and isinstance(record.get("timestamp"), str):
            timestamp = record["timestamp"]

        message = _message_of(record)
        if message is None:
            continue
        text = get_text_content(message.get("content"))
        if message["role"] == USER_ROLE and text.lstrip().startswith(_INJECTED_PREFIXES):
            continue
        messages.append(Message(role=message["role"], text=text))

    return canonicalize(
        Tool.CODEX,
        messages,
        timestamp=normalize_timestamp(timestamp, fallback_timestamp),
        user=user,
    )


class CodexExtractor(Extractor):
    """Extracts one event per Codex rollout file."""

    name = Tool.CODEX
    priority = 3

    @property
    def codex_dir(self) -> Path:
        return self.home / ".codex"

    @property
    def sessions_dir(self) -> Path:
        return self.codex_dir / "sessions"

    def is_installed(self) -> bool:
        return self.codex_dir.exists()

    def is_active(self) -> bool:
        return self.sessions_dir.exists()

    def get_session_path(self, repo_path: str | Path) -> Path | None:
        # Codex does not partition sessions by project.
        return self.sessions_dir if self.sessions_dir.exists() else None

    def iter_day_dirs(self) -> list[Path]:
        """YYYY/MM/DD directories under the sessions root, oldest first.

        Each segment is checked to be numeric of the right width before
        descending, so unrelated directories are never walked.
        """
        days = []
        for year in list_subdirectories(self.sessions_dir, _YEAR_RE.match):
            for month in list_subdirectories(year, _TWO_DIGIT_RE.match):
                days.extend(list_subdirectories(month, _TWO_DIGIT_RE.match))
        return days

    def extract_events(self, since: datetime | None = None) -> ExtractorResult:
        if not self.sessions_dir.exists():
            return ExtractorResult()

        user = self.resolve_user()
        events: list[Event] = []
        for day_dir in self.iter_day_dirs():
            for session_file in list_session_files(day_dir, _is_rollout, since):
                event = self._extract_file(session_file, user)
                if event is not None:
                    events.append(event)

        return ExtractorResult.from_events(events)

    def _extract_file(self, session_file: SessionFile, user: str) -> Event | None:
        try:
            lines = [line for line in session_file.path.read_text(encoding="utf-8").splitlines() if line.strip()]
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Skipping unreadable rollout {session_file.path}: {e}")
            return None
        return parse_rollout(lines, user, to_iso(session_file.mtime))
