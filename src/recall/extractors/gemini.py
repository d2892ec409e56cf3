"""Gemini CLI session extractor.

Gemini CLI keeps per-project scratch space keyed by a hash of the project
root, with recorded chats in a nested folder:
    ~/.gemini/tmp/<sha256(project root)>/chats/session-*.json

A chat file is a JSON object with a "messages" (older builds:
"conversation") list. Message roles are "user" and "gemini"/"model";
text is either a "content" string or a list of {"text": ...} "parts".
"""

import hashlib
import json
import logging
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

_ROLE_MAP = {
    "user": USER_ROLE,
    "gemini": ASSISTANT_ROLE,
    "model": ASSISTANT_ROLE,
    "assistant": ASSISTANT_ROLE,
}


def project_hash(repo_path: str | Path) -> str:
    """Gemini CLI's directory name for a project root."""
    return hashlib.sha256(str(Path(repo_path).resolve()).encode("utf-8")).hexdigest()


def _message_text(message: dict) -> str:
    content = message.get("content")
    if content:
        return get_text_content(content)
    parts = message.get("parts")
    if isinstance(parts, list):
        return "\n".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))
    return ""


def parse_chat(data, user: str, fallback_timestamp: str) -> Event | None:
    """Build an Event from a decoded chat file, or None when there is no exchange."""
    if isinstance(data, dict):
        raw_messages = data.get("messages") or data.get("conversation") or []
        timestamp = data.get("startTime")
    else:
        raw_messages = data
        timestamp = None
    if not isinstance(raw_messages, list):
        raw_messages = []

    messages: list[Message] = []
    for raw in raw_messages:
        if not isinstance(raw, dict):
            continue
        role_name = raw.get("role") or raw.get("type")
        role = _ROLE_MAP.get(role_name) if isinstance(role_name, str) else None
        if role is None:
            continue
        if not isinstance(timestamp, str) and isinstance(raw.get("timestamp"), str):
            timestamp = raw["timestamp"]
        messages.append(Message(role=role, text=_message_text(raw)))

    return canonicalize(
        Tool.GEMINI,
        messages,
        timestamp=normalize_timestamp(timestamp, fallback_timestamp),
        user=user,
    )


class GeminiExtractor(Extractor):
    """Extracts one event per recorded Gemini CLI chat."""

    name = Tool.GEMINI
    priority = 4

    @property
    def gemini_dir(self) -> Path:
        return self.home / ".gemini"

    @property
    def tmp_dir(self) -> Path:
        return self.gemini_dir / "tmp"

    def is_installed(self) -> bool:
        return self.gemini_dir.exists()

    def is_active(self) -> bool:
        return self.tmp_dir.exists()

    def get_session_path(self, repo_path: str | Path) -> Path | None:
        chats_dir = self.tmp_dir / project_hash(repo_path) / "chats"
        return chats_dir if chats_dir.is_dir() else None

    def extract_events(self, since: datetime | None = None) -> ExtractorResult:
        if not self.tmp_dir.exists():
            return ExtractorResult()

        user = self.resolve_user()
        events: list[Event] = []
        for project_dir in list_subdirectories(self.tmp_dir):
            chats_dir = project_dir / "chats"
            # A project without chats/ simply has no recorded sessions
            if not chats_dir.is_dir():
                continue
            for session_file in list_session_files(chats_dir, lambda n: n.endswith(".json"), since):
                event = self._extract_file(session_file, user)
                if event is not None:
                    events.append(event)

        return ExtractorResult.from_events(events)

    def _extract_file(self, session_file: SessionFile, user: str) -> Event | None:
        try:
            data = json.loads(session_file.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(f"Skipping unreadable chat {session_file.path}: {e}")
            return None
        try:
            return parse_chat(data, user, to_iso(session_file.mtime))
        except (TypeError, AttributeError, ValueError) as e:
            logger.debug(f"Skipping malformed chat {session_file.path}: {e}")
            return None
