"""Claude Code session extractor.

Claude Code stores one JSONL transcript per session in:
    ~/.claude/projects/<encoded-project-path>/<session-id>.jsonl

The project directory name is the absolute project path with path
separators replaced by "-" (/Users/ray/app -> -Users-ray-app). Each line
is a JSON object with a "type" discriminator: "user", "assistant",
"summary", "file-history-snapshot", and tool records. User and assistant
lines carry a "message" with "role" and "content" (a string or a list of
content blocks).
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

_MESSAGE_TYPES = {USER_ROLE, ASSISTANT_ROLE}
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9-]")


def encode_project_path(repo_path: str | Path) -> str:
    """Encode a project path the way Claude Code names project directories."""
    return str(repo_path).replace("/", "-")


def read_transcript(path: Path) -> list[dict]:
    """Parse a transcript, skipping blank and unparsable lines.

    Raises:
        OSError: If the file cannot be read.
        UnicodeDecodeError: If the file is not UTF-8.
    """
    records = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(record, dict):
            records.append(record)
    return records


def _tool_call_text(content) -> str:
    """Render tool_use blocks that name a file, for file reference scanning."""
    if not isinstance(content, list):
        return ""
    calls = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        tool_input = block.get("input")
        if isinstance(tool_input, dict) and isinstance(tool_input.get("file_path"), str):
            calls.append(f"{block.get('name', '')} {tool_input['file_path']}")
    return "\n".join(calls)


def parse_session(records: list[dict], user: str, fallback_timestamp: str) -> Event | None:
    """Build an Event from transcript records, or None for a non-session."""
    messages: list[Message] = []
    tool_calls: list[str] = []
    explicit_summary = None
    timestamp = None

    for record in records:
        record_type = record.get("type")
        if timestamp is None and isinstance(record.get("timestamp"), str):
            timestamp = record["timestamp"]

        if record_type == "summary":
            if explicit_summary is None and isinstance(record.get("summary"), str) and record["summary"]:
                explicit_summary = record["summary"]
            continue

        if not isinstance(record_type, str) or record_type not in _MESSAGE_TYPES:
            continue

        message = record.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        messages.append(Message(role=record_type, text=get_text_content(content)))
        if record_type == ASSISTANT_ROLE:
            calls = _tool_call_text(content)
            if calls:
                tool_calls.append(calls)

    return canonicalize(
        Tool.CLAUDE_CODE,
        messages,
        timestamp=normalize_timestamp(timestamp, fallback_timestamp),
        user=user,
        explicit_summary=explicit_summary,
        extra_file_text="\n".join(tool_calls),
    )


class ClaudeCodeExtractor(Extractor):
    """Extracts one event per Claude Code transcript."""

    name = Tool.CLAUDE_CODE
    priority = 1

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    def is_installed(self) -> bool:
        return self.claude_dir.exists()

    def is_active(self) -> bool:
        return self.projects_dir.exists()

    def get_session_path(self, repo_path: str | Path) -> Path | None:
        """Locate the project directory for repo_path.

        Probes the direct encoding, then the path taken relative to the home
        directory, then the encoding with every non-alphanumeric character
        replaced.
        """
        if not self.projects_dir.exists():
            return None

        path_text = str(repo_path)
        home_text = str(self.home)
        with_home = path_text if path_text.startswith(home_text) else str(self.home / path_text.lstrip("/"))

        candidates = (
            encode_project_path(path_text),
            encode_project_path(with_home),
            _NON_ALNUM_RE.sub("-", path_text),
        )
        for encoded in candidates:
            project_dir = self.projects_dir / encoded
            if project_dir.is_dir():
                return project_dir
        return None

    def extract_events(self, since: datetime | None = None) -> ExtractorResult:
        if not self.projects_dir.exists():
            return ExtractorResult()

        user = self.resolve_user()
        events: list[Event] = []
        for project_dir in list_subdirectories(self.projects_dir):
            for session_file in list_session_files(project_dir, lambda n: n.endswith(".jsonl"), since):
                event = self._extract_file(session_file, user)
                if event is not None:
                    events.append(event)

        return ExtractorResult.from_events(events)

    def _extract_file(self, session_file: SessionFile, user: str) -> Event | None:
        try:
            records = read_transcript(session_file.path)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Skipping unreadable transcript {session_file.path}: {e}")
            return None
        return parse_session(records, user, to_iso(session_file.mtime))
