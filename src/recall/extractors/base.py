"""Shared extractor interface and canonicalization heuristics.

Every tool-specific extractor turns its native session files into
Message lists and hands them to canonicalize(), which applies the same
heuristics to all tools:

- Summary: explicit summary record if present, else the first user
  message truncated at a word boundary.
- Type: keyword tables, decision first, then error_resolved, else session.
- Files: path-like strings after Read/Edit/Write or in commented code
  fences, at most 10.

Extractors never raise for a single bad file or directory: they log and
skip it.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from recall.models import (
    MAX_EVENT_FILES,
    Event,
    EventType,
    ExtractorResult,
    Tool,
    create_event,
    mtime_to_datetime,
    parse_timestamp,
    to_iso,
)
from recall.project import get_git_user

logger = logging.getLogger(__name__)

# ============================================================
# Summary extraction
# ============================================================

SUMMARY_MAX_LENGTH = 200
ELLIPSIS = "..."
EMPTY_SESSION_SUMMARY = "Empty session"

# ============================================================
# Type classification keyword tables (substring matches, lowercase)
# ============================================================

# WHAT: Checked first. Any hit classifies the session as a decision.
DECISION_KEYWORDS: tuple[str, ...] = (
    "decided to",
    "choosing",
    "went with",
    "architecture",
    "instead of",
)

# WHAT: error_resolved needs one keyword from EACH of these two tables.
ERROR_KEYWORDS: tuple[str, ...] = ("error", "bug", "fix")
RESOLUTION_KEYWORDS: tuple[str, ...] = ("fixed", "resolved", "working")

# ============================================================
# File reference extraction
# ============================================================

FILE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"""(?:Read|Edit|Write|file_path)[:\s]+["']?([/\w.-]+\.\w+)["']?""", re.IGNORECASE),
    re.compile(r"```\w*\s*(?://|#)\s*([/\w.-]+\.\w+)", re.MULTILINE),
)
FILE_MAX_LENGTH = 200

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


@dataclass(frozen=True)
class Message:
    """One conversational turn, normalized across tools."""

    role: str
    text: str

    @property
    def is_user(self) -> bool:
        return self.role == USER_ROLE

    @property
    def is_assistant(self) -> bool:
        return self.role == ASSISTANT_ROLE


@dataclass(frozen=True)
class SessionFile:
    """A raw session file and its modification time (UTC)."""

    path: Path
    mtime: datetime


def truncate_summary(text: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """Truncate text to max_length, preferring a word boundary.

    The last space before the cutoff is used only when it falls past the
    halfway point; otherwise the text is cut hard. An ellipsis is appended
    whenever the text was shortened.
    """
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        truncated = truncated[:last_space]
    return truncated + ELLIPSIS


def summarize(messages: list[Message], explicit_summary: str | None = None) -> str:
    """Pick the summary for a session."""
    if explicit_summary:
        return explicit_summary
    for message in messages:
        if message.is_user and message.text:
            return truncate_summary(message.text)
    return EMPTY_SESSION_SUMMARY


def detect_event_type(texts: list[str]) -> EventType:
    """Classify a session from all of its text. First match wins."""
    full_text = " ".join(texts).lower()

    if any(keyword in full_text for keyword in DECISION_KEYWORDS):
        return EventType.DECISION

    if any(keyword in full_text for keyword in ERROR_KEYWORDS) and any(
        keyword in full_text for keyword in RESOLUTION_KEYWORDS
    ):
        return EventType.ERROR_RESOLVED

    return EventType.SESSION


def extract_files(text: str) -> list[str]:
    """Collect up to MAX_EVENT_FILES unique path-like strings in first-seen order."""
    files: list[str] = []
    for pattern in FILE_PATTERNS:
        for match in pattern.finditer(text):
            candidate = match.group(1)
            if not candidate or any(c.isspace() for c in candidate) or len(candidate) >= FILE_MAX_LENGTH:
                continue
            if candidate not in files:
                files.append(candidate)
    return files[:MAX_EVENT_FILES]


def get_text_content(content) -> str:
    """Visible text of a message content field.

    Accepts a plain string or a list of content blocks; only text-bearing
    blocks (text, input_text, output_text) contribute.
    """
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    texts = []
    for block in content:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, dict) and block.get("type") in ("text", "input_text", "output_text"):
            text = block.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
    return "\n".join(texts)


def has_exchange(messages: list[Message]) -> bool:
    """A real session has at least one user turn and one assistant turn."""
    return any(m.is_user for m in messages) and any(m.is_assistant for m in messages)


def normalize_timestamp(value, fallback: str) -> str:
    """Tool timestamp as UTC ISO-8601, or fallback when absent or unparsable."""
    if not isinstance(value, str) or not value:
        return fallback
    try:
        return to_iso(parse_timestamp(value))
    except (ValueError, OverflowError):
        return fallback


def canonicalize(
    tool: Tool,
    messages: list[Message],
    timestamp: str,
    user: str,
    explicit_summary: str | None = None,
    extra_file_text: str = "",
) -> Event | None:
    """Turn one parsed session into an Event, or None if it has no exchange.

    Args:
        tool: Tool that produced the session.
        messages: Normalized conversation turns in order.
        timestamp: ISO-8601 time the session occurred.
        user: Committer identity.
        explicit_summary: Summary record provided by the tool, if any.
        extra_file_text: Additional text scanned only for file references
                         (for example rendered tool calls).
    """
    if not has_exchange(messages):
        return None

    texts = [m.text for m in messages if m.text]
    classify = [explicit_summary, *texts] if explicit_summary else texts
    file_text = "\n".join(texts)
    if extra_file_text:
        file_text += "\n" + extra_file_text

    return create_event(
        tool=tool,
        summary=summarize(messages, explicit_summary),
        timestamp=timestamp,
        user=user,
        event_type=detect_event_type(classify),
        files=extract_files(file_text),
    )


def modified_after(mtime: datetime, since: datetime | None) -> bool:
    """Incremental filter: strictly newer than since, or everything when since is None."""
    return since is None or mtime > since


def list_session_files(
    directory: Path,
    accept: Callable[[str], bool],
    since: datetime | None,
) -> list[SessionFile]:
    """List accepted files in directory modified after since, oldest first.

    An unreadable directory is logged and yields no files.
    """
    found: list[SessionFile] = []
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        logger.warning(f"Cannot read session directory {directory}: {e}")
        return []

    for entry in entries:
        if not accept(entry.name):
            continue
        try:
            if not entry.is_file():
                continue
            mtime = mtime_to_datetime(entry.stat().st_mtime)
        except OSError as e:
            logger.debug(f"Cannot stat {entry}: {e}")
            continue
        if modified_after(mtime, since):
            found.append(SessionFile(path=entry, mtime=mtime))

    found.sort(key=lambda f: (f.mtime, f.path.name))
    return found


def list_subdirectories(directory: Path, accept: Callable[[str], bool] | None = None) -> list[Path]:
    """Sorted child directories whose names pass accept; [] if unreadable."""
    try:
        children = sorted(directory.iterdir())
    except OSError as e:
        logger.warning(f"Cannot read directory {directory}: {e}")
        return []
    result = []
    for child in children:
        if accept is not None and not accept(child.name):
            continue
        try:
            if child.is_dir():
                result.append(child)
        except OSError:
            continue
    return result


class Extractor:
    """Capability interface shared by all session extractors.

    Subclasses set name/priority and implement the four capabilities.
    The home directory and user identity are injectable so tests can point
    an extractor at a temporary tree.
    """

    name: Tool
    priority: int

    def __init__(self, home: Path | None = None, user: str | None = None):
        self._home = home
        self._user = user

    @property
    def home(self) -> Path:
        return self._home if self._home is not None else Path.home()

    def resolve_user(self) -> str:
        """Identity attributed to the events of one extraction run."""
        return self._user if self._user is not None else get_git_user()

    def is_installed(self) -> bool:
        """Does the tool's root data directory exist."""
        raise NotImplementedError

    def is_active(self) -> bool:
        """Does the tool's session storage directory exist."""
        raise NotImplementedError

    def get_session_path(self, repo_path: str | Path) -> Path | None:
        """The tool's session directory for a repository, if any."""
        raise NotImplementedError

    def extract_events(self, since: datetime | None = None) -> ExtractorResult:
        """Extract events from sessions modified after since (all when None)."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name.value!r}, priority={self.priority})"
