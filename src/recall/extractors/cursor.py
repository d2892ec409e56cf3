"""Cursor session extractor.

Cursor keeps per-workspace state in SQLite databases:
    <user config>/Cursor/User/workspaceStorage/<workspace-hash>/state.vscdb

where <user config> is ~/Library/Application Support on macOS, %APPDATA%
on Windows, and ~/.config elsewhere. Chat history lives in the ItemTable
row keyed "workbench.panel.aichat.view.aichat.chatdata" as JSON:

    {"tabs": [{"tabId": ..., "lastSendTime": <epoch ms>,
               "bubbles": [{"type": "user" | "ai", "text": ...}, ...]}]}

Each tab is one session. workspace.json next to the database records the
workspace folder URI, which maps a repository to its workspace hash.
"""

import json
import logging
import os
import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import unquote, urlparse

from recall.extractors.base import (
    ASSISTANT_ROLE,
    USER_ROLE,
    Extractor,
    Message,
    SessionFile,
    canonicalize,
    list_session_files,
    list_subdirectories,
)
from recall.models import Event, ExtractorResult, Tool, to_iso

logger = logging.getLogger(__name__)

STATE_DB = "state.vscdb"
CHAT_DATA_KEY = "workbench.panel.aichat.view.aichat.chatdata"

_BUBBLE_ROLES = {"user": USER_ROLE, "ai": ASSISTANT_ROLE}


def read_chat_data(db_path: Path) -> dict | None:
    """Load the chat JSON from a workspace database, opened read-only.

    Returns None when the key is absent.

    Raises:
        sqlite3.Error: If the database cannot be opened or queried.
        ValueError: If the stored value is not valid JSON.
    """
    conn = sqlite3.connect(f"{db_path.as_uri()}?mode=ro", uri=True)
    try:
        row = conn.execute("SELECT value FROM ItemTable WHERE key = ?", (CHAT_DATA_KEY,)).fetchone()
    finally:
        conn.close()

    if row is None or row[0] is None:
        return None
    value = row[0]
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    data = json.loads(value)
    return data if isinstance(data, dict) else None


def _tab_timestamp(tab: dict) -> str | None:
    sent = tab.get("lastSendTime")
    if not isinstance(sent, (int, float)) or isinstance(sent, bool) or sent <= 0:
        return None
    try:
        return to_iso(datetime.fromtimestamp(sent / 1000, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        # Out of the platform range; the database mtime stands in
        return None


def parse_tabs(chat_data: dict, user: str, fallback_timestamp: str) -> list[Event]:
    """One Event per chat tab that holds a real exchange."""
    events = []
    tabs = chat_data.get("tabs")
    if not isinstance(tabs, list):
        return events

    for tab in tabs:
        if not isinstance(tab, dict) or not isinstance(tab.get("bubbles"), list):
            continue
        messages = []
        for bubble in tab["bubbles"]:
            if not isinstance(bubble, dict):
                continue
            bubble_type = bubble.get("type")
            role = _BUBBLE_ROLES.get(bubble_type) if isinstance(bubble_type, str) else None
            if role is None:
                continue
            text = bubble.get("text") or bubble.get("rawText") or ""
            messages.append(Message(role=role, text=text if isinstance(text, str) else ""))

        event = canonicalize(
            Tool.CURSOR,
            messages,
            timestamp=_tab_timestamp(tab) or fallback_timestamp,
            user=user,
        )
        if event is not None:
            events.append(event)
    return events


class CursorExtractor(Extractor):
    """Extracts one event per Cursor chat tab."""

    name = Tool.CURSOR
    priority = 2

    def __init__(self, home: Path | None = None, user: str | None = None, platform: str | None = None):
        super().__init__(home=home, user=user)
        self._platform = platform or sys.platform

    @property
    def cursor_dir(self) -> Path:
        if self._platform == "darwin":
            base = self.home / "Library" / "Application Support"
        elif self._platform == "win32":
            appdata = os.environ.get("APPDATA")
            base = Path(appdata) if appdata and self._home is None else self.home / "AppData" / "Roaming"
        else:
            base = self.home / ".config"
        return base / "Cursor"

    @property
    def workspace_storage_dir(self) -> Path:
        return self.cursor_dir / "User" / "workspaceStorage"

    def is_installed(self) -> bool:
        return self.cursor_dir.exists()

    def is_active(self) -> bool:
        return self.workspace_storage_dir.exists()

    def get_session_path(self, repo_path: str | Path) -> Path | None:
        """The workspace directory whose workspace.json folder is repo_path."""
        if not self.workspace_storage_dir.exists():
            return None
        target = Path(repo_path).resolve()
        for workspace in list_subdirectories(self.workspace_storage_dir):
            folder = _workspace_folder(workspace)
            if folder is not None and folder == target:
                return workspace
        return None

    def extract_events(self, since: datetime | None = None) -> ExtractorResult:
        if not self.workspace_storage_dir.exists():
            return ExtractorResult()

        user = self.resolve_user()
        events: list[Event] = []
        for workspace in list_subdirectories(self.workspace_storage_dir):
            for db_file in list_session_files(workspace, lambda n: n == STATE_DB, since):
                events.extend(self._extract_db(db_file, user))

        return ExtractorResult.from_events(events)

    def _extract_db(self, db_file: SessionFile, user: str) -> list[Event]:
        try:
            chat_data = read_chat_data(db_file.path)
        except (sqlite3.Error, ValueError) as e:
            logger.debug(f"Skipping unreadable workspace database {db_file.path}: {e}")
            return []
        if chat_data is None:
            return []
        try:
            return parse_tabs(chat_data, user, to_iso(db_file.mtime))
        except (TypeError, AttributeError, ValueError) as e:
            logger.debug(f"Skipping malformed chat data in {db_file.path}: {e}")
            return []


def _workspace_folder(workspace: Path) -> Path | None:
    try:
        data = json.loads((workspace / "workspace.json").read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    folder = data.get("folder") if isinstance(data, dict) else None
    if not isinstance(folder, str):
        return None
    parsed = urlparse(folder)
    if parsed.scheme != "file":
        return None
    try:
        return Path(unquote(parsed.path)).resolve()
    except (OSError, RuntimeError):
        return None
