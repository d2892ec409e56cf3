"""Recall: shared team memory for AI coding assistants.

Extracts memory events from local Claude Code, Cursor, Codex, and Gemini
CLI session logs, keeps them in an append-only log inside the repository
(.recall/events.jsonl), and derives three token-budgeted Markdown snapshots
that assistants load as context.

Public API:
    - Event, EventType, Tool, create_event: Core event model
    - ExtractorResult, content_hash: Extraction batches and deduplication
    - RecallConfig, load_config, save_config: Configuration
    - EventStore: Per-repository storage root and event log
    - generate, generate_small, generate_medium, generate_large: Snapshot rendering
    - initialize, is_initialized, extract_and_append, regenerate_snapshots,
      read_snapshot: Pipeline operations
    - EXTRACTORS, extract_all_events: Extractor registry
    - KeySession, KeyResult, encrypt, decrypt: Snapshot encryption
    - find_repo_root, get_git_user: Repository and identity resolution
    - RecallError and subclasses: Reportable failures
"""

__version__ = "0.1.0"

from recall.config import RecallConfig, load_config, save_config
from recall.encryption import KeyResult, KeySession, decrypt, encrypt
from recall.errors import (
    AlreadyInitializedError,
    NotInitializedError,
    RecallError,
    RepoNotFoundError,
    StoreCorruptError,
)
from recall.extractors import EXTRACTORS, extract_all_events
from recall.models import Event, EventType, ExtractorResult, Tool, content_hash, create_event
from recall.pipeline import (
    extract_and_append,
    initialize,
    is_initialized,
    read_snapshot,
    regenerate_snapshots,
)
from recall.project import find_repo_root, get_git_user
from recall.snapshots import generate, generate_large, generate_medium, generate_small
from recall.store import EventStore

__all__ = [
    "AlreadyInitializedError",
    "EXTRACTORS",
    "Event",
    "EventStore",
    "EventType",
    "ExtractorResult",
    "KeyResult",
    "KeySession",
    "NotInitializedError",
    "RecallConfig",
    "RecallError",
    "RepoNotFoundError",
    "StoreCorruptError",
    "Tool",
    "content_hash",
    "create_event",
    "decrypt",
    "encrypt",
    "extract_all_events",
    "extract_and_append",
    "find_repo_root",
    "generate",
    "generate_large",
    "generate_medium",
    "generate_small",
    "get_git_user",
    "initialize",
    "is_initialized",
    "load_config",
    "read_snapshot",
    "regenerate_snapshots",
    "save_config",
]
