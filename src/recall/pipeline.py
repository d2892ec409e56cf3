"""Driver operations tying the extractors, the event store, and the snapshots together.

    initialize / is_initialized   set up <repo>/.recall/
    extract_and_append            pull new sessions into events.jsonl
    regenerate_snapshots          rebuild small/medium/large from the log
    read_snapshot                 load one tier, decrypting when possible

The CLI, the Claude Code hooks, and the MCP server all go through these
functions rather than touching the store directly.
"""

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from cryptography.exceptions import InvalidTag

from recall.config import RecallConfig
from recall.encryption import KeySession, decrypt, encrypt
from recall.extractors import extract_all_events
from recall.extractors.base import Extractor
from recall.models import Event, content_hash, parse_timestamp
from recall.snapshots import TIERS, Tier, generate
from recall.store import EventStore, is_ignored

logger = logging.getLogger(__name__)

# Sentinel: "use the store's watermark". None means a full scan.
_WATERMARK = object()


def initialize(repo_root: str | Path) -> EventStore:
    """Create <repo>/.recall/.

    Raises:
        AlreadyInitializedError: If the repository is already initialized.
    """
    store = EventStore(repo_root)
    store.initialize()
    logger.info(f"Initialized Recall in {store.recall_dir}")
    return store


def is_initialized(repo_root: str | Path) -> bool:
    return EventStore(repo_root).is_initialized()


def _watermark(events: list[Event]) -> datetime | None:
    if not events:
        return None
    try:
        return parse_timestamp(events[-1].timestamp)
    except ValueError:
        logger.warning(f"Last event {events[-1].id} has an unparsable timestamp; scanning everything")
        return None


def _strip_ignored(event: Event, patterns: list[str]) -> Event:
    if not patterns or not event.files:
        return event
    kept = tuple(f for f in event.files if not is_ignored(f, patterns))
    return event if kept == event.files else replace(event, files=kept)


def extract_and_append(
    repo_root: str | Path,
    since=_WATERMARK,
    extractors: list[Extractor] | None = None,
) -> list[Event]:
    """Extract sessions newer than the watermark and append them to the log.

    Events already present in the log (same tool, timestamp, user and
    summary) or repeated within the batch are dropped, so running this
    twice without new sessions appends nothing the second time. File
    references matching .recallignore are removed before appending.

    Args:
        repo_root: Repository root.
        since: Only sessions modified after this time. Defaults to the
               timestamp of the last event in the log; None forces a full scan.
        extractors: Registry override, mainly for tests.

    Returns:
        The events that were appended, in append order.

    Raises:
        NotInitializedError: If the repository is not initialized.
        StoreCorruptError: If the existing log cannot be parsed.
        OSError: If the append fails.
    """
    store = EventStore(repo_root)
    existing = store.read_all()
    if since is _WATERMARK:
        since = _watermark(existing)

    result = extract_all_events(since=since, extractors=extractors)

    seen = {content_hash(e) for e in existing}
    patterns = store.load_ignore_patterns()
    new_events: list[Event] = []
    for event in result.events:
        digest = content_hash(event)
        if digest in seen:
            continue
        seen.add(digest)
        new_events.append(_strip_ignored(event, patterns))

    store.append(new_events)
    logger.info(f"Appended {len(new_events)} of {len(result.events)} extracted event(s)")
    return new_events


def regenerate_snapshots(
    repo_root: str | Path,
    config: RecallConfig | None = None,
    key_session: KeySession | None = None,
) -> dict[Tier, str]:
    """Rebuild every snapshot tier from the full event log.

    All tiers are generated in memory before any file is written, so a
    failure leaves the previous snapshots untouched. With a key session
    that has access, each tier is written encrypted as <tier>.md.enc and
    its plaintext file is removed.

    Returns:
        The plaintext snapshots keyed by tier.

    Raises:
        NotInitializedError: If the repository is not initialized.
        StoreCorruptError: If the log cannot be parsed.
        OSError: If a snapshot file cannot be written.
    """
    store = EventStore(repo_root)
    events = store.read_all()
    snapshots = generate(events, budgets=config.budgets if config else None)

    key = key_session.get_key() if key_session is not None else None
    if key is not None:
        store.write_snapshots({tier: encrypt(text, key) for tier, text in snapshots.items()}, encrypted=True)
    else:
        store.write_snapshots(snapshots)
    return snapshots


def read_snapshot(repo_root: str | Path, tier: Tier, key_session: KeySession | None = None) -> str:
    """Load a snapshot tier as Markdown.

    The encrypted file is preferred when the session holds a key. An
    encrypted tier that cannot be decrypted reads as "" (logged).
    """
    if tier not in TIERS:
        raise ValueError(f"Unknown snapshot tier: {tier}")

    store = EventStore(repo_root)
    encrypted_path = store.snapshot_path(tier, encrypted=True)
    if encrypted_path.exists():
        key = key_session.get_key() if key_session is not None else None
        if key is None:
            plaintext = store.read_snapshot(tier)
            if not plaintext:
                logger.warning(f"{encrypted_path.name} is encrypted and no team key is available")
            return plaintext
        try:
            return decrypt(store.read_snapshot(tier, encrypted=True), key)
        except (InvalidTag, ValueError) as e:
            logger.warning(f"Cannot decrypt {encrypted_path.name}: {e}")
            return ""

    return store.read_snapshot(tier)
