"""Session extractors for AI coding assistants.

One Extractor per supported tool, held in a priority-ordered registry.
extract_all_events() runs every active extractor and concatenates their
batches in priority order.

Public API:
    - Extractor: Capability interface shared by all extractors
    - ClaudeCodeExtractor, CursorExtractor, CodexExtractor, GeminiExtractor
    - EXTRACTORS: Default instances sorted by priority
    - get_installed_extractors, get_active_extractors: Tool discovery
    - extract_all_events: Run every active extractor
"""

import logging
from datetime import datetime

from recall.extractors.base import Extractor
from recall.extractors.claude_code import ClaudeCodeExtractor
from recall.extractors.codex import CodexExtractor
from recall.extractors.cursor import CursorExtractor
from recall.extractors.gemini import GeminiExtractor
from recall.models import Event, ExtractorResult

logger = logging.getLogger(__name__)

EXTRACTORS: list[Extractor] = sorted(
    [ClaudeCodeExtractor(), CursorExtractor(), CodexExtractor(), GeminiExtractor()],
    key=lambda e: e.priority,
)


def _registry(extractors: list[Extractor] | None) -> list[Extractor]:
    return sorted(extractors if extractors is not None else EXTRACTORS, key=lambda e: e.priority)


def get_installed_extractors(extractors: list[Extractor] | None = None) -> list[Extractor]:
    """Extractors whose tool is installed on this machine."""
    return [e for e in _registry(extractors) if e.is_installed()]


def get_active_extractors(extractors: list[Extractor] | None = None) -> list[Extractor]:
    """Extractors whose tool has session storage on this machine."""
    return [e for e in _registry(extractors) if e.is_active()]


def extract_all_events(
    since: datetime | None = None,
    extractors: list[Extractor] | None = None,
) -> ExtractorResult:
    """Extract from every active extractor, in priority order.

    Batches are concatenated without re-sorting, so event ids stay in the
    order the events will be appended. An extractor that raises is logged
    and skipped; the others still run.

    Args:
        since: Only sessions modified strictly after this time. None scans everything.
        extractors: Registry to use instead of EXTRACTORS (tests pass
                    extractors pointed at a temporary home).
    """
    events: list[Event] = []
    for extractor in get_active_extractors(extractors):
        try:
            result = extractor.extract_events(since)
        except Exception:
            logger.exception(f"[{extractor.name.value}] Extraction failed")
            continue
        logger.info(f"[{extractor.name.value}] Extracted {len(result.events)} event(s)")
        events.extend(result.events)
    return ExtractorResult.from_events(events)


__all__ = [
    "EXTRACTORS",
    "ClaudeCodeExtractor",
    "CodexExtractor",
    "CursorExtractor",
    "Extractor",
    "GeminiExtractor",
    "extract_all_events",
    "get_active_extractors",
    "get_installed_extractors",
]
