"""Snapshot generation for Recall.

Converts the ordered event log into three Markdown documents loaded by AI
assistants as team context:

- small.md: quick context (~500 tokens). What does the AI need right now?
- medium.md: recent session history (~4000 tokens), grouped by day.
- large.md: full history (~32000 tokens), one sub-section per event.

Every function here is pure: the same event sequence always renders to
byte-identical Markdown, and there are no error cases. Snapshots are
regenerated wholesale from the event log, never patched.
"""

import math
from typing import Literal

from recall.models import Event, EventType

Tier = Literal["small", "medium", "large"]
TIERS: tuple[Tier, ...] = ("small", "medium", "large")

# Approximate characters per token for budget enforcement.
CHARS_PER_TOKEN = 4

DEFAULT_BUDGETS: dict[str, int] = {
    "small": 500,
    "medium": 4000,
    "large": 32000,
}

# Candidate window sizes (append order, most recent last)
SMALL_WINDOW = 20
MEDIUM_WINDOW = 100
MEDIUM_MAX_DAYS = 14

SMALL_MAX_DECISIONS = 5
SMALL_MAX_AVOID = 3

# WHAT: Events assumed per date group when estimating how many events the
# large snapshot left out. Deliberately approximate.
LARGE_EVENTS_PER_GROUP_ESTIMATE = 10

EMPTY_SNAPSHOTS: dict[str, str] = {
    "small": "# Team Context\n\n_No sessions captured yet._\n",
    "medium": "# Session History\n\n_No sessions captured yet._\n",
    "large": "# Full History\n\n_No sessions captured yet._\n",
}

_TYPE_TAGS = {
    EventType.DECISION: "[decision]",
    EventType.ERROR_RESOLVED: "[fix]",
}


def estimate_tokens(text: str) -> int:
    """Rough token count: ceil(characters / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_user(user: str) -> str:
    """Render a user identity as @<part before the first '@'>."""
    return f"@{user.split('@')[0]}"


def format_date(timestamp: str) -> str:
    """UTC calendar-date portion of an ISO timestamp (YYYY-MM-DD)."""
    return timestamp.split("T")[0]


def format_time(timestamp: str) -> str:
    """HH:MM portion of an ISO timestamp, or 00:00 when it carries no time."""
    _, sep, rest = timestamp.partition("T")
    return rest[:5] if sep and rest else "00:00"


def group_by_date(events: list[Event]) -> list[tuple[str, list[Event]]]:
    """Group events by calendar date, most recent date first.

    Events keep their append order inside each group.
    """
    groups: dict[str, list[Event]] = {}
    for event in events:
        groups.setdefault(format_date(event.timestamp), []).append(event)
    return sorted(groups.items(), key=lambda item: item[0], reverse=True)


def _trim_bullets(content: str, budget: int) -> str:
    """Drop the last '- ' line in the document until under budget or out of bullets."""
    while estimate_tokens(content) > budget:
        lines = content.split("\n")
        for i in range(len(lines) - 1, -1, -1):
            if lines[i].startswith("- "):
                del lines[i]
                break
        else:
            break
        content = "\n".join(lines)
    return content


def generate_small(events: list[Event], budget: int = DEFAULT_BUDGETS["small"]) -> str:
    """Generate small.md: current focus, key decisions, things to avoid."""
    if not events:
        return EMPTY_SNAPSHOTS["small"]

    recent = events[-SMALL_WINDOW:]
    sessions = [e for e in recent if e.type == EventType.SESSION]
    decisions = [e for e in recent if e.type == EventType.DECISION]
    errors = [e for e in recent if e.type == EventType.ERROR_RESOLVED]

    parts = [f"# Team Context\n\nLast updated: {format_date(events[-1].timestamp)}\n\n"]

    if sessions:
        parts.append(f"## Current Focus\n{sessions[-1].summary}\n\n")

    if decisions:
        parts.append("## Key Decisions\n")
        for decision in decisions[-SMALL_MAX_DECISIONS:]:
            parts.append(
                f"- {decision.summary} ({format_user(decision.user)}, {format_date(decision.timestamp)})\n"
            )
        parts.append("\n")

    # Resolved errors are the things that didn't work the first time
    if errors:
        parts.append("## Avoid These\n")
        for error in errors[-SMALL_MAX_AVOID:]:
            parts.append(f"- {error.summary}\n")
        parts.append("\n")

    return _trim_bullets("".join(parts), budget)


def _format_medium_line(event: Event) -> str:
    line = f"- {format_user(event.user)} ({event.tool.value}): {event.summary}"
    if event.files:
        line += f" ({', '.join(event.files)})"
    tag = _TYPE_TAGS.get(event.type)
    if tag:
        line += f" {tag}"
    return line + "\n"


def generate_medium(events: list[Event], budget: int = DEFAULT_BUDGETS["medium"]) -> str:
    """Generate medium.md: the last 100 events by day, at most two weeks of days.

    The budget is checked after each complete day, so one oversized day can
    push the document over budget; it is kept whole rather than split.
    """
    if not events:
        return EMPTY_SNAPSHOTS["medium"]

    content = "# Session History\n\n"
    for date, day_events in group_by_date(events[-MEDIUM_WINDOW:])[:MEDIUM_MAX_DAYS]:
        content += f"## {date}\n\n"
        content += "".join(_format_medium_line(e) for e in day_events)
        content += "\n"
        if estimate_tokens(content) > budget:
            break

    return content


def _format_large_entry(event: Event) -> str:
    entry = f"### {format_time(event.timestamp)} - {format_user(event.user)} ({event.tool.value})\n\n"
    entry += f"**Type:** {event.type.value}\n\n"
    entry += f"{event.summary}\n\n"
    if event.files:
        entry += f"**Files:** {', '.join(event.files)}\n\n"
    entry += "---\n\n"
    return entry


def generate_large(events: list[Event], budget: int = DEFAULT_BUDGETS["large"]) -> str:
    """Generate large.md: every event, newest day first, until the budget runs out.

    When truncated, the notice's count of hidden events is an estimate based
    on the index of the last rendered day, not an exact tally.
    """
    if not events:
        return EMPTY_SNAPSHOTS["large"]

    dates = [format_date(e.timestamp) for e in events]
    content = (
        "# Full History\n\n"
        f"Total events: {len(events)}\n"
        f"Date range: {min(dates)} to {max(dates)}\n\n"
    )

    for index, (date, day_events) in enumerate(group_by_date(events)):
        content += f"## {date}\n\n"
        content += "".join(_format_large_entry(e) for e in day_events)

        if estimate_tokens(content) > budget:
            hidden = max(0, len(events) - index * LARGE_EVENTS_PER_GROUP_ESTIMATE)
            content += f"\n_History truncated. {hidden} older events not shown._\n"
            break

    return content


def generate(events: list[Event], budgets: dict[str, int] | None = None) -> dict[str, str]:
    """Render all three tiers from the same event sequence.

    Args:
        events: Events in append order.
        budgets: Optional per-tier token budgets; missing tiers use
                 DEFAULT_BUDGETS.

    Returns:
        Dict with "small", "medium", and "large" Markdown strings.
    """
    limits = {**DEFAULT_BUDGETS, **(budgets or {})}
    return {
        "small": generate_small(events, limits["small"]),
        "medium": generate_medium(events, limits["medium"]),
        "large": generate_large(events, limits["large"]),
    }
