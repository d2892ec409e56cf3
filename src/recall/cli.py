"""CLI commands for Recall: init, save, status, sync, load, hook-config.

Used by __main__.py. Every command resolves the repository from the
working directory, returns an exit code, and prints a one-line report on
failure:

    Recall <command>: <stage>. Run '<remedy>'.
"""

import json
import os
import sys
from collections import Counter
from pathlib import Path

from recall import pipeline
from recall.config import RecallConfig, load_config
from recall.encryption import KeySession
from recall.errors import NotInitializedError, RecallError, RepoNotFoundError
from recall.extractors import get_active_extractors, get_installed_extractors
from recall.extractors.base import Extractor
from recall.hooks import get_hook_json
from recall.project import find_repo_root, get_repo_name
from recall.snapshots import TIERS, estimate_tokens
from recall.store import EventStore

SUPPORTED_TOOLS = "Claude Code, Cursor, Codex, Gemini CLI"


def _report(command: str, error: RecallError | OSError) -> int:
    """Print the one-line failure report and return exit code 1."""
    if isinstance(error, RecallError):
        line = f"Recall {command}: {error.stage}."
        if error.remedy:
            line += f" Run '{error.remedy}'."
    else:
        line = f"Recall {command}: write failed ({error})."
    print(line, file=sys.stderr)
    return 1


def resolve_repo(cwd: str | Path | None = None) -> Path:
    """Repository root enclosing cwd (os.getcwd() if None).

    Raises:
        RepoNotFoundError: If no enclosing directory contains .git.
    """
    work_dir = Path(os.getcwd() if cwd is None else cwd)
    root = find_repo_root(work_dir)
    if root is None:
        raise RepoNotFoundError(str(work_dir))
    return root


def cmd_init(cwd: str | Path | None = None, extractors: list[Extractor] | None = None) -> int:
    """Create .recall/ in the current repository and list detected tools.

    Running it again on an initialized repository is not an error.
    """
    try:
        repo_root = resolve_repo(cwd)
        if pipeline.is_initialized(repo_root):
            print(f"Recall already initialized in {repo_root}.")
            return 0

        store = pipeline.initialize(repo_root)
        print(f"Initialized Recall in {store.recall_dir}")

        installed = get_installed_extractors(extractors)
        if installed:
            print(f"tools: {', '.join(e.name.value for e in installed)}")
        else:
            print("No AI coding tools detected.")
            print(f"Supported tools: {SUPPORTED_TOOLS}")

        print("\nNext: run 'recall save' to capture sessions, then commit .recall/")
        print("Tip: run 'recall hook-config' to save automatically from Claude Code")
        return 0
    except (RecallError, OSError) as e:
        return _report("init", e)


def cmd_save(
    cwd: str | Path | None = None,
    quiet: bool = False,
    auto: bool = False,
    extractors: list[Extractor] | None = None,
    config: RecallConfig | None = None,
) -> int:
    """Extract new sessions, append them, and regenerate snapshots.

    Args:
        cwd: Working directory (uses os.getcwd() if None).
        quiet: Suppress progress output.
        auto: Invoked from a hook; failures are not reported on stderr.
        extractors: Registry override, mainly for tests.
        config: Preloaded configuration (loaded from disk if None).
    """

    def log(message: str) -> None:
        if not quiet:
            print(message)

    try:
        repo_root = resolve_repo(cwd)
        config = config or load_config()
        store = EventStore(repo_root)
        if not store.is_initialized():
            raise NotInitializedError(str(repo_root))

        if not get_active_extractors(extractors):
            log("No AI coding tools detected.")
            log(f"Supported tools: {SUPPORTED_TOOLS}")
            return 0

        since = store.last_timestamp()
        if since is not None:
            log(f"Looking for sessions since {since.isoformat()}")

        new_events = pipeline.extract_and_append(repo_root, since=since, extractors=extractors)
        if not new_events:
            log("No new sessions found.")
            return 0

        log(f"Found {len(new_events)} new session(s)")
        for tool, count in sorted(Counter(e.tool.value for e in new_events).items()):
            log(f"  {tool}: {count}")

        with KeySession.from_config(config) as session:
            pipeline.regenerate_snapshots(repo_root, config=config, key_session=session)
            encrypted = session.has_access
        log(f"Snapshots updated{' (encrypted)' if encrypted else ''}: {', '.join(TIERS)}")
        return 0
    except (RecallError, OSError) as e:
        if auto:
            return 1
        return _report("save", e)


def cmd_status(cwd: str | Path | None = None, extractors: list[Extractor] | None = None) -> int:
    """Print repository, event totals, snapshot sizes, and detected tools."""
    try:
        repo_root = resolve_repo(cwd)
        store = EventStore(repo_root)
        events = store.read_all()
        manifest = store.read_manifest() or {}
        config = load_config()

        print(f"repo: {get_repo_name(repo_root)} ({repo_root})")
        print(f"initialized: {manifest.get('created', 'unknown')}")
        print(f"events: {len(events)}")
        if events:
            print(f"last_event: {events[-1].timestamp}")
            for label, counts in (
                ("by_type", Counter(e.type.value for e in events)),
                ("by_tool", Counter(e.tool.value for e in events)),
                ("by_user", Counter(e.user for e in events)),
            ):
                print(f"{label}: {', '.join(f'{k}={v}' for k, v in sorted(counts.items()))}")

        with KeySession.from_config(config) as session:
            print(f"encrypted: {'yes' if store.has_encrypted_snapshots() else 'no'}")
            for tier in TIERS:
                text = pipeline.read_snapshot(repo_root, tier, key_session=session)
                budget = config.budgets[tier]
                print(f"{tier}.md: ~{estimate_tokens(text)}/{budget} tokens")

        installed = get_installed_extractors(extractors)
        active = get_active_extractors(extractors)
        print(f"tools_installed: {', '.join(e.name.value for e in installed) or 'none'}")
        print(f"tools_active: {', '.join(e.name.value for e in active) or 'none'}")
        return 0
    except (RecallError, OSError) as e:
        return _report("status", e)


def cmd_sync(cwd: str | Path | None = None, regenerate: bool = False) -> int:
    """Report sync mode; optionally rewrite snapshots from the local log.

    Cloud sync is not available: memory is shared by committing .recall/.
    """
    try:
        repo_root = resolve_repo(cwd)
        store = EventStore(repo_root)
        count = store.count()
        config = load_config()

        print("mode: local-only")
        print(f"account: {'authenticated' if config.is_authenticated else 'not authenticated'}")
        print(f"events: {count}")
        print("Share memory by committing .recall/ and pulling teammates' changes.")

        if regenerate:
            with KeySession.from_config(config) as session:
                pipeline.regenerate_snapshots(repo_root, config=config, key_session=session)
            print(f"Snapshots regenerated: {', '.join(TIERS)}")
        return 0
    except (RecallError, OSError) as e:
        return _report("sync", e)


def cmd_load(
    cwd: str | Path | None = None,
    size: str = "small",
    as_json: bool = False,
    config: RecallConfig | None = None,
) -> int:
    """Print one snapshot tier to stdout for piping into an AI tool.

    Encrypted tiers are decrypted with the team key. A missing or locked
    snapshot is reported on stderr but is not a failure.
    """
    if size not in TIERS:
        print(f"Recall load: unknown size '{size}'. Use {', '.join(TIERS)}.", file=sys.stderr)
        return 1

    try:
        repo_root = resolve_repo(cwd)
        store = EventStore(repo_root)
        if not store.is_initialized():
            raise NotInitializedError(str(repo_root))

        config = config or load_config()
        encrypted = store.snapshot_path(size, encrypted=True).exists()
        with KeySession.from_config(config) as session:
            content = pipeline.read_snapshot(repo_root, size, key_session=session)
            locked = encrypted and not session.has_access
    except (RecallError, OSError) as e:
        return _report("load", e)

    if not content:
        if locked:
            error, message = "no_access", "Team memory is encrypted and no team key is available."
        else:
            error, message = "no_snapshot", f"No {size} snapshot found. Run 'recall save' to capture context."
        print(message, file=sys.stderr)
        if as_json:
            print(json.dumps({"success": False, "error": error, "message": message}))
        return 0

    if as_json:
        print(
            json.dumps(
                {
                    "success": True,
                    "size": size,
                    "content": content,
                    "tokens": estimate_tokens(content),
                    "encrypted": encrypted,
                }
            )
        )
    else:
        print(content, end="" if content.endswith("\n") else "\n")
    return 0


def cmd_hook_config() -> int:
    """Print hook configuration JSON for Claude Code settings."""
    print(get_hook_json())
    print("\n# To enable the MCP server, add to Claude Code settings:", file=sys.stderr)
    print("#   mcpServers: { recall: { command: 'recall', args: ['mcp-server'] } }", file=sys.stderr)
    return 0
