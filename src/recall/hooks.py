"""Claude Code hook handlers for Recall.

Stop and SessionStart handlers read JSON payloads from stdin. Stop
captures new sessions into the repository's event log and regenerates the
snapshots; SessionStart prints the small snapshot, which Claude Code adds
to the new session's context. Always exit 0 so Claude Code never blocks
on hook failure.
"""

import json
import sys

from recall import pipeline
from recall.config import load_config
from recall.encryption import KeySession
from recall.project import find_repo_root


def read_payload() -> dict:
    """Read JSON payload from stdin.

    On empty or invalid input returns {} and does not raise.
    Hooks must not crash the IDE.
    """
    try:
        raw = sys.stdin.read()
        if not raw.strip():
            return {}
        data = json.loads(raw)
        return data if isinstance(data, dict) else {}
    except (json.JSONDecodeError, OSError):
        return {}


def handle_stop(payload: dict) -> int:
    """Handle Stop hook: extract new sessions and regenerate snapshots.

    If stop_hook_active is true, returns 0 immediately to avoid recursion.
    Does nothing outside a git repository, in a repository where Recall is
    not initialized, or when auto_save is off. On any exception logs to
    stderr and returns 0.
    """
    try:
        if payload.get("stop_hook_active"):
            return 0

        cwd = payload.get("cwd")
        if not cwd:
            return 0

        repo_root = find_repo_root(cwd)
        if repo_root is None or not pipeline.is_initialized(repo_root):
            return 0

        config = load_config()
        if not config.auto_save:
            return 0

        new_events = pipeline.extract_and_append(repo_root)
        if new_events:
            with KeySession.from_config(config) as session:
                pipeline.regenerate_snapshots(repo_root, config=config, key_session=session)
            print(f"[Recall] Saved {len(new_events)} session(s)", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"[Recall] Stop hook error: {e}", file=sys.stderr)
        return 0


def handle_session_start(payload: dict) -> int:
    """Handle SessionStart hook: print the small snapshot as session context.

    Prints nothing when the repository has no Recall memory. On exception
    logs to stderr and returns 0.
    """
    try:
        cwd = payload.get("cwd")
        if not cwd:
            return 0

        repo_root = find_repo_root(cwd)
        if repo_root is None or not pipeline.is_initialized(repo_root):
            return 0

        config = load_config()
        with KeySession.from_config(config) as session:
            context = pipeline.read_snapshot(repo_root, "small", key_session=session)
        if context.strip():
            print(context)
        return 0
    except Exception as e:
        print(f"[Recall] SessionStart hook error: {e}", file=sys.stderr)
        return 0


def get_hook_json() -> str:
    """Return the hook configuration JSON for Claude Code settings.

    Format matches Claude Code expectations: hooks key with Stop and
    SessionStart entries. Commands use 'recall' so they work when the
    package is installed (recall on PATH).
    """
    hooks = {
        "Stop": [{"matcher": "", "hooks": [{"type": "command", "command": "recall stop"}]}],
        "SessionStart": [{"matcher": "", "hooks": [{"type": "command", "command": "recall session-start"}]}],
    }
    return json.dumps({"hooks": hooks}, indent=2)
