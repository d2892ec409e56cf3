"""CLI entry point for Recall commands and hook handlers.

Usage:
    recall init                    # create .recall/ in the current repository
    recall save [--quiet] [--auto] # capture new sessions, regenerate snapshots
    recall status                  # event totals, snapshot sizes, detected tools
    recall sync [--regenerate]     # report sync mode, optionally rewrite snapshots
    recall load [--size S] [--json] # print a snapshot tier (small, medium, large)
    recall hook-config             # print hook JSON for Claude Code settings
    recall stop                    # Stop hook, JSON payload on stdin
    recall session-start           # SessionStart hook, JSON payload on stdin
    recall mcp-server              # start MCP server (stdio transport)

    python -m recall save          # same
"""

import logging
import sys

from recall.cli import cmd_hook_config, cmd_init, cmd_load, cmd_save, cmd_status, cmd_sync
from recall.config import load_config
from recall.hooks import handle_session_start, handle_stop, read_payload

USAGE = "Usage: recall <init|save|status|sync|load|hook-config|stop|session-start|mcp-server>\n"


def configure_logging(level: str) -> None:
    """Send log records at level and above to stderr."""
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _option(flags: list[str], name: str, default: str) -> str:
    """Value of --name VALUE or --name=VALUE in flags."""
    for i, flag in enumerate(flags):
        if flag == name and i + 1 < len(flags):
            return flags[i + 1]
        if flag.startswith(name + "="):
            return flag[len(name) + 1 :]
    return default


def main() -> None:
    """Parse command from argv, dispatch to handler or hook, exit with return code."""
    if len(sys.argv) < 2:
        sys.stderr.write(USAGE)
        sys.exit(1)

    arg = sys.argv[1].strip().lower()
    if arg in ("-h", "--help"):
        sys.stderr.write(USAGE)
        sys.exit(0)

    configure_logging(load_config().log_level)
    flags = sys.argv[2:]

    if arg == "init":
        sys.exit(cmd_init())
    if arg == "save":
        quiet = "--quiet" in flags or "-q" in flags
        auto = "--auto" in flags
        sys.exit(cmd_save(quiet=quiet, auto=auto))
    if arg == "status":
        sys.exit(cmd_status())
    if arg == "sync":
        sys.exit(cmd_sync(regenerate="--regenerate" in flags))
    if arg == "load":
        sys.exit(cmd_load(size=_option(flags, "--size", "small"), as_json="--json" in flags))
    if arg == "hook-config":
        sys.exit(cmd_hook_config())
    if arg == "mcp-server":
        from recall.mcp import run_server

        sys.exit(run_server())

    # Hook commands: require payload on stdin
    hook_name = "session-start" if arg == "sessionstart" else arg
    if hook_name == "stop":
        code = handle_stop(read_payload())
    elif hook_name == "session-start":
        code = handle_session_start(read_payload())
    else:
        sys.stderr.write(f"Unknown command: {arg}. {USAGE}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
