"""MCP Server implementation for Recall.

Exposes the repository's snapshots via the Model Context Protocol, so an
assistant can pull team memory mid-session. Uses FastMCP for tool and
resource definition with stdio transport for Claude Code integration.

Architecture:
    - Repository resolution from cwd (same as hook handlers)
    - Snapshots read through the pipeline, decrypted with a KeySession
      held for the server's lifetime
    - Tools: recall_get_context, recall_get_history, recall_get_transcripts, recall_status
    - Resources: recall://context, recall://history, recall://transcripts
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from recall import pipeline
from recall.config import RecallConfig, load_config
from recall.encryption import KeySession
from recall.errors import RecallError
from recall.project import find_repo_root, get_git_branch, get_repo_name
from recall.snapshots import Tier
from recall.store import EventStore

NOT_IN_REPO = "Not in a git repository. Run 'git init' and 'recall init' first."
NOT_INITIALIZED = "Recall is not initialized in this repository. Run 'recall init'."


def check_mcp_available() -> bool:
    """Check if the mcp package is installed."""
    try:
        import mcp  # noqa: F401

        return True
    except ImportError:
        return False


@dataclass
class ProjectContext:
    """Resolved repository context for MCP operations.

    Attributes:
        cwd: Working directory path.
        repo_root: Enclosing git repository, or None outside one.
        config: Loaded Recall configuration.
    """

    cwd: str
    repo_root: Path | None
    config: RecallConfig

    @property
    def initialized(self) -> bool:
        return self.repo_root is not None and pipeline.is_initialized(self.repo_root)


def resolve_project_context(cwd: str | None = None) -> ProjectContext:
    """Resolve repository context from working directory.

    Args:
        cwd: Working directory. Uses os.getcwd() if None.

    Raises:
        ValueError: If cwd is empty.
    """
    work_dir = (os.getcwd() if cwd is None else cwd).strip()
    if not work_dir:
        raise ValueError("No working directory provided")

    return ProjectContext(cwd=work_dir, repo_root=find_repo_root(work_dir), config=load_config())


class RecallMCPServer:
    """MCP Server exposing Recall snapshots.

    Usage:
        server = RecallMCPServer()
        server.run()  # Blocks, handles MCP protocol on stdio
    """

    def __init__(self, cwd: str | None = None) -> None:
        """Initialize the MCP server.

        Args:
            cwd: Working directory for repository resolution.
                 Uses os.getcwd() if None.
        """
        if not check_mcp_available():
            raise ImportError("MCP package not installed. Install with: pip install 'recall-memory[mcp]'")

        from mcp.server.fastmcp import FastMCP

        self._cwd = cwd
        self._context: ProjectContext | None = None
        self._key_session: KeySession | None = None
        self._mcp = FastMCP("recall")
        self._register_tools()
        self._register_resources()

    @property
    def context(self) -> ProjectContext:
        """Lazily resolve and cache repository context."""
        if self._context is None:
            self._context = resolve_project_context(self._cwd)
        return self._context

    @property
    def key_session(self) -> KeySession:
        if self._key_session is None:
            self._key_session = KeySession.from_config(self.context.config)
        return self._key_session

    def _register_tools(self) -> None:
        """Register MCP tools, one per snapshot tier plus status."""
        mcp = self._mcp

        @mcp.tool()
        async def recall_get_context() -> str:
            """Get the team's quick context: current focus, key decisions, things to avoid.

            Call at the start of a task. About 500 tokens.
            """
            return self._handle_get_snapshot("small")

        @mcp.tool()
        async def recall_get_history() -> str:
            """Get recent session history grouped by day (about 4000 tokens)."""
            return self._handle_get_snapshot("medium")

        @mcp.tool()
        async def recall_get_transcripts() -> str:
            """Get the full session history, newest first (up to about 32000 tokens).

            Use only when the context and history are not enough.
            """
            return self._handle_get_snapshot("large")

        @mcp.tool()
        async def recall_status() -> str:
            """Get Recall status for the current repository.

            Returns:
                Repository, event count, last event, encryption state.
            """
            return self._handle_get_status()

    def _register_resources(self) -> None:
        """Register MCP resources for read-only snapshot access.

        Resources use URI scheme recall:// and return Markdown.
        """
        mcp = self._mcp

        @mcp.resource("recall://context")
        async def context_resource() -> str:
            """Quick team context (small snapshot)."""
            return self._handle_get_snapshot("small")

        @mcp.resource("recall://history")
        async def history_resource() -> str:
            """Recent session history (medium snapshot)."""
            return self._handle_get_snapshot("medium")

        @mcp.resource("recall://transcripts")
        async def transcripts_resource() -> str:
            """Full session history (large snapshot)."""
            return self._handle_get_snapshot("large")

    def _handle_get_snapshot(self, tier: Tier) -> str:
        """Handle snapshot tool and resource reads."""
        ctx = self.context
        if ctx.repo_root is None:
            return NOT_IN_REPO
        if not ctx.initialized:
            return NOT_INITIALIZED

        content = pipeline.read_snapshot(ctx.repo_root, tier, key_session=self.key_session)
        if not content.strip():
            return f"No {tier} snapshot available. Run 'recall save' to capture sessions."
        return content

    def _handle_get_status(self) -> str:
        """Handle status tool invocation."""
        ctx = self.context
        if ctx.repo_root is None:
            return NOT_IN_REPO
        if not ctx.initialized:
            return NOT_INITIALIZED

        store = EventStore(ctx.repo_root)
        lines = [
            "## Recall Status\n",
            f"**Repository:** {get_repo_name(ctx.repo_root)}",
            f"**Path:** {ctx.repo_root}",
        ]
        try:
            events = store.read_all()
        except RecallError as e:
            lines.append(f"**Events:** unreadable ({e.stage})")
            return "\n".join(lines)

        lines.append(f"**Events:** {len(events)}")
        if events:
            lines.append(f"**Last Event:** {events[-1].timestamp}")
        lines.append(f"**Encrypted:** {'yes' if store.has_encrypted_snapshots() else 'no'}")
        lines.append(f"**Team Key:** {'available' if self.key_session.has_access else 'unavailable'}")

        branch = get_git_branch(ctx.repo_root)
        if branch != "unknown":
            lines.append(f"**Current Branch:** {branch}")

        return "\n".join(lines)

    def run(self) -> None:
        """Run the MCP server with stdio transport.

        Blocks until the server is terminated. Handles MCP protocol
        messages on stdin/stdout.
        """
        try:
            self._mcp.run(transport="stdio")
        finally:
            if self._key_session is not None:
                self._key_session.clear()


def run_server(cwd: str | None = None) -> int:
    """Entry point for 'recall mcp-server' command.

    Args:
        cwd: Working directory. Uses os.getcwd() if None.

    Returns:
        Exit code (0 on success, 1 on error).
    """
    try:
        if not check_mcp_available():
            print(
                "Error: MCP package not installed. Install with: pip install 'recall-memory[mcp]'",
                file=sys.stderr,
            )
            return 1

        server = RecallMCPServer(cwd=cwd)
        server.run()
        return 0

    except Exception as e:
        print(f"Recall MCP server error: {e}", file=sys.stderr)
        return 1
