"""Recall MCP Server: team memory queries via Model Context Protocol.

This module provides an MCP server that exposes the repository's Recall
snapshots as tools and resources an assistant can read during a session.

Usage:
    recall mcp-server       # Start MCP server (stdio transport)

Public API:
    - RecallMCPServer: Main server class
    - run_server: Entry point for CLI
    - check_mcp_available: Check if mcp package is installed
"""

from recall.mcp.server import (
    RecallMCPServer,
    check_mcp_available,
    run_server,
)

__all__ = [
    "RecallMCPServer",
    "check_mcp_available",
    "run_server",
]
