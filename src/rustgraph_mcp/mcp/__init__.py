"""
MCP Server module for RustGraph.

This module provides the Model Context Protocol server implementation
for structural parsing of Rust source files.

Exports:
    - mcp: FastMCP server instance
    - main: Entry point for running the MCP server
    - get_state: Get MCP session state
    - reset_state: Reset MCP session state (for testing)
    - MCPSessionState: Session state dataclass
"""

from rustgraph_mcp.mcp.server import mcp, main
from rustgraph_mcp.mcp.state import get_state, reset_state, MCPSessionState

__all__ = [
    "mcp",
    "main",
    "get_state",
    "reset_state",
    "MCPSessionState",
]
