"""Session state management for MCP server."""
from dataclasses import dataclass, field
from typing import Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from rustgraph_mcp.core.models import FileGraph


@dataclass
class MCPSessionState:
    """Singleton state for MCP server session."""
    graphs: Dict[str, "FileGraph"] = field(default_factory=dict)
    last_path: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        """Check if any file has been parsed in this session."""
        return bool(self.graphs)

    def store(self, path: str, graph: "FileGraph") -> None:
        """Cache a parsed graph under its resolved path."""
        self.graphs[path] = graph
        self.last_path = path


_state: Optional[MCPSessionState] = None


def get_state() -> MCPSessionState:
    """Get or create the singleton state instance."""
    global _state
    if _state is None:
        _state = MCPSessionState()
    return _state


def reset_state() -> None:
    """Reset the singleton state (useful for testing)."""
    global _state
    _state = None
