"""Allow running the MCP server with ``python -m rustgraph_mcp``."""
from rustgraph_mcp.mcp.server import main

if __name__ == "__main__":
    main()
