"""
RustGraph MCP - Model Context Protocol server for Rust source structure.

A lightweight MCP server that turns Rust source files into a symbol table
plus a containment/relationship graph (modules, structs, enums, traits, impl
blocks, functions, type aliases, constants, statics and macro_rules
definitions) without a compiler front end.

Usage:
    # As an MCP server
    python -m rustgraph_mcp

    # Programmatic usage
    from rustgraph_mcp import RustStructureParser
    parser = RustStructureParser()
    graph = parser.parse_file("src/lib.rs")
"""

__version__ = "0.1.0"
__author__ = "RustGraph Contributors"


# Lazy imports to avoid loading the MCP stack at import time
def __getattr__(name: str):
    """Lazy import heavy modules only when accessed."""
    if name == "RustStructureParser":
        from rustgraph_mcp.parsers.rust_parser import RustStructureParser

        return RustStructureParser
    elif name == "ThreadLocalParserFactory":
        from rustgraph_mcp.parsers.rust_parser import ThreadLocalParserFactory

        return ThreadLocalParserFactory
    elif name == "parallel_parse_files":
        from rustgraph_mcp.indexing.parallel_indexer import parallel_parse_files

        return parallel_parse_files
    elif name == "Declaration":
        from rustgraph_mcp.core.models import Declaration

        return Declaration
    elif name == "DeclarationKind":
        from rustgraph_mcp.core.models import DeclarationKind

        return DeclarationKind
    elif name == "FileGraph":
        from rustgraph_mcp.core.models import FileGraph

        return FileGraph
    elif name == "ParseOptions":
        from rustgraph_mcp.core.models import ParseOptions

        return ParseOptions
    elif name == "IParser":
        from rustgraph_mcp.core.interfaces import IParser

        return IParser
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "__author__",
    "RustStructureParser",
    "ThreadLocalParserFactory",
    "parallel_parse_files",
    "Declaration",
    "DeclarationKind",
    "FileGraph",
    "ParseOptions",
    "IParser",
]
