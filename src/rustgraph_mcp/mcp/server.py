"""
MCP Server for RustGraph - Structural parsing of Rust source files.

This module provides an MCP server that exposes RustGraph's structural parser
through the Model Context Protocol using stdio transport.

Usage:
    rustgraph-mcp  # Run as stdio MCP server

Tools:
    - parse_source: Parse in-memory Rust text and return the full graph
    - parse_file: Parse one .rs file and cache its graph in the session
    - parse_files: Parse many .rs files in parallel (with progress)
    - get_structure: Nested declaration tree of a parsed file
    - find_declarations: Search parsed files by declaration name
    - get_stats: Get statistics about the session's parsed files
    - list_declaration_kinds: List declaration, visibility and edge kinds
"""

from typing import Optional, List, Dict, Any, Annotated, Callable
from collections import Counter
from pathlib import Path
import asyncio

from fastmcp import FastMCP, Context
from fastmcp.exceptions import ToolError
from pydantic import Field

from rustgraph_mcp.core.models import (
    Declaration,
    DeclarationKind,
    DiagnosticCode,
    EdgeKind,
    FileGraph,
    ParseOptions,
    Visibility,
)
from rustgraph_mcp.indexing.parallel_indexer import parallel_parse_files
from rustgraph_mcp.mcp.state import get_state
from rustgraph_mcp.parsers.language_configs import EXTENSION_MAP
from rustgraph_mcp.parsers.rust_parser import RustStructureParser

# Derived supported extensions list (lightweight)
SUPPORTED_EXTENSIONS = sorted(list(EXTENSION_MAP.keys()))

# Initialize FastMCP server
mcp = FastMCP(
    name="RustGraph",
    instructions="Structural parsing of Rust source: declarations, scopes, containment and macro edges"
)


def _resolve_rust_file(path: str) -> Path:
    """Resolve a path argument and check it names a readable Rust file."""
    file_path = Path(path).resolve()
    if not file_path.exists():
        raise ToolError(f"Path does not exist: {file_path}")
    if not file_path.is_file():
        raise ToolError(f"Path is not a file: {file_path}")
    if file_path.suffix not in EXTENSION_MAP:
        raise ToolError(
            f"Unsupported file type '{file_path.suffix}'. Supported: {SUPPORTED_EXTENSIONS}"
        )
    return file_path


def _parse_kind(kind: Optional[str]) -> Optional[DeclarationKind]:
    if kind is None:
        return None
    try:
        return DeclarationKind.from_string(kind)
    except ValueError:
        raise ToolError(
            f"Invalid kind '{kind}'. Must be one of: {[k.value for k in DeclarationKind]}"
        )


def _summarize(path: str, graph: FileGraph) -> Dict[str, Any]:
    """Compact per-file summary returned by the parse tools."""
    kinds = Counter(d.kind.value for d in graph.declarations)
    return {
        "path": path,
        "success": graph.is_successful,
        "error": graph.error,
        "declarations": len(graph.declarations),
        "kinds": dict(sorted(kinds.items())),
        "edges": len(graph.edges),
        "diagnostics": [d.to_dict() for d in graph.diagnostics],
        "parse_time": round(graph.parse_time, 4),
    }


def _declaration_node(declaration: Declaration) -> Dict[str, Any]:
    node = {
        "id": declaration.id,
        "name": declaration.name,
        "qualified_name": declaration.qualified_name,
        "kind": declaration.kind.value,
        "visibility": declaration.visibility.value,
        "line": declaration.span.start_line,
        "end_line": declaration.span.end_line,
        "signature": declaration.signature,
    }
    if declaration.doc:
        node["doc"] = declaration.doc
    if declaration.kind is DeclarationKind.IMPL:
        node["impl_type"] = declaration.impl_type
        node["impl_trait"] = declaration.impl_trait
    return node


def _build_tree(
    graph: FileGraph,
    parent_id: Optional[int],
    kind: Optional[DeclarationKind],
) -> List[Dict[str, Any]]:
    """
    Nest declarations under their parents.

    With a kind filter, a node is kept if it matches or if one of its
    descendants does.
    """
    nodes = []
    for child in graph.children(parent_id):
        children = _build_tree(graph, child.id, kind)
        if kind is not None and child.kind is not kind and not children:
            continue
        node = _declaration_node(child)
        node["children"] = children
        nodes.append(node)
    return nodes


def _create_parse_progress_callback(ctx: Context, loop) -> Callable:
    """Create a progress callback that reports parsing progress to MCP client."""
    def callback(event_type: str, data: dict):
        total = data.get('total', 0)
        index = data.get('index', 0)
        progress = int(index / total * 100) if total > 0 else 100

        if event_type == "file_parsed":
            message = f"Parsed {Path(data['path']).name} ({index}/{total} files)"
        elif event_type == "parse_error":
            message = f"Failed {Path(data['path']).name} ({index}/{total} files)"
        else:
            return

        asyncio.run_coroutine_threadsafe(
            ctx.report_progress(progress, 100, message),
            loop
        )
    return callback


@mcp.tool(
    name="parse_source",
    description="""Parse Rust source text and return its structure graph.

Returns declarations (with scope paths, spans, visibility, generics and docs),
contains/implements/invokes-macro edges, macro invocations, imports and
diagnostics. Malformed input never fails the call; a fatal diagnostic is
reported instead and the declarations completed before it are kept."""
)
def parse_source(
    source: Annotated[str, Field(description="Full text of one Rust source file")],
    file_id: Annotated[
        str,
        Field(description="Logical file name used in diagnostics and edges (default: '<source>')")
    ] = "<source>",
    include_snippets: Annotated[
        bool,
        Field(description="Attach each declaration's source text to its metadata")
    ] = False,
) -> Dict[str, Any]:
    """Parse in-memory source into a graph dict."""
    if not file_id:
        raise ToolError("file_id cannot be empty")

    options = ParseOptions(include_snippets=include_snippets)
    graph = RustStructureParser().parse_source(source, file_id, options)
    return graph.to_dict()


@mcp.tool(
    name="parse_file",
    description="Parse a single .rs file, cache its graph in the session and return a summary."
)
def parse_file(
    path: Annotated[str, Field(description="Absolute path to the .rs file to parse")],
) -> Dict[str, Any]:
    """Parse one file and remember it for later queries."""
    state = get_state()
    file_path = _resolve_rust_file(path)

    graph = RustStructureParser().parse_file(str(file_path))
    state.store(str(file_path), graph)
    return _summarize(str(file_path), graph)


@mcp.tool(
    name="parse_files",
    description="""Parse several .rs files in parallel and cache their graphs in the session.

Each file is parsed independently; no cross-file resolution is performed.
Reports progress per file."""
)
async def parse_files(
    paths: Annotated[List[str], Field(description="Absolute paths of the .rs files to parse")],
    max_workers: Annotated[
        Optional[int],
        Field(description="Number of worker threads (default: CPU count - 1)", ge=1, le=32)
    ] = None,
    ctx: Context = None
) -> Dict[str, Any]:
    """Parse many files concurrently."""
    state = get_state()

    if not paths:
        raise ToolError("No paths given")
    files = [_resolve_rust_file(p) for p in paths]

    # Create progress callback if context available
    progress_callback = None
    if ctx:
        loop = asyncio.get_running_loop()
        progress_callback = _create_parse_progress_callback(ctx, loop)

    results, error_count = await asyncio.to_thread(
        parallel_parse_files, files, max_workers, progress_callback
    )

    summaries = []
    for result in results:
        if result.graph is not None:
            state.store(result.filepath, result.graph)
            summaries.append(_summarize(result.filepath, result.graph))
        else:
            summaries.append({"path": result.filepath, "success": False, "error": result.error})

    if ctx:
        await ctx.report_progress(100, 100, "Parsing complete!")

    return {
        "success": error_count == 0,
        "files": len(results),
        "errors": error_count,
        "declarations": sum(r.declaration_count for r in results),
        "results": summaries,
    }


@mcp.tool(
    name="get_structure",
    description="""Get the nested declaration tree of a Rust file.

Uses the cached graph if the file was parsed in this session, otherwise parses it.
Without a path, the most recently parsed file is used. An optional kind filter
keeps matching declarations and the containers that lead to them."""
)
def get_structure(
    path: Annotated[
        Optional[str],
        Field(description="Absolute path to a .rs file (default: last parsed file)")
    ] = None,
    kind: Annotated[
        Optional[str],
        Field(description="Filter by declaration kind (e.g., 'function', 'struct', 'impl')")
    ] = None,
) -> Dict[str, Any]:
    """Return the containment tree for one file."""
    state = get_state()
    decl_kind = _parse_kind(kind)

    if path is None:
        if state.last_path is None:
            raise ToolError("No file parsed yet. Use 'parse_file' first or pass a path.")
        key = state.last_path
    else:
        key = str(_resolve_rust_file(path))
        if key not in state.graphs:
            state.store(key, RustStructureParser().parse_file(key))

    graph = state.graphs[key]
    return {
        "path": key,
        "file_doc": graph.file_doc,
        "error": graph.error,
        "declarations": _build_tree(graph, None, decl_kind),
    }


@mcp.tool(
    name="find_declarations",
    description="Find declarations by name across all files parsed in this session. Supports optional filtering by kind."
)
def find_declarations(
    name: Annotated[str, Field(description="Declaration name to look up (exact match)")],
    kind: Annotated[
        Optional[str],
        Field(description="Filter by declaration kind (e.g., 'function', 'trait', 'macro')")
    ] = None,
    n_results: Annotated[
        int,
        Field(description="Maximum number of matches to return (default: 50)", ge=1, le=500)
    ] = 50,
) -> Dict[str, Any]:
    """Look a name up in every cached symbol table."""
    state = get_state()

    if not state.is_loaded:
        raise ToolError("No files parsed. Use 'parse_file' or 'parse_files' first.")
    if not name:
        raise ToolError("name cannot be empty")
    decl_kind = _parse_kind(kind)

    matches = []
    for path, graph in state.graphs.items():
        for declaration in graph.find(name, decl_kind):
            match = _declaration_node(declaration)
            match["path"] = path
            matches.append(match)

    return {
        "count": len(matches),
        "matches": matches[:n_results],
    }


@mcp.tool(
    name="get_stats",
    description="Get statistics about the files parsed in this session."
)
def get_stats() -> Dict[str, Any]:
    """Get parsing statistics."""
    state = get_state()

    if not state.is_loaded:
        return {
            "loaded": False,
            "files": 0,
            "stats": None
        }

    kinds: Counter = Counter()
    edges: Counter = Counter()
    severities: Counter = Counter()
    failed = []
    for path, graph in state.graphs.items():
        kinds.update(d.kind.value for d in graph.declarations)
        edges.update(e.kind.value for e in graph.edges)
        severities.update(d.severity.value for d in graph.diagnostics)
        if not graph.is_successful:
            failed.append(path)

    return {
        "loaded": True,
        "files": len(state.graphs),
        "stats": {
            "declarations": sum(kinds.values()),
            "declarations_by_kind": dict(sorted(kinds.items())),
            "edges_by_kind": dict(sorted(edges.items())),
            "diagnostics_by_severity": dict(sorted(severities.items())),
            "failed_files": sorted(failed),
        }
    }


@mcp.tool(
    name="list_declaration_kinds",
    description="List the declaration kinds, visibilities, edge kinds, diagnostic codes and file extensions RustGraph understands."
)
def list_declaration_kinds() -> Dict[str, Any]:
    """List the closed vocabularies used in graphs."""
    return {
        "declaration_kinds": [k.value for k in DeclarationKind],
        "visibilities": [v.value for v in Visibility],
        "edge_kinds": [e.value for e in EdgeKind],
        "diagnostic_codes": [c.value for c in DiagnosticCode],
        "extensions": SUPPORTED_EXTENSIONS,
    }


def main():  # pragma: no cover
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
