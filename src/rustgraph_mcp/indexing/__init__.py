"""
RustGraph MCP Indexing Module.

This module provides multi-file parsing on top of the per-file parser:
- parallel_parse_files: Parallel file parsing with progress reporting

Usage:
    from rustgraph_mcp.indexing import parallel_parse_files

    results, errors = parallel_parse_files(["src/lib.rs", "src/main.rs"])
    for result in results:
        print(result.filepath, result.declaration_count)
"""

from rustgraph_mcp.indexing.parallel_indexer import (
    parallel_parse_files,
    parse_file_worker,
    ParseResult,
    ParallelProgress,
)

__all__ = [
    'parallel_parse_files',
    'parse_file_worker',
    'ParseResult',
    'ParallelProgress',
]
