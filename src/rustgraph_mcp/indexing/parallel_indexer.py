"""
Parallel parsing utilities for RustGraph MCP.

This module parses many Rust files concurrently. Each file's parse is an
independent, self-contained pass, so files are simply distributed over a
ThreadPoolExecutor, with thread-local parsers and lock-protected progress
counters. Merging the per-file graphs into a project-wide index is left to
the caller.

Usage:
    >>> from rustgraph_mcp.indexing.parallel_indexer import parallel_parse_files
    >>> results, errors = parallel_parse_files(file_list, max_workers=4)
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Callable, Optional, Dict, Any, Sequence, Tuple, Union

from rustgraph_mcp.parsers.rust_parser import ThreadLocalParserFactory
from rustgraph_mcp.core.models import FileGraph, ParseOptions

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """
    Result of parsing a single file.

    Attributes:
        filepath: Path to the parsed file
        graph: The file's graph (partial if a fatal diagnostic was recorded,
            None if the file could not be parsed at all)
        success: True if the pass completed without a fatal error
        error: Error message if parsing failed, None otherwise
    """
    filepath: str
    graph: Optional[FileGraph]
    success: bool
    error: Optional[str] = None

    @property
    def declaration_count(self) -> int:
        return len(self.graph.declarations) if self.graph else 0


@dataclass
class ParallelProgress:
    """
    Thread-safe progress tracking for parallel operations.

    Uses a lock to ensure atomic updates to counters from multiple threads.

    Attributes:
        total: Total number of items to process
        _completed: Number of completed items (access via .completed property)
        _errors: Number of errors encountered (access via .errors property)
    """
    total: int
    _completed: int = 0
    _errors: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def completed(self) -> int:
        """Get the number of completed items (thread-safe)."""
        with self._lock:
            return self._completed

    @property
    def errors(self) -> int:
        """Get the number of errors encountered (thread-safe)."""
        with self._lock:
            return self._errors

    def increment_completed(self) -> int:
        """
        Increment the completed count and return new value (thread-safe).

        Returns:
            The new completed count after incrementing
        """
        with self._lock:
            self._completed += 1
            return self._completed

    def increment_errors(self) -> int:
        """
        Increment the error count and return new value (thread-safe).

        Returns:
            The new error count after incrementing
        """
        with self._lock:
            self._errors += 1
            return self._errors


def parse_file_worker(
    filepath: Path,
    parser_factory: ThreadLocalParserFactory,
    options: Optional[ParseOptions] = None,
) -> ParseResult:
    """
    Worker function for parallel file parsing.

    Uses the thread-local parser factory to get a parser instance for the
    current thread.

    Args:
        filepath: Path to file to parse
        parser_factory: Thread-local parser factory
        options: Parse options forwarded to the parser

    Returns:
        ParseResult with the graph or error information
    """
    parser = parser_factory.get_parser()
    try:
        graph = parser.parse_file(str(filepath), options)
        return ParseResult(
            filepath=str(filepath),
            graph=graph,
            success=graph.error is None,
            error=graph.error,
        )
    except Exception as e:
        return ParseResult(
            filepath=str(filepath),
            graph=None,
            success=False,
            error=str(e),
        )


def parallel_parse_files(
    files: Sequence[Union[str, Path]],
    max_workers: Optional[int] = None,
    progress_callback: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    options: Optional[ParseOptions] = None,
) -> Tuple[List[ParseResult], int]:
    """
    Parse multiple files in parallel using ThreadPoolExecutor.

    Args:
        files: File paths to parse
        max_workers: Number of worker threads. If None, defaults to
                    (CPU count - 1) to leave one core free for the main thread.
        progress_callback: Optional callback for progress events.
                          Called with (event_type, data) for each event.
                          Event types: 'file_parsed', 'parse_error'
        options: Parse options applied to every file

    Returns:
        Tuple of (results, error_count) where:
            - results: One ParseResult per input file, in input order
            - error_count: Number of files whose pass failed

    Example:
        >>> files = list(Path("src").rglob("*.rs"))
        >>> results, errors = parallel_parse_files(files, max_workers=4)
        >>> print(f"Parsed {len(results)} files, {errors} errors")
    """
    if not files:
        return [], 0

    parser_factory = ThreadLocalParserFactory(options)
    progress = ParallelProgress(total=len(files))
    results: List[Optional[ParseResult]] = [None] * len(files)

    def emit(event_type: str, data: dict):
        """Emit a progress event if callback is provided."""
        if progress_callback:
            try:
                progress_callback(event_type, data)
            except Exception as e:
                # Don't let callback errors affect parsing
                logger.debug(f"Progress callback failed on {event_type}: {e}")

    # Determine worker count
    # Use CPU count - 1 to leave a core free, minimum 1, maximum 32
    if max_workers is None:
        cpu_count = os.cpu_count() or 4
        max_workers = max(1, min(cpu_count - 1, 32))

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {
            executor.submit(parse_file_worker, Path(f), parser_factory, options): index
            for index, f in enumerate(files)
        }

        # Process results as they complete
        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                result = future.result()
            except Exception as e:  # pragma: no cover
                result = ParseResult(str(files[index]), None, False, str(e))
            results[index] = result
            completed = progress.increment_completed()

            if result.success:
                emit("file_parsed", {
                    "path": result.filepath,
                    "declarations": result.declaration_count,
                    "diagnostics": len(result.graph.diagnostics),
                    "index": completed,
                    "total": progress.total,
                })
            else:
                progress.increment_errors()
                emit("parse_error", {
                    "path": result.filepath,
                    "error": result.error,
                    "index": completed,
                    "total": progress.total,
                })

    logger.debug(f"Parsed {len(files)} files with {max_workers} workers, {progress.errors} errors")
    return results, progress.errors
