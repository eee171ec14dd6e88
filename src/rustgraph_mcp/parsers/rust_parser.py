"""
RustStructureParser - structural parser for Rust source files.

This module implements the IParser interface by running the parser pipeline
for one file: the lexical scanner feeds the declaration recognizer, which
drives the scope tracker and hands finished declarations and macro
invocations to the graph builder. Every anomaly goes to a diagnostics
collector; malformed input never raises out of ``parse_source``.

Pipeline:
    Scanner -> DeclarationRecognizer + ScopeTracker -> GraphBuilder -> FileGraph

Performance:
    - One tree-sitter parse per file, then a single left-to-right pass with
      bounded lookahead
    - The tree-sitter parser is created once per instance and reused
    - Handles large files (up to 10MB with warnings)

Usage:
    >>> parser = RustStructureParser()
    >>> graph = parser.parse_file("src/lib.rs")
    >>> print(f"Found {len(graph.declarations)} declarations")
"""

import logging
import time
import threading
from pathlib import Path
from typing import List, Optional, Union

from rustgraph_mcp.core.exceptions import LexError, ScopeImbalanceError
from rustgraph_mcp.core.interfaces import IParser
from rustgraph_mcp.core.models import DiagnosticCode, FileGraph, ParseOptions, Span
from rustgraph_mcp.parsers.diagnostics import DiagnosticsCollector
from rustgraph_mcp.parsers.graph_builder import GraphBuilder
from rustgraph_mcp.parsers.language_configs import (
    get_language_for_file,
    get_parser,
    get_supported_extensions,
)
from rustgraph_mcp.parsers.lexer import Scanner
from rustgraph_mcp.parsers.recognizer import DeclarationRecognizer

# Configure logging
logger = logging.getLogger(__name__)


class RustStructureParser(IParser):
    """
    Structural parser producing one FileGraph per Rust file.

    Attributes:
        MAX_CODE_SNIPPET_CHARS: Maximum length of declaration snippets (4000 chars)
        MAX_FILE_SIZE_MB: Maximum file size before warning (10 MB)
        options: Default ParseOptions for calls that pass none

    Thread Safety:
        This class is NOT thread-safe: it holds one tree-sitter parser.
        Use ThreadLocalParserFactory to give each worker thread its own
        instance.
    """

    # Constants
    MAX_CODE_SNIPPET_CHARS = 4000
    MAX_FILE_SIZE_MB = 10

    def __init__(self, options: Optional[ParseOptions] = None):
        """Initialize the parser with default parse options."""
        self.options = options or ParseOptions(max_snippet_chars=self.MAX_CODE_SNIPPET_CHARS)
        self._ts_parser = get_parser("rust")
        logger.debug("RustStructureParser initialized")

    def can_parse(self, filepath: str) -> bool:
        """
        Determine if this parser can handle the given file.

        Args:
            filepath: Path to the file to check

        Returns:
            True if the file extension is supported, False otherwise

        Example:
            >>> parser = RustStructureParser()
            >>> parser.can_parse("main.rs")
            True
            >>> parser.can_parse("Cargo.toml")
            False
        """
        return get_language_for_file(filepath) == "rust"

    def parse_source(
        self,
        source: Union[str, bytes],
        file_id: str = "<source>",
        options: Optional[ParseOptions] = None,
    ) -> FileGraph:
        """
        Parse in-memory Rust source into a FileGraph.

        Lex errors and unbalanced delimiters end the pass early; they are
        recorded as one fatal diagnostic and the declarations completed
        before the failure are still returned.

        Args:
            source: Full text of one file (str, or bytes assumed UTF-8)
            file_id: Path or logical name of the file
            options: Per-call options (defaults to the parser's options)

        Returns:
            FileGraph with declarations, edges and diagnostics

        Example:
            >>> graph = RustStructureParser().parse_source("mod m { pub fn f() {} }", "m.rs")
            >>> [d.qualified_name for d in graph.declarations]
            ['m', 'm::f']
        """
        start_time = time.time()
        options = options or self.options

        diagnostics = DiagnosticsCollector(file_id)
        scanner = Scanner(source, keep_comments=options.keep_comments, parser=self._ts_parser)
        if scanner.invalid_offset is not None:
            self._report_invalid_encoding(diagnostics, source, scanner.invalid_offset)

        recognizer = DeclarationRecognizer(scanner, file_id, diagnostics, options)
        builder = GraphBuilder(file_id, diagnostics, options)

        try:
            recognizer.run()
        except LexError as e:
            diagnostics.fatal(
                DiagnosticCode.LEX_ERROR,
                str(e),
                Span(e.offset, e.offset, e.line, e.column, e.line, e.column),
            )
        except ScopeImbalanceError as e:
            culprit = recognizer.tracker.imbalance_token()
            diagnostics.fatal(
                DiagnosticCode.SCOPE_IMBALANCE,
                e.details,
                Span.between(culprit, culprit) if culprit else None,
            )

        recognizer.flush(builder)
        parse_time = time.time() - start_time
        graph = builder.build(
            file_doc=recognizer.file_doc,
            parse_time=parse_time,
            error=diagnostics.fatal_message,
        )
        logger.debug(
            f"Parsed {file_id} in {parse_time:.3f}s - "
            f"found {len(graph.declarations)} declarations, {len(graph.edges)} edges, "
            f"{len(graph.diagnostics)} diagnostics"
        )
        return graph

    def parse_file(self, filepath: str, options: Optional[ParseOptions] = None) -> FileGraph:
        """
        Read a Rust source file and parse it.

        Args:
            filepath: Path to the file to parse
            options: Per-call options (defaults to the parser's options)

        Returns:
            FileGraph for the file; ``error`` is set if the file could not
            be read or is binary

        Raises:
            FileNotFoundError: If the file doesn't exist

        Example:
            >>> parser = RustStructureParser()
            >>> graph = parser.parse_file("/path/to/lib.rs")
            >>> print(f"Found {len(graph.declarations)} declarations")
        """
        start_time = time.time()

        # Validate file exists
        file_path = Path(filepath)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        if not self.can_parse(filepath):
            error_msg = f"Unsupported file type: {file_path.suffix}"
            logger.warning(f"{error_msg} - {filepath}")
            return FileGraph(
                file_id=str(filepath),
                language="unknown",
                parse_time=time.time() - start_time,
                error=error_msg,
            )

        # Check file size
        file_size_mb = file_path.stat().st_size / (1024 * 1024)
        if file_size_mb > self.MAX_FILE_SIZE_MB:
            logger.warning(
                f"Large file ({file_size_mb:.2f}MB): {filepath}. "
                f"Parsing may be slow."
            )

        # Read file content
        try:
            content = file_path.read_bytes()
        except OSError as e:
            error_msg = f"Error reading file: {str(e)}"
            logger.error(f"{error_msg}: {filepath}")
            return FileGraph(
                file_id=str(filepath),
                parse_time=time.time() - start_time,
                error=error_msg,
            )

        if self._is_binary_file(content):
            error_msg = "Binary file detected - cannot parse"
            logger.error(f"{error_msg}: {filepath}")
            return FileGraph(
                file_id=str(filepath),
                parse_time=time.time() - start_time,
                error=error_msg,
            )

        try:
            return self.parse_source(content, str(filepath), options)
        except Exception as e:  # pragma: no cover
            error_msg = f"Parsing error: {str(e)}"
            logger.error(f"{error_msg}: {filepath}", exc_info=True)
            return FileGraph(
                file_id=str(filepath),
                parse_time=time.time() - start_time,
                error=error_msg,
            )

    def get_supported_extensions(self) -> List[str]:
        """
        Return list of file extensions this parser supports.

        Returns:
            Sorted list of file extensions (with leading dots)
        """
        return sorted(list(get_supported_extensions()))

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _is_binary_file(self, content: bytes) -> bool:
        """
        Check if file content is binary (not text).

        Args:
            content: File content as bytes

        Returns:
            True if file appears to be binary, False otherwise
        """
        # Check first 8192 bytes for binary markers
        sample = content[:8192]

        if b'\x00' in sample:
            return True

        try:
            sample.decode('utf-8')
            return False
        except UnicodeDecodeError as e:
            # A multi-byte character cut off by the sample boundary is still text
            if e.start >= len(sample) - 3 and e.reason == 'unexpected end of data':
                return False
            text_chars = sum(1 for b in sample if 32 <= b < 127 or b in (9, 10, 13))
            # If less than 70% are text characters, consider it binary
            return text_chars / len(sample) < 0.7

    @staticmethod
    def _report_invalid_encoding(
        diagnostics: DiagnosticsCollector,
        source: Union[str, bytes],
        offset: int,
    ) -> None:
        line_start = source.rfind(b'\n', 0, offset) + 1
        line = source.count(b'\n', 0, offset) + 1
        column = offset - line_start + 1
        diagnostics.warning(
            DiagnosticCode.INVALID_ENCODING,
            f"Invalid UTF-8 at byte {offset}; invalid bytes are kept one-for-one",
            Span(offset, offset + 1, line, column, line, column + 1),
        )


# ===========================================================================
# Thread-Local Parser Factory for Parallel Processing
# ===========================================================================


class ThreadLocalParserFactory:
    """
    Factory that provides thread-local RustStructureParser instances.

    Thread Safety:
        This class IS thread-safe. It uses thread-local storage to ensure
        each thread gets its own independent parser instance.

    Example:
        >>> from concurrent.futures import ThreadPoolExecutor
        >>> factory = ThreadLocalParserFactory()
        >>> def parse_file(filepath):
        ...     return factory.get_parser().parse_file(filepath)
        >>> with ThreadPoolExecutor(max_workers=4) as executor:
        ...     results = list(executor.map(parse_file, file_list))
    """

    def __init__(self, options: Optional[ParseOptions] = None):
        """Initialize the factory with thread-local storage."""
        self._local = threading.local()
        self._options = options

    def get_parser(self) -> RustStructureParser:
        """
        Get or create a RustStructureParser for the current thread.

        Returns:
            RustStructureParser instance unique to the calling thread
        """
        if not hasattr(self._local, 'parser'):
            self._local.parser = RustStructureParser(self._options)
        return self._local.parser
