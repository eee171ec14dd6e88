"""
Abstract interfaces for RustGraph MCP components.

This module defines the contract a structural parser must honor so that the
indexing and MCP layers can drive it without knowing how it works.

Design Philosophy:
    - Interface Segregation: The parser interface has a single responsibility
    - Dependency Inversion: High-level modules depend on this abstraction
    - Purity: A parse is a function of (file id, source) to a FileGraph

When to implement:
    - IParser: When adding a parser for another source language or an
      alternative parsing strategy for Rust
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Union

from .models import FileGraph, ParseOptions


class IParser(ABC):
    """Abstract interface for structural parsers.

    Parsers read source text and produce a ``FileGraph``: the declarations
    found in the file, the edges between them and the diagnostics recorded
    along the way.

    Responsibilities:
        - Detect if a file can be parsed based on its extension
        - Extract declarations with scope paths, spans and attributes
        - Never raise on malformed input; report it as diagnostics instead
        - Report supported file extensions

    Implementation considerations:
        - Statelessness: Each call must keep its state local, so that one
          instance can be reused across files
        - Determinism: Parsing the same bytes twice must give equal graphs

    Example implementation:
        >>> class TomlParser(IParser):
        ...     def can_parse(self, filepath: str) -> bool:
        ...         return filepath.endswith('.toml')
        ...
        ...     def parse_source(self, source, file_id, options=None) -> FileGraph:
        ...         return FileGraph(file_id=file_id, language="toml")
        ...
        ...     def parse_file(self, filepath: str, options=None) -> FileGraph:
        ...         with open(filepath, 'rb') as f:
        ...             return self.parse_source(f.read(), filepath, options)
        ...
        ...     def get_supported_extensions(self) -> List[str]:
        ...         return ['.toml']
    """

    @abstractmethod
    def can_parse(self, filepath: str) -> bool:
        """Determine if this parser can handle the given file.

        Args:
            filepath: Path to the file to check

        Returns:
            True if this parser can parse the file, False otherwise

        Example:
            >>> parser = RustStructureParser()
            >>> parser.can_parse("/project/src/lib.rs")
            True
            >>> parser.can_parse("/project/Cargo.toml")
            False
        """
        pass  # pragma: no cover

    @abstractmethod
    def parse_source(
        self,
        source: Union[str, bytes],
        file_id: str,
        options: Optional[ParseOptions] = None,
    ) -> FileGraph:
        """Parse in-memory source text into a FileGraph.

        This is the core parsing operation. Malformed input never raises:
        fatal conditions end the pass and are recorded as a fatal diagnostic
        next to the partial graph.

        Args:
            source: Full source text of one file (UTF-8 bytes or str)
            file_id: Path or logical name identifying the file
            options: Per-call options, defaults when None

        Returns:
            FileGraph with declarations, edges and diagnostics

        Example:
            >>> graph = parser.parse_source("mod m { pub fn f() {} }", "m.rs")
            >>> [d.qualified_name for d in graph.declarations]
            ['m', 'm::f']
        """
        pass  # pragma: no cover

    @abstractmethod
    def parse_file(self, filepath: str, options: Optional[ParseOptions] = None) -> FileGraph:
        """Read a source file and parse it.

        Args:
            filepath: Path to the file to parse

        Returns:
            FileGraph for the file

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        pass  # pragma: no cover

    @abstractmethod
    def get_supported_extensions(self) -> List[str]:
        """Return list of file extensions this parser supports.

        Extensions include the leading dot (e.g., '.rs', not 'rs').

        Returns:
            List of file extensions (with leading dots)
        """
        pass  # pragma: no cover
