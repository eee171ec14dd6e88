"""Custom exceptions for RustGraph MCP.

This module defines a hierarchy of exceptions for the structural parser and
the layers built on top of it.

The lexer and scope tracker raise ``LexError`` and ``ScopeImbalanceError``
while a file is being parsed; the parser catches them at the file boundary
and turns them into a fatal diagnostic, so callers of ``parse_source`` never
see them unless they drive the pipeline by hand.

Usage:
    from rustgraph_mcp.core.exceptions import LexError

    try:
        tokens = list(Scanner(source))
    except LexError as e:
        print(f"Unterminated literal at line {e.line}: {e.details}")
"""

from typing import Optional


class RustGraphException(Exception):
    """Base exception for all RustGraph operations.

    All custom exceptions in RustGraph inherit from this class,
    allowing for broad exception catching when needed.
    """
    pass


class LexError(RustGraphException):
    """Raised when the scanner reaches end of input inside a literal or comment.

    Attributes:
        details: What was left unterminated
        offset: Byte offset where the unterminated construct starts
        line: 1-based line of the construct
        column: 1-based column of the construct
    """

    def __init__(self, details: str, offset: int, line: int, column: int):
        self.details = details
        self.offset = offset
        self.line = line
        self.column = column
        super().__init__(f"{details} (line {line}, column {column})")


class ParseError(RustGraphException):
    """Raised when a file's structure cannot be recovered.

    Attributes:
        filepath: File identifier being parsed
        details: Specific error details
        offset: Byte offset the error refers to, if known
        line: 1-based line the error refers to, if known
    """

    def __init__(
        self,
        filepath: str,
        details: str,
        offset: Optional[int] = None,
        line: Optional[int] = None,
    ):
        self.filepath = filepath
        self.details = details
        self.offset = offset
        self.line = line
        super().__init__(f"Failed to parse {filepath}: {details}")


class ScopeImbalanceError(ParseError):
    """Raised when the delimiter count is not zero at end of input.

    Either openers were never closed or a closer never had an opener. The
    scope stack cannot be trusted after that, so the whole file pass is
    marked fatal.
    """
    pass
