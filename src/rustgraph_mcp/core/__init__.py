"""
Core data models and structures for RustGraph MCP.

This module provides the foundational data structures used by the
structural parser and the layers built on top of it.
"""

from .models import (
    TokenKind,
    DeclarationKind,
    Visibility,
    GenericParamKind,
    EdgeKind,
    Severity,
    DiagnosticCode,
    Token,
    Span,
    GenericParam,
    Declaration,
    Edge,
    Diagnostic,
    MacroInvocation,
    Import,
    SymbolTable,
    ParseOptions,
    FileGraph,
)
from .interfaces import IParser

__all__ = [
    "TokenKind",
    "DeclarationKind",
    "Visibility",
    "GenericParamKind",
    "EdgeKind",
    "Severity",
    "DiagnosticCode",
    "Token",
    "Span",
    "GenericParam",
    "Declaration",
    "Edge",
    "Diagnostic",
    "MacroInvocation",
    "Import",
    "SymbolTable",
    "ParseOptions",
    "FileGraph",
    "IParser",
]
