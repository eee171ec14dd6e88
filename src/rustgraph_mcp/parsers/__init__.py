"""
Parsers for RustGraph MCP.

This module provides the structural Rust parser: a lexical scanner, a scope
tracker, a declaration recognizer and a graph builder, wired together by
RustStructureParser.
"""

from .rust_parser import RustStructureParser, ThreadLocalParserFactory
from .lexer import Scanner, tokenize
from .diagnostics import DiagnosticsCollector
from .scopes import Scope, ScopeKind, ScopeTracker
from .recognizer import DeclarationRecognizer
from .graph_builder import GraphBuilder, base_name
from .language_configs import (
    get_language_for_file,
    get_config_for_language,
    get_parser,
    get_supported_extensions,
    EXTENSION_MAP,
    LANGUAGE_CONFIGS,
)

__all__ = [
    "RustStructureParser",
    "ThreadLocalParserFactory",
    "Scanner",
    "tokenize",
    "DiagnosticsCollector",
    "Scope",
    "ScopeKind",
    "ScopeTracker",
    "DeclarationRecognizer",
    "GraphBuilder",
    "base_name",
    "get_language_for_file",
    "get_config_for_language",
    "get_parser",
    "get_supported_extensions",
    "EXTENSION_MAP",
    "LANGUAGE_CONFIGS",
]
