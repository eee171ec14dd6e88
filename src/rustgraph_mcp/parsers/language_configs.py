"""
Rust syntax tables for the structural parser.

This module holds every constant the scanner and the declaration recognizer
need to know about Rust surface syntax: the tree-sitter grammar, the CST
node types the scanner emits whole, keywords, item keywords and the
declaration kind each one introduces, item modifiers, multi-character
punctuation, comment syntax and delimiter pairs.

Usage:
    >>> language = get_language_for_file("src/lib.rs")
    >>> config = get_config_for_language(language)
    >>> config['token_nodes']['string_literal']
    <TokenKind.LITERAL: 'literal'>
    >>> parser = get_parser(language)

Extending the tables:
    1. Add the keyword to KEYWORDS (strict) or leave it contextual
    2. Map item keywords to a DeclarationKind in DECLARATION_KEYWORDS
    3. Add tests for the new construct
"""

import logging
from typing import Optional, Dict, FrozenSet, Set, Tuple
from pathlib import Path

import tree_sitter_rust
from tree_sitter import Language, Parser

from rustgraph_mcp.core.models import DeclarationKind, TokenKind

logger = logging.getLogger(__name__)


# ==============================================================================
# Extension to Language Mapping
# ==============================================================================

EXTENSION_MAP: Dict[str, str] = {
    '.rs': 'rust',
}


# ==============================================================================
# Lexical Tables
# ==============================================================================

# CST nodes the scanner emits as one token without looking inside, so that
# delimiters in comments and literals never reach the scope tracker.
TOKEN_NODES: Dict[str, TokenKind] = {
    'line_comment': TokenKind.COMMENT,
    'block_comment': TokenKind.COMMENT,
    'string_literal': TokenKind.LITERAL,
    'raw_string_literal': TokenKind.LITERAL,
    'char_literal': TokenKind.LITERAL,
    'integer_literal': TokenKind.LITERAL,
    'float_literal': TokenKind.LITERAL,
    'lifetime': TokenKind.LIFETIME,
    'label': TokenKind.LIFETIME,
}

# Strict and reserved keywords. Contextual keywords (union, auto, default,
# macro_rules, safe, raw) stay identifiers and are matched by text.
KEYWORDS: FrozenSet[str] = frozenset({
    'as', 'async', 'await', 'break', 'const', 'continue', 'crate', 'dyn',
    'else', 'enum', 'extern', 'false', 'fn', 'for', 'if', 'impl', 'in',
    'let', 'loop', 'match', 'mod', 'move', 'mut', 'pub', 'ref', 'return',
    'self', 'Self', 'static', 'struct', 'super', 'trait', 'true', 'type',
    'unsafe', 'use', 'where', 'while',
    # Reserved for future use
    'abstract', 'become', 'box', 'do', 'final', 'macro', 'override', 'priv',
    'try', 'typeof', 'unsized', 'virtual', 'yield',
})

# Longest first: the scanner takes the first entry that matches.
# '<' and '>' never combine so that nested generics stay balanced.
MULTI_CHAR_PUNCTUATION: Tuple[str, ...] = (
    '..=', '...',
    '::', '->', '=>', '..', '==', '!=', '&&', '||',
    '+=', '-=', '*=', '/=', '%=', '^=', '&=', '|=',
)

OPENERS: Dict[str, str] = {'{': '}', '(': ')', '[': ']'}
CLOSERS: Dict[str, str] = {close: open_ for open_, close in OPENERS.items()}


# ==============================================================================
# Item Tables
# ==============================================================================

DECLARATION_KEYWORDS: Dict[str, DeclarationKind] = {
    'mod': DeclarationKind.MODULE,
    'struct': DeclarationKind.STRUCT,
    'union': DeclarationKind.STRUCT,
    'enum': DeclarationKind.ENUM,
    'trait': DeclarationKind.TRAIT,
    'impl': DeclarationKind.IMPL,
    'fn': DeclarationKind.FUNCTION,
    'type': DeclarationKind.TYPE_ALIAS,
    'const': DeclarationKind.CONST,
    'static': DeclarationKind.STATIC,
    'macro_rules': DeclarationKind.MACRO,
}

# Qualifiers that may precede an item keyword (`pub const unsafe fn`).
ITEM_MODIFIERS: FrozenSet[str] = frozenset({
    'const', 'async', 'unsafe', 'extern', 'default', 'auto', 'safe',
})

# Keywords that can start an item or an item-level statement.
ITEM_START_KEYWORDS: FrozenSet[str] = frozenset(
    set(DECLARATION_KEYWORDS) | ITEM_MODIFIERS | {'pub', 'use'}
)

# Declarations that end at a top-level `;`.
TERMINATED_KINDS: FrozenSet[DeclarationKind] = frozenset({
    DeclarationKind.TYPE_ALIAS,
    DeclarationKind.CONST,
    DeclarationKind.STATIC,
})

# Kinds an `impl` target type may resolve to within a file.
IMPL_TARGET_KINDS: FrozenSet[DeclarationKind] = frozenset({
    DeclarationKind.STRUCT,
    DeclarationKind.ENUM,
    DeclarationKind.TYPE_ALIAS,
    DeclarationKind.TRAIT,
})


# ==============================================================================
# Language Configurations
# ==============================================================================

LANGUAGE_CONFIGS: Dict[str, Dict[str, any]] = {

    # --------------------------------------------------------------------------
    # Rust Configuration
    # --------------------------------------------------------------------------
    'rust': {
        'grammar': tree_sitter_rust.language,
        'token_nodes': TOKEN_NODES,
        'keywords': KEYWORDS,
        'punctuation': MULTI_CHAR_PUNCTUATION,
        'line_comment': '//',
        'block_comment': ('/*', '*/'),
        'nested_block_comments': False,
        'doc_comment_prefixes': ('///', '/**'),
        'inner_doc_comment_prefixes': ('//!', '/*!'),

        # Examples of item headers:
        # fn:     [pub] [const] [async] [unsafe] [extern "abi"] fn name<G>(params) [-> R] [where ..] { | ;
        # impl:   [unsafe] impl<G> [!]Trait for Type [where ..] {
        # struct: [pub] struct Name<G> { fields } | (fields) [where ..]; | ;
        # macro:  macro_rules! name { rules } | ( rules ); | [ rules ];
    },
}

# Loaded grammars, shared by every parser of the same language
_LANGUAGES: Dict[str, Language] = {}


# ==============================================================================
# Helper Functions
# ==============================================================================

def get_language_for_file(filepath: str) -> Optional[str]:
    """
    Determine the programming language from a file path.

    Args:
        filepath: Path to the file (can be relative or absolute)

    Returns:
        Language name ('rust') or None if not supported

    Examples:
        >>> get_language_for_file('src/main.rs')
        'rust'
        >>> get_language_for_file('Cargo.toml')
        None
    """
    path = Path(filepath)
    extension = path.suffix.lower()
    return EXTENSION_MAP.get(extension)


def get_config_for_language(language: str) -> Dict[str, any]:
    """
    Retrieve the syntax configuration for a given language.

    Args:
        language: Language name (e.g., 'rust')

    Returns:
        Configuration dictionary with the syntax tables

    Raises:
        KeyError: If the language is not supported
    """
    if language not in LANGUAGE_CONFIGS:
        raise KeyError(
            f"Unsupported language: {language}. "
            f"Supported languages: {', '.join(LANGUAGE_CONFIGS.keys())}"
        )
    return LANGUAGE_CONFIGS[language]


def get_supported_extensions() -> Set[str]:
    """
    Get a set of all supported file extensions.

    Returns:
        Set of file extensions (including the dot)
    """
    return set(EXTENSION_MAP.keys())


def get_parser(language: str) -> Parser:
    """
    Create a tree-sitter parser for a given language.

    The grammar is loaded once per language; each call returns a new parser
    because tree-sitter parsers are not thread-safe.

    Args:
        language: Language name (e.g., 'rust')

    Returns:
        Tree-sitter parser instance

    Raises:
        KeyError: If the language is not supported
    """
    if language not in _LANGUAGES:
        logger.debug(f"Loading tree-sitter grammar for language: {language}")
        _LANGUAGES[language] = Language(get_config_for_language(language)['grammar']())
    return Parser(_LANGUAGES[language])


def validate_config(language: str) -> bool:
    """
    Validate that a language configuration has all required fields.

    Args:
        language: Language name to validate

    Returns:
        True if configuration is valid

    Raises:
        ValueError: If configuration is missing required fields
    """
    required_fields = [
        'grammar',
        'token_nodes',
        'keywords',
        'punctuation',
        'line_comment',
        'block_comment',
        'nested_block_comments',
        'doc_comment_prefixes',
        'inner_doc_comment_prefixes',
    ]

    config = get_config_for_language(language)
    missing_fields = [field for field in required_fields if field not in config]

    if missing_fields:
        raise ValueError(
            f"Configuration for {language} is missing required fields: {', '.join(missing_fields)}"
        )

    return True


# ==============================================================================
# Configuration Validation
# ==============================================================================

# Validate all configurations on module import
for lang in LANGUAGE_CONFIGS.keys():
    try:
        validate_config(lang)
    except ValueError as e:
        raise ValueError(f"Invalid configuration detected: {e}")
