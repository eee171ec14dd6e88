"""
Lexical scanner for Rust source text.

The scanner is the only part of the parser that looks at raw text. It parses
one file with the tree-sitter Rust grammar and flattens the concrete syntax
tree into a lazy, restartable stream of ``Token`` objects: every
``iter(scanner)`` parses again from the beginning of the text.

Scanning policy:
    - Comment, string, raw string, char, number and lifetime nodes are
      emitted as one token each, so delimiters inside them never reach the
      scope tracker. Which node types these are comes from the language
      config (``token_nodes``).
    - Every other CST leaf is split into words and punctuation. Punctuation
      takes the longest entry of the config's ``punctuation`` table, else a
      single character, so ``>>`` becomes two ``>`` and nested generics
      balance.
    - Text the grammar left outside any leaf during error recovery is split
      the same way.
    - Block comments do not nest unless ``nested_block_comments`` is set; the
      first ``*/`` closes the comment and the text after it is parsed again.
    - ``///`` and ``/** */`` are outer doc comments, ``//!`` and ``/*! */``
      inner doc comments. ``////``, ``/***`` and ``/**/`` are plain comments.
    - Only an unterminated literal or block comment raises ``LexError``.

Offsets are byte offsets into the UTF-8 source. Lines and columns are 1-based
and count characters.

Usage:
    >>> scanner = Scanner("fn main() {}")
    >>> [t.text for t in scanner]
    ['fn', 'main', '(', ')', '{', '}']
"""

import logging
import re
from bisect import bisect_right
from typing import Iterator, List, Optional, Tuple, Union

from tree_sitter import Node, Parser

from rustgraph_mcp.core.exceptions import LexError
from rustgraph_mcp.core.models import Token, TokenKind
from rustgraph_mcp.parsers.language_configs import get_config_for_language, get_parser

logger = logging.getLogger(__name__)

_COMMENT_KINDS = (TokenKind.COMMENT, TokenKind.DOC_COMMENT, TokenKind.INNER_DOC_COMMENT)

_BOM = b'\xef\xbb\xbf'
_WHITESPACE = b' \t\r\n\x0b\x0c'

# Byte patterns for text outside token nodes. Any multi-byte UTF-8 sequence
# counts as an identifier character.
_IDENT = rb'(?:[A-Za-z_]|[\xc2-\xf4][\x80-\xbf]+)(?:[A-Za-z0-9_]|[\xc2-\xf4][\x80-\xbf]+)*'
_WORD = re.compile(rb'(?:r#)?' + _IDENT)
_LIFETIME = re.compile(rb"'(?:r#)?" + _IDENT)
_CHAR = re.compile(
    rb"b?'(?:\\(?:u\{[0-9A-Fa-f_]*\}|x[0-9A-Fa-f]{2}|[^\n])|[^\\'\n\x80-\xff]|[\xc2-\xf4][\x80-\xbf]+)'"
)
_NUMBER = re.compile(rb'[0-9][0-9A-Za-z_]*')
_STRING_START = re.compile(rb'[bc]?"')
_RAW_STRING_START = re.compile(rb'[bc]?r(#*)"')
_MULTIBYTE = re.compile(rb'[\xc2-\xf4][\x80-\xbf]+')


def decode_source(source: Union[str, bytes]) -> Tuple[str, Optional[int]]:
    """
    Decode source bytes as UTF-8.

    Invalid sequences are decoded with ``surrogateescape`` so that every
    invalid byte maps to exactly one character and byte offsets stay exact.

    Args:
        source: Source text or raw bytes

    Returns:
        Tuple of (text, byte offset of the first invalid sequence or None)
    """
    if isinstance(source, str):
        return source, None
    try:
        return source.decode('utf-8'), None
    except UnicodeDecodeError as e:
        return source.decode('utf-8', 'surrogateescape'), e.start


def is_comment(token: Token) -> bool:
    """Check whether a token is any kind of comment."""
    return token.kind in _COMMENT_KINDS


def _leaves(root: Node, token_nodes) -> Iterator[Node]:
    """Yield CST leaves in source order, treating token nodes as leaves."""
    cursor = root.walk()
    while True:
        if cursor.node.type not in token_nodes and cursor.goto_first_child():
            continue
        yield cursor.node
        while not cursor.goto_next_sibling():
            if not cursor.goto_parent():
                return


class Scanner:
    """
    Restartable token stream over one file's source.

    Attributes:
        text: Decoded source text
        data: Source bytes every offset refers to
        invalid_offset: Byte offset of the first invalid UTF-8 sequence, or None
        keep_comments: Emit plain comment tokens (doc comments are always
            emitted)
        config: Syntax configuration of the scanned language

    Note:
        The tree-sitter parser is used while iterating. Pass one per thread.
    """

    def __init__(
        self,
        source: Union[str, bytes],
        keep_comments: bool = False,
        parser: Optional[Parser] = None,
        language: str = 'rust',
    ):
        self.text, self.invalid_offset = decode_source(source)
        if isinstance(source, bytes):
            self.data = source
        else:
            self.data = source.encode('utf-8', 'surrogateescape')
        self.keep_comments = keep_comments
        self.config = get_config_for_language(language)
        self._parser = parser or get_parser(language)

        self._token_nodes = self.config['token_nodes']
        self._keywords = self.config['keywords']
        self._punctuation = tuple(p.encode() for p in self.config['punctuation'])
        self._line_comment = self.config['line_comment'].encode()
        self._block_open, self._block_close = (d.encode() for d in self.config['block_comment'])
        self._doc_prefixes = tuple(p.encode() for p in self.config['doc_comment_prefixes'])
        self._inner_doc_prefixes = tuple(p.encode() for p in self.config['inner_doc_comment_prefixes'])

        self._line_starts = [0] + [m.end() for m in re.finditer(b'\n', self.data)]
        self._body_start = self._skip_preamble()

    def __iter__(self) -> Iterator[Token]:
        return self._tokens()

    @property
    def byte_length(self) -> int:
        return len(self.data)

    def _skip_preamble(self) -> int:
        """Return the offset after a byte order mark and a shebang line."""
        data = self.data
        start = 0
        if data.startswith(_BOM):
            start = len(_BOM)
            self._line_starts[0] = start
        if data.startswith(b'#!', start) and not data[start + 2:].lstrip().startswith(b'['):
            newline = data.find(b'\n', start)
            return len(data) if newline == -1 else newline
        return start

    def _tokens(self) -> Iterator[Token]:
        start: Optional[int] = self._body_start
        while start is not None:
            start = yield from self._scan(start)

    def _scan(self, start: int):
        """
        Parse ``data[start:]`` and emit its tokens.

        Returns:
            Offset to parse again from when a block comment ended somewhere
            the grammar did not expect, else None
        """
        end = len(self.data)
        tree = self._parser.parse(self.data[start:])
        pos = start
        for node in _leaves(tree.root_node, self._token_nodes):
            node_start = start + node.start_byte
            node_end = start + node.end_byte
            if node_end <= pos or node_start == node_end:
                continue
            if node_start > pos:
                pos, rescan = yield from self._loose(pos, node_start)
                if rescan:
                    return pos
                if node_end <= pos:
                    continue
            if node_start < pos:
                pos, rescan = yield from self._loose(pos, node_end)
            else:
                pos, rescan = yield from self._node(node, node_start, node_end)
            if rescan:
                return pos
        if pos < end:
            pos, rescan = yield from self._loose(pos, end)
            if rescan:
                return pos
        return None

    def _node(self, node: Node, start: int, end: int):
        kind = self._token_nodes.get(node.type)
        if kind is None:
            return (yield from self._loose(start, end))
        if kind is TokenKind.COMMENT:
            if self.data.startswith(self._line_comment, start):
                yield from self._comment(start, self._line_end(start, end))
                return end, False
            return (yield from self._block_comment(start, end, node.has_error))
        if kind is TokenKind.LITERAL:
            self._check_literal(node, start, end)
        yield self._token(kind, start, end)
        return end, False

    def _loose(self, start: int, end: int):
        """
        Split text outside any token node into tokens.

        Tokens start before ``end`` but may run past it, so that a lifetime
        or char literal the grammar broke into leaves comes out whole.
        """
        data = self.data
        i = start
        while i < end:
            byte = data[i]
            if byte in _WHITESPACE:
                i += 1
                continue
            if data.startswith(self._block_open, i):
                return (yield from self._block_comment(i))
            if data.startswith(self._line_comment, i):
                line_end = self._line_end(i, len(data))
                yield from self._comment(i, line_end)
                i = line_end
                continue

            opener = _RAW_STRING_START.match(data, i) or _STRING_START.match(data, i)
            if opener and opener.end() <= end:
                raise self._unterminated_string(i)
            match = _CHAR.match(data, i)
            if match:
                yield self._token(TokenKind.LITERAL, i, match.end())
                i = match.end()
                continue
            if data.startswith(b"'", i):
                i = yield from self._quote(i)
                continue

            multibyte = _MULTIBYTE.match(data, i)
            symbol = multibyte and not data[i:multibyte.end()].decode('utf-8', 'surrogateescape').isalpha()
            match = None if symbol else _WORD.match(data, i, end)
            if match:
                word = data[i:match.end()].decode('utf-8', 'surrogateescape')
                kind = TokenKind.KEYWORD if word in self._keywords else TokenKind.IDENTIFIER
                yield self._token(kind, i, match.end(), word)
                i = match.end()
                continue
            match = _NUMBER.match(data, i, end)
            if match:
                yield self._token(TokenKind.LITERAL, i, match.end())
                i = match.end()
                continue

            width = next((len(p) for p in self._punctuation if data.startswith(p, i)), 0)
            if not width:
                width = len(multibyte.group()) if multibyte else 1
            yield self._token(TokenKind.PUNCTUATION, i, i + width)
            i += width
        return i, False

    def _quote(self, i: int):
        """Emit a lifetime or a lone ``'`` at ``i``; return the end offset."""
        match = _LIFETIME.match(self.data, i)
        if match:
            yield self._token(TokenKind.LIFETIME, i, match.end())
            return match.end()
        if self.data[i + 1:i + 2] in (b'', b'\n', b'\\'):
            raise self._error("unterminated character literal", i)
        yield self._token(TokenKind.PUNCTUATION, i, i + 1)
        return i + 1

    def _block_comment(self, start: int, node_end: Optional[int] = None, broken: bool = False):
        """
        Emit the block comment opening at ``start``.

        ``node_end`` is where the grammar ended the comment, None when it
        found no comment there at all.
        """
        if self.config['nested_block_comments']:
            text = self.data[start:node_end] if node_end is not None else b''
            closed = len(text) >= len(self._block_open) + len(self._block_close) and text.endswith(self._block_close)
            if node_end is None or broken or not closed:
                raise self._error("unterminated block comment", start)
            end = node_end
        else:
            close = self.data.find(self._block_close, start + len(self._block_open))
            if close == -1:
                raise self._error("unterminated block comment", start)
            end = close + len(self._block_close)
        yield from self._comment(start, end)
        return end, end != node_end or broken

    def _comment(self, start: int, end: int) -> Iterator[Token]:
        kind = self._comment_kind(self.data[start:end])
        if kind is not TokenKind.COMMENT or self.keep_comments:
            yield self._token(kind, start, end)

    def _comment_kind(self, text: bytes) -> TokenKind:
        if text.startswith(self._inner_doc_prefixes):
            return TokenKind.INNER_DOC_COMMENT
        for prefix in self._doc_prefixes:
            # `////` and `/***` repeat the last marker character
            if text.startswith(prefix) and not text.startswith(prefix + prefix[-1:]):
                if text != self._block_open + self._block_close:
                    return TokenKind.DOC_COMMENT
        return TokenKind.COMMENT

    def _line_end(self, start: int, limit: int) -> int:
        newline = self.data.find(b'\n', start, limit)
        return limit if newline == -1 else newline

    def _check_literal(self, node: Node, start: int, end: int) -> None:
        """Raise LexError if a literal node is missing its closing quote."""
        text = self.data[start:end]
        if node.type == 'raw_string_literal':
            opener = _RAW_STRING_START.match(text)
            closing = b'"' + (opener.group(1) if opener else b'')
            if node.has_error or opener is None or len(text) < opener.end() + len(closing) \
                    or not text.endswith(closing):
                raise self._error("unterminated raw string literal", start)
        elif node.type == 'string_literal':
            opener = _STRING_START.match(text)
            if node.has_error or opener is None or len(text) <= opener.end() or not text.endswith(b'"'):
                raise self._error("unterminated string literal", start)
        elif node.type == 'char_literal':
            if node.has_error or len(text) < 3 or not text.endswith(b"'"):
                raise self._error("unterminated character literal", start)

    def _unterminated_string(self, i: int) -> LexError:
        """Build the error for a string opener at ``i`` that never closes."""
        data = self.data
        if _RAW_STRING_START.match(data, i):
            return self._error("unterminated raw string literal", i)
        # The grammar may have split a raw opener into `r`, `#`.. and `"`
        j = i
        while j > 0 and data[j - 1:j] == b'#':
            j -= 1
        if j > 0 and data[j - 1:j] == b'r':
            r = j - 1
            if r > 0 and data[r - 1:r] in (b'b', b'c'):
                r -= 1
            if r == 0 or not _WORD.match(data, r - 1):
                return self._error("unterminated raw string literal", r)
        return self._error("unterminated string literal", i)

    def _position(self, offset: int) -> Tuple[int, int]:
        line = bisect_right(self._line_starts, offset)
        prefix = self.data[self._line_starts[line - 1]:offset]
        if prefix.isascii():
            return line, len(prefix) + 1
        return line, len(prefix.decode('utf-8', 'surrogateescape')) + 1

    def _token(self, kind: TokenKind, start: int, end: int, text: Optional[str] = None) -> Token:
        line, column = self._position(start)
        if text is None:
            text = self.data[start:end].decode('utf-8', 'surrogateescape')
        return Token(kind=kind, text=text, start=start, end=end, line=line, column=column)

    def _error(self, details: str, offset: int) -> LexError:
        line, column = self._position(offset)
        logger.debug(f"Lex error at line {line}, column {column}: {details}")
        return LexError(details, offset, line, column)


def tokenize(source: Union[str, bytes], keep_comments: bool = False) -> List[Token]:
    """
    Tokenize a whole source text eagerly.

    Args:
        source: Source text or bytes
        keep_comments: Include plain comment tokens

    Returns:
        List of tokens in source order

    Raises:
        LexError: On an unterminated literal or block comment
    """
    return list(Scanner(source, keep_comments=keep_comments))
