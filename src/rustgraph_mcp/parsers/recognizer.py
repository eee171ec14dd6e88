"""
Declaration recognizer for Rust source.

Walks the token stream once, left to right, in cooperation with the scope
tracker. Every consumed token passes through ``_take()``, which feeds the
tracker, finalizes declarations whose body closes or whose terminating ``;``
arrives, and records macro invocations.

Items are only recognized at a statement start (the start of a ``{`` body,
after ``;`` or after ``}``) inside a frame that can hold items. In an
item-only frame (file, module, impl, trait, extern block) anything else is
reported as an unrecognized construct and skipped up to the next ``;``,
closed ``{}`` group or item keyword.

Declarations are kept as pending records in header order until they are
finalized. ``flush()`` assigns ids in source order, drops declarations that
never completed (and everything nested in them), and hands the rest to the
graph builder merged with the macro invocations.
"""

import heapq
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from rustgraph_mcp.core.models import (
    Declaration,
    DeclarationKind,
    DiagnosticCode,
    GenericParam,
    GenericParamKind,
    Import,
    MacroInvocation,
    ParseOptions,
    Span,
    Token,
    TokenKind,
    Visibility,
)
from rustgraph_mcp.parsers.diagnostics import DiagnosticsCollector
from rustgraph_mcp.parsers.graph_builder import GraphBuilder, base_name
from rustgraph_mcp.parsers.language_configs import (
    CLOSERS,
    DECLARATION_KEYWORDS,
    ITEM_START_KEYWORDS,
    OPENERS,
    TERMINATED_KINDS,
)
from rustgraph_mcp.parsers.lexer import Scanner, is_comment
from rustgraph_mcp.parsers.scopes import ScopeKind, ScopeTracker

logger = logging.getLogger(__name__)

_WORDLIKE = (TokenKind.IDENTIFIER, TokenKind.KEYWORD, TokenKind.LIFETIME, TokenKind.LITERAL)
_SPACED = frozenset({'+', '=', '->', '=>'})
_SPACE_AFTER = frozenset({',', ':', ';'})
_NESTING = {'<': 1, '(': 1, '[': 1, '{': 1, '>': -1, ')': -1, ']': -1, '}': -1}

# Identifiers that act as item modifiers when followed by an item keyword
_CONTEXTUAL_MODIFIERS = frozenset({'default', 'auto', 'safe'})
_MODIFIED_KEYWORDS = frozenset({
    'fn', 'const', 'async', 'unsafe', 'extern', 'impl', 'trait', 'static', 'type',
})
_VISIBILITY_SCOPES = frozenset({'crate', 'self', 'super', 'in'})


# ==============================================================================
# Token helpers
# ==============================================================================

def render(tokens: Iterable[Token]) -> str:
    """
    Join tokens into readable source-like text.

    Words are separated by one space, ``+ = -> =>`` are spaced on both
    sides and ``, : ;`` are followed by a space.

    Examples:
        ``fn area(&self) -> f64``, ``T: Clone + Send``
    """
    parts: List[str] = []
    prev: Optional[Token] = None
    for tok in tokens:
        if prev is not None and _needs_space(prev, tok):
            parts.append(' ')
        parts.append(tok.text)
        prev = tok
    return ''.join(parts)


def _needs_space(prev: Token, tok: Token) -> bool:
    if tok.kind is TokenKind.PUNCTUATION and tok.text in _SPACED:
        return True
    if prev.kind is TokenKind.PUNCTUATION:
        if prev.text in _SPACED or prev.text in _SPACE_AFTER:
            return True
    if tok.kind in _WORDLIKE:
        return prev.kind in _WORDLIKE or prev.text in ('>', ')', ']')
    return False


def _top_level_index(tokens: Sequence[Token], text: str) -> Optional[int]:
    """Index of the first ``text`` punctuation outside any brackets."""
    depth = 0
    for index, tok in enumerate(tokens):
        if tok.kind is not TokenKind.PUNCTUATION:
            continue
        if depth == 0 and tok.text == text:
            return index
        depth = max(0, depth + _NESTING.get(tok.text, 0))
    return None


def _split_top_level(tokens: Sequence[Token], text: str = ',') -> List[List[Token]]:
    parts: List[List[Token]] = [[]]
    depth = 0
    for tok in tokens:
        if tok.kind is TokenKind.PUNCTUATION:
            if depth == 0 and tok.text == text:
                parts.append([])
                continue
            depth = max(0, depth + _NESTING.get(tok.text, 0))
        parts[-1].append(tok)
    return [part for part in parts if part]


def _ident(tok: Token) -> str:
    return tok.text[2:] if tok.text.startswith('r#') else tok.text


def doc_text(text: str) -> str:
    """
    Strip comment markers from a doc comment token.

    Args:
        text: Raw ``///``, ``//!``, ``/** */`` or ``/*! */`` text

    Returns:
        Doc text with markers and leading decoration removed
    """
    if text.startswith(('///', '//!')):
        body = text[3:].rstrip('\r')
        return body[1:] if body.startswith(' ') else body

    lines = []
    for line in text[3:-2].split('\n'):
        line = line.strip()
        if line.startswith('*'):
            line = line[1:]
            line = line[1:] if line.startswith(' ') else line
        lines.append(line)
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return '\n'.join(lines)


def parse_generic_params(tokens: Sequence[Token]) -> Tuple[GenericParam, ...]:
    """
    Parse the tokens between ``<`` and ``>`` into generic parameters.

    Bounds and defaults are kept as rendered text, not validated.
    """
    params = []
    for part in _split_top_level(tokens):
        while part and part[0].is_punct('#'):
            # Parameter attribute such as #[may_dangle]
            close = _top_level_index(part[1:], ']')
            part = part[close + 2:] if close is not None else []
        if not part:
            continue

        first = part[0]
        if first.kind is TokenKind.LIFETIME:
            kind, name, rest = GenericParamKind.LIFETIME, first.text, part[1:]
        elif first.is_keyword('const') and len(part) > 1:
            kind, name, rest = GenericParamKind.CONST, _ident(part[1]), part[2:]
        else:
            kind, name, rest = GenericParamKind.TYPE, _ident(first), part[1:]

        eq = _top_level_index(rest, '=')
        bound_tokens = rest if eq is None else rest[:eq]
        default_tokens = [] if eq is None else rest[eq + 1:]
        bound = None
        if bound_tokens and bound_tokens[0].is_punct(':'):
            bound = render(bound_tokens[1:]) or None
        params.append(GenericParam(
            name=name,
            kind=kind,
            bound=bound,
            default=render(default_tokens) or None,
        ))
    return tuple(params)


def _derives(tokens: Sequence[Token]) -> List[str]:
    """Trait names listed in a ``#[derive(...)]`` attribute."""
    if len(tokens) < 6 or tokens[2].text != 'derive' or not tokens[3].is_punct('('):
        return []
    return [render(part) for part in _split_top_level(tokens[4:-2])]


class TokenStream:
    """Lazy token stream with lookahead over an underlying iterator."""

    def __init__(self, tokens: Iterable[Token]):
        self._iter = iter(tokens)
        self._buffer: Deque[Token] = deque()
        self._exhausted = False

    def _fill(self, count: int) -> None:
        while len(self._buffer) < count and not self._exhausted:
            tok = next(self._iter, None)
            if tok is None:
                self._exhausted = True
            else:
                self._buffer.append(tok)

    def peek(self, k: int = 0) -> Optional[Token]:
        """The k-th upcoming token, comments included."""
        self._fill(k + 1)
        return self._buffer[k] if k < len(self._buffer) else None

    def peek_significant(self, k: int = 0) -> Optional[Token]:
        """The k-th upcoming token that is not a comment."""
        index = 0
        seen = 0
        while True:
            tok = self.peek(index)
            if tok is None:
                return None
            if not is_comment(tok):
                if seen == k:
                    return tok
                seen += 1
            index += 1

    def next(self) -> Optional[Token]:
        self._fill(1)
        return self._buffer.popleft() if self._buffer else None


# ==============================================================================
# Pending records
# ==============================================================================

@dataclass
class _Header:
    """Result of classifying a statement start."""
    kind: Optional[DeclarationKind]
    special: Optional[str]
    index: int
    visibility: Visibility
    modifiers: Tuple[str, ...] = ()
    abi: Optional[str] = None
    union: bool = False


@dataclass(eq=False)
class _Pending:
    """A declaration whose header has been seen but which may not be finished."""
    seq: int
    kind: DeclarationKind
    start: Token
    depth: int
    scope_path: Tuple[str, ...]
    parent: Optional['_Pending']
    visibility: Visibility
    modifiers: List[str]
    docs: List[str]
    attributes: List[str]
    name: str = ""
    generics: Tuple[GenericParam, ...] = ()
    impl_type: Optional[str] = None
    impl_trait: Optional[str] = None
    signature: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    inner_docs: List[str] = field(default_factory=list)
    tokens: List[Token] = field(default_factory=list)
    await_depth: Optional[int] = None
    end: Optional[Token] = None
    abandoned: bool = False
    id: Optional[int] = None

    @property
    def finalized(self) -> bool:
        return self.end is not None


@dataclass
class _PendingInvocation:
    name: str
    path: str
    span: Span
    scope_path: Tuple[str, ...]
    owner: Optional[_Pending]


@dataclass
class _HeaderScan:
    stop: Token
    before_where: List[Token]
    where: List[Token]


# ==============================================================================
# Recognizer
# ==============================================================================

class DeclarationRecognizer:
    """
    Single-pass declaration recognizer for one file.

    Usage:
        recognizer = DeclarationRecognizer(Scanner(source), "lib.rs", diagnostics)
        recognizer.run()          # may raise LexError / ScopeImbalanceError
        recognizer.flush(builder) # always safe, also after a fatal error
    """

    def __init__(
        self,
        scanner: Scanner,
        file_id: str,
        diagnostics: DiagnosticsCollector,
        options: Optional[ParseOptions] = None,
    ):
        self.scanner = scanner
        self.file_id = file_id
        self.diagnostics = diagnostics
        self.options = options or ParseOptions()
        self.tracker = ScopeTracker(diagnostics, file_id)
        self._stream = TokenStream(scanner)
        self._data = scanner.data

        self._pending: List[_Pending] = []
        self._open: List[_Pending] = []
        self._capturing: List[_Pending] = []
        self._invocations: List[_PendingInvocation] = []
        self._imports: List[Import] = []
        self._recent: Deque[Token] = deque(maxlen=64)

        self._docs: List[str] = []
        self._attrs: List[str] = []
        self._derives: List[str] = []
        self._file_doc: List[str] = []
        self._fresh = True

    @property
    def file_doc(self) -> Optional[str]:
        return '\n'.join(self._file_doc) if self._file_doc else None

    # --------------------------------------------------------------------------
    # Main loop
    # --------------------------------------------------------------------------

    def run(self) -> None:
        """
        Consume the whole token stream.

        Raises:
            LexError: If the scanner hits an unterminated literal or comment
            ScopeImbalanceError: If delimiters are left open or unmatched at end of input
        """
        while True:
            tok = self._stream.peek()
            if tok is None:
                break
            if is_comment(tok):
                self._stream.next()
                self._comment(tok)
                continue

            scope = self.tracker.current
            if self._fresh and scope.items and not self._awaiting_here():
                if self._at_attribute():
                    self._attribute()
                    continue
                header = self._classify()
                if header is not None:
                    self._declaration(header)
                    continue
                if scope.strict and not self._is_statement_end(tok) and not self._at_macro_call():
                    self._unrecognized(tok)
                    continue

            self._clear_leading()
            self._take()

        self.tracker.finish()
        for pending in reversed(list(self._open)):
            self._abandon(pending, "missing ';' at end of input")

    def _awaiting_here(self) -> bool:
        return bool(self._open) and self._open[-1].await_depth == self.tracker.depth

    def _peek(self, k: int = 0) -> Optional[Token]:
        return self._stream.peek_significant(k)

    def _take(self, opaque: bool = False) -> Optional[Token]:
        """
        Consume the next significant token and update all pass state.

        Args:
            opaque: Open any delimiter taken here as an opaque scope

        Returns:
            The consumed token, or None at end of input
        """
        tok = self._stream.next()
        while tok is not None and is_comment(tok):
            tok = self._stream.next()
        if tok is None:
            return None

        for pending in self._capturing:
            pending.tokens.append(tok)

        if tok.kind is TokenKind.PUNCTUATION:
            if tok.text in OPENERS:
                if opaque and not self.tracker.has_expectation:
                    self.tracker.expect(opaque=True)
                self.tracker.feed(tok)
            elif tok.text in CLOSERS:
                closed = self.tracker.feed(tok)
                for scope in closed:
                    owner = scope.owner
                    if owner is not None and not owner.finalized and owner.await_depth is None:
                        self._finalize(owner, tok)
                if closed:
                    self._abandon_deeper(self.tracker.depth)
            elif tok.text == ';':
                if self._awaiting_here():
                    self._finalize(self._open[-1], tok)
            elif tok.text == '!':
                self._maybe_invocation(tok)
            self._fresh = tok.text in (';', '{', '}')
        else:
            self._fresh = False

        self._recent.append(tok)
        return tok

    def _clear_leading(self) -> None:
        self._docs = []
        self._attrs = []
        self._derives = []

    def _comment(self, tok: Token) -> None:
        scope = self.tracker.current
        if tok.kind is TokenKind.DOC_COMMENT:
            if scope.items:
                self._docs.append(doc_text(tok.text))
        elif tok.kind is TokenKind.INNER_DOC_COMMENT:
            if scope.kind is ScopeKind.FILE:
                self._file_doc.append(doc_text(tok.text))
            elif scope.kind is ScopeKind.MODULE and scope.owner is not None:
                scope.owner.inner_docs.append(doc_text(tok.text))

    @staticmethod
    def _is_statement_end(tok: Token) -> bool:
        return tok.kind is TokenKind.PUNCTUATION and (tok.text == ';' or tok.text in CLOSERS)

    # --------------------------------------------------------------------------
    # Attributes and macro invocations
    # --------------------------------------------------------------------------

    def _at_attribute(self) -> bool:
        tok = self._peek()
        if tok is None or not tok.is_punct('#'):
            return False
        nxt = self._peek(1)
        if nxt is None:
            return False
        if nxt.is_punct('['):
            return True
        after = self._peek(2)
        return nxt.is_punct('!') and after is not None and after.is_punct('[')

    def _attribute(self) -> None:
        """Consume ``#[...]`` or ``#![...]``; outer attributes attach to the next item."""
        fresh = self._fresh
        start = self._take()
        inner = self._peek().is_punct('!')
        if inner:
            self._take()
        depth = self.tracker.depth
        tokens = [start, self._take(opaque=True)]
        while self.tracker.depth > depth:
            tok = self._take()
            if tok is None:
                break
            tokens.append(tok)
        self._fresh = fresh
        if inner:
            return
        self._attrs.append(self._slice(start, tokens[-1]))
        self._derives.extend(_derives(tokens))

    def _at_macro_call(self) -> bool:
        """Check for ``path::name!`` followed by a delimiter."""
        k = 0
        tok = self._peek(k)
        if tok is not None and tok.is_punct('::', '$'):
            k += 1
        while True:
            tok = self._peek(k)
            if tok is None or not (tok.kind is TokenKind.IDENTIFIER or tok.is_keyword('crate', 'self', 'super', 'Self')):
                return False
            nxt = self._peek(k + 1)
            if nxt is not None and nxt.is_punct('::'):
                k += 2
                continue
            after = self._peek(k + 2)
            return (
                nxt is not None and nxt.is_punct('!')
                and after is not None and after.kind is TokenKind.PUNCTUATION and after.text in OPENERS
            )

    def _maybe_invocation(self, bang: Token) -> None:
        if not self.tracker.current.macros or not self._recent:
            return
        prev = self._recent[-1]
        if prev.kind is not TokenKind.IDENTIFIER or prev.text == 'macro_rules':
            return
        nxt = self._peek()
        if nxt is None or nxt.kind is not TokenKind.PUNCTUATION or nxt.text not in OPENERS:
            return

        recent = list(self._recent)
        i = len(recent) - 1
        while i >= 2 and recent[i - 1].is_punct('::') and (
            recent[i - 2].kind is TokenKind.IDENTIFIER
            or recent[i - 2].is_keyword('crate', 'self', 'super', 'Self')
        ):
            i -= 2
        if i >= 1 and recent[i - 1].is_punct('::', '$'):
            i -= 1
        path = ''.join(tok.text for tok in recent[i:])

        self._invocations.append(_PendingInvocation(
            name=_ident(prev),
            path=path,
            span=Span.between(recent[i], bang),
            scope_path=self.tracker.path,
            owner=self._open[-1] if self._open else None,
        ))
        self.tracker.expect(ScopeKind.BLOCK, opaque=True)

    # --------------------------------------------------------------------------
    # Classification
    # --------------------------------------------------------------------------

    def _classify(self) -> Optional[_Header]:
        """
        Look ahead over visibility and modifiers to find an item keyword.

        Returns:
            Header description, or None if no item starts here
        """
        peek = self._peek
        tok = peek(0)
        k = 0
        visibility = Visibility.PRIVATE
        if tok.is_keyword('pub'):
            visibility = Visibility.PUBLIC
            k = 1
            group, scope = peek(1), peek(2)
            if group is not None and group.is_punct('(') and scope is not None and scope.text in _VISIBILITY_SCOPES:
                close = self._matching_paren(1)
                if close is None:
                    return None
                visibility = Visibility.PRIVATE if scope.text == 'self' and close == 3 else Visibility.CRATE
                k = close + 1

        modifiers: List[str] = []
        abi = None
        while True:
            tok = peek(k)
            if tok is None:
                return None
            nxt = peek(k + 1)
            if tok.is_keyword('extern'):
                if nxt is not None and nxt.is_keyword('crate'):
                    return _Header(None, 'extern_crate', k, visibility)
                if nxt is not None and nxt.kind is TokenKind.LITERAL:
                    abi = nxt.text
                    modifiers.append(f"extern {abi}")
                    k += 2
                else:
                    modifiers.append('extern')
                    k += 1
                after = peek(k)
                if after is not None and after.is_punct('{'):
                    return _Header(None, 'foreign', k, visibility, tuple(modifiers), abi)
                continue
            if self._is_modifier(tok, nxt):
                modifiers.append(tok.text)
                k += 1
                continue
            break

        if tok.is_keyword('use'):
            return _Header(None, 'use', k, visibility)
        kind = self._item_kind(tok, nxt, peek(k + 2))
        if kind is None:
            return None
        return _Header(kind, None, k, visibility, tuple(modifiers), abi, union=tok.text == 'union')

    @staticmethod
    def _is_modifier(tok: Token, nxt: Optional[Token]) -> bool:
        if nxt is None:
            return False
        if tok.kind is TokenKind.KEYWORD and tok.text in ('const', 'async', 'unsafe'):
            pass
        elif not (tok.kind is TokenKind.IDENTIFIER and tok.text in _CONTEXTUAL_MODIFIERS):
            return False
        if nxt.kind is TokenKind.KEYWORD:
            return nxt.text in _MODIFIED_KEYWORDS
        return nxt.kind is TokenKind.IDENTIFIER and nxt.text in _CONTEXTUAL_MODIFIERS

    @staticmethod
    def _item_kind(tok: Token, nxt: Optional[Token], after: Optional[Token]) -> Optional[DeclarationKind]:
        if nxt is None:
            return None
        named = nxt.kind is TokenKind.IDENTIFIER
        if tok.kind is TokenKind.KEYWORD:
            kind = DECLARATION_KEYWORDS.get(tok.text)
            if kind is DeclarationKind.IMPL:
                return kind
            if kind is DeclarationKind.STATIC:
                return kind if named or nxt.is_keyword('mut') else None
            return kind if kind is not None and named else None
        if tok.kind is TokenKind.IDENTIFIER:
            if tok.text == 'union' and named:
                return DeclarationKind.STRUCT
            if tok.text == 'macro_rules' and nxt.is_punct('!') and after is not None \
                    and after.kind is TokenKind.IDENTIFIER:
                return DeclarationKind.MACRO
        return None

    def _matching_paren(self, k: int) -> Optional[int]:
        depth = 0
        for index in range(k, k + 64):
            tok = self._peek(index)
            if tok is None:
                return None
            if tok.is_punct('('):
                depth += 1
            elif tok.is_punct(')'):
                depth -= 1
                if depth == 0:
                    return index
        return None

    # --------------------------------------------------------------------------
    # Declarations
    # --------------------------------------------------------------------------

    def _declaration(self, header: _Header) -> None:
        if header.special in ('use', 'extern_crate'):
            self._import(header)
            return
        if header.special == 'foreign':
            self._foreign_block(header)
            return

        pending = self._begin(header)
        handlers = {
            DeclarationKind.MODULE: self._module,
            DeclarationKind.STRUCT: self._struct,
            DeclarationKind.ENUM: self._struct,
            DeclarationKind.TRAIT: self._trait,
            DeclarationKind.IMPL: self._impl,
            DeclarationKind.FUNCTION: self._function,
            DeclarationKind.TYPE_ALIAS: self._terminated,
            DeclarationKind.CONST: self._terminated,
            DeclarationKind.STATIC: self._terminated,
            DeclarationKind.MACRO: self._macro,
        }
        handlers[header.kind](pending)

    def _begin(self, header: _Header) -> _Pending:
        """Open a pending declaration and consume its header up to the keyword."""
        pending = _Pending(
            seq=len(self._pending),
            kind=header.kind,
            start=self._peek(),
            depth=self.tracker.depth,
            scope_path=self.tracker.path,
            parent=self._open[-1] if self._open else None,
            visibility=header.visibility,
            modifiers=list(header.modifiers),
            docs=self._docs,
            attributes=self._attrs,
        )
        if self._derives:
            pending.metadata['derives'] = list(self._derives)
        if header.abi:
            pending.metadata['abi'] = header.abi
        if header.union:
            pending.metadata['union'] = True
        self._clear_leading()

        self._pending.append(pending)
        self._open.append(pending)
        self._capturing.append(pending)
        for _ in range(header.index + 1):
            self._take(opaque=True)
        return pending

    def _stop_capture(self, pending: _Pending, signature: bool = True) -> None:
        if signature and not pending.signature:
            pending.signature = render(pending.tokens)
        if pending in self._capturing:
            self._capturing.remove(pending)

    def _name(self, pending: _Pending) -> bool:
        tok = self._peek()
        if tok is None or tok.kind is not TokenKind.IDENTIFIER:
            self._abandon(pending, "missing name")
            return False
        pending.name = _ident(self._take())
        return True

    def _generics(self, pending: _Pending) -> None:
        tok = self._peek()
        if tok is None or not tok.is_punct('<'):
            return
        self._take(opaque=True)
        inner: List[Token] = []
        angle = 1
        while True:
            tok = self._peek()
            if tok is None:
                return
            at_header = self.tracker.depth == pending.depth
            if at_header and tok.kind is TokenKind.PUNCTUATION and (tok.text == ';' or tok.text in CLOSERS):
                return
            self._take(opaque=True)
            if at_header and tok.is_punct('<'):
                angle += 1
            elif at_header and tok.is_punct('>'):
                angle -= 1
                if angle == 0:
                    break
            inner.append(tok)
        pending.generics = parse_generic_params(inner)

    def _scan_header(self, pending: _Pending, stops: Tuple[str, ...]) -> Optional[_HeaderScan]:
        """
        Consume header tokens up to (not including) a stop delimiter.

        Returns:
            The scan result, or None if the header ran into the end of its
            enclosing scope or the end of input
        """
        before: List[Token] = []
        where: List[Token] = []
        in_where = False
        angle = 0
        while True:
            tok = self._peek()
            if tok is None:
                return None
            at_header = self.tracker.depth == pending.depth
            if at_header and tok.kind is TokenKind.PUNCTUATION:
                if angle == 0 and tok.text in stops:
                    break
                if tok.text in CLOSERS or tok.text == ';':
                    return None
            self._take(opaque=True)
            if at_header:
                if tok.is_punct('<'):
                    angle += 1
                elif tok.is_punct('>') and angle:
                    angle -= 1
                elif tok.is_keyword('where') and angle == 0 and not in_where:
                    in_where = True
                    continue
            (where if in_where else before).append(tok)
        if where:
            pending.metadata['where_clause'] = render(where)
        return _HeaderScan(tok, before, where)

    def _open_body(self, pending: _Pending, kind: ScopeKind, segment: Optional[str] = None,
                   strict: bool = False, opaque: bool = False) -> None:
        self._stop_capture(pending)
        self.tracker.expect(kind, segment=segment, owner=pending, strict=strict, opaque=opaque)
        self._take()

    def _module(self, pending: _Pending) -> None:
        if not self._name(pending):
            return
        scan = self._scan_header(pending, ('{', ';'))
        if scan is None:
            self._abandon(pending, "module header")
        elif scan.stop.text == ';':
            pending.metadata['external'] = True
            pending.await_depth = pending.depth
            self._stop_capture(pending)
        else:
            self._open_body(pending, ScopeKind.MODULE, pending.name, strict=True)

    def _struct(self, pending: _Pending) -> None:
        if not self._name(pending):
            return
        self._generics(pending)
        scan = self._scan_header(pending, ('{', '(', ';'))
        if scan is None:
            self._abandon(pending, f"{pending.kind} header")
            return
        if scan.stop.text == '{':
            self._open_body(pending, ScopeKind.BLOCK, opaque=True)
            return

        pending.await_depth = pending.depth
        if scan.stop.text == '(':
            pending.metadata['tuple'] = True
            self._take(opaque=True)
            while self.tracker.depth > pending.depth:
                if self._take(opaque=True) is None:
                    return
            if self._scan_header(pending, (';',)) is None:
                self._abandon(pending, "tuple struct")
                return
        else:
            pending.metadata['unit'] = True
        self._stop_capture(pending)

    def _trait(self, pending: _Pending) -> None:
        if not self._name(pending):
            return
        self._generics(pending)
        scan = self._scan_header(pending, ('{', ';'))
        if scan is None:
            self._abandon(pending, "trait header")
            return
        if scan.before_where and scan.before_where[0].is_punct(':'):
            pending.metadata['supertraits'] = render(scan.before_where[1:])
        if scan.stop.text == ';':
            # Trait alias
            pending.await_depth = pending.depth
            self._stop_capture(pending)
        else:
            self._open_body(pending, ScopeKind.TRAIT, pending.name, strict=True)

    def _impl(self, pending: _Pending) -> None:
        self._generics(pending)
        scan = self._scan_header(pending, ('{', ';'))
        if scan is None:
            self._abandon(pending, "impl header")
            return

        tokens = scan.before_where
        split = None
        depth = 0
        for index, tok in enumerate(tokens):
            if tok.kind is TokenKind.PUNCTUATION:
                depth = max(0, depth + _NESTING.get(tok.text, 0))
            elif depth == 0 and index > 0 and tok.is_keyword('for'):
                split = index
                break

        trait_tokens = tokens[:split] if split is not None else []
        type_tokens = tokens[split + 1:] if split is not None else tokens
        if trait_tokens and trait_tokens[0].is_punct('!'):
            pending.metadata['negative'] = True
            trait_tokens = trait_tokens[1:]
        pending.impl_trait = render(trait_tokens) or None
        pending.impl_type = render(type_tokens) or None

        if pending.impl_type is None:
            self._abandon(pending, "impl without a target type")
            if scan.stop.is_punct('{'):
                self.tracker.expect(ScopeKind.IMPL, strict=True)
                self._take()
            return
        pending.name = base_name(pending.impl_type)
        if scan.stop.text == ';':
            pending.await_depth = pending.depth
            self._stop_capture(pending)
        else:
            self._open_body(pending, ScopeKind.IMPL, pending.name, strict=True)

    def _function(self, pending: _Pending) -> None:
        if not self._name(pending):
            return
        self._generics(pending)
        scan = self._scan_header(pending, ('{', ';'))
        if scan is None:
            self._abandon(pending, "function header")
            return
        arrow = _top_level_index(scan.before_where, '->')
        if arrow is not None:
            pending.metadata['return_type'] = render(scan.before_where[arrow + 1:])
        if scan.stop.text == ';':
            pending.await_depth = pending.depth
            self._stop_capture(pending)
        else:
            self._open_body(pending, ScopeKind.FUNCTION, pending.name)

    def _terminated(self, pending: _Pending) -> None:
        """type / const / static: the rest runs through the main loop up to ``;``."""
        if pending.kind is DeclarationKind.STATIC:
            tok = self._peek()
            if tok is not None and tok.is_keyword('mut'):
                self._take()
                pending.modifiers.append('mut')
        if not self._name(pending):
            return
        if pending.kind is DeclarationKind.TYPE_ALIAS:
            self._generics(pending)
        pending.await_depth = pending.depth

    def _macro(self, pending: _Pending) -> None:
        self._take()
        if not self._name(pending):
            return
        pending.signature = f"macro_rules! {pending.name}"
        self._stop_capture(pending)
        opener = self._peek()
        if opener is None or opener.kind is not TokenKind.PUNCTUATION or opener.text not in OPENERS:
            self._abandon(pending, "macro_rules! without a body")
            return
        pending.metadata['body_delimiter'] = opener.text
        if opener.text != '{':
            pending.await_depth = pending.depth
        self.tracker.expect(ScopeKind.BLOCK, owner=pending, opaque=True, macros=False)
        self._take()

    def _import(self, header: _Header) -> None:
        start = self._peek()
        self._clear_leading()
        depth = self.tracker.depth
        taken = header.index + (2 if header.special == 'extern_crate' else 1)
        for _ in range(taken):
            self._take(opaque=True)

        path: List[Token] = []
        end = None
        while True:
            tok = self._peek()
            if tok is None:
                break
            if self.tracker.depth == depth and tok.kind is TokenKind.PUNCTUATION:
                if tok.text == ';':
                    end = self._take()
                    break
                if tok.text in CLOSERS:
                    break
            path.append(self._take(opaque=True))

        last = end or (path[-1] if path else start)
        self._imports.append(Import(
            path=render(path),
            span=Span.between(start, last),
            scope_path=self.tracker.path,
            visibility=header.visibility,
            extern_crate=header.special == 'extern_crate',
        ))
        if end is None:
            self.diagnostics.warning(
                DiagnosticCode.INCOMPLETE_DECLARATION,
                f"Import '{render(path)}' is missing its ';'",
                Span.between(start, last),
            )

    def _foreign_block(self, header: _Header) -> None:
        self._clear_leading()
        for _ in range(header.index):
            self._take(opaque=True)
        self.tracker.expect(ScopeKind.BLOCK, strict=True)
        self._take()

    def _unrecognized(self, tok: Token) -> None:
        """Report a construct that cannot start an item and skip past it."""
        scope = self.tracker.current
        where = '::'.join(scope.path) or 'file root'
        self.diagnostics.warning(
            DiagnosticCode.UNRECOGNIZED_CONSTRUCT,
            f"Unrecognized construct starting with '{tok.text}' in {scope.kind.value} scope ({where})",
            Span.between(tok, tok),
        )
        self._clear_leading()
        depth = self.tracker.depth
        first = True
        while True:
            nxt = self._peek()
            if nxt is None:
                break
            if not first and self.tracker.depth == depth:
                if nxt.kind is TokenKind.KEYWORD and nxt.text in ITEM_START_KEYWORDS:
                    break
                if nxt.text == 'macro_rules' or nxt.is_punct('#') or (
                        nxt.kind is TokenKind.PUNCTUATION and nxt.text in CLOSERS):
                    break
            taken = self._take(opaque=True)
            first = False
            if self.tracker.depth == depth and taken.is_punct(';', '}'):
                break
        self._fresh = True

    # --------------------------------------------------------------------------
    # Finalization
    # --------------------------------------------------------------------------

    def _finalize(self, pending: _Pending, end: Token) -> None:
        pending.end = end
        if pending in self._open:
            self._open.remove(pending)
        if pending in self._capturing:
            self._capturing.remove(pending)
        if pending.kind in TERMINATED_KINDS:
            self._finish_terminated(pending)

    @staticmethod
    def _finish_terminated(pending: _Pending) -> None:
        tokens = pending.tokens
        if tokens and tokens[-1].is_punct(';'):
            tokens = tokens[:-1]
        eq = _top_level_index(tokens, '=')
        head = tokens if eq is None else tokens[:eq]
        value = [] if eq is None else tokens[eq + 1:]
        colon = _top_level_index(head, ':')
        pending.signature = render(head)
        if pending.kind is DeclarationKind.TYPE_ALIAS:
            if value:
                pending.metadata['aliased_type'] = render(value)
            if colon is not None:
                pending.metadata['bounds'] = render(head[colon + 1:])
        elif colon is not None:
            pending.metadata['value_type'] = render(head[colon + 1:])
        pending.tokens = []

    def _abandon(self, pending: _Pending, reason: str) -> None:
        if pending.finalized or pending.abandoned:
            return
        pending.abandoned = True
        if pending in self._open:
            self._open.remove(pending)
        if pending in self._capturing:
            self._capturing.remove(pending)
        last = pending.tokens[-1] if pending.tokens else pending.start
        label = f"{pending.kind.value} '{pending.name}'" if pending.name else str(pending.kind.value)
        self.diagnostics.warning(
            DiagnosticCode.INCOMPLETE_DECLARATION,
            f"Incomplete {label} dropped: {reason}",
            Span.between(pending.start, last),
        )

    def _abandon_deeper(self, depth: int) -> None:
        for pending in reversed(list(self._open)):
            if pending.depth > depth:
                self._abandon(pending, "enclosing scope closed first")

    def _slice(self, first: Token, last: Token) -> str:
        return self._data[first.start:last.end].decode('utf-8', 'surrogateescape')

    # --------------------------------------------------------------------------
    # Output
    # --------------------------------------------------------------------------

    def flush(self, builder: GraphBuilder) -> None:
        """
        Hand every completed declaration and invocation to the builder.

        Declarations that never completed are skipped together with
        everything nested inside them.
        """
        declarations: List[Declaration] = []
        for pending in self._pending:
            if not pending.finalized or pending.abandoned:
                continue
            if pending.parent is not None and pending.parent.id is None:
                continue
            pending.id = len(declarations)
            declarations.append(self._to_declaration(pending))

        invocations = [
            MacroInvocation(
                name=inv.name,
                path=inv.path,
                span=inv.span,
                scope_path=inv.scope_path,
                owner_id=inv.owner.id if inv.owner else None,
            )
            for inv in self._invocations
            if inv.owner is None or inv.owner.id is not None
        ]

        for item in heapq.merge(declarations, invocations, key=lambda x: x.span.start):
            if isinstance(item, Declaration):
                builder.add_declaration(item)
            else:
                builder.add_invocation(item)
        for item in self._imports:
            builder.add_import(item)

    def _to_declaration(self, pending: _Pending) -> Declaration:
        span = Span.between(pending.start, pending.end)
        metadata = dict(pending.metadata)
        if self.options.include_snippets:
            snippet = self._data[span.start:span.end].decode('utf-8', 'surrogateescape')
            metadata['snippet'] = snippet[:self.options.max_snippet_chars]
        docs = pending.docs + pending.inner_docs
        return Declaration(
            id=pending.id,
            name=pending.name,
            kind=pending.kind,
            scope_path=pending.scope_path,
            span=span,
            visibility=pending.visibility,
            generics=pending.generics,
            doc='\n'.join(docs) if docs else None,
            impl_type=pending.impl_type,
            impl_trait=pending.impl_trait,
            parent_id=pending.parent.id if pending.parent else None,
            attributes=tuple(pending.attributes),
            modifiers=tuple(pending.modifiers),
            signature=pending.signature,
            metadata=metadata,
        )
