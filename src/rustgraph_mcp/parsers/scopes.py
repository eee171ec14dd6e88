"""
Scope tracker for the structural parser.

Keeps one stack of open delimiters (``{``, ``(``, ``[``). Delimiter
balance is counted independently of keyword recognition, so blocks the
recognizer does not understand still balance. The recognizer announces what
the next opener means (a module body, an opaque struct body, ...) through
``expect()``; any opener without an announcement becomes an anonymous block
that inherits its parent's settings.

A closer that skips over inner openers closes through to its match with a
``delimiter-mismatch`` error. A closer with no opener at all leaves the
count negative, which ``finish()`` reports as a ``ScopeImbalanceError``
just like openers left unclosed.

Frame flags:
    items: Item declarations may start inside this frame (``{`` only)
    strict: Only items may appear here (file, module, impl, trait, extern
        block); anything else is an unrecognized construct
    opaque: Balanced but never searched for items; inherited by children
    macros: Macro invocations are recorded (off inside ``macro_rules!``)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from rustgraph_mcp.core.exceptions import ScopeImbalanceError
from rustgraph_mcp.core.models import DiagnosticCode, Span, Token
from rustgraph_mcp.parsers.diagnostics import DiagnosticsCollector
from rustgraph_mcp.parsers.language_configs import CLOSERS, OPENERS

logger = logging.getLogger(__name__)


class ScopeKind(Enum):
    FILE = "file"
    MODULE = "module"
    IMPL = "impl"
    TRAIT = "trait"
    FUNCTION = "function"
    BLOCK = "block"


@dataclass
class Scope:
    """
    One open delimiter range.

    Attributes:
        kind: What the range belongs to
        path: Named scope path of everything declared inside
        opener: Opening token (None for the file root)
        owner: Declaration whose body this is, if any
    """
    kind: ScopeKind
    path: Tuple[str, ...]
    opener: Optional[Token] = None
    owner: Any = None
    items: bool = True
    strict: bool = False
    opaque: bool = False
    macros: bool = True

    @property
    def delimiter(self) -> Optional[str]:
        return self.opener.text if self.opener else None


@dataclass
class _Expectation:
    kind: ScopeKind
    segment: Optional[str]
    owner: Any
    strict: bool
    opaque: bool
    macros: Optional[bool]


class ScopeTracker:
    """
    Counting stack of open delimiters.

    The bottom frame is the file root and is never popped.
    """

    def __init__(self, diagnostics: DiagnosticsCollector, file_id: str = "<source>"):
        self.diagnostics = diagnostics
        self.file_id = file_id
        self._stack: List[Scope] = [Scope(ScopeKind.FILE, (), strict=True)]
        self._expected: Optional[_Expectation] = None
        self._unmatched: List[Token] = []

    @property
    def current(self) -> Scope:
        return self._stack[-1]

    @property
    def depth(self) -> int:
        """Number of open delimiters (0 at the file root)."""
        return len(self._stack) - 1

    @property
    def path(self) -> Tuple[str, ...]:
        return self.current.path

    @property
    def has_expectation(self) -> bool:
        return self._expected is not None

    def frames(self) -> List[Scope]:
        return list(self._stack)

    def expect(
        self,
        kind: ScopeKind = ScopeKind.BLOCK,
        segment: Optional[str] = None,
        owner: Any = None,
        strict: bool = False,
        opaque: bool = False,
        macros: Optional[bool] = None,
    ) -> None:
        """
        Describe the scope the next opening delimiter will open.

        Args:
            kind: Scope kind
            segment: Name appended to the scope path, None for anonymous
            owner: Declaration owning the scope
            strict: Only items may appear inside
            opaque: Never search for items inside
            macros: Record macro invocations inside (inherited when None)
        """
        self._expected = _Expectation(kind, segment, owner, strict, opaque, macros)

    def clear_expectation(self) -> None:
        self._expected = None

    def feed(self, token: Token) -> List[Scope]:
        """
        Update the stack for one token.

        Args:
            token: Next significant token

        Returns:
            Scopes closed by this token, innermost first (empty unless the
            token is a closing delimiter)
        """
        if token.text in OPENERS:
            self._open(token)
            return []
        if token.text in CLOSERS:
            return self._close(token)
        return []

    def _open(self, token: Token) -> None:
        parent = self.current
        expected, self._expected = self._expected, None
        if expected is None:
            expected = _Expectation(ScopeKind.BLOCK, None, None, False, False, None)

        opaque = expected.opaque or parent.opaque
        macros = parent.macros if expected.macros is None else (expected.macros and parent.macros)
        path = parent.path + (expected.segment,) if expected.segment else parent.path
        scope = Scope(
            kind=expected.kind,
            path=path,
            opener=token,
            owner=expected.owner,
            items=token.text == '{' and not opaque,
            strict=expected.strict and not opaque,
            opaque=opaque,
            macros=macros,
        )
        self._stack.append(scope)

    def _close(self, token: Token) -> List[Scope]:
        opener = CLOSERS[token.text]
        if self.current.delimiter == opener:
            return [self._stack.pop()]

        span = Span.between(token, token)
        for index in range(len(self._stack) - 1, 0, -1):
            if self._stack[index].delimiter == opener:
                inner = self._stack[index + 1:]
                unclosed = ", ".join(
                    f"'{s.delimiter}' (line {s.opener.line})" for s in reversed(inner)
                )
                self.diagnostics.error(
                    DiagnosticCode.DELIMITER_MISMATCH,
                    f"'{token.text}' closes {unclosed} before its own '{opener}'",
                    span,
                )
                closed = list(reversed(self._stack[index:]))
                del self._stack[index:]
                return closed

        # No opener anywhere on the stack: the count for this delimiter
        # has gone negative. The pass goes on and finish() reports it.
        logger.debug(f"{self.file_id}: unmatched '{token.text}' at line {token.line}")
        self._unmatched.append(token)
        return []

    @property
    def unmatched(self) -> List[Token]:
        """Closing delimiters that had no opener."""
        return list(self._unmatched)

    def finish(self) -> None:
        """
        Check that the delimiter count is back at zero at end of input.

        Raises:
            ScopeImbalanceError: If delimiters are still open, or a closing
                delimiter never had an opener
        """
        if self.depth:
            innermost = self._stack[-1].opener
            outermost = self._stack[1].opener
            logger.debug(f"{self.file_id}: {self.depth} delimiter(s) left open at end of input")
            raise ScopeImbalanceError(
                self.file_id,
                f"{self.depth} unclosed delimiter(s) at end of input; "
                f"'{outermost.text}' opened at line {outermost.line} never closed "
                f"(innermost '{innermost.text}' at line {innermost.line})",
                offset=outermost.start,
                line=outermost.line,
            )
        if self._unmatched:
            first = self._unmatched[0]
            raise ScopeImbalanceError(
                self.file_id,
                f"{len(self._unmatched)} unmatched closing delimiter(s); "
                f"'{first.text}' at line {first.line} has no opener",
                offset=first.start,
                line=first.line,
            )

    def imbalance_token(self) -> Optional[Token]:
        """
        Token an imbalance error points at.

        The outermost still-open opener, else the first unmatched closer.
        """
        if self.depth:
            return self._stack[1].opener
        return self._unmatched[0] if self._unmatched else None
