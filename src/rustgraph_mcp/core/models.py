"""
Core data models for RustGraph MCP.

This module defines the data structures produced by the structural parser:
tokens, declarations, edges, diagnostics and the per-file ``FileGraph``
result that downstream indexers consume.

All models are designed for:
- Immutability (frozen dataclasses, tuples instead of lists)
- Serialization (JSON-compatible via to_dict/from_dict)
- Determinism (equal input bytes produce equal models)
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union


class _ValueEnum(Enum):
    """Enum base that serializes to, and parses from, its string value."""

    def __str__(self) -> str:
        """String representation for serialization."""
        return self.value

    @classmethod
    def from_string(cls, value: str):
        """
        Create an enum member from its string value.

        Args:
            value: String representation (case-insensitive)

        Returns:
            Enum member

        Raises:
            ValueError: If value doesn't match any member
        """
        for member in cls:
            if member.value == value.lower():
                return member
        raise ValueError(f"Invalid {cls.__name__}: {value}")


class TokenKind(_ValueEnum):
    """Lexical categories emitted by the scanner."""
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    LIFETIME = "lifetime"
    LITERAL = "literal"
    PUNCTUATION = "punctuation"
    COMMENT = "comment"
    DOC_COMMENT = "doc_comment"
    INNER_DOC_COMMENT = "inner_doc_comment"


class DeclarationKind(_ValueEnum):
    """
    Closed set of declaration shapes the recognizer can emit.

    Attributes:
        MODULE: ``mod name { ... }`` or ``mod name;``
        STRUCT: ``struct``/``union`` items (record, tuple and unit forms)
        ENUM: ``enum`` items
        TRAIT: ``trait`` items
        IMPL: inherent and trait ``impl`` blocks
        FUNCTION: ``fn`` items, with or without a body
        TYPE_ALIAS: ``type`` items, including associated types
        CONST: ``const`` items
        MACRO: ``macro_rules!`` definitions
        STATIC: ``static`` items
    """
    MODULE = "module"
    STRUCT = "struct"
    ENUM = "enum"
    TRAIT = "trait"
    IMPL = "impl"
    FUNCTION = "function"
    TYPE_ALIAS = "type_alias"
    CONST = "const"
    MACRO = "macro"
    STATIC = "static"


class Visibility(_ValueEnum):
    """Declared visibility: ``pub``, restricted ``pub(...)``, or none."""
    PRIVATE = "private"
    CRATE = "crate"
    PUBLIC = "public"


class GenericParamKind(_ValueEnum):
    """Kinds of generic parameters."""
    LIFETIME = "lifetime"
    TYPE = "type"
    CONST = "const"


class EdgeKind(_ValueEnum):
    """Typed relations recorded between declarations."""
    CONTAINS = "contains"
    IMPLEMENTS = "implements"
    INVOKES_MACRO = "invokes-macro"


class Severity(_ValueEnum):
    """Diagnostic severity."""
    WARNING = "warning"
    ERROR = "error"


class DiagnosticCode(_ValueEnum):
    """Machine-readable diagnostic categories."""
    LEX_ERROR = "lex-error"
    SCOPE_IMBALANCE = "scope-imbalance"
    DELIMITER_MISMATCH = "delimiter-mismatch"
    UNRECOGNIZED_CONSTRUCT = "unrecognized-construct"
    UNRESOLVED_REFERENCE = "unresolved-reference"
    INVALID_ENCODING = "invalid-encoding"
    INCOMPLETE_DECLARATION = "incomplete-declaration"


@dataclass(frozen=True)
class Token:
    """
    A single lexeme produced by the scanner.

    Attributes:
        kind: Lexical category
        text: Raw source text of the token
        start: Byte offset of the first byte (inclusive)
        end: Byte offset after the last byte (exclusive)
        line: 1-based line of the first character
        column: 1-based column of the first character
    """
    kind: TokenKind
    text: str
    start: int
    end: int
    line: int
    column: int

    def is_punct(self, *texts: str) -> bool:
        """Check if this is a punctuation token with one of the given texts."""
        return self.kind is TokenKind.PUNCTUATION and self.text in texts

    def is_keyword(self, *texts: str) -> bool:
        """Check if this is a keyword token with one of the given texts."""
        return self.kind is TokenKind.KEYWORD and self.text in texts


@dataclass(frozen=True)
class Span:
    """
    Half-open byte range with line/column bookkeeping.

    Attributes:
        start: Byte offset of the first byte (inclusive)
        end: Byte offset after the last byte (exclusive)
        start_line: 1-based line of ``start``
        start_column: 1-based column of ``start``
        end_line: 1-based line of the last character
        end_column: 1-based column after the last character
    """
    start: int
    end: int
    start_line: int = 1
    start_column: int = 1
    end_line: int = 1
    end_column: int = 1

    def __post_init__(self):
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")

    @classmethod
    def between(cls, first: Token, last: Token) -> 'Span':
        """Build a span covering ``first`` through ``last`` inclusive."""
        end_line = last.line + last.text.count("\n")
        if "\n" in last.text:
            end_column = len(last.text) - last.text.rfind("\n")
        else:
            end_column = last.column + len(last.text)
        return cls(
            start=first.start,
            end=last.end,
            start_line=first.line,
            start_column=first.column,
            end_line=end_line,
            end_column=end_column,
        )

    @property
    def length(self) -> int:
        """Number of bytes covered."""
        return self.end - self.start

    def contains(self, other: 'Span') -> bool:
        """Check whether ``other`` lies entirely within this span."""
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: 'Span') -> bool:
        """Check whether the two spans share at least one byte."""
        return self.start < other.end and other.start < self.end

    def slice(self, source: Union[str, bytes]) -> bytes:
        """Return the bytes of ``source`` covered by this span."""
        if isinstance(source, str):
            source = source.encode("utf-8", "surrogateescape")
        return source[self.start:self.end]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Span':
        return cls(**data)


@dataclass(frozen=True)
class GenericParam:
    """
    One entry of a generic parameter list, parsed shallowly.

    Attributes:
        name: Parameter name (``T``, ``'a``, ``N``)
        kind: Lifetime, type or const parameter
        bound: Raw text after ``:`` (unvalidated), if any
        default: Raw text after ``=``, if any
    """
    name: str
    kind: GenericParamKind = GenericParamKind.TYPE
    bound: Optional[str] = None
    default: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['kind'] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GenericParam':
        data = data.copy()
        if isinstance(data.get('kind'), str):
            data['kind'] = GenericParamKind.from_string(data['kind'])
        return cls(**data)


@dataclass(frozen=True)
class Declaration:
    """
    A recognized declaration.

    This is the central record of the model: every module, type, trait,
    impl block, function, alias, constant, static and macro definition in a
    file becomes one Declaration, owned by the file's graph.

    Attributes:
        id: Position of the declaration in source order within its file
        name: Declared name (for impl blocks: base name of the target type)
        kind: Declaration kind
        scope_path: Names of the enclosing named scopes, outermost first
        span: Bytes covered by the whole declaration including its body
        visibility: Declared visibility
        generics: Generic parameters in declaration order
        doc: Attached doc comment text, joined in source order
        impl_type: Raw target type text (impl blocks only)
        impl_trait: Raw trait text (trait impls only)
        parent_id: Id of the enclosing declaration, None for the file root
        attributes: Raw ``#[...]`` attribute texts in source order
        modifiers: Qualifiers such as ``async``, ``unsafe``, ``mut``
        signature: Header text up to (not including) the body
        metadata: Kind-specific extras (derives, where clause, ...)
    """
    id: int
    name: str
    kind: DeclarationKind
    scope_path: Tuple[str, ...]
    span: Span
    visibility: Visibility = Visibility.PRIVATE
    generics: Tuple[GenericParam, ...] = ()
    doc: Optional[str] = None
    impl_type: Optional[str] = None
    impl_trait: Optional[str] = None
    parent_id: Optional[int] = None
    attributes: Tuple[str, ...] = ()
    modifiers: Tuple[str, ...] = ()
    signature: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """
        Validate declaration data after initialization.

        Raises:
            ValueError: If any validation constraint is violated
        """
        if not self.name:
            raise ValueError("Declaration name cannot be empty")
        if self.id < 0:
            raise ValueError(f"id must be >= 0, got {self.id}")
        if not isinstance(self.kind, DeclarationKind):
            raise ValueError(f"kind must be DeclarationKind enum, got {type(self.kind)}")
        if self.kind is not DeclarationKind.IMPL and (self.impl_type or self.impl_trait):
            raise ValueError(f"impl_type/impl_trait only apply to impl blocks, not {self.kind}")

    @property
    def qualified_name(self) -> str:
        """
        Fully qualified name built from the scope path.

        Returns:
            Name such as ``graphics::shapes::Circle``
        """
        return "::".join(self.scope_path + (self.name,))

    @property
    def line_count(self) -> int:
        """Number of source lines covered (inclusive)."""
        return self.span.end_line - self.span.start_line + 1

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert Declaration to dictionary for serialization.

        Returns:
            Dictionary representation with all fields
        """
        return {
            'id': self.id,
            'name': self.name,
            'kind': self.kind.value,
            'scope_path': list(self.scope_path),
            'span': self.span.to_dict(),
            'visibility': self.visibility.value,
            'generics': [g.to_dict() for g in self.generics],
            'doc': self.doc,
            'impl_type': self.impl_type,
            'impl_trait': self.impl_trait,
            'parent_id': self.parent_id,
            'attributes': list(self.attributes),
            'modifiers': list(self.modifiers),
            'signature': self.signature,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Declaration':
        """
        Create Declaration from dictionary.

        Args:
            data: Dictionary produced by ``to_dict``

        Returns:
            Declaration instance

        Raises:
            ValueError: If required fields are missing or invalid
        """
        data = data.copy()
        data['kind'] = DeclarationKind.from_string(data['kind'])
        data['visibility'] = Visibility.from_string(data.get('visibility', 'private'))
        data['scope_path'] = tuple(data.get('scope_path', ()))
        data['span'] = Span.from_dict(data['span'])
        data['generics'] = tuple(GenericParam.from_dict(g) for g in data.get('generics', ()))
        data['attributes'] = tuple(data.get('attributes', ()))
        data['modifiers'] = tuple(data.get('modifiers', ()))
        return cls(**data)


@dataclass(frozen=True)
class Edge:
    """
    A typed relation between declarations.

    Attributes:
        kind: contains, implements or invokes-macro
        source_id: Declaration id of the source, None for the file root
        source_name: Name of the source side
        target_name: Name of the target side (possibly unresolved)
        target_id: Resolved declaration id, None for dangling references
        role: ``trait`` or ``type`` for implements edges
        span: Call site for invokes-macro edges

    Both implements edges start at the impl block, so ``source_id`` is the
    impl's id for either role. For role ``type`` ``source_name`` is the impl
    block's own name; for role ``trait`` it is the base name of the
    implementing type, so the edge reads "Circle implements Shape".
    """
    kind: EdgeKind
    source_id: Optional[int]
    source_name: str
    target_name: str
    target_id: Optional[int] = None
    role: Optional[str] = None
    span: Optional[Span] = None

    @property
    def is_resolved(self) -> bool:
        return self.target_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'source_id': self.source_id,
            'source_name': self.source_name,
            'target_name': self.target_name,
            'target_id': self.target_id,
            'role': self.role,
            'span': self.span.to_dict() if self.span else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Edge':
        data = data.copy()
        data['kind'] = EdgeKind.from_string(data['kind'])
        if data.get('span') is not None:
            data['span'] = Span.from_dict(data['span'])
        return cls(**data)


@dataclass(frozen=True)
class Diagnostic:
    """
    A parse anomaly recorded without halting the pass.

    Attributes:
        severity: Warning or error
        code: Diagnostic category
        message: Human-readable description
        span: Location, if known
        fatal: True when the anomaly ended the file pass early
    """
    severity: Severity
    code: DiagnosticCode
    message: str
    span: Optional[Span] = None
    fatal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'severity': self.severity.value,
            'code': self.code.value,
            'message': self.message,
            'span': self.span.to_dict() if self.span else None,
            'fatal': self.fatal,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Diagnostic':
        data = data.copy()
        data['severity'] = Severity.from_string(data['severity'])
        data['code'] = DiagnosticCode.from_string(data['code'])
        if data.get('span') is not None:
            data['span'] = Span.from_dict(data['span'])
        return cls(**data)


@dataclass(frozen=True)
class MacroInvocation:
    """
    A ``name!(...)`` call site.

    Attributes:
        name: Macro name (last path segment)
        path: Full path text as written (``std::println``)
        span: Bytes of the path and the ``!``
        scope_path: Named scopes enclosing the call site
        owner_id: Innermost enclosing declaration id, None for the file root
    """
    name: str
    path: str
    span: Span
    scope_path: Tuple[str, ...] = ()
    owner_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'path': self.path,
            'span': self.span.to_dict(),
            'scope_path': list(self.scope_path),
            'owner_id': self.owner_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MacroInvocation':
        data = data.copy()
        data['span'] = Span.from_dict(data['span'])
        data['scope_path'] = tuple(data.get('scope_path', ()))
        return cls(**data)


@dataclass(frozen=True)
class Import:
    """
    A ``use`` or ``extern crate`` item, recorded but not resolved.

    Attributes:
        path: Rendered path text (``std::sync::{Arc, Mutex}``)
        span: Bytes of the whole item
        scope_path: Named scopes enclosing the item
        visibility: Declared visibility (``pub use`` re-exports are public)
        extern_crate: True for ``extern crate`` items
    """
    path: str
    span: Span
    scope_path: Tuple[str, ...] = ()
    visibility: Visibility = Visibility.PRIVATE
    extern_crate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'span': self.span.to_dict(),
            'scope_path': list(self.scope_path),
            'visibility': self.visibility.value,
            'extern_crate': self.extern_crate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Import':
        data = data.copy()
        data['span'] = Span.from_dict(data['span'])
        data['scope_path'] = tuple(data.get('scope_path', ()))
        data['visibility'] = Visibility.from_string(data.get('visibility', 'private'))
        return cls(**data)


ScopePathLike = Union[str, Sequence[str]]


def normalize_scope_path(path: ScopePathLike) -> Tuple[str, ...]:
    """
    Normalize a scope path given as ``"a::b"`` or a sequence of names.

    Args:
        path: Path string or sequence

    Returns:
        Tuple of path segments (empty for the file root)
    """
    if isinstance(path, str):
        return tuple(part for part in path.split("::") if part)
    return tuple(path)


class SymbolTable:
    """
    Multi-map from ``(scope_path, name)`` to declarations.

    Colliding keys keep every declaration in insertion order, because a
    type's methods can be spread across several impl blocks. The table
    becomes read-only once frozen.
    """

    def __init__(self):
        self._entries: Dict[Tuple[Tuple[str, ...], str], List[Declaration]] = {}
        self._by_id: Dict[int, Declaration] = {}
        self._by_name: Dict[str, List[Declaration]] = {}
        self._order: List[Declaration] = []
        self._frozen = False

    @classmethod
    def from_declarations(cls, declarations: Sequence[Declaration]) -> 'SymbolTable':
        table = cls()
        for declaration in declarations:
            table.insert(declaration)
        table.freeze()
        return table

    def insert(self, declaration: Declaration) -> None:
        """
        Add a declaration under its scope path and name.

        Raises:
            RuntimeError: If the table has been frozen
            ValueError: If the id is already present
        """
        if self._frozen:
            raise RuntimeError("SymbolTable is read-only")
        if declaration.id in self._by_id:
            raise ValueError(f"Duplicate declaration id: {declaration.id}")
        key = (declaration.scope_path, declaration.name)
        self._entries.setdefault(key, []).append(declaration)
        self._by_name.setdefault(declaration.name, []).append(declaration)
        self._by_id[declaration.id] = declaration
        self._order.append(declaration)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, scope_path: ScopePathLike, name: str) -> List[Declaration]:
        """Return every declaration named ``name`` directly in ``scope_path``."""
        return list(self._entries.get((normalize_scope_path(scope_path), name), ()))

    def find(self, name: str, kind: Optional[DeclarationKind] = None) -> List[Declaration]:
        """Return declarations named ``name`` anywhere, optionally of one kind."""
        found = self._by_name.get(name, ())
        return [d for d in found if kind is None or d.kind is kind]

    def get(self, declaration_id: int) -> Optional[Declaration]:
        return self._by_id.get(declaration_id)

    def keys(self) -> List[Tuple[Tuple[str, ...], str]]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Declaration]:
        return iter(list(self._order))

    def __contains__(self, key: Tuple[ScopePathLike, str]) -> bool:
        scope_path, name = key
        return (normalize_scope_path(scope_path), name) in self._entries


@dataclass(frozen=True)
class ParseOptions:
    """
    Per-call parser options.

    Attributes:
        include_snippets: Store each declaration's source text in
            ``metadata["snippet"]``
        max_snippet_chars: Truncation limit for snippets
        report_unresolved: Emit unresolved-reference warnings for dangling
            implements/invokes-macro edges
        keep_comments: Have the scanner emit plain comment tokens
    """
    include_snippets: bool = False
    max_snippet_chars: int = 4000
    report_unresolved: bool = True
    keep_comments: bool = False

    def __post_init__(self):
        if self.max_snippet_chars < 1:
            raise ValueError(f"max_snippet_chars must be >= 1, got {self.max_snippet_chars}")


@dataclass(frozen=True)
class FileGraph:
    """
    The per-file parse result.

    Holds the declarations in source order, the edge lists, recorded macro
    invocations and imports, and every diagnostic. A FileGraph is returned
    even when a fatal error stopped the pass; in that case it contains the
    declarations that were complete before the failure.

    Attributes:
        file_id: Path or logical name of the parsed file
        language: Always ``"rust"``
        declarations: Declarations in source order (ids match positions)
        edges: contains, implements and invokes-macro edges
        diagnostics: Recorded anomalies in the order they were found
        invocations: Macro call sites in source order
        imports: ``use``/``extern crate`` items in source order
        file_doc: Inner doc comment text at file level
        parse_time: Seconds spent parsing (excluded from equality)
        error: Message of the fatal diagnostic, None if the pass completed
    """
    file_id: str
    language: str = "rust"
    declarations: Tuple[Declaration, ...] = ()
    edges: Tuple[Edge, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()
    invocations: Tuple[MacroInvocation, ...] = ()
    imports: Tuple[Import, ...] = ()
    file_doc: Optional[str] = None
    parse_time: float = field(default=0.0, compare=False)
    error: Optional[str] = None
    symbols: Optional[SymbolTable] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        """
        Validate the result and build the symbol table if none was given.

        Raises:
            ValueError: If validation fails
        """
        if not self.file_id:
            raise ValueError("FileGraph file_id cannot be empty")
        if self.parse_time < 0:
            raise ValueError(f"parse_time must be >= 0, got {self.parse_time}")
        if self.symbols is None:
            object.__setattr__(self, 'symbols', SymbolTable.from_declarations(self.declarations))

    @property
    def is_successful(self) -> bool:
        """True if no fatal diagnostic was recorded."""
        return self.error is None

    @property
    def fatal(self) -> Optional[Diagnostic]:
        """The fatal diagnostic, if the pass was cut short."""
        for diagnostic in self.diagnostics:
            if diagnostic.fatal:
                return diagnostic
        return None

    @property
    def declaration_count(self) -> int:
        return len(self.declarations)

    def get(self, declaration_id: int) -> Optional[Declaration]:
        return self.symbols.get(declaration_id)

    def lookup(self, scope_path: ScopePathLike, name: str) -> List[Declaration]:
        """Multi-map lookup by scope path and name."""
        return self.symbols.lookup(scope_path, name)

    def find(self, name: str, kind: Optional[DeclarationKind] = None) -> List[Declaration]:
        return self.symbols.find(name, kind)

    def children(self, declaration_id: Optional[int]) -> List[Declaration]:
        """
        Direct children of a declaration, in source order.

        Args:
            declaration_id: Parent id, or None for the file root

        Returns:
            List of child declarations
        """
        return [d for d in self.declarations if d.parent_id == declaration_id]

    def parent(self, declaration_id: int) -> Optional[Declaration]:
        declaration = self.get(declaration_id)
        if declaration is None or declaration.parent_id is None:
            return None
        return self.get(declaration.parent_id)

    def declarations_of(self, kind: DeclarationKind) -> List[Declaration]:
        return [d for d in self.declarations if d.kind is kind]

    def edges_of(self, kind: EdgeKind) -> List[Edge]:
        return [e for e in self.edges if e.kind is kind]

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert FileGraph to dictionary for serialization.

        Returns:
            Dictionary representation
        """
        return {
            'file_id': self.file_id,
            'language': self.language,
            'declarations': [d.to_dict() for d in self.declarations],
            'edges': [e.to_dict() for e in self.edges],
            'diagnostics': [d.to_dict() for d in self.diagnostics],
            'invocations': [i.to_dict() for i in self.invocations],
            'imports': [i.to_dict() for i in self.imports],
            'file_doc': self.file_doc,
            'parse_time': self.parse_time,
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileGraph':
        """
        Create FileGraph from dictionary.

        Args:
            data: Dictionary produced by ``to_dict``

        Returns:
            FileGraph instance
        """
        data = data.copy()
        data.pop('symbols', None)
        data['declarations'] = tuple(Declaration.from_dict(d) for d in data.get('declarations', ()))
        data['edges'] = tuple(Edge.from_dict(e) for e in data.get('edges', ()))
        data['diagnostics'] = tuple(Diagnostic.from_dict(d) for d in data.get('diagnostics', ()))
        data['invocations'] = tuple(MacroInvocation.from_dict(i) for i in data.get('invocations', ()))
        data['imports'] = tuple(Import.from_dict(i) for i in data.get('imports', ()))
        return cls(**data)
