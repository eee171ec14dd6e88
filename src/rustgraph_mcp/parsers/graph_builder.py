"""
Graph builder: turns finalized declarations into a read-only FileGraph.

Declarations and macro invocations arrive merged in source order. Each
declaration is inserted into the multi-map symbol table and gets exactly one
``contains`` edge from its parent (or the file root). Macro invocations are
linked to a ``macro_rules!`` definition only if one with the same name has
already been built, i.e. appears earlier in the file. ``implements`` edges
are resolved at ``build()`` time against the whole file, by base name.
Anything left unresolved stays as a dangling edge for a cross-file resolver.
"""

import logging
import re
from typing import Dict, List, Optional

from rustgraph_mcp.core.models import (
    Declaration,
    DeclarationKind,
    DiagnosticCode,
    Edge,
    EdgeKind,
    FileGraph,
    Import,
    MacroInvocation,
    ParseOptions,
    SymbolTable,
)
from rustgraph_mcp.parsers.diagnostics import DiagnosticsCollector
from rustgraph_mcp.parsers.language_configs import IMPL_TARGET_KINDS

logger = logging.getLogger(__name__)

_TYPE_PREFIX = re.compile(r"^(?:&+|\*\s*(?:const|mut)\b|'\w+|mut\b|dyn\b|impl\b|!|\s)+")
_TYPE_PATH = re.compile(r"^(?:::)?\s*((?:r#)?\w+(?:\s*::\s*(?:r#)?\w+)*)")


def base_name(type_text: str) -> str:
    """
    Reduce a raw type or trait text to its base name.

    Strips references, pointers, lifetimes, ``dyn``/``impl``, the path prefix
    and generic arguments.

    Examples:
        >>> base_name("&'a mut std::vec::Vec<T>")
        'Vec'
        >>> base_name("Iterator<Item = u32>")
        'Iterator'
        >>> base_name("[T]")
        '[T]'
    """
    text = _TYPE_PREFIX.sub("", type_text.strip())
    match = _TYPE_PATH.match(text)
    if not match:
        return type_text.strip()
    last = re.split(r"\s*::\s*", match.group(1))[-1]
    return last[2:] if last.startswith("r#") else last


class GraphBuilder:
    """
    Incremental builder for one file's graph.

    Attributes:
        file_id: File being built
        diagnostics: Collector receiving unresolved-reference warnings
        options: Parse options (``report_unresolved``)
    """

    def __init__(
        self,
        file_id: str,
        diagnostics: DiagnosticsCollector,
        options: Optional[ParseOptions] = None,
    ):
        self.file_id = file_id
        self.diagnostics = diagnostics
        self.options = options or ParseOptions()
        self.symbols = SymbolTable()
        self._declarations: List[Declaration] = []
        self._edges: List[Edge] = []
        self._invocations: List[MacroInvocation] = []
        self._imports: List[Import] = []
        self._macros: Dict[str, Declaration] = {}
        self._built = False

    def _check_open(self) -> None:
        if self._built:
            raise RuntimeError(f"Graph for {self.file_id} has already been built")

    def add_declaration(self, declaration: Declaration) -> None:
        """
        Insert a finalized declaration.

        Raises:
            ValueError: If ids are not dense and in order, or the parent has
                not been added yet
        """
        self._check_open()
        if declaration.id != len(self._declarations):
            raise ValueError(
                f"Declaration ids must be assigned in order: expected {len(self._declarations)}, "
                f"got {declaration.id}"
            )
        if declaration.parent_id is not None and self.symbols.get(declaration.parent_id) is None:
            raise ValueError(f"Parent {declaration.parent_id} of {declaration.name} is unknown")

        self.symbols.insert(declaration)
        self._declarations.append(declaration)

        parent = self.symbols.get(declaration.parent_id) if declaration.parent_id is not None else None
        self._edges.append(Edge(
            kind=EdgeKind.CONTAINS,
            source_id=declaration.parent_id,
            source_name=parent.name if parent else self.file_id,
            target_name=declaration.name,
            target_id=declaration.id,
        ))

        if declaration.kind is DeclarationKind.MACRO:
            # Later definitions shadow earlier ones
            self._macros[declaration.name] = declaration

    def add_invocation(self, invocation: MacroInvocation) -> None:
        """Record a macro call site and link it to an earlier definition."""
        self._check_open()
        self._invocations.append(invocation)

        owner = self.symbols.get(invocation.owner_id) if invocation.owner_id is not None else None
        target = self._macros.get(invocation.name)
        self._edges.append(Edge(
            kind=EdgeKind.INVOKES_MACRO,
            source_id=invocation.owner_id,
            source_name=owner.name if owner else self.file_id,
            target_name=invocation.name,
            target_id=target.id if target else None,
            span=invocation.span,
        ))
        if target is None and self.options.report_unresolved:
            self.diagnostics.warning(
                DiagnosticCode.UNRESOLVED_REFERENCE,
                f"Macro '{invocation.path}!' is not defined earlier in this file",
                invocation.span,
            )

    def add_import(self, item: Import) -> None:
        self._check_open()
        self._imports.append(item)

    def _resolve(self, name: str, kinds) -> Optional[Declaration]:
        for declaration in self.symbols.find(name):
            if declaration.kind in kinds:
                return declaration
        return None

    def _implements_edges(self) -> List[Edge]:
        edges = []
        for impl in self._declarations:
            if impl.kind is not DeclarationKind.IMPL:
                continue
            type_name = base_name(impl.impl_type or impl.name)
            target = self._resolve(type_name, IMPL_TARGET_KINDS)
            edges.append(Edge(
                kind=EdgeKind.IMPLEMENTS,
                source_id=impl.id,
                source_name=impl.name,
                target_name=impl.impl_type or impl.name,
                target_id=target.id if target else None,
                role="type",
            ))
            self._report_dangling("Type", impl.impl_type or impl.name, target, impl)

            if impl.impl_trait:
                # Sourced on the impl block but named after the implementing type
                trait = self._resolve(base_name(impl.impl_trait), {DeclarationKind.TRAIT})
                edges.append(Edge(
                    kind=EdgeKind.IMPLEMENTS,
                    source_id=impl.id,
                    source_name=type_name,
                    target_name=impl.impl_trait,
                    target_id=trait.id if trait else None,
                    role="trait",
                ))
                self._report_dangling("Trait", impl.impl_trait, trait, impl)
        return edges

    def _report_dangling(self, what: str, name: str, target: Optional[Declaration], impl: Declaration) -> None:
        if target is None and self.options.report_unresolved:
            self.diagnostics.warning(
                DiagnosticCode.UNRESOLVED_REFERENCE,
                f"{what} '{name}' of impl at line {impl.span.start_line} is not declared in this file",
                impl.span,
            )

    def build(
        self,
        file_doc: Optional[str] = None,
        parse_time: float = 0.0,
        error: Optional[str] = None,
    ) -> FileGraph:
        """
        Freeze everything into a read-only FileGraph.

        Args:
            file_doc: Inner doc comment text at file level
            parse_time: Seconds spent parsing
            error: Fatal diagnostic message, if the pass was cut short

        Returns:
            FileGraph sharing this builder's (now frozen) symbol table
        """
        self._check_open()
        self._edges.extend(self._implements_edges())
        self._built = True
        self.symbols.freeze()

        logger.debug(
            f"Built graph for {self.file_id}: {len(self._declarations)} declarations, "
            f"{len(self._edges)} edges, {len(self._invocations)} macro invocations"
        )
        return FileGraph(
            file_id=self.file_id,
            declarations=tuple(self._declarations),
            edges=tuple(self._edges),
            diagnostics=self.diagnostics.diagnostics,
            invocations=tuple(self._invocations),
            imports=tuple(self._imports),
            file_doc=file_doc,
            parse_time=parse_time,
            error=error,
            symbols=self.symbols,
        )
