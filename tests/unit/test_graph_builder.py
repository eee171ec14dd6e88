"""Unit tests for GraphBuilder and base-name resolution."""
import pytest
from rustgraph_mcp.core.models import (
    Declaration,
    DeclarationKind,
    DiagnosticCode,
    EdgeKind,
    Import,
    MacroInvocation,
    ParseOptions,
    Span,
)
from rustgraph_mcp.parsers.diagnostics import DiagnosticsCollector
from rustgraph_mcp.parsers.graph_builder import GraphBuilder, base_name


def decl(id, name, kind=DeclarationKind.FUNCTION, parent_id=None, scope_path=(), **kwargs):
    return Declaration(
        id=id,
        name=name,
        kind=kind,
        scope_path=scope_path,
        span=Span(id * 10, id * 10 + 5),
        parent_id=parent_id,
        **kwargs,
    )


def invocation(name, at, owner_id=None):
    return MacroInvocation(name=name, path=name, span=Span(at, at + len(name) + 1), owner_id=owner_id)


@pytest.fixture
def diagnostics():
    return DiagnosticsCollector("lib.rs")


@pytest.fixture
def builder(diagnostics):
    return GraphBuilder("lib.rs", diagnostics)


class TestBaseName:

    @pytest.mark.parametrize("text,expected", [
        ("Circle", "Circle"),
        ("&'a mut std::vec::Vec<T>", "Vec"),
        ("Iterator<Item = u32>", "Iterator"),
        ("dyn Fn(u32) -> u32", "Fn"),
        ("*const Node", "Node"),
        ("::std::fmt::Display", "Display"),
        ("r#type", "type"),
        ("[T]", "[T]"),
    ])
    def test_base_name(self, text, expected):
        assert base_name(text) == expected


class TestDeclarations:

    def test_ids_must_be_dense(self, builder):
        with pytest.raises(ValueError, match="in order"):
            builder.add_declaration(decl(1, "f"))

    def test_parent_must_exist(self, builder):
        with pytest.raises(ValueError, match="unknown"):
            builder.add_declaration(decl(0, "f", parent_id=3))

    def test_contains_edges(self, builder):
        builder.add_declaration(decl(0, "m", DeclarationKind.MODULE))
        builder.add_declaration(decl(1, "f", parent_id=0, scope_path=("m",)))
        graph = builder.build()

        root_edge, child_edge = graph.edges_of(EdgeKind.CONTAINS)
        assert root_edge.source_id is None
        assert root_edge.source_name == "lib.rs"
        assert root_edge.target_id == 0
        assert child_edge.source_id == 0
        assert child_edge.source_name == "m"
        assert child_edge.target_name == "f"
        assert child_edge.target_id == 1

    def test_one_contains_edge_per_declaration(self, builder):
        for i, name in enumerate(["a", "b", "c"]):
            builder.add_declaration(decl(i, name))
        graph = builder.build()

        assert len(graph.edges_of(EdgeKind.CONTAINS)) == graph.declaration_count

    def test_symbol_table_is_multi_map(self, builder):
        builder.add_declaration(decl(0, "Counter", DeclarationKind.STRUCT))
        builder.add_declaration(decl(1, "Counter", DeclarationKind.IMPL, impl_type="Counter"))
        builder.add_declaration(decl(2, "Counter", DeclarationKind.IMPL, impl_type="Counter"))
        graph = builder.build()

        assert [d.id for d in graph.lookup((), "Counter")] == [0, 1, 2]


class TestImplementsEdges:

    def test_resolved_trait_impl(self, builder, diagnostics):
        builder.add_declaration(decl(0, "Circle", DeclarationKind.STRUCT))
        builder.add_declaration(decl(1, "Shape", DeclarationKind.TRAIT))
        builder.add_declaration(decl(
            2, "Circle", DeclarationKind.IMPL, impl_type="Circle", impl_trait="Shape",
        ))
        graph = builder.build()

        type_edge, trait_edge = graph.edges_of(EdgeKind.IMPLEMENTS)
        assert type_edge.role == "type"
        assert type_edge.source_id == 2
        assert type_edge.target_id == 0
        assert trait_edge.role == "trait"
        assert trait_edge.source_name == "Circle"
        assert trait_edge.target_name == "Shape"
        assert trait_edge.target_id == 1
        assert len(diagnostics) == 0

    def test_trait_edge_starts_at_impl_named_after_type(self, builder):
        builder.add_declaration(decl(
            0, "Wrapper<T>", DeclarationKind.IMPL, impl_type="Wrapper<T>", impl_trait="Shape",
        ))
        graph = builder.build()

        type_edge, trait_edge = graph.edges_of(EdgeKind.IMPLEMENTS)
        assert type_edge.source_id == trait_edge.source_id == 0
        assert type_edge.source_name == "Wrapper<T>"
        assert trait_edge.source_name == "Wrapper"

    def test_impl_resolves_against_later_declarations(self, builder):
        builder.add_declaration(decl(0, "Point", DeclarationKind.IMPL, impl_type="Point"))
        builder.add_declaration(decl(1, "Point", DeclarationKind.STRUCT))
        graph = builder.build()

        assert graph.edges_of(EdgeKind.IMPLEMENTS)[0].target_id == 1

    def test_impl_target_must_be_a_type(self, builder):
        builder.add_declaration(decl(0, "run", DeclarationKind.FUNCTION))
        builder.add_declaration(decl(1, "run", DeclarationKind.IMPL, impl_type="run"))
        graph = builder.build()

        assert not graph.edges_of(EdgeKind.IMPLEMENTS)[0].is_resolved

    def test_unresolved_edges_are_reported(self, builder, diagnostics):
        builder.add_declaration(decl(
            0, "Vec", DeclarationKind.IMPL, impl_type="Vec<u8>", impl_trait="fmt::Display",
        ))
        graph = builder.build()

        edges = graph.edges_of(EdgeKind.IMPLEMENTS)
        assert [e.target_name for e in edges] == ["Vec<u8>", "fmt::Display"]
        assert not any(e.is_resolved for e in edges)
        assert [d.code for d in graph.diagnostics] == [DiagnosticCode.UNRESOLVED_REFERENCE] * 2
        assert "Trait 'fmt::Display'" in graph.diagnostics[1].message

    def test_reporting_can_be_disabled(self, diagnostics):
        builder = GraphBuilder("lib.rs", diagnostics, ParseOptions(report_unresolved=False))
        builder.add_declaration(decl(0, "Vec", DeclarationKind.IMPL, impl_type="Vec<u8>"))
        builder.add_invocation(invocation("println", 20))
        graph = builder.build()

        assert graph.diagnostics == ()
        assert not any(e.is_resolved for e in graph.edges if e.kind is not EdgeKind.CONTAINS)


class TestMacroInvocations:

    def test_resolves_to_earlier_definition(self, builder):
        builder.add_declaration(decl(0, "square", DeclarationKind.MACRO))
        builder.add_declaration(decl(1, "main"))
        builder.add_invocation(invocation("square", 15, owner_id=1))
        graph = builder.build()

        edge = graph.edges_of(EdgeKind.INVOKES_MACRO)[0]
        assert edge.source_id == 1
        assert edge.source_name == "main"
        assert edge.target_id == 0
        assert edge.span == graph.invocations[0].span
        assert graph.diagnostics == ()

    def test_later_definition_does_not_resolve(self, builder, diagnostics):
        builder.add_invocation(invocation("square", 0))
        builder.add_declaration(decl(0, "square", DeclarationKind.MACRO))
        graph = builder.build()

        edge = graph.edges_of(EdgeKind.INVOKES_MACRO)[0]
        assert edge.source_name == "lib.rs"
        assert edge.target_id is None
        assert diagnostics.diagnostics[0].code == DiagnosticCode.UNRESOLVED_REFERENCE

    def test_later_definitions_shadow_earlier(self, builder):
        builder.add_declaration(decl(0, "m", DeclarationKind.MACRO))
        builder.add_invocation(invocation("m", 6))
        builder.add_declaration(decl(1, "m", DeclarationKind.MACRO))
        builder.add_invocation(invocation("m", 16))
        graph = builder.build()

        targets = [e.target_id for e in graph.edges_of(EdgeKind.INVOKES_MACRO)]
        assert targets == [0, 1]


class TestBuild:

    def test_build_freezes(self, builder):
        builder.add_declaration(decl(0, "f"))
        builder.add_import(Import(path="std::fmt", span=Span(0, 13)))
        graph = builder.build(file_doc="Crate docs.", parse_time=0.5)

        assert graph.symbols is builder.symbols
        assert graph.symbols.frozen
        assert graph.file_doc == "Crate docs."
        assert graph.imports[0].path == "std::fmt"
        assert graph.is_successful

    def test_build_only_once(self, builder):
        builder.build()

        with pytest.raises(RuntimeError):
            builder.build()
        with pytest.raises(RuntimeError):
            builder.add_declaration(decl(0, "late"))
        with pytest.raises(RuntimeError):
            builder.add_invocation(invocation("late", 0))

    def test_error_marks_graph_unsuccessful(self, builder):
        graph = builder.build(error="unterminated string literal")

        assert not graph.is_successful
        assert graph.error == "unterminated string literal"
