"""Unit tests for declaration recognition (driven through the full pipeline)."""
import pytest
from rustgraph_mcp.core.models import (
    DeclarationKind,
    DiagnosticCode,
    GenericParamKind,
    ParseOptions,
    Visibility,
)
from rustgraph_mcp.parsers.diagnostics import DiagnosticsCollector
from rustgraph_mcp.parsers.graph_builder import GraphBuilder
from rustgraph_mcp.parsers.lexer import Scanner, tokenize
from rustgraph_mcp.parsers.recognizer import (
    DeclarationRecognizer,
    doc_text,
    parse_generic_params,
    render,
)
from rustgraph_mcp.parsers.rust_parser import RustStructureParser


def parse(source, **options):
    return RustStructureParser().parse_source(source, "test.rs", ParseOptions(**options))


def by_name(graph, name):
    matches = graph.find(name)
    assert len(matches) == 1, f"expected one '{name}', found {len(matches)}"
    return matches[0]


def codes(graph):
    return [d.code for d in graph.diagnostics]


class TestHelpers:

    def test_render_spacing(self):
        assert render(tokenize("fn area(&self) -> f64")) == "fn area(&self) -> f64"
        assert render(tokenize("T: Clone + Send")) == "T: Clone + Send"
        assert render(tokenize("HashMap<String, Vec<u8>>")) == "HashMap<String, Vec<u8>>"

    def test_doc_text_line_comments(self):
        assert doc_text("/// Hello") == "Hello"
        assert doc_text("///   indented") == "  indented"
        assert doc_text("//! Inner") == "Inner"

    def test_doc_text_block_comment(self):
        assert doc_text("/**\n * First\n * Second\n */") == "First\nSecond"

    def test_parse_generic_params(self):
        inner = tokenize("'a, T: Into<Vec<u8>> + 'a, const N: usize, U = u32")
        params = parse_generic_params(inner)

        assert [p.name for p in params] == ["'a", "T", "N", "U"]
        assert [p.kind for p in params] == [
            GenericParamKind.LIFETIME,
            GenericParamKind.TYPE,
            GenericParamKind.CONST,
            GenericParamKind.TYPE,
        ]
        assert params[1].bound == "Into<Vec<u8>> + 'a"
        assert params[2].bound == "usize"
        assert params[3].default == "u32"
        assert params[3].bound is None


class TestItemKinds:

    def test_all_kinds_at_root(self):
        graph = parse('''
mod m {}
struct S;
enum E { A, B }
trait T {}
impl S {}
fn f() {}
type Alias = u32;
const C: u32 = 1;
static STATIC: u32 = 2;
macro_rules! mac { () => {} }
''')
        kinds = [d.kind for d in graph.declarations]

        assert kinds == [
            DeclarationKind.MODULE,
            DeclarationKind.STRUCT,
            DeclarationKind.ENUM,
            DeclarationKind.TRAIT,
            DeclarationKind.IMPL,
            DeclarationKind.FUNCTION,
            DeclarationKind.TYPE_ALIAS,
            DeclarationKind.CONST,
            DeclarationKind.STATIC,
            DeclarationKind.MACRO,
        ]
        assert [d.id for d in graph.declarations] == list(range(10))
        assert graph.diagnostics == ()

    def test_struct_forms(self):
        graph = parse('''
pub struct Record { x: u32 }
pub struct Meters(pub f64);
struct Unit;
union Bits { a: u32, b: f32 }
''')
        record, meters, unit, bits = graph.declarations

        assert record.metadata == {}
        assert meters.metadata["tuple"] is True
        assert unit.metadata["unit"] is True
        assert bits.kind == DeclarationKind.STRUCT
        assert bits.metadata["union"] is True

    def test_tuple_struct_span_ends_at_semicolon(self):
        source = "pub struct Meters(pub f64);"
        graph = parse(source)

        assert graph.declarations[0].span.slice(source) == source.encode()

    def test_external_module(self):
        graph = parse("pub mod shapes;\nmod tests;")
        shapes, tests = graph.declarations

        assert shapes.metadata["external"] is True
        assert shapes.is_public
        assert tests.visibility == Visibility.PRIVATE

    def test_trait_with_associated_items(self):
        graph = parse('''
pub trait Animal: Clone + Send {
    type Food;
    const LEGS: u32 = 4;
    fn name(&self) -> String;
    fn speak(&self) -> String { format!("{}", self.name()) }
}
''')
        animal = by_name(graph, "Animal")

        assert animal.metadata["supertraits"] == "Clone + Send"
        children = graph.children(animal.id)
        assert [(c.name, c.kind) for c in children] == [
            ("Food", DeclarationKind.TYPE_ALIAS),
            ("LEGS", DeclarationKind.CONST),
            ("name", DeclarationKind.FUNCTION),
            ("speak", DeclarationKind.FUNCTION),
        ]
        assert all(c.scope_path == ("Animal",) for c in children)
        assert by_name(graph, "name").signature == "fn name(&self) -> String"

    def test_extern_block_items_stay_in_enclosing_scope(self):
        graph = parse('''
extern "C" {
    fn abs(x: i32) -> i32;
    static errno: i32;
}
''')
        abs_fn = by_name(graph, "abs")
        errno = by_name(graph, "errno")

        assert abs_fn.kind == DeclarationKind.FUNCTION
        assert abs_fn.scope_path == ()
        assert abs_fn.parent_id is None
        assert errno.kind == DeclarationKind.STATIC
        assert graph.diagnostics == ()

    def test_extern_function_abi(self):
        graph = parse('pub extern "C" fn callback() {}')
        callback = graph.declarations[0]

        assert callback.metadata["abi"] == '"C"'
        assert callback.modifiers == ('extern "C"',)

    def test_nested_items_in_function_body(self):
        graph = parse('''
fn outer() {
    struct Local;
    fn inner() {}
    let x = 1;
}
''')
        outer = by_name(graph, "outer")
        inner = by_name(graph, "inner")

        assert inner.parent_id == outer.id
        assert inner.scope_path == ("outer",)
        assert by_name(graph, "Local").scope_path == ("outer",)

    def test_item_inside_const_initializer(self):
        graph = parse("const F: fn() = { fn helper() {} helper };")
        const, helper = graph.declarations

        assert const.kind == DeclarationKind.CONST
        assert helper.parent_id == const.id
        assert const.metadata["value_type"] == "fn()"


class TestVisibilityAndModifiers:

    @pytest.mark.parametrize("prefix,expected", [
        ("pub", Visibility.PUBLIC),
        ("pub(crate)", Visibility.CRATE),
        ("pub(super)", Visibility.CRATE),
        ("pub(in crate::outer)", Visibility.CRATE),
        ("pub(self)", Visibility.PRIVATE),
        ("", Visibility.PRIVATE),
    ])
    def test_visibility(self, prefix, expected):
        graph = parse(f"{prefix} fn f() {{}}")

        assert graph.declarations[0].visibility == expected

    def test_function_modifiers(self):
        graph = parse('''
pub const fn zero() -> u32 { 0 }
pub async unsafe fn risky() {}
''')

        assert by_name(graph, "zero").modifiers == ("const",)
        assert by_name(graph, "zero").kind == DeclarationKind.FUNCTION
        assert by_name(graph, "risky").modifiers == ("async", "unsafe")

    def test_static_mut(self):
        graph = parse("static mut COUNT: u32 = 0;")
        count = graph.declarations[0]

        assert count.name == "COUNT"
        assert count.modifiers == ("mut",)
        assert count.signature == "static mut COUNT: u32"

    def test_unsafe_trait_and_impl(self):
        graph = parse("pub unsafe trait Zeroable {}\nunsafe impl Zeroable for u32 {}")
        trait, impl = graph.declarations

        assert trait.modifiers == ("unsafe",)
        assert impl.modifiers == ("unsafe",)
        assert impl.name == "u32"

    def test_raw_identifier_name(self):
        graph = parse("fn r#match() {}")
        assert graph.declarations[0].name == "match"


class TestSignatures:

    def test_function_signature_and_return_type(self):
        graph = parse("fn longest<'a>(x: &'a str, y: &'a str) -> &'a str { x }")
        longest = graph.declarations[0]

        assert longest.signature == "fn longest<'a>(x: &'a str, y: &'a str) -> &'a str"
        assert longest.metadata["return_type"] == "&'a str"
        assert longest.generics[0].name == "'a"
        assert longest.generics[0].kind == GenericParamKind.LIFETIME

    def test_where_clause(self):
        graph = parse('''
fn apply<F>(f: F, x: f64) -> f64
where
    F: Fn(f64) -> f64,
{
    f(x)
}
''')
        apply = graph.declarations[0]

        assert apply.metadata["where_clause"].startswith("F: Fn(f64) -> f64")
        assert apply.metadata["return_type"] == "f64"
        assert [g.name for g in apply.generics] == ["F"]

    def test_nested_generic_bounds(self):
        graph = parse("struct Wrapper<T: Into<Vec<u8>>, U = u32> { t: T, u: U }")
        t, u = graph.declarations[0].generics

        assert t.bound == "Into<Vec<u8>>"
        assert u.default == "u32"

    def test_type_alias_metadata(self):
        graph = parse("pub type Pair<T> = (T, T);")
        pair = graph.declarations[0]

        assert pair.signature == "pub type Pair<T>"
        assert pair.metadata["aliased_type"] == "(T, T)"
        assert [g.name for g in pair.generics] == ["T"]

    def test_const_signature(self):
        graph = parse("pub const PI: f64 = 3.14159;")
        pi = graph.declarations[0]

        assert pi.signature == "pub const PI: f64"
        assert pi.metadata["value_type"] == "f64"


class TestImpls:

    def test_trait_impl_split(self):
        graph = parse("impl<T: Display> fmt::Debug for Wrapper<T> where T: Clone {}")
        impl = graph.declarations[0]

        assert impl.kind == DeclarationKind.IMPL
        assert impl.impl_trait == "fmt::Debug"
        assert impl.impl_type == "Wrapper<T>"
        assert impl.name == "Wrapper"
        assert impl.metadata["where_clause"] == "T: Clone"
        assert impl.generics[0].bound == "Display"

    def test_inherent_impl(self):
        graph = parse("impl<'a> Parser<'a> { fn new() -> Self { todo!() } }")
        impl = by_name(graph, "Parser")

        assert impl.impl_trait is None
        assert impl.impl_type == "Parser<'a>"
        assert by_name(graph, "new").scope_path == ("Parser",)

    def test_negative_impl(self):
        graph = parse("struct Token;\nimpl !Send for Token {}")
        impl = graph.declarations[1]

        assert impl.metadata["negative"] is True
        assert impl.impl_trait == "Send"
        assert graph.invocations == ()

    def test_impl_for_reference_type(self):
        graph = parse("impl<'a> Iterator for &'a Counter {}")
        assert graph.declarations[0].name == "Counter"


class TestDocsAndAttributes:

    def test_line_docs_joined(self):
        graph = parse("/// First line\n/// Second line\nfn f() {}")
        assert graph.declarations[0].doc == "First line\nSecond line"

    def test_block_doc(self):
        graph = parse("/** Block doc */\nstruct S;")
        assert graph.declarations[0].doc == "Block doc"

    def test_doc_before_attributes(self):
        graph = parse("/// Documented\n#[inline]\n#[must_use]\npub fn g() -> u32 { 1 }")
        g = graph.declarations[0]

        assert g.doc == "Documented"
        assert g.attributes == ("#[inline]", "#[must_use]")

    def test_derives_recorded(self):
        graph = parse("#[derive(Debug, Clone, PartialEq)]\npub struct Point { x: f64 }")
        point = graph.declarations[0]

        assert point.metadata["derives"] == ["Debug", "Clone", "PartialEq"]
        assert point.attributes == ("#[derive(Debug, Clone, PartialEq)]",)

    def test_statement_between_doc_and_item_clears_doc(self):
        graph = parse('''
fn outer() {
    /// orphaned
    let x = 1;
    fn inner() {}
}
''')
        assert by_name(graph, "inner").doc is None

    def test_field_docs_do_not_leak(self):
        graph = parse('''
struct S {
    /// field doc
    x: u32,
}
fn f() {}
''')
        assert by_name(graph, "S").doc is None
        assert by_name(graph, "f").doc is None

    def test_inner_doc_of_module(self):
        graph = parse("mod m {\n    //! Inner doc\n    fn f() {}\n}")
        assert by_name(graph, "m").doc == "Inner doc"

    def test_file_doc(self):
        graph = parse("//! Crate docs\n//! More\n\nfn f() {}")

        assert graph.file_doc == "Crate docs\nMore"
        assert graph.declarations[0].doc is None

    def test_inner_attribute_not_attached(self):
        graph = parse("#![allow(dead_code)]\nfn f() {}")
        assert graph.declarations[0].attributes == ()


class TestMacros:

    def test_definition_and_resolved_invocation(self):
        graph = parse('''
macro_rules! factorial {
    (0) => { 1 };
    ($n:expr) => { $n * factorial!($n - 1) };
}

fn main() {
    let x = factorial!(5);
}
''')
        macro = by_name(graph, "factorial")
        main = by_name(graph, "main")

        assert macro.kind == DeclarationKind.MACRO
        assert macro.signature == "macro_rules! factorial"
        assert macro.metadata["body_delimiter"] == "{"
        assert len(graph.invocations) == 1
        assert graph.invocations[0].owner_id == main.id
        assert graph.invocations[0].scope_path == ("main",)

    def test_parenthesized_macro_body(self):
        graph = parse("macro_rules! m ( () => {} );\nfn f() {}")

        assert [d.name for d in graph.declarations] == ["m", "f"]
        assert graph.declarations[0].metadata["body_delimiter"] == "("

    def test_invocation_path(self):
        graph = parse('fn f() { std::println!("hi"); }')
        invocation = graph.invocations[0]

        assert invocation.name == "println"
        assert invocation.path == "std::println"

    def test_item_level_macro_call_is_not_unrecognized(self):
        graph = parse("thread_local! { static X: u32 = 1; }\nfn f() {}")

        assert DiagnosticCode.UNRECOGNIZED_CONSTRUCT not in codes(graph)
        assert [d.name for d in graph.declarations] == ["f"]
        assert graph.invocations[0].name == "thread_local"
        assert graph.invocations[0].owner_id is None

    def test_macro_body_items_are_opaque(self):
        graph = parse("macro_rules! make { () => { fn hidden() {} struct Hidden; }; }")
        assert [d.name for d in graph.declarations] == ["make"]


class TestImports:

    def test_use_and_extern_crate(self):
        graph = parse('''
extern crate serde;
use std::sync::{Arc, Mutex};
pub use crate::shapes::Circle;
mod inner {
    use super::*;
}
''')
        paths = [i.path for i in graph.imports]

        assert paths == ["serde", "std::sync::{Arc, Mutex}", "crate::shapes::Circle", "super::*"]
        assert graph.imports[0].extern_crate
        assert graph.imports[2].visibility == Visibility.PUBLIC
        assert graph.imports[3].scope_path == ("inner",)
        assert [d.name for d in graph.declarations] == ["inner"]


class TestRecovery:

    def test_unrecognized_statement_at_root(self):
        graph = parse("let x = 1;\nfn ok() {}")

        assert codes(graph) == [DiagnosticCode.UNRECOGNIZED_CONSTRUCT]
        assert [d.name for d in graph.declarations] == ["ok"]

    def test_unrecognized_in_impl_body(self):
        graph = parse("impl S {\n    42;\n    fn f() {}\n}")

        assert DiagnosticCode.UNRECOGNIZED_CONSTRUCT in codes(graph)
        assert by_name(graph, "f").scope_path == ("S",)

    def test_nameless_function_skipped(self):
        graph = parse("fn (x) {}\nfn named() {}")

        assert [d.name for d in graph.declarations] == ["named"]
        assert DiagnosticCode.UNRECOGNIZED_CONSTRUCT in codes(graph)

    def test_delimiter_mismatch_is_not_fatal(self):
        graph = parse("fn f() { ( }\nfn g() {}")

        assert graph.is_successful
        assert DiagnosticCode.DELIMITER_MISMATCH in codes(graph)
        assert [d.name for d in graph.declarations] == ["f", "g"]

    def test_missing_semicolon_at_end_of_input(self):
        graph = parse("fn ok() {}\nconst X: u32 = 5")

        assert graph.is_successful
        assert [d.name for d in graph.declarations] == ["ok"]
        assert codes(graph) == [DiagnosticCode.INCOMPLETE_DECLARATION]

    def test_scope_closing_over_pending_const(self):
        graph = parse("fn f() {\n    const X: u32 = 1\n}\nfn g() {}")

        assert [d.name for d in graph.declarations] == ["f", "g"]
        assert DiagnosticCode.INCOMPLETE_DECLARATION in codes(graph)


class TestRecognizerDirect:

    def test_run_and_flush(self):
        diagnostics = DiagnosticsCollector("direct.rs")
        recognizer = DeclarationRecognizer(Scanner("mod a { fn b() {} }"), "direct.rs", diagnostics)
        builder = GraphBuilder("direct.rs", diagnostics)

        recognizer.run()
        recognizer.flush(builder)
        graph = builder.build(file_doc=recognizer.file_doc)

        assert [d.qualified_name for d in graph.declarations] == ["a", "a::b"]
        assert recognizer.tracker.depth == 0
