#!/usr/bin/env python3
"""
Demo script to test RustGraph MCP tools without an MCP client.
Exercises all tools and shows their behavior.

Usage:
  python self_test/demo_mcp.py [path_to_rust_project]

If no path provided, creates a temporary sample project.
"""
import sys
import json
import asyncio
import tempfile
import shutil
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

# Import MCP tools - access underlying functions from FastMCP wrappers
from rustgraph_mcp.mcp.server import (
    parse_source as parse_source_tool,
    parse_file as parse_file_tool,
    parse_files as parse_files_tool,
    get_structure as get_structure_tool,
    find_declarations as find_declarations_tool,
    get_stats as get_stats_tool,
    list_declaration_kinds as list_declaration_kinds_tool
)
from rustgraph_mcp.mcp.state import reset_state

# Get underlying functions
parse_source = parse_source_tool.fn
parse_file = parse_file_tool.fn
parse_files = parse_files_tool.fn
get_structure = get_structure_tool.fn
find_declarations = find_declarations_tool.fn
get_stats = get_stats_tool.fn
list_declaration_kinds = list_declaration_kinds_tool.fn

console = Console()


def create_sample_project(base_path: Path) -> Path:
    """Create a minimal Rust project for demo."""
    project = base_path / "sample_project"
    (project / "src").mkdir(parents=True, exist_ok=True)

    (project / "src" / "lib.rs").write_text('''//! Geometry helpers for the demo.

pub mod shapes;

/// Computes n! at compile time.
macro_rules! factorial {
    (0) => { 1 };
    ($n:expr) => { $n * factorial!($n - 1) };
}

pub const ANSWER: u64 = factorial!(5);

pub fn largest<T: PartialOrd + Copy>(items: &[T]) -> Option<T> {
    let mut iter = items.iter().copied();
    let first = iter.next()?;
    Some(iter.fold(first, |acc, x| if x > acc { x } else { acc }))
}
''')

    (project / "src" / "shapes.rs").write_text('''use std::fmt;

/// Anything with an area.
pub trait Shape: fmt::Debug {
    fn area(&self) -> f64;
}

#[derive(Debug, Clone, Copy)]
pub struct Circle {
    pub radius: f64,
}

#[derive(Debug)]
pub struct Rect(f64, f64);

impl Shape for Circle {
    fn area(&self) -> f64 {
        std::f64::consts::PI * self.radius * self.radius
    }
}

impl Shape for Rect {
    fn area(&self) -> f64 {
        self.0 * self.1
    }
}

impl Circle {
    pub fn new(radius: f64) -> Self {
        Circle { radius }
    }
}

pub(crate) static UNIT: Circle = Circle { radius: 1.0 };
''')

    return project


def format_json(data: dict) -> str:
    """Format dict as colored JSON."""
    return json.dumps(data, indent=2, default=str)


def print_tool_call(name: str, params: dict = None):
    """Print a tool call header."""
    params_str = format_json(params) if params else "{}"
    console.print(f"\n[bold cyan]>>> Calling:[/bold cyan] [yellow]{name}[/yellow]")
    if params:
        console.print(Panel(
            Syntax(params_str, "json", theme="monokai"),
            title="Parameters",
            border_style="dim"
        ))


def print_result(result: dict):
    """Print a tool result."""
    console.print(Panel(
        Syntax(format_json(result), "json", theme="monokai"),
        title="Result",
        border_style="green"
    ))


def add_nodes(tree: Tree, nodes: list):
    """Add declaration nodes (and their children) to a rich Tree."""
    for node in nodes:
        label = f"[cyan]{node['kind']}[/cyan] [bold]{node['name']}[/bold]"
        if node["visibility"] != "private":
            label += f" [green]({node['visibility']})[/green]"
        label += f" [dim]L{node['line']}[/dim]"
        add_nodes(tree.add(label), node["children"])


def run_demo(project_path: Path):
    """Run the full demo sequence."""

    console.print(Panel.fit(
        "[bold]RustGraph MCP Demo[/bold]\n"
        "Testing all MCP tools with real output",
        border_style="blue"
    ))

    console.print(f"\n[bold]Project path:[/bold] {project_path}\n")
    rust_files = sorted(str(p) for p in project_path.rglob("*.rs"))
    if not rust_files:
        console.print("[red]No .rs files found[/red]")
        return

    # 1. list_declaration_kinds
    console.rule("[bold magenta]1. list_declaration_kinds[/bold magenta]")
    console.print("Shows the vocabularies used in parse results.")

    print_tool_call("list_declaration_kinds")
    result = list_declaration_kinds()

    table = Table(title="Vocabularies")
    table.add_column("Category", style="cyan")
    table.add_column("Values", style="green")
    for category, values in result.items():
        table.add_row(category, ", ".join(values))
    console.print(table)

    # 2. parse_source
    console.rule("[bold magenta]2. parse_source[/bold magenta]")
    console.print("Parses in-memory text, including malformed input.")

    for source in ("mod m { pub fn f() {} }", 'let s = "abc;'):
        print_tool_call("parse_source", {"source": source})
        result = parse_source(source=source, file_id="inline.rs")
        print_result({
            "declarations": [d["name"] for d in result["declarations"]],
            "edges": result["edges"],
            "diagnostics": result["diagnostics"],
            "error": result["error"],
        })

    # 3. parse_files (parallel)
    console.rule("[bold magenta]3. parse_files (parallel)[/bold magenta]")
    console.print("Parses every .rs file of the project concurrently.")

    print_tool_call("parse_files", {"paths": rust_files})
    # parse_files is async, so we run it with asyncio
    result = asyncio.run(parse_files(paths=rust_files))

    table = Table(title="Parsed Files")
    table.add_column("File", style="cyan")
    table.add_column("Declarations", justify="right")
    table.add_column("Diagnostics", justify="right")
    table.add_column("Status")
    for summary in result["results"]:
        table.add_row(
            Path(summary["path"]).name,
            str(summary.get("declarations", 0)),
            str(len(summary.get("diagnostics", []))),
            "[green]ok[/green]" if summary["success"] else f"[red]{summary['error']}[/red]",
        )
    console.print(table)

    # 4. get_structure
    console.rule("[bold magenta]4. get_structure[/bold magenta]")
    for path in rust_files:
        print_tool_call("get_structure", {"path": path})
        result = get_structure(path=path)
        tree = Tree(f"[bold]{Path(path).name}[/bold]")
        add_nodes(tree, result["declarations"])
        console.print(tree)

    # 5. find_declarations
    console.rule("[bold magenta]5. find_declarations[/bold magenta]")
    for name in ("area", "Circle", "factorial"):
        print_tool_call("find_declarations", {"name": name})
        result = find_declarations(name=name)
        for match in result["matches"]:
            console.print(
                f"  [cyan]{match['kind']}[/cyan] {match['qualified_name']} "
                f"[dim]{Path(match['path']).name}:{match['line']}[/dim]"
            )

    # 6. parse_file after a state reset
    console.rule("[bold magenta]6. parse_file[/bold magenta]")
    reset_state()
    console.print("[yellow]State cleared[/yellow]")
    print_tool_call("parse_file", {"path": rust_files[0]})
    print_result(parse_file(path=rust_files[0]))

    # 7. get_stats
    console.rule("[bold magenta]7. get_stats[/bold magenta]")
    print_tool_call("get_stats")
    print_result(get_stats())

    # Summary
    console.print(Panel.fit(
        "[bold green]Demo Complete![/bold green]\n\n"
        "All 7 MCP tools exercised:\n"
        "  - list_declaration_kinds\n"
        "  - parse_source\n"
        "  - parse_files / parse_file\n"
        "  - get_structure\n"
        "  - find_declarations\n"
        "  - get_stats",
        border_style="green"
    ))


def main():
    """Main entry point."""
    temp_dir = None

    try:
        if len(sys.argv) > 1:
            # Use provided path
            project_path = Path(sys.argv[1]).resolve()
            if not project_path.exists():
                console.print(f"[red]Error: Path does not exist: {project_path}[/red]")
                sys.exit(1)
            if not project_path.is_dir():
                console.print(f"[red]Error: Path is not a directory: {project_path}[/red]")
                sys.exit(1)
        else:
            # Create temp project
            temp_dir = tempfile.mkdtemp(prefix="rustgraph_demo_")
            project_path = create_sample_project(Path(temp_dir))
            console.print(f"[dim]Created temporary sample project at: {project_path}[/dim]")

        run_demo(project_path)

    except KeyboardInterrupt:
        console.print("\n[yellow]Demo interrupted[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise
    finally:
        # Clean up temp dir if we created one
        if temp_dir:
            shutil.rmtree(temp_dir)
            console.print("[dim]Cleaned up temporary files[/dim]")


if __name__ == "__main__":
    main()
