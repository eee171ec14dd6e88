import pytest
from pathlib import Path
from rustgraph_mcp.mcp.state import reset_state, get_state
from rustgraph_mcp.parsers.rust_parser import RustStructureParser

@pytest.fixture(autouse=True)
def clean_state():
    """Reset MCP state before and after each test."""
    reset_state()
    yield
    reset_state()

@pytest.fixture
def parser():
    return RustStructureParser()

@pytest.fixture
def temp_project(tmp_path):
    """Create a minimal Rust project for testing."""
    src = tmp_path / "src"
    src.mkdir()

    (src / "main.rs").write_text('''
/// Say hello to someone.
fn hello(name: &str) -> String {
    format!("Hello, {}!", name)
}

pub struct Calculator {
    total: i64,
}

impl Calculator {
    pub fn add(&mut self, a: i64) -> i64 {
        self.total += a;
        self.total
    }

    pub fn multiply(&mut self, a: i64) -> i64 {
        self.total *= a;
        self.total
    }
}
''')

    (src / "utils.rs").write_text('''
use std::collections::HashMap;

pub fn load_config(text: &str) -> HashMap<String, String> {
    text.lines()
        .filter_map(|line| line.split_once('='))
        .map(|(k, v)| (k.trim().to_string(), v.trim().to_string()))
        .collect()
}

pub const CONSTANT_VALUE: u32 = 42;
''')

    return tmp_path

@pytest.fixture
def broken_file(tmp_path):
    """A Rust file whose string literal never ends."""
    path = tmp_path / "broken.rs"
    path.write_text('fn ok() {}\n\nfn bad() {\n    let s = "abc;\n}\n')
    return path

@pytest.fixture
def rust_project_fixture():
    """Return path to the static Rust project fixture."""
    return Path(__file__).parent / "fixtures" / "sample_projects" / "rust_project"
