
import pytest
from pathlib import Path
from rustgraph_mcp.indexing.parallel_indexer import ParallelProgress, parallel_parse_files, parse_file_worker
from rustgraph_mcp.parsers.rust_parser import ThreadLocalParserFactory
from rustgraph_mcp.core.models import ParseOptions

def test_parallel_progress_increment():
    progress = ParallelProgress(total=10)
    assert progress.completed == 0
    assert progress.errors == 0

    new_val = progress.increment_completed()
    assert new_val == 1
    assert progress.completed == 1

    new_err = progress.increment_errors()
    assert new_err == 1
    assert progress.errors == 1

def test_parallel_parse_files_empty_list():
    results, errors = parallel_parse_files([])
    assert results == []
    assert errors == 0

def test_parallel_parse_files_single_file(tmp_path):
    f = tmp_path / "lib.rs"
    f.write_text("fn foo() {}")

    results, errors = parallel_parse_files([f])

    assert errors == 0
    assert len(results) == 1
    assert results[0].filepath == str(f)
    assert results[0].graph.declarations[0].name == "foo"

def test_parallel_parse_files_keeps_input_order(tmp_path):
    files = []
    for i in range(8):
        f = tmp_path / f"mod_{i}.rs"
        f.write_text(f"pub fn item_{i}() {{}}")
        files.append(f)

    results, errors = parallel_parse_files(files, max_workers=4)

    assert errors == 0
    assert [r.filepath for r in results] == [str(f) for f in files]
    assert [r.graph.declarations[0].name for r in results] == [f"item_{i}" for i in range(8)]

def test_parse_file_worker_success(tmp_path):
    f = tmp_path / "worker.rs"
    f.write_text("struct Worker;\nfn worker_test() {}")
    factory = ThreadLocalParserFactory()

    result = parse_file_worker(f, factory)

    assert result.success
    assert result.filepath == str(f)
    assert result.declaration_count == 2
    assert result.graph.declarations[1].name == "worker_test"

def test_parse_file_worker_fatal_diagnostic(tmp_path):
    f = tmp_path / "broken.rs"
    f.write_text('fn ok() {}\nlet s = "abc;')
    factory = ThreadLocalParserFactory()

    result = parse_file_worker(f, factory)

    # The partial graph survives a fatal lex error
    assert not result.success
    assert result.error is not None
    assert result.declaration_count == 1

def test_parse_file_worker_missing_file(tmp_path):
    factory = ThreadLocalParserFactory()

    result = parse_file_worker(tmp_path / "missing.rs", factory)

    assert not result.success
    assert result.graph is None
    assert result.declaration_count == 0
    assert "not found" in result.error

def test_parse_file_worker_error(tmp_path):
    # A directory is not a Rust file
    d = tmp_path / "subdir"
    d.mkdir()
    factory = ThreadLocalParserFactory()

    result = parse_file_worker(d, factory)

    assert not result.success
    assert result.error is not None

def test_parallel_parse_files_with_error(tmp_path):
    d = tmp_path / "subdir"
    d.mkdir()
    results, errors = parallel_parse_files([d])
    assert errors == 1
    assert not results[0].success

def test_progress_callback_events(tmp_path):
    good = tmp_path / "good.rs"
    good.write_text("fn good() { missing!(); }")
    bad = tmp_path / "bad.rs"
    bad.write_text("fn bad() {")
    events = []

    results, errors = parallel_parse_files(
        [good, bad], progress_callback=lambda event, data: events.append((event, data))
    )

    assert errors == 1
    by_event = {event: data for event, data in events}
    assert by_event["file_parsed"]["path"] == str(good)
    assert by_event["file_parsed"]["declarations"] == 1
    assert by_event["file_parsed"]["diagnostics"] == 1
    assert by_event["parse_error"]["path"] == str(bad)
    assert all(data["total"] == 2 for _, data in events)
    assert sorted(data["index"] for _, data in events) == [1, 2]

def test_progress_callback_errors_are_ignored(tmp_path):
    f = tmp_path / "lib.rs"
    f.write_text("fn foo() {}")

    def explode(event, data):
        raise RuntimeError("callback failure")

    results, errors = parallel_parse_files([f], progress_callback=explode)

    assert errors == 0
    assert results[0].success

def test_options_forwarded(tmp_path):
    f = tmp_path / "lib.rs"
    f.write_text("fn foo() {}")

    results, _ = parallel_parse_files([f], options=ParseOptions(include_snippets=True))

    assert results[0].graph.declarations[0].metadata["snippet"] == "fn foo() {}"
