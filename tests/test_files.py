"""Tests for tiered file rendering and file-request parsing."""

from __future__ import annotations

import pytest

from context_keeper.files import (
    extract_symbols,
    language_for,
    parse_file_requests,
    render_file,
    render_full,
    render_index,
    render_summary,
)

PYTHON_LINES = [f"x_{i} = {i}" for i in range(40)]
PYTHON_LINES[5] = "def load(path):"
PYTHON_LINES[20] = "class Model:"
PYTHON_LINES[30] = "async def fetch():"


class TestLanguage:
    """Tests for language_for and extract_symbols."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("a.py", "python"),
            ("analysis.R", "r"),
            ("report.Rmd", "r"),
            ("web/app.tsx", "typescript"),
            ("run.sh", "bash"),
            ("LICENSE", ""),
        ],
    )
    def test_language_for(self, path: str, expected: str) -> None:
        """Test extension to fence-language mapping."""
        assert language_for(path) == expected

    def test_python_symbols(self) -> None:
        """Test def, class and async def detection."""
        assert extract_symbols("m.py", PYTHON_LINES) == ["load", "Model", "fetch"]

    def test_r_symbols(self) -> None:
        """Test R function assignments."""
        lines = ["clean_data <- function(df) {", "  df", "}", "plot.it = function(x) x"]
        assert extract_symbols("u.R", lines) == ["clean_data", "plot.it"]

    def test_javascript_symbols(self) -> None:
        """Test functions, classes and arrow functions."""
        lines = [
            "export function render(a) {}",
            "class Widget {}",
            "const handler = async (e) => {}",
            "let value = 3",
        ]
        assert extract_symbols("w.js", lines) == ["render", "Widget", "handler"]

    def test_bash_symbols(self) -> None:
        """Test both shell function syntaxes."""
        lines = ["function setup {", "}", "cleanup() {", "}"]
        assert extract_symbols("x.sh", lines) == ["setup", "cleanup"]

    def test_unknown_language_has_no_symbols(self) -> None:
        """Test that unsupported files yield nothing."""
        assert extract_symbols("notes.md", ["def looks_like_python():"]) == []

    def test_duplicates_removed(self) -> None:
        """Test that repeated names appear once."""
        assert extract_symbols("m.py", ["def a():", "def a():"]) == ["a"]


class TestRender:
    """Tests for the tier renderers."""

    def test_full(self) -> None:
        """Test line-numbered complete output."""
        text = render_full("src/a.py", ["import os", "print(1)"])
        assert text.startswith("## File: `src/a.py`\n*Total lines: 2*\n\n```python\n")
        assert "1 | import os" in text
        assert "2 | print(1)" in text
        assert text.endswith("```")

    def test_full_pads_line_numbers(self) -> None:
        """Test that line numbers are right-aligned to the widest number."""
        text = render_full("a.txt", [str(i) for i in range(12)])
        assert " 1 | 0" in text
        assert "12 | 11" in text

    def test_summary_of_long_file(self) -> None:
        """Test symbols, head and tail previews and the request hint."""
        text = render_summary("m.py", PYTHON_LINES, 2048)
        assert text.startswith("## File: `m.py` (SUMMARY)\n")
        assert "*40 lines | 2.0 KB*" in text
        assert "**Symbols:** `load`, `Model`, `fetch`" in text
        assert " 1 | x_0 = 0" in text
        assert "40 | x_39 = 39" in text
        assert "x_15 = 15" not in text
        assert "*... (20 lines omitted) ...*" in text
        assert "`[REQUEST_FILE:m.py]`" in text

    def test_summary_of_short_file_is_complete(self) -> None:
        """Test that files within two previews are shown in full."""
        lines = [f"line {i}" for i in range(20)]
        text = render_summary("short.txt", lines, 100)
        assert "(SUMMARY - Complete)" in text
        assert "omitted" not in text
        assert "line 10" in text

    def test_index(self) -> None:
        """Test metadata and symbol names without file contents."""
        text = render_index("m.py", PYTHON_LINES, 1024)
        assert text.startswith("## File: `m.py` (INDEX)\n")
        assert "*40 lines | 1.0 KB*" in text
        assert "**Contains 3 symbol(s):** load, Model, fetch" in text
        assert "x_0" not in text
        assert "[REQUEST_FILE:m.py]" in text

    def test_index_without_symbols(self) -> None:
        """Test that the symbol line is omitted when none are found."""
        assert "Contains" not in render_index("notes.md", ["# Notes"], 8)

    def test_render_file_dispatch(self) -> None:
        """Test that each tier maps to its renderer."""
        assert "(INDEX)" in render_file("m.py", PYTHON_LINES, 10, "index")
        assert "(SUMMARY)" in render_file("m.py", PYTHON_LINES, 10, "summary")
        assert "*Total lines: 40*" in render_file("m.py", PYTHON_LINES, 10, "full")
        with pytest.raises(ValueError, match="Unknown tier"):
            render_file("m.py", PYTHON_LINES, 10, "huge")  # type: ignore[arg-type]


class TestParseFileRequests:
    """Tests for parse_file_requests."""

    def test_extracts_unique_paths(self) -> None:
        """Test order preservation and deduplication."""
        text = (
            "Please send [REQUEST_FILE:src/a.py] and [REQUEST_FILE: lib/b.R ] "
            "plus [REQUEST_FILE:src/a.py] again."
        )
        assert parse_file_requests(text) == ["src/a.py", "lib/b.R"]

    def test_no_requests(self) -> None:
        """Test text without markers and empty input."""
        assert parse_file_requests("Nothing to see") == []
        assert parse_file_requests("") == []
        assert parse_file_requests("[REQUEST_FILE:]") == []
