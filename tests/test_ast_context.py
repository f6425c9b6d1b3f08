"""Tests for ast_context: position arithmetic, symbol lookup and chunking."""

from __future__ import annotations

from ast_context import (
    chunk_file,
    detect_lang,
    extract_context,
    line_range_to_byte_range,
    position_to_index,
    slice_window,
)


class TestPositionToIndex:
    def test_first_line_first_column(self):
        assert position_to_index("abc\ndef", 1, 1) == 0

    def test_second_line_offsets_past_newline(self):
        assert position_to_index("abc\ndef", 2, 1) == 4
        assert position_to_index("abc\ndef", 2, 3) == 6

    def test_last_line_without_trailing_newline(self):
        assert position_to_index("a\nb", 2, 2) == 3

    def test_line_past_end_clamps_to_last_line(self):
        assert position_to_index("abc\ndef", 9, 1) == 4

    def test_line_below_one_clamps_to_first(self):
        assert position_to_index("abc\ndef", 0, 1) == 0

    def test_empty_text(self):
        assert position_to_index("", 1, 1) == 0
        assert position_to_index("", 5, 3) == 0

    def test_counts_utf8_bytes(self):
        assert position_to_index("é\nx", 2, 1) == 3

    def test_trailing_newline_adds_empty_last_line(self):
        assert position_to_index("ab\n", 2, 1) == 3


class TestLineRangeToByteRange:
    def test_trims_indentation_and_trailing_space(self):
        text = "x\n    foo()   \ny"
        start, end = line_range_to_byte_range(text, 2, 2)
        assert text.encode()[start:end] == b"foo()"

    def test_end_never_before_start(self):
        start, end = line_range_to_byte_range("a\n\nb", 2, 2)
        assert end >= start


class TestSliceWindow:
    def test_pads_and_clamps(self):
        source = "\n".join(str(i) for i in range(1, 101))
        snippet, first, last = slice_window(source, 50, 50, pad=30)
        assert (first, last) == (20, 80)
        assert snippet.split("\n")[0] == "20"
        assert snippet.split("\n")[-1] == "80"

    def test_clamps_at_file_edges(self):
        _, first, last = slice_window("a\nb\nc", 1, 3, pad=30)
        assert (first, last) == (1, 3)


class TestDetectLang:
    def test_known_extensions(self):
        assert detect_lang("src/a.ts") == "ts"
        assert detect_lang("src/a.tsx") == "ts"
        assert detect_lang("src/a.mjs") == "js"
        assert detect_lang("pkg/mod.py") == "py"

    def test_unknown_extension(self):
        assert detect_lang("README.md") == "unknown"
        assert detect_lang("Makefile") == "unknown"


class TestExtractContext:
    def test_typescript_function(self, ts_source):
        ctx = extract_context("src/util.ts", ts_source, 2, 2)
        assert ctx.symbol_type == "function"
        assert ctx.symbol_name == "helper"
        assert ctx.language == "ts"

    def test_typescript_arrow_takes_binding_name(self, ts_source):
        ctx = extract_context("src/util.ts", ts_source, 6, 6)
        assert ctx.symbol_type == "function"
        assert ctx.symbol_name == "arrow"

    def test_typescript_method(self, ts_source):
        ctx = extract_context("src/util.ts", ts_source, 11, 11)
        assert ctx.symbol_type == "method"
        assert ctx.symbol_name == "getUser"

    def test_typescript_class_header(self, ts_source):
        ctx = extract_context("src/util.ts", ts_source, 9, 9)
        assert ctx.symbol_type == "class"
        assert ctx.symbol_name == "UserService"

    def test_python_method_inside_class(self, py_source):
        ctx = extract_context("src/store.py", py_source, 9, 9)
        assert ctx.symbol_type == "method"
        assert ctx.symbol_name == "load"

    def test_python_function(self, py_source):
        ctx = extract_context("src/store.py", py_source, 14, 14)
        assert ctx.symbol_type == "function"
        assert ctx.symbol_name == "helper"

    def test_python_class(self, py_source):
        ctx = extract_context("src/store.py", py_source, 4, 4)
        assert ctx.symbol_type == "class"
        assert ctx.symbol_name == "Store"

    def test_python_lambda_body(self):
        source = "handler = lambda event: (\n    process(event)\n)\n"
        ctx = extract_context("src/hooks.py", source, 2, 2)
        assert (ctx.symbol_type, ctx.symbol_name) == ("function", "handler")

    def test_unsupported_language_degrades_to_window(self):
        source = "line 1\nline 2\nline 3"
        ctx = extract_context("notes.txt", source, 2, 2, pad=1)
        assert ctx.symbol_type == "unknown"
        assert ctx.symbol_name is None
        assert ctx.snippet == source
        assert (ctx.snippet_start_line, ctx.snippet_end_line) == (1, 3)

    def test_snippet_window_is_padded(self, ts_source):
        ctx = extract_context("src/util.ts", ts_source, 6, 6, pad=1)
        assert (ctx.snippet_start_line, ctx.snippet_end_line) == (5, 7)
        assert "const arrow" in ctx.snippet

    def test_out_of_range_lines_do_not_raise(self, ts_source):
        ctx = extract_context("src/util.ts", ts_source, 500, 600)
        assert ctx.snippet_end_line <= len(ts_source.split("\n"))


class TestChunkFile:
    def test_python_symbols_in_preorder(self, py_source):
        chunks = chunk_file("src/store.py", py_source)
        assert [(c.symbol_type, c.symbol_name) for c in chunks] == [
            ("class", "Store"),
            ("method", "__init__"),
            ("method", "load"),
            ("function", "helper"),
        ]
        store = chunks[0]
        assert (store.start_line, store.end_line) == (4, 10)
        assert store.snippet.startswith("class Store:")

    def test_typescript_symbols(self, ts_source):
        chunks = chunk_file("src/util.ts", ts_source)
        names = [c.symbol_name for c in chunks]
        assert names == ["helper", "arrow", "UserService", "getUser"]

    def test_python_lambda_takes_assigned_name(self):
        chunks = chunk_file("src/scale.py", "scale = lambda x: x * 2\n")
        assert [(c.symbol_type, c.symbol_name) for c in chunks] == [("function", "scale")]

    def test_max_chunks_cap(self, py_source):
        assert len(chunk_file("src/store.py", py_source, max_chunks=2)) == 2

    def test_no_symbols_falls_back_to_whole_file(self):
        chunks = chunk_file("src/const.py", "X = 1\nY = 2\n")
        assert len(chunks) == 1
        assert chunks[0].symbol_type == "unknown"
        assert chunks[0].start_line == 1
        assert chunks[0].snippet == "X = 1\nY = 2\n"

    def test_unknown_language_is_one_chunk(self):
        chunks = chunk_file("notes.txt", "hello\nworld")
        assert len(chunks) == 1
        assert chunks[0].end_line == 2

    def test_empty_source_has_no_chunks(self):
        assert chunk_file("src/empty.ts", "") == []
