"""Symbol-aware context extraction using tree-sitter syntax trees.

Given a file and a changed line range, find the enclosing function, method
or class and cut a padded line window around the change. The same boundary
detection splits whole files into symbol chunks for the repository index.
"""

import functools
import logging
from collections.abc import Iterator

from models import SymbolChunk, SymbolContext

logger = logging.getLogger(__name__)

DEFAULT_PAD = 30

# extension -> (language label, tree-sitter grammar name)
_EXTENSIONS: dict[str, tuple[str, str]] = {
    ".ts": ("ts", "typescript"),
    ".mts": ("ts", "typescript"),
    ".cts": ("ts", "typescript"),
    ".tsx": ("ts", "tsx"),
    ".js": ("js", "javascript"),
    ".mjs": ("js", "javascript"),
    ".cjs": ("js", "javascript"),
    ".jsx": ("js", "javascript"),
    ".py": ("py", "python"),
}

SOURCE_EXTENSIONS: frozenset[str] = frozenset(_EXTENSIONS)

_FUNCTION_TYPES = {
    "function_declaration",
    "generator_function_declaration",
    "function",
    "function_expression",
    "generator_function",
    "arrow_function",
    "function_definition",  # python
    "lambda",  # python
}
_METHOD_TYPES = {"method_definition"}
_CLASS_TYPES = {
    "class_declaration",
    "abstract_class_declaration",
    "class",
    "class_definition",  # python
}

# Parents whose name a nameless function inherits (const f = () => ...)
_BINDING_FIELDS = {
    "variable_declarator": "name",
    "assignment_expression": "left",
    "pair": "key",
    "public_field_definition": "name",
    "field_definition": "property",
    "assignment": "left",  # python: f = lambda ...
}


def _extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:].lower() if dot > 0 else ""


def detect_lang(path: str) -> str:
    """Return ``ts``, ``js``, ``py`` or ``unknown`` for *path*."""
    entry = _EXTENSIONS.get(_extension(path))
    return entry[0] if entry else "unknown"


@functools.lru_cache(maxsize=None)
def _get_parser(grammar: str):
    """Load a tree-sitter parser once; ``None`` if the grammar is unusable."""
    try:
        from tree_sitter_language_pack import get_parser

        return get_parser(grammar)
    except Exception as e:
        logger.warning(
            "tree-sitter grammar %r unavailable, treating as plain text: %s",
            grammar,
            e,
        )
        return None


def _parser_for(path: str):
    entry = _EXTENSIONS.get(_extension(path))
    if entry is None:
        return None
    return _get_parser(entry[1])


# ---------------------------------------------------------------------------
# Position arithmetic (pure)
# ---------------------------------------------------------------------------
def position_to_index(text: str, line: int, column: int = 1) -> int:
    """
    Convert a 1-based (line, column) position into a UTF-8 byte offset.

    Lines are clamped to ``[1, line_count]``; an empty text has one empty
    line, so every position maps to 0.
    """
    lines = text.split("\n")
    target = max(1, min(line, len(lines)))
    index = 0
    for i in range(target - 1):
        index += len(lines[i].encode("utf-8")) + 1  # +1 for \n
    prefix = lines[target - 1][: max(0, column - 1)]
    return index + len(prefix.encode("utf-8"))


def line_range_to_byte_range(text: str, start_line: int, end_line: int) -> tuple[int, int]:
    """
    Byte range covering the code on lines ``start_line..end_line``.

    Leading indentation of the first line and trailing whitespace of the
    last line are excluded.
    """
    lines = text.split("\n")
    first = max(1, min(start_line, len(lines)))
    last = max(first, min(end_line, len(lines)))

    first_text = lines[first - 1]
    indent = len(first_text) - len(first_text.lstrip())
    start = position_to_index(text, first, indent + 1)

    last_text = lines[last - 1].rstrip()
    end = position_to_index(text, last, len(last_text) + 1)
    return start, max(start, end)


def slice_window(
    source: str, start_line: int, end_line: int, pad: int = DEFAULT_PAD
) -> tuple[str, int, int]:
    """Return ``(snippet, from_line, to_line)`` padded and clamped to the file."""
    lines = source.split("\n")
    from_line = max(1, min(start_line, len(lines)) - pad)
    to_line = min(len(lines), end_line + pad)
    snippet = "\n".join(lines[from_line - 1 : to_line])
    return snippet, from_line, to_line


# ---------------------------------------------------------------------------
# Node classification
# ---------------------------------------------------------------------------
def _has_class_ancestor(node) -> bool:
    parent = node.parent
    while parent is not None:
        if parent.type in _CLASS_TYPES:
            return True
        parent = parent.parent
    return False


def _classify(node) -> str | None:
    if not node.is_named:
        return None  # keyword tokens share names like "class"
    if node.type in _METHOD_TYPES:
        return "method"
    if node.type in _CLASS_TYPES:
        return "class"
    if node.type in _FUNCTION_TYPES:
        return "method" if _has_class_ancestor(node) else "function"
    return None


def _text(node) -> str | None:
    if node is None or node.text is None:
        return None
    return node.text.decode("utf-8", errors="replace")


def name_for(node) -> str | None:
    """Declared name of a symbol node, or ``None`` if none is discoverable."""
    name = node.child_by_field_name("name")
    if name is not None:
        return _text(name)

    parent = node.parent
    if parent is not None and parent.type in _BINDING_FIELDS:
        bound = parent.child_by_field_name(_BINDING_FIELDS[parent.type])
        if bound is not None and "identifier" in bound.type:
            return _text(bound)

    for child in node.children:
        if child.type in ("identifier", "type_identifier", "property_identifier"):
            return _text(child)
    return None


def _iter_symbols(node) -> Iterator[tuple[object, str]]:
    """Preorder walk yielding ``(node, symbol_type)`` for every symbol."""
    stack = [node]
    while stack:
        current = stack.pop()
        kind = _classify(current)
        if kind is not None:
            yield current, kind
        stack.extend(reversed(current.children))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def extract_context(
    file_path: str,
    source: str,
    start_line: int,
    end_line: int,
    pad: int = DEFAULT_PAD,
) -> SymbolContext:
    """Locate the symbol enclosing ``start_line..end_line`` and a snippet window.

    Never raises: unsupported languages, missing grammars and parse
    failures all degrade to ``symbol_type="unknown"`` plus the window.
    """
    snippet, snippet_start, snippet_end = slice_window(source, start_line, end_line, pad)
    lang = detect_lang(file_path)
    unknown = SymbolContext(
        language=lang,
        symbol_name=None,
        symbol_type="unknown",
        snippet=snippet,
        snippet_start_line=snippet_start,
        snippet_end_line=snippet_end,
    )

    parser = _parser_for(file_path)
    if parser is None:
        return unknown

    try:
        tree = parser.parse(source.encode("utf-8"))
        start_byte, end_byte = line_range_to_byte_range(source, start_line, end_line)
        node = tree.root_node.descendant_for_byte_range(start_byte, end_byte)
    except Exception as e:
        logger.warning("Failed to parse %s: %s", file_path, e)
        return unknown

    while node is not None:
        kind = _classify(node)
        if kind is not None:
            return SymbolContext(
                language=lang,
                symbol_name=name_for(node),
                symbol_type=kind,
                snippet=snippet,
                snippet_start_line=snippet_start,
                snippet_end_line=snippet_end,
            )
        node = node.parent

    return unknown


def chunk_file(path: str, source: str, max_chunks: int = 200) -> list[SymbolChunk]:
    """Split *source* into symbol chunks (at most *max_chunks*).

    Falls back to a single whole-file chunk when no symbol is found or the
    file cannot be parsed.
    """
    lines = source.split("\n")
    whole = [
        SymbolChunk(
            start_line=1,
            end_line=len(lines),
            symbol_type="unknown",
            symbol_name=None,
            snippet=source,
        )
    ]
    if not source.strip():
        return []

    parser = _parser_for(path)
    if parser is None:
        return whole

    try:
        tree = parser.parse(source.encode("utf-8"))
    except Exception as e:
        logger.warning("Failed to parse %s: %s", path, e)
        return whole

    chunks: list[SymbolChunk] = []
    for node, kind in _iter_symbols(tree.root_node):
        start = node.start_point[0] + 1
        end = node.end_point[0] + 1
        chunks.append(
            SymbolChunk(
                start_line=start,
                end_line=end,
                symbol_type=kind,
                symbol_name=name_for(node),
                snippet="\n".join(lines[start - 1 : end]),
            )
        )
        if len(chunks) >= max_chunks:
            break

    return chunks or whole
