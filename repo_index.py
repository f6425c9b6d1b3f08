"""Repository chunker and persisted embedding index."""

import hashlib
import logging
import os
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from ast_context import SOURCE_EXTENSIONS, chunk_file
from errors import ProviderError, QuotaExceeded
from models import IndexEntry, RepoIndex

logger = logging.getLogger(__name__)

INDEX_FILENAME = "repo_index.json"
MAX_CHUNKS_PER_FILE = 200

DENY_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        ".diffscope",
        "dist",
        "build",
        "out",
        "__pycache__",
        ".venv",
        "venv",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
    }
)


def sha1(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def list_source_files(root: Path) -> list[str]:
    """Repository-relative POSIX paths of every recognised source file."""
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so os.walk never descends into denied directories
        dirnames[:] = sorted(d for d in dirnames if d not in DENY_DIRS)
        for name in sorted(filenames):
            if Path(name).suffix.lower() not in SOURCE_EXTENSIONS:
                continue
            full = Path(dirpath) / name
            if full.is_symlink():
                continue
            found.append(full.relative_to(root).as_posix())
    return found


def embedding_text(path: str, symbol_type: str, symbol_name: str | None, snippet: str) -> str:
    return f"{path}\n{symbol_type} {symbol_name or ''}\n{snippet}"


def load_index(index_path: Path) -> RepoIndex | None:
    """Return the persisted index, or ``None`` if missing or unreadable."""
    if not index_path.exists():
        return None
    try:
        return RepoIndex.model_validate_json(index_path.read_text(encoding="utf-8"))
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Ignoring unreadable index %s: %s", index_path, e)
        return None


def save_index(index: RepoIndex, index_path: Path) -> None:
    index_path.parent.mkdir(parents=True, exist_ok=True)
    index_path.write_text(index.model_dump_json(), encoding="utf-8")


def build_index(
    root: Path,
    file_filter: Callable[[str], bool],
    embed: Callable[[str], Sequence[float]],
    model: str,
) -> RepoIndex | None:
    """
    Chunk and embed every source file under *root*.

    Returns ``None`` as soon as the embedding provider signals a quota or
    rate limit; any other embedding error skips only that chunk.
    """
    files = [p for p in list_source_files(root) if file_filter(p)]
    logger.info("Indexing %d source file(s)...", len(files))

    entries: list[IndexEntry] = []
    for rel in files:
        try:
            source = (root / rel).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("  Skipping %s: %s", rel, e)
            continue

        file_hash = sha1(source)
        for chunk in chunk_file(rel, source, max_chunks=MAX_CHUNKS_PER_FILE):
            text = embedding_text(rel, chunk.symbol_type, chunk.symbol_name, chunk.snippet)
            try:
                vector = list(embed(text))
            except QuotaExceeded as e:
                logger.warning("Embedding quota hit, abandoning index build: %s", e)
                return None
            except ProviderError as e:
                logger.warning(
                    "  Embedding failed for %s:%d-%d: %s",
                    rel,
                    chunk.start_line,
                    chunk.end_line,
                    e,
                )
                continue

            entries.append(
                IndexEntry(
                    id=sha1(f"{rel}:{chunk.start_line}-{chunk.end_line}:{file_hash}"),
                    path=rel,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    symbol_type=chunk.symbol_type,
                    symbol_name=chunk.symbol_name,
                    snippet=chunk.snippet,
                    file_hash=file_hash,
                    embedding=vector,
                )
            )

    return RepoIndex(
        model=model,
        created_at=datetime.now(timezone.utc).isoformat(),
        entries=entries,
    )


def build_or_load_index(
    root: Path,
    state_dir: Path,
    file_filter: Callable[[str], bool],
    embed: Callable[[str], Sequence[float]],
    model: str,
    k: int,
    enabled: bool = True,
) -> RepoIndex | None:
    """
    Load the persisted index, or build and persist a fresh one.

    Hard-off (``enabled`` false or ``k <= 0``) returns ``None`` without
    touching disk or the embedding provider. A persisted index is returned
    as-is; delete it to force a rebuild.
    """
    if not enabled or k <= 0:
        return None

    index_path = state_dir / INDEX_FILENAME
    existing = load_index(index_path)
    if existing is not None:
        logger.info("Loaded index with %d chunk(s) from %s", len(existing.entries), index_path)
        return existing

    index = build_index(root, file_filter, embed, model)
    if index is None:
        return None

    save_index(index, index_path)
    logger.info("Persisted index with %d chunk(s) to %s", len(index.entries), index_path)
    return index
