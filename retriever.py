"""Top-K retrieval of related code chunks from the repository index."""

import logging
import posixpath
from collections.abc import Callable, Sequence

import numpy as np

from errors import ProviderError
from models import RelatedChunk, RepoIndex

logger = logging.getLogger(__name__)

SAME_FILE_BONUS = 0.05
SAME_DIR_BONUS = 0.02

EmbedFn = Callable[[str], Sequence[float]]


def cosine_sim(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity over the common prefix of *a* and *b*; 0 for zero vectors."""
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    va = np.asarray(a[:n], dtype=np.float64)
    vb = np.asarray(b[:n], dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def locality_bonus(entry_path: str, path_hint: str) -> float:
    """Small additive bonus for chunks near the file under review."""
    if entry_path == path_hint:
        return SAME_FILE_BONUS
    if posixpath.dirname(entry_path) == posixpath.dirname(path_hint):
        return SAME_DIR_BONUS
    return 0.0


def retrieve_similar(
    index: RepoIndex | None,
    query_text: str,
    path_hint: str,
    k: int,
    embed: EmbedFn,
) -> list[RelatedChunk]:
    """
    Return up to *k* indexed chunks most similar to *query_text*.

    Fail-open: an absent/empty index, ``k <= 0`` or any provider error
    while embedding the query yields an empty list.
    """
    if index is None or not index.entries or k <= 0:
        return []

    try:
        query = list(embed(query_text))
    except ProviderError as e:
        logger.warning("Retrieval skipped (%s): %s", type(e).__name__, e)
        return []

    scored = [
        (cosine_sim(query, entry.embedding) + locality_bonus(entry.path, path_hint), entry)
        for entry in index.entries
    ]
    # Stable sort keeps index order among equal scores
    scored.sort(key=lambda pair: pair[0], reverse=True)

    return [
        RelatedChunk(
            path=entry.path,
            start_line=entry.start_line,
            end_line=entry.end_line,
            symbol_type=entry.symbol_type,
            symbol_name=entry.symbol_name,
            snippet=entry.snippet,
        )
        for _, entry in scored[:k]
    ]
