"""Merge, dedupe, rank and cap findings from every reviewer."""

import logging
from collections.abc import Iterable

from models import Finding, SeverityCounts

logger = logging.getLogger(__name__)

SEVERITY_WEIGHT: dict[str, int] = {"high": 3, "medium": 2, "low": 1}
CATEGORY_WEIGHT: dict[str, int] = {
    "security": 4,
    "bug": 3,
    "performance": 2,
    "test": 2,
    "docs": 1,
    "style": 1,
}

# Title prefix compared when deduping; a heuristic, not load-bearing
TITLE_KEY_LENGTH = 60


def score(finding: Finding) -> int:
    """Severity dominates: any severity step outweighs every category gap."""
    return SEVERITY_WEIGHT[finding.severity] * 10 + CATEGORY_WEIGHT[finding.category]


def dedupe_key(finding: Finding) -> tuple[str, int, str]:
    return (
        finding.path,
        finding.start_line,
        (finding.title or "").lower()[:TITLE_KEY_LENGTH],
    )


def _sort_key(finding: Finding) -> tuple[int, str, int]:
    return (-score(finding), finding.path, finding.start_line)


def aggregate_findings(
    findings: Iterable[Finding], max_count: int = 10
) -> tuple[list[Finding], SeverityCounts]:
    """
    Dedupe, sort and cap *findings*.

    On a dedupe-key collision the higher-scored finding is kept (the first
    seen wins a tie). Sorting is by descending score, then path, then start
    line. Counts describe the capped list, i.e. exactly what is surfaced.
    """
    seen: dict[tuple[str, int, str], Finding] = {}
    total_in = 0
    for finding in findings:
        total_in += 1
        key = dedupe_key(finding)
        existing = seen.get(key)
        if existing is None or score(finding) > score(existing):
            seen[key] = finding

    ranked = sorted(seen.values(), key=_sort_key)
    top = ranked[: max(0, max_count)]

    counts = SeverityCounts(total=len(top))
    for finding in top:
        setattr(counts, finding.severity, getattr(counts, finding.severity) + 1)

    logger.info(
        "🔀 Aggregated %d finding(s): %d unique, %d kept (cap %d)",
        total_in,
        len(ranked),
        len(top),
        max_count,
    )
    return top, counts
