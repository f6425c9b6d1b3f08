"""Plan and apply safe auto-fixes from review findings.

Planning is pure: findings in, conflict-free FixPlans out. Applying splices
each file bottom-to-top so earlier edits never shift later line numbers.
"""

import logging
import subprocess
from collections.abc import Collection, Iterable
from pathlib import Path

from errors import FixConflictError
from models import Finding, FixPlan

logger = logging.getLogger(__name__)

COMMIT_MESSAGE = (
    "chore(ai-fix): apply safe auto-fixes\n\n"
    "Automated by diffscope."
)


def _group_by_path(plans: Iterable[FixPlan]) -> dict[str, list[FixPlan]]:
    grouped: dict[str, list[FixPlan]] = {}
    for plan in plans:
        grouped.setdefault(plan.path, []).append(plan)
    return grouped


def is_fixable(
    finding: Finding, allowed_categories: Collection[str], max_lines: int
) -> bool:
    """Suggestion present, category allowed, not high severity, small enough."""
    if not finding.has_suggestion:
        return False
    if finding.category not in allowed_categories:
        return False
    if finding.severity == "high":
        return False
    span = max(1, finding.end_line - finding.start_line + 1)
    return span <= max_lines


def collect_fixes(
    findings: Iterable[Finding],
    allowed_categories: Collection[str],
    max_lines: int,
) -> list[FixPlan]:
    """
    Turn eligible findings into non-overlapping FixPlans.

    Within a file, plans are walked by ascending start line and any plan
    starting inside an already kept span is dropped, so the earliest plan
    wins a conflict.
    """
    candidates: list[FixPlan] = []
    for finding in findings:
        if not is_fixable(finding, allowed_categories, max_lines):
            continue
        replacement = finding.suggestion.replace("\r\n", "\n").split("\n")
        candidates.append(
            FixPlan(
                path=finding.path,
                start=finding.start_line,
                end=max(finding.start_line, finding.end_line),
                replacement=replacement,
                title=finding.title or "Auto-fix",
            )
        )

    kept: list[FixPlan] = []
    for path, plans in _group_by_path(candidates).items():
        plans.sort(key=lambda p: p.start)
        claimed: list[FixPlan] = []
        for plan in plans:
            if claimed and plan.start <= claimed[-1].end:
                logger.info(
                    "  Dropping overlapping fix %r at %s:%d", plan.title, path, plan.start
                )
                continue
            claimed.append(plan)
        kept.extend(claimed)
    return kept


def _check_no_overlap(path: str, plans: list[FixPlan]) -> None:
    """*plans* sorted by descending start."""
    for upper, lower in zip(plans, plans[1:]):
        if lower.end >= upper.start:
            raise FixConflictError(
                f"Overlapping fixes in {path}: "
                f"{lower.start}-{lower.end} and {upper.start}-{upper.end}"
            )


def apply_fixes_to_disk(root: Path, fixes: Iterable[FixPlan]) -> list[str]:
    """
    Apply *fixes* under *root*; return the paths that were rewritten.

    Files that no longer exist are skipped. Overlapping plans for one file
    raise FixConflictError before that file is touched.
    """
    changed: list[str] = []
    for rel, plans in _group_by_path(fixes).items():
        full = root / rel
        if not full.is_file():
            logger.info("  Skipping fixes for missing file %s", rel)
            continue

        plans = sorted(plans, key=lambda p: p.start, reverse=True)
        _check_no_overlap(rel, plans)

        text = full.read_text(encoding="utf-8").replace("\r\n", "\n")
        lines = text.split("\n")

        applied = 0
        for plan in plans:
            start = max(1, plan.start) - 1
            end = max(1, plan.end)  # exclusive slice end
            lines[start:end] = plan.replacement
            applied += 1

        if applied:
            full.write_text("\n".join(lines), encoding="utf-8")
            changed.append(rel)
            logger.info("  🔧 Applied %d fix(es) to %s", applied, rel)
    return changed


def _git(*args: str, cwd: Path, check: bool = True) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args], cwd=cwd, check=check, capture_output=True, text=True
    )


def commit_and_push(
    root: Path,
    head_ref: str,
    actor: str,
    email: str,
    remote_url: str | None = None,
) -> str | None:
    """
    Commit working-tree changes and push them to *head_ref*.

    Returns the new commit SHA, or ``None`` when there was nothing to commit.
    """
    checkout = _git("checkout", head_ref, cwd=root, check=False)
    if checkout.returncode != 0:
        logger.info("  Staying on current branch: %s", checkout.stderr.strip())

    _git("add", "-A", cwd=root)
    if _git("diff", "--cached", "--quiet", cwd=root, check=False).returncode == 0:
        logger.info("ℹ️  No auto-fix changes to commit.")
        return None

    _git("config", "user.name", actor, cwd=root)
    _git("config", "user.email", email, cwd=root)
    _git("commit", "-m", COMMIT_MESSAGE, cwd=root)

    if remote_url:
        _git("remote", "set-url", "origin", remote_url, cwd=root)
    _git("push", "origin", head_ref, cwd=root)

    return _git("rev-parse", "HEAD", cwd=root).stdout.strip()
