"""PR triage: size, languages, touched areas and an overall risk level."""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from models import ChangedFile, Finding

_RISK_RANK = {"low": 0, "medium": 1, "high": 2}

_TEST_PATH = re.compile(r"(^|/)(test|tests|__tests__)/|\.(spec|test)\.[tj]sx?$|(^|/)test_[^/]*\.py$|_test\.py$")
_DOC_PATH = re.compile(r"\.md$|^docs/")
_CI_PATH = re.compile(r"^\.github/workflows/")
_DEPS_PATH = re.compile(
    r"(package(-lock)?\.json|pnpm-lock\.yaml|yarn\.lock|requirements[^/]*\.txt"
    r"|pyproject\.toml|Pipfile|Pipfile\.lock|poetry\.lock|uv\.lock)$",
    re.IGNORECASE,
)
_SECURITY_PATH = re.compile(
    r"(auth|secur|token|secret|crypto|Dockerfile|compose\.ya?ml|nginx|Caddyfile|server)",
    re.IGNORECASE,
)


@dataclass
class Triage:
    size_bucket: str
    lines_changed: int
    files_changed: int
    languages: list[str] = field(default_factory=list)
    areas: list[str] = field(default_factory=list)
    risk: str = "low"
    labels: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


# name -> (color, description)
DEFAULT_LABELS: dict[str, tuple[str, str]] = {
    "ai:risk-high": ("d73a4a", "AI triage: high risk change"),
    "ai:risk-medium": ("dbab09", "AI triage: medium risk change"),
    "ai:risk-low": ("0e8a16", "AI triage: low risk change"),
    "size:XS": ("ededed", "≤20 lines changed"),
    "size:S": ("cfd3d7", "≤60 lines changed"),
    "size:M": ("bfdadc", "≤200 lines changed"),
    "size:L": ("b3c2f2", "≤500 lines changed"),
    "size:XL": ("b2a0fa", ">500 lines changed"),
    "lang:ts": ("0b61a4", "TypeScript change"),
    "lang:js": ("0366d6", "JavaScript change"),
    "lang:py": ("2b7489", "Python change"),
    "area:security": ("b60205", "Security-related area"),
    "area:deps": ("5319e7", "Dependencies / lockfiles"),
    "area:ci": ("1d76db", "CI / workflow"),
    "area:tests": ("0e8a16", "Tests"),
    "area:docs": ("bfdadc", "Documentation"),
}


def diff_stats(patch: str | None) -> tuple[int, int]:
    """``(added, removed)`` line counts of a per-file patch."""
    added = removed = 0
    for line in (patch or "").split("\n"):
        if not line or line.startswith(("+++ ", "--- ", "@@")):
            continue
        if line[0] == "+":
            added += 1
        elif line[0] == "-":
            removed += 1
    return added, removed


def lang_of(path: str) -> str:
    if re.search(r"\.(ts|tsx|mts|cts)$", path):
        return "ts"
    if re.search(r"\.(m?js|cjs|jsx)$", path):
        return "js"
    if path.endswith(".py"):
        return "py"
    return "other"


def size_bucket(lines: int) -> str:
    if lines <= 20:
        return "XS"
    if lines <= 60:
        return "S"
    if lines <= 200:
        return "M"
    if lines <= 500:
        return "L"
    return "XL"


def _bump(current: str, to: str) -> str:
    return to if _RISK_RANK[to] > _RISK_RANK[current] else current


def compute_triage(changed_files: Sequence[ChangedFile], findings: Iterable[Finding]) -> Triage:
    total = 0
    languages: list[str] = []
    areas: list[str] = []

    def note_area(area: str) -> None:
        if area not in areas:
            areas.append(area)

    for f in changed_files:
        added, removed = diff_stats(f.patch)
        total += added + removed
        lang = lang_of(f.filename)
        if lang not in languages:
            languages.append(lang)

        if _TEST_PATH.search(f.filename):
            note_area("tests")
        if _DOC_PATH.search(f.filename):
            note_area("docs")
        if _CI_PATH.search(f.filename):
            note_area("ci")
        if _DEPS_PATH.search(f.filename):
            note_area("deps")
        if _SECURITY_PATH.search(f.filename):
            note_area("security")

    findings = list(findings)
    risk = "low"
    if any(x.severity == "high" or x.category == "security" for x in findings):
        risk = _bump(risk, "high")
    elif any(x.severity == "medium" for x in findings):
        risk = _bump(risk, "medium")
    if "deps" in areas or "ci" in areas:
        risk = _bump(risk, "medium")
    if "security" in areas:
        risk = _bump(risk, "high")

    bucket = size_bucket(total)
    labels = [f"ai:risk-{risk}", f"size:{bucket}"]
    labels += [f"lang:{lang}" for lang in languages if lang != "other"]
    labels += [f"area:{area}" for area in areas]

    notes_by_area = {
        "deps": "Dependency files changed",
        "ci": "CI workflow changed",
        "tests": "Tests updated/added",
        "docs": "Docs updated",
        "security": "Security-sensitive files touched",
    }
    notes = [note for area, note in notes_by_area.items() if area in areas]

    return Triage(
        size_bucket=bucket,
        lines_changed=total,
        files_changed=len(changed_files),
        languages=languages,
        areas=areas,
        risk=risk,
        labels=labels,
        notes=notes,
    )


TRIAGE_HEADER = "**AI Triage Report**"


def build_triage_comment(t: Triage) -> str:
    bullets = [
        f"- **Risk:** {t.risk.upper()}  |  **Size:** {t.size_bucket}  |  "
        f"**Files:** {t.files_changed}  |  **Lines:** {t.lines_changed}",
        f"- **Languages:** {', '.join(t.languages) if t.languages else '-'}",
        f"- **Areas:** {', '.join(t.areas) if t.areas else '-'}",
    ]
    if t.notes:
        bullets.append(f"- **Notes:** {'; '.join(t.notes)}")
    bullets.append(f"- **Applied labels:** {', '.join(t.labels)}")

    return "\n".join(
        [
            TRIAGE_HEADER,
            "",
            *bullets,
            "",
            "_Tip: labels help codeowners & reviewers focus the right eyes on your PR._",
        ]
    )
