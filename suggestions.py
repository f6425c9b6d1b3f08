"""Markdown rendering for review comments and the run summary."""

import re
from dataclasses import dataclass, field

from models import Finding, SeverityCounts

_MD_SPECIAL = re.compile(r"[_*`]")


def escape_md(text: str) -> str:
    return _MD_SPECIAL.sub(lambda m: "\\" + m.group(0), text)


def to_comment_body(finding: Finding) -> str:
    """Render one finding as an inline review comment."""
    lines = [
        f"**{finding.category.capitalize()}** | **{escape_md(finding.title or '')}**",
        "",
        escape_md(finding.rationale or "").strip() or "_No rationale provided._",
    ]

    if finding.has_suggestion:
        lines += ["", "```suggestion", finding.suggestion.strip("\n"), "```"]

    if finding.references:
        lines += ["", "_Refs:_ " + "; ".join(escape_md(r) for r in finding.references)]

    return "\n".join(lines)


def estimate_cost(
    prompt_tokens: int,
    completion_tokens: int,
    in_per_1k: float,
    out_per_1k: float,
) -> float:
    return (prompt_tokens / 1000) * in_per_1k + (completion_tokens / 1000) * out_per_1k


@dataclass
class RunSummary:
    """Everything the end-of-run summary reports."""

    top: list[Finding] = field(default_factory=list)
    counts: SeverityCounts = field(default_factory=SeverityCounts)
    max_comments: int = 10
    dry_run: bool = False
    posted: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    elapsed_s: float = 0.0
    cost_in_per_1k: float = 0.0
    cost_out_per_1k: float = 0.0
    index_size: int = 0
    rag_k: int = 0
    rules_enabled: bool = True
    llm_enabled: bool = True
    llm_calls: int = 0
    cache_hits: int = 0
    budget_note: str | None = None
    autofix_outcome: str = "disabled"


def build_summary_markdown(summary: RunSummary) -> str:
    """Render the run summary posted as the check-run output."""
    if summary.cost_in_per_1k > 0 or summary.cost_out_per_1k > 0:
        cost = estimate_cost(
            summary.prompt_tokens,
            summary.completion_tokens,
            summary.cost_in_per_1k,
            summary.cost_out_per_1k,
        )
        cost_line = (
            f"Estimated cost: ~${cost:.4f} "
            f"(in={summary.cost_in_per_1k}/1k, out={summary.cost_out_per_1k}/1k)"
        )
    else:
        cost_line = "_Set COST_IN_PER_1K and COST_OUT_PER_1K to estimate $ cost._"

    c = summary.counts
    lines = [
        "**AI Code Review summary**",
        "",
        f"- Total posted: **{0 if summary.dry_run else summary.posted}** (cap {summary.max_comments})"
        + (" _dry-run_" if summary.dry_run else ""),
        f"- Severity: high **{c.high}**, medium **{c.medium}**, low **{c.low}**",
        f"- Tokens: prompt **{summary.prompt_tokens}**, out **{summary.completion_tokens}**, "
        f"total **{summary.total_tokens}**",
        f"- Model calls: **{summary.llm_calls}** (cache hits {summary.cache_hits})",
        f"- Time: **{summary.elapsed_s:.1f}s**",
        f"- {cost_line}",
        f"- RAG: index **{summary.index_size}** chunks, topK **{summary.rag_k}**.",
        f"- Rules: **{'on' if summary.rules_enabled else 'off'}**, "
        f"LLM: **{'on' if summary.llm_enabled else 'off'}**",
        f"- Auto-fix: {summary.autofix_outcome}",
    ]
    if summary.budget_note:
        lines.append(f"- Budget: {summary.budget_note}")
    lines.append("")

    if summary.top:
        for i, f in enumerate(summary.top, 1):
            lines.append(
                f"{i}. `{f.path}:{f.start_line}-{f.end_line}` | "
                f"**{f.severity.upper()} {f.category}** | {escape_md(f.title)}"
            )
    else:
        lines.append("_No material issues._")

    return "\n".join(lines)
