"""Prompt templates and permissive parsing of model output."""

import json
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from models import Finding, RelatedChunk, SymbolContext

logger = logging.getLogger(__name__)

# =============================================================================
# SHARED PIECES
# =============================================================================

_SEVERITY_GUIDE = (
    "Severity definitions (use these exactly):\n"
    "- high: Exploitable or will break under normal use"
    " (injection, data loss, crash, auth bypass)\n"
    "- medium: Edge-case bug, risky pattern or real maintainability concern\n"
    "- low: Nit, readability, docs or test improvement\n"
)

_CONFIDENCE = (
    "Only report issues you are CONFIDENT about. "
    "Do NOT speculate or report theoretical issues "
    "that require unlikely conditions.\n"
)

_SUGGESTION_RULES = (
    "When you give a suggestion, it must be the exact replacement text for "
    "lines start_line..end_line (same indentation), not advice. "
    "Omit suggestion if you cannot give a drop-in replacement.\n"
)

_SCHEMA = (
    "[\n"
    "  {\n"
    '    "path": "src/file.ts",\n'
    '    "start_line": 10,\n'
    '    "end_line": 12,\n'
    '    "category": "bug|security|performance|style|docs|test",\n'
    '    "title": "short headline",\n'
    '    "rationale": "why this matters in 1-3 sentences",\n'
    '    "suggestion": "optional: replacement code for the line range",\n'
    '    "severity": "high|medium|low",\n'
    '    "references": ["optional rule or link"]\n'
    "  }\n"
    "]\n"
)


# =============================================================================
# SYSTEM PROMPT
# =============================================================================

SYSTEM_PROMPT = (
    "You are a senior software engineer giving focused code review on diff hunks.\n"
    "Only produce actionable comments that improve correctness, security, "
    "performance, readability, docs, or tests.\n"
    "Comment only on the changed lines; use the surrounding snippet and "
    "related repository context to understand them.\n"
    "\n"
    + _SEVERITY_GUIDE
    + "\n"
    + _CONFIDENCE
    + _SUGGESTION_RULES
    + "\n"
    "Return a JSON array ONLY, using this schema:\n"
    + _SCHEMA
    + "If nothing material: return []. No prose outside JSON."
)

_FENCE_LANG = {"ts": "ts", "js": "js", "py": "python"}


def build_user_prompt(
    repo: str,
    file_path: str,
    start_line: int,
    end_line: int,
    context: SymbolContext,
    related: Sequence[RelatedChunk] = (),
) -> str:
    """Render one hunk, its symbol context and related chunks for the model."""
    fence = _FENCE_LANG.get(context.language, "")
    symbol = context.symbol_type
    if context.symbol_name:
        symbol += f" {context.symbol_name}"

    parts = [
        f"Repository: {repo}\n"
        f"File: {file_path}\n"
        f"Changed lines: {start_line}-{end_line}\n"
        f"Nearest symbol: {symbol}\n"
        f"Context snippet {context.snippet_start_line}-{context.snippet_end_line}:\n"
        f"```{fence}\n{context.snippet}\n```"
    ]

    if related:
        parts.append(f"\n\nRelated repo context (top {len(related)}):\n")
        for chunk in related:
            label = chunk.symbol_type
            if chunk.symbol_name:
                label += f" {chunk.symbol_name}"
            parts.append(
                f"\n- {chunk.path}:{chunk.start_line}-{chunk.end_line} ({label})\n"
                f"```{fence}\n{chunk.snippet}\n```\n"
            )

    return "".join(parts)


def build_messages(system: str, user: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def parse_llm_findings(text: str) -> list[Finding]:
    """
    Extract the JSON array from *text* and validate each element on its own.

    Malformed elements are dropped individually; anything that is not a JSON
    array yields an empty list.
    """
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        logger.warning("No JSON array found in model response")
        return []

    try:
        items = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        logger.warning("JSON decode error: %s", e)
        return []

    if not isinstance(items, list):
        return []

    findings: list[Finding] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            findings.append(Finding.model_validate(item))
        except ValidationError as e:
            logger.warning("Dropping malformed finding: %s", e.errors()[0]["msg"])
    return findings
