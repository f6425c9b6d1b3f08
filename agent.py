"""
diffscope Agent - LangGraph-based review run

The run is a small state machine: load the changed files, build or load the
retrieval index, review every hunk, aggregate, then (optionally) post
comments, apply safe fixes, triage, and publish the summary.
"""

import functools
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from langgraph.graph import END, START, StateGraph

from aggregator import aggregate_findings
from autofix import apply_fixes_to_disk, collect_fixes
from cache import ResponseCache
from config import ReviewConfig, call_gemini, embed_text
from diff_parser import should_review_file
from errors import FixConflictError, ProviderError
from mock_data import MOCK_RESPONSE
from models import ChangedFile, Finding, ModelCall, RepoIndex, SeverityCounts
from repo_index import build_or_load_index
from reviewer import Budget, ReviewOutcome, review_changes
from suggestions import RunSummary, build_summary_markdown, to_comment_body
from triage import Triage, compute_triage

logger = logging.getLogger(__name__)


class Platform(Protocol):
    """What the graph needs from a review target (GitHub PR or local diff)."""

    root: Path
    repo_name: str

    def list_changed_files(self) -> list[ChangedFile]: ...

    def get_file_content(self, path: str) -> str: ...

    def post_comment(
        self, path: str, line: int, body: str, start_line: int | None = None
    ) -> None: ...

    def publish_summary(self, summary_md: str) -> None: ...

    def apply_triage(self, triage: Triage, comment: bool) -> None: ...

    def finalize_fixes(self, changed_paths: list[str]) -> str: ...


# =============================================================================
# STATE DEFINITION
# =============================================================================
@dataclass
class ReviewState:
    """
    State that flows through the review graph.

    Nodes return partial updates; LangGraph merges them into the state.
    """

    # Input (required)
    review_config: ReviewConfig
    platform: Any  # Platform

    started_at: float = field(default_factory=time.monotonic)

    # Intermediate data
    changed_files: list[ChangedFile] = field(default_factory=list)
    index: RepoIndex | None = None
    outcome: ReviewOutcome = field(default_factory=ReviewOutcome)

    # Aggregated results
    top: list[Finding] = field(default_factory=list)
    counts: SeverityCounts = field(default_factory=SeverityCounts)

    # Output
    posted: int = 0
    autofix_outcome: str = "disabled"
    triage: Triage | None = None
    summary_md: str = ""
    errors: list[str] = field(default_factory=list)


def _with_error(state: ReviewState, message: str) -> list[str]:
    logger.error("   ❌ %s", message)
    return [*state.errors, message]


def _state_dir(state: ReviewState) -> Path:
    return state.platform.root / state.review_config.state_dir


def _mock_chat(messages) -> ModelCall:
    return ModelCall(text=MOCK_RESPONSE)


# =============================================================================
# NODE FUNCTIONS
# =============================================================================
def load_changes(state: ReviewState) -> dict:
    """
    Node 1: List the changed files of the PR or local diff.

    Updates: changed_files, errors
    """
    logger.info("📥 Loading changes for %s...", state.platform.repo_name)
    try:
        files = state.platform.list_changed_files()
    except (ValueError, OSError) as e:
        return {"changed_files": [], "errors": _with_error(state, f"Failed to load changes: {e}")}

    logger.info("   Found %d changed file(s)", len(files))
    return {"changed_files": files}


def build_index(state: ReviewState) -> dict:
    """
    Node 2: Load or build the repository embedding index.

    Skipped when retrieval is off or the model is not in use.
    Updates: index
    """
    config = state.review_config
    if not (config.llm_enabled and config.retrieval_active) or not state.changed_files:
        return {"index": None}

    embed = functools.partial(
        embed_text, api_key=config.gemini_api_key, model=config.embedding_model
    )
    logger.info("🧭 Preparing retrieval index (k=%d)...", config.rag_k)
    try:
        index = build_or_load_index(
            state.platform.root,
            _state_dir(state),
            lambda path: should_review_file(path) and config.allow_file(path),
            embed,
            config.embedding_model,
            config.rag_k,
            enabled=config.rag_enabled,
        )
    except (ProviderError, OSError) as e:
        logger.warning("   ⚠️  Retrieval disabled for this run: %s", e)
        return {"index": None}

    if index is None:
        logger.warning("   ⚠️  No index available, reviewing without retrieval")
    return {"index": index}


def review_hunks(state: ReviewState) -> dict:
    """
    Node 3: Run rules and the model over every changed hunk.

    Updates: outcome
    """
    config = state.review_config
    if not state.changed_files:
        return {"outcome": ReviewOutcome()}

    cache = None
    if config.use_mock:
        logger.info("[MOCK MODE - No API call made]")
        chat = _mock_chat
    else:
        chat = functools.partial(
            call_gemini, api_key=config.gemini_api_key, model=config.chat_model
        )
        cache = ResponseCache.in_dir(_state_dir(state), config.cache_ttl_hours)

    embed = None
    if state.index is not None:
        embed = functools.partial(
            embed_text, api_key=config.gemini_api_key, model=config.embedding_model
        )

    outcome = review_changes(
        state.changed_files,
        state.platform,
        config,
        state.platform.repo_name,
        chat=chat,
        embed=embed,
        index=state.index,
        cache=cache,
        budget=Budget(
            config.max_llm_calls,
            config.time_budget_s,
            config.token_budget,
            started_at=state.started_at,
        ),
    )

    if cache is not None:
        try:
            cache.save()
        except OSError as e:
            logger.warning("   ⚠️  Could not persist response cache: %s", e)

    return {"outcome": outcome}


def aggregate(state: ReviewState) -> dict:
    """
    Node 4: Dedupe, rank and cap the findings.

    Updates: top, counts
    """
    top, counts = aggregate_findings(state.outcome.findings, state.review_config.max_comments)
    return {"top": top, "counts": counts}


def post_comments(state: ReviewState) -> dict:
    """
    Node 5: Post one inline comment per surfaced finding.

    A failed post is logged and the rest continue.
    Updates: posted
    """
    logger.info("📝 Posting %d comment(s)...", len(state.top))
    posted = 0
    for f in state.top:
        try:
            state.platform.post_comment(
                f.path, f.end_line, to_comment_body(f), start_line=f.start_line
            )
        except ValueError as e:
            logger.warning(
                "  ⚠️  Failed to post comment at %s:%d (%s)", f.path, f.end_line, str(e)[:200]
            )
            continue
        posted += 1
        logger.info("  ✅ Comment posted: %s:%d %s", f.path, f.end_line, f.title)
    return {"posted": posted}


def skip_comments(state: ReviewState) -> dict:
    if state.review_config.dry_run and state.top:
        logger.info("🧪 Dry-run mode: not posting comments. Findings would be:")
        for f in state.top:
            logger.info(
                "   [%s/%s] %s:%d-%d %s",
                f.severity,
                f.category,
                f.path,
                f.start_line,
                f.end_line,
                f.title,
            )
    return {"posted": 0}


def apply_fixes(state: ReviewState) -> dict:
    """
    Node 6: Apply eligible suggestions and hand the result to the platform.

    Updates: autofix_outcome, errors
    """
    config = state.review_config
    if not config.autofix_enabled:
        return {"autofix_outcome": "disabled"}
    if config.dry_run:
        return {"autofix_outcome": "skipped (dry-run)"}

    plans = collect_fixes(state.top, config.autofix_categories, config.autofix_max_lines)
    if not plans:
        return {"autofix_outcome": "no changes"}

    logger.info("🩹 Applying %d auto-fix(es)...", len(plans))
    try:
        changed = apply_fixes_to_disk(state.platform.root, plans)
        outcome = state.platform.finalize_fixes(changed)
    except (FixConflictError, OSError, ValueError) as e:
        return {
            "autofix_outcome": f"failed ({e})",
            "errors": _with_error(state, f"Auto-fix failed: {e}"),
        }

    logger.info("   %s", outcome)
    return {"autofix_outcome": outcome}


def triage_pr(state: ReviewState) -> dict:
    """
    Node 7: Label the change by size, language, area and risk.

    Updates: triage
    """
    if not state.review_config.triage_enabled or not state.changed_files:
        return {"triage": None}

    result = compute_triage(state.changed_files, state.top)
    logger.info("🏷️  Triage: risk %s, size %s", result.risk, result.size_bucket)
    if not state.review_config.dry_run:
        state.platform.apply_triage(result, state.review_config.triage_comment)
    return {"triage": result}


def publish_summary(state: ReviewState) -> dict:
    """
    Node 8: Render and publish the run summary.

    Updates: summary_md, errors
    """
    config = state.review_config
    outcome = state.outcome
    summary = RunSummary(
        top=state.top,
        counts=state.counts,
        max_comments=config.max_comments,
        dry_run=config.dry_run,
        posted=state.posted,
        prompt_tokens=outcome.prompt_tokens,
        completion_tokens=outcome.completion_tokens,
        total_tokens=outcome.total_tokens,
        elapsed_s=time.monotonic() - state.started_at,
        cost_in_per_1k=config.cost_in_per_1k,
        cost_out_per_1k=config.cost_out_per_1k,
        index_size=len(state.index.entries) if state.index else 0,
        rag_k=config.rag_k if state.index else 0,
        rules_enabled=config.rules_enabled,
        llm_enabled=config.llm_enabled,
        llm_calls=outcome.llm_calls,
        cache_hits=outcome.cache_hits,
        budget_note=outcome.budget_note,
        autofix_outcome=state.autofix_outcome,
    )
    summary_md = build_summary_markdown(summary)

    try:
        state.platform.publish_summary(summary_md)
    except ValueError as e:
        return {
            "summary_md": summary_md,
            "errors": _with_error(state, f"Failed to publish summary: {str(e)[:200]}"),
        }

    logger.info("  ✅ Summary published.")
    return {"summary_md": summary_md}


# =============================================================================
# DECISION FUNCTIONS (for conditional edges)
# =============================================================================
def should_post_comments(state: ReviewState) -> str:
    """
    Returns:
        "post_comments" when there is something to post and posting is allowed
        "skip" on dry-run or when nothing was found
    """
    if state.review_config.dry_run:
        logger.info("🔀 Decision: dry-run → not posting")
        return "skip"
    if state.top:
        logger.info("🔀 Decision: %d finding(s) → posting comments", len(state.top))
        return "post_comments"
    logger.info("🔀 Decision: no findings → nothing to post")
    return "skip"


# =============================================================================
# GRAPH CONSTRUCTION
# =============================================================================
def build_review_graph() -> StateGraph:
    graph = StateGraph(ReviewState)

    graph.add_node("load_changes", load_changes)
    graph.add_node("build_index", build_index)
    graph.add_node("review_hunks", review_hunks)
    graph.add_node("aggregate", aggregate)
    graph.add_node("post_comments", post_comments)
    graph.add_node("skip_comments", skip_comments)
    graph.add_node("apply_fixes", apply_fixes)
    graph.add_node("triage_pr", triage_pr)
    graph.add_node("publish_summary", publish_summary)

    graph.add_edge(START, "load_changes")
    graph.add_edge("load_changes", "build_index")
    graph.add_edge("build_index", "review_hunks")
    graph.add_edge("review_hunks", "aggregate")

    graph.add_conditional_edges(
        "aggregate",
        should_post_comments,
        {
            "post_comments": "post_comments",
            "skip": "skip_comments",
        },
    )

    graph.add_edge("post_comments", "apply_fixes")
    graph.add_edge("skip_comments", "apply_fixes")
    graph.add_edge("apply_fixes", "triage_pr")
    graph.add_edge("triage_pr", "publish_summary")
    graph.add_edge("publish_summary", END)

    return graph


def create_agent():
    """Create and compile the review agent."""
    return build_review_graph().compile()


def run_review(config: ReviewConfig, platform: Platform) -> dict:
    """Run the whole review graph once; returns the final state as a dict."""
    agent = create_agent()
    logger.info("🤖 Running diffscope on %s", platform.repo_name)
    return agent.invoke(ReviewState(review_config=config, platform=platform))
