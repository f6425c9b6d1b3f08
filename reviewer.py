"""Hunk-level review orchestration: rules + cached, budgeted model calls."""

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Protocol

from ast_context import detect_lang, extract_context
from cache import ResponseCache, hash_key
from config import ReviewConfig
from diff_parser import parse_patch_to_hunks, should_review_file
from errors import ProviderError
from models import ChangedFile, Finding, Hunk, ModelCall, RepoIndex
from prompts import SYSTEM_PROMPT, build_messages, build_user_prompt, parse_llm_findings
from retriever import retrieve_similar
from rules import run_rules

logger = logging.getLogger(__name__)

ChatFn = Callable[[Sequence[Mapping[str, str]]], ModelCall]
EmbedFn = Callable[[str], Sequence[float]]


class ContentSource(Protocol):
    def get_file_content(self, path: str) -> str: ...


# ---------------------------------------------------------------------------
# Budgets
# ---------------------------------------------------------------------------
class Budget:
    """Soft limits checked before each new model call; in-flight calls finish."""

    def __init__(
        self,
        max_calls: int,
        time_budget_s: float,
        token_budget: int,
        started_at: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_calls = max_calls
        self.time_budget_s = time_budget_s
        self.token_budget = token_budget
        self._clock = clock
        self._started_at = clock() if started_at is None else started_at
        self._lock = threading.Lock()
        self.calls = 0
        self.tokens = 0
        self.exhausted: str | None = None

    def try_acquire(self) -> bool:
        """Reserve one model call, or record why no more may start."""
        with self._lock:
            if self.calls >= self.max_calls:
                self.exhausted = f"max model calls ({self.max_calls}) reached"
            elif self._clock() - self._started_at >= self.time_budget_s:
                self.exhausted = f"time budget ({self.time_budget_s:.0f}s) elapsed"
            elif self.tokens >= self.token_budget:
                self.exhausted = f"token budget ({self.token_budget}) spent"
            else:
                self.calls += 1
                return True
            return False

    def add_tokens(self, count: int) -> None:
        with self._lock:
            self.tokens += count


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass
class HunkTask:
    """One model request for one hunk."""

    path: str
    hunk: Hunk
    messages: list[dict[str, str]]


@dataclass
class ReviewOutcome:
    """Everything collected while reviewing the changed files."""

    findings: list[Finding] = field(default_factory=list)
    files_reviewed: int = 0
    hunks_reviewed: int = 0
    llm_calls: int = 0
    cache_hits: int = 0
    skipped_hunks: int = 0
    failed_hunks: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    budget_note: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def normalise_llm_findings(findings: list[Finding], path: str, hunk: Hunk) -> list[Finding]:
    """Anchor model findings to the reviewed file and hunk."""
    for finding in findings:
        finding.path = path
        finding.start_line = finding.start_line or hunk.start_line
        finding.end_line = finding.end_line or hunk.end_line
        if finding.end_line < finding.start_line:
            finding.end_line = finding.start_line
    return findings


def reviewable(file: ChangedFile, config: ReviewConfig) -> bool:
    if file.status == "removed":
        return False
    if not should_review_file(file.filename):
        return False
    if not config.allow_file(file.filename):
        logger.info("   🚫 Skipping %s (filtered)", file.filename)
        return False
    return detect_lang(file.filename) != "unknown"


def _request_model(
    task: HunkTask,
    model: str,
    chat: ChatFn,
    cache: ResponseCache | None,
    budget: Budget,
) -> tuple[ModelCall | None, bool]:
    """Returns ``(call, from_cache)``; ``(None, False)`` if over budget."""
    key = hash_key(model, task.messages)
    if cache is not None:
        cached = cache.get_fresh(key)
        if cached is not None:
            return cached, True

    if not budget.try_acquire():
        return None, False

    call = chat(task.messages)
    budget.add_tokens(call.total_tokens)
    if cache is not None:
        cache.put(key, call)
    return call, False


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------
def review_changes(
    files: Sequence[ChangedFile],
    source: ContentSource,
    config: ReviewConfig,
    repo_name: str,
    *,
    chat: ChatFn,
    embed: EmbedFn | None = None,
    index: RepoIndex | None = None,
    cache: ResponseCache | None = None,
    budget: Budget | None = None,
) -> ReviewOutcome:
    """
    Review every hunk of every reviewable file.

    Rule findings are produced inline. Model calls run on a bounded thread
    pool; results are merged on this thread only. A failing model call
    drops only that hunk's model findings.
    """
    budget = budget or Budget(
        config.max_llm_calls, config.time_budget_s, config.token_budget
    )
    outcome = ReviewOutcome()

    with ThreadPoolExecutor(max_workers=max(1, config.llm_concurrency)) as pool:
        pending: dict[Future, HunkTask] = {}

        for file in files:
            if not reviewable(file, config):
                continue

            hunks = parse_patch_to_hunks(file.patch)
            if not hunks:
                continue

            try:
                text = source.get_file_content(file.filename)
            except (OSError, UnicodeDecodeError, ValueError) as e:
                logger.warning("   ⚠️  Cannot read %s: %s", file.filename, e)
                continue

            outcome.files_reviewed += 1
            logger.info("📄 %s (%d hunk(s))", file.filename, len(hunks))

            for hunk in hunks:
                outcome.hunks_reviewed += 1

                if config.rules_enabled:
                    outcome.findings.extend(
                        run_rules(
                            file.filename,
                            text,
                            hunk.start_line,
                            hunk.end_line,
                            allow_console=config.allow_console,
                        )
                    )

                if not config.llm_enabled:
                    continue

                context = extract_context(
                    file.filename, text, hunk.start_line, hunk.end_line
                )
                related = []
                if index is not None and embed is not None:
                    related = retrieve_similar(
                        index, context.snippet, file.filename, config.rag_k, embed
                    )

                user = build_user_prompt(
                    repo_name,
                    file.filename,
                    hunk.start_line,
                    hunk.end_line,
                    context,
                    related,
                )
                task = HunkTask(
                    path=file.filename,
                    hunk=hunk,
                    messages=build_messages(SYSTEM_PROMPT, user),
                )
                future = pool.submit(
                    _request_model, task, config.chat_model, chat, cache, budget
                )
                pending[future] = task

        for future in as_completed(pending):
            task = pending[future]
            try:
                call, from_cache = future.result()
            except ProviderError as e:
                outcome.failed_hunks += 1
                logger.warning(
                    "  ⚠️  Model error for %s:%d-%d (%s): %s",
                    task.path,
                    task.hunk.start_line,
                    task.hunk.end_line,
                    type(e).__name__,
                    str(e)[:200],
                )
                continue

            if call is None:
                outcome.skipped_hunks += 1
                continue

            if from_cache:
                outcome.cache_hits += 1
            else:
                outcome.llm_calls += 1
                outcome.prompt_tokens += call.prompt_tokens
                outcome.completion_tokens += call.completion_tokens
                outcome.total_tokens += call.total_tokens

            findings = parse_llm_findings(call.text)
            outcome.findings.extend(normalise_llm_findings(findings, task.path, task.hunk))

    if outcome.skipped_hunks:
        outcome.budget_note = (
            f"{budget.exhausted}; model review skipped for "
            f"{outcome.skipped_hunks} hunk(s)"
        )
        logger.warning("⏱️  %s", outcome.budget_note)

    logger.info(
        "🔍 Reviewed %d file(s), %d hunk(s): %d finding(s), %d model call(s), %d cached",
        outcome.files_reviewed,
        outcome.hunks_reviewed,
        len(outcome.findings),
        outcome.llm_calls,
        outcome.cache_hits,
    )
    return outcome
