"""Shared configuration, provider clients and utilities for diffscope."""

import fnmatch
import functools
import logging
import os
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from dotenv import load_dotenv
from google import genai
from google.api_core.exceptions import (
    DeadlineExceeded,
    GoogleAPIError,
    InternalServerError,
    ResourceExhausted,
    ServiceUnavailable,
    TooManyRequests,
)
from google.genai import errors as genai_errors
from google.genai import types as genai_types
import httpx

from errors import MissingCredential, QuotaExceeded, TransportError
from models import CATEGORIES, ModelCall

# ---------------------------------------------------------------------------
# Environment & logging (initialised once on first import)
# ---------------------------------------------------------------------------
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_CHAT_MODEL: str = "gemini-2.5-flash-lite"
DEFAULT_EMBEDDING_MODEL: str = "gemini-embedding-001"
STATE_DIR: str = ".diffscope"
MAX_EMBED_CHARS = 8000

DEFAULT_AUTOFIX_CATEGORIES: frozenset[str] = frozenset(
    {"style", "docs", "test", "performance"}
)

LABEL_PREFIX = "ai-review:"

# Repo format: "owner/repo"
_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")

# Gemini errors worth retrying (transient)
_RETRYABLE_GEMINI_ERRORS: tuple[type[Exception], ...] = (
    ServiceUnavailable,
    DeadlineExceeded,
    InternalServerError,
    genai_errors.ServerError,
    httpx.TimeoutException,
)

# Gemini errors that mean "stop asking for now"
_QUOTA_GEMINI_ERRORS: tuple[type[Exception], ...] = (
    TooManyRequests,
    ResourceExhausted,
)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def validate_repo(repo: str) -> str:
    """Validate repository string matches 'owner/repo' format.

    Returns *repo* unchanged on success; raises ``ValueError`` otherwise.
    """
    if not _REPO_PATTERN.match(repo):
        raise ValueError(
            f"Invalid repo format: {repo!r}. Expected 'owner/repo' "
            f"(e.g. 'octo/webapp')."
        )
    return repo


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ReviewConfig:
    """Effective settings for one run. Built once, passed everywhere."""

    # Credentials
    github_token: str = ""
    reviewer_token: str = ""
    gemini_api_key: str = ""

    # Models
    chat_model: str = DEFAULT_CHAT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL

    # Controls
    skip_all: bool = False
    dry_run: bool = False
    max_comments: int = 10
    only_globs: tuple[str, ...] = ()
    skip_globs: tuple[str, ...] = ()
    rules_enabled: bool = True
    llm_enabled: bool = True
    allow_console: bool = False
    use_mock: bool = False

    # Retrieval
    rag_k: int = 6
    rag_enabled: bool = True

    # Cache & budgets
    cache_ttl_hours: float = 168.0
    llm_concurrency: int = 4
    max_llm_calls: int = 40
    time_budget_s: float = 300.0
    token_budget: int = 200_000

    # Auto-fix
    autofix_enabled: bool = False
    autofix_categories: frozenset[str] = field(
        default_factory=lambda: DEFAULT_AUTOFIX_CATEGORIES
    )
    autofix_max_lines: int = 20

    # Triage
    triage_enabled: bool = True
    triage_comment: bool = False

    # Pricing ($ per 1k tokens, 0 = disabled)
    cost_in_per_1k: float = 0.0
    cost_out_per_1k: float = 0.0

    # GitHub Actions context
    event_path: str = ""
    repository: str = ""
    actor: str = ""

    state_dir: str = STATE_DIR

    @property
    def retrieval_active(self) -> bool:
        return self.rag_enabled and self.rag_k > 0 and not self.use_mock

    def allow_file(self, path: str) -> bool:
        """Apply the only/skip glob filters to a repository-relative path."""
        allowed = not self.only_globs or _matches_any(path, self.only_globs)
        return allowed and not _matches_any(path, self.skip_globs)


def _matches_any(path: str, patterns: Sequence[str]) -> bool:
    for pattern in patterns:
        if fnmatch.fnmatchcase(path, pattern):
            return True
        # "src/**" should also match "src" itself and "**/x" a top-level "x"
        if pattern.endswith("/**") and path == pattern[:-3]:
            return True
        if pattern.startswith("**/") and fnmatch.fnmatchcase(path, pattern[3:]):
            return True
    return False


def _flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    try:
        value = int(env.get(name, ""))
    except ValueError:
        return default
    return value if value >= minimum else default


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        value = float(env.get(name, ""))
    except ValueError:
        return default
    return value if value >= 0 else default


def _csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _label_value(labels: Sequence[str], prefix: str) -> str | None:
    """Return the text after *prefix* for the first matching label."""
    for label in labels:
        if label.startswith(prefix):
            return label[len(prefix):]
    return None


def _label_int(
    labels: Sequence[str], prefix: str, fallback: int, minimum: int = 1
) -> int:
    raw = _label_value(labels, prefix)
    if raw is None:
        return fallback
    try:
        value = int(raw.strip())
    except ValueError:
        return fallback
    return value if value >= minimum else fallback


def _categories(raw: Sequence[str]) -> frozenset[str]:
    picked = frozenset(c.lower() for c in raw if c.lower() in CATEGORIES)
    return picked or DEFAULT_AUTOFIX_CATEGORIES


def build_config(
    labels: Sequence[str] = (), env: Mapping[str, str] | None = None
) -> ReviewConfig:
    """Merge environment and review labels into one immutable config.

    Labels win over the environment so reviewers can tune a single review.
    """
    env = os.environ if env is None else env
    has = set(labels).__contains__

    max_comments = _int(env, "MAX_COMMENTS", 10)
    max_comments = _label_int(labels, f"{LABEL_PREFIX}max-", max_comments)

    only_label = _label_value(labels, f"{LABEL_PREFIX}only=")
    skip_label = _label_value(labels, f"{LABEL_PREFIX}skip-paths=")
    only_globs = _csv(only_label) if only_label is not None else _csv(env.get("ONLY"))
    skip_globs = _csv(skip_label) if skip_label is not None else _csv(env.get("SKIP"))

    rag_k = _int(env, "RAG_K", 6, minimum=0)
    rag_k = _label_int(labels, f"{LABEL_PREFIX}rag-k=", rag_k, minimum=0)

    scope_label = _label_value(labels, f"{LABEL_PREFIX}autofix-scope=")
    scope = _csv(scope_label) if scope_label is not None else _csv(env.get("AUTOFIX_SCOPE"))

    return ReviewConfig(
        github_token=env.get("GITHUB_TOKEN", ""),
        reviewer_token=env.get("REVIEWER_TOKEN", ""),
        gemini_api_key=env.get("GEMINI_API_KEY", ""),
        chat_model=env.get("CHAT_MODEL") or DEFAULT_CHAT_MODEL,
        embedding_model=env.get("EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
        skip_all=has(f"{LABEL_PREFIX}skip") or _flag(env, "SKIP_ALL"),
        dry_run=has(f"{LABEL_PREFIX}dry-run") or _flag(env, "DRY_RUN"),
        max_comments=max_comments,
        only_globs=tuple(only_globs),
        skip_globs=tuple(skip_globs),
        rules_enabled=_flag(env, "RULES", True) and not has(f"{LABEL_PREFIX}no-rules"),
        llm_enabled=_flag(env, "LLM", True) and not has(f"{LABEL_PREFIX}no-llm"),
        allow_console=has(f"{LABEL_PREFIX}allow-console") or _flag(env, "ALLOW_CONSOLE"),
        use_mock=_flag(env, "USE_MOCK"),
        rag_k=rag_k,
        rag_enabled=_flag(env, "RAG", True) and not has(f"{LABEL_PREFIX}no-rag"),
        cache_ttl_hours=_float(env, "CACHE_TTL_HOURS", 168.0),
        llm_concurrency=_int(env, "LLM_CONCURRENCY", 4),
        max_llm_calls=_int(env, "MAX_LLM_CALLS", 40, minimum=0),
        time_budget_s=_float(env, "TIME_BUDGET_S", 300.0),
        token_budget=_int(env, "TOKEN_BUDGET", 200_000, minimum=0),
        autofix_enabled=has(f"{LABEL_PREFIX}autofix") or _flag(env, "AUTOFIX"),
        autofix_categories=_categories(scope),
        autofix_max_lines=_int(env, "AUTOFIX_MAX_LINES", 20),
        triage_enabled=_flag(env, "TRIAGE", True),
        triage_comment=_flag(env, "TRIAGE_COMMENT"),
        cost_in_per_1k=_float(env, "COST_IN_PER_1K", 0.0),
        cost_out_per_1k=_float(env, "COST_OUT_PER_1K", 0.0),
        event_path=env.get("GITHUB_EVENT_PATH", ""),
        repository=env.get("GITHUB_REPOSITORY", ""),
        actor=env.get("GITHUB_ACTOR", ""),
    )


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------
def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable: tuple[type[Exception], ...] = (Exception,),
):
    """Decorator: retry a function with exponential back-off."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exc: Exception | None = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    last_exc = exc
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Attempt %d/%d for %s failed: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries,
                            func.__name__,
                            exc,
                            delay,
                        )
                        time.sleep(delay)
            raise last_exc  # type: ignore[misc]

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Cached API clients
# ---------------------------------------------------------------------------
@functools.lru_cache(maxsize=4)
def get_gemini_client(api_key: str) -> genai.Client:
    """Return a cached Gemini client (one per API key)."""
    if not api_key:
        raise MissingCredential("GEMINI_API_KEY not found. Set it in .env file.")
    return genai.Client(api_key=api_key)


def _translate_gemini_error(exc: Exception) -> Exception:
    """Map SDK exceptions onto the provider error taxonomy."""
    if isinstance(exc, _QUOTA_GEMINI_ERRORS):
        return QuotaExceeded(str(exc))
    if isinstance(exc, genai_errors.APIError) and exc.code == 429:
        return QuotaExceeded(str(exc))
    return TransportError(str(exc))


# ---------------------------------------------------------------------------
# Gemini chat call (with retry)
# ---------------------------------------------------------------------------
@with_retry(max_retries=3, base_delay=2.0, retryable=_RETRYABLE_GEMINI_ERRORS)
def _generate(client: genai.Client, model: str, system: str, contents: str):
    return client.models.generate_content(
        model=model,
        contents=contents,
        config=genai_types.GenerateContentConfig(
            system_instruction=system or None,
            temperature=0.2,
            response_mime_type="application/json",
        ),
    )


def call_gemini(
    messages: Sequence[Mapping[str, str]],
    *,
    api_key: str,
    model: str = DEFAULT_CHAT_MODEL,
) -> ModelCall:
    """Send an ordered list of ``{role, content}`` messages to Gemini.

    System messages become the system instruction; the rest are joined
    into the user contents. Raises ``QuotaExceeded``, ``TransportError``
    or ``MissingCredential``.
    """
    client = get_gemini_client(api_key)
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    contents = "\n\n".join(m["content"] for m in messages if m["role"] != "system")

    started = time.monotonic()
    try:
        response = _generate(client, model, system, contents)
    except (genai_errors.APIError, GoogleAPIError, httpx.HTTPError) as exc:
        raise _translate_gemini_error(exc) from exc

    usage = response.usage_metadata
    prompt_tokens = (usage.prompt_token_count if usage else None) or 0
    completion_tokens = (usage.candidates_token_count if usage else None) or 0
    total_tokens = (usage.total_token_count if usage else None) or (
        prompt_tokens + completion_tokens
    )
    logger.info(
        "    (model: %s, tokens: prompt %d, out %d, total %d, %.2fs)",
        model,
        prompt_tokens,
        completion_tokens,
        total_tokens,
        time.monotonic() - started,
    )
    text = response.text if isinstance(response.text, str) else "[]"
    return ModelCall(
        text=text,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


# ---------------------------------------------------------------------------
# Gemini embeddings (with retry)
# ---------------------------------------------------------------------------
@with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_GEMINI_ERRORS)
def _embed(client: genai.Client, model: str, text: str):
    return client.models.embed_content(model=model, contents=text)


def embed_text(
    text: str,
    *,
    api_key: str,
    model: str = DEFAULT_EMBEDDING_MODEL,
) -> list[float]:
    """Return the embedding vector for *text* (truncated to a safe length)."""
    client = get_gemini_client(api_key)
    try:
        result = _embed(client, model, text[:MAX_EMBED_CHARS])
    except (genai_errors.APIError, GoogleAPIError, httpx.HTTPError) as exc:
        raise _translate_gemini_error(exc) from exc

    if not result.embeddings or not result.embeddings[0].values:
        raise TransportError("No embedding returned")
    return list(result.embeddings[0].values)
