"""Data models for review findings, repository index and model calls."""

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Severity = Literal["high", "medium", "low"]
Category = Literal["bug", "security", "performance", "style", "docs", "test"]
SymbolType = Literal["function", "method", "class", "unknown"]

CATEGORIES: tuple[str, ...] = ("bug", "security", "performance", "style", "docs", "test")
SEVERITIES: tuple[str, ...] = ("high", "medium", "low")

DEFAULT_TITLE = "Suggested improvement"


class Finding(BaseModel):
    """A single review finding."""

    path: str = Field(default="", description="Repository-relative file path")
    start_line: int = Field(default=0, description="First line (1-based, new file)")
    end_line: int = Field(default=0, description="Last line (1-based, inclusive)")
    category: Category = Field(
        default="style",
        description="bug, security, performance, style, docs, test",
    )
    severity: Severity = Field(default="low", description="high, medium, low")
    title: str = Field(default=DEFAULT_TITLE, description="Short headline")
    rationale: str = Field(default="", description="Why this matters")
    suggestion: str | None = Field(
        default=None, description="Optional replacement text"
    )
    references: list[str] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def _category_default(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return "style"
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("severity", mode="before")
    @classmethod
    def _severity_default(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return "low"
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("title", mode="before")
    @classmethod
    def _title_default(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_TITLE
        return value

    @field_validator("rationale", mode="before")
    @classmethod
    def _rationale_default(cls, value):
        return "" if value is None else value

    @field_validator("start_line", "end_line", mode="before")
    @classmethod
    def _line_default(cls, value):
        return 0 if value is None else value

    @field_validator("references", mode="before")
    @classmethod
    def _references_default(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @property
    def has_suggestion(self) -> bool:
        return bool(self.suggestion and self.suggestion.strip())


# ---------------------------------------------------------------------------
# Diff / context
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Hunk:
    """A changed line range on the new side of a diff (1-based, inclusive)."""

    start_line: int
    end_line: int


@dataclass
class ChangedFile:
    """A file changed in a review."""

    filename: str
    patch: str = ""
    status: str = "modified"  # added, removed, modified, renamed
    additions: int = 0
    deletions: int = 0


@dataclass
class SymbolContext:
    """Enclosing symbol and padded snippet around a changed range."""

    language: str  # ts, js, py, unknown
    symbol_name: str | None
    symbol_type: SymbolType
    snippet: str
    snippet_start_line: int
    snippet_end_line: int


@dataclass
class SymbolChunk:
    """A symbol-bounded slice of a file, the unit of indexing."""

    start_line: int
    end_line: int
    symbol_type: str
    symbol_name: str | None
    snippet: str


# ---------------------------------------------------------------------------
# Repository index
# ---------------------------------------------------------------------------
class IndexEntry(BaseModel):
    """One embedded chunk of the repository index."""

    id: str
    path: str
    start_line: int
    end_line: int
    symbol_type: str
    symbol_name: str | None = None
    snippet: str
    file_hash: str
    embedding: list[float]


class RepoIndex(BaseModel):
    """A versioned snapshot of every embedded chunk."""

    model: str
    created_at: str
    entries: list[IndexEntry] = Field(default_factory=list)


class RelatedChunk(BaseModel):
    """A retrieved chunk, projected for prompting (no embedding)."""

    path: str
    start_line: int
    end_line: int
    symbol_type: str
    symbol_name: str | None = None
    snippet: str


# ---------------------------------------------------------------------------
# Model calls / cache
# ---------------------------------------------------------------------------
@dataclass
class ModelCall:
    """Raw model output plus token usage."""

    text: str = "[]"
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CacheEntry(BaseModel):
    """A memoised model output."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    timestamp: float = Field(description="Epoch seconds when stored")


# ---------------------------------------------------------------------------
# Aggregation / auto-fix
# ---------------------------------------------------------------------------
@dataclass
class SeverityCounts:
    high: int = 0
    medium: int = 0
    low: int = 0
    total: int = 0


@dataclass
class FixPlan:
    """A single line-range replacement derived from one finding."""

    path: str
    start: int  # 1-based inclusive
    end: int  # 1-based inclusive
    replacement: list[str] = field(default_factory=list)
    title: str = "Auto-fix"
