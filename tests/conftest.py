"""Shared test fixtures for diffscope."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from config import ReviewConfig
from models import Finding, IndexEntry, ModelCall, RepoIndex

PY_SOURCE = "\n".join(
    [
        "import os",
        "",
        "",
        "class Store:",
        "    def __init__(self, root):",
        "        self.root = root",
        "",
        "    def load(self, key):",
        "        path = os.path.join(self.root, key)",
        "        return open(path).read()",
        "",
        "",
        "def helper(x):",
        "    return x * 2",
        "",
    ]
)

TS_SOURCE = "\n".join(
    [
        "export function helper(x: number) {",
        "  return x * 2;",
        "}",
        "",
        "const arrow = (a: number) => {",
        "  return a + 1;",
        "};",
        "",
        "class UserService {",
        "  async getUser(id: string) {",
        "    const row = await this.db.find(id);",
        "    return row;",
        "  }",
        "}",
        "",
    ]
)


def make_finding(**overrides) -> Finding:
    data = {
        "path": "src/app.ts",
        "start_line": 1,
        "end_line": 1,
        "category": "style",
        "severity": "low",
        "title": "Something to tidy",
        "rationale": "Because.",
    }
    data.update(overrides)
    return Finding(**data)


@pytest.fixture
def finding_factory():
    return make_finding


@pytest.fixture
def config() -> ReviewConfig:
    return ReviewConfig(
        gemini_api_key="test-key",
        rag_enabled=False,
        llm_concurrency=2,
        cache_ttl_hours=1.0,
    )


class FakeSource:
    """In-memory file contents keyed by path; records every read."""

    def __init__(self, files: dict[str, str]):
        self.files = files
        self.reads: list[str] = []

    def get_file_content(self, path: str) -> str:
        self.reads.append(path)
        if path not in self.files:
            raise ValueError(f"Cannot fetch content for {path}")
        return self.files[path]


class FakeChat:
    """Returns a fixed reply; thread-safe call counter."""

    def __init__(self, text: str = "[]", tokens: int = 10, error: Exception | None = None):
        self.text = text
        self.tokens = tokens
        self.error = error
        self.calls: list[list[dict]] = []
        self._lock = threading.Lock()

    def __call__(self, messages) -> ModelCall:
        with self._lock:
            self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return ModelCall(
            text=self.text,
            prompt_tokens=self.tokens,
            completion_tokens=self.tokens // 2,
            total_tokens=self.tokens + self.tokens // 2,
        )


class FakeEmbed:
    """Deterministic embedder: vectors keyed by substring, else a default."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default=None, error=None):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0]
        self.error = error
        self.texts: list[str] = []

    def __call__(self, text: str) -> list[float]:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        for needle, vector in self.vectors.items():
            if needle in text:
                return vector
        return self.default


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def fake_chat():
    return FakeChat


@pytest.fixture
def fake_embed():
    return FakeEmbed


@pytest.fixture
def sample_index() -> RepoIndex:
    def entry(path: str, name: str, vector: list[float]) -> IndexEntry:
        return IndexEntry(
            id=f"{path}:{name}",
            path=path,
            start_line=1,
            end_line=3,
            symbol_type="function",
            symbol_name=name,
            snippet=f"function {name}() {{}}",
            file_hash="abc",
            embedding=vector,
        )

    return RepoIndex(
        model="test-embedding",
        created_at="2024-06-15T10:00:00+00:00",
        entries=[
            entry("lib/far.ts", "far", [0.0, 1.0, 0.0]),
            entry("src/near.ts", "near", [0.9, 0.1, 0.0]),
            entry("src/api/other.ts", "other", [1.0, 0.0, 0.0]),
            entry("src/api/client.ts", "same", [1.0, 0.0, 0.0]),
        ],
    )


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "store.py").write_text(PY_SOURCE, encoding="utf-8")
    (tmp_path / "src" / "util.ts").write_text(TS_SOURCE, encoding="utf-8")
    (tmp_path / "node_modules" / "dep").mkdir(parents=True)
    (tmp_path / "node_modules" / "dep" / "index.js").write_text("module.exports = 1;\n")
    (tmp_path / ".diffscope").mkdir()
    (tmp_path / ".diffscope" / "stale.ts").write_text("export const x = 1;\n")
    (tmp_path / "README.md").write_text("# demo\n")
    return tmp_path


@pytest.fixture
def py_source() -> str:
    return PY_SOURCE


@pytest.fixture
def ts_source() -> str:
    return TS_SOURCE
