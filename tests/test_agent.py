"""End-to-end runs of the review graph and CLI against a local diff (mock model)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from agent import ReviewState, build_index, create_agent, run_review, should_post_comments
from config import ReviewConfig
from main import main
from models import ChangedFile
from workspace import LocalPlatform

APP_SOURCE = "\n".join(
    ["const a = 1;", "console.log(a);"] + [f"const v{i} = {i};" for i in range(3, 26)]
) + "\n"

APP_DIFF = """\
diff --git a/src/app.ts b/src/app.ts
--- a/src/app.ts
+++ b/src/app.ts
@@ -1,2 +1,3 @@
 const a = 1;
+console.log(a);
 const v3 = 3;
"""


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.ts").write_text(APP_SOURCE, encoding="utf-8")
    (tmp_path / "change.patch").write_text(APP_DIFF, encoding="utf-8")
    return tmp_path


def mock_config(**overrides) -> ReviewConfig:
    return ReviewConfig(use_mock=True, rag_enabled=False, **overrides)


class TestReviewGraph:
    def test_full_run_posts_fixes_and_summarises(self, workdir: Path):
        platform = LocalPlatform(workdir, APP_DIFF)
        final = run_review(mock_config(autofix_enabled=True), platform)

        # one rule finding (console.log) plus two mock model findings
        assert final["posted"] == 3
        assert len(platform.comments) == 3
        assert platform.comments[0][0] == "src/app.ts"
        assert final["counts"].total == 3
        assert final["errors"] == []

        lines = (workdir / "src" / "app.ts").read_text(encoding="utf-8").split("\n")
        assert lines[1] == "// console.log(a);"
        assert final["autofix_outcome"] == "applied locally to 1 file(s): `src/app.ts`"

        assert final["triage"].labels[0] == "ai:risk-medium"
        assert platform.summary_md == final["summary_md"]
        assert "Auto-fix: applied locally" in platform.summary_md
        assert "Rules: **on**, LLM: **on**" in platform.summary_md

    def test_dry_run_posts_and_writes_nothing(self, workdir: Path):
        platform = LocalPlatform(workdir, APP_DIFF)
        final = run_review(mock_config(autofix_enabled=True, dry_run=True), platform)

        assert platform.comments == []
        assert final["posted"] == 0
        assert final["autofix_outcome"] == "skipped (dry-run)"
        assert (workdir / "src" / "app.ts").read_text(encoding="utf-8") == APP_SOURCE
        assert "_dry-run_" in platform.summary_md

    def test_rules_only_run(self, workdir: Path):
        platform = LocalPlatform(workdir, APP_DIFF)
        final = run_review(mock_config(llm_enabled=False), platform)
        assert [f.title for f in final["top"]] == ["Leftover console.log"]
        assert final["autofix_outcome"] == "disabled"

    def test_bad_diff_still_publishes_summary(self, workdir: Path):
        platform = LocalPlatform(workdir, "@@ not a diff\n+++ nope")
        final = run_review(mock_config(), platform)
        assert final["changed_files"] == []
        assert "_No material issues._" in platform.summary_md

    def test_nothing_to_post_routes_to_skip(self, workdir: Path):
        state = ReviewState(review_config=mock_config(), platform=LocalPlatform(workdir, ""))
        assert should_post_comments(state) == "skip"

    def test_graph_compiles(self):
        assert create_agent() is not None


class TestBuildIndexNode:
    def test_index_respects_path_filters(self, tmp_path: Path):
        for rel in ("secrets/keys.ts", "src/a.ts"):
            (tmp_path / rel).parent.mkdir(parents=True, exist_ok=True)
            (tmp_path / rel).write_text("export const a = 1;\n", encoding="utf-8")
        state = ReviewState(
            review_config=ReviewConfig(gemini_api_key="test-key", skip_globs=("secrets/**",)),
            platform=LocalPlatform(tmp_path, ""),
            changed_files=[ChangedFile(filename="src/a.ts", patch="@@ -1 +1 @@\n+x")],
        )
        embed = MagicMock(return_value=[1.0, 0.0, 0.0])

        with patch("agent.embed_text", embed):
            index = build_index(state)["index"]

        assert {entry.path for entry in index.entries} == {"src/a.ts"}
        assert not any("secrets/keys.ts" in call.args[0] for call in embed.call_args_list)


class TestMain:
    @pytest.fixture(autouse=True)
    def mock_env(self, monkeypatch):
        monkeypatch.setenv("USE_MOCK", "true")
        monkeypatch.setenv("RAG", "false")
        monkeypatch.delenv("AUTOFIX", raising=False)
        monkeypatch.delenv("DRY_RUN", raising=False)

    def test_local_diff_run(self, workdir: Path):
        code = main(["--diff", str(workdir / "change.patch"), "--root", str(workdir)])
        assert code == 0

    def test_skip_label(self, workdir: Path):
        args = ["--diff", str(workdir / "change.patch"), "--root", str(workdir)]
        assert main([*args, "--label", "ai-review:skip"]) == 0

    def test_autofix_label_and_dry_run_flag(self, workdir: Path):
        args = ["--diff", str(workdir / "change.patch"), "--root", str(workdir)]
        assert main([*args, "--label", "ai-review:autofix", "--dry-run"]) == 0
        assert (workdir / "src" / "app.ts").read_text(encoding="utf-8") == APP_SOURCE

    def test_rebuild_index_removes_persisted_index(self, workdir: Path):
        index = workdir / ".diffscope" / "repo_index.json"
        index.parent.mkdir()
        index.write_text("{}", encoding="utf-8")
        args = ["--diff", str(workdir / "change.patch"), "--root", str(workdir)]
        assert main([*args, "--rebuild-index"]) == 0
        assert not index.exists()

    def test_missing_api_key_is_fatal(self, workdir: Path, monkeypatch):
        monkeypatch.setenv("USE_MOCK", "false")
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        args = ["--diff", str(workdir / "change.patch"), "--root", str(workdir)]
        assert main(args) == 1

    def test_missing_pr_context_is_fatal(self, monkeypatch):
        monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)
        monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)
        assert main([]) == 1

    def test_missing_diff_file_is_fatal(self, workdir: Path):
        assert main(["--diff", str(workdir / "nope.patch"), "--root", str(workdir)]) == 1
