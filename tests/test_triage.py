"""Tests for PR triage labels and report."""

from __future__ import annotations

from models import ChangedFile
from triage import build_triage_comment, compute_triage, diff_stats, lang_of, size_bucket


def changed(name: str, added: int = 1, removed: int = 0) -> ChangedFile:
    body = ["@@ -1,1 +1,1 @@"] + ["+x"] * added + ["-y"] * removed
    return ChangedFile(filename=name, patch="\n".join(body), additions=added, deletions=removed)


class TestHelpers:
    def test_diff_stats_ignores_headers(self):
        patch = "--- a/f\n+++ b/f\n@@ -1,2 +1,3 @@\n a\n-b\n+c\n+d"
        assert diff_stats(patch) == (2, 1)
        assert diff_stats(None) == (0, 0)

    def test_lang_of(self):
        assert lang_of("a.tsx") == "ts"
        assert lang_of("a.cjs") == "js"
        assert lang_of("a.py") == "py"
        assert lang_of("a.go") == "other"

    def test_size_buckets(self):
        assert [size_bucket(n) for n in (0, 20, 21, 60, 200, 500, 501)] == [
            "XS",
            "XS",
            "S",
            "S",
            "M",
            "L",
            "XL",
        ]


class TestComputeTriage:
    def test_quiet_docs_change_is_low_risk(self):
        t = compute_triage([changed("docs/intro.md", added=3)], [])
        assert t.risk == "low"
        assert t.areas == ["docs"]
        assert t.labels == ["ai:risk-low", "size:XS", "area:docs"]

    def test_security_path_is_high_risk(self):
        t = compute_triage([changed("src/auth/login.ts", added=30), changed("package.json")], [])
        assert t.risk == "high"
        assert t.size_bucket == "S"
        assert "lang:ts" in t.labels
        assert "area:security" in t.labels and "area:deps" in t.labels
        assert not any(label == "lang:other" for label in t.labels)

    def test_findings_raise_risk(self, finding_factory):
        files = [changed("src/app.py")]
        assert compute_triage(files, [finding_factory(severity="medium")]).risk == "medium"
        assert compute_triage(files, [finding_factory(category="security")]).risk == "high"

    def test_ci_change_is_at_least_medium(self):
        assert compute_triage([changed(".github/workflows/ci.yml")], []).risk == "medium"

    def test_tests_area(self):
        t = compute_triage([changed("tests/test_app.py"), changed("src/a.test.ts")], [])
        assert t.areas == ["tests"]
        assert "Tests updated/added" in t.notes


class TestTriageComment:
    def test_renders_header_and_labels(self):
        t = compute_triage([changed("src/app.py", added=5)], [])
        body = build_triage_comment(t)
        assert body.startswith("**AI Triage Report**")
        assert "**Risk:** LOW" in body
        assert "**Applied labels:** ai:risk-low, size:XS, lang:py" in body
