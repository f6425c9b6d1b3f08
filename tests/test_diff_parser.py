"""Tests for diff_parser: hunk headers, full diffs and file filters."""

from __future__ import annotations

from diff_parser import parse_diff, parse_patch_to_hunks, should_review_file
from models import Hunk

LOCAL_DIFF = """\
diff --git a/src/app.ts b/src/app.ts
index 1111111..2222222 100644
--- a/src/app.ts
+++ b/src/app.ts
@@ -1,3 +1,4 @@
 const a = 1;
+console.log(a);
 const b = 2;
 const c = 3;
diff --git a/src/new.py b/src/new.py
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/src/new.py
@@ -0,0 +1,2 @@
+def f():
+    return 1
diff --git a/old.js b/old.js
deleted file mode 100644
index 4444444..0000000
--- a/old.js
+++ /dev/null
@@ -1 +0,0 @@
-module.exports = 1;
"""


class TestParsePatchToHunks:
    def test_header_with_lengths(self):
        assert parse_patch_to_hunks("@@ -10,5 +20,8 @@") == [Hunk(20, 27)]

    def test_header_without_new_length_defaults_to_one(self):
        assert parse_patch_to_hunks("@@ -1 +1 @@") == [Hunk(1, 1)]

    def test_zero_length_still_yields_one_line(self):
        assert parse_patch_to_hunks("@@ -5,2 +4,0 @@") == [Hunk(4, 4)]

    def test_multiple_hunks_in_order(self):
        patch = "@@ -1,2 +1,3 @@ def f():\n a\n+b\n c\n@@ -40,1 +41,2 @@\n x\n+y"
        assert parse_patch_to_hunks(patch) == [Hunk(1, 3), Hunk(41, 42)]

    def test_empty_and_none(self):
        assert parse_patch_to_hunks("") == []
        assert parse_patch_to_hunks(None) == []

    def test_ignores_non_header_lines(self):
        assert parse_patch_to_hunks("+@@ -1 +1 @@ inside a string") == []


class TestParseDiff:
    def test_files_and_status(self):
        files = parse_diff(LOCAL_DIFF)
        assert [(f.filename, f.status) for f in files] == [
            ("src/app.ts", "modified"),
            ("src/new.py", "added"),
            ("old.js", "removed"),
        ]

    def test_counts_and_patch(self):
        app = parse_diff(LOCAL_DIFF)[0]
        assert app.additions == 1
        assert app.deletions == 0
        assert parse_patch_to_hunks(app.patch) == [Hunk(1, 4)]


class TestShouldReviewFile:
    def test_source_files_pass(self):
        assert should_review_file("src/app.ts")
        assert should_review_file("pkg/module.py")

    def test_skips_lockfiles_docs_and_vendored(self):
        assert not should_review_file("package-lock.json")
        assert not should_review_file("docs/guide.md")
        assert not should_review_file("node_modules/x/index.js")
        assert not should_review_file("web/dist/bundle.js")
        assert not should_review_file("assets/app.min.js")
