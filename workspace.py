"""Local review target: a unified diff applied to a working tree."""

import logging
from pathlib import Path

from unidiff.errors import UnidiffParseError

from diff_parser import parse_diff
from models import ChangedFile
from triage import Triage, build_triage_comment

logger = logging.getLogger(__name__)


class LocalPlatform:
    """Reviews a patch file against files on disk; logs instead of posting."""

    def __init__(self, root: Path, diff_text: str, labels: list[str] | None = None) -> None:
        self.root = root
        self.repo_name = root.resolve().name
        self._diff_text = diff_text
        self._labels = list(labels or [])
        self.comments: list[tuple[str, int, str]] = []
        self.summary_md: str | None = None

    @classmethod
    def from_diff_file(
        cls, root: Path, diff_path: Path, labels: list[str] | None = None
    ) -> "LocalPlatform":
        return cls(root, diff_path.read_text(encoding="utf-8"), labels)

    def list_labels(self) -> list[str]:
        return list(self._labels)

    def list_changed_files(self) -> list[ChangedFile]:
        try:
            return parse_diff(self._diff_text)
        except UnidiffParseError as e:
            raise ValueError(f"Invalid diff: {e}") from e

    def get_file_content(self, path: str) -> str:
        return (self.root / path).read_text(encoding="utf-8")

    def post_comment(
        self, path: str, line: int, body: str, start_line: int | None = None
    ) -> None:
        self.comments.append((path, line, body))
        logger.info("💬 %s:%d\n%s", path, line, body)

    def publish_summary(self, summary_md: str) -> None:
        self.summary_md = summary_md
        logger.info("📋 Summary\n%s", summary_md)

    def apply_triage(self, triage: Triage, comment: bool) -> None:
        logger.info("🏷️  Triage labels: %s", ", ".join(triage.labels))
        if comment:
            logger.info("%s", build_triage_comment(triage))

    def finalize_fixes(self, changed_paths: list[str]) -> str:
        if not changed_paths:
            return "no changes"
        return f"applied locally to {len(changed_paths)} file(s): " + ", ".join(
            f"`{p}`" for p in changed_paths
        )
