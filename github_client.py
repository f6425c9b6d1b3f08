"""GitHub API client for pull-request review operations."""

import functools
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from github import Auth, Github
from github.GithubException import GithubException

from autofix import commit_and_push
from config import ReviewConfig, validate_repo
from errors import MissingCredential, MissingReviewContext
from models import ChangedFile
from triage import DEFAULT_LABELS, TRIAGE_HEADER, Triage, build_triage_comment

logger = logging.getLogger(__name__)

CHECK_NAME = "diffscope summary"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass
class PRContext:
    """The pull request an Actions run was triggered for."""

    repo: str  # "owner/repo"
    pr_number: int
    head_sha: str
    head_ref: str


def _error_message(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    return data.get("message", str(e))


# ---------------------------------------------------------------------------
# Context & clients
# ---------------------------------------------------------------------------
def load_pr_context(event_path: str, repository: str) -> PRContext:
    """
    Read the pull request from the Actions event payload.

    Raises:
        MissingReviewContext: If this is not a pull_request event with a head SHA
    """
    if not event_path or not repository:
        raise MissingReviewContext(
            "GITHUB_EVENT_PATH / GITHUB_REPOSITORY not set; "
            "this must run on a pull_request event."
        )
    try:
        payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise MissingReviewContext(f"Cannot read event payload {event_path}: {e}") from e

    pr = payload.get("pull_request") or {}
    head = pr.get("head") or {}
    if not pr.get("number") or not head.get("sha"):
        raise MissingReviewContext(
            "This action must run on a pull_request event with head SHA."
        )
    return PRContext(
        repo=validate_repo(repository),
        pr_number=int(pr["number"]),
        head_sha=head["sha"],
        head_ref=head.get("ref", ""),
    )


@functools.lru_cache(maxsize=4)
def get_github_client(token: str) -> Github:
    """Create or return a cached GitHub client for *token*."""
    if not token:
        raise MissingCredential(
            "GITHUB_TOKEN not found. Actions provides it automatically; "
            "locally set it in .env."
        )
    return Github(auth=Auth.Token(token))


# ---------------------------------------------------------------------------
# Read operations
# ---------------------------------------------------------------------------
def fetch_changed_files(client: Github, repo: str, pr_number: int) -> list[ChangedFile]:
    """
    Fetch list of files changed in a PR.

    Returns:
        List of ChangedFile objects with file details and patches
    """
    try:
        pr = client.get_repo(repo).get_pull(pr_number)
        return [
            ChangedFile(
                filename=file.filename,
                patch=file.patch or "",
                status=file.status or "modified",
                additions=file.additions or 0,
                deletions=file.deletions or 0,
            )
            for file in pr.get_files()
        ]
    except GithubException as e:
        if e.status == 404:
            raise ValueError(f"PR #{pr_number} not found in {repo}") from e
        raise ValueError(f"GitHub API error: {_error_message(e)}") from e


def fetch_file_content(client: Github, repo: str, path: str, ref: str) -> str:
    """Full text of *path* at *ref* (the PR head)."""
    try:
        contents = client.get_repo(repo).get_contents(path, ref=ref)
    except GithubException as e:
        raise ValueError(f"Cannot fetch content for {path}: {_error_message(e)}") from e
    if isinstance(contents, list):
        raise ValueError(f"Cannot fetch content for {path}: is a directory")
    return contents.decoded_content.decode("utf-8")


def fetch_labels(client: Github, repo: str, pr_number: int) -> list[str]:
    try:
        issue = client.get_repo(repo).get_issue(pr_number)
        return [label.name for label in issue.get_labels()]
    except GithubException as e:
        raise ValueError(f"Cannot list labels: {_error_message(e)}") from e


# ---------------------------------------------------------------------------
# Write operations
# ---------------------------------------------------------------------------
def post_line_comment(
    client: Github,
    repo: str,
    pr_number: int,
    head_sha: str,
    path: str,
    line: int,
    body: str,
    start_line: int | None = None,
) -> int:
    """Review comment on the RIGHT (new) side ending at *line*.

    A *start_line* before *line* makes it a multi-line comment, so a
    suggestion block replaces the whole range.
    """
    extra = {}
    if start_line and start_line < line:
        extra = {"start_line": start_line, "start_side": "RIGHT"}
    try:
        repository = client.get_repo(repo)
        pr = repository.get_pull(pr_number)
        comment = pr.create_review_comment(
            body=body,
            commit=repository.get_commit(head_sha),
            path=path,
            line=line,
            side="RIGHT",
            **extra,
        )
        return comment.id
    except GithubException as e:
        raise ValueError(f"Failed to post comment: {_error_message(e)}") from e


def create_check_run(client: Github, repo: str, head_sha: str, summary_md: str) -> int:
    """Completed, neutral check run carrying the run summary."""
    try:
        run = client.get_repo(repo).create_check_run(
            name=CHECK_NAME,
            head_sha=head_sha,
            status="completed",
            conclusion="neutral",
            output={"title": "AI Code Review", "summary": summary_md},
        )
        return run.id
    except GithubException as e:
        raise ValueError(f"Failed to create check run: {_error_message(e)}") from e


def ensure_labels_exist(client: Github, repo: str, names: list[str]) -> None:
    """Best-effort: create missing labels we know colours for."""
    repository = client.get_repo(repo)
    try:
        existing = {label.name for label in repository.get_labels()}
    except GithubException as e:
        logger.warning("Could not list repository labels: %s", _error_message(e))
        existing = set()

    for name in names:
        if name in existing or name not in DEFAULT_LABELS:
            continue
        color, description = DEFAULT_LABELS[name]
        try:
            repository.create_label(name=name, color=color, description=description)
        except GithubException as e:
            logger.warning("Could not create label %s: %s", name, _error_message(e))


def add_labels(client: Github, repo: str, pr_number: int, labels: list[str]) -> None:
    try:
        ensure_labels_exist(client, repo, labels)
        client.get_repo(repo).get_issue(pr_number).add_to_labels(*labels)
    except GithubException as e:
        raise ValueError(f"Failed to add labels: {_error_message(e)}") from e


def upsert_comment(client: Github, repo: str, pr_number: int, header: str, body: str) -> int:
    """Edit our previous comment starting with *header*, or post a new one."""
    try:
        issue = client.get_repo(repo).get_issue(pr_number)
        for comment in issue.get_comments():
            if comment.user and comment.user.type == "Bot" and header in (comment.body or ""):
                comment.edit(body)
                return comment.id
        return issue.create_comment(body).id
    except GithubException as e:
        raise ValueError(f"Failed to post comment: {_error_message(e)}") from e


# ---------------------------------------------------------------------------
# Platform facade used by the review graph
# ---------------------------------------------------------------------------
class GitHubPlatform:
    """Pull request on GitHub, driven from an Actions checkout."""

    def __init__(self, config: ReviewConfig, root: Path | None = None) -> None:
        self.context = load_pr_context(config.event_path, config.repository)
        self.root = root or Path.cwd()
        self.repo_name = self.context.repo
        self._config = config
        # Reads and checks use the workflow token; comments may use a personal one
        self._data = get_github_client(config.github_token)
        self._comments = get_github_client(config.reviewer_token or config.github_token)
        logger.info(
            "   Comments via %s",
            "REVIEWER_TOKEN" if config.reviewer_token else "GITHUB_TOKEN (bot)",
        )

    def list_labels(self) -> list[str]:
        return fetch_labels(self._data, self.repo_name, self.context.pr_number)

    def list_changed_files(self) -> list[ChangedFile]:
        return fetch_changed_files(self._data, self.repo_name, self.context.pr_number)

    def get_file_content(self, path: str) -> str:
        return fetch_file_content(self._data, self.repo_name, path, self.context.head_sha)

    def post_comment(
        self, path: str, line: int, body: str, start_line: int | None = None
    ) -> None:
        post_line_comment(
            self._comments,
            self.repo_name,
            self.context.pr_number,
            self.context.head_sha,
            path,
            line,
            body,
            start_line=start_line,
        )

    def publish_summary(self, summary_md: str) -> None:
        create_check_run(self._data, self.repo_name, self.context.head_sha, summary_md)

    def apply_triage(self, triage: Triage, comment: bool) -> None:
        try:
            add_labels(self._data, self.repo_name, self.context.pr_number, triage.labels)
        except ValueError as e:
            logger.warning("⚠️  Could not apply labels (fork or perms): %s", e)

        if comment:
            try:
                upsert_comment(
                    self._comments,
                    self.repo_name,
                    self.context.pr_number,
                    TRIAGE_HEADER,
                    build_triage_comment(triage),
                )
            except ValueError as e:
                logger.warning("⚠️  Could not post triage comment (fork or perms): %s", e)

    def finalize_fixes(self, changed_paths: list[str]) -> str:
        """Commit applied fixes to the PR branch; return the outcome line."""
        if not changed_paths:
            return "no changes"
        actor = self._config.actor or "diffscope[bot]"
        remote = None
        if self._config.reviewer_token:
            remote = (
                f"https://x-access-token:{self._config.reviewer_token}"
                f"@github.com/{self.repo_name}.git"
            )
        sha = commit_and_push(
            self.root,
            self.context.head_ref,
            actor=actor,
            email=f"{actor}@users.noreply.github.com",
            remote_url=remote,
        )
        return f"committed `{sha}`" if sha else "no changes"
