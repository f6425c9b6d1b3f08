"""Parsers for unified diffs: hunk headers and whole multi-file patches."""

import re

from unidiff import PatchSet

from models import ChangedFile, Hunk

# @@ -<oldStart>[,<oldLen>] +<newStart>[,<newLen>] @@
_HUNK_HEADER = re.compile(r"^@@\s-\d+(?:,\d+)?\s\+(\d+)(?:,(\d+))?\s@@")


def parse_patch_to_hunks(patch: str | None) -> list[Hunk]:
    """
    Derive new-side changed ranges from every hunk header in *patch*.

    A missing new-side length means 1; a zero length (pure deletion)
    still yields a one-line range at ``newStart``.

    Args:
        patch: Per-file unified diff text

    Returns:
        List of Hunk ranges in patch order
    """
    if not patch:
        return []

    hunks: list[Hunk] = []
    for line in patch.split("\n"):
        match = _HUNK_HEADER.match(line)
        if not match:
            continue
        start = int(match.group(1))
        length = int(match.group(2)) if match.group(2) is not None else 1
        hunks.append(Hunk(start_line=start, end_line=start + max(length - 1, 0)))
    return hunks


def parse_diff(diff_text: str) -> list[ChangedFile]:
    """
    Parse a full unified diff into ChangedFile objects.

    Used when reviewing a local patch instead of a hosted pull request.

    Args:
        diff_text: Raw unified diff string (e.g. ``git diff`` output)

    Returns:
        List of ChangedFile objects, one per file
    """
    patch_set = PatchSet(diff_text)
    files = []

    for patched_file in patch_set:
        if patched_file.is_added_file:
            status = "added"
        elif patched_file.is_removed_file:
            status = "removed"
        elif patched_file.is_rename:
            status = "renamed"
        else:
            status = "modified"

        # Keep only the hunk sections; headers carry no review scope
        patch = "".join(str(hunk) for hunk in patched_file)

        files.append(
            ChangedFile(
                filename=patched_file.path,
                patch=patch,
                status=status,
                additions=patched_file.added,
                deletions=patched_file.removed,
            )
        )

    return files


# File extensions to skip during review
SKIP_EXTENSIONS = {
    '.md', '.txt', '.rst', '.adoc',           # Docs
    '.lock',                                   # Lock files
    '.png', '.jpg', '.jpeg', '.gif', '.svg', '.ico', '.webp',  # Images
    '.woff', '.woff2', '.ttf', '.eot',        # Fonts
    '.csv', '.json', '.xml', '.yaml', '.yml', '.toml',  # Data
    '.min.js', '.min.css', '.map',            # Build artifacts
    '.exe', '.dll', '.so', '.dylib', '.pyc',  # Binary
    '.zip', '.tar', '.gz', '.pdf',            # Archives/docs
}

SKIP_FILENAMES = {
    'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml',
    'Pipfile.lock', 'poetry.lock', 'composer.lock',
    'Gemfile.lock', 'Cargo.lock', 'uv.lock',
    '.gitignore', '.gitattributes', '.editorconfig',
    'LICENSE', 'LICENSE.md', 'LICENSE.txt',
}

SKIP_DIRECTORIES = {
    'node_modules/', 'vendor/', 'dist/', 'build/', 'out/',
    '.git/', '__pycache__/', '.venv/', '.diffscope/',
}


def should_review_file(filename: str) -> bool:
    """Check if file should be reviewed based on name/extension."""
    for skip_dir in SKIP_DIRECTORIES:
        if filename.startswith(skip_dir) or f'/{skip_dir}' in filename:
            return False

    basename = filename.split('/')[-1]
    if basename in SKIP_FILENAMES:
        return False

    for ext in SKIP_EXTENSIONS:
        if filename.lower().endswith(ext):
            return False

    return True
