import argparse
import dataclasses
import logging
import sys
from pathlib import Path

from agent import run_review
from config import build_config, get_gemini_client
from errors import MissingCredential, MissingReviewContext
from github_client import GitHubPlatform
from repo_index import INDEX_FILENAME
from workspace import LocalPlatform

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="diffscope",
        description="AI code review for pull requests and local diffs.",
    )
    parser.add_argument(
        "--diff",
        type=Path,
        help="Review a unified diff file against --root instead of a GitHub PR",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path.cwd(),
        help="Repository working tree (default: current directory)",
    )
    parser.add_argument(
        "--label",
        action="append",
        default=[],
        help="Review label, e.g. ai-review:max-5 (repeatable; local runs only)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Do not post or commit anything")
    parser.add_argument(
        "--rebuild-index",
        action="store_true",
        help="Delete the persisted retrieval index before the run",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    root = args.root.resolve()

    try:
        if args.diff:
            platform = LocalPlatform.from_diff_file(root, args.diff, labels=args.label)
        else:
            platform = GitHubPlatform(build_config(), root=root)

        config = build_config(platform.list_labels())
        if args.dry_run:
            config = dataclasses.replace(config, dry_run=True)

        if config.skip_all:
            logger.info("⏭️  Skipping review due to ai-review:skip label.")
            return 0

        if config.llm_enabled and not config.use_mock:
            get_gemini_client(config.gemini_api_key)

    except MissingCredential as e:
        logger.error("Configuration error: %s", e)
        return 1
    except MissingReviewContext as e:
        logger.error("Not a reviewable context: %s", e)
        return 1
    except (ValueError, OSError) as e:
        logger.error("Setup failed: %s", e)
        return 1

    if args.rebuild_index:
        index_path = root / config.state_dir / INDEX_FILENAME
        if index_path.exists():
            index_path.unlink()
            logger.info("🗑️  Removed %s", index_path)

    final_state = run_review(config, platform)

    errors = final_state.get("errors") or []
    if errors:
        logger.warning("⚠️  Finished with %d error(s)", len(errors))
    else:
        logger.info("✅ Review complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
