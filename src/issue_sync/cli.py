"""Command line entry point: ``issue-sync open|fetch|touch|status``."""

import argparse
import asyncio
import json
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .context import AppContext, build_context
from .core.async_utils import request_limit
from .core.client import GitHubClient
from .errors import ConflictError, IssueSyncError
from .logger import setup_logging
from .sync import (
    MergeMode,
    Prefer,
    SyncEngine,
    SyncReport,
    format_status,
    format_sync_report,
    report_to_json,
    resolve_target,
)

logger = logging.getLogger(__name__)

EPILOG = """
Examples:
  # Fetch an issue tree and open the issue in $EDITOR, syncing afterwards
  issue-sync open octo/tools#42

  # Same, by URL or by local file
  issue-sync open https://github.com/octo/tools/issues/42
  issue-sync open ~/.local/share/issue_sync/issues/octo/tools/42_-_Fix_login.md

  # Discard local edits and take the remote version
  issue-sync open octo/tools#42 --reset remote

  # Resolve conflicting edits in favour of the local file
  issue-sync open octo/tools#42 --force local

  # Create a sub-issue under #42 (missing parents are created too)
  issue-sync touch "octo/tools/42/Write release notes"

  # Local-only project: numbers are allocated locally
  issue-sync touch --virtual "me/notes/Ideas.md"

  # Show unresolved conflicts and files with unsynced edits
  issue-sync status

Configuration precedence: CLI > environment > .env > YAML > defaults.
YAML is read from $ISSUE_SYNC_CONFIG, ./.issue_sync/config.yml and
~/.config/issue_sync/config.yml.
"""


def _mode(args: argparse.Namespace) -> MergeMode:
    if args.reset:
        return MergeMode.reset(Prefer(args.reset))
    if args.force:
        return MergeMode.force(Prefer(args.force))
    return MergeMode.normal()


def launch_editor(editor: str, path: Path) -> bool:
    """Run *editor* on *path*; ``False`` when it exits non-zero."""
    command = shlex.split(editor) + [str(path)]
    logger.debug("Launching editor: %s", command)
    try:
        completed = subprocess.run(command, check=False)
    except OSError as exc:
        logger.error("Cannot start editor '%s': %s", editor, exc)
        return False
    return completed.returncode == 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="issue-sync",
        description="Edit GitHub issue trees as local files and sync them back",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument(
        "--token",
        help="GitHub token (takes precedence over GITHUB_TOKEN and config files)"
        " (visible in process list -- prefer GITHUB_TOKEN env var)",
    )
    parser.add_argument(
        "--data-root",
        help="Directory holding issues/ and blockers/ "
        "(default: $XDG_DATA_HOME/issue_sync)",
    )
    parser.add_argument(
        "--dialect",
        choices=["md", "typ"],
        help="Dialect of newly written issue files (default: md)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this file (open always logs to a file "
        "while the editor runs)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print reports as JSON instead of text",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"issue-sync version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    open_cmd = commands.add_parser(
        "open", help="Sync an issue, edit it, sync again"
    )
    open_cmd.add_argument(
        "target", help="Issue file, issue URL, or owner/repo#N"
    )
    side = open_cmd.add_mutually_exclusive_group()
    side.add_argument(
        "--force",
        choices=[p.value for p in Prefer],
        help="Resolve conflicting units in favour of this side",
    )
    side.add_argument(
        "--reset",
        choices=[p.value for p in Prefer],
        help="Take this side wholesale, discarding the other",
    )
    open_cmd.add_argument(
        "--offline",
        action="store_true",
        help="Edit the local copy without contacting GitHub",
    )
    open_cmd.add_argument(
        "--render-closed",
        action="store_true",
        help="Write out the content of closed sub-issues instead of folding it",
    )

    fetch_cmd = commands.add_parser(
        "fetch", help="Fetch an issue tree without opening an editor"
    )
    fetch_cmd.add_argument(
        "target", help="Issue file, issue URL, or owner/repo#N"
    )
    fetch_cmd.add_argument(
        "--render-closed",
        action="store_true",
        help="Write out the content of closed sub-issues instead of folding it",
    )

    touch_cmd = commands.add_parser(
        "touch", help="Create an issue from a path-like spec"
    )
    touch_cmd.add_argument(
        "spec", help="owner/repo/[parent/...]title[.md|.typ]"
    )
    touch_cmd.add_argument(
        "--virtual",
        action="store_true",
        help="Create the project as local-only if it does not exist yet",
    )

    commands.add_parser(
        "status", help="List unresolved conflicts and unsynced files"
    )
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {"debug": args.debug}
    if args.token:
        overrides["token"] = args.token
    if args.data_root:
        overrides["data_root"] = args.data_root
    if args.dialect:
        overrides["dialect"] = args.dialect
    if getattr(args, "render_closed", False):
        overrides["render_closed"] = True
    return overrides


def _print_report(report: SyncReport, as_json: bool) -> None:
    if as_json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_sync_report(report))


async def main(args: argparse.Namespace, context: AppContext) -> int:
    """Run one sub-command; returns the exit status."""
    config = context.config
    async with request_limit(config.max_parallel_requests):
        engine = SyncEngine(context, GitHubClient(config))

        if args.command == "status":
            conflicts, dirty = engine.status()
            if args.json:
                print(
                    json.dumps(
                        {
                            "conflicts": [c.model_dump() for c in conflicts],
                            "dirty": [str(p) for p in dirty],
                        },
                        indent=2,
                    )
                )
            else:
                print(format_status(conflicts, dirty))
            return 0

        if args.command == "touch":
            report = await engine.touch(args.spec, virtual=args.virtual)
        else:
            target = resolve_target(config.issues_dir, args.target)
            if args.command == "fetch":
                report = await engine.fetch(target)
            else:
                report = await engine.open(
                    target,
                    lambda path: launch_editor(config.editor, path),
                    mode=_mode(args),
                    offline=args.offline,
                )
        _print_report(report, args.json)
        return 0


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = build_parser()
    args = parser.parse_args()

    try:
        context = build_context(_overrides(args))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    settings = context.settings.logging
    mode = "editor" if args.command == "open" else "cli"
    setup_logging(
        mode=mode,
        debug=context.config.debug,
        log_file=args.log_file or settings.file,
    )
    if (
        mode == "cli"
        and not context.config.debug
        and "LOG_LEVEL" not in os.environ
    ):
        logging.getLogger().setLevel(settings.level)

    try:
        status = asyncio.run(main(args, context))
    except ConflictError as e:
        print(f"Conflict: {e}", file=sys.stderr)
        sys.exit(1)
    except (IssueSyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)
    sys.exit(status)


if __name__ == "__main__":
    run()
