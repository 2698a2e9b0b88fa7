#!/usr/bin/env python3
"""
git-workspace  -  nested repositories with local keep files
================================================================

Subcommands:
  pull        Fetch each workspace, resolve keep files, then pull.
  sync        Snapshot modified files, re-apply skip-worktree, archive old backups.
  archive     Archive backup months older than the current one.
  cleanup     Delete backups older than a retention period.
  reset-skip  Make skip-worktree flags match the keep lists.
  status      Show keep files, skip-worktree flags and retained patches.

Run 'git-workspace <subcommand> --help' for more details.
"""
import sys
import argparse

KEEP_STRATEGIES = ("ask", "reapply", "discard", "skip")


def _context(args):
    """Load repo root + manifest or exit with an error message."""
    from git_workspace.core.sync_engine import load_context
    from git_workspace.exceptions import WorkspaceError
    from git_workspace.utils.logging import set_verbose

    set_verbose(args.verbose)
    try:
        return load_context(args.root)
    except (WorkspaceError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


def _prompter(strategy: str):
    from git_workspace.operations.keep_files import REAPPLY, DISCARD, SKIP
    from git_workspace.operations.prompt import ConsolePrompter, FixedPrompter

    fixed = {"reapply": REAPPLY, "discard": DISCARD, "skip": SKIP}
    if strategy in fixed:
        return FixedPrompter(fixed[strategy])
    return ConsolePrompter(cancel_index=SKIP)


# ── pull ──────────────────────────────────────────────────────────────────────

def cmd_pull(args):
    """Pull every workspace (or one), resolving keep files first."""
    from git_workspace.core.sync_engine import run_pull
    from git_workspace.exceptions import ManifestError

    repo_root, manifest = _context(args)
    try:
        issues = run_pull(
            repo_root,
            manifest,
            target=args.path,
            assume_yes=args.yes,
            prompter=_prompter(args.on_keep),
        )
    except ManifestError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(1 if issues else 0)


# ── sync ──────────────────────────────────────────────────────────────────────

def cmd_sync(args):
    """Snapshot keep files and run archive maintenance."""
    from git_workspace.core.sync_engine import run_sync
    from git_workspace.exceptions import ManifestError

    repo_root, manifest = _context(args)
    try:
        issues = run_sync(repo_root, manifest, target=args.path)
    except ManifestError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(1 if issues else 0)


# ── archive ───────────────────────────────────────────────────────────────────

def cmd_archive(args):
    from git_workspace.core.sync_engine import run_archive

    repo_root, _manifest = _context(args)
    sys.exit(run_archive(repo_root, force=args.force))


# ── cleanup ───────────────────────────────────────────────────────────────────

def cmd_cleanup(args):
    from git_workspace.core.sync_engine import run_cleanup

    repo_root, _manifest = _context(args)
    try:
        run_cleanup(repo_root, args.days)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


# ── reset-skip ────────────────────────────────────────────────────────────────

def cmd_reset_skip(args):
    """Clear stale skip-worktree flags and re-apply them to keep files."""
    from git_workspace.core.sync_engine import run_reset_skip
    from git_workspace.exceptions import ManifestError

    repo_root, manifest = _context(args)
    try:
        issues = run_reset_skip(repo_root, manifest, target=args.path)
    except ManifestError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(1 if issues else 0)


# ── status ────────────────────────────────────────────────────────────────────

def cmd_status(args):
    from git_workspace.core.sync_engine import run_status

    repo_root, manifest = _context(args)
    run_status(repo_root, manifest)


# ── main ──────────────────────────────────────────────────────────────────────

def _common(p):
    p.add_argument("--root", metavar="PATH", default=None,
                   help="Parent repository root (default: git top-level of cwd)")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Show every git / patch command")


def main(argv=None):
    """CLI entry point for git-workspace"""
    parser = argparse.ArgumentParser(
        prog="git-workspace",
        description="Nested git workspaces with keep files that survive upstream updates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── pull ──────────────────────────────────────────────────────────────────
    pull_p = subparsers.add_parser(
        "pull",
        help="Pull workspaces, reapplying local keep-file changes",
        description="Fetch each workspace, resolve keep files with upstream changes, then pull.",
    )
    pull_p.add_argument("path", nargs="?", metavar="PATH",
                        help="Only pull this workspace (path as in the manifest)")
    pull_p.add_argument("-y", "--yes", action="store_true",
                        help="Do not ask before pulling each workspace")
    pull_p.add_argument("--on-keep", choices=KEEP_STRATEGIES, default="ask",
                        help="How to handle keep files changed upstream (default: ask)")
    _common(pull_p)

    # ── sync ──────────────────────────────────────────────────────────────────
    sync_p = subparsers.add_parser(
        "sync",
        help="Back up modified files and re-apply skip-worktree",
        description="Snapshot modified files of each workspace and run archive maintenance.",
    )
    sync_p.add_argument("path", nargs="?", metavar="PATH",
                        help="Only sync this workspace")
    _common(sync_p)

    # ── archive ───────────────────────────────────────────────────────────────
    archive_p = subparsers.add_parser(
        "archive",
        help="Archive backup months older than the current month",
        description="Compress old backup months into verified tar.gz archives.",
    )
    archive_p.add_argument("-f", "--force", action="store_true",
                           help="Ignore the once-per-day throttle")
    _common(archive_p)

    # ── cleanup ───────────────────────────────────────────────────────────────
    cleanup_p = subparsers.add_parser(
        "cleanup",
        help="Delete backups older than N days",
        description="Delete backup files whose modification time is older than the retention period.",
    )
    cleanup_p.add_argument("--days", type=int, default=None, metavar="N",
                           help="Retention in days (default: backup_retention_days setting)")
    _common(cleanup_p)

    # ── reset-skip ────────────────────────────────────────────────────────────
    reset_p = subparsers.add_parser(
        "reset-skip",
        help="Make skip-worktree flags match the keep lists",
        description="Clear skip-worktree on files no longer in the keep list and set it on every keep file.",
    )
    reset_p.add_argument("path", nargs="?", metavar="PATH",
                         help="Only reset this workspace")
    _common(reset_p)

    # ── status ────────────────────────────────────────────────────────────────
    status_p = subparsers.add_parser(
        "status",
        help="Show keep files and retained patches",
        description="Show keep files, skip-worktree flags and patches awaiting manual recovery.",
    )
    _common(status_p)

    args = parser.parse_args(argv)

    if args.command == "pull":
        cmd_pull(args)
    elif args.command == "sync":
        cmd_sync(args)
    elif args.command == "archive":
        cmd_archive(args)
    elif args.command == "cleanup":
        cmd_cleanup(args)
    elif args.command == "reset-skip":
        cmd_reset_skip(args)
    elif args.command == "status":
        cmd_status(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
