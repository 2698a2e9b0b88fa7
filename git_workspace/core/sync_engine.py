"""
Command orchestration - pull, sync, archive maintenance, cleanup, status
"""
from pathlib import Path
from typing import Optional, Union

from .. import config as _cfg
from ..exceptions import GitError, ManifestError, WorkspaceError
from ..operations.archive import archive_old_backups, should_run_archive, update_archive_check
from ..operations.backup import cleanup
from ..operations.keep_files import resolve_keep_files, snapshot_modified_files
from ..operations.prompt import Prompter, confirm
from ..state.manifest import Manifest, Workspace, load_manifest, save_manifest
from ..utils.logging import log, ok, vlog, warn
from . import git
from .transaction import with_transaction

PathLike = Union[str, Path]


def load_context(repo_root: Optional[PathLike] = None) -> tuple[Path, Manifest]:
    """
    Locate the parent repository, load its manifest and apply settings
    (global config defaults, then the manifest's settings block).
    """
    root = Path(repo_root).resolve() if repo_root else git.get_repo_root()
    manifest = load_manifest(root)
    _cfg.apply_settings(_cfg.merge_settings(_cfg.load_global_config(), manifest.settings))
    return root, manifest


def select_workspaces(manifest: Manifest, target: Optional[str] = None) -> list[Workspace]:
    if not target:
        return list(manifest.workspaces)
    ws = manifest.find(target)
    if ws is None:
        raise ManifestError(f"workspace not found in manifest: {target}")
    return [ws]


def _banner(title: str, repo_root: Path):
    print(f"\n{'=' * 64}")
    print(f"  {title}  {repo_root}")
    print(f"{'=' * 64}")


# ── pull ──────────────────────────────────────────────────────────────────────

def pull_workspace(repo_root: Path, ws: Workspace, assume_yes: bool = False,
                   prompter: Optional[Prompter] = None) -> int:
    """Fetch, resolve keep files, pull. Returns the number of issues."""
    full = repo_root / ws.path
    if not git.is_repo(full):
        warn(f"{ws.path}: not a git repository")
        return 1

    try:
        branch = git.get_current_branch(full)
    except GitError as exc:
        warn(f"{ws.path}: failed to get current branch: {exc}")
        return 1

    log(f"{ws.path} ({branch})")
    if not assume_yes and not confirm("Pull this workspace?"):
        log("  ⏭ Skipped")
        return 0

    try:
        git.fetch(full)
    except GitError as exc:
        warn(f"{ws.path}: fetch failed: {exc}")
        return 1

    issues = 0
    keep = ws.keep_files()
    if keep:
        vlog(f"  [keep] {len(keep)} keep file(s)")
        try:
            outcomes = resolve_keep_files(full, branch, keep, repo_root, ws.path, prompter)
        except GitError as exc:
            warn(f"{ws.path}: keep file handling failed, pull skipped: {exc}")
            return issues + 1
        issues += sum(1 for outcome in outcomes.values() if outcome.needs_attention)

    try:
        git.pull(full)
    except GitError as exc:
        warn(f"{ws.path}: pull failed: {exc}")
        log(f"    run 'git -C {full} status' to inspect")
        return issues + 1

    ok(f"{ws.path} is up to date")
    return issues


def run_pull(repo_root: Path, manifest: Manifest, target: Optional[str] = None,
             assume_yes: bool = False, prompter: Optional[Prompter] = None) -> int:
    workspaces = select_workspaces(manifest, target)
    if not workspaces:
        log("No workspaces registered.")
        return 0

    _banner("Pull", repo_root)
    issues = 0
    for ws in workspaces:
        print()
        issues += pull_workspace(repo_root, ws, assume_yes, prompter)

    print()
    if issues:
        warn(f"Completed with {issues} issue(s)")
    else:
        ok("All workspaces pulled")
    return issues


# ── sync ──────────────────────────────────────────────────────────────────────

def sync_workspace(repo_root: Path, manifest: Manifest, ws: Workspace) -> int:
    """
    Snapshot every modified file of the workspace (backup + patch backup)
    and make sure its keep files carry skip-worktree. An empty keep list is
    filled from the modified files and written back to the manifest.
    """
    full = repo_root / ws.path
    log(f"{ws.path}")
    if not git.is_repo(full):
        warn(f"{ws.path}: not cloned yet (missing git repository)")
        return 1

    keep = ws.keep_files()
    try:
        tracked, untracked = git.split_tracked(full, keep)
    except GitError as exc:
        warn(f"{ws.path}: failed to list tracked files: {exc}")
        return 1
    for f in untracked:
        warn(f"{ws.path}: keep file {f} is not tracked by git, skip-worktree cannot apply")

    def snapshot():
        modified = git.get_modified_files(full)
        failures = snapshot_modified_files(full, modified, repo_root, ws.path)
        return modified, failures

    try:
        modified, failures = with_transaction(full, tracked, snapshot)
    except GitError as exc:
        warn(f"{ws.path}: failed to process keep files: {exc}")
        return 1

    if not keep and modified:
        ws.keep = list(modified)
        try:
            save_manifest(repo_root, manifest)
            git.apply_skip_worktree(full, modified)
        except WorkspaceError as exc:
            warn(f"{ws.path}: failed to register keep files: {exc}")
            return failures + 1
        ok(f"Found {len(modified)} modified file(s) and added them to the keep list:")
        for f in modified:
            print(f"      - {f}")
        print(f"    Edit {_cfg.MANIFEST_FILE} to keep only the files you need")
    elif modified:
        ok(f"Snapshot of {len(modified)} modified file(s) ({len(keep)} keep file(s))")
    return failures + len(untracked)


def run_sync(repo_root: Path, manifest: Manifest, target: Optional[str] = None) -> int:
    _banner("Sync", repo_root)
    issues = 0
    for ws in select_workspaces(manifest, target):
        print()
        issues += sync_workspace(repo_root, manifest, ws)

    if not run_archive_maintenance(repo_root):
        issues += 1

    print()
    if issues:
        warn(f"Completed with {issues} issue(s)")
    else:
        ok("All workspaces synced")
    return issues


# ── reset-skip ────────────────────────────────────────────────────────────────

def reset_skip_workspace(repo_root: Path, ws: Workspace) -> int:
    """
    Make skip-worktree match the keep list: clear the flag on files that are
    no longer kept and set it on every tracked keep file.
    Returns the number of issues.
    """
    full = repo_root / ws.path
    log(f"{ws.path}")
    if not git.is_repo(full):
        warn(f"{ws.path}: not cloned yet (missing git repository)")
        return 1

    keep = ws.keep_files()
    try:
        stale = [f for f in git.list_skip_worktree(full) if f not in keep]
        tracked, untracked = git.split_tracked(full, keep)
        git.unapply_skip_worktree(full, stale)
        git.apply_skip_worktree(full, tracked)
    except GitError as exc:
        warn(f"{ws.path}: failed to reset skip-worktree: {exc}")
        return 1

    for f in stale:
        log(f"  cleared  {f}")
    for f in untracked:
        warn(f"{ws.path}: keep file {f} is not tracked by git, skip-worktree cannot apply")
    ok(f"{len(tracked)} keep file(s) flagged, {len(stale)} stale flag(s) cleared")
    return len(untracked)


def run_reset_skip(repo_root: Path, manifest: Manifest, target: Optional[str] = None) -> int:
    _banner("Reset skip-worktree", repo_root)
    issues = 0
    for ws in select_workspaces(manifest, target):
        print()
        issues += reset_skip_workspace(repo_root, ws)

    print()
    if issues:
        warn(f"Completed with {issues} issue(s)")
    else:
        ok("skip-worktree flags match the keep lists")
    return issues


# ── archive / cleanup ─────────────────────────────────────────────────────────

def run_archive_maintenance(repo_root: Path, force: bool = False) -> bool:
    """
    Archive old backup months, at most once per ARCHIVE_INTERVAL_HOURS unless
    *force*. The throttle marker is updated only after a clean run.
    """
    state_dir = _cfg.get_state_dir(repo_root)
    if not force and not should_run_archive(state_dir):
        vlog("[Archive] checked recently, skipped")
        return True

    log("[Archive] Checking for old backups to archive...")
    result = archive_old_backups(_cfg.get_backup_dir(repo_root))
    if result.failed:
        warn(f"[Archive] {len(result.errors)} bucket(s) failed; originals left in place")
        return False

    update_archive_check(state_dir)
    log("[Archive] Completed")
    return True


def run_archive(repo_root: Path, force: bool = False) -> int:
    return 0 if run_archive_maintenance(repo_root, force=force) else 1


def run_cleanup(repo_root: Path, days: Optional[int] = None) -> int:
    """Delete backups older than *days* (default BACKUP_RETENTION_DAYS)."""
    days = _cfg.BACKUP_RETENTION_DAYS if days is None else days
    removed = cleanup(_cfg.get_backup_dir(repo_root), days)
    ok(f"Removed {removed} backup file(s) older than {days} day(s)")
    return removed


# ── status ────────────────────────────────────────────────────────────────────

def run_status(repo_root: Path, manifest: Manifest) -> int:
    """
    Show keep files, their skip-worktree flag and any patches waiting for
    manual recovery. Returns the number of keep files missing the flag.
    """
    patches_dir = _cfg.get_patches_dir(repo_root)
    missing = 0

    print(f"\nRepository : {repo_root}")
    print(f"Workspaces : {len(manifest.workspaces)}")

    for ws in manifest.workspaces:
        full = repo_root / ws.path
        print(f"\n{ws.path}")
        if not git.is_repo(full):
            print("  (not cloned)")
            continue
        keep = ws.keep_files()
        flagged = set(git.list_skip_worktree(full)) if keep else set()
        for f in keep:
            if f in flagged:
                print(f"  [S] {f}")
            else:
                print(f"  [ ] {f}  ⚠ skip-worktree not set")
                missing += 1

        ws_patches = patches_dir / ws.path
        if ws_patches.is_dir():
            retained = sorted(p for p in ws_patches.rglob("*.patch") if p.is_file())
            for p in retained:
                print(f"  ⚠ retained patch: {p}")

    state_dir = _cfg.get_state_dir(repo_root)
    if should_run_archive(state_dir):
        print("\nArchive maintenance is due (runs on the next sync).")
    return missing
