"""
Keep-file resolution.

A keep file carries local edits that must survive upstream updates. When the
upstream version of a keep file moved, the user picks one of:

  Reapply   back up the local file, save its divergence as a patch, reset the
            file to the upstream version and re-apply the patch. A patch that
            conflicts or fails to apply is kept on disk for manual recovery.
  Discard   reset the file to the upstream version.
  Skip      leave the file alone.
  Show diff print the upstream change and ask again.

Everything runs inside a skip-worktree transaction so git sees the real
content while we work and the flag is back on afterwards.
"""
import tempfile
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from .. import config as _cfg
from ..core import git
from ..core.transaction import with_transaction
from ..exceptions import ApplyError, BackupError, DiffError, GitError, PatchToolError
from ..utils.logging import log, ok, vlog, warn
from .backup import create_file_backup, create_patch_backup, latest_file_backup
from .patch import apply_patch, check_patch, create_patch
from .prompt import ConsolePrompter, Prompter

PathLike = Union[str, Path]

KEEP_FILE_CHOICES = [
    "Update to remote and reapply local changes (recommended)",
    "Update to remote only (discard local changes)",
    "Skip (keep current state)",
    "Show diff",
]
REAPPLY, DISCARD, SKIP, SHOW_DIFF = range(len(KEEP_FILE_CHOICES))


class KeepFileOutcome(Enum):
    UNCHANGED = "unchanged"      # upstream did not touch the file
    REAPPLIED = "reapplied"      # reset to upstream, local changes re-applied
    RETAINED = "retained"        # reset to upstream, patch kept for manual recovery
    DISCARDED = "discarded"      # reset to upstream, local changes dropped
    SKIPPED = "skipped"          # left as is
    FAILED = "failed"            # stopped before the file was reset

    @property
    def needs_attention(self) -> bool:
        return self in (KeepFileOutcome.RETAINED, KeepFileOutcome.FAILED)


def _report_retained(file: str, workspace_path: Path, patch_path: Path,
                     backup_path: Optional[Path], reason: str):
    warn(f"{file}: {reason}; file left at the remote version")
    log(f"    patch kept   : {patch_path}")
    if backup_path is not None:
        log(f"    file backup  : {backup_path}")
    log(f"    to reapply   : cd {workspace_path} && patch -p1 < {patch_path}")


def _reapply(workspace_path: Path, file: str, branch: str, repo_root: Path,
             workspace_rel_path: str) -> KeepFileOutcome:
    backup_root = _cfg.get_backup_dir(repo_root)
    patch_path = _cfg.get_keep_patch_path(repo_root, workspace_rel_path, file)

    # 1. back up the local file; nothing below runs without it
    try:
        backup_path = create_file_backup(workspace_path / file, backup_root, repo_root)
    except BackupError as exc:
        warn(f"{file}: backup failed, file not touched: {exc}")
        return KeepFileOutcome.FAILED
    if backup_path is not None:
        vlog(f"  [keep] backed up {file} → {backup_path}")
    else:
        # unchanged since an earlier backup today
        backup_path = latest_file_backup(workspace_path / file, backup_root, repo_root)

    # 2. capture local divergence
    try:
        create_patch(workspace_path, file, patch_path)
    except DiffError as exc:
        warn(f"{file}: could not create patch, file not touched: {exc}")
        return KeepFileOutcome.FAILED

    try:
        create_patch_backup(patch_path, backup_root, _cfg.get_patches_dir(repo_root))
    except BackupError as exc:
        warn(f"{file}: patch backup failed, file not touched: {exc}")
        log(f"    patch kept   : {patch_path}")
        return KeepFileOutcome.FAILED

    # 3. take the upstream version
    try:
        git.reset_file(workspace_path, file, branch)
    except GitError as exc:
        warn(f"{file}: reset to remote failed: {exc}")
        log(f"    patch kept   : {patch_path}")
        return KeepFileOutcome.FAILED

    if patch_path.stat().st_size == 0:
        patch_path.unlink()
        ok(f"Updated {file} (no local changes to reapply)")
        return KeepFileOutcome.REAPPLIED

    # 4. dry run, then apply for real
    try:
        conflict = check_patch(workspace_path, patch_path)
    except PatchToolError as exc:
        _report_retained(file, workspace_path, patch_path, backup_path,
                         f"patch check failed ({exc})")
        return KeepFileOutcome.RETAINED
    if conflict:
        _report_retained(file, workspace_path, patch_path, backup_path,
                         "local changes conflict with the remote version")
        return KeepFileOutcome.RETAINED

    try:
        apply_patch(workspace_path, patch_path)
    except ApplyError as exc:
        try:
            git.reset_file(workspace_path, file, branch)
        except GitError as reset_exc:
            warn(f"{file}: could not restore the remote version: {reset_exc}")
        _report_retained(file, workspace_path, patch_path, backup_path,
                         f"patch apply failed ({exc})")
        return KeepFileOutcome.RETAINED

    patch_path.unlink()
    ok(f"Updated {file} and reapplied local changes")
    return KeepFileOutcome.REAPPLIED


def resolve_keep_file(workspace_path: PathLike, file: str, branch: str,
                      repo_root: PathLike, workspace_rel_path: str,
                      prompter: Prompter) -> KeepFileOutcome:
    """Run the per-file state machine. Skip-worktree must already be cleared."""
    workspace_path = Path(workspace_path).resolve()
    repo_root = Path(repo_root).resolve()

    try:
        changed = git.has_remote_changes(workspace_path, file, branch)
    except GitError as exc:
        warn(f"{file}: failed to check remote changes: {exc}")
        return KeepFileOutcome.FAILED
    if not changed:
        vlog(f"  [keep] {file}: no remote changes")
        return KeepFileOutcome.UNCHANGED

    message = f"{file} changed upstream. Choose action:"
    while True:
        choice = prompter.choose(message, KEEP_FILE_CHOICES)

        if choice == SHOW_DIFF:
            try:
                prompter.show_diff(git.get_file_diff(workspace_path, file, branch))
            except GitError as exc:
                warn(f"{file}: failed to get diff: {exc}")
            continue

        if choice == REAPPLY:
            return _reapply(workspace_path, file, branch, repo_root, workspace_rel_path)

        if choice == DISCARD:
            try:
                git.reset_file(workspace_path, file, branch)
            except GitError as exc:
                warn(f"{file}: reset to remote failed: {exc}")
                return KeepFileOutcome.FAILED
            ok(f"Updated {file} to the remote version (local changes discarded)")
            return KeepFileOutcome.DISCARDED

        if choice == SKIP:
            log(f"  ⏭ Skipped {file} (keeping current state)")
            return KeepFileOutcome.SKIPPED

        raise ValueError(f"invalid choice: {choice}")


def resolve_keep_files(workspace_path: PathLike, branch: str, keep_files: Iterable[str],
                       repo_root: PathLike, workspace_rel_path: str,
                       prompter: Optional[Prompter] = None) -> dict[str, KeepFileOutcome]:
    """
    Resolve every keep file of one workspace, one at a time, inside a single
    skip-worktree transaction. Returns the outcome per file.
    """
    keep_files = list(dict.fromkeys(keep_files))
    prompter = prompter or ConsolePrompter(cancel_index=SKIP)
    outcomes: dict[str, KeepFileOutcome] = {}

    tracked, untracked = git.split_tracked(workspace_path, keep_files)
    for file in untracked:
        warn(f"{file}: not tracked by git, skip-worktree cannot apply")
        outcomes[file] = KeepFileOutcome.FAILED

    def work():
        for file in tracked:
            outcomes[file] = resolve_keep_file(workspace_path, file, branch, repo_root,
                                               workspace_rel_path, prompter)
        return outcomes

    with_transaction(workspace_path, tracked, work)
    return {file: outcomes[file] for file in keep_files}


# ── sync snapshots ───────────────────────────────────────────────────────────

def snapshot_modified_files(workspace_path: PathLike, files: Iterable[str],
                            repo_root: PathLike, workspace_rel_path: str) -> int:
    """
    Back up each modified file together with a patch of its divergence from
    HEAD. Snapshot patches go straight into the patch backups; the patches
    directory itself only holds patches that still need manual recovery.
    Skip-worktree must already be cleared. Returns the number of failures.
    """
    workspace_path = Path(workspace_path).resolve()
    repo_root = Path(repo_root).resolve()
    backup_root = _cfg.get_backup_dir(repo_root)
    issues = 0

    with tempfile.TemporaryDirectory(prefix="git-workspace-") as tmp:
        staging = Path(tmp)
        for file in files:
            file_path = workspace_path / file
            if not file_path.exists():
                continue
            try:
                create_file_backup(file_path, backup_root, repo_root)
                patch_path = staging / workspace_rel_path / (file + ".patch")
                create_patch(workspace_path, file, patch_path)
                create_patch_backup(patch_path, backup_root, staging)
            except (BackupError, DiffError) as exc:
                warn(f"{file}: snapshot failed: {exc}")
                issues += 1
                continue
            vlog(f"  [snapshot] {file}")
    return issues
