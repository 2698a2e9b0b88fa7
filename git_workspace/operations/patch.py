"""
Patch creation, dry-run checking and application.

Patches are produced by `git diff HEAD` and consumed by the external patch
tool with -p1, so the a/ b/ prefixes written by git line up with the
workspace root.
"""
import subprocess
from pathlib import Path
from typing import Union

from .. import config as _cfg
from ..exceptions import ApplyError, DiffError, PatchToolError
from ..utils.logging import vlog

PathLike = Union[str, Path]

_CONFLICT_MARKERS = ("FAILED", "rejected")


def create_patch(workspace_path: PathLike, file: str, patch_path: PathLike):
    """
    Write the diff between HEAD and the working copy of *file* to *patch_path*.
    An empty *file* diffs the whole workspace. An empty diff is written as an
    empty patch file.
    """
    if not str(workspace_path):
        raise ValueError("workspace_path cannot be empty")
    if not str(patch_path):
        raise ValueError("patch_path cannot be empty")

    patch_path = Path(patch_path)
    patch_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = ["git", "-C", str(workspace_path), "diff", "HEAD"]
    if file:
        cmd += ["--", file]
    try:
        result = subprocess.run(cmd, capture_output=True)
    except FileNotFoundError as exc:
        raise DiffError("git executable not found") from exc
    if result.returncode != 0:
        raise DiffError(f"git diff failed for {file or workspace_path}",
                        result.stderr.decode("utf-8", errors="replace"))

    # bytes in, bytes out: the patch must match the file's exact encoding
    patch_path.write_bytes(result.stdout)
    vlog(f"  [patch] wrote {patch_path} ({len(result.stdout)} bytes)")


def _run_patch_tool(workspace_path: PathLike, patch_path: PathLike,
                    *extra: str) -> subprocess.CompletedProcess:
    patch_path = Path(patch_path)
    if not patch_path.is_file():
        raise PatchToolError(f"patch file not found: {patch_path}")
    cmd = [_cfg.PATCH_COMMAND, *extra, "-p1", "-i", str(patch_path.resolve())]
    vlog(f"  [patch] {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, cwd=str(workspace_path), capture_output=True,
                              text=True, stdin=subprocess.DEVNULL)
    except FileNotFoundError as exc:
        raise PatchToolError(f"patch tool not found: {_cfg.PATCH_COMMAND}") from exc


def check_patch(workspace_path: PathLike, patch_path: PathLike) -> bool:
    """
    Dry-run the patch. Returns True when hunks would fail or be rejected,
    False when it applies cleanly. Any other failure raises PatchToolError.
    """
    result = _run_patch_tool(workspace_path, patch_path, "--dry-run", "--batch")
    if result.returncode == 0:
        return False
    output = result.stdout + result.stderr
    if any(marker in output for marker in _CONFLICT_MARKERS):
        return True
    raise PatchToolError(f"patch check failed for {patch_path}", output)


def apply_patch(workspace_path: PathLike, patch_path: PathLike):
    """Apply the patch to the working tree for real."""
    try:
        result = _run_patch_tool(workspace_path, patch_path, "--batch", "--no-backup-if-mismatch")
    except PatchToolError as exc:
        raise ApplyError(str(exc)) from exc
    if result.returncode != 0:
        raise ApplyError(f"patch apply failed for {patch_path}",
                         result.stdout + result.stderr)
