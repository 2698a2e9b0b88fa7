"""
Thin wrapper around the git command line.

Every call is a blocking `git -C <path> ...` subprocess. Failures surface as
GitError carrying the exit code and stderr; callers decide whether to warn
and continue or abort.
"""
import subprocess
from pathlib import Path
from typing import Iterable, Optional, Union

from .. import config as _cfg
from ..exceptions import GitError, RemoteCheckError
from ..utils.logging import vlog
from ..utils.retry import retried

PathLike = Union[str, Path]


def _run(path: PathLike, *args: str, check: bool = True) -> subprocess.CompletedProcess:
    """Run a git command inside *path* and capture its output."""
    cmd = ["git", "-C", str(path), *args]
    vlog(f"  [git] {' '.join(args)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise GitError("git executable not found", cmd) from exc
    if check and result.returncode != 0:
        raise GitError(f"git {args[0]} failed in {path}", cmd,
                       result.returncode, result.stderr)
    return result


# ── repository discovery ─────────────────────────────────────────────────────

def is_repo(path: PathLike) -> bool:
    """True if *path* is the top of its own git working tree."""
    p = Path(path)
    if not (p / ".git").exists():
        return False
    result = _run(p, "rev-parse", "--git-dir", check=False)
    return result.returncode == 0


def get_repo_root(start: Optional[PathLike] = None) -> Path:
    """Return the top-level directory of the repository containing *start*."""
    result = _run(start or Path.cwd(), "rev-parse", "--show-toplevel")
    return Path(result.stdout.strip())


def get_current_branch(path: PathLike) -> str:
    result = _run(path, "rev-parse", "--abbrev-ref", "HEAD")
    return result.stdout.strip()


# ── network operations ───────────────────────────────────────────────────────

@retried
def fetch(path: PathLike):
    """Fetch UPSTREAM_REMOTE, or let git pick the branch's own remote."""
    if _cfg.UPSTREAM_REMOTE:
        _run(path, "fetch", _cfg.UPSTREAM_REMOTE)
    else:
        _run(path, "fetch")


@retried
def pull(path: PathLike):
    _run(path, "pull")


@retried
def push(path: PathLike):
    _run(path, "push")


# ── upstream comparison ──────────────────────────────────────────────────────

def resolve_upstream(path: PathLike, branch: str) -> str:
    """
    Reference holding the remote version of *branch*.

    With UPSTREAM_REMOTE configured this is "<remote>/<branch>". Otherwise
    the branch's tracking reference is used, falling back to
    "<FALLBACK_REMOTE>/<branch>" when no upstream is configured.
    """
    if _cfg.UPSTREAM_REMOTE:
        return f"{_cfg.UPSTREAM_REMOTE}/{branch}"
    result = _run(path, "rev-parse", "--abbrev-ref", "--symbolic-full-name",
                  f"{branch}@{{upstream}}", check=False)
    ref = result.stdout.strip()
    if result.returncode == 0 and ref:
        return ref
    return f"{_cfg.FALLBACK_REMOTE}/{branch}"


def ref_exists(path: PathLike, ref: str) -> bool:
    result = _run(path, "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
    return result.returncode == 0


def has_remote_changes(path: PathLike, file: str, branch: str) -> bool:
    """
    True if *file* differs between HEAD and the upstream reference of *branch*.
    A missing upstream reference counts as "no remote changes".
    """
    upstream = resolve_upstream(path, branch)
    if not ref_exists(path, upstream):
        vlog(f"  [git] no upstream reference {upstream}")
        return False
    result = _run(path, "diff", "--quiet", "HEAD", upstream, "--", file, check=False)
    if result.returncode == 0:
        return False
    if result.returncode == 1:
        return True
    raise RemoteCheckError(f"could not compare {file} with {upstream}",
                           ["git", "diff", "--quiet", "HEAD", upstream, "--", file],
                           result.returncode, result.stderr)


def get_file_diff(path: PathLike, file: str, branch: str) -> str:
    """Diff of *file* from HEAD to its upstream version."""
    upstream = resolve_upstream(path, branch)
    return _run(path, "diff", "HEAD", upstream, "--", file).stdout


def reset_file(path: PathLike, file: str, branch: str):
    """Replace the working copy (and index entry) of *file* with the upstream version."""
    upstream = resolve_upstream(path, branch)
    _run(path, "checkout", upstream, "--", file)


# ── working tree status ──────────────────────────────────────────────────────

def _lines(out: str) -> list[str]:
    return [line for line in out.splitlines() if line.strip()]


def get_modified_files(path: PathLike) -> list[str]:
    """Tracked files whose working content differs from HEAD."""
    return _lines(_run(path, "diff", "--name-only", "HEAD").stdout)


# ── skip-worktree ────────────────────────────────────────────────────────────

def list_skip_worktree(path: PathLike) -> list[str]:
    """Files whose index entry carries the skip-worktree bit ("S" tag)."""
    files = []
    for line in _run(path, "ls-files", "-v").stdout.splitlines():
        if len(line) > 2 and line[0] == "S":
            files.append(line[2:].strip())
    return files


def _update_index(path: PathLike, flag: str, files: Iterable[str]):
    failed = []
    for file in files:
        result = _run(path, "update-index", flag, "--", file, check=False)
        if result.returncode != 0:
            failed.append(f"{file} ({result.stderr.strip() or 'exit ' + str(result.returncode)})")
    if failed:
        raise GitError(
            f"git update-index {flag} failed for {len(failed)} file(s):\n  - "
            + "\n  - ".join(failed)
        )


def apply_skip_worktree(path: PathLike, files: Iterable[str]):
    """Set skip-worktree on every file in *files*."""
    already = set(list_skip_worktree(path))
    _update_index(path, "--skip-worktree", [f for f in files if f not in already])


def unapply_skip_worktree(path: PathLike, files: Iterable[str]):
    """Clear skip-worktree on every file in *files*."""
    _update_index(path, "--no-skip-worktree", files)


def split_tracked(path: PathLike, files: Iterable[str]) -> tuple[list[str], list[str]]:
    """
    Partition *files* into (tracked, untracked) by their presence in the index.

    skip-worktree is an index bit, so update-index refuses untracked paths.
    """
    files = list(files)
    if not files:
        return [], []
    out = _run(path, "ls-files", "-z", "--", *files).stdout
    indexed = {name for name in out.split("\0") if name}
    tracked = [f for f in files if f in indexed]
    untracked = [f for f in files if f not in indexed]
    return tracked, untracked
