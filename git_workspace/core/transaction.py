"""
Skip-worktree transaction.

Keep files normally carry the skip-worktree bit so local edits stay invisible
to status/diff/checkout. Anything that needs their real content (diffing,
resetting, reapplying patches) runs inside a transaction that clears the bit
first and sets it again on every exit path.
"""
from pathlib import Path
from typing import Callable, Iterable, TypeVar, Union

from . import git
from ..exceptions import GitError
from ..utils.logging import vlog, warn

T = TypeVar("T")


class SkipWorktreeTransaction:
    """
    Context manager: clear skip-worktree on enter, restore it on exit.

    The restore runs exactly once, whether the body returned or raised. A
    restore failure is raised when the body succeeded; when the body raised,
    the restore failure is only reported so the original error propagates.
    """

    def __init__(self, workspace_path: Union[str, Path], files: Iterable[str]):
        self.workspace_path = Path(workspace_path)
        self.files = list(dict.fromkeys(files))

    def __enter__(self):
        if self.files:
            vlog(f"  [skip-worktree] clear {len(self.files)} file(s) in {self.workspace_path}")
            try:
                git.unapply_skip_worktree(self.workspace_path, self.files)
            except GitError:
                # Some files may already be cleared; put every flag back.
                self._restore(primary_error=True)
                raise
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.files:
            self._restore(primary_error=exc_type is not None)
        return False

    def _restore(self, primary_error: bool):
        vlog(f"  [skip-worktree] restore {len(self.files)} file(s) in {self.workspace_path}")
        try:
            git.apply_skip_worktree(self.workspace_path, self.files)
        except GitError as exc:
            if not primary_error:
                raise
            warn(f"failed to restore skip-worktree in {self.workspace_path}: {exc}")


def with_transaction(workspace_path: Union[str, Path], files: Iterable[str],
                     work: Callable[[], T]) -> T:
    """Run *work* with skip-worktree cleared on *files*; always restore it."""
    with SkipWorktreeTransaction(workspace_path, files):
        return work()
