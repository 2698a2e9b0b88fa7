"""
Exception hierarchy for git-workspace
"""
from typing import Optional, Sequence


class WorkspaceError(RuntimeError):
    """Base class for all git-workspace errors."""


class ManifestError(WorkspaceError):
    """The manifest could not be read or written."""


class GitError(WorkspaceError):
    """A git subprocess exited with a non-zero status."""

    def __init__(self, message: str, cmd: Optional[Sequence[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ""):
        self.cmd = list(cmd) if cmd else []
        self.returncode = returncode
        self.stderr = stderr
        detail = f"{message}"
        if returncode is not None:
            detail += f" (exit {returncode})"
        if stderr.strip():
            detail += f": {stderr.strip()}"
        super().__init__(detail)


class RemoteCheckError(GitError):
    """Comparing HEAD with the upstream reference failed."""


class PatchError(WorkspaceError):
    """Base class for patch creation / check / apply failures."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        if output.strip():
            message = f"{message}\noutput: {output.strip()}"
        super().__init__(message)


class DiffError(PatchError):
    """`git diff` failed while creating a patch."""


class PatchToolError(PatchError):
    """The patch tool failed for a reason other than a hunk conflict."""


class ApplyError(PatchError):
    """Applying a patch to the working tree failed."""


class BackupError(WorkspaceError):
    """A backup copy could not be written."""


class ArchiveError(WorkspaceError):
    """Base class for archive maintenance failures."""


class ArchiveIOError(ArchiveError):
    """Creating the archive directory or compressing a bucket failed."""


class ArchiveVerifyError(ArchiveError):
    """A freshly written archive failed its read-back verification."""
