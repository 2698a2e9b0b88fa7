"""Operations (backup, archive, patch, keep-file resolution)"""
from .backup import create_file_backup, create_patch_backup, find_latest_backup, cleanup
from .archive import archive_old_backups, should_run_archive, update_archive_check
from .patch import create_patch, check_patch, apply_patch
from .keep_files import KeepFileOutcome, resolve_keep_files, snapshot_modified_files
from .prompt import Prompter, ConsolePrompter, FixedPrompter, ScriptedPrompter

__all__ = [
    "create_file_backup", "create_patch_backup", "find_latest_backup", "cleanup",
    "archive_old_backups", "should_run_archive", "update_archive_check",
    "create_patch", "check_patch", "apply_patch",
    "KeepFileOutcome", "resolve_keep_files", "snapshot_modified_files",
    "Prompter", "ConsolePrompter", "FixedPrompter", "ScriptedPrompter",
]
