"""
Backup store for keep files and their patches.

Layout under the backup root:
    modified/<yyyy>/<mm>/<dd>/<rel-path-stem>.<yyyymmdd_hhmmss><ext>
    patched/<yyyy>/<mm>/<dd>/<rel-under-patches-stem>.<yyyymmdd_hhmmss>.patch

A new copy is written only when its SHA-256 digest differs from the latest
backup of the same logical path in today's bucket. Backups are never
overwritten; a second backup within the same second gets a _<n> counter.
"""
import os
import re
import shutil
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from .. import config as _cfg
from ..exceptions import BackupError
from ..utils.file_utils import files_identical
from ..utils.logging import vlog

PathLike = Union[str, Path]

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def _day_dir(backup_root: Path, kind: str, now: datetime) -> Path:
    return backup_root / kind / now.strftime("%Y") / now.strftime("%m") / now.strftime("%d")


def _split_name(name: str) -> tuple[str, str]:
    """Split "config.yml" → ("config", ".yml"); dotfiles keep their full name."""
    p = Path(name)
    return p.stem, p.suffix


def _backup_pattern(rel_path: str) -> "re.Pattern[str]":
    stem, ext = _split_name(Path(rel_path).name)
    return re.compile(re.escape(stem) + r"\.\d{8}_\d{6}(?:_\d+)?" + re.escape(ext) + "$")


def find_latest_backup(day_dir: PathLike, rel_path: str) -> Optional[Path]:
    """
    Newest backup of *rel_path* inside *day_dir*, or None.
    Timestamps are fixed-width and zero-padded, so the lexicographic maximum
    of the matching names is the most recent one.
    """
    target_dir = Path(day_dir) / Path(rel_path).parent
    if not target_dir.is_dir():
        return None
    pattern = _backup_pattern(rel_path)
    matches = [e.name for e in os.scandir(target_dir) if e.is_file() and pattern.match(e.name)]
    if not matches:
        return None
    return target_dir / max(matches)


def _destination(day_dir: Path, rel_path: str, now: datetime) -> Path:
    rel = Path(rel_path)
    stem, ext = _split_name(rel.name)
    ts = now.strftime(TIMESTAMP_FORMAT)
    dest = day_dir / rel.parent / f"{stem}.{ts}{ext}"
    counter = 1
    while dest.exists():
        # zero-padded so the counter sorts with the name
        dest = day_dir / rel.parent / f"{stem}.{ts}_{counter:03d}{ext}"
        counter += 1
    return dest


def _copy_durable(src: Path, dst: Path):
    """Copy *src* to *dst* and fsync before returning."""
    with open(src, "rb") as fsrc, open(dst, "xb") as fdst:
        shutil.copyfileobj(fsrc, fdst)
        fdst.flush()
        os.fsync(fdst.fileno())


def _store(source: Path, rel_path: str, backup_root: PathLike, kind: str,
           now: Optional[datetime]) -> Optional[Path]:
    now = now or datetime.now()
    day_dir = _day_dir(Path(backup_root), kind, now)

    latest = find_latest_backup(day_dir, rel_path)
    if latest is not None:
        try:
            if files_identical(source, latest):
                vlog(f"  [backup] unchanged since {latest.name}, skipped")
                return None
        except OSError as exc:
            raise BackupError(f"failed to compare {source} with {latest}: {exc}") from exc

    dest = _destination(day_dir, rel_path, now)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        _copy_durable(source, dest)
    except OSError as exc:
        raise BackupError(f"failed to back up {source} to {dest}: {exc}") from exc
    vlog(f"  [backup] {source} → {dest}")
    return dest


def _file_rel_path(file_path: Path, repo_root: PathLike) -> str:
    if not file_path.is_absolute():
        return file_path.as_posix()
    try:
        return file_path.relative_to(Path(repo_root).resolve()).as_posix()
    except ValueError:
        try:
            return file_path.relative_to(Path(repo_root)).as_posix()
        except ValueError:
            raise BackupError(f"{file_path} is outside repository root {repo_root}")


def create_file_backup(file_path: PathLike, backup_root: PathLike, repo_root: PathLike,
                       now: Optional[datetime] = None) -> Optional[Path]:
    """
    Back up a whole file under modified/<yyyy>/<mm>/<dd>/.

    Returns the backup path, or None when the file does not exist or its
    content matches today's latest backup.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        return None
    rel_path = _file_rel_path(file_path, repo_root)
    return _store(file_path, rel_path, backup_root, _cfg.BACKUP_KIND_FILES, now)


def latest_file_backup(file_path: PathLike, backup_root: PathLike, repo_root: PathLike,
                       now: Optional[datetime] = None) -> Optional[Path]:
    """Today's newest backup of *file_path*, or None."""
    now = now or datetime.now()
    day_dir = _day_dir(Path(backup_root), _cfg.BACKUP_KIND_FILES, now)
    return find_latest_backup(day_dir, _file_rel_path(Path(file_path), repo_root))


def _patch_rel_path(patch_path: Path, patch_root: Optional[PathLike]) -> str:
    if patch_root is not None:
        try:
            return patch_path.resolve().relative_to(Path(patch_root).resolve()).as_posix()
        except ValueError:
            pass
    marker = f"{_cfg.STATE_DIRNAME}/{_cfg.PATCHES_DIRNAME}/"
    posix = patch_path.as_posix()
    idx = posix.find(marker)
    if idx != -1:
        return posix[idx + len(marker):]
    return patch_path.name


def create_patch_backup(patch_path: PathLike, backup_root: PathLike,
                        patch_root: Optional[PathLike] = None,
                        now: Optional[datetime] = None) -> Optional[Path]:
    """Back up a patch under patched/<yyyy>/<mm>/<dd>/, same rules as file backups."""
    patch_path = Path(patch_path)
    if not patch_path.exists():
        return None
    rel_path = _patch_rel_path(patch_path, patch_root)
    return _store(patch_path, rel_path, backup_root, _cfg.BACKUP_KIND_PATCHES, now)


def cleanup(backup_root: PathLike, retention_days: int) -> int:
    """
    Delete backup files last modified more than *retention_days* ago.
    Returns the number of files removed.
    """
    if retention_days <= 0:
        raise ValueError("retention_days must be positive")
    backup_root = Path(backup_root)
    if not backup_root.is_dir():
        return 0

    cutoff = time.time() - timedelta(days=retention_days).total_seconds()
    removed = 0
    for dirpath, _dirs, files in os.walk(backup_root):
        for name in files:
            path = Path(dirpath) / name
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
                vlog(f"  [cleanup] removed {path}")
    return removed
