"""
Monthly archival of backup buckets.

Every yyyy/mm bucket older than the current month is packed into
archived/<yyyy>-<mm>-<kind>.tar.gz, re-read end to end, and only then
removed from disk. The current month is never touched.
"""
import shutil
import tarfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

from .. import config as _cfg
from ..exceptions import ArchiveError, ArchiveIOError, ArchiveVerifyError
from ..utils.logging import log, vlog, warn

PathLike = Union[str, Path]

BACKUP_KINDS = (_cfg.BACKUP_KIND_FILES, _cfg.BACKUP_KIND_PATCHES)


@dataclass
class ArchiveResult:
    archived: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    errors: list[ArchiveError] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


def archive_name(year: str, month: str, kind: str) -> str:
    return f"{year}-{month}-{kind}.tar.gz"


def _sorted_dirs(path: Path) -> list[Path]:
    return sorted(p for p in path.iterdir() if p.is_dir())


def create_tar_gz(kind_dir: Path, archive_path: Path, year: str, month: str):
    """Pack kind_dir/<year>/<month> with member names relative to kind_dir."""
    src = kind_dir / year / month
    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(str(src), arcname=f"{year}/{month}", recursive=True)
    except (OSError, tarfile.TarError) as exc:
        archive_path.unlink(missing_ok=True)
        raise ArchiveIOError(f"failed to create archive {archive_path.name}: {exc}") from exc


def verify_tar_gz(archive_path: Path) -> int:
    """
    Re-open the archive, decompress it and read every member's contents.
    Returns the number of entries; raises ArchiveVerifyError when the archive
    is unreadable or empty.
    """
    count = 0
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            for member in tar:
                count += 1
                if member.isfile():
                    f = tar.extractfile(member)
                    if f is None:
                        raise ArchiveVerifyError(f"{archive_path.name}: cannot read {member.name}")
                    read = 0
                    with f:
                        for chunk in iter(lambda: f.read(65536), b""):
                            read += len(chunk)
                    if read != member.size:
                        raise ArchiveVerifyError(
                            f"{archive_path.name}: {member.name} truncated "
                            f"({read} of {member.size} bytes)"
                        )
    except (OSError, EOFError, tarfile.TarError) as exc:
        raise ArchiveVerifyError(f"{archive_path.name}: {exc}") from exc
    if count == 0:
        raise ArchiveVerifyError(f"{archive_path.name}: archive is empty")
    return count


def _archive_bucket(backup_root: Path, kind: str, year: str, month: str,
                    result: ArchiveResult):
    kind_dir = backup_root / kind
    month_dir = kind_dir / year / month
    name = archive_name(year, month, kind)
    archived_dir = backup_root / _cfg.ARCHIVED_DIRNAME
    archive_path = archived_dir / name

    if archive_path.exists():
        vlog(f"  [archive] already exists: {name}")
        result.existing.append(name)
        return

    log(f"  [archive] {kind}/{year}/{month} → {name}")
    try:
        archived_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArchiveIOError(f"failed to create {archived_dir}: {exc}") from exc

    create_tar_gz(kind_dir, archive_path, year, month)

    try:
        entries = verify_tar_gz(archive_path)
    except ArchiveVerifyError:
        archive_path.unlink(missing_ok=True)
        raise
    vlog(f"  [archive] verified {name} ({entries} entries)")

    try:
        shutil.rmtree(month_dir)
    except OSError as exc:
        raise ArchiveIOError(f"archived {name} but failed to remove {month_dir}: {exc}") from exc
    log(f"  [archive] removed original {kind}/{year}/{month}")
    result.archived.append(name)


def archive_old_backups(backup_root: PathLike, now: Optional[datetime] = None) -> ArchiveResult:
    """
    Archive every month bucket older than the current month, for both backup
    kinds. A failing bucket is recorded in the result and its original data
    is left in place; the remaining buckets are still processed.
    """
    backup_root = Path(backup_root)
    now = now or datetime.now()
    current = (now.strftime("%Y"), now.strftime("%m"))
    result = ArchiveResult()

    for kind in BACKUP_KINDS:
        kind_dir = backup_root / kind
        if not kind_dir.is_dir():
            continue
        for year_dir in _sorted_dirs(kind_dir):
            for month_dir in _sorted_dirs(year_dir):
                bucket = (year_dir.name, month_dir.name)
                if not (bucket[0].isdigit() and bucket[1].isdigit()):
                    continue
                if bucket == current:
                    vlog(f"  [archive] skipping current month {kind}/{year_dir.name}/{month_dir.name}")
                    continue
                if bucket > current:
                    warn(f"backup bucket {kind}/{year_dir.name}/{month_dir.name} is dated in the future, skipped")
                    continue
                try:
                    _archive_bucket(backup_root, kind, year_dir.name, month_dir.name, result)
                except ArchiveError as exc:
                    warn(f"archive failed for {kind}/{year_dir.name}/{month_dir.name}: {exc}")
                    result.errors.append(exc)

            if year_dir.is_dir() and not any(year_dir.iterdir()):
                year_dir.rmdir()

    if result.archived:
        log(f"  [archive] archived {len(result.archived)} bucket(s)")
    return result


# ── throttle marker ──────────────────────────────────────────────────────────

def _marker_path(state_dir: PathLike) -> Path:
    return Path(state_dir) / _cfg.ARCHIVE_MARKER_NAME


def _now_utc(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.astimezone()
    return now


def last_archive_check(state_dir: PathLike) -> Optional[datetime]:
    """Timestamp stored in the marker, or None when missing or unreadable."""
    marker = _marker_path(state_dir)
    try:
        text = marker.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        stamp = datetime.fromisoformat(text)
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.astimezone()
    return stamp


def should_run_archive(state_dir: PathLike, now: Optional[datetime] = None) -> bool:
    """True when no archive scan happened within ARCHIVE_INTERVAL_HOURS."""
    last = last_archive_check(state_dir)
    if last is None:
        return True
    return _now_utc(now) - last >= timedelta(hours=_cfg.ARCHIVE_INTERVAL_HOURS)


def update_archive_check(state_dir: PathLike, now: Optional[datetime] = None):
    """Record the current time (RFC 3339, one line) in the marker file."""
    marker = _marker_path(state_dir)
    marker.parent.mkdir(parents=True, exist_ok=True)
    stamp = _now_utc(now).isoformat(timespec="seconds")
    marker.write_text(stamp + "\n", encoding="utf-8")
