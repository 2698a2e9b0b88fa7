"""
Configuration constants for git-workspace
"""
import os
from pathlib import Path
from typing import Optional

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS  ── overridden by the global config.yaml or apply_settings()
# ══════════════════════════════════════════════════════════════════════════════

# Manifest listing the nested workspaces, kept at the parent repository root
MANIFEST_FILE = ".git.workspaces"

# State directory (patches, backups, archive marker) under the parent root
STATE_DIRNAME = ".workspaces"
PATCHES_DIRNAME = "patches"
BACKUP_DIRNAME = "backup"
ARCHIVE_MARKER_NAME = ".last-archive-check"

# Backup kinds, each with its own yyyy/mm/dd tree under the backup root
BACKUP_KIND_FILES = "modified"
BACKUP_KIND_PATCHES = "patched"
ARCHIVED_DIRNAME = "archived"

# External patch tool used for dry-run checks and application
PATCH_COMMAND = "patch"

# Remote used to build "<remote>/<branch>" for upstream comparisons.
# None → use the branch's tracking reference (<branch>@{upstream}).
UPSTREAM_REMOTE: Optional[str] = None
FALLBACK_REMOTE = "origin"

# Default retention for `cleanup` when --days is not given
BACKUP_RETENTION_DAYS = 90

# Archive maintenance runs at most once per interval
ARCHIVE_INTERVAL_HOURS = 24

# Retry settings for network git operations (fetch / pull / push)
RETRY_MAX = 3
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

# Pager for "Show diff"; None → $PAGER, then less / more, then plain print
PAGER: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════════
#  DYNAMIC PATHS  ── computed from the parent repository root at call time
# ══════════════════════════════════════════════════════════════════════════════

def get_manifest_file(repo_root: Path) -> Path:
    """Return the manifest path for the given parent repository."""
    return Path(repo_root) / MANIFEST_FILE


def get_state_dir(repo_root: Path) -> Path:
    """Return the .workspaces state directory."""
    return Path(repo_root) / STATE_DIRNAME


def get_patches_dir(repo_root: Path) -> Path:
    """Return the root directory holding retained patches."""
    return get_state_dir(repo_root) / PATCHES_DIRNAME


def get_backup_dir(repo_root: Path) -> Path:
    """Return the backup root (modified/, patched/, archived/)."""
    return get_state_dir(repo_root) / BACKUP_DIRNAME


def get_keep_patch_path(repo_root: Path, workspace_rel: str, file: str) -> Path:
    """Patch location for a keep file: patches/<workspace>/<basename>.patch"""
    return get_patches_dir(repo_root) / workspace_rel / (Path(file).name + ".patch")


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/git-workspace/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for git-workspace."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "git-workspace"
    if os.name == "nt":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "git-workspace"
    return Path.home() / ".config" / "git-workspace"


def load_global_config() -> dict:
    """Load the global config file; a missing file yields an empty dict."""
    import yaml

    cfg_path = get_global_config_dir() / "config.yaml"
    if not cfg_path.is_file():
        return {}
    with cfg_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{cfg_path}: expected a mapping at the top level")
    return data


def merge_settings(global_cfg: dict, project_settings: Optional[dict]) -> dict:
    """
    Merge the global `defaults:` section with a manifest's `settings:` block.
    Project settings win over global defaults.
    """
    merged = dict(global_cfg.get("defaults", {}) or {})
    merged.update(project_settings or {})
    return merged


# ══════════════════════════════════════════════════════════════════════════════
#  APPLY SETTINGS  ── mutates module-level variables
# ══════════════════════════════════════════════════════════════════════════════

def apply_settings(settings: dict):
    """
    Apply a settings dict to the module-level config variables.
    Supports keys: patch_command, upstream_remote, backup_retention_days,
                   archive_interval_hours, retry_max, retry_base_delay, pager.
    """
    global PATCH_COMMAND, UPSTREAM_REMOTE, BACKUP_RETENTION_DAYS
    global ARCHIVE_INTERVAL_HOURS, RETRY_MAX, RETRY_BASE_DELAY, PAGER

    if "patch_command" in settings:
        PATCH_COMMAND = str(settings["patch_command"])
    if "upstream_remote" in settings:
        UPSTREAM_REMOTE = str(settings["upstream_remote"]) if settings["upstream_remote"] else None
    if "backup_retention_days" in settings:
        BACKUP_RETENTION_DAYS = int(settings["backup_retention_days"])
    if "archive_interval_hours" in settings:
        ARCHIVE_INTERVAL_HOURS = float(settings["archive_interval_hours"])
    if "retry_max" in settings:
        RETRY_MAX = max(1, int(settings["retry_max"]))
    if "retry_base_delay" in settings:
        RETRY_BASE_DELAY = float(settings["retry_base_delay"])
    if "pager" in settings:
        PAGER = str(settings["pager"]) if settings["pager"] else None
