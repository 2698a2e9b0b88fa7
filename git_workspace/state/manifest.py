"""
Manifest file management (.git.workspaces at the parent repository root)

On-disk (YAML):
    settings:
      upstream_remote: origin
    workspaces:
      - path: apps/admin
        repo: git@example.com:org/admin.git
        branch: main
        keep:
          - config/local.yml
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import yaml

from .. import config as _cfg
from ..exceptions import ManifestError

PathLike = Union[str, Path]


@dataclass
class Workspace:
    path: str
    repo: str = ""
    branch: str = ""
    keep: list[str] = field(default_factory=list)

    def keep_files(self) -> list[str]:
        """Keep files without blanks or duplicates, in manifest order."""
        return list(dict.fromkeys(f.strip() for f in self.keep if f and f.strip()))

    def to_dict(self) -> dict:
        data = {"path": self.path, "repo": self.repo}
        if self.branch:
            data["branch"] = self.branch
        if self.keep:
            data["keep"] = list(self.keep)
        return data


@dataclass
class Manifest:
    workspaces: list[Workspace] = field(default_factory=list)
    settings: dict = field(default_factory=dict)

    def find(self, path: str) -> Optional[Workspace]:
        norm = path.strip().rstrip("/")
        return next((ws for ws in self.workspaces if ws.path == norm), None)

    def to_dict(self) -> dict:
        data: dict = {}
        if self.settings:
            data["settings"] = dict(self.settings)
        data["workspaces"] = [ws.to_dict() for ws in self.workspaces]
        return data


def _parse_workspace(entry, index: int) -> Workspace:
    if not isinstance(entry, dict) or not entry.get("path"):
        raise ManifestError(f"workspace #{index + 1}: 'path' is required")
    keep = entry.get("keep") or []
    if isinstance(keep, str):
        keep = [keep]
    return Workspace(
        path=str(entry["path"]).strip().rstrip("/"),
        repo=str(entry.get("repo") or ""),
        branch=str(entry.get("branch") or ""),
        keep=[str(k) for k in keep],
    )


def load_manifest(repo_root: PathLike) -> Manifest:
    """Load the manifest; a missing file yields an empty manifest."""
    path = _cfg.get_manifest_file(Path(repo_root))
    if not path.exists():
        return Manifest()
    try:
        data = yaml.safe_load(path.read_text("utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ManifestError(f"failed to read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestError(f"{path}: expected a mapping at the top level")

    entries = data.get("workspaces") or []
    return Manifest(
        workspaces=[_parse_workspace(e, i) for i, e in enumerate(entries)],
        settings=dict(data.get("settings") or {}),
    )


def save_manifest(repo_root: PathLike, manifest: Manifest):
    """Write the manifest back, one blank line between workspace entries."""
    path = _cfg.get_manifest_file(Path(repo_root))
    text = yaml.safe_dump(manifest.to_dict(), sort_keys=False, default_flow_style=False)

    lines = []
    first_entry = True
    for line in text.splitlines():
        if line.startswith("- path:") or line.startswith("  - path:"):
            if not first_entry:
                lines.append("")
            first_entry = False
        lines.append(line)
    try:
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ManifestError(f"failed to write {path}: {exc}") from exc
