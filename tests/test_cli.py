"""
Integration tests for git-workspace CLI behavior, settings and the manifest.

Tests:
  - config loading: apply_settings / merge_settings mutate module variables
  - manifest: load/save round trip, invalid files
  - archive command: once-per-day throttle across invocations
  - pull / sync / status / reset-skip end to end against throw-away git repositories
"""
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from gitfixtures import GIT_ENV, HAS_GIT, HAS_PATCH, WorkspaceFixture, git


# ── Helpers ───────────────────────────────────────────────────────────────────

REPO_ROOT = Path(__file__).parent.parent


def run_cli(*args, cwd=None, config_home=None, input_text=None):
    """Run the git-workspace CLI and return (returncode, stdout, stderr)."""
    env = {**GIT_ENV, "PYTHONPATH": str(REPO_ROOT), "PYTHONIOENCODING": "utf-8"}
    if config_home is not None:
        env["XDG_CONFIG_HOME"] = str(config_home)
    result = subprocess.run(
        [sys.executable, "-m", "git_workspace", *args],
        cwd=str(cwd or REPO_ROOT),
        capture_output=True,
        text=True,
        input=input_text,
        env=env,
    )
    return result.returncode, result.stdout, result.stderr


# ── Tests: config loading ─────────────────────────────────────────────────────

class TestSettings(unittest.TestCase):
    """Tests for load_global_config, merge_settings and apply_settings."""

    NAMES = ("PATCH_COMMAND", "UPSTREAM_REMOTE", "BACKUP_RETENTION_DAYS",
             "ARCHIVE_INTERVAL_HOURS", "RETRY_MAX", "RETRY_BASE_DELAY", "PAGER")

    def setUp(self):
        import git_workspace.config as cfg
        self.tmpdir = tempfile.TemporaryDirectory()
        self.saved = {name: getattr(cfg, name) for name in self.NAMES}

    def tearDown(self):
        import git_workspace.config as cfg
        for name, value in self.saved.items():
            setattr(cfg, name, value)
        self.tmpdir.cleanup()

    def test_apply_settings(self):
        """apply_settings overrides the module-level defaults."""
        import git_workspace.config as cfg
        cfg.apply_settings({
            "patch_command": "gpatch",
            "upstream_remote": "upstream",
            "backup_retention_days": 30,
            "archive_interval_hours": 12,
            "retry_max": 0,
        })
        self.assertEqual(cfg.PATCH_COMMAND, "gpatch")
        self.assertEqual(cfg.UPSTREAM_REMOTE, "upstream")
        self.assertEqual(cfg.BACKUP_RETENTION_DAYS, 30)
        self.assertEqual(cfg.ARCHIVE_INTERVAL_HOURS, 12.0)
        self.assertEqual(cfg.RETRY_MAX, 1)

    def test_empty_upstream_remote_means_tracking_ref(self):
        import git_workspace.config as cfg
        cfg.apply_settings({"upstream_remote": "upstream"})
        cfg.apply_settings({"upstream_remote": ""})
        self.assertIsNone(cfg.UPSTREAM_REMOTE)

    def test_unknown_keys_ignored(self):
        import git_workspace.config as cfg
        cfg.apply_settings({"colour": "blue"})
        self.assertEqual(cfg.PATCH_COMMAND, self.saved["PATCH_COMMAND"])

    def test_project_settings_win(self):
        from git_workspace.config import merge_settings
        merged = merge_settings(
            {"defaults": {"patch_command": "gpatch", "retry_max": 5}},
            {"retry_max": 2},
        )
        self.assertEqual(merged, {"patch_command": "gpatch", "retry_max": 2})

    def test_global_config_from_xdg(self):
        """load_global_config reads $XDG_CONFIG_HOME/git-workspace/config.yaml."""
        from git_workspace.config import get_global_config_dir, load_global_config
        cfg_dir = Path(self.tmpdir.name) / "git-workspace"
        cfg_dir.mkdir()
        (cfg_dir / "config.yaml").write_text("defaults:\n  retry_max: 7\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": self.tmpdir.name}):
            self.assertEqual(get_global_config_dir(), cfg_dir)
            self.assertEqual(load_global_config(), {"defaults": {"retry_max": 7}})

    def test_global_config_missing(self):
        from git_workspace.config import load_global_config
        with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": self.tmpdir.name}):
            self.assertEqual(load_global_config(), {})

    def test_global_config_must_be_mapping(self):
        from git_workspace.config import load_global_config
        cfg_dir = Path(self.tmpdir.name) / "git-workspace"
        cfg_dir.mkdir()
        (cfg_dir / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": self.tmpdir.name}):
            with self.assertRaises(ValueError):
                load_global_config()

    def test_keep_patch_path(self):
        from git_workspace.config import get_keep_patch_path
        root = Path("/repo")
        self.assertEqual(
            get_keep_patch_path(root, "apps/admin", "config/local.yml"),
            Path("/repo/.workspaces/patches/apps/admin/local.yml.patch"),
        )


# ── Tests: manifest ───────────────────────────────────────────────────────────

class TestManifest(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def _write(self, content):
        (self.root / ".git.workspaces").write_text(content, encoding="utf-8")

    def test_missing_manifest_is_empty(self):
        from git_workspace.state.manifest import load_manifest
        manifest = load_manifest(self.root)
        self.assertEqual(manifest.workspaces, [])
        self.assertEqual(manifest.settings, {})

    def test_load(self):
        from git_workspace.state.manifest import load_manifest
        self._write(
            "settings:\n"
            "  upstream_remote: origin\n"
            "workspaces:\n"
            "  - path: apps/admin/\n"
            "    repo: git@example.com:org/admin.git\n"
            "    keep:\n"
            "      - config.yml\n"
            "      - ' config.yml '\n"
            "      - ''\n"
            "  - path: apps/site\n"
            "    repo: git@example.com:org/site.git\n"
            "    keep: .env\n"
        )
        manifest = load_manifest(self.root)
        self.assertEqual(manifest.settings, {"upstream_remote": "origin"})
        admin = manifest.find("apps/admin")
        self.assertIsNotNone(admin)
        self.assertEqual(admin.keep_files(), ["config.yml"])
        self.assertEqual(manifest.find("apps/site/").keep_files(), [".env"])
        self.assertIsNone(manifest.find("apps/other"))

    def test_round_trip(self):
        from git_workspace.state.manifest import Manifest, Workspace, load_manifest, save_manifest
        manifest = Manifest(workspaces=[
            Workspace(path="apps/admin", repo="r1", branch="main", keep=["a.yml"]),
            Workspace(path="apps/site", repo="r2"),
        ])
        save_manifest(self.root, manifest)
        text = (self.root / ".git.workspaces").read_text(encoding="utf-8")
        self.assertIn("\n\n- path: apps/site", text)

        loaded = load_manifest(self.root)
        self.assertEqual(loaded.to_dict(), manifest.to_dict())

    def test_invalid_yaml(self):
        from git_workspace.exceptions import ManifestError
        from git_workspace.state.manifest import load_manifest
        self._write("workspaces: [unclosed\n")
        with self.assertRaises(ManifestError):
            load_manifest(self.root)

    def test_entry_without_path(self):
        from git_workspace.exceptions import ManifestError
        from git_workspace.state.manifest import load_manifest
        self._write("workspaces:\n  - repo: r1\n")
        with self.assertRaises(ManifestError):
            load_manifest(self.root)


# ── Tests: commands without workspaces ────────────────────────────────────────

class TestCommands(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name) / "repo"
        self.root.mkdir()
        self.config_home = Path(self.tmpdir.name) / "config"

    def tearDown(self):
        self.tmpdir.cleanup()

    def _cli(self, *args):
        return run_cli(*args, "--root", str(self.root), config_home=self.config_home)

    def test_no_command_prints_help(self):
        rc, out, err = run_cli(config_home=self.config_home)
        self.assertEqual(rc, 1)
        self.assertIn("git-workspace", out)

    def test_archive_is_throttled(self):
        """The second archive run within a day does not scan again."""
        rc, out, err = self._cli("archive")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertIn("Checking for old backups", out)
        self.assertTrue((self.root / ".workspaces" / ".last-archive-check").is_file())

        rc, out, err = self._cli("archive")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertNotIn("Checking for old backups", out)

        rc, out, err = self._cli("archive", "--force")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertIn("Checking for old backups", out)

    def test_archive_moves_old_month(self):
        old = self.root / ".workspaces" / "backup" / "modified" / "2020" / "01" / "01"
        old.mkdir(parents=True)
        (old / "a.20200101_000000.txt").write_text("a", encoding="utf-8")

        rc, out, err = self._cli("archive")

        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        archived = self.root / ".workspaces" / "backup" / "archived" / "2020-01-modified.tar.gz"
        self.assertTrue(archived.is_file())
        self.assertFalse(old.exists())

    def test_status_with_empty_manifest(self):
        rc, out, err = self._cli("status")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertIn("Workspaces : 0", out)

    def test_cleanup_rejects_zero_days(self):
        rc, out, err = self._cli("cleanup", "--days", "0")
        self.assertEqual(rc, 1)
        self.assertIn("error", err)

    def test_cleanup_uses_manifest_retention(self):
        (self.root / ".git.workspaces").write_text(
            "settings:\n  backup_retention_days: 7\nworkspaces: []\n", encoding="utf-8")
        rc, out, err = self._cli("cleanup")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertIn("older than 7 day(s)", out)

    def test_pull_unknown_workspace(self):
        (self.root / ".git.workspaces").write_text(
            "workspaces:\n  - path: apps/admin\n    repo: r1\n", encoding="utf-8")
        rc, out, err = self._cli("pull", "apps/nope", "--yes")
        self.assertEqual(rc, 1)
        self.assertIn("not found", err)

    def test_invalid_manifest_reported(self):
        (self.root / ".git.workspaces").write_text("workspaces: [unclosed\n", encoding="utf-8")
        rc, out, err = self._cli("status")
        self.assertEqual(rc, 1)
        self.assertIn("error:", err)


# ── Tests: end to end ─────────────────────────────────────────────────────────

LINES = "a: 1\nb: 2\nc: 3\nd: 4\ne: 5\nf: 6\ng: 7\n"


@unittest.skipUnless(HAS_GIT and HAS_PATCH, "git and patch required")
class TestEndToEnd(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.fx = WorkspaceFixture(Path(self.tmpdir.name), {"config.yml": LINES})
        self.config_home = Path(self.tmpdir.name) / "config"

    def tearDown(self):
        self.tmpdir.cleanup()

    def _cli(self, *args):
        return run_cli(*args, "--root", str(self.fx.root), config_home=self.config_home)

    def _manifest(self, keep):
        lines = ["workspaces:", f"  - path: {self.fx.ws_rel}", f"    repo: {self.fx.remote}"]
        if keep:
            lines.append("    keep:")
            lines += [f"      - {k}" for k in keep]
        (self.fx.root / ".git.workspaces").write_text("\n".join(lines) + "\n", encoding="utf-8")

    def test_pull_reapplies_keep_file(self):
        """pull --on-keep reapply ends on the upstream commit with local edits on top."""
        self._manifest(["config.yml"])
        remote = LINES.replace("a: 1", "a: 10")
        self.fx.commit_upstream("config.yml", remote)
        self.fx.write_local("config.yml", LINES + "h: local\n")
        self.fx.set_skip_worktree("config.yml")

        rc, out, err = self._cli("pull", "--yes", "--on-keep", "reapply")

        self.assertEqual(rc, 0, msg=f"stdout: {out}\nstderr: {err}")
        self.assertEqual(self.fx.read("config.yml"), remote + "h: local\n")
        self.assertEqual(git(self.fx.ws, "rev-parse", "HEAD"),
                         git(self.fx.ws, "rev-parse", "origin/main"))
        self.assertEqual(self.fx.skip_worktree_files(), {"config.yml"})
        self.assertEqual(len(self.fx.file_backups()), 1)

    def test_pull_skip_leaves_keep_file_alone(self):
        self._manifest(["config.yml"])
        self.fx.commit_upstream("config.yml", LINES.replace("a: 1", "a: 10"))
        self.fx.write_local("config.yml", LINES + "h: local\n")
        self.fx.set_skip_worktree("config.yml")

        rc, out, err = self._cli("pull", self.fx.ws_rel, "--yes", "--on-keep", "skip")

        self.assertIn("Skipped config.yml", out)

    def test_sync_registers_modified_files(self):
        """sync on an empty keep list adds the modified files and flags them."""
        self._manifest([])
        self.fx.write_local("config.yml", LINES + "h: local\n")

        rc, out, err = self._cli("sync")

        self.assertEqual(rc, 0, msg=f"stdout: {out}\nstderr: {err}")
        from git_workspace.state.manifest import load_manifest
        ws = load_manifest(self.fx.root).find(self.fx.ws_rel)
        self.assertEqual(ws.keep_files(), ["config.yml"])
        self.assertEqual(self.fx.skip_worktree_files(), {"config.yml"})
        self.assertEqual(len(self.fx.file_backups()), 1)
        self.assertEqual(len(self.fx.patch_backups()), 1)

        rc, out, err = self._cli("status")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertIn("[S] config.yml", out)

    def test_pull_continues_past_untracked_keep_file(self):
        """An untracked keep file is reported but the pull still happens."""
        self._manifest(["config.yml", ".env.local"])
        remote = LINES.replace("a: 1", "a: 10")
        self.fx.commit_upstream("config.yml", remote)
        self.fx.write_local("config.yml", LINES + "h: local\n")
        self.fx.write_local(".env.local", "SECRET=1\n")

        rc, out, err = self._cli("pull", "--yes", "--on-keep", "reapply")

        self.assertEqual(rc, 1, msg=f"stdout: {out}\nstderr: {err}")
        self.assertIn(".env.local: not tracked by git", out)
        self.assertEqual(self.fx.read("config.yml"), remote + "h: local\n")
        self.assertEqual(git(self.fx.ws, "rev-parse", "HEAD"),
                         git(self.fx.ws, "rev-parse", "origin/main"))

    def test_reset_skip_clears_stale_flags(self):
        """reset-skip unflags files dropped from the keep list and flags keep files."""
        self.fx.commit_upstream("notes.txt", "n\n")
        git(self.fx.ws, "merge", "-q", "--ff-only", "origin/main")
        self.fx.set_skip_worktree("notes.txt")
        self._manifest(["config.yml"])

        rc, out, err = self._cli("reset-skip", self.fx.ws_rel)

        self.assertEqual(rc, 0, msg=f"stdout: {out}\nstderr: {err}")
        self.assertIn("cleared  notes.txt", out)
        self.assertEqual(self.fx.skip_worktree_files(), {"config.yml"})

    def test_reset_skip_reports_untracked_keep_file(self):
        self._manifest(["config.yml", ".env.local"])
        self.fx.write_local(".env.local", "SECRET=1\n")

        rc, out, err = self._cli("reset-skip")

        self.assertEqual(rc, 1, msg=f"stdout: {out}\nstderr: {err}")
        self.assertIn(".env.local is not tracked by git", out)
        self.assertEqual(self.fx.skip_worktree_files(), {"config.yml"})

    def test_status_reports_missing_flag(self):
        self._manifest(["config.yml"])
        rc, out, err = self._cli("status")
        self.assertEqual(rc, 0, msg=f"stderr: {err}")
        self.assertIn("[ ] config.yml", out)


if __name__ == "__main__":
    unittest.main()
