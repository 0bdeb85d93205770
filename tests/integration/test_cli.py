"""Integration tests for CLI commands."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from ccfg import __version__
from ccfg.cli.main import app

LISTING = """\
  ❯ claude-plugins-official
  ❯ claude-code-lsps
  ❯ anthropic-agent-skills
  ❯ beads-marketplace
"""


def fake_claude(failing: set[str] | None = None):
    """Build a subprocess.run replacement that behaves like the claude CLI."""
    failing = failing or set()
    calls: list[list[str]] = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[1:4] == ["plugin", "marketplace", "list"]:
            return MagicMock(returncode=0, stdout=LISTING, stderr="")
        if cmd[3] in failing:
            return MagicMock(returncode=1, stdout="", stderr="install failed")
        return MagicMock(returncode=0, stdout="installed", stderr="")

    run.calls = calls
    return run


@pytest.fixture
def home(temp_dir: Path) -> Path:
    """Fake home directory used as HOME for every invocation."""
    path = temp_dir / "home"
    (path / ".claude").mkdir(parents=True)
    return path


@pytest.fixture
def runner(home: Path) -> CliRunner:
    """Get a CLI test runner with HOME pointing at the fake home."""
    return CliRunner(env={"HOME": str(home)})


@pytest.fixture
def go_project(temp_project: Path) -> Path:
    (temp_project / "go.mod").write_text("module example.com/app\n")
    return temp_project


def settings(home: Path) -> dict:
    return json.loads((home / ".claude" / "settings.json").read_text())


class TestVersionCommand:
    """Tests for 'ccfg version' command."""

    def test_version_shows_version(self, runner: CliRunner):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"ccfg {__version__}" in result.output


class TestDetectCommand:
    """Tests for 'ccfg detect' command."""

    def test_detects_tags(self, runner: CliRunner, go_project: Path):
        result = runner.invoke(app, ["detect", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "golang" in result.output
        assert "go.mod" in result.output

    def test_missing_directory(self, runner: CliRunner, temp_dir: Path):
        result = runner.invoke(app, ["detect", "--project-dir", str(temp_dir / "nope")])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestPluginsCommand:
    """Tests for 'ccfg plugins' command."""

    def test_list(self, runner: CliRunner, go_project: Path):
        """--list shows the registry without touching anything."""
        result = runner.invoke(app, ["plugins", "--list", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "Available Plugins" in result.output

    def test_list_unknown_category_warns(self, runner: CliRunner, go_project: Path):
        result = runner.invoke(
            app, ["plugins", "--list", "--category", "bogus", "--project-dir", str(go_project)]
        )

        assert result.exit_code == 0
        assert "Unknown category" in result.output

    def test_unknown_category_fails(self, runner: CliRunner, go_project: Path):
        result = runner.invoke(app, ["plugins", "--category", "bogus", "--project-dir", str(go_project)])

        assert result.exit_code == 1
        assert "Unknown category" in result.output

    def test_auto_installs(self, runner: CliRunner, go_project: Path, home: Path):
        """--auto installs auto-tier plugins and enables them."""
        claude = fake_claude()

        with patch("ccfg.core.installer.subprocess.run", side_effect=claude):
            result = runner.invoke(app, ["plugins", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 0, result.output
        assert "0 failed" in result.output
        installs = [cmd[3] for cmd in claude.calls if cmd[1:3] == ["plugin", "install"]]
        assert installs
        enabled = settings(home)["enabledPlugins"]
        assert set(enabled) == set(installs)
        assert all(value is True for value in enabled.values())

    def test_auto_with_failures_still_succeeds(self, runner: CliRunner, go_project: Path, home: Path):
        """A failed install is listed in the summary; the others are enabled."""
        claude = fake_claude({"commit-commands@claude-plugins-official"})

        with patch("ccfg.core.installer.subprocess.run", side_effect=claude):
            result = runner.invoke(app, ["plugins", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "1 failed" in result.output
        assert "Failed commit-commands@claude-plugins-official" in result.output
        assert "commit-commands@claude-plugins-official" not in settings(home)["enabledPlugins"]

    def test_dry_run_writes_nothing(self, runner: CliRunner, go_project: Path, home: Path):
        """A dry run works without the claude CLI and leaves files alone."""
        with patch("ccfg.core.installer.subprocess.run", side_effect=FileNotFoundError()) as mock_run:
            result = runner.invoke(app, ["plugins", "--auto", "--dry-run", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "Dry run complete" in result.output
        assert not (home / ".claude" / "settings.json").exists()
        assert all(call.args[0][1:3] != ["plugin", "install"] for call in mock_run.call_args_list)

    def test_missing_claude_is_fatal(self, runner: CliRunner, go_project: Path, home: Path):
        with patch("ccfg.core.installer.subprocess.run", side_effect=FileNotFoundError()):
            result = runner.invoke(app, ["plugins", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 1
        assert "not installed" in result.output
        assert not (home / ".claude" / "settings.json").exists()

    def test_missing_marketplace_is_fatal(self, runner: CliRunner, go_project: Path):
        def run(cmd, **kwargs):
            return MagicMock(returncode=0, stdout="", stderr="")

        with patch("ccfg.core.installer.subprocess.run", side_effect=run):
            result = runner.invoke(app, ["plugins", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 1
        assert "marketplace add" in result.output


class TestBootstrapCommand:
    """Tests for 'ccfg bootstrap' command."""

    def test_bootstrap(self, runner: CliRunner, go_project: Path, home: Path):
        result = runner.invoke(app, ["bootstrap", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 0, result.output
        enabled = settings(home)["enabledPlugins"]
        assert enabled == {"ccfg-core@claude-config": True, "ccfg-golang@claude-config": True}
        assert "ccfg:begin:best-practices" in (home / ".claude" / "CLAUDE.md").read_text()

    def test_second_run_up_to_date(self, runner: CliRunner, go_project: Path):
        runner.invoke(app, ["bootstrap", "--auto", "--project-dir", str(go_project)])

        result = runner.invoke(app, ["bootstrap", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "Already up to date" in result.output

    def test_dry_run_with_diff(self, runner: CliRunner, go_project: Path, home: Path):
        result = runner.invoke(app, ["bootstrap", "--auto", "--dry-run", "--diff", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "Dry run complete" in result.output
        assert "ccfg-core@claude-config" in result.output
        assert not (home / ".claude" / "settings.json").exists()
        assert not (home / ".claude" / "CLAUDE.md").exists()

    def test_explicit_plugins(self, runner: CliRunner, go_project: Path, home: Path):
        result = runner.invoke(app, ["bootstrap", "--plugins", "docker,nope", "--skip-claude-md"])

        assert result.exit_code == 0
        assert "Unknown plugin: ccfg-nope" in result.output
        assert set(settings(home)["enabledPlugins"]) == {"ccfg-core@claude-config", "ccfg-docker@claude-config"}
        assert not (home / ".claude" / "CLAUDE.md").exists()

    def test_invalid_settings(self, runner: CliRunner, go_project: Path, home: Path):
        (home / ".claude" / "settings.json").write_text("{broken")

        result = runner.invoke(app, ["bootstrap", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.output

    def test_quiet_prints_summary(self, runner: CliRunner, go_project: Path):
        result = runner.invoke(app, ["bootstrap", "--auto", "--quiet", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        assert "Done." in result.output
        assert "Plugins" not in result.output


class TestProjectInitCommand:
    """Tests for 'ccfg project-init' command."""

    def test_creates_claude_md(self, runner: CliRunner, go_project: Path):
        result = runner.invoke(app, ["project-init", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 0, result.output
        text = (go_project / "CLAUDE.md").read_text()
        assert "ccfg:begin:golang" in text
        assert "## User Customizations" in text

    def test_local_settings(self, runner: CliRunner, go_project: Path):
        result = runner.invoke(app, ["project-init", "--auto", "--local", "--project-dir", str(go_project)])

        assert result.exit_code == 0
        local = json.loads((go_project / ".claude" / "settings.local.json").read_text())
        assert local == {"enabledPlugins": {"ccfg-golang@claude-config": True}}

    def test_empty_project(self, runner: CliRunner, temp_project: Path):
        result = runner.invoke(app, ["project-init", "--auto", "--project-dir", str(temp_project)])

        assert result.exit_code == 0
        assert "Nothing to do" in result.output
        assert not (temp_project / "CLAUDE.md").exists()

    def test_malformed_document(self, runner: CliRunner, go_project: Path):
        """Broken markers abort without rewriting the file."""
        broken = "<!-- ccfg:begin:golang v1 -->\nno end marker\n"
        (go_project / "CLAUDE.md").write_text(broken)

        result = runner.invoke(app, ["project-init", "--auto", "--project-dir", str(go_project)])

        assert result.exit_code == 1
        assert "Unmatched begin marker" in result.output
        assert (go_project / "CLAUDE.md").read_text() == broken


class TestRollbackCommand:
    """Tests for 'ccfg rollback' command."""

    def test_restores_settings(self, runner: CliRunner, go_project: Path, home: Path):
        original = '{"model": "opus"}\n'
        (home / ".claude" / "settings.json").write_text(original)
        runner.invoke(app, ["bootstrap", "--auto", "--skip-claude-md", "--project-dir", str(go_project)])

        result = runner.invoke(app, ["rollback", "--skip-claude-md"])

        assert result.exit_code == 0
        assert (home / ".claude" / "settings.json").read_text() == original

    def test_nothing_to_restore(self, runner: CliRunner):
        result = runner.invoke(app, ["rollback"])

        assert result.exit_code == 1
        assert "No backup" in result.output


class TestStatusCommand:
    """Tests for 'ccfg status' command."""

    def test_status_after_bootstrap(self, runner: CliRunner, go_project: Path):
        runner.invoke(app, ["bootstrap", "--auto", "--project-dir", str(go_project)])

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "best-practices" in result.output
        assert "ccfg-core@claude-config" in result.output

    def test_status_empty_home(self, runner: CliRunner):
        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "File not found" in result.output


class TestConfigOption:
    """Tests for the --config option."""

    def test_invalid_config(self, runner: CliRunner, temp_dir: Path):
        config = temp_dir / "ccfg.yaml"
        config.write_text("backup_keep: 0\n")

        result = runner.invoke(app, ["--config", str(config), "status"])

        assert result.exit_code == 1
        assert "Invalid tool config" in result.output

    def test_custom_backup_dir(self, runner: CliRunner, temp_dir: Path, go_project: Path, home: Path):
        config = temp_dir / "ccfg.yaml"
        config.write_text("backup_dir: my-backups\n")
        (home / ".claude" / "settings.json").write_text("{}\n")

        result = runner.invoke(
            app, ["--config", str(config), "bootstrap", "--auto", "--skip-claude-md", "--project-dir", str(go_project)]
        )

        assert result.exit_code == 0
        assert list((temp_dir / "my-backups").iterdir())
