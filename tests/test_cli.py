"""Tests for the claude-plugins command line."""

import json

import pytest
from typer.testing import CliRunner

import claude_plugins
from claude_plugins import app
from claude_plugins.config import DEFAULT_MARKETPLACE
from claude_plugins.installer import PluginInstaller

runner = CliRunner()


class _RegistrySession:
    """Async context manager handing out a fake registry."""

    def __init__(self, registry):
        self.registry = registry

    async def __aenter__(self):
        return self.registry

    async def __aexit__(self, *exc_info):
        return None


@pytest.fixture
def cli_env(claude_home, tmp_path, monkeypatch, fake_fetcher, fake_registry):
    """Point the CLI at isolated state and fake network collaborators."""
    home = tmp_path / "home"
    project = tmp_path / "project"
    home.mkdir()
    project.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(project)

    monkeypatch.setattr(
        claude_plugins,
        "PluginInstaller",
        lambda paths: PluginInstaller(paths, fetcher=fake_fetcher, registry=fake_registry),
    )
    monkeypatch.setattr(
        claude_plugins, "RegistryClient", lambda base_url: _RegistrySession(fake_registry)
    )
    return claude_home


def _write_settings(claude_home, enabled):
    claude_home.mkdir(parents=True, exist_ok=True)
    (claude_home / "settings.json").write_text(json.dumps({"enabledPlugins": enabled}))


def _read_settings(claude_home):
    return json.loads((claude_home / "settings.json").read_text())["enabledPlugins"]


# ============================================
# Plugins
# ============================================


class TestList:

    def test_empty(self, cli_env):
        result = runner.invoke(app, ["list"])
        assert result.exit_code == 0
        assert "No plugins installed." in result.output

    def test_grouped(self, cli_env):
        _write_settings(cli_env, {"tool@acme": True, "old@acme": False, "x@local": True})

        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "acme" in result.output
        assert "old (disabled)" in result.output
        assert "tool" in result.output


class TestInstall:

    def test_success(self, cli_env, make_plugin_repo, fake_fetcher, fake_registry):
        fake_fetcher.repos["https://git.test/tool.git"] = make_plugin_repo("tool")
        fake_registry.plugins["@acme/tool"] = "https://git.test/tool.git"

        result = runner.invoke(app, ["install", "@acme/tool"])

        assert result.exit_code == 0, result.output
        assert "Installed plugin" in result.output
        assert _read_settings(cli_env) == {f"tool@{DEFAULT_MARKETPLACE}": True}

    def test_unresolvable(self, cli_env):
        result = runner.invoke(app, ["install", "nonexistent"])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "claude-plugins.dev" in result.output

    def test_invalid_identifier(self, cli_env):
        result = runner.invoke(app, ["install", "a/b/c"])
        assert result.exit_code == 1
        assert "Invalid plugin identifier" in result.output


class TestEnable:

    def test_enable(self, cli_env):
        _write_settings(cli_env, {"tool@acme": False})

        result = runner.invoke(app, ["enable", "tool"])

        assert result.exit_code == 0
        assert "Enabled tool" in result.output
        assert _read_settings(cli_env) == {"tool@acme": True}

    def test_already_enabled_is_not_an_error(self, cli_env):
        _write_settings(cli_env, {"tool@acme": True})

        result = runner.invoke(app, ["enable", "tool"])

        assert result.exit_code == 0
        assert "already enabled" in result.output

    def test_not_installed(self, cli_env):
        result = runner.invoke(app, ["enable", "ghost"])
        assert result.exit_code == 1
        assert "not installed" in result.output


class TestDisableAndRemove:

    def test_disable_with_yes(self, cli_env):
        _write_settings(cli_env, {"tool@acme": True})

        result = runner.invoke(app, ["disable", "tool", "--yes"])

        assert result.exit_code == 0
        assert "Disabled tool" in result.output
        assert _read_settings(cli_env) == {"tool@acme": False}

    def test_disable_declined(self, cli_env):
        _write_settings(cli_env, {"tool@acme": True})

        result = runner.invoke(app, ["disable", "tool"], input="n\n")

        assert result.exit_code == 0
        assert "Operation cancelled" in result.output
        assert _read_settings(cli_env) == {"tool@acme": True}

    def test_remove(self, cli_env):
        _write_settings(cli_env, {"tool@acme": False})

        result = runner.invoke(app, ["remove", "tool", "-y"])

        assert result.exit_code == 0
        assert "Removed tool" in result.output
        assert _read_settings(cli_env) == {}

    def test_remove_unknown(self, cli_env):
        result = runner.invoke(app, ["remove", "ghost", "-y"])
        assert result.exit_code == 1


class TestFilesystemErrors:

    @pytest.mark.parametrize("args", [["list"], ["enable", "tool"], ["remove", "tool", "-y"]])
    def test_unreadable_settings_is_one_line_error(self, cli_env, args):
        (cli_env / "settings.json").mkdir(parents=True)

        result = runner.invoke(app, args)

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "Is a directory" in result.output
        assert "Traceback" not in result.output
        assert not isinstance(result.exception, OSError)


# ============================================
# Skills
# ============================================


class TestSkills:

    def test_list_empty(self, cli_env):
        result = runner.invoke(app, ["skills", "list"])
        assert result.exit_code == 0
        assert "No skills installed." in result.output

    def test_list_local(self, cli_env, tmp_path):
        skill = tmp_path / "project" / ".claude" / "skills" / "lint"
        skill.mkdir(parents=True)
        (skill / "SKILL.md").write_text("---\ndescription: Lints code\n---\n")

        result = runner.invoke(app, ["skills", "list", "--client", "claude-code"])

        assert result.exit_code == 0
        assert "lint" in result.output
        assert "Lints code" in result.output

    def test_list_unknown_client(self, cli_env):
        result = runner.invoke(app, ["skills", "list", "--client", "emacs"])
        assert result.exit_code == 1
        assert "Unknown client" in result.output

    def test_install_unknown_client(self, cli_env):
        result = runner.invoke(app, ["skills", "install", "@anthropics/skills/pdf", "--client", "emacs"])
        assert result.exit_code == 1
        assert "Unknown client" in result.output

    def test_install_not_found(self, cli_env):
        result = runner.invoke(app, ["skills", "install", "@acme/skills/ghost"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_search_non_interactive(self, cli_env, fake_registry):
        fake_registry.search_results = [
            {
                "name": "pdf",
                "namespace": "@anthropics/skills/pdf",
                "author": "anthropics",
                "stars": 5,
                "installs": 2,
                "description": "PDF tools",
            }
        ]

        result = runner.invoke(app, ["skills", "search", "pdf"])

        assert result.exit_code == 0
        assert "pdf" in result.output
        assert "Install with:" in result.output

    def test_search_no_results(self, cli_env):
        result = runner.invoke(app, ["skills", "search", "nothing"])
        assert result.exit_code == 0
        assert "No skills found" in result.output

    def test_search_query_too_short(self, cli_env):
        result = runner.invoke(app, ["skills", "search", "a"])
        assert result.exit_code == 1


# ============================================
# Marketplaces, config, version
# ============================================


class TestMarketplaceCommands:

    def test_list_empty(self, cli_env):
        result = runner.invoke(app, ["marketplace", "list"])
        assert result.exit_code == 0
        assert "No marketplaces registered." in result.output

    def test_update_unknown(self, cli_env):
        result = runner.invoke(app, ["marketplace", "update", "nope"])
        assert result.exit_code == 1
        assert "not known" in result.output


class TestConfigCommands:

    def test_show_defaults(self, cli_env):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert DEFAULT_MARKETPLACE in result.output

    def test_set_registry_url(self, cli_env):
        result = runner.invoke(app, ["config", "set-registry-url", "https://registry.test/"])

        assert result.exit_code == 0
        config = json.loads((cli_env / "plugins" / "config.json").read_text())
        assert config["registryUrl"] == "https://registry.test"

    def test_rejects_non_http_url(self, cli_env):
        result = runner.invoke(app, ["config", "set-registry-url", "ftp://registry.test"])
        assert result.exit_code == 1

    def test_set_default_marketplace(self, cli_env):
        result = runner.invoke(app, ["config", "set-default-marketplace", "team"])

        assert result.exit_code == 0
        config = json.loads((cli_env / "plugins" / "config.json").read_text())
        assert config["defaultMarketplace"] == "team"


class TestVersion:

    def test_version(self, cli_env):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Claude Plugins" in result.output
