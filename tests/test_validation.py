"""Tests for plugin and skill structure checks."""

import json

import pytest

from claude_plugins.errors import ValidationError
from claude_plugins.validation import (
    detect_repo_type,
    extract_plugin_metadata,
    has_skill_md,
    is_valid_claude_plugin,
    validate_skill_md,
)


def _write_meta(root, filename, data):
    meta = root / ".claude-plugin"
    meta.mkdir(parents=True, exist_ok=True)
    (meta / filename).write_text(json.dumps(data) if not isinstance(data, str) else data)


class TestIsValidClaudePlugin:

    def test_missing_directory(self, tmp_path):
        result = is_valid_claude_plugin(tmp_path / "nope")
        assert not result.valid
        assert "does not exist" in result.reason

    def test_missing_metadata_dir(self, tmp_path):
        result = is_valid_claude_plugin(tmp_path)
        assert not result.valid
        assert ".claude-plugin" in result.reason

    def test_missing_metadata_file(self, tmp_path):
        (tmp_path / ".claude-plugin").mkdir()
        result = is_valid_claude_plugin(tmp_path)
        assert not result.valid
        assert "metadata file" in result.reason

    @pytest.mark.parametrize("filename", ["plugin.json", "marketplace.json"])
    def test_valid(self, tmp_path, filename):
        _write_meta(tmp_path, filename, {"name": "x"})
        assert is_valid_claude_plugin(tmp_path).valid


class TestDetectRepoType:

    @pytest.mark.asyncio
    async def test_marketplace(self, tmp_path, store):
        _write_meta(tmp_path, "marketplace.json", {"name": "m", "plugins": []})
        assert await detect_repo_type(tmp_path, store) == "marketplace"

    @pytest.mark.asyncio
    async def test_marketplace_json_without_plugins_is_plugin(self, tmp_path, store):
        _write_meta(tmp_path, "marketplace.json", {"name": "single"})
        assert await detect_repo_type(tmp_path, store) == "plugin"

    @pytest.mark.asyncio
    async def test_plugin_json(self, tmp_path, store):
        _write_meta(tmp_path, "plugin.json", {"name": "p"})
        assert await detect_repo_type(tmp_path, store) == "plugin"


class TestExtractPluginMetadata:

    @pytest.mark.asyncio
    async def test_marketplace_entry_by_name(self, tmp_path, store):
        _write_meta(
            tmp_path,
            "marketplace.json",
            {"plugins": [{"name": "first", "source": "./f"}, {"name": "tool", "source": "./t", "version": "2.0.0"}]},
        )

        plugin = await extract_plugin_metadata(tmp_path, "tool", store)

        assert plugin.name == "tool"
        assert plugin.version == "2.0.0"
        assert plugin.source.source == "directory"
        assert plugin.source.path == str(tmp_path)

    @pytest.mark.asyncio
    async def test_marketplace_falls_back_to_first(self, tmp_path, store):
        _write_meta(tmp_path, "marketplace.json", {"plugins": [{"name": "first", "source": "./f"}]})
        plugin = await extract_plugin_metadata(tmp_path, "other", store)
        assert plugin.name == "first"

    @pytest.mark.asyncio
    async def test_plugin_json(self, tmp_path, store):
        _write_meta(
            tmp_path,
            "plugin.json",
            {"name": "tool", "description": "Does things", "author": "Jane", "keywords": ["a"]},
        )

        plugin = await extract_plugin_metadata(tmp_path, "tool", store)

        assert plugin.description == "Does things"
        assert plugin.author.name == "Jane"
        assert plugin.source.path == str(tmp_path)

    @pytest.mark.asyncio
    async def test_plugin_json_without_name_uses_fallback(self, tmp_path, store):
        _write_meta(tmp_path, "plugin.json", {"description": "nameless"})
        plugin = await extract_plugin_metadata(tmp_path, "fallback", store)
        assert plugin.name == "fallback"

    @pytest.mark.asyncio
    async def test_no_metadata_minimal_defaults(self, tmp_path, store):
        plugin = await extract_plugin_metadata(tmp_path, "bare", store)

        assert plugin.name == "bare"
        assert plugin.version == "1.0.0"
        assert plugin.author.name == "Unknown"
        assert "no metadata available" in plugin.description

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "filename, content",
        [
            ("plugin.json", {"name": "tool", "keywords": "not-a-list"}),
            ("plugin.json", "[1, 2, 3]"),
            ("plugin.json", "{broken"),
            ("marketplace.json", {"plugins": []}),
        ],
    )
    async def test_malformed_metadata(self, tmp_path, store, filename, content):
        _write_meta(tmp_path, filename, content)
        with pytest.raises(ValidationError):
            await extract_plugin_metadata(tmp_path, "tool", store)


class TestSkillMd:

    def test_valid(self, tmp_path):
        (tmp_path / "SKILL.md").write_text("# Skill\n")
        assert has_skill_md(tmp_path)
        assert validate_skill_md(tmp_path)

    def test_empty(self, tmp_path):
        (tmp_path / "SKILL.md").write_text("  \n")
        assert has_skill_md(tmp_path)
        assert not validate_skill_md(tmp_path)

    def test_missing(self, tmp_path):
        assert not has_skill_md(tmp_path)
        assert not validate_skill_md(tmp_path)
