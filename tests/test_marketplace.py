"""Tests for marketplace manifests and the known-marketplaces index."""

import json

import pytest

from claude_plugins.config import DEFAULT_MARKETPLACE
from claude_plugins.models import Plugin


def _plugin(name, description=""):
    return Plugin(
        name=name,
        source={"source": "directory", "path": f"/plugins/{name}"},
        description=description,
    )


class TestEnsureDefaultMarketplace:

    @pytest.mark.asyncio
    async def test_bootstraps_template_and_index(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace()

        assert location == paths.marketplaces_dir / DEFAULT_MARKETPLACE
        manifest = json.loads(paths.manifest_path(location).read_text())
        assert manifest["name"] == DEFAULT_MARKETPLACE
        assert manifest["plugins"] == []

        known = json.loads(paths.known_marketplaces_file.read_text())
        entry = known[DEFAULT_MARKETPLACE]
        assert entry["source"] == {"source": "directory", "path": str(location)}
        assert entry["installLocation"] == str(location)
        assert entry["lastUpdated"].endswith("Z")

    @pytest.mark.asyncio
    async def test_existing_marketplace_untouched(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace("mine")
        await marketplaces.add_plugin_to_marketplace("mine", _plugin("a"))

        again = await marketplaces.ensure_default_marketplace("mine")

        assert again == location
        manifest = await marketplaces.get_marketplace_manifest("mine")
        assert [p.name for p in manifest.plugins] == ["a"]

    @pytest.mark.asyncio
    async def test_index_failure_removes_template(self, marketplaces, paths, monkeypatch):
        async def broken(name, entry):
            raise OSError("read-only")

        monkeypatch.setattr(marketplaces, "_put_index_entry", broken)

        with pytest.raises(OSError):
            await marketplaces.ensure_default_marketplace()

        assert not (paths.marketplaces_dir / DEFAULT_MARKETPLACE).exists()


class TestIndex:

    @pytest.mark.asyncio
    async def test_register_overwrites(self, marketplaces, tmp_path):
        assert await marketplaces.register_marketplace("acme", tmp_path / "one", "https://a.test/1.git")
        await marketplaces.register_marketplace("acme", tmp_path / "two", "https://a.test/2.git")

        known = await marketplaces.get_known_marketplaces()
        assert known["acme"].source.source == "git"
        assert known["acme"].source.url == "https://a.test/2.git"
        assert await marketplaces.get_install_location("acme") == tmp_path / "two"

    @pytest.mark.asyncio
    async def test_unregister(self, marketplaces, tmp_path):
        await marketplaces.register_marketplace("acme", tmp_path / "one", "https://a.test/1.git")

        assert await marketplaces.unregister_marketplace("acme") is True
        assert await marketplaces.unregister_marketplace("acme") is False
        assert await marketplaces.get_install_location("acme") is None

    @pytest.mark.asyncio
    async def test_unregister_keeps_files(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace()
        await marketplaces.unregister_marketplace(DEFAULT_MARKETPLACE)
        assert paths.manifest_path(location).exists()

    @pytest.mark.asyncio
    async def test_touch(self, marketplaces, paths, tmp_path):
        await marketplaces.register_marketplace("acme", tmp_path, "https://a.test/1.git")
        data = json.loads(paths.known_marketplaces_file.read_text())
        data["acme"]["lastUpdated"] = "2000-01-01T00:00:00Z"
        paths.known_marketplaces_file.write_text(json.dumps(data))

        assert await marketplaces.touch_marketplace("acme") is True
        assert await marketplaces.touch_marketplace("missing") is False
        known = await marketplaces.get_known_marketplaces()
        assert known["acme"].last_updated != "2000-01-01T00:00:00Z"


class TestManifestEdits:

    @pytest.mark.asyncio
    async def test_unknown_marketplace_fails_closed(self, marketplaces):
        assert await marketplaces.get_marketplace_manifest("nope") is None
        assert await marketplaces.add_plugin_to_marketplace("nope", _plugin("a")) is False
        assert await marketplaces.remove_plugin_from_marketplace("nope", "a") is False

    @pytest.mark.asyncio
    async def test_add_replaces_by_name(self, marketplaces):
        await marketplaces.ensure_default_marketplace()

        assert await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, _plugin("a", "v1"))
        assert await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, _plugin("a", "v2"))

        manifest = await marketplaces.get_marketplace_manifest(DEFAULT_MARKETPLACE)
        assert len(manifest.plugins) == 1
        assert manifest.plugins[0].description == "v2"

    @pytest.mark.asyncio
    async def test_remove_absent_plugin_succeeds(self, marketplaces):
        await marketplaces.ensure_default_marketplace()
        assert await marketplaces.remove_plugin_from_marketplace(DEFAULT_MARKETPLACE, "ghost") is True

    @pytest.mark.asyncio
    async def test_missing_manifest_not_recreated(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace()
        paths.manifest_path(location).unlink()

        assert await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, _plugin("a")) is False
        assert not paths.manifest_path(location).exists()

    @pytest.mark.asyncio
    async def test_invalid_manifest_left_alone(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace()
        paths.manifest_path(location).write_text(json.dumps({"plugins": "nope"}))

        assert await marketplaces.get_marketplace_manifest(DEFAULT_MARKETPLACE) is None
        assert await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, _plugin("a")) is False
        assert json.loads(paths.manifest_path(location).read_text()) == {"plugins": "nope"}

    @pytest.mark.asyncio
    async def test_extra_manifest_keys_survive_edits(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace()
        data = json.loads(paths.manifest_path(location).read_text())
        data["$schema"] = "https://example.test/schema.json"
        paths.manifest_path(location).write_text(json.dumps(data))

        await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, _plugin("a"))

        written = json.loads(paths.manifest_path(location).read_text())
        assert written["$schema"] == "https://example.test/schema.json"

    @pytest.mark.asyncio
    async def test_sibling_entries_written_back_unchanged(self, marketplaces, paths):
        location = await marketplaces.ensure_default_marketplace()
        siblings = [
            {"name": "b", "source": {"source": "github", "repo": "o/b"}},
            {"name": "c", "source": "./plugins/c", "strict": False},
        ]
        data = json.loads(paths.manifest_path(location).read_text())
        data["plugins"] = list(siblings)
        paths.manifest_path(location).write_text(json.dumps(data))

        await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, _plugin("a"))
        written = json.loads(paths.manifest_path(location).read_text())
        assert written["plugins"][:2] == siblings
        assert written["plugins"][2]["name"] == "a"

        await marketplaces.remove_plugin_from_marketplace(DEFAULT_MARKETPLACE, "a")
        written = json.loads(paths.manifest_path(location).read_text())
        assert written["plugins"] == siblings

    @pytest.mark.asyncio
    async def test_replaced_entry_moves_to_end(self, marketplaces):
        await marketplaces.ensure_default_marketplace()
        for plugin in (_plugin("a", "old"), _plugin("b"), _plugin("a", "new")):
            await marketplaces.add_plugin_to_marketplace(DEFAULT_MARKETPLACE, plugin)

        manifest = await marketplaces.get_marketplace_manifest(DEFAULT_MARKETPLACE)
        assert [p.name for p in manifest.plugins] == ["b", "a"]
        assert manifest.find_plugin("a").description == "new"
