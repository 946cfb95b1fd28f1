"""Tests for the shared settings key/value store."""

import pytest

from getsticky_server.storage.settings_store import AGENT_NAME_KEY, API_KEY_KEY, SettingsStore


@pytest.mark.asyncio
async def test_defaults(settings_store):
    assert await settings_store.get("missing") is None
    assert await settings_store.get_agent_name() == "Claude"
    assert await settings_store.get_api_key() is None
    assert await settings_store.get_all() == {}


@pytest.mark.asyncio
async def test_set_overwrites(settings_store):
    await settings_store.set(AGENT_NAME_KEY, "Sticky")
    await settings_store.set(AGENT_NAME_KEY, "Sticky Bot")

    assert await settings_store.get_agent_name() == "Sticky Bot"
    assert await settings_store.get_all() == {AGENT_NAME_KEY: "Sticky Bot"}


@pytest.mark.asyncio
async def test_delete(settings_store):
    await settings_store.set(API_KEY_KEY, "sk-ant-abcdefgh1234")
    assert await settings_store.get_api_key() == "sk-ant-abcdefgh1234"

    assert await settings_store.delete(API_KEY_KEY) is True
    assert await settings_store.delete(API_KEY_KEY) is False
    assert await settings_store.get_api_key() is None


@pytest.mark.asyncio
async def test_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "getsticky.db"
    first = SettingsStore(path, default_agent_name="Robo")
    await first.initialize()
    assert await first.get_agent_name() == "Robo"
    await first.set(AGENT_NAME_KEY, "Persisted")

    second = SettingsStore(path)
    assert await second.get_agent_name() == "Persisted"
