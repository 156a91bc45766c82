"""
Tests for the SQLite persistence backend.
"""

import pytest

from chatrelay.database import DatabaseManager


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(str(tmp_path / "test.db"))


class TestDatabaseManager:

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            DatabaseManager("")

    @pytest.mark.asyncio
    async def test_items(self, db):
        assert await db.get_item("chat-next-web-store") is None

        await db.set_item("chat-next-web-store", '{"version": 2}')
        await db.set_item("chat-next-web-store", '{"version": 3}')
        assert await db.get_item("chat-next-web-store") == '{"version": 3}'

        await db.remove_item("chat-next-web-store")
        assert await db.get_item("chat-next-web-store") is None

    @pytest.mark.asyncio
    async def test_clear_keeps_config(self, db):
        await db.set_item("a", "1")
        await db.save_user_config("default", {"openai_url": "http://proxy.test/"})

        await db.clear()

        assert await db.get_item("a") is None
        assert (await db.get_user_config("default"))["openai_url"] == "http://proxy.test/"

    @pytest.mark.asyncio
    async def test_config_round_trip(self, db):
        await db.save_user_config("default", {"token": "sk-1", "config_id": "ignored", "updated_at": "x"})
        await db.save_user_config("default", {"token": "sk-2"})

        config = await db.get_user_config("default")

        assert config["token"] == "sk-2"
        assert config["config_id"] == "default"
        assert config["created_at"]
        assert config["updated_at"] != "x"

    @pytest.mark.asyncio
    async def test_missing_config(self, db):
        assert await db.get_user_config("other") is None
