"""
Persistence Backends

Key-value persistence for the chat store snapshot and the application
configuration. ``DatabaseManager`` keeps everything in one SQLite file;
``InMemoryStorage`` offers the same item interface without a file.
"""

import json
from datetime import datetime
from typing import Any, Protocol

import aiosqlite
from loguru import logger


class KeyValueStorage(Protocol):
    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def clear(self) -> None: ...


class InMemoryStorage:
    """Process-local storage with the same item interface as the database."""

    def __init__(self):
        self._items: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def clear(self) -> None:
        self._items.clear()


class DatabaseManager:
    """SQLite file holding the chat store snapshot and app configs."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        if not self.db_path:
            raise ValueError("Database path cannot be empty.")
        self._initialized = False

    async def initialize(self):
        """Create the tables on first use."""
        if self._initialized:
            return

        logger.info(f"Initializing database: {self.db_path}")

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA journal_mode = WAL")
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA busy_timeout = 30000")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS app_configs (
                    config_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.commit()

        self._initialized = True
        logger.info("✅ Database initialized")

    # Key-value items

    async def get_item(self, key: str) -> str | None:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set_item(self, key: str, value: str) -> None:
        await self.initialize()
        now = datetime.now().isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, now),
            )
            await db.commit()

    async def remove_item(self, key: str) -> None:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await db.commit()

    async def clear(self) -> None:
        """Wipe every persisted item (configuration is kept)."""
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM kv_store")
            await db.commit()
        logger.warning("All persisted chat data cleared")

    # App config rows

    async def get_user_config(self, config_id: str = "default") -> dict[str, Any] | None:
        """Stored config fields plus ``config_id``/``created_at``/``updated_at``, or None."""
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT config_id, data, created_at, updated_at FROM app_configs WHERE config_id = ?",
                (config_id,),
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        try:
            fields = json.loads(row["data"])
        except json.JSONDecodeError as e:
            logger.error(f"Stored config {config_id} is not valid JSON: {e}")
            return None
        fields["config_id"] = row["config_id"]
        fields["created_at"] = row["created_at"]
        fields["updated_at"] = row["updated_at"]
        return fields

    async def save_user_config(self, config_id: str, config_data: dict[str, Any]) -> bool:
        """Insert or replace a config; the bookkeeping fields live in their own columns."""
        await self.initialize()
        metadata = ("config_id", "created_at", "updated_at")
        fields = {key: value for key, value in config_data.items() if key not in metadata}
        now = datetime.now().isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO app_configs (config_id, data, created_at, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(config_id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (config_id, json.dumps(fields), now, now),
            )
            await db.commit()

        logger.debug(f"Saved config {config_id}")
        return True
