"""
Manager Singleton

Creates and owns the process-wide instances: database, configuration,
request client and the chat store.
"""

from datetime import datetime

from loguru import logger

from .constants import get_database_path
from .database import DatabaseManager
from .llm.requests import ChatRequestClient
from .sessions.store import ChatStore
from .tools.web import web_search
from .user_config.models import AppConfig, load_config_from_env


class ManagerSingleton:
    _database_manager: DatabaseManager | None = None
    _app_config: AppConfig | None = None
    _chat_store: ChatStore | None = None
    _initialized: bool = False

    @classmethod
    async def initialize(cls, db_path: str | None = None):
        if cls._initialized:
            return

        logger.info("Initializing ManagerSingleton...")

        db_path = db_path or get_database_path()
        logger.info(f"Using database path: {db_path}")
        cls._database_manager = DatabaseManager(db_path=db_path)
        await cls._database_manager.initialize()

        # Stored config wins over the environment once it exists
        try:
            config_data = await cls._database_manager.get_user_config("default")
            if config_data:
                cls._app_config = AppConfig(**config_data)
                logger.info("✅ Config loaded from database.")
            else:
                logger.warning("No stored config found, loading from environment.")
                cls._app_config = load_config_from_env()
                await cls._database_manager.save_user_config("default", cls._app_config.model_dump())
        except Exception as e:
            logger.error(f"Error loading config: {e}. Falling back to environment.")
            cls._app_config = load_config_from_env()

        cls._chat_store = cls._build_store(cls._app_config)
        await cls._chat_store.load()

        cls._initialized = True
        logger.info("✅ ManagerSingleton initialized successfully.")

    @classmethod
    def _build_store(cls, config: AppConfig) -> ChatStore:
        client = ChatRequestClient(config)

        async def search(query: str):
            return await web_search(query, client.config)

        return ChatStore(client=client, storage=cls._database_manager, config=config, search=search)

    @classmethod
    async def get_app_config(cls) -> AppConfig:
        if not cls._app_config:
            await cls.initialize()
        return cls._app_config

    @classmethod
    async def get_chat_store(cls) -> ChatStore:
        if not cls._chat_store:
            await cls.initialize()
        return cls._chat_store

    @classmethod
    async def update_app_config(cls, **updates) -> AppConfig:
        """Update the global config, persist it and hand it to the live store."""
        current_config = await cls.get_app_config()
        current_dict = current_config.model_dump()
        current_dict.update(updates)
        current_dict["updated_at"] = datetime.now().isoformat()

        cls._app_config = AppConfig(**current_dict)
        await cls._database_manager.save_user_config(cls._app_config.config_id or "default", cls._app_config.model_dump())

        if cls._chat_store:
            cls._chat_store.config = cls._app_config
            cls._chat_store.client.config = cls._app_config
            cls._chat_store.memory.summarize_model = cls._app_config.summarize_model
            logger.info("Updated config and applied it to the chat store")

        return cls._app_config

    @classmethod
    async def close_all(cls):
        """Close all singleton instances."""
        if cls._chat_store:
            await cls._chat_store.aclose()
            cls._chat_store = None
            logger.info("✅ ChatStore closed")

        cls._database_manager = None
        cls._app_config = None
        cls._initialized = False
        logger.info("✅ All singleton instances closed")
