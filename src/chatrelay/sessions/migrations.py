"""
Persisted Store Migrations

Each migration takes the raw state dict of version ``v`` and returns a
fully populated state of version ``v + 1``. ``migrate_state`` chains them
from the stored version up to ``STORE_VERSION``.
"""

import copy
from collections.abc import Callable
from typing import Any

from loguru import logger

from ..constants import STORE_VERSION
from .models import ChatMessage, create_empty_session, now_ms


def _migrate_v1(state: dict[str, Any]) -> dict[str, Any]:
    """
    v1 -> v2: sessions gain masks and memory settings.

    Old sessions are rebuilt through the current constructor; only topic
    and message history carry over.
    """
    new_state = copy.deepcopy(state)
    new_state["global_id"] = 0
    new_state["sessions"] = []

    for old_session in state.get("sessions") or []:
        new_session = create_empty_session()
        new_session.topic = old_session.get("topic") or new_session.topic
        base_id = now_ms()
        for offset, raw_message in enumerate(old_session.get("messages") or []):
            message = ChatMessage.model_validate(raw_message)
            if "id" not in raw_message:
                message.id = base_id + offset
            new_session.messages.append(message)
        llm_config = new_session.mask.llm_config
        llm_config.send_memory = True
        llm_config.history_message_count = 4
        llm_config.compress_message_length_threshold = 1000
        new_state["sessions"].append(new_session.model_dump(mode="json"))

    new_state.setdefault("current_session_index", 0)
    return new_state


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1,
}


def migrate_state(state: dict[str, Any], version: int | None) -> dict[str, Any]:
    """Upgrade a persisted state dict from ``version`` to ``STORE_VERSION``."""
    version = max(version or 1, 1)
    if version > STORE_VERSION:
        logger.warning(f"Persisted store version {version} is newer than {STORE_VERSION}, loading as-is")
        return state

    while version < STORE_VERSION:
        migration = MIGRATIONS.get(version)
        if migration is not None:
            logger.info(f"Migrating chat store from version {version} to {version + 1}")
            state = migration(state)
        version += 1
    return state
