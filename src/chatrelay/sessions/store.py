"""
Chat Session Store

System of record for all conversations: the ordered session list, the
active selection and every mutation applied to them. Request pipelines and
the memory manager only change sessions through ``update_session`` /
``update_current_session``; each mutation schedules a coalesced write of
the whole snapshot to key-value storage.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from ..constants import CHAT_STORE_KEY, STORE_VERSION, UNDO_DELETE_WINDOW_S
from ..database import KeyValueStorage
from ..llm.controller import ControllerRegistry
from ..llm.exceptions import AbortedError, ChatRequestError, UnauthorizedError
from ..llm.requests import ChatRequestClient, ChatStream, StreamCallbacks
from ..user_config import AppConfig
from .memory import MemoryManager
from .migrations import migrate_state
from .models import ChatMessage, ChatSession, Mask, Role, create_empty_mask, create_empty_session, create_message, now_ms
from .prompts import ERROR_MESSAGE, UNAUTHORIZED_MESSAGE, get_system_info_prompt, get_web_search_prompt

SearchFunction = Callable[[str], Awaitable[Any]]
MessageListener = Callable[[ChatMessage], None]


class StoreState(BaseModel):
    """Persisted shape of the store."""

    sessions: list[ChatSession] = Field(default_factory=list)
    current_session_index: int = 0
    global_id: int = 0


class ChatStore:
    """Owns sessions and messages; coordinates requests, memory and persistence."""

    def __init__(
        self,
        client: ChatRequestClient,
        storage: KeyValueStorage,
        config: AppConfig | None = None,
        search: SearchFunction | None = None,
        controllers: ControllerRegistry | None = None,
        memory: MemoryManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.storage = storage
        self.config = config or client.config
        self.search = search
        self.controllers = controllers or ControllerRegistry()
        self.memory = memory or MemoryManager(client, summarize_model=self.config.summarize_model)
        self._clock = clock

        self.sessions: list[ChatSession] = [self._create_session()]
        self.current_session_index = 0
        self.global_id = 0

        self._restore_state: tuple[list[ChatSession], int] | None = None
        self._restore_deadline = 0.0
        self._dirty = False
        self._persist_task: asyncio.Task | None = None

    def _create_session(self, mask: Mask | None = None) -> ChatSession:
        if mask is None:
            mask = create_empty_mask(self.config.llm_config, self.config.image_model_config)
        return create_empty_session(mask)

    # === Persistence ===

    def to_state(self) -> StoreState:
        return StoreState(
            sessions=self.sessions,
            current_session_index=self.current_session_index,
            global_id=self.global_id,
        )

    def dump(self) -> str:
        return json.dumps({"state": self.to_state().model_dump(mode="json"), "version": STORE_VERSION})

    async def load(self) -> bool:
        """Load the persisted snapshot, migrating older versions. Returns True if one was found."""
        raw = await self.storage.get_item(CHAT_STORE_KEY)
        if not raw:
            logger.info("No persisted chat store found, starting fresh")
            return False

        try:
            envelope = json.loads(raw)
            if not isinstance(envelope, dict):
                raise TypeError(f"expected an object, got {type(envelope).__name__}")
            state = migrate_state(envelope.get("state") or {}, envelope.get("version"))
            loaded = StoreState.model_validate(state)
        except (json.JSONDecodeError, ValidationError, AttributeError, TypeError) as e:
            logger.error(f"Failed to load persisted chat store, starting fresh: {e}")
            return False

        # replies cut off by a restart can no longer finish
        for session in loaded.sessions:
            for message in session.messages:
                message.streaming = False
            session.last_summarize_index = min(session.last_summarize_index, len(session.messages))

        self.sessions = loaded.sessions or [self._create_session()]
        self.current_session_index = loaded.current_session_index
        self.global_id = loaded.global_id
        self.current_session()
        logger.info(f"Loaded {len(self.sessions)} chat session(s)")
        if envelope.get("version") != STORE_VERSION:
            self._commit()
        return True

    def _commit(self) -> None:
        self._dirty = True
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._persist_task is None or self._persist_task.done():
            self._persist_task = asyncio.create_task(self._persist_loop(), name="persist-chat-store")

    async def _persist_loop(self) -> None:
        while self._dirty:
            self._dirty = False
            try:
                await self.storage.set_item(CHAT_STORE_KEY, self.dump())
            except Exception as e:
                logger.error(f"Failed to persist chat store: {e}")
                self._dirty = True
                return

    async def flush(self) -> None:
        """Wait until the latest state has been written."""
        if self._persist_task and not self._persist_task.done():
            await self._persist_task
        if self._dirty:
            await self._persist_loop()

    # === Session list ===

    def clear_sessions(self) -> None:
        self.sessions = [self._create_session()]
        self.current_session_index = 0
        self._commit()

    def select_session(self, index: int) -> None:
        if not 0 <= index < len(self.sessions):
            raise IndexError(f"Session index {index} out of range")
        self.current_session_index = index
        self._commit()

    def move_session(self, from_index: int, to_index: int) -> None:
        """Reorder sessions; the active session stays selected."""
        count = len(self.sessions)
        if not (0 <= from_index < count and 0 <= to_index < count):
            raise IndexError(f"Cannot move session {from_index} to {to_index}")

        sessions = list(self.sessions)
        session = sessions.pop(from_index)
        sessions.insert(to_index, session)

        old_index = self.current_session_index
        new_index = to_index if old_index == from_index else old_index
        if from_index < old_index <= to_index:
            new_index -= 1
        elif to_index <= old_index < from_index:
            new_index += 1

        self.sessions = sessions
        self.current_session_index = new_index
        self._commit()

    def new_session(self, mask: Mask | None = None) -> ChatSession:
        session = self._create_session(mask.model_copy(deep=True) if mask else None)
        self.global_id += 1
        session.id = self.global_id
        if mask:
            session.topic = mask.name

        self.sessions = [session] + self.sessions
        self.current_session_index = 0
        self._commit()
        return session

    def delete_session(self, index: int) -> None:
        """
        Remove the session at ``index``.

        Deleting the only session replaces it with a new empty one. The
        previous state can be restored with ``undo_delete`` for a few seconds.
        """
        if not 0 <= index < len(self.sessions):
            raise IndexError(f"Session index {index} out of range")

        deleting_last_session = len(self.sessions) == 1
        restore_state = (list(self.sessions), self.current_session_index)

        sessions = list(self.sessions)
        deleted = sessions.pop(index)

        current_index = self.current_session_index
        next_index = min(current_index - int(index < current_index), len(sessions) - 1)

        if deleting_last_session:
            next_index = 0
            sessions.append(self._create_session())

        self.sessions = sessions
        self.current_session_index = max(0, next_index)
        self._restore_state = restore_state
        self._restore_deadline = self._clock() + UNDO_DELETE_WINDOW_S
        logger.info(f"Deleted session {deleted.id} ({deleted.topic!r})")
        self._commit()

    def can_undo_delete(self) -> bool:
        return self._restore_state is not None and self._clock() <= self._restore_deadline

    def undo_delete(self) -> bool:
        if not self.can_undo_delete():
            self._restore_state = None
            return False
        self.sessions, self.current_session_index = self._restore_state
        self._restore_state = None
        self._commit()
        return True

    def current_session(self) -> ChatSession:
        index = self.current_session_index
        if index < 0 or index >= len(self.sessions):
            index = min(len(self.sessions) - 1, max(0, index))
            self.current_session_index = index
        return self.sessions[index]

    def get_session(self, session_id: float) -> ChatSession | None:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    # === Mutators ===

    def update_current_session(self, updater: Callable[[ChatSession], None]) -> None:
        updater(self.current_session())
        self._commit()

    def update_session(self, session_id: float, updater: Callable[[ChatSession], None]) -> bool:
        """Apply ``updater`` to the session with ``session_id`` if it still exists."""
        session = self.get_session(session_id)
        if session is None:
            return False
        updater(session)
        self._commit()
        return True

    def update_message(
        self,
        session_index: int,
        message_index: int,
        updater: Callable[[ChatMessage | None], None],
    ) -> None:
        message = None
        if 0 <= session_index < len(self.sessions):
            messages = self.sessions[session_index].messages
            if -len(messages) <= message_index < len(messages):
                message = messages[message_index]
        updater(message)
        self._commit()

    def reset_session(self) -> None:
        def reset(session: ChatSession) -> None:
            session.messages = []
            session.memory_prompt = ""
            session.last_summarize_index = 0

        self.update_current_session(reset)

    def update_stat(self, session: ChatSession, message: ChatMessage) -> None:
        session.stat.char_count += len(message.content)

    def on_new_message(self, session_id: float, message: ChatMessage) -> None:
        session = self.get_session(session_id)
        if session is None:
            return
        session.last_update = now_ms()
        self.update_stat(session, message)
        self._commit()
        self.memory.maybe_summarize(session, self.update_session)

    # === Chat ===

    @staticmethod
    def _next_message_id(session: ChatSession) -> int:
        last_id = session.messages[-1].id if session.messages else 0
        return max(now_ms(), last_id + 1)

    async def on_user_input(
        self,
        content: str,
        is_web_search: bool = False,
        listener: MessageListener | None = None,
    ) -> tuple[ChatMessage, ChatStream | None]:
        """
        Append the user's message and a streaming assistant placeholder to
        the active session and start the request that fills it in.

        Returns the placeholder and the request handle (None when the reply
        was produced without a request).
        """
        session = self.current_session()
        session_index = self.current_session_index
        session_id = session.id
        model_config = session.mask.llm_config
        image_config = session.mask.image_model_config

        user_message = create_message(role=Role.USER, content=content, id=self._next_message_id(session))
        bot_message = create_message(
            role=Role.ASSISTANT,
            streaming=True,
            id=user_message.id + 1,
            model=model_config.model,
        )
        system_info = create_message(
            role=Role.SYSTEM,
            content=get_system_info_prompt(model_config.model, datetime.now().strftime("%Y/%m/%d %H:%M:%S")),
            id=bot_message.id + 1,
        )

        recent_messages = self.memory.select_context(session)
        send_messages = [system_info] + recent_messages + [user_message]

        self.update_session(session_id, lambda s: s.messages.append(user_message))

        if is_web_search:
            results = await self._web_search(content)
            user_message.web_content = get_web_search_prompt(results, content, datetime.now().isoformat())

        self.update_session(session_id, lambda s: s.messages.append(bot_message))

        def notify() -> None:
            self._commit()
            if listener:
                listener(bot_message)

        def release() -> None:
            self.controllers.remove(session_index, bot_message.id)

        def on_error(error: ChatRequestError) -> None:
            is_aborted = isinstance(error, AbortedError)
            if isinstance(error, UnauthorizedError):
                bot_message.content = UNAUTHORIZED_MESSAGE
            elif not is_aborted:
                bot_message.content += "\n\n" + ERROR_MESSAGE
            bot_message.streaming = False
            user_message.is_error = not is_aborted
            bot_message.is_error = not is_aborted
            if not is_aborted:
                logger.error(f"Reply {bot_message.id} failed: {error}")
            release()
            notify()

        command = image_config.command.lower()
        if content.strip().lower().startswith(command):
            keyword = content.strip()[len(command):]

            def on_image(
                text: str | None,
                images: list[dict[str, Any]] | None,
                image_alt: str | None,
                done: bool,
            ) -> None:
                bot_message.image_alt = image_alt
                if done:
                    bot_message.streaming = False
                    bot_message.content = text or ""
                    bot_message.images = images
                    release()
                    self.on_new_message(session_id, bot_message)
                notify()

            handle = self.client.request_image(
                keyword, image_config, StreamCallbacks(on_message=on_image, on_error=on_error)
            )
        else:

            def on_message(text: str, done: bool) -> None:
                bot_message.content = text
                if done:
                    bot_message.streaming = False
                    release()
                    self.on_new_message(session_id, bot_message)
                notify()

            logger.debug(f"[User Input] {len(send_messages)} messages for session {session_id}")
            handle = self.client.request_chat_stream(
                send_messages, model_config, StreamCallbacks(on_message=on_message, on_error=on_error)
            )

        if handle is not None and not handle.settled:
            self.controllers.add(session_index, bot_message.id, handle)
        return bot_message, handle

    async def _web_search(self, query: str) -> Any:
        if self.search is None:
            return {"error": True, "msg": "Web search is not configured"}
        try:
            return await self.search(query)
        except Exception as e:
            logger.error(f"[Web Search] {e}")
            return {"error": True, "msg": str(e)}

    # === Cancellation and teardown ===

    def stop(self, session_index: int, message_id: int) -> bool:
        return self.controllers.stop(session_index, message_id)

    def stop_all(self) -> None:
        self.controllers.stop_all()
        self.memory.cancel_all()

    async def clear_all_data(self) -> None:
        """Abort everything and wipe persisted state. Irreversible."""
        self.stop_all()
        self.controllers.clear()
        if self._persist_task and not self._persist_task.done():
            self._persist_task.cancel()
            await asyncio.wait({self._persist_task})
        self._dirty = False
        await self.storage.clear()

        self.sessions = [self._create_session()]
        self.current_session_index = 0
        self.global_id = 0
        self._restore_state = None
        logger.warning("All chat data cleared")

    async def aclose(self) -> None:
        self.stop_all()
        await self.flush()
