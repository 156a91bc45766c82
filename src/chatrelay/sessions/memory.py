"""
Conversation Memory Manager

Chooses which messages accompany a new turn (short-term window plus the
long-term memory prompt) and keeps that prompt bounded by summarizing older
turns in the background. Session state is never retained here: results are
written back through the store's ``update_session`` mutator.
"""

import asyncio
from collections.abc import Callable

from loguru import logger

from ..constants import SUMMARIZE_MIN_LEN, SUMMARIZE_MODEL
from ..llm.exceptions import ChatRequestError, SummarizationError
from ..llm.requests import ChatRequestClient, ChatStream, StreamCallbacks
from .models import ChatMessage, ChatSession, Role, count_messages, create_message
from .prompts import DEFAULT_TOPIC, SUMMARIZE_PROMPT, TOPIC_PROMPT, get_history_prompt, trim_topic

SessionMutator = Callable[[float, Callable[[ChatSession], None]], bool]


class MemoryManager:
    """Context selection and background summarization for chat sessions."""

    def __init__(self, client: ChatRequestClient, summarize_model: str = SUMMARIZE_MODEL):
        self.client = client
        self.summarize_model = summarize_model
        self._topic_tasks: dict[float, asyncio.Task] = {}
        self._summaries: dict[float, ChatStream] = {}

    def get_memory_prompt(self, session: ChatSession) -> ChatMessage:
        return create_message(
            role=Role.SYSTEM,
            content=get_history_prompt(session.memory_prompt) if session.memory_prompt else "",
            date="",
        )

    def select_context(self, session: ChatSession) -> list[ChatMessage]:
        """
        Messages to send ahead of the new user message, oldest first.

        Error replies are dropped first. The window starts at the later of
        the last ``history_message_count`` messages and ``last_summarize_index``;
        it is walked newest-first and stops once the collected text reaches
        the compression threshold.
        """
        model_config = session.mask.llm_config
        messages = [message for message in session.messages if not message.is_error]
        n = len(messages)

        context = list(session.mask.context)

        # long term memory
        if model_config.send_memory and session.memory_prompt:
            context.append(self.get_memory_prompt(session))

        # short term memory, limited to what has not been summarized yet
        short_term_index = max(0, n - model_config.history_message_count)
        oldest_index = max(short_term_index, session.last_summarize_index)
        threshold = model_config.compress_message_length_threshold

        reversed_recent: list[ChatMessage] = []
        count = 0
        i = n - 1
        while i >= oldest_index and count < threshold:
            message = messages[i]
            i -= 1
            count += len(message.content)
            reversed_recent.append(message)

        return context + list(reversed(reversed_recent))

    def maybe_summarize(self, session: ChatSession, update_session: SessionMutator) -> None:
        """Start topic and memory summarization for ``session`` when due."""
        clean_messages = [message for message in session.messages if not message.is_error]

        if session.topic == DEFAULT_TOPIC and count_messages(clean_messages) >= SUMMARIZE_MIN_LEN:
            self._start_topic_summary(session, clean_messages, update_session)

        self._start_memory_summary(session, update_session)

    def _start_topic_summary(
        self,
        session: ChatSession,
        clean_messages: list[ChatMessage],
        update_session: SessionMutator,
    ) -> None:
        pending = self._topic_tasks.get(session.id)
        if pending and not pending.done():
            return

        model_config = session.mask.llm_config
        session_id = session.id

        async def summarize_topic() -> None:
            try:
                topic = await self.client.request_with_prompt(
                    clean_messages, TOPIC_PROMPT, model_config, model=self.summarize_model
                )
            except Exception as e:
                logger.error(f"[Topic] {SummarizationError(f'topic request failed: {e}')}")
                return
            new_topic = trim_topic(topic) if topic else ""

            def apply(target: ChatSession) -> None:
                target.topic = new_topic or DEFAULT_TOPIC

            update_session(session_id, apply)
            logger.debug(f"[Topic] {session_id}: {new_topic!r}")

        task = asyncio.create_task(summarize_topic(), name=f"topic-{session_id}")
        self._topic_tasks[session_id] = task
        task.add_done_callback(lambda _: self._topic_tasks.pop(session_id, None))

    def _start_memory_summary(self, session: ChatSession, update_session: SessionMutator) -> None:
        model_config = session.mask.llm_config
        to_be_summarized = [
            message for message in session.messages[session.last_summarize_index:] if not message.is_error
        ]
        history_length = count_messages(to_be_summarized)

        if history_length > model_config.max_tokens:
            n = len(to_be_summarized)
            to_be_summarized = to_be_summarized[max(0, n - model_config.history_message_count):]

        if session.memory_prompt:
            to_be_summarized.insert(0, self.get_memory_prompt(session))

        # snapshot before the request; messages may be appended meanwhile
        last_summarize_index = len(session.messages)

        logger.debug(
            f"[Chat History] {len(to_be_summarized)} messages, {history_length} chars, "
            f"threshold {model_config.compress_message_length_threshold}"
        )

        if history_length <= model_config.compress_message_length_threshold or not model_config.send_memory:
            return

        running = self._summaries.get(session.id)
        if running and not running.settled:
            return

        session_id = session.id

        def on_message(text: str, done: bool) -> None:
            def apply(target: ChatSession) -> None:
                target.memory_prompt = text
                if done:
                    target.last_summarize_index = last_summarize_index

            update_session(session_id, apply)
            if done:
                logger.info(f"[Memory] {session_id}: summarized up to message {last_summarize_index}")
                self._summaries.pop(session_id, None)

        def on_error(error: ChatRequestError) -> None:
            logger.error(f"[Summarize] {SummarizationError(str(error))}")
            self._summaries.pop(session_id, None)

        summary_messages = to_be_summarized + [create_message(role=Role.SYSTEM, content=SUMMARIZE_PROMPT, date="")]
        self._summaries[session_id] = self.client.request_chat_stream(
            summary_messages,
            model_config,
            StreamCallbacks(on_message=on_message, on_error=on_error),
        )

    def has_pending(self) -> bool:
        return bool(self._topic_tasks) or bool(self._summaries)

    def cancel_all(self) -> None:
        for task in list(self._topic_tasks.values()):
            task.cancel()
        for stream in list(self._summaries.values()):
            stream.abort()

    async def wait_idle(self) -> None:
        """Wait for all background summarization to settle."""
        while self._topic_tasks or self._summaries:
            await asyncio.gather(
                *self._topic_tasks.values(),
                *(stream.wait() for stream in self._summaries.values()),
                return_exceptions=True,
            )
            self._topic_tasks = {key: task for key, task in self._topic_tasks.items() if not task.done()}
            self._summaries = {key: stream for key, stream in self._summaries.items() if not stream.settled}
