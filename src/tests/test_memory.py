"""
Tests for context selection and background summarization.
"""

import pytest

from chatrelay.llm.exceptions import StreamError
from chatrelay.sessions.memory import MemoryManager
from chatrelay.sessions.models import ChatMessage, ChatSession, ModelConfig, Role, create_empty_mask, create_empty_session
from chatrelay.sessions.prompts import DEFAULT_TOPIC, SUMMARIZE_PROMPT, get_history_prompt


def make_session(contents, **llm_overrides) -> ChatSession:
    session = create_empty_session(create_empty_mask(ModelConfig(**llm_overrides)))
    for i, content in enumerate(contents):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        session.messages.append(ChatMessage(role=role, content=content, id=i + 1))
    return session


def make_mutator(session):
    def update_session(session_id, updater):
        if session.id != session_id:
            return False
        updater(session)
        return True

    return update_session


TEN_CHARS = [f"message-{i:02d}" for i in range(6)]


class TestSelectContext:

    def test_last_history_messages(self, fake_client):
        session = make_session(TEN_CHARS)
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert [m.content for m in context] == TEN_CHARS[2:]

    def test_stops_at_length_threshold(self, fake_client):
        session = make_session(TEN_CHARS, compress_message_length_threshold=15)
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert [m.content for m in context] == TEN_CHARS[4:]

    def test_skips_error_messages(self, fake_client):
        session = make_session(TEN_CHARS)
        session.messages[4].is_error = True
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert [m.content for m in context] == [TEN_CHARS[1], TEN_CHARS[2], TEN_CHARS[3], TEN_CHARS[5]]

    def test_trailing_errors_do_not_use_history_slots(self, fake_client):
        session = make_session(TEN_CHARS)
        session.messages[4].is_error = True
        session.messages[5].is_error = True
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert [m.content for m in context] == TEN_CHARS[:4]

    def test_respects_last_summarize_index(self, fake_client):
        session = make_session(TEN_CHARS)
        session.last_summarize_index = 4
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert [m.content for m in context] == TEN_CHARS[4:]

    def test_includes_memory_prompt(self, fake_client):
        session = make_session(TEN_CHARS)
        session.memory_prompt = "we talked about rain"
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert context[0].role == Role.SYSTEM
        assert context[0].content == get_history_prompt("we talked about rain")
        assert len(context) == 5

    def test_memory_prompt_omitted_when_disabled(self, fake_client):
        session = make_session(TEN_CHARS, send_memory=False)
        session.memory_prompt = "we talked about rain"
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert all(m.role != Role.SYSTEM for m in context)

    def test_mask_context_comes_first(self, fake_client):
        session = make_session(TEN_CHARS[:2])
        session.mask.context = [ChatMessage(role=Role.SYSTEM, content="You are a pirate.")]
        manager = MemoryManager(fake_client)

        context = manager.select_context(session)

        assert context[0].content == "You are a pirate."
        assert [m.content for m in context[1:]] == TEN_CHARS[:2]


class TestMemorySummary:

    @pytest.mark.asyncio
    async def test_summary_uses_snapshot_index(self, fake_client):
        session = make_session(["x" * 80, "y" * 80], compress_message_length_threshold=100)
        session.topic = "Already named"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))

        assert len(fake_client.streams) == 1
        stream = fake_client.streams[0]
        assert stream.messages[-1].content == SUMMARIZE_PROMPT

        stream.message("rolling", done=False)
        assert session.memory_prompt == "rolling"
        assert session.last_summarize_index == 0

        # a new message arrives while the summary is streaming
        session.messages.append(ChatMessage(role=Role.USER, content="later"))
        stream.message("rolling summary", done=True)

        assert session.memory_prompt == "rolling summary"
        assert session.last_summarize_index == 2
        assert manager.has_pending() is False

    @pytest.mark.asyncio
    async def test_one_summary_at_a_time(self, fake_client):
        session = make_session(["x" * 80, "y" * 80], compress_message_length_threshold=100)
        session.topic = "Already named"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))
        manager.maybe_summarize(session, make_mutator(session))

        assert len(fake_client.streams) == 1

    @pytest.mark.asyncio
    async def test_below_threshold_does_nothing(self, fake_client):
        session = make_session(["short", "reply"])
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))

        assert fake_client.streams == []

    @pytest.mark.asyncio
    async def test_send_memory_disabled(self, fake_client):
        session = make_session(["x" * 80, "y" * 80], compress_message_length_threshold=100, send_memory=False)
        session.topic = "Already named"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))

        assert fake_client.streams == []

    @pytest.mark.asyncio
    async def test_previous_memory_is_prepended(self, fake_client):
        session = make_session(["x" * 80, "y" * 80], compress_message_length_threshold=100)
        session.topic = "Already named"
        session.memory_prompt = "older summary"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))

        sent = fake_client.streams[0].messages
        assert sent[0].content == get_history_prompt("older summary")

    @pytest.mark.asyncio
    async def test_long_history_keeps_last_messages(self, fake_client):
        contents = ["z" * 100 for _ in range(8)]
        session = make_session(contents, compress_message_length_threshold=100, max_tokens=500)
        session.topic = "Already named"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))

        sent = fake_client.streams[0].messages
        # history_message_count messages plus the summarize instruction
        assert len(sent) == 5

    @pytest.mark.asyncio
    async def test_failure_keeps_partial_summary(self, fake_client):
        session = make_session(["x" * 80, "y" * 80], compress_message_length_threshold=100)
        session.topic = "Already named"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))
        stream = fake_client.streams[0]
        stream.message("partial", done=False)
        stream.error(StreamError("boom"))

        assert session.memory_prompt == "partial"
        assert session.last_summarize_index == 0
        assert manager.has_pending() is False


class TestTopicSummary:

    @pytest.mark.asyncio
    async def test_sets_topic(self, fake_client):
        fake_client.topic = '"Weather Talk."'
        session = make_session(["What is the weather like today?", "It is sunny and warm outside."])
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))
        await manager.wait_idle()

        assert session.topic == "Weather Talk"
        assert fake_client.topic_calls[0][2] == "gpt-3.5-turbo"

    @pytest.mark.asyncio
    async def test_short_conversation_keeps_default_topic(self, fake_client):
        session = make_session(["Hi", "Hello!"])
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))
        await manager.wait_idle()

        assert fake_client.topic_calls == []
        assert session.topic == DEFAULT_TOPIC

    @pytest.mark.asyncio
    async def test_failure_keeps_topic(self, fake_client):
        fake_client.topic_error = StreamError("upstream down")
        session = make_session(["What is the weather like today?", "It is sunny and warm outside."])
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))
        await manager.wait_idle()

        assert session.topic == DEFAULT_TOPIC

    @pytest.mark.asyncio
    async def test_named_session_is_not_renamed(self, fake_client):
        session = make_session(["What is the weather like today?", "It is sunny and warm outside."])
        session.topic = "My Topic"
        manager = MemoryManager(fake_client)

        manager.maybe_summarize(session, make_mutator(session))
        await manager.wait_idle()

        assert fake_client.topic_calls == []
        assert session.topic == "My Topic"
