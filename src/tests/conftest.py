"""
Shared fixtures: a stand-in completion client that records requests and
lets tests drive the callbacks by hand.
"""

import pytest

from chatrelay.database import InMemoryStorage
from chatrelay.sessions.prompts import get_image_keyword_hint
from chatrelay.user_config import AppConfig


class FakeStream:
    """Handle returned by FakeClient; callbacks are fired by the test."""

    def __init__(self, messages, model_config, callbacks):
        self.messages = messages
        self.model_config = model_config
        self.callbacks = callbacks
        self.settled = False
        self.aborted = False

    def abort(self):
        self.aborted = True

    def message(self, *values, done=False):
        if done:
            self.settled = True
        self.callbacks.on_message(*values, done)

    def error(self, error):
        self.settled = True
        self.callbacks.on_error(error)

    async def wait(self):
        return None


class FakeClient:
    def __init__(self, config=None):
        self.config = config or AppConfig()
        self.topic = "Weather Talk"
        self.topic_error = None
        self.topic_calls = []
        self.streams = []
        self.image_requests = []

    async def request_with_prompt(self, messages, prompt, model_config, model=None):
        self.topic_calls.append((messages, prompt, model))
        if self.topic_error:
            raise self.topic_error
        return self.topic

    def request_chat_stream(self, messages, model_config, callbacks, override_model=None):
        stream = FakeStream(messages, model_config, callbacks)
        self.streams.append(stream)
        return stream

    def request_image(self, keyword, image_config, callbacks):
        if not keyword.strip():
            callbacks.on_message(get_image_keyword_hint(image_config.command), None, None, True)
            return None
        stream = FakeStream([keyword], image_config, callbacks)
        self.image_requests.append(stream)
        return stream


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def storage():
    return InMemoryStorage()
