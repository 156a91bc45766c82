"""
Completion Request Layer

Controller registry, SSE stream decoder and the request orchestrator for
OpenAI-compatible endpoints.
"""

from .controller import ControllerRegistry
from .exceptions import (
    AbortedError,
    ChatRequestError,
    RequestTimeoutError,
    StreamError,
    StreamParseError,
    SummarizationError,
    UnauthorizedError,
)
from .requests import ChatRequestClient, ChatStream, StreamCallbacks
from .stream_decoder import StreamDecoder, StreamEvent

__all__ = [
    "AbortedError",
    "ChatRequestClient",
    "ChatRequestError",
    "ChatStream",
    "ControllerRegistry",
    "RequestTimeoutError",
    "StreamCallbacks",
    "StreamDecoder",
    "StreamError",
    "StreamEvent",
    "StreamParseError",
    "SummarizationError",
    "UnauthorizedError",
]
