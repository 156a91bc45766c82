"""
Chat Session Data Models

Messages, sessions and the per-session model configuration. All models are
pydantic so a whole store snapshot can be dumped to and validated from JSON.
"""

import random
import time
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .prompts import DEFAULT_TOPIC, get_bot_hello_with_command


def now_ms() -> int:
    return int(time.time() * 1000)


def locale_now() -> str:
    return datetime.now().strftime("%Y/%m/%d %H:%M:%S")


class Role(str, Enum):
    """Chat message roles understood by the completion endpoint."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """
    One message of a conversation.
    Assistant messages are mutated in place while ``streaming`` is True.
    """

    role: Role = Role.USER
    content: str = ""
    web_content: str | None = Field(
        default=None,
        description="Search-augmented prompt sent to the model instead of content",
    )
    date: str = Field(default_factory=locale_now)
    id: int = Field(default_factory=now_ms)
    images: list[dict[str, Any]] | None = None
    image_alt: str | None = None
    streaming: bool = False
    is_error: bool = False
    model: str | None = None

    model_config = ConfigDict(use_enum_values=False, validate_assignment=False)


class ChatStat(BaseModel):
    token_count: int = 0
    word_count: int = 0
    char_count: int = 0


class ModelConfig(BaseModel):
    """Model parameters and memory thresholds of a session."""

    model: str = Field(default="gpt-3.5-turbo", title="Model")
    temperature: float = Field(default=1.0, ge=0.0, le=2.0, title="Temperature")
    max_tokens: int = Field(default=2000, title="Max Tokens")
    presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0, title="Presence Penalty")
    send_memory: bool = Field(default=True, title="Send Long-Term Memory")
    history_message_count: int = Field(default=4, ge=0, title="Attached Messages Count")
    compress_message_length_threshold: int = Field(default=1000, ge=0, title="History Compression Threshold")


class ImageModelConfig(BaseModel):
    command: str = Field(default="/image", title="Image Command")
    no_of_image: int = Field(default=1, ge=1, le=10, title="Number of Images")
    size: str = Field(default="256x256", title="Image Size")


class Mask(BaseModel):
    """Reusable session template: always-include context plus model settings."""

    id: int = 0
    name: str = DEFAULT_TOPIC
    context: list[ChatMessage] = Field(default_factory=list)
    llm_config: ModelConfig = Field(default_factory=ModelConfig)
    image_model_config: ImageModelConfig = Field(default_factory=ImageModelConfig)


class ChatSession(BaseModel):
    id: float
    topic: str = DEFAULT_TOPIC
    memory_prompt: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    stat: ChatStat = Field(default_factory=ChatStat)
    last_update: int = Field(default_factory=now_ms)
    last_summarize_index: int = 0
    bot_hello: ChatMessage | None = None
    mask: Mask = Field(default_factory=Mask)


def create_message(**override: Any) -> ChatMessage:
    return ChatMessage(**override)


def create_empty_mask(llm_config: ModelConfig | None = None, image_model_config: ImageModelConfig | None = None) -> Mask:
    return Mask(
        id=now_ms(),
        llm_config=llm_config.model_copy(deep=True) if llm_config else ModelConfig(),
        image_model_config=image_model_config.model_copy(deep=True) if image_model_config else ImageModelConfig(),
    )


def create_empty_session(mask: Mask | None = None) -> ChatSession:
    mask = mask or create_empty_mask()
    return ChatSession(
        id=now_ms() + random.random(),
        mask=mask,
        bot_hello=create_message(
            role=Role.ASSISTANT,
            content=get_bot_hello_with_command(mask.image_model_config.command),
        ),
    )


def count_messages(messages: list[ChatMessage]) -> int:
    return sum(len(message.content) for message in messages)
