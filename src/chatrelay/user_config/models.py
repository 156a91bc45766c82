"""
Application Configuration Models

Upstream endpoint, credentials and default model settings for the relay.
"""

import os
from typing import Any

from pydantic import BaseModel, Field

from ..constants import MAX_PENDING_FRAME_CHARS, REQUEST_TIMEOUT_S, STREAM_IDLE_TIMEOUT_S, SUMMARIZE_MODEL
from ..sessions.models import ImageModelConfig, ModelConfig


class AppConfig(BaseModel):
    """
    Relay configuration. Credentials follow a fixed precedence when
    building the Authorization header: user token first, then the access
    code when access control is enabled.
    """

    # === Upstream ===
    openai_url: str = Field(
        default="https://api.openai.com/",
        title="Completion API Base URL",
        description="Base URL of the OpenAI-compatible API, e.g. 'https://api.openai.com/'",
    )
    token: str = Field(default="", title="User API Key")
    access_code: str = Field(default="", title="Access Code")
    need_code: bool = Field(
        default=False,
        title="Access Control Enabled",
        description="When enabled the access code is sent if no user key is set",
    )

    # === Defaults for new sessions ===
    llm_config: ModelConfig = Field(default_factory=ModelConfig, title="Default Model Config")
    image_model_config: ImageModelConfig = Field(default_factory=ImageModelConfig, title="Default Image Config")
    summarize_model: str = Field(default=SUMMARIZE_MODEL, title="Topic Summarization Model")

    # === Timeouts and limits ===
    request_timeout: float = Field(default=REQUEST_TIMEOUT_S, gt=0, title="Request Timeout (s)")
    stream_idle_timeout: float = Field(default=STREAM_IDLE_TIMEOUT_S, gt=0, title="Stream Idle Timeout (s)")
    max_pending_frame_chars: int = Field(default=MAX_PENDING_FRAME_CHARS, gt=0, title="Max Pending Frame Size")

    # === Web Search ===
    web_search_base_url: str | None = Field(default=None, title="Search API Base URL")
    web_search_google_api_key: str | None = Field(default=None, title="Google Search API Key")
    web_search_google_search_engine_id: str | None = Field(default=None, title="Google Search Engine ID")

    # === Logging ===
    log_level: str = Field(default="INFO", title="Log Level")

    # === Timestamps ===
    config_id: str | None = Field(default=None, title="Configuration ID")
    created_at: str | None = Field(default=None, title="Created At")
    updated_at: str | None = Field(default=None, title="Updated At")

    def enabled_access_control(self) -> bool:
        return self.need_code

    def public_dump(self) -> dict[str, Any]:
        """Dump without secrets, for API responses."""
        data = self.model_dump()
        for secret in ("token", "access_code", "web_search_google_api_key"):
            data[secret] = bool(data.get(secret))
        return data


def create_app_config(config_id: str | None = None, **overrides) -> AppConfig:
    return AppConfig(config_id=config_id, **overrides)


def load_config_from_env(config_id: str | None = "default") -> AppConfig:
    """Load configuration from environment variables (fallback to defaults)."""
    overrides: dict[str, Any] = {}
    env_map = {
        "BASE_URL": "openai_url",
        "OPENAI_API_KEY": "token",
        "CODE": "access_code",
        "WEB_SEARCH_BASE_URL": "web_search_base_url",
        "WEB_SEARCH_GOOGLE_API_KEY": "web_search_google_api_key",
        "WEB_SEARCH_GOOGLE_SEARCH_ENGINE_ID": "web_search_google_search_engine_id",
        "LOG_LEVEL": "log_level",
    }
    for env_name, field_name in env_map.items():
        value = os.getenv(env_name)
        if value:
            overrides[field_name] = value
    if overrides.get("access_code"):
        overrides["need_code"] = True
    return create_app_config(config_id=config_id, **overrides)
