"""
Completion Request Orchestrator

Builds request payloads from session configuration, talks to the
OpenAI-compatible API over aiohttp and feeds decoded stream events to the
caller. Every request runs in its own task behind a ``ChatStream`` handle
which guarantees exactly one terminal callback per request.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import aiohttp
from loguru import logger

from ..constants import ACCESS_CODE_PREFIX, CHAT_COMPLETIONS_PATH, DEFAULT_IMAGE_USER, IMAGE_GENERATIONS_PATH
from ..sessions.models import ChatMessage, ImageModelConfig, ModelConfig, Role
from ..sessions.prompts import IMAGE_DONE_MESSAGE, IMAGE_PLACEHOLDER, get_image_keyword_hint
from ..user_config import AppConfig
from .exceptions import (
    AbortedError,
    ChatRequestError,
    RequestTimeoutError,
    StreamError,
    StreamParseError,
    UnauthorizedError,
)
from .stream_decoder import StreamDecoder


@dataclass
class StreamCallbacks:
    """
    Callback contract of a streaming request.

    ``on_message(text, done)`` fires for every update; the call with
    ``done=True`` and ``on_error`` are mutually exclusive terminals.
    ``on_finish`` fires right after the final ``on_message``.
    """

    on_message: Callable[..., None]
    on_error: Callable[[ChatRequestError], None]
    on_finish: Callable[..., None] | None = None


class ChatStream:
    """Cancellation handle and terminal-callback guard for one request."""

    def __init__(
        self,
        runner: Callable[["ChatStream"], Awaitable[None]],
        callbacks: StreamCallbacks,
        name: str = "chat-stream",
    ):
        self.callbacks = callbacks
        self._settled = False
        self._aborted = False
        self._task = asyncio.create_task(runner(self), name=name)
        self._task.add_done_callback(self._on_done)

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def aborted(self) -> bool:
        return self._aborted

    def emit(self, *values: Any, done: bool) -> None:
        if self._settled:
            return
        if done:
            self._settled = True
        self.callbacks.on_message(*values, done)
        if done and self.callbacks.on_finish:
            self.callbacks.on_finish(*values)

    def fail(self, error: ChatRequestError) -> None:
        if self._settled:
            return
        self._settled = True
        self.callbacks.on_error(error)

    def abort(self) -> None:
        """Cancel the underlying transfer; a no-op once the request is done."""
        if self._task.done():
            return
        self._aborted = not self._settled
        self._task.cancel()

    async def wait(self) -> None:
        """Wait until the request task has finished and a terminal callback fired."""
        await asyncio.wait({self._task})
        self._on_done(self._task)

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self.fail(AbortedError())
            return
        error = task.exception()
        if error is None:
            if not self._settled:
                self.fail(StreamError("Request finished without a final message"))
            return
        if isinstance(error, ChatRequestError):
            self.fail(error)
        else:
            logger.error(f"Unexpected error in {task.get_name()}: {error!r}")
            self.fail(StreamError(str(error)))


class ChatRequestClient:
    """Client for the completion and image endpoints of an OpenAI-compatible API."""

    def __init__(self, config: AppConfig):
        self.config = config

    def _url(self, path: str) -> str:
        return f"{self.config.openai_url.rstrip('/')}/{path}"

    def get_headers(self) -> dict[str, str]:
        """Authorization header by precedence: user key, then access code."""
        headers: dict[str, str] = {"Content-Type": "application/json"}

        def make_bearer(token: str) -> str:
            return f"Bearer {token.strip()}"

        if self.config.token:
            headers["Authorization"] = make_bearer(self.config.token)
        elif self.config.enabled_access_control() and self.config.access_code:
            headers["Authorization"] = make_bearer(ACCESS_CODE_PREFIX + self.config.access_code)
        return headers

    def make_request_param(
        self,
        messages: list[ChatMessage],
        model_config: ModelConfig,
        stream: bool = False,
        override_model: str | None = None,
    ) -> dict[str, Any]:
        send_messages = [
            {
                "role": message.role.value if isinstance(message.role, Role) else str(message.role),
                "content": message.web_content if message.web_content is not None else message.content,
            }
            for message in messages
        ]
        return {
            "messages": send_messages,
            "stream": stream,
            "model": override_model or model_config.model,
            "temperature": model_config.temperature,
            "presence_penalty": model_config.presence_penalty,
        }

    def make_image_request_param(self, prompt: str, image_config: ImageModelConfig, **options: Any) -> dict[str, Any]:
        request = {
            "prompt": prompt,
            "n": image_config.no_of_image,
            "response_format": "url",
            "user": DEFAULT_IMAGE_USER,
            "size": image_config.size,
        }
        request.update(options)
        return request

    async def _post(self, session: aiohttp.ClientSession, path: str, payload: dict[str, Any]) -> aiohttp.ClientResponse:
        """POST and wait for response headers, bounded by the request timeout."""
        try:
            return await asyncio.wait_for(
                session.post(self._url(path), json=payload, headers=self.get_headers()),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Request to {path} timed out after {self.config.request_timeout}s")
            raise RequestTimeoutError(f"Request timed out after {self.config.request_timeout}s") from e
        except aiohttp.ClientError as e:
            logger.error(f"Network error: {e}")
            raise StreamError(f"Network error: {e}") from e

    async def _check_status(self, response: aiohttp.ClientResponse) -> None:
        if response.status == 401:
            logger.error("Unauthorized")
            raise UnauthorizedError()
        if response.status >= 400:
            body = await response.text()
            logger.error(f"Stream Error {response.status}: {body[:500]}")
            raise StreamError(f"Stream Error: HTTP {response.status}", status_code=response.status)

    async def request_chat(
        self,
        messages: list[ChatMessage],
        model_config: ModelConfig,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Non-streaming completion; returns the parsed response object."""
        payload = self.make_request_param(messages, model_config, stream=False, override_model=model)
        async with aiohttp.ClientSession() as session:
            response = await self._post(session, CHAT_COMPLETIONS_PATH, payload)
            try:
                await self._check_status(response)
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    logger.error(f"[Request Chat] invalid JSON body: {e}")
                    raise StreamParseError("Response body is not valid JSON") from e
            finally:
                response.release()

    async def request_with_prompt(
        self,
        messages: list[ChatMessage],
        prompt: str,
        model_config: ModelConfig,
        model: str | None = None,
    ) -> str:
        messages = messages + [ChatMessage(role=Role.USER, content=prompt)]
        response = await self.request_chat(messages, model_config, model=model)
        choices = response.get("choices") or [{}]
        return ((choices[0] or {}).get("message") or {}).get("content") or ""

    def request_chat_stream(
        self,
        messages: list[ChatMessage],
        model_config: ModelConfig,
        callbacks: StreamCallbacks,
        override_model: str | None = None,
    ) -> ChatStream:
        """
        Start a streaming completion and return its handle immediately.

        ``callbacks.on_message(text, done)`` receives the accumulated text.
        """
        payload = self.make_request_param(messages, model_config, stream=True, override_model=override_model)
        logger.debug(f"[Request] {payload}")

        async def run(stream: ChatStream) -> None:
            decoder = StreamDecoder(
                idle_timeout=self.config.stream_idle_timeout,
                max_pending=self.config.max_pending_frame_chars,
            )
            async with aiohttp.ClientSession() as session:
                response = await self._post(session, CHAT_COMPLETIONS_PATH, payload)
                try:
                    await self._check_status(response)
                    async for event in decoder.events(response.content.readany):
                        stream.emit(event.text, done=event.done)
                except aiohttp.ClientError as e:
                    logger.error(f"Network error while streaming: {e}")
                    raise StreamError(f"Network error: {e}") from e
                finally:
                    response.release()

        return ChatStream(run, callbacks, name="chat-stream")

    def request_image(
        self,
        keyword: str,
        image_config: ImageModelConfig,
        callbacks: StreamCallbacks,
    ) -> ChatStream | None:
        """
        Generate images for ``keyword``.

        ``callbacks.on_message(content, images, image_alt, done)``. An empty
        keyword answers with a hint immediately and starts no request.
        """
        keyword = keyword.strip()
        if not keyword:
            callbacks.on_message(get_image_keyword_hint(image_config.command), None, None, True)
            return None

        payload = self.make_image_request_param(" ".join(keyword.splitlines()), image_config)

        async def run(stream: ChatStream) -> None:
            stream.emit(None, None, IMAGE_PLACEHOLDER, done=False)
            async with aiohttp.ClientSession() as session:
                response = await self._post(session, IMAGE_GENERATIONS_PATH, payload)
                try:
                    await self._check_status(response)
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise StreamParseError("Image response is not valid JSON") from e
                finally:
                    response.release()
            stream.emit(IMAGE_DONE_MESSAGE, data.get("data") or [], None, done=True)

        return ChatStream(run, callbacks, name="image-request")
