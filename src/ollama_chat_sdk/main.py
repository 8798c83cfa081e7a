"""Ollama chat SDK public interface for listing, pulling and chatting with models."""

from abc import ABC
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import aclosing
from typing import Any

import httpx

from ollama_chat_sdk.config import get_sdk_config
from ollama_chat_sdk.errors import OllamaConnectionError, OllamaRequestError, OllamaStreamError
from ollama_chat_sdk.logger import logger
from ollama_chat_sdk.schemas import ChatMessage, ModelDetail, ModelSummary, PullProgressEvent, StreamChatEvent
from ollama_chat_sdk.stream import aiter_ndjson, iter_ndjson
from ollama_chat_sdk.utils import ServerEndpoints, check_response, parse_record, translate_transport_errors


def build_turn(
    message: str, history: Sequence[ChatMessage] | None = None, images: list[str] | None = None
) -> list[ChatMessage]:
    """Return `history` followed by a new user message."""
    messages: list[ChatMessage] = list(history) if history else []
    user_message = ChatMessage(role="user", content=message)
    if images:
        user_message["images"] = list(images)
    messages.append(user_message)
    return messages


class OllamaClientBase(ABC):
    """Base class for Ollama server clients."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None, http_client: Any = None):
        """Initialize a client.

        The base URL and timeout default to the global SDK config, read once
        here; later changes to the config do not affect this client.

        Args:
            base_url: Server address, e.g. `http://localhost:11434`. A trailing
                slash is ignored.
            timeout: Seconds before an HTTP read gives up. `None` waits forever,
                which long generations and large pulls need.
            http_client: Preconfigured httpx client to send requests with. The
                caller keeps ownership and must close it.
        """
        sdk_config = get_sdk_config()

        self.endpoints = ServerEndpoints(base_url or sdk_config.connection.base_url)
        self.timeout = timeout if timeout is not None else sdk_config.connection.timeout

        self._http_client = http_client
        self._owns_http_client = http_client is None

    @property
    def base_url(self) -> str:
        return self.endpoints.base_url

    @staticmethod
    def _pull_payload(name: str) -> dict:
        return {"name": name, "stream": True}

    @staticmethod
    def _chat_payload(model: str, history: Sequence[ChatMessage]) -> dict:
        return {"model": model, "messages": [dict(message) for message in history], "stream": True}

    def _parse_tags(self, response: httpx.Response) -> list[ModelSummary]:
        if not response.is_success:
            raise OllamaConnectionError(
                f"Failed to fetch models from Ollama at '{self.base_url}' (HTTP {response.status_code}).",
                status_code=response.status_code,
            )

        try:
            models = response.json().get("models") or []
            return [ModelSummary.model_validate(model) for model in models]
        except (ValueError, AttributeError) as exc:
            raise OllamaConnectionError(
                f"Unexpected model listing from Ollama at '{self.base_url}': {exc}",
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _parse_detail(response: httpx.Response, name: str) -> ModelDetail:
        check_response(response, f"Fetching model info for {name}")
        try:
            return ModelDetail.model_validate(response.json())
        except ValueError as exc:
            raise OllamaRequestError(f"Unexpected model info for {name}: {exc}", response.status_code) from exc

    @staticmethod
    def _pull_event(record: Any, name: str) -> PullProgressEvent | None:
        event = parse_record(PullProgressEvent, record)
        if event is not None and event.error:
            logger.warning(f"Pull of {name} reported an error: {event.error}")
        return event

    @staticmethod
    def _chat_event(record: Any) -> StreamChatEvent | None:
        event = parse_record(StreamChatEvent, record)
        if event is not None and event.error:
            raise OllamaStreamError(event.error)
        return event


class OllamaClient(OllamaClientBase):
    """Synchronous Ollama client."""

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.timeout)
        return self._http_client

    def close(self):
        """Close the underlying HTTP client if this client created it."""
        if self._owns_http_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def is_healthy(self) -> bool:
        """Return whether the server answers on its base URL."""
        try:
            response = self.http_client.get(self.endpoints.health_url)
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            logger.debug(f"Health check against {self.base_url} failed: {exc}")
            return False
        return response.status_code == 200

    def list_models(self) -> list[ModelSummary]:
        """List the models installed on the server.

        Raises:
            OllamaConnectionError: If the server is unreachable or the listing fails.
        """
        logger.debug(f"GET {self.endpoints.tags_url}")
        with translate_transport_errors(self.base_url):
            response = self.http_client.get(self.endpoints.tags_url)
        return self._parse_tags(response)

    def get_model_detail(self, name: str) -> ModelDetail:
        """Fetch license, template, parameters and format details of a model.

        Raises:
            OllamaNotFoundError: If the server does not know the model.
            OllamaRequestError: If the server rejects the request otherwise.
            OllamaConnectionError: If the server is unreachable.
        """
        logger.debug(f"POST {self.endpoints.show_url} name={name}")
        with translate_transport_errors(self.base_url):
            response = self.http_client.post(self.endpoints.show_url, json={"name": name})
        return self._parse_detail(response, name)

    def pull_model(self, name: str) -> Iterator[PullProgressEvent]:
        """Download a model onto the server, yielding progress events in order.

        The iterator ends when the server closes the stream, or right after an
        event that carries an `error`.
        """
        logger.debug(f"POST {self.endpoints.pull_url} name={name}")
        with translate_transport_errors(self.base_url):
            with self.http_client.stream("POST", self.endpoints.pull_url, json=self._pull_payload(name)) as response:
                if not response.is_success:
                    response.read()
                    check_response(response, f"Pulling {name}")

                for record in iter_ndjson(response.iter_bytes()):
                    if (event := self._pull_event(record, name)) is None:
                        continue
                    yield event
                    if event.error:
                        return

    def stream_chat(self, model: str, history: Sequence[ChatMessage]) -> Iterator[StreamChatEvent]:
        """Stream an assistant reply to `history`, one delta event at a time.

        The iterator ends after the event with `done=True`; the rest of the
        response body is not read.

        Raises:
            OllamaStreamError: If the server reports an error mid-stream.
        """
        logger.debug(f"POST {self.endpoints.chat_url} model={model} messages={len(history)}")
        with translate_transport_errors(self.base_url):
            with self.http_client.stream(
                "POST", self.endpoints.chat_url, json=self._chat_payload(model, history)
            ) as response:
                if not response.is_success:
                    response.read()
                    check_response(response, f"Chat with {model}")

                for record in iter_ndjson(response.iter_bytes()):
                    if (event := self._chat_event(record)) is None:
                        continue
                    yield event
                    if event.done:
                        return

    def chat(
        self,
        model: str,
        message: str,
        history: list[ChatMessage] | None = None,
        images: list[str] | None = None,
    ) -> ChatMessage:
        """Send one chat turn and wait for the complete reply.

        Args:
            model: Name of an installed model.
            message: User prompt content.
            history: Optional prior conversation messages.
            images: Optional base64 encoded images for the prompt.

        Returns:
            Assistant message payload.
        """
        messages = build_turn(message, history, images)
        content = "".join(event.message.content for event in self.stream_chat(model, messages))
        return ChatMessage(role="assistant", content=content)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class AsyncOllamaClient(OllamaClientBase):
    """Asyncio-friendly Ollama client."""

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self):
        """Close the underlying HTTP client if this client created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def is_healthy(self) -> bool:
        """Return whether the server answers on its base URL."""
        try:
            response = await self.http_client.get(self.endpoints.health_url)
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            logger.debug(f"Health check against {self.base_url} failed: {exc}")
            return False
        return response.status_code == 200

    async def list_models(self) -> list[ModelSummary]:
        """List the models installed on the server.

        Raises:
            OllamaConnectionError: If the server is unreachable or the listing fails.
        """
        logger.debug(f"GET {self.endpoints.tags_url}")
        with translate_transport_errors(self.base_url):
            response = await self.http_client.get(self.endpoints.tags_url)
        return self._parse_tags(response)

    async def get_model_detail(self, name: str) -> ModelDetail:
        """Fetch license, template, parameters and format details of a model.

        Raises:
            OllamaNotFoundError: If the server does not know the model.
            OllamaRequestError: If the server rejects the request otherwise.
            OllamaConnectionError: If the server is unreachable.
        """
        logger.debug(f"POST {self.endpoints.show_url} name={name}")
        with translate_transport_errors(self.base_url):
            response = await self.http_client.post(self.endpoints.show_url, json={"name": name})
        return self._parse_detail(response, name)

    async def pull_model(self, name: str) -> AsyncIterator[PullProgressEvent]:
        """Download a model onto the server, yielding progress events in order.

        The iterator ends when the server closes the stream, or right after an
        event that carries an `error`.
        """
        logger.debug(f"POST {self.endpoints.pull_url} name={name}")
        with translate_transport_errors(self.base_url):
            async with self.http_client.stream(
                "POST", self.endpoints.pull_url, json=self._pull_payload(name)
            ) as response:
                if not response.is_success:
                    await response.aread()
                    check_response(response, f"Pulling {name}")

                async with aclosing(aiter_ndjson(response.aiter_bytes())) as records:
                    async for record in records:
                        if (event := self._pull_event(record, name)) is None:
                            continue
                        yield event
                        if event.error:
                            return

    async def stream_chat(self, model: str, history: Sequence[ChatMessage]) -> AsyncIterator[StreamChatEvent]:
        """Stream an assistant reply to `history`, one delta event at a time.

        The iterator ends after the event with `done=True`; the rest of the
        response body is not read.

        Raises:
            OllamaStreamError: If the server reports an error mid-stream.
        """
        logger.debug(f"POST {self.endpoints.chat_url} model={model} messages={len(history)}")
        with translate_transport_errors(self.base_url):
            async with self.http_client.stream(
                "POST", self.endpoints.chat_url, json=self._chat_payload(model, history)
            ) as response:
                if not response.is_success:
                    await response.aread()
                    check_response(response, f"Chat with {model}")

                async with aclosing(aiter_ndjson(response.aiter_bytes())) as records:
                    async for record in records:
                        if (event := self._chat_event(record)) is None:
                            continue
                        yield event
                        if event.done:
                            return

    async def chat(
        self,
        model: str,
        message: str,
        history: list[ChatMessage] | None = None,
        images: list[str] | None = None,
    ) -> ChatMessage:
        """Send one chat turn and wait for the complete reply.

        Args:
            model: Name of an installed model.
            message: User prompt content.
            history: Optional prior conversation messages.
            images: Optional base64 encoded images for the prompt.

        Returns:
            Assistant message payload.
        """
        messages = build_turn(message, history, images)
        parts = [event.message.content async for event in self.stream_chat(model, messages)]
        return ChatMessage(role="assistant", content="".join(parts))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
