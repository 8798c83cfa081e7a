"""Headless application state for a chat front end.

`ChatApp` keeps everything a user interface shows: the installed models, the
selected model and its details, the connectivity error panel, the
conversation and the progress of running pulls. A front end renders these
attributes and calls the coroutines in response to user actions.
"""

import asyncio
from collections.abc import Callable

from ollama_chat_sdk.config import DEFAULT_BASE_URL, SDKSettings, get_sdk_config, normalize_base_url
from ollama_chat_sdk.errors import OllamaError, OperationInProgressError
from ollama_chat_sdk.logger import logger
from ollama_chat_sdk.main import AsyncOllamaClient
from ollama_chat_sdk.progress import PullProgressTracker
from ollama_chat_sdk.schemas import ChatMessage, ModelDetail, ModelSummary, PullProgressEvent
from ollama_chat_sdk.session import ChatSession
from ollama_chat_sdk.storage import BASE_URL_KEY, SELECTED_MODEL_KEY, LocalStore


def _stored_text(store: LocalStore, key: str) -> str:
    value = store.get(key)
    return value if isinstance(value, str) else ""


class ChatApp:
    """Application controller tying the client, chat session and pull trackers together."""

    def __init__(
        self,
        settings: SDKSettings | None = None,
        store: LocalStore | None = None,
        client_factory: Callable[[str], AsyncOllamaClient] | None = None,
    ):
        """Initialize the app from persisted state.

        The base URL comes from the store, then from the configured default,
        then from the built-in localhost address.

        Args:
            settings: SDK settings; a snapshot of the global settings by default.
            store: Where the base URL and selected model persist.
            client_factory: Builds a client for a base URL.
        """
        self.config = settings or get_sdk_config()
        self.store = store or LocalStore(self.config.storage.state_path)
        self._client_factory = client_factory or self._default_client

        self.base_url = normalize_base_url(
            _stored_text(self.store, BASE_URL_KEY) or self.config.connection.base_url or DEFAULT_BASE_URL
        )
        self.client = self._client_factory(self.base_url)

        self.models: tuple[ModelSummary, ...] = ()
        self.selected_model = _stored_text(self.store, SELECTED_MODEL_KEY)
        self.model_detail: ModelDetail | None = None
        self.connection_error: str | None = None

        self.session = ChatSession(self.client, self.selected_model or None)
        self.pulls: dict[str, PullProgressTracker] = {}

    def _default_client(self, base_url: str) -> AsyncOllamaClient:
        return AsyncOllamaClient(base_url=base_url, timeout=self.config.connection.timeout)

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return self.session.history

    @property
    def active_pulls(self) -> dict[str, PullProgressEvent]:
        """Latest visible progress event per model name; cleared trackers are dropped."""
        visible = {}
        for name, tracker in list(self.pulls.items()):
            if (event := tracker.current) is None:
                del self.pulls[name]
            else:
                visible[name] = event
        return visible

    async def refresh_models(self) -> tuple[ModelSummary, ...]:
        """Replace the model list with the server's current listing.

        On failure the list is emptied, the selection cleared and
        `connection_error` set; calling this again is the retry.
        """
        self.connection_error = None
        try:
            models = await self.client.list_models()
        except OllamaError as exc:
            logger.warning(f"Listing models at {self.base_url} failed: {exc}")
            self.connection_error = f"Failed to connect to Ollama at '{self.base_url}'."
            self.models = ()
            await self.select_model("")
            return self.models

        self.models = tuple(models)
        names = {model.name for model in self.models}
        if not self.models:
            await self.select_model("")
        elif self.selected_model not in names:
            await self.select_model(self.models[0].name)
        elif self.model_detail is None:
            await self.select_model(self.selected_model)
        return self.models

    retry_connection = refresh_models

    async def select_model(self, name: str) -> ModelDetail | None:
        """Select a model, persist the choice and fetch its details.

        A failed detail fetch leaves `model_detail` as None.
        """
        self.selected_model = name
        self.store.set(SELECTED_MODEL_KEY, name)
        self.session.model = name or None
        self.model_detail = None
        if not name:
            return None

        try:
            detail = await self.client.get_model_detail(name)
        except OllamaError as exc:
            logger.warning(f"Failed to fetch model info for {name}: {exc}")
            return None

        if self.selected_model == name:
            self.model_detail = detail
        return detail

    async def set_base_url(self, url: str) -> tuple[ModelSummary, ...]:
        """Point the app at another server, persist it and reload the model list.

        Raises:
            OperationInProgressError: If a chat reply or a pull is still
                running against the current server.
        """
        if self.session.is_busy or any(tracker.is_active for tracker in self.pulls.values()):
            raise OperationInProgressError("Cannot change the server while a request is running.")

        url = normalize_base_url(url)
        self.store.set(BASE_URL_KEY, url)
        if url != self.base_url:
            previous = self.client
            self.base_url = url
            self.client = self._client_factory(url)
            self.session.client = self.client
            await previous.aclose()
        return await self.refresh_models()

    async def send_message(self, text: str, images: list[str] | None = None) -> ChatMessage | None:
        return await self.session.submit(text, images)

    def clear_chat(self) -> None:
        self.session.clear()

    async def pull_model(self, name: str) -> PullProgressTracker | None:
        """Pull a model, tracking its progress under its name.

        Returns:
            The finished tracker, or None for an empty name.

        Raises:
            OperationInProgressError: If a pull of the same model is running.
        """
        name = name.strip()
        if not name:
            return None

        if (running := self.pulls.get(name)) is not None and running.is_active:
            raise OperationInProgressError(f"A pull of {name} is already in progress.")

        tracker = PullProgressTracker(clear_delay=self.config.progress.clear_delay)
        self.pulls[name] = tracker
        tracker.begin(name)
        try:
            async for event in self.client.pull_model(name):
                tracker.update(event)
        except OllamaError as exc:
            logger.warning(f"Pull of {name} failed: {exc}")
            tracker.fail(str(exc))
        except asyncio.CancelledError:
            tracker.fail("cancelled")
            raise
        else:
            if tracker.current is not None and not tracker.current.error:
                await self.refresh_models()
        finally:
            tracker.finish()
        return tracker

    async def start(self) -> tuple[ModelSummary, ...]:
        return await self.refresh_models()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
