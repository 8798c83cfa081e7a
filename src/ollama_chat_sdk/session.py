"""Conversation state for streaming chat turns."""

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from enum import Enum

from ollama_chat_sdk.errors import OllamaConnectionError, OllamaError, OperationInProgressError
from ollama_chat_sdk.logger import logger
from ollama_chat_sdk.main import AsyncOllamaClient, build_turn
from ollama_chat_sdk.schemas import ChatMessage

NO_MODEL_MESSAGE = "Error: Please select a model from the sidebar first."
CONNECTIVITY_MESSAGE = (
    "Could not connect to Ollama. Please verify the host is running and reachable, "
    "and that CORS is configured correctly."
)


class ChatState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_DELTA = "awaiting_first_delta"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"


def describe_chat_error(exc: BaseException) -> str:
    """Return the user-facing text for a failed chat turn."""
    if isinstance(exc, OllamaConnectionError):
        return CONNECTIVITY_MESSAGE
    return str(exc) or "An unknown error occurred"


class ChatSession:
    """Own a conversation and stream assistant replies into it.

    The history list is never modified in place: every change swaps in a new
    list that differs from the previous one by a single appended or replaced
    message. Only the open assistant reply changes after it is added, and only
    by having text appended to it.
    """

    def __init__(self, client: AsyncOllamaClient, model: str | None = None):
        self.client = client
        self.model = model
        self._history: list[ChatMessage] = []
        self._state = ChatState.IDLE
        self._listeners: list[Callable[["ChatSession"], None]] = []

    @property
    def history(self) -> tuple[ChatMessage, ...]:
        return tuple(self._history)

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state in (ChatState.AWAITING_FIRST_DELTA, ChatState.STREAMING)

    def add_listener(self, listener: Callable[["ChatSession"], None]) -> None:
        """Register a callback invoked after every history or state change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[["ChatSession"], None]) -> None:
        self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set_state(self, state: ChatState) -> None:
        self._state = state
        self._notify()

    def _append(self, message: ChatMessage) -> None:
        self._history = [*self._history, message]
        self._notify()

    def _replace_reply(self, content: str) -> None:
        self._history = [*self._history[:-1], ChatMessage(role="assistant", content=content)]
        self._notify()

    def _append_delta(self, text: str) -> None:
        self._replace_reply(self._history[-1]["content"] + text)
        if self._state is ChatState.AWAITING_FIRST_DELTA:
            self._set_state(ChatState.STREAMING)

    def _fail(self, detail: str) -> None:
        error_text = f"Error: {detail}"
        partial = self._history[-1]["content"]
        self._replace_reply(f"{partial}\n\n{error_text}" if partial else error_text)
        self._set_state(ChatState.ERRORED)

    def clear(self) -> None:
        """Drop the whole conversation.

        Raises:
            OperationInProgressError: If a reply is still streaming.
        """
        if self.is_busy:
            raise OperationInProgressError("Cannot clear the chat while a reply is streaming.")
        self._history = []
        self._set_state(ChatState.IDLE)

    async def submit(self, text: str, images: list[str] | None = None) -> ChatMessage | None:
        """Send a user message and stream the assistant reply into the history.

        Server and connection failures are not raised: they end up as error
        text in the reply. Any other exception also closes the reply with error
        text and is then re-raised.

        Args:
            text: User prompt; surrounding whitespace is dropped.
            images: Optional base64 encoded image attachments.

        Returns:
            The final assistant message, the inline error message when no model
            is selected, or None when there was nothing to send.

        Raises:
            OperationInProgressError: If the previous reply is still streaming.
        """
        text = text.strip()
        if not text and not images:
            return None
        if self.is_busy:
            raise OperationInProgressError("A reply is still streaming; wait for it to finish.")

        if not self.model:
            message = ChatMessage(role="assistant", content=NO_MODEL_MESSAGE)
            self._append(message)
            return message

        model = self.model
        request_history = build_turn(text, self._history, images)
        self._append(request_history[-1])
        self._append(ChatMessage(role="assistant", content=""))
        self._set_state(ChatState.AWAITING_FIRST_DELTA)

        completed = False
        try:
            async with aclosing(self.client.stream_chat(model, request_history)) as events:
                async for event in events:
                    if event.message.content:
                        self._append_delta(event.message.content)
                    if event.done:
                        completed = True
                        break
        except OllamaError as exc:
            logger.warning(f"Chat with {model} failed: {exc}")
            self._fail(describe_chat_error(exc))
            return self._history[-1]
        except asyncio.CancelledError:
            self._fail("The request was cancelled.")
            raise
        except Exception as exc:
            logger.exception(f"Unexpected failure while streaming chat with {model}")
            self._fail(describe_chat_error(exc))
            raise

        if not completed:
            logger.warning(f"Chat stream for {model} closed before the final record")
        self._set_state(ChatState.COMPLETED)
        return self._history[-1]
