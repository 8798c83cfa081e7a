"""Progress state of a model pull."""

import time
from collections.abc import Callable

from ollama_chat_sdk.config import DEFAULT_CLEAR_DELAY
from ollama_chat_sdk.schemas import PullProgressEvent


class PullProgressTracker:
    """Hold the latest progress event of a pull.

    Once the pull is finished the last event stays visible for `clear_delay`
    seconds and then reads as `None`. Expiry is checked against `clock` on
    access, so no timer or event loop is needed.
    """

    def __init__(self, clear_delay: float = DEFAULT_CLEAR_DELAY, clock: Callable[[], float] = time.monotonic):
        self.clear_delay = clear_delay
        self._clock = clock
        self._event: PullProgressEvent | None = None
        self._finished_at: float | None = None

    @property
    def current(self) -> PullProgressEvent | None:
        if self._finished_at is not None and self._clock() - self._finished_at >= self.clear_delay:
            self.clear()
        return self._event

    @property
    def ratio(self) -> float | None:
        """Fraction downloaded, or None while indeterminate or cleared."""
        if (event := self.current) is None:
            return None
        return event.ratio

    @property
    def is_active(self) -> bool:
        """True between `begin`/`update` and `finish`."""
        return self._event is not None and self._finished_at is None

    def begin(self, name: str) -> None:
        self.update(PullProgressEvent(status=f"Initializing pull for {name}..."))

    def update(self, event: PullProgressEvent) -> None:
        self._event = event
        self._finished_at = None

    def fail(self, message: str) -> None:
        self.update(PullProgressEvent(status=f"Error pulling model: {message}", error=message))

    def finish(self) -> None:
        """Mark the pull as concluded and start the clear countdown."""
        self._finished_at = self._clock()

    def clear(self) -> None:
        self._event = None
        self._finished_at = None
