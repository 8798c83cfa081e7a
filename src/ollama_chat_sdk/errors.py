"""Exceptions raised by the Ollama chat SDK."""


class OllamaError(Exception):
    """Base class for all SDK errors."""


class OllamaConnectionError(OllamaError, ConnectionError):
    """The inference server could not be reached.

    Listing models also raises this for non-success responses, since a
    failed listing is how a misconfigured or unreachable host shows up.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OllamaRequestError(OllamaError):
    """The server answered a request with a non-success status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class OllamaNotFoundError(OllamaRequestError):
    """The server does not know the requested model."""


class OllamaStreamError(OllamaError):
    """A streaming response broke off or reported an error record."""


class OperationInProgressError(OllamaError):
    """A request for the same resource is already in flight."""
