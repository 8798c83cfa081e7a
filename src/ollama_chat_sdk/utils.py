import base64
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ollama_chat_sdk.config import normalize_base_url
from ollama_chat_sdk.errors import (
    OllamaConnectionError,
    OllamaNotFoundError,
    OllamaRequestError,
    OllamaStreamError,
)
from ollama_chat_sdk.logger import logger

WireT = TypeVar("WireT", bound=BaseModel)


@dataclass
class ServerEndpoints:
    """Endpoint URLs of an Ollama server, relative to its base URL."""

    base_url: str
    tags_path: str = "/api/tags"
    show_path: str = "/api/show"
    pull_path: str = "/api/pull"
    chat_path: str = "/api/chat"

    def __post_init__(self):
        self.base_url = normalize_base_url(self.base_url)

    def _join(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @property
    def health_url(self) -> str:
        return f"{self.base_url}/"

    @property
    def tags_url(self) -> str:
        return self._join(self.tags_path)

    @property
    def show_url(self) -> str:
        return self._join(self.show_path)

    @property
    def pull_url(self) -> str:
        return self._join(self.pull_path)

    @property
    def chat_url(self) -> str:
        return self._join(self.chat_path)


@contextmanager
def translate_transport_errors(base_url: str) -> Iterator[None]:
    """Re-raise httpx request failures as SDK errors.

    Failing to open a connection means the server is unreachable; any other
    transport failure happened on an established connection. Failures that
    are not about the connection, such as an undecodable body or a redirect
    loop, are reported as stream errors as well.
    """
    try:
        yield
    except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
        raise OllamaConnectionError(f"Could not connect to Ollama at '{base_url}': {exc}") from exc
    except httpx.TransportError as exc:
        raise OllamaStreamError(f"Connection to Ollama at '{base_url}' failed: {type(exc).__name__}: {exc}") from exc
    except (httpx.RequestError, httpx.InvalidURL) as exc:
        raise OllamaStreamError(f"Request to Ollama at '{base_url}' failed: {type(exc).__name__}: {exc}") from exc


def error_detail(response: httpx.Response) -> str:
    """Extract the server's error text from a failed response body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return response.text.strip() or response.reason_phrase


def check_response(response: httpx.Response, action: str) -> None:
    """Raise an `OllamaRequestError` for a non-success response.

    The response body must already be read.

    Raises:
        OllamaNotFoundError: If the server answered 404.
        OllamaRequestError: For any other non-success status.
    """
    if response.is_success:
        return

    message = f"{action} failed with HTTP {response.status_code}: {error_detail(response)}"
    if response.status_code == 404:
        raise OllamaNotFoundError(message, response.status_code)
    raise OllamaRequestError(message, response.status_code)


def parse_record(model: type[WireT], record: Any) -> WireT | None:
    """Validate a decoded stream record, logging and skipping invalid ones."""
    try:
        return model.model_validate(record)
    except ValidationError as exc:
        logger.warning(f"Discarding invalid {model.__name__} record: {exc.errors(include_url=False)}")
        return None


def encode_image(source: bytes | str | os.PathLike) -> str:
    """Return the base64 payload Ollama expects for an image attachment.

    Accepts raw bytes, a `data:` URL (its prefix is stripped), or a file path.
    """
    if isinstance(source, bytes):
        data = source
    elif isinstance(source, str) and source.startswith("data:"):
        return source.split(",", 1)[1]
    else:
        data = Path(source).read_bytes()
    return base64.b64encode(data).decode("ascii")


def format_bytes(size: int, decimals: int = 2) -> str:
    """Format a byte count for display, e.g. `1.5 GB`."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1

    text = f"{value:.{max(decimals, 0)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {units[unit]}"
