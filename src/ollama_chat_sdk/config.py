"""SDK-level configuration loaded from environment and overridable at runtime."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ollama_chat_sdk.logger import logger

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_PORT = 11434
DEFAULT_CLEAR_DELAY = 5.0
DEFAULT_STATE_PATH = Path.home() / ".config" / "ollama-chat-sdk" / "state.json"


def normalize_base_url(url: str) -> str:
    """Strip surrounding whitespace and any trailing slashes from a base URL."""
    return url.strip().rstrip("/")


def base_url_from_ollama_host(value: str) -> str:
    """Turn an `OLLAMA_HOST` style value into a full base URL.

    The Ollama CLI accepts bare hosts (`0.0.0.0`), `host:port` pairs and
    full URLs. Bind-all and empty hosts are rewritten to `localhost` so the
    result is something a client can connect to. Without an explicit port,
    https URLs use 443 and everything else the Ollama default.
    """
    value = value.strip()
    if "://" not in value:
        value = f"http://{value}"

    parts = urlsplit(value)
    host = parts.hostname or "localhost"
    if host in ("0.0.0.0", "::"):
        host = "localhost"
    if ":" in host:
        host = f"[{host}]"

    port = parts.port or (443 if parts.scheme == "https" else DEFAULT_PORT)
    path = parts.path.rstrip("/")
    return f"{parts.scheme}://{host}:{port}{path}"


def default_base_url() -> str:
    """Compute the default server address from `OLLAMA_HOST` or the local default."""
    if (from_env := os.environ.get("OLLAMA_HOST")) is not None and from_env.strip():
        try:
            return base_url_from_ollama_host(from_env)
        except ValueError:
            logger.warning(f"Ignoring unparseable OLLAMA_HOST value: {from_env!r}")

    return DEFAULT_BASE_URL


class BaseOllamaSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="OLLAMA_CHAT_", extra="ignore")


class ConnectionSettings(BaseOllamaSettings):
    base_url: str = Field(default_factory=default_base_url)
    timeout: float | None = None

    @field_validator("base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, url: str) -> str:
        url = normalize_base_url(url)
        if not url.startswith(("http://", "https://")):
            logger.warning(f"Base URL has no http(s) scheme: {url}")
        return url


class StorageSettings(BaseOllamaSettings):
    state_path: Path = DEFAULT_STATE_PATH


class ProgressSettings(BaseOllamaSettings):
    clear_delay: float = Field(default=DEFAULT_CLEAR_DELAY, ge=0)


class SDKSettings(BaseModel):
    """Global SDK settings for the server address, local state and progress display."""

    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)

    def get_locked(self) -> FrozenSDKSettings:
        payload = self.model_dump()
        return FrozenSDKSettings.model_validate(payload)


class FrozenSDKSettings(SDKSettings):
    model_config = ConfigDict(frozen=True)


settings = SDKSettings()


def get_sdk_config() -> FrozenSDKSettings:
    """Return an immutable snapshot of current global SDK settings."""
    return settings.get_locked()
