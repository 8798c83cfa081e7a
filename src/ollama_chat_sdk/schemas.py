import re
from datetime import datetime
from typing import Any, Literal, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import NotRequired

# Ollama reports nanosecond timestamps; datetime holds microseconds.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def trim_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        return _FRACTION_RE.sub(r"\1", value, count=1)
    return value


class ChatMessage(TypedDict):
    """Chat message payload, as sent to and streamed from `/api/chat`.

    Attributes:
        role: Message author role.
        content: Message text content.
        images: Base64 encoded image payloads attached to a user message.
    """

    role: Literal["user", "assistant"]
    content: str
    images: NotRequired[list[str]]


class WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ModelSummary(WireModel):
    """A model installed on the server, as listed by `/api/tags`."""

    name: str
    modified_at: datetime
    size: int  # bytes

    @field_validator("modified_at", mode="before")
    @classmethod
    def trim_modified_at(cls, value: Any) -> Any:
        return trim_timestamp(value)


class ModelDetails(WireModel):
    parent_model: str | None = None
    format: str | None = None
    family: str | None = None
    families: list[str] | None = None
    parameter_size: str | None = None
    quantization_level: str | None = None


class ModelDetail(WireModel):
    """Metadata returned by `/api/show` for a single model."""

    license: str = ""
    modelfile: str = ""
    parameters: str = ""
    template: str = ""
    details: ModelDetails = Field(default_factory=ModelDetails)


class PullProgressEvent(WireModel):
    """One progress record of a `/api/pull` stream."""

    status: str = ""
    digest: str | None = None
    total: int | None = None
    completed: int | None = None
    error: str | None = None

    @model_validator(mode="after")
    def check_byte_counts(self) -> "PullProgressEvent":
        if self.total is not None and self.completed is not None:
            if not 0 <= self.completed <= self.total:
                raise ValueError(f"completed={self.completed} is outside 0..total={self.total}")
        return self

    @property
    def ratio(self) -> float | None:
        """Fraction downloaded, or None when progress is indeterminate."""
        if self.total is None or self.completed is None or self.total <= 0:
            return None
        return self.completed / self.total


class ChatDelta(WireModel):
    role: Literal["assistant"] = "assistant"
    content: str = ""


class StreamChatEvent(WireModel):
    """One record of a `/api/chat` stream; `message.content` is a delta to append."""

    model: str = ""
    created_at: datetime | None = None
    message: ChatDelta = Field(default_factory=ChatDelta)
    done: bool = False
    error: str | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def trim_created_at(cls, value: Any) -> Any:
        return trim_timestamp(value)
