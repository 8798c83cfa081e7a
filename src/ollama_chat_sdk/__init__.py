"""Public SDK exports for the Ollama chat client."""

from . import main
from .app import ChatApp
from .config import FrozenSDKSettings, SDKSettings, get_sdk_config, settings
from .errors import (
    OllamaConnectionError,
    OllamaError,
    OllamaNotFoundError,
    OllamaRequestError,
    OllamaStreamError,
    OperationInProgressError,
)
from .main import AsyncOllamaClient, OllamaClient
from .progress import PullProgressTracker
from .schemas import ChatMessage, ModelDetail, ModelSummary, PullProgressEvent, StreamChatEvent
from .session import ChatSession, ChatState
from .stream import NDJSONDecoder

__version__ = "0.1.0"
