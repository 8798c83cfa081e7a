"""Package logger for the Ollama chat SDK."""

import logging

logger = logging.getLogger("ollama_chat_sdk")
logger.addHandler(logging.NullHandler())
