import pytest

from ollama_chat_sdk.config import get_sdk_config, settings


@pytest.fixture(autouse=True)
def _restore_settings():
    original = get_sdk_config()
    try:
        yield
    finally:
        settings.connection.base_url = original.connection.base_url
        settings.connection.timeout = original.connection.timeout
        settings.storage.state_path = original.storage.state_path
        settings.progress.clear_delay = original.progress.clear_delay
