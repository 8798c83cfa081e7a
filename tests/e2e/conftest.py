import pytest

from ollama_chat_sdk import OllamaClient, get_sdk_config

sdk_conf = get_sdk_config()


def has_ollama_server() -> bool:
    # E2E requires a server that answers, not just a configured address.
    with OllamaClient(timeout=2) as client:
        return client.is_healthy()


requires_server = pytest.mark.skipif(
    not has_ollama_server(),
    reason=f"No Ollama server reachable at {sdk_conf.connection.base_url}",
)


@pytest.fixture
def small_model():
    """A small model suitable for integration testing."""
    return "smollm:135m"
