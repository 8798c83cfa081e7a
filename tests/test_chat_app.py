import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from helpers import ChunkedBody, RecordingHandler

from ollama_chat_sdk.app import ChatApp
from ollama_chat_sdk.config import ConnectionSettings, ProgressSettings, SDKSettings, StorageSettings
from ollama_chat_sdk.errors import OllamaConnectionError, OllamaNotFoundError, OperationInProgressError
from ollama_chat_sdk.main import AsyncOllamaClient
from ollama_chat_sdk.schemas import ModelDetail, ModelSummary, PullProgressEvent, StreamChatEvent
from ollama_chat_sdk.storage import BASE_URL_KEY, SELECTED_MODEL_KEY, LocalStore


def summary(name: str) -> ModelSummary:
    return ModelSummary(name=name, modified_at=datetime(2024, 5, 1, tzinfo=timezone.utc), size=1024)


class FakeServer:
    """In-memory stand-in for AsyncOllamaClient."""

    def __init__(self, base_url: str):
        self.base_url = base_url
        self.models = [summary("llama3:latest"), summary("llava:7b")]
        self.reachable = True
        self.pull_events: list[PullProgressEvent] = []
        self.pull_error: Exception | None = None
        self.pull_gate: asyncio.Event | None = None
        self.detail_requests: list[str] = []
        self.chat_requests: list[str] = []
        self.closed = False

    async def list_models(self):
        if not self.reachable:
            raise OllamaConnectionError(f"Could not connect to Ollama at '{self.base_url}'")
        return list(self.models)

    async def get_model_detail(self, name):
        self.detail_requests.append(name)
        if name not in {model.name for model in self.models}:
            raise OllamaNotFoundError(f"model '{name}' not found", 404)
        return ModelDetail(license=f"license of {name}")

    async def pull_model(self, name):
        for event in self.pull_events:
            if self.pull_gate is not None:
                await self.pull_gate.wait()
            yield event
        if self.pull_error is not None:
            raise self.pull_error
        self.models.append(summary(name))

    async def stream_chat(self, model, history):
        self.chat_requests.append(model)
        yield StreamChatEvent.model_validate({"message": {"role": "assistant", "content": "Hi!"}, "done": True})

    async def aclose(self):
        self.closed = True


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "state.json")


@pytest.fixture
def app_settings(tmp_path):
    return SDKSettings(
        connection=ConnectionSettings(base_url="http://configured:11434/"),
        storage=StorageSettings(state_path=tmp_path / "state.json"),
        progress=ProgressSettings(clear_delay=5.0),
    )


@pytest.fixture
def servers():
    return {}


@pytest.fixture
def make_app(app_settings, store, servers):
    def factory(base_url):
        servers[base_url] = FakeServer(base_url)
        return servers[base_url]

    def _make_app():
        return ChatApp(settings=app_settings, store=store, client_factory=factory)

    return _make_app


class TestStartup:
    def test_base_url_falls_back_to_configured_default(self, make_app):
        app = make_app()
        assert app.base_url == "http://configured:11434"
        assert app.selected_model == ""

    def test_persisted_values_win(self, make_app, store):
        store.set(BASE_URL_KEY, "http://saved:11434")
        store.set(SELECTED_MODEL_KEY, "llava:7b")
        app = make_app()
        assert app.base_url == "http://saved:11434"
        assert app.selected_model == "llava:7b"
        assert app.session.model == "llava:7b"

    def test_default_state_path_comes_from_settings(self, app_settings, tmp_path):
        app = ChatApp(settings=app_settings, client_factory=FakeServer)
        assert app.store.path == tmp_path / "state.json"


class TestRefreshModels:
    @pytest.mark.asyncio
    async def test_selects_first_model_and_fetches_detail(self, make_app, store, servers):
        app = make_app()
        await app.refresh_models()

        assert [model.name for model in app.models] == ["llama3:latest", "llava:7b"]
        assert app.selected_model == "llama3:latest"
        assert app.model_detail.license == "license of llama3:latest"
        assert app.connection_error is None
        assert store.get(SELECTED_MODEL_KEY) == "llama3:latest"

    @pytest.mark.asyncio
    async def test_keeps_listed_selection(self, make_app, store, servers):
        store.set(SELECTED_MODEL_KEY, "llava:7b")
        app = make_app()
        await app.refresh_models()
        assert app.selected_model == "llava:7b"
        assert app.model_detail.license == "license of llava:7b"

        await app.refresh_models()
        assert servers[app.base_url].detail_requests == ["llava:7b"]

    @pytest.mark.asyncio
    async def test_empty_listing_clears_selection(self, make_app, servers):
        app = make_app()
        await app.refresh_models()
        servers[app.base_url].models = []

        await app.refresh_models()

        assert app.models == ()
        assert app.selected_model == ""
        assert app.model_detail is None
        assert app.session.model is None

    @pytest.mark.asyncio
    async def test_unreachable_server_clears_models_and_selection(self, make_app, store, servers):
        app = make_app()
        await app.refresh_models()
        servers[app.base_url].reachable = False

        await app.refresh_models()

        assert app.models == ()
        assert app.selected_model == ""
        assert app.model_detail is None
        assert app.connection_error == "Failed to connect to Ollama at 'http://configured:11434'."
        assert store.get(SELECTED_MODEL_KEY) == ""

    @pytest.mark.asyncio
    async def test_retry_connection_recovers(self, make_app, servers):
        app = make_app()
        servers[app.base_url].reachable = False
        await app.refresh_models()
        assert app.connection_error is not None

        servers[app.base_url].reachable = True
        await app.retry_connection()

        assert app.connection_error is None
        assert app.selected_model == "llama3:latest"


class TestSelection:
    @pytest.mark.asyncio
    async def test_failed_detail_fetch_leaves_detail_empty(self, make_app):
        app = make_app()
        await app.refresh_models()
        detail = await app.select_model("ghost:latest")
        assert detail is None
        assert app.model_detail is None
        assert app.selected_model == "ghost:latest"

    @pytest.mark.asyncio
    async def test_set_base_url_switches_client(self, make_app, store, servers):
        app = make_app()
        await app.refresh_models()
        previous = servers[app.base_url]

        await app.set_base_url("http://other-host:11434/")

        assert app.base_url == "http://other-host:11434"
        assert store.get(BASE_URL_KEY) == "http://other-host:11434"
        assert previous.closed is True
        assert app.session.client is servers["http://other-host:11434"]
        assert app.connection_error is None


class TestChat:
    @pytest.mark.asyncio
    async def test_send_message_uses_selected_model(self, make_app, servers):
        app = make_app()
        await app.refresh_models()
        await app.select_model("llava:7b")

        reply = await app.send_message("Hello")

        assert reply["content"] == "Hi!"
        assert servers[app.base_url].chat_requests == ["llava:7b"]
        assert len(app.history) == 2

    @pytest.mark.asyncio
    async def test_send_without_model_makes_no_request(self, make_app, servers):
        app = make_app()
        servers[app.base_url].reachable = False
        await app.refresh_models()

        await app.send_message("Hello")

        assert servers[app.base_url].chat_requests == []
        assert len(app.history) == 1
        assert app.history[0]["content"].startswith("Error:")

    @pytest.mark.asyncio
    async def test_clear_chat(self, make_app):
        app = make_app()
        await app.refresh_models()
        await app.send_message("Hello")
        app.clear_chat()
        assert app.history == ()


class TestPull:
    @pytest.mark.asyncio
    async def test_successful_pull_refreshes_models(self, make_app, servers):
        app = make_app()
        await app.refresh_models()
        servers[app.base_url].pull_events = [
            PullProgressEvent(status="downloading", completed=50, total=200),
            PullProgressEvent(status="success"),
        ]

        tracker = await app.pull_model("  mistral:7b ")

        assert tracker.current.status == "success"
        assert tracker.is_active is False
        assert "mistral:7b" in {model.name for model in app.models}
        assert app.active_pulls == {"mistral:7b": tracker.current}

    @pytest.mark.asyncio
    async def test_failed_pull_keeps_error_status(self, make_app, servers):
        app = make_app()
        servers[app.base_url].pull_error = OllamaConnectionError("connection refused")

        tracker = await app.pull_model("mistral:7b")

        assert tracker.current.error == "connection refused"
        assert tracker.current.status == "Error pulling model: connection refused"
        assert "mistral:7b" in app.pulls

    @pytest.mark.asyncio
    async def test_empty_name_is_ignored(self, make_app):
        assert await make_app().pull_model("   ") is None

    @pytest.mark.asyncio
    async def test_second_pull_of_same_model_is_rejected(self, make_app, servers):
        app = make_app()
        server = servers[app.base_url]
        server.pull_gate = asyncio.Event()
        server.pull_events = [PullProgressEvent(status="downloading", completed=1, total=2)]

        first = asyncio.create_task(app.pull_model("mistral:7b"))
        await asyncio.sleep(0)
        with pytest.raises(OperationInProgressError):
            await app.pull_model("mistral:7b")

        server.pull_gate.set()
        tracker = await first
        assert tracker.current.ratio == 0.5

    @pytest.mark.asyncio
    async def test_finished_trackers_are_dropped_after_delay(self, make_app, servers):
        app = make_app()
        app.config = app.config.model_copy(update={"progress": ProgressSettings(clear_delay=0)})
        servers[app.base_url].pull_events = [PullProgressEvent(status="success")]

        await app.pull_model("mistral:7b")

        assert app.active_pulls == {}
        assert app.pulls == {}


@pytest.mark.asyncio
async def test_async_context_manager_loads_models_and_closes(make_app, servers):
    async with make_app() as app:
        assert app.selected_model == "llama3:latest"
    assert servers[app.base_url].closed is True


@pytest.mark.asyncio
async def test_undecodable_pull_body_fails_tracker(app_settings, store):
    body = ChunkedBody([b"not gzip at all"])
    handler = RecordingHandler({"/api/pull": httpx.Response(200, headers={"content-encoding": "gzip"}, stream=body)})

    def factory(base_url):
        transport = httpx.MockTransport(handler)
        return AsyncOllamaClient(base_url=base_url, http_client=httpx.AsyncClient(transport=transport))

    app = ChatApp(settings=app_settings, store=store, client_factory=factory)
    tracker = await app.pull_model("mistral:7b")

    assert "DecodingError" in tracker.current.error
    assert tracker.current.status.startswith("Error pulling model: ")
    assert tracker.is_active is False


@pytest.mark.asyncio
async def test_set_base_url_is_rejected_while_reply_streams(make_app, servers):
    app = make_app()
    await app.refresh_models()
    gate = asyncio.Event()

    async def slow_chat(model, history):
        await gate.wait()
        yield StreamChatEvent.model_validate({"message": {"role": "assistant", "content": "Hi!"}, "done": True})

    servers[app.base_url].stream_chat = slow_chat
    task = asyncio.create_task(app.send_message("Hello"))
    await asyncio.sleep(0)

    with pytest.raises(OperationInProgressError):
        await app.set_base_url("http://other-host:11434")
    assert servers[app.base_url].closed is False

    gate.set()
    reply = await task
    assert reply["content"] == "Hi!"
    assert app.base_url == "http://configured:11434"


@pytest.mark.asyncio
async def test_set_base_url_is_rejected_while_pull_runs(make_app, servers):
    app = make_app()
    server = servers[app.base_url]
    server.pull_gate = asyncio.Event()
    server.pull_events = [PullProgressEvent(status="downloading", completed=1, total=2)]

    pull = asyncio.create_task(app.pull_model("mistral:7b"))
    await asyncio.sleep(0)
    with pytest.raises(OperationInProgressError):
        await app.set_base_url("http://other-host:11434")

    server.pull_gate.set()
    await pull
    await app.set_base_url("http://other-host:11434")
    assert server.closed is True
