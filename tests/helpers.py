"""Shared fakes for the test suite."""

import json

import httpx

BASE_URL = "http://ollama.test:11434"


class ChunkedBody(httpx.SyncByteStream, httpx.AsyncByteStream):
    """Response body delivered in the given chunks, counting how many were read."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = list(chunks)
        self.reads = 0

    def __iter__(self):
        for chunk in self.chunks:
            self.reads += 1
            yield chunk

    async def __aiter__(self):
        for chunk in self.chunks:
            self.reads += 1
            yield chunk


def ndjson(*records) -> bytes:
    return b"".join(json.dumps(record).encode() + b"\n" for record in records)


def chat_record(content: str, done: bool = False) -> dict:
    return {
        "model": "llama3:latest",
        "created_at": "2024-05-01T10:00:00.123456789Z",
        "message": {"role": "assistant", "content": content},
        "done": done,
    }


class RecordingHandler:
    """MockTransport handler returning canned responses keyed by request path."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes[request.url.path]
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return route

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(request.content) for request in self.requests if request.url.path == path]
