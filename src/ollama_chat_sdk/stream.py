"""Incremental decoding of newline-delimited JSON response bodies.

Ollama streams `/api/pull` and `/api/chat` responses as one JSON document
per line. The transport hands over the body in arbitrarily sized chunks, so
a single read may carry no complete record, several records, or end in the
middle of a record (or in the middle of a multi-byte character).
`NDJSONDecoder` reassembles those chunks into records; `iter_ndjson` and
`aiter_ndjson` wrap it around sync and async byte iterators.
"""

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any

from ollama_chat_sdk.logger import logger


class NDJSONDecoder:
    """Stateful splitter turning byte chunks into parsed JSON records."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received after the last newline, not yet a complete record."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[Any]:
        """Append a chunk and return every record it completed, in order.

        Lines that are not valid JSON are logged and dropped.
        """
        self._buffer += self._decoder.decode(chunk)

        records = []
        start = 0
        boundary = self._buffer.find("\n")
        while boundary != -1:
            line = self._buffer[start:boundary].strip()
            if line:
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    logger.warning(f"Discarding malformed stream record ({exc}): {line[:200]!r}")
            start = boundary + 1
            boundary = self._buffer.find("\n", start)

        if start:
            self._buffer = self._buffer[start:]
        return records

    def close(self) -> None:
        """End the stream. An unterminated trailing record is discarded."""
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.strip():
            logger.debug(f"Dropping unterminated stream data at end of body: {self._buffer[:200]!r}")
        self._buffer = ""


def iter_ndjson(chunks: Iterable[bytes]) -> Iterator[Any]:
    """Yield JSON records from a byte chunk iterator as soon as each is complete."""
    decoder = NDJSONDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    decoder.close()


async def aiter_ndjson(chunks: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """Async counterpart of `iter_ndjson`."""
    decoder = NDJSONDecoder()
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
    decoder.close()
