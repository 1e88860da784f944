from __future__ import annotations

import asyncio
import codecs
import inspect
import json
import logging
import re
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

_NEWLINE = re.compile(r"\r?\n")


@dataclass(frozen=True)
class Data:
    payload: bytes


@dataclass(frozen=True)
class End:
    pass


Chunk = Data | End

END = End()


class ChunkSource(Protocol):
    async def read(self) -> Chunk: ...


class ReaderState(str, Enum):
    READING = "reading"
    DONE = "done"


class NdjsonDecodeError(ValueError):
    """A line of the stream is not valid JSON."""

    def __init__(self, line: str, line_no: int, msg: str, *, trailing: bool = False):
        where = "trailing fragment" if trailing else f"line {line_no}"
        super().__init__(f"invalid JSON on {where}: {msg}: {line[:200]!r}")
        self.line = line
        self.line_no = line_no
        self.trailing = trailing


class LineSplitter:
    """Incremental bytes -> complete text lines.

    Keeps the UTF-8 decoder state and the unterminated remainder between
    `feed` calls, so the lines produced do not depend on chunk boundaries.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buf = ""
        self.line_no = 0

    @property
    def pending(self) -> str:
        return self._buf

    def feed(self, data: bytes) -> list[str]:
        self._buf += self._decoder.decode(data, final=False)
        parts = _NEWLINE.split(self._buf)
        self._buf = parts.pop()
        self.line_no += len(parts)
        return parts

    def finish(self) -> str:
        rest = self._buf + self._decoder.decode(b"", final=True)
        self._buf = ""
        return rest

    def discard(self) -> None:
        self._decoder.reset()
        self._buf = ""


def _parse_line(line: str, line_no: int, *, trailing: bool = False) -> Any:
    try:
        return json.loads(line)
    except json.JSONDecodeError as e:
        raise NdjsonDecodeError(line, line_no, e.msg, trailing=trailing) from e


def _complete_records(splitter: LineSplitter, data: bytes) -> Iterator[Any]:
    lines = splitter.feed(data)
    first_no = splitter.line_no - len(lines) + 1
    for offset, raw in enumerate(lines):
        line = raw.strip()
        if line:
            yield _parse_line(line, first_no + offset)


def _trailing_record(splitter: LineSplitter) -> list[Any]:
    rest = splitter.finish().strip()
    if not rest:
        return []
    return [_parse_line(rest, splitter.line_no + 1, trailing=True)]


def iter_ndjson(chunks: Iterable[bytes]) -> Iterator[Any]:
    """Yield one JSON value per non-empty line of a chunked byte stream."""

    splitter = LineSplitter()
    for data in chunks:
        yield from _complete_records(splitter, data)
    yield from _trailing_record(splitter)


class IterableSource:
    """ChunkSource over an async iterable of bytes (e.g. `Response.aiter_bytes()`).

    A dropped connection is reported as end-of-stream with `truncated` set, so
    the reader flushes whatever it has buffered.
    """

    def __init__(self, chunks: AsyncIterable[bytes]):
        self._it = chunks.__aiter__()
        self.truncated = False

    async def read(self) -> Chunk:
        try:
            data = await self._it.__anext__()
        except StopAsyncIteration:
            return END
        except (httpx.RemoteProtocolError, httpx.ReadError) as e:
            logger.warning("stream ended prematurely: %s", e)
            self.truncated = True
            return END
        return Data(data)


class StreamLineReader:
    """Read an NDJSON byte stream and invoke `process` once per record, in order.

    `process` may return an awaitable; it is awaited before the next chunk is
    requested. Malformed JSON raises `NdjsonDecodeError` and aborts the stream.
    """

    def __init__(
        self,
        source: ChunkSource,
        process: Callable[[Any], Awaitable[Any] | Any],
        *,
        cancel: asyncio.Event | None = None,
    ):
        self._source = source
        self._process = process
        self._cancel = cancel
        self._splitter = LineSplitter()
        self.state = ReaderState.READING
        self.records = 0
        self.cancelled = False

    async def _emit(self, value: Any) -> None:
        res = self._process(value)
        if inspect.isawaitable(res):
            await res
        self.records += 1

    async def run(self) -> int:
        if self.state is ReaderState.DONE:
            raise RuntimeError("stream already consumed")

        try:
            while True:
                if self._cancel is not None and self._cancel.is_set():
                    logger.debug("stream cancelled after %d records", self.records)
                    self.cancelled = True
                    self._splitter.discard()
                    break

                chunk = await self._source.read()
                if isinstance(chunk, End):
                    for value in _trailing_record(self._splitter):
                        await self._emit(value)
                    break

                for value in _complete_records(self._splitter, chunk.payload):
                    await self._emit(value)
        finally:
            self.state = ReaderState.DONE

        logger.debug("stream done: %d records", self.records)
        return self.records


async def read_stream(
    source: ChunkSource,
    process: Callable[[Any], Awaitable[Any] | Any],
    *,
    cancel: asyncio.Event | None = None,
) -> int:
    return await StreamLineReader(source, process, cancel=cancel).run()


async def aiter_ndjson(source: ChunkSource) -> AsyncIterator[Any]:
    """Pull-style variant of `StreamLineReader`: yield records as they arrive."""

    splitter = LineSplitter()
    while True:
        chunk = await source.read()
        if isinstance(chunk, End):
            break
        for value in _complete_records(splitter, chunk.payload):
            yield value
    for value in _trailing_record(splitter):
        yield value
