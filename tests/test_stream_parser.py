from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from lichess_api.stream_parser import (
    END,
    Data,
    IterableSource,
    LineSplitter,
    NdjsonDecodeError,
    ReaderState,
    StreamLineReader,
    aiter_ndjson,
    iter_ndjson,
    read_stream,
)


class ListSource:
    """ChunkSource over a fixed list of byte chunks; counts reads."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = list(chunks)
        self.reads = 0

    async def read(self):
        self.reads += 1
        if not self._chunks:
            return END
        return Data(self._chunks.pop(0))


def _read_all(chunks: list[bytes]) -> list[Any]:
    out: list[Any] = []
    asyncio.run(read_stream(ListSource(chunks), out.append))
    return out


def test_chunk_boundaries_do_not_change_records() -> None:
    whole = _read_all([b'{"a":1}\n{"b":2}\n'])
    split = _read_all([b'{"a', b'":1}\n{"b":2}\n'])

    assert whole == split == [{"a": 1}, {"b": 2}]


def test_every_split_point_gives_same_records() -> None:
    raw = '{"a":1}\r\n{"name":"Caruana–Nakamura ♞"}\n\n{"b":[1,2]}'.encode("utf-8")
    expected = [{"a": 1}, {"name": "Caruana–Nakamura ♞"}, {"b": [1, 2]}]

    for i in range(len(raw) + 1):
        assert list(iter_ndjson([raw[:i], raw[i:]])) == expected


def test_multibyte_char_split_across_chunks() -> None:
    raw = '{"n":"é"}\n'.encode("utf-8")
    cut = raw.index("é".encode("utf-8")) + 1

    assert _read_all([raw[:cut], raw[cut:]]) == [{"n": "é"}]


def test_final_record_without_trailing_newline() -> None:
    assert _read_all([b'{"x":1}\n{"y":2}']) == [{"x": 1}, {"y": 2}]


def test_empty_lines_are_skipped() -> None:
    assert _read_all([b'{"a":1}\n\n{"b":2}\n']) == [{"a": 1}, {"b": 2}]


def test_crlf_separators() -> None:
    assert _read_all([b'{"a":1}\r', b'\n{"b":2}\r\n']) == [{"a": 1}, {"b": 2}]


def test_empty_stream_yields_nothing() -> None:
    assert _read_all([]) == []
    assert _read_all([b"", b""]) == []


def test_invalid_utf8_is_replaced() -> None:
    assert _read_all([b'{"s":"a\xffb"}\n']) == [{"s": "a\ufffdb"}]


def test_malformed_line_aborts_stream() -> None:
    seen: list[Any] = []
    source = ListSource([b'{"a":1}\nnot-json\n', b'{"b":2}\n'])
    reader = StreamLineReader(source, seen.append)

    with pytest.raises(NdjsonDecodeError) as exc:
        asyncio.run(reader.run())

    assert seen == [{"a": 1}]
    assert exc.value.line == "not-json"
    assert exc.value.line_no == 2
    assert not exc.value.trailing
    assert source.reads == 1
    assert reader.state is ReaderState.DONE


def test_malformed_trailing_fragment_is_reported() -> None:
    with pytest.raises(NdjsonDecodeError) as exc:
        list(iter_ndjson([b'{"a":1}\n{"b":']))

    assert exc.value.trailing
    assert exc.value.line == '{"b":'


def test_async_callback_is_awaited_before_next_read() -> None:
    source = ListSource([b'{"i":1}\n', b'{"i":2}\n'])
    log: list[tuple[int, int]] = []

    async def process(obj: Any) -> None:
        await asyncio.sleep(0)
        log.append((obj["i"], source.reads))

    n = asyncio.run(read_stream(source, process))

    assert n == 2
    # Each record was fully processed before the following chunk was read.
    assert log == [(1, 1), (2, 2)]


def test_reader_cannot_run_twice() -> None:
    reader = StreamLineReader(ListSource([b'{"a":1}\n']), lambda obj: None)
    asyncio.run(reader.run())

    with pytest.raises(RuntimeError):
        asyncio.run(reader.run())


def test_cancel_stops_before_next_read() -> None:
    cancel = asyncio.Event()
    seen: list[Any] = []

    def process(obj: Any) -> None:
        seen.append(obj)
        cancel.set()

    source = ListSource([b'{"a":1}\n{"b":', b'2}\n', b'{"c":3}\n'])
    reader = StreamLineReader(source, process, cancel=cancel)
    n = asyncio.run(reader.run())

    assert n == 1
    assert seen == [{"a": 1}]
    assert reader.cancelled
    assert source.reads == 1
    assert reader.state is ReaderState.DONE


def test_aiter_ndjson_yields_in_order() -> None:
    async def collect() -> list[Any]:
        return [obj async for obj in aiter_ndjson(ListSource([b'{"a":1}\n{"b"', b':2}']))]

    assert asyncio.run(collect()) == [{"a": 1}, {"b": 2}]


def test_iterable_source_flushes_on_dropped_connection() -> None:
    async def body():
        yield b'{"a":1}\n'
        yield b'{"b":2}'
        raise httpx.RemoteProtocolError("peer closed connection")

    source = IterableSource(body())
    seen: list[Any] = []
    asyncio.run(read_stream(source, seen.append))

    assert seen == [{"a": 1}, {"b": 2}]
    assert source.truncated


def test_one_byte_chunks_through_reader() -> None:
    raw = '{"a":1}\r\n\n{"name":"Ding Liren 丁立人"}\n{"b":2}'.encode("utf-8")

    assert _read_all([raw[i : i + 1] for i in range(len(raw))]) == [
        {"a": 1},
        {"name": "Ding Liren 丁立人"},
        {"b": 2},
    ]


def test_stream_ending_inside_multibyte_char() -> None:
    splitter = LineSplitter()
    partial = "é".encode("utf-8")[:1]

    assert splitter.feed(b'{"a":1}\n' + partial) == ['{"a":1}']
    assert splitter.pending == ""
    assert splitter.finish() == "\ufffd"

    with pytest.raises(NdjsonDecodeError) as exc:
        _read_all([b'{"a":1}\n', partial])
    assert exc.value.trailing
    assert exc.value.line == "\ufffd"
