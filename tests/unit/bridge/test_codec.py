"""Line framing across arbitrary TCP chunking, and the stream codec."""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ioncircuit.bridge.codec import LineCodec, LineFramer
from ioncircuit.bridge.models import PolicyAck

messages = st.lists(
    st.text(alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\n\r"), min_size=1, max_size=40).filter(
        lambda s: s.strip()
    ),
    min_size=1,
    max_size=10,
)


def _chunk(data: bytes, cuts: list[int]) -> list[bytes]:
    points = sorted({c % (len(data) + 1) for c in cuts})
    chunks, prev = [], 0
    for p in points:
        chunks.append(data[prev:p])
        prev = p
    chunks.append(data[prev:])
    return chunks


class TestLineFramer:
    @given(msgs=messages, cuts=st.lists(st.integers(min_value=0, max_value=10_000), max_size=20))
    @settings(max_examples=200)
    def test_framing_independent_of_chunking(self, msgs, cuts):
        stream = b"".join(m.encode("utf-8") + b"\n" for m in msgs)
        framer = LineFramer()
        out = []
        for chunk in _chunk(stream, cuts):
            out.extend(framer.feed(chunk))
        assert out == [m.encode("utf-8") for m in msgs]
        assert framer.pending == 0

    def test_partial_line_waits_for_newline(self):
        framer = LineFramer()
        assert framer.feed(b'{"a":[0,') == []
        assert framer.feed(b"0,0]}\n") == [b'{"a":[0,0,0]}']

    def test_empty_lines_and_crlf(self):
        framer = LineFramer()
        assert framer.feed(b"\n\r\n  \nx\r\n") == [b"x"]

    def test_overlong_line_dropped_and_next_line_kept(self):
        framer = LineFramer(max_line_bytes=8)
        out = framer.feed(b"0123456789abcdef")
        out += framer.feed(b"ghij\nok\n")
        assert out == [b"ok"]
        assert framer.dropped_lines == 1

    def test_overlong_complete_line_dropped(self):
        framer = LineFramer(max_line_bytes=4)
        assert framer.feed(b"toolong\nfine\n") == [b"fine"]
        assert framer.dropped_lines == 1


def _run_codec(payload: bytes, *, eof: bool = True):
    async def _go():
        reader = asyncio.StreamReader()
        reader.feed_data(payload)
        if eof:
            reader.feed_eof()
        codec = LineCodec(reader, _FakeWriter(), read_chunk_bytes=3)
        return [line async for line in codec.lines()]

    return asyncio.run(_go())


class _FakeWriter:
    def __init__(self):
        self.writes: list[bytes] = []
        self.closed = False

    def get_extra_info(self, name):
        return ("127.0.0.1", 1234) if name == "peername" else None

    def is_closing(self):
        return self.closed

    def write(self, data):
        self.writes.append(data)

    async def drain(self):
        return None

    def close(self):
        self.closed = True

    async def wait_closed(self):
        return None


class TestLineCodec:
    def test_lines_from_small_reads(self):
        assert _run_codec(b'{"a":[1]}\n{"a":[2]}\n') == [b'{"a":[1]}', b'{"a":[2]}']

    def test_unterminated_tail_discarded_at_eof(self):
        assert _run_codec(b'{"a":[1]}\n{"a":[2') == [b'{"a":[1]}']

    def test_send_writes_one_terminated_line(self):
        async def _go():
            writer = _FakeWriter()
            codec = LineCodec(asyncio.StreamReader(), writer)
            await codec.send(PolicyAck(ok=True, saved_path="/x"))
            return writer.writes

        writes = asyncio.run(_go())
        assert len(writes) == 1
        assert writes[0].endswith(b"\n")
        assert writes[0].count(b"\n") == 1

    def test_send_many_is_one_write(self):
        async def _go():
            writer = _FakeWriter()
            codec = LineCodec(asyncio.StreamReader(), writer)
            await codec.send_many(PolicyAck(ok=True, saved_path="/x"), PolicyAck(ok=False, error="e"))
            return writer.writes

        writes = asyncio.run(_go())
        assert len(writes) == 1
        first, second = writes[0].splitlines()
        assert b"\"/x\"" in first
        assert b"\"e\"" in second

    def test_send_after_close_raises(self):
        async def _go():
            codec = LineCodec(asyncio.StreamReader(), _FakeWriter())
            assert codec.peer == "127.0.0.1:1234"
            await codec.close()
            assert codec.is_closed
            await codec.send(PolicyAck(ok=False))

        with pytest.raises(ConnectionResetError):
            asyncio.run(_go())
