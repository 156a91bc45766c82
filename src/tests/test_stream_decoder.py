"""
Tests for the completion stream decoder: frame parsing, chunk boundaries,
termination and the reassembly bound.
"""

import asyncio

import pytest

from chatrelay.llm.exceptions import StreamParseError
from chatrelay.llm.stream_decoder import StreamDecoder, StreamEvent


def frame(content: str) -> str:
    return 'data: {"choices":[{"delta":{"content":"%s"}}]}\n\n' % content


HELLO_STREAM = (frame("Hel") + frame("lo") + "data: [DONE]\n\n").encode()


def make_reader(chunks):
    pending = list(chunks)

    async def read():
        return pending.pop(0) if pending else b""

    return read


async def collect(decoder, read):
    return [event async for event in decoder.events(read)]


class TestStreamDecoderFeed:
    """Synchronous feed/close behaviour."""

    def test_hello_frames(self):
        decoder = StreamDecoder()
        chunks = [frame("Hel").encode(), (frame("lo") + "data: [DONE]\n\n").encode()]

        snapshots = decoder.feed(chunks[0]) + decoder.feed(chunks[1])

        assert snapshots == ["Hel", "Hello"]
        assert decoder.finished is True

    def test_three_line_scenario(self):
        decoder = StreamDecoder()
        chunks = [
            b'data: {"choices":[{"delta":{"content":"He"}}]}\n',
            b'data: {"choices":[{"delta":{"content":"llo"}}]}\n',
            b"data: [DONE]\n",
        ]

        for chunk in chunks:
            decoder.feed(chunk)

        assert decoder.text == "Hello"
        assert decoder.finished is True

    def test_split_at_every_offset(self):
        decoder = StreamDecoder()
        for offset in range(len(HELLO_STREAM) + 1):
            decoder.reset()
            snapshots = decoder.feed(HELLO_STREAM[:offset]) + decoder.feed(HELLO_STREAM[offset:]) + decoder.close()

            assert snapshots == ["Hel", "Hello"], f"split at {offset}"
            assert decoder.text == "Hello"
            assert decoder.finished is True

    def test_multibyte_split_inside_character(self):
        data = (frame("héllo ") + frame("世界") + "data: [DONE]\n").encode("utf-8")
        decoder = StreamDecoder()
        for offset in range(len(data) + 1):
            decoder.reset()
            decoder.feed(data[:offset])
            decoder.feed(data[offset:])
            decoder.close()

            assert decoder.text == "héllo 世界"

    def test_byte_by_byte(self):
        decoder = StreamDecoder()
        snapshots = []
        for i in range(len(HELLO_STREAM)):
            snapshots += decoder.feed(HELLO_STREAM[i:i + 1])

        assert snapshots == ["Hel", "Hello"]

    def test_skips_comments_and_role_only_deltas(self):
        decoder = StreamDecoder()
        data = (
            ": keep-alive\n\n"
            'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
            + frame("Hi")
        ).encode()

        assert decoder.feed(data) == ["Hi"]

    def test_data_prefix_without_space(self):
        decoder = StreamDecoder()

        assert decoder.feed(b'data:{"choices":[{"delta":{"content":"x"}}]}\n') == ["x"]

    def test_json_split_across_lines_is_reassembled(self):
        decoder = StreamDecoder()
        data = b'data: {"choices":[{"delta":\n{"content":"Hi"}}]}\n'

        assert decoder.feed(data) == ["Hi"]

    def test_lines_after_done_are_ignored(self):
        decoder = StreamDecoder()
        decoder.feed(b"data: [DONE]\n")

        assert decoder.feed(frame("late").encode()) == []
        assert decoder.text == ""

    def test_trailing_line_without_newline_is_flushed_on_close(self):
        decoder = StreamDecoder()
        data = frame("Hi").rstrip("\n").encode()

        assert decoder.feed(data) == []
        assert decoder.close() == ["Hi"]

    def test_pending_bound_raises(self):
        decoder = StreamDecoder(max_pending=32)
        garbage = b'data: {"choices": [' + b"x" * 100 + b"\n"

        with pytest.raises(StreamParseError):
            decoder.feed(garbage)

    def test_small_garbage_is_held(self):
        decoder = StreamDecoder(max_pending=1024)

        assert decoder.feed(b"data: {not json\n") == []
        assert decoder.text == ""


class TestStreamDecoderEvents:
    """Async event iteration and the single final event."""

    @pytest.mark.asyncio
    async def test_done_yields_single_final_event(self):
        decoder = StreamDecoder()
        events = await collect(decoder, make_reader([HELLO_STREAM]))

        assert events == [
            StreamEvent("Hel", False),
            StreamEvent("Hello", False),
            StreamEvent("Hello", True),
        ]

    @pytest.mark.asyncio
    async def test_eof_without_done_yields_final_event(self):
        decoder = StreamDecoder()
        events = await collect(decoder, make_reader([frame("Hel").encode(), frame("lo").encode()]))

        assert [event.done for event in events].count(True) == 1
        assert events[-1] == StreamEvent("Hello", True)

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        decoder = StreamDecoder()
        events = await collect(decoder, make_reader([]))

        assert events == [StreamEvent("", True)]

    @pytest.mark.asyncio
    async def test_no_reads_after_done(self):
        decoder = StreamDecoder()
        reads = []

        async def read():
            reads.append(1)
            return HELLO_STREAM if len(reads) == 1 else frame("more").encode()

        events = await collect(decoder, read)

        assert len(reads) == 1
        assert events[-1] == StreamEvent("Hello", True)

    @pytest.mark.asyncio
    async def test_idle_timeout_finishes_with_text_so_far(self):
        decoder = StreamDecoder(idle_timeout=0.05)
        sent = []

        async def read():
            if not sent:
                sent.append(1)
                return frame("Hel").encode()
            await asyncio.Event().wait()

        events = await collect(decoder, read)

        assert events == [StreamEvent("Hel", False), StreamEvent("Hel", True)]
