"""Unit tests for StreamingPlaybackEngine."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import asyncio
import pytest

from errors import PlaybackError
from voice.playback import AudioSink, FFplaySink, StreamingPlaybackEngine


class FakeSink(AudioSink):
    """Sink double that renders one chunk at a time with a configurable lag."""

    def __init__(self, render_delay=0.0, fail_on_append=None, fail_playback=False, stop_early=False):
        self.render_delay = render_delay
        self.fail_on_append = fail_on_append
        self.fail_playback = fail_playback
        self.stop_early = stop_early
        self.received = []
        self.rendered = []
        self.max_backlog = 0
        self.input_ended = False
        self.closed = False
        self._queue = asyncio.Queue(maxsize=1)
        self._renderer = None

    async def open(self):
        self._renderer = asyncio.create_task(self._render())

    async def append(self, chunk):
        if self.fail_on_append is not None and len(self.received) == self.fail_on_append:
            raise PlaybackError("decoder rejected chunk")
        await self._queue.put(chunk)
        self.received.append(chunk)
        self.max_backlog = max(self.max_backlog, len(self.received) - len(self.rendered))

    async def end_of_input(self):
        self.input_ended = True
        await self._queue.put(None)

    async def _render(self):
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            await asyncio.sleep(self.render_delay)
            self.rendered.append(chunk)

    async def wait_until_played(self):
        if self.stop_early:
            return
        await self._renderer
        if self.fail_playback:
            raise PlaybackError("output device lost")

    async def close(self):
        self.closed = True
        if self._renderer is not None:
            self._renderer.cancel()


class ChunkSource:
    """Async byte stream that records how far it has been read."""

    def __init__(self, count, delay=0.005, fail_at=None):
        self.count = count
        self.delay = delay
        self.fail_at = fail_at
        self.read = 0
        self.exhausted = False

    async def __aiter__(self):
        for i in range(self.count):
            if self.fail_at == i:
                raise ConnectionResetError("connection dropped")
            await asyncio.sleep(self.delay)
            self.read += 1
            yield f"chunk{i}".encode()
        self.exhausted = True


def play(sink, source, on_started=None):
    engine = StreamingPlaybackEngine(lambda: sink)
    asyncio.run(engine.play(source.__aiter__(), on_started=on_started))


def test_playback_starts_before_stream_is_fully_read():
    """Test that the start signal fires while chunks are still arriving."""
    sink = FakeSink()
    source = ChunkSource(count=6)
    observed = []

    play(sink, source, on_started=lambda: observed.append((source.read, source.exhausted)))

    assert len(observed) == 1
    read_at_start, exhausted_at_start = observed[0]
    assert exhausted_at_start is False
    assert read_at_start < source.count


def test_playback_completes_only_after_all_chunks_rendered():
    """Test that completion waits for lagging rendering, not just the transfer."""
    sink = FakeSink(render_delay=0.02)
    source = ChunkSource(count=5, delay=0)

    play(sink, source)

    assert source.exhausted is True
    assert sink.input_ended is True
    assert sink.rendered == [f"chunk{i}".encode() for i in range(5)]


def test_feeding_respects_sink_readiness():
    """Test that chunks are not read faster than the sink consumes them."""
    sink = FakeSink(render_delay=0.01)
    source = ChunkSource(count=8, delay=0)

    play(sink, source)

    # One chunk rendering plus one waiting in the sink buffer
    assert sink.max_backlog <= 2


def test_empty_chunks_are_skipped():
    """Test that zero-length reads are not handed to the sink."""
    sink = FakeSink()

    async def chunks():
        for chunk in (b"a", b"", b"b"):
            yield chunk

    asyncio.run(StreamingPlaybackEngine(lambda: sink).play(chunks()))

    assert sink.rendered == [b"a", b"b"]


def test_append_failure_aborts_playback():
    """Test that a rejected chunk aborts the operation and closes the sink."""
    sink = FakeSink(fail_on_append=2)
    source = ChunkSource(count=6)

    with pytest.raises(PlaybackError, match="decoder rejected chunk"):
        play(sink, source)

    assert sink.closed is True
    assert source.exhausted is False


def test_stream_read_failure_aborts_playback():
    """Test that a transport failure mid-stream surfaces as PlaybackError."""
    sink = FakeSink()
    source = ChunkSource(count=6, fail_at=3)

    with pytest.raises(PlaybackError) as exc_info:
        play(sink, source)

    assert exc_info.value.error.code == "STREAM_ERROR"
    assert exc_info.value.error.details["chunks_played"] == 3
    assert sink.closed is True


def test_playback_failure_aborts():
    """Test that an output failure after the input ended is reported."""
    sink = FakeSink(fail_playback=True)

    with pytest.raises(PlaybackError, match="output device lost"):
        play(sink, ChunkSource(count=3))

    assert sink.closed is True


def test_output_ending_before_input_is_an_error():
    """Test that playback ending while chunks are still arriving fails."""
    sink = FakeSink(stop_early=True)

    with pytest.raises(PlaybackError) as exc_info:
        play(sink, ChunkSource(count=5, delay=0.01))

    assert exc_info.value.error.code == "PREMATURE_END"


def test_ffplay_sink_command():
    sink = FFplaySink(player="ffplay")

    assert sink.command() == [
        "ffplay", "-autoexit", "-nodisp", "-hide_banner", "-loglevel", "error", "-i", "pipe:0"
    ]


def test_ffplay_sink_missing_player():
    """Test that a missing player binary is reported as a PlaybackError."""
    sink = FFplaySink(player="/nonexistent/ffplay")
    engine = StreamingPlaybackEngine(lambda: sink)

    with pytest.raises(PlaybackError, match="Could not start audio player"):
        asyncio.run(engine.play(ChunkSource(count=1).__aiter__()))
