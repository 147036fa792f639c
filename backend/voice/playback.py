"""Streaming playback: plays a byte stream while it is still being received.

Two activities cooperate on one event channel:

* the feeder reads the next chunk only after the sink has accepted the
  previous one, then signals end of input,
* the watcher waits for the sink to finish rendering everything it was given.

Playback is complete when the watcher reports that rendering ended, not when
the network transfer ends.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Sequence

from errors import PlaybackError
from config import AUDIO_PLAYER

logger = logging.getLogger(__name__)


class PlaybackEvent(str, Enum):
    """Signals sent on the playback event channel."""
    STARTED = "started"
    INPUT_ENDED = "input_ended"
    PLAYBACK_ENDED = "playback_ended"
    FAILED = "failed"


class AudioSink(ABC):
    """Buffering sink that accepts encoded chunks and renders them as audio."""

    @abstractmethod
    async def open(self) -> None:
        """Prepare the output; called once before the first chunk."""

    @abstractmethod
    async def append(self, chunk: bytes) -> None:
        """Hand over a chunk; returns once the sink is ready for the next one."""

    @abstractmethod
    async def end_of_input(self) -> None:
        """Signal that no more chunks will arrive."""

    @abstractmethod
    async def wait_until_played(self) -> None:
        """Return once every buffered chunk has been rendered."""

    @abstractmethod
    async def close(self) -> None:
        """Release the output, aborting playback if it is still running."""


class FFplaySink(AudioSink):
    """Pipes encoded audio into an ffplay process, which decodes and plays it."""

    def __init__(self, player: str = AUDIO_PLAYER, extra_args: Sequence[str] = ()):
        self.player = player
        self.extra_args = list(extra_args)
        self.process: Optional[asyncio.subprocess.Process] = None

    def command(self) -> List[str]:
        return [
            self.player, "-autoexit", "-nodisp", "-hide_banner", "-loglevel", "error",
            *self.extra_args, "-i", "pipe:0",
        ]

    async def open(self) -> None:
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise PlaybackError(f"Could not start audio player '{self.player}': {e}", code="PLAYER_ERROR") from e
        logger.debug(f"Started audio player (PID {self.process.pid})")

    async def append(self, chunk: bytes) -> None:
        try:
            self.process.stdin.write(chunk)
            # Back-pressure: wait until the player has taken the data
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise PlaybackError(f"Audio player stopped accepting data: {e}", code="PLAYER_ERROR") from e

    async def end_of_input(self) -> None:
        self.process.stdin.close()
        try:
            await self.process.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def wait_until_played(self) -> None:
        returncode = await self.process.wait()
        if returncode != 0:
            stderr = (await self.process.stderr.read()).decode(errors="replace").strip()
            raise PlaybackError(
                f"Audio player exited with status {returncode}: {stderr}",
                code="PLAYER_ERROR",
                details={"returncode": returncode}
            )

    async def close(self) -> None:
        if self.process is not None and self.process.returncode is None:
            self.process.kill()
            await self.process.wait()


class StreamingPlaybackEngine:
    """Drives continuous audio output from a progressively arriving byte stream."""

    def __init__(self, sink_factory: Callable[[], AudioSink] = FFplaySink):
        """
        Initialize the engine.

        Args:
            sink_factory: Builds a fresh sink for every call to play()
        """
        self.sink_factory = sink_factory

    async def play(
        self,
        chunks: AsyncIterator[bytes],
        on_started: Optional[Callable[[], None]] = None
    ) -> None:
        """
        Play a byte stream, returning once the audio has actually finished.

        Args:
            chunks: Encoded audio chunks, in order
            on_started: Called once the first chunk was accepted by the sink

        Raises:
            PlaybackError: If reading, appending or rendering fails
        """
        sink = self.sink_factory()
        events: asyncio.Queue = asyncio.Queue()
        input_ended = asyncio.Event()

        try:
            await sink.open()
        except PlaybackError:
            await sink.close()
            raise
        except Exception as e:
            await sink.close()
            raise PlaybackError(f"Could not open audio output: {e}") from e

        feeder = asyncio.create_task(self._feed(chunks, sink, events, input_ended))
        watcher = asyncio.create_task(self._watch(sink, events, input_ended))

        chunk_count = 0
        try:
            while True:
                event, payload = await events.get()
                if event is PlaybackEvent.STARTED:
                    logger.info("Playback started")
                    if on_started is not None:
                        on_started()
                elif event is PlaybackEvent.INPUT_ENDED:
                    chunk_count = payload
                    logger.debug(f"Input ended after {chunk_count} chunks")
                elif event is PlaybackEvent.PLAYBACK_ENDED:
                    logger.info(f"Playback finished ({chunk_count} chunks)")
                    return
                elif event is PlaybackEvent.FAILED:
                    raise payload
        finally:
            for task in (feeder, watcher):
                task.cancel()
            await asyncio.gather(feeder, watcher, return_exceptions=True)
            await sink.close()

    async def _feed(
        self,
        chunks: AsyncIterator[bytes],
        sink: AudioSink,
        events: asyncio.Queue,
        input_ended: asyncio.Event
    ) -> None:
        count = 0
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                await sink.append(chunk)
                count += 1
                if count == 1:
                    events.put_nowait((PlaybackEvent.STARTED, None))
            input_ended.set()
            await sink.end_of_input()
        except asyncio.CancelledError:
            raise
        except PlaybackError as e:
            events.put_nowait((PlaybackEvent.FAILED, e))
            return
        except Exception as e:
            logger.error(f"Error while streaming audio chunk {count + 1}: {e}")
            events.put_nowait((PlaybackEvent.FAILED, PlaybackError(
                f"Audio stream failed: {e}",
                code="STREAM_ERROR",
                details={"chunks_played": count}
            )))
            return

        events.put_nowait((PlaybackEvent.INPUT_ENDED, count))

    async def _watch(self, sink: AudioSink, events: asyncio.Queue, input_ended: asyncio.Event) -> None:
        try:
            await sink.wait_until_played()
        except asyncio.CancelledError:
            raise
        except PlaybackError as e:
            events.put_nowait((PlaybackEvent.FAILED, e))
            return
        except Exception as e:
            events.put_nowait((PlaybackEvent.FAILED, PlaybackError(f"Audio playback failed: {e}")))
            return

        if not input_ended.is_set():
            events.put_nowait((PlaybackEvent.FAILED, PlaybackError(
                "Audio output ended before the stream was fully received",
                code="PREMATURE_END"
            )))
            return

        events.put_nowait((PlaybackEvent.PLAYBACK_ENDED, None))
