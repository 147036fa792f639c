"""Speech recognition capability used by the turn controller.

A recognizer captures one utterance per `start()` and reports back through
three hooks, mirroring the browser speech-recognition object:

* ``on_result(transcript)`` with the finished transcript,
* ``on_error(reason)`` when capture or recognition failed,
* ``on_end()`` once capture is over, after a result or an error.

Hooks are always invoked on the event loop thread that called `start()`.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from config import RECOGNITION_LANGUAGE, WHISPER_MODEL, RECORD_SECONDS

logger = logging.getLogger(__name__)


class SpeechRecognizer(ABC):
    """Capability interface for a speech-to-text source."""

    def __init__(self):
        self.on_result: Optional[Callable[[str], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None
        self.on_end: Optional[Callable[[], None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @abstractmethod
    def start(self) -> None:
        """Begin capturing one utterance. Must be called from the event loop."""

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing; pending results are discarded."""

    def _emit(self, hook: Optional[Callable], *args) -> None:
        """Deliver a hook call on the event loop thread."""
        if hook is None:
            return
        if self._loop is None:
            hook(*args)
        else:
            self._loop.call_soon_threadsafe(hook, *args)


class KeyboardRecognizer(SpeechRecognizer):
    """Reads each utterance as a typed line; end of input stops the session."""

    def __init__(self, prompt: str = "You: "):
        super().__init__()
        self.prompt = prompt
        self.closed = False
        self._generation = 0

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self.closed:
            self._emit(self.on_end)
            return

        self._generation += 1
        # Daemon thread: a read blocked on stdin must not hold up interpreter exit
        reader = threading.Thread(target=self._read_line, args=(self._generation,), daemon=True)
        reader.start()

    def stop(self) -> None:
        # Invalidates the read in flight
        self._generation += 1

    def _read_line(self, generation: int) -> None:
        try:
            line = input(self.prompt)
        except EOFError:
            logger.info("Keyboard input closed")
            self.closed = True
            if generation == self._generation:
                self._emit(self.on_end)
            return
        except Exception as e:
            if generation == self._generation:
                self._emit(self.on_error, str(e))
                self._emit(self.on_end)
            return

        if generation == self._generation:
            self._emit(self.on_result, line.strip())
            self._emit(self.on_end)


class WhisperRecognizer(SpeechRecognizer):
    """Records a fixed-length microphone clip and transcribes it with faster-whisper.

    Requires the optional ``voice`` extra (faster-whisper, sounddevice, numpy).
    """

    SAMPLE_RATE = 16000

    def __init__(
        self,
        model_name: str = WHISPER_MODEL,
        language: str = RECOGNITION_LANGUAGE,
        record_seconds: float = RECORD_SECONDS
    ):
        super().__init__()
        self.model_name = model_name
        self.language = language
        self.record_seconds = record_seconds
        self._model = None
        self._generation = 0

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._generation += 1
        self._loop.run_in_executor(None, self._capture, self._generation)

    def stop(self) -> None:
        # Invalidates the capture in flight
        self._generation += 1
        import sounddevice as sd
        sd.stop()

    def _get_model(self):
        if self._model is None:
            from faster_whisper import WhisperModel
            logger.info(f"Loading Whisper model: {self.model_name}")
            self._model = WhisperModel(self.model_name, device="cpu", compute_type="int8")
        return self._model

    def _capture(self, generation: int) -> None:
        import numpy as np
        import sounddevice as sd

        try:
            frames = int(self.record_seconds * self.SAMPLE_RATE)
            audio = sd.rec(frames, samplerate=self.SAMPLE_RATE, channels=1, dtype="int16")
            sd.wait()
            if generation != self._generation:
                return

            audio_f32 = audio.flatten().astype(np.float32) / 32768.0
            segments, _ = self._get_model().transcribe(
                audio_f32,
                language=self.language,
                beam_size=1,
                condition_on_previous_text=False,
            )
            text = " ".join(seg.text.strip() for seg in segments).strip()
        except Exception as e:
            logger.error(f"Speech recognition error: {e}", exc_info=True)
            if generation == self._generation:
                self._emit(self.on_error, str(e))
                self._emit(self.on_end)
            return

        if generation == self._generation:
            self._emit(self.on_result, text)
            self._emit(self.on_end)
