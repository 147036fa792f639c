"""
Turn controller for hands-free voice conversation.

Runs one conversational turn at a time:

    IDLE -> LISTENING -> TRANSCRIBED -> COMPLETING -> SYNTHESIZING -> SPEAKING -> IDLE

and re-enters LISTENING automatically after the reply has been spoken. Any
unrecoverable failure lands in ERROR, which is left only by an explicit
start().
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from errors import GatewayError, PlaybackError
from voice.api_client import VoiceAgentAPI
from voice.playback import StreamingPlaybackEngine
from voice.recognition import SpeechRecognizer
from config import FALLBACK_REPLY

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    """States of the turn controller."""
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBED = "transcribed"
    COMPLETING = "completing"
    SYNTHESIZING = "synthesizing"
    SPEAKING = "speaking"
    ERROR = "error"


STATUS_MESSAGES = {
    TurnState.IDLE: "Click to start talking",
    TurnState.LISTENING: "Listening...",
    TurnState.TRANSCRIBED: "Processing...",
    TurnState.COMPLETING: "Thinking...",
    TurnState.SYNTHESIZING: "Preparing voice...",
    TurnState.SPEAKING: "Speaking...",
    TurnState.ERROR: "Error processing transcript",
}


class TurnController:
    """Orchestrates capture, completion, synthesis and playback for one user."""

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        api: VoiceAgentAPI,
        playback: StreamingPlaybackEngine,
        fallback_reply: str = FALLBACK_REPLY,
        auto_resume: bool = True,
        on_state_change: Optional[Callable[[TurnState, str], None]] = None
    ):
        """
        Initialize the controller.

        Args:
            recognizer: Speech recognition capability
            api: Client for the chat and tts endpoints
            playback: Engine that plays the synthesized audio stream
            fallback_reply: Spoken when nothing was heard or completion failed
            auto_resume: Re-enter LISTENING after each spoken reply
            on_state_change: Called with (state, status message) on every transition
        """
        self.recognizer = recognizer
        self.api = api
        self.playback = playback
        self.fallback_reply = fallback_reply
        self.auto_resume = auto_resume
        self.on_state_change = on_state_change

        self.state = TurnState.IDLE
        self.status = STATUS_MESSAGES[TurnState.IDLE]
        self.last_error: Optional[Exception] = None
        self._turn_task: Optional[asyncio.Task] = None
        self._settled = asyncio.Event()

        self.recognizer.on_result = self._on_result
        self.recognizer.on_error = self._on_recognition_error
        self.recognizer.on_end = self._on_recognition_end

    def start(self) -> bool:
        """
        Start listening for the next utterance.

        Returns:
            True if listening started, False if the command was ignored
            because a turn is in flight or the controller already listens
        """
        if self.state not in (TurnState.IDLE, TurnState.ERROR):
            logger.debug(f"Ignoring start command in state {self.state.value}")
            return False

        self._settled.clear()
        self.last_error = None
        self._set_state(TurnState.LISTENING)
        self.recognizer.start()
        return True

    def stop(self) -> None:
        """Stop listening; a turn already in flight runs to completion."""
        self.recognizer.stop()
        if self.state is TurnState.LISTENING:
            self._set_state(TurnState.IDLE)
            self._settled.set()

    async def wait_until_settled(self) -> TurnState:
        """Wait until the controller rests in IDLE or ERROR and return that state."""
        await self._settled.wait()
        return self.state

    async def wait_for_turn(self) -> None:
        """Wait for the turn in flight, if any, to finish."""
        if self._turn_task is not None:
            await self._turn_task

    def _on_result(self, transcript: str) -> None:
        if self.state is not TurnState.LISTENING:
            logger.debug("Ignoring recognition result outside LISTENING")
            return
        logger.info(f"Transcript: {transcript}")
        self._begin_turn(transcript)

    def _on_recognition_error(self, reason: str) -> None:
        if self.state is not TurnState.LISTENING:
            return
        logger.error(f"Speech recognition error: {reason}")
        self._begin_turn("")

    def _on_recognition_end(self) -> None:
        # Capture ended without a result or an error: nothing was heard
        if self.state is TurnState.LISTENING:
            self._set_state(TurnState.IDLE)
            self._settled.set()

    def _begin_turn(self, transcript: str) -> None:
        self._set_state(TurnState.TRANSCRIBED)
        self._turn_task = asyncio.create_task(self._run_turn(transcript))

    async def _run_turn(self, transcript: str) -> None:
        try:
            reply = await self._generate_reply(transcript)

            self._set_state(TurnState.SYNTHESIZING)
            async with self.api.synthesize(reply) as audio:
                await self.playback.play(
                    audio.chunks,
                    on_started=lambda: self._set_state(TurnState.SPEAKING)
                )
            logger.info("Finished playing audio")
        except GatewayError as e:
            self._fail(e, "Error generating speech")
            return
        except PlaybackError as e:
            self._fail(e, "Error playing audio")
            return
        except Exception as e:
            logger.error(f"Error processing transcript: {e}", exc_info=True)
            self._fail(e, STATUS_MESSAGES[TurnState.ERROR])
            return

        self._set_state(TurnState.IDLE)
        if self.auto_resume:
            # Automatically start listening again after the reply was spoken
            self.start()
        else:
            self._settled.set()

    async def _generate_reply(self, transcript: str) -> str:
        if not transcript.strip():
            logger.info("Empty transcript, using fallback reply")
            return self.fallback_reply

        self._set_state(TurnState.COMPLETING)
        try:
            reply = await self.api.chat(transcript)
        except GatewayError as e:
            logger.warning(f"Completion failed, using fallback reply: {e}")
            return self.fallback_reply

        return reply or self.fallback_reply

    def _fail(self, error: Exception, status: str) -> None:
        logger.error(f"Turn failed: {error}")
        self.last_error = error
        self._set_state(TurnState.ERROR, status)
        self._settled.set()

    def _set_state(self, state: TurnState, status: Optional[str] = None) -> None:
        self.state = state
        self.status = status or STATUS_MESSAGES[state]
        logger.debug(f"Turn state: {state.value} ({self.status})")
        if self.on_state_change is not None:
            self.on_state_change(state, self.status)
