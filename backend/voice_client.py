"""Command-line voice client for the Voice Agent API.

Listens, sends each transcript to the server, plays the spoken reply while it
streams in and listens again, until input ends or an error occurs.
"""
import argparse
import asyncio
import functools
import logging

from config import VOICE_API_URL, VOICE_USER_ID, AUDIO_PLAYER
from voice.api_client import VoiceAgentAPI
from voice.playback import FFplaySink, StreamingPlaybackEngine
from voice.recognition import KeyboardRecognizer, WhisperRecognizer
from voice.turn_controller import TurnController, TurnState

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Hands-free voice chat with the Voice Agent server")
    parser.add_argument("--api-url", default=VOICE_API_URL, help="Base URL of the Voice Agent API")
    parser.add_argument("--user-id", default=VOICE_USER_ID, help="Conversation identifier")
    parser.add_argument(
        "--recognizer",
        choices=["keyboard", "whisper"],
        default="keyboard",
        help="Type utterances or speak them into the microphone"
    )
    parser.add_argument("--player", default=AUDIO_PLAYER, help="ffplay-compatible audio player binary")
    return parser.parse_args(argv)


def print_status(state: TurnState, status: str) -> None:
    print(f"[{state.value}] {status}", flush=True)


async def run(args: argparse.Namespace) -> TurnState:
    """Run the conversation loop until the controller settles."""
    recognizer = WhisperRecognizer() if args.recognizer == "whisper" else KeyboardRecognizer()
    api = VoiceAgentAPI(base_url=args.api_url, user_id=args.user_id)
    playback = StreamingPlaybackEngine(functools.partial(FFplaySink, args.player))
    controller = TurnController(recognizer, api, playback, on_state_change=print_status)

    try:
        controller.start()
        state = await controller.wait_until_settled()
        if state is TurnState.ERROR:
            logger.error(f"Conversation stopped: {controller.last_error}")
        return state
    finally:
        controller.stop()
        await api.aclose()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        state = asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    return 1 if state is TurnState.ERROR else 0


if __name__ == "__main__":
    raise SystemExit(main())
