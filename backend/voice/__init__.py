"""Voice client: speech capture, turn taking and streaming playback."""
from .recognition import SpeechRecognizer, KeyboardRecognizer, WhisperRecognizer
from .playback import AudioSink, FFplaySink, PlaybackEvent, StreamingPlaybackEngine
from .api_client import AudioStream, VoiceAgentAPI
from .turn_controller import TurnController, TurnState

__all__ = [
    'SpeechRecognizer', 'KeyboardRecognizer', 'WhisperRecognizer',
    'AudioSink', 'FFplaySink', 'PlaybackEvent', 'StreamingPlaybackEngine',
    'AudioStream', 'VoiceAgentAPI',
    'TurnController', 'TurnState',
]
