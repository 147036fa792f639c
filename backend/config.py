"""Configuration management for the Voice Agent."""
import os
import logging
from dotenv import load_dotenv

from logger import setup_logging

# Load environment variables
load_dotenv()

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Conversation Store Configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
CONVERSATION_STORE = os.getenv("CONVERSATION_STORE", "supabase" if SUPABASE_URL else "memory")
CONVERSATIONS_TABLE = os.getenv("CONVERSATIONS_TABLE", "conversations")
MESSAGES_TABLE = os.getenv("MESSAGES_TABLE", "messages")
PERSIST_MODE = os.getenv("PERSIST_MODE", "background")  # "sync" or "background"

# Completion Configuration
LLM_BACKEND = os.getenv("LLM_BACKEND", "ollama")  # "ollama" or "groq"
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://127.0.0.1:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "gemma3:4b")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "80"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "120"))  # seconds

# Persona Configuration
PERSONA_PROMPT = os.getenv(
    "PERSONA_PROMPT",
    "Talk to me like a cheerful, teasing friend from the neighbourhood. Respond in 10 or less words."
)
PERSONA_ROLE = os.getenv("PERSONA_ROLE", "user")  # "user" keeps parity with stored histories, "system" is also accepted
HISTORY_MAX_MESSAGES = int(os.getenv("HISTORY_MAX_MESSAGES", "20"))  # 0 disables the cap

# Speech Synthesis Configuration
TTS_URL = os.getenv("TTS_URL", "https://www.openai.fm/api/generate")
TTS_VOICE = os.getenv("TTS_VOICE", "nova")
TTS_PROMPT = os.getenv(
    "TTS_PROMPT",
    "Identity: Friendly companion\n\n"
    "Affect: Funny and jolly\n\n"
    "Tone: Warm and welcoming, keeping the listener relaxed and entertained.\n\n"
    "Pronunciation: Clear and articulate, with light emphasis on playful phrases.\n\n"
    "Pause: Brief pauses between statements to keep a natural flow."
)
TTS_GENERATION = os.getenv("TTS_GENERATION", "b7e9eb3f-d888-438a-8353-0e8d137aa869")
TTS_CONTENT_TYPE = "audio/mpeg"
TTS_TIMEOUT = float(os.getenv("TTS_TIMEOUT", "60"))  # seconds

# Voice Client Configuration
VOICE_API_URL = os.getenv("VOICE_API_URL", f"http://localhost:{PORT}")
VOICE_USER_ID = os.getenv("VOICE_USER_ID", "Es1kF1h9a7")
FALLBACK_REPLY = os.getenv("FALLBACK_REPLY", "Sorry, I couldn't hear you.")
RECOGNITION_LANGUAGE = os.getenv("RECOGNITION_LANGUAGE", "en")
WHISPER_MODEL = os.getenv("WHISPER_MODEL", "base.en")
RECORD_SECONDS = float(os.getenv("RECORD_SECONDS", "5"))
AUDIO_PLAYER = os.getenv("AUDIO_PLAYER", "ffplay")
PLAYBACK_CHUNK_SIZE = int(os.getenv("PLAYBACK_CHUNK_SIZE", "4096"))  # bytes

# Logging Configuration
if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)
else:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def validate_config() -> None:
    """
    Validate settings that the server needs before it accepts requests.

    Raises:
        ValueError: If an enumerated setting is unknown or the credentials
            of a selected backend are missing
    """
    if CONVERSATION_STORE not in ("supabase", "memory"):
        raise ValueError(f"CONVERSATION_STORE must be 'supabase' or 'memory', got '{CONVERSATION_STORE}'")
    if CONVERSATION_STORE == "supabase" and (not SUPABASE_URL or not SUPABASE_KEY):
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set when CONVERSATION_STORE=supabase")
    if PERSIST_MODE not in ("sync", "background"):
        raise ValueError(f"PERSIST_MODE must be 'sync' or 'background', got '{PERSIST_MODE}'")
    if LLM_BACKEND not in ("ollama", "groq"):
        raise ValueError(f"LLM_BACKEND must be 'ollama' or 'groq', got '{LLM_BACKEND}'")
    if LLM_BACKEND == "groq" and not GROQ_API_KEY:
        raise ValueError("GROQ_API_KEY must be set when LLM_BACKEND=groq")
    if PERSONA_ROLE not in ("user", "system"):
        raise ValueError(f"PERSONA_ROLE must be 'user' or 'system', got '{PERSONA_ROLE}'")
    if HISTORY_MAX_MESSAGES < 0:
        raise ValueError("HISTORY_MAX_MESSAGES cannot be negative")
