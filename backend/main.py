"""Main entry point for the Voice Agent API."""
import logging
import time
from contextlib import asynccontextmanager
from typing import List

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from config import PORT, CORS_ORIGINS, CONVERSATION_STORE, PERSIST_MODE, LLM_BACKEND, validate_config
from errors import ValidationError, GatewayError, PersistenceError
from models.api import ChatRequest, ChatResponse, TTSRequest, ErrorResponse
from models.conversation import Conversation, Message, Turn
from services.conversation_store import ConversationStore, create_conversation_store
from services.completion_gateway import CompletionGateway, create_completion_backend
from services.speech_gateway import SpeechSynthesisGateway

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize services (will be done on startup)
conversation_store: ConversationStore = None
completion_gateway: CompletionGateway = None
speech_gateway: SpeechSynthesisGateway = None
persist_mode: str = PERSIST_MODE


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup and release their connections on shutdown."""
    global conversation_store, completion_gateway, speech_gateway

    logger.info("Initializing Voice Agent services...")

    try:
        validate_config()

        conversation_store = create_conversation_store(CONVERSATION_STORE)
        logger.info(f"Initialized conversation store ({CONVERSATION_STORE}, persist_mode={persist_mode})")

        completion_gateway = CompletionGateway(create_completion_backend(LLM_BACKEND))
        logger.info("Initialized CompletionGateway")

        speech_gateway = SpeechSynthesisGateway()
        logger.info("Initialized SpeechSynthesisGateway")

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    yield

    completion_gateway.close()
    await speech_gateway.aclose()
    logger.info("Voice Agent services shut down")


# Initialize FastAPI app
app = FastAPI(
    title="Voice Agent",
    description="Voice-driven chat backend: conversation history, language model and speech synthesis proxy",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": exc.error.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Malformed request body"})


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Voice Agent API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "voice-agent",
        "version": "1.0.0"
    }


@app.post(
    "/api/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
def chat_endpoint(request: ChatRequest, background_tasks: BackgroundTasks):
    """
    Generate the assistant reply to one user message.

    Loads the user's conversation, asks the language model for a reply and
    appends the (user, assistant) pair to the conversation. Persistence
    failures are logged and never fail the request.

    Args:
        request: ChatRequest with message, userId and optional systemPrompt
        background_tasks: Used to persist the turn after responding in
            background persist mode

    Returns:
        ChatResponse with the reply, or a 500 error body if generation failed

    Raises:
        ValidationError: If message or userId is missing
    """
    start_time = time.time()

    # Step 1: Validate request
    if not request.message:
        raise ValidationError("No message provided")
    if not request.user_id:
        raise ValidationError("No userId provided")

    logger.info(f"Processing chat message for user {request.user_id}: {request.message[:100]}")

    # Step 2: Find or create conversation
    try:
        conversation = conversation_store.find_or_create(request.user_id)
    except PersistenceError as e:
        logger.error(f"Conversation lookup failed, continuing without history: {e}")
        conversation = Conversation(user_id=request.user_id)

    # Step 3: Generate reply
    try:
        reply = completion_gateway.complete(
            history=list(conversation.messages),
            new_user_text=request.message,
            system_prompt=request.system_prompt
        )
    except GatewayError as e:
        logger.error(f"Chat error: {e.error.code}: {e.error.message}")
        return JSONResponse(status_code=500, content={"error": "Failed to generate response"})
    except Exception as e:
        logger.error(f"Unexpected chat error: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to generate response"})

    # An empty assistant message is never stored
    if not reply or not reply.strip():
        logger.error(f"Chat error: model returned an empty reply for user {request.user_id}")
        return JSONResponse(status_code=500, content={"error": "Failed to generate response"})

    # Step 4: Save messages
    new_messages = Turn(transcript=request.message, reply=reply).to_messages()
    if persist_mode == "background":
        background_tasks.add_task(_persist_turn, conversation, new_messages)
    else:
        _persist_turn(conversation, new_messages)

    total_latency_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Chat message processed successfully in {total_latency_ms}ms")
    return ChatResponse(response=reply)


@app.post("/api/tts", responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def tts_endpoint(request: TTSRequest):
    """
    Synthesize speech and stream the audio back while it is being generated.

    Args:
        request: TTSRequest with the text to speak

    Returns:
        StreamingResponse relaying the synthesis backend's bytes, or a 500
        error body if synthesis could not be started

    Raises:
        ValidationError: If text is missing
    """
    if not request.text:
        raise ValidationError("No text provided")

    try:
        stream = await speech_gateway.synthesize(request.text)
    except GatewayError as e:
        logger.error(f"TTS Error: {e.error.code}: {e.error.message}")
        return JSONResponse(status_code=500, content={"error": "Failed to generate speech"})

    return StreamingResponse(
        stream.iter_bytes(),
        media_type=stream.content_type,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no"  # Disable buffering in nginx
        },
        background=BackgroundTask(stream.aclose)
    )


def _persist_turn(conversation: Conversation, messages: List[Message]) -> None:
    """Append a completed turn to the store, logging instead of raising on failure."""
    try:
        conversation_store.append(conversation, messages)
    except PersistenceError as e:
        logger.error(
            f"Failed to persist turn for user {conversation.user_id}: {e}",
            extra={"error_code": e.error.code, "error_details": e.error.details}
        )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Voice Agent API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
