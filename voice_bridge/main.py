"""
Voice Bridge - FastAPI Application

Places an outbound Twilio call and keeps a spoken conversation going by
answering every Twilio webhook with TwiML built from the completion API's
reply.

Endpoints:
- POST /call/start       (first party UI)  -> JSON
- GET|POST /twilio/voice (Twilio, answer)  -> TwiML
- POST /twilio/gather    (Twilio, collect) -> TwiML

Twilio must always get 200 + valid TwiML back; every webhook error ends in a
spoken apology and a hangup.

Python 3.9 compatible.
"""

import logging
import math
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .completion_service import GREETING_SEED_PROMPT, CompletionClient, converse
from .config import Settings, load_environment, mask_secret
from .errors import (
    ConfigurationError,
    SessionNotFoundError,
    UpstreamError,
    ValidationError,
    VoiceBridgeError,
)
from .models import CallStartRequest, CallStartResponse, ErrorResponse
from .sessions import Session, SessionBackend, TokenSessionBackend, build_session_backend
from .twilio_service import TwilioService, validate_phone_e164
from .twiml import build_conversation_twiml, build_error_twiml

VERSION = "1.0.0"

ANSWER_PATH = "/twilio/voice"
COLLECT_PATH = "/twilio/gather"

CALL_STARTED_MESSAGE = "Call started. Answer the phone to begin the voice chat."

SESSION_NOT_PROVIDED_MESSAGE = "Session information was not provided."
SESSION_EXPIRED_MESSAGE = "The session has expired. Please start a new call."
GENERATION_FAILED_MESSAGE = "Something went wrong while generating a response. Ending the call."

REPEAT_PROMPT = "I didn't catch that. Please respond after the message."
NEXT_REPLY_PROMPT = "Share your next reply when you are ready."

NO_STORE_HEADERS = {"Cache-Control": "no-store"}

load_environment()
_settings = Settings.from_env()

logging.basicConfig(
    level=logging.DEBUG if _settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("twilio").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - report configuration, release clients."""
    settings: Settings = app.state.settings

    logger.info("=" * 60)
    logger.info("Initializing Voice Bridge")
    logger.info("=" * 60)
    logger.info(f"SESSION_MODE: {settings.session_mode}")
    logger.info(f"TWILIO_ACCOUNT_SID present: {bool(settings.twilio_account_sid)} ({mask_secret(settings.twilio_account_sid)})")
    logger.info(f"TWILIO_AUTH_TOKEN present: {bool(settings.twilio_auth_token)} ({mask_secret(settings.twilio_auth_token)})")
    logger.info(f"TWILIO_PHONE_NUMBER: {settings.twilio_phone_number or '(not set)'}")
    logger.info(f"POLLINATIONS_TEXT_MODEL: {settings.completion_model}")
    logger.info(f"POLLINATIONS_TOKEN present: {bool(settings.completion_token)} ({mask_secret(settings.completion_token)})")

    missing = settings.missing_twilio_settings()
    if missing:
        logger.warning(f"Twilio credentials are not fully configured ({', '.join(missing)}). Call start will fail.")
    if not settings.public_server_url:
        logger.warning("PUBLIC_SERVER_URL is not set. Callback URLs will use the request's base URL.")

    logger.info("=" * 60)

    yield

    await app.state.completion_client.close()
    logger.info("Shutting down Voice Bridge")


# ============================================================
# Helpers
# ============================================================

def _twiml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="text/xml", headers=NO_STORE_HEADERS)


def _error_json(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=NO_STORE_HEADERS)


def _base_url(request: Request) -> str:
    """Public base URL for Twilio callbacks.

    Uses PUBLIC_SERVER_URL when set, otherwise the URL the request came in on.
    """
    settings: Settings = request.app.state.settings
    if settings.public_server_url:
        return settings.public_server_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def _callback_url(request: Request, path: str, backend: SessionBackend, reference: str) -> str:
    query = urlencode({backend.reference_param: reference})
    return f"{_base_url(request)}{path}?{query}"


def _parse_confidence(raw) -> Optional[float]:
    """Confidence as a finite float, or None when missing/non-numeric."""
    if raw is None:
        return None
    try:
        value = float(str(raw))
    except ValueError:
        return None
    return value if math.isfinite(value) else None


async def _resolve_session(request: Request, backend: SessionBackend) -> Session:
    """Find the session referenced by a Twilio callback.

    The reference is read from the query string, then from the form body.
    """
    param = backend.reference_param
    reference = request.query_params.get(param)
    if not reference and request.method == "POST":
        form = await request.form()
        value = form.get(param)
        reference = str(value) if value else None

    if not reference:
        raise SessionNotFoundError(SESSION_NOT_PROVIDED_MESSAGE)

    session = backend.get(reference)
    if session is None:
        raise SessionNotFoundError(SESSION_EXPIRED_MESSAGE)
    return session


def _render_turn(
    request: Request,
    session: Session,
    reference: str,
    gather_prompt: Optional[str],
) -> str:
    settings: Settings = request.app.state.settings
    backend: SessionBackend = request.app.state.session_backend
    return build_conversation_twiml(
        session,
        _callback_url(request, COLLECT_PATH, backend, reference),
        gather_prompt=gather_prompt,
        tts_model=settings.tts_model,
        tts_base_url=settings.tts_base_url,
    )


# ============================================================
# Endpoints
# ============================================================

@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@router.post(
    "/call/start",
    response_model=CallStartResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def call_start(payload: CallStartRequest, request: Request, response: Response) -> CallStartResponse:
    """
    Start an outbound voice conversation.

    This endpoint:
    1. Validates the phone number (E.164) and Twilio configuration
    2. Seeds a session and fetches the greeting from the completion API
    3. Places the call with /twilio/voice as the answer webhook

    Errors:
        400: Missing or malformed phone number
        500: Twilio not configured, completion or Twilio failure
    """
    settings: Settings = request.app.state.settings
    backend: SessionBackend = request.app.state.session_backend
    completion_client: CompletionClient = request.app.state.completion_client
    twilio_service: TwilioService = request.app.state.twilio_service

    phone_number = (payload.phoneNumber or "").strip()
    logger.info(f"[START] Call start requested: phone={phone_number or '(missing)'}, voice={payload.voice}")

    if not phone_number:
        raise ValidationError("A destination phoneNumber is required.")
    if not validate_phone_e164(phone_number):
        logger.warning(f"[START] Invalid phone E.164: {phone_number}")
        raise ValidationError("Phone number must be in E.164 format (e.g. +15551234567).")

    missing = settings.missing_twilio_settings()
    if missing:
        raise ConfigurationError(f"Twilio credentials are missing on the server: {', '.join(missing)}")

    voice = (payload.voice or "").strip() or None
    session = backend.create(phone_number, voice)

    seed_prompt = (payload.initialPrompt or "").strip() or GREETING_SEED_PROMPT
    greeting = await converse(session, seed_prompt, completion_client, settings.max_history_pairs)
    logger.info(f"[START] Greeting ready for session {session.id}: {greeting[:80]}")

    reference = backend.put(session)
    voice_url = _callback_url(request, ANSWER_PATH, backend, reference)

    try:
        call_sid = await run_in_threadpool(twilio_service.start_call, phone_number, voice_url)
    except Exception:
        backend.delete(session)
        logger.warning(f"[START] Call not placed, session {session.id} discarded")
        raise
    logger.info(f"[START] Call initiated: session={session.id}, callSid={call_sid}")

    response.headers["Cache-Control"] = "no-store"
    token_mode = isinstance(backend, TokenSessionBackend)
    return CallStartResponse(
        message=CALL_STARTED_MESSAGE,
        callSid=call_sid,
        sessionId=None if token_mode else reference,
        sessionToken=reference if token_mode else None,
        gatherPrompt=session.gather_prompt,
        voice=session.voice,
    )


@router.api_route(ANSWER_PATH, methods=["GET", "POST"])
async def twilio_voice(request: Request):
    """
    Twilio voice webhook - called when the callee answers.

    Plays the greeting and listens for the first reply.
    """
    backend: SessionBackend = request.app.state.session_backend
    logger.info(f"[ANSWER] Voice webhook received ({request.method})")

    try:
        session = await _resolve_session(request, backend)
        twiml = _render_turn(request, session, backend.reference_for(session), session.gather_prompt)
        logger.info(f"[ANSWER] Greeting rendered for session {session.id}")
        return _twiml_response(twiml)

    except SessionNotFoundError as e:
        logger.warning(f"[ANSWER] {e}")
        return _twiml_response(build_error_twiml(str(e)))
    except Exception as e:
        logger.error(f"[ANSWER] Error rendering greeting: {type(e).__name__}: {e}", exc_info=True)
        return _twiml_response(build_error_twiml())


@router.post(COLLECT_PATH)
async def twilio_gather(request: Request):
    """
    Twilio gather webhook - processes the caller's speech.

    Handles:
    - No speech / low confidence: replay the current turn with a repeat prompt,
      no completion call and no history change
    - Speech: fetch the next reply, store it, render the next turn
    - Any failure: apologize and hang up
    """
    settings: Settings = request.app.state.settings
    backend: SessionBackend = request.app.state.session_backend
    completion_client: CompletionClient = request.app.state.completion_client

    try:
        session = await _resolve_session(request, backend)

        form = await request.form()
        speech_result = str(form.get("SpeechResult") or "").strip()
        confidence = _parse_confidence(form.get("Confidence"))

        logger.info(
            f"[COLLECT] Speech for session {session.id}: '{speech_result[:100]}', "
            f"confidence={confidence}"
        )

        low_confidence = confidence is not None and confidence < settings.low_confidence_threshold
        if not speech_result or low_confidence:
            logger.info(f"[COLLECT] No usable speech for session {session.id}, repeating turn")
            twiml = _render_turn(request, session, backend.reference_for(session), REPEAT_PROMPT)
            return _twiml_response(twiml)

        await converse(session, speech_result, completion_client, settings.max_history_pairs)
        reference = backend.put(session)
        twiml = _render_turn(request, session, reference, NEXT_REPLY_PROMPT)
        logger.info(f"[COLLECT] Reply rendered for session {session.id}")
        return _twiml_response(twiml)

    except SessionNotFoundError as e:
        logger.warning(f"[COLLECT] {e}")
        return _twiml_response(build_error_twiml(str(e)))
    except UpstreamError as e:
        logger.error(f"[COLLECT] Completion failed: {e}")
        return _twiml_response(build_error_twiml(GENERATION_FAILED_MESSAGE))
    except Exception as e:
        logger.error(f"[COLLECT] Error processing speech: {type(e).__name__}: {e}", exc_info=True)
        return _twiml_response(build_error_twiml(GENERATION_FAILED_MESSAGE))


# ============================================================
# App factory
# ============================================================

def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return _error_json(400, str(exc))

    @app.exception_handler(ConfigurationError)
    async def _configuration_error(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error: {exc}")
        return _error_json(500, str(exc))

    @app.exception_handler(UpstreamError)
    async def _upstream_error(request: Request, exc: UpstreamError):
        logger.error(f"Upstream error: {exc}")
        return _error_json(500, str(exc) or "Failed to start call.")

    @app.exception_handler(VoiceBridgeError)
    async def _voice_bridge_error(request: Request, exc: VoiceBridgeError):
        logger.error(f"Unhandled voice bridge error: {type(exc).__name__}: {exc}")
        return _error_json(500, str(exc) or "Internal server error.")

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request payload on {request.url.path}: {exc.errors()}")
        return _error_json(400, "Invalid JSON payload.")


def create_app(
    settings: Optional[Settings] = None,
    session_backend: Optional[SessionBackend] = None,
    completion_client: Optional[CompletionClient] = None,
    twilio_service: Optional[TwilioService] = None,
) -> FastAPI:
    """Build the application. Collaborators can be injected for tests."""
    if settings is None:
        settings = Settings.from_env()

    app = FastAPI(
        title="Voice Bridge",
        description="Outbound voice conversations between Twilio and a text-completion API",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_backend = (
        session_backend if session_backend is not None else build_session_backend(settings)
    )
    app.state.completion_client = (
        completion_client if completion_client is not None else CompletionClient.from_settings(settings)
    )
    app.state.twilio_service = (
        twilio_service if twilio_service is not None else TwilioService.from_settings(settings)
    )

    allowed_origin = settings.allowed_origin or "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[allowed_origin],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    _register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=_settings.port)
