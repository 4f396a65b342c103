"""
FastAPI application for the Twilio <-> ElevenLabs relay.

Provides:
- Call placement endpoint (Twilio REST API)
- TwiML webhook that connects answered calls to a Media Stream
- WebSocket endpoint for Twilio Media Streams
- Health check endpoints
"""

# IMPORTANT: Configure logging FIRST, before any other imports
# This ensures verbose libraries don't spam debug logs
import logging

# Reduce noise from verbose libraries - set this BEFORE they're imported
logging.getLogger("websockets").setLevel(logging.WARNING)
logging.getLogger("websockets.client").setLevel(logging.WARNING)
logging.getLogger("websockets.server").setLevel(logging.WARNING)
logging.getLogger("python_multipart").setLevel(logging.WARNING)
logging.getLogger("python_multipart.multipart").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("twilio.http_client").setLevel(logging.WARNING)

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from twilio.rest import Client

from ..utils.config import get_settings
from .bridge import RelayBridge
from .calls import TwilioConfig, build_twilio_client, get_twilio_config, place_call
from .errors import CallPlacementError
from .session import FIRST_MESSAGE_PARAMETER, PROMPT_PARAMETER
from .twilio_stream import TwilioStreamAdapter
from .twiml import build_connect_twiml, media_stream_url_for

settings = get_settings()

# Now configure logging properly
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Server running on http://{settings.host}:{settings.port}")
    logger.info(f"Public URL: {settings.public_base_url}")
    missing = settings.missing_twilio_credentials()
    if missing:
        logger.warning(f"Call placement disabled, missing: {', '.join(missing)}")
    yield
    logger.info("Shutting down relay server...")


app = FastAPI(
    title="Twilio ElevenLabs Relay",
    description="Bridges Twilio phone calls to an ElevenLabs conversational agent",
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Health Check Endpoints
# =============================================================================


@app.get("/")
async def root():
    """Root endpoint - basic health check."""
    return {
        "service": "Twilio ElevenLabs Relay",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Detailed health check endpoint."""
    return {
        "status": "healthy",
        "config": {
            "agent_id": settings.elevenlabs_agent_id,
            "public_url": settings.public_base_url,
            "call_placement": not settings.missing_twilio_credentials(),
        },
    }


# =============================================================================
# Call Placement
# =============================================================================


class MakeCallRequest(BaseModel):
    """Body of a call placement request."""

    model_config = ConfigDict(populate_by_name=True)

    to: Optional[str] = Field(default=None, description="Destination number (E.164)")
    prompt: Optional[str] = Field(default=None, description="Agent prompt for this call")
    initial_script: Optional[str] = Field(
        default=None,
        alias="initialScript",
        description="First message the agent says",
    )


def get_twilio_cfg() -> Optional[TwilioConfig]:
    try:
        return get_twilio_config(settings)
    except ValueError as e:
        logger.warning(f"Call placement unavailable: {e}")
        return None


def get_twilio_client(cfg: Optional[TwilioConfig] = Depends(get_twilio_cfg)) -> Optional[Client]:
    return build_twilio_client(cfg) if cfg else None


@app.post("/make-call")
def make_call(
    payload: MakeCallRequest,
    cfg: Optional[TwilioConfig] = Depends(get_twilio_cfg),
    client: Optional[Client] = Depends(get_twilio_client),
):
    """Place an outbound call that is bridged to the agent once answered."""
    if cfg is None or client is None:
        missing = ", ".join(settings.missing_twilio_credentials())
        return JSONResponse(
            status_code=503,
            content={"error": f"Twilio is not configured, missing: {missing}"},
        )

    if not payload.to:
        return JSONResponse(
            status_code=400,
            content={"error": 'Phone number ("to") is required'},
        )

    try:
        call_sid = place_call(client, cfg, payload.to, payload.prompt, payload.initial_script)
    except CallPlacementError as e:
        return JSONResponse(status_code=500, content={"error": e.detail})

    return {"call_sid": call_sid, "message": "Call initiated successfully"}


# =============================================================================
# Twilio Webhook Endpoints
# =============================================================================


@app.api_route("/connect", methods=["GET", "POST"])
async def connect(request: Request):
    """
    TwiML webhook for answered calls.

    Speaks a short connecting message, then opens a bidirectional Media
    Stream to /media-stream carrying the prompt and opening line as custom
    parameters.
    """
    stream_url = media_stream_url_for(request.url.hostname)
    twiml = build_connect_twiml(
        stream_url,
        {
            PROMPT_PARAMETER: request.query_params.get(PROMPT_PARAMETER),
            FIRST_MESSAGE_PARAMETER: request.query_params.get(FIRST_MESSAGE_PARAMETER),
        },
        say_text=settings.connecting_message,
    )

    return Response(content=twiml, media_type="text/xml")


# =============================================================================
# WebSocket Endpoint for Media Streams
# =============================================================================


@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket):
    """
    WebSocket endpoint for Twilio Media Streams.

    Each connection gets its own RelayBridge; the bridge owns both sockets
    and the session for the lifetime of the call.
    """
    await websocket.accept()
    logger.info("[Twilio] Connected")

    bridge = RelayBridge.from_settings(TwilioStreamAdapter(websocket), settings)
    try:
        await bridge.run()
    except Exception as e:
        logger.error(f"Media stream error for {bridge.call_leg_id or 'unknown'}: {e}")


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(
        "src.voice.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
