# api/app.py
# NOTE:
# Routes are a thin JSON pass-through over the story services. The
# storyteller already turns every provider failure into narrative text;
# only an empty key pool (NoCredentialsAvailable) or an unexpected error
# reaches the handlers here, and those become {error, details} with 500.
# NOTE:
# The admin routes (key-status, exhaust-key, notify, test-gemini) carry no
# authentication; put them behind the reverse proxy's auth in production.

import uuid
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from core.config import Settings, load_settings
from core.exceptions import ImageGenerationError, NotificationDeliveryFailure
from core.health import full_health_check
from core.http_client import close_client
from core.logging_config import setup_logging
from core.request_context import set_request_id
from core import metrics
from story.content_filter import ContentFilter, CONTENT_WARNING_MESSAGE
from story.credential_pool import CredentialPool
from story.gemini_client import GeminiClient
from story.storyteller import Storyteller
from tools.image_api import HordeImageClient
from tools.notifier import WebhookNotifier

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    pool: CredentialPool
    storyteller: Storyteller
    notifier: WebhookNotifier
    content_filter: ContentFilter
    images: HordeImageClient


def build_services(settings: Settings) -> Services:
    """Construct the process-wide service graph. Called once from lifespan()."""
    notifier = WebhookNotifier(settings.notify_webhook_url, recipient=settings.notify_recipient)
    pool = CredentialPool.from_settings(settings, notifier=notifier)
    storyteller = Storyteller(
        pool,
        GeminiClient(model=settings.gemini_model, base_url=settings.gemini_base_url),
        attempt_timeout=settings.gemini_timeout,
        rotation_delay=settings.key_rotation_delay,
        diagnostic_probe=settings.diagnostic_probe,
    )
    return Services(
        settings=settings,
        pool=pool,
        storyteller=storyteller,
        notifier=notifier,
        content_filter=ContentFilter(),
        images=HordeImageClient(api_key=settings.horde_api_key, base_url=settings.horde_base_url),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    setup_logging(settings.log_level)

    app.state.services = build_services(settings)
    logger.info("QuestGPT story engine started")

    yield

    # let in-flight low-key alerts finish before the HTTP client goes away
    try:
        await app.state.services.pool.wait_for_background()
    except Exception:
        logger.exception("low_key_notice_drain_failed")
    await close_client()


app = FastAPI(
    title="QuestGPT Story Engine",
    lifespan=lifespan
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Generate a unique request ID and store it in the context."""
    request_id = str(uuid.uuid4())
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def get_services(request: Request) -> Services:
    return request.app.state.services


def error_response(error: str, details: Optional[str] = None, status_code: int = 500) -> JSONResponse:
    content = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


# ----------------------------------------------------------------------
# Game routes
# ----------------------------------------------------------------------

class GenerateRequest(BaseModel):
    command: Optional[str] = None
    context: Optional[str] = ""
    genre: Optional[str] = ""


@app.post("/api/game/generate")
async def generate(req: GenerateRequest, request: Request):
    services = get_services(request)
    command = (req.command or "").strip()
    if not command:
        return error_response("Command is required", status_code=400)

    content_filter = services.content_filter
    if content_filter.contains_prohibited_content(command):
        metrics.record_generation("filtered")
        return {"response": CONTENT_WARNING_MESSAGE}

    logger.info("Generate route received command", extra={"genre": req.genre or None})

    try:
        text = await services.storyteller.generate(command, req.context or "", req.genre or "")
    except Exception as e:
        logger.exception("Error generating AI response")
        return error_response("Failed to generate response", str(e))

    if content_filter.is_educational_response(text):
        return {"response": text}
    return {"response": content_filter.filter_prohibited_content(text)}


# ----------------------------------------------------------------------
# Admin routes
# ----------------------------------------------------------------------

@app.get("/api/game/key-status")
async def key_status(request: Request, validate: bool = False):
    services = get_services(request)
    try:
        status = services.pool.status()
        if validate:
            status["keyValidations"] = await services.storyteller.validate_credentials()
        return status
    except Exception as e:
        logger.exception("Error getting key status")
        return error_response("Failed to get key status", str(e))


@app.post("/api/game/exhaust-key")
async def exhaust_key(request: Request):
    pool = get_services(request).pool
    try:
        old_slot = pool.current_slot()
        await pool.mark_active_exhausted()
        new_slot = pool.current_slot()
        return {
            "success": True,
            "message": f"Key #{old_slot} marked as exhausted. Now using key #{new_slot}.",
            "availableKeys": pool.available_count(),
            "totalKeys": pool.total_count(),
        }
    except Exception as e:
        logger.exception("Error exhausting key")
        return error_response("Failed to exhaust key", str(e))


@app.post("/api/game/notify")
async def notify(request: Request):
    notifier = get_services(request).notifier
    try:
        await notifier.send_test()
    except NotificationDeliveryFailure as e:
        logger.error("Error sending test notification: %s", e)
        return error_response("Failed to send test notification", str(e))
    return {"success": True, "message": "Test notification sent successfully"}


class KeyProbeRequest(BaseModel):
    key: Optional[str] = None
    prompt: Optional[str] = None


@app.post("/api/game/test-gemini")
async def test_gemini(req: KeyProbeRequest, request: Request):
    if not req.key:
        return error_response("API key is required", status_code=400)
    logger.info("Testing Gemini API key", extra={"prompt_preview": (req.prompt or "")[:50]})
    return await get_services(request).storyteller.probe_key(req.key, req.prompt or "")


# ----------------------------------------------------------------------
# Images
# ----------------------------------------------------------------------

class ImageRequest(BaseModel):
    prompt: Optional[str] = None
    width: int = 512
    height: int = 512


@app.post("/api/image")
async def image(req: ImageRequest, request: Request):
    images = get_services(request).images
    try:
        result = await images.generate_image(req.prompt or "", req.width, req.height)
    except ImageGenerationError as e:
        return error_response(str(e), status_code=e.status_code)
    except Exception:
        logger.exception("Image route error")
        return error_response("Server error")
    return result.to_dict()


# ----------------------------------------------------------------------
# Ops
# ----------------------------------------------------------------------

@app.get("/health/live")
async def liveness():
    """Kubernetes liveness probe."""
    return {"status": "alive"}


@app.get("/health/ready")
async def readiness(request: Request):
    """Kubernetes readiness probe."""
    health = await full_health_check(get_services(request))
    if health["status"] != "ok":
        return Response(
            content=json.dumps(health),
            status_code=503,
            media_type="application/json"
        )
    return health


@app.get("/health")
async def health(request: Request):
    return await full_health_check(get_services(request))


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
