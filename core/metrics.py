# core/metrics.py

import logging
from prometheus_client import Counter, Histogram, Gauge

logger = logging.getLogger(__name__)

# ----------------------------
# Story Generation
# ----------------------------

# One increment per storyteller.generate() call
GENERATION_REQUESTS = Counter(
    "story_generation_requests_total",
    "Total story generation requests",
    ["outcome"]  # success, safety_blocked, failed, unavailable, filtered
)

# One increment per provider attempt inside the rotation loop
PROVIDER_ATTEMPTS = Counter(
    "gemini_attempts_total",
    "Total Gemini provider attempts",
    ["outcome"]  # success, safety_blocked, rotate, abandon
)

PROVIDER_LATENCY = Histogram(
    "gemini_request_latency_seconds",
    "Latency of a single Gemini generateContent call"
)

# ----------------------------
# Credential Pool
# ----------------------------

KEY_ROTATIONS = Counter(
    "gemini_key_rotations_total",
    "Times the active key was marked exhausted"
)

KEY_POOL_RESETS = Counter(
    "gemini_key_pool_resets_total",
    "Times every key was exhausted and the pool was reset"
)

KEYS_AVAILABLE = Gauge(
    "gemini_keys_available",
    "Number of non-exhausted Gemini keys"
)

LOW_KEY_NOTICES = Counter(
    "low_key_notices_total",
    "Low-key alert delivery attempts",
    ["status"]  # sent, failed
)

# ----------------------------
# Image Generation
# ----------------------------

IMAGE_REQUESTS = Counter(
    "image_requests_total",
    "Total image generation requests",
    ["status"]  # success, error
)

IMAGE_POLLS = Histogram(
    "image_polls_per_request",
    "Number of status polls used per image request",
    buckets=(1, 2, 3, 5, 8, 13, 21, 30)
)


def record_generation(outcome: str) -> None:
    GENERATION_REQUESTS.labels(outcome=outcome).inc()


def record_attempt(outcome: str) -> None:
    PROVIDER_ATTEMPTS.labels(outcome=outcome).inc()


def record_notice(status: str) -> None:
    LOW_KEY_NOTICES.labels(status=status).inc()


def set_keys_available(count: int) -> None:
    """Update the available-keys gauge. Never raises to the caller."""
    try:
        KEYS_AVAILABLE.set(count)
    except Exception as e:
        logger.warning("metrics.set_keys_available failed: %s", e)
