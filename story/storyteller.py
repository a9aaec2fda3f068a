"""
Story generation with transparent Gemini key rotation.

Storyteller.generate() turns a player command into narrative text. Each
provider attempt resolves to one of four outcomes:

    Success(text)     -> return the text
    SafetyBlocked     -> return the family-friendly deflection, keys untouched
    Rotate            -> mark the active key exhausted, pause, try the next key
    Abandon           -> return the generic apology

Provider failures never escape as exceptions; only NoCredentialsAvailable
(an empty pool) does.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union

from core.exceptions import (
    CredentialExhausted,
    EmptyResponse,
    NoCredentialsAvailable,
    SafetyBlocked as SafetyBlockedError,
)
from core.request_context import get_request_id
from core import metrics
from story.credential_pool import CredentialPool
from story.prompts import build_story_prompt

logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------
# Fixed request configuration
# ----------------------------------------------------------------------

# Only high-severity content is blocked; mature but non-explicit themes pass
SAFETY_SETTINGS: List[Dict[str, str]] = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]

GENERATION_CONFIG: Dict[str, Any] = {
    "temperature": 0.8,
    "topP": 0.95,
    "topK": 40,
    "maxOutputTokens": 1024,
}

DIAGNOSTIC_PROMPT = "Say 'test successful' if you can see this message."

# ----------------------------------------------------------------------
# User-facing fallback text
# ----------------------------------------------------------------------

SAFETY_DEFLECTION = (
    "I notice the conversation is heading in a direction that might not be appropriate. "
    "Could you please rephrase your request with more family-friendly language? "
    "I'm here to help create a fun adventure story we can both enjoy!"
)

GENERIC_FAILURE = (
    "Sorry, I'm having trouble continuing our adventure right now. "
    "Would you mind trying a different approach or wording? "
)
CAPACITY_SUFFIX = "Our storytellers are currently at capacity. Please try again later."
RETRY_SUFFIX = "I'm excited to see where your adventure goes next!"

SERVICE_UNAVAILABLE = (
    "I apologize, but our storytelling services are currently unavailable. "
    "Please try again later."
)

PROBE_SAFETY_MESSAGE = (
    "I notice the request might not be appropriate. "
    "Please try with more family-friendly content."
)

# ----------------------------------------------------------------------
# Error classification
# ----------------------------------------------------------------------

QUOTA_EXCEEDED = re.compile(r"(quota exceeded|resource exhausted|limit reached|usage limit)", re.I)
INVALID_KEY = re.compile(r"(api key not valid|invalid api key|authentication failed|unauthorized)", re.I)
PERMISSION_DENIED = re.compile(r"(permission denied|access denied)", re.I)
SAFETY_BLOCK = re.compile(
    r"(blocked due to SAFETY|safety settings|harmful|content policy|violates|inappropriate content)", re.I
)

KEY_FAILURE_STATUSES = {429, 401, 403}


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class SafetyBlocked:
    reason: str


@dataclass(frozen=True)
class Rotate:
    reason: str


@dataclass(frozen=True)
class Abandon:
    reason: str


AttemptOutcome = Union[Success, SafetyBlocked, Rotate, Abandon]


def _status_code(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_failure(exc: BaseException) -> AttemptOutcome:
    """Map a failed provider attempt onto SafetyBlocked, Rotate or Abandon."""
    message = str(exc) or type(exc).__name__

    if isinstance(exc, SafetyBlockedError) or SAFETY_BLOCK.search(message):
        return SafetyBlocked(message)

    if isinstance(exc, EmptyResponse):
        return Abandon(message)

    if (
        isinstance(exc, CredentialExhausted)
        or QUOTA_EXCEEDED.search(message)
        or INVALID_KEY.search(message)
        or PERMISSION_DENIED.search(message)
        or _status_code(exc) in KEY_FAILURE_STATUSES
    ):
        return Rotate(message)

    return Abandon(message)


class StoryProvider(Protocol):
    async def generate(self, secret: str, prompt: str, *, safety_settings=None,
                       generation_config=None) -> str:
        ...

    async def ping(self, secret: str) -> str:
        ...


class Storyteller:
    """
    Orchestrates one generation: lease a key, call Gemini, classify, rotate or give up.
    """

    def __init__(
        self,
        pool: CredentialPool,
        provider: StoryProvider,
        attempt_timeout: float = 30.0,
        rotation_delay: float = 0.5,
        diagnostic_probe: bool = True,
    ):
        self.pool = pool
        self.provider = provider
        self.attempt_timeout = attempt_timeout
        self.rotation_delay = rotation_delay
        self.diagnostic_probe = diagnostic_probe

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    async def _call_provider(self, secret: str, prompt: str) -> str:
        return await asyncio.wait_for(
            self.provider.generate(
                secret,
                prompt,
                safety_settings=SAFETY_SETTINGS,
                generation_config=GENERATION_CONFIG,
            ),
            timeout=self.attempt_timeout,
        )

    async def attempt(self, secret: str, prompt: str) -> AttemptOutcome:
        """Run one provider call and reduce it to an AttemptOutcome."""
        try:
            text = await self._call_provider(secret, prompt)
            if not text or not text.strip():
                raise EmptyResponse("Empty response from Gemini API")
        except asyncio.TimeoutError:
            return Abandon(f"Gemini call timed out after {self.attempt_timeout}s")
        except Exception as e:
            return classify_failure(e)
        return Success(text)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, command: str, context: str = "", genre: str = "") -> str:
        """
        Return narrative text for `command`. The caller rejects empty commands.

        :raises NoCredentialsAvailable: the pool is empty.
        """
        request_id = get_request_id()
        max_attempts = self.pool.total_count() + 1
        prompt = build_story_prompt(command, context, genre)
        drained_once = False

        logger.info(
            "Starting story generation",
            extra={
                "request_id": request_id,
                "command_preview": command[:20],
                "genre": genre or None,
                "available_keys": self.pool.available_count(),
                "total_keys": self.pool.total_count(),
            },
        )

        for attempt_no in range(1, max_attempts + 1):
            try:
                credential = await self.pool.lease_active()
            except NoCredentialsAvailable:
                metrics.record_generation("no_credentials")
                raise

            start = time.monotonic()
            outcome = await self.attempt(credential.secret, prompt)
            log_extra = {
                "request_id": request_id,
                "attempt": attempt_no,
                "max_attempts": max_attempts,
                "slot": credential.slot,
                "latency_sec": round(time.monotonic() - start, 3),
            }

            if isinstance(outcome, Success):
                metrics.record_attempt("success")
                metrics.record_generation("success")
                logger.info("Story generated", extra=log_extra)
                return outcome.text

            if isinstance(outcome, SafetyBlocked):
                metrics.record_attempt("safety_blocked")
                metrics.record_generation("safety_blocked")
                logger.warning("Content was blocked by Gemini's safety filters", extra=log_extra)
                return SAFETY_DEFLECTION

            if isinstance(outcome, Rotate):
                metrics.record_attempt("rotate")
                logger.warning(
                    "Key exhausted or invalid. Rotating to next key.",
                    extra={**log_extra, "error": outcome.reason},
                )
                await self.pool.mark_exhausted(credential)

                if self.pool.available_count() > 0:
                    await asyncio.sleep(self.rotation_delay)
                    continue
                if not drained_once:
                    # next lease resets the pool; allow one pass at it
                    drained_once = True
                    await asyncio.sleep(self.rotation_delay)
                    continue
                return await self._generic_failure(log_extra, outcome.reason)

            metrics.record_attempt("abandon")
            return await self._generic_failure(log_extra, outcome.reason)

        metrics.record_generation("unavailable")
        logger.error("Attempt budget exhausted", extra={"request_id": request_id, "max_attempts": max_attempts})
        return SERVICE_UNAVAILABLE

    async def _generic_failure(self, log_extra: Dict[str, Any], reason: str) -> str:
        metrics.record_generation("failed")
        logger.error("Error with Gemini API", extra={**log_extra, "error": reason})
        if self.diagnostic_probe:
            await self._run_diagnostic_probe()

        remaining = self.pool.available_count()
        return GENERIC_FAILURE + (CAPACITY_SUFFIX if remaining == 0 else RETRY_SUFFIX)

    async def _run_diagnostic_probe(self) -> None:
        """Trivial call with the first configured key, to tell key trouble from API trouble."""
        credentials = self.pool.credentials()
        if not credentials:
            return
        try:
            text = await asyncio.wait_for(
                self.provider.generate(credentials[0].secret, DIAGNOSTIC_PROMPT),
                timeout=self.attempt_timeout,
            )
            logger.info("Direct test of Gemini API succeeded", extra={"result": (text or "")[:60]})
        except asyncio.TimeoutError:
            logger.warning("Direct test of Gemini API timed out")
        except Exception as e:
            logger.warning("Direct test of Gemini API failed: %s", e)

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    async def validate_credentials(self) -> List[Dict[str, Any]]:
        """Try a trivial call with every configured key and report which ones work."""
        report = []
        for credential in self.pool.credentials():
            logger.info("Testing Gemini API key", extra={"slot": credential.slot, "label": credential.label})
            entry: Dict[str, Any] = {
                "keyNumber": credential.slot,
                "label": credential.label,
                "valid": True,
            }
            try:
                await asyncio.wait_for(self.provider.ping(credential.secret), timeout=self.attempt_timeout)
            except asyncio.TimeoutError:
                entry["valid"] = False
                entry["error"] = f"Timed out after {self.attempt_timeout}s"
            except Exception as e:
                entry["valid"] = False
                entry["error"] = str(e) or "Unknown error"
            report.append(entry)
        return report

    async def probe_key(self, secret: str, prompt: str = "") -> Dict[str, Any]:
        """Test an arbitrary key with the production safety settings."""
        test_prompt = prompt or "Respond with a short hello message"
        try:
            text = await asyncio.wait_for(
                self.provider.generate(
                    secret,
                    test_prompt,
                    safety_settings=SAFETY_SETTINGS,
                ),
                timeout=self.attempt_timeout,
            )
        except asyncio.TimeoutError:
            return {
                "success": False,
                "key_valid": False,
                "error": f"Timed out after {self.attempt_timeout}s",
            }
        except Exception as e:
            if isinstance(classify_failure(e), SafetyBlocked):
                # the key works, the content did not
                return {
                    "success": False,
                    "key_valid": True,
                    "error": "The API request was blocked by safety filters. Please try a different prompt.",
                    "friendly_message": PROBE_SAFETY_MESSAGE,
                    "details": "Content was blocked by safety filters",
                }
            return {
                "success": False,
                "key_valid": False,
                "error": str(e) or type(e).__name__,
            }
        return {"success": True, "key_valid": True, "response": text}
