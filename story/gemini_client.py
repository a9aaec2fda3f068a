# NOTE:
# This client talks to the Gemini REST API directly over the shared httpx
# client. It knows nothing about key rotation: callers pass the key for
# every call and classify the raised errors themselves (see storyteller.py).
import time
import logging
from typing import Any, Dict, List, Optional

import httpx

from core.http_client import get_client
from core.exceptions import ProviderHTTPError, SafetyBlocked, TransientProviderError
from core.metrics import PROVIDER_LATENCY

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# finishReason / blockReason values that mean "refused by content policy"
BLOCK_REASONS = {"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


def _error_message(resp: httpx.Response) -> str:
    """Pull `error.message` out of a Gemini error body, falling back to raw text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or body["error"])
    return resp.text[:200]


def extract_text(data: Dict[str, Any]) -> str:
    """
    Return the text of the first candidate.

    :raises SafetyBlocked: the prompt or the answer was blocked.
    """
    feedback = data.get("promptFeedback") or {}
    block_reason = feedback.get("blockReason")
    if block_reason:
        raise SafetyBlocked(f"Response was blocked due to {block_reason}")

    candidates = data.get("candidates") or []
    if not candidates:
        return ""

    first = candidates[0]
    finish_reason = first.get("finishReason")
    if finish_reason in BLOCK_REASONS:
        raise SafetyBlocked(f"Response was blocked due to {finish_reason}")

    parts = (first.get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiClient:
    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        return self._client or get_client()

    async def generate(
        self,
        secret: str,
        prompt: str,
        *,
        safety_settings: Optional[List[Dict[str, str]]] = None,
        generation_config: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Call generateContent with the given key and return the generated text
        (possibly empty).

        :raises ProviderHTTPError: non-2xx answer, status_code set.
        :raises SafetyBlocked: content policy refusal.
        :raises TransientProviderError: network failure or unreadable body.
        """
        url = f"{self.base_url}/models/{model or self.model}:generateContent"
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if safety_settings:
            payload["safetySettings"] = safety_settings
        if generation_config:
            payload["generationConfig"] = generation_config

        start = time.monotonic()
        try:
            resp = await self._http().post(
                url,
                json=payload,
                headers={"x-goog-api-key": secret},
            )
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Gemini request failed: {type(e).__name__}: {e}") from e
        finally:
            PROVIDER_LATENCY.observe(time.monotonic() - start)

        if resp.status_code >= 400:
            message = _error_message(resp)
            raise ProviderHTTPError(
                f"[{resp.status_code} {resp.reason_phrase}] {message}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise TransientProviderError("Malformed Gemini response: body is not JSON") from e

        return extract_text(data)

    async def ping(self, secret: str) -> str:
        """Trivial call used to check that a key works."""
        return await self.generate(
            secret,
            "Say hello",
            generation_config={"maxOutputTokens": 16},
        )
