"""
Stable Horde image tool: submit an async generation job, poll until done
with growing waits, then fetch the finished image.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.config import ANONYMOUS_HORDE_KEY
from core.exceptions import ImageGenerationError
from core.http_client import get_client
from core.metrics import IMAGE_REQUESTS, IMAGE_POLLS
from core.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://stablehorde.net/api"

PROMPT_SUFFIX = ", cinematic lighting, detailed, realistic"
NEGATIVE_PROMPT = (
    "(text), (writing), (letters), (numbers), (words), (font), (type), (typography), "
    "watermark, caption, label, signature, logo, (worst quality), (low quality), (blurry), artifacts"
)

# queue position above which waits grow faster
DEEP_QUEUE = 50


@dataclass
class GeneratedImage:
    image: str      # URL or base64 payload as returned by the horde
    seed: Any

    def to_dict(self) -> dict:
        return {"image": self.image, "seed": self.seed}


@dataclass
class PollSchedule:
    initial_wait: float = 6.0
    growth: float = 1.2
    deep_queue_growth: float = 1.5
    max_wait: float = 15.0
    max_polls: int = 30
    rate_limit_wait: float = 15.0
    error_wait: float = 10.0
    settle_delay: float = 2.0


def build_payload(prompt: str, width: int, height: int) -> Dict[str, Any]:
    return {
        "prompt": f"{prompt.strip()}{PROMPT_SUFFIX}",
        "negative_prompt": NEGATIVE_PROMPT,
        "params": {
            "width": int(width),
            "height": int(height),
            "steps": 30,
            "cfg_scale": 7.5,
            "sampler_name": "k_euler_a",
            "n": 1,
        },
        "nsfw": False,
        "models": ["stable_diffusion"],
        "r2": False,
    }


class HordeImageClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        schedule: Optional[PollSchedule] = None,
    ):
        self.api_key = api_key or ANONYMOUS_HORDE_KEY
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.schedule = schedule or PollSchedule()

    def _http(self) -> httpx.AsyncClient:
        return self._client or get_client()

    @property
    def _headers(self) -> Dict[str, str]:
        return {"apikey": self.api_key}

    async def generate_image(self, prompt: str, width: int = 512, height: int = 512) -> GeneratedImage:
        """
        :raises ImageGenerationError: with the HTTP status the caller should answer with.
        """
        if not prompt or not prompt.strip():
            raise ImageGenerationError("Prompt is required", status_code=400)

        if self.api_key == ANONYMOUS_HORDE_KEY:
            logger.warning("Using anonymous Stable Horde key - expect rate limits")

        logger.info("Generating image", extra={"prompt_preview": prompt[:100]})
        try:
            job_id = await self._submit(prompt, width, height)
            await self._wait_until_done(job_id)
            await asyncio.sleep(self.schedule.settle_delay)
            image = await self._fetch_result(job_id)
        except ImageGenerationError:
            IMAGE_REQUESTS.labels(status="error").inc()
            raise

        IMAGE_REQUESTS.labels(status="success").inc()
        return image

    async def _submit(self, prompt: str, width: int, height: int) -> str:
        try:
            resp = await self._http().post(
                f"{self.base_url}/v2/generate/async",
                json=build_payload(prompt, width, height),
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise ImageGenerationError(f"Request failed: {type(e).__name__}") from e

        if resp.status_code >= 400:
            logger.error("Failed to submit image job", extra={"status_code": resp.status_code,
                                                              "error": resp.text[:200]})
            if resp.status_code == 429:
                raise ImageGenerationError("Rate limit hit - try again later", status_code=429)
            if resp.status_code == 401:
                raise ImageGenerationError("Invalid API key", status_code=401)
            raise ImageGenerationError(f"Request failed: {resp.text[:200]}", status_code=resp.status_code)

        try:
            job_id = (resp.json() or {}).get("id")
        except ValueError:
            job_id = None
        if not job_id:
            raise ImageGenerationError("No generation ID received")
        logger.info("Image generation started", extra={"job_id": job_id})
        return job_id

    async def _wait_until_done(self, job_id: str) -> None:
        s = self.schedule
        wait = s.initial_wait

        for poll in range(1, s.max_polls + 1):
            await asyncio.sleep(min(wait, s.max_wait))
            wait *= s.growth

            try:
                resp = await self._http().get(
                    f"{self.base_url}/v2/generate/check/{job_id}",
                    headers=self._headers,
                )
            except httpx.HTTPError as e:
                logger.warning("Poll error", extra={"job_id": job_id, "poll": poll,
                                                    "error_type": type(e).__name__})
                await asyncio.sleep(s.error_wait)
                continue

            if resp.status_code == 429:
                logger.info("Rate limited while polling, waiting", extra={"job_id": job_id})
                await asyncio.sleep(s.rate_limit_wait)
                continue

            if resp.status_code >= 400:
                logger.warning("Status check failed", extra={"job_id": job_id, "status_code": resp.status_code})
                continue

            try:
                status = resp.json() or {}
            except ValueError:
                logger.warning("Unreadable status body", extra={"job_id": job_id})
                continue

            if status.get("faulted"):
                raise ImageGenerationError("Image generation faulted")
            if status.get("done"):
                IMAGE_POLLS.observe(poll)
                logger.info("Image generation complete", extra={"job_id": job_id, "polls": poll})
                return

            queue_position = status.get("queue_position") or 0
            logger.info(
                "Image still queued",
                extra={"job_id": job_id, "poll": poll, "queue_position": queue_position,
                       "wait_time": status.get("wait_time")},
            )
            if queue_position > DEEP_QUEUE:
                wait = min(wait * s.deep_queue_growth, s.max_wait)

        IMAGE_POLLS.observe(s.max_polls)
        logger.error("Image generation timed out", extra={"job_id": job_id, "max_polls": s.max_polls})
        raise ImageGenerationError("Generation timed out")

    async def _fetch_result(self, job_id: str) -> GeneratedImage:
        async def _get():
            resp = await self._http().get(
                f"{self.base_url}/v2/generate/status/{job_id}",
                headers=self._headers,
            )
            resp.raise_for_status()
            return resp.json()

        try:
            data = await retry_async(_get, config=RetryConfig(retries=3, base_delay=1.0, max_backoff=5.0))
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to get image result", extra={"job_id": job_id, "error": str(e)})
            raise ImageGenerationError("Failed to get result") from e

        generations = (data or {}).get("generations") or []
        image = generations[0] if generations else None
        if not image or not image.get("img"):
            raise ImageGenerationError("No image generated")
        return GeneratedImage(image=image["img"], seed=image.get("seed"))
