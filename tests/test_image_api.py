import json

import httpx
import pytest

from core.exceptions import ImageGenerationError
from tools.image_api import HordeImageClient, PollSchedule, PROMPT_SUFFIX, build_payload

NO_WAIT = PollSchedule(initial_wait=0, max_polls=3, rate_limit_wait=0, error_wait=0, settle_delay=0)


def make_images(handler, api_key="horde-key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HordeImageClient(api_key=api_key, base_url="https://horde.test/api", client=client, schedule=NO_WAIT)


def horde_handler(checks, status=None, submit_status=202):
    """Submit -> job-1; each check pops the next poll answer; status returns one image."""
    checks = list(checks)
    seen = {"submits": [], "polls": 0}

    def handler(request):
        path = request.url.path
        if request.method == "POST" and path.endswith("/v2/generate/async"):
            seen["submits"].append((request.headers.get("apikey"), json.loads(request.content)))
            if submit_status >= 400:
                return httpx.Response(submit_status, text="nope")
            return httpx.Response(submit_status, json={"id": "job-1"})
        if "/v2/generate/check/" in path:
            seen["polls"] += 1
            item = checks.pop(0) if checks else {"done": False}
            if isinstance(item, int):
                return httpx.Response(item)
            return httpx.Response(200, json=item)
        if "/v2/generate/status/" in path:
            return httpx.Response(200, json=status if status is not None else
                                  {"generations": [{"img": "https://img.test/job-1.webp", "seed": "42"}]})
        return httpx.Response(404)

    return handler, seen


@pytest.mark.asyncio
async def test_generate_image_happy_path():
    handler, seen = horde_handler([{"done": False, "queue_position": 3}, {"done": True}])

    image = await make_images(handler).generate_image("a ruined castle", 640, 384)

    assert image.to_dict() == {"image": "https://img.test/job-1.webp", "seed": "42"}
    api_key, payload = seen["submits"][0]
    assert api_key == "horde-key"
    assert payload["prompt"] == "a ruined castle" + PROMPT_SUFFIX
    assert payload["params"]["width"] == 640 and payload["params"]["height"] == 384
    assert seen["polls"] == 2


@pytest.mark.asyncio
async def test_rate_limited_poll_still_counts_and_recovers():
    handler, seen = horde_handler([429, {"done": True}])

    image = await make_images(handler).generate_image("forest")

    assert image.image.endswith("job-1.webp")
    assert seen["polls"] == 2


@pytest.mark.asyncio
async def test_empty_prompt_is_rejected():
    handler, seen = horde_handler([])
    with pytest.raises(ImageGenerationError) as exc_info:
        await make_images(handler).generate_image("   ")
    assert exc_info.value.status_code == 400
    assert seen["submits"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status, message", [(429, "Rate limit"), (401, "Invalid API key")])
async def test_submit_errors_keep_their_status(status, message):
    handler, _ = horde_handler([], submit_status=status)
    with pytest.raises(ImageGenerationError, match=message) as exc_info:
        await make_images(handler).generate_image("forest")
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_poll_budget_exhausted_times_out():
    handler, seen = horde_handler([])
    with pytest.raises(ImageGenerationError, match="timed out"):
        await make_images(handler).generate_image("forest")
    assert seen["polls"] == NO_WAIT.max_polls


@pytest.mark.asyncio
async def test_faulted_job_fails():
    handler, _ = horde_handler([{"faulted": True}])
    with pytest.raises(ImageGenerationError, match="faulted"):
        await make_images(handler).generate_image("forest")


@pytest.mark.asyncio
async def test_finished_job_without_image():
    handler, _ = horde_handler([{"done": True}], status={"generations": []})
    with pytest.raises(ImageGenerationError, match="No image generated") as exc_info:
        await make_images(handler).generate_image("forest")
    assert exc_info.value.status_code == 500


def test_anonymous_key_is_default():
    assert HordeImageClient().api_key == "0000000000"


def test_payload_is_safe_for_work():
    payload = build_payload("  tower  ", 512, 512)
    assert payload["nsfw"] is False
    assert payload["prompt"].startswith("tower,")
