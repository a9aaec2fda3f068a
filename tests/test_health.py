import pytest
from types import SimpleNamespace

from core.health import full_health_check
from fakes import FakeNotifier, make_keys
from story.credential_pool import CredentialPool


@pytest.mark.asyncio
async def test_health_ok():
    services = SimpleNamespace(pool=CredentialPool(make_keys(2)), notifier=FakeNotifier())

    result = await full_health_check(services)

    assert result["status"] == "ok"
    assert result["dependencies"] == {"gemini_keys": "ok", "notifier": "ok"}
    assert result["keys"] == {"totalKeys": 2, "availableKeys": 2, "currentKeyIndex": 1}


@pytest.mark.asyncio
async def test_health_degraded_without_keys():
    services = SimpleNamespace(pool=CredentialPool([]), notifier=FakeNotifier(configured=False))

    result = await full_health_check(services)

    assert result["status"] == "degraded"
    assert result["dependencies"]["gemini_keys"] == "fail"
    assert result["dependencies"]["notifier"] == "disabled"


@pytest.mark.asyncio
async def test_health_degraded_when_all_keys_exhausted():
    pool = CredentialPool(make_keys(1))
    await pool.mark_active_exhausted()

    result = await full_health_check(SimpleNamespace(pool=pool, notifier=None))

    assert result["status"] == "degraded"
    assert result["dependencies"]["gemini_keys"] == "degraded"
