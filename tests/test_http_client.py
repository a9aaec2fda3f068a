import pytest
from core.http_client import get_client, close_client
from core.request_context import set_request_id

@pytest.mark.asyncio
async def test_http_client_shutdown():

    client = get_client()
    assert client is not None
    assert get_client() is client

    await close_client()

    assert client.is_closed


@pytest.mark.asyncio
async def test_closed_client_is_replaced():

    first = get_client()
    await close_client()

    second = get_client()
    assert second is not first
    assert not second.is_closed

    await close_client()


@pytest.mark.asyncio
async def test_shared_client_adds_no_request_id():

    set_request_id("req-7")
    try:
        client = get_client()
        assert "x-request-id" not in client.headers
        assert client.event_hooks["request"] == []
    finally:
        set_request_id(None)
        await close_client()
