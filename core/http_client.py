# core/http_client.py
"""
Shared outbound HTTP client for Gemini, Stable Horde and the alert webhook.

One AsyncClient per event loop; a client closed behind our back (test
teardown, shutdown) is replaced on the next call. Nothing internal (request
ids, headers) is added here; callers attach what a given upstream may see.
"""
import asyncio
import logging
from weakref import WeakKeyDictionary

import httpx

# HTTP/2 only when the optional 'h2' package is installed
try:
    import h2  # noqa: F401
    HTTP2_ENABLED = True
except ImportError:
    HTTP2_ENABLED = False

logger = logging.getLogger(__name__)

USER_AGENT = "QuestGPT-StoryEngine/0.1"

# Gemini answers can take a while; storyteller bounds each attempt itself
OUTBOUND_TIMEOUT = httpx.Timeout(connect=5.0, read=60.0, write=10.0, pool=5.0)
OUTBOUND_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=20)

_clients: WeakKeyDictionary = WeakKeyDictionary()


async def _log_response(response: httpx.Response):
    # host and path only: the query string may carry credentials
    logger.debug(
        "upstream_response",
        extra={
            "host": response.request.url.host,
            "path": response.request.url.path,
            "status_code": response.status_code,
        },
    )


def get_client() -> httpx.AsyncClient:
    """Return the AsyncClient bound to the running event loop."""
    loop = asyncio.get_running_loop()

    client = _clients.get(loop)
    if client is not None and not client.is_closed:
        return client

    client = httpx.AsyncClient(
        timeout=OUTBOUND_TIMEOUT,
        limits=OUTBOUND_LIMITS,
        headers={"User-Agent": USER_AGENT},
        event_hooks={"response": [_log_response]},
        follow_redirects=True,
        http2=HTTP2_ENABLED,
    )
    _clients[loop] = client
    return client


async def close_client():
    """Close every shared client. Called from the app lifespan on shutdown."""
    for client in list(_clients.values()):
        try:
            await client.aclose()
        except Exception:
            logger.debug("http_client_close_failed", exc_info=True)

    _clients.clear()
