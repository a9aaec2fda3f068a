# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from api.app import app, Services
from core.config import Settings
from fakes import FakeNotifier, FakeProvider, make_keys
from story.content_filter import ContentFilter
from story.credential_pool import CredentialPool
from story.storyteller import Storyteller
from tools.image_api import HordeImageClient, PollSchedule


@pytest.fixture
def make_pool():
    def _make(n=2, notifier=None, threshold=2):
        return CredentialPool(make_keys(n), notifier=notifier, low_key_threshold=threshold)
    return _make


@pytest.fixture
def make_storyteller(make_pool):
    def _make(n=2, provider=None, notifier=None, diagnostic_probe=False):
        pool = make_pool(n, notifier=notifier)
        return Storyteller(
            pool,
            provider or FakeProvider(),
            attempt_timeout=1.0,
            rotation_delay=0,
            diagnostic_probe=diagnostic_probe,
        )
    return _make


@pytest.fixture
def make_client():
    """
    Start the app (lifespan included) and swap in test services.
    """
    clients = []

    def _make(storyteller, notifier=None, images=None):
        services = Services(
            settings=Settings(),
            pool=storyteller.pool,
            storyteller=storyteller,
            notifier=notifier or FakeNotifier(),
            content_filter=ContentFilter(terms=["grimword"]),
            images=images or HordeImageClient(schedule=PollSchedule(initial_wait=0, settle_delay=0)),
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        app.state.services = services
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
