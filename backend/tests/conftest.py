"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and rewire the app before every
test: in-memory backend, fresh session store, console mailer and zero retry
delays, so tests never touch the network or sleep.
"""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

from backend.datastore.memory import InMemoryBackend
from backend.datastore.wiring import build_memory_backend
from backend.identity_access.stores import SessionStore
from backend.lms.billing import StripeClient
from backend.lms.email import ConsoleProvider, Mailer
from backend.web import app_state
from backend.web import main
from backend.web.config import Settings


TEST_SETTINGS = Settings(
    environment="dev",
    datastore_backend="memory",
    app_base_url="https://test",
    stripe_webhook_secret="whsec_test_secret",
    profile_retry_base_delay=0.0,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def memory() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def outbox() -> ConsoleProvider:
    return ConsoleProvider()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture(autouse=True)
def _wire_app(memory: InMemoryBackend, outbox: ConsoleProvider, sleeps: list):
    """Point the app at a fresh in-memory world for every test."""
    app_state.configure(
        TEST_SETTINGS,
        backend=build_memory_backend(memory),
        session_store=SessionStore(),
        mailer=Mailer(outbox, TEST_SETTINGS.app_base_url),
        stripe=StripeClient(""),
        sleep=sleeps.append,
    )
    yield


@pytest.fixture
async def client():
    # Cookies are Secure, so the client must talk https to get them back.
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="https://test") as c:
        yield c
