"""Shared fixtures: a scripted duplex channel and sessions opened over it."""

import json
from pathlib import Path
from typing import Any

import pytest

from bcmeta.core.config import settings
from bcmeta.core.models import Credentials
from bcmeta.services.page_loader import PageLoader
from bcmeta.transport.session import TransportSession

from .builders import session_init_response
from .fakes import FakeAuthenticator, FakeChannel


FIXTURES = Path(__file__).parent / "fixtures"

settings.verbose = False


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        base_url="http://bc.test/BC",
        username="admin",
        password="secret",
        tenant_id="default",
    )


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel([session_init_response()])


@pytest.fixture
def make_session(credentials, channel):
    """Build a TransportSession wired to the fake channel."""
    def _make(**kwargs: Any) -> TransportSession:
        return TransportSession(
            credentials=credentials,
            authenticator=FakeAuthenticator(),
            channel_factory=lambda: channel,
            rpc_timeout=1.0,
            **kwargs,
        )
    return _make


@pytest.fixture
async def session(make_session) -> TransportSession:
    """An authenticated, connected, opened session."""
    s = make_session()
    await s.authenticate()
    await s.connect()
    await s.open_session()
    yield s
    await s.disconnect()


@pytest.fixture
def loader(session) -> PageLoader:
    return PageLoader(session)


@pytest.fixture
def customer_card() -> dict[str, Any]:
    with open(FIXTURES / "customer_card.json", encoding="utf-8") as f:
        return json.load(f)
