"""Pytest fixtures for okservice tests."""

import socket

import pytest
from httpx import AsyncClient, ASGITransport

from okservice.main import app
from okservice.config import Settings


@pytest.fixture
def free_port():
    """Return a TCP port that nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def test_settings():
    """Create settings bound to loopback on an ephemeral port."""
    return Settings(
        host="127.0.0.1",
        port=0,
        shutdown_grace_period=2.0,
        log_level="WARNING",
        _env_file=None,
    )


@pytest.fixture
async def async_client():
    """Create async test client for the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
