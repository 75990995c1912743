import sys
from pathlib import Path

import pytest
import pytest_asyncio


# Ensure project root is on sys.path so `services.*`, `infra.*` imports work
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


# Explicitly enable pytest-asyncio plugin for async tests/fixtures
pytest_plugins = ("pytest_asyncio",)


# The fake backend is a FastAPI app called in-memory through
# httpx.ASGITransport, so no real server is started.
from fake_backend import FakeBackend  # noqa: E402


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def client_session(backend):
    return backend.session_for("client-1")


@pytest.fixture()
def mechanic_session(backend):
    return backend.session_for("mech-1")


@pytest_asyncio.fixture()
async def client_api(backend, client_session):
    """ApiClient authenticated as the seeded client."""
    async with backend.api_for(client_session) as api:
        yield api


@pytest_asyncio.fixture()
async def mechanic_api(backend, mechanic_session):
    """ApiClient authenticated as the seeded mechanic."""
    async with backend.api_for(mechanic_session) as api:
        yield api
