"""Shared fixtures for the quizsync test suite."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure the project root is on sys.path so 'quizsync' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from quizsync.api_client import SessionApiClient  # noqa: E402
from quizsync.models import SessionStatus  # noqa: E402
from quizsync.poll_loop import PollResult  # noqa: E402


# ---------------------------------------------------------------------------
# Snapshot builders
# ---------------------------------------------------------------------------

SESSION_ID = "5e55f00dcafe0001"


def participant(email: str, status: str = "JOINED", name: str | None = None) -> dict:
    return {"id": email, "name": name or email.split("@")[0], "email": email, "status": status}


def make_status(
    status: str = "WAITING",
    *,
    remaining=None,
    participants: list[dict] | None = None,
    attempt: dict | None = None,
    session_id: str = SESSION_ID,
) -> SessionStatus:
    """Build a validated status snapshot from wire-shaped data."""
    return SessionStatus.model_validate({
        "session": {
            "sessionId": session_id,
            "sessionCode": "ABC123",
            "status": status,
            "remainingTime": remaining,
            "test": {
                "title": "Capitals",
                "duration": 5,
                "questions": [
                    {"_id": "q1", "questionText": "Capital of France?", "options": ["Paris", "Rome"]},
                    {"_id": "q2", "questionText": "Capital of Peru?", "options": ["Quito", "Lima"]},
                ],
            },
            "participants": participants if participants is not None else [participant("me@x.io")],
        },
        "userAttempt": attempt,
    })


def ok(seq: int, status: SessionStatus) -> PollResult:
    return PollResult(seq=seq, status=status)


def failed(seq: int, error) -> PollResult:
    return PollResult(seq=seq, error=error)


# ---------------------------------------------------------------------------
# Fake collaborator port
# ---------------------------------------------------------------------------

def make_fake_port(status: SessionStatus | None = None) -> MagicMock:
    """A MagicMock standing in for SessionApiClient with AsyncMock methods."""
    from quizsync.models import JoinResult, SubmitResult

    port = MagicMock()
    port.get_session_status = AsyncMock(return_value=status or make_status())
    port.get_all_sessions = AsyncMock(return_value=[])
    port.join_session = AsyncMock(return_value=JoinResult(session_id=SESSION_ID))
    port.mark_ready = AsyncMock(return_value=None)
    port.save_answer = AsyncMock(return_value=None)
    port.submit_attempt = AsyncMock(return_value=SubmitResult(attempt_id="attempt-1"))
    port.get_active_session = AsyncMock(return_value=None)
    return port


@pytest.fixture
def fake_port():
    return make_fake_port()


# ---------------------------------------------------------------------------
# Reference server
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock for the session store."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _clean_auth_state():
    """Reset auth module state between tests."""
    from quizsync.auth import _login_attempts, _valid_tokens

    _valid_tokens.clear()
    _login_attempts.clear()
    yield
    _valid_tokens.clear()
    _login_attempts.clear()


@pytest.fixture
def store(clock):
    from quizsync.store import SessionStore

    return SessionStore(clock=clock)


@pytest.fixture
def app(store):
    """The reference FastAPI app wired to a fresh store with a fake clock."""
    with patch("quizsync.server.store", store):
        from quizsync.server import app as fastapi_app
        yield fastapi_app


@pytest.fixture
async def client(app):
    """Async HTTP client for testing REST endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


def make_api_client(app, token: str | None = None) -> SessionApiClient:
    """A SessionApiClient that talks to *app* in-process."""
    return SessionApiClient(
        "http://testserver/api",
        token=token or "",
        transport=ASGITransport(app=app),
    )


async def login(client: AsyncClient, email: str, name: str = "") -> dict:
    resp = await client.post("/api/auth/login", json={"email": email, "name": name})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['data']['token']}"}


SAMPLE_TEST = {
    "title": "Capitals",
    "duration": 5,
    "questions": [
        {"questionText": "Capital of France?", "options": ["Paris", "Rome", "Madrid"], "correctAnswer": 0},
        {"questionText": "Capital of Peru?", "options": ["Quito", "Lima"], "correctAnswer": 1},
    ],
}


async def create_session(client: AsyncClient, headers: dict, test: dict | None = None) -> dict:
    """Create a test and a session for it; returns the session payload."""
    resp = await client.post("/api/test/create", json=test or SAMPLE_TEST, headers=headers)
    assert resp.status_code == 200, resp.text
    test_id = resp.json()["data"]["_id"]
    resp = await client.post("/api/session/create", json={"testId": test_id}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]
