"""End-to-end: real SessionApiClient + SessionRegistry against the reference server.

The client talks to the FastAPI app in-process through httpx's ASGITransport;
the store runs on the FakeClock from conftest so expiry is instantaneous.
"""

import asyncio

import pytest

from quizsync.session import SessionRegistry
from tests.conftest import create_session, login, make_api_client

INTERVAL = 0.01


async def _eventually(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(INTERVAL)


class _Participant:
    """One logged-in client with its own registry and signal log."""

    def __init__(self, app, email):
        self.email = email
        self.api = make_api_client(app)
        self.signals: list[dict] = []
        self.registry = SessionRegistry(
            self.api, self_email=email, on_signal=self.signals.append, interval=INTERVAL,
        )

    async def login(self):
        await self.api.login(self.email, self.email.split("@")[0].title())
        return self

    def saw(self, kind: str) -> bool:
        return any(s["type"] == kind for s in self.signals)

    async def close(self):
        await self.registry.close_all()
        await self.api.aclose()


@pytest.fixture
async def hosted_session(client):
    host = await login(client, "host@x.io", "Host")
    return await create_session(client, host)


@pytest.fixture
async def people(app):
    created = []

    async def make(email):
        p = await _Participant(app, email).login()
        created.append(p)
        return p

    yield make
    for p in created:
        await p.close()


class TestFullSession:

    @pytest.mark.asyncio
    async def test_barrier_answers_manual_and_expiry_submit(self, hosted_session, people, clock):
        alice = await people("alice@x.io")
        bob = await people("bob@x.io")
        a = await alice.registry.join(hosted_session["sessionCode"].lower())
        b = await bob.registry.join(hosted_session["sessionCode"])
        assert a.session_id == b.session_id == hosted_session["_id"]

        await _eventually(lambda: a.view.total_count == 2)
        assert await a.mark_ready()
        await _eventually(lambda: a.view.ready_count == 1 and b.view.ready_count == 1)
        assert a.view.self_ready and not b.view.self_ready
        assert a.view.status == "WAITING"
        assert not alice.saw("navigate_active")

        assert await b.mark_ready()
        await _eventually(lambda: alice.saw("navigate_active") and bob.saw("navigate_active"))
        assert a.remaining_display == "05:00"

        questions = a.view.session.test.questions
        a.select_answer(questions[0].id, 0)
        a.select_answer(questions[1].id, 1)
        b.select_answer(questions[1].id, 1)
        await a.autosave.flush()
        await b.autosave.flush()
        assert a.view.warning is None

        assert await a.submit(lambda: True)
        assert alice.saw("navigate_result")
        assert not a.polling

        # Bob never clicks submit; the deadline does it for him.
        clock.advance(301)
        await _eventually(lambda: bob.saw("navigate_result"))
        assert b.gate.reason == "EXPIRY"
        assert [s["type"] for s in bob.signals].count("navigate_result") == 1

        result = await alice.api.get_attempt_result(a.gate.attempt_id)
        assert (result.score, result.total) == (2, 2)
        summary = await alice.api.get_session_summary(a.session_id)
        assert [(e.email, e.score) for e in summary.leaderboard] == [("alice@x.io", 2), ("bob@x.io", 1)]

    @pytest.mark.asyncio
    async def test_resume_reopens_waiting_session(self, hosted_session, people):
        alice = await people("alice@x.io")
        await alice.api.join_session(hosted_session["sessionCode"])
        route, controller = await alice.registry.resume()
        assert route == f"/waiting/{hosted_session['_id']}"
        await _eventually(lambda: controller.view.total_count == 1)


class TestAutoJoin:

    @pytest.mark.asyncio
    async def test_unjoined_participant_recovers_in_waiting(self, hosted_session, people):
        carol = await people("carol@x.io")
        controller = carol.registry.open(hosted_session["_id"])
        await _eventually(lambda: controller.view.session is not None)
        assert controller.view.session.find_participant("carol@x.io") is not None
        assert controller.view.error is None
        assert controller.polling

    @pytest.mark.asyncio
    async def test_recovery_refused_once_started(self, hosted_session, people):
        alice = await people("alice@x.io")
        a = await alice.registry.join(hosted_session["sessionCode"])
        await a.mark_ready()
        await _eventually(lambda: alice.saw("navigate_active"))

        dave = await people("dave@x.io")
        d = dave.registry.open(hosted_session["_id"])
        await _eventually(lambda: dave.saw("error"))
        assert d.view.error.terminal
        assert d.view.error.message == "Cannot join this session. Session is ACTIVE."
        await _eventually(lambda: not d.polling)
        assert d.view.session is None
