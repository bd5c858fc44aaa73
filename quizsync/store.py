"""In-memory state for the reference session server.

Holds tests, sessions and attempts and enforces the server-side rules the
client relies on: the readiness barrier (a session starts once every
participant is READY), the session clock, idempotent join, and the
one-attempt-per-participant submit rule. All mutations go through an
``asyncio.Lock``; the clock is injectable so tests can move time.
"""

import asyncio
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Callable
from uuid import uuid4

from .constants import (
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_SUBMITTED,
    ERR_ALREADY_JOINED,
    ERR_ALREADY_SUBMITTED,
    ERR_NOT_A_PARTICIPANT,
    ERR_NOT_FOUND,
    ERR_NOT_JOINABLE,
    ERR_OTHER,
    PARTICIPANT_JOINED,
    PARTICIPANT_READY,
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    SESSION_WAITING,
)

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_LENGTH = 6


class StoreError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass
class QuestionRecord:
    id: str
    question_text: str
    options: list[str]
    correct_answer: int

    def public(self) -> dict:
        return {"_id": self.id, "questionText": self.question_text, "options": list(self.options)}


@dataclass
class QuizRecord:
    id: str
    title: str
    duration: int  # minutes
    questions: list[QuestionRecord]
    created_by: str

    def public(self) -> dict:
        return {
            "_id": self.id,
            "title": self.title,
            "duration": self.duration,
            "questions": [q.public() for q in self.questions],
        }


@dataclass
class ParticipantRecord:
    email: str
    name: str
    status: str = PARTICIPANT_JOINED
    joined_at: float = 0.0

    def public(self) -> dict:
        return {"id": self.email, "name": self.name, "email": self.email, "status": self.status}


@dataclass
class AttemptRecord:
    id: str
    session_id: str
    email: str
    status: str = ATTEMPT_IN_PROGRESS
    answers: dict[str, int] = field(default_factory=dict)
    score: int = 0
    total: int = 0
    submitted_at: float | None = None

    def public(self) -> dict:
        return {
            "_id": self.id,
            "sessionId": self.session_id,
            "status": self.status,
            "answers": [{"questionId": q, "selectedOption": o} for q, o in self.answers.items()],
        }


@dataclass
class SessionRecord:
    id: str
    code: str
    test_id: str
    created_by: str
    status: str = SESSION_WAITING
    participants: list[ParticipantRecord] = field(default_factory=list)
    started_at: float | None = None

    def find(self, email: str) -> ParticipantRecord | None:
        for p in self.participants:
            if p.email == email:
                return p
        return None


class SessionStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._tests: dict[str, QuizRecord] = {}
        self._sessions: dict[str, SessionRecord] = {}
        self._attempts: dict[tuple[str, str], AttemptRecord] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_code(self) -> str:
        taken = {s.code for s in self._sessions.values()}
        while True:
            code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))
            if code not in taken:
                return code

    def _get_session(self, session_id: str) -> SessionRecord:
        session = self._sessions.get(session_id)
        if session is None:
            raise StoreError(ERR_NOT_FOUND, "Session not found", 404)
        self._advance_clock(session)
        return session

    def _require_participant(self, session: SessionRecord, email: str) -> ParticipantRecord:
        participant = session.find(email)
        if participant is None:
            raise StoreError(ERR_NOT_A_PARTICIPANT, "You are not a participant of this session", 403)
        return participant

    def _remaining(self, session: SessionRecord) -> int | None:
        if session.status == SESSION_WAITING or session.started_at is None:
            return None
        if session.status == SESSION_COMPLETED:
            return 0
        test = self._tests[session.test_id]
        elapsed = int(self._clock() - session.started_at)
        return max(0, test.duration * 60 - elapsed)

    def _advance_clock(self, session: SessionRecord):
        if session.status == SESSION_ACTIVE and self._remaining(session) == 0:
            session.status = SESSION_COMPLETED
            logger.info("Session %s completed: time expired", session.id)

    def _attempts_for(self, session_id: str) -> list[AttemptRecord]:
        return [a for (sid, _), a in self._attempts.items() if sid == session_id]

    def _score(self, attempt: AttemptRecord):
        test = self._tests[self._sessions[attempt.session_id].test_id]
        attempt.total = len(test.questions)
        attempt.score = sum(
            1 for q in test.questions if attempt.answers.get(q.id) == q.correct_answer
        )

    def _session_public(self, session: SessionRecord) -> dict:
        return {
            "sessionId": session.id,
            "sessionCode": session.code,
            "status": session.status,
            "remainingTime": self._remaining(session),
            "test": self._tests[session.test_id].public(),
            "participants": [p.public() for p in session.participants],
        }

    # ------------------------------------------------------------------
    # Tests
    # ------------------------------------------------------------------

    async def create_test(self, owner: str, title: str, duration: int, questions: list[dict]) -> dict:
        records = []
        for q in questions:
            options = list(q["options"])
            correct = q["correct_answer"]
            if not 0 <= correct < len(options):
                raise StoreError(ERR_OTHER, "Correct answer must index one of the options")
            records.append(QuestionRecord(uuid4().hex, q["question_text"], options, correct))
        async with self._lock:
            test = QuizRecord(uuid4().hex, title, duration, records, owner)
            self._tests[test.id] = test
            return test.public()

    async def list_tests(self) -> list[dict]:
        async with self._lock:
            return [
                {"_id": t.id, "title": t.title, "duration": t.duration, "questionCount": len(t.questions)}
                for t in self._tests.values()
            ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, owner: str, test_id: str) -> dict:
        async with self._lock:
            if test_id not in self._tests:
                raise StoreError(ERR_NOT_FOUND, "Test not found", 404)
            session = SessionRecord(uuid4().hex, self._new_code(), test_id, owner)
            self._sessions[session.id] = session
            logger.info("Created session %s (code %s)", session.id, session.code)
            return {"_id": session.id, "sessionCode": session.code, "status": session.status}

    async def join(self, code: str, email: str, name: str) -> dict:
        code = code.strip().upper()
        async with self._lock:
            session = next((s for s in self._sessions.values() if s.code == code), None)
            if session is None:
                raise StoreError(ERR_NOT_FOUND, "Invalid session code", 404)
            self._advance_clock(session)
            if session.find(email) is not None:
                raise StoreError(ERR_ALREADY_JOINED, "You have already joined this session", 400)
            if session.status != SESSION_WAITING:
                raise StoreError(ERR_NOT_JOINABLE, f"Cannot join this session. Session is {session.status}.", 409)
            session.participants.append(ParticipantRecord(email, name, joined_at=self._clock()))
            self._attempts[(session.id, email)] = AttemptRecord(uuid4().hex, session.id, email)
            logger.info("%s joined session %s", email, session.id)
            return {"_id": session.id, "sessionCode": session.code, "status": session.status}

    async def mark_ready(self, session_id: str, email: str) -> dict:
        async with self._lock:
            session = self._get_session(session_id)
            participant = self._require_participant(session, email)
            participant.status = PARTICIPANT_READY
            ready = sum(1 for p in session.participants if p.status == PARTICIPANT_READY)
            if session.status == SESSION_WAITING and ready == len(session.participants):
                session.status = SESSION_ACTIVE
                session.started_at = self._clock()
                logger.info("All %d participants ready; session %s started", ready, session.id)
            return {"readyCount": ready, "totalCount": len(session.participants), "status": session.status}

    async def status(self, session_id: str, email: str) -> dict:
        async with self._lock:
            session = self._get_session(session_id)
            self._require_participant(session, email)
            attempt = self._attempts.get((session_id, email))
            return {
                "session": self._session_public(session),
                "userAttempt": attempt.public() if attempt else None,
            }

    async def list_all(self) -> list[dict]:
        async with self._lock:
            result = []
            for session in self._sessions.values():
                self._advance_clock(session)
                result.append({
                    "id": session.id,
                    "sessionCode": session.code,
                    "status": session.status,
                    "testTitle": self._tests[session.test_id].title,
                    "participantCount": len(session.participants),
                })
            return result

    async def active_session(self, email: str) -> dict | None:
        async with self._lock:
            for session in self._sessions.values():
                self._advance_clock(session)
                if session.status == SESSION_COMPLETED or session.find(email) is None:
                    continue
                attempt = self._attempts.get((session.id, email))
                if attempt is not None and attempt.status == ATTEMPT_SUBMITTED:
                    continue
                test = self._tests[session.test_id]
                return {
                    "sessionId": session.id,
                    "status": session.status,
                    "test": {"title": test.title, "questionCount": len(test.questions), "duration": test.duration},
                }
            return None

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def save_answer(self, session_id: str, email: str, question_id: str, option: int) -> dict:
        async with self._lock:
            session = self._get_session(session_id)
            self._require_participant(session, email)
            attempt = self._attempts[(session_id, email)]
            if attempt.status == ATTEMPT_SUBMITTED:
                raise StoreError(ERR_ALREADY_SUBMITTED, "Attempt already submitted", 400)
            if session.status != SESSION_ACTIVE:
                raise StoreError(ERR_OTHER, f"Session is {session.status}", 400)
            question = next((q for q in self._tests[session.test_id].questions if q.id == question_id), None)
            if question is None:
                raise StoreError(ERR_NOT_FOUND, "Question not found", 404)
            if not 0 <= option < len(question.options):
                raise StoreError(ERR_OTHER, "Invalid option", 400)
            attempt.answers[question_id] = option
            return {"questionId": question_id, "selectedOption": option}

    async def submit(self, session_id: str, email: str) -> dict:
        async with self._lock:
            session = self._get_session(session_id)
            self._require_participant(session, email)
            attempt = self._attempts[(session_id, email)]
            if attempt.status == ATTEMPT_SUBMITTED:
                raise StoreError(ERR_ALREADY_SUBMITTED, "Attempt already submitted", 400)
            if session.status == SESSION_WAITING:
                raise StoreError(ERR_OTHER, "Session has not started", 400)
            self._score(attempt)
            attempt.status = ATTEMPT_SUBMITTED
            attempt.submitted_at = self._clock()
            if all(a.status == ATTEMPT_SUBMITTED for a in self._attempts_for(session_id)):
                session.status = SESSION_COMPLETED
                logger.info("Session %s completed: all attempts submitted", session_id)
            return {"attempt": {**attempt.public(), "score": attempt.score, "total": attempt.total}}

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def attempt_result(self, attempt_id: str, email: str) -> dict:
        async with self._lock:
            attempt = next((a for a in self._attempts.values() if a.id == attempt_id), None)
            if attempt is None or attempt.email != email:
                raise StoreError(ERR_NOT_FOUND, "Result not found", 404)
            if attempt.status != ATTEMPT_SUBMITTED:
                raise StoreError(ERR_OTHER, "Attempt not submitted yet", 400)
            return {**attempt.public(), "score": attempt.score, "total": attempt.total}

    async def session_summary(self, session_id: str) -> dict:
        async with self._lock:
            session = self._get_session(session_id)
            entries = []
            for p in session.participants:
                attempt = self._attempts.get((session_id, p.email))
                submitted = attempt is not None and attempt.status == ATTEMPT_SUBMITTED
                entries.append({
                    "name": p.name,
                    "email": p.email,
                    "score": attempt.score if submitted else 0,
                    "total": attempt.total if submitted else len(self._tests[session.test_id].questions),
                    "submitted": submitted,
                    "_submitted_at": attempt.submitted_at if submitted else None,
                })
            # Highest score first; ties go to whoever submitted earlier.
            entries.sort(key=lambda e: (
                -e["score"],
                e["_submitted_at"] if e["_submitted_at"] is not None else float("inf"),
            ))
            for e in entries:
                del e["_submitted_at"]
            return {"sessionId": session.id, "status": session.status, "leaderboard": entries}
