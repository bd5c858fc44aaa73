"""Tests for quizsync.models -- boundary validation and documented defaults."""

import pytest
from pydantic import ValidationError

from quizsync.models import (
    ActiveSession,
    Attempt,
    JoinResult,
    Session,
    SessionListing,
    SessionStatus,
    SubmitResult,
)


class TestSessionParsing:

    def test_camel_case_wire_fields(self):
        session = Session.model_validate({
            "sessionId": "s1",
            "sessionCode": "ABC123",
            "status": "ACTIVE",
            "remainingTime": 90,
            "participants": [{"id": "u1", "name": "Ann", "email": "ann@x.io", "status": "READY"}],
        })
        assert session.session_id == "s1"
        assert session.session_code == "ABC123"
        assert session.remaining_time == 90
        assert session.participants[0].is_ready

    def test_underscore_id_accepted(self):
        session = Session.model_validate({"_id": "s2", "status": "WAITING"})
        assert session.session_id == "s2"

    def test_missing_optional_fields_default(self):
        session = Session.model_validate({"sessionId": "s1", "status": "WAITING"})
        assert session.remaining_time is None
        assert session.participants == []
        assert session.test.questions == []

    def test_negative_remaining_time_clamped(self):
        session = Session.model_validate({"sessionId": "s1", "status": "ACTIVE", "remainingTime": -4})
        assert session.remaining_time == 0

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            Session.model_validate({"sessionId": "s1", "status": "PAUSED"})

    def test_unknown_fields_ignored(self):
        session = Session.model_validate({"sessionId": "s1", "status": "WAITING", "startedAt": "x"})
        assert not hasattr(session, "startedAt")


class TestFindParticipant:

    def _session(self):
        return Session.model_validate({
            "sessionId": "s1",
            "status": "WAITING",
            "participants": [
                {"email": "a@x", "status": "READY"},
                {"email": "B@X", "status": "JOINED"},
            ],
        })

    def test_match_is_case_insensitive(self):
        assert self._session().find_participant("b@x").status == "JOINED"

    def test_no_match_returns_none(self):
        assert self._session().find_participant("c@x") is None

    def test_no_identity_returns_none(self):
        assert self._session().find_participant(None) is None


class TestAttempt:

    def test_answer_map(self):
        attempt = Attempt.model_validate({
            "status": "IN_PROGRESS",
            "answers": [
                {"questionId": "q1", "selectedOption": 2},
                {"questionId": "q2", "selectedOption": 0},
            ],
        })
        assert attempt.answer_map() == {"q1": 2, "q2": 0}
        assert not attempt.is_submitted

    def test_submitted(self):
        assert Attempt.model_validate({"status": "SUBMITTED"}).is_submitted

    def test_null_user_attempt(self):
        status = SessionStatus.model_validate({
            "session": {"sessionId": "s1", "status": "WAITING"},
            "userAttempt": None,
        })
        assert status.user_attempt is None


class TestSmallPayloads:

    def test_submit_result_nested_attempt(self):
        assert SubmitResult.from_payload({"attempt": {"_id": "a1"}}).attempt_id == "a1"

    def test_submit_result_bare_attempt(self):
        assert SubmitResult.from_payload({"_id": "a2", "score": 3}).attempt_id == "a2"

    def test_join_result(self):
        assert JoinResult.model_validate({"_id": "s9"}).session_id == "s9"

    def test_listing_without_code(self):
        listing = SessionListing.model_validate({"id": "s1", "status": "WAITING"})
        assert listing.session_code is None

    def test_active_session(self):
        active = ActiveSession.model_validate({
            "sessionId": "s1",
            "status": "ACTIVE",
            "test": {"title": "T", "questionCount": 4, "duration": 10},
        })
        assert active.test.question_count == 4
