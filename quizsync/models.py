"""Validated response structures for the session collaborator API.

Every payload that crosses into the client is parsed into one of these
models. Wire names are camelCase (and ids are sometimes ``_id``); the models
expose snake_case attributes and accept either spelling. Fields the server
may omit default as follows:

- ``remainingTime`` absent or null: the session is not timed yet (``None``).
- ``participants`` absent: empty list.
- ``userAttempt`` absent or null: the caller has no attempt yet.
- ``answers`` absent: no answers saved.
"""

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .constants import ATTEMPT_SUBMITTED, PARTICIPANT_READY

SessionState = Literal["WAITING", "ACTIVE", "COMPLETED"]
ParticipantState = Literal["JOINED", "READY"]
AttemptState = Literal["IN_PROGRESS", "SUBMITTED"]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Question(_WireModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id", "questionId"))
    question_text: str = Field("", validation_alias=AliasChoices("questionText", "question_text"))
    options: list[str] = Field(default_factory=list)


class QuizInfo(_WireModel):
    title: str = ""
    duration: int | None = None  # minutes
    questions: list[Question] = Field(default_factory=list)


class Participant(_WireModel):
    id: str = Field("", validation_alias=AliasChoices("id", "_id", "userId"))
    name: str = ""
    email: str
    status: ParticipantState = "JOINED"

    @property
    def is_ready(self) -> bool:
        return self.status == PARTICIPANT_READY


class Session(_WireModel):
    session_id: str = Field(validation_alias=AliasChoices("sessionId", "_id", "id"))
    session_code: str = Field("", validation_alias=AliasChoices("sessionCode", "session_code"))
    status: SessionState
    remaining_time: int | None = Field(None, validation_alias=AliasChoices("remainingTime", "remaining_time"))
    test: QuizInfo = Field(default_factory=QuizInfo)
    participants: list[Participant] = Field(default_factory=list)

    @field_validator("remaining_time")
    @classmethod
    def _clamp_remaining(cls, value: int | None) -> int | None:
        # A server clock that overshot zero still means "expired".
        if value is not None and value < 0:
            return 0
        return value

    def find_participant(self, email: str | None) -> Participant | None:
        if not email:
            return None
        wanted = email.strip().lower()
        for participant in self.participants:
            if participant.email.strip().lower() == wanted:
                return participant
        return None


class Answer(_WireModel):
    question_id: str = Field(validation_alias=AliasChoices("questionId", "question_id"))
    selected_option: int = Field(validation_alias=AliasChoices("selectedOption", "selected_option"))


class Attempt(_WireModel):
    id: str | None = Field(None, validation_alias=AliasChoices("_id", "id", "attemptId"))
    status: AttemptState = "IN_PROGRESS"
    answers: list[Answer] = Field(default_factory=list)

    @property
    def is_submitted(self) -> bool:
        return self.status == ATTEMPT_SUBMITTED

    def answer_map(self) -> dict[str, int]:
        """Return ``{question_id: selected_option}``; a later duplicate wins."""
        return {a.question_id: a.selected_option for a in self.answers}


class SessionStatus(_WireModel):
    session: Session
    user_attempt: Attempt | None = Field(None, validation_alias=AliasChoices("userAttempt", "user_attempt"))


class SessionListing(_WireModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id", "sessionId"))
    session_code: str | None = Field(None, validation_alias=AliasChoices("sessionCode", "session_code"))
    status: SessionState
    test_title: str | None = Field(None, validation_alias=AliasChoices("testTitle", "test_title"))
    participant_count: int | None = Field(None, validation_alias=AliasChoices("participantCount", "participant_count"))


class JoinResult(_WireModel):
    session_id: str = Field(validation_alias=AliasChoices("_id", "sessionId", "id"))


class SubmitResult(_WireModel):
    attempt_id: str = Field(validation_alias=AliasChoices("_id", "id", "attemptId"))

    @classmethod
    def from_payload(cls, data: dict) -> "SubmitResult":
        """Accept both ``{"attempt": {...}}`` and a bare attempt object."""
        if isinstance(data, dict) and isinstance(data.get("attempt"), dict):
            data = data["attempt"]
        return cls.model_validate(data)


class ActiveSessionTest(_WireModel):
    title: str = ""
    question_count: int = Field(0, validation_alias=AliasChoices("questionCount", "question_count"))
    duration: int | None = None


class ActiveSession(_WireModel):
    session_id: str = Field(validation_alias=AliasChoices("sessionId", "_id", "id"))
    status: SessionState
    test: ActiveSessionTest = Field(default_factory=ActiveSessionTest)


class AttemptResult(BaseModel):
    """Downstream read; kept permissive since only display code consumes it."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    attempt_id: str = Field(validation_alias=AliasChoices("_id", "id", "attemptId"))
    session_id: str | None = Field(None, validation_alias=AliasChoices("sessionId", "session_id"))
    score: int = 0
    total: int = 0


class LeaderboardEntry(_WireModel):
    name: str = ""
    email: str = ""
    score: int = 0
    total: int = 0
    submitted: bool = False


class SessionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    session_id: str = Field(validation_alias=AliasChoices("sessionId", "_id", "id"))
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)
