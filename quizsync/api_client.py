"""Session collaborator port: the narrow async HTTP client used by the core.

Pure data access, no policy. Every failure, whether transport, HTTP or a
malformed body, leaves this module as a ``SessionApiError`` tagged with one
of the ``ERR_*`` kinds from ``constants``. Callers branch on ``exc.kind``;
the message text is for display only.
"""

import logging

import httpx
from pydantic import ValidationError

from . import config
from .constants import (
    ERROR_KINDS,
    ERR_ALREADY_JOINED,
    ERR_ALREADY_SUBMITTED,
    ERR_NOT_A_PARTICIPANT,
    ERR_NOT_FOUND,
    ERR_NOT_JOINABLE,
    ERR_OTHER,
    ERR_TRANSIENT,
    ERR_UNAUTHORIZED,
)
from .models import (
    ActiveSession,
    AttemptResult,
    JoinResult,
    SessionListing,
    SessionStatus,
    SessionSummary,
    SubmitResult,
)

logger = logging.getLogger(__name__)

# Legacy servers only send a human message; these substrings are the last
# resort for classifying them and are never consulted outside this module.
_MESSAGE_HINTS = (
    ("not a participant", ERR_NOT_A_PARTICIPANT),
    ("already joined", ERR_ALREADY_JOINED),
    ("already submitted", ERR_ALREADY_SUBMITTED),
)


class SessionApiError(Exception):
    """A typed failure from the session collaborator."""

    def __init__(self, kind: str, message: str = "", *, status_code: int | None = None):
        if kind not in ERROR_KINDS:
            kind = ERR_OTHER
        super().__init__(message or kind)
        self.kind = kind
        self.message = message or kind
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.kind == ERR_TRANSIENT

    def __repr__(self) -> str:
        return f"SessionApiError(kind={self.kind!r}, message={self.message!r}, status_code={self.status_code!r})"


def classify_error(status_code: int, body) -> str:
    """Map an error response to an error kind.

    Precedence: an explicit ``code`` field, then the HTTP status, then
    well-known message text.
    """
    code = body.get("code") if isinstance(body, dict) else None
    if isinstance(code, str) and code in ERROR_KINDS:
        return code

    if status_code == 404:
        return ERR_NOT_FOUND
    if status_code == 401:
        return ERR_UNAUTHORIZED
    if status_code == 409:
        return ERR_NOT_JOINABLE
    if status_code in (408, 429) or status_code >= 500:
        return ERR_TRANSIENT

    message = ""
    if isinstance(body, dict):
        message = str(body.get("message") or body.get("detail") or "").lower()

    for hint, kind in _MESSAGE_HINTS:
        if hint in message:
            return kind
    return ERR_OTHER


def _error_message(body, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class SessionApiClient:
    """Async client for the session/answer/result endpoints.

    ``transport`` is passed straight to ``httpx.AsyncClient`` so tests can
    mount an ASGI app or a ``MockTransport``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {}
        token = token if token is not None else config.API_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or config.API_URL,
            headers=headers,
            timeout=timeout if timeout is not None else config.REQUEST_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SessionApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def set_token(self, token: str | None) -> None:
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, *, json: dict | None = None):
        """Issue a request and return the envelope's ``data`` member."""
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise SessionApiError(ERR_TRANSIENT, f"Request timed out: {method} {path}") from exc
        except httpx.TransportError as exc:
            raise SessionApiError(ERR_TRANSIENT, f"Network error: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.is_error:
            kind = classify_error(resp.status_code, body)
            message = _error_message(body, f"HTTP {resp.status_code}")
            logger.debug("%s %s failed: %s (%s)", method, path, message, kind)
            raise SessionApiError(kind, message, status_code=resp.status_code)

        if not isinstance(body, dict):
            raise SessionApiError(ERR_OTHER, f"Malformed response from {path}", status_code=resp.status_code)
        if body.get("success") is False:
            kind = classify_error(resp.status_code, body)
            raise SessionApiError(kind, _error_message(body, "Request failed"), status_code=resp.status_code)
        return body.get("data")

    @staticmethod
    def _parse(model, data, path: str):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise SessionApiError(ERR_OTHER, f"Unexpected response shape from {path}") from exc

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, email: str, name: str = "") -> str:
        """Obtain a token for *email* and use it for subsequent calls."""
        data = await self._request("POST", "/auth/login", json={"email": email, "name": name})
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise SessionApiError(ERR_OTHER, "Login response carried no token")
        self.set_token(token)
        return token

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def join_session(self, session_code: str) -> JoinResult:
        data = await self._request("POST", "/session/join", json={"sessionCode": session_code})
        return self._parse(JoinResult, data, "/session/join")

    async def mark_ready(self, session_id: str) -> None:
        await self._request("POST", "/session/ready", json={"sessionId": session_id})

    async def get_session_status(self, session_id: str) -> SessionStatus:
        path = f"/session/status/{session_id}"
        data = await self._request("GET", path)
        return self._parse(SessionStatus, data, path)

    async def get_all_sessions(self) -> list[SessionListing]:
        data = await self._request("GET", "/session/all")
        if not isinstance(data, list):
            raise SessionApiError(ERR_OTHER, "Unexpected response shape from /session/all")
        return [self._parse(SessionListing, item, "/session/all") for item in data]

    async def get_active_session(self) -> ActiveSession | None:
        data = await self._request("GET", "/active-session")
        if not data:
            return None
        return self._parse(ActiveSession, data, "/active-session")

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def save_answer(self, session_id: str, question_id: str, selected_option: int) -> None:
        await self._request("POST", "/answer/save", json={
            "sessionId": session_id,
            "questionId": question_id,
            "selectedOption": selected_option,
        })

    async def submit_attempt(self, session_id: str) -> SubmitResult:
        data = await self._request("POST", "/answer/submit", json={"sessionId": session_id})
        try:
            return SubmitResult.from_payload(data)
        except ValidationError as exc:
            raise SessionApiError(ERR_OTHER, "Unexpected response shape from /answer/submit") from exc

    # ------------------------------------------------------------------
    # Results (downstream reads)
    # ------------------------------------------------------------------

    async def get_attempt_result(self, attempt_id: str) -> AttemptResult:
        path = f"/result/{attempt_id}"
        data = await self._request("GET", path)
        return self._parse(AttemptResult, data, path)

    async def get_session_summary(self, session_id: str) -> SessionSummary:
        path = f"/result/session/{session_id}"
        data = await self._request("GET", path)
        return self._parse(SessionSummary, data, path)
