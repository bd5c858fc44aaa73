"""Reference session server.

An in-memory FastAPI implementation of the session collaborator contract
used by the client. It backs the integration tests and local development
(``python run.py``); it is not meant for production persistence.

Every response uses the envelope ``{"success", "data", "message"}``; errors
add a machine-readable ``code`` matching the client's error kinds.
"""

import logging

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException
from starlette.requests import Request

from .auth import Identity, LoginRequest, check_login_rate_limit, generate_token, require_user
from .config import CORS_ORIGINS
from .constants import ERR_NOT_FOUND, ERR_OTHER, ERR_TRANSIENT, ERR_UNAUTHORIZED
from .store import SessionStore, StoreError

logger = logging.getLogger(__name__)

app = FastAPI(title="quizsync reference server")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = SessionStore()


def _ok(data=None, message: str = "") -> dict:
    return {"success": True, "data": data, "message": message}


def _code_for_status(status_code: int) -> str:
    if status_code == 401:
        return ERR_UNAUTHORIZED
    if status_code == 404:
        return ERR_NOT_FOUND
    if status_code in (429, 503):
        return ERR_TRANSIENT
    return ERR_OTHER


@app.exception_handler(StoreError)
async def _store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "code": exc.code},
    )


@app.exception_handler(HTTPException)
async def _http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail), "code": _code_for_status(exc.status_code)},
    )


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": "Invalid request", "code": ERR_OTHER},
    )


# --- Request bodies ---

class QuestionIn(BaseModel):
    question_text: str = Field(..., alias="questionText", min_length=1, max_length=2000)
    options: list[str] = Field(..., min_length=2, max_length=10)
    correct_answer: int = Field(..., alias="correctAnswer", ge=0)


class CreateTestRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    duration: int = Field(..., ge=1, le=600)  # minutes
    questions: list[QuestionIn] = Field(..., min_length=1)


class CreateSessionRequest(BaseModel):
    test_id: str = Field(..., alias="testId", max_length=100)


class JoinRequest(BaseModel):
    session_code: str = Field(..., alias="sessionCode", min_length=1, max_length=20)


class SessionRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId", max_length=100)


class SaveAnswerRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId", max_length=100)
    question_id: str = Field(..., alias="questionId", max_length=100)
    selected_option: int = Field(..., alias="selectedOption", ge=0)


# --- Routes ---

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/auth/login")
async def api_login(req: LoginRequest, request: Request):
    client_ip = request.client.host if request.client else "unknown"
    check_login_rate_limit(client_ip)
    token = generate_token(req.email, req.name)
    return _ok({"token": token, "email": req.email.strip().lower()})


@app.post("/api/test/create")
async def api_create_test(req: CreateTestRequest, user: Identity = Depends(require_user)):
    questions = [
        {"question_text": q.question_text, "options": q.options, "correct_answer": q.correct_answer}
        for q in req.questions
    ]
    return _ok(await store.create_test(user.email, req.title, req.duration, questions))


@app.get("/api/test/all")
async def api_list_tests(user: Identity = Depends(require_user)):
    return _ok(await store.list_tests())


@app.post("/api/session/create")
async def api_create_session(req: CreateSessionRequest, user: Identity = Depends(require_user)):
    return _ok(await store.create_session(user.email, req.test_id))


@app.post("/api/session/join")
async def api_join_session(req: JoinRequest, user: Identity = Depends(require_user)):
    return _ok(await store.join(req.session_code, user.email, user.name), "Joined session")


@app.post("/api/session/ready")
async def api_mark_ready(req: SessionRequest, user: Identity = Depends(require_user)):
    return _ok(await store.mark_ready(req.session_id, user.email))


@app.get("/api/session/status/{session_id}")
async def api_session_status(session_id: str, user: Identity = Depends(require_user)):
    return _ok(await store.status(session_id, user.email))


@app.get("/api/session/all")
async def api_all_sessions(user: Identity = Depends(require_user)):
    return _ok(await store.list_all())


@app.get("/api/active-session")
async def api_active_session(user: Identity = Depends(require_user)):
    return _ok(await store.active_session(user.email))


@app.post("/api/answer/save")
async def api_save_answer(req: SaveAnswerRequest, user: Identity = Depends(require_user)):
    data = await store.save_answer(req.session_id, user.email, req.question_id, req.selected_option)
    return _ok(data)


@app.post("/api/answer/submit")
async def api_submit_attempt(req: SessionRequest, user: Identity = Depends(require_user)):
    return _ok(await store.submit(req.session_id, user.email), "Attempt submitted")


@app.get("/api/result/{attempt_id}")
async def api_attempt_result(attempt_id: str, user: Identity = Depends(require_user)):
    return _ok(await store.attempt_result(attempt_id, user.email))


@app.get("/api/result/session/{session_id}")
async def api_session_summary(session_id: str, user: Identity = Depends(require_user)):
    return _ok(await store.session_summary(session_id))
