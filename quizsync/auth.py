"""Reference-server authentication: bearer tokens bound to a participant identity."""

import hmac
import secrets
import time
from collections import defaultdict
from dataclasses import dataclass

from fastapi import HTTPException
from pydantic import BaseModel, Field
from starlette.requests import Request

from .config import TOKEN_TTL_SECONDS

# Token storage: token -> identity (creation timestamp is monotonic)
_valid_tokens: dict[str, "Identity"] = {}

# Login rate limiting: IP -> list of attempt timestamps
_login_attempts: dict[str, list[float]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 10       # max attempts
_LOGIN_RATE_WINDOW = 60.0    # per this many seconds


@dataclass
class Identity:
    email: str
    name: str
    created_at: float


# --- Token Management ---

def generate_token(email: str, name: str = "") -> str:
    """Create a new auth token for *email* and store it."""
    token = secrets.token_hex(32)
    email = email.strip().lower()
    _valid_tokens[token] = Identity(email=email, name=name or email.split("@")[0], created_at=time.monotonic())
    return token


def _prune_expired_tokens() -> None:
    """Remove tokens older than TOKEN_TTL_SECONDS and stale rate-limit entries."""
    now = time.monotonic()
    expired = [t for t, ident in _valid_tokens.items()
               if now - ident.created_at > TOKEN_TTL_SECONDS]
    for t in expired:
        del _valid_tokens[t]

    stale_ips = [
        ip for ip, attempts in _login_attempts.items()
        if attempts and attempts[-1] < now - _LOGIN_RATE_WINDOW
    ]
    for ip in stale_ips:
        del _login_attempts[ip]


def resolve_token(token: str | None) -> Identity | None:
    """Return the identity for a token, or None. Uses constant-time comparison."""
    if token is None:
        return None
    _prune_expired_tokens()
    for stored_token, ident in _valid_tokens.items():
        if hmac.compare_digest(token, stored_token):
            return ident
    return None


# --- Rate Limiting ---

def check_login_rate_limit(client_ip: str) -> None:
    """Raise 429 if the IP has exceeded the login rate limit."""
    now = time.monotonic()
    attempts = _login_attempts[client_ip]
    cutoff = now - _LOGIN_RATE_WINDOW
    _login_attempts[client_ip] = [t for t in attempts if t > cutoff]
    if len(_login_attempts[client_ip]) >= _LOGIN_RATE_LIMIT:
        raise HTTPException(status_code=429, detail="Too many login attempts. Try again later.")
    _login_attempts[client_ip].append(now)


# --- Request Helpers ---

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=200, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field("", max_length=100)


def get_token_from_request(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def require_user(request: Request) -> Identity:
    """FastAPI dependency that resolves the calling participant."""
    ident = resolve_token(get_token_from_request(request))
    if ident is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return ident
