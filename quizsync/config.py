"""Runtime configuration read from ``QUIZSYNC_*`` environment variables."""

import os

# --- Client ---

API_URL = os.environ.get("QUIZSYNC_API_URL", "http://localhost:8000/api")
API_TOKEN = os.environ.get("QUIZSYNC_TOKEN") or None
POLL_INTERVAL = float(os.environ.get("QUIZSYNC_POLL_INTERVAL", "3.0"))  # seconds
REQUEST_TIMEOUT = float(os.environ.get("QUIZSYNC_REQUEST_TIMEOUT", "10.0"))  # seconds

# --- Reference server ---

HOST = os.environ.get("QUIZSYNC_HOST", "localhost")
PORT = int(os.environ.get("QUIZSYNC_PORT", "8000"))
TOKEN_TTL_SECONDS = int(os.environ.get("QUIZSYNC_TOKEN_TTL", str(24 * 60 * 60)))


def _get_cors_origins() -> list[str]:
    """Get CORS origins from environment variable or use default."""
    cors_origins_str = os.environ.get("QUIZSYNC_CORS_ORIGINS", "http://localhost:5173")
    origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    return origins if origins else ["http://localhost:5173"]


CORS_ORIGINS = _get_cors_origins()
