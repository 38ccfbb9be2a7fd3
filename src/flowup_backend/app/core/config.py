# src/flowup_backend/app/core/config.py
from __future__ import annotations

import os

# ------------------------
# Environment
# ------------------------
def _flag(var: str) -> bool:
    return (os.getenv(var, "") or "").lower() in ("1", "true", "yes", "on")

# Application base URL; every redirect is made absolute against it
APP_BASE_URL: str = (os.getenv("APP_BASE_URL") or "http://localhost:3000").rstrip("/")

# Hosted document store (HTTP query/mutation API)
DOCSTORE_URL: str = (os.getenv("DOCSTORE_URL") or "").strip().rstrip("/")
DOCSTORE_TIMEOUT_SEC: float = float(os.getenv("DOCSTORE_TIMEOUT_SEC", "10"))

# SQLAlchemy async URL, e.g. postgresql+asyncpg://... or sqlite+aiosqlite:///./flowup.db
DATABASE_URL: str = (os.getenv("DATABASE_URL") or "").strip()

def _default_store() -> str:
    if DOCSTORE_URL:
        return "docstore"
    if DATABASE_URL:
        return "sql"
    return "memory"

PROFILE_STORE: str = (os.getenv("PROFILE_STORE") or _default_store()).strip().lower()

# Identity provider
AUTH_DOMAIN: str = (os.getenv("AUTH_DOMAIN") or "").strip()
AUTH_CLIENT_ID: str = (os.getenv("AUTH_CLIENT_ID") or "").strip()
AUTH_CLIENT_SECRET: str = (os.getenv("AUTH_CLIENT_SECRET") or "").strip()
AUTH_SCOPE: str = os.getenv("AUTH_SCOPE", "openid profile email")
# Allow plain http to the IdP (local mock providers only)
AUTH_ALLOW_INSECURE_REQUESTS: bool = _flag("AUTH_ALLOW_INSECURE_REQUESTS")

# Cookie signing
SESSION_SECRET: str = os.getenv("SESSION_SECRET", "dev-session-secret")  # use a strong secret in real env
SESSION_TTL_SEC: int = int(os.getenv("SESSION_TTL_SEC", "86400"))

# Skip ID-token signature checks (mocked IdP in tests)
TEST_MODE: bool = _flag("TEST_MODE")


# ------------------------
# Routes
# ------------------------
class AuthRoutes:
    """Authentication routes shared by the OIDC client and the dashboard."""

    # default landing after a successful login
    DEFAULT_RETURN_TO = "/d/workspaces"

    LOGIN = f"/auth/login?returnTo={DEFAULT_RETURN_TO}"
    LOGOUT = "/auth/logout"
    CALLBACK = "/auth/callback"
