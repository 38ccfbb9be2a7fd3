# tests/conftest.py
from __future__ import annotations

import os
import time
from typing import Any, Dict

# ---------- Env (before any app module reads it) ----------
os.environ["APP_BASE_URL"] = "http://localhost:3000"
os.environ["AUTH_DOMAIN"] = "tenant.example.com"
os.environ["AUTH_CLIENT_ID"] = "test-client-id"
os.environ["AUTH_CLIENT_SECRET"] = "test-client-secret"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["PROFILE_STORE"] = "memory"
os.environ["TEST_MODE"] = "true"  # skip ID-token signature verification
os.environ.pop("DOCSTORE_URL", None)
os.environ.pop("DATABASE_URL", None)

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from flowup_backend.app.api.routes.dashboard import router as dashboard_router
from flowup_backend.app.auth.callback import CallbackController
from flowup_backend.app.auth.session import SessionData, SessionUser
from flowup_backend.app.core.auth_client import (
    build_identity_client,
    get_identity_client,
    get_profile_store,
)
from flowup_backend.app.services.profiles import ProfileProvisioner
from flowup_backend.app.store.memory import MemoryProfileStore

# ---------- Mocked IdP ----------
APP_BASE_URL = "http://localhost:3000"
ISSUER = "https://tenant.example.com/"
CLIENT_ID = "test-client-id"
DISCOVERY_URL = f"{ISSUER}.well-known/openid-configuration"
AUTH_URL = f"{ISSUER}authorize"
TOKEN_URL = f"{ISSUER}oauth/token"
JWKS_URL = f"{ISSUER}.well-known/jwks.json"
END_SESSION_URL = f"{ISSUER}oidc/logout"

DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": AUTH_URL,
    "token_endpoint": TOKEN_URL,
    "jwks_uri": JWKS_URL,
    "end_session_endpoint": END_SESSION_URL,
}


def make_id_token(**claims: Any) -> str:
    """ID token with the mocked issuer/audience. Signature is not checked in test mode."""
    now = int(time.time())
    payload: Dict[str, Any] = {"iss": ISSUER, "aud": CLIENT_ID, "iat": now, "exp": now + 3600}
    payload.update(claims)
    return jwt.encode(payload, "not-verified-in-test-mode-0123456789abcdef", algorithm="HS256")


def make_session(sub: str, **user: Any) -> SessionData:
    return SessionData(user=SessionUser(sub=sub, **user))


# ---------- Fixtures ----------
@pytest.fixture
def store() -> MemoryProfileStore:
    return MemoryProfileStore()


@pytest.fixture
def provisioner(store: MemoryProfileStore) -> ProfileProvisioner:
    return ProfileProvisioner(store)


@pytest.fixture
def controller(provisioner: ProfileProvisioner) -> CallbackController:
    return CallbackController(provisioner, APP_BASE_URL)


@pytest.fixture
def identity_client(store: MemoryProfileStore):
    return build_identity_client(
        store,
        domain="tenant.example.com",
        client_id=CLIENT_ID,
        client_secret="test-client-secret",
        app_base_url=APP_BASE_URL,
        secret="test-session-secret",
        test_mode=True,
    )


@pytest.fixture
def app_instance(identity_client, store: MemoryProfileStore) -> FastAPI:
    app = FastAPI()
    app.include_router(identity_client.router)
    app.include_router(dashboard_router)
    app.dependency_overrides[get_identity_client] = lambda: identity_client
    app.dependency_overrides[get_profile_store] = lambda: store
    return app


@pytest.fixture
def client(app_instance: FastAPI) -> TestClient:
    return TestClient(app_instance, follow_redirects=False)
