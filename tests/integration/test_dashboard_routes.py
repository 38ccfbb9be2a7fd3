import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import make_session
from flowup_backend.app.auth.session import SESSION_COOKIE_NAME, SessionCookieCodec, enrich_session
from flowup_backend.app.store.base import NewProfile


def _sign_in(client: TestClient, sub: str = "github|42", **user) -> None:
    enriched = enrich_session(make_session(sub, **user), "raw.id.token")
    cookie = SessionCookieCodec("test-session-secret", salt="app-session").dumps(enriched.model_dump(mode="json"))
    client.cookies.set(SESSION_COOKIE_NAME, cookie)


@pytest.mark.parametrize("path", ["/d/workspaces", "/d/profiles"])
def test_dashboard_requires_session(client, path):
    r = client.get(path)
    assert r.status_code == 302
    assert r.headers["location"] == "/auth/login?returnTo=/d/workspaces"


def test_tampered_session_cookie_is_ignored(client):
    client.cookies.set(SESSION_COOKIE_NAME, "eyJmb28iOiJiYXIifQ.forged.sig")
    assert client.get("/d/workspaces").status_code == 302


def test_workspaces_shows_session_user(client):
    _sign_in(client, name="Ada", email="ada@x.com")
    body = client.get("/d/workspaces").json()
    assert body["user"]["sub"] == "github-42"
    assert body["user"]["email"] == "ada@x.com"
    assert "id_token" not in body["user"]


async def _seed(store, **fields):
    return await store.insert_profile(NewProfile(**fields))


def test_profiles_returns_stored_profile(client, store):
    asyncio.run(_seed(store, sub="github-42", name="Ada", email="ada@x.com", provider="github"))
    _sign_in(client, name="Ada Byron", email="ada@x.com")

    body = client.get("/d/profiles").json()
    assert body["user"]["name"] == "Ada Byron"
    assert body["profile"]["name"] == "Ada"
    assert body["profile"]["sub"] == "github-42"


def test_profiles_without_stored_row(client):
    _sign_in(client, name="Ada", email="ada@x.com")
    assert client.get("/d/profiles").json()["profile"] is None


def test_healthz():
    from flowup_backend.app.main import app
    r = TestClient(app).get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
