# src/flowup_backend/app/auth/session.py
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import BaseModel, ConfigDict, Field

from flowup_backend.app.auth.errors import SessionError
from flowup_backend.app.auth.subject import CanonicalIdentity, parse_provider_sub

SESSION_COOKIE_NAME = "app_session"


# ------------------------
# Session shapes
# ------------------------
class SessionUser(BaseModel):
    """ID-token profile claims. `sub` is provider-qualified ("github|42")."""
    model_config = ConfigDict(extra="allow")

    sub: str
    name: Optional[str] = None
    nickname: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None


class TokenSet(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


class SessionInternal(BaseModel):
    sid: str
    created_at: int = Field(default_factory=lambda: int(time.time()))


class SessionData(BaseModel):
    user: SessionUser
    token_set: TokenSet = Field(default_factory=TokenSet)
    internal: Optional[SessionInternal] = None


class EnrichedUser(SessionUser):
    # canonical identity key ("github-42") replaces the raw subject
    oauth: str
    id_token: str


class EnrichedSession(SessionData):
    user: EnrichedUser

    @classmethod
    def from_session(cls, session: SessionData, *, sub: str, oauth: str, id_token: str) -> "EnrichedSession":
        """Copy `session`, overriding only the three derived user fields."""
        user = session.user.model_dump()
        user.update(sub=sub, oauth=oauth, id_token=id_token)
        return cls(
            user=EnrichedUser(**user),
            token_set=session.token_set.model_copy(),
            internal=session.internal.model_copy() if session.internal else None,
        )


# ------------------------
# Enricher (runs right before the session is persisted)
# ------------------------
def enrich_session(
    session: SessionData,
    id_token: str,
    identity: Optional[CanonicalIdentity] = None,
) -> EnrichedSession:
    """
    Rewrite user.sub to the canonical key, record the provider as user.oauth
    and keep the raw ID token for outbound calls. Pure; no store access.

    `identity` is the value already parsed for this login; it is parsed from
    the raw subject only when not supplied.
    """
    if identity is None:
        identity = parse_provider_sub(session.user.sub)
    if not identity.is_valid or not identity.canonical_key:
        raise SessionError(f"cannot enrich session: malformed subject {session.user.sub!r}")
    return EnrichedSession.from_session(
        session,
        sub=identity.canonical_key,
        oauth=identity.provider_id,
        id_token=id_token,
    )


# ------------------------
# Signed-cookie codec
# ------------------------
class SessionCookieCodec:
    """itsdangerous-signed, expiring JSON payloads for the session and PKCE cookies."""

    def __init__(self, secret: str, *, salt: str):
        self._ser = URLSafeTimedSerializer(secret, salt=salt)

    def dumps(self, payload: Dict[str, Any]) -> str:
        return self._ser.dumps(payload)

    def loads(self, data: str, *, max_age: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """None on a tampered or expired cookie."""
        try:
            return self._ser.loads(data, max_age=max_age)
        except (BadSignature, SignatureExpired):
            return None
