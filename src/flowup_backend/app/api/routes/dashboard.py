# src/flowup_backend/app/api/routes/dashboard.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from flowup_backend.app.auth.oidc import IdentityClient
from flowup_backend.app.auth.session import EnrichedSession
from flowup_backend.app.core.auth_client import get_identity_client, get_profile_store
from flowup_backend.app.core.config import AuthRoutes
from flowup_backend.app.store.base import ProfileStore

router = APIRouter(prefix="/d", tags=["dashboard"])


def current_session(
    request: Request,
    client: IdentityClient = Depends(get_identity_client),
) -> Optional[EnrichedSession]:
    return client.get_session(request)


def _public_user(session: EnrichedSession) -> dict:
    # the raw ID token stays server-side
    return session.user.model_dump(exclude={"id_token"})


@router.get("/workspaces")
def workspaces(session: Optional[EnrichedSession] = Depends(current_session)):
    if session is None:
        return RedirectResponse(AuthRoutes.LOGIN, status_code=302)
    return {"user": _public_user(session)}


@router.get("/profiles")
async def profiles(
    session: Optional[EnrichedSession] = Depends(current_session),
    store: ProfileStore = Depends(get_profile_store),
):
    """Session user plus the stored profile, read with the user's own ID token."""
    if session is None:
        return RedirectResponse(AuthRoutes.LOGIN, status_code=302)
    profile = await store.get_user_profile(session.user.sub, auth_token=session.user.id_token)
    return {
        "user": _public_user(session),
        "profile": profile.model_dump() if profile else None,
    }
