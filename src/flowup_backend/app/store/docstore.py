# src/flowup_backend/app/store/docstore.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from flowup_backend.app.auth.errors import ProfileConflictError
from flowup_backend.app.core.trace import auth_trace
from flowup_backend.app.store.base import NewProfile, Profile, ProfileStore

logger = logging.getLogger(__name__)

# Function paths on the hosted document store
GET_USER_PROFILE = "queries/profiles:getUserProfile"
CREATE_USER_PROFILE = "queries/profiles:createUserProfile"


class DocumentStoreError(RuntimeError):
    """Transport failure or an error status returned by the document store."""

    def __init__(self, path: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.status_code = status_code


class DocumentStoreClient:
    """
    Minimal client for the document store's HTTP function API:

      POST {url}/api/query     {"path": ..., "args": {...}, "format": "json"}
      POST {url}/api/mutation  (same body)

    Replies are {"status": "success", "value": ...} or
    {"status": "error", "errorMessage": ...}.

    One instance is shared by the whole process; it holds configuration only
    and opens a short-lived httpx client per call unless one is injected.
    """

    def __init__(self, url: str, *, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        if not url:
            raise RuntimeError("DOCSTORE_URL is not configured")
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def query(self, path: str, args: Dict[str, Any], *, auth_token: Optional[str] = None) -> Any:
        return await self._call("query", path, args, auth_token)

    async def mutation(self, path: str, args: Dict[str, Any], *, auth_token: Optional[str] = None) -> Any:
        return await self._call("mutation", path, args, auth_token)

    async def _call(self, kind: str, path: str, args: Dict[str, Any], auth_token: Optional[str]) -> Any:
        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        body = {"path": path, "args": args, "format": "json"}

        own = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            r = await own.post(f"{self.url}/api/{kind}", json=body, headers=headers)
        except httpx.HTTPError as ex:
            raise DocumentStoreError(path, f"transport error: {ex}") from ex
        finally:
            if self._client is None:
                await own.aclose()

        try:
            payload = r.json()
        except ValueError:
            raise DocumentStoreError(path, f"non-JSON reply ({r.status_code})", r.status_code)

        if r.status_code != 200 or payload.get("status") != "success":
            message = payload.get("errorMessage") or r.text[:200]
            auth_trace("docstore.error", kind=kind, path=path, status=r.status_code)
            raise DocumentStoreError(path, message, r.status_code)

        return payload.get("value")


class DocumentProfileStore(ProfileStore):
    """
    Profile store backed by the hosted document store's profile functions.

    getUserProfile matches on sub only; an email collision is resolved by
    createUserProfile, whose sub-OR-email pre-check returns the existing row.
    """

    def __init__(self, client: DocumentStoreClient):
        self.client = client

    async def find_profile_by_identity_or_email(
        self, canonical_key: str, email: Optional[str] = None
    ) -> Optional[Profile]:
        value = await self.client.query(GET_USER_PROFILE, {"sub": canonical_key})
        return Profile.model_validate(value) if value else None

    async def insert_profile(self, new_profile: NewProfile) -> Optional[Profile]:
        try:
            value = await self.client.mutation(
                CREATE_USER_PROFILE, new_profile.model_dump(exclude_none=True)
            )
        except DocumentStoreError as ex:
            # unique index violation surfaces as a failed mutation
            if "unique" in str(ex).lower() or "already exists" in str(ex).lower():
                raise ProfileConflictError(str(ex)) from ex
            raise
        if not value:
            return None
        if isinstance(value, str):
            # a fresh insert replies with the new document id only
            return Profile(id=value, **new_profile.model_dump())
        return Profile.model_validate(value)

    async def get_user_profile(self, sub: str, *, auth_token: Optional[str] = None) -> Optional[Profile]:
        """Plain sub lookup, made on behalf of a signed-in user."""
        if not sub:
            return None
        value = await self.client.query(GET_USER_PROFILE, {"sub": sub}, auth_token=auth_token)
        return Profile.model_validate(value) if value else None
