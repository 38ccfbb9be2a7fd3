# src/flowup_backend/app/store/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field


class NewProfile(BaseModel):
    """Fields written once, when a profile is created."""
    sub: str
    name: str
    email: Optional[str] = None
    provider: str


class Profile(NewProfile):
    """
    A stored user profile. `sub` is the canonical identity key.

    Document stores report the row id as `_id`; both spellings are accepted.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="_id")


def pick_profile(candidates: Iterable[Profile], canonical_key: str) -> Optional[Profile]:
    """
    Resolve a sub-OR-email lookup to a single row.

    Two rows can only match when one carries the sub and another the email;
    the sub match wins.
    """
    found = list(candidates)
    for profile in found:
        if profile.sub == canonical_key:
            return profile
    return found[0] if found else None


class ProfileStore(ABC):
    """The two profile operations the login callback needs."""

    @abstractmethod
    async def find_profile_by_identity_or_email(
        self, canonical_key: str, email: Optional[str] = None
    ) -> Optional[Profile]:
        """
        Return the profile whose sub equals `canonical_key`, or whose email
        equals `email` when one is given. None when neither matches.
        """

    @abstractmethod
    async def insert_profile(self, new_profile: NewProfile) -> Optional[Profile]:
        """
        Create a profile and return it.

        Stores enforcing uniqueness on sub/email raise ProfileConflictError
        when the row already exists.
        """

    async def get_user_profile(self, sub: str, *, auth_token: Optional[str] = None) -> Optional[Profile]:
        """Read-only lookup by canonical key (dashboard reads)."""
        if not sub:
            return None
        return await self.find_profile_by_identity_or_email(sub)
