# src/flowup_backend/app/store/memory.py
# Process-local profile store for development and tests.
from __future__ import annotations

import uuid
from typing import Dict, List, Optional

from flowup_backend.app.auth.errors import ProfileConflictError
from flowup_backend.app.store.base import NewProfile, Profile, ProfileStore, pick_profile


class MemoryProfileStore(ProfileStore):
    """
    Dict-backed store keyed by row id. Enforces the same uniqueness on
    `sub` and `email` as the durable stores, so conflict handling can be
    exercised without a database.
    """

    def __init__(self) -> None:
        self.rows: Dict[str, Profile] = {}
        self.insert_calls = 0

    async def find_profile_by_identity_or_email(
        self, canonical_key: str, email: Optional[str] = None
    ) -> Optional[Profile]:
        matches: List[Profile] = [
            p for p in self.rows.values()
            if p.sub == canonical_key or (email and p.email == email)
        ]
        return pick_profile(matches, canonical_key)

    async def insert_profile(self, new_profile: NewProfile) -> Optional[Profile]:
        self.insert_calls += 1
        for p in self.rows.values():
            if p.sub == new_profile.sub:
                raise ProfileConflictError(f"profile with sub={new_profile.sub} already exists")
            if new_profile.email and p.email == new_profile.email:
                raise ProfileConflictError(f"profile with email={new_profile.email} already exists")

        profile = Profile(id=str(uuid.uuid4()), **new_profile.model_dump())
        self.rows[profile.id] = profile
        return profile
