# src/flowup_backend/app/services/profiles.py
# Get-or-create of the user profile, run once per login callback.
from __future__ import annotations

import logging
from typing import Optional

from flowup_backend.app.auth.errors import ProfileConflictError, ProvisioningError, ValidationError
from flowup_backend.app.auth.subject import CanonicalIdentity
from flowup_backend.app.core.trace import auth_trace
from flowup_backend.app.store.base import NewProfile, Profile, ProfileStore

logger = logging.getLogger(__name__)

# Provider id of email/password (database) accounts; their display name is the nickname
EMAIL_PASSWORD_PROVIDER = "auth"


def resolve_display_name(provider_id: str, name: Optional[str], nickname: Optional[str]) -> Optional[str]:
    if provider_id == EMAIL_PASSWORD_PROVIDER:
        return nickname
    return name


class ProfileProvisioner:
    """
    Ensures exactly one profile per canonical identity / email.

    Rules:
      1. Look up by sub OR email. A hit is returned as-is; stored name and
         email are never refreshed from later logins.
      2. Otherwise insert {sub, name, email, provider}.
      3. If the insert loses a race (unique constraint), re-read and return
         the winner's row.
    """

    def __init__(self, store: ProfileStore):
        self.store = store

    async def ensure_profile(
        self,
        identity: CanonicalIdentity,
        name: Optional[str],
        email: Optional[str],
        provider_id: Optional[str] = None,
        nickname: Optional[str] = None,
    ) -> Profile:
        if not identity.is_valid or not identity.canonical_key:
            raise ValidationError(f"malformed subject for provider={identity.provider_id!r}")

        key = identity.canonical_key
        provider = provider_id or identity.provider_id

        # 1) lookup strictly before insert
        existing = await self.store.find_profile_by_identity_or_email(key, email or None)
        if existing:
            auth_trace("provision.found", sub=key, profile_id=existing.id)
            return existing

        # 2) validate the fields a new row needs
        display_name = resolve_display_name(provider, name, nickname)
        if not display_name:
            raise ValidationError(f"no display name for sub={key} provider={provider}")
        if not email:
            raise ValidationError(f"no email for sub={key}")

        new_profile = NewProfile(sub=key, name=display_name, email=email, provider=provider)
        try:
            created = await self.store.insert_profile(new_profile)
        except ProfileConflictError:
            # 3) concurrent first login won the insert
            logger.info("profile insert conflict, re-reading sub=%s", key)
            winner = await self.store.find_profile_by_identity_or_email(key, email)
            if winner is None:
                raise ProvisioningError(f"insert conflicted but no profile found for sub={key}")
            auth_trace("provision.conflict_reread", sub=key, profile_id=winner.id)
            return winner

        if created is None:
            logger.error("Failed to create user profile sub=%s provider=%s", key, provider)
            raise ProvisioningError(f"store returned no profile for sub={key}")

        auth_trace("provision.created", sub=key, provider=provider, profile_id=created.id)
        return created
