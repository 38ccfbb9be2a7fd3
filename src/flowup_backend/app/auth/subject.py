# src/flowup_backend/app/auth/subject.py
# Provider-qualified subject ("github|42") -> canonical identity ("github-42").
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

SUBJECT_DELIMITER = "|"
DEFAULT_SEPARATOR = "-"


class CanonicalIdentity(BaseModel):
    """
    Stable internal identity derived from an IdP subject.

    local_id and canonical_key are None when the subject has no pipe;
    callers treat that as a malformed subject.
    """
    model_config = ConfigDict(frozen=True)

    provider_id: str
    local_id: Optional[str] = None
    canonical_key: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.local_id is not None


def parse_provider_sub(raw_sub: str, separator: str = DEFAULT_SEPARATOR) -> CanonicalIdentity:
    """
    Split on the first pipe: provider before it, local id after it.
    Never raises and performs no validation.

      >>> parse_provider_sub("github|42").canonical_key
      'github-42'
    """
    # local id keeps any further pipes: "oidc|tenant|7" -> "tenant|7"
    provider_id, delim, local_id = raw_sub.partition(SUBJECT_DELIMITER)
    if not delim:
        return CanonicalIdentity(provider_id=provider_id)
    return CanonicalIdentity(
        provider_id=provider_id,
        local_id=local_id,
        canonical_key=f"{provider_id}{separator}{local_id}",
    )
