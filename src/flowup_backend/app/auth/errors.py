# src/flowup_backend/app/auth/errors.py
from __future__ import annotations


class AuthFlowError(Exception):
    """Base for every failure the login callback maps to a logout redirect."""


class ValidationError(AuthFlowError):
    """Malformed subject, or a required profile field (name / email) is missing."""


class ProvisioningError(AuthFlowError):
    """The profile store did not produce a profile."""


class ProfileConflictError(ProvisioningError):
    """
    Insert rejected by a uniqueness constraint on sub or email.
    The profile exists now; callers re-read instead of failing.
    """


class SessionError(AuthFlowError):
    """No session, or the IdP reported an error on the callback."""
