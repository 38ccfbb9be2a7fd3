# src/flowup_backend/app/auth/callback.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from flowup_backend.app.auth.errors import AuthFlowError, SessionError, ValidationError
from flowup_backend.app.auth.session import SessionData
from flowup_backend.app.auth.subject import CanonicalIdentity, parse_provider_sub
from flowup_backend.app.core.config import AuthRoutes
from flowup_backend.app.core.trace import auth_trace
from flowup_backend.app.services.profiles import ProfileProvisioner

logger = logging.getLogger(__name__)


class CallbackContext(BaseModel):
    # already validated as a same-origin relative path by the OIDC client
    return_to: Optional[str] = None


class CallbackController:
    """
    Runs once per completed login:

      validate session -> parse identity -> provision profile -> redirect

    Any failure, expected or not, ends on the logout route. Nothing is
    re-raised and nothing is retried.
    """

    def __init__(
        self,
        provisioner: ProfileProvisioner,
        base_url: str,
        *,
        default_return_to: str = AuthRoutes.DEFAULT_RETURN_TO,
        logout_path: str = AuthRoutes.LOGOUT,
    ):
        self.provisioner = provisioner
        self.base_url = base_url
        self.default_return_to = default_return_to
        self.logout_path = logout_path

    def _redirect(self, path: str) -> RedirectResponse:
        # path is always appended to the base, never resolved against it
        if not path.startswith("/"):
            path = "/" + path
        return RedirectResponse(f"{self.base_url.rstrip('/')}{path}", status_code=302)

    def logout_redirect(self) -> RedirectResponse:
        return self._redirect(self.logout_path)

    async def __call__(
        self,
        error: Optional[Any],
        context: CallbackContext,
        session: Optional[SessionData],
        identity: Optional[CanonicalIdentity] = None,
    ) -> RedirectResponse:
        try:
            # ValidateSession
            if error or session is None:
                raise SessionError(f"callback without usable session (error={error!r})")

            # ParseIdentity
            if identity is None:
                identity = parse_provider_sub(session.user.sub)
            if not identity.is_valid:
                raise ValidationError(f"malformed subject {session.user.sub!r}")

            # Provision
            user = session.user
            profile = await self.provisioner.ensure_profile(
                identity,
                name=user.name,
                email=user.email,
                provider_id=identity.provider_id,
                nickname=user.nickname,
            )

            # Redirect
            target = context.return_to or self.default_return_to
            auth_trace("callback.ok", sub=identity.canonical_key, profile_id=profile.id, to=target)
            return self._redirect(target)

        except AuthFlowError as ex:
            logger.warning("login callback rejected: %s: %s", type(ex).__name__, ex)
            auth_trace("callback.fail", kind=type(ex).__name__)
            return self.logout_redirect()
        except Exception:
            logger.exception("Unexpected error in authentication callback")
            auth_trace("callback.fail", kind="unexpected")
            return self.logout_redirect()
