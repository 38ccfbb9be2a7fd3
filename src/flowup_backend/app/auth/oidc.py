# src/flowup_backend/app/auth/oidc.py
# OIDC authorization-code + PKCE client for the hosted identity provider.
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode, urlsplit

import httpx
import jwt
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from jwt import PyJWKClient
from pydantic import ValidationError as PydanticValidationError

from flowup_backend.app.auth.callback import CallbackContext
from flowup_backend.app.auth.session import (
    SESSION_COOKIE_NAME,
    EnrichedSession,
    SessionCookieCodec,
    SessionData,
    SessionInternal,
    SessionUser,
    TokenSet,
)
from flowup_backend.app.auth.subject import CanonicalIdentity, parse_provider_sub
from flowup_backend.app.core.config import AuthRoutes
from flowup_backend.app.core.trace import auth_trace

logger = logging.getLogger(__name__)

TXN_COOKIE_NAME = "auth_txn"
TXN_TTL_SEC = 600

# ID-token claims copied into session.user
PROFILE_CLAIMS = (
    "sub", "name", "nickname", "given_name", "family_name",
    "picture", "email", "email_verified", "org_id",
)

OnCallback = Callable[
    [Optional[Any], CallbackContext, Optional[SessionData], Optional[CanonicalIdentity]],
    Awaitable[RedirectResponse],
]
BeforeSessionSaved = Callable[[SessionData, str, Optional[CanonicalIdentity]], SessionData]


class HandshakeError(Exception):
    """The code flow could not produce a verified ID token."""


# ------------------------
# Helpers
# ------------------------
def _pkce_params() -> Dict[str, str]:
    """PKCE S256 verifier/challenge plus CSRF state and nonce."""
    code_verifier  = secrets.token_urlsafe(64)
    digest         = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return {
        "code_verifier": code_verifier,
        "code_challenge": code_challenge,
        "state": secrets.token_urlsafe(24),
        "nonce": secrets.token_urlsafe(24),
    }


def safe_return_to(value: Optional[str]) -> Optional[str]:
    """Accept only same-origin relative paths ("/d/x?y=1"); anything else is dropped."""
    if not value or not value.startswith("/") or value.startswith("//") or "\\" in value:
        return None
    parts = urlsplit(value)
    if parts.scheme or parts.netloc:
        return None
    # "/https://host/x" and similar scheme-looking first segments
    if ":" in parts.path.split("/")[1]:
        return None
    return value


def _issuer_from_domain(domain: str, allow_insecure: bool) -> str:
    if domain.startswith("http://"):
        if not allow_insecure:
            raise RuntimeError("insecure IdP domain requires AUTH_ALLOW_INSECURE_REQUESTS=true")
        base = domain
    elif domain.startswith("https://"):
        base = domain
    else:
        base = f"https://{domain}"
    return base.rstrip("/") + "/"


# ------------------------
# Client
# ------------------------
class IdentityClient:
    """
    Hosts /auth/login, /auth/callback and /auth/logout for one IdP tenant.

    Two hooks shape the login outcome:
      on_callback(error, context, session, identity) -> RedirectResponse
      before_session_saved(session, id_token, identity) -> session to persist

    The canonical identity is parsed once per login and handed to both hooks.
    The session is written only when on_callback did not send the user to
    the logout route.
    """

    def __init__(
        self,
        *,
        domain: str,
        client_id: str,
        client_secret: str,
        app_base_url: str,
        secret: str,
        on_callback: Optional[OnCallback] = None,
        before_session_saved: Optional[BeforeSessionSaved] = None,
        scope: str = "openid profile email",
        sign_in_return_to: str = AuthRoutes.DEFAULT_RETURN_TO,
        allow_insecure_requests: bool = False,
        test_mode: bool = False,
        session_ttl: int = 86400,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not domain or not client_id:
            raise RuntimeError("IdP not configured: set AUTH_DOMAIN and AUTH_CLIENT_ID")
        self.issuer = _issuer_from_domain(domain, allow_insecure_requests)
        self.discovery_url = f"{self.issuer}.well-known/openid-configuration"
        self.client_id = client_id
        self.client_secret = client_secret
        self.app_base_url = app_base_url.rstrip("/")
        self.redirect_uri = f"{self.app_base_url}{AuthRoutes.CALLBACK}"
        self.scope = scope
        self.sign_in_return_to = sign_in_return_to
        self.test_mode = test_mode
        self.session_ttl = session_ttl
        self.on_callback = on_callback
        self.before_session_saved = before_session_saved
        self.cookie_secure = self.app_base_url.startswith("https://")

        self._http = http_client
        self._jwks: Optional[PyJWKClient] = None
        self._txn = SessionCookieCodec(secret, salt="auth-txn")
        self._session = SessionCookieCodec(secret, salt="app-session")

        self.router = APIRouter(tags=["auth"])
        self.router.add_api_route("/auth/login", self.login, methods=["GET"])
        self.router.add_api_route(AuthRoutes.CALLBACK, self.callback, methods=["GET"])
        self.router.add_api_route(AuthRoutes.LOGOUT, self.logout, methods=["GET"])

    # ---- IdP I/O ----
    async def _discover(self) -> Dict[str, Any]:
        own = self._http or httpx.AsyncClient(timeout=10)
        try:
            r = await own.get(self.discovery_url)
            r.raise_for_status()
            return r.json()
        finally:
            if self._http is None:
                await own.aclose()

    async def _exchange_code(self, token_endpoint: str, code: str, code_verifier: str) -> Dict[str, Any]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }
        own = self._http or httpx.AsyncClient(timeout=15)
        try:
            tr = await own.post(token_endpoint, data=data, headers={"Accept": "application/json"})
        finally:
            if self._http is None:
                await own.aclose()
        if tr.status_code != 200:
            auth_trace("oidc.callback.exchange_failed", status=tr.status_code)
            raise HandshakeError(f"token exchange failed: {tr.status_code}")
        return tr.json()

    def verify_id_token(self, id_token: str, jwks_uri: str, nonce: Optional[str]) -> Dict[str, Any]:
        """
        RS256 signature + iss/aud/exp via JWKS. In test mode the signature is
        not checked, but issuer, audience and nonce still are.
        """
        mode = "TEST" if self.test_mode else "LIVE"
        try:
            if self.test_mode:
                claims = jwt.decode(id_token, options={"verify_signature": False})
                if claims.get("iss") != self.issuer:
                    raise HandshakeError(f"issuer mismatch (want={self.issuer})")
                aud = claims.get("aud")
                if self.client_id not in (aud if isinstance(aud, list) else [aud]):
                    raise HandshakeError(f"audience mismatch (want={self.client_id})")
            else:
                if self._jwks is None:
                    self._jwks = PyJWKClient(jwks_uri)
                key = self._jwks.get_signing_key_from_jwt(id_token).key
                claims = jwt.decode(
                    id_token,
                    key=key,
                    algorithms=["RS256"],
                    audience=self.client_id,
                    issuer=self.issuer,
                    options={"require": ["exp", "iss", "aud", "sub"]},
                    leeway=60,
                )
        except jwt.PyJWTError as ex:
            auth_trace("oidc.verify.jwt_error", mode=mode, err=str(ex))
            raise HandshakeError(f"invalid id_token: {ex}") from ex

        if nonce and claims.get("nonce") != nonce:
            auth_trace("oidc.verify.nonce_mismatch", mode=mode)
            raise HandshakeError("invalid id_token: nonce mismatch")
        if not claims.get("sub"):
            raise HandshakeError("invalid id_token: no sub")

        auth_trace("oidc.verify.ok", mode=mode, iss=claims.get("iss"), exp=claims.get("exp"))
        return claims

    # ---- sessions ----
    def get_session(self, request: Request) -> Optional[EnrichedSession]:
        raw = request.cookies.get(SESSION_COOKIE_NAME)
        if not raw:
            return None
        payload = self._session.loads(raw, max_age=self.session_ttl)
        if payload is None:
            return None
        try:
            return EnrichedSession.model_validate(payload)
        except PydanticValidationError:
            logger.info("discarding session cookie with unexpected shape")
            return None

    @staticmethod
    def _session_from_tokens(claims: Dict[str, Any], tokens: Dict[str, Any]) -> SessionData:
        user = SessionUser(**{k: claims[k] for k in PROFILE_CLAIMS if k in claims})
        expires_in = tokens.get("expires_in")
        return SessionData(
            user=user,
            token_set=TokenSet(
                access_token=tokens.get("access_token"),
                refresh_token=tokens.get("refresh_token"),
                expires_at=int(time.time()) + int(expires_in) if expires_in else None,
            ),
            internal=SessionInternal(sid=claims.get("sid") or secrets.token_urlsafe(16)),
        )

    def _is_logout_redirect(self, resp: RedirectResponse) -> bool:
        return resp.headers.get("location") == f"{self.app_base_url}{AuthRoutes.LOGOUT}"

    async def _run_on_callback(
        self,
        error: Optional[Any],
        context: CallbackContext,
        session: Optional[SessionData],
        identity: Optional[CanonicalIdentity],
    ) -> RedirectResponse:
        if self.on_callback is not None:
            return await self.on_callback(error, context, session, identity)
        if error or session is None:
            return RedirectResponse(f"{self.app_base_url}{AuthRoutes.LOGOUT}", status_code=302)
        return RedirectResponse(f"{self.app_base_url}{context.return_to or self.sign_in_return_to}", status_code=302)

    # ------------------------
    # /auth/login
    # ------------------------
    async def login(self, request: Request) -> RedirectResponse:
        """Start the code flow: PKCE params go into a signed cookie, user goes to the IdP."""
        disc = await self._discover()
        auth_ep = disc.get("authorization_endpoint")
        if not auth_ep:
            raise HTTPException(status_code=500, detail="discovery missing authorization_endpoint")

        pkce = _pkce_params()
        return_to = safe_return_to(request.query_params.get("returnTo")) or self.sign_in_return_to
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "code_challenge": pkce["code_challenge"],
            "code_challenge_method": "S256",
            "state": pkce["state"],
            "nonce": pkce["nonce"],
        }
        screen_hint = request.query_params.get("screen_hint")
        if screen_hint:
            params["screen_hint"] = screen_hint

        auth_trace("oidc.login.start", return_to=return_to, screen_hint=screen_hint)

        resp = RedirectResponse(f"{auth_ep}?{urlencode(params)}", status_code=302)
        resp.set_cookie(
            TXN_COOKIE_NAME,
            self._txn.dumps({"return_to": return_to, **pkce}),
            secure=self.cookie_secure,
            httponly=True,
            samesite="lax",
            max_age=TXN_TTL_SEC,
            path="/",
        )
        return resp

    # ------------------------
    # /auth/callback
    # ------------------------
    async def callback(self, request: Request) -> RedirectResponse:
        q = request.query_params
        raw_txn = request.cookies.get(TXN_COOKIE_NAME)
        txn = self._txn.loads(raw_txn, max_age=TXN_TTL_SEC) if raw_txn else None
        context = CallbackContext(return_to=safe_return_to((txn or {}).get("return_to")))

        error: Optional[str] = None
        session: Optional[SessionData] = None
        identity: Optional[CanonicalIdentity] = None
        id_token = ""

        if q.get("error"):
            error = f"{q.get('error')}: {q.get('error_description', '')}".strip()
        elif txn is None:
            error = "missing or expired login transaction"
        elif not q.get("code") or q.get("state") != txn.get("state"):
            error = "state mismatch"
        else:
            try:
                disc = await self._discover()
                token_ep = disc.get("token_endpoint")
                if not token_ep:
                    raise HandshakeError("discovery missing token_endpoint")
                tokens = await self._exchange_code(token_ep, q["code"], txn["code_verifier"])
                id_token = tokens.get("id_token") or ""
                if not id_token:
                    raise HandshakeError("no id_token in token response")
                claims = self.verify_id_token(id_token, disc.get("jwks_uri", ""), txn.get("nonce"))
                session = self._session_from_tokens(claims, tokens)
                identity = parse_provider_sub(session.user.sub)
            except (HandshakeError, httpx.HTTPError, ValueError) as ex:
                error = str(ex)

        if error:
            auth_trace("oidc.callback.error", err=error)

        resp = await self._run_on_callback(error, context, session, identity)
        resp.delete_cookie(TXN_COOKIE_NAME, path="/")

        if error or session is None or self._is_logout_redirect(resp):
            return resp

        to_save = session
        if self.before_session_saved is not None:
            to_save = self.before_session_saved(session, id_token, identity)
        resp.set_cookie(
            SESSION_COOKIE_NAME,
            self._session.dumps(to_save.model_dump(mode="json")),
            secure=self.cookie_secure,
            httponly=True,
            samesite="lax",
            max_age=self.session_ttl,
            path="/",
        )
        auth_trace("oidc.callback.session_saved", sub=to_save.user.sub)
        return resp

    # ------------------------
    # /auth/logout
    # ------------------------
    async def logout(self, _: Request) -> RedirectResponse:
        target = self.app_base_url
        try:
            end_session = (await self._discover()).get("end_session_endpoint")
        except httpx.HTTPError as ex:
            logger.warning("logout: discovery failed, skipping IdP logout: %s", ex)
            end_session = None
        if end_session:
            target = f"{end_session}?" + urlencode({
                "client_id": self.client_id,
                "post_logout_redirect_uri": self.app_base_url,
            })

        resp = RedirectResponse(target, status_code=302)
        resp.delete_cookie(SESSION_COOKIE_NAME, path="/")
        auth_trace("oidc.logout", idp=bool(end_session))
        return resp
