# src/flowup_backend/app/core/auth_client.py
# Process-wide wiring: profile store -> provisioner -> callback controller -> IdP client.
from __future__ import annotations

import logging
from functools import lru_cache

from flowup_backend.app.auth.callback import CallbackController
from flowup_backend.app.auth.oidc import IdentityClient
from flowup_backend.app.auth.session import enrich_session
from flowup_backend.app.core import config
from flowup_backend.app.services.profiles import ProfileProvisioner
from flowup_backend.app.store.base import ProfileStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_profile_store() -> ProfileStore:
    """
    Build the profile store once per process from PROFILE_STORE:
      docstore : hosted document store at DOCSTORE_URL
      sql      : SQLAlchemy async engine at DATABASE_URL
      memory   : in-process dict (dev only, lost on restart)
    """
    kind = config.PROFILE_STORE
    if kind == "docstore":
        from flowup_backend.app.store.docstore import DocumentProfileStore, DocumentStoreClient
        store: ProfileStore = DocumentProfileStore(
            DocumentStoreClient(config.DOCSTORE_URL, timeout=config.DOCSTORE_TIMEOUT_SEC)
        )
    elif kind == "sql":
        if not config.DATABASE_URL:
            raise RuntimeError("PROFILE_STORE=sql requires DATABASE_URL")
        from flowup_backend.app.store.sql import SqlProfileStore, make_sessionmaker
        store = SqlProfileStore(make_sessionmaker(config.DATABASE_URL))
    elif kind == "memory":
        from flowup_backend.app.store.memory import MemoryProfileStore
        logger.warning("PROFILE_STORE=memory: profiles are not persisted")
        store = MemoryProfileStore()
    else:
        raise RuntimeError(f"Unsupported PROFILE_STORE: {kind}")

    logger.info("profile store: %s", type(store).__name__)
    return store


def build_identity_client(store: ProfileStore, **overrides) -> IdentityClient:
    """IdentityClient with the provisioning callback and session enrichment hooks installed."""
    params = dict(
        domain=config.AUTH_DOMAIN,
        client_id=config.AUTH_CLIENT_ID,
        client_secret=config.AUTH_CLIENT_SECRET,
        app_base_url=config.APP_BASE_URL,
        secret=config.SESSION_SECRET,
        scope=config.AUTH_SCOPE,
        allow_insecure_requests=config.AUTH_ALLOW_INSECURE_REQUESTS,
        test_mode=config.TEST_MODE,
        session_ttl=config.SESSION_TTL_SEC,
        before_session_saved=enrich_session,
    )
    params.update(overrides)
    params.setdefault("on_callback", CallbackController(ProfileProvisioner(store), params["app_base_url"]))
    return IdentityClient(**params)


@lru_cache(maxsize=1)
def get_identity_client() -> IdentityClient:
    return build_identity_client(get_profile_store())
