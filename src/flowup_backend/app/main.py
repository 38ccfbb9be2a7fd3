# src/flowup_backend/app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from dotenv import load_dotenv

# Load .env before any module reads environment variables
load_dotenv()

from flowup_backend.app.core.logging import setup_logging
setup_logging()

from flowup_backend.app.api.routes.dashboard import router as dashboard_router
from flowup_backend.app.core.auth_client import get_identity_client, get_profile_store
from flowup_backend.app.store.sql import SqlProfileStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    store = get_profile_store()
    if isinstance(store, SqlProfileStore):
        await store.create_tables()
    yield


app = FastAPI(title="FlowUp API", version="0.1.0", lifespan=lifespan)

# 0) /auth/login, /auth/callback, /auth/logout - only when the IdP is configured
try:
    app.include_router(get_identity_client().router)
except RuntimeError as ex:
    logger.warning("[main] Skipping auth routes: %s", ex)

# 1) Health check (open)
@app.get("/healthz")
def health():
    return {"status": "ok"}

# 2) Dashboard (session required)
app.include_router(dashboard_router)
