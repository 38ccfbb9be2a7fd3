# src/flowup_backend/app/store/sql.py
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import TIMESTAMP, Column, String, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from flowup_backend.app.auth.errors import ProfileConflictError
from flowup_backend.app.store.base import NewProfile, Profile, ProfileStore, pick_profile

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# ORM
# ------------------------------------------------------------
class Base(DeclarativeBase):
    """Base for all ORM models."""
    pass


class ProfileRow(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # canonical identity key, e.g. "github-42"
    sub = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    # NULLs never collide, so profiles without email stay insertable
    email = Column(String, unique=True, nullable=True)
    provider = Column(String, nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def _to_profile(row: ProfileRow) -> Profile:
    return Profile(id=row.id, sub=row.sub, name=row.name, email=row.email, provider=row.provider)


# ------------------------------------------------------------
# Engine / session factory
# ------------------------------------------------------------
def make_sessionmaker(database_url: str, *, echo: bool = False) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(database_url, echo=echo)
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    """Create the profiles table if missing (dev / sqlite; use migrations elsewhere)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ------------------------------------------------------------
# Store
# ------------------------------------------------------------
class SqlProfileStore(ProfileStore):
    """
    Relational profile store. The UNIQUE constraints on sub and email are the
    safety net for concurrent first logins: the losing insert raises
    ProfileConflictError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_tables(self) -> None:
        await init_models(self.session_factory.kw["bind"])

    async def find_profile_by_identity_or_email(
        self, canonical_key: str, email: Optional[str] = None
    ) -> Optional[Profile]:
        cond = ProfileRow.sub == canonical_key
        if email:
            cond = or_(cond, ProfileRow.email == email)

        async with self.session_factory() as db:
            result = await db.execute(select(ProfileRow).where(cond).limit(2))
            rows = result.scalars().all()
        return pick_profile((_to_profile(r) for r in rows), canonical_key)

    async def insert_profile(self, new_profile: NewProfile) -> Optional[Profile]:
        async with self.session_factory() as db:
            row = ProfileRow(
                sub=new_profile.sub,
                name=new_profile.name,
                email=new_profile.email,
                provider=new_profile.provider,
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as ex:
                await db.rollback()
                logger.info("profile insert conflict sub=%s", new_profile.sub)
                raise ProfileConflictError(f"profile for sub={new_profile.sub} already exists") from ex
            await db.refresh(row)
            return _to_profile(row)

    # --- store-side profile functions (query / mutation) ---

    async def get_user_profile(self, sub: str, *, auth_token: Optional[str] = None) -> Optional[Profile]:
        """Equality lookup on sub; empty sub yields None."""
        if not sub:
            return None
        async with self.session_factory() as db:
            result = await db.execute(select(ProfileRow).where(ProfileRow.sub == sub).limit(1))
            row = result.scalar_one_or_none()
        return _to_profile(row) if row else None

    async def create_user_profile(
        self, sub: str, name: str, provider: str, email: Optional[str] = None
    ) -> Profile:
        """
        Get-or-create at the store boundary: return the row matching sub OR
        email if any, else insert. Same match rule as the provisioner's lookup.
        """
        existing = await self.find_profile_by_identity_or_email(sub, email)
        if existing:
            return existing
        new_profile = NewProfile(sub=sub, name=name, email=email, provider=provider)
        try:
            return await self.insert_profile(new_profile)
        except ProfileConflictError:
            existing = await self.find_profile_by_identity_or_email(sub, email)
            if existing is None:
                raise
            return existing
