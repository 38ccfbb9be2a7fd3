# tests/store/test_sql_store.py
from typing import Optional

import pytest
import pytest_asyncio

from flowup_backend.app.auth.errors import ProfileConflictError
from flowup_backend.app.auth.subject import parse_provider_sub
from flowup_backend.app.services.profiles import ProfileProvisioner
from flowup_backend.app.store.base import NewProfile
from flowup_backend.app.store.sql import SqlProfileStore, make_sessionmaker

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    store = SqlProfileStore(make_sessionmaker(f"sqlite+aiosqlite:///{tmp_path / 'profiles.db'}"))
    await store.create_tables()
    yield store
    await store.session_factory.kw["bind"].dispose()


def _new(sub="github-42", email: Optional[str] = "ada@x.com", name="Ada", provider="github"):
    return NewProfile(sub=sub, name=name, email=email, provider=provider)


async def test_insert_then_find_by_sub_and_by_email(sql_store):
    created = await sql_store.insert_profile(_new())
    assert created.id

    assert await sql_store.find_profile_by_identity_or_email("github-42") == created
    assert await sql_store.find_profile_by_identity_or_email("google-oauth2-1", "ada@x.com") == created
    assert await sql_store.find_profile_by_identity_or_email("google-oauth2-1", "other@x.com") is None


async def test_sub_match_wins_over_email_match(sql_store):
    by_email = await sql_store.insert_profile(_new(sub="github-1", email="a@x.com"))
    by_sub = await sql_store.insert_profile(_new(sub="github-2", email="b@x.com"))

    found = await sql_store.find_profile_by_identity_or_email("github-2", "a@x.com")
    assert found.id == by_sub.id
    assert found.id != by_email.id


async def test_duplicate_sub_is_conflict(sql_store):
    await sql_store.insert_profile(_new())
    with pytest.raises(ProfileConflictError):
        await sql_store.insert_profile(_new(email="else@x.com"))


async def test_duplicate_email_is_conflict(sql_store):
    await sql_store.insert_profile(_new())
    with pytest.raises(ProfileConflictError):
        await sql_store.insert_profile(_new(sub="google-oauth2-9"))


async def test_profiles_without_email_do_not_collide(sql_store):
    await sql_store.insert_profile(_new(sub="github-1", email=None))
    await sql_store.insert_profile(_new(sub="github-2", email=None))
    assert await sql_store.get_user_profile("github-2") is not None


async def test_get_user_profile_matches_sub_only(sql_store):
    await sql_store.insert_profile(_new())
    assert (await sql_store.get_user_profile("github-42")).email == "ada@x.com"
    assert await sql_store.get_user_profile("") is None
    assert await sql_store.get_user_profile("github-43") is None


async def test_create_user_profile_is_get_or_create(sql_store):
    first = await sql_store.create_user_profile("github-42", "Ada", "github", email="ada@x.com")
    same_sub = await sql_store.create_user_profile("github-42", "Renamed", "github", email="new@x.com")
    same_email = await sql_store.create_user_profile("auth-7", "ace", "auth", email="ada@x.com")

    assert same_sub.id == first.id == same_email.id
    assert same_sub.name == "Ada"


class _StaleReadStore(SqlProfileStore):
    """First lookup misses, as if a concurrent callback had not committed yet."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.missed = False

    async def find_profile_by_identity_or_email(self, canonical_key, email=None):
        if not self.missed:
            self.missed = True
            return None
        return await super().find_profile_by_identity_or_email(canonical_key, email)


async def test_provisioner_recovers_from_concurrent_first_login(sql_store):
    winner = await sql_store.insert_profile(_new())
    racing = _StaleReadStore(sql_store.session_factory)

    profile = await ProfileProvisioner(racing).ensure_profile(
        parse_provider_sub("github|42"), name="Ada", email="ada@x.com",
    )
    assert profile.id == winner.id
