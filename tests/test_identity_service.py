"""Tests for IdentityService.ensure_user."""

from __future__ import annotations

import itertools

import pytest
from sqlalchemy import func, select

from gitpulse.dao import UserDAO
from gitpulse.models import User
from gitpulse.services.identity_service import IdentityService


@pytest.fixture
def identity():
    return IdentityService(UserDAO())


async def _user_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(User))).scalar_one()


@pytest.mark.asyncio
async def test_email_match_keeps_remote_id_and_login(identity, session):
    first = await identity.ensure_user(
        session, "A", "a@x.com", login="a-login", remote_id=42, avatar_url="https://a/42"
    )
    second = await identity.ensure_user(session, "A2", "a@x.com", login="a-login2")

    assert first == second
    assert await _user_count(session) == 1
    user = await session.get(User, first)
    assert user.remote_id == 42
    assert user.login == "a-login"
    assert user.name == "A"


@pytest.mark.asyncio
async def test_remote_id_wins_over_changed_email(identity, session):
    first = await identity.ensure_user(session, "A", "old@x.com", login="a", remote_id=42)
    second = await identity.ensure_user(session, "A", "new@x.com", login="a-renamed", remote_id=42)
    assert first == second
    assert await _user_count(session) == 1


@pytest.mark.asyncio
async def test_later_remote_id_enriches_existing_row(identity, session):
    first = await identity.ensure_user(session, "B", "b@x.com")
    second = await identity.ensure_user(
        session, "B", "b@x.com", login="b", remote_id=7, avatar_url="https://a/7"
    )
    assert first == second
    user = await session.get(User, first)
    assert user.remote_id == 7
    assert user.avatar_url == "https://a/7"


@pytest.mark.asyncio
async def test_login_match(identity, session):
    first = await identity.ensure_user(session, "C", None, login="c-login")
    second = await identity.ensure_user(session, "C", None, login="c-login")
    assert first == second


@pytest.mark.asyncio
async def test_conflicting_remote_id_not_merged(identity, session):
    """An email shared by two remote accounts yields two users."""
    first = await identity.ensure_user(session, "D", "shared@x.com", remote_id=1)
    second = await identity.ensure_user(session, "E", "shared@x.com", remote_id=2)
    assert first != second
    assert await _user_count(session) == 2


@pytest.mark.asyncio
async def test_created_without_login_keeps_login_empty(identity, session):
    user_id = await identity.ensure_user(session, "Fay", "fay@x.com")
    user = await session.get(User, user_id)
    assert user.login is None
    assert user.name == "Fay"


@pytest.mark.asyncio
async def test_blank_email_ignored(identity, session):
    first = await identity.ensure_user(session, "G", "", login="g")
    second = await identity.ensure_user(session, "H", "", login="h")
    assert first != second


@pytest.mark.asyncio
async def test_name_only_actor_reuses_one_row(identity, session):
    first = await identity.ensure_user(session, "Bob", None)
    second = await identity.ensure_user(session, "Bob", "")
    assert first == second
    assert await _user_count(session) == 1


@pytest.mark.asyncio
async def test_name_only_actor_never_claims_an_identified_user(identity, session):
    known = await identity.ensure_user(session, "Bob", "bob@x.com", remote_id=5)
    anonymous = await identity.ensure_user(session, "Bob", None)
    assert anonymous != known
    assert await identity.ensure_user(session, "Bob", None) == anonymous
    assert await _user_count(session) == 2


SIGNALS = [
    {"name": "Z", "email": "z@x.com", "login": None, "remote_id": None},
    {"name": "Z", "email": None, "login": "zed", "remote_id": 99},
    {"name": "Z", "email": "z@x.com", "login": "zed", "remote_id": 99},
]


@pytest.mark.asyncio
@pytest.mark.parametrize("order", list(itertools.permutations(range(len(SIGNALS)))))
async def test_one_row_per_remote_id_in_any_order(identity, session, order):
    ids = set()
    for index in order:
        signal = SIGNALS[index]
        ids.add(
            await identity.ensure_user(
                session,
                signal["name"],
                signal["email"],
                login=signal["login"],
                remote_id=signal["remote_id"],
            )
        )

    rows = (await session.execute(select(User).where(User.remote_id == 99))).scalars().all()
    assert len(rows) == 1
    assert len(ids) <= 2
