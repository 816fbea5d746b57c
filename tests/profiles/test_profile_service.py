"""Tests for profile reads and writes."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from luxicle.db.models import User
from luxicle.errors import DuplicateError, ErrorKind, InvalidInputError, NotFoundError
from luxicle.follows.service import follow_user
from luxicle.profiles.schemas import ProfileUpdate, normalize_username
from luxicle.profiles.service import (
    create_user_profile,
    get_user_profile,
    get_user_profile_by_username,
    search_users,
    update_user_profile,
)


class TestUsernameRules:
    def test_lowercases(self):
        assert normalize_username("  Alice_99 ") == "alice_99"

    @pytest.mark.parametrize("value", ["ab", "a" * 31, "has space", "dash-ed", "émile"])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            normalize_username(value)


class TestCreateProfile:
    async def test_create(self, db_session: AsyncSession):
        profile = await create_user_profile(db_session, "u-1", "Carol@Luxicle.io", "Carol")
        assert profile.username == "carol"
        assert profile.email == "carol@luxicle.io"
        assert profile.follower_count == 0

    async def test_username_taken(self, db_session: AsyncSession, alice: User):
        with pytest.raises(DuplicateError, match="Username is already taken"):
            await create_user_profile(db_session, "u-2", "other@luxicle.io", "ALICE")

    async def test_email_taken(self, db_session: AsyncSession, alice: User):
        with pytest.raises(DuplicateError, match="Email already registered"):
            await create_user_profile(db_session, "u-2", alice.email, "someone")

    async def test_bad_username(self, db_session: AsyncSession):
        with pytest.raises(InvalidInputError, match="letters, numbers, and underscores"):
            await create_user_profile(db_session, "u-3", "x@luxicle.io", "no spaces")


class TestReadProfile:
    async def test_by_id(self, db_session: AsyncSession, alice: User):
        result = await get_user_profile(db_session, alice.id)
        assert result.ok
        assert result.unwrap().username == "alice"

    async def test_missing_is_ok_none(self, db_session: AsyncSession):
        result = await get_user_profile(db_session, "nobody")
        assert result.ok
        assert result.unwrap() is None

    async def test_blank_id_is_err(self, db_session: AsyncSession):
        result = await get_user_profile(db_session, "")
        assert not result.ok
        assert result.error.kind is ErrorKind.INVALID_INPUT

    async def test_by_username_ignores_case(self, db_session: AsyncSession, alice: User):
        result = await get_user_profile_by_username(db_session, "  ALICE ")
        assert result.unwrap().id == alice.id

    async def test_counts(self, db_session: AsyncSession, alice: User, bob: User):
        await follow_user(db_session, bob.id, alice.id)
        await db_session.commit()
        alice_profile = (await get_user_profile(db_session, alice.id)).unwrap()
        bob_profile = (await get_user_profile(db_session, bob.id)).unwrap()
        assert (alice_profile.follower_count, alice_profile.following_count) == (1, 0)
        assert (bob_profile.follower_count, bob_profile.following_count) == (0, 1)


class TestSearchUsers:
    async def test_matches_username_and_display_name(self, db_session: AsyncSession, alice: User, bob: User):
        await update_user_profile(db_session, bob.id, {"display_name": "Bob the Builder"})
        await db_session.commit()
        assert [p.username for p in (await search_users(db_session, "ALI")).unwrap()] == ["alice"]
        assert [p.username for p in (await search_users(db_session, "builder")).unwrap()] == ["bob"]

    async def test_paging(self, db_session: AsyncSession, make_user):
        for name in ("sam_a", "sam_b", "sam_c"):
            await make_user(name)
        page = (await search_users(db_session, "sam", limit=2, offset=1)).unwrap()
        assert [p.username for p in page] == ["sam_b", "sam_c"]

    async def test_empty_query_is_err(self, db_session: AsyncSession):
        result = await search_users(db_session, "  ")
        assert result.error.kind is ErrorKind.INVALID_INPUT


class TestUpdateProfile:
    async def test_update_fields(self, db_session: AsyncSession, alice: User):
        profile = await update_user_profile(
            db_session,
            alice.id,
            ProfileUpdate(display_name="Alice A.", twitter_handle="@alice", website_url="https://alice.dev"),
        )
        assert profile.display_name == "Alice A."
        assert profile.twitter_handle == "alice"
        assert profile.website_url == "https://alice.dev"

    async def test_blank_clears(self, db_session: AsyncSession, alice: User):
        await update_user_profile(db_session, alice.id, {"bio": "hello"})
        profile = await update_user_profile(db_session, alice.id, {"bio": "   "})
        assert profile.bio is None

    async def test_username_change_is_normalized(self, db_session: AsyncSession, alice: User):
        profile = await update_user_profile(db_session, alice.id, {"username": "Alice_Two"})
        assert profile.username == "alice_two"

    async def test_username_taken(self, db_session: AsyncSession, alice: User, bob: User):
        with pytest.raises(DuplicateError):
            await update_user_profile(db_session, alice.id, {"username": "bob"})

    async def test_keeping_own_username_is_fine(self, db_session: AsyncSession, alice: User):
        profile = await update_user_profile(db_session, alice.id, {"username": "alice"})
        assert profile.username == "alice"

    @pytest.mark.parametrize(
        "patch",
        [
            {"website_url": "alice.dev"},
            {"bio": "x" * 161},
            {"twitter_handle": "bad handle"},
            {"email": "new@luxicle.io"},
        ],
    )
    async def test_invalid_patch(self, db_session: AsyncSession, alice: User, patch):
        with pytest.raises(InvalidInputError):
            await update_user_profile(db_session, alice.id, patch)

    async def test_missing_profile(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError, match="Profile not found"):
            await update_user_profile(db_session, "nobody", {"bio": "hi"})
