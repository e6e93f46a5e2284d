"""Tests for role lookups."""

import pytest

from storefront import users

pytestmark = pytest.mark.anyio


class TestRoles:
    async def test_missing_user_id_has_no_roles(self, session):
        assert await users.get_user_roles(session, None) == []
        assert await users.is_admin(session, None) is False

    async def test_missing_profile_is_customer(self, session):
        assert await users.get_user_roles(session, "stranger") == ["customer"]
        assert await users.is_team_member(session, "stranger") is False

    async def test_admin_is_team_member(self, session):
        await users.save_user_profile(session, "boss", "boss@example.com", ["admin"])
        assert await users.is_admin(session, "boss") is True
        assert await users.is_team_member(session, "boss") is True
        assert await users.get_user_roles(session, "boss") == ["admin"]

    async def test_team_member_is_not_admin(self, session):
        await users.save_user_profile(session, "helper", "helper@example.com", ["team_member"])
        assert await users.is_team_member(session, "helper") is True
        assert await users.is_admin(session, "helper") is False

    async def test_profile_update_replaces_roles(self, session):
        await users.save_user_profile(session, "u", "u@example.com", ["admin"])
        await users.save_user_profile(session, "u", "u@example.com", ["customer"], "U")
        assert await users.get_user_roles(session, "u") == ["customer"]

    async def test_missing_session(self):
        assert await users.get_user_roles(None, "u") == []
