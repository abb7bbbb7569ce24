"""Tests for the grant registry."""
import pytest

from gtm_mcp.oauth.grants import GrantRegistry


@pytest.fixture
def grants(store, codec):
    return GrantRegistry(store, codec)


class TestGrants:
    @pytest.mark.asyncio
    async def test_record_and_get(self, grants):
        grant_id = await grants.record_grant("alice", "gtm_abc", ["gtm"])
        grant = await grants.get_grant(grant_id)
        assert grant.subject == "alice"
        assert grant.client_id == "gtm_abc"
        assert grant.scopes == ["gtm"]

    @pytest.mark.asyncio
    async def test_one_grant_per_user_and_client(self, grants):
        first = await grants.record_grant("alice", "gtm_abc", ["gtm"])
        second = await grants.record_grant("alice", "gtm_abc", ["gtm"])
        assert first == second
        assert len(await grants.list_grants("alice")) == 1

    @pytest.mark.asyncio
    async def test_list_is_per_subject(self, grants):
        await grants.record_grant("alice", "gtm_abc", ["gtm"])
        await grants.record_grant("alice", "gtm_xyz", ["gtm"])
        await grants.record_grant("bob", "gtm_abc", ["gtm"])

        alice = await grants.list_grants("alice")
        assert sorted(g.client_id for g in alice) == ["gtm_abc", "gtm_xyz"]
        assert [g.subject for g in await grants.list_grants("bob")] == ["bob"]
        assert await grants.list_grants("carol") == []

    @pytest.mark.asyncio
    async def test_revoke(self, grants):
        grant_id = await grants.record_grant("alice", "gtm_abc", ["gtm"])
        assert await grants.revoke(grant_id, "alice") is True
        assert await grants.get_grant(grant_id) is None
        assert await grants.list_grants("alice") == []
        assert await grants.revoke(grant_id, "alice") is False

    @pytest.mark.asyncio
    async def test_grants_do_not_expire(self, grants, clock):
        grant_id = await grants.record_grant("alice", "gtm_abc", ["gtm"])
        clock.advance(30 * 24 * 3600)
        assert await grants.get_grant(grant_id) is not None
