"""
Tests for the cached session context and branch resolution.
"""

import asyncio

import pytest

from branch_gear_offline.entities.records import EntityTable
from branch_gear_offline.exceptions import AuthenticationRequiredError, ValidationError
from branch_gear_offline.local.context import ContextCache, ContextResolver, SessionContext

from conftest import InMemoryRemoteService, branch_row


class SlowRemote(InMemoryRemoteService):
    """Remote whose selects never answer in time."""

    async def select(self, table, filters=None, order=None, limit=None):
        await asyncio.sleep(5)
        return await super().select(table, filters, order, limit)


class TestContextCache:
    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        path = tmp_path / "ctx" / "context.yaml"
        await ContextCache(path).save(SessionContext(user_id="u1", role="admin", branch_id="b1"))

        loaded = await ContextCache(path).load()

        assert loaded == SessionContext(user_id="u1", role="admin", branch_id="b1")
        assert loaded.is_admin is True

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert await ContextCache(tmp_path / "absent.yaml").load() is None

    @pytest.mark.asyncio
    async def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "context.yaml"
        path.write_text("user_id: [unclosed\n")

        assert await ContextCache(path).load() is None

    @pytest.mark.asyncio
    async def test_unknown_keys_are_ignored(self, tmp_path):
        path = tmp_path / "context.yaml"
        path.write_text("user_id: u1\nlegacy_flag: true\n")

        assert (await ContextCache(path).load()).user_id == "u1"

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        path = tmp_path / "context.yaml"
        cache = ContextCache(path)
        await cache.save(SessionContext(user_id="u1"))

        await cache.clear()

        assert not path.exists()
        assert await cache.load() is None


class TestContextResolver:
    @pytest.mark.asyncio
    async def test_cached_branch_wins(self, context):
        assert await context.current_user_id() == "user-1"
        assert await context.resolve_branch_id() == "branch-1"

    @pytest.mark.asyncio
    async def test_not_signed_in(self, tmp_path, store):
        resolver = ContextResolver(ContextCache(tmp_path / "none.yaml"), store)

        with pytest.raises(AuthenticationRequiredError):
            await resolver.current_user_id()

    @pytest.mark.asyncio
    async def test_remote_role_lookup_is_cached(self, tmp_path, store, remote):
        remote.seed("user_roles", {"id": "ur1", "user_id": "u1", "role": "staff", "branch_id": "b7"})
        cache = ContextCache(tmp_path / "context.yaml")
        await cache.save(SessionContext(user_id="u1"))
        resolver = ContextResolver(cache, store, remote)

        assert await resolver.resolve_branch_id() == "b7"
        reloaded = await ContextCache(tmp_path / "context.yaml").load()
        assert reloaded.branch_id == "b7"
        assert reloaded.role == "staff"

    @pytest.mark.asyncio
    async def test_slow_lookup_falls_back_to_single_local_branch(self, tmp_path, store):
        await store.put(EntityTable.BRANCHES, branch_row("only"))
        cache = ContextCache(tmp_path / "context.yaml")
        await cache.save(SessionContext(user_id="u1"))
        resolver = ContextResolver(cache, store, SlowRemote(), lookup_timeout=0.05)

        assert await resolver.resolve_branch_id() == "only"

    @pytest.mark.asyncio
    async def test_admin_gets_first_branch(self, tmp_path, store):
        await store.put(EntityTable.BRANCHES, {**branch_row("b2"), "created_at": "2024-02-01"})
        await store.put(EntityTable.BRANCHES, {**branch_row("b1"), "created_at": "2024-01-01"})
        cache = ContextCache(tmp_path / "context.yaml")
        await cache.save(SessionContext(user_id="u1", role="admin"))

        assert await ContextResolver(cache, store).resolve_branch_id() == "b1"

    @pytest.mark.asyncio
    async def test_ambiguous_branch_for_staff(self, tmp_path, store):
        await store.put(EntityTable.BRANCHES, branch_row("b1"))
        await store.put(EntityTable.BRANCHES, branch_row("b2"))
        cache = ContextCache(tmp_path / "context.yaml")
        await cache.save(SessionContext(user_id="u1", role="staff"))

        with pytest.raises(ValidationError):
            await ContextResolver(cache, store).resolve_branch_id()
