# playground/sql_gate/test_conf_repo_gate.py

"""
[职责] repo gate：验证 ConfRepo 的 upsert-by-name（id 稳定）、删除语义、按名/按前缀读取与长度上限。
[边界] 直接使用 AsyncSession；事务由测试显式 begin；不经过 ConfStore 的 deadline/错误包装。
[上游关系] 依赖 db/repo/conf_repo.py 与 db/models/conf.py。
[下游关系] ConfStore 的所有读写建立在这些语义之上。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

import pytest

from gateway_conf.backend.db.engine import create_engine, create_sessionmaker, init_db
from gateway_conf.backend.db.models.conf import CONF_NAME_MAX_BYTES, CONF_VALUE_MAX_BYTES
from gateway_conf.backend.db.repo.conf_repo import ConfRepo
from gateway_conf.backend.utils.errors import StorageError


pytestmark = pytest.mark.sql_gate


async def _with_repo(tmp_path, fn: Callable[[Callable[[], Any]], Awaitable[None]]) -> None:
    """Run fn against a fresh sqlite file; fn receives a tx() factory yielding one repo per transaction."""
    engine = create_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'repo_gate.db'}", echo=False)
    Session = create_sessionmaker(engine)

    @asynccontextmanager
    async def tx() -> AsyncIterator[ConfRepo]:
        async with Session() as session:
            async with session.begin():
                yield ConfRepo(session)

    try:
        await init_db(engine=engine)
        await fn(tx)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_upsert_preserves_id_and_updates_value(tmp_path) -> None:
    async def _body(tx) -> None:
        async with tx() as repo:
            await repo.upsert("acl.allowlist.fluent", '{"enabled":false}')
        async with tx() as repo:
            first = await repo.get_by_name("acl.allowlist.fluent")
        assert first is not None

        for value in ('{"enabled":true}', '{"enabled":true}'):
            async with tx() as repo:
                await repo.upsert("acl.allowlist.fluent", value)  # docstring: 重复写入同名不改变 id

        async with tx() as repo:
            again = await repo.get_by_name("acl.allowlist.fluent")
            rows = await repo.load_by_pattern("acl.allowlist.")
        assert again.id == first.id
        assert again.value == '{"enabled":true}'
        assert len(rows) == 1
        assert again.created_at is not None and again.updated_at is not None

    await _with_repo(tmp_path, _body)


@pytest.mark.asyncio
async def test_delete_and_recreate_allocates_new_id(tmp_path) -> None:
    async def _body(tx) -> None:
        async with tx() as repo:
            await repo.upsert("noderoute.group.vip", '{"nodes":[]}')
            old = await repo.get_by_name("noderoute.group.vip")

        async with tx() as repo:
            assert await repo.delete("noderoute.group.vip") is True
        async with tx() as repo:
            assert await repo.delete("noderoute.group.vip") is False  # docstring: 不存在不报错
            assert await repo.get_by_id(old.id) is None

        async with tx() as repo:
            await repo.upsert("noderoute.group.vip", '{"nodes":[]}')
            new = await repo.get_by_name("noderoute.group.vip")
        assert new.id != old.id

    await _with_repo(tmp_path, _body)


@pytest.mark.asyncio
async def test_load_by_names_skips_missing(tmp_path) -> None:
    async def _body(tx) -> None:
        async with tx() as repo:
            await repo.upsert("reorg.version", "3")
            await repo.upsert("acl.allowlist.a", "{}")
        async with tx() as repo:
            values = await repo.load_by_names(["reorg.version", "acl.allowlist.a", "missing"])
            assert await repo.load_by_names([]) == {}
            rows = await repo.get_many_by_names(["acl.allowlist.a", "missing"])
        assert values == {"reorg.version": "3", "acl.allowlist.a": "{}"}
        assert [r.name for r in rows] == ["acl.allowlist.a"]

    await _with_repo(tmp_path, _body)


@pytest.mark.asyncio
async def test_load_by_pattern_escapes_wildcards(tmp_path) -> None:
    async def _body(tx) -> None:
        async with tx() as repo:
            await repo.upsert("a_b.one", "1")
            await repo.upsert("axb.two", "2")
            await repo.upsert("a%b.three", "3")
        async with tx() as repo:
            underscore = await repo.load_by_pattern("a_b.")
            percent = await repo.load_by_pattern("a%b.")
            everything = await repo.load_by_pattern("")
        assert [r.name for r in underscore] == ["a_b.one"]
        assert [r.name for r in percent] == ["a%b.three"]
        assert [r.name for r in everything] == ["a_b.one", "axb.two", "a%b.three"]  # docstring: 按 id 排序

    await _with_repo(tmp_path, _body)


@pytest.mark.asyncio
async def test_bounds_raise_storage_error(tmp_path) -> None:
    async def _body(tx) -> None:
        async with tx() as repo:
            await repo.upsert("n" * CONF_NAME_MAX_BYTES, "v" * CONF_VALUE_MAX_BYTES)  # docstring: 恰好等于上限可写

        with pytest.raises(StorageError) as ei:
            async with tx() as repo:
                await repo.upsert("n" * (CONF_NAME_MAX_BYTES + 1), "v")
        assert ei.value.detail["field"] == "name"

        with pytest.raises(StorageError) as ei2:
            async with tx() as repo:
                await repo.upsert("big", "v" * (CONF_VALUE_MAX_BYTES + 1))
        assert ei2.value.detail["field"] == "value"
        assert ei2.value.retryable is False

        with pytest.raises(StorageError):
            async with tx() as repo:
                await repo.upsert("multibyte", "é" * (CONF_VALUE_MAX_BYTES // 2 + 1))  # docstring: 按 UTF-8 字节计

        async with tx() as repo:
            assert await repo.get_by_name("big") is None

    await _with_repo(tmp_path, _body)


@pytest.mark.asyncio
async def test_counter_primitives(tmp_path) -> None:
    async def _body(tx) -> None:
        async with tx() as repo:
            assert await repo.insert_if_absent("reorg.version", "1") is True
        async with tx() as repo:
            assert await repo.insert_if_absent("reorg.version", "1") is False
            assert await repo.compare_and_set("reorg.version", "0", "2") is False
            assert await repo.compare_and_set("reorg.version", "1", "2") is True
        async with tx() as repo:
            assert (await repo.load_by_names(["reorg.version"])) == {"reorg.version": "2"}

    await _with_repo(tmp_path, _body)
