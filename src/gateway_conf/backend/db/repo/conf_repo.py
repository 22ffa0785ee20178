# src/gateway_conf/backend/db/repo/conf_repo.py

"""
[职责] ConfRepo：configs 扁平表的数据访问层（按名/按前缀/按 id 读取，upsert-by-name，删除，计数器原语）。
[边界] 不解析 value；不提交事务（只执行语句，commit/rollback 由 ConfStore 的 session.begin() 负责）。
[上游关系] ConfStore 每次操作创建 session 后构造本 repo。
[下游关系] ConfDomain 基于返回的 ConfModel 解码出限流策略/ACL 白名单/路由组。
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_conf.backend.utils.errors import StorageError

from ..models.conf import CONF_NAME_MAX_BYTES, CONF_VALUE_MAX_BYTES, ConfModel


def _check_bounds(name: str, value: Optional[str] = None) -> None:
    """Reject over-long name/value before the write reaches the database."""  # docstring: sqlite 不强制 VARCHAR(n)
    name_size = len(name.encode("utf-8"))
    if name_size > CONF_NAME_MAX_BYTES:
        raise StorageError(
            message="config name exceeds column bound",
            detail={"field": "name", "limit": CONF_NAME_MAX_BYTES, "size": name_size},
            retryable=False,
        )
    if value is None:
        return
    value_size = len(value.encode("utf-8"))
    if value_size > CONF_VALUE_MAX_BYTES:
        raise StorageError(
            message="config value exceeds column bound",
            detail={"field": "value", "name": name, "limit": CONF_VALUE_MAX_BYTES, "size": value_size},
            retryable=False,
        )


class ConfRepo:
    """Config repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session  # docstring: DB 会话（由 ConfStore 注入）

    def _dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    async def load_by_names(self, names: Iterable[str]) -> Dict[str, str]:
        """Fetch values of existing rows; missing names are simply absent."""
        wanted = [str(n) for n in names]
        if not wanted:
            return {}
        stmt = select(ConfModel.name, ConfModel.value).where(ConfModel.name.in_(wanted))
        rows = (await self._session.execute(stmt)).all()
        return {row.name: row.value for row in rows}

    async def get_many_by_names(self, names: Iterable[str]) -> List[ConfModel]:
        """Fetch existing rows for the given full names, ordered by id."""
        wanted = [str(n) for n in names]
        if not wanted:
            return []
        stmt = (
            select(ConfModel)
            .where(ConfModel.name.in_(wanted))
            .order_by(ConfModel.id)
            .execution_options(populate_existing=True)
        )
        return list((await self._session.scalars(stmt)).all())

    async def load_by_pattern(self, prefix: str) -> List[ConfModel]:
        """Fetch all rows whose name starts with prefix (LIKE prefix%, wildcards escaped)."""
        stmt = (
            select(ConfModel)
            .where(ConfModel.name.startswith(prefix, autoescape=True))
            .order_by(ConfModel.id)
            .execution_options(populate_existing=True)
        )
        return list((await self._session.scalars(stmt)).all())

    async def get_by_id(self, conf_id: int) -> Optional[ConfModel]:
        """Fetch row by id."""
        return await self._session.get(ConfModel, conf_id, populate_existing=True)

    async def get_by_name(self, name: str) -> Optional[ConfModel]:
        """Fetch row by full name."""
        stmt = select(ConfModel).where(ConfModel.name == name).execution_options(populate_existing=True)
        return await self._session.scalar(stmt)

    async def upsert(self, name: str, value: str) -> None:
        """
        Insert row, or update value/updated_at in place when name exists.

        The unique constraint on name arbitrates concurrent writers: exactly one row remains.
        """
        _check_bounds(name, value)
        dialect = self._dialect_name()

        if dialect in ("sqlite", "postgresql"):
            dialect_insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = dialect_insert(ConfModel).values(name=name, value=value)
            stmt = stmt.on_conflict_do_update(
                index_elements=[ConfModel.name],
                set_={"value": stmt.excluded.value, "updated_at": func.now()},
            )
            await self._session.execute(stmt)
            return

        if dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(ConfModel).values(name=name, value=value)
            stmt = stmt.on_duplicate_key_update(value=stmt.inserted.value, updated_at=func.now())
            await self._session.execute(stmt)
            return

        # generic fallback: read-then-write inside the caller's transaction
        row = await self.get_by_name(name)
        if row is None:
            self._session.add(ConfModel(name=name, value=value))
        else:
            row.value = value
        await self._session.flush()

    async def delete(self, name: str) -> bool:
        """Delete row by name; return whether a row was removed."""  # docstring: 无 tombstone
        _check_bounds(name)
        stmt = delete(ConfModel).where(ConfModel.name == name).execution_options(synchronize_session=False)
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def insert_if_absent(self, name: str, value: str) -> bool:
        """Insert row only when name is free; return whether this call created it."""
        _check_bounds(name, value)
        dialect = self._dialect_name()

        if dialect in ("sqlite", "postgresql"):
            dialect_insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = dialect_insert(ConfModel).values(name=name, value=value)
            stmt = stmt.on_conflict_do_nothing(index_elements=[ConfModel.name])
        elif dialect in ("mysql", "mariadb"):
            stmt = insert(ConfModel).values(name=name, value=value).prefix_with("IGNORE")
        else:
            if await self.get_by_name(name) is not None:
                return False
            stmt = insert(ConfModel).values(name=name, value=value)

        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1

    async def compare_and_set(self, name: str, expected: str, value: str) -> bool:
        """Conditional update: write value only if the stored value still equals expected."""
        _check_bounds(name, value)
        stmt = (
            update(ConfModel)
            .where(ConfModel.name == name, ConfModel.value == expected)
            .values(value=value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) == 1
