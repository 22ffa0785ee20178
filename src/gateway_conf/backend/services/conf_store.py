# src/gateway_conf/backend/services/conf_store.py

"""
[职责] ConfStore：网关动态配置的类型化门面（原始 KV 读写、三类业务域的单对象/批量加载与写入、reorg 版本计数）。
[边界] 不缓存任何配置（缓存与失效由消费方基于 checksums 自行决定）；不做限流/鉴权/路由决策。
[上游关系] 限流、ACL、节点路由子系统与 CLI 持有一个 ConfStore（内部仅持有 async_sessionmaker）。
[下游关系] 每次操作独立 session + 事务，经 ConfRepo 访问 configs 表；SQLAlchemy 异常统一包装为 StorageError。
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gateway_conf.config import settings
from gateway_conf.backend.conf.domains import ACL_ALLOW_LIST, NODE_ROUTE_GROUP, RATE_LIMIT_STRATEGY, ConfDomain
from gateway_conf.backend.conf.fingerprint import fingerprint
from gateway_conf.backend.conf.namespace import REORG_VERSION_KEY
from gateway_conf.backend.db.engine import create_sessionmaker, get_sessionmaker
from gateway_conf.backend.db.models.conf import ConfModel
from gateway_conf.backend.db.repo.conf_repo import ConfRepo
from gateway_conf.backend.schemas.conf import (
    AccessAllowList,
    ConfId,
    ConfSnapshot,
    NodeRouteGroup,
    RateLimitChecksums,
    RateLimitConfig,
    RateLimitStrategy,
    T,
)
from gateway_conf.backend.utils.errors import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    ValidationError,
)
from gateway_conf.backend.utils.logging_ import get_logger, log_event, truncate_text


logger = get_logger(__name__)

R = TypeVar("R")

_DECIMAL_RE = re.compile(r"-?[0-9]+")


class _UseSettings:
    """Sentinel: take the value from Settings."""


USE_SETTINGS = _UseSettings()


def parse_reorg_version(raw: Optional[str]) -> int:
    """Absent row -> 0; otherwise a decimal integer string."""
    if raw is None:
        return 0
    text = str(raw)
    if _DECIMAL_RE.fullmatch(text) is None:  # docstring: 拒绝空白/下划线/正号/非 ASCII 数字
        raise ValidationError(
            message="reorg version is not numeric",
            detail={"conf_name": REORG_VERSION_KEY, "value": truncate_text(text, max_len=64)},
        )
    return int(text, 10)


class ConfStore:
    """
    [职责] 面向消费方的配置存取入口。
    [边界] 单对象加载直接抛出 NotFound/Validation/Storage 错误；批量加载按行恢复 ValidationError（记录后跳过），
           StorageError 整批传播。
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        timeout_s: Union[float, None, _UseSettings] = USE_SETTINGS,
        bump_max_retries: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory or get_sessionmaker()  # docstring: 唯一共享资源（连接池）
        self._timeout_s: Optional[float] = (
            settings.GATEWAY_CONF_OP_TIMEOUT_S if isinstance(timeout_s, _UseSettings) else timeout_s
        )
        self._bump_max_retries = int(
            settings.GATEWAY_CONF_BUMP_MAX_RETRIES if bump_max_retries is None else bump_max_retries
        )
        if self._bump_max_retries < 1:
            raise ValueError("bump_max_retries must be >= 1")

    @classmethod
    def from_engine(cls, engine: AsyncEngine, **kwargs) -> "ConfStore":
        return cls(create_sessionmaker(engine), **kwargs)

    # --- plumbing ---

    @asynccontextmanager
    async def _repo(self) -> AsyncIterator[ConfRepo]:
        """One session + one transaction per operation (commit on success, rollback on error)."""
        async with self._session_factory() as session:
            async with session.begin():
                yield ConfRepo(session)

    async def _run(self, op: str, fn: Callable[[], Awaitable[R]]) -> R:
        """
        Apply the per-store deadline and map storage failures.

        asyncio.CancelledError (caller cancelled the task) propagates untouched.
        Only the store's own deadline maps to OperationCancelledError; a timeout raised
        by the driver itself (e.g. connect timeout) is a StorageError.
        """

        async def _guarded() -> R:
            try:
                return await fn()
            except (SQLAlchemyError, asyncio.TimeoutError, OSError) as exc:
                raise StorageError(
                    message=f"{op} failed on backing store",
                    detail={"op": op, "reason": exc.__class__.__name__},
                    cause=exc,
                )

        if self._timeout_s is None:
            return await _guarded()
        try:
            return await asyncio.wait_for(_guarded(), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            raise OperationCancelledError(
                message=f"{op} exceeded deadline",
                detail={"op": op, "timeout_s": self._timeout_s},
                cause=exc,
            )

    # --- raw key/value ---

    async def load_config(self, *names: str) -> Dict[str, str]:
        """name -> value for existing rows; missing names are absent."""

        async def _op() -> Dict[str, str]:
            async with self._repo() as repo:
                return await repo.load_by_names(names)

        return await self._run("load_config", _op)

    async def load_configs_by_prefix(self, prefix: str) -> List[ConfModel]:
        async def _op() -> List[ConfModel]:
            async with self._repo() as repo:
                return await repo.load_by_pattern(prefix)

        return await self._run("load_configs_by_prefix", _op)

    async def load_config_by_id(self, conf_id: ConfId) -> ConfModel:
        async def _op() -> ConfModel:
            async with self._repo() as repo:
                row = await repo.get_by_id(conf_id)
            if row is None:
                raise NotFoundError(message="config not found", detail={"conf_id": conf_id})
            return row

        return await self._run("load_config_by_id", _op)

    async def store_config(self, name: str, value: str) -> None:
        """Upsert by name; id is preserved when the row already exists."""
        if not isinstance(value, str):
            raise TypeError("config value must be str")

        async def _op() -> None:
            async with self._repo() as repo:
                await repo.upsert(name, value)

        await self._run("store_config", _op)
        log_event(logger, logging.DEBUG, "conf.stored", conf_name=name)

    async def delete_config(self, name: str) -> bool:
        async def _op() -> bool:
            async with self._repo() as repo:
                return await repo.delete(name)

        existed = await self._run("delete_config", _op)
        if existed:
            log_event(logger, logging.DEBUG, "conf.deleted", conf_name=name)
        return existed

    # --- typed domains (generic) ---

    async def load_one(self, domain: ConfDomain[T], name: str) -> T:
        key = domain.key(name)

        async def _op() -> ConfModel:
            async with self._repo() as repo:
                row = await repo.get_by_name(key)
            if row is None:
                raise NotFoundError(message=f"{domain.label} not found", detail={"conf_name": key})
            return row

        row = await self._run(f"load {domain.label}", _op)
        return domain.decode(row)

    async def load_one_by_id(self, domain: ConfDomain[T], conf_id: ConfId) -> T:
        row = await self.load_config_by_id(conf_id)
        return domain.decode(row)  # docstring: 其他业务域的行因前缀不符而失败

    async def load_all(self, domain: ConfDomain[T], names: Sequence[str] = ()) -> ConfSnapshot[T]:
        """
        Bulk load a domain; restricted to the given logical names when provided.

        A row that fails to decode is logged and skipped; the rest of the batch is still returned.
        """

        async def _op() -> List[ConfModel]:
            async with self._repo() as repo:
                if names:
                    return await repo.get_many_by_names(domain.key(n) for n in names)
                return await repo.load_by_pattern(domain.prefix)

        rows = await self._run(f"load all {domain.label}", _op)

        snapshot: ConfSnapshot[T] = ConfSnapshot()
        for row in rows:
            try:
                obj = domain.decode(row)
            except ValidationError as exc:
                log_event(
                    logger,
                    logging.WARNING,
                    f"Invalid {domain.label} config",
                    conf_id=row.id,
                    conf_name=row.name,
                    domain=domain.namespace.domain,
                    fields={"event": "conf.decode_skipped", "error": exc.message},
                )
                continue
            snapshot.items[row.id] = obj
            snapshot.checksums[row.id] = fingerprint(row.value)
        return snapshot

    async def store(self, domain: ConfDomain[T], obj: T) -> T:
        """Upsert obj under its domain key; return it stamped with the row id."""
        key, value = domain.encode(obj)

        async def _op() -> int:
            async with self._repo() as repo:
                await repo.upsert(key, value)
                row = await repo.get_by_name(key)
                return row.id

        conf_id = await self._run(f"store {domain.label}", _op)
        log_event(
            logger,
            logging.INFO,
            f"Stored {domain.label}",
            conf_id=conf_id,
            conf_name=key,
            domain=domain.namespace.domain,
        )
        return obj.model_copy(update={"id": conf_id})

    async def delete(self, domain: ConfDomain[T], name: str) -> bool:
        return await self.delete_config(domain.key(name))

    # --- rate limit strategies ---

    async def load_rate_limit_strategy(self, name: str) -> RateLimitStrategy:
        return await self.load_one(RATE_LIMIT_STRATEGY, name)

    async def load_rate_limit_strategy_by_id(self, conf_id: ConfId) -> RateLimitStrategy:
        return await self.load_one_by_id(RATE_LIMIT_STRATEGY, conf_id)

    async def load_rate_limit_strategies(self) -> ConfSnapshot[RateLimitStrategy]:
        return await self.load_all(RATE_LIMIT_STRATEGY)

    async def store_rate_limit_strategy(self, strategy: RateLimitStrategy) -> RateLimitStrategy:
        return await self.store(RATE_LIMIT_STRATEGY, strategy)

    async def delete_rate_limit_strategy(self, name: str) -> bool:
        return await self.delete(RATE_LIMIT_STRATEGY, name)

    # --- access control allow lists ---

    async def load_acl_allow_list(self, name: str) -> AccessAllowList:
        return await self.load_one(ACL_ALLOW_LIST, name)

    async def load_acl_allow_list_by_id(self, conf_id: ConfId) -> AccessAllowList:
        return await self.load_one_by_id(ACL_ALLOW_LIST, conf_id)

    async def load_acl_allow_lists(self) -> ConfSnapshot[AccessAllowList]:
        return await self.load_all(ACL_ALLOW_LIST)

    async def store_acl_allow_list(self, allow_list: AccessAllowList) -> AccessAllowList:
        return await self.store(ACL_ALLOW_LIST, allow_list)

    async def delete_acl_allow_list(self, name: str) -> bool:
        return await self.delete(ACL_ALLOW_LIST, name)

    async def load_rate_limit_configs(self) -> RateLimitConfig:
        """Strategies and allow lists with their checksums, as polled by the rate limiter."""
        strategies = await self.load_rate_limit_strategies()
        allow_lists = await self.load_acl_allow_lists()
        return RateLimitConfig(
            strategies=strategies.items,
            allow_lists=allow_lists.items,
            checksums=RateLimitChecksums(strategies=strategies.checksums, allow_lists=allow_lists.checksums),
        )

    # --- node route groups ---

    async def load_node_route_group(self, name: str) -> NodeRouteGroup:
        return await self.load_one(NODE_ROUTE_GROUP, name)

    async def load_node_route_group_by_id(self, conf_id: ConfId) -> NodeRouteGroup:
        return await self.load_one_by_id(NODE_ROUTE_GROUP, conf_id)

    async def load_node_route_groups(self, *groups: str) -> ConfSnapshot[NodeRouteGroup]:
        """All route groups, or only the named ones when given."""
        return await self.load_all(NODE_ROUTE_GROUP, groups)

    async def store_node_route_group(self, group: NodeRouteGroup) -> NodeRouteGroup:
        return await self.store(NODE_ROUTE_GROUP, group)

    async def delete_node_route_group(self, name: str) -> bool:
        return await self.delete(NODE_ROUTE_GROUP, name)

    # --- reorg version ---

    async def get_reorg_version(self) -> int:
        values = await self.load_config(REORG_VERSION_KEY)
        return parse_reorg_version(values.get(REORG_VERSION_KEY))

    async def bump_reorg_version(self) -> int:
        """
        Atomically increment the reorg version and return the new value.

        Optimistic loop: read the current value, then insert-if-absent or compare-and-set
        in a separate transaction. A failed conditional write means another writer won;
        re-read and retry. Safe for concurrent callers across threads and processes.
        """

        async def _read() -> Optional[str]:
            async with self._repo() as repo:
                return (await repo.load_by_names([REORG_VERSION_KEY])).get(REORG_VERSION_KEY)

        async def _write(current_raw: Optional[str], new_raw: str) -> bool:
            async with self._repo() as repo:
                if current_raw is None:
                    return await repo.insert_if_absent(REORG_VERSION_KEY, new_raw)
                return await repo.compare_and_set(REORG_VERSION_KEY, current_raw, new_raw)

        async def _op() -> int:
            for attempt in range(1, self._bump_max_retries + 1):
                current_raw = await _read()
                new_version = parse_reorg_version(current_raw) + 1
                if await _write(current_raw, str(new_version)):
                    log_event(
                        logger,
                        logging.INFO,
                        "Bumped reorg version",
                        conf_name=REORG_VERSION_KEY,
                        fields={"version": new_version, "attempt": attempt},
                    )
                    return new_version
                log_event(
                    logger,
                    logging.DEBUG,
                    "Reorg version changed concurrently, retrying",
                    conf_name=REORG_VERSION_KEY,
                    fields={"attempt": attempt},
                )
            raise ConflictError(
                message="reorg version bump lost every race",
                detail={"conf_name": REORG_VERSION_KEY, "attempts": self._bump_max_retries},
            )

        return await self._run("bump_reorg_version", _op)
