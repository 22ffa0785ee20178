# src/gateway_conf/backend/db/engine.py

"""
[职责] 数据库引擎与会话工厂：创建 AsyncEngine / async_sessionmaker，提供 init_db/drop_db。
[边界] 不包含 ORM Model 定义；不包含事务编排（由 ConfStore 负责 begin/commit）。
[上游关系] config.py / 环境变量提供数据库连接配置。
[下游关系] ConfStore、CLI 与 gate tests 复用 create_engine/create_sessionmaker。
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from gateway_conf.config import settings

from .base import Base


def _default_db_url() -> str:
    """Repo-local sqlite file fallback."""  # docstring: 最小可用配置（开发环境）
    db_path = settings.local_db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path.as_posix()}"


def resolve_db_url(override: str | None = None) -> str:
    """
    Resolve database URL.

    Priority:
        1) explicit override
        2) settings: GATEWAY_CONF_DATABASE_URL (loads .env)
        3) env: DATABASE_URL
        4) fallback: local sqlite file (repo-root/.Local/gateway_conf.db)
    """
    if override:
        return override
    s_url = str(settings.GATEWAY_CONF_DATABASE_URL or "").strip()
    if s_url:
        return s_url
    env_url = os.getenv("DATABASE_URL", "").strip()
    if env_url:
        return env_url
    return _default_db_url()


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """
    Create AsyncEngine.

    NOTE:
      - For SQLite we rely on aiosqlite driver.
      - The configs table is tiny; pool defaults are fine for production MySQL/PostgreSQL.
    """  # docstring: 生产/测试都可复用；测试可传入临时 sqlite 文件路径
    db_url = resolve_db_url(url)
    db_echo = echo if echo is not None else bool(settings.GATEWAY_CONF_SQL_ECHO)

    return create_async_engine(
        db_url,
        echo=db_echo,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async sessionmaker."""  # docstring: expire_on_commit=False，返回的 row 在会话关闭后仍可读
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


# --- lazily created singletons (app runtime) ---
_ENGINE: Optional[AsyncEngine] = None
_SESSION_FACTORY: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Process-wide default engine."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = create_engine()
    return _ENGINE


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Process-wide default session factory."""
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = create_sessionmaker(get_engine())
    return _SESSION_FACTORY


async def init_db(*, engine: AsyncEngine | None = None) -> None:
    """
    Initialize database schema (create_all).

    IMPORTANT:
      - Production deployments should manage the configs table with migrations.
      - Must import models to register tables in Base.metadata.
    """
    from . import models  # noqa: F401  # docstring: 强制注册 ORM 表

    eng = engine or get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(*, engine: AsyncEngine | None = None) -> None:
    """
    Drop all tables (dangerous).

    Only for local/dev/tests.
    """
    from . import models  # noqa: F401

    eng = engine or get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
