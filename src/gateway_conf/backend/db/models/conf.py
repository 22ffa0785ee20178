# src/gateway_conf/backend/db/models/conf.py

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


CONF_NAME_MAX_BYTES = 128  # docstring: name 列上限（UTF-8 字节）
CONF_VALUE_MAX_BYTES = 16250  # docstring: value 列上限（UTF-8 字节）


class ConfModel(Base, TimestampMixin):
    """
    [职责] ConfModel：扁平配置表，一行一个配置项（name 全局唯一，value 为原始序列化 payload）。
    [边界] 不区分业务域；域隔离完全依赖 name 的保留前缀（见 conf/namespace.py）。
    [上游关系] ConfRepo 执行 upsert/delete；CLI 与 ConfStore 写入。
    [下游关系] 限流策略 / ACL 白名单 / 节点路由组 / reorg 版本在读取时由 ConfDomain 解码。
    """

    __tablename__ = "configs"
    __table_args__ = {"sqlite_autoincrement": True}  # docstring: 删除后重建必须分配新 id（禁止 rowid 复用）

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="配置ID（自增，原地更新保持不变）",  # docstring: 调用方关联配置变更的身份锚点
    )

    name: Mapped[str] = mapped_column(
        String(CONF_NAME_MAX_BYTES),
        unique=True,
        nullable=False,
        comment="配置名称（<保留前缀><逻辑名>，全表唯一）",
    )

    value: Mapped[str] = mapped_column(
        String(CONF_VALUE_MAX_BYTES),
        nullable=False,
        comment="配置值（原始序列化 payload）",
    )

    def __repr__(self) -> str:
        return f"<ConfModel(id={self.id!r}, name={self.name!r})>"
