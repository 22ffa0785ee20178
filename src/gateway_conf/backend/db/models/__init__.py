# src/gateway_conf/backend/db/models/__init__.py

"""
[职责] db.models 聚合导出：集中声明 ORM Models，供 init_db 元数据注册与应用层统一导入。
[边界] 仅做导入与 __all__ 暴露；不包含任何业务逻辑。
"""

from __future__ import annotations

from ..base import Base
from .conf import CONF_NAME_MAX_BYTES, CONF_VALUE_MAX_BYTES, ConfModel

__all__ = [
    "Base",
    "ConfModel",
    "CONF_NAME_MAX_BYTES",
    "CONF_VALUE_MAX_BYTES",
]
