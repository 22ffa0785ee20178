# src/gateway_conf/backend/conf/domains.py

"""
[职责] 业务域解码器：ConfModel 行 -> 类型化配置对象（剥离前缀得逻辑名 -> 解析 JSON payload -> 注入 id/name）。
[边界] 不访问 DB；不吞错（任何失败统一抛 ValidationError，批量加载的“记录并跳过”策略在 ConfStore 中实现）。
[上游关系] ConfStore 从 ConfRepo 读取行后调用 decode/encode。
[下游关系] 输出 RateLimitStrategy / AccessAllowList / NodeRouteGroup。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Generic, Type

from pydantic import ValidationError as PydanticValidationError

from gateway_conf.backend.db.models.conf import ConfModel
from gateway_conf.backend.schemas.conf import AccessAllowList, NodeRouteGroup, RateLimitStrategy, T
from gateway_conf.backend.utils.errors import ValidationError

from .namespace import ACL_ALLOW_LIST_NS, NODE_ROUTE_GROUP_NS, RATE_LIMIT_STRATEGY_NS, ConfNamespace


def _pydantic_errors(exc: PydanticValidationError) -> list:
    """JSON-safe summary of pydantic errors."""
    return [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in exc.errors(include_url=False, include_context=False, include_input=False)
    ]


@dataclass(frozen=True)
class ConfDomain(Generic[T]):
    """
    [职责] 绑定“命名空间 + 类型化模型”，提供行解码与对象编码。
    [边界] label 仅用于日志与错误信息。
    """

    namespace: ConfNamespace
    model: Type[T]
    label: str

    @property
    def prefix(self) -> str:
        return self.namespace.prefix

    def key(self, logical_name: str) -> str:
        return self.namespace.encode(logical_name)

    def decode(self, record: ConfModel) -> T:
        logical_name = self.namespace.decode(record.name)  # docstring: 空逻辑名直接失败，与 value 无关

        try:
            payload: Any = json.loads(record.value)
        except (TypeError, ValueError, RecursionError) as exc:  # docstring: 过深嵌套同样视为坏行
            raise ValidationError(
                message=f"malformed {self.label} payload",
                detail={"conf_id": record.id, "conf_name": record.name, "reason": str(exc)},
                cause=exc,
            )
        if not isinstance(payload, dict):
            raise ValidationError(
                message=f"{self.label} payload must be a JSON object",
                detail={"conf_id": record.id, "conf_name": record.name, "type": type(payload).__name__},
            )

        try:
            return self.model.model_validate({**payload, "id": record.id, "name": logical_name})
        except PydanticValidationError as exc:
            raise ValidationError(
                message=f"invalid {self.label} payload",
                detail={"conf_id": record.id, "conf_name": record.name, "errors": _pydantic_errors(exc)},
                cause=exc,
            )

    def encode(self, obj: T) -> tuple[str, str]:
        """Return (store key, serialized value) for obj."""
        if not isinstance(obj, self.model):
            raise TypeError(f"expected {self.model.__name__}, got {type(obj).__name__}")
        return self.key(obj.name), obj.to_conf_value()


RATE_LIMIT_STRATEGY = ConfDomain(RATE_LIMIT_STRATEGY_NS, RateLimitStrategy, "rate limit strategy")
ACL_ALLOW_LIST = ConfDomain(ACL_ALLOW_LIST_NS, AccessAllowList, "access control allowlist")
NODE_ROUTE_GROUP = ConfDomain(NODE_ROUTE_GROUP_NS, NodeRouteGroup, "node route group")
