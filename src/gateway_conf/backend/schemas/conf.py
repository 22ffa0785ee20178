# src/gateway_conf/backend/schemas/conf.py

"""
[职责] 配置域契约层：限流策略 / ACL 白名单 / 节点路由组的类型化对象，及批量加载快照结构。
[边界] 不访问 DB；不做限流/鉴权/路由决策；只表达经过校验的配置形状与身份锚点（id + 逻辑名）。
[上游关系] conf/domains.py 将 ConfModel.value（JSON）校验为本模块的模型并注入 id/name。
[下游关系] 网关限流、ACL、节点路由子系统消费这些对象；ConfSnapshot.checksums 供其判断是否需要重建。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Generic, List, Literal, Mapping, Optional, TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gateway_conf.backend.conf.fingerprint import ChecksumDiff, diff_checksums


ConfId = int  # docstring: configs.id（自增整数）

_IDENTITY_FIELDS = {"id", "name"}


class ConfObject(BaseModel):
    """
    [职责] 类型化配置对象基类：携带行 id 与逻辑名作为外部身份锚点。
    [边界] id/name 来自存储行而非 payload；序列化 payload 时排除。
    """

    model_config = ConfigDict(extra="ignore")

    id: ConfId = Field(default=0, ge=0)  # docstring: 行 id；未持久化对象为 0
    name: str = Field(..., min_length=1)  # docstring: 逻辑名（已剥离前缀）

    def payload(self) -> Dict[str, object]:
        return self.model_dump(mode="json", exclude=_IDENTITY_FIELDS)

    def to_conf_value(self) -> str:
        """Serialize payload fields (identity excluded) for storage."""
        return json.dumps(self.payload(), ensure_ascii=False, separators=(",", ":"), sort_keys=True)


# --- rate limit ---

RateLimitAlgo = Literal["token_bucket", "fixed_window"]


class RateLimitRule(BaseModel):
    """
    [职责] 单条限流规则参数（算法 + 参数）。
    [边界] 不实现算法本身；只校验参数与算法匹配。
    """

    model_config = ConfigDict(extra="ignore")

    algo: RateLimitAlgo = Field(default="token_bucket")
    rate: Optional[float] = Field(default=None, allow_inf_nan=False)  # docstring: token_bucket 每秒补充令牌数
    burst: Optional[int] = Field(default=None)  # docstring: token_bucket 桶容量
    interval_s: Optional[float] = Field(default=None, allow_inf_nan=False)  # docstring: fixed_window 窗口长度（秒）
    quota: Optional[int] = Field(default=None)  # docstring: fixed_window 窗口内配额

    @model_validator(mode="after")
    def _check_algo_params(self) -> "RateLimitRule":
        if self.algo == "token_bucket":
            if self.rate is None or self.rate <= 0:
                raise ValueError("token_bucket requires rate > 0")
            if self.burst is None or self.burst < 0:
                raise ValueError("token_bucket requires burst >= 0")
        else:
            if self.interval_s is None or self.interval_s <= 0:
                raise ValueError("fixed_window requires interval_s > 0")
            if self.quota is None or self.quota < 0:
                raise ValueError("fixed_window requires quota >= 0")
        return self


class RateLimitStrategy(ConfObject):
    """Named throttling policy: rule name (RPC method or method group) -> rule."""

    rules: Dict[str, RateLimitRule] = Field(default_factory=dict)

    @field_validator("rules")
    @classmethod
    def _rule_names_non_empty(cls, v: Dict[str, RateLimitRule]) -> Dict[str, RateLimitRule]:
        if any(not str(k).strip() for k in v):
            raise ValueError("rule name must be non-empty")
        return v


# --- access control ---


class AccessAllowList(ConfObject):
    """Named allow-list policy consumed by the access-control subsystem."""

    enabled: bool = Field(default=True)
    allow_methods: List[str] = Field(default_factory=list)  # docstring: 允许的 RPC 方法
    disallow_methods: List[str] = Field(default_factory=list)  # docstring: 禁止的 RPC 方法
    user_agents: List[str] = Field(default_factory=list)
    origins: List[str] = Field(default_factory=list)
    contract_addresses: List[str] = Field(default_factory=list)


# --- node route ---


class NodeRouteGroup(ConfObject):
    """Named ordered list of backend node endpoint URLs."""

    nodes: List[str] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def _nodes_are_urls(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for raw in v:
            url = str(raw).strip()
            parts = urlsplit(url)
            if not parts.scheme or not parts.netloc:
                raise ValueError(f"node must be an absolute URL: {raw!r}")
            out.append(url)
        return out


# --- bulk load results ---

T = TypeVar("T", bound=ConfObject)


@dataclass
class ConfSnapshot(Generic[T]):
    """
    [职责] 单个业务域的批量加载结果：id -> 对象，id -> 指纹。
    [边界] 仅包含成功解码的行；解码失败的行既无对象也无指纹。
    """

    items: Dict[ConfId, T] = field(default_factory=dict)
    checksums: Dict[ConfId, bytes] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.items)

    def by_name(self) -> Dict[str, T]:
        return {obj.name: obj for obj in self.items.values()}

    def diff(self, previous: Mapping[ConfId, bytes]) -> ChecksumDiff:
        """Compare against checksums cached from an earlier load."""
        return diff_checksums(previous, self.checksums)


@dataclass
class RateLimitChecksums:
    strategies: Dict[ConfId, bytes] = field(default_factory=dict)
    allow_lists: Dict[ConfId, bytes] = field(default_factory=dict)


@dataclass
class RateLimitConfig:
    """Everything the rate-limiting subsystem loads on boot and poll."""

    strategies: Dict[ConfId, RateLimitStrategy] = field(default_factory=dict)
    allow_lists: Dict[ConfId, AccessAllowList] = field(default_factory=dict)
    checksums: RateLimitChecksums = field(default_factory=RateLimitChecksums)
