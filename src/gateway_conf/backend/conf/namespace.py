# src/gateway_conf/backend/conf/namespace.py

"""
[职责] 命名空间键编解码：业务域逻辑名 <-> 扁平表 name（保留前缀 + 逻辑名），并在注册期强制前缀互不为前缀。
[边界] 不访问数据库；不解析 value。
[上游关系] ConfDomain 与 ConfStore 使用默认注册表中的命名空间。
[下游关系] ConfRepo.load_by_pattern 以前缀做 LIKE 匹配；前缀重叠会导致跨域串行，故在此拒绝。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from gateway_conf.backend.utils.errors import ConflictError, ValidationError


RATE_LIMIT_STRATEGY_PREFIX = "ratelimit.strategy."  # eg., ratelimit.strategy.whitelist
ACL_ALLOW_LIST_PREFIX = "acl.allowlist."  # eg., acl.allowlist.fluent
NODE_ROUTE_GROUP_PREFIX = "noderoute.group."  # eg., noderoute.group.cfxvip
REORG_VERSION_KEY = "reorg.version"


@dataclass(frozen=True)
class ConfNamespace:
    """
    [职责] 单个业务域的保留前缀及其编解码。
    [边界] 前缀冲突检查由 NamespaceRegistry 负责，本类只做拼接/剥离。
    """

    domain: str
    prefix: str

    def encode(self, logical_name: str) -> str:
        return f"{self.prefix}{logical_name}"

    def decode(self, key: str) -> str:
        """Strip prefix from a store key; the remaining logical name must be non-empty."""
        if not key.startswith(self.prefix):
            raise ValidationError(
                message=f"{self.domain} key has foreign prefix",
                detail={"domain": self.domain, "key": key, "prefix": self.prefix},
            )
        logical_name = key[len(self.prefix):]
        if not logical_name:
            raise ValidationError(
                message=f"{self.domain} name is too short",
                detail={"domain": self.domain, "key": key},
            )
        return logical_name

    def owns(self, key: str) -> bool:
        return key.startswith(self.prefix)


def _overlaps(a: str, b: str) -> bool:
    return a.startswith(b) or b.startswith(a)


class NamespaceRegistry:
    """
    [职责] 命名空间注册表：登记业务域前缀与单例键，拒绝互为前缀的登记。
    [边界] 只在进程内维护；不持久化；注册期失败抛 ConflictError。
    """

    def __init__(self) -> None:
        self._namespaces: Dict[str, ConfNamespace] = {}
        self._keys: Dict[str, str] = {}  # docstring: 单例键 -> 用途描述

    def register(self, domain: str, prefix: str) -> ConfNamespace:
        if not domain or not prefix:
            raise ValueError("domain and prefix must be non-empty")
        if domain in self._namespaces:
            raise ConflictError(
                message="domain already registered",
                detail={"domain": domain, "prefix": self._namespaces[domain].prefix},
                retryable=False,
            )
        self._check_free(prefix, label=domain)
        ns = ConfNamespace(domain=domain, prefix=prefix)
        self._namespaces[domain] = ns
        return ns

    def register_key(self, key: str, *, purpose: str = "") -> str:
        """Register a singleton key; it may neither prefix nor be prefixed by any other entry."""
        if not key:
            raise ValueError("key must be non-empty")
        self._check_free(key, label=purpose or key)
        self._keys[key] = purpose
        return key

    def _check_free(self, candidate: str, *, label: str) -> None:
        for ns in self._namespaces.values():
            if _overlaps(candidate, ns.prefix):
                raise ConflictError(
                    message="reserved prefix overlaps an existing namespace",
                    detail={"candidate": candidate, "label": label, "domain": ns.domain, "prefix": ns.prefix},
                    retryable=False,
                )
        for key in self._keys:
            if _overlaps(candidate, key):
                raise ConflictError(
                    message="reserved prefix overlaps a singleton key",
                    detail={"candidate": candidate, "label": label, "key": key},
                    retryable=False,
                )

    def get(self, domain: str) -> ConfNamespace:
        try:
            return self._namespaces[domain]
        except KeyError:
            raise KeyError(f"unknown config domain: {domain}") from None

    def resolve(self, key: str) -> Optional[ConfNamespace]:
        """Namespace owning key, if any."""
        for ns in self._namespaces.values():
            if ns.owns(key):
                return ns
        return None

    def __iter__(self) -> Iterator[ConfNamespace]:
        return iter(self._namespaces.values())

    def __contains__(self, domain: object) -> bool:
        return domain in self._namespaces


def build_default_registry() -> NamespaceRegistry:
    registry = NamespaceRegistry()
    registry.register("ratelimit_strategy", RATE_LIMIT_STRATEGY_PREFIX)
    registry.register("acl_allowlist", ACL_ALLOW_LIST_PREFIX)
    registry.register("noderoute_group", NODE_ROUTE_GROUP_PREFIX)
    registry.register_key(REORG_VERSION_KEY, purpose="reorg_version")
    return registry


DEFAULT_REGISTRY = build_default_registry()

RATE_LIMIT_STRATEGY_NS = DEFAULT_REGISTRY.get("ratelimit_strategy")
ACL_ALLOW_LIST_NS = DEFAULT_REGISTRY.get("acl_allowlist")
NODE_ROUTE_GROUP_NS = DEFAULT_REGISTRY.get("noderoute_group")
