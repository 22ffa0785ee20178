# src/gateway_conf/backend/conf/fingerprint.py

"""
[职责] 配置值指纹：对原始 value 计算固定长度摘要，供轮询方判断“自上次观察后是否变化”。
[边界] 仅做变化探测，不作为完整性/安全校验（MD5，不抗碰撞攻击）；指纹从不落库，每次读取重算。
[上游关系] ConfStore 批量加载时对每一行调用。
[下游关系] 限流/ACL/路由子系统缓存上一轮 checksums，用 diff_checksums 决定重建哪些运行时对象。
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import FrozenSet, Hashable, Mapping, Union


FINGERPRINT_SIZE = hashlib.md5(usedforsecurity=False).digest_size  # 16 bytes


def fingerprint(value: Union[str, bytes]) -> bytes:
    """Deterministic fixed-size digest of a raw config value."""
    data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    return hashlib.md5(data, usedforsecurity=False).digest()


def fingerprint_hex(value: Union[str, bytes]) -> str:
    return fingerprint(value).hex()


@dataclass(frozen=True)
class ChecksumDiff:
    """Ids added, changed, or removed between two checksum snapshots."""

    added: FrozenSet[Hashable] = field(default_factory=frozenset)
    changed: FrozenSet[Hashable] = field(default_factory=frozenset)
    removed: FrozenSet[Hashable] = field(default_factory=frozenset)

    @property
    def unchanged(self) -> bool:
        return not (self.added or self.changed or self.removed)

    @property
    def dirty(self) -> FrozenSet[Hashable]:
        """Ids whose objects must be (re)derived."""
        return self.added | self.changed


def diff_checksums(previous: Mapping[Hashable, bytes], current: Mapping[Hashable, bytes]) -> ChecksumDiff:
    prev_keys = set(previous)
    cur_keys = set(current)
    return ChecksumDiff(
        added=frozenset(cur_keys - prev_keys),
        changed=frozenset(k for k in cur_keys & prev_keys if previous[k] != current[k]),
        removed=frozenset(prev_keys - cur_keys),
    )
