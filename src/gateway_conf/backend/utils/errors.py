# src/gateway_conf/backend/utils/errors.py

"""
[职责] 统一配置子系统的错误合同（error_code/message/detail/cause/retryable）。
[边界] 不依赖 SQLAlchemy/传输层；不记录日志；仅表达语义，由调用方决定是否恢复。
[上游关系] conf 命名空间/解码器/repo/ConfStore 抛出 DomainError 子类。
[下游关系] 网关的限流/ACL/路由子系统与 CLI 根据 error_code 区分 not_found/validation/storage/cancelled。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional


ErrorDetail = Dict[str, Any]  # docstring: 错误细节类型（必须 JSON-safe）

ERROR_CODE_PATTERN_DOT = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")  # docstring: area.reason 规范

STANDARD_ERROR_CODES = {  # docstring: 通用错误码集合
    "not_found",
    "validation_error",
    "storage_error",
    "conflict",
    "cancelled",
}

ERROR_RETRYABLE_BY_CODE = {  # docstring: 通用错误码 -> retryable 默认值
    "not_found": False,
    "validation_error": False,
    "storage_error": True,
    "conflict": True,
    "cancelled": True,
}


def is_valid_error_code(error_code: str) -> bool:
    """
    [职责] 校验错误码是否满足命名规范或通用错误码列表。
    [边界] 仅做格式校验，不保证全局唯一。
    """

    if not error_code:
        return False  # docstring: 空字符串直接视为无效
    if error_code in STANDARD_ERROR_CODES:
        return True
    return bool(ERROR_CODE_PATTERN_DOT.match(error_code))  # docstring: 扩展格式 area.reason


def ensure_json_safe_detail(detail: ErrorDetail) -> ErrorDetail:
    """
    [职责] 校验 detail 是否可 JSON 序列化。
    [边界] detail 必须是 dict；不做降级或裁剪。
    [上游关系] DomainError 初始化时调用。
    [下游关系] CLI 可直接将 detail 写入 JSON 输出。
    """

    if not isinstance(detail, dict):
        raise ValueError("detail must be a dict")
    try:
        json.dumps(detail)  # docstring: JSON 序列化校验
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc
    return detail


class DomainError(Exception):
    """
    [职责] 领域错误最小合同：统一 error_code/message/detail/cause，并提供 retryable 提示。
    [边界] 仅表达语义，不承担日志、告警输出。
    [上游关系] ConfStore/repo/decoder 抛出本错误；必要时携带 cause。
    [下游关系] 调用方依据 error_code 与 retryable 选择重试或上报。
    """

    def __init__(
        self,
        *,
        error_code: str,
        message: str,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        if not is_valid_error_code(error_code):
            raise ValueError(f"invalid error_code: {error_code}")  # docstring: 防止不规范错误码泄露
        normalized_detail = detail or {}
        ensure_json_safe_detail(normalized_detail)

        super().__init__(message)
        self.error_code = error_code  # docstring: 稳定错误码
        self.message = message  # docstring: 可读错误信息
        self.detail = normalized_detail  # docstring: JSON-safe 细节
        self.cause = cause  # docstring: 上游异常引用
        self.retryable = (
            retryable if retryable is not None else ERROR_RETRYABLE_BY_CODE.get(error_code, False)
        )  # docstring: 解析 retryable（优先显式值）

        if cause is not None:
            self.__cause__ = cause  # docstring: 保留异常链路

    def to_dict(self) -> Dict[str, Any]:
        """Stable error payload (no cause)."""  # docstring: CLI/上游输出使用
        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class NotFoundError(DomainError):
    """
    [职责] 按 id/name 的单对象加载未命中时抛出。
    [边界] 批量加载与 load_by_names 不使用本错误（缺失即不返回）。
    """

    def __init__(
        self,
        *,
        message: str = "not found",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(error_code="not_found", message=message, detail=detail, cause=cause)


class ValidationError(DomainError):
    """
    [职责] 逻辑名为空、payload 格式错误、reorg 版本非数字等数据合同违背。
    [边界] 批量加载按行恢复（记录日志后跳过）；单对象加载直接抛给调用方。
    """

    def __init__(
        self,
        *,
        message: str = "validation error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(error_code="validation_error", message=message, detail=detail, cause=cause)


class StorageError(DomainError):
    """
    [职责] 后端存储连接失败或约束违背（含 name/value 超长）。
    [边界] 批量加载整体传播，不做部分恢复。
    """

    def __init__(
        self,
        *,
        message: str = "storage error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(
            error_code="storage_error",
            message=message,
            detail=detail,
            cause=cause,
            retryable=retryable,
        )


class ConflictError(DomainError):
    """
    [职责] 命名空间前缀冲突注册、计数器乐观重试耗尽等冲突语义。
    """

    def __init__(
        self,
        *,
        message: str = "conflict",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(
            error_code="conflict",
            message=message,
            detail=detail,
            cause=cause,
            retryable=retryable,
        )


class OperationCancelledError(DomainError):
    """
    [职责] 操作超过调用方 deadline 被中止。
    [边界] 与 asyncio.CancelledError 区分：任务被外部 cancel 时原样传播，不包装为本错误。
    """

    def __init__(
        self,
        *,
        message: str = "operation cancelled",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(error_code="cancelled", message=message, detail=detail, cause=cause)
