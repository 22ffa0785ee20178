# src/gateway_conf/backend/utils/logging_.py

"""
[职责] 定义结构化日志字段规范与统一 logger 获取方式，提供最小 JSON 格式化 helper。
[边界] 不绑定具体日志后端，仅提供工具。
[上游关系] conf 解码器/ConfStore/CLI 通过 get_logger/log_event 组织日志上下文。
[下游关系] 日志收集系统消费 conf_id/conf_name/domain 等结构化字段做排障。
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


DEFAULT_LOGGER_NAME = "gateway_conf"  # docstring: 统一 logger 根名称
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_MAX_TEXT_LEN = 160  # docstring: 配置值预览长度

_LOG_RECORD_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}  # docstring: LogRecord 内置字段（不作为结构化额外字段）


class StructuredLogFormatter(logging.Formatter):
    """
    [职责] 将 LogRecord 转换为 JSON 字符串（含结构化字段）。
    [边界] 仅输出基础字段 + extra。
    [上游关系] configure_logging 创建 handler 后挂载。
    [下游关系] 日志收集系统解析 JSON 或 grep 关键字段。
    """

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),  # docstring: 统一 UTC 时间戳
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {k: v for k, v in record.__dict__.items() if k not in _LOG_RECORD_RESERVED and v is not None}
        payload.update(extras)  # docstring: 合并结构化字段

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return json.dumps(payload, ensure_ascii=self._ensure_ascii, default=str)


def configure_logging(
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    level: int | str | None = None,
    ensure_ascii: bool = True,
) -> logging.Logger:
    """
    [职责] 配置统一的 base logger（JSON formatter）。
    [边界] 不触碰 root logger；重复调用不重复挂载 handler。
    [上游关系] 进程入口/CLI 或 get_logger 调用。
    [下游关系] get_logger 复用已配置的 base logger。
    """

    if level is None:
        from gateway_conf.config import settings

        level = str(settings.GATEWAY_CONF_LOG_LEVEL).upper()  # docstring: 默认级别来自 Settings

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    has_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "name", "") == "structured_json" for h in logger.handlers
    )
    if not has_handler:
        handler = logging.StreamHandler()
        handler.name = "structured_json"  # docstring: 标记 handler，避免重复挂载
        handler.setFormatter(StructuredLogFormatter(ensure_ascii=ensure_ascii))
        logger.addHandler(handler)

    # Propagation stays on so host applications (and caplog) still see the records.
    return logger


def get_logger(name: Optional[str] = None, *, level: Optional[int] = None) -> logging.Logger:
    """
    [职责] 获取项目统一 logger（自动确保 base logger 已配置）。
    [边界] 不强制覆写外部 logging 配置。
    """

    base = logging.getLogger(DEFAULT_LOGGER_NAME)
    if not base.handlers:
        configure_logging()  # docstring: 确保 base logger 就绪
    full_name = name or DEFAULT_LOGGER_NAME
    if name and not name.startswith(DEFAULT_LOGGER_NAME):
        full_name = f"{DEFAULT_LOGGER_NAME}.{name}"  # docstring: 统一挂载在项目根 logger 下
    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(level)
    return logger


def build_log_fields(
    *,
    conf_id: Optional[int] = None,
    conf_name: Optional[str] = None,
    domain: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    [职责] 统一构建结构化日志字段（conf_id/conf_name/domain + 额外字段）。
    [边界] 丢弃 None 值；不校验字段合法性。
    [上游关系] log_event 透传显式字段。
    [下游关系] logger.extra 供 StructuredLogFormatter 输出。
    """

    fields: Dict[str, Any] = {}
    explicit_fields = {"conf_id": conf_id, "conf_name": conf_name, "domain": domain}
    for key, value in explicit_fields.items():
        if value is not None:
            fields[key] = value

    if extra:
        for key, value in extra.items():
            if value is not None:
                fields[key] = value
    return fields


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    conf_id: Optional[int] = None,
    conf_name: Optional[str] = None,
    domain: Optional[str] = None,
    fields: Optional[Mapping[str, Any]] = None,
    exc_info: Optional[Any] = None,
) -> None:
    """
    [职责] 统一记录结构化日志（附加配置标识字段）。
    [上游关系] 批量加载跳过坏行、计数器递增、CLI 等关键节点调用。
    """

    extra = build_log_fields(conf_id=conf_id, conf_name=conf_name, domain=domain, extra=fields)
    logger.log(level, message, extra=extra, exc_info=exc_info)


def truncate_text(text: Optional[str], *, max_len: int = DEFAULT_MAX_TEXT_LEN) -> Optional[str]:
    """Truncate long config values before logging."""  # docstring: 避免日志记录完整 payload
    if text is None:
        return None
    s = str(text)
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]}...(truncated)"
