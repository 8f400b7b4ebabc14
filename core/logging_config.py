"""
Structlog 日志配置模块

worker 入口调用 configure_logging()；测试不调用，直接使用 structlog 默认配置，
便于 structlog.testing.capture_logs 捕获事件。
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter
from structlog.types import EventDict, WrappedLogger

from core.config import settings


def add_service_info(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """每条日志带上服务名与环境，多个 worker 进程的日志汇总后仍可区分"""
    event_dict.setdefault("service", settings.SERVICE_NAME)
    event_dict.setdefault("env", settings.ENVIRONMENT)
    return event_dict


def get_renderer() -> Any:
    """根据环境选择渲染器 (Console in DEBUG, JSON otherwise)."""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        # Decimal 金额等非 JSON 原生类型按字符串输出
        return json.dumps(obj, ensure_ascii=False, default=default or str, **kwargs)

    return JSONRenderer(serializer=_dumps)


def _level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return logging.DEBUG if settings.DEBUG else logging.INFO


def configure_logging() -> None:
    """配置 structlog 并桥接标准库 logging（aiokafka、sqlalchemy）到同一处理链。

    merge_contextvars 让 consumer 绑定的 event_id / correlation_id
    出现在 handler 内的每一行日志上。
    """
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        add_service_info,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared_pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level())
    # aiokafka 在 INFO 级别输出每次 rebalance 与连接细节
    logging.getLogger("aiokafka").setLevel(max(_level(), logging.WARNING))


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)
