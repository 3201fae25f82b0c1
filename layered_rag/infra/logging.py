"""
结构化日志配置

提供 JSON 格式的结构化日志，支持请求追踪和可观测性。

功能：
- JSON 格式输出，便于日志聚合（ELK/Loki）
- 关联 ID 追踪（X-Request-ID），所有错误日志都带上关联 ID
- 请求者（user_id）关联
- 阶段耗时记录

使用示例：
    from layered_rag.infra.logging import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("检索完成", extra={"user_id": "xxx", "hits": 3})
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from layered_rag.config import get_settings

# 请求上下文变量
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


def get_request_id() -> str | None:
    """获取当前请求的关联 ID"""
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    """设置当前请求的关联 ID"""
    request_id_var.set(request_id)


def get_user_id() -> str | None:
    """获取当前请求者 ID"""
    return user_id_var.get()


def set_user_id(user_id: str) -> None:
    """设置当前请求者 ID"""
    user_id_var.set(user_id)


class JSONFormatter(logging.Formatter):
    """
    JSON 格式日志格式化器

    输出格式：
    {
        "timestamp": "2024-01-01T00:00:00.000Z",
        "level": "INFO",
        "logger": "layered_rag.services.rag",
        "message": "检索完成",
        "request_id": "abc123",
        "user_id": "user_001",
        "extra": {...}
    }
    """

    STANDARD_ATTRS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        user_id = get_user_id()
        if user_id:
            log_data["user_id"] = user_id

        if record.levelno <= logging.DEBUG:
            log_data["location"] = f"{record.pathname}:{record.lineno}"

        extra = {
            k: v for k, v in record.__dict__.items()
            if k not in self.STANDARD_ATTRS and not k.startswith("_")
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    控制台友好的日志格式化器（开发环境）

    输出格式：
    2024-01-01 00:00:00 INFO [request_id] logger_name - message
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname
        color = self.COLORS.get(level, "")

        parts = [f"{timestamp} {color}{level:8}{self.RESET}"]

        request_id = get_request_id()
        if request_id:
            parts.append(f"[{request_id[:8]}]")

        parts.append(f"{record.name} -")
        parts.append(record.getMessage())

        result = " ".join(parts)

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    配置应用日志

    Args:
        level: 日志级别（DEBUG/INFO/WARNING/ERROR），默认从配置读取
        json_format: 是否使用 JSON 格式，默认非开发环境使用 JSON
    """
    settings = get_settings()

    if level is None:
        level = settings.log_level
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = settings.log_json
    if json_format is None:
        json_format = settings.environment not in ("dev", "development", "test")

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # 降低第三方库日志级别
    for noisy_logger in (
        "uvicorn.access",
        "httpx",
        "httpcore",
        "openai",
        "sqlalchemy.engine",
    ):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("layered_rag").setLevel(log_level)


def get_logger(name: str) -> logging.Logger:
    """获取 logger 实例"""
    return logging.getLogger(name)


class RequestTimer:
    """
    请求计时器，用于记录各阶段耗时

    使用示例：
        timer = RequestTimer()
        timer.mark("embedding")
        timer.mark("search")
        metrics = timer.get_metrics()
        # {"total_ms": 150, "embedding_ms": 50, "search_ms": 100}
    """

    def __init__(self):
        self.start_time = time.perf_counter()
        self.marks: list[tuple[str, float]] = []
        self._last_mark = self.start_time

    def mark(self, name: str) -> None:
        """记录一个时间点"""
        now = time.perf_counter()
        self.marks.append((name, now - self._last_mark))
        self._last_mark = now

    def elapsed_ms(self) -> float:
        """从开始到现在的总耗时（毫秒）"""
        return round((time.perf_counter() - self.start_time) * 1000, 2)

    def get_metrics(self) -> dict[str, float]:
        """
        获取耗时指标

        Returns:
            包含各阶段耗时的字典（毫秒）
        """
        metrics = {"total_ms": self.elapsed_ms()}
        for name, duration in self.marks:
            metrics[f"{name}_ms"] = round(duration * 1000, 2)
        return metrics
