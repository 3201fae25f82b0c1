"""
请求追踪中间件

为每个请求生成关联 ID，支持全链路追踪。

功能：
- 生成或接收 X-Request-ID
- 在响应头中返回 request_id 和耗时
- 设置请求上下文供日志使用（错误日志都带关联 ID）
- 记录请求耗时

使用示例：
    from layered_rag.middleware.request_trace import RequestTraceMiddleware

    app.add_middleware(RequestTraceMiddleware)
"""

import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from layered_rag.infra.logging import RequestTimer, get_logger, set_request_id

logger = get_logger(__name__)

# 高频低价值请求，成功时不记日志
SKIP_PATHS = ("/healthz", "/favicon.ico")


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """
    请求追踪中间件

    - 从 X-Request-ID 头获取请求 ID，或自动生成
    - 在响应中返回 X-Request-ID 和 X-Response-Time
    - 记录请求日志（路径、方法、耗时、状态码）
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        timer = RequestTimer()

        try:
            response = await call_next(request)
        except Exception as e:
            metrics = timer.get_metrics()
            logger.error(
                f"{request.method} {request.url.path} - 500 - {metrics['total_ms']:.0f}ms",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": 500,
                    "duration_ms": metrics["total_ms"],
                    "error": str(e),
                },
            )
            raise

        metrics = timer.get_metrics()
        log_extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": metrics["total_ms"],
        }
        message = f"{request.method} {request.url.path} - {response.status_code} - {metrics['total_ms']:.0f}ms"

        if response.status_code >= 500:
            logger.error(message, extra=log_extra)
        elif response.status_code >= 400:
            logger.warning(message, extra=log_extra)
        elif request.url.path not in SKIP_PATHS:
            logger.info(message, extra=log_extra)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{metrics['total_ms']:.0f}ms"

        return response
