"""
中间件模块

提供 FastAPI 中间件：
- RequestTraceMiddleware: 请求追踪和日志记录
"""

from layered_rag.middleware.request_trace import RequestTraceMiddleware

__all__ = ["RequestTraceMiddleware"]
