"""
外部服务调用封装

Embedding / LLM 调用共用的超时与重试策略：
- 每次调用都有显式超时（asyncio.wait_for），超时抛出 UpstreamTimeoutError
- 仅对可识别的瞬时网络故障（超时、连接失败、连接重置、502/503/504）重试一次
- 其他错误立即以 UpstreamError 抛出，保留提供商的原始错误信息
- 请求被取消时（客户端断开），CancelledError 原样向上传播，进行中的调用随之中止

使用示例：
    from layered_rag.infra.upstream import call_upstream

    vec = await call_upstream(
        lambda: _openai_compatible_embedding(text, config),
        provider="openai",
        operation="embedding",
        timeout=10.0,
    )
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx
import openai

from layered_rag.exceptions import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 视为瞬时故障的 HTTP 状态码（网关类错误）
TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})


def is_timeout(exc: BaseException) -> bool:
    """判断异常是否为超时"""
    return isinstance(
        exc,
        (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException, openai.APITimeoutError),
    )


def is_transient(exc: BaseException) -> bool:
    """
    判断异常是否为可重试的瞬时网络故障

    Args:
        exc: 调用外部服务时抛出的异常

    Returns:
        True 表示允许重试一次
    """
    if is_timeout(exc):
        return True
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError)):
        return True
    if isinstance(exc, openai.APIConnectionError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code in TRANSIENT_STATUS_CODES
    return False


def provider_message(exc: BaseException) -> str:
    """提取提供商返回的错误信息"""
    if isinstance(exc, httpx.HTTPStatusError):
        body = exc.response.text
        return f"HTTP {exc.response.status_code}: {body}" if body else str(exc)
    if isinstance(exc, openai.APIStatusError):
        return f"HTTP {exc.status_code}: {exc.message}"
    return str(exc) or exc.__class__.__name__


async def call_upstream(
    call: Callable[[], Awaitable[T]],
    *,
    provider: str,
    operation: str,
    timeout: float,
    max_retries: int = 1,
) -> T:
    """
    带超时和瞬时故障重试的外部调用

    Args:
        call: 无参协程工厂，每次尝试重新创建协程
        provider: 提供商名称（用于日志和错误信息）
        operation: 操作名称，如 embedding / generation
        timeout: 单次尝试的超时（秒）
        max_retries: 瞬时故障最多重试次数

    Returns:
        调用结果

    Raises:
        UpstreamTimeoutError: 超时且重试用尽
        UpstreamError: 非瞬时错误，或瞬时错误重试用尽
    """
    attempt = 0
    while True:
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except UpstreamError:
            # 已分类的错误（如缺少 API Key）不重试
            raise
        except Exception as exc:
            transient = is_transient(exc)
            message = provider_message(exc)

            if transient and attempt < max_retries:
                attempt += 1
                logger.warning(
                    f"{operation} 调用瞬时失败 ({provider})，重试第 {attempt} 次: {message}",
                    extra={"provider": provider, "operation": operation, "attempt": attempt},
                )
                continue

            logger.error(
                f"{operation} 调用失败 ({provider}): {message}",
                extra={"provider": provider, "operation": operation, "transient": transient},
            )
            if is_timeout(exc):
                raise UpstreamTimeoutError(
                    f"{provider} {operation} 调用超时（{timeout}s）",
                    provider=provider,
                ) from exc
            raise UpstreamError(message, provider=provider, transient=transient) from exc
