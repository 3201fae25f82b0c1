"""
文本向量化模块 (Embeddings)

将查询文本转换为向量表示，用于语义相似度检索。
文档片段的向量由外部摄取流程写入，这里只负责查询向量。

支持的 Embedding 提供者：
- OpenAI 及兼容 API（qwen / deepseek / siliconflow）
- Ollama（本地模型：bge-m3 等）
- Gemini（text-embedding-004）

使用示例：
    from layered_rag.infra.embeddings import get_embedding

    vec = await get_embedding("项目验收标准是什么？")
"""

import logging
from functools import lru_cache
from typing import Any

import httpx
from openai import AsyncOpenAI

from layered_rag.config import get_settings
from layered_rag.exceptions import UpstreamError
from layered_rag.infra.upstream import call_upstream

logger = logging.getLogger(__name__)

OPENAI_COMPATIBLE_PROVIDERS = ("openai", "qwen", "deepseek", "siliconflow")


@lru_cache(maxsize=8)
def _get_openai_compatible_client(api_key: str | None, base_url: str | None) -> AsyncOpenAI:
    """获取 OpenAI 兼容客户端；超时和重试由 call_upstream 统一控制"""
    return AsyncOpenAI(
        api_key=api_key or "dummy",
        base_url=base_url,
        max_retries=0,
    )


async def _ollama_embedding(text: str, config: dict[str, Any]) -> list[float]:
    """通过 Ollama API 获取 Embedding"""
    url = f"{config['base_url']}/api/embeddings"

    # 超时只由 call_upstream 控制，关闭 httpx 默认的 5 秒超时
    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.post(
            url,
            json={"model": config["model"], "prompt": text},
        )
        response.raise_for_status()
        return response.json()["embedding"]


async def _openai_compatible_embedding(text: str, config: dict[str, Any]) -> list[float]:
    """通过 OpenAI 兼容 API 获取 Embedding"""
    client = _get_openai_compatible_client(config.get("api_key"), config.get("base_url"))
    response = await client.embeddings.create(
        model=config["model"],
        input=text,
    )
    return response.data[0].embedding


async def _gemini_embedding(text: str, config: dict[str, Any]) -> list[float]:
    """通过 Gemini API 获取 Embedding"""
    url = f"{config['base_url']}/models/{config['model']}:embedContent"

    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.post(
            url,
            params={"key": config["api_key"]},
            json={
                "model": f"models/{config['model']}",
                "content": {"parts": [{"text": text}]},
            },
        )
        response.raise_for_status()
        return response.json()["embedding"]["values"]


async def get_embedding(text: str) -> list[float]:
    """
    获取单个文本的 Embedding 向量

    Args:
        text: 输入文本

    Returns:
        list[float]: 向量

    Raises:
        UpstreamError: 提供商未配置或调用失败
        UpstreamTimeoutError: 调用超时
    """
    settings = get_settings()
    try:
        config = settings.get_embedding_config()
    except ValueError as e:
        raise UpstreamError(str(e), provider=settings.embedding_provider) from e
    provider = config["provider"]

    if provider == "ollama":
        call = lambda: _ollama_embedding(text, config)  # noqa: E731
    elif provider == "gemini":
        if not config.get("api_key"):
            raise UpstreamError("GEMINI_API_KEY 未配置，无法生成 Embedding", provider=provider)
        call = lambda: _gemini_embedding(text, config)  # noqa: E731
    elif provider in OPENAI_COMPATIBLE_PROVIDERS:
        if not config.get("api_key"):
            raise UpstreamError(f"{provider.upper()}_API_KEY 未配置，无法生成 Embedding", provider=provider)
        call = lambda: _openai_compatible_embedding(text, config)  # noqa: E731
    else:
        raise UpstreamError(f"未知 Embedding 提供者: {provider}", provider=provider)

    logger.debug(f"使用 {provider} Embedding: {config['model']}")
    return await call_upstream(
        call,
        provider=provider,
        operation="embedding",
        timeout=settings.embedding_timeout,
        max_retries=settings.upstream_max_retries,
    )
