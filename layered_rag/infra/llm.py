"""
LLM 客户端模块

支持多种 LLM 提供商：
- OpenAI 及兼容 API（qwen / deepseek / siliconflow）
- Ollama（本地模型）
- Gemini（Google）

每次调用都经过 call_upstream：显式超时 + 瞬时故障单次重试。

使用示例：
    from layered_rag.infra.llm import chat_completion

    response = await chat_completion(
        prompt="项目验收标准是什么？",
        system_prompt="你是一个专业的知识库问答助手",
        temperature=0.3,
    )
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
    """获取 OpenAI 兼容客户端；SDK 自带重试关闭，由 call_upstream 统一控制"""
    return AsyncOpenAI(
        api_key=api_key or "dummy",
        base_url=base_url,
        max_retries=0,
    )


def _build_messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


async def _ollama_chat(
    prompt: str,
    system_prompt: str | None,
    config: dict[str, Any],
    temperature: float,
    max_tokens: int,
) -> str:
    """Ollama Chat API"""
    url = f"{config['base_url']}/api/chat"

    # 超时只由 call_upstream 控制，关闭 httpx 默认的 5 秒超时
    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.post(
            url,
            json={
                "model": config["model"],
                "messages": _build_messages(prompt, system_prompt),
                "stream": False,
                "options": {
                    "temperature": temperature,
                    "num_predict": max_tokens,
                },
            },
        )
        response.raise_for_status()
        return response.json()["message"]["content"]


async def _openai_compatible_chat(
    prompt: str,
    system_prompt: str | None,
    config: dict[str, Any],
    temperature: float,
    max_tokens: int,
) -> str:
    """OpenAI 兼容 API Chat"""
    client = _get_openai_compatible_client(config.get("api_key"), config.get("base_url"))

    response = await client.chat.completions.create(
        model=config["model"],
        messages=_build_messages(prompt, system_prompt),
        temperature=temperature,
        max_tokens=max_tokens,
    )
    return response.choices[0].message.content or ""


async def _gemini_chat(
    prompt: str,
    system_prompt: str | None,
    config: dict[str, Any],
    temperature: float,
    max_tokens: int,
) -> str:
    """Gemini API Chat"""
    url = f"{config['base_url']}/models/{config['model']}:generateContent"

    body: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
        },
    }
    if system_prompt:
        body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

    async with httpx.AsyncClient(timeout=None) as client:
        response = await client.post(url, params={"key": config["api_key"]}, json=body)
        response.raise_for_status()
        result = response.json()
        return result["candidates"][0]["content"]["parts"][0]["text"]


async def chat_completion(
    prompt: str,
    system_prompt: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> str:
    """
    调用 LLM 进行对话补全

    Args:
        prompt: 用户输入
        system_prompt: 系统提示词
        temperature: 温度参数（0-2）
        max_tokens: 最大生成 token 数

    Returns:
        str: LLM 生成的回复

    Raises:
        UpstreamError: 提供商未配置或调用失败
        UpstreamTimeoutError: 调用超时（已重试一次）
    """
    settings = get_settings()
    try:
        config = settings.get_llm_config()
    except ValueError as e:
        raise UpstreamError(str(e), provider=settings.llm_provider) from e
    provider = config["provider"]

    if temperature is None:
        temperature = settings.llm_temperature
    if max_tokens is None:
        max_tokens = settings.llm_max_tokens

    if provider == "ollama":
        call = lambda: _ollama_chat(prompt, system_prompt, config, temperature, max_tokens)  # noqa: E731
    elif provider == "gemini":
        if not config.get("api_key"):
            raise UpstreamError("GEMINI_API_KEY 未配置", provider=provider)
        call = lambda: _gemini_chat(prompt, system_prompt, config, temperature, max_tokens)  # noqa: E731
    elif provider in OPENAI_COMPATIBLE_PROVIDERS:
        if not config.get("api_key"):
            raise UpstreamError(f"{provider.upper()}_API_KEY 未配置", provider=provider)
        call = lambda: _openai_compatible_chat(  # noqa: E731
            prompt, system_prompt, config, temperature, max_tokens
        )
    else:
        raise UpstreamError(f"未知的 LLM 提供者: {provider}", provider=provider)

    return await call_upstream(
        call,
        provider=provider,
        operation="generation",
        timeout=settings.llm_timeout,
        max_retries=settings.upstream_max_retries,
    )
