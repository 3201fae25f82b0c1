"""
回答生成

将组装好的上下文、引用和用户问题交给 LLM 生成回答：
- 系统提示词 = persona（由 layer_context 选择）+ 零幻觉规则 + 参考资料
- 没有参考资料时，系统提示词要求模型固定回复"未找到相关资料"
- 超时与重试由 chat_completion（call_upstream）负责，这里不再重试
"""

import logging
from dataclasses import dataclass, field

from layered_rag.config import get_settings
from layered_rag.infra.llm import chat_completion
from layered_rag.services.context_assembler import Citation

logger = logging.getLogger(__name__)


# 没有找到资料时要求模型使用的固定回复
NO_MATCH_ANSWER = "我在可用的文档中没有找到相关信息。"

GROUNDING_RULES = f"""回答规则（必须遵守）：
1. 只根据下面提供的参考资料回答，不要使用资料以外的知识，不要推测或补全
2. 每条事实性陈述都要标注来源编号，例如 [1]、[2]
3. 如果参考资料中没有答案，请原样回复：“{NO_MATCH_ANSWER}”
4. 如果不同资料的说法不一致，分别列出并注明各自来源，不要自行裁决"""

SYSTEM_TEMPLATE = """{persona}

{rules}

参考资料：
{context}"""

NO_CONTEXT_TEMPLATE = f"""{{persona}}

当前用户可访问的知识库中没有找到与问题相关的资料。
请不要尝试回答问题本身，只原样回复：“{NO_MATCH_ANSWER}”"""


@dataclass
class GeneratedAnswer:
    """生成结果：回答文本 + 原样传递的引用列表"""
    answer: str
    citations: list[Citation] = field(default_factory=list)


def build_system_prompt(context: str, persona: str) -> str:
    """根据上下文是否为空选择系统提示词模板"""
    if not context:
        return NO_CONTEXT_TEMPLATE.format(persona=persona)
    return SYSTEM_TEMPLATE.format(persona=persona, rules=GROUNDING_RULES, context=context)


async def generate_answer(
    *,
    context: str,
    citations: list[Citation],
    query: str,
    persona: str | None = None,
) -> GeneratedAnswer:
    """
    调用 LLM 生成回答

    Args:
        context: 组装好的上下文，可以为空
        citations: 引用列表，原样返回
        query: 用户问题
        persona: persona 标识（请求中的 layer_context）

    Returns:
        GeneratedAnswer

    Raises:
        UpstreamError / UpstreamTimeoutError: 生成服务调用失败
    """
    settings = get_settings()
    system_prompt = build_system_prompt(context, settings.get_persona_prompt(persona))

    answer = await chat_completion(prompt=query, system_prompt=system_prompt)
    logger.debug(f"生成完成: context_len={len(context)}, answer_len={len(answer)}")

    return GeneratedAnswer(answer=answer, citations=list(citations))
