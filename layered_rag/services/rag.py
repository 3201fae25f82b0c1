"""
分层问答服务 (Retrieval-Augmented Generation)

单次请求的处理流程：
1. 校验参数
2. 解析请求者可读的范围（纯计算）
3. 查询向量化（一次 Embedding 调用）
4. 在可读范围内检索相似片段（一次索引读取）
5. 组装有长度上限的上下文和引用
6. 调用 LLM 生成回答（一次生成调用）

请求之间无共享可变状态；检索路径只读，不加锁。
"""

import logging

from layered_rag.config import get_settings
from layered_rag.exceptions import QueryValidationError, ScopePermissionError
from layered_rag.infra.embeddings import get_embedding
from layered_rag.infra.logging import RequestTimer
from layered_rag.infra.vector_store import BaseVectorIndex
from layered_rag.infra.vector_store_factory import get_vector_index
from layered_rag.schemas.ask import AskResponse, SourceCitation
from layered_rag.schemas.internal import AskParams
from layered_rag.services.context_assembler import assemble_context
from layered_rag.services.generation import generate_answer
from layered_rag.services.layer_resolver import OrgDirectory, Principal, resolve_layers
from layered_rag.services.vector_search import search_similar, validate_search_params

logger = logging.getLogger(__name__)


async def answer_question(
    *,
    principal: Principal,
    params: AskParams,
    directory: OrgDirectory | None = None,
    index: BaseVectorIndex | None = None,
) -> AskResponse:
    """
    执行分层问答

    Args:
        principal: 请求者身份（来自认证组件）
        params: 问答参数
        directory: 组织/项目快照
        index: 向量索引，默认使用配置的索引

    Returns:
        AskResponse: 回答、引用来源和处理耗时

    Raises:
        QueryValidationError: 参数不合法
        ScopePermissionError: 无审核权限却请求预览
        UpstreamError / UpstreamTimeoutError: Embedding 或生成服务失败
    """
    settings = get_settings()
    timer = RequestTimer()

    query = (params.query or "").strip()
    if not query:
        raise QueryValidationError("问题不能为空")
    validate_search_params(params.match_threshold, params.match_count)

    resolution = resolve_layers(principal, directory)
    timer.mark("resolve")

    if params.include_pending and not resolution.can_preview_unapproved:
        logger.warning(f"用户 {principal.user_id} 无审核权限，拒绝预览待审核文档")
        raise ScopePermissionError("当前身份无审核权限，不能预览待审核文档")

    hits = []
    if params.match_count > 0:
        query_vector = await get_embedding(query)
        timer.mark("embedding")

        hits = await search_similar(
            index or get_vector_index(),
            query_vector,
            resolution,
            threshold=params.match_threshold,
            match_count=params.match_count,
            include_pending=params.include_pending,
            expected_dim=settings.embedding_dim,
        )
        timer.mark("search")

    assembled = assemble_context(
        hits,
        budget_chars=settings.context_max_chars,
        per_document_cap=settings.context_per_document_cap,
        max_results=settings.context_max_results,
        delimiter=settings.context_delimiter,
    )
    timer.mark("assemble")

    generated = await generate_answer(
        context=assembled.context,
        citations=assembled.citations,
        query=query,
        persona=params.layer_context,
    )
    timer.mark("generation")

    metrics = timer.get_metrics()
    logger.info(
        f"问答完成: user={principal.user_id}, scopes={len(resolution.scopes)}, "
        f"hits={len(hits)}, sources={len(generated.citations)}, total={metrics['total_ms']:.0f}ms",
        extra=metrics,
    )

    return AskResponse(
        answer=generated.answer,
        sources=[
            SourceCitation(
                document_id=c.document_id,
                title=c.title,
                layer=c.layer,
                score=c.score,
            )
            for c in generated.citations
        ],
        processing_time_ms=metrics["total_ms"],
    )
