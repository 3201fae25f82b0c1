"""
向量相似度检索服务

在请求者可读的范围内检索与查询向量最相似的文档片段：
- 只返回 approved 文档的片段
- include_pending=True 时，额外返回请求者可审核范围内的 pending 文档（预览）
- 低于相似度阈值的结果被排除；空范围或无命中返回空列表

检索结果再经过一次范围与状态的二次校验（Security Trimming），
索引返回越权数据时丢弃并记录错误，不会把越权数据交给后续环节。
"""

import logging
import math

from layered_rag.exceptions import QueryValidationError, ScopePermissionError
from layered_rag.infra.vector_store import (
    BaseVectorIndex,
    ScopeFilter,
    VectorRecord,
    matches_any,
    rank_key,
)
from layered_rag.models.enums import DocumentStatus
from layered_rag.services.layer_resolver import ScopeResolution

logger = logging.getLogger(__name__)

APPROVED_ONLY = (DocumentStatus.APPROVED.value,)
APPROVED_AND_PENDING = (DocumentStatus.APPROVED.value, DocumentStatus.PENDING.value)


def build_scope_filters(resolution: ScopeResolution, include_pending: bool = False) -> list[ScopeFilter]:
    """
    将范围解析结果转换为索引过滤条件

    每个可读范围允许 approved；请求预览时，可审核的范围额外允许 pending。
    """
    previewable = set(resolution.previewable)
    filters = []
    for scope in resolution.scopes:
        if include_pending and scope in previewable:
            filters.append(ScopeFilter(scope=scope, statuses=APPROVED_AND_PENDING))
        else:
            filters.append(ScopeFilter(scope=scope, statuses=APPROVED_ONLY))
    return filters


def validate_query_vector(query_vector: list[float], expected_dim: int | None = None) -> None:
    """校验查询向量：非空、维度一致、数值有限、非零向量"""
    if not query_vector:
        raise QueryValidationError("查询向量为空")
    if expected_dim is not None and len(query_vector) != expected_dim:
        raise QueryValidationError(
            f"查询向量维度不匹配: 期望 {expected_dim}，实际 {len(query_vector)}"
        )
    if not all(math.isfinite(x) for x in query_vector):
        raise QueryValidationError("查询向量包含非法数值")
    if not any(query_vector):
        raise QueryValidationError("查询向量为零向量，无法计算余弦相似度")


def validate_search_params(threshold: float, match_count: int) -> None:
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise QueryValidationError("match_threshold 必须是数字")
    if math.isnan(threshold) or not 0.0 <= threshold <= 1.0:
        raise QueryValidationError(f"match_threshold 必须在 0.0 到 1.0 之间: {threshold}")
    if isinstance(match_count, bool) or not isinstance(match_count, int):
        raise QueryValidationError("match_count 必须是整数")
    if match_count < 0:
        raise QueryValidationError(f"match_count 不能为负数: {match_count}")


def filter_results_by_scope(
    records: list[VectorRecord],
    filters: list[ScopeFilter],
) -> list[VectorRecord]:
    """
    后处理：二次校验检索结果的范围和状态

    Args:
        records: 索引返回的结果
        filters: 本次检索使用的过滤条件

    Returns:
        通过校验的结果
    """
    allowed = []
    for record in records:
        if matches_any(filters, record.layer, record.scope_id, record.status):
            allowed.append(record)
        else:
            logger.error(
                f"索引返回越权结果，已丢弃: document={record.document_id} "
                f"layer={record.layer} scope={record.scope_id} status={record.status}"
            )
    return allowed


async def search_similar(
    index: BaseVectorIndex,
    query_vector: list[float],
    resolution: ScopeResolution,
    *,
    threshold: float,
    match_count: int,
    include_pending: bool = False,
    expected_dim: int | None = None,
) -> list[VectorRecord]:
    """
    在可读范围内执行相似度检索

    Args:
        index: 向量索引
        query_vector: 查询向量
        resolution: 请求者的范围解析结果
        threshold: 相似度阈值（0.0-1.0）
        match_count: 最多返回数量，0 表示不检索
        include_pending: 是否预览待审核文档（需要审核能力）
        expected_dim: 配置的向量维度

    Returns:
        按相似度排序的命中列表

    Raises:
        QueryValidationError: 参数不合法
        ScopePermissionError: 无审核能力却请求预览
    """
    validate_search_params(threshold, match_count)

    if include_pending and not resolution.can_preview_unapproved:
        raise ScopePermissionError("当前身份无审核权限，不能预览待审核文档")

    if match_count == 0 or not resolution.scopes:
        return []

    validate_query_vector(query_vector, expected_dim)

    filters = build_scope_filters(resolution, include_pending)
    records = await index.search(
        query_vector=query_vector,
        filters=filters,
        threshold=threshold,
        top_k=match_count,
    )

    records = [r for r in filter_results_by_scope(records, filters) if r.score >= threshold]
    records.sort(key=rank_key)
    return records[:match_count]
