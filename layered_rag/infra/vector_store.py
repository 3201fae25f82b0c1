"""
向量索引模块 (Vector Store)

检索路径只读取已持久化的索引；索引的写入由外部摄取流程完成。

提供两种实现，接口一致：
- InMemoryVectorIndex: 进程内精确余弦检索（numpy），用于开发和测试
- PgVectorIndex: PostgreSQL + pgvector HNSW 索引（见 vector_store_pg.py）

排序规则（保证结果确定）：
    相似度降序 → 审核通过时间降序（越新越靠前）→ 文档 ID 升序 → 片段位置升序
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from layered_rag.services.layer_resolver import AllowedScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeFilter:
    """一个检索过滤条件：范围 + 允许的文档状态"""
    scope: AllowedScope
    statuses: tuple[str, ...]

    def matches(self, layer: str, scope_id: str | None, status: str) -> bool:
        return status in self.statuses and self.scope.covers(layer, scope_id)


@dataclass
class VectorRecord:
    """检索命中的片段及其所属文档元数据"""
    chunk_id: str
    document_id: str
    position: int
    text: str
    score: float
    layer: str
    scope_id: str | None
    status: str
    title: str
    approved_at: datetime | None = None
    source_type: str | None = None
    quality_level: str | None = None


def rank_key(record: VectorRecord) -> tuple:
    """确定性排序键"""
    approved_ts = record.approved_at.timestamp() if record.approved_at else float("-inf")
    return (-record.score, -approved_ts, record.document_id, record.position)


def matches_any(filters: list[ScopeFilter], layer: str, scope_id: str | None, status: str) -> bool:
    return any(f.matches(layer, scope_id, status) for f in filters)


class BaseVectorIndex(ABC):
    """向量索引基类（只读检索接口）"""

    @abstractmethod
    async def search(
        self,
        *,
        query_vector: list[float],
        filters: list[ScopeFilter],
        threshold: float,
        top_k: int,
    ) -> list[VectorRecord]:
        """
        相似度检索

        Args:
            query_vector: 查询向量
            filters: 范围与状态过滤条件（OR 关系）
            threshold: 相似度阈值，低于阈值的结果被排除
            top_k: 最多返回数量

        Returns:
            按 rank_key 排序的命中列表
        """


@dataclass
class _StoredDocument:
    layer: str
    scope_id: str | None
    status: str
    title: str
    approved_at: datetime | None
    source_type: str | None
    quality_level: str | None


@dataclass
class _StoredChunk:
    chunk_id: str
    document_id: str
    position: int
    text: str
    vector: np.ndarray


def _normalize(vector: list[float] | np.ndarray) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr
    return arr / norm


class InMemoryVectorIndex(BaseVectorIndex):
    """
    进程内向量索引

    - 精确余弦相似度（向量写入时归一化）
    - chunk_id 作为主键，重复写入同一片段为覆盖（upsert）
    - 文档状态随生命周期同步（set_document_status）
    """

    def __init__(self, dim: int | None = None):
        self.dim = dim
        self._documents: dict[str, _StoredDocument] = {}
        self._chunks: dict[str, _StoredChunk] = {}

    def upsert_document(
        self,
        document_id: str,
        *,
        layer: str,
        scope_id: str | None,
        status: str,
        title: str,
        approved_at: datetime | None = None,
        source_type: str | None = None,
        quality_level: str | None = None,
    ) -> None:
        """写入或更新文档元数据"""
        self._documents[document_id] = _StoredDocument(
            layer=layer,
            scope_id=scope_id,
            status=status,
            title=title,
            approved_at=approved_at,
            source_type=source_type,
            quality_level=quality_level,
        )

    def has_document(self, document_id: str) -> bool:
        return document_id in self._documents

    def set_document_status(
        self,
        document_id: str,
        status: str,
        approved_at: datetime | None = None,
    ) -> None:
        """同步文档生命周期状态（审核/驳回/归档后调用）"""
        doc = self._documents[document_id]
        doc.status = status
        if approved_at is not None:
            doc.approved_at = approved_at

    def add_chunks(self, document_id: str, chunks: list[dict]) -> None:
        """
        写入文档片段

        Args:
            document_id: 文档 ID（必须已通过 upsert_document 写入）
            chunks: 每项包含 chunk_id, position, text, embedding
        """
        if document_id not in self._documents:
            raise KeyError(f"文档不存在: {document_id}")
        for chunk in chunks:
            embedding = chunk["embedding"]
            if self.dim is not None and len(embedding) != self.dim:
                raise ValueError(f"向量维度不匹配: 期望 {self.dim}，实际 {len(embedding)}")
            self._chunks[chunk["chunk_id"]] = _StoredChunk(
                chunk_id=chunk["chunk_id"],
                document_id=document_id,
                position=chunk["position"],
                text=chunk["text"],
                vector=_normalize(embedding),
            )

    def remove_document(self, document_id: str) -> None:
        """删除文档及其全部片段（文档删除或重新切分时）"""
        self._documents.pop(document_id, None)
        for chunk_id in [c.chunk_id for c in self._chunks.values() if c.document_id == document_id]:
            del self._chunks[chunk_id]

    async def search(
        self,
        *,
        query_vector: list[float],
        filters: list[ScopeFilter],
        threshold: float,
        top_k: int,
    ) -> list[VectorRecord]:
        if not filters or top_k <= 0 or not self._chunks:
            return []

        query = _normalize(query_vector)
        records: list[VectorRecord] = []
        for chunk in self._chunks.values():
            doc = self._documents.get(chunk.document_id)
            if doc is None or not matches_any(filters, doc.layer, doc.scope_id, doc.status):
                continue
            score = float(np.dot(query, chunk.vector))
            if score < threshold:
                continue
            records.append(VectorRecord(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                position=chunk.position,
                text=chunk.text,
                score=score,
                layer=doc.layer,
                scope_id=doc.scope_id,
                status=doc.status,
                title=doc.title,
                approved_at=doc.approved_at,
                source_type=doc.source_type,
                quality_level=doc.quality_level,
            ))

        records.sort(key=rank_key)
        return records[:top_k]
