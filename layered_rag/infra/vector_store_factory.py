"""
向量索引工厂

根据配置选择进程内索引或 PostgreSQL pgvector
"""

import logging
from typing import Literal

from layered_rag.config import get_settings
from layered_rag.infra.vector_store import BaseVectorIndex, InMemoryVectorIndex

logger = logging.getLogger(__name__)

VectorBackendType = Literal["memory", "pgvector"]


def get_vector_backend_type() -> VectorBackendType:
    """获取配置的向量索引类型"""
    backend = (get_settings().vector_backend or "pgvector").lower()
    if backend in ("memory", "inmemory", "in_memory"):
        return "memory"
    return "pgvector"


def create_vector_index() -> BaseVectorIndex:
    """
    根据配置创建向量索引实例

    配置项: VECTOR_BACKEND (环境变量)
    - pgvector: PostgreSQL pgvector HNSW（默认）
    - memory: 进程内精确检索
    """
    if get_vector_backend_type() == "memory":
        logger.info("使用进程内向量索引")
        return InMemoryVectorIndex(dim=get_settings().embedding_dim)

    from layered_rag.db.session import SessionLocal
    from layered_rag.infra.vector_store_pg import PgVectorIndex

    logger.info("使用 PostgreSQL pgvector 向量索引")
    return PgVectorIndex(SessionLocal)


_cached_vector_index: BaseVectorIndex | None = None


def get_vector_index() -> BaseVectorIndex:
    """获取缓存的向量索引实例（单例）"""
    global _cached_vector_index
    if _cached_vector_index is None:
        _cached_vector_index = create_vector_index()
    return _cached_vector_index
