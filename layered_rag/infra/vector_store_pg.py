"""
PostgreSQL pgvector 向量索引实现

- 向量保存在 chunk_vectors 表（chunk_id → embedding），文本和文档状态从 chunks / documents 表关联
- HNSW 索引（vector_cosine_ops，m=16, ef_construction=64），相似度 = 1 - 余弦距离
- 文档状态实时关联 documents 表，状态变更（审核/归档/重新送审）立即影响检索结果

HNSW 是近似检索：先按距离取 candidate_limit 个满足范围过滤的候选（走索引），
再在候选集内做阈值过滤和确定性排序（相似度 → 审核时间 → 文档 ID → 位置）。

范围过滤在索引扫描之后执行。未开启 iterative scan 时，一次扫描最多返回
ef_search 个向量，可读范围只占语料一小部分的用户可能拿不到任何候选；
因此 ef_search 随候选集放大，并默认开启 hnsw.iterative_scan = strict_order。
"""

import logging

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from layered_rag.config import get_settings
from layered_rag.infra.vector_store import BaseVectorIndex, ScopeFilter, VectorRecord, rank_key
from layered_rag.models.enums import Layer
from layered_rag.services.layer_resolver import ANY_SCOPE

logger = logging.getLogger(__name__)

# pgvector 允许的 hnsw.ef_search 上限
HNSW_MAX_EF_SEARCH = 1000


def _vector_literal(vector: list[float]) -> str:
    return "[" + ",".join(str(float(x)) for x in vector) + "]"


def build_scope_clause(filters: list[ScopeFilter]) -> tuple[str, dict, list[str]]:
    """
    将过滤条件编译为 SQL WHERE 子句

    Returns:
        (子句, 参数, 需要 expanding 的参数名列表)
    """
    clauses: list[str] = []
    params: dict = {}
    expanding: list[str] = []

    for i, f in enumerate(filters):
        parts = [f"d.layer = :layer_{i}"]
        params[f"layer_{i}"] = f.scope.layer.value
        if f.scope.layer == Layer.PLATFORM:
            parts.append("d.scope_id IS NULL")
        elif f.scope.scope_id != ANY_SCOPE:
            parts.append(f"d.scope_id = :scope_{i}")
            params[f"scope_{i}"] = f.scope.scope_id
        parts.append(f"d.status IN :statuses_{i}")
        params[f"statuses_{i}"] = list(f.statuses)
        expanding.append(f"statuses_{i}")
        clauses.append("(" + " AND ".join(parts) + ")")

    return " OR ".join(clauses), params, expanding


class PgVectorIndex(BaseVectorIndex):
    """PostgreSQL pgvector 向量索引"""

    DEFAULT_TABLE = "chunk_vectors"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        table_name: str | None = None,
    ):
        self._settings = get_settings()
        self._session_factory = session_factory
        self._table_name = table_name or self._settings.vector_table or self.DEFAULT_TABLE

    async def ensure_table(self, session: AsyncSession, dim: int) -> None:
        """确保 pgvector 扩展、向量表和 HNSW 索引存在（开发环境启动时调用）"""
        await session.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await session.execute(text(f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                chunk_id VARCHAR(36) PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
                embedding vector({dim}) NOT NULL
            )
        """))
        # pgvector 的 vector 类型 HNSW 索引最多支持 2000 维
        if dim <= 2000:
            await session.execute(text(f"""
                CREATE INDEX IF NOT EXISTS idx_{self._table_name}_embedding
                ON {self._table_name}
                USING hnsw (embedding vector_cosine_ops) WITH (m = 16, ef_construction = 64)
            """))
        else:
            logger.warning(f"向量维度 {dim} 超过 2000，跳过 HNSW 索引创建，检索将退化为全表扫描")
        await session.commit()

    async def search(
        self,
        *,
        query_vector: list[float],
        filters: list[ScopeFilter],
        threshold: float,
        top_k: int,
    ) -> list[VectorRecord]:
        if not filters or top_k <= 0:
            return []

        scope_clause, params, expanding = build_scope_clause(filters)
        candidate_limit = max(top_k * 4, int(self._settings.hnsw_ef_search))
        ef_search = min(candidate_limit, HNSW_MAX_EF_SEARCH)
        params.update({
            "embedding": _vector_literal(query_vector),
            "threshold": threshold,
            "candidate_limit": candidate_limit,
            "top_k": top_k,
        })

        stmt = text(f"""
            WITH candidates AS (
                SELECT
                    c.id AS chunk_id, c.document_id, c.position, c.text,
                    d.layer, d.scope_id, d.status, d.title, d.approved_at,
                    d.source_type, d.quality_level,
                    v.embedding <=> CAST(:embedding AS vector) AS distance
                FROM {self._table_name} v
                JOIN chunks c ON c.id = v.chunk_id
                JOIN documents d ON d.id = c.document_id
                WHERE {scope_clause}
                ORDER BY v.embedding <=> CAST(:embedding AS vector)
                LIMIT :candidate_limit
            )
            SELECT *, 1 - distance AS score
            FROM candidates
            WHERE 1 - distance >= :threshold
            ORDER BY score DESC, approved_at DESC NULLS LAST, document_id ASC, position ASC
            LIMIT :top_k
        """).bindparams(*(bindparam(name, expanding=True) for name in expanding))

        async with self._session_factory() as session:
            await session.execute(text(f"SET LOCAL hnsw.ef_search = {ef_search}"))
            iterative_scan = self._settings.hnsw_iterative_scan
            if iterative_scan != "off":
                await session.execute(text(f"SET LOCAL hnsw.iterative_scan = {iterative_scan}"))
            result = await session.execute(stmt, params)
            rows = result.mappings().all()

        records = [
            VectorRecord(
                chunk_id=row["chunk_id"],
                document_id=row["document_id"],
                position=row["position"],
                text=row["text"],
                score=float(row["score"]),
                layer=row["layer"],
                scope_id=row["scope_id"],
                status=row["status"],
                title=row["title"],
                approved_at=row["approved_at"],
                source_type=row["source_type"],
                quality_level=row["quality_level"],
            )
            for row in rows
        ]
        # 数据库与 Python 的浮点排序可能有细微差异，统一按 rank_key 再排一次
        records.sort(key=rank_key)
        logger.debug(f"pgvector 检索完成: {len(records)} 条命中")
        return records
