"""
文档片段模型 (Chunk) - 检索的基本单位

数据流向: Document → (外部) Chunker → Chunks → Embedder → 向量表 chunk_vectors
向量本身由 PgVectorIndex 管理的 chunk_vectors 表保存，通过 chunk id 关联。
"""

from uuid import uuid4

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from layered_rag.db.base import Base
from layered_rag.models.mixins import UUID_PK, TimestampMixin


class Chunk(TimestampMixin, Base):
    """片段表：同一文档内 position 唯一，重新切分时整体删除重建"""
    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "position", name="uq_chunks_document_position"),
    )

    id: Mapped[UUID_PK] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4()),
    )
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
