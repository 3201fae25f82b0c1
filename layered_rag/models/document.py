"""
文档模型 (Document)

文档按可见性分层（platform / organization / project / user），
scope_id 指明具体的组织、项目或用户。
只有 status=approved 的文档会参与检索。

处理流程：
    上传 → 解析/切分（外部摄取流程）→ draft → pending → approved → 可检索
                                                      └──→ rejected
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from layered_rag.db.base import Base
from layered_rag.models.enums import DocumentStatus
from layered_rag.models.mixins import UUID_PK, TimestampMixin


class Document(TimestampMixin, Base):
    """
    文档表

    字段说明：
    - layer / scope_id: 可见性层级和范围；platform 层 scope_id 必须为空，其余层必须非空
    - status: 生命周期状态（draft / pending / approved / rejected / archived）
    - quality_level: 质量等级（standard / premium）
    - title / source_type: 展示用元数据
    - 审核字段：submitted_at / approved_* / rejected_* / archived_at
    """
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "(layer = 'platform') = (scope_id IS NULL)",
            name="ck_documents_layer_scope",
        ),
        Index("ix_documents_layer_scope_status", "layer", "scope_id", "status"),
    )

    id: Mapped[UUID_PK] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4()),
    )

    layer: Mapped[str] = mapped_column(String(20), nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(36))

    status: Mapped[str] = mapped_column(
        String(20), default=DocumentStatus.DRAFT.value, nullable=False, index=True,
    )
    quality_level: Mapped[str] = mapped_column(String(20), default="standard", nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    # 来源类型：pdf / docx / url / text / meeting 等
    source_type: Mapped[str | None] = mapped_column(String(50))

    # 创建者（draft 阶段唯一可编辑者）
    created_by: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ==================== 审核记录 ====================
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(36))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[str | None] = mapped_column(String(36))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
