"""
组织与项目模型（只读成员关系数据）

    Organization (组织)
       │
       └── Project (项目，必须且只能属于一个组织)

组织/项目/用户的管理由外部系统负责，检索服务只读取这些数据，
用于解析 org_admin 可访问的项目范围和校验 PROJECT 文档的 scope。
"""

from uuid import uuid4

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from layered_rag.db.base import Base
from layered_rag.models.mixins import UUID_PK, TimestampMixin


class Organization(TimestampMixin, Base):
    """组织表"""
    __tablename__ = "organizations"

    id: Mapped[UUID_PK] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Project(TimestampMixin, Base):
    """项目表"""
    __tablename__ = "projects"

    id: Mapped[UUID_PK] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4()),
    )
    # 所属组织（非空：项目必须属于且只属于一个组织）
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
