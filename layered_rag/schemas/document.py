"""
文档生命周期相关的请求/响应模型
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from layered_rag.models.enums import Layer


class DocumentCreate(BaseModel):
    """创建草稿请求"""
    layer: Layer = Field(..., description="可见性层级")
    scope_id: str | None = Field(default=None, description="范围 ID；platform 层必须为空")
    title: str = Field(..., min_length=1, max_length=255, description="文档标题")
    source_type: str | None = Field(default=None, max_length=50, description="来源类型")
    quality_level: Literal["standard", "premium"] = Field(default="standard", description="质量等级")


class DocumentUpdate(BaseModel):
    """修改草稿请求（仅创建者、仅 draft 状态）"""
    title: str | None = Field(default=None, min_length=1, max_length=255)
    source_type: str | None = Field(default=None, max_length=50)
    quality_level: Literal["standard", "premium"] | None = None


class TransitionRequest(BaseModel):
    """状态迁移请求；reject 时 reason 必填"""
    reason: str | None = Field(default=None, description="驳回原因")


class BulkTransitionRequest(BaseModel):
    """批量审核请求"""
    document_ids: list[str] = Field(..., min_length=1, max_length=100)
    action: Literal["approve", "reject"]
    reason: str | None = Field(default=None, description="批量驳回原因")


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    layer: str
    scope_id: str | None
    status: str
    quality_level: str
    title: str
    source_type: str | None
    created_by: str
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    archived_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BulkFailure(BaseModel):
    document_id: str
    error: str


class BulkTransitionResponse(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed: list[BulkFailure] = Field(default_factory=list)


class LayerStats(BaseModel):
    """单个层级的文档统计"""
    layer: str
    counts: dict[str, int] = Field(default_factory=dict, description="状态 → 文档数")
    total: int = 0


class LayerStatsResponse(BaseModel):
    layers: list[LayerStats] = Field(default_factory=list)


class PendingCountResponse(BaseModel):
    count: int = Field(description="当前身份可审核的待审核文档数")
