"""
文档生命周期接口

文档上传、解析和切分由外部摄取流程负责，这里只管理文档元数据和审核状态：
- 创建/编辑草稿
- 送审、审核通过、驳回、重新送审、归档
- 批量审核
- 按层级统计、待审核数量
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from layered_rag.api.deps import get_db_session, get_index, get_principal
from layered_rag.infra.vector_store import BaseVectorIndex
from layered_rag.schemas.document import (
    BulkFailure,
    BulkTransitionRequest,
    BulkTransitionResponse,
    DocumentCreate,
    DocumentOut,
    DocumentUpdate,
    LayerStats,
    LayerStatsResponse,
    PendingCountResponse,
    TransitionRequest,
)
from layered_rag.services import lifecycle
from layered_rag.services.layer_resolver import Principal
from layered_rag.services.lifecycle import LifecycleAction

router = APIRouter(prefix="/v1/documents")


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def create_document(
    payload: DocumentCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """创建草稿文档（内容由摄取流程另行写入）"""
    return await lifecycle.create_draft(db, principal=principal, data=payload)


@router.get("/stats", response_model=LayerStatsResponse)
async def document_stats(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """按层级统计各状态文档数"""
    stats = await lifecycle.layer_stats(db, principal)
    return LayerStatsResponse(
        layers=[
            LayerStats(layer=layer, counts=counts, total=sum(counts.values()))
            for layer, counts in stats.items()
        ]
    )


@router.get("/pending/count", response_model=PendingCountResponse)
async def document_pending_count(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """当前身份可审核的待审核文档数"""
    return PendingCountResponse(count=await lifecycle.pending_count(db, principal))


@router.post("/bulk", response_model=BulkTransitionResponse)
async def bulk_transition_documents(
    payload: BulkTransitionRequest,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    index: BaseVectorIndex = Depends(get_index),
):
    """批量审核通过 / 驳回"""
    succeeded, failed = await lifecycle.bulk_transition(
        db,
        document_ids=payload.document_ids,
        action=payload.action,
        principal=principal,
        reason=payload.reason,
        index=index,
    )
    return BulkTransitionResponse(
        succeeded=succeeded,
        failed=[BulkFailure(document_id=doc_id, error=error) for doc_id, error in failed],
    )


@router.get("/{document_id}", response_model=DocumentOut)
async def get_document(
    document_id: str,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
):
    return await lifecycle.get_document(db, document_id, principal)


@router.patch("/{document_id}", response_model=DocumentOut)
async def update_document(
    document_id: str,
    payload: DocumentUpdate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """编辑草稿（仅创建者）"""
    return await lifecycle.update_draft(db, document_id=document_id, principal=principal, data=payload)


@router.post("/{document_id}/{action}", response_model=DocumentOut)
async def transition_document(
    document_id: str,
    action: LifecycleAction,
    payload: TransitionRequest | None = None,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
    index: BaseVectorIndex = Depends(get_index),
):
    """
    文档状态迁移

    action: submit / approve / reject / revise / archive
    reject 需要在请求体中提供 reason。
    """
    return await lifecycle.transition_document(
        db,
        document_id=document_id,
        action=action,
        principal=principal,
        reason=payload.reason if payload else None,
        index=index,
    )
