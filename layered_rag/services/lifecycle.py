"""
文档生命周期服务

状态机：
    draft ──submit──▶ pending ──approve──▶ approved ──archive──▶ archived
                         │  ▲                  │
                         │  └─────revise───────┘
                         └──reject──▶ rejected

| 操作    | 从       | 到       | 执行者                     |
|---------|----------|----------|----------------------------|
| submit  | draft    | pending  | 创建者                     |
| approve | pending  | approved | 文档所在范围的审核者       |
| reject  | pending  | rejected | 审核者（必须填写驳回原因） |
| revise  | approved | pending  | 创建者或审核者             |
| archive | approved | archived | 审核者                     |

其他组合一律抛出 InvalidTransitionError。
状态迁移时在服务端加行锁重新读取当前状态，不信任客户端提交的状态。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from layered_rag.exceptions import (
    DocumentNotFoundError,
    DocumentScopeError,
    InvalidTransitionError,
    QueryValidationError,
    ScopePermissionError,
)
from layered_rag.infra.vector_store import BaseVectorIndex, InMemoryVectorIndex
from layered_rag.models import Document, DocumentStatus, Layer
from layered_rag.models.enums import LAYER_ORDER
from layered_rag.schemas.document import DocumentCreate, DocumentUpdate
from layered_rag.services.directory import load_org_directory, load_scope_directory
from layered_rag.services.layer_resolver import (
    ANY_SCOPE,
    AllowedScope,
    OrgDirectory,
    Principal,
    can_author,
    can_validate,
    resolve_layers,
)

logger = logging.getLogger(__name__)


class LifecycleAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REVISE = "revise"
    ARCHIVE = "archive"


CREATOR = "creator"
VALIDATOR = "validator"


@dataclass(frozen=True)
class TransitionRule:
    source: DocumentStatus
    target: DocumentStatus
    actors: frozenset[str]


TRANSITIONS: dict[LifecycleAction, TransitionRule] = {
    LifecycleAction.SUBMIT: TransitionRule(
        DocumentStatus.DRAFT, DocumentStatus.PENDING, frozenset({CREATOR}),
    ),
    LifecycleAction.APPROVE: TransitionRule(
        DocumentStatus.PENDING, DocumentStatus.APPROVED, frozenset({VALIDATOR}),
    ),
    LifecycleAction.REJECT: TransitionRule(
        DocumentStatus.PENDING, DocumentStatus.REJECTED, frozenset({VALIDATOR}),
    ),
    LifecycleAction.REVISE: TransitionRule(
        DocumentStatus.APPROVED, DocumentStatus.PENDING, frozenset({CREATOR, VALIDATOR}),
    ),
    LifecycleAction.ARCHIVE: TransitionRule(
        DocumentStatus.APPROVED, DocumentStatus.ARCHIVED, frozenset({VALIDATOR}),
    ),
}


def _parse_action(action: LifecycleAction | str) -> LifecycleAction:
    try:
        return LifecycleAction(action)
    except ValueError:
        raise InvalidTransitionError(f"未知的操作: {action}", action=str(action))


def plan_transition(
    document: Document,
    action: LifecycleAction | str,
    principal: Principal,
    directory: OrgDirectory | None = None,
    reason: str | None = None,
) -> DocumentStatus:
    """
    校验一次状态迁移并返回目标状态（不修改文档）

    Raises:
        InvalidTransitionError: 当前状态不允许该操作
        ScopePermissionError: 请求者不是该操作允许的执行者
        QueryValidationError: 驳回未填写原因
    """
    action = _parse_action(action)
    rule = TRANSITIONS[action]

    if document.status != rule.source.value:
        raise InvalidTransitionError(
            f"文档状态为 {document.status}，不能执行 {action.value}",
            current=document.status,
            action=action.value,
        )

    is_creator = document.created_by == principal.user_id
    is_validator = can_validate(principal, document.layer, document.scope_id, directory)
    if not ((CREATOR in rule.actors and is_creator) or (VALIDATOR in rule.actors and is_validator)):
        raise ScopePermissionError(f"无权对该文档执行 {action.value}")

    if action == LifecycleAction.REJECT and not (reason and reason.strip()):
        raise QueryValidationError("驳回必须填写原因")

    return rule.target


def apply_transition(
    document: Document,
    action: LifecycleAction,
    principal: Principal,
    target: DocumentStatus,
    reason: str | None = None,
    now: datetime | None = None,
) -> None:
    """写入目标状态和审计字段"""
    now = now or datetime.now(timezone.utc)
    document.status = target.value

    if action in (LifecycleAction.SUBMIT, LifecycleAction.REVISE):
        document.submitted_at = now
    elif action == LifecycleAction.APPROVE:
        document.approved_at = now
        document.approved_by = principal.user_id
    elif action == LifecycleAction.REJECT:
        document.rejected_at = now
        document.rejected_by = principal.user_id
        document.rejection_reason = reason.strip()
    elif action == LifecycleAction.ARCHIVE:
        document.archived_at = now


def validate_document_scope(layer: Layer | str, scope_id: str | None, directory: OrgDirectory) -> None:
    """
    校验文档的 layer 与 scope_id 是否匹配

    - platform: scope_id 必须为空
    - organization: 必须是已存在的组织
    - project: 必须是已存在且只属于一个组织的项目
    - user: scope_id 必须非空
    """
    layer = Layer(layer)
    if layer == Layer.PLATFORM:
        if scope_id is not None:
            raise DocumentScopeError("platform 层文档不能指定 scope_id")
        return
    if not scope_id:
        raise DocumentScopeError(f"{layer.value} 层文档必须指定 scope_id")
    if layer == Layer.ORGANIZATION and not directory.has_organization(scope_id):
        raise DocumentScopeError(f"组织不存在: {scope_id}")
    if layer == Layer.PROJECT and directory.organization_of(scope_id) is None:
        raise DocumentScopeError(f"项目不存在或不属于唯一组织: {scope_id}")


def _can_view(document: Document, principal: Principal, directory: OrgDirectory) -> bool:
    if document.created_by == principal.user_id:
        return True
    resolution = resolve_layers(principal, directory)
    if resolution.can_preview(document.layer, document.scope_id):
        return True
    return (
        document.status == DocumentStatus.APPROVED.value
        and resolution.allows(document.layer, document.scope_id)
    )


async def _load_for_update(session: AsyncSession, document_id: str) -> Document:
    result = await session.execute(
        select(Document)
        .where(Document.id == document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise DocumentNotFoundError(f"文档不存在: {document_id}")
    return document


def _sync_index(index: BaseVectorIndex | None, document: Document) -> None:
    # pgvector 检索实时关联 documents 表，只有进程内索引需要同步状态
    if isinstance(index, InMemoryVectorIndex) and index.has_document(document.id):
        index.set_document_status(document.id, document.status, document.approved_at)


async def get_document(session: AsyncSession, document_id: str, principal: Principal) -> Document:
    """读取文档；无权查看时按不存在处理"""
    document = await session.get(Document, document_id)
    if document is None:
        raise DocumentNotFoundError(f"文档不存在: {document_id}")
    directory = await load_scope_directory(session, document.layer, document.scope_id)
    if not _can_view(document, principal, directory):
        raise DocumentNotFoundError(f"文档不存在: {document_id}")
    return document


async def create_draft(session: AsyncSession, *, principal: Principal, data: DocumentCreate) -> Document:
    """
    创建草稿文档

    Raises:
        DocumentScopeError: layer 与 scope_id 不匹配
        ScopePermissionError: 当前角色不能在该范围创建文档
    """
    layer = Layer(data.layer)
    directory = await load_scope_directory(session, layer.value, data.scope_id)
    validate_document_scope(layer, data.scope_id, directory)

    if not can_author(principal, layer, data.scope_id, directory):
        raise ScopePermissionError(f"无权在 {layer.value}/{data.scope_id} 创建文档")

    document = Document(
        layer=layer.value,
        scope_id=data.scope_id,
        status=DocumentStatus.DRAFT.value,
        quality_level=data.quality_level,
        title=data.title,
        source_type=data.source_type,
        created_by=principal.user_id,
    )
    session.add(document)
    await session.commit()
    await session.refresh(document)

    logger.info(f"创建草稿: document={document.id}, layer={layer.value}, scope={data.scope_id}")
    return document


async def update_draft(
    session: AsyncSession,
    *,
    document_id: str,
    principal: Principal,
    data: DocumentUpdate,
) -> Document:
    """修改草稿（仅创建者，仅 draft 状态）"""
    document = await _load_for_update(session, document_id)
    if document.created_by != principal.user_id:
        raise ScopePermissionError("只有创建者可以编辑草稿")
    if document.status != DocumentStatus.DRAFT.value:
        raise InvalidTransitionError(
            f"文档状态为 {document.status}，只有草稿可以编辑",
            current=document.status,
        )

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(document, key, value)
    await session.commit()
    await session.refresh(document)
    return document


async def transition_document(
    session: AsyncSession,
    *,
    document_id: str,
    action: LifecycleAction | str,
    principal: Principal,
    reason: str | None = None,
    index: BaseVectorIndex | None = None,
) -> Document:
    """
    执行一次状态迁移

    Args:
        session: 数据库会话
        document_id: 文档 ID
        action: 迁移操作
        principal: 请求者
        reason: 驳回原因
        index: 需要同步状态的向量索引

    Raises:
        DocumentNotFoundError: 文档不存在或无权查看
        InvalidTransitionError / ScopePermissionError / QueryValidationError
    """
    action = _parse_action(action)
    document = await _load_for_update(session, document_id)
    directory = await load_scope_directory(session, document.layer, document.scope_id)

    if not _can_view(document, principal, directory):
        raise DocumentNotFoundError(f"文档不存在: {document_id}")

    previous = document.status
    target = plan_transition(document, action, principal, directory, reason)
    apply_transition(document, action, principal, target, reason)
    await session.commit()
    await session.refresh(document)
    _sync_index(index, document)

    logger.info(
        f"文档状态迁移: document={document.id}, {previous} -> {document.status} "
        f"({action.value} by {principal.user_id})"
    )
    return document


async def bulk_transition(
    session: AsyncSession,
    *,
    document_ids: list[str],
    action: LifecycleAction | str,
    principal: Principal,
    reason: str | None = None,
    index: BaseVectorIndex | None = None,
) -> tuple[list[str], list[tuple[str, str]]]:
    """
    批量审核：逐个文档独立校验和提交，单个失败不影响其他文档

    Returns:
        (成功的文档 ID 列表, [(失败的文档 ID, 原因)])
    """
    action = _parse_action(action)
    if action not in (LifecycleAction.APPROVE, LifecycleAction.REJECT):
        raise InvalidTransitionError(f"批量操作只支持 approve / reject: {action.value}", action=action.value)

    succeeded: list[str] = []
    failed: list[tuple[str, str]] = []
    for document_id in dict.fromkeys(document_ids):
        try:
            await transition_document(
                session,
                document_id=document_id,
                action=action,
                principal=principal,
                reason=reason,
                index=index,
            )
        except (
            DocumentNotFoundError,
            InvalidTransitionError,
            QueryValidationError,
            ScopePermissionError,
        ) as e:
            await session.rollback()
            failed.append((document_id, str(e)))
        else:
            succeeded.append(document_id)

    logger.info(
        f"批量 {action.value}: 成功 {len(succeeded)}，失败 {len(failed)} (by {principal.user_id})"
    )
    return succeeded, failed


def _scope_condition(scope: AllowedScope):
    if scope.layer == Layer.PLATFORM:
        return and_(Document.layer == Layer.PLATFORM.value, Document.scope_id.is_(None))
    if scope.scope_id == ANY_SCOPE:
        return Document.layer == scope.layer.value
    return and_(Document.layer == scope.layer.value, Document.scope_id == scope.scope_id)


async def _principal_directory(session: AsyncSession, principal: Principal) -> OrgDirectory:
    if principal.org_id:
        return await load_org_directory(session, principal.org_id)
    return OrgDirectory()


async def layer_stats(session: AsyncSession, principal: Principal) -> dict[str, dict[str, int]]:
    """
    按层级统计各状态的文档数（仅统计请求者可读的范围）

    已审核文档按可读范围统计；其他状态只统计请求者可审核的范围
    和请求者自己创建的文档。

    Returns:
        {layer: {status: count}}，按 platform → organization → project → user 排列
    """
    directory = await _principal_directory(session, principal)
    resolution = resolve_layers(principal, directory)

    visible = [
        Document.status == DocumentStatus.APPROVED.value,
        Document.created_by == principal.user_id,
    ]
    if resolution.previewable:
        visible.append(or_(*(_scope_condition(s) for s in resolution.previewable)))

    stmt = (
        select(Document.layer, Document.status, func.count())
        .where(or_(*(_scope_condition(s) for s in resolution.scopes)))
        .where(or_(*visible))
        .group_by(Document.layer, Document.status)
    )
    rows = (await session.execute(stmt)).all()

    layers = {scope.layer for scope in resolution.scopes}
    stats: dict[str, dict[str, int]] = {
        layer.value: {} for layer in LAYER_ORDER if layer in layers
    }
    for layer, status, count in rows:
        stats.setdefault(layer, {})[status] = count
    return stats


async def pending_count(session: AsyncSession, principal: Principal) -> int:
    """统计请求者可审核的待审核文档数"""
    directory = await _principal_directory(session, principal)
    resolution = resolve_layers(principal, directory)
    if not resolution.previewable:
        return 0

    stmt = (
        select(func.count())
        .select_from(Document)
        .where(Document.status == DocumentStatus.PENDING.value)
        .where(or_(*(_scope_condition(s) for s in resolution.previewable)))
    )
    return (await session.execute(stmt)).scalar_one()
