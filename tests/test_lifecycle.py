"""
文档生命周期单元测试

测试 layered_rag/services/lifecycle.py：
- 状态迁移表（合法/非法迁移）
- 执行者校验（创建者 / 审核者）
- 审计字段
- 文档 scope 校验
- 批量审核
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from layered_rag.exceptions import (
    DocumentNotFoundError,
    DocumentScopeError,
    InvalidTransitionError,
    QueryValidationError,
    ScopePermissionError,
)
from layered_rag.infra.vector_store import InMemoryVectorIndex
from layered_rag.models import Document
from layered_rag.models.enums import AppRole, DocumentStatus, Layer
from layered_rag.schemas.document import DocumentCreate, DocumentUpdate
from layered_rag.services import lifecycle
from layered_rag.services.layer_resolver import (
    AllowedScope,
    OrgDirectory,
    Principal,
    ProjectMembership,
    ScopeResolution,
)
from layered_rag.services.lifecycle import (
    LifecycleAction,
    apply_transition,
    plan_transition,
    validate_document_scope,
)
from layered_rag.services.vector_search import build_scope_filters

DIRECTORY = OrgDirectory.from_projects([("p1", "org_a"), ("p3", "org_b")])

CREATOR = Principal(
    user_id="creator",
    app_role=AppRole.TEAM_LEADER,
    org_id="org_a",
    memberships=(ProjectMembership("p1", "team_leader"),),
)
VALIDATOR = Principal(user_id="validator", app_role=AppRole.ORG_ADMIN, org_id="org_a")
FOREIGN_VALIDATOR = Principal(user_id="other_admin", app_role=AppRole.ORG_ADMIN, org_id="org_b")
SUPER_ADMIN = Principal(user_id="root", app_role=AppRole.SUPER_ADMIN)


def _document(status="draft", layer="project", scope_id="p1", doc_id="doc_1", created_by="creator"):
    return Document(
        id=doc_id,
        layer=layer,
        scope_id=scope_id,
        status=status,
        quality_level="standard",
        title="验收规范",
        created_by=created_by,
    )


class TestPlanTransition:
    """测试状态迁移规则"""

    @pytest.mark.parametrize("status, action, principal, expected", [
        ("draft", "submit", CREATOR, DocumentStatus.PENDING),
        ("pending", "approve", VALIDATOR, DocumentStatus.APPROVED),
        ("pending", "reject", VALIDATOR, DocumentStatus.REJECTED),
        ("approved", "revise", CREATOR, DocumentStatus.PENDING),
        ("approved", "revise", VALIDATOR, DocumentStatus.PENDING),
        ("approved", "archive", VALIDATOR, DocumentStatus.ARCHIVED),
        ("pending", "approve", SUPER_ADMIN, DocumentStatus.APPROVED),
    ])
    def test_allowed(self, status, action, principal, expected):
        target = plan_transition(_document(status), action, principal, DIRECTORY, reason="不完整")

        assert target == expected

    @pytest.mark.parametrize("status, action", [
        ("draft", "approve"),
        ("draft", "archive"),
        ("pending", "submit"),
        ("approved", "approve"),
        ("rejected", "approve"),
        ("rejected", "submit"),
        ("rejected", "revise"),
        ("archived", "revise"),
        ("archived", "approve"),
    ])
    def test_invalid_transitions(self, status, action):
        with pytest.raises(InvalidTransitionError) as exc_info:
            plan_transition(_document(status), action, SUPER_ADMIN, DIRECTORY, reason="原因")

        assert exc_info.value.current == status
        assert exc_info.value.action == action

    def test_unknown_action(self):
        with pytest.raises(InvalidTransitionError):
            plan_transition(_document("pending"), "publish", VALIDATOR, DIRECTORY)

    def test_only_creator_submits(self):
        with pytest.raises(ScopePermissionError):
            plan_transition(_document("draft"), "submit", VALIDATOR, DIRECTORY)

    def test_creator_cannot_approve_own_document(self):
        with pytest.raises(ScopePermissionError):
            plan_transition(_document("pending"), "approve", CREATOR, DIRECTORY)

    def test_validator_of_other_organization_cannot_approve(self):
        with pytest.raises(ScopePermissionError):
            plan_transition(_document("pending"), "approve", FOREIGN_VALIDATOR, DIRECTORY)

    def test_org_admin_cannot_validate_platform_documents(self):
        doc = _document("pending", layer="platform", scope_id=None, created_by="root")

        with pytest.raises(ScopePermissionError):
            plan_transition(doc, "approve", VALIDATOR, DIRECTORY)

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_requires_reason(self, reason):
        with pytest.raises(QueryValidationError):
            plan_transition(_document("pending"), "reject", VALIDATOR, DIRECTORY, reason=reason)


class TestApplyTransition:
    """测试审计字段"""

    def test_approve_records_validator(self):
        doc = _document("pending")

        apply_transition(doc, LifecycleAction.APPROVE, VALIDATOR, DocumentStatus.APPROVED)

        assert doc.status == "approved"
        assert doc.approved_by == "validator"
        assert doc.approved_at is not None

    def test_reject_records_reason(self):
        doc = _document("pending")

        apply_transition(doc, LifecycleAction.REJECT, VALIDATOR, DocumentStatus.REJECTED, reason=" 缺少附件 ")

        assert doc.status == "rejected"
        assert doc.rejected_by == "validator"
        assert doc.rejection_reason == "缺少附件"

    def test_submit_and_archive_timestamps(self):
        doc = _document("draft")
        apply_transition(doc, LifecycleAction.SUBMIT, CREATOR, DocumentStatus.PENDING)
        assert doc.submitted_at is not None

        doc.status = "approved"
        apply_transition(doc, LifecycleAction.ARCHIVE, VALIDATOR, DocumentStatus.ARCHIVED)
        assert doc.archived_at is not None


class TestValidateDocumentScope:
    """测试 layer 与 scope_id 的匹配"""

    def test_platform_without_scope(self):
        validate_document_scope(Layer.PLATFORM, None, DIRECTORY)

    def test_platform_with_scope(self):
        with pytest.raises(DocumentScopeError):
            validate_document_scope(Layer.PLATFORM, "org_a", DIRECTORY)

    @pytest.mark.parametrize("layer", [Layer.ORGANIZATION, Layer.PROJECT, Layer.USER])
    def test_scoped_layers_require_scope(self, layer):
        with pytest.raises(DocumentScopeError):
            validate_document_scope(layer, None, DIRECTORY)

    def test_unknown_project(self):
        with pytest.raises(DocumentScopeError):
            validate_document_scope(Layer.PROJECT, "missing", DIRECTORY)

    def test_unknown_organization(self):
        with pytest.raises(DocumentScopeError):
            validate_document_scope(Layer.ORGANIZATION, "org_missing", DIRECTORY)

    def test_valid_scopes(self):
        validate_document_scope(Layer.PROJECT, "p1", DIRECTORY)
        validate_document_scope(Layer.ORGANIZATION, "org_a", DIRECTORY)
        validate_document_scope(Layer.USER, "creator", DIRECTORY)


@pytest.fixture
def mock_session():
    return AsyncMock()


@pytest.fixture
def documents():
    return {
        "doc_1": _document("pending", doc_id="doc_1"),
        "doc_2": _document("pending", doc_id="doc_2"),
        "doc_3": _document("draft", doc_id="doc_3"),
        "foreign": _document("pending", doc_id="foreign", scope_id="p3"),
    }


@pytest.fixture
def patched_store(documents):
    async def load(session, document_id):
        if document_id not in documents:
            raise DocumentNotFoundError(f"文档不存在: {document_id}")
        return documents[document_id]

    with patch.object(lifecycle, "_load_for_update", AsyncMock(side_effect=load)), \
            patch.object(lifecycle, "load_scope_directory", AsyncMock(return_value=DIRECTORY)):
        yield documents


class TestTransitionDocument:
    """测试带持久化的状态迁移"""

    @pytest.mark.asyncio
    async def test_approve_commits_and_syncs_index(self, mock_session, patched_store):
        index = InMemoryVectorIndex(dim=3)
        index.upsert_document("doc_1", layer="project", scope_id="p1", status="pending", title="验收规范")
        index.add_chunks("doc_1", [{"chunk_id": "c1", "position": 0, "text": "t", "embedding": [1.0, 0.0, 0.0]}])
        approved_only = build_scope_filters(ScopeResolution(scopes=(AllowedScope(Layer.PROJECT, "p1"),)))

        before = await index.search(query_vector=[1.0, 0.0, 0.0], filters=approved_only, threshold=0.0, top_k=5)

        doc = await lifecycle.transition_document(
            mock_session,
            document_id="doc_1",
            action="approve",
            principal=VALIDATOR,
            index=index,
        )

        assert doc.status == "approved"
        mock_session.commit.assert_awaited_once()
        mock_session.refresh.assert_awaited_once_with(doc)
        after = await index.search(query_vector=[1.0, 0.0, 0.0], filters=approved_only, threshold=0.0, top_k=5)
        assert before == []
        assert [hit.document_id for hit in after] == ["doc_1"]

    @pytest.mark.asyncio
    async def test_invisible_document_reported_as_missing(self, mock_session, patched_store):
        with pytest.raises(DocumentNotFoundError):
            await lifecycle.transition_document(
                mock_session,
                document_id="foreign",
                action="approve",
                principal=VALIDATOR,
            )

        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_transition_not_committed(self, mock_session, patched_store):
        with pytest.raises(InvalidTransitionError):
            await lifecycle.transition_document(
                mock_session,
                document_id="doc_3",
                action="approve",
                principal=VALIDATOR,
            )

        mock_session.commit.assert_not_awaited()
        assert patched_store["doc_3"].status == "draft"


class TestBulkTransition:
    """测试批量审核"""

    @pytest.mark.asyncio
    async def test_partial_success(self, mock_session, patched_store):
        succeeded, failed = await lifecycle.bulk_transition(
            mock_session,
            document_ids=["doc_1", "doc_2", "doc_3", "foreign", "missing", "doc_1"],
            action="approve",
            principal=VALIDATOR,
        )

        assert succeeded == ["doc_1", "doc_2"]
        assert [doc_id for doc_id, _ in failed] == ["doc_3", "foreign", "missing"]
        assert mock_session.rollback.await_count == 3

    @pytest.mark.asyncio
    async def test_bulk_reject_requires_reason(self, mock_session, patched_store):
        succeeded, failed = await lifecycle.bulk_transition(
            mock_session,
            document_ids=["doc_1"],
            action="reject",
            principal=VALIDATOR,
        )

        assert succeeded == []
        assert failed[0][0] == "doc_1"

    @pytest.mark.asyncio
    async def test_only_approve_or_reject(self, mock_session, patched_store):
        with pytest.raises(InvalidTransitionError):
            await lifecycle.bulk_transition(
                mock_session,
                document_ids=["doc_1"],
                action="archive",
                principal=VALIDATOR,
            )


class TestCreateDraft:
    """测试创建草稿"""

    @pytest.mark.asyncio
    async def test_team_leader_creates_project_draft(self, mock_session):
        mock_session.add = lambda obj: None
        with patch.object(lifecycle, "load_scope_directory", AsyncMock(return_value=DIRECTORY)):
            doc = await lifecycle.create_draft(
                mock_session,
                principal=CREATOR,
                data=DocumentCreate(layer="project", scope_id="p1", title="验收规范"),
            )

        assert doc.status == "draft"
        assert doc.created_by == "creator"
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cannot_author_foreign_project(self, mock_session):
        with patch.object(lifecycle, "load_scope_directory", AsyncMock(return_value=DIRECTORY)):
            with pytest.raises(ScopePermissionError):
                await lifecycle.create_draft(
                    mock_session,
                    principal=CREATOR,
                    data=DocumentCreate(layer="project", scope_id="p3", title="越权"),
                )

    @pytest.mark.asyncio
    async def test_scope_mismatch(self, mock_session):
        with patch.object(lifecycle, "load_scope_directory", AsyncMock(return_value=DIRECTORY)):
            with pytest.raises(DocumentScopeError):
                await lifecycle.create_draft(
                    mock_session,
                    principal=SUPER_ADMIN,
                    data=DocumentCreate(layer="platform", scope_id="p1", title="平台文档"),
                )


MEMBER = Principal(
    user_id="dave",
    app_role=AppRole.USER,
    org_id="org_a",
    memberships=(ProjectMembership("p1"),),
)


def _sql(stmt) -> str:
    return str(stmt.compile(compile_kwargs={"literal_binds": True}))


class TestUpdateDraft:
    """测试修改草稿"""

    @pytest.mark.asyncio
    async def test_creator_updates_draft(self, mock_session, patched_store):
        doc = await lifecycle.update_draft(
            mock_session,
            document_id="doc_3",
            principal=CREATOR,
            data=DocumentUpdate(title="验收规范 v2"),
        )

        assert doc.title == "验收规范 v2"
        assert doc.quality_level == "standard"
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_creator_refused(self, mock_session, patched_store):
        with pytest.raises(ScopePermissionError):
            await lifecycle.update_draft(
                mock_session,
                document_id="doc_3",
                principal=VALIDATOR,
                data=DocumentUpdate(title="改标题"),
            )

        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_draft_refused(self, mock_session, patched_store):
        with pytest.raises(InvalidTransitionError):
            await lifecycle.update_draft(
                mock_session,
                document_id="doc_1",
                principal=CREATOR,
                data=DocumentUpdate(title="改标题"),
            )

        assert patched_store["doc_1"].title == "验收规范"
        mock_session.commit.assert_not_awaited()


class TestGetDocument:
    """测试文档可见性"""

    @pytest.fixture
    def load(self, mock_session):
        def _load(document):
            mock_session.get = AsyncMock(return_value=document)
            return patch.object(lifecycle, "load_scope_directory", AsyncMock(return_value=DIRECTORY))
        return _load

    @pytest.mark.asyncio
    async def test_creator_sees_own_draft(self, mock_session, load):
        with load(_document("draft")):
            doc = await lifecycle.get_document(mock_session, "doc_1", CREATOR)

        assert doc.id == "doc_1"

    @pytest.mark.asyncio
    async def test_other_users_draft_reported_as_missing(self, mock_session, load):
        with load(_document("draft")):
            with pytest.raises(DocumentNotFoundError):
                await lifecycle.get_document(mock_session, "doc_1", MEMBER)

    @pytest.mark.asyncio
    async def test_member_sees_approved_document(self, mock_session, load):
        with load(_document("approved")):
            doc = await lifecycle.get_document(mock_session, "doc_1", MEMBER)

        assert doc.status == "approved"

    @pytest.mark.asyncio
    async def test_validator_sees_pending_document(self, mock_session, load):
        with load(_document("pending")):
            doc = await lifecycle.get_document(mock_session, "doc_1", VALIDATOR)

        assert doc.status == "pending"

    @pytest.mark.asyncio
    async def test_approved_document_outside_scope_reported_as_missing(self, mock_session, load):
        with load(_document("approved", scope_id="p3")):
            with pytest.raises(DocumentNotFoundError):
                await lifecycle.get_document(mock_session, "doc_1", MEMBER)

    @pytest.mark.asyncio
    async def test_unknown_document(self, mock_session, load):
        with load(None):
            with pytest.raises(DocumentNotFoundError):
                await lifecycle.get_document(mock_session, "missing", MEMBER)


@pytest.fixture
def org_directory():
    with patch.object(lifecycle, "load_org_directory", AsyncMock(return_value=DIRECTORY)):
        yield


@pytest.mark.usefixtures("org_directory")
class TestLayerStats:
    """测试分层统计"""

    @pytest.mark.asyncio
    async def test_counts_only_readable_scopes(self, mock_session):
        result = MagicMock()
        result.all.return_value = [
            ("platform", "approved", 2),
            ("project", "approved", 1),
            ("project", "draft", 1),
        ]
        mock_session.execute.return_value = result

        stats = await lifecycle.layer_stats(mock_session, CREATOR)

        assert stats == {
            "platform": {"approved": 2},
            "project": {"approved": 1, "draft": 1},
            "user": {},
        }
        sql = _sql(mock_session.execute.await_args.args[0])
        assert "'p1'" in sql
        assert "'p3'" not in sql
        assert "'org_a'" not in sql

    @pytest.mark.asyncio
    async def test_non_validator_counts_only_approved_or_own(self, mock_session):
        mock_session.execute.return_value = MagicMock(all=MagicMock(return_value=[]))

        await lifecycle.layer_stats(mock_session, MEMBER)

        sql = _sql(mock_session.execute.await_args.args[0])
        assert "documents.status = 'approved'" in sql
        assert "documents.created_by = 'dave'" in sql

    @pytest.mark.asyncio
    async def test_validator_counts_previewable_scopes(self, mock_session):
        mock_session.execute.return_value = MagicMock(all=MagicMock(return_value=[]))

        stats = await lifecycle.layer_stats(mock_session, VALIDATOR)

        assert list(stats) == ["platform", "organization", "project", "user"]
        sql = _sql(mock_session.execute.await_args.args[0])
        assert "'org_a'" in sql
        assert "'p3'" not in sql


@pytest.mark.usefixtures("org_directory")
class TestPendingCount:
    """测试待审核数量"""

    @pytest.mark.asyncio
    async def test_non_validator_gets_zero(self, mock_session):
        assert await lifecycle.pending_count(mock_session, MEMBER) == 0
        assert await lifecycle.pending_count(mock_session, CREATOR) == 0
        mock_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validator_counts_own_organization(self, mock_session):
        mock_session.execute.return_value = MagicMock(scalar_one=MagicMock(return_value=4))

        assert await lifecycle.pending_count(mock_session, VALIDATOR) == 4

        sql = _sql(mock_session.execute.await_args.args[0])
        assert "documents.status = 'pending'" in sql
        assert "'p1'" in sql
        assert "'p3'" not in sql
