"""
分层问答服务单元测试

测试 layered_rag/services/rag.py 的完整流程（Embedding 和 LLM 使用 mock）：
- 组织隔离、角色可见性
- 无命中时的固定回复
- 待审核文档的预览
- match_count = 0、match_threshold = 1.0
- 参数校验和上游错误传播
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from layered_rag.config import get_settings
from layered_rag.exceptions import QueryValidationError, ScopePermissionError, UpstreamError
from layered_rag.infra.vector_store import InMemoryVectorIndex
from layered_rag.models.enums import AppRole
from layered_rag.schemas.ask import AskResponse
from layered_rag.schemas.internal import AskParams
from layered_rag.services.generation import NO_MATCH_ANSWER
from layered_rag.services.layer_resolver import OrgDirectory, Principal, ProjectMembership
from layered_rag.services.rag import answer_question

APPROVED_AT = datetime(2026, 2, 1, tzinfo=timezone.utc)
QUERY_VECTOR = [1.0, 0.0, 0.0]

DIRECTORY = OrgDirectory.from_projects([("proj_a1", "org_a"), ("proj_a2", "org_a"), ("proj_b1", "org_b")])


def _doc(index, doc_id, layer, scope_id, *, status="approved", vector=(1.0, 0.05, 0.0), text=None):
    index.upsert_document(
        doc_id,
        layer=layer,
        scope_id=scope_id,
        status=status,
        title=f"{doc_id} 标题",
        approved_at=APPROVED_AT if status == "approved" else None,
    )
    index.add_chunks(doc_id, [{
        "chunk_id": f"{doc_id}-0",
        "position": 0,
        "text": text or f"{doc_id} 的内容",
        "embedding": list(vector),
    }])


@pytest.fixture
def settings(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "embedding_dim", 3)
    return settings


@pytest.fixture
def index():
    index = InMemoryVectorIndex(dim=3)
    _doc(index, "platform_guide", "platform", None)
    _doc(index, "org_a_policy", "organization", "org_a")
    _doc(index, "org_b_policy", "organization", "org_b")
    _doc(index, "proj_a1_spec", "project", "proj_a1")
    _doc(index, "proj_a2_spec", "project", "proj_a2")
    _doc(index, "proj_b1_spec", "project", "proj_b1")
    _doc(index, "alice_notes", "user", "alice")
    _doc(index, "bob_notes", "user", "bob")
    _doc(index, "proj_a1_draft", "project", "proj_a1", status="pending", vector=(1.0, 0.0, 0.0))
    return index


def _principal(user_id, role, org_id=None, projects=()):
    return Principal(
        user_id=user_id,
        app_role=role,
        org_id=org_id,
        memberships=tuple(ProjectMembership(p) for p in projects),
    )


async def _ask(index, principal, **params):
    params.setdefault("query", "验收标准是什么？")
    params.setdefault("match_count", 20)
    return await answer_question(
        principal=principal,
        params=AskParams(**params),
        directory=DIRECTORY,
        index=index,
    )


def _source_ids(response: AskResponse) -> set[str]:
    return {s.document_id for s in response.sources}


@pytest.fixture
def mock_embedding():
    with patch("layered_rag.services.rag.get_embedding", new_callable=AsyncMock) as mock:
        mock.return_value = QUERY_VECTOR
        yield mock


@pytest.fixture
def mock_chat():
    with patch("layered_rag.services.generation.chat_completion", new_callable=AsyncMock) as mock:
        mock.return_value = "根据资料 [1]，验收需要三方签字。"
        yield mock


@pytest.mark.usefixtures("settings")
class TestScenarios:
    """测试分层可见性场景"""

    @pytest.mark.asyncio
    async def test_org_admin_sees_own_organization_only(self, index, mock_embedding, mock_chat):
        """org_admin 能看到本组织文档，看不到其他组织文档"""
        org_admin = _principal("alice", AppRole.ORG_ADMIN, org_id="org_a")

        response = await _ask(index, org_admin, match_threshold=0.5)

        sources = _source_ids(response)
        assert "org_a_policy" in sources
        assert "org_b_policy" not in sources
        assert "proj_b1_spec" not in sources

    @pytest.mark.asyncio
    async def test_nothing_above_threshold_returns_fallback(self, index, mock_embedding, mock_chat):
        """没有片段超过阈值时，sources 为空，提示模型使用固定回复"""
        mock_embedding.return_value = [0.0, 0.0, 1.0]
        mock_chat.return_value = NO_MATCH_ANSWER

        response = await _ask(index, _principal("bob", AppRole.USER), match_threshold=0.5)

        assert response.sources == []
        assert NO_MATCH_ANSWER in response.answer
        assert NO_MATCH_ANSWER in mock_chat.await_args.kwargs["system_prompt"]

    @pytest.mark.asyncio
    async def test_super_admin_sees_everything_approved(self, index, mock_embedding, mock_chat, settings, monkeypatch):
        monkeypatch.setattr(settings, "context_max_results", 20)
        super_admin = _principal("root", AppRole.SUPER_ADMIN)

        response = await _ask(index, super_admin, match_threshold=0.5)

        assert _source_ids(response) == {
            "platform_guide", "org_a_policy", "org_b_policy",
            "proj_a1_spec", "proj_a2_spec", "proj_b1_spec",
            "alice_notes", "bob_notes",
        }

    @pytest.mark.asyncio
    async def test_team_leader_has_no_organization_access(self, index, mock_embedding, mock_chat):
        """team_leader 只能看到所属项目，看不到本组织的 ORGANIZATION 文档"""
        leader = _principal("carol", AppRole.TEAM_LEADER, org_id="org_a", projects=["proj_a1"])

        response = await _ask(index, leader, match_threshold=0.5)

        sources = _source_ids(response)
        assert "proj_a1_spec" in sources
        assert "platform_guide" in sources
        assert "org_a_policy" not in sources
        assert "proj_a2_spec" not in sources

    @pytest.mark.asyncio
    async def test_pending_invisible_to_user(self, index, mock_embedding, mock_chat):
        member = _principal("dave", AppRole.USER, org_id="org_a", projects=["proj_a1"])

        response = await _ask(index, member, match_threshold=0.5)

        assert "proj_a1_draft" not in _source_ids(response)

    @pytest.mark.asyncio
    async def test_pending_preview_requires_validator(self, index, mock_embedding, mock_chat):
        member = _principal("dave", AppRole.USER, org_id="org_a", projects=["proj_a1"])

        with pytest.raises(ScopePermissionError):
            await _ask(index, member, include_pending=True)

        mock_embedding.assert_not_awaited()
        mock_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_validator_previews_pending(self, index, mock_embedding, mock_chat):
        org_admin = _principal("alice", AppRole.ORG_ADMIN, org_id="org_a")

        without_preview = await _ask(index, org_admin, match_threshold=0.5)
        with_preview = await _ask(index, org_admin, match_threshold=0.5, include_pending=True)

        assert "proj_a1_draft" not in _source_ids(without_preview)
        assert "proj_a1_draft" in _source_ids(with_preview)


@pytest.mark.usefixtures("settings")
class TestAnswerQuestion:
    """测试问答流程的边界条件"""

    @pytest.mark.asyncio
    async def test_match_count_zero(self, index, mock_embedding, mock_chat):
        response = await _ask(index, _principal("bob", AppRole.USER), match_count=0)

        assert response.sources == []
        mock_embedding.assert_not_awaited()
        mock_chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_threshold_one_returns_no_imperfect_matches(self, index, mock_embedding, mock_chat):
        response = await _ask(index, _principal("bob", AppRole.USER), match_threshold=1.0)

        assert response.sources == []

    @pytest.mark.asyncio
    async def test_response_shape(self, index, mock_embedding, mock_chat):
        response = await _ask(index, _principal("bob", AppRole.USER), match_threshold=0.5)

        assert response.answer == "根据资料 [1]，验收需要三方签字。"
        assert response.processing_time_ms >= 0
        for source in response.sources:
            assert source.layer in ("platform", "project", "user")
            assert 0.5 <= source.score <= 1.0

    @pytest.mark.asyncio
    async def test_context_sent_to_llm(self, index, mock_embedding, mock_chat):
        await _ask(index, _principal("bob", AppRole.USER), match_threshold=0.5)

        system_prompt = mock_chat.await_args.kwargs["system_prompt"]
        assert "platform_guide 的内容" in system_prompt
        assert "bob_notes 的内容" in system_prompt
        assert "alice_notes 的内容" not in system_prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_empty_query(self, index, mock_embedding, mock_chat, query):
        with pytest.raises(QueryValidationError):
            await _ask(index, _principal("bob", AppRole.USER), query=query)

    @pytest.mark.asyncio
    async def test_invalid_threshold(self, index, mock_embedding, mock_chat):
        with pytest.raises(QueryValidationError):
            await _ask(index, _principal("bob", AppRole.USER), match_threshold=2.0)

    @pytest.mark.asyncio
    async def test_embedding_dimension_mismatch(self, index, mock_embedding, mock_chat):
        mock_embedding.return_value = [1.0, 0.0]

        with pytest.raises(QueryValidationError):
            await _ask(index, _principal("bob", AppRole.USER))

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self, index, mock_embedding, mock_chat):
        mock_chat.side_effect = UpstreamError("HTTP 400: invalid model", provider="openai")

        with pytest.raises(UpstreamError, match="invalid model"):
            await _ask(index, _principal("bob", AppRole.USER))
