"""
API 依赖注入函数

身份信息由上游认证网关注入请求头，不从请求体读取：
- X-User-Id: 用户 ID（必填）
- X-App-Role: 平台角色 super_admin / org_admin / team_leader / user（member 等同 user）
- X-Org-Id: 所属组织 ID
- X-Project-Memberships: 项目成员关系，格式 "p1:team_leader,p2:member,p3"

使用示例：
    @router.post("/v1/ask")
    async def ask(
        principal: Principal = Depends(get_principal),
        directory: OrgDirectory = Depends(get_org_directory),
    ):
        pass
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from layered_rag.db.session import get_db
from layered_rag.infra.logging import set_user_id
from layered_rag.infra.vector_store import BaseVectorIndex
from layered_rag.infra.vector_store_factory import get_vector_index
from layered_rag.models.enums import AppRole
from layered_rag.services.directory import load_org_directory
from layered_rag.services.layer_resolver import OrgDirectory, Principal, ProjectMembership

# 重新导出数据库会话获取函数，方便路由模块导入
get_db_session = get_db


def parse_memberships(raw: str | None) -> tuple[ProjectMembership, ...]:
    """解析 X-Project-Memberships 请求头"""
    if not raw:
        return ()
    memberships = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        project_id, _, role = item.partition(":")
        project_id = project_id.strip()
        if project_id:
            memberships[project_id] = ProjectMembership(
                project_id=project_id,
                project_role=role.strip() or "member",
            )
    return tuple(memberships[pid] for pid in sorted(memberships))


async def get_principal(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_app_role: str | None = Header(default=None, alias="X-App-Role"),
    x_org_id: str | None = Header(default=None, alias="X-Org-Id"),
    x_project_memberships: str | None = Header(default=None, alias="X-Project-Memberships"),
) -> Principal:
    """
    从网关注入的请求头构建请求者身份

    缺少 X-User-Id 时返回 401。
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "MISSING_IDENTITY", "detail": "Missing X-User-Id header"},
        )
    user_id = x_user_id.strip()
    set_user_id(user_id)
    return Principal(
        user_id=user_id,
        app_role=AppRole.parse(x_app_role),
        org_id=(x_org_id or "").strip() or None,
        memberships=parse_memberships(x_project_memberships),
    )


async def get_org_directory(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db_session),
) -> OrgDirectory:
    """
    加载范围解析所需的组织目录

    只有 org_admin 需要展开本组织下的项目；super_admin 使用通配范围，
    其他角色只使用请求头中的项目成员关系。
    """
    if principal.app_role == AppRole.ORG_ADMIN and principal.org_id:
        return await load_org_directory(db, principal.org_id)
    return OrgDirectory()


def get_index() -> BaseVectorIndex:
    """获取向量索引"""
    return get_vector_index()
