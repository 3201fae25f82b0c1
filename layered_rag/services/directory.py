"""
组织/项目目录加载

从数据库读取组织与项目的对应关系，构建 OrgDirectory 快照，
供范围解析（org_admin 展开本组织项目）和文档 scope 校验使用。
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from layered_rag.models import Layer, Organization, Project
from layered_rag.services.layer_resolver import OrgDirectory


async def load_org_directory(session: AsyncSession, org_id: str | None = None) -> OrgDirectory:
    """
    加载组织目录快照

    Args:
        session: 数据库会话
        org_id: 只加载指定组织（None 表示全部）
    """
    org_stmt = select(Organization.id)
    project_stmt = select(Project.id, Project.organization_id)
    if org_id is not None:
        org_stmt = org_stmt.where(Organization.id == org_id)
        project_stmt = project_stmt.where(Project.organization_id == org_id)

    organizations = (await session.execute(org_stmt)).scalars().all()
    project_rows = (await session.execute(project_stmt)).all()

    return OrgDirectory.from_projects(
        ((row.id, row.organization_id) for row in project_rows),
        organizations=organizations,
    )


async def load_project_directory(session: AsyncSession, project_id: str) -> OrgDirectory:
    """加载单个项目的归属（用于校验 PROJECT 文档 scope）"""
    result = await session.execute(
        select(Project.id, Project.organization_id).where(Project.id == project_id)
    )
    return OrgDirectory.from_projects((row.id, row.organization_id) for row in result.all())


async def load_scope_directory(session: AsyncSession, layer: str, scope_id: str | None) -> OrgDirectory:
    """按文档的 (layer, scope_id) 加载校验所需的最小目录"""
    if scope_id is None:
        return OrgDirectory()
    if layer == Layer.PROJECT.value:
        return await load_project_directory(session, scope_id)
    if layer == Layer.ORGANIZATION.value:
        return await load_org_directory(session, scope_id)
    return OrgDirectory()
