"""
分层权限解析模块 (Layer Resolver)

根据请求者的角色和成员关系，计算其可读取的 (layer, scope_id) 范围列表，
并给出是否可以预览待审核文档。检索时只在这些范围内搜索（Security Trimming）。

角色规则（PLATFORM 始终包含）：
- super_admin: PLATFORM + 所有 ORGANIZATION + 所有 PROJECT + 所有 USER；可预览全部
- org_admin: PLATFORM + 本组织 + 本组织下所有 PROJECT + 本人 USER；仅可预览本组织范围
- team_leader / user: PLATFORM + 所属项目 PROJECT + 本人 USER；无组织级访问；不可预览

解析是纯计算：不访问数据库、不依赖全局状态，身份通过 Principal 显式传入，
组织下的项目列表通过 OrgDirectory 快照传入。

使用示例：
    principal = Principal(user_id="u1", app_role=AppRole.ORG_ADMIN, org_id="org_a")
    directory = OrgDirectory.from_projects([("p1", "org_a"), ("p2", "org_b")])
    resolution = resolve_layers(principal, directory)
    resolution.allows(Layer.PROJECT, "p1")  # True
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from layered_rag.models.enums import LAYER_ORDER, AppRole, Layer

# 通配范围：表示该层级下的任意 scope（仅 super_admin 使用）
ANY_SCOPE = "*"


@dataclass(frozen=True)
class ProjectMembership:
    """项目成员关系"""
    project_id: str
    project_role: str = "member"


@dataclass(frozen=True)
class Principal:
    """
    请求者身份

    身份信息来源：外部认证组件（网关注入的请求头），不来自请求体。

    Attributes:
        user_id: 用户 ID（USER 层 scope）
        app_role: 平台角色
        org_id: 所属组织 ID，可为空
        memberships: 项目成员关系
    """
    user_id: str
    app_role: AppRole = AppRole.USER
    org_id: str | None = None
    memberships: tuple[ProjectMembership, ...] = ()

    @property
    def project_ids(self) -> tuple[str, ...]:
        return tuple(sorted({m.project_id for m in self.memberships}))


@dataclass(frozen=True)
class AllowedScope:
    """一个可读取的 (layer, scope_id) 对；scope_id=ANY_SCOPE 表示该层全部范围"""
    layer: Layer
    scope_id: str | None = None

    def covers(self, layer: Layer | str, scope_id: str | None) -> bool:
        """检查该范围是否覆盖指定文档的 (layer, scope_id)"""
        if self.layer != Layer(layer):
            return False
        if self.layer == Layer.PLATFORM:
            return True
        return self.scope_id == ANY_SCOPE or self.scope_id == scope_id


@dataclass(frozen=True)
class OrgDirectory:
    """
    组织 → 项目 的只读快照

    Attributes:
        projects_by_org: 组织 ID → 项目 ID 元组
    """
    projects_by_org: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_projects(
        cls,
        project_orgs: Iterable[tuple[str, str]],
        organizations: Iterable[str] = (),
    ) -> OrgDirectory:
        """
        从 (project_id, organization_id) 列表构建

        Args:
            project_orgs: 项目与所属组织的对应关系
            organizations: 额外的组织 ID（没有项目的组织）
        """
        grouped: dict[str, set[str]] = {org_id: set() for org_id in organizations}
        for project_id, org_id in project_orgs:
            grouped.setdefault(org_id, set()).add(project_id)
        return cls(
            projects_by_org={org: tuple(sorted(pids)) for org, pids in grouped.items()}
        )

    def has_organization(self, org_id: str) -> bool:
        return org_id in self.projects_by_org

    def projects_of(self, org_id: str) -> tuple[str, ...]:
        return tuple(self.projects_by_org.get(org_id, ()))

    def organization_of(self, project_id: str) -> str | None:
        """返回项目所属组织；项目不存在或归属不唯一时返回 None"""
        owners = [org for org, pids in self.projects_by_org.items() if project_id in pids]
        if len(owners) != 1:
            return None
        return owners[0]


@dataclass(frozen=True)
class ScopeResolution:
    """
    范围解析结果

    Attributes:
        scopes: 有序的可读范围（PLATFORM、ORGANIZATION、PROJECT、USER）
        previewable: 可预览待审核文档（即可审核）的范围
    """
    scopes: tuple[AllowedScope, ...]
    previewable: tuple[AllowedScope, ...] = ()

    @property
    def can_preview_unapproved(self) -> bool:
        return bool(self.previewable)

    def allows(self, layer: Layer | str, scope_id: str | None) -> bool:
        """是否可读取指定范围的文档"""
        return any(scope.covers(layer, scope_id) for scope in self.scopes)

    def can_preview(self, layer: Layer | str, scope_id: str | None) -> bool:
        """是否可预览/审核指定范围的文档"""
        return any(scope.covers(layer, scope_id) for scope in self.previewable)


def _sorted_scopes(scopes: Iterable[AllowedScope]) -> tuple[AllowedScope, ...]:
    unique = set(scopes)
    return tuple(sorted(
        unique,
        key=lambda s: (LAYER_ORDER.index(s.layer), s.scope_id or ""),
    ))


def resolve_layers(principal: Principal, directory: OrgDirectory | None = None) -> ScopeResolution:
    """
    解析请求者可读取的范围

    Args:
        principal: 请求者身份
        directory: 组织/项目快照（org_admin 需要，用于展开本组织下的项目）

    Returns:
        ScopeResolution，scopes 至少包含 PLATFORM 和本人 USER 范围
    """
    directory = directory or OrgDirectory()
    platform = AllowedScope(Layer.PLATFORM)
    role = principal.app_role

    if role == AppRole.SUPER_ADMIN:
        scopes = [
            platform,
            AllowedScope(Layer.ORGANIZATION, ANY_SCOPE),
            AllowedScope(Layer.PROJECT, ANY_SCOPE),
            AllowedScope(Layer.USER, ANY_SCOPE),
        ]
        return ScopeResolution(scopes=_sorted_scopes(scopes), previewable=_sorted_scopes(scopes))

    scopes = [platform, AllowedScope(Layer.USER, principal.user_id)]
    previewable: list[AllowedScope] = []

    if role == AppRole.ORG_ADMIN:
        if principal.org_id:
            org_scopes = [AllowedScope(Layer.ORGANIZATION, principal.org_id)]
            org_scopes.extend(
                AllowedScope(Layer.PROJECT, project_id)
                for project_id in directory.projects_of(principal.org_id)
            )
            scopes.extend(org_scopes)
            previewable.extend(org_scopes)
    else:
        # team_leader / user：只有所属项目，没有组织级访问
        scopes.extend(
            AllowedScope(Layer.PROJECT, project_id) for project_id in principal.project_ids
        )

    return ScopeResolution(scopes=_sorted_scopes(scopes), previewable=_sorted_scopes(previewable))


def can_validate(
    principal: Principal,
    layer: Layer | str,
    scope_id: str | None,
    directory: OrgDirectory | None = None,
) -> bool:
    """是否拥有指定范围的审核能力（与预览规则一致）"""
    return resolve_layers(principal, directory).can_preview(layer, scope_id)


def can_author(
    principal: Principal,
    layer: Layer | str,
    scope_id: str | None,
    directory: OrgDirectory | None = None,
) -> bool:
    """
    是否可以在指定范围创建文档

    规则：
    - super_admin: 任意层级
    - org_admin: 本组织、本组织下的项目、本人 USER
    - team_leader: 所属项目、本人 USER
    - user: 仅本人 USER
    """
    layer = Layer(layer)
    role = principal.app_role
    directory = directory or OrgDirectory()

    if role == AppRole.SUPER_ADMIN:
        return True
    if layer == Layer.USER:
        return scope_id == principal.user_id
    if role == AppRole.ORG_ADMIN and principal.org_id:
        if layer == Layer.ORGANIZATION:
            return scope_id == principal.org_id
        if layer == Layer.PROJECT:
            return scope_id is not None and directory.organization_of(scope_id) == principal.org_id
        return False
    if role == AppRole.TEAM_LEADER and layer == Layer.PROJECT:
        return scope_id in principal.project_ids
    return False
