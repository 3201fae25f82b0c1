"""
文档分层与状态枚举

Layer（可见性层级）：
- platform: 平台级，所有用户可见，scope_id 为空
- organization: 组织级，scope_id 为组织 ID
- project: 项目级，scope_id 为项目 ID
- user: 个人级，scope_id 为用户 ID

DocumentStatus（生命周期状态）：
    draft → pending → approved / rejected
    approved → pending（实质性修改，重新审核）
    approved → archived（归档，保留审计）
"""

from enum import Enum


class Layer(str, Enum):
    PLATFORM = "platform"
    ORGANIZATION = "organization"
    PROJECT = "project"
    USER = "user"


# 层级固定顺序，用于范围解析结果排序
LAYER_ORDER: tuple[Layer, ...] = (
    Layer.PLATFORM,
    Layer.ORGANIZATION,
    Layer.PROJECT,
    Layer.USER,
)


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class AppRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ORG_ADMIN = "org_admin"
    TEAM_LEADER = "team_leader"
    USER = "user"

    @classmethod
    def parse(cls, value: str | None) -> "AppRole":
        """解析角色名；member 视为 user，未知角色按 user 处理"""
        if not value:
            return cls.USER
        normalized = value.strip().lower()
        if normalized == "member":
            return cls.USER
        try:
            return cls(normalized)
        except ValueError:
            return cls.USER
