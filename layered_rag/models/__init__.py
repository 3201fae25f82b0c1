"""
数据模型层 (ORM Models)

数据模型关系图：
    Organization (组织)
       │
       └── Project (项目)

    Document (文档，layer + scope_id 决定可见范围)
       │
       └── Chunk (文档片段，向量保存在 chunk_vectors 表)
"""

from layered_rag.models.chunk import Chunk
from layered_rag.models.document import Document
from layered_rag.models.enums import AppRole, DocumentStatus, Layer
from layered_rag.models.organization import Organization, Project

__all__ = [
    "AppRole",
    "Chunk",
    "Document",
    "DocumentStatus",
    "Layer",
    "Organization",
    "Project",
]
