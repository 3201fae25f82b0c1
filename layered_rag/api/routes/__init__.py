"""
API 路由汇总

路由模块说明：
- health.py    : 健康检查接口
- ask.py       : 分层问答接口（检索 + LLM 生成）
- documents.py : 文档生命周期（草稿、送审、审核、归档、统计）
"""

from fastapi import APIRouter

from layered_rag.api.routes import ask, documents, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(ask.router, tags=["ask"])
api_router.include_router(documents.router, tags=["documents"])
