"""
数据库会话管理

这个模块负责：
1. 创建数据库引擎（连接池）
2. 提供异步会话工厂
3. 实现 FastAPI 依赖注入的数据库会话获取函数

使用方式（在 FastAPI 路由中）：
    from layered_rag.db.session import get_db

    @router.get("/documents/stats")
    async def stats(db: AsyncSession = Depends(get_db)):
        ...
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from layered_rag.config import get_settings
from layered_rag.db.base import Base

settings = get_settings()

# 检索路径只读、无跨请求锁；连接池按并发请求数配置
engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,     # 取连接前先探活，避免使用已断开的连接
    pool_size=10,
    max_overflow=20,
    pool_timeout=30,
    pool_recycle=1800,
)

SessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,  # 提交后仍可访问对象属性
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    获取数据库会话（FastAPI 依赖注入函数）

    为每个请求创建独立会话，请求结束后自动关闭。
    """
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    """
    初始化数据库表（仅开发环境使用）

    生产环境应使用 Alembic 进行数据库迁移。
    """
    from layered_rag import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
