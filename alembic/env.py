"""
Alembic 迁移环境配置

- 离线模式：生成 SQL 脚本
- 在线模式：通过 asyncpg 直接执行迁移

注意事项：
- 导入 layered_rag.models 确保所有 ORM 表被注册
- chunk_vectors 向量表不在 ORM 元数据中（由迁移脚本用原生 SQL 创建），
  autogenerate 时忽略，避免被误判为多余的表
- 数据库 URL 优先从环境变量读取
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from layered_rag import models  # noqa: F401
from layered_rag.config import get_settings
from layered_rag.db.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """获取数据库连接 URL，优先使用环境变量"""
    return os.getenv("DATABASE_URL") or get_settings().database_url


def include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "table" and name == get_settings().vector_table:
        return False
    return True


def run_migrations_offline() -> None:
    """离线模式：不连接数据库，仅输出 SQL"""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,  # 迁移完成后立即释放连接
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


def run_migrations_online() -> None:
    """在线模式：连接数据库执行迁移"""
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
