"""
Layered RAG Service - 应用主包

分层、按权限检索的知识库问答服务，包含以下子模块：
- api/        : API 路由和依赖注入
- db/         : 数据库连接和会话管理
- models/     : SQLAlchemy ORM 数据模型
- schemas/    : Pydantic 请求/响应模式
- services/   : 业务逻辑服务层（范围解析、检索、上下文组装、生成、文档生命周期）
- infra/      : 基础设施（向量索引、Embedding、LLM、日志）
- middleware/ : 请求追踪

项目架构遵循分层设计：
    API层 → 服务层 → 数据访问层 → 基础设施层
"""
