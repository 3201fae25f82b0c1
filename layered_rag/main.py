"""
FastAPI 应用实例

负责：
1. 创建 FastAPI 应用实例
2. 配置应用生命周期（启动时的初始化逻辑）
3. 注册所有 API 路由
4. 配置结构化日志、请求追踪和统一错误响应
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from layered_rag.api.routes import api_router
from layered_rag.config import get_settings
from layered_rag.db.session import SessionLocal, init_models
from layered_rag.exceptions import (
    DocumentNotFoundError,
    DocumentScopeError,
    InvalidTransitionError,
    QueryValidationError,
    ScopePermissionError,
    UpstreamError,
    UpstreamTimeoutError,
)
from layered_rag.infra.logging import get_logger, setup_logging
from layered_rag.infra.vector_store_factory import get_vector_index
from layered_rag.infra.vector_store_pg import PgVectorIndex
from layered_rag.middleware import RequestTraceMiddleware

# 配置结构化日志
setup_logging()
logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器

    注意：
        - 开发环境：使用 init_models() 自动建表，并创建向量表和 HNSW 索引
        - 生产环境：使用 Alembic 进行数据库迁移
    """
    logger.info(f"应用启动中... 环境: {settings.environment}")

    if settings.environment in ("dev", "development", "test"):
        await init_models()
        index = get_vector_index()
        if isinstance(index, PgVectorIndex):
            async with SessionLocal() as session:
                await index.ensure_table(session, settings.embedding_dim)
        logger.info("数据库表初始化完成（开发模式）")
    else:
        logger.info("跳过自动建表，请使用 Alembic 迁移")

    yield


app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
)

app.add_middleware(RequestTraceMiddleware)

# CORS 配置：允许前端跨域访问
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def _error_response(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    """
    统一错误响应格式：
    {
        "error": "<错误信息>",
        "code": "<ERROR_CODE>"
    }
    """
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code},
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException):
    code = "UNKNOWN_ERROR"
    detail = exc.detail
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code") or code
        detail = exc.detail.get("detail") or exc.detail.get("message") or detail
    return _error_response(exc.status_code, code, str(detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    # Pydantic 校验错误统一映射为 400
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    ) or "请求参数不合法"
    return _error_response(400, "VALIDATION_ERROR", message)


@app.exception_handler(QueryValidationError)
async def query_validation_handler(_: Request, exc: QueryValidationError):
    logger.warning(f"请求参数不合法: {exc}")
    return _error_response(400, "VALIDATION_ERROR", str(exc))


@app.exception_handler(DocumentScopeError)
async def document_scope_handler(_: Request, exc: DocumentScopeError):
    logger.warning(f"文档范围不合法: {exc}")
    return _error_response(400, "INVALID_SCOPE", str(exc))


@app.exception_handler(ScopePermissionError)
async def permission_handler(_: Request, exc: ScopePermissionError):
    logger.warning(f"权限不足: {exc}")
    return _error_response(403, "NO_PERMISSION", str(exc))


@app.exception_handler(DocumentNotFoundError)
async def not_found_handler(_: Request, exc: DocumentNotFoundError):
    logger.info(f"文档不存在或不可见: {exc}")
    return _error_response(404, "DOCUMENT_NOT_FOUND", str(exc))


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(_: Request, exc: InvalidTransitionError):
    logger.warning(f"非法状态迁移: {exc}")
    return _error_response(409, "INVALID_TRANSITION", str(exc))


@app.exception_handler(UpstreamError)
async def upstream_handler(_: Request, exc: UpstreamError):
    # UpstreamTimeoutError 是 UpstreamError 的子类，按类型区分 504 / 502
    if isinstance(exc, UpstreamTimeoutError):
        logger.error(f"外部服务超时: {exc}", extra={"provider": exc.provider})
        return _error_response(504, "UPSTREAM_TIMEOUT", str(exc))
    logger.error(f"外部服务调用失败: {exc}", extra={"provider": exc.provider})
    return _error_response(502, "UPSTREAM_ERROR", str(exc))
