"""
分层问答接口

在请求者可读的知识范围内检索相关资料，并生成带引用的回答。
"""

import logging

from fastapi import APIRouter, Depends

from layered_rag.api.deps import get_index, get_org_directory, get_principal
from layered_rag.infra.vector_store import BaseVectorIndex
from layered_rag.schemas.ask import AskRequest, AskResponse, ErrorResponse
from layered_rag.schemas.internal import AskParams
from layered_rag.services.layer_resolver import OrgDirectory, Principal
from layered_rag.services.rag import answer_question

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/v1/ask",
    response_model=AskResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def ask(
    payload: AskRequest,
    principal: Principal = Depends(get_principal),
    directory: OrgDirectory = Depends(get_org_directory),
    index: BaseVectorIndex = Depends(get_index),
):
    """
    分层问答接口

    示例请求：
    ```json
    {
        "query": "项目验收标准是什么？",
        "layer_context": "project",
        "match_threshold": 0.5,
        "match_count": 5
    }
    ```

    示例响应：
    ```json
    {
        "answer": "验收标准包括…… [1]",
        "sources": [{"document_id": "...", "title": "验收规范", "layer": "project", "score": 0.82}],
        "processing_time_ms": 820.5
    }
    ```
    """
    params = AskParams(
        query=payload.query,
        layer_context=payload.layer_context,
        match_threshold=payload.match_threshold,
        match_count=payload.match_count,
        include_pending=payload.include_pending,
    )
    return await answer_question(
        principal=principal,
        params=params,
        directory=directory,
        index=index,
    )
