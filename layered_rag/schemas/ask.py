"""
问答接口的请求/响应模型
"""

from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    """
    问答请求

    示例:
    ```json
    {
        "query": "项目验收标准是什么？",
        "layer_context": "project",
        "match_threshold": 0.5,
        "match_count": 5
    }
    ```
    """
    query: str = Field(..., min_length=1, description="用户问题")
    layer_context: str | None = Field(default=None, description="persona 标识")
    match_threshold: float = Field(default=0.5, ge=0.0, le=1.0, description="相似度阈值")
    match_count: int = Field(default=5, ge=0, le=100, description="最多检索片段数")
    include_pending: bool = Field(default=False, description="是否预览待审核文档")


class SourceCitation(BaseModel):
    """引用来源（每个文档一条）"""
    document_id: str = Field(description="文档 ID")
    title: str = Field(description="文档标题")
    layer: str = Field(description="文档层级")
    score: float = Field(description="该文档被采用片段的最高相似度")


class AskResponse(BaseModel):
    """问答响应"""
    answer: str = Field(description="生成的回答")
    sources: list[SourceCitation] = Field(default_factory=list, description="引用来源")
    processing_time_ms: float = Field(description="处理耗时（毫秒）")


class ErrorResponse(BaseModel):
    """统一错误响应"""
    error: str = Field(description="错误信息")
    code: str = Field(description="错误码")
