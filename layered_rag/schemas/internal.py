"""
服务层内部参数模型

定义 Service 层函数的参数对象，与 API Schema 解耦。

使用示例：
    from layered_rag.schemas.internal import AskParams

    params = AskParams(query="项目验收标准是什么？", layer_context="project")
    response = await answer_question(principal=principal, params=params, directory=directory)
"""

from pydantic import BaseModel, Field


class AskParams(BaseModel):
    """
    问答服务参数

    数值范围的校验放在服务层（抛出 QueryValidationError），
    这里只做类型约束，便于服务层被非 HTTP 调用方直接使用。
    """

    query: str = Field(..., description="用户问题")
    layer_context: str | None = Field(
        default=None,
        description="persona 标识，用于选择系统提示词",
    )
    match_threshold: float = Field(default=0.5, description="相似度阈值（0.0-1.0）")
    match_count: int = Field(default=5, description="最多检索片段数，0 表示不检索")
    include_pending: bool = Field(
        default=False,
        description="是否预览待审核文档（需要审核权限）",
    )
