class QueryValidationError(Exception):
    """请求参数校验错误（空问题、阈值/数量越界等）"""


class ScopePermissionError(PermissionError):
    """权限错误：无可读范围，或无审核能力却请求预览待审文档"""


class UpstreamError(Exception):
    """外部服务（Embedding / LLM）调用错误，保留提供商原始信息"""

    def __init__(self, message: str, *, provider: str | None = None, transient: bool = False):
        super().__init__(message)
        self.provider = provider
        self.transient = transient


class UpstreamTimeoutError(UpstreamError, TimeoutError):
    """外部服务调用超时"""

    def __init__(self, message: str, *, provider: str | None = None):
        super().__init__(message, provider=provider, transient=True)


class InvalidTransitionError(Exception):
    """文档生命周期非法状态迁移"""

    def __init__(self, message: str, *, current: str | None = None, action: str | None = None):
        super().__init__(message)
        self.current = current
        self.action = action


class DocumentScopeError(Exception):
    """文档 layer 与 scope_id 不匹配"""


class DocumentNotFoundError(Exception):
    """文档不存在"""
