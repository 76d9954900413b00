"""
Custom Exceptions
自定义异常类
"""


class InsightError(Exception):
    """洞察任务系统基础异常类"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(InsightError):
    """配置错误"""
    pass


class AuthError(InsightError):
    """上游登录凭证缺失或失效"""
    pass


class UpstreamError(InsightError):
    """上游平台接口错误"""

    def __init__(self, message: str, source: str = None, ret: int = None, **kwargs):
        super().__init__(message, kwargs)
        self.source = source
        self.ret = ret


class StorageError(InsightError):
    """存储错误"""
    pass


class TaskNotFoundError(StorageError):
    """任务不存在"""
    pass


class EmbeddingError(InsightError):
    """向量化错误"""

    def __init__(self, message: str, model: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.model = model


class LLMError(InsightError):
    """LLM 调用错误"""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class FetchError(InsightError):
    """文章 / 图片下载错误"""
    pass


class RenderError(InsightError):
    """PDF 渲染错误"""
    pass
