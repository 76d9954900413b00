"""
Data Models / Schemas
定义统一的数据结构
"""
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class TaskStatus(str, Enum):
    """洞察任务状态"""
    PENDING = "pending"
    PROCESSING = "processing"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.CANCELLED, TaskStatus.COMPLETED, TaskStatus.FAILED)


class SearchSpeed(str, Enum):
    """账号搜索节奏 (越快越容易触发平台风控)"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def delay_range_ms(self) -> Tuple[int, int]:
        return {
            SearchSpeed.HIGH: (400, 600),
            SearchSpeed.MEDIUM: (1000, 2000),
            SearchSpeed.LOW: (2000, 3000),
        }[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> "SearchSpeed":
        """未知取值按最保守的 low 处理"""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.LOW


class ProviderKind(str, Enum):
    """模型供应商 (封闭集合)"""
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"
    OPENAI_COMPATIBLE = "openai_compatible"


class ExportFormat(str, Enum):
    """批量导出格式"""
    MARKDOWN = "markdown"
    PDF = "pdf"


class AccountCandidate(BaseModel):
    """候选公众号 (发现阶段产生, 不直接落库)"""
    external_id: str = Field(..., description="平台账号ID (fakeid)")
    display_name: str = Field(..., description="账号名称")


class SourceArticle(BaseModel):
    """上游文章列表中的一条"""
    title: str
    digest: str = ""
    url: str
    create_time: int = 0

    @property
    def embedding_text(self) -> str:
        return f"{self.title} {self.digest}"


class ProviderConfig(BaseModel):
    """任务级 Provider 选择"""
    keyword_provider: ProviderKind = Field(default=ProviderKind.GEMINI)
    reasoning_provider: ProviderKind = Field(default=ProviderKind.GEMINI)
    embedding_provider: ProviderKind = Field(default=ProviderKind.GEMINI)
    search_speed: SearchSpeed = Field(default=SearchSpeed.MEDIUM)

    # 覆盖 .env 中的配置 (可选)
    gemini_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: Optional[str] = None
    ollama_base_url: Optional[str] = None
    ollama_embedding_model: Optional[str] = None

    @field_validator("search_speed", mode="before")
    @classmethod
    def _validate_speed(cls, value):
        if isinstance(value, SearchSpeed):
            return value
        return SearchSpeed.parse(value)

    @field_validator("keyword_provider", "reasoning_provider", "embedding_provider", mode="before")
    @classmethod
    def _validate_provider(cls, value):
        if value is None or value == "":
            return ProviderKind.GEMINI
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value


class InsightTask(BaseModel):
    """洞察任务"""
    id: str
    prompt: str
    status: TaskStatus = TaskStatus.PENDING
    keywords: List[str] = Field(default_factory=list)
    target_count: int = 30
    processed_count: int = 0
    created_at: int
    updated_at: int
    completion_reason: Optional[str] = None


class InsightArticle(BaseModel):
    """通过两道筛选后落库的文章"""
    id: str
    task_id: str
    title: str
    url: str
    account_name: Optional[str] = None
    account_fakeid: Optional[str] = None
    publish_time: Optional[int] = None
    similarity: Optional[float] = None
    insight: Optional[str] = None
    relevance_score: Optional[float] = None
    created_at: int


class TaskDetail(BaseModel):
    """任务详情 (任务 + 文章, 文章按相似度降序)"""
    task: InsightTask
    articles: List[InsightArticle] = Field(default_factory=list)


class UpstreamSession(BaseModel):
    """上游平台登录凭证"""
    auth_key: str
    token: str
    cookie: str
    created_at: int
    expires_at: int


class ExportResult(BaseModel):
    """批量导出结果"""
    success: bool
    message: str
    export_dir: Optional[str] = None


class PrefetchStats(BaseModel):
    """预取计数"""
    article_success: int = 0
    article_failed: int = 0
    image_success: int = 0
    image_failed: int = 0

    def merge(self, other: "PrefetchStats") -> "PrefetchStats":
        return PrefetchStats(
            article_success=self.article_success + other.article_success,
            article_failed=self.article_failed + other.article_failed,
            image_success=self.image_success + other.image_success,
            image_failed=self.image_failed + other.image_failed,
        )


class PrefetchResult(BaseModel):
    """预取结果"""
    success: bool
    message: str
    stats: PrefetchStats = Field(default_factory=PrefetchStats)
