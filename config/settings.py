"""
Settings Configuration
使用 Pydantic 进行配置验证和管理
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class GeneralSettings(BaseSettings):
    """通用设置"""
    request_timeout: int = Field(default=30, description="请求超时时间(秒)")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="共享 HTTP 客户端的 User-Agent",
    )
    verify_tls: bool = Field(default=False, description="是否校验网关证书")

    class Config:
        env_prefix = "GENERAL_"


class UpstreamSettings(BaseSettings):
    """公众号平台接口配置"""
    base_url: str = Field(default="https://mp.weixin.qq.com", description="平台根地址")
    session_ttl: int = Field(default=4 * 24 * 3600, description="登录会话有效期(秒)")

    class Config:
        env_prefix = "UPSTREAM_"


class LLMSettings(BaseSettings):
    """LLM 配置"""
    temperature: float = Field(default=0.3, description="生成温度")
    max_tokens: int = Field(default=2048, description="最大生成token数")
    timeout: float = Field(default=120.0, description="单次调用超时(秒)")

    # API Keys
    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API Key")
    deepseek_api_key: Optional[str] = Field(default=None, description="DeepSeek API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容服务 API Key")

    # 模型
    gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini 对话模型")
    deepseek_model: str = Field(default="deepseek-chat", description="DeepSeek 对话模型")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI 兼容对话模型")
    openai_base_url: Optional[str] = Field(default=None, description="OpenAI 兼容服务地址")
    ollama_model: str = Field(default="qwen3:8b", description="Ollama 对话模型")

    class Config:
        env_prefix = "LLM_"


class EmbeddingSettings(BaseSettings):
    """Embedding 服务配置"""
    provider: str = Field(default="gemini", description="Embedding提供商: gemini, ollama, openai_compatible")
    gemini_model: str = Field(default="models/gemini-embedding-001", description="Gemini 向量模型")
    openai_model: str = Field(default="text-embedding-3-small", description="OpenAI 兼容向量模型")
    ollama_base_url: str = Field(default="http://127.0.0.1:11434", description="Ollama 服务地址")
    ollama_model: str = Field(default="qwen3-embedding:8b-q8_0", description="Ollama 向量模型")

    class Config:
        env_prefix = "EMBEDDING_"


class StorageSettings(BaseSettings):
    """存储配置"""
    db_path: str = Field(default="./data/insight.db", description="SQLite 数据库路径")

    class Config:
        env_prefix = "STORAGE_"


class ExportSettings(BaseSettings):
    """导出 / 预取配置"""
    image_host_pattern: str = Field(default=r"mmbiz\.qpic\.cn", description="图片 CDN 域名正则")
    renderer: str = Field(default="weasyprint", description="PDF 渲染器: weasyprint, prince")
    prince_path: str = Field(default="/usr/bin/prince", description="Prince 可执行文件路径")
    max_image_width: int = Field(default=1280, description="压缩时的最大图片宽度")
    jpeg_quality: int = Field(default=75, description="压缩 JPEG 质量")

    class Config:
        env_prefix = "EXPORT_"


class LogSettings(BaseSettings):
    """日志配置"""
    dir: str = Field(default="./logs", description="日志目录")
    file_name: str = Field(default="insight_tasks.log", description="诊断日志文件名")
    level: str = Field(default="INFO", description="日志级别")

    class Config:
        env_prefix = "LOG_"


class Settings(BaseSettings):
    """主配置类 - 聚合所有子配置"""

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """从指定的 .env 文件加载配置"""
        if env_path is None:
            # 默认查找 config/.env
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            general=GeneralSettings(),
            upstream=UpstreamSettings(),
            llm=LLMSettings(),
            embedding=EmbeddingSettings(),
            storage=StorageSettings(),
            export=ExportSettings(),
            log=LogSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """获取全局配置单例"""
    return Settings.load_from_env_file()


# 便捷访问
def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_embedding_settings() -> EmbeddingSettings:
    return get_settings().embedding
