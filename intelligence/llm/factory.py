"""
LLM Factory
工厂函数 - 根据 ProviderKind 与配置创建 LLM 实例
"""
from typing import Optional
import logging

import httpx

from models import ProviderConfig, ProviderKind
from .base import BaseLLM
from .deepseek_llm import DeepSeekLLM
from .gemini_llm import GeminiLLM
from .ollama_llm import OllamaLLM
from .openai_llm import OpenAILLM


logger = logging.getLogger(__name__)


def get_llm(
    kind: ProviderKind,
    config: Optional[ProviderConfig] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    **kwargs,
) -> BaseLLM:
    """
    获取 LLM 实例

    优先级: ProviderConfig 中的覆盖值 > .env 配置 > 默认值

    Args:
        kind: 供应商
        config: 任务级 Provider 配置 (可选)
        http_client: 共享 HTTP 客户端 (Ollama 使用)
        **kwargs: 额外参数 (temperature, max_tokens 等)

    Example:
        llm = get_llm(ProviderKind.DEEPSEEK)
        llm = get_llm(ProviderKind.OLLAMA, ProviderConfig(ollama_base_url="http://gpu:11434"))
    """
    from config import get_embedding_settings, get_llm_settings

    settings = get_llm_settings()
    embedding = get_embedding_settings()
    config = config or ProviderConfig()
    kind = ProviderKind(kind)

    kwargs.setdefault("temperature", settings.temperature)
    kwargs.setdefault("max_tokens", settings.max_tokens)
    kwargs.setdefault("timeout", settings.timeout)

    if kind == ProviderKind.GEMINI:
        return GeminiLLM(
            model=settings.gemini_model,
            api_key=config.gemini_api_key or settings.gemini_api_key,
            embedding_model=embedding.gemini_model,
            **kwargs,
        )
    if kind == ProviderKind.DEEPSEEK:
        return DeepSeekLLM(
            model=settings.deepseek_model,
            api_key=config.deepseek_api_key or settings.deepseek_api_key,
            **kwargs,
        )
    if kind == ProviderKind.OLLAMA:
        return OllamaLLM(
            model=settings.ollama_model,
            base_url=config.ollama_base_url or embedding.ollama_base_url,
            embedding_model=config.ollama_embedding_model or embedding.ollama_model,
            http_client=http_client,
            **kwargs,
        )
    if kind == ProviderKind.OPENAI_COMPATIBLE:
        return OpenAILLM(
            model=config.openai_model or settings.openai_model,
            api_key=config.openai_api_key or settings.openai_api_key,
            base_url=config.openai_base_url or settings.openai_base_url,
            embedding_model=embedding.openai_model,
            **kwargs,
        )
    raise ValueError(f"Unsupported LLM provider: {kind}")
