"""
Intelligence Module
智能层 - LLM 抽象 + 关键词 / 相关性能力
"""
from .llm import (
    BaseLLM,
    DeepSeekLLM,
    GeminiLLM,
    OllamaLLM,
    OpenAILLM,
    get_llm,
)
from .agents import KeywordAgent, RelevanceAgent
from .diagnostics import check_connection

__all__ = [
    # LLM
    "BaseLLM",
    "DeepSeekLLM",
    "GeminiLLM",
    "OllamaLLM",
    "OpenAILLM",
    "get_llm",
    # Agents
    "KeywordAgent",
    "RelevanceAgent",
    "check_connection",
]
