"""
LLM Module
多供应商 LLM 抽象层
"""
from .base import BaseLLM, LLMResponse, Message, MessageRole
from .deepseek_llm import DeepSeekLLM
from .gemini_llm import GeminiLLM
from .ollama_llm import OllamaLLM
from .openai_llm import OpenAILLM
from .factory import get_llm

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "MessageRole",
    "DeepSeekLLM",
    "GeminiLLM",
    "OllamaLLM",
    "OpenAILLM",
    "get_llm",
]
