"""
Agents
基于 LLM 对话能力构建的关键词 / 相关性能力
"""
from .keyword_agent import KeywordAgent
from .relevance_agent import RelevanceAgent, PARSE_FAILURE_INSIGHT

__all__ = [
    "KeywordAgent",
    "RelevanceAgent",
    "PARSE_FAILURE_INSIGHT",
]
