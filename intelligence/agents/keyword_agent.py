"""
Keyword Agent
根据研究主题生成公众号搜索关键词
"""
from typing import List, Optional
import logging

from intelligence.llm import BaseLLM, Message
from pipeline.rate_gate import SleepFn
from pipeline.retry import retry_async
from utils.exceptions import LLMError
from .json_utils import load_json_object


logger = logging.getLogger(__name__)

PROVIDER_ATTEMPTS = 5
PROVIDER_PAUSE_MS = 2000

_KEYWORD_SYSTEM_PROMPT = (
    "You are a keyword generator helper. The user needs to search for WeChat Official Accounts. \n"
    "Generate {count} search keywords based on the user's topic. \n"
    "Output specific, short terms (e.g. '不良资产', '债权处置'). \n"
    "\n"
    "IMPORTANT: You must return a valid JSON object in this format: \n"
    '{{ "keywords": ["keyword1", "keyword2"] }}'
)


class KeywordAgent:
    """
    关键词生成

    调用失败按固定间隔重试; 返回内容无法解析时直接报错 (不重试)。
    """

    def __init__(self, llm: BaseLLM, sleep: Optional[SleepFn] = None):
        self.llm = llm
        self._sleep = sleep

    async def suggest_keywords(self, topic: str, count: int) -> List[str]:
        messages = [
            Message.system(_KEYWORD_SYSTEM_PROMPT.format(count=count)),
            Message.user(f"Topic: {topic}"),
        ]

        response = await retry_async(
            lambda: self.llm.acomplete(messages, json_mode=True, temperature=0.3),
            attempts=PROVIDER_ATTEMPTS,
            step_ms=PROVIDER_PAUSE_MS,
            label=f"{self.llm.provider} keywords",
            linear=False,
            sleep=self._sleep,
        )

        parsed = load_json_object(response.content)
        keywords = parsed.get("keywords") if isinstance(parsed, dict) else None
        if not isinstance(keywords, list):
            raise LLMError(
                f"Content Parse Error | Content: {response.content[:300]}",
                provider=self.llm.provider,
            )

        cleaned = [str(k).strip() for k in keywords if str(k).strip()]
        logger.info(f"[KeywordAgent] {len(cleaned)} keywords for '{topic}': {cleaned}")
        return cleaned
