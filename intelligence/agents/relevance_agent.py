"""
Relevance Agent
判断文章是否与研究意图相关, 并生成简短洞察
"""
from typing import Optional, Tuple
import logging

from intelligence.llm import BaseLLM, Message
from pipeline.rate_gate import SleepFn
from pipeline.retry import retry_async
from .json_utils import load_json_object


logger = logging.getLogger(__name__)

PROVIDER_ATTEMPTS = 5
PROVIDER_PAUSE_MS = 2000
PARSE_FAILURE_INSIGHT = "Failed to parse AI response"

_RELEVANCE_PROMPT = (
    "Intent: {intent}\n\n"
    "Article Title: {title}\n"
    "Digest: {digest}\n\n"
    "Evaluate if this article is RELEVANT to the Intent. \n"
    "STRICT RULES: \n"
    "1. If it is an advertisement, course promotion (training camp, free lessons), "
    "or selling anxiety, MARK AS FALSE (is_relevant: false).\n"
    "2. If it is a simple notification, recruitment info, or low-value content, MARK AS FALSE.\n"
    "3. Only mark as TRUE if it provides substantive knowledge, analysis, or industry insights.\n"
    "If relevant, provide a concise insight (2-3 sentences max) in Simplified Chinese. \n"
    'Return JSON ONLY: {{ "is_relevant": boolean, "insight": "string" }}'
)


class RelevanceAgent:
    """相关性判定 + 洞察生成"""

    def __init__(self, llm: BaseLLM, sleep: Optional[SleepFn] = None):
        self.llm = llm
        self._sleep = sleep

    async def classify_and_summarize(self, intent: str, title: str, digest: str) -> Tuple[bool, str]:
        """
        Returns:
            (is_relevant, insight); 模型输出无法解析时为 (False, "Failed to parse AI response")
        """
        prompt = _RELEVANCE_PROMPT.format(intent=intent, title=title, digest=digest)

        response = await retry_async(
            lambda: self.llm.acomplete([Message.user(prompt)], json_mode=True, temperature=0.2),
            attempts=PROVIDER_ATTEMPTS,
            step_ms=PROVIDER_PAUSE_MS,
            label=f"{self.llm.provider} insight",
            linear=False,
            sleep=self._sleep,
        )

        parsed = load_json_object(response.content)
        if (
            not isinstance(parsed, dict)
            or not isinstance(parsed.get("is_relevant"), bool)
            or not isinstance(parsed.get("insight"), str)
        ):
            logger.debug(f"[RelevanceAgent] Unparseable response: {response.content[:200]}")
            return False, PARSE_FAILURE_INSIGHT

        return parsed["is_relevant"], parsed["insight"]
