"""
Provider connection test
"""
from typing import Any, Dict
import logging
import time

from intelligence.llm import BaseLLM, Message


logger = logging.getLogger(__name__)

_PING_PROMPT = "Say 'OK' if you can hear me."


async def check_connection(llm: BaseLLM) -> Dict[str, Any]:
    """发送一次极短的对话请求, 返回 {success, provider, model, latency_ms, reply|error}"""
    started = time.monotonic()
    try:
        response = await llm.acomplete([Message.user(_PING_PROMPT)], max_tokens=16)
    except Exception as e:
        logger.warning(f"[Diagnostics] {llm.provider} connection failed: {e}")
        return {"success": False, "provider": llm.provider, "model": llm.model, "error": str(e)}

    return {
        "success": True,
        "provider": llm.provider,
        "model": response.model or llm.model,
        "latency_ms": int((time.monotonic() - started) * 1000),
        "reply": response.content.strip()[:100],
    }
