"""
OpenAI-Compatible LLM
任意兼容 /chat/completions 与 /embeddings 的服务
"""
from typing import List, Optional
import logging
import inspect

from .base import BaseLLM, Message, LLMResponse
from utils.exceptions import LLMError


logger = logging.getLogger(__name__)


class OpenAILLM(BaseLLM):
    """
    OpenAI 兼容 LLM 实现

    base_url 指向兼容服务 (默认官方接口)。
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        embedding_model: str = "text-embedding-3-small",
        temperature: float = 0.3,
        max_tokens: int = 2048,
        timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self.embedding_model = embedding_model
        self._async_client = None

    @property
    def provider(self) -> str:
        return "openai_compatible"

    def _get_async_client(self):
        """获取异步客户端"""
        if not self.api_key:
            raise LLMError("OpenAI-compatible API key is not configured", provider=self.provider)
        if self._async_client is None:
            from openai import AsyncOpenAI
            self._async_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._async_client

    async def acomplete(
        self,
        messages: List[Message],
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """异步生成响应"""
        client = self._get_async_client()

        request_params = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if json_mode:
            request_params["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(**request_params)

        choice = response.choices[0]
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            usage=usage,
            finish_reason=choice.finish_reason,
            raw_response=response,
        )

    async def aembed(self, text: str) -> List[float]:
        client = self._get_async_client()
        response = await client.embeddings.create(input=[text], model=self.embedding_model)
        if not response.data:
            raise LLMError("Embedding response contained no data", provider=self.provider)
        return [float(x) for x in response.data[0].embedding]

    async def aclose(self) -> None:
        client = self._async_client
        if client is None:
            return
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            maybe_awaitable = close_fn()
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        self._async_client = None
