"""
Ollama LLM
本地 Ollama 服务: /api/chat 与 /api/embed
"""
from typing import List, Optional
import logging

import httpx

from .base import BaseLLM, Message, LLMResponse
from utils.exceptions import LLMError


logger = logging.getLogger(__name__)


class OllamaLLM(BaseLLM):
    """
    Ollama 实现

    可注入共享的 httpx.AsyncClient; 未注入时按需创建并在 aclose 中释放。
    """

    DEFAULT_BASE_URL = "http://127.0.0.1:11434"

    def __init__(
        self,
        model: str = "qwen3:8b",
        base_url: Optional[str] = None,
        embedding_model: str = "qwen3-embedding:8b-q8_0",
        http_client: Optional[httpx.AsyncClient] = None,
        temperature: float = 0.3,
        max_tokens: int = 2048,
        timeout: float = 120.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.embedding_model = embedding_model
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def provider(self) -> str:
        return "ollama"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = await self._get_client().post(url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise LLMError(f"Ollama request failed: {e}", provider=self.provider) from e
        if response.status_code != 200:
            raise LLMError(
                f"Ollama returned HTTP {response.status_code}: {response.text[:200]}",
                provider=self.provider,
            )
        return response.json()

    async def acomplete(
        self,
        messages: List[Message],
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
            "options": {
                "temperature": kwargs.get("temperature", self.temperature),
                "num_predict": kwargs.get("max_tokens", self.max_tokens),
            },
        }
        if json_mode:
            payload["format"] = "json"

        data = await self._post("/api/chat", payload)
        message = data.get("message") or {}
        return LLMResponse(
            content=message.get("content") or "",
            model=data.get("model") or self.model,
            usage={
                "prompt_tokens": int(data.get("prompt_eval_count") or 0),
                "completion_tokens": int(data.get("eval_count") or 0),
            },
            finish_reason=data.get("done_reason"),
            raw_response=data,
        )

    async def aembed(self, text: str) -> List[float]:
        data = await self._post("/api/embed", {"model": self.embedding_model, "input": text})
        embeddings = data.get("embeddings") or []
        if not embeddings or not embeddings[0]:
            raise LLMError("Ollama returned no embeddings", provider=self.provider)
        return [float(x) for x in embeddings[0]]

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
        self._client = None
