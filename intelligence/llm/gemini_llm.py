"""
Google Gemini LLM
对话 (gemini-2.0-flash) 与向量 (gemini-embedding-001)
"""
from typing import List, Optional
import logging

from .base import BaseLLM, Message, MessageRole, LLMResponse
from utils.exceptions import LLMError


logger = logging.getLogger(__name__)


class GeminiLLM(BaseLLM):
    """
    Google Gemini LLM 实现

    支持模型:
    - gemini-2.0-flash (默认)
    - models/gemini-embedding-001 (向量)
    """

    def __init__(
        self,
        model: str = "gemini-2.0-flash",
        api_key: Optional[str] = None,
        embedding_model: str = "models/gemini-embedding-001",
        temperature: float = 0.3,
        max_tokens: int = 2048,
        timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self.embedding_model = embedding_model

    @property
    def provider(self) -> str:
        return "gemini"

    def _configure(self):
        if not self.api_key:
            raise LLMError("Gemini API key is not configured", provider=self.provider)
        import google.generativeai as genai
        genai.configure(api_key=self.api_key)
        return genai

    def _convert_messages(self, messages: List[Message]) -> tuple:
        """
        转换消息格式 (Gemini 格式)

        Returns:
            (system_instruction, history, last_message)
        """
        system_instruction = None
        history = []
        last_message = None

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_instruction = msg.content
            elif msg.role == MessageRole.USER:
                last_message = msg.content
            elif msg.role == MessageRole.ASSISTANT:
                if last_message:
                    history.append({"role": "user", "parts": [last_message]})
                    last_message = None
                history.append({"role": "model", "parts": [msg.content]})

        return system_instruction, history, last_message

    async def acomplete(
        self,
        messages: List[Message],
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """异步生成响应"""
        genai = self._configure()

        system_instruction, history, last_message = self._convert_messages(messages)

        generation_config = {
            "temperature": kwargs.get("temperature", self.temperature),
            "max_output_tokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        model = genai.GenerativeModel(
            model_name=self.model,
            generation_config=generation_config,
            system_instruction=system_instruction,
        )

        chat = model.start_chat(history=history)
        response = await chat.send_message_async(last_message or "")

        usage = {}
        if getattr(response, "usage_metadata", None):
            usage = {
                "prompt_tokens": response.usage_metadata.prompt_token_count,
                "completion_tokens": response.usage_metadata.candidates_token_count,
                "total_tokens": response.usage_metadata.total_token_count,
            }

        return LLMResponse(
            content=response.text or "",
            model=self.model,
            usage=usage,
            finish_reason=response.candidates[0].finish_reason.name if response.candidates else None,
            raw_response=response,
        )

    async def aembed(self, text: str) -> List[float]:
        genai = self._configure()
        result = await genai.embed_content_async(model=self.embedding_model, content=text)
        embedding = result.get("embedding") if isinstance(result, dict) else getattr(result, "embedding", None)
        if not embedding:
            raise LLMError("Gemini returned an empty embedding", provider=self.provider)
        return [float(x) for x in embedding]
