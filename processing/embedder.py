"""
Embedder
文本向量化与余弦相似度
"""

from __future__ import annotations

from typing import Sequence, Union
import logging

import numpy as np

from intelligence.llm import BaseLLM
from utils.exceptions import EmbeddingError


logger = logging.getLogger(__name__)

VectorLike = Union[Sequence[float], np.ndarray]


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    余弦相似度

    任一向量范数为 0 或维度不一致时返回 0.0。
    """
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape or va.size == 0:
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


class Embedder:
    """
    基于 LLM 供应商向量接口的 Embedder

    Args:
        llm: 提供 aembed 的 LLM 实例
    """

    def __init__(self, llm: BaseLLM):
        self.llm = llm

    @property
    def model_name(self) -> str:
        return getattr(self.llm, "embedding_model", None) or self.llm.model

    async def embed(self, text: str) -> np.ndarray:
        try:
            vector = await self.llm.aembed(text)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed: {exc}", model=self.model_name) from exc

        array = np.asarray(vector, dtype=np.float32)
        if array.size == 0:
            raise EmbeddingError("Empty embedding vector", model=self.model_name)
        return array
