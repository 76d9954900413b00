"""
Processing Module
文本向量化与相似度
"""
from .embedder import Embedder, cosine_similarity

__all__ = [
    "Embedder",
    "cosine_similarity",
]
