"""Model-backed text embedding and reranking."""

from .embedder import Embedder, cosine_similarity
from .reranker import Reranker

__all__ = ["Embedder", "Reranker", "cosine_similarity"]
