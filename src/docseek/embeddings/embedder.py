"""Text embedding using sentence-transformers."""

import logging
import time
from pathlib import Path
from typing import Any

import numpy as np

from ..errors import ModelLoadError
from .lazy import LazyHandle

logger = logging.getLogger(__name__)


class Embedder:
    """Embeds text with a sentence-transformers model loaded on first use."""

    def __init__(self, config: dict[str, Any], cache_dir: str | Path | None = None):
        emb_cfg = config.get("embedding", {})
        self.model_name = emb_cfg.get("model", "Alibaba-NLP/gte-multilingual-base")
        self.dimensions = int(emb_cfg.get("dimensions", 768))
        self.max_tokens = int(emb_cfg.get("max_tokens", 512))
        self.batch_size = int(emb_cfg.get("batch_size", 32))
        self.cache_dir = str(cache_dir) if cache_dir else None
        self._handle = LazyHandle(self._load)

    def _load(self):
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model: {self.model_name}...")
        start = time.monotonic()
        try:
            model = SentenceTransformer(
                self.model_name,
                cache_folder=self.cache_dir,
                trust_remote_code=True,
            )
        except Exception as e:
            raise ModelLoadError(f"Failed to load embedding model {self.model_name}: {e}") from e
        logger.info(f"Model loaded in {(time.monotonic() - start) * 1000:.0f}ms")
        return model

    @property
    def model(self):
        """The loaded model; concurrent first callers share one load."""
        return self._handle.get()

    @property
    def ready(self) -> bool:
        return self._handle.ready

    def truncate(self, text: str) -> str:
        """Cut text to ``max_tokens`` at a token boundary of the model's tokenizer."""
        if not text or not text.strip():
            return text
        tokenizer = self.model.tokenizer
        ids = tokenizer(
            text,
            truncation=True,
            max_length=self.max_tokens,
            add_special_tokens=False,
        )["input_ids"]
        if len(ids) < self.max_tokens:
            return text
        return tokenizer.decode(ids, skip_special_tokens=True)

    def embed(self, text: str) -> list[float]:
        vector = self.model.encode(self.truncate(text), normalize_embeddings=True).tolist()
        self._check_dimensions(vector)
        return vector

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in batches of ``batch_size`` to bound memory."""
        if not texts:
            return []

        embeddings: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = [self.truncate(t) for t in texts[i:i + self.batch_size]]
            vectors = self.model.encode(batch, normalize_embeddings=True).tolist()
            for vector in vectors:
                self._check_dimensions(vector)
            embeddings.extend(vectors)
        return embeddings

    def _check_dimensions(self, vector: list[float]) -> None:
        if len(vector) != self.dimensions:
            raise ValueError(
                f"Unexpected embedding dimension: {len(vector)}, expected {self.dimensions}"
            )


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; zero vectors score 0."""
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        raise ValueError("Embeddings must have the same dimension")

    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)
