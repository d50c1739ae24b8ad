"""Cross-encoder reranking of search candidates."""

import logging
import time
from pathlib import Path
from typing import Any

from ..errors import ModelLoadError
from .lazy import LazyHandle

logger = logging.getLogger(__name__)


class Reranker:
    """Scores (query, passage) pairs with a cross-encoder; scores are in [0, 1]."""

    def __init__(self, config: dict[str, Any], cache_dir: str | Path | None = None):
        rr_cfg = config.get("reranker", {})
        self.model_name = rr_cfg.get("model", "cross-encoder/mmarco-mMiniLMv2-L12-H384-v1")
        self.max_length = int(rr_cfg.get("max_length", 512))
        self.cache_dir = str(cache_dir) if cache_dir else None
        self._handle = LazyHandle(self._load)

    def _load(self):
        from sentence_transformers import CrossEncoder

        logger.info(f"Loading reranker model: {self.model_name}...")
        start = time.monotonic()
        try:
            model = CrossEncoder(
                self.model_name,
                max_length=self.max_length,
                cache_folder=self.cache_dir,
            )
        except Exception as e:
            raise ModelLoadError(f"Failed to load reranker model {self.model_name}: {e}") from e
        logger.info(f"Reranker loaded in {(time.monotonic() - start) * 1000:.0f}ms")
        return model

    @property
    def model(self):
        return self._handle.get()

    def rerank(
        self,
        query: str,
        documents: list[tuple[str, str]],
        top_k: int | None = None,
    ) -> list[tuple[str, float]]:
        """Rank ``(id, text)`` pairs by relevance to ``query``, best first."""
        if not documents:
            return []

        pairs = [(query, text) for _, text in documents]
        # Single-label cross-encoders apply a sigmoid to their logits by default
        scores = self.model.predict(pairs, show_progress_bar=False)
        ranked = sorted(
            ((doc_id, min(max(float(score), 0.0), 1.0)) for (doc_id, _), score in zip(documents, scores)),
            key=lambda item: item[1],
            reverse=True,
        )
        return ranked[:top_k] if top_k else ranked
