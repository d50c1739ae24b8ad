"""Deterministic stand-ins for the model-backed collaborators."""

import math
import re
import time
import zlib

DIM = 32


def bag_of_words(text: str, dim: int = DIM) -> list[float]:
    vec = [0.0] * dim
    for token in re.findall(r"\w+", text.lower()):
        vec[zlib.crc32(token.encode("utf-8")) % dim] += 1.0
    norm = math.sqrt(sum(x * x for x in vec))
    if norm == 0:
        vec[0] = 1.0
        return vec
    return [x / norm for x in vec]


class FakeEmbedder:
    dimensions = DIM

    def __init__(self, fail_on: str | None = None, delay: float = 0.0):
        self.fail_on = fail_on
        self.delay = delay
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        return bag_of_words(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.fail_on and any(self.fail_on in t for t in texts):
            raise RuntimeError("embedding backend unavailable")
        if self.delay:
            time.sleep(self.delay)
        return [bag_of_words(t) for t in texts]


class FakeReranker:
    """Scores by keyword overlap; optionally drops or raises."""

    def __init__(self, drop: set[str] | None = None, error: Exception | None = None):
        self.drop = drop or set()
        self.error = error

    def rerank(self, query, documents, top_k=None):
        if self.error:
            raise self.error
        terms = set(query.lower().split())
        ranked = []
        for doc_id, text in documents:
            if doc_id in self.drop:
                continue
            words = set(text.lower().split())
            ranked.append((doc_id, len(terms & words) / max(len(terms), 1)))
        ranked.sort(key=lambda item: item[1], reverse=True)
        return ranked[:top_k] if top_k else ranked
