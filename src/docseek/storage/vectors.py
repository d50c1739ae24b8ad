"""Vector index backends: persistent ChromaDB and an in-process numpy index."""

from pathlib import Path

import chromadb
import numpy as np
from chromadb.config import Settings

from .base import VectorIndexBase


COLLECTION_NAME = "chunks"


class ChromaVectorIndex(VectorIndexBase):
    """ChromaDB-backed persistent vector index keyed by chunk row id."""

    def __init__(self, chroma_path: str | Path, collection_name: str = COLLECTION_NAME):
        self.chroma_path = Path(chroma_path)
        self.chroma_path.mkdir(parents=True, exist_ok=True)
        self.client = chromadb.PersistentClient(
            path=str(self.chroma_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self.collection = self.client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def add(self, row_ids: list[int], embeddings: list[list[float]]) -> None:
        if not row_ids:
            return
        self.collection.upsert(ids=[str(r) for r in row_ids], embeddings=embeddings)

    def delete(self, row_ids: list[int]) -> None:
        if not row_ids:
            return
        self.collection.delete(ids=[str(r) for r in row_ids])

    def query(self, embedding: list[float], n_results: int) -> list[tuple[int, float]]:
        total = self.collection.count()
        if total == 0 or n_results <= 0:
            return []
        results = self.collection.query(
            query_embeddings=[embedding],
            n_results=min(n_results, total),
            include=["distances"],
        )
        ids = results["ids"][0] if results["ids"] else []
        distances = results["distances"][0] if results.get("distances") else [0.0] * len(ids)
        return [(int(i), float(d)) for i, d in zip(ids, distances)]

    def get(self, row_ids: list[int]) -> dict[int, list[float]]:
        if not row_ids:
            return {}
        results = self.collection.get(ids=[str(r) for r in row_ids], include=["embeddings"])
        embeddings = results.get("embeddings")
        if embeddings is None:
            return {}
        return {int(i): [float(x) for x in e] for i, e in zip(results["ids"], embeddings)}

    def count(self) -> int:
        return self.collection.count()


class MemoryVectorIndex(VectorIndexBase):
    """Exact cosine search over an in-memory matrix; nothing is persisted."""

    def __init__(self):
        self._vectors: dict[int, np.ndarray] = {}

    def add(self, row_ids: list[int], embeddings: list[list[float]]) -> None:
        for row_id, embedding in zip(row_ids, embeddings):
            self._vectors[row_id] = np.asarray(embedding, dtype=np.float32)

    def delete(self, row_ids: list[int]) -> None:
        for row_id in row_ids:
            self._vectors.pop(row_id, None)

    def query(self, embedding: list[float], n_results: int) -> list[tuple[int, float]]:
        if not self._vectors or n_results <= 0:
            return []
        ids = list(self._vectors)
        matrix = np.stack([self._vectors[i] for i in ids])
        q = np.asarray(embedding, dtype=np.float32)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(norms > 0, matrix @ q / norms, 0.0)
        distances = 1.0 - sims

        # Stable sort keeps insertion order among equal distances
        order = np.argsort(distances, kind="stable")[:n_results]
        return [(ids[i], float(distances[i])) for i in order]

    def get(self, row_ids: list[int]) -> dict[int, list[float]]:
        return {r: self._vectors[r].tolist() for r in row_ids if r in self._vectors}

    def count(self) -> int:
        return len(self._vectors)
