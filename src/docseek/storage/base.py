"""Abstract vector index and factory function."""

from abc import ABC, abstractmethod
from pathlib import Path


class VectorIndexBase(ABC):
    """Maps chunk row ids to embeddings and answers nearest-neighbour queries.

    Distances are cosine distances, so ``1 - distance`` is the cosine similarity.
    """

    @abstractmethod
    def add(self, row_ids: list[int], embeddings: list[list[float]]) -> None:
        """Add embeddings keyed by chunk row id, replacing any existing entry."""

    @abstractmethod
    def delete(self, row_ids: list[int]) -> None:
        """Remove embeddings for the given row ids; unknown ids are ignored."""

    @abstractmethod
    def query(self, embedding: list[float], n_results: int) -> list[tuple[int, float]]:
        """Return up to ``n_results`` ``(row_id, distance)`` pairs, nearest first."""

    @abstractmethod
    def get(self, row_ids: list[int]) -> dict[int, list[float]]:
        """Stored embeddings for the given row ids; unknown ids are absent."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored embeddings."""


def get_vector_index(backend: str, path: str | Path | None = None) -> VectorIndexBase:
    """Factory: return the vector index for ``backend``."""
    if backend == "chromadb":
        from .vectors import ChromaVectorIndex
        if path is None:
            raise ValueError("chromadb vector index requires a path")
        return ChromaVectorIndex(path)
    elif backend == "memory":
        from .vectors import MemoryVectorIndex
        return MemoryVectorIndex()
    else:
        raise ValueError(f"Unknown vector backend: {backend}")
