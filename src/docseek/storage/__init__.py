"""Persistent index storage: SQLite chunks/documents plus a vector index."""

import logging
from pathlib import Path
from typing import Any

from ..config import index_dir
from .base import VectorIndexBase, get_vector_index
from .migrate import run_migrations
from .sqlite import SearchPage, SearchStore, reciprocal_rank_fusion

logger = logging.getLogger(__name__)

DB_FILE = "docseek.db"
VECTORS_DIR = "vectors"


def open_store(project_root: str | Path, config: dict[str, Any] | None = None) -> SearchStore:
    """Open the project's index, creating it if needed, and run startup migrations."""
    config = config or {}
    backend = config.get("storage", {}).get("vector_backend", "chromadb")
    base = index_dir(project_root)
    base.mkdir(parents=True, exist_ok=True)

    vectors = get_vector_index(backend, base / VECTORS_DIR)
    store = SearchStore(base / DB_FILE, vectors)

    dimensions = config.get("embedding", {}).get("dimensions")
    run_migrations(store, base, dimensions)
    return store


__all__ = [
    "SearchPage",
    "SearchStore",
    "VectorIndexBase",
    "get_vector_index",
    "open_store",
    "reciprocal_rank_fusion",
    "run_migrations",
]
