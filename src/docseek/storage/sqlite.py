"""SQLite-backed chunk store with FTS5 keyword search and hybrid ranking.

Chunk text and metadata live in SQLite; embeddings live in a vector index
keyed by the chunk's row id. The two are written together: a chunk row and
its vector are inserted in one transaction, and vectors are removed before
the rows that own them.
"""

import logging
import re
import secrets
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from ..errors import StoreError
from ..models import Chunk, Document, IndexEvent, SearchResult
from .base import VectorIndexBase

logger = logging.getLogger(__name__)


SCHEMA_VERSION = 2
RRF_K = 60
# Only the vector-only path filters on similarity
MIN_SIMILARITY = 0.6
MIN_CANDIDATES = 50
MAX_SCAN_CHUNKS = 10000
BUSY_TIMEOUT_MS = 5000
CACHE_SIZE_KB = 16384

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chunks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  chunk_id TEXT UNIQUE NOT NULL,
  doc_id TEXT NOT NULL,
  text TEXT NOT NULL,
  snippet TEXT NOT NULL,
  line_start INTEGER NOT NULL,
  line_end INTEGER NOT NULL,
  page_start INTEGER,
  page_end INTEGER
);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
  text,
  content='chunks',
  content_rowid='id',
  tokenize='unicode61'
);

CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
  INSERT INTO chunks_fts(rowid, text) VALUES (new.id, new.text);
END;

CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
  INSERT INTO chunks_fts(chunks_fts, rowid, text) VALUES ('delete', old.id, old.text);
END;

CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
  INSERT INTO chunks_fts(chunks_fts, rowid, text) VALUES ('delete', old.id, old.text);
  INSERT INTO chunks_fts(rowid, text) VALUES (new.id, new.text);
END;

CREATE TABLE IF NOT EXISTS documents (
  doc_id TEXT PRIMARY KEY,
  source_name TEXT NOT NULL,
  format TEXT NOT NULL,
  content_hash TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  size_bytes INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS index_events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  type TEXT NOT NULL,
  path TEXT NOT NULL,
  at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT
);

CREATE INDEX IF NOT EXISTS idx_chunks_doc_id ON chunks(doc_id);
CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(content_hash);
"""

_BAREWORD_RE = re.compile(r"^\w+$")
_FTS_OPERATORS = {"AND", "OR", "NOT", "NEAR"}


@dataclass
class SearchPage:
    results: list[SearchResult]
    total: int
    warnings: list[str] = field(default_factory=list)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_index_version() -> str:
    return f"{int(time.time() * 1000):x}{secrets.token_hex(2)}"


def escape_fts_query(query: str) -> str:
    """Turn free text into an FTS5 expression matching any of its terms.

    Tokens with characters outside the bareword set are quoted, with
    embedded quotes doubled.
    """
    terms = []
    for token in query.split():
        if _BAREWORD_RE.match(token) and token not in _FTS_OPERATORS:
            terms.append(token)
        else:
            terms.append('"' + token.replace('"', '""') + '"')
    return " OR ".join(terms)


def reciprocal_rank_fusion(
    keyword_ids: list[int],
    vector_ids: list[int],
    keyword_weight: float,
    semantic_weight: float,
    k: int = RRF_K,
) -> list[tuple[int, float]]:
    """Fuse two ranked id lists; best first, ties broken by id."""
    scores: dict[int, float] = {}
    for rank, row_id in enumerate(keyword_ids, start=1):
        scores[row_id] = scores.get(row_id, 0.0) + keyword_weight / (k + rank)
    for rank, row_id in enumerate(vector_ids, start=1):
        scores[row_id] = scores.get(row_id, 0.0) + semantic_weight / (k + rank)
    return sorted(scores.items(), key=lambda item: (-item[1], item[0]))


class SearchStore:
    """The persisted index: chunks, FTS postings, vectors, documents, events, meta."""

    def __init__(self, db_path: str | Path, vectors: VectorIndexBase):
        self.db_path = str(db_path)
        self.vectors = vectors
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
            self.conn.execute(f"PRAGMA cache_size = -{CACHE_SIZE_KB}")
            self.conn.execute("PRAGMA synchronous = NORMAL")
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(
                "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            self.conn.execute(
                "INSERT OR IGNORE INTO meta (key, value) VALUES ('index_version', ?)",
                (generate_index_version(),),
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open index database {self.db_path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")

    # --- meta -------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        with self._lock:
            row = self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def schema_version(self) -> int:
        value = self.get_meta("schema_version")
        return int(value) if value else 0

    def index_version(self) -> str:
        return self.get_meta("index_version") or ""

    def _bump_version(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "UPDATE meta SET value = ? WHERE key = 'index_version'",
            (generate_index_version(),),
        )

    # --- chunks -----------------------------------------------------------

    def insert_chunks(self, chunks: list[Chunk]) -> int:
        """Insert chunks and their vectors; all or nothing."""
        if not chunks:
            return 0
        missing = [c.chunk_id for c in chunks if not c.embedding]
        if missing:
            raise ValueError(f"Chunks without embeddings: {', '.join(missing[:3])}")

        row_ids: list[int] = []
        try:
            with self._transaction() as conn:
                for chunk in chunks:
                    cur = conn.execute(
                        "INSERT INTO chunks (chunk_id, doc_id, text, snippet, line_start, line_end, "
                        "page_start, page_end) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            chunk.chunk_id,
                            chunk.doc_id,
                            chunk.text,
                            chunk.snippet,
                            chunk.line_start,
                            chunk.line_end,
                            chunk.page_start,
                            chunk.page_end,
                        ),
                    )
                    row_ids.append(cur.lastrowid)
                self.vectors.add(row_ids, [c.embedding for c in chunks])
                self._bump_version(conn)
        except Exception:
            if row_ids:
                try:
                    self.vectors.delete(row_ids)
                except Exception as cleanup_error:
                    logger.warning(f"Vector cleanup after failed insert failed: {cleanup_error}")
            raise
        logger.debug(f"Inserted {len(chunks)} chunk(s) for {chunks[0].doc_id}")
        return len(chunks)

    def remove_document_chunks(self, doc_id: str) -> int:
        """Delete every chunk of ``doc_id``; returns the number removed."""
        with self._transaction() as conn:
            row_ids = [
                r["id"] for r in conn.execute("SELECT id FROM chunks WHERE doc_id = ?", (doc_id,))
            ]
            if not row_ids:
                return 0
            self.vectors.delete(row_ids)
            conn.execute("DELETE FROM chunks WHERE doc_id = ?", (doc_id,))
            self._bump_version(conn)
        return len(row_ids)

    def get_chunks(self, doc_id: str) -> list[Chunk]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM chunks WHERE doc_id = ? ORDER BY line_start, id", (doc_id,)
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def stats(self) -> dict:
        """Chunk count and the set of doc ids that have chunks."""
        with self._lock:
            doc_ids = {r[0] for r in self.conn.execute("SELECT DISTINCT doc_id FROM chunks")}
        return {"chunks": self.chunk_count(), "documents": doc_ids}

    # --- search -----------------------------------------------------------

    def hybrid_search(
        self,
        query: str,
        embedding: list[float],
        limit: int = 8,
        offset: int = 0,
        keyword_weight: float = 0.25,
        semantic_weight: float = 0.75,
    ) -> SearchPage:
        """Rank chunks by RRF over keyword and vector candidates.

        The candidate pool depends only on ``limit + offset`` rounded up to a
        floor, so consecutive pages are slices of one stable ordering.
        """
        fetch_limit = max(limit + offset, MIN_CANDIDATES) * 2

        if not query.strip():
            return self._vector_search(embedding, limit, offset, fetch_limit)

        try:
            keyword_ids = self._keyword_candidates(query, fetch_limit)
        except sqlite3.OperationalError as e:
            warning = f"Keyword search failed for {query!r}, using vector search only: {e}"
            logger.warning(warning)
            page = self._vector_search(embedding, limit, offset, fetch_limit)
            page.warnings.append(warning)
            return page

        with self._lock:
            vector_ids = [row_id for row_id, _ in self.vectors.query(embedding, fetch_limit)]

        fused = reciprocal_rank_fusion(keyword_ids, vector_ids, keyword_weight, semantic_weight)
        rows = self._fetch_rows([row_id for row_id, _ in fused])
        # Vectors whose chunk row is gone are not results
        fused = [(row_id, score) for row_id, score in fused if row_id in rows]

        page = fused[offset:offset + limit]
        return SearchPage(
            results=[_row_to_result(rows[row_id], score) for row_id, score in page],
            total=len(fused),
        )

    def _keyword_candidates(self, query: str, fetch_limit: int) -> list[int]:
        expression = escape_fts_query(query)
        with self._lock:
            rows = self.conn.execute(
                "SELECT rowid FROM chunks_fts WHERE chunks_fts MATCH ? ORDER BY rank LIMIT ?",
                (expression, fetch_limit),
            ).fetchall()
        return [r[0] for r in rows]

    def _vector_search(
        self, embedding: list[float], limit: int, offset: int, fetch_limit: int
    ) -> SearchPage:
        with self._lock:
            hits = self.vectors.query(embedding, fetch_limit)
        scored = [(row_id, 1.0 - distance) for row_id, distance in hits]
        scored = [(row_id, score) for row_id, score in scored if score >= MIN_SIMILARITY]
        rows = self._fetch_rows([row_id for row_id, _ in scored])
        scored = [(row_id, score) for row_id, score in scored if row_id in rows]

        page = scored[offset:offset + limit]
        return SearchPage(
            results=[_row_to_result(rows[row_id], score) for row_id, score in page],
            total=len(scored),
        )

    def similar_chunks(
        self, embedding: list[float], threshold: float, limit: int
    ) -> list[SearchResult]:
        """Nearest chunks to ``embedding`` whose cosine similarity is at least ``threshold``."""
        with self._lock:
            hits = self.vectors.query(embedding, limit)
        scored = [(row_id, 1.0 - distance) for row_id, distance in hits]
        scored = [(row_id, score) for row_id, score in scored if score >= threshold]
        rows = self._fetch_rows([row_id for row_id, _ in scored])
        return [_row_to_result(rows[row_id], score) for row_id, score in scored if row_id in rows]

    def chunk_embeddings(self, limit: int = MAX_SCAN_CHUNKS) -> list[Chunk]:
        """Chunks in insertion order with ``embedding`` filled from the vector index."""
        with self._lock:
            rows = self.conn.execute("SELECT * FROM chunks ORDER BY id LIMIT ?", (limit,)).fetchall()
            embeddings = self.vectors.get([r["id"] for r in rows])
        chunks = []
        for row in rows:
            if row["id"] not in embeddings:
                continue
            chunk = _row_to_chunk(row)
            chunk.embedding = embeddings[row["id"]]
            chunks.append(chunk)
        return chunks

    def _fetch_rows(self, row_ids: list[int]) -> dict[int, sqlite3.Row]:
        if not row_ids:
            return {}
        rows: dict[int, sqlite3.Row] = {}
        with self._lock:
            # Stay under SQLite's bound-parameter limit
            for i in range(0, len(row_ids), 500):
                batch = row_ids[i:i + 500]
                placeholders = ",".join("?" * len(batch))
                for row in self.conn.execute(
                    f"SELECT * FROM chunks WHERE id IN ({placeholders})", batch
                ):
                    rows[row["id"]] = row
        return rows

    # --- documents --------------------------------------------------------

    def get_document(self, doc_id: str) -> Document | None:
        with self._lock:
            row = self.conn.execute("SELECT * FROM documents WHERE doc_id = ?", (doc_id,)).fetchone()
        return Document(**dict(row)) if row else None

    def set_document(self, doc: Document) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO documents (doc_id, source_name, format, content_hash, updated_at, size_bytes) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(doc_id) DO UPDATE SET source_name = excluded.source_name, "
                "format = excluded.format, content_hash = excluded.content_hash, "
                "updated_at = excluded.updated_at, size_bytes = excluded.size_bytes",
                (doc.doc_id, doc.source_name, doc.format, doc.content_hash, doc.updated_at, doc.size_bytes),
            )
            self._bump_version(conn)

    def remove_document(self, doc_id: str) -> bool:
        with self._transaction() as conn:
            removed = conn.execute("DELETE FROM documents WHERE doc_id = ?", (doc_id,)).rowcount > 0
            if removed:
                self._bump_version(conn)
        return removed

    def list_documents(self) -> list[Document]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM documents ORDER BY doc_id").fetchall()
        return [Document(**dict(r)) for r in rows]

    def document_ids(self) -> list[str]:
        """Doc ids known from either the documents table or stored chunks."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT doc_id FROM documents UNION SELECT DISTINCT doc_id FROM chunks"
            ).fetchall()
        return sorted(r[0] for r in rows)

    def document_count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def needs_update(self, doc_id: str, content_hash: str) -> bool:
        doc = self.get_document(doc_id)
        return doc is None or doc.content_hash != content_hash

    # --- events -----------------------------------------------------------

    def record_event(self, event: IndexEvent) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO index_events (type, path, at) VALUES (?, ?, ?)",
                (event.type, event.path, event.at),
            )

    def last_event(self) -> IndexEvent | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT type, path, at FROM index_events ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return IndexEvent(**dict(row)) if row else None


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        chunk_id=row["chunk_id"],
        doc_id=row["doc_id"],
        text=row["text"],
        snippet=row["snippet"],
        line_start=row["line_start"],
        line_end=row["line_end"],
        page_start=row["page_start"],
        page_end=row["page_end"],
    )


def _row_to_result(row: sqlite3.Row, score: float) -> SearchResult:
    return SearchResult(
        chunk_id=row["chunk_id"],
        path=row["doc_id"],
        line_start=row["line_start"],
        line_end=row["line_end"],
        page_start=row["page_start"],
        page_end=row["page_end"],
        score=score,
        snippet=row["snippet"],
    )
