"""Retrieval: hybrid search, optional rerank, pagination cursors and confidence."""

import base64
import binascii
import hashlib
import json
import logging
import time
from dataclasses import replace
from typing import Any

from ..embeddings.embedder import cosine_similarity
from ..models import Chunk, DuplicateGroup, IndexStatus, SearchResponse, SearchResult
from ..privacy.pii import redact
from ..storage.sqlite import SearchStore

logger = logging.getLogger(__name__)


RESPONSE_SCHEMA_VERSION = 1
DEFAULT_CONFIDENCE = {"score_weight": 0.7, "count_weight": 0.3, "count_normalization": 10}
DEFAULT_RERANK_FUSION = {"hybrid_weight": 0.4, "rerank_weight": 0.6}
DEFAULT_SIMILARITY_THRESHOLD = 0.9
DEFAULT_AUDIT_LIMIT = 20
# Neighbours fetched per chunk when grouping duplicates
DUPLICATE_CANDIDATES = 50


def hash_query(query: str) -> str:
    return hashlib.sha256(query.encode("utf-8")).hexdigest()[:16]


def encode_cursor(query_hash: str, offset: int, index_version: str) -> str:
    payload = {"query_hash": query_hash, "offset": offset, "index_version": index_version}
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> dict[str, Any] | None:
    """Decode a cursor; anything malformed decodes to None."""
    try:
        data = json.loads(base64.b64decode(cursor.encode("ascii"), validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    offset = data.get("offset")
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        return None
    if not isinstance(data.get("query_hash"), str):
        return None
    return data


def calculate_confidence(
    results: list[SearchResult],
    total: int,
    weights: dict[str, float] | None = None,
) -> float:
    """Heuristic result-set quality in [0, 1] from mean score and hit count."""
    if not results:
        return 0.0
    w = {**DEFAULT_CONFIDENCE, **(weights or {})}

    avg_score = sum(r.score for r in results) / len(results)
    score_part = min(max(avg_score, 0.0), 1.0)
    count_part = min(max(total, 0) / w["count_normalization"], 1.0) if w["count_normalization"] else 1.0

    confidence = score_part * w["score_weight"] + count_part * w["count_weight"]
    return round(min(max(confidence, 0.0), 1.0), 2)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


class Retriever:
    """Answers search and status requests against one project's index."""

    def __init__(self, config: dict[str, Any], store: SearchStore, embedder, reranker=None):
        self.config = config
        self.store = store
        self.embedder = embedder
        self.reranker = reranker

        r_cfg = config.get("retrieval", {})
        self.default_limit = int(r_cfg.get("default_limit", 8))
        self.max_limit = int(r_cfg.get("max_limit", 12))
        self.semantic_weight = float(r_cfg.get("semantic_weight", 0.75))
        self.keyword_weight = float(r_cfg.get("keyword_weight", 0.25))
        self.rerank_top_k = r_cfg.get("rerank_top_k")
        self.pagination = bool(r_cfg.get("pagination", {}).get("enabled", True))
        self.confidence_weights = {**DEFAULT_CONFIDENCE, **r_cfg.get("confidence", {})}
        self.fusion = {**DEFAULT_RERANK_FUSION, **r_cfg.get("rerank_fusion", {})}

        a_cfg = config.get("audit", {})
        self.similarity_threshold = float(a_cfg.get("similarity_threshold", DEFAULT_SIMILARITY_THRESHOLD))
        self.audit_limit = int(a_cfg.get("limit", DEFAULT_AUDIT_LIMIT))

    def resolve_offset(self, query: str, cursor: str | None) -> int:
        """Offset encoded in ``cursor``, or 0 if it belongs to another query."""
        if not cursor:
            return 0
        data = decode_cursor(cursor)
        if data is None:
            logger.warning("Ignoring malformed cursor")
            return 0
        if data["query_hash"] != hash_query(query):
            logger.warning("Ignoring cursor issued for a different query")
            return 0
        if data.get("index_version") != self.store.index_version():
            logger.info("Index changed since cursor was issued; results may shift")
        return data["offset"]

    def search(
        self,
        query: str,
        limit: int | None = None,
        cursor: str | None = None,
        rerank: bool = False,
    ) -> SearchResponse:
        start = time.monotonic()
        limit = max(1, min(limit or self.default_limit, self.max_limit))
        offset = self.resolve_offset(query, cursor)

        embedding = self.embedder.embed(query)
        page = self.store.hybrid_search(
            query,
            embedding,
            limit=limit,
            offset=offset,
            keyword_weight=self.keyword_weight,
            semantic_weight=self.semantic_weight,
        )
        for warning in page.warnings:
            logger.warning(warning)
        timing: dict[str, float] = {"search": _elapsed_ms(start)}

        results = page.results
        if rerank and results and self.reranker is not None:
            rerank_start = time.monotonic()
            try:
                results = self._rerank(query, results, limit)
                timing["reranking"] = _elapsed_ms(rerank_start)
            except Exception as e:
                logger.warning(f"Reranking failed, using original results: {e}")
                results = page.results[:limit]
        elif rerank and self.reranker is None:
            logger.warning("Reranking requested but no reranker is configured")

        next_cursor = None
        if self.pagination and offset + len(results) < page.total:
            next_cursor = encode_cursor(hash_query(query), offset + limit, self.store.index_version())

        confidence = calculate_confidence(results, page.total, self.confidence_weights)

        pii_redacted = False
        redacted_results = []
        for result in results:
            redaction = redact(result.snippet)
            pii_redacted = pii_redacted or redaction.redacted
            redacted_results.append(replace(result, snippet=redaction.text))

        return SearchResponse(
            project_id=self.config.get("project_id", ""),
            query=query,
            confidence=confidence,
            results=redacted_results,
            next_cursor=next_cursor,
            pii_redacted=pii_redacted,
            timing_ms=timing,
            schema_version=RESPONSE_SCHEMA_VERSION,
        )

    def _rerank(self, query: str, results: list[SearchResult], limit: int) -> list[SearchResult]:
        """Blend hybrid and cross-encoder scores; candidates the reranker drops are excluded."""
        ranked = self.reranker.rerank(
            query,
            [(r.chunk_id, r.snippet) for r in results],
            top_k=self.rerank_top_k,
        )
        scores = dict(ranked)
        fused = [
            replace(
                r,
                score=r.score * self.fusion["hybrid_weight"] + scores[r.chunk_id] * self.fusion["rerank_weight"],
            )
            for r in results
            if r.chunk_id in scores
        ]
        fused.sort(key=lambda r: r.score, reverse=True)
        return fused[:limit]

    def find_similar(
        self,
        embedding: list[float],
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Vector-only search keeping hits whose similarity reaches ``threshold``."""
        threshold = self.similarity_threshold if threshold is None else threshold
        return self.store.similar_chunks(embedding, threshold, limit or self.audit_limit)

    def find_duplicates(
        self, threshold: float | None = None, limit: int | None = None
    ) -> list[DuplicateGroup]:
        """Group near-duplicate chunks across the index.

        Each chunk seeds a group from its nearest neighbours; a chunk joins
        at most one group. Candidates are confirmed against the stored
        vectors, since index distances may be approximate.
        """
        threshold = self.similarity_threshold if threshold is None else threshold
        limit = limit or self.audit_limit

        chunks = self.store.chunk_embeddings()
        by_id = {c.chunk_id: c for c in chunks}
        seen: set[str] = set()
        groups: list[DuplicateGroup] = []

        for chunk in chunks:
            if len(groups) >= limit:
                break
            if chunk.chunk_id in seen:
                continue

            members = [_chunk_result(chunk, 1.0)]
            similarity = 1.0
            for hit in self.find_similar(chunk.embedding, threshold, DUPLICATE_CANDIDATES):
                other = by_id.get(hit.chunk_id)
                if other is None or other.chunk_id == chunk.chunk_id or other.chunk_id in seen:
                    continue
                score = cosine_similarity(chunk.embedding, other.embedding)
                if score < threshold:
                    continue
                members.append(_chunk_result(other, score))
                seen.add(other.chunk_id)
                similarity = min(similarity, score)

            if len(members) > 1:
                seen.add(chunk.chunk_id)
                groups.append(DuplicateGroup(chunks=members, similarity=round(similarity, 4)))

        logger.info(f"Found {len(groups)} duplicate group(s) among {len(chunks)} chunks")
        return groups

    def status(self) -> IndexStatus:
        stats = self.store.stats()
        warnings = []
        vector_count = self.store.vectors.count()
        if vector_count != stats["chunks"]:
            warnings.append(
                f"Vector index has {vector_count} entries for {stats['chunks']} chunks; re-index to repair"
            )
        return IndexStatus(
            project_id=self.config.get("project_id", ""),
            documents=self.store.document_count(),
            chunks=stats["chunks"],
            last_event=self.store.last_event(),
            warnings=warnings,
            schema_version=RESPONSE_SCHEMA_VERSION,
        )


def _chunk_result(chunk: Chunk, score: float) -> SearchResult:
    return SearchResult(
        chunk_id=chunk.chunk_id,
        path=chunk.doc_id,
        line_start=chunk.line_start,
        line_end=chunk.line_end,
        page_start=chunk.page_start,
        page_end=chunk.page_end,
        score=round(score, 4),
        snippet=redact(chunk.snippet).text,
    )
