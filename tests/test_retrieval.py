"""Tests for the retrieval orchestrator, cursors and confidence."""

import base64
import json
import tempfile
from pathlib import Path

import pytest

from docseek.config import DEFAULT_CONFIG
from docseek.models import Chunk, SearchResult
from docseek.query.retrieval import (
    Retriever,
    calculate_confidence,
    decode_cursor,
    encode_cursor,
    hash_query,
)
from docseek.storage.sqlite import SearchStore
from docseek.storage.vectors import MemoryVectorIndex

from fakes import FakeEmbedder, FakeReranker, bag_of_words


def _config(**retrieval):
    import copy

    config = copy.deepcopy(DEFAULT_CONFIG)
    config["project_id"] = "proj"
    config["retrieval"].update(retrieval)
    return config


def _result(score: float, chunk_id: str = "c") -> SearchResult:
    return SearchResult(chunk_id, "a.md", 1, 1, None, None, score, "s")


def _populated_store(tmpdir, n: int = 15) -> SearchStore:
    store = SearchStore(Path(tmpdir) / "t.db", MemoryVectorIndex())
    chunks = []
    for i in range(n):
        text = f"search engines rank document {i}"
        chunks.append(Chunk(f"d{i}.md:1-1:{i:08d}", f"d{i}.md", text, text, 1, 1, embedding=bag_of_words(text)))
    store.insert_chunks(chunks)
    return store


def test_hash_query_short_hex():
    h = hash_query("hello")
    assert len(h) == 16
    assert h == hash_query("hello")
    assert h != hash_query("world")


def test_cursor_roundtrip_and_garbage():
    cursor = encode_cursor("abc", 8, "v1")
    assert decode_cursor(cursor) == {"query_hash": "abc", "offset": 8, "index_version": "v1"}
    assert decode_cursor("not base64!!") is None
    assert decode_cursor(base64.b64encode(b"[1, 2]").decode()) is None
    assert decode_cursor(base64.b64encode(json.dumps({"query_hash": "x", "offset": -1}).encode()).decode()) is None


def test_confidence_bounds():
    assert calculate_confidence([], 0) == 0
    assert calculate_confidence([], 100) == 0
    assert 0.0 <= calculate_confidence([_result(5.0)], 1000) <= 1.0
    assert 0.0 <= calculate_confidence([_result(-3.0)], -5) <= 1.0
    assert calculate_confidence([_result(1.0)], 10) == 1.0
    assert calculate_confidence([_result(0.5)], 5) == pytest.approx(0.5)


def test_confidence_weights_configurable():
    weights = {"score_weight": 1.0, "count_weight": 0.0, "count_normalization": 10}
    assert calculate_confidence([_result(0.42)], 1, weights) == 0.42


def test_search_response_shape():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir)
        retriever = Retriever(_config(), store, FakeEmbedder())
        response = retriever.search("search engines", limit=5)

        data = response.to_dict()
        assert data["schema_version"] == 1
        assert data["project_id"] == "proj"
        assert data["index_state"] == "ready"
        assert len(data["results"]) == 5
        assert set(data["results"][0]) == {
            "chunk_id", "path", "line_start", "line_end", "page_start", "page_end", "score", "snippet",
        }
        assert "search" in data["timing_ms"]
        assert "reranking" not in data["timing_ms"]
        assert data["next_cursor"]
        assert 0.0 <= data["confidence"] <= 1.0


def test_limit_capped_by_max_limit():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir)
        retriever = Retriever(_config(max_limit=12), store, FakeEmbedder())
        assert len(retriever.search("search", limit=50).results) == 12


def test_cursor_pages_do_not_overlap():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir)
        retriever = Retriever(_config(), store, FakeEmbedder())

        first = retriever.search("search engines", limit=5)
        second = retriever.search("search engines", limit=5, cursor=first.next_cursor)
        ids1 = {r.chunk_id for r in first.results}
        ids2 = {r.chunk_id for r in second.results}
        assert ids2
        assert ids1.isdisjoint(ids2)


def test_cursor_for_other_query_resets_offset():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir)
        retriever = Retriever(_config(), store, FakeEmbedder())

        cursor_a = retriever.search("search", limit=5).next_cursor
        fresh_b = retriever.search("document", limit=5)
        with_cursor_b = retriever.search("document", limit=5, cursor=cursor_a)
        assert [r.chunk_id for r in with_cursor_b.results] == [r.chunk_id for r in fresh_b.results]
        assert retriever.resolve_offset("document", cursor_a) == 0
        assert retriever.resolve_offset("search", cursor_a) == 5


def test_no_cursor_on_last_page_or_when_disabled():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir, n=3)
        retriever = Retriever(_config(), store, FakeEmbedder())
        assert retriever.search("search", limit=5).next_cursor is None

        store = _populated_store(tempfile.mkdtemp(dir=tmpdir), n=15)
        disabled = Retriever(_config(pagination={"enabled": False}), store, FakeEmbedder())
        assert disabled.search("search", limit=5).next_cursor is None


def test_rerank_fuses_scores_and_drops_missing():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir)
        plain = Retriever(_config(), store, FakeEmbedder()).search("search engines", limit=5)
        dropped = plain.results[0].chunk_id

        retriever = Retriever(_config(), store, FakeEmbedder(), FakeReranker(drop={dropped}))
        response = retriever.search("search engines", limit=5, rerank=True)

        ids = [r.chunk_id for r in response.results]
        assert dropped not in ids
        assert len(ids) == 4
        assert "reranking" in response.to_dict()["timing_ms"]

        hybrid = {r.chunk_id: r.score for r in plain.results}
        for r in response.results:
            # Every snippet contains both query words, so the rerank score is 1.0
            assert r.score == pytest.approx(hybrid[r.chunk_id] * 0.4 + 1.0 * 0.6)
        scores = [r.score for r in response.results]
        assert scores == sorted(scores, reverse=True)


def test_rerank_failure_falls_back():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir)
        plain = Retriever(_config(), store, FakeEmbedder()).search("search", limit=5)
        broken = Retriever(_config(), store, FakeEmbedder(), FakeReranker(error=RuntimeError("oom")))
        response = broken.search("search", limit=5, rerank=True)
        assert [r.chunk_id for r in response.results] == [r.chunk_id for r in plain.results]
        assert "reranking" not in response.to_dict()["timing_ms"]


def test_snippets_are_redacted():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SearchStore(Path(tmpdir) / "t.db", MemoryVectorIndex())
        text = "contact jane.doe@example.com for access"
        store.insert_chunks([Chunk("p.md:1-1:00000000", "p.md", text, text, 1, 1, embedding=bag_of_words(text))])
        response = Retriever(_config(), store, FakeEmbedder()).search("contact access")
        assert response.pii_redacted
        assert response.results[0].snippet == "contact [EMAIL] for access"


def test_status_reports_counts():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _populated_store(tmpdir, n=4)
        status = Retriever(_config(), store, FakeEmbedder()).status()
        assert status.chunks == 4
        assert status.documents == 0
        assert status.project_id == "proj"
        assert status.queued_files == 0
        assert status.warnings == []
        assert status.to_dict()["index_state"] == "ready"


def _store_with_texts(tmpdir, texts: dict[str, str]) -> SearchStore:
    store = SearchStore(Path(tmpdir) / "t.db", MemoryVectorIndex())
    for i, (doc_id, text) in enumerate(texts.items()):
        store.insert_chunks([Chunk(f"{doc_id}:1-1:{i:08d}", doc_id, text, text, 1, 1, embedding=bag_of_words(text))])
    return store


def test_find_similar_keeps_hits_above_threshold():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store_with_texts(tmpdir, {
            "a.md": "kubernetes cluster upgrade guide",
            "b.md": "kubernetes cluster upgrade guide",
            "c.md": "banana bread recipe",
        })
        retriever = Retriever(_config(), store, FakeEmbedder())

        hits = retriever.find_similar(bag_of_words("kubernetes cluster upgrade guide"))
        assert sorted(h.path for h in hits) == ["a.md", "b.md"]
        assert all(h.score >= 0.9 for h in hits)

        assert len(retriever.find_similar(bag_of_words("banana"), threshold=0.0, limit=1)) == 1


def test_find_duplicates_groups_each_chunk_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = _store_with_texts(tmpdir, {
            "a.md": "release notes for the storage engine",
            "b.md": "release notes for the storage engine",
            "c.md": "banana bread recipe",
            "d.md": "release notes for the storage engine",
        })
        retriever = Retriever(_config(), store, FakeEmbedder())

        groups = retriever.find_duplicates()
        assert len(groups) == 1
        assert sorted(r.path for r in groups[0].chunks) == ["a.md", "b.md", "d.md"]
        assert groups[0].similarity == pytest.approx(1.0, abs=1e-4)
        assert groups[0].chunks[0].path == "a.md"

        assert retriever.find_duplicates(limit=1) == groups[:1]


def test_find_duplicates_empty_index():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SearchStore(Path(tmpdir) / "t.db", MemoryVectorIndex())
        assert Retriever(_config(), store, FakeEmbedder()).find_duplicates() == []
