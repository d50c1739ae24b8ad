"""Indexing pipeline: files and sources in, chunks and vectors out."""

import hashlib
import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from ..config import load_ignore_patterns
from ..models import Document, FileResult, IndexEvent, IndexResult, Source
from ..storage.sqlite import SearchStore, utc_now
from .chunker import chunk_document
from .parsers import get_format, is_supported, parse_document

logger = logging.getLogger(__name__)


DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_CONCURRENCY = 4


def compute_hash(content: bytes) -> str:
    """SHA256 of the raw file bytes."""
    return hashlib.sha256(content).hexdigest()


def generate_doc_id(file_path: str | Path, project_root: str | Path) -> str:
    """Document id is the path relative to the project root, with forward slashes."""
    rel = os.path.relpath(Path(file_path).resolve(), Path(project_root).resolve())
    return Path(rel).as_posix()


def _pattern_matches(path: str, pattern: str) -> bool:
    if pattern.endswith("/"):
        return pattern[:-1] in path
    if pattern in path:
        return True
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.search(regex, path) is not None


def should_ignore(rel_path: str, ignore_patterns: list[str], exclude_patterns: list[str]) -> bool:
    """Substring / simple-glob match of a root-relative path against any pattern.

    ``dir/`` matches any path containing ``dir``; ``*`` matches any run of
    characters. This is intentionally looser than gitignore semantics.
    """
    return any(_pattern_matches(rel_path, p) for p in [*ignore_patterns, *exclude_patterns] if p)


class Indexer:
    """Indexes files into a SearchStore, skipping unchanged content."""

    def __init__(
        self,
        project_root: str | Path,
        config: dict[str, Any],
        store: SearchStore,
        embedder,
    ):
        self.project_root = Path(project_root).resolve()
        self.config = config
        self.store = store
        self.embedder = embedder
        idx_cfg = config.get("indexing", {})
        self.max_file_size = int(idx_cfg.get("max_file_size_bytes", DEFAULT_MAX_FILE_SIZE))
        self.concurrency = max(1, int(idx_cfg.get("concurrency", DEFAULT_CONCURRENCY)))
        self._doc_locks: dict[str, threading.Lock] = {}
        self._doc_locks_guard = threading.Lock()

    def doc_id(self, file_path: str | Path) -> str:
        return generate_doc_id(self.project_root / file_path, self.project_root)

    def _doc_lock(self, doc_id: str) -> threading.Lock:
        with self._doc_locks_guard:
            return self._doc_locks.setdefault(doc_id, threading.Lock())

    def index_file(self, file_path: str | Path, source_name: str = "default") -> FileResult:
        """Index one file. Failures come back as ``FileResult(success=False)``.

        Calls for the same document are serialized, so the hash check, the
        removal of old chunks and the insert of new ones never interleave.
        """
        path = self.project_root / file_path
        doc_id = self.doc_id(path)
        with self._doc_lock(doc_id):
            return self._index_file(path, doc_id, file_path, source_name)

    def _index_file(self, path: Path, doc_id: str, file_path, source_name: str) -> FileResult:
        try:
            if not path.is_file():
                return FileResult(success=False, error=f"File not found: {file_path}")

            size = path.stat().st_size
            if size > self.max_file_size:
                return FileResult(
                    success=False,
                    error=f"File exceeds {self.max_file_size / 1024 / 1024:g}MB limit",
                )

            fmt = get_format(path)
            if fmt is None:
                return FileResult(success=False, error=f"Unsupported format: {file_path}")

            content = path.read_bytes()
            digest = compute_hash(content)
            if not self.store.needs_update(doc_id, digest):
                logger.debug(f"Unchanged, skipping: {doc_id}")
                return FileResult(success=True, chunks=0)

            # Old chunks go first so a re-index never leaves duplicates behind
            self.store.remove_document_chunks(doc_id)

            parsed = parse_document(content, path, fmt)
            chunks = chunk_document(parsed.content, doc_id, fmt, self.config.get("chunking"))
            embeddings = self.embedder.embed_batch([c.text for c in chunks])
            for chunk, embedding in zip(chunks, embeddings):
                chunk.embedding = embedding

            self.store.insert_chunks(chunks)
            self.store.set_document(Document(
                doc_id=doc_id,
                source_name=source_name,
                format=fmt,
                content_hash=digest,
                updated_at=utc_now(),
                size_bytes=len(content),
            ))
            self.store.record_event(IndexEvent(type="add", path=doc_id, at=utc_now()))
            return FileResult(success=True, chunks=len(chunks))
        except Exception as e:
            logger.debug(f"Indexing {doc_id} failed", exc_info=True)
            return FileResult(success=False, error=str(e))

    def reindex_file(self, file_path: str | Path, source_name: str = "default") -> bool:
        """Force a re-index by forgetting the stored hash first."""
        self.store.remove_document(self.doc_id(file_path))
        result = self.index_file(file_path, source_name)
        if not result.success:
            logger.warning(f"Re-index failed for {file_path}: {result.error}")
        return result.success

    def collect_files(self, source: Source) -> list[Path]:
        """Files a source would index: included, not ignored, supported, deduplicated."""
        source_path = (self.project_root / source.path).resolve()
        ignore_patterns = load_ignore_patterns(self.project_root)

        if source_path.is_file():
            candidates = [source_path]
        elif source_path.is_dir():
            candidates = []
            for pattern in source.include or ["**/*"]:
                candidates.extend(p for p in source_path.glob(pattern) if p.is_file())
        else:
            raise FileNotFoundError(f"Source path not found: {source.path}")

        files: list[Path] = []
        seen: set[Path] = set()
        for f in sorted(candidates):
            if f in seen or not is_supported(f):
                continue
            seen.add(f)
            if should_ignore(self.doc_id(f), ignore_patterns, source.exclude):
                continue
            files.append(f)
        return files

    def index_source(self, source: Source) -> IndexResult:
        """Index every file of a source in fixed-size concurrent batches."""
        result = IndexResult()
        try:
            files = self.collect_files(source)
        except OSError as e:
            result.errors.append(f"{source.path}: {e}")
            return result

        logger.info(f"Found {len(files)} files to index in {source.name}")

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            for i in range(0, len(files), self.concurrency):
                batch = files[i:i + self.concurrency]
                # list() waits for the whole batch before the next one starts
                outcomes = list(pool.map(lambda f: self.index_file(f, source.name), batch))

                for file_path, outcome in zip(batch, outcomes):
                    rel = self.doc_id(file_path)
                    if not outcome.success:
                        result.errors.append(f"{rel}: {outcome.error}")
                        logger.warning(f"Error: {rel} - {outcome.error}")
                    elif outcome.chunks > 0:
                        result.indexed += 1
                        logger.info(f"Indexed: {rel} ({outcome.chunks} chunks)")
                    else:
                        result.skipped += 1

        return result

    def delete_document(self, id_or_path: str | Path) -> bool:
        """Remove a document, or every document under a directory prefix."""
        raw = str(id_or_path)
        if os.path.isabs(raw):
            raw = generate_doc_id(raw, self.project_root)
        normalized = raw.replace("\\", "/")
        if normalized.startswith("./"):
            normalized = normalized[2:]
        normalized = normalized.rstrip("/")
        if not normalized:
            return False

        matches = [
            doc_id for doc_id in self.store.document_ids()
            if doc_id == normalized or doc_id.startswith(normalized + "/")
        ]
        if not matches:
            return False

        removed = False
        for doc_id in matches:
            with self._doc_lock(doc_id):
                chunks = self.store.remove_document_chunks(doc_id)
                had_metadata = self.store.remove_document(doc_id)
            removed = removed or chunks > 0 or had_metadata

        if removed:
            self.store.record_event(IndexEvent(type="delete", path=normalized, at=utc_now()))
            logger.info(f"Removed {len(matches)} document(s) matching {normalized}")
        return removed
