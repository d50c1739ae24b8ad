"""One-time import of the retired JSON index into the SQLite store.

The old layout kept every chunk in ``orama.json`` and document metadata in
``metadata.json`` next to the database. On startup we import whatever is
there, rename each file with a ``.backup`` suffix, and record completion in
the ``meta`` table so later startups skip the step entirely.
"""

import json
import logging
from pathlib import Path
from typing import Any

from ..models import Chunk, Document, IndexEvent
from .sqlite import SearchStore, utc_now

logger = logging.getLogger(__name__)


LEGACY_INDEX = "orama.json"
LEGACY_METADATA = "metadata.json"
BACKUP_SUFFIX = ".backup"
MIGRATION_KEY = "legacy_json_migration"
MIGRATION_DONE = "done"
BATCH_SIZE = 100


def legacy_paths(index_dir: str | Path) -> tuple[Path, Path]:
    base = Path(index_dir)
    return base / LEGACY_INDEX, base / LEGACY_METADATA


def _pending(path: Path) -> bool:
    """A legacy file still needs importing unless its backup already exists."""
    backup = path.with_name(path.name + BACKUP_SUFFIX)
    return path.exists() and not backup.exists()


def needs_migration(store: SearchStore, index_dir: str | Path) -> bool:
    if store.get_meta(MIGRATION_KEY) == MIGRATION_DONE:
        return False
    return any(_pending(p) for p in legacy_paths(index_dir))


def parse_legacy_chunks(data: Any) -> list[Chunk]:
    """Pull chunk records out of the legacy index, whichever layout it used."""
    if not isinstance(data, dict):
        return []

    section = data.get("data") if isinstance(data.get("data"), dict) else {}
    index = section.get("index") if isinstance(section.get("index"), dict) else {}

    docs = None
    for candidate in (section.get("docs"), data.get("docs"), index.get("docs")):
        if candidate:
            docs = candidate
            break

    # Some versions nest the records one level further down
    if isinstance(docs, dict) and isinstance(docs.get("docs"), dict):
        docs = docs["docs"]

    if isinstance(docs, dict):
        records = list(docs.values())
    elif isinstance(docs, list):
        records = docs
    else:
        logger.warning("Could not find documents in legacy index structure")
        return []

    chunks = []
    for record in records:
        if not isinstance(record, dict):
            continue
        if not (record.get("chunk_id") and record.get("doc_id") and record.get("text")):
            continue
        embedding = record.get("embedding")
        line_start = max(int(record.get("line_start") or 1), 1)
        line_end = max(int(record.get("line_end") or line_start), line_start)
        chunks.append(Chunk(
            chunk_id=str(record["chunk_id"]),
            doc_id=str(record["doc_id"]),
            text=str(record["text"]),
            snippet=str(record.get("snippet") or ""),
            line_start=line_start,
            line_end=line_end,
            page_start=int(record["page_start"]) if record.get("page_start") else None,
            page_end=int(record["page_end"]) if record.get("page_end") else None,
            embedding=[float(x) for x in embedding] if isinstance(embedding, list) and embedding else None,
        ))
    return chunks


def parse_legacy_metadata(data: Any) -> tuple[list[Document], IndexEvent | None]:
    if not isinstance(data, dict):
        return [], None

    documents = []
    raw_docs = data.get("documents") or {}
    for d in raw_docs.values() if isinstance(raw_docs, dict) else raw_docs:
        if not isinstance(d, dict) or not d.get("doc_id"):
            continue
        documents.append(Document(
            doc_id=str(d["doc_id"]),
            source_name=str(d.get("source_name") or "default"),
            format=str(d.get("format") or "md"),
            content_hash=str(d.get("content_hash") or ""),
            updated_at=str(d.get("updated_at") or utc_now()),
            size_bytes=int(d.get("size_bytes") or 0),
        ))

    last_event = None
    e = data.get("last_event")
    if isinstance(e, dict) and e.get("type") and e.get("path"):
        last_event = IndexEvent(type=str(e["type"]), path=str(e["path"]), at=str(e.get("at") or utc_now()))

    return documents, last_event


def _backup(path: Path) -> None:
    path.rename(path.with_name(path.name + BACKUP_SUFFIX))
    logger.info(f"Backed up {path.name} to {path.name}{BACKUP_SUFFIX}")


def _migrate_index(store: SearchStore, path: Path, dimensions: int | None) -> tuple[int, set[str]]:
    """Import chunks; returns the count and the doc ids that lost chunks."""
    chunks = parse_legacy_chunks(json.loads(path.read_text(encoding="utf-8")))

    def usable(c: Chunk) -> bool:
        return bool(c.embedding) and (dimensions is None or len(c.embedding) == dimensions)

    dropped = {c.doc_id for c in chunks if not usable(c)}
    kept = [c for c in chunks if usable(c)]
    if dropped:
        logger.warning(f"Skipping chunks without usable embeddings for {len(dropped)} document(s)")

    migrated = 0
    for i in range(0, len(kept), BATCH_SIZE):
        batch = kept[i:i + BATCH_SIZE]
        try:
            migrated += store.insert_chunks(batch)
        except Exception as e:
            logger.warning(f"Failed to migrate chunk batch {i // BATCH_SIZE}: {e}")
            dropped.update(c.doc_id for c in batch)
    logger.info(f"Migrated {migrated} chunks from legacy index")
    return migrated, dropped


def _migrate_metadata(store: SearchStore, path: Path, skip_doc_ids: set[str]) -> int:
    documents, last_event = parse_legacy_metadata(json.loads(path.read_text(encoding="utf-8")))

    migrated = 0
    for doc in documents:
        # Without a stored hash these documents get re-indexed on the next run
        if doc.doc_id in skip_doc_ids:
            continue
        store.set_document(doc)
        migrated += 1
    if last_event:
        store.record_event(last_event)
    logger.info(f"Migrated {migrated} document metadata entries")
    return migrated


def run_migrations(store: SearchStore, index_dir: str | Path, dimensions: int | None = None) -> bool:
    """Import legacy JSON files if present. Safe to call on every startup.

    Failures are logged and leave the offending file in place so a later
    startup can retry; data already imported is never touched again.
    Returns True when an import ran.
    """
    if store.get_meta(MIGRATION_KEY) == MIGRATION_DONE:
        return False

    index_path, metadata_path = legacy_paths(index_dir)
    if not (_pending(index_path) or _pending(metadata_path)):
        store.set_meta(MIGRATION_KEY, MIGRATION_DONE)
        return False

    logger.info("Migrating legacy JSON index to SQLite...")
    complete = True
    dropped: set[str] = set()

    if _pending(index_path):
        try:
            _, dropped = _migrate_index(store, index_path, dimensions)
            _backup(index_path)
        except Exception as e:
            complete = False
            logger.warning(f"Failed to migrate legacy index: {e}")

    if _pending(metadata_path):
        try:
            _migrate_metadata(store, metadata_path, dropped)
            _backup(metadata_path)
        except Exception as e:
            complete = False
            logger.warning(f"Failed to migrate legacy metadata: {e}")

    if complete:
        store.set_meta(MIGRATION_KEY, MIGRATION_DONE)
        logger.info("Migration complete")
    return True
