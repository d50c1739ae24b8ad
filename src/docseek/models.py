"""Data models used throughout docseek."""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class Chunk:
    """A retrievable unit of document text with line/page provenance."""
    chunk_id: str
    doc_id: str
    text: str
    snippet: str
    line_start: int
    line_end: int
    page_start: int | None = None
    page_end: int | None = None
    embedding: list[float] | None = None


@dataclass
class Document:
    """One indexed source file."""
    doc_id: str
    source_name: str
    format: str
    content_hash: str
    updated_at: str
    size_bytes: int


@dataclass
class IndexEvent:
    type: str  # add, modify, delete
    path: str
    at: str


@dataclass
class Source:
    """A configured root to index."""
    name: str
    path: str
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    watch: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        return cls(
            name=str(data.get("name") or data.get("path") or "default"),
            path=str(data.get("path", ".")),
            include=list(data.get("include") or []),
            exclude=list(data.get("exclude") or []),
            watch=bool(data.get("watch", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ParsedDocument:
    """Parser output: extracted text plus optional line/page counts."""
    content: str
    lines: int | None = None
    pages: int | None = None


@dataclass
class FileResult:
    success: bool
    chunks: int = 0
    error: str | None = None


@dataclass
class IndexResult:
    indexed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SearchResult:
    chunk_id: str
    path: str
    line_start: int
    line_end: int
    page_start: int | None
    page_end: int | None
    score: float
    snippet: str


@dataclass
class SearchResponse:
    project_id: str
    query: str
    confidence: float
    results: list[SearchResult]
    next_cursor: str | None
    pii_redacted: bool
    timing_ms: dict[str, float]
    index_state: str = "ready"
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        # Downstream consumers expect the key only when reranking ran
        if data["timing_ms"].get("reranking") is None:
            data["timing_ms"].pop("reranking", None)
        return data


@dataclass
class DuplicateGroup:
    """Chunks whose embeddings are near-identical; ``similarity`` is the lowest pair score."""
    chunks: list[SearchResult]
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IndexStatus:
    project_id: str
    documents: int
    chunks: int
    last_event: IndexEvent | None
    index_state: str = "ready"
    queued_files: int = 0
    warnings: list[str] = field(default_factory=list)
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
