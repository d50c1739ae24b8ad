"""Document parsers for the supported file formats."""

from pathlib import Path

from ...models import ParsedDocument
from .docx import DocxParser
from .html import HtmlParser
from .markdown import MarkdownParser
from .pdf import PdfParser
from .text import TextParser

PARSERS = {
    "md": MarkdownParser,
    "txt": TextParser,
    "html": HtmlParser,
    "pdf": PdfParser,
    "docx": DocxParser,
}

EXTENSION_MAP = {
    ".md": "md",
    ".markdown": "md",
    ".txt": "txt",
    ".text": "txt",
    ".html": "html",
    ".htm": "html",
    ".pdf": "pdf",
    ".docx": "docx",
}


def get_format(file_path: str | Path) -> str | None:
    """Map a file extension to a document format, or None if unsupported."""
    return EXTENSION_MAP.get(Path(file_path).suffix.lower())


def is_supported(file_path: str | Path) -> bool:
    return get_format(file_path) is not None


def parse_document(content: bytes, file_path: str | Path, fmt: str | None = None) -> ParsedDocument:
    """Extract text from raw bytes using the parser for ``fmt`` (or the file's extension)."""
    fmt = fmt or get_format(file_path)
    parser_cls = PARSERS.get(fmt) if fmt else None
    if parser_cls is None:
        raise ValueError(f"Unsupported format: {file_path}")
    return parser_cls().parse(content, Path(file_path))


__all__ = [
    "PARSERS",
    "EXTENSION_MAP",
    "get_format",
    "is_supported",
    "parse_document",
    "MarkdownParser",
    "TextParser",
    "HtmlParser",
    "PdfParser",
    "DocxParser",
]
