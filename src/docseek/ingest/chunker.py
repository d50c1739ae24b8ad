"""Document chunking: markdown-structure sections with a fixed-size fallback."""

import hashlib
import re
from dataclasses import dataclass
from typing import Any

from ..models import Chunk


DEFAULT_CHUNK_SIZE = 900
DEFAULT_CHUNK_OVERLAP = 150
MAX_SNIPPET_LENGTH = 500

# Minimum position (as a fraction of the cap) for a snippet cut
SENTENCE_BOUNDARY_RATIO = 0.6
WORD_BOUNDARY_RATIO = 0.8

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")

DEFAULT_CHUNKING = {
    "strategy": "markdown-structure",
    "fallback": {"chunk_size": DEFAULT_CHUNK_SIZE, "overlap": DEFAULT_CHUNK_OVERLAP},
}


@dataclass
class Section:
    heading: str | None
    level: int
    start_line: int
    end_line: int
    content: str


def content_hash(text: str) -> str:
    """First 8 hex chars of the SHA-256 of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:8]


def make_chunk_id(doc_id: str, line_start: int, line_end: int, digest: str) -> str:
    return f"{doc_id}:{line_start}-{line_end}:{digest}"


def create_snippet(text: str, max_length: int = MAX_SNIPPET_LENGTH) -> str:
    """Truncate text for previews, preferring sentence then word boundaries."""
    if len(text) <= max_length:
        return text

    truncated = text[:max_length]
    last_sentence_end = max(
        truncated.rfind(". "),
        truncated.rfind(".\n"),
        truncated.rfind("? "),
        truncated.rfind("! "),
    )
    if last_sentence_end > max_length * SENTENCE_BOUNDARY_RATIO:
        return truncated[: last_sentence_end + 1].strip()

    last_space = truncated.rfind(" ")
    if last_space > max_length * WORD_BOUNDARY_RATIO:
        return f"{truncated[:last_space].strip()}..."

    return f"{truncated.strip()}..."


def is_fence(line: str) -> bool:
    return line.strip().startswith("```")


def extract_sections(content: str) -> list[Section]:
    """Split markdown into heading-delimited sections.

    Lines inside fenced code blocks never start a section.
    """
    lines = content.split("\n")
    sections: list[Section] = []
    current: Section | None = None
    in_fence = False

    for i, line in enumerate(lines):
        line_num = i + 1
        if is_fence(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        match = HEADING_RE.match(line)
        if not match:
            continue

        if current is not None:
            current.end_line = line_num - 1
            current.content = "\n".join(lines[current.start_line - 1:line_num - 1])
            sections.append(current)
        elif line_num > 1:
            # Preamble before the first heading
            sections.append(Section(None, 0, 1, line_num - 1, "\n".join(lines[:line_num - 1])))

        current = Section(match.group(2).strip(), len(match.group(1)), line_num, line_num, "")

    if current is not None:
        current.end_line = len(lines)
        current.content = "\n".join(lines[current.start_line - 1:])
        sections.append(current)
    else:
        sections.append(Section(None, 0, 1, len(lines), content))

    return sections


def chunk_document(
    content: str,
    doc_id: str,
    fmt: str,
    config: dict[str, Any] | None = None,
) -> list[Chunk]:
    """Chunk a document; markdown uses its structure, everything else fixed-size.

    Chunk ids depend only on doc_id, line range and text, so unchanged
    input always yields the same ids in the same order.
    """
    cfg = config or DEFAULT_CHUNKING
    fallback = cfg.get("fallback") or {}
    chunk_size = fallback.get("chunk_size") or DEFAULT_CHUNK_SIZE
    overlap = fallback.get("overlap") or DEFAULT_CHUNK_OVERLAP

    if fmt == "md" and cfg.get("strategy", "markdown-structure") == "markdown-structure":
        return chunk_markdown(content, doc_id, chunk_size)
    return chunk_fixed(content, doc_id, chunk_size, overlap)


def chunk_markdown(content: str, doc_id: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[Chunk]:
    chunks: list[Chunk] = []
    for section in extract_sections(content):
        text = section.content.strip()
        if not text:
            continue
        if len(text) > chunk_size * 2:
            chunks.extend(_split_section(section, doc_id, chunk_size))
        else:
            chunks.append(_make_chunk(doc_id, text, section.start_line, section.end_line))
    return chunks


def _split_section(section: Section, doc_id: str, chunk_size: int) -> list[Chunk]:
    """Pack a large section's paragraphs into chunks of roughly ``chunk_size``."""
    lines = section.content.split("\n")
    # The heading line comes back as the first chunk's prefix
    first = 1 if section.heading else 0
    paragraphs: list[tuple[str, int, int]] = []
    buf: list[str] = []
    para_start = section.start_line

    for i, line in enumerate(lines[first:], start=first):
        line_num = section.start_line + i
        if line.strip():
            if not buf:
                para_start = line_num
            buf.append(line)
        elif buf:
            paragraphs.append(("\n".join(buf).strip(), para_start, line_num - 1))
            buf = []
    if buf:
        paragraphs.append(("\n".join(buf).strip(), para_start, para_start + len(buf) - 1))

    if not paragraphs:
        return []

    chunks: list[Chunk] = []
    prefix = f"# {section.heading}\n\n" if section.heading else ""
    current = prefix
    chunk_start = section.start_line if section.heading else paragraphs[0][1]
    chunk_end = chunk_start

    for text, start, end in paragraphs:
        if current != prefix and len(current) + len(text) > chunk_size:
            chunks.append(_make_chunk(doc_id, current.strip(), chunk_start, chunk_end))
            current = f"{text}\n\n"
            chunk_start = start
        else:
            current += f"{text}\n\n"
        chunk_end = end

    if current.strip():
        chunks.append(_make_chunk(doc_id, current.strip(), chunk_start, chunk_end))
    return chunks


def chunk_fixed(
    content: str,
    doc_id: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Chunk]:
    """Fixed-size chunking over lines with a trailing-line overlap."""
    lines = content.split("\n")
    chunks: list[Chunk] = []
    current: list[str] = []
    char_count = 0
    chunk_start = 1
    chunk_end = 1

    for i, line in enumerate(lines):
        current.append(line)
        char_count += len(line) + 1
        chunk_end = i + 1

        if char_count < chunk_size:
            continue

        text = "\n".join(current).strip()
        if text:
            chunks.append(_make_chunk(doc_id, text, chunk_start, chunk_end))

        # Carry trailing lines into the next chunk
        carried: list[str] = []
        carried_chars = 0
        next_start = i + 2
        for j in range(i, -1, -1):
            size = len(lines[j]) + 1
            if carried_chars + size > overlap:
                break
            carried.insert(0, lines[j])
            carried_chars += size
            next_start = j + 1
        current = carried
        char_count = carried_chars
        chunk_start = next_start

    text = "\n".join(current).strip()
    # A tail no longer than the overlap is already covered by the previous chunk
    if text and (not chunks or len(text) > overlap):
        chunks.append(_make_chunk(doc_id, text, min(chunk_start, chunk_end), chunk_end))
    return chunks


def _make_chunk(doc_id: str, text: str, line_start: int, line_end: int) -> Chunk:
    return Chunk(
        chunk_id=make_chunk_id(doc_id, line_start, line_end, content_hash(text)),
        doc_id=doc_id,
        text=text,
        snippet=create_snippet(text),
        line_start=line_start,
        line_end=line_end,
    )
