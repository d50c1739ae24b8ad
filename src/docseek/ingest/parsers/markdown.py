"""Markdown file parser."""

from pathlib import Path

from ...models import ParsedDocument


class MarkdownParser:
    """Decode markdown as-is; structure is handled by the chunker.

    Front matter is kept so chunk line numbers match the file on disk.
    """

    def parse(self, content: bytes, file_path: Path) -> ParsedDocument:
        text = content.decode("utf-8", errors="replace")
        return ParsedDocument(content=text, lines=len(text.split("\n")))
