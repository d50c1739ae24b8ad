"""DOCX file parser."""

import io
from pathlib import Path

from ...models import ParsedDocument


class DocxParser:
    """Parse DOCX files using python-docx."""

    def parse(self, content: bytes, file_path: Path) -> ParsedDocument:
        from docx import Document

        doc = Document(io.BytesIO(content))
        paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
        text = "\n\n".join(paragraphs)
        return ParsedDocument(content=text, lines=len(text.split("\n")))
