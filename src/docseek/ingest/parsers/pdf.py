"""PDF file parser."""

import io
import re
from pathlib import Path

from ...models import ParsedDocument

# Headings, bullets and numbered items keep their own line
STRUCTURAL_RE = re.compile(r"^(?:#{1,6}\s|[-*•]\s|\d+[.)]\s)")


class PdfParser:
    """Parse PDF files using pypdf; page texts are joined by blank lines."""

    def parse(self, content: bytes, file_path: Path) -> ParsedDocument:
        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(content))
        texts = [page.extract_text() or "" for page in reader.pages]
        text = "\n\n".join(self._clean_page(t) for t in texts if t.strip())
        return ParsedDocument(content=text, lines=len(text.split("\n")), pages=len(reader.pages))

    @staticmethod
    def _clean_page(text: str) -> str:
        """Join hard-wrapped lines back into paragraphs."""
        out: list[str] = []
        wrapped: list[str] = []

        def flush():
            if wrapped:
                out.append(" ".join(wrapped))
                wrapped.clear()

        for raw in text.split("\n"):
            line = raw.strip()
            if not line:
                flush()
            elif STRUCTURAL_RE.match(line):
                flush()
                out.append(line)
            else:
                wrapped.append(line)
        flush()
        return "\n".join(out)
