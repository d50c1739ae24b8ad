"""Plain text file parser."""

from pathlib import Path

from ...models import ParsedDocument


class TextParser:
    """Parse plain text files."""

    def parse(self, content: bytes, file_path: Path) -> ParsedDocument:
        text = content.decode("utf-8", errors="replace")
        # Normalise Windows line endings so line ranges stay stable
        text = text.replace("\r\n", "\n")
        return ParsedDocument(content=text, lines=len(text.split("\n")))
