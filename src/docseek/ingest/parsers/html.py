"""HTML file parser."""

from pathlib import Path

from ...models import ParsedDocument


class HtmlParser:
    """Parse HTML files using BeautifulSoup."""

    def parse(self, content: bytes, file_path: Path) -> ParsedDocument:
        from bs4 import BeautifulSoup

        soup = BeautifulSoup(content.decode("utf-8", errors="replace"), "lxml")

        # Remove scripts and styles
        for tag in soup(["script", "style", "nav", "noscript"]):
            tag.decompose()

        text = soup.get_text(separator="\n", strip=True)
        return ParsedDocument(content=text, lines=len(text.split("\n")))
