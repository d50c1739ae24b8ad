"""Tests for document parsers."""

import io
from pathlib import Path

import pytest

from docseek.ingest.parsers import get_format, is_supported, parse_document


def test_extension_map():
    assert get_format("notes/a.md") == "md"
    assert get_format("README.markdown") == "md"
    assert get_format("a.TXT") == "txt"
    assert get_format("page.htm") == "html"
    assert get_format("paper.pdf") == "pdf"
    assert get_format("report.docx") == "docx"
    assert get_format("data.json") is None
    assert not is_supported("image.png")


def test_markdown_kept_verbatim():
    raw = "---\ntitle: x\n---\n# Hi\n\nbody\n"
    parsed = parse_document(raw.encode(), Path("a.md"))
    assert parsed.content == raw
    assert parsed.lines == 7


def test_text_normalizes_crlf():
    parsed = parse_document(b"one\r\ntwo\r\nthree", Path("a.txt"))
    assert parsed.content == "one\ntwo\nthree"
    assert parsed.lines == 3


def test_html_strips_scripts_and_nav():
    html = (
        b"<html><head><style>p{}</style><script>alert(1)</script></head>"
        b"<body><nav>Menu</nav><h1>Title</h1><p>Hello world</p></body></html>"
    )
    parsed = parse_document(html, Path("page.html"))
    assert "Title" in parsed.content
    assert "Hello world" in parsed.content
    assert "alert" not in parsed.content
    assert "Menu" not in parsed.content


def test_docx_paragraphs():
    from docx import Document

    doc = Document()
    doc.add_paragraph("First paragraph")
    doc.add_paragraph("")
    doc.add_paragraph("Second paragraph")
    buf = io.BytesIO()
    doc.save(buf)

    parsed = parse_document(buf.getvalue(), Path("r.docx"))
    assert parsed.content == "First paragraph\n\nSecond paragraph"


def test_pdf_reports_pages():
    from pypdf import PdfWriter

    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    writer.add_blank_page(width=200, height=200)
    buf = io.BytesIO()
    writer.write(buf)

    parsed = parse_document(buf.getvalue(), Path("blank.pdf"))
    assert parsed.pages == 2
    assert parsed.content == ""


def test_pdf_clean_page_rejoins_wrapped_lines():
    from docseek.ingest.parsers.pdf import PdfParser

    cleaned = PdfParser._clean_page("This is a\nwrapped line\n\n- item one\n1. numbered")
    assert cleaned.split("\n") == ["This is a wrapped line", "- item one", "1. numbered"]


def test_unsupported_format_raises():
    with pytest.raises(ValueError):
        parse_document(b"{}", Path("data.json"))
