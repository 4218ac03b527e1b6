import io

import pytest
from docx import Document
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from src.vectorization.text_extraction import (
    DOCX_TYPE,
    extract_pdf_pages,
    extract_text,
    extract_rtf_text,
    describe_pages,
)


def make_pdf(pages):
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter)
    for text in pages:
        pdf.drawString(72, 720, text)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def make_docx(paragraphs):
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_pdf_pages_have_offsets_into_joined_text():
    text, pages = extract_pdf_pages(make_pdf(["First page text", "Second page text"]))

    assert [p["pageNumber"] for p in pages] == [1, 2]
    assert pages[0]["startIndex"] == 0
    assert pages[1]["startIndex"] == pages[0]["endIndex"] + 2
    assert text[pages[0]["startIndex"]:pages[0]["endIndex"]] == "First page text"
    assert text[pages[1]["startIndex"]:pages[1]["endIndex"]] == "Second page text"
    assert "\n\n" in text


def test_extract_text_pdf():
    assert "Hello PDF" in extract_text(make_pdf(["Hello PDF"]), "application/pdf")


def test_extract_text_docx_skips_blank_paragraphs():
    data = make_docx(["Aims", "", "Methods"])
    assert extract_text(data, DOCX_TYPE) == "Aims\n\nMethods"


def test_extract_text_plain_with_charset_parameter():
    assert extract_text("héllo".encode("utf-8"), "text/plain; charset=utf-8") == "héllo"


def test_extract_rtf_text_strips_control_words():
    rtf = rb"{\rtf1\ansi{\*\generator Writer;}\pard Hello world.\par Second line.}"
    text = extract_rtf_text(rtf)

    assert "Hello world." in text
    assert "Second line." in text
    assert "\\" not in text
    assert "Writer" not in text


def test_extract_text_unsupported_type():
    with pytest.raises(ValueError, match="Unsupported file type"):
        extract_text(b"GIF89a", "image/gif")


def test_extract_text_empty_result():
    with pytest.raises(ValueError, match="No text content extracted"):
        extract_text(b"   ", "text/plain")


def test_describe_pages():
    pages = [{"pageNumber": 1, "startIndex": 0, "endIndex": 10}]
    assert describe_pages(pages) == "Page 1: 0-10"
