"""
Export generated HTML documents to PDF or DOCX.

Only <h1> and <p> blocks are rendered, with bold/italic runs kept. Exported
files go to the completed-documents bucket, one current file per
project/document pair.
"""

import io
import time
import logging
from typing import Dict, Any
from xml.sax.saxutils import escape

from docx import Document
from docx.shared import Pt, Inches
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph

from src.extractors.html_text import Block, parse_blocks, sanitize_text

logger = logging.getLogger(__name__)

BUCKET = "completed-documents"
FONT_NAME = "Times New Roman"
FONT_SIZE = 11
LINE_HEIGHT = 18
SUPPORTED_FORMATS = ("pdf", "docx")


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

BODY_STYLE = ParagraphStyle(
    "Body",
    fontName="Times-Roman",
    fontSize=FONT_SIZE,
    leading=LINE_HEIGHT,
    spaceAfter=LINE_HEIGHT,
)

HEADING_STYLE = ParagraphStyle(
    "Heading",
    parent=BODY_STYLE,
    fontName="Times-Bold",
    spaceAfter=LINE_HEIGHT * 1.5,
)


def _pdf_markup(block: Block) -> str:
    parts = []
    for run in block.runs:
        text = escape(sanitize_text(run.text))
        if run.bold:
            text = f"<b>{text}</b>"
        if run.italic:
            text = f"<i>{text}</i>"
        parts.append(text)
    return "".join(parts)


def to_pdf(html: str) -> bytes:
    """Render h1/p HTML as a Letter-size Times PDF with 1-inch margins."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=inch,
        rightMargin=inch,
        topMargin=inch,
        bottomMargin=inch,
    )

    story = []
    for block in parse_blocks(html):
        style = HEADING_STYLE if block.kind == "h1" else BODY_STYLE
        story.append(Paragraph(_pdf_markup(block), style))

    # reportlab refuses to build an empty story
    if not story:
        story.append(Paragraph("", BODY_STYLE))

    doc.build(story)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

def to_docx(html: str) -> bytes:
    """Render h1/p HTML as a Times New Roman 11pt DOCX with 1-inch margins."""
    document = Document()

    for section in document.sections:
        section.page_width = Inches(8.5)
        section.page_height = Inches(11)
        section.top_margin = Inches(1)
        section.bottom_margin = Inches(1)
        section.left_margin = Inches(1)
        section.right_margin = Inches(1)

    normal = document.styles["Normal"]
    normal.font.name = FONT_NAME
    normal.font.size = Pt(FONT_SIZE)

    for block in parse_blocks(html):
        paragraph = document.add_paragraph()
        paragraph.paragraph_format.line_spacing = Pt(LINE_HEIGHT)
        paragraph.paragraph_format.space_after = Pt(24 if block.kind == "h1" else LINE_HEIGHT)

        for run in block.runs:
            text_run = paragraph.add_run(sanitize_text(run.text))
            text_run.font.name = FONT_NAME
            text_run.font.size = Pt(FONT_SIZE)
            text_run.bold = run.bold or block.kind == "h1"
            text_run.italic = run.italic

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def render(html: str, file_format: str) -> bytes:
    return to_pdf(html) if file_format == "pdf" else to_docx(html)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

def export_document(
    document_id: str,
    project_id: str,
    file_format: str,
    content: str,
    store,
    files,
) -> Dict[str, Any]:
    """
    Render, store and record an exported document.

    Earlier exports for the same project/document are removed first.

    Returns:
        {"fileUrl": public URL of the new file}
    """
    file_format = file_format if file_format in SUPPORTED_FORMATS else "docx"
    data = render(content or "", file_format)

    directory = f"{project_id}/{document_id}"
    try:
        existing = files.list(BUCKET, directory)
        if existing:
            logger.info(f"Removing {len(existing)} earlier exports under {directory}")
            files.remove(BUCKET, existing)
    except Exception as e:
        logger.error(f"Error clearing earlier exports under {directory}: {e}")

    file_path = f"{directory}/document-{int(time.time() * 1000)}.{file_format}"
    files.upload(BUCKET, file_path, data)
    public_url = files.public_url(BUCKET, file_path)
    logger.info(f"Exported {file_format} to {public_url}")

    store.upsert("completed_documents", {
        "document_id": document_id,
        "project_id": project_id,
        "file_url": public_url,
        "file_type": file_format,
        "file_path": file_path,
    }, conflict=["document_id", "project_id"])

    return {"fileUrl": public_url}
