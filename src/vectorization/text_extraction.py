"""
Text extraction for uploaded research documents.

Supports PDF (pypdf), DOCX (python-docx), RTF and plain text.
"""

import io
import re
import logging
from typing import List, Dict, Any, Tuple

from pypdf import PdfReader
from docx import Document

logger = logging.getLogger(__name__)


PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_TYPE = "text/plain"
RTF_TYPES = {"application/rtf", "text/rtf"}

PAGE_SEPARATOR = "\n\n"


def extract_pdf_pages(data: bytes) -> Tuple[str, List[Dict[str, int]]]:
    """
    Extract PDF text with per-page character offsets.

    Pages are joined with a blank line; each page entry records where its
    text starts and ends in the joined string.

    Returns:
        (text, [{"pageNumber": 1, "startIndex": 0, "endIndex": 1234}, ...])
    """
    reader = PdfReader(io.BytesIO(data))
    parts = []
    pages = []
    offset = 0

    for number, page in enumerate(reader.pages, start=1):
        page_text = (page.extract_text() or "").strip()
        if parts:
            offset += len(PAGE_SEPARATOR)
        pages.append({
            "pageNumber": number,
            "startIndex": offset,
            "endIndex": offset + len(page_text),
        })
        parts.append(page_text)
        offset += len(page_text)

    text = PAGE_SEPARATOR.join(parts)
    logger.info(f"PDF parsed with {len(pages)} pages, {len(text)} characters")
    return text, pages


def extract_pdf_text(data: bytes) -> str:
    text, _ = extract_pdf_pages(data)
    return text


def extract_docx_text(data: bytes) -> str:
    document = Document(io.BytesIO(data))
    paragraphs = [p.text for p in document.paragraphs if p.text.strip()]
    return "\n\n".join(paragraphs)


_RTF_GROUP_RE = re.compile(r"\{\\\*[^{}]*\}")
_RTF_HEX_RE = re.compile(r"\\'([0-9a-fA-F]{2})")
_RTF_PAR_RE = re.compile(r"\\(par|line)\b ?")
_RTF_CONTROL_RE = re.compile(r"\\[a-zA-Z]+-?\d* ?")


def extract_rtf_text(data: bytes) -> str:
    """Strip RTF control words and groups, keeping paragraph breaks."""
    text = data.decode("utf-8", errors="ignore")
    text = _RTF_GROUP_RE.sub("", text)
    text = _RTF_HEX_RE.sub(lambda m: bytes.fromhex(m.group(1)).decode("latin-1"), text)
    text = _RTF_PAR_RE.sub("\n", text)
    text = _RTF_CONTROL_RE.sub("", text)
    text = text.replace("{", "").replace("}", "")
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def extract_plain_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


_EXTRACTORS = {
    PDF_TYPE: extract_pdf_text,
    DOCX_TYPE: extract_docx_text,
    TEXT_TYPE: extract_plain_text,
    **{rtf: extract_rtf_text for rtf in RTF_TYPES},
}


def extract_text(data: bytes, file_type: str) -> str:
    """
    Extract text from file bytes by MIME type.

    Raises:
        ValueError: Unsupported type or no text extracted
    """
    extractor = _EXTRACTORS.get((file_type or "").split(";")[0].strip().lower())
    if extractor is None:
        raise ValueError(f"Unsupported file type: {file_type}")

    try:
        text = extractor(data)
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Failed to extract text ({file_type}): {e}")
        raise ValueError(f"Failed to extract text: {e}") from e

    if not text or not text.strip():
        raise ValueError(f"No text content extracted from {file_type} file")

    logger.info(f"Extracted {len(text)} characters from {file_type} file")
    return text


def describe_pages(pages: List[Dict[str, Any]]) -> str:
    """Short log line for page offsets."""
    return "; ".join(f"Page {p['pageNumber']}: {p['startIndex']}-{p['endIndex']}" for p in pages)
