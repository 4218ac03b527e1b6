"""
Required-document checklists per grant family.

The checklists live in templates/*.txt next to this module. A document's
file name picks the checklist; if a vectorised copy of the announcement
with that file name exists, its text is appended for context.
"""

import logging
from functools import lru_cache
from pathlib import Path

from src.vectorization.context import get_document_text

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

DEFAULT_TEMPLATE = (
    "Please inform the user that we did not grab the correct document so "
    "grabbing requirements is not going to be possible."
)

# Checked in order; first substring match wins
TEMPLATE_KEYWORDS = [
    ("research", "research"),
    ("career", "career"),
    ("training", "training"),
    ("fellowship", "fellowship"),
    ("sbir", "sbir"),
    ("multi-project", "multi_project"),
    ("nsf", "nsf"),
]


@lru_cache(maxsize=None)
def load_template(name: str) -> str:
    return (TEMPLATE_DIR / f"{name}.txt").read_text(encoding="utf-8")


def select_template(filename: str) -> str:
    """Checklist text for a document file name (case-insensitive)."""
    if not filename:
        return DEFAULT_TEMPLATE
    lowered = filename.lower()
    for keyword, template in TEMPLATE_KEYWORDS:
        if keyword in lowered:
            return load_template(template)
    return DEFAULT_TEMPLATE


def get_document_content(filename: str, index=None) -> str:
    """
    Checklist for a file name, plus the full vectorised document when available.

    Lookup failures fall back to the checklist alone.
    """
    content = select_template(filename)
    if not filename or index is None:
        return content

    try:
        full_document = get_document_text(index, filename)
    except Exception as e:
        logger.warning(f"Could not load document text for {filename}: {e}")
        return content

    if full_document:
        return f"{content}\n\n Full Document For Context:\n\n{full_document}"
    return content
