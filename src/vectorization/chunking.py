"""
Token-bounded text chunking.

Sentence packing for documents estimates tokens as len(text) / 4.
Transcriptions are chunked against real cl100k_base token counts from
tiktoken.
"""

import re
import logging
from functools import lru_cache
from typing import Callable, List, Dict, Any, Optional

import tiktoken

logger = logging.getLogger(__name__)

SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
PARAGRAPH_RE = re.compile(r"\n\s*\n")

TOKENIZER_ENCODING = "cl100k_base"


def estimate_tokens(text: str) -> float:
    return len(text) / 4


@lru_cache(maxsize=1)
def _encoding():
    return tiktoken.get_encoding(TOKENIZER_ENCODING)


def count_tokens(text: str) -> int:
    """Exact token count for OpenAI models."""
    return len(_encoding().encode(text, disallowed_special=()))


def _sentences(text: str) -> List[str]:
    return SENTENCE_RE.findall(text) or [text]


def split_into_chunks(text: str, max_tokens: int = 1000) -> List[str]:
    """
    Greedily pack sentences into chunks of at most max_tokens.

    A single sentence longer than the budget becomes its own chunk.
    """
    chunks: List[str] = []
    current = ""

    for sentence in _sentences(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if current and estimate_tokens(current + " " + sentence) > max_tokens:
            chunks.append(current)
            current = ""
        current = f"{current} {sentence}" if current else sentence

    if current.strip():
        chunks.append(current.strip())

    return chunks


def _split_oversized(text: str, max_tokens: int, count: Callable[[str], float] = estimate_tokens) -> List[str]:
    """Cut text into pieces that fit by halving the prefix until it does."""
    pieces = []
    remaining = text
    while remaining:
        size = len(remaining)
        piece = remaining
        while count(piece) > max_tokens and size > 1:
            size //= 2
            piece = remaining[:size]
        pieces.append(piece)
        remaining = remaining[len(piece):]
    return [p for p in pieces if p.strip()]


def chunk_by_tokens(
    text: str,
    max_tokens: int = 2500,
    count: Optional[Callable[[str], float]] = None,
) -> List[str]:
    """
    Paragraph-first chunking used for transcriptions.

    Paragraphs are packed together (joined by a blank line); an oversized
    paragraph falls back to sentence packing (joined by a space), and an
    oversized sentence is cut into halves until each piece fits. Budgets are
    checked against the joined text, so separators count too.

    Tokens are counted with tiktoken unless another counter is given.
    """
    count = count or count_tokens
    chunks: List[str] = []
    current = ""

    def flush():
        nonlocal current
        if current.strip():
            chunks.append(current)
        current = ""

    def add(piece: str, separator: str):
        nonlocal current
        if current and count(current + separator + piece) > max_tokens:
            flush()
        current = current + separator + piece if current else piece

    for paragraph in PARAGRAPH_RE.split(text):
        if not paragraph.strip():
            continue

        paragraph_tokens = count(paragraph)
        if paragraph_tokens <= max_tokens:
            add(paragraph, "\n\n")
            continue

        logger.info(f"Large paragraph found ({paragraph_tokens:.0f} tokens). Splitting by sentences.")
        for sentence in _sentences(paragraph):
            if count(sentence) > max_tokens:
                flush()
                chunks.extend(_split_oversized(sentence, max_tokens, count))
                continue
            add(sentence, " ")

    flush()
    logger.info(f"Created {len(chunks)} chunks")
    return chunks


def pages_for_span(start: int, end: int, page_info: List[Dict[str, int]]) -> List[int]:
    """Page numbers whose [startIndex, endIndex] range overlaps [start, end]."""
    pages = set()
    for page in page_info:
        page_start = page.get("startIndex", 0)
        page_end = page.get("endIndex", 0)
        starts_in = page_start <= start <= page_end
        ends_in = page_start <= end <= page_end
        contains = start <= page_start and end >= page_end
        if starts_in or ends_in or contains:
            pages.add(int(page.get("pageNumber", 1)))
    return sorted(pages)


def semantic_chunks(
    text: str,
    page_info: Optional[List[Dict[str, int]]] = None,
    max_tokens: int = 1000,
) -> List[Dict[str, Any]]:
    """
    Sentence packing that tracks character offsets and page numbers.

    Returns:
        [{"text", "page_numbers", "start_index", "end_index"}, ...]
    """
    page_info = page_info or []
    chunks: List[Dict[str, Any]] = []
    current = ""
    chunk_start = 0
    position = 0

    def emit():
        end = chunk_start + len(current)
        chunks.append({
            "text": current.strip(),
            "page_numbers": pages_for_span(chunk_start, end, page_info) or [1],
            "start_index": chunk_start,
            "end_index": end,
        })

    for sentence in _sentences(text):
        trimmed = sentence.strip()
        if not trimmed:
            continue
        sentence_start = text.find(trimmed, position)
        if sentence_start == -1:
            continue
        position = sentence_start + len(trimmed)

        if current and estimate_tokens(current + " " + trimmed) > max_tokens:
            emit()
            current = trimmed
            chunk_start = sentence_start
        elif current:
            current += " " + trimmed
        else:
            current = trimmed
            chunk_start = sentence_start

    if current.strip():
        emit()

    return chunks
