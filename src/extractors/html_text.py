"""
HTML helpers: page fetching, text stripping, structure summaries and the
h1/p block parsing used by document export.
"""

import re
import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Dict, Any

import requests
from bs4 import BeautifulSoup, NavigableString, Tag

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F-\x9F]")
_WHITESPACE_RE = re.compile(r"\s{2,}")

BOLD_TAGS = {"b", "strong"}
ITALIC_TAGS = {"i", "em"}


def fetch_html(url: str, timeout: int = 30) -> str:
    """
    GET a page and return its HTML.

    Raises:
        requests.HTTPError: On non-2xx responses
    """
    response = requests.get(url, headers=DEFAULT_HEADERS, timeout=timeout)
    response.raise_for_status()
    return response.text


def strip_html(html: str) -> str:
    """Drop style/script elements and tags, collapsing whitespace."""
    soup = BeautifulSoup(html or "", "lxml")
    for element in soup(["style", "script"]):
        element.decompose()
    text = soup.get_text(separator=" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def fetch_page_text(url: str, timeout: int = 30) -> str:
    return strip_html(fetch_html(url, timeout=timeout))


def html_summary(html: str) -> Dict[str, Any]:
    """
    Summarise the top-level tags of a document fragment.

    Returns:
        {"tagsByType": {tag: [outerHTML, ...]}, "tagCounts": {tag: n}, "totalTags": n}
    """
    soup = BeautifulSoup(html or "", "html.parser")
    tags_by_type: Dict[str, List[str]] = {}
    for element in soup.children:
        if isinstance(element, Tag):
            tags_by_type.setdefault(element.name, []).append(str(element))

    counts = Counter({name: len(items) for name, items in tags_by_type.items()})
    return {
        "tagsByType": tags_by_type,
        "tagCounts": dict(counts),
        "totalTags": sum(counts.values()),
    }


def sanitize_text(text: str) -> str:
    return _CONTROL_CHARS_RE.sub("", text)


@dataclass
class TextRun:
    text: str
    bold: bool = False
    italic: bool = False


@dataclass
class Block:
    kind: str  # "h1" or "p"
    runs: List[TextRun]

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


def _collect_runs(node, bold: bool, italic: bool, runs: List[TextRun]):
    for child in node.children:
        if isinstance(child, NavigableString):
            text = sanitize_text(str(child))
            if not text:
                continue
            last = runs[-1] if runs else None
            if last and last.bold == bold and last.italic == italic:
                last.text += text
            else:
                runs.append(TextRun(text, bold, italic))
        elif isinstance(child, Tag):
            _collect_runs(
                child,
                bold or child.name in BOLD_TAGS,
                italic or child.name in ITALIC_TAGS,
                runs,
            )


def parse_blocks(html: str) -> List[Block]:
    """
    Parse generated document HTML into heading and paragraph blocks.

    Only h1 and p elements become blocks; b/strong and i/em inside them
    become bold and italic runs. Empty blocks are dropped.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    blocks = []
    for element in soup.find_all(["h1", "p"]):
        if element.find_parent(["h1", "p"]):
            continue
        runs: List[TextRun] = []
        _collect_runs(element, element.name == "h1", False, runs)
        if runs:
            runs[0].text = runs[0].text.lstrip()
            runs[-1].text = runs[-1].text.rstrip()
        runs = [run for run in runs if run.text]
        if runs:
            blocks.append(Block(element.name, runs))
    return blocks
