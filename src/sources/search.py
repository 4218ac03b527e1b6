"""Perplexity search for sources that back a claim."""

import time
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)

BATCH_PAUSE_SECONDS = 0.5

SEARCH_SYSTEM_PROMPT = """You are a research assistant finding and analysing sources for a project. For each source you find, give:

1. The direct URL to the source
2. The full title of the page or article
3. The publishing organisation or journal
4. A short explanation of how the source supports the claim
5. A relevant quote or data point from the source
6. A citation in this format:
   Author's Last Name, Initials. "Title of Web Page." Website Name, Publisher (if different from website name), Publication Date, URL.

Example:
URL: https://example.com/article
Title: The Impact of Climate Change on Coastal Communities
Organization: Environmental Research Institute
Explanation: This source provides recent data on sea level rise in coastal areas
Quote: "Sea levels have risen by an average of 3.2mm per year since 1993"
Citation: Smith, J. "The Impact of Climate Change on Coastal Communities." Environmental Research Institute, 2024, https://example.com/article

Notes:
- Only include sources directly relevant to the claim
- Make sure every URL is valid and reachable
- Give complete citations with all available information
- Look hard for authors: article header, byline, author section, metadata, "Written by" or "By" lines
- List every author when there are several; use the organisation name for institutional authors
- Use [n.d.] when there is no date and [n.p.] when there is no publisher
- Answer in plain text, not JSON, with a blank line between sources
- Do not include any source that has already been saved (listed below)"""


def build_search_prompt(question: Dict[str, Any], existing_sources: List[Dict[str, Any]]) -> str:
    prompt = f"""Find reliable sources that support this claim (context included for reference):

Question: {question.get('question')}
Context from grant: "{question.get('context')}"

Focus on high-quality, reputable sources suitable for NSF/NIH grants."""

    if existing_sources:
        listed = "\n\n".join(
            f"URL: {s.get('url')}\nReason: {s.get('reason') or 'No reason provided'}"
            for s in existing_sources
        )
        prompt += f"\nExisting sources to avoid duplicating:\n{listed}"
    return prompt


def find_sources(perplexity, question: Dict[str, Any], existing_sources: Optional[List[Dict[str, Any]]] = None) -> str:
    """
    Raw Perplexity answer listing sources for one question.

    Raises:
        RuntimeError: On API errors or empty content
    """
    return perplexity.chat(
        [
            {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
            {"role": "user", "content": build_search_prompt(question, existing_sources or [])},
        ],
        temperature=0.2,
    )


def search_all_questions(
    perplexity,
    questions: List[Dict[str, Any]],
    existing_sources: Optional[List[Dict[str, Any]]] = None,
) -> List[str]:
    """Search every question in parallel; results keep question order."""
    if not questions:
        return []
    with ThreadPoolExecutor(max_workers=len(questions)) as executor:
        return list(executor.map(lambda q: find_sources(perplexity, q, existing_sources), questions))


def search_in_batches(
    perplexity,
    questions: List[Dict[str, Any]],
    existing_sources: Optional[List[Dict[str, Any]]] = None,
    batch_size: int = 3,
) -> List[str]:
    """Like search_all_questions, but batch_size at a time with a pause between batches."""
    results = []
    for start in range(0, len(questions), batch_size):
        batch = questions[start:start + batch_size]
        results.extend(search_all_questions(perplexity, batch, existing_sources))
        if start + batch_size < len(questions):
            time.sleep(BATCH_PAUSE_SECONDS)
    return results
