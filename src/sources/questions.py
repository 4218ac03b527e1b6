"""
OpenAI steps of the sources pipeline: pick the claims that need support,
then turn raw search results into source records.
"""

import logging
from typing import List, Dict, Any

from src.llm.json_utils import parse_llm_json

logger = logging.getLogger(__name__)

MODEL = "gpt-4-0125-preview"

QUESTION_SYSTEM_PROMPT = """You are an expert grant writer and researcher. Analyse grant proposal content and identify the key claims or statements that need scientific sources. Look for claims that:
1. Make specific, testable assertions
2. Give statistics or trends that need verification
3. Describe the state of the art or current practice
4. Make comparisons or evaluations
5. Claim impact or outcomes

Return a JSON object with a "questions" array of exactly 5 questions, each with:
- id: a short unique identifier
- question: a specific, focused question about finding supporting evidence
- context: the excerpt from the original text that needs support"""

FORMAT_SOURCES_SYSTEM_PROMPT = """You are a research assistant who turns search results into structured source entries.

For each source in the search results, extract:
1. The URL
2. A one-sentence reason explaining why the source is valuable
3. A description paragraph that summarises the key findings, notes the source's credibility and explains which claims it supports
4. The citation in this format: Author's Last Name, Initials. "Title of Web Page." Website Name, Publisher (if different from website name), Publication Date, URL.

Notes:
- Extract URLs carefully and make sure they are valid
- Merge duplicate sources
- Keep the citation format exactly as given
- If a citation is missing or incomplete, build one from the available information
- Respond with a JSON object holding a "sources" array

Example:
{
  "sources": [
    {
      "url": "https://example.com/article",
      "reason": "Provides recent data on sea level rise in coastal areas",
      "description": "This peer-reviewed study from the Environmental Research Institute presents long-term sea level data, including an average rise of 3.2mm per year since 1993. It directly supports claims about climate change impacts on coastal communities.",
      "citation": "Smith, J. \\"The Impact of Climate Change on Coastal Communities.\\" Environmental Research Institute, 2024, https://example.com/article"
    }
  ]
}"""


def _json_list(content: str, field: str) -> List[Dict[str, Any]]:
    if not content:
        raise ValueError("No content in OpenAI response")
    try:
        parsed = parse_llm_json(content)
    except ValueError as e:
        raise ValueError("Failed to parse OpenAI response as JSON") from e
    if not isinstance(parsed, dict) or not isinstance(parsed.get(field), list):
        raise ValueError(f"Invalid response format: missing {field} array")
    return parsed[field]


def generate_questions(llm, transcription: str) -> List[Dict[str, Any]]:
    """
    Five evidence questions for the claims in a chalk-talk transcription.

    Raises:
        ValueError: Empty response, bad JSON or no questions array
    """
    content = llm.chat(
        [
            {"role": "system", "content": QUESTION_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    "Analyze this grant proposal transcription and identify 5 key claims "
                    f"that need scientific sources:\n\n{transcription}"
                ),
            },
        ],
        temperature=0.2,
        model=MODEL,
        json_mode=True,
    )
    questions = _json_list(content, "questions")
    logger.info(f"Generated {len(questions)} source questions")
    return questions


def build_format_prompt(questions: List[Dict[str, Any]], search_results: List[str]) -> str:
    listed_questions = "\n".join(
        f"\nQuestion {i}: {q.get('question')}\nContext: {q.get('context')}\n"
        for i, q in enumerate(questions, start=1)
    )
    listed_results = "\n".join(
        f"\n=== Results for Question {i} ===\n{result}\n"
        for i, result in enumerate(search_results, start=1)
    )
    return f"""Here are the research questions and their search results. Analyse them and format them into structured source entries:

Research Questions:
{listed_questions}

Search Results:
{listed_results}

Format these results into structured source entries in the specified format."""


def format_sources_for_upload(llm, questions: List[Dict[str, Any]], search_results: List[str]) -> List[Dict[str, Any]]:
    """
    Structured {url, reason, description, citation} records from raw results.

    Raises:
        ValueError: Empty response, bad JSON or no sources array
    """
    content = llm.chat(
        [
            {"role": "system", "content": FORMAT_SOURCES_SYSTEM_PROMPT},
            {"role": "user", "content": build_format_prompt(questions, search_results)},
        ],
        temperature=0.2,
        model=MODEL,
        json_mode=True,
    )
    sources = _json_list(content, "sources")
    logger.info(f"Formatted {len(sources)} sources")
    return sources
