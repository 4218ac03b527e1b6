"""Match a project's optional documents against an FOA's required documents."""

import json
import logging
from typing import List, Dict, Any

from src.llm.json_utils import parse_llm_json

logger = logging.getLogger(__name__)


MATCHER_SYSTEM_PROMPT = """You match documents. Decide which of the optional documents correspond to the required documents of a funding opportunity.

Guidelines:
1. Match only documents that serve the same purpose.
2. Do not match documents that are merely similar but have a different purpose.
3. Allow for common naming variations (for example "Research Strategy" and "Research Plan").
4. Be conservative: when unsure, do not match.
5. Return only the ids of matched documents.

Respond with a JSON object with one field, "matchedDocumentIds", holding an array of the matched document ids."""


class InvalidMatcherResponse(ValueError):
    """The model did not return a matchedDocumentIds list."""


def match_documents(llm, optional_documents: List[Dict[str, Any]], required_documents: List[Any]) -> Dict[str, Any]:
    """
    Ask the model which optional documents satisfy required ones.

    Raises:
        InvalidMatcherResponse: If the response lacks a matchedDocumentIds list
    """
    formatted = [
        {"id": doc.get("id"), "title": doc.get("name") or doc.get("title")}
        for doc in optional_documents
        if isinstance(doc, dict)
    ]

    content = llm.chat(
        [
            {"role": "system", "content": MATCHER_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps({
                "optionalDocuments": formatted,
                "requiredDocuments": required_documents,
            }, indent=2)},
        ],
        temperature=None,
        model="gpt-4o-mini",
        json_mode=True,
    )

    try:
        response = parse_llm_json(content or "{}")
    except ValueError:
        response = {}

    if not isinstance(response, dict) or not isinstance(response.get("matchedDocumentIds"), list):
        raise InvalidMatcherResponse("Invalid response format from document matcher")

    logger.info(f"Matched {len(response['matchedDocumentIds'])} of {len(formatted)} optional documents")
    return response
