"""Question answering over one FOA's raw text chunks."""

import logging
from typing import List, Dict, Any

from src.core.enums import VectorType

logger = logging.getLogger(__name__)

CONTEXT_CHUNKS = 3


class FoaNotFoundError(LookupError):
    pass


def build_system_prompt(title: str, agency: str, context: str) -> str:
    return f"""You are an authoritative assistant for funding opportunities. Give clear, direct answers drawn from the sections of this funding opportunity most relevant to each question.

Funding Opportunity Details:
Title: {title}
Agency: {agency}

Relevant sections from the funding opportunity:
{context}

Response requirements:
- Be concise and to the point
- Plain text only, with no markdown, bullet points or special formatting
- Answer confidently from the sections provided
- Focus on what the sections say rather than what they leave out
- If information is missing, note it briefly at the end
- Keep answers under 4 sentences where possible
- Use natural, conversational language"""


def chat_with_foa(foa_id: str, messages: List[Dict[str, Any]], store, index, llm) -> str:
    """
    Answer the latest user message from the FOA's most similar chunks.

    Raises:
        FoaNotFoundError: If the FOA row does not exist
        ValueError: If there are no messages
    """
    if not messages:
        raise ValueError("No messages provided")

    question = messages[-1].get("content") or ""
    matches = index.query_text(
        question,
        top_k=CONTEXT_CHUNKS,
        filter={"type": VectorType.FOA_RAW.value, "foaId": str(foa_id)},
    )
    logger.info(f"Found {len(matches)} similar sections for FOA {foa_id}")
    context = "\n\n".join(str(m.get("metadata", {}).get("text") or "") for m in matches)

    foa = store.get("foas", foa_id)
    if not foa:
        raise FoaNotFoundError("Funding opportunity not found")

    return llm.chat(
        [
            {"role": "system", "content": build_system_prompt(foa.get("title"), foa.get("agency"), context)},
            *messages,
        ],
        temperature=0.3,
        model="gpt-4o-mini",
    )
