"""
Sources pipeline.

chalk-talk transcription -> evidence questions -> Perplexity search ->
structured sources. run_pipeline yields progress events for the SSE route;
generate_and_save_sources runs the same steps unattended (searching a few
questions at a time) and stores the result.
"""

import time
import logging
from typing import List, Dict, Any, Iterator

from src.sources.questions import generate_questions, format_sources_for_upload
from src.sources.search import search_all_questions, search_in_batches

logger = logging.getLogger(__name__)


def existing_sources(store, project_id: str) -> List[Dict[str, Any]]:
    try:
        rows = store.select("project_sources", {"project_id": project_id})
    except Exception as e:
        logger.error(f"Error fetching existing sources: {e}")
        return []
    return [{"url": row.get("url"), "reason": row.get("reason")} for row in rows]


def chalk_talk_transcription(store, project_id: str) -> str:
    rows = store.select("chalk_talks", {"project_id": project_id}, order_by=["-created_at"], limit=1)
    return (rows[0].get("transcription") or "") if rows else ""


def run_pipeline(project_id: str, store, llm, perplexity) -> Iterator[Dict[str, Any]]:
    """
    Yield pipeline progress events.

    Steps: starting, generating_questions, questions_generated,
    searching_sources, sources_found, formatting_sources, sources_formatted,
    complete. Failures end the stream with an {"error", "step"?} event.
    """
    yield {"step": "starting"}

    try:
        known = existing_sources(store, project_id)

        try:
            transcription = chalk_talk_transcription(store, project_id)
        except Exception as e:
            logger.error(f"Error fetching transcription for {project_id}: {e}")
            transcription = ""

        if not transcription:
            yield {"error": "No transcription found", "step": "fetch_transcription"}
            return

        yield {"step": "generating_questions"}
        questions = generate_questions(llm, transcription)
        yield {"step": "questions_generated", "questions": questions}

        yield {"step": "searching_sources"}
        raw_results = search_all_questions(perplexity, questions, known)
        yield {"step": "sources_found", "rawResults": raw_results}

        yield {"step": "formatting_sources"}
        sources = format_sources_for_upload(llm, questions, raw_results)
        yield {"step": "sources_formatted", "sources": sources}

        yield {
            "step": "complete",
            "response": {"sources": sources, "questions": questions, "rawResults": raw_results},
        }

    except Exception as e:
        logger.error(f"Error in sources generation: {e}")
        yield {"error": "Error processing request", "details": str(e)}


def save_sources(project_id: str, sources: List[Dict[str, Any]], store) -> int:
    """Insert sources without an 'issue' flag; returns how many were saved."""
    valid = [s for s in sources if isinstance(s, dict) and not s.get("issue")]
    if not valid:
        logger.info("No valid sources to save")
        return 0

    saved = 0
    for source in valid:
        try:
            store.insert("project_sources", {
                "project_id": project_id,
                "url": source.get("url"),
                "reason": source.get("reason"),
                "description": source.get("description"),
                "citation": source.get("citation"),
            })
            saved += 1
        except Exception as e:
            logger.error(f"Error adding source {source.get('url')}: {e}")

    logger.info(f"Added {saved} sources, failed to add {len(valid) - saved}")
    return saved


def generate_and_save_sources(project_id: str, store, llm, perplexity) -> int:
    """
    Run the whole pipeline and store the sources.

    Returns:
        Number of sources saved (0 when the project has no transcription)
    """
    started = time.time()
    logger.info(f"Starting source generation for project {project_id}")

    transcription = chalk_talk_transcription(store, project_id)
    if not transcription:
        logger.error(f"No transcription found for project: {project_id}")
        return 0

    questions = generate_questions(llm, transcription)
    raw_results = search_in_batches(perplexity, questions, existing_sources(store, project_id))
    sources = format_sources_for_upload(llm, questions, raw_results)
    saved = save_sources(project_id, sources, store)

    logger.info(f"Source generation for project {project_id} finished in {time.time() - started:.1f}s")
    return saved
