"""
Background project processing.

Equipment analysis, source generation and document drafting for a project.
The process_* entry points are fire-and-forget: they log failures and never
raise, so they can run as FastAPI background tasks.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Dict, Any

from src.extractors.equipment import analyze_project_equipment
from src.generation.service import generate_document_content
from src.sources.pipeline import generate_and_save_sources

logger = logging.getLogger(__name__)

DOCUMENT_DELAY_SECONDS = 1.0


def _mark_completed(attachments: Dict[str, Any], document_id: str):
    attachments[document_id] = {
        **(attachments.get(document_id) or {}),
        "completed": True,
        "updatedAt": datetime.now(timezone.utc).isoformat(),
    }


def generate_attachments(project_id: str, store, index, llm, delay: float = DOCUMENT_DELAY_SECONDS) -> int:
    """
    Draft every attachment of a project that has no completed document yet.

    Documents are handled one at a time; a failed document is logged and
    skipped. The project's attachments map is saved only when something
    changed.

    Returns:
        Number of attachments considered

    Raises:
        LookupError: If the project or its attachments cannot be loaded
    """
    project = store.get("research_projects", project_id)
    if not project or project.get("attachments") is None:
        raise LookupError("Failed to fetch project attachments")

    document_ids = list(project["attachments"].keys())
    if not document_ids:
        logger.info("No attachments found for project")
        return 0

    logger.info(f"Found {len(document_ids)} attachments to generate")
    attachments = dict(project["attachments"])
    changed = False

    for document_id in document_ids:
        try:
            existing = store.select(
                "completed_documents",
                {"document_id": document_id, "project_id": project_id},
                limit=1,
            )
            if existing:
                logger.info(f"Content already exists for document {document_id}, marking as completed")
                if not (attachments.get(document_id) or {}).get("completed"):
                    _mark_completed(attachments, document_id)
                    changed = True
                continue

            result = generate_document_content(document_id, project_id, store, index, llm)
            if result.error:
                logger.error(f"Error generating content for document {document_id}: {result.error}")
                continue

            store.insert("completed_documents", {
                "document_id": document_id,
                "project_id": project_id,
                "content": result.content,
            })
            logger.info(f"Generated and saved content for document {document_id}")

            _mark_completed(attachments, document_id)
            changed = True

            time.sleep(delay)

        except Exception as e:
            logger.error(f"Error processing document {document_id}: {e}")

    if changed:
        store.update("research_projects", {"id": project_id}, {"attachments": attachments})
        logger.info("Updated project attachments with completion status")

    return len(document_ids)


def process_equipment(project_id: str, store, index, llm):
    started = time.time()
    logger.info(f"Starting equipment analysis for project {project_id}")
    try:
        result = analyze_project_equipment(project_id, store, index, llm)
        logger.info(f"Equipment analysis for project {project_id}: {result['status']} in {time.time() - started:.1f}s")
    except Exception as e:
        logger.error(f"Error in equipment analysis for project {project_id}: {e}")


def process_sources(project_id: str, store, llm, perplexity):
    try:
        generate_and_save_sources(project_id, store, llm, perplexity)
    except Exception as e:
        logger.error(f"Error in source generation for project {project_id}: {e}")


def process_attachments(project_id: str, store, index, llm) -> int:
    started = time.time()
    logger.info(f"Starting attachment generation for project {project_id}")
    try:
        processed = generate_attachments(project_id, store, index, llm)
    except Exception as e:
        logger.error(f"Error in attachment generation for project {project_id}: {e}")
        return 0
    logger.info(f"Attachment generation for project {project_id} finished in {time.time() - started:.1f}s")
    return processed


def process_all(project_id: str, store, index, llm, perplexity=None):
    """Equipment, sources and attachments for one project."""
    logger.info(f"=== BACKGROUND PROCESSING: {project_id} ===")
    process_equipment(project_id, store, index, llm)
    if perplexity is not None:
        process_sources(project_id, store, llm, perplexity)
    else:
        logger.warning("Perplexity client not configured, skipping source generation")
    process_attachments(project_id, store, index, llm)
