"""Entry point for generating a project's document content."""

import logging

from src.generation.processors import (
    GenerationResult,
    GeneralDocumentProcessor,
    ProjectDescriptionProcessor,
)

logger = logging.getLogger(__name__)

PROJECT_DESCRIPTION_PROCESSOR = "project-description"


def generate_document_content(document_id: str, project_id: str, store, index, llm) -> GenerationResult:
    """
    Generate HTML content for a document within a project.

    Uses the project-description generator when the document asks for it,
    the general generator otherwise. Never raises.
    """
    try:
        document = store.get("documents", document_id)
        project = store.get("research_projects", project_id)
        if not document:
            raise ValueError("Document not found")
        if not project:
            raise ValueError("Project not found")

        if document.get("custom_processor") == PROJECT_DESCRIPTION_PROCESSOR:
            processor = ProjectDescriptionProcessor(index, llm)
        else:
            processor = GeneralDocumentProcessor(index, llm)

        answers = store.select("document_fields", {"document_id": document_id})

        logger.info(f"Generating document {document_id} for project {project_id} with {type(processor).__name__}")
        return processor.process(document, project_id, foa_id=project.get("foa") or None, answers=answers)

    except Exception as e:
        logger.error(f"Error in document generation: {e}")
        return GenerationResult(content="", error=str(e) or "Failed to generate document content")
