"""
Project context retrieval.

Reassembles stored text from Pinecone metadata so generators can put a
project's materials (and the FOA) into prompts.
"""

import logging
from typing import List, Dict, Any

from src.core.enums import VectorType

logger = logging.getLogger(__name__)


def _chunk_index(match: Dict[str, Any]) -> float:
    value = match.get("metadata", {}).get("chunkIndex")
    return value if isinstance(value, (int, float)) else 0


def _joined_text(matches: List[Dict[str, Any]]) -> str:
    ordered = sorted(matches, key=_chunk_index)
    texts = [str(m.get("metadata", {}).get("text") or "") for m in ordered]
    return " ".join(t for t in texts if t.strip())


def get_vectors(index, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    return index.list_by_metadata(filter)


def get_foa_text(index, foa_id: str) -> str:
    """Full FOA text from its foa_raw chunks."""
    return _joined_text(get_vectors(index, {"type": VectorType.FOA_RAW.value, "foaId": str(foa_id)}))


def _project_text(index, vector_type: VectorType, project_id: str) -> str:
    return _joined_text(get_vectors(index, {"type": vector_type.value, "projectId": str(project_id)}))


def get_research_description_text(index, project_id: str) -> str:
    return _project_text(index, VectorType.RESEARCH_DESCRIPTION, project_id)


def get_scientific_figure_text(index, project_id: str) -> str:
    return _project_text(index, VectorType.SCIENTIFIC_FIGURE, project_id)


def get_chalk_talk_text(index, project_id: str) -> str:
    return _project_text(index, VectorType.CHALK_TALK, project_id)


def get_document_text(index, file_name: str) -> str:
    """Text of a vectorised reference document, looked up by file name."""
    return _joined_text(get_vectors(index, {
        "type": VectorType.VECTORIZED_DOCUMENT.value,
        "fileName": file_name,
    }))
