"""
FOA vectorisation.

Each FOA gets one `foa_description` vector whose flattened metadata drives
the filtered search, plus `foa_raw` chunks of the full announcement text
used for FOA chat and document generation.
"""

import logging
from datetime import datetime, timezone, time
from typing import List, Dict, Any, Optional

from src.core.enums import VectorType
from src.extractors.funding_opportunity import parse_date
from src.vectorization.chunking import split_into_chunks

logger = logging.getLogger(__name__)

# foas.user_eligibility key -> metadata key used by search filters
USER_ELIGIBILITY_KEYS = {
    "pi": "user_pi",
    "postdoc": "user_postdoc",
    "grad_student": "user_grad_student",
    "senior_personnel": "user_senior_personnel",
}


def deadline_timestamp(deadline: Optional[str]) -> Optional[int]:
    """Epoch seconds (UTC midnight) for a 'Month Day, Year' or ISO deadline."""
    parsed = parse_date(deadline or "")
    if parsed is None:
        return None
    return int(datetime.combine(parsed, time.min, tzinfo=timezone.utc).timestamp())


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").replace("$", ""))
    except (TypeError, ValueError):
        return None


def build_description_metadata(foa: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an FOA row into Pinecone-filterable metadata."""
    metadata: Dict[str, Any] = {
        "type": VectorType.FOA_DESCRIPTION.value,
        "foaId": str(foa["id"]),
        "title": foa.get("title") or "",
        "agency": foa.get("agency") or "",
        "text": foa.get("description") or "",
        "foa_code": foa.get("foa_code") or "",
        "animal_trials": bool(foa.get("animal_trials")),
        "human_trials": bool(foa.get("human_trials")),
        "created_at": str(foa.get("created_at") or datetime.now(timezone.utc).isoformat()),
    }

    timestamp = deadline_timestamp(foa.get("deadline"))
    if timestamp is not None:
        metadata["deadline_timestamp"] = timestamp

    for field in ("award_floor", "award_ceiling"):
        value = _number(foa.get(field))
        if value is not None:
            metadata[field] = value

    for code, enabled in (foa.get("grant_type") or {}).items():
        metadata[f"grant_{code}"] = bool(enabled)

    for org_type, eligible in (foa.get("organization_eligibility") or {}).items():
        if eligible is not None:
            metadata[f"org_{org_type}"] = bool(eligible)

    for key, eligible in (foa.get("user_eligibility") or {}).items():
        if eligible is not None:
            metadata[USER_ELIGIBILITY_KEYS.get(key, f"user_{key}")] = bool(eligible)

    return metadata


def delete_foa_vectors(index, ids: List[str]) -> int:
    """Delete FOA vectors, 100 ids per request."""
    return index.delete_ids(list(ids or []))


def vectorize_foa(foa: Dict[str, Any], full_text: Optional[str], store, index) -> List[str]:
    """
    (Re)build all vectors for an FOA and store their ids on the row.

    Existing vectors are removed first so repeated runs don't duplicate.

    Returns:
        The new Pinecone ids, description vector first
    """
    if not foa.get("description"):
        raise ValueError("FOA has no description to vectorize")

    if foa.get("pinecone_ids"):
        delete_foa_vectors(index, foa["pinecone_ids"])

    description_meta = build_description_metadata(foa)
    ids = [index.upsert_text(description_meta["text"], description_meta)]

    chunks = split_into_chunks(full_text) if full_text and full_text.strip() else []
    for i, chunk in enumerate(chunks, start=1):
        ids.append(index.upsert_text(chunk, {
            "type": VectorType.FOA_RAW.value,
            "foaId": str(foa["id"]),
            "chunkIndex": i,
            "totalChunks": len(chunks),
            "text": chunk,
        }))

    store.update("foas", {"id": foa["id"]}, {"pinecone_ids": ids})
    logger.info(f"Vectorized FOA {foa['id']}: 1 description vector, {len(chunks)} raw chunks")
    return ids
