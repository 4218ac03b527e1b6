"""
Filtered FOA search over `foa_description` vectors.

Without a query, matching FOAs come back newest first from a metadata-only
listing. With a query, results are ranked by similarity and the score is
mapped from cosine [-1, 1] to [0, 100].
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, date, time, timezone
from typing import List, Dict, Any, Optional

from src.core.enums import VectorType

logger = logging.getLogger(__name__)

SEARCH_TOP_K = 1000
MAX_LIMIT = 100


@dataclass
class FoaSearchParams:
    query: str = ""
    limit: int = 20
    offset: int = 0
    agency: Optional[str] = None
    min_award: Optional[float] = None
    max_award: Optional[float] = None
    animal_trials: Optional[bool] = None
    human_trials: Optional[bool] = None
    deadline_date: Optional[date] = None
    organization_eligibility: Dict[str, Optional[bool]] = field(default_factory=dict)
    user_pi: Optional[bool] = None
    user_postdoc: Optional[bool] = None
    user_grad_student: Optional[bool] = None
    user_senior_personnel: Optional[bool] = None
    recommended_grant_codes: Optional[List[str]] = None


def normalize_score(score: float) -> float:
    """Cosine similarity -> 0..100, two decimals."""
    return round((score + 1) / 2 * 100, 2)


def _award_condition(min_award: Optional[float], max_award: Optional[float]) -> Optional[Dict[str, Any]]:
    if min_award is not None and max_award is not None:
        return {"$or": [
            {"award_floor": {"$gte": min_award, "$lte": max_award}},
            {"award_ceiling": {"$gte": min_award, "$lte": max_award}},
            {"$and": [
                {"award_floor": {"$lte": min_award}},
                {"award_ceiling": {"$gte": max_award}},
            ]},
        ]}
    if min_award is not None:
        return {"$or": [
            {"award_floor": {"$gte": min_award}},
            {"award_ceiling": {"$gte": min_award}},
        ]}
    if max_award is not None:
        return {"$or": [
            {"award_floor": {"$lte": max_award}},
            {"award_ceiling": {"$lte": max_award}},
        ]}
    return None


def build_filter(params: FoaSearchParams) -> Dict[str, Any]:
    """Pinecone metadata filter for the search parameters."""
    conditions: List[Dict[str, Any]] = []

    if params.agency:
        conditions.append({"agency": params.agency})

    award = _award_condition(params.min_award, params.max_award)
    if award:
        conditions.append(award)

    if params.animal_trials is not None:
        conditions.append({"animal_trials": params.animal_trials})
    if params.human_trials is not None:
        conditions.append({"human_trials": params.human_trials})

    if params.deadline_date is not None:
        cutoff = datetime.combine(params.deadline_date, time.min, tzinfo=timezone.utc)
        conditions.append({"deadline_timestamp": {"$lte": int(cutoff.timestamp())}})

    org_conditions = [
        {f"org_{org_type}": value}
        for org_type, value in (params.organization_eligibility or {}).items()
        if value is not None
    ]
    if org_conditions:
        conditions.append({"$or": org_conditions})

    for key in ("user_pi", "user_postdoc", "user_grad_student", "user_senior_personnel"):
        value = getattr(params, key)
        if value is not None:
            conditions.append({key: value})

    search_filter: Dict[str, Any] = {"type": VectorType.FOA_DESCRIPTION.value}
    if conditions:
        search_filter["$and"] = conditions
    return search_filter


def match_to_foa(match: Dict[str, Any]) -> Dict[str, Any]:
    meta = match.get("metadata") or {}

    timestamp = meta.get("deadline_timestamp")
    deadline = None
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        deadline = datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")

    def number(key):
        value = meta.get(key)
        return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None

    score = match.get("score")
    return {
        "id": meta.get("foaId"),
        "title": meta.get("title"),
        "agency": meta.get("agency"),
        "description": meta.get("text"),
        "foa_code": meta.get("foa_code"),
        "deadline": deadline,
        "award_floor": number("award_floor"),
        "award_ceiling": number("award_ceiling"),
        "animal_trials": bool(meta.get("animal_trials")),
        "human_trials": bool(meta.get("human_trials")),
        "grant_type": {k: v for k, v in meta.items() if k.startswith("grant_")},
        "score": normalize_score(score) if score is not None else None,
        "created_at": meta.get("created_at") or datetime.now(timezone.utc).isoformat(),
    }


def filter_by_recommended_grants(foas: List[Dict[str, Any]], codes: List[str]) -> List[Dict[str, Any]]:
    """Keep FOAs offering at least one of the codes (plain or grant_-prefixed keys)."""
    if not codes:
        return foas
    kept = [
        foa for foa in foas
        if foa.get("grant_type") and any(
            foa["grant_type"].get(code) is True or foa["grant_type"].get(f"grant_{code}") is True
            for code in codes
        )
    ]
    logger.info(f"Filtered results by recommended grants: {len(kept)} of {len(foas)}")
    return kept


def _created_at_key(foa: Dict[str, Any]) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(foa.get("created_at")).replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def search_foas(index, params: FoaSearchParams) -> Dict[str, Any]:
    """
    Run a filtered FOA search.

    Returns:
        {"foas": page of results, "total": count before paging, "error": None}
    """
    if params.recommended_grant_codes is not None and not params.recommended_grant_codes:
        return {"foas": [], "total": 0, "error": None}

    search_filter = build_filter(params)
    logger.info(f"FOA search filter: {search_filter}")

    if params.query.strip():
        matches = index.query_text(params.query, top_k=SEARCH_TOP_K, filter=search_filter)
        foas = [match_to_foa(m) for m in matches if m.get("metadata")]
        foas.sort(key=lambda f: f["score"] or 0, reverse=True)
    else:
        matches = index.list_by_metadata(search_filter, top_k=SEARCH_TOP_K)
        foas = [match_to_foa(m) for m in matches if m.get("metadata")]

    if params.recommended_grant_codes:
        foas = filter_by_recommended_grants(foas, params.recommended_grant_codes)

    if not params.query.strip():
        foas.sort(key=_created_at_key, reverse=True)

    limit = min(params.limit, MAX_LIMIT)
    return {
        "foas": foas[params.offset:params.offset + limit],
        "total": len(foas),
        "error": None,
    }


def recommended_grant_codes(store, project_id: str) -> List[str]:
    """Grant codes saved by the recommendations step, [] if none."""
    try:
        project = store.get("research_projects", project_id) or {}
    except Exception as e:
        logger.error(f"Error fetching project data: {e}")
        return []
    factors = project.get("application_factors") or {}
    grants = (factors.get("recommendedGrants") or {}).get("recommendedGrants") or []
    return [g.get("code") for g in grants if isinstance(g, dict) and g.get("code")]
