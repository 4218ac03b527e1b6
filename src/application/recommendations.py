"""
Grant mechanism recommendations.

Once the application-factors questionnaire is complete, the model picks
grant types from the agency's catalogue. Codes the researcher named in the
grant_type answer are always kept, and NSF applicants always get the
general "research" proposal type.
"""

import re
import json
import logging
from datetime import datetime, timezone
from typing import List, Dict, Any

from src.core.enums import (
    NSF_PROPOSAL_TYPE_LABELS,
    get_nih_grant_types,
    get_nih_grant_type_description,
)
from src.llm.json_utils import parse_llm_json
from src.vectorization.context import get_research_description_text, get_chalk_talk_text

logger = logging.getLogger(__name__)

GRANT_CODE_PATTERN = re.compile(
    r"\b([A-Z][0-9]{2}|[A-Z]\d{2}/[A-Z]\d{2}|CAREER|EAGER|RAPID|RAISE|GOALI|SBIR|STTR)\b",
    re.IGNORECASE,
)


class FactorsIncompleteError(ValueError):
    """Application factors have not been marked completed."""


def answers_by_id(application_factors: Dict[str, Any]) -> Dict[str, str]:
    return {
        qa.get("id"): qa.get("answer") or ""
        for qa in (application_factors or {}).get("questions") or []
        if isinstance(qa, dict)
    }


def grants_for_agency(agency_alignment: str) -> List[Dict[str, str]]:
    """NIH and/or NSF grant types with descriptions, depending on the agency answer."""
    nih = [
        {"code": code, "description": get_nih_grant_type_description(code)}
        for code in get_nih_grant_types()
        if get_nih_grant_type_description(code) != "Description not available"
    ]
    nsf = [{"code": code, "description": label} for code, label in NSF_PROPOSAL_TYPE_LABELS.items()]

    agency = (agency_alignment or "").lower()
    if "nih" not in agency and "nsf" not in agency:
        return nih + nsf

    grants = []
    if "nih" in agency or "both" in agency:
        grants += nih
    if "nsf" in agency or "both" in agency:
        grants += nsf
    return grants


def agency_type(agency_alignment: str) -> str:
    agency = (agency_alignment or "").lower()
    if "nih" in agency and "nsf" not in agency:
        return "NIH"
    if "nsf" in agency and "nih" not in agency:
        return "NSF"
    return "Both"


def preferred_grant_codes(grant_type_answer: str) -> List[str]:
    return [code.upper() for code in GRANT_CODE_PATTERN.findall(grant_type_answer or "")]


def merge_recommendations(recommended: List[Dict[str, Any]], preferred: List[str], agency: str) -> List[Dict[str, Any]]:
    """Prepend preferred codes the model left out; add "research" for NSF."""
    grants = [g for g in recommended if isinstance(g, dict) and g.get("code")]
    existing = {g["code"] for g in grants}

    for code in preferred:
        if code not in existing:
            grants.insert(0, {"code": code})
            existing.add(code)

    if agency in ("NSF", "Both") and not any(str(g["code"]).lower() == "research" for g in grants):
        grants.append({"code": "research"})

    return grants


def build_prompt(research_description: str, chalk_talk_text: str, grants: List[Dict[str, str]]) -> str:
    return f"""You are an assistant helping a researcher identify suitable grant types from their research and application factors.

Research Description:
{research_description or "No research description provided."}

Chalk Talk Text:
{chalk_talk_text or "No chalk talk transcription available."}

Available Grant Types:
{json.dumps(grants)}

From the application factors and research description, recommend only the grant types that fit this researcher best. Prefer quality over quantity: include only grants that are highly relevant and leave out poor or tangential fits. There is no fixed limit, but be deliberate.

Respond with a JSON object containing only a "recommendedGrants" array of grant types, each holding only a "code" field.

Example:
{{
  "recommendedGrants": [
    {{"code": "R01"}},
    {{"code": "R03"}}
  ]
}}"""


def recommend_grants(project_id: str, store, index, llm) -> Dict[str, Any]:
    """
    Recommend grant types for a project and save them on its application factors.

    Returns:
        The parsed model recommendations

    Raises:
        FactorsIncompleteError: If the questionnaire is not complete
        ValueError: If the model output is not JSON
    """
    project = store.get("research_projects", project_id)
    factors = (project or {}).get("application_factors") or {}
    if not factors.get("completed"):
        raise FactorsIncompleteError("Application factors are not complete")

    answers = answers_by_id(factors)

    try:
        research_description = get_research_description_text(index, project_id)
        logger.info(f"Retrieved research description, length: {len(research_description)} characters")
    except Exception as e:
        logger.error(f"Error getting research description: {e}")
        research_description = ""

    try:
        chalk_talk_text = get_chalk_talk_text(index, project_id)
        logger.info(f"Retrieved chalk talk text, length: {len(chalk_talk_text)} characters")
    except Exception as e:
        logger.error(f"Error getting chalk talk text: {e}")
        chalk_talk_text = ""

    prompt = build_prompt(research_description, chalk_talk_text, grants_for_agency(answers.get("agency_alignment")))
    response = llm.chat([{"role": "system", "content": prompt}], temperature=0.1, model="gpt-4o-mini")
    recommendations = parse_llm_json(response)
    if not isinstance(recommendations, dict):
        raise ValueError("Failed to parse response as JSON")

    agency = agency_type(answers.get("agency_alignment"))
    grants = merge_recommendations(
        recommendations.get("recommendedGrants") or [],
        preferred_grant_codes(answers.get("grant_type")),
        agency,
    )
    logger.info(f"Final grant recommendations ({agency}): {[g['code'] for g in grants]}")

    store.update("research_projects", {"id": project_id}, {
        "application_factors": {
            **factors,
            "recommendedGrants": {
                "agencyType": agency,
                "organizationType": answers.get("applicant_characteristics") or "",
                "recommendedGrants": grants,
            },
            "recommendationsUpdatedAt": datetime.now(timezone.utc).isoformat(),
        }
    })

    return recommendations
