"""
Equipment recommendations.

Matches an equipment catalog (plain text) against a project's FOA text and
saves the most relevant items to recommended_equipment.
"""

import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any

from src.llm.json_utils import parse_llm_json
from src.vectorization.context import get_foa_text

logger = logging.getLogger(__name__)


class NoFundingOpportunityError(ValueError):
    """The project has no FOA selected."""


def build_equipment_prompt(catalog_text: str, foa_text: str) -> str:
    return f"""You are a scientific consultant who matches research equipment to the requirements of funding opportunities.

You have two texts.

1. Text describing scientific equipment:
{catalog_text}

2. The Funding Opportunity Announcement (FOA) the research project is targeting:
{foa_text}

Return a JSON object listing up to 10 of the most relevant pieces of equipment from the first text:
{{
  "equipment": [
    {{
      "name": "Full equipment name",
      "specifications": "Short summary of key specifications",
      "relevance_score": 7,
      "relevance_details": "How this equipment relates to the research needs"
    }}
  ]
}}

For each item, judge how directly it serves the research needs in the text and which requirements it helps meet, and score its relevance from 1 to 10. Leave out anything scoring below 7.

Only include equipment that actually appears in the text; do not invent details. Do not mention the FOA in your answer. Return only the JSON."""


def validate_equipment(items: List[Any]) -> List[Dict[str, Any]]:
    """Normalise model output; relevance_score becomes 0..1."""
    validated = []
    for item in items:
        if not isinstance(item, dict):
            continue
        score = item.get("relevance_score")
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            relevance = max(0, min(10, score)) / 10
        else:
            relevance = 0.5
        validated.append({
            "name": item.get("name") or "Unknown Equipment",
            "specifications": item.get("specifications"),
            "relevance_score": relevance,
            "relevance_details": item.get("relevance_details") or "No details provided",
        })
    return validated


def analyze_equipment(llm, catalog_text: str, foa_text: str) -> List[Dict[str, Any]]:
    """
    Rank catalog equipment against FOA text.

    Raises:
        ValueError: If the model output has no equipment list
    """
    content = llm.chat(
        [{"role": "user", "content": build_equipment_prompt(catalog_text, foa_text)}],
        temperature=0.3,
        max_tokens=2500,
        model="gpt-4-turbo-preview",
        json_mode=True,
    )
    if not content:
        raise ValueError("No content returned from OpenAI")

    try:
        parsed = parse_llm_json(content)
    except ValueError as e:
        raise ValueError("Failed to parse equipment recommendations") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("equipment"), list):
        raise ValueError("Failed to parse equipment recommendations")

    return validate_equipment(parsed["equipment"])


def load_catalog(path: str = None) -> str:
    """
    Read the equipment catalog text.

    Raises:
        FileNotFoundError: If the file is missing
        ValueError: If the file is empty
    """
    catalog_path = Path(path or os.getenv("EQUIPMENT_CATALOG_PATH", "data/ecl.txt"))
    if not catalog_path.is_file():
        raise FileNotFoundError(f"Equipment catalog file not found at {catalog_path}")
    text = catalog_path.read_text(encoding="utf-8")
    if not text.strip():
        raise ValueError("The equipment catalog file is empty")
    return text


def analyze_project_equipment(project_id: str, store, index, llm, catalog_path: str = None) -> Dict[str, Any]:
    """
    Generate and save equipment recommendations for a project.

    Returns:
        {"message", "status": "existing" | "warning" | "success", "count"?}

    Raises:
        NoFundingOpportunityError: If the project has no FOA
    """
    project = store.get("research_projects", project_id)
    if not project or not project.get("foa"):
        raise NoFundingOpportunityError("No funding opportunity found for this project")

    existing = store.select("recommended_equipment", {"project_id": project_id}, order_by=["-created_at"], limit=1)
    if existing:
        return {"message": "Equipment recommendations already exist for this project", "status": "existing"}

    catalog_text = load_catalog(catalog_path)

    try:
        foa_text = get_foa_text(index, project["foa"])
    except Exception as e:
        logger.warning(f"Could not load FOA text for project {project_id}: {e}")
        foa_text = ""

    equipment = analyze_equipment(llm, catalog_text, foa_text)
    if not equipment:
        return {"message": "No equipment recommendations were generated", "status": "warning", "count": 0}

    now = datetime.now(timezone.utc).isoformat()
    store.upsert("recommended_equipment", {
        "project_id": project_id,
        "equipment": equipment,
        "created_at": now,
        "updated_at": now,
    }, conflict=["project_id"])

    logger.info(f"Saved {len(equipment)} equipment recommendations for project {project_id}")
    return {"message": "Equipment recommendations generated and saved", "status": "success", "count": len(equipment)}
