"""
Funding opportunity extraction.

Turns an FOA web page (or its stripped text) into a foas row using
gpt-4o-mini in JSON mode, then normalises the fields the model tends to
get wrong (agency, grant_type shape, dates, num_awards).
"""

import re
import logging
from datetime import date, datetime
from typing import Dict, Any, Optional

from src.core.enums import get_organization_types, get_nsf_proposal_types
from src.extractors.html_text import strip_html, fetch_html
from src.llm.json_utils import parse_llm_json

logger = logging.getLogger(__name__)


VALID_AGENCIES = ("NIH", "NSF")
DEADLINE_RE = re.compile(r"^[A-Z][a-z]+ \d{1,2}, \d{4}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DATE_FORMATS = (
    "%B %d, %Y",
    "%b %d, %Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d %B %Y",
    "%B %d %Y",
)


def parse_date(value: str) -> Optional[date]:
    """Parse the date formats FOAs use, returning None when unparseable."""
    if not value:
        return None
    value = value.strip()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def format_deadline(d: date) -> str:
    """'Month Day, Year' with no zero padding, e.g. 'May 5, 2025'."""
    return f"{d.strftime('%B')} {d.day}, {d.year}"


def build_extraction_prompt(text_content: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    organization_types = "\n".join(f'"{t}"' for t in get_organization_types())
    nsf_types = ", ".join(get_nsf_proposal_types())

    return f"""You are given the text of a funding opportunity announcement. Extract its details as a JSON object. Every value must come from the document; do not invent information.

Fields:

- agency: "NIH" or "NSF" (required).
- title: the full title of the opportunity (required).
- foa_code: the announcement code, e.g. "PA-25-303" or "NSF 25-535" (required, unique).
- grant_type: an object whose keys are grant types ("R01", "R21", "K99", ...) and whose values are true, e.g. {{"R01": true}}. Include every grant type mentioned (required).
  For NSF announcements the grant type may be given as a proposal type from: {nsf_types}. If no proposal type is given or it is a standard proposal, use {{"research": true}}. Include all that apply.
- description: a thorough 100-300 word description covering purpose, scope, research areas, expected outcomes and special considerations. Quote the document where possible (required).
- deadline: the submission deadline formatted exactly as "Month Day, Year" (e.g. "May 15, 2024") (required). When several deadlines are listed, use the nearest one after today, {format_deadline(today)}.
- num_awards: expected number of awards, an integer of zero or more (required). Use the document's estimate, or 1 if none is given.
- award_ceiling: maximum award amount (number, optional).
- award_floor: minimum award amount (number, optional).
- letters_of_intent: true if a letter of intent is required (default false).
- preliminary_proposal: true if a preliminary proposal is required (default false).
- animal_trials: true if animal studies are involved (default false).
- human_trials: true if human subjects research is involved (default false).
- organization_eligibility: an object with a boolean for each of these organization types (required):
{organization_types}
  If local governments are eligible, set both county_government and city_township_government to true.
- published_date: the publication date in ISO 8601 format (YYYY-MM-DD) (required).

Return only the JSON object, with no commentary.

Document text:
{text_content}
"""


def validate_extracted_info(info: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """Fill defaults and normalise the model's output in place."""
    today = today or date.today()

    agency = info.get("agency") or "NIH"
    info["agency"] = agency if agency in VALID_AGENCIES else "NIH"
    info["title"] = info.get("title") or ""
    info["foa_code"] = info.get("foa_code") or ""

    grant_type = info.get("grant_type")
    if isinstance(grant_type, str) and grant_type.strip():
        info["grant_type"] = {grant_type.strip(): True}
    elif not isinstance(grant_type, dict):
        info["grant_type"] = {}

    info["description"] = info.get("description") or ""
    info["organization_eligibility"] = info.get("organization_eligibility") or {}

    deadline = info.get("deadline") or ""
    if deadline and not DEADLINE_RE.match(deadline):
        parsed = parse_date(deadline)
        if parsed:
            deadline = format_deadline(parsed)
    info["deadline"] = deadline

    published = info.get("published_date") or today.isoformat()
    if not ISO_DATE_RE.match(published):
        parsed = parse_date(published)
        if parsed:
            published = parsed.isoformat()
    info["published_date"] = published

    num_awards = info.get("num_awards")
    if isinstance(num_awards, bool) or not isinstance(num_awards, (int, float)):
        info["num_awards"] = 1
    else:
        info["num_awards"] = max(0, int(round(num_awards)))

    for flag in ("letters_of_intent", "preliminary_proposal", "animal_trials", "human_trials"):
        if info.get(flag) is None:
            info[flag] = False

    return info


class FundingOpportunityExtractor:
    """Extract structured FOA data from HTML or a URL."""

    def __init__(self, llm):
        self.llm = llm

    def extract_with_openai(self, text_content: str) -> Dict[str, Any]:
        content = self.llm.chat(
            [{"role": "user", "content": build_extraction_prompt(text_content)}],
            temperature=0.2,
            max_tokens=1500,
            model="gpt-4o-mini",
            json_mode=True,
        )
        if not content:
            raise ValueError("No content returned from OpenAI")

        try:
            parsed = parse_llm_json(content)
        except ValueError as e:
            logger.error(f"Could not parse FOA extraction: {e}")
            raise ValueError("Failed to parse extracted information") from e

        if not isinstance(parsed, dict):
            raise ValueError("Failed to parse extracted information")
        return validate_extracted_info(parsed)

    def extract_from_text(self, text: str, base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        info = self.extract_with_openai(text)
        if base:
            info.update(base)
        return info

    def extract_from_html(self, html: str, base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.extract_from_text(strip_html(html), base)

    def extract_from_url(self, url: str) -> Dict[str, Any]:
        """
        Fetch an FOA page and extract it, setting grant_url.

        Raises:
            ValueError: On any fetch or extraction failure
        """
        try:
            html = fetch_html(url)
            return self.extract_from_html(html, {"grant_url": url})
        except Exception as e:
            logger.error(f"Error extracting FOA from {url}: {e}")
            raise ValueError("Failed to extract funding opportunity information from URL") from e
