"""
Bulk FOA import from agency CSV exports (NIH Guide / NSF funding search).

Agency exports embed newlines inside quoted fields; the csv module keeps
those records whole.
"""

import io
import re
import csv
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


NIH_REQUIRED_COLUMNS = [
    "Title", "Release_Date", "Expired_Date", "Activity_Code", "Parent_Organization",
    "Organization", "Participating_Orgs", "Document_Number", "Document_Type",
    "Clinical_Trials", "URL",
]

NSF_REQUIRED_COLUMNS = [
    "Title", "Synopsis", "Award Type", "Next due date (Y-m-d)",
    "Proposals accepted anytime", "Program ID", "NSF/PD Num", "Status",
    "Posted date (Y-m-d)", "URL", "Type", "Solicitation URL",
]

# agency -> (foa code column, url column)
CODE_AND_URL_COLUMNS = {
    "NIH": ("Document_Number", "URL"),
    "NSF": ("NSF/PD Num", "Solicitation URL"),
}

REQUIRED_COLUMNS = {"NIH": NIH_REQUIRED_COLUMNS, "NSF": NSF_REQUIRED_COLUMNS}


@dataclass
class CsvImportResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)

    def skip(self, row: int, title: str, reason: str):
        self.skipped.append({"row": row, "title": title, "reason": reason})

    def to_dict(self) -> Dict[str, Any]:
        return {"records": self.records, "skipped": self.skipped}


def normalize_url(url: Optional[str]) -> Optional[str]:
    """Return a usable absolute URL (adding https:// if needed) or None."""
    if not url or not url.strip():
        return None
    url = url.strip()
    for candidate in (url, f"https://{url}"):
        parsed = urlparse(candidate)
        if parsed.scheme and parsed.netloc and not re.search(r"\s", candidate):
            return candidate
    return None


def parse_csv(text: str, agency: str) -> CsvImportResult:
    """
    Parse an agency CSV export into FOA stubs.

    Raises:
        ValueError: Unknown agency, empty file or missing required columns
    """
    agency = (agency or "").upper()
    if agency not in REQUIRED_COLUMNS:
        raise ValueError("Agency must be NIH or NSF")

    rows = [
        [value.strip() for value in row]
        for row in csv.reader(io.StringIO((text or "").lstrip("\ufeff")))
        if any(value.strip() for value in row)
    ]
    if not rows:
        raise ValueError("The CSV file appears to be empty.")

    headers = rows[0]
    missing = [col for col in REQUIRED_COLUMNS[agency] if col not in headers]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    code_column, url_column = CODE_AND_URL_COLUMNS[agency]
    title_idx = headers.index("Title")
    code_idx = headers.index(code_column)
    url_idx = headers.index(url_column)

    result = CsvImportResult()
    seen_codes = set()
    seen_urls = set()

    for row_number, row in enumerate(rows[1:], start=1):
        if max(title_idx, code_idx, url_idx) >= len(row):
            result.skip(row_number, row[title_idx] if title_idx < len(row) else "", "Incomplete row")
            continue

        title = " ".join(row[title_idx].split())
        foa_code = row[code_idx].strip()

        if not title:
            result.skip(row_number, title, "Missing title")
            continue

        if foa_code and foa_code in seen_codes:
            result.skip(row_number, title, "Duplicate FOA code in CSV")
            continue

        grant_url = normalize_url(row[url_idx])
        if not grant_url:
            result.skip(row_number, title, "Missing or invalid URL")
            continue

        if grant_url in seen_urls:
            result.skip(row_number, title, "Duplicate URL in CSV")
            continue

        if foa_code:
            seen_codes.add(foa_code)
        seen_urls.add(grant_url)

        result.records.append({
            "agency": agency,
            "title": title,
            "foa_code": foa_code,
            "grant_url": grant_url,
        })

    logger.info(f"Parsed {len(result.records)} {agency} records, skipped {len(result.skipped)}")
    return result


def filter_existing(result: CsvImportResult, store) -> CsvImportResult:
    """Drop records whose FOA code or URL is already in the foas table."""
    existing = store.select("foas")
    existing_codes = {row.get("foa_code") for row in existing if row.get("foa_code")}
    existing_urls = {row.get("grant_url") for row in existing if row.get("grant_url")}

    filtered = CsvImportResult(skipped=list(result.skipped))
    for i, record in enumerate(result.records, start=1):
        if record["foa_code"] and record["foa_code"] in existing_codes:
            filtered.skip(i, record["title"], "FOA code already in database")
        elif record["grant_url"] in existing_urls:
            filtered.skip(i, record["title"], "URL already in database")
        else:
            filtered.records.append(record)
    return filtered
