import io
import csv

import pytest

from src.extractors.csv_import import (
    NIH_REQUIRED_COLUMNS,
    NSF_REQUIRED_COLUMNS,
    parse_csv,
    normalize_url,
    filter_existing,
)


NIH_HEADER = ",".join(NIH_REQUIRED_COLUMNS)


def nih_row(title, code, url):
    return f'"{title}",2025-01-01,2026-01-01,R01,NIH,NIA,,{code},PA,Optional,{url}'


def write_nih_csv(*rows):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(NIH_REQUIRED_COLUMNS)
    for title, code, url in rows:
        writer.writerow([title, "2025-01-01", "2026-01-01", "R01", "NIH", "NIA", "", code, "PA", "No", url])
    return buffer.getvalue()


def test_parse_csv_quotes_and_escapes():
    result = parse_csv(write_nih_csv(('Aging, "Healthy" Research', "PA-25-001", "https://example.org/a")), "NIH")
    assert result.records[0]["title"] == 'Aging, "Healthy" Research'


def test_parse_csv_multiline_last_column_keeps_next_record():
    text = write_nih_csv(
        ("Title one", "PA-25-001", "https://example.org/a\nmore"),
        ("Title two", "PA-25-002", "https://example.org/b"),
    )

    result = parse_csv(text, "NIH")

    assert result.records == [{
        "agency": "NIH",
        "title": "Title two",
        "foa_code": "PA-25-002",
        "grant_url": "https://example.org/b",
    }]
    assert result.skipped == [{"row": 1, "title": "Title one", "reason": "Missing or invalid URL"}]


def test_parse_csv_skips_short_rows():
    result = parse_csv(NIH_HEADER + "\nLonely title,2025-01-01\n", "NIH")
    assert result.skipped == [{"row": 1, "title": "Lonely title", "reason": "Incomplete row"}]


@pytest.mark.parametrize("url,expected", [
    ("https://grants.nih.gov/x", "https://grants.nih.gov/x"),
    ("grants.nih.gov/x", "https://grants.nih.gov/x"),
    ("", None),
    ("not a url", None),
])
def test_normalize_url(url, expected):
    assert normalize_url(url) == expected


def test_parse_nih_csv():
    text = "\n".join([
        NIH_HEADER,
        nih_row("Aging Research", "PA-25-001", "https://grants.nih.gov/1"),
        nih_row("Duplicate Code", "PA-25-001", "https://grants.nih.gov/2"),
        nih_row("", "PA-25-003", "https://grants.nih.gov/3"),
        nih_row("No Url", "PA-25-004", ""),
        nih_row("Same Url", "PA-25-005", "https://grants.nih.gov/1"),
    ])

    result = parse_csv(text, "nih")

    assert result.records == [{
        "agency": "NIH",
        "title": "Aging Research",
        "foa_code": "PA-25-001",
        "grant_url": "https://grants.nih.gov/1",
    }]
    assert [s["reason"] for s in result.skipped] == [
        "Duplicate FOA code in CSV",
        "Missing title",
        "Missing or invalid URL",
        "Duplicate URL in CSV",
    ]


def test_parse_csv_joins_multiline_records():
    text = NIH_HEADER + '\n"Aging\nResearch",2025-01-01,2026-01-01,R01,NIH,NIA,,PA-1,PA,No,https://x.org/1\n'

    result = parse_csv(text, "NIH")

    assert len(result.records) == 1
    assert result.records[0]["title"] == "Aging Research"


def test_parse_nsf_csv_uses_solicitation_url():
    header = ",".join(NSF_REQUIRED_COLUMNS)
    row = "Quantum,Synopsis,Grant,2025-10-01,No,PGM1,NSF 25-500,Active,2025-01-01,https://nsf.gov/p,Program,https://nsf.gov/sol"

    result = parse_csv(f"{header}\n{row}", "NSF")

    assert result.records[0]["foa_code"] == "NSF 25-500"
    assert result.records[0]["grant_url"] == "https://nsf.gov/sol"


def test_parse_csv_errors():
    with pytest.raises(ValueError, match="NIH or NSF"):
        parse_csv(NIH_HEADER, "DOE")
    with pytest.raises(ValueError, match="empty"):
        parse_csv("", "NIH")
    with pytest.raises(ValueError, match="Missing required columns: .*URL"):
        parse_csv("Title,Release_Date", "NIH")


def test_filter_existing(store):
    store.insert("foas", {"foa_code": "PA-25-001", "grant_url": "https://old"})
    store.insert("foas", {"foa_code": "PA-OLD", "grant_url": "https://grants.nih.gov/2"})
    text = "\n".join([
        NIH_HEADER,
        nih_row("Known Code", "PA-25-001", "https://grants.nih.gov/1"),
        nih_row("Known Url", "PA-25-002", "https://grants.nih.gov/2"),
        nih_row("New", "PA-25-003", "https://grants.nih.gov/3"),
    ])

    result = filter_existing(parse_csv(text, "NIH"), store).to_dict()

    assert [r["title"] for r in result["records"]] == ["New"]
    assert [s["reason"] for s in result["skipped"]] == [
        "FOA code already in database",
        "URL already in database",
    ]
