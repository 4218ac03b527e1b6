import io
import json

import pytest
from docx import Document

from src.generation.ai_edit import (
    SuggestionParseError,
    is_valid_edit,
    parse_suggestions,
    suggest_edits,
    summarize_tags,
)
from src.generation.export import BUCKET, export_document, to_docx, to_pdf
from src.generation.processors import (
    GeneralDocumentProcessor,
    ProjectDescriptionProcessor,
    format_to_html,
    section_targets,
)
from src.generation.service import generate_document_content
from src.generation.templates import DEFAULT_TEMPLATE, get_document_content, select_template
from tests.conftest import FakeLLM


PROJECT_ID = "project-1"


def add_research_description(index, text="We study sleep in mice."):
    index.upsert_text(text, {
        "type": "research_description",
        "projectId": PROJECT_ID,
        "chunkIndex": 1,
        "text": text,
    })


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

def test_format_to_html_wraps_lines():
    assert format_to_html("First line\n\n  Second line  \n") == "<p>First line</p>\n<p>Second line</p>"
    assert format_to_html("") == ""


def test_section_targets():
    assert section_targets(20) == (2250, "3.0")
    assert section_targets(40) == (4500, "6.0")


def test_general_document_uses_context_and_answers(index):
    add_research_description(index)
    llm = FakeLLM(["Plain paragraph one.\nPlain paragraph two."])
    document = {"id": "doc-1", "name": "Biosketch", "page_limit": 2, "prompt": "Write a biosketch."}

    result = GeneralDocumentProcessor(index, llm).process(
        document, PROJECT_ID, answers=[{"label": "Position", "answer": "Assistant Professor"}],
    )

    assert result.error is None
    assert result.content == "<p>Plain paragraph one.</p>\n<p>Plain paragraph two.</p>"
    system, user = llm.calls[0]["messages"]
    assert "<h1>Biosketch</h1>" in system["content"]
    assert "1500 words" in system["content"]
    assert user["content"].startswith("Write a biosketch.")
    assert "User Provided Information: Position: Assistant Professor" in user["content"]
    assert "Research Description Context: We study sleep in mice." in user["content"]


def test_general_document_keeps_html(index):
    llm = FakeLLM(["<h1>Budget</h1>\n<p>Details.</p>"])
    result = GeneralDocumentProcessor(index, llm).process({"name": "Budget"}, PROJECT_ID)
    assert result.content == "<h1>Budget</h1>\n<p>Details.</p>"


def test_general_document_reports_llm_errors(index):
    result = GeneralDocumentProcessor(index, FakeLLM([RuntimeError("rate limited")])).process({}, PROJECT_ID)
    assert result.content == ""
    assert result.to_dict() == {"content": "", "error": "rate limited"}


def section_answer(messages):
    heading = messages[0]["content"].split("Write only the assigned section: ")[1].split("\n")[0]
    return json.dumps({"content": f"{heading} text.\nMore {heading} text."})


def test_project_description_keeps_outline_order(index):
    add_research_description(index)
    outline = {"items": [
        {"heading": "Summary", "description": "Overview", "percentage": 40},
        {"heading": "Aims", "description": "Aims", "percentage": 60},
    ]}
    llm = FakeLLM([json.dumps(outline), section_answer, section_answer])

    result = ProjectDescriptionProcessor(index, llm).process({"id": "pd"}, PROJECT_ID)

    assert result.error is None
    assert result.content == (
        "<h1>Summary</h1>\n<p>Summary text.</p>\n<p>More Summary text.</p>\n\n"
        "<h1>Aims</h1>\n<p>Aims text.</p>\n<p>More Aims text.</p>\n"
    )
    assert "Research Descriptions: We study sleep in mice." in llm.calls[0]["messages"][1]["content"]


def test_project_description_without_outline(index):
    result = ProjectDescriptionProcessor(index, FakeLLM(['{"items": []}'])).process({}, PROJECT_ID)
    assert result.error == "Failed to generate outline"


def test_service_picks_processor(store, index):
    document = store.insert("documents", {"name": "Project Description", "custom_processor": "project-description"})
    project = store.insert("research_projects", {"foa": None})
    llm = FakeLLM(['{"items": [{"heading": "Aims", "percentage": 100}]}', section_answer])

    result = generate_document_content(document["id"], project["id"], store, index, llm)

    assert result.content.startswith("<h1>Aims</h1>")


def test_service_missing_document(store, index):
    project = store.insert("research_projects", {})
    result = generate_document_content("missing", project["id"], store, index, FakeLLM())
    assert result.error == "Document not found"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def test_select_template_is_case_insensitive():
    assert select_template("NIH_CAREER_Guide.pdf") == select_template("career.pdf")
    assert select_template("career.pdf") != select_template("training.pdf")
    assert select_template("notes.pdf") == DEFAULT_TEMPLATE
    assert select_template("") == DEFAULT_TEMPLATE


def test_get_document_content_appends_vectorized_text(index):
    index.upsert_text("Due dates apply.", {
        "type": "vectorized_document", "fileName": "nsf_guide.pdf", "chunkIndex": 0, "text": "Due dates apply.",
    })

    content = get_document_content("nsf_guide.pdf", index)

    assert content.startswith(select_template("nsf_guide.pdf"))
    assert content.endswith("\n\n Full Document For Context:\n\nDue dates apply.")
    assert get_document_content("sbir.pdf", index) == select_template("sbir.pdf")


# ---------------------------------------------------------------------------
# AI edit
# ---------------------------------------------------------------------------

def test_summarize_tags():
    assert summarize_tags({"tagCounts": {"h1": 1, "p": 3}}) == "Document structure:\n- h1: 1 tags\n- p: 3 tags\n"
    assert summarize_tags(None) == "Document structure:\n"


@pytest.mark.parametrize("edit,valid", [
    ({"operation": "replace", "originalContent": "<p>a</p>", "newContent": "<p>b</p>"}, True),
    ({"operation": "replace", "originalContent": "<p>a</p>", "newContent": "<p>a</p>"}, False),
    ({"operation": "add", "newContent": "<p>x</p>", "position": "after", "referenceNodeType": "p", "referenceNodeIndex": 0}, True),
    ({"operation": "add", "newContent": "<p>x</p>", "position": "after"}, False),
    ({"operation": "delete", "tagType": "p", "tagIndex": 0}, True),
    ({"operation": "delete", "tagType": "p"}, False),
])
def test_is_valid_edit(edit, valid):
    assert is_valid_edit(edit) is valid


def test_parse_suggestions_drops_noop_edits():
    answer = "Sure!\n" + json.dumps({
        "type": "replace",
        "edits": [
            {"operation": "replace", "originalContent": "<p>a</p>", "newContent": "<p>a</p>"},
            {"operation": "delete", "tagType": "p", "tagIndex": 2},
        ],
        "reason": "Tightened",
    })

    suggestions = parse_suggestions(answer)

    assert len(suggestions) == 1
    assert suggestions[0]["edits"] == [{"operation": "delete", "tagType": "p", "tagIndex": 2}]


def test_parse_suggestions_shapes():
    assert parse_suggestions('[{"type": "replace", "edits": []}]') == [{"type": "replace", "edits": []}]
    assert parse_suggestions('{"type": "replace", "edits": [{"operation": "replace"}]}') == []
    assert parse_suggestions("") == []
    with pytest.raises(SuggestionParseError):
        parse_suggestions('{"suggestions": []}')
    with pytest.raises(SuggestionParseError):
        parse_suggestions("no json here")


def test_suggest_edits_sends_content_and_instruction():
    llm = FakeLLM(['{"type": "replace", "edits": [{"operation": "delete", "tagType": "p", "tagIndex": 0}], "reason": "r"}'])

    suggestions = suggest_edits(llm, "<p>Old</p>", "Shorten it", {"tagCounts": {"p": 1}})

    assert suggestions[0]["reason"] == "r"
    assert llm.calls[0]["model"] == "gpt-4o"
    assert "- p: 1 tags" in llm.calls[0]["messages"][0]["content"]
    assert llm.calls[0]["messages"][1]["content"] == "HTML CONTENT:\n<p>Old</p>\n\nINSTRUCTION: Shorten it"


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

HTML = "<h1>Specific Aims</h1><p>We <b>will</b> test <i>two</i> ideas &amp; more.</p>"


def test_to_pdf():
    assert to_pdf(HTML).startswith(b"%PDF")
    assert to_pdf("").startswith(b"%PDF")


def test_to_docx_keeps_runs():
    document = Document(io.BytesIO(to_docx(HTML)))

    paragraphs = document.paragraphs
    assert [p.text for p in paragraphs] == ["Specific Aims", "We will test two ideas & more."]
    assert all(run.bold for run in paragraphs[0].runs)
    runs = {run.text: run for run in paragraphs[1].runs}
    assert runs["will"].bold
    assert runs["two"].italic


def test_export_document_replaces_previous_export(store, files):
    first = export_document("doc-1", PROJECT_ID, "pdf", HTML, store, files)
    second = export_document("doc-1", PROJECT_ID, "docx", HTML, store, files)

    assert second["fileUrl"].startswith(f"/files/{BUCKET}/{PROJECT_ID}/doc-1/document-")
    assert second["fileUrl"].endswith(".docx")
    assert len(files.list(BUCKET, f"{PROJECT_ID}/doc-1")) == 1

    records = store.select("completed_documents")
    assert len(records) == 1
    assert records[0]["file_url"] == second["fileUrl"]
    assert records[0]["file_type"] == "docx"
    assert first["fileUrl"].endswith(".pdf")
