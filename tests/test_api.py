"""
API tests against in-memory clients.

The server's lazily created clients are replaced with the fakes from
conftest, so no database, Pinecone or OpenAI access is needed.
"""

import json

import pytest
from fastapi.testclient import TestClient

from src.api import server
from src.extractors.csv_import import NIH_REQUIRED_COLUMNS
from src.storage.file_store import LocalFileStore
from tests.conftest import FakeIndex, FakeLLM, FakePerplexity, FakeStore


USER = {"X-User-Id": "user-1"}


@pytest.fixture
def fakes(monkeypatch, tmp_path):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    fakes = {
        "store": FakeStore(),
        "index": FakeIndex(),
        "files": LocalFileStore(root=str(tmp_path / "storage"), base_url="/files"),
        "llm": FakeLLM(),
        "perplexity": FakePerplexity(),
    }
    monkeypatch.setattr(server, "store", fakes["store"])
    monkeypatch.setattr(server, "vector_index", fakes["index"])
    monkeypatch.setattr(server, "file_store", fakes["files"])
    monkeypatch.setattr(server, "llm_client", fakes["llm"])
    monkeypatch.setattr(server, "perplexity_client", fakes["perplexity"])
    monkeypatch.setattr(server, "gemini_client", None)
    return fakes


@pytest.fixture
def client(fakes):
    return TestClient(server.app)


# ---------------------------------------------------------------------------
# Health / auth
# ---------------------------------------------------------------------------

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "ok", "vector_index": "ok"}


@pytest.mark.parametrize("method,path", [
    ("get", "/vectorize/documents"),
    ("get", "/funding-opportunities"),
    ("post", "/equipment/analyze"),
    ("delete", "/documents/doc-1/completed"),
])
def test_user_routes_require_header(client, method, path):
    response = getattr(client, method)(path, **({"json": {}} if method == "post" else {}))
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_search_routes_unauthorized_shape(client):
    assert client.get("/funding-opportunities/search").json() == {"error": "Unauthorized", "foas": [], "total": 0}
    assert client.get("/organizations/search").json() == {"error": "Unauthorized", "organizations": [], "total": 0}


# ---------------------------------------------------------------------------
# Questionnaires
# ---------------------------------------------------------------------------

def test_application_factors(client, fakes):
    assert client.post("/application-factors", json={}).status_code == 400
    assert client.post("/application-factors", json={"projectId": "p1"}).json() == {"error": "Missing question ID"}

    fakes["llm"].responses.append(json.dumps({
        "isAnswerComplete": False, "finalAnswer": "", "isUncertaintyExpressed": False,
        "meetsCriteria": False, "message": "Which agency?", "missingCriteria": ["agency"],
    }))
    response = client.post("/application-factors", json={
        "projectId": "p1",
        "currentQuestion": "agency_alignment",
        "messages": [{"role": "user", "content": "Not sure yet"}],
    })

    assert response.status_code == 200
    assert response.json()["message"] == "Which agency?"
    assert response.json()["missingCriteria"] == ["agency"]


def test_grant_recommendations_incomplete(client, fakes):
    project = fakes["store"].insert("research_projects", {"application_factors": {}})

    response = client.post("/application-factors/grant-recommendations", json={"projectId": project["id"]})

    assert response.status_code == 400
    assert response.json()["applicationFactorsComplete"] is False


def test_generate_requirement_questions_uses_openai_without_gemini(client, fakes):
    project = fakes["store"].insert("research_projects", {})
    passes = json.dumps({"requiredDocuments": [{"documentName": "Research Plan"}], "questions": []})
    fakes["llm"].responses.extend([passes] * 3)

    response = client.post("/application-requirements/generate-questions", json={"projectId": project["id"]})

    assert response.status_code == 200
    assert response.json()["requiredDocuments"] == [{"documentName": "Research Plan", "mustDraft": True}]
    assert all(call["json_mode"] for call in fakes["llm"].calls)


# ---------------------------------------------------------------------------
# Attachments and documents
# ---------------------------------------------------------------------------

def test_attachment_crud(client):
    body = {"name": "Letter", "file_url": "/files/a/letter.pdf", "file_type": "application/pdf", "project_id": "p1"}
    assert client.post("/attachments", json=body).status_code == 401
    assert client.post("/attachments", json={"name": "x"}, headers=USER).status_code == 400

    created = client.post("/attachments", json=body, headers=USER).json()["data"]
    assert created["user_id"] == "user-1"
    assert created["description"] == ""

    assert client.get("/attachments", params={"projectId": "p1"}).json()["data"][0]["id"] == created["id"]
    assert client.get("/attachment-by-id").status_code == 400

    updated = client.put(
        "/attachment-by-id", params={"id": created["id"]}, json={"description": "Support letter"}, headers=USER,
    ).json()["data"]
    assert updated["description"] == "Support letter"
    assert updated["name"] == "Letter"

    assert client.delete("/attachment-by-id", params={"id": created["id"]}, headers=USER).json() == {"success": True}
    assert client.get("/attachment-by-id", params={"id": created["id"]}).status_code == 404


def test_document_routes(client):
    document = client.post("/documents", json={"name": "Budget Justification"}).json()

    assert client.get(f"/documents/{document['id']}").json()["name"] == "Budget Justification"
    assert client.put(f"/documents/{document['id']}", json={"page_limit": 3}).json()["page_limit"] == 3
    assert client.get(f"/attachments/{document['id']}").json()["id"] == document["id"]
    assert client.delete(f"/documents/{document['id']}").status_code == 204
    assert client.get(f"/documents/{document['id']}").status_code == 404


def test_generate_document_saves_once(client, fakes):
    document = fakes["store"].insert("documents", {"name": "Biosketch", "prompt": "Write it."})
    project = fakes["store"].insert("research_projects", {"foa": None})
    fakes["llm"].responses.append("<h1>Biosketch</h1>\n<p>Text.</p>")
    body = {"documentId": document["id"], "projectId": project["id"]}

    first = client.post("/documents/generate", json=body).json()
    second = client.post("/documents/generate", json=body).json()

    assert first == second == {"content": "<h1>Biosketch</h1>\n<p>Text.</p>"}
    assert len(fakes["llm"].calls) == 1
    completed = client.get("/documents/completed", params={"documentId": document["id"]}).json()
    assert completed["content"] == first["content"]


def test_custom_document_lifecycle(client, fakes):
    db = fakes["store"]
    foa = db.insert("foas", {"agency": "NSF", "foa_code": "NSF 25-1", "grant_url": "https://nsf.gov/1"})
    project = db.insert("research_projects", {"foa": foa["id"], "attachments": {}})

    document = client.post("/documents/custom-document", json={
        "name": "Data Plan", "prompt": "Describe data sharing.", "project_id": project["id"],
    }, headers=USER).json()

    assert document["agency"] == "NSF"
    assert document["sources"] == ["chalk_talk", "foa", "research_description"]
    assert document["custom_processor"] is None

    db.update("research_projects", {"id": project["id"]}, {"attachments": {document["id"]: {"completed": True}}})
    exported = client.post("/documents/export", json={
        "documentId": document["id"], "projectId": project["id"], "format": "pdf", "content": "<p>Plan</p>",
    }).json()
    file_response = client.get(exported["fileUrl"])
    assert file_response.status_code == 200
    assert file_response.content.startswith(b"%PDF")

    body = {"documentId": document["id"], "projectId": "other"}
    assert client.post("/documents/custom-document/delete", json=body, headers=USER).status_code == 403

    body["projectId"] = project["id"]
    assert client.post("/documents/custom-document/delete", json=body, headers=USER).json() == {"success": True}
    assert db.get("documents", document["id"]) is None
    assert db.select("completed_documents") == []
    assert db.get("research_projects", project["id"])["attachments"] == {}
    assert client.get(exported["fileUrl"]).status_code == 404


def test_shared_documents_cannot_be_deleted_as_custom(client, fakes):
    document = fakes["store"].insert("documents", {"name": "Research Strategy", "project_id": None})
    body = {"documentId": document["id"], "projectId": "p1"}

    response = client.post("/documents/custom-document/delete", json=body, headers=USER)

    assert response.status_code == 403
    assert response.json() == {"error": "Only custom documents can be deleted"}


def test_match_validates_input(client, fakes):
    assert client.post("/documents/match", json={"optionalDocuments": "x"}).status_code == 400

    fakes["llm"].responses.append('{"matchedDocumentIds": ["d1"]}')
    response = client.post("/documents/match", json={
        "optionalDocuments": [{"id": "d1", "name": "Research Plan"}],
        "requiredDocuments": ["Research Strategy"],
    })
    assert response.json() == {"matchedDocumentIds": ["d1"]}


def test_ai_edit_parse_failure(client, fakes):
    fakes["llm"].responses.append('{"unexpected": true}')
    response = client.post("/attachments/ai-edit", json={"content": "<p>x</p>", "instruction": "Shorter"})
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to parse AI suggestions"}


# ---------------------------------------------------------------------------
# Funding opportunities
# ---------------------------------------------------------------------------

EXTRACTED = {
    "agency": "NIH",
    "title": "Sleep and Memory",
    "foa_code": "PA-25-100",
    "grant_type": {"R01": True},
    "description": "Supports research on sleep and memory consolidation.",
    "deadline": "June 5, 2025",
    "published_date": "2025-01-15",
    "num_awards": 3,
    "organization_eligibility": {"non_profit": True},
}

HTML = b"<html><body><h1>Sleep and Memory</h1><p>Applications welcome.</p></body></html>"


def test_upload_search_chat_and_delete_foa(client, fakes):
    fakes["llm"].responses.extend([json.dumps(EXTRACTED), json.dumps(EXTRACTED)])

    response = client.post(
        "/funding-opportunities", files={"htmlFile": ("foa.html", HTML, "text/html")}, headers=USER,
    )
    assert response.status_code == 200
    foa = response.json()["data"]
    assert foa["foa_code"] == "PA-25-100"
    assert fakes["store"].get("foas", foa["id"])["pinecone_ids"]

    duplicate = client.post(
        "/funding-opportunities", files={"htmlFile": ("foa.html", HTML, "text/html")}, headers=USER,
    )
    assert duplicate.status_code == 409

    found = client.get(
        "/funding-opportunities/search", params={"q": "sleep memory", "userPostdoc": "false"}, headers=USER,
    ).json()
    assert found["total"] == 1
    assert found["foas"][0]["foa_code"] == "PA-25-100"

    fakes["llm"].responses.append("Up to three awards.")
    chat = client.post(f"/funding-opportunity/{foa['id']}/chat", json={
        "messages": [{"role": "user", "content": "How many awards?"}],
    })
    assert chat.json() == {"message": "Up to three awards."}

    deleted = client.delete(f"/funding-opportunities/{foa['id']}", headers=USER)
    assert deleted.json() == {"message": "FOA and associated vectors deleted successfully", "id": foa["id"]}
    assert fakes["index"].vectors == {}


def test_upload_rejects_other_files(client):
    response = client.post(
        "/funding-opportunities", files={"htmlFile": ("foa.pdf", b"%PDF", "application/pdf")}, headers=USER,
    )
    assert response.status_code == 400
    assert client.post("/funding-opportunities", headers=USER).json() == {"error": "No HTML file provided"}


def test_search_rejects_bad_organization_filter(client):
    response = client.get(
        "/funding-opportunities/search", params={"organization_eligibility": "{bad"}, headers=USER,
    )
    assert response.status_code == 400
    assert response.json()["foas"] == []


def test_process_csv(client, fakes):
    fakes["store"].insert("foas", {"foa_code": "PA-1", "grant_url": "https://grants.nih.gov/1"})
    rows = [
        ",".join(NIH_REQUIRED_COLUMNS),
        "Known,2025-01-01,2026-01-01,R01,NIH,NIA,,PA-1,PA,No,https://grants.nih.gov/1",
        "New,2025-01-01,2026-01-01,R21,NIH,NIA,,PA-2,PA,No,https://grants.nih.gov/2",
    ]
    files = {"file": ("nih.csv", "\n".join(rows).encode(), "text/csv")}

    result = client.post("/funding-opportunities/process-csv", files=files, data={"agency": "NIH"}, headers=USER)

    assert result.status_code == 200
    assert [r["foa_code"] for r in result.json()["records"]] == ["PA-2"]
    assert result.json()["skipped"][0]["reason"] == "FOA code already in database"

    bad = client.post("/funding-opportunities/process-csv", files=files, data={"agency": "DOE"}, headers=USER)
    assert bad.json() == {"error": "Agency must be NIH or NSF"}


def test_vectorize_foa_route(client, fakes):
    foa = fakes["store"].insert("foas", {**EXTRACTED, "grant_url": None})

    response = client.post(f"/funding-opportunities/{foa['id']}/vectorize", json={"text": "Full text."}, headers=USER)

    assert response.status_code == 200
    assert len(response.json()["vectorIds"]) == 2
    assert client.post("/funding-opportunities/missing/vectorize", headers=USER).status_code == 404


def test_foa_chat_not_found(client):
    response = client.post("/funding-opportunity/missing/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    assert response.status_code == 404


def test_extract_grant_parse_failure(client, fakes):
    fakes["llm"].responses.append("not json")
    response = client.post("/extract-grant", json={"text": "Some grant"}, headers=USER)
    assert response.status_code == 422


def test_fetch_url_validates(client):
    assert client.post("/fetch-url", json={"url": "not a url"}, headers=USER).json() == {"error": "Invalid URL format"}


# ---------------------------------------------------------------------------
# Organizations / researchers / background work
# ---------------------------------------------------------------------------

def test_organization_search(client, fakes):
    fakes["store"].insert("organizations", {"name": "Stanford University"})
    fakes["store"].insert("organizations", {"name": "Broad Institute"})

    result = client.get("/organizations/search", params={"q": "stan"}, headers=USER).json()

    assert result["total"] == 1
    assert result["organizations"][0]["name"] == "Stanford University"
    assert result["error"] is None


def test_delete_researcher(client, fakes):
    db = fakes["store"]
    researcher = db.insert("researcher_profiles", {"name": "Dr. Chen", "pinecone_id": "v1,v2"})
    db.insert("processing_queue", {"content_type": "researcher", "content_id": researcher["id"]})

    result = client.delete(f"/researchers/{researcher['id']}").json()

    assert result["deleted"]["queueItems"] == 1
    assert result["deleted"]["pineconeIds"] == ["v1", "v2"]
    assert fakes["index"].deleted == ["v1", "v2"]
    assert client.delete(f"/researchers/{researcher['id']}").status_code == 404


def test_process_all_runs_in_background(client, fakes, monkeypatch):
    calls = []
    monkeypatch.setattr(server, "process_all", lambda *args: calls.append(args))

    response = client.post("/project/process-all", json={"projectId": "p1"})

    assert response.json() == {"message": "Background processing started", "status": "success"}
    assert calls[0][0] == "p1"
    assert calls[0][4] is fakes["perplexity"]


def test_sources_stream_requires_project(client):
    response = client.get("/sources")
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.text == 'data: {"error": "Project ID is required"}\n\n'


def test_sources_stream_events(client, fakes):
    fakes["store"].insert("chalk_talks", {"project_id": "p1", "transcription": "Sleep matters."})
    fakes["llm"].responses.extend([
        json.dumps({"questions": [{"id": "q1", "question": "Does sleep matter?", "context": "Sleep matters."}]}),
        json.dumps({"sources": [{"url": "https://example.org/paper"}]}),
    ])

    response = client.post("/sources", json={"projectId": "p1"})

    frames = [json.loads(line[len("data: "):]) for line in response.text.split("\n\n") if line]
    assert frames[0] == {"step": "starting"}
    assert frames[-1]["step"] == "complete"
    assert frames[-1]["response"]["sources"] == [{"url": "https://example.org/paper"}]


def test_trigger_transcription(client, fakes):
    talk = fakes["store"].insert("chalk_talks", {"transcription_status": "pending"})
    fakes["files"].upload("chalk-talks", "p1/talk.mp3", b"audio")

    assert client.post("/trigger-transcription", json={}).status_code == 400
    response = client.post("/trigger-transcription", json={"chalkTalkId": talk["id"], "filePath": "p1/talk.mp3"})

    assert response.json()["success"] is True
    assert fakes["store"].get("chalk_talks", talk["id"])["transcription"] == "transcribed text"


def test_process_queue_route(client):
    assert client.post("/vectorization/process-queue").json() == {"message": "No items to process"}


# ---------------------------------------------------------------------------
# Vectorized documents
# ---------------------------------------------------------------------------

def test_vectorized_document_routes(client, fakes):
    response = client.post("/vectorize/extract-text", files={"file": ("a.txt", b"text", "text/plain")}, headers=USER)
    assert response.json() == {"error": "Only PDF files are supported"}

    body = {
        "fileName": "guide.pdf",
        "text": "Hello world.",
        "pageInfo": [{"pageNumber": 1, "startIndex": 0, "endIndex": 12}],
        "metadata": {"fileType": "application/pdf"},
    }
    assert client.post("/vectorize/store", json={"fileName": "x"}, headers=USER).status_code == 400
    stored = client.post("/vectorize/store", json=body, headers=USER).json()
    assert stored["success"] is True

    listed = client.get("/vectorize/documents", headers=USER).json()
    assert [d["fileName"] for d in listed] == ["guide.pdf"]
    vectors = client.get(f"/vectorize/documents/{stored['documentId']}/vectors", headers=USER).json()["vectors"]
    assert len(vectors) == 1

    missing = client.delete("/vectorize/documents/by-filename/other.pdf", headers=USER)
    assert missing.status_code == 404
    deleted = client.delete("/vectorize/documents/by-filename/guide.pdf", headers=USER).json()
    assert deleted["deletedVectors"] == 1
    assert client.delete(f"/vectorize/documents/{stored['documentId']}", headers=USER).status_code == 404
