"""
Grant Application Assistant API Server

JSON API over the project, FOA, document and vector stores.

Endpoints:
    GET    /health                                   - Health check
    GET    /files/{bucket}/{path}                    - Serve a stored file

    POST   /application-factors                      - Factor questionnaire (single or batch)
    POST   /application-factors/grant-recommendations
    POST   /application-requirements                 - Requirements chat
    POST   /application-requirements/generate-questions

    GET    /attachments, POST /attachments
    GET    /attachment-by-id?id=, PUT, DELETE
    GET    /attachments/{id}
    POST   /attachments/generate-all
    POST   /attachments/ai-edit

    GET    /documents, POST /documents
    GET    /documents/completed, POST, PUT
    POST   /documents/custom-document
    POST   /documents/custom-document/delete
    POST   /documents/generate
    POST   /documents/export
    POST   /documents/match
    GET    /documents/{id}, PUT, DELETE
    DELETE /documents/{id}/completed

    POST   /equipment/analyze
    POST   /extract-grant
    POST   /fetch-url

    GET    /funding-opportunities, POST (multipart htmlFile)
    GET    /funding-opportunities/search
    POST   /funding-opportunities/extract
    POST   /funding-opportunities/process-csv
    POST   /funding-opportunities/{id}/vectorize
    DELETE /funding-opportunities/{id}
    POST   /funding-opportunity/{id}/chat

    GET    /organizations/search
    POST   /project/process-all
    DELETE /researchers/{id}

    GET    /sources, POST /sources                   - SSE pipeline
    POST   /sources/background

    POST   /trigger-transcription
    POST   /transcribe
    POST   /vectorization/process-queue

    POST   /vectorize/extract-text
    POST   /vectorize/store
    GET    /vectorize/documents
    GET    /vectorize/documents/{id}/vectors
    DELETE /vectorize/documents/by-filename/{filename}
    DELETE /vectorize/documents/{id}

Errors are returned as {"error": "..."} with an HTTP status code.
Routes that act for a user read it from the X-User-Id header.
"""

import os
import json
import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Dict, Any, Iterator
from urllib.parse import urlparse

import requests
from fastapi import FastAPI, Query, Header, Body, File, Form, UploadFile, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse, JSONResponse, FileResponse, Response

from src.api.schemas import (
    HealthResponse,
    ChatMessage,
    ApplicationFactorsRequest,
    ProjectRequest,
    RequirementsChatRequest,
    GenerateRequirementsRequest,
    AttachmentCreate,
    AttachmentUpdate,
    AiEditRequest,
    DocumentRequest,
    CompletedDocumentCreate,
    CompletedDocumentUpdate,
    CustomDocumentCreate,
    ExportRequest,
    MatchRequest,
    ExtractGrantRequest,
    UrlRequest,
    FoaChatRequest,
    VectorizeFoaRequest,
    TranscriptionRequest,
    VectorizeStoreRequest,
)
from src.storage.postgres_store import PostgresStore, DuplicateRecordError
from src.storage.pinecone_index import PineconeVectorIndex
from src.storage.file_store import LocalFileStore
from src.application.factors import analyze_question, analyze_all, latest_chalk_talk_transcription
from src.application.recommendations import recommend_grants, FactorsIncompleteError
from src.application.requirements import requirements_chat, generate_requirements
from src.application.background import generate_attachments, process_all, process_sources
from src.extractors.csv_import import parse_csv, filter_existing
from src.extractors.document_matcher import match_documents, InvalidMatcherResponse
from src.extractors.equipment import analyze_project_equipment, NoFundingOpportunityError
from src.extractors.funding_opportunity import FundingOpportunityExtractor
from src.extractors.html_text import fetch_html, fetch_page_text, strip_html
from src.generation.ai_edit import suggest_edits, SuggestionParseError
from src.generation.export import export_document, BUCKET as COMPLETED_DOCUMENTS_BUCKET
from src.generation.service import generate_document_content
from src.sources.pipeline import run_pipeline
from src.vectorization.documents import VectorizedDocuments
from src.vectorization.foa_chat import chat_with_foa, FoaNotFoundError
from src.vectorization.foa_search import FoaSearchParams, search_foas, recommended_grant_codes
from src.vectorization.foa_vectorizer import vectorize_foa, delete_foa_vectors
from src.vectorization.queue import process_queue
from src.vectorization.text_extraction import extract_pdf_pages, describe_pages
from src.vectorization.transcription import transcribe_chalk_talk


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Grant Application Assistant API",
    version="1.0.0",
    description="Research material vectorisation, FOA matching, questionnaires and document drafting.",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Change to specific origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Clients (initialized on first use)
store: Optional[PostgresStore] = None
vector_index: Optional[PineconeVectorIndex] = None
file_store: Optional[LocalFileStore] = None
llm_client = None
gemini_client = None
perplexity_client = None

# foas columns filled from an extraction
FOA_COLUMNS = (
    "agency", "title", "foa_code", "grant_type", "description", "deadline",
    "num_awards", "award_ceiling", "award_floor", "letters_of_intent",
    "preliminary_proposal", "animal_trials", "human_trials",
    "organization_eligibility", "user_eligibility", "grant_url", "published_date",
)

CUSTOM_DOCUMENT_SOURCES = ["chalk_talk", "foa", "research_description"]


# -----------------------------------------------------------------------------
# Client Accessors
# -----------------------------------------------------------------------------

def get_store() -> PostgresStore:
    global store
    if store is None:
        try:
            store = PostgresStore()
            logger.info("✓ Initialized PostgreSQL store")
        except Exception as e:
            logger.error(f"✗ Failed to initialize PostgreSQL store: {e}")
            raise
    return store


def get_vector_index() -> PineconeVectorIndex:
    global vector_index
    if vector_index is None:
        try:
            vector_index = PineconeVectorIndex()
            logger.info("✓ Initialized Pinecone index")
        except Exception as e:
            logger.error(f"✗ Failed to initialize Pinecone index: {e}")
            raise
    return vector_index


def get_file_store() -> LocalFileStore:
    global file_store
    if file_store is None:
        file_store = LocalFileStore()
    return file_store


def get_llm():
    global llm_client
    if llm_client is None:
        try:
            from src.llm.client import LLMClient
            llm_client = LLMClient(model="gpt-4o-mini")
            logger.info("✓ Initialized OpenAI client")
        except Exception as e:
            logger.error(f"✗ Failed to initialize OpenAI client: {e}")
            raise
    return llm_client


def get_gemini():
    """Gemini client, or None when GEMINI_API_KEY is not set."""
    global gemini_client
    if gemini_client is None and os.getenv("GEMINI_API_KEY"):
        try:
            from src.llm.gemini_client import GeminiClient
            gemini_client = GeminiClient()
            logger.info("✓ Initialized Gemini client")
        except Exception as e:
            logger.error(f"✗ Failed to initialize Gemini client, using OpenAI only: {e}")
    return gemini_client


def get_perplexity():
    global perplexity_client
    if perplexity_client is None:
        try:
            from src.llm.perplexity_client import PerplexityClient
            perplexity_client = PerplexityClient()
            logger.info("✓ Initialized Perplexity client")
        except Exception as e:
            logger.error(f"✗ Failed to initialize Perplexity client: {e}")
            raise
    return perplexity_client


# -----------------------------------------------------------------------------
# Utility Functions
# -----------------------------------------------------------------------------

def error_response(message: str, status_code: int = 500, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def unauthorized() -> JSONResponse:
    return error_response("Unauthorized", 401)


def _messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    return [{"role": m.role, "content": m.content} for m in messages]


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def _sse(events: Iterator[Dict[str, Any]]) -> Iterator[str]:
    for event in events:
        yield f"data: {json.dumps(event)}\n\n"


def _sse_response(events: Iterator[Dict[str, Any]]) -> StreamingResponse:
    return StreamingResponse(
        _sse(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def _remove_completed_files(rows: List[Dict[str, Any]]):
    """Delete exported files for completed_documents rows; failures are logged."""
    paths = [row["file_path"] for row in rows if row.get("file_path")]
    if not paths:
        return
    try:
        removed = get_file_store().remove(COMPLETED_DOCUMENTS_BUCKET, paths)
        logger.info(f"Deleted {removed} exported files")
    except Exception as e:
        logger.warning(f"Failed to delete exported files {paths}: {e}")


def _vectorize_foa_job(foa: Dict[str, Any], full_text: Optional[str]):
    """Background FOA vectorisation; failures are logged."""
    try:
        vectorize_foa(foa, full_text, get_store(), get_vector_index())
    except Exception as e:
        logger.error(f"Background vectorization failed for FOA {foa.get('id')}: {e}")


def _transcription_job(chalk_talk_id: str, file_path: str):
    try:
        transcribe_chalk_talk(chalk_talk_id, file_path, get_store(), get_file_store(), get_llm())
    except Exception as e:
        logger.error(f"Transcription failed for chalk talk {chalk_talk_id}: {e}")


# -----------------------------------------------------------------------------
# Health / Files
# -----------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
def health():
    """
    Health check endpoint.

    Returns:
        Overall status plus database and vector index connectivity
    """
    try:
        database = "ok" if get_store().ping() else "unavailable"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = "unavailable"

    try:
        get_vector_index().get_index_stats()
        index_status = "ok"
    except Exception as e:
        logger.error(f"Vector index health check failed: {e}")
        index_status = "unavailable"

    healthy = database == "ok" and index_status == "ok"
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        database=database,
        vector_index=index_status,
    )


@app.get("/files/{bucket}/{path:path}")
def get_file(bucket: str, path: str):
    files = get_file_store()
    if not files.exists(bucket, path):
        return error_response("File not found", 404)
    return FileResponse(files.local_path(bucket, path))


# -----------------------------------------------------------------------------
# Application Factors / Requirements
# -----------------------------------------------------------------------------

@app.post("/application-factors")
def application_factors(req: ApplicationFactorsRequest):
    """
    Assess questionnaire answers.

    Batch mode (analyzeAll + questions) assesses every question against the
    research description and latest chalk talk; otherwise the current
    question is assessed against the chat history.
    """
    if not req.project_id:
        return error_response("Missing project ID", 400)

    try:
        if req.analyze_all and req.questions:
            transcription = latest_chalk_talk_transcription(get_store(), req.project_id)
            return analyze_all(get_llm(), req.questions, req.research_description or "", transcription)

        if not req.current_question:
            return error_response("Missing question ID", 400)

        return analyze_question(
            get_llm(),
            req.current_question,
            _messages(req.messages),
            research_description=req.research_description or "",
            criteria=req.criteria,
            question_context=req.current_question_context,
        )
    except Exception as e:
        logger.error(f"Application factors failed: {e}")
        return error_response("Internal server error")


@app.post("/application-factors/grant-recommendations")
def grant_recommendations(req: ProjectRequest):
    if not req.project_id:
        return error_response("Missing project ID", 400)

    try:
        recommendations = recommend_grants(req.project_id, get_store(), get_vector_index(), get_llm())
    except FactorsIncompleteError as e:
        return error_response(str(e), 400, applicationFactorsComplete=False)
    except ValueError as e:
        return error_response(f"Error processing response: {e}. Please try again.")
    except Exception as e:
        logger.error(f"Grant recommendations failed: {e}")
        return error_response("Internal server error")

    return {"recommendations": recommendations, "success": True}


@app.post("/application-requirements")
def application_requirements(req: RequirementsChatRequest):
    if not req.project_id:
        return error_response("Missing project ID", 400)
    if not req.current_question:
        return error_response("Missing question ID", 400)

    try:
        return requirements_chat(
            get_llm(),
            get_store(),
            get_vector_index(),
            req.project_id,
            req.current_question,
            messages=_messages(req.messages),
            criteria=req.criteria or "",
            question_context=req.current_question_context or "",
            document_filename=req.document_filename,
            required_documents=req.required_documents,
        )
    except Exception as e:
        logger.error(f"Requirements chat failed: {e}")
        return error_response("Internal server error")


@app.post("/application-requirements/generate-questions")
def generate_requirement_questions(req: GenerateRequirementsRequest):
    if not req.project_id:
        return error_response("Missing project ID", 400)

    try:
        return generate_requirements(
            get_llm(),
            get_store(),
            get_vector_index(),
            req.project_id,
            research_description=req.research_description or "",
            document_filename=req.document_filename,
            gemini=get_gemini(),
        )
    except Exception as e:
        logger.error(f"Requirement generation failed: {e}")
        return error_response("Internal server error")


# -----------------------------------------------------------------------------
# Attachments
# -----------------------------------------------------------------------------

@app.get("/attachments")
def list_attachments(project_id: Optional[str] = Query(None, alias="projectId")):
    filters = {"project_id": project_id} if project_id else None
    try:
        rows = get_store().select("attachments", filters, order_by=["-created_at"])
    except Exception as e:
        logger.error(f"Error fetching attachments: {e}")
        return error_response("Failed to fetch attachments")
    return {"data": rows}


@app.post("/attachments")
def create_attachment(req: AttachmentCreate, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    if not (req.name and req.file_url and req.file_type and req.project_id):
        return error_response("Missing required fields", 400)

    try:
        row = get_store().insert("attachments", {
            "name": req.name,
            "file_url": req.file_url,
            "file_type": req.file_type,
            "project_id": req.project_id,
            "description": req.description or "",
            "user_id": x_user_id,
        })
    except Exception as e:
        logger.error(f"Error creating attachment: {e}")
        return error_response("Failed to create attachment")
    return {"data": row}


@app.get("/attachment-by-id")
def get_attachment(id: Optional[str] = Query(None)):
    if not id:
        return error_response("ID is required", 400)
    try:
        row = get_store().get("attachments", id)
    except Exception as e:
        logger.error(f"Error fetching attachment: {e}")
        return error_response("Failed to fetch attachment")
    if not row:
        return error_response("Attachment not found", 404)
    return {"data": row}


@app.put("/attachment-by-id")
def update_attachment(
    req: AttachmentUpdate,
    id: Optional[str] = Query(None),
    x_user_id: Optional[str] = Header(None),
):
    if not id:
        return error_response("ID is required", 400)
    if not x_user_id:
        return unauthorized()

    updates = req.model_dump(exclude_unset=True)
    try:
        if updates:
            rows = get_store().update("attachments", {"id": id}, updates)
        else:
            existing = get_store().get("attachments", id)
            rows = [existing] if existing else []
    except Exception as e:
        logger.error(f"Error updating attachment: {e}")
        return error_response("Failed to update attachment")

    if not rows:
        return error_response("Attachment not found", 404)
    return {"data": rows[0]}


@app.delete("/attachment-by-id")
def delete_attachment(id: Optional[str] = Query(None), x_user_id: Optional[str] = Header(None)):
    if not id:
        return error_response("ID is required", 400)
    if not x_user_id:
        return unauthorized()

    try:
        if not get_store().get("attachments", id):
            return error_response("Attachment not found", 404)
        get_store().delete("attachments", {"id": id})
    except Exception as e:
        logger.error(f"Error deleting attachment: {e}")
        return error_response("Failed to delete attachment")
    return {"success": True}


@app.post("/attachments/generate-all")
def generate_all_attachments(req: ProjectRequest):
    """
    Draft every attachment of a project, one document at a time.
    """
    if not req.project_id:
        return error_response("Project ID is required", 400)

    logger.info(f"Processing attachments for project {req.project_id}")
    try:
        processed = generate_attachments(req.project_id, get_store(), get_vector_index(), get_llm())
    except LookupError as e:
        return error_response(str(e))
    except Exception as e:
        logger.error(f"Error in generate-all attachments: {e}")
        return error_response(str(e) or "Failed to complete attachment generation")

    if processed == 0:
        return {"message": "No attachments to process"}
    return {"message": "Attachment generation completed", "processed": processed, "status": "success"}


@app.post("/attachments/ai-edit")
def ai_edit(req: AiEditRequest):
    try:
        suggestions = suggest_edits(get_llm(), req.content, req.instruction, req.html_summary)
    except SuggestionParseError as e:
        logger.error(f"Error parsing suggestions: {e}")
        return error_response("Failed to parse AI suggestions")
    except Exception as e:
        logger.error(f"Error processing AI edit request: {e}")
        return error_response("An error occurred")
    return {"suggestions": suggestions}


@app.get("/attachments/{document_id}")
def get_attachment_document(document_id: str):
    try:
        document = get_store().get("documents", document_id)
    except Exception as e:
        logger.error(f"Error fetching document: {e}")
        return error_response("Failed to fetch document")
    if not document:
        return error_response("Document not found", 404)
    return document


# -----------------------------------------------------------------------------
# Documents
# -----------------------------------------------------------------------------

@app.get("/documents")
def list_documents():
    try:
        return get_store().select("documents", order_by=["-created_at"])
    except Exception as e:
        logger.error(f"Error fetching documents: {e}")
        return error_response("Failed to fetch documents")


@app.post("/documents")
def create_document(document: Dict[str, Any] = Body(...)):
    try:
        return get_store().insert("documents", document)
    except Exception as e:
        logger.error(f"Error creating document: {e}")
        return error_response("Failed to create document")


@app.get("/documents/completed")
def get_completed_document(document_id: Optional[str] = Query(None, alias="documentId")):
    if not document_id:
        return error_response("Document ID is required", 400)
    try:
        rows = get_store().select(
            "completed_documents",
            {"document_id": document_id},
            order_by=["-created_at"],
            limit=1,
        )
    except Exception as e:
        logger.error(f"Error fetching completed document: {e}")
        return error_response("Failed to fetch document")
    if not rows:
        return error_response("Document not found", 404)
    return rows[0]


@app.post("/documents/completed")
def save_completed_document(req: CompletedDocumentCreate):
    values = {"document_id": req.document_id, "content": req.content}
    if req.project_id:
        values["project_id"] = req.project_id
    try:
        return get_store().insert("completed_documents", values)
    except Exception as e:
        logger.error(f"Error saving document: {e}")
        return error_response("Failed to save document")


@app.put("/documents/completed")
def update_completed_document(req: CompletedDocumentUpdate):
    try:
        rows = get_store().update("completed_documents", {"id": req.id}, {"file_url": req.file_url})
    except Exception as e:
        logger.error(f"Error updating document: {e}")
        return error_response("Failed to update document")
    if not rows:
        return error_response("Document not found", 404)
    return rows[0]


@app.post("/documents/custom-document")
def create_custom_document(req: CustomDocumentCreate, x_user_id: Optional[str] = Header(None)):
    """
    Create a project-specific document; its agency comes from the project's FOA.
    """
    if not x_user_id:
        return unauthorized()
    if not req.name or not req.prompt:
        return error_response("Name and prompt are required", 400)

    db = get_store()
    agency = "NIH"
    if req.project_id:
        try:
            project = db.get("research_projects", req.project_id)
            if project and project.get("foa"):
                foa = db.get("foas", project["foa"])
                if foa and foa.get("agency"):
                    agency = foa["agency"]
        except Exception as e:
            logger.error(f"Error fetching project FOA: {e}")

    try:
        document = db.insert("documents", {
            "name": req.name,
            "prompt": req.prompt,
            "page_limit": req.page_limit or None,
            "project_id": req.project_id or None,
            "agency": agency,
            "sources": CUSTOM_DOCUMENT_SOURCES,
            "optional": False,
            "grant_types": [],
            "custom_processor": None,
        })
    except Exception as e:
        logger.error(f"Error creating custom document: {e}")
        return error_response("Failed to create custom document")

    logger.info(f"Custom document created: {document.get('id')}")
    return document


@app.post("/documents/custom-document/delete")
def delete_custom_document(req: DocumentRequest, x_user_id: Optional[str] = Header(None)):
    """
    Delete a custom document with its completed content, exported files
    and attachment entry. Only documents owned by the given project qualify.
    """
    if not x_user_id:
        return unauthorized()
    if not req.document_id or not req.project_id:
        return error_response("Document ID and Project ID are required", 400)

    db = get_store()
    try:
        document = db.get("documents", req.document_id)
        if not document:
            return error_response("Document not found", 404)
        if not document.get("project_id"):
            return error_response("Only custom documents can be deleted", 403)
        if str(document["project_id"]) != str(req.project_id):
            return error_response("Document does not belong to this project", 403)

        project = db.get("research_projects", req.project_id)
        if not project:
            return error_response("Project not found", 404)

        original_attachments = project.get("attachments") or {}
        attachments = {k: v for k, v in original_attachments.items() if k != str(req.document_id)}

        completed = db.select(
            "completed_documents",
            {"document_id": req.document_id, "project_id": req.project_id},
        )
        logger.info(f"Found {len(completed)} completed document records to delete")
        _remove_completed_files(completed)
        if completed:
            db.delete("completed_documents", {"document_id": req.document_id})

        db.update("research_projects", {"id": req.project_id}, {"attachments": attachments})
    except Exception as e:
        logger.error(f"Error deleting custom document {req.document_id}: {e}")
        return error_response("Internal server error")

    try:
        db.delete("documents", {"id": req.document_id})
    except Exception as e:
        logger.error(f"Error deleting document {req.document_id}: {e}")
        db.update("research_projects", {"id": req.project_id}, {"attachments": original_attachments})
        return error_response("Failed to delete document")

    logger.info(f"Deleted document {req.document_id} and all related records")
    return {"success": True}


@app.post("/documents/generate")
def generate_document(req: DocumentRequest):
    """
    Return stored content for the document, generating and saving it first if needed.
    """
    db = get_store()
    try:
        existing = db.select(
            "completed_documents",
            {"document_id": req.document_id, "project_id": req.project_id},
            limit=1,
        )
        if existing:
            return {"content": existing[0].get("content")}

        result = generate_document_content(req.document_id, req.project_id, db, get_vector_index(), get_llm())
        if result.error:
            return error_response(result.error)

        db.insert("completed_documents", {
            "document_id": req.document_id,
            "project_id": req.project_id,
            "content": result.content,
        })
    except Exception as e:
        logger.error(f"Error in document generation: {e}")
        return error_response(str(e) or "Failed to generate document")

    return {"content": result.content}


@app.post("/documents/export")
def export(req: ExportRequest):
    try:
        return export_document(
            req.document_id,
            req.project_id,
            req.format,
            req.content,
            get_store(),
            get_file_store(),
        )
    except Exception as e:
        logger.error(f"Export error: {e}")
        return error_response(str(e) or "Failed to export document")


@app.post("/documents/match")
def match(req: MatchRequest):
    if not isinstance(req.optional_documents, list) or not isinstance(req.required_documents, list):
        return error_response("Invalid input: optionalDocuments and requiredDocuments must be arrays", 400)

    try:
        return match_documents(get_llm(), req.optional_documents, req.required_documents)
    except InvalidMatcherResponse:
        return error_response("Invalid response format from document matcher")
    except Exception as e:
        logger.error(f"Error matching documents: {e}")
        return error_response("Failed to match documents")


@app.get("/documents/{document_id}")
def get_document(document_id: str):
    try:
        document = get_store().get("documents", document_id)
    except Exception as e:
        logger.error(f"Error fetching document: {e}")
        return error_response("Failed to fetch document")
    if not document:
        return error_response("Document not found", 404)
    return document


@app.put("/documents/{document_id}")
def update_document(document_id: str, updates: Dict[str, Any] = Body(...)):
    try:
        rows = get_store().update("documents", {"id": document_id}, updates)
    except Exception as e:
        logger.error(f"Error updating document: {e}")
        return error_response("Failed to update document")
    if not rows:
        return error_response("Document not found", 404)
    return rows[0]


@app.delete("/documents/{document_id}")
def delete_document(document_id: str):
    try:
        get_store().delete("documents", {"id": document_id})
    except Exception as e:
        logger.error(f"Error deleting document: {e}")
        return error_response("Failed to delete document")
    return Response(status_code=204)


@app.delete("/documents/{document_id}/completed")
def delete_completed_documents(document_id: str, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()

    db = get_store()
    try:
        completed = db.select("completed_documents", {"document_id": document_id})
    except Exception as e:
        logger.error(f"Error finding completed documents: {e}")
        return error_response("Failed to check completed documents")

    _remove_completed_files(completed)

    try:
        db.delete("completed_documents", {"document_id": document_id})
    except Exception as e:
        logger.error(f"Error deleting completed documents: {e}")
        return error_response("Failed to delete completed documents")
    return {"success": True}


# -----------------------------------------------------------------------------
# Extraction
# -----------------------------------------------------------------------------

@app.post("/equipment/analyze")
def analyze_equipment_route(req: ProjectRequest, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    if not req.project_id:
        return error_response("Project ID is required", 400)

    try:
        return analyze_project_equipment(req.project_id, get_store(), get_vector_index(), get_llm())
    except NoFundingOpportunityError as e:
        return error_response(str(e), 400)
    except FileNotFoundError as e:
        return error_response(f"Failed to load equipment catalog: {e}")
    except Exception as e:
        logger.error(f"Error in equipment analysis: {e}")
        return error_response(f"Failed to analyze equipment: {e}")


@app.post("/extract-grant")
def extract_grant(req: ExtractGrantRequest, x_user_id: Optional[str] = Header(None)):
    """
    Extract FOA fields from pasted grant text.
    """
    if not x_user_id:
        return unauthorized()
    if not req.text:
        return error_response("No text provided", 400)

    try:
        extractor = FundingOpportunityExtractor(get_llm())
        data = extractor.extract_from_html(f"<html><body>{req.text}</body></html>")
    except Exception as e:
        logger.error(f"Error extracting funding opportunity information: {e}")
        message = str(e)
        if "No content returned from OpenAI" in message:
            return error_response("The AI service could not process this text. Please try with different content.", 502)
        if "Failed to parse" in message:
            return error_response("Could not parse the extracted information. Please try with clearer grant text.", 422)
        return error_response(f"Extraction failed: {message}")

    return {"message": "Funding opportunity information extracted successfully", "data": data}


@app.post("/fetch-url")
def fetch_url(req: UrlRequest, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    if not req.url:
        return error_response("No URL provided", 400)
    if not _is_valid_url(req.url):
        return error_response("Invalid URL format", 400)

    try:
        html = fetch_html(req.url)
    except requests.HTTPError as e:
        response = e.response
        return error_response(f"Failed to fetch URL: {response.status_code} {response.reason}", response.status_code)
    except requests.RequestException as e:
        logger.error(f"Error fetching URL: {e}")
        return error_response("Failed to fetch URL. Please check the URL and try again.")

    return {"message": "URL content fetched successfully", "data": strip_html(html)}


# -----------------------------------------------------------------------------
# Funding Opportunities
# -----------------------------------------------------------------------------

@app.get("/funding-opportunities")
def list_funding_opportunities(
    agency: Optional[str] = Query(None),
    grant_type: Optional[str] = Query(None),
    deadline_after: Optional[str] = Query(None, description="ISO date"),
    deadline_before: Optional[str] = Query(None, description="ISO date"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    x_user_id: Optional[str] = Header(None),
):
    if not x_user_id:
        return unauthorized()
    try:
        rows = get_store().list_foas(agency, grant_type, deadline_after, deadline_before, limit, offset)
    except Exception as e:
        logger.error(f"Error fetching funding opportunities: {e}")
        return error_response("Failed to fetch funding opportunities")
    return {"data": rows, "count": len(rows), "limit": limit, "offset": offset}


@app.post("/funding-opportunities")
def upload_funding_opportunity(
    background_tasks: BackgroundTasks,
    html_file: Optional[UploadFile] = File(None, alias="htmlFile"),
    x_user_id: Optional[str] = Header(None),
):
    """
    Extract an FOA from an uploaded HTML page, store it and queue its vectorisation.
    """
    if not x_user_id:
        return unauthorized()
    if html_file is None:
        return error_response("No HTML file provided", 400)
    if not (html_file.filename or "").endswith(".html") and "html" not in (html_file.content_type or ""):
        return error_response("Invalid file type. Only HTML files are accepted.", 400)

    try:
        html = html_file.file.read().decode("utf-8", errors="replace")
        extracted = FundingOpportunityExtractor(get_llm()).extract_from_html(html)
    except Exception as e:
        logger.error(f"Error processing funding opportunity: {e}")
        return error_response("Failed to process funding opportunity")

    values = {column: extracted.get(column) for column in FOA_COLUMNS if column in extracted}

    try:
        foa = get_store().insert("foas", values)
    except DuplicateRecordError:
        return error_response("A funding opportunity with this FOA code or URL already exists", 409)
    except Exception as e:
        logger.error(f"Error inserting funding opportunity: {e}")
        return error_response("Failed to store funding opportunity")

    background_tasks.add_task(_vectorize_foa_job, foa, strip_html(html))
    return {"message": "Funding opportunity extracted and stored successfully", "data": foa}


@app.get("/funding-opportunities/search")
def search_funding_opportunities(
    q: str = Query("", description="Free-text query; empty lists newest first"),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    agency: Optional[str] = Query(None),
    min_award: Optional[float] = Query(None, alias="minAward"),
    max_award: Optional[float] = Query(None, alias="maxAward"),
    animal_trials: Optional[bool] = Query(None, alias="animalTrials"),
    human_trials: Optional[bool] = Query(None, alias="humanTrials"),
    recommended_grants: bool = Query(False, alias="recommendedGrants"),
    deadline_date: Optional[date] = Query(None, alias="deadlineDate"),
    organization_eligibility: Optional[str] = Query(None, description="JSON object of org type -> bool"),
    user_pi: bool = Query(False, alias="userPrincipalInvestigator"),
    user_postdoc: bool = Query(False, alias="userPostdoc"),
    user_grad_student: bool = Query(False, alias="userGraduateStudent"),
    user_early_career: bool = Query(False, alias="userEarlyCareer"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    x_user_id: Optional[str] = Header(None),
):
    """
    Filtered vector search over FOA descriptions.

    Scores are normalised to 0-100. With recommendedGrants and a projectId,
    only FOAs offering one of the project's recommended grant types are kept.
    """
    if not x_user_id:
        return error_response("Unauthorized", 401, foas=[], total=0)

    try:
        org_filter = json.loads(organization_eligibility) if organization_eligibility else {}
    except json.JSONDecodeError:
        return error_response("Invalid organization_eligibility filter", 400, foas=[], total=0)

    codes = None
    if recommended_grants and project_id:
        codes = recommended_grant_codes(get_store(), project_id)
        logger.info(f"Filtering by recommended grants: {codes}")

    params = FoaSearchParams(
        query=q,
        limit=limit,
        offset=offset,
        agency=agency,
        min_award=min_award,
        max_award=max_award,
        animal_trials=animal_trials,
        human_trials=human_trials,
        deadline_date=deadline_date,
        organization_eligibility=org_filter if isinstance(org_filter, dict) else {},
        user_pi=True if user_pi else None,
        user_postdoc=True if user_postdoc else None,
        user_grad_student=True if user_grad_student else None,
        user_senior_personnel=True if user_early_career else None,
        recommended_grant_codes=codes,
    )

    try:
        return search_foas(get_vector_index(), params)
    except Exception as e:
        logger.error(f"Vector search failed: {e}")
        return error_response("Vector search failed", foas=[], total=0)


@app.post("/funding-opportunities/extract")
def extract_funding_opportunity(req: UrlRequest, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    if not req.url:
        return error_response("No URL provided", 400)
    if not _is_valid_url(req.url):
        return error_response("Invalid URL format", 400)

    try:
        data = FundingOpportunityExtractor(get_llm()).extract_from_url(req.url)
    except Exception as e:
        logger.error(f"Error extracting funding opportunity information: {e}")
        return error_response("Failed to extract funding opportunity information. Please try again.")

    return {"message": "Funding opportunity information extracted successfully", "data": data}


@app.post("/funding-opportunities/process-csv")
def process_csv(
    file: Optional[UploadFile] = File(None),
    agency: Optional[str] = Form(None),
    x_user_id: Optional[str] = Header(None),
):
    """
    Parse an NIH or NSF FOA export into importable records.

    Rows that duplicate each other or the database are reported in `skipped`.
    """
    if not x_user_id:
        return unauthorized()
    if file is None:
        return error_response("No CSV file provided", 400)
    if agency not in ("NIH", "NSF"):
        return error_response("Agency must be NIH or NSF", 400)

    try:
        text = file.file.read().decode("utf-8-sig", errors="replace")
        result = parse_csv(text, agency)
    except ValueError as e:
        return error_response(str(e), 400)

    try:
        result = filter_existing(result, get_store())
    except Exception as e:
        logger.error(f"Error checking existing FOAs: {e}")
        return error_response("Failed to check existing funding opportunities")

    logger.info(f"CSV import: {len(result.records)} records, {len(result.skipped)} skipped")
    return result.to_dict()


@app.post("/funding-opportunities/{foa_id}/vectorize")
def vectorize_funding_opportunity(
    foa_id: str,
    req: Optional[VectorizeFoaRequest] = None,
    x_user_id: Optional[str] = Header(None),
):
    if not x_user_id:
        return unauthorized()

    db = get_store()
    foa = db.get("foas", foa_id)
    if not foa:
        return error_response("FOA not found", 404)

    full_text = req.text if req and req.text else None
    if full_text is None and foa.get("grant_url"):
        try:
            full_text = fetch_page_text(foa["grant_url"])
        except Exception as e:
            logger.warning(f"Could not fetch FOA page {foa['grant_url']}: {e}")

    try:
        ids = vectorize_foa(foa, full_text, db, get_vector_index())
    except ValueError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"Error vectorizing FOA {foa_id}: {e}")
        return error_response("Failed to vectorize FOA")

    return {"message": "FOA vectorized successfully", "id": foa_id, "vectorIds": ids}


@app.delete("/funding-opportunities/{foa_id}")
def delete_funding_opportunity(foa_id: str, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()

    db = get_store()
    try:
        foa = db.get("foas", foa_id)
    except Exception as e:
        logger.error(f"Error fetching FOA: {e}")
        return error_response("Failed to fetch FOA")
    if not foa:
        return error_response("FOA not found", 404)

    if foa.get("pinecone_ids"):
        try:
            deleted = delete_foa_vectors(get_vector_index(), foa["pinecone_ids"])
            logger.info(f"Deleted {deleted} vectors for FOA {foa_id}")
        except Exception as e:
            logger.error(f"Error deleting vectors from Pinecone: {e}")
    else:
        logger.info("No Pinecone vectors to delete")

    try:
        db.delete("foas", {"id": foa_id})
    except Exception as e:
        logger.error(f"Error deleting FOA: {e}")
        return error_response("Failed to delete FOA")

    return {"message": "FOA and associated vectors deleted successfully", "id": foa_id}


@app.post("/funding-opportunity/{foa_id}/chat")
def foa_chat(foa_id: str, req: FoaChatRequest):
    try:
        message = chat_with_foa(foa_id, _messages(req.messages), get_store(), get_vector_index(), get_llm())
    except FoaNotFoundError as e:
        return error_response(str(e), 404)
    except ValueError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"FOA chat failed: {e}")
        return error_response("Internal Server Error")
    return {"message": message}


# -----------------------------------------------------------------------------
# Organizations / Projects / Researchers
# -----------------------------------------------------------------------------

@app.get("/organizations/search")
def search_organizations(
    q: str = Query(""),
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    x_user_id: Optional[str] = Header(None),
):
    if not x_user_id:
        return error_response("Unauthorized", 401, organizations=[], total=0)

    try:
        rows, total = get_store().search_organizations(q, min(limit, 100), offset)
    except Exception as e:
        logger.error(f"Database error searching organizations: {e}")
        return error_response("Database operation failed", organizations=[], total=0)

    return {"organizations": rows, "total": total, "error": None}


@app.post("/project/process-all")
def process_project(req: ProjectRequest, background_tasks: BackgroundTasks):
    """
    Start equipment analysis, source generation and attachment drafting in the background.
    """
    if not req.project_id:
        return error_response("Project ID is required", 400)

    try:
        db, index, llm = get_store(), get_vector_index(), get_llm()
    except Exception as e:
        logger.error(f"Error starting background processing: {e}")
        return error_response(str(e) or "Failed to start background processing")

    try:
        perplexity = get_perplexity()
    except Exception:
        perplexity = None

    background_tasks.add_task(process_all, req.project_id, db, index, llm, perplexity)
    return {"message": "Background processing started", "status": "success"}


@app.delete("/researchers/{researcher_id}")
def delete_researcher(researcher_id: str):
    """
    Delete a researcher profile with its queue items and vectors.
    """
    db = get_store()
    try:
        researcher = db.get("researcher_profiles", researcher_id)
    except Exception as e:
        logger.error(f"Error fetching researcher: {e}")
        return error_response("Failed to fetch researcher")
    if not researcher:
        return error_response("Researcher not found", 404)

    try:
        deleted_queue = db.delete("processing_queue", {"content_type": "researcher", "content_id": researcher_id})
    except Exception as e:
        logger.error(f"Error deleting queue items: {e}")
        return error_response("Failed to delete queue items")

    pinecone_ids = [i for i in (researcher.get("pinecone_id") or "").split(",") if i]
    if pinecone_ids:
        try:
            get_vector_index().delete_ids(pinecone_ids)
        except Exception as e:
            logger.error(f"Error with Pinecone operations: {e}")
            return error_response("Failed to delete vectors from Pinecone")

    try:
        db.delete("researcher_profiles", {"id": researcher_id})
    except Exception as e:
        logger.error(f"Error deleting researcher: {e}")
        return error_response("Failed to delete researcher")

    logger.info(f"Deleted researcher {researcher_id}")
    return {
        "success": True,
        "deleted": {
            "researcher": researcher,
            "queueItems": deleted_queue,
            "pineconeIds": pinecone_ids,
        },
    }


# -----------------------------------------------------------------------------
# Sources
# -----------------------------------------------------------------------------

def _source_events(project_id: Optional[str]) -> Iterator[Dict[str, Any]]:
    if not project_id:
        yield {"error": "Project ID is required"}
        return
    try:
        db, llm, perplexity = get_store(), get_llm(), get_perplexity()
    except Exception as e:
        logger.error(f"Error starting sources pipeline: {e}")
        yield {"error": "Error processing request", "details": str(e)}
        return
    yield from run_pipeline(project_id, db, llm, perplexity)


@app.get("/sources")
def stream_sources(project_id: Optional[str] = Query(None, alias="projectId")):
    """
    Server-sent events for the sources pipeline.

    Each frame is `data: {"step": ...}`; failures end the stream with an
    `{"error": ...}` frame.
    """
    return _sse_response(_source_events(project_id))


@app.post("/sources")
def stream_sources_post(req: ProjectRequest):
    return _sse_response(_source_events(req.project_id))


@app.post("/sources/background")
def sources_background(req: ProjectRequest, background_tasks: BackgroundTasks):
    if not req.project_id:
        return error_response("Project ID is required", 400)

    try:
        db, llm, perplexity = get_store(), get_llm(), get_perplexity()
    except Exception as e:
        logger.error(f"Error in background sources API: {e}")
        return error_response("Error processing request", details=str(e))

    background_tasks.add_task(process_sources, req.project_id, db, llm, perplexity)
    return {"success": True, "message": "Source generation started in background"}


# -----------------------------------------------------------------------------
# Transcription / Vectorization Queue
# -----------------------------------------------------------------------------

@app.post("/trigger-transcription")
def trigger_transcription(req: TranscriptionRequest, background_tasks: BackgroundTasks):
    if not req.chalk_talk_id or not req.file_path:
        return error_response("Missing required parameters", 400)

    background_tasks.add_task(_transcription_job, req.chalk_talk_id, req.file_path)
    return {"success": True, "message": "Transcription process initiated successfully"}


@app.post("/transcribe")
def transcribe(req: TranscriptionRequest):
    """
    Transcribe a chalk talk and wait for the result.
    """
    if not req.chalk_talk_id or not req.file_path:
        return error_response("Missing required parameters", 400)

    try:
        return transcribe_chalk_talk(req.chalk_talk_id, req.file_path, get_store(), get_file_store(), get_llm())
    except Exception as e:
        logger.error(f"Transcription error: {e}")
        return error_response(str(e))


@app.post("/vectorization/process-queue")
def process_vectorization_queue():
    try:
        return process_queue(get_store(), get_vector_index(), get_file_store(), get_llm())
    except Exception as e:
        logger.error(f"Queue processing error: {e}")
        return error_response("Internal server error")


# -----------------------------------------------------------------------------
# Vectorized Documents
# -----------------------------------------------------------------------------

@app.post("/vectorize/extract-text")
def extract_text_route(
    file: Optional[UploadFile] = File(None),
    x_user_id: Optional[str] = Header(None),
):
    """
    Extract text and per-page offsets from an uploaded PDF.
    """
    if not x_user_id:
        return unauthorized()
    if file is None:
        return error_response("No file provided", 400)
    if file.content_type != "application/pdf":
        return error_response("Only PDF files are supported", 400)

    try:
        text, pages = extract_pdf_pages(file.file.read())
    except Exception as e:
        logger.error(f"Error extracting text from PDF: {e}")
        return error_response(f"Failed to extract text: {e}")

    if not text.strip():
        return error_response("No text could be extracted from the PDF", 400)

    logger.info(f"Extracted {len(text)} characters from {file.filename}: {describe_pages(pages)}")
    return {"text": text, "pages": pages}


@app.post("/vectorize/store")
def store_vectorized_document(req: VectorizeStoreRequest, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    if not req.file_name or not req.text or not req.page_info:
        return error_response("Missing required fields: fileName, text, and pageInfo", 400)

    page_info = [p.model_dump(by_alias=True) for p in req.page_info]
    try:
        return VectorizedDocuments(get_vector_index()).store(
            x_user_id, req.file_name, req.text, page_info, req.metadata
        )
    except Exception as e:
        logger.error(f"Error vectorizing document: {e}")
        return error_response(f"Failed to vectorize document: {e}")


@app.get("/vectorize/documents")
def list_vectorized_documents(x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    try:
        return VectorizedDocuments(get_vector_index()).list_documents(x_user_id)
    except Exception as e:
        logger.error(f"Error fetching vectorized documents: {e}")
        return error_response(f"Failed to fetch documents: {e}")


@app.get("/vectorize/documents/{document_id}/vectors")
def get_document_vectors(document_id: str, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    try:
        vectors = VectorizedDocuments(get_vector_index()).get_vectors(x_user_id, document_id)
    except Exception as e:
        logger.error(f"Error fetching document vectors: {e}")
        return error_response(f"Failed to fetch vectors: {e}")
    return {"vectors": vectors}


@app.delete("/vectorize/documents/by-filename/{filename:path}")
def delete_vectors_by_filename(filename: str, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    try:
        deleted = VectorizedDocuments(get_vector_index()).delete_by_filename(x_user_id, filename)
    except Exception as e:
        logger.error(f"Error deleting vectors by filename: {e}")
        return error_response("Failed to delete vectors")

    if not deleted:
        return JSONResponse({"message": "No documents found with the specified filename"}, status_code=404)
    return {"message": f'Successfully deleted all vectors for "{filename}"', "deletedVectors": deleted}


@app.delete("/vectorize/documents/{document_id}")
def delete_vectorized_document(document_id: str, x_user_id: Optional[str] = Header(None)):
    if not x_user_id:
        return unauthorized()
    try:
        deleted = VectorizedDocuments(get_vector_index()).delete_document(x_user_id, document_id)
    except Exception as e:
        logger.error(f"Error deleting document: {e}")
        return error_response(f"Failed to delete document: {e}")

    if not deleted:
        return error_response("Document not found or you do not have permission to delete it", 404)
    return {"success": True, "message": "Document and vectors deleted successfully", "deletedVectors": deleted}


# -----------------------------------------------------------------------------
# Startup Event
# -----------------------------------------------------------------------------

@app.on_event("startup")
async def startup_event():
    """
    Run on application startup.

    Clients connect lazily on first use; this only logs the configuration.
    """
    logger.info("=" * 80)
    logger.info("Grant Application Assistant API - Starting")
    logger.info("=" * 80)
    logger.info(f"Database: {'configured' if os.getenv('DATABASE_URL') else 'DATABASE_URL not set'}")
    logger.info(f"Pinecone index: {os.getenv('PINECONE_INDEX_NAME', 'grant-assistant')}")
    logger.info(f"Gemini: {'enabled' if os.getenv('GEMINI_API_KEY') else 'disabled (OpenAI fallback)'}")
    logger.info(f"File storage: {os.getenv('UPLOAD_DIR', './storage')}")
    logger.info(f"Started at: {datetime.now(timezone.utc).isoformat()}")
    logger.info("Docs: http://localhost:8000/docs")
    logger.info("=" * 80)
