"""
API request/response schemas using Pydantic.

These define the contract between API and clients. Request bodies use
camelCase on the wire (projectId, currentQuestion, ...) except where the
stored column names are sent as-is (attachments, custom documents).
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any, Literal


class CamelModel(BaseModel):
    """Base for bodies sent in camelCase; snake_case names are accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """
    Health check response.
    """
    status: str
    database: str
    vector_index: str


class ChatMessage(BaseModel):
    """
    One turn in a chat history.
    """
    role: Literal["user", "assistant", "system"]
    content: str


# -----------------------------------------------------------------------------
# Application factors / requirements
# -----------------------------------------------------------------------------

class ApplicationFactorsRequest(CamelModel):
    """
    Request for /application-factors.

    With analyze_all and questions set, every question is assessed in one
    call; otherwise current_question is assessed against the chat history.
    """
    project_id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    research_description: Optional[str] = None
    current_question: Optional[str] = None
    criteria: Optional[str] = None
    current_question_context: Optional[str] = None
    auto_analyze: bool = False
    analyze_all: bool = False
    questions: Optional[List[Dict[str, Any]]] = None


class ProjectRequest(CamelModel):
    project_id: Optional[str] = None


class RequirementsChatRequest(CamelModel):
    """
    Request for /application-requirements.
    """
    project_id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    research_description: Optional[str] = None
    current_question: Optional[str] = None
    criteria: Optional[str] = None
    current_question_context: Optional[str] = None
    document_filename: Optional[str] = Field(default=None, description="Template to include in the prompt")
    required_documents: Optional[List[Dict[str, Any]]] = None


class GenerateRequirementsRequest(CamelModel):
    project_id: Optional[str] = None
    research_description: Optional[str] = None
    document_filename: Optional[str] = None


# -----------------------------------------------------------------------------
# Attachments and documents
# -----------------------------------------------------------------------------

class AttachmentCreate(BaseModel):
    """
    Body for POST /attachments (column names as stored).
    """
    name: Optional[str] = None
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    project_id: Optional[str] = None
    description: Optional[str] = None


class AttachmentUpdate(BaseModel):
    """
    Only name and description can be changed.
    """
    name: Optional[str] = None
    description: Optional[str] = None


class AiEditRequest(CamelModel):
    content: str = Field(description="Current document HTML")
    instruction: str = Field(description="What the user wants changed")
    document_id: Optional[str] = None
    project_id: Optional[str] = None
    html_summary: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Tag summary of the HTML, as produced by html_summary()"
    )


class DocumentRequest(CamelModel):
    document_id: Optional[str] = None
    project_id: Optional[str] = None


class CompletedDocumentCreate(CamelModel):
    document_id: Optional[str] = None
    project_id: Optional[str] = None
    content: str = ""


class CompletedDocumentUpdate(CamelModel):
    id: Optional[str] = None
    file_url: Optional[str] = None


class CustomDocumentCreate(BaseModel):
    """
    Body for POST /documents/custom-document.
    """
    name: Optional[str] = None
    prompt: Optional[str] = None
    page_limit: Optional[int] = None
    project_id: Optional[str] = None


class ExportRequest(CamelModel):
    document_id: str
    project_id: str
    format: Literal["pdf", "docx"] = "pdf"
    content: str = Field(description="Document HTML (h1/p blocks)")


class MatchRequest(CamelModel):
    """
    Lists are checked by the handler so the error message matches clients.
    """
    optional_documents: Any = None
    required_documents: Any = None


# -----------------------------------------------------------------------------
# Funding opportunities
# -----------------------------------------------------------------------------

class ExtractGrantRequest(BaseModel):
    text: Optional[str] = None


class UrlRequest(BaseModel):
    url: Optional[str] = None


class FoaChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)


class VectorizeFoaRequest(BaseModel):
    """
    Optional FOA page text; fetched from grant_url when absent.
    """
    text: Optional[str] = None


# -----------------------------------------------------------------------------
# Transcription / vectorisation
# -----------------------------------------------------------------------------

class TranscriptionRequest(CamelModel):
    chalk_talk_id: Optional[str] = None
    file_path: Optional[str] = None


class PageInfo(CamelModel):
    page_number: int
    start_index: int
    end_index: int


class VectorizeStoreRequest(CamelModel):
    """
    Body for /vectorize/store, usually the output of /vectorize/extract-text.
    """
    file_name: Optional[str] = None
    text: Optional[str] = None
    page_info: Optional[List[PageInfo]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
