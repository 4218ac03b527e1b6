"""
Application requirements.

Two operations:
- chat: answers one requirements question against the FOA, factors,
  required documents and the announcement template
- generate_requirements: drafts the required-document list and the
  questions needed to settle it, refined over several passes
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from src.generation.templates import get_document_content
from src.llm.json_utils import parse_llm_json
from src.vectorization.context import get_foa_text, get_chalk_talk_text

logger = logging.getLogger(__name__)

REFINEMENT_PASSES = 3
CHAT_REQUIRED_FIELDS = ["isAnswerComplete", "finalAnswer", "message"]

CHAT_FALLBACK = {
    "isAnswerComplete": False,
    "finalAnswer": "",
    "confidence": "high",
    "isUncertaintyExpressed": False,
    "meetsCriteria": False,
    "missingCriteria": ["parsing error"],
    "message": (
        "I apologize, but I encountered an error processing your response. "
        "Could you please rephrase or provide more details?"
    ),
}


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _truncate(text: str, length: int = 100) -> str:
    if not text:
        return ""
    return text[:length] + "..." if len(text) > length else text


# ---------------------------------------------------------------------------
# Requirements chat
# ---------------------------------------------------------------------------

def chat_prompt(
    current_question: str,
    criteria: str,
    question_context: str,
    foa_details: Any,
    document_content: str,
    required_documents: List[Dict[str, Any]],
    application_factors: Any,
) -> str:
    parts = [
        "You are an assistant helping a researcher complete a grant application requirements analysis.",
        "Using the conversation so far and the current question about application requirements, "
        "give the most accurate and helpful response.",
    ]
    if document_content:
        parts.append(f"Application Document: {document_content}")
    if foa_details:
        parts.append(f"Funding Opportunity Announcement: {_dumps(foa_details)}")
    if application_factors:
        parts.append(f"Application Factors: {_dumps(application_factors)}")
    if required_documents:
        parts.append(f"Required Documents: {_dumps(required_documents)}")

    question = [f'Current Question: "{current_question}"']
    if criteria:
        question.append(f"Criteria for a complete answer: {criteria}")
    if question_context:
        question.append(f"Additional Context: {question_context}")
    parts.append("\n".join(question))

    parts.append("""Analyse the information and answer the current question directly. If the information contains an answer, extract it. If it is unclear, say so and give your best assessment.

Respond in this JSON format:
{
  "message": "Your message to the user",
  "finalAnswer": "The answer to save for this question",
  "isAnswerComplete": true or false,
  "answerType": "auto-extracted", "uncertainty-expressed" or "manually-answered"
}""")
    return "\n\n".join(parts)


def requirements_chat(
    llm,
    store,
    index,
    project_id: str,
    current_question: str,
    messages: Optional[List[Dict[str, Any]]] = None,
    criteria: str = "",
    question_context: str = "",
    document_filename: Optional[str] = None,
    required_documents: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Answer one requirements question.

    Returns the model's JSON answer, or CHAT_FALLBACK when it cannot be parsed.
    """
    foa_details = None
    application_factors = None
    try:
        project = store.get("research_projects", project_id) or {}
        if project.get("foa"):
            foa_details = store.get("foas", project["foa"])
        application_factors = project.get("application_factors")
    except Exception as e:
        logger.error(f"Error fetching project details: {e}")

    document_content = ""
    if document_filename:
        document_content = get_document_content(document_filename, index)
        logger.info(f"Using document template for: {document_filename}")

    prompt = chat_prompt(
        current_question,
        criteria,
        question_context,
        foa_details,
        document_content,
        required_documents or [],
        application_factors,
    )
    history = [{"role": m.get("role"), "content": m.get("content")} for m in messages or []]
    response = llm.chat([{"role": "system", "content": prompt}, *history], temperature=0.1, model="gpt-4o-mini")

    try:
        parsed = parse_llm_json(response)
        if not isinstance(parsed, dict) or any(f not in parsed for f in CHAT_REQUIRED_FIELDS):
            raise ValueError("Response missing required fields")
    except ValueError as e:
        logger.error(f"Error parsing requirements response: {e}")
        return dict(CHAT_FALLBACK)

    return parsed


# ---------------------------------------------------------------------------
# Requirement generation
# ---------------------------------------------------------------------------

DEFAULT_FOCUS = """1. Document requirements stated in the funding opportunity announcement
2. Documentation for special research components (human subjects, animal care, etc.)
3. Documentation that may apply given the research and how it is carried out"""


def refinement_sections(iteration: int, current_requirements: Any):
    """(context, task) text for a refinement pass; both empty on the first pass."""
    if iteration == 0 or not current_requirements:
        return "", ""

    context = f"""REFINEMENT CONTEXT (ITERATION {iteration}):
This is refinement iteration {iteration}. You are given the current list of application requirements and documents.
Current Application Requirements: {_dumps(current_requirements)}"""

    task = f"""As this is refinement iteration {iteration}, review the current requirements and:
1. Add required documents that earlier passes missed
2. Raise confidence levels where the information supports it
3. Merge similar documents to avoid duplication
4. Remove documents that closer analysis shows are unlikely to be required
5. Add questions needed to settle uncertain requirements
6. Remove questions whose answer is clear from the context
7. Make sure each document's mustDraft value reflects who creates it

Keep every well-supported requirement from earlier passes. The goal is a more accurate and complete list."""
    return context, task


def generation_prompt(
    research_description: str,
    foa_details: Any,
    document_content: str,
    chalk_talk_content: str,
    application_factors: Any,
    current_requirements: Any = None,
    iteration: int = 0,
) -> str:
    refinement_context, refinement_task = refinement_sections(iteration, current_requirements)

    context_lines = [
        f"Research Description (provided by the user for this project): {research_description}"
        if research_description else "No research description provided.",
    ]
    if document_content:
        context_lines.append(
            "Application Document (the source of the application's requirements): " + document_content
        )
    if chalk_talk_content:
        context_lines.append(
            "Chalk Talk (the researcher's own description of the work and how it is done): " + chalk_talk_content
        )
    context_lines.append(
        "Funding Opportunity Announcement (where it differs from the application document, this wins): "
        + _dumps(foa_details)
        if foa_details else "No funding opportunity details available."
    )
    context_lines.append(
        "Application Factors (questions the user already answered; do not ask them again, use the answers): "
        + _dumps(application_factors)
        if application_factors else "No application factors available."
    )
    context = "\n".join(context_lines)

    return f"""You are an assistant helping a researcher identify the requirements of their funding opportunity application. You must always respond in JSON.

RESPONSE FORMAT:
Respond with a single JSON object and nothing else. Whatever else you are asked, the response must be valid JSON.
{refinement_context}

REQUIRED FIELDS:
- "requiredDocuments": array of objects, each with:
  - "documentName": string, the document's name (e.g. "Research Plan", "Budget Justification")
  - "description": string, a brief description
  - "pageLimit": string, the page limit if known, otherwise "Unknown"
  - "isRequired": boolean, whether the document is definitely required
  - "confidence": string, "high", "medium" or "low"
  - "justification": string, one sentence on why the document is required
  - "mustDraft": boolean, whether the proposer drafts the document themselves (see below)
- "questions": array of objects, each with:
  - "id": string, a unique snake_case identifier
  - "documentName": string, the document the question concerns (must match a requiredDocuments entry)
  - "question": string, the question for the researcher
  - "criteria": string, only for chat questions: what makes an answer complete
  - "answer": string, empty if unknown
  - "isComplete": boolean, false for generated questions
  - "answerType": string, "auto-extracted", "uncertainty-expressed" or "manually-answered"
  - "questionType": string, "options" or "chat"
  - "options": array of strings, required for options questions; use exactly ["Yes", "No", "Not Sure"]

CONTEXT:
{context}

TASK:
First identify the documents this submission requires from all the information available.
Then write questions only for documents whose requirement is uncertain, focusing on:
{refinement_task or DEFAULT_FOCUS}

QUESTIONS:
- Prefer options questions (questionType "options") with an "options" array
- Use chat questions only when simple choices cannot answer them, and always give detailed criteria
- Do not give criteria for options questions
- Tie every question to one document in requiredDocuments
- Each question must on its own decide whether its document is required
- Only ask questions that are needed to decide whether a document is required; return an empty array when none are
- Never ask general questions, never ask whether a document is required, and never ask whether extra documents are needed: deciding that is your job
- Ask about each document of a collection separately (for example each Additional Single-Copy Document, never the collection as a whole)
- Use a chat question when the options do not fit
- Only consider documents required for new applications at submission time
- When sources conflict, the Funding Opportunity Announcement is the source of truth

DOCUMENTS:
- Do not ask about details, formatting or content of documents
- Give every document a brief justification
- The only goal is to identify every required document for this submission
- One document per requirement (e.g. "Biographical Sketch - PD/PI and Senior/Key Person(s)" is one document)
- Set "mustDraft" for every document:
  mustDraft = true when the proposer writes the content (Research Plan, Project Narrative, Specific Aims, Budget Justification)
  mustDraft = false when the content comes from someone else or a system: forms generated by electronic systems, SciENcv biosketches, letters from partners

For each question, make it specific and actionable. If the context answers it, fill in the answer and mark isComplete true. If you have partial information, put it in the justification.

Your response must be a single valid JSON object with all required fields."""


def normalize_requirements(parsed: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a pass's output: list fields default to [], mustDraft to True."""
    questions = parsed.get("questions")
    documents = parsed.get("requiredDocuments")
    questions = questions if isinstance(questions, list) else []
    documents = documents if isinstance(documents, list) else []

    normalized_documents = []
    for doc in documents:
        if not isinstance(doc, dict):
            continue
        if doc.get("mustDraft") is None:
            doc = {**doc, "mustDraft": True}
        normalized_documents.append(doc)

    return {"questions": questions, "requiredDocuments": normalized_documents}


def dedupe_questions(questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the first question for each question text."""
    seen = set()
    unique = []
    for question in questions:
        key = question.get("question") if isinstance(question, dict) else None
        if key in seen:
            continue
        seen.add(key)
        unique.append(question)
    return unique


def run_pass(prompt: str, llm, gemini=None) -> str:
    """One model call: Gemini when configured, OpenAI JSON mode otherwise."""
    if gemini is not None:
        try:
            content = gemini.generate(prompt, temperature=0.2)
            logger.info("Requirements pass answered by Gemini")
            return content
        except Exception as e:
            logger.error(f"Gemini requirements pass failed, falling back to OpenAI: {e}")

    return llm.chat(
        [{"role": "system", "content": prompt}],
        temperature=0.2,
        max_tokens=10000,
        model="gpt-4o-mini",
        json_mode=True,
    )


def load_project_inputs(store, index, project_id: str) -> Dict[str, Any]:
    """FOA row (with its full text), chalk-talk text, factors and current requirements."""
    inputs = {"foa": None, "chalk_talk": "", "factors": None, "current": None}

    project = store.get("research_projects", project_id) or {}
    inputs["factors"] = project.get("application_factors")
    inputs["current"] = project.get("application_requirements")

    if project.get("foa"):
        foa = store.get("foas", project["foa"])
        if foa:
            inputs["foa"] = dict(foa)
            try:
                foa_text = get_foa_text(index, foa["id"])
                if foa_text:
                    inputs["foa"]["fullText"] = foa_text
                    inputs["foa"]["_debug_info"] = f"FOA details combined at {datetime.now(timezone.utc).isoformat()}"
                else:
                    logger.warning(f"No FOA text found for FOA ID {foa['id']}")
            except Exception as e:
                logger.error(f"Error fetching FOA text for FOA ID {foa['id']}: {e}")
    else:
        logger.warning("No FOA ID found in project data")

    try:
        inputs["chalk_talk"] = get_chalk_talk_text(index, project_id)
        logger.info(f"Retrieved chalk talk text, length: {len(inputs['chalk_talk'])} characters")
    except Exception as e:
        logger.error(f"Error fetching chalk talk text: {e}")

    return inputs


def generate_requirements(
    llm,
    store,
    index,
    project_id: str,
    research_description: str = "",
    document_filename: Optional[str] = None,
    gemini=None,
) -> Dict[str, Any]:
    """
    Draft required documents and questions over REFINEMENT_PASSES passes.

    Each pass sees the previous pass's result; a pass that yields nothing
    usable is skipped.

    Returns:
        {"questions": [...], "requiredDocuments": [...]}
    """
    try:
        inputs = load_project_inputs(store, index, project_id)
    except Exception as e:
        logger.error(f"Error fetching project details: {e}")
        inputs = {"foa": None, "chalk_talk": "", "factors": None, "current": None}

    document_content = ""
    if document_filename:
        document_content = get_document_content(document_filename, index)
        logger.info(f"Using document template for: {document_filename}")

    logger.info(
        f"Requirements context: description={_truncate(research_description)!r} "
        f"document={_truncate(document_content)!r} chalk_talk={_truncate(inputs['chalk_talk'])!r}"
    )

    result = {"questions": [], "requiredDocuments": []}

    for iteration in range(REFINEMENT_PASSES):
        logger.info(f"Starting refinement pass {iteration + 1} of {REFINEMENT_PASSES}")
        prompt = generation_prompt(
            research_description,
            inputs["foa"],
            document_content,
            inputs["chalk_talk"],
            inputs["factors"],
            inputs["current"] if iteration == 0 else result,
            iteration,
        )

        try:
            content = run_pass(prompt, llm, gemini)
        except Exception as e:
            logger.error(f"Refinement pass {iteration + 1} failed: {e}")
            continue

        if not content:
            logger.error(f"No response for refinement pass {iteration + 1}")
            continue

        try:
            parsed = parse_llm_json(content)
        except ValueError as e:
            logger.error(f"Could not parse refinement pass {iteration + 1}: {e}")
            continue
        if not isinstance(parsed, dict):
            continue

        result = normalize_requirements(parsed)
        logger.info(
            f"Pass {iteration + 1}: {len(result['requiredDocuments'])} documents, "
            f"{len(result['questions'])} questions"
        )

    questions = dedupe_questions(result["questions"])
    logger.info(f"Unique questions after deduplication: {len(questions)}")
    return {"questions": questions, "requiredDocuments": result["requiredDocuments"]}
