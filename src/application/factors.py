"""
Application factors questionnaire.

A chat that steers the researcher through the questions that decide which
grants fit (agency, institute, mechanism, applicant, management, ethics,
location). Every model turn is a JSON assessment of the current answer.
Batch mode pre-fills answers from the research description and the latest
chalk-talk transcription.
"""

import logging
from typing import List, Dict, Any, Optional

from src.llm.json_utils import parse_llm_json

logger = logging.getLogger(__name__)

MODEL = "gpt-4o-mini"
TEMPERATURE = 0.1

QUESTION_TOPICS = {
    "agency_alignment": "Alignment with funding agencies like NIH or NSF based on research focus",
    "specific_institute": "Targeting specific institutes, centers, or directorates within funding agencies",
    "grant_type": "Suitable grant mechanisms for the research project",
    "applicant_characteristics": "Organization type and special characteristics relevant for funding",
    "project_management": "Project structure in terms of leadership and collaboration",
    "ethical_compliance": "Ethical and regulatory considerations for the research",
    "research_location": "Geographical considerations for where the research will be conducted",
}

REQUIRED_FIELDS = ["isAnswerComplete", "finalAnswer", "isUncertaintyExpressed", "meetsCriteria", "message"]


def base_prompt(research_description: str) -> str:
    return f"""You are an assistant helping a researcher identify the key factors for matching their research with suitable funding opportunities. You must always respond in JSON.

RESPONSE FORMAT:
Respond with a single JSON object and nothing else. Whatever else you are asked, the response must be valid JSON.

REQUIRED FIELDS (all must be present):
- "isAnswerComplete": boolean, whether the answer meets all criteria
- "finalAnswer": string, the extracted answer that meets the criteria (empty if incomplete)
- "confidence": string, always "high"
- "isUncertaintyExpressed": boolean, whether the user expressed uncertainty
- "meetsCriteria": boolean, whether the answer meets every criterion
- "missingCriteria": array, the criteria still missing (empty when complete)
- "message": string, your reply to the user with suggestions and questions

EXAMPLE:
{{
  "isAnswerComplete": false,
  "finalAnswer": "",
  "confidence": "high",
  "isUncertaintyExpressed": false,
  "meetsCriteria": false,
  "missingCriteria": ["specific grant mechanisms"],
  "message": "For research on biomedical technology, suitable mechanisms include R01 for traditional research projects, R21 for exploratory research and R03 for small projects. Would you like to go with one of these?"
}}

Research Description:
{research_description or "No research description provided yet."}"""


def single_question_prompt(
    research_description: str,
    current_question: str,
    criteria: Optional[str],
    question_context: Optional[str],
) -> str:
    topic = QUESTION_TOPICS.get(current_question, "aspects of the research project")
    return f"""{base_prompt(research_description)}

Current Context:
- Topic: {current_question} - {topic}
- Question: {question_context or ""}
- Criteria: {criteria}

Response rules (every response is still JSON):
1. Consider every message in the conversation about this question
2. When the user accepts a suggestion ("yes", "okay", "let's do that"), use that suggestion as their answer
3. If you offered options and the user accepted them, extract those options as the answer
4. Only extract information that answers the question according to the criteria
5. Put all replies, suggestions and questions in "message"
6. Keep "finalAnswer" concise and limited to information that meets the criteria
7. Use "message" for extra context, explanations or follow-up questions
8. Never use a question from the user as an answer, even after offering suggestions
9. Only discuss NIH or NSF grants
10. Never mark an answer complete right after asking a question

Your response must be one valid JSON object with all required fields."""


def batch_prompt(research_description: str, questions: List[Dict[str, Any]], chalk_talk_transcription: str = "") -> str:
    prompt = f"""{base_prompt(research_description)}

Analyse this research description and decide what can be extracted to answer the questions below.
Give a JSON assessment for each question."""

    if chalk_talk_transcription:
        prompt += f"\n\nChalk Talk Transcription:\n{chalk_talk_transcription}"

    listed = "\n".join(
        f"\nID: {q.get('id')}\nQuestion: {q.get('question')}\nCriteria: {q.get('criteria')}\n"
        for q in questions
    )

    prompt += f"""

Questions to analyze:
{listed}

RESPONSE FORMAT:
Respond with only a JSON array holding one assessment per question, in this exact shape:
[
  {{
    "questionId": "the_question_id",
    "isAnswerComplete": true,
    "finalAnswer": "extracted answer if complete, empty string if incomplete",
    "confidence": "high",
    "isUncertaintyExpressed": false,
    "meetsCriteria": true,
    "missingCriteria": []
  }}
]

No text before or after the array, no markdown and no explanations."""
    return prompt


def _is_complete(assessment: Dict[str, Any]) -> bool:
    return bool(assessment.get("meetsCriteria") or assessment.get("isUncertaintyExpressed"))


def analyze_question(
    llm,
    current_question: str,
    messages: Optional[List[Dict[str, str]]] = None,
    research_description: str = "",
    criteria: Optional[str] = None,
    question_context: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Assess the conversation for one question.

    Returns:
        {"message", "isAnswerComplete", "finalAnswer", "missingCriteria"}.
        Unparseable model output becomes an apology message, never an error.
    """
    system_prompt = single_question_prompt(research_description, current_question, criteria, question_context)
    response = llm.chat(
        [{"role": "system", "content": system_prompt}, *(messages or [])],
        temperature=TEMPERATURE,
        model=MODEL,
    )

    try:
        assessment = parse_llm_json(response)
        if not isinstance(assessment, dict):
            raise ValueError("Response is not a valid JSON object")

        missing = [f for f in REQUIRED_FIELDS if f not in assessment]
        if missing:
            raise ValueError(f"Response is missing required fields: {', '.join(missing)}")

    except ValueError as e:
        logger.error(f"Error processing factors response for {current_question}: {e}")
        return {
            "message": f"Error processing response: {e}. Please try again.",
            "isAnswerComplete": False,
            "finalAnswer": "",
            "missingCriteria": [],
        }

    return {
        "message": assessment.get("message") or "",
        "isAnswerComplete": _is_complete(assessment),
        "finalAnswer": assessment.get("finalAnswer") or "",
        "missingCriteria": assessment.get("missingCriteria") or [],
    }


def latest_chalk_talk_transcription(store, project_id: str) -> str:
    try:
        rows = store.select("chalk_talks", {"project_id": project_id}, order_by=["-created_at"], limit=1)
    except Exception as e:
        logger.error(f"Error fetching chalk talk transcription: {e}")
        return ""
    if rows and rows[0].get("transcription"):
        logger.info(f"Found chalk talk transcription, length: {len(rows[0]['transcription'])}")
        return rows[0]["transcription"]
    return ""


def analyze_all(
    llm,
    questions: List[Dict[str, Any]],
    research_description: str = "",
    chalk_talk_transcription: str = "",
) -> Dict[str, Any]:
    """
    Assess every question at once.

    Returns:
        {"results": [...]} or {"error": "Failed to process batch analysis", "results": []}
    """
    response = llm.chat(
        [{"role": "system", "content": batch_prompt(research_description, questions, chalk_talk_transcription)}],
        temperature=TEMPERATURE,
        model=MODEL,
    )

    try:
        assessments = parse_llm_json(response or "[]", expect="array")
        if not isinstance(assessments, list):
            raise ValueError("Response is not an array")
    except ValueError as e:
        logger.error(f"Error processing batch analysis: {e}")
        return {"error": "Failed to process batch analysis", "results": []}

    logger.info(f"Batch analysis returned {len(assessments)} assessments for {len(questions)} questions")
    return {
        "results": [
            {
                "questionId": a.get("questionId"),
                "isAnswerComplete": _is_complete(a),
                "finalAnswer": a.get("finalAnswer"),
                "missingCriteria": a.get("missingCriteria") or [],
            }
            for a in assessments
            if isinstance(a, dict)
        ]
    }
