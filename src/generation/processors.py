"""
Document generators.

Two generators share a context-gathering base:
- GeneralDocumentProcessor: one completion driven by the document's prompt
- ProjectDescriptionProcessor: outline first, then each section in parallel

process() never raises; failures come back as GenerationResult.error.
"""

import re
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Dict, Any, Optional

from src.llm.json_utils import parse_llm_json
from src.vectorization.context import (
    get_foa_text,
    get_research_description_text,
    get_scientific_figure_text,
    get_chalk_talk_text,
)

logger = logging.getLogger(__name__)

WORDS_PER_PAGE = 750
TOTAL_PAGES = 15
TOTAL_WORDS = TOTAL_PAGES * WORDS_PER_PAGE
MAX_SECTION_WORKERS = 7

HTML_TAG_PATTERN = re.compile(r"</?[hp]1?>", re.IGNORECASE)


@dataclass
class GenerationResult:
    content: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"content": self.content}
        if self.error:
            data["error"] = self.error
        return data


def format_to_html(text: str) -> str:
    """Wrap each non-empty line in <p>."""
    lines = [line.strip() for line in (text or "").split("\n")]
    return "\n".join(f"<p>{line}</p>" for line in lines if line)


class DocumentProcessor(ABC):
    """Base class for document generators."""

    def __init__(self, index, llm):
        self.index = index
        self.llm = llm

    def gather_context(self, project_id: str, foa_id: Optional[str] = None) -> Dict[str, str]:
        context = {
            "researchDescriptions": get_research_description_text(self.index, project_id),
            "scientificFigures": get_scientific_figure_text(self.index, project_id),
            "chalkTalks": get_chalk_talk_text(self.index, project_id),
        }

        if foa_id:
            try:
                context["foaContent"] = get_foa_text(self.index, foa_id)
            except Exception as e:
                logger.warning(f"Could not load FOA {foa_id} for context: {e}")

        return context

    @abstractmethod
    def generate_content(
        self,
        document: Dict[str, Any],
        answers: List[Dict[str, str]],
        context: Dict[str, str],
    ) -> GenerationResult:
        pass

    def process(
        self,
        document: Dict[str, Any],
        project_id: str,
        foa_id: Optional[str] = None,
        answers: Optional[List[Dict[str, str]]] = None,
    ) -> GenerationResult:
        try:
            context = self.gather_context(project_id, foa_id)
            return self.generate_content(document, answers or [], context)
        except Exception as e:
            logger.error(f"Document processing failed for {document.get('id')}: {e}")
            return GenerationResult(content="", error=str(e) or "Failed to process document")


# ---------------------------------------------------------------------------
# General documents
# ---------------------------------------------------------------------------

GENERAL_SYSTEM_PROMPT = """You are an experienced grant writer who drafts persuasive research grant documents.
Write the document from the prompt, the project context and the applicant's answers.

Guidelines:
1. Follow the document prompt's instructions closely
2. Use the relevant details from the project context
3. Tailor the content with the applicant's answers
4. Keep a formal academic tone
5. Be specific and detailed
6. Use well-structured paragraphs with transitions
7. Aim for about {TARGET_WORDS} words, enough to fill {TARGET_PAGES} pages

Format requirements:
- Structure the response with HTML tags
- Always start with the document title as a heading: <h1>{DOCUMENT_TITLE}</h1>
- Use <h1> tags for further main headings (e.g. <h1>Introduction</h1>)
- Use <p> tags for paragraphs (e.g. <p>This is a paragraph.</p>)
- Put each paragraph or heading on its own line
- Keep citations inside paragraph tags (e.g. <p>As shown by Smith et al. (2023)...</p>)
- Do not use any HTML tags other than <h1> and <p>
- Do not use markdown"""


class GeneralDocumentProcessor(DocumentProcessor):

    def build_system_prompt(self, document: Dict[str, Any]) -> str:
        target_pages = document.get("page_limit") or 1
        target_words = round(target_pages * WORDS_PER_PAGE)
        return (
            GENERAL_SYSTEM_PROMPT
            .replace("{TARGET_WORDS}", str(target_words))
            .replace("{TARGET_PAGES}", str(target_pages))
            .replace("{DOCUMENT_TITLE}", document.get("name") or "Document")
        )

    def build_user_prompt(
        self,
        template_prompt: str,
        answers: List[Dict[str, str]],
        context: Dict[str, str],
    ) -> str:
        sections = [template_prompt or ""]
        if answers:
            joined = "\n".join(f"{a.get('label')}: {a.get('answer')}" for a in answers)
            sections.append(f"User Provided Information: {joined}")
        if context.get("researchDescriptions"):
            sections.append(f"Research Description Context: {context['researchDescriptions']}")
        if context.get("scientificFigures"):
            sections.append(f"Scientific Figures Context: {context['scientificFigures']}")
        if context.get("chalkTalks"):
            sections.append(f"Chalk Talks Context: {context['chalkTalks']}")
        if context.get("foaContent"):
            sections.append(f"FOA Context: {context['foaContent']}")
        return "\n\n".join(s for s in sections if s)

    def generate_content(self, document, answers, context) -> GenerationResult:
        try:
            content = self.llm.chat(
                [
                    {"role": "system", "content": self.build_system_prompt(document)},
                    {"role": "user", "content": self.build_user_prompt(document.get("prompt"), answers, context)},
                ],
                temperature=None,
                model="gpt-4o-mini",
            )
        except Exception as e:
            logger.error(f"Error generating document: {e}")
            return GenerationResult(content="", error=str(e) or "Failed to generate document")

        if not HTML_TAG_PATTERN.search(content):
            content = format_to_html(content)
        return GenerationResult(content=content)


# ---------------------------------------------------------------------------
# Project description
# ---------------------------------------------------------------------------

OUTLINE_SYSTEM_PROMPT = """You are a research grant writing expert who organises project descriptions into clear, compelling narratives.

Analyse the research content provided and produce a structured outline for a formal research project description.
The outline is an ordered array of items; each item has a heading, a description and a percentage allocation.

The outline must contain these items, in this order:
1. Project Summary/Abstract
2. Background and Significance
3. Specific Aims/Objectives
4. Research Strategy/Approach
5. Innovation and Impact
6. Preliminary Results
7. Timeline and Milestones

For each item:
- Give a heading that fits this specific project
- Describe what the section should contain, based only on the available materials
- Estimate the share of the final report the section should take (percentages must sum to 100)
- Keep the research narrative cohesive
- Be definite; avoid conditional language
- Refer to specific details from the provided content

Respond with a JSON object holding an "items" array; each item has:
- "heading": string
- "description": string
- "percentage": number (the recommended share of the final report)

Return the items in the order above and make the percentages sum to exactly 100."""

SECTION_SYSTEM_PROMPT = """You are a research grant writing expert. Write one detailed section of a research grant proposal.
Use a formal academic tone and draw specifics from the research materials provided.
Aim for about {TARGET_WORDS} words, enough to fill {TARGET_PAGES} pages.
Write only the assigned section: {SECTION_HEADING}

Guidance for this section:
{SECTION_DESCRIPTION}

Formatting requirements:
- Plain text only
- Separate paragraphs with single newlines
- Write continuous prose with clear transitions between paragraphs
- Write citations in plain text (e.g. "Smith et al., 2023")
- No special characters or formatting
- No headers or subheaders
- No bullet points or numbered lists
- No markdown

Respond with a JSON object with a single "content" field holding the plain text.
Separate paragraphs only with newline characters and leave out the section heading."""


def _materials(context: Dict[str, str]) -> str:
    sections = []
    if context.get("researchDescriptions"):
        sections.append(f"Research Descriptions: {context['researchDescriptions']}")
    if context.get("scientificFigures"):
        sections.append(f"Scientific Figures: {context['scientificFigures']}")
    if context.get("chalkTalks"):
        sections.append(f"Chalk Talks: {context['chalkTalks']}")
    if context.get("foaContent"):
        sections.append(f"FOA Content: {context['foaContent']}")
    return "\n\n".join(sections)


def section_targets(percentage: float):
    """(target words, target pages as a one-decimal string) for a share of the document."""
    target_words = round(percentage / 100 * TOTAL_WORDS)
    target_pages = f"{percentage / 100 * TOTAL_PAGES:.1f}"
    return target_words, target_pages


class ProjectDescriptionProcessor(DocumentProcessor):

    def generate_outline(self, context: Dict[str, str]) -> List[Dict[str, Any]]:
        prompt = (
            "Analyze the following research content and generate a structured outline "
            f"for this specific project:\n\n{_materials(context)}"
        )
        content = self.llm.chat(
            [
                {"role": "system", "content": OUTLINE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=None,
            model="gpt-4o-mini",
            json_mode=True,
        )
        outline = parse_llm_json(content or "{}")
        items = outline.get("items") if isinstance(outline, dict) else None
        return [item for item in items or [] if isinstance(item, dict)]

    def generate_section(self, item: Dict[str, Any], context: Dict[str, str]) -> Dict[str, Any]:
        heading = item.get("heading") or ""
        percentage = item.get("percentage") or 0
        target_words, target_pages = section_targets(percentage)

        system_prompt = (
            SECTION_SYSTEM_PROMPT
            .replace("{TARGET_WORDS}", str(target_words))
            .replace("{TARGET_PAGES}", target_pages)
            .replace("{SECTION_HEADING}", heading)
            .replace("{SECTION_DESCRIPTION}", item.get("description") or "")
        )
        user_prompt = (
            f"Using the following research materials, write the {heading} section:\n\n"
            f"{_materials(context)}"
        )

        content = self.llm.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=None,
            model="gpt-4o-mini",
            json_mode=True,
        )
        response = parse_llm_json(content or "{}")
        text = response.get("content") if isinstance(response, dict) else ""

        logger.info(f"Generated section '{heading}' (target {target_words} words)")
        return {"heading": heading, "content": text or "", "targetWordCount": target_words}

    def generate_content(self, document, answers, context) -> GenerationResult:
        try:
            items = self.generate_outline(context)
            if not items:
                raise ValueError("Failed to generate outline")

            logger.info(f"Outline has {len(items)} sections, generating in parallel")

            # map() keeps outline order
            with ThreadPoolExecutor(max_workers=MAX_SECTION_WORKERS) as executor:
                sections = list(executor.map(lambda item: self.generate_section(item, context), items))

            content = "\n".join(
                f"<h1>{section['heading']}</h1>\n{format_to_html(section['content'])}\n"
                for section in sections
            )
            return GenerationResult(content=content)

        except Exception as e:
            logger.error(f"Error generating project description: {e}")
            return GenerationResult(content="", error=str(e) or "Failed to generate project description")
