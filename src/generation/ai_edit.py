"""
AI edit suggestions for generated documents.

The model sees the document HTML plus a per-tag count and answers with one
"replace" suggestion that groups node-level replace/add/delete edits.
Edits that would do nothing are dropped before returning.
"""

import json
import logging
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)


class SuggestionParseError(ValueError):
    """The model's answer could not be read as edit suggestions."""


def summarize_tags(html_summary: Optional[Dict[str, Any]]) -> str:
    lines = ["Document structure:"]
    for tag_type, count in ((html_summary or {}).get("tagCounts") or {}).items():
        lines.append(f"- {tag_type}: {count} tags")
    return "\n".join(lines) + "\n"


def build_system_prompt(tag_summary: str) -> str:
    return f"""You are an expert editor helping to improve a document.
You receive HTML content and an instruction asking for specific improvements.

Suggest targeted edits to the HTML that carry out the instruction.
Make impactful improvements without changing the document structure.

{tag_summary}

GUIDELINES:
1. Identify the HTML tags to modify by tag type and index
2. Give the complete replacement content for each of those tags
3. Never change a tag's type, only the content inside it
4. Give a brief reason for each suggested edit
5. Prefer high-impact edits that clearly improve the document
6. Edit as many nodes as the request needs
7. Broad requests such as "improve tone" or "fix grammar" may touch many nodes
8. When condensing across several paragraphs, DELETE the originals and ADD one new paragraph instead of issuing several REPLACE operations

AVAILABLE OPERATIONS:
1. Replace existing content:
   - operation: "replace"
   - tagType: the HTML tag type (p, h1)
   - tagIndex: the 0-based index among tags of that type
   - originalContent: the complete original tag with its content
   - newContent: the complete replacement tag with its content
   - explanation: a short explanation of the change

2. Add new content:
   - operation: "add"
   - tagType: the type of node to add (p, h1)
   - newContent: the content of the new node
   - position: "before" or "after"
   - referenceNodeType: the type of the node to position against
   - referenceNodeIndex: the index of that reference node
   - explanation: why the content is added

3. Delete content:
   - operation: "delete"
   - tagType: the type of node to delete
   - tagIndex: the index of the node to delete
   - originalContent: the content being deleted, for confirmation
   - explanation: why the content is removed

Group all edits into a single suggestion:
- type: always "replace"
- edits: the array of node edits
- reason: an overall explanation of the changes

Example:
{{
  "type": "replace",
  "edits": [
    {{
      "operation": "replace",
      "tagType": "p",
      "tagIndex": 2,
      "originalContent": "<p>This paragraph needs improvement.</p>",
      "newContent": "<p>This paragraph has been improved.</p>",
      "explanation": "Made the text more concise"
    }},
    {{
      "operation": "add",
      "tagType": "h1",
      "newContent": "<h1>New Section Title</h1>",
      "position": "after",
      "referenceNodeType": "h1",
      "referenceNodeIndex": 2,
      "explanation": "Added a section covering topic X"
    }},
    {{
      "operation": "delete",
      "tagType": "p",
      "tagIndex": 5,
      "originalContent": "<p>This paragraph repeats earlier points.</p>",
      "explanation": "Removed repeated information"
    }}
  ],
  "reason": "Improved clarity and concision throughout the document"
}}

Only include edits that change something. For replace operations newContent must differ from originalContent.

Respond with a JSON object in the structure shown above."""


def is_valid_edit(edit: Dict[str, Any]) -> bool:
    if not isinstance(edit, dict):
        return False
    operation = edit.get("operation")
    if operation == "replace" and edit.get("originalContent") == edit.get("newContent"):
        return False
    if operation == "add" and (
        not edit.get("newContent")
        or not edit.get("position")
        or edit.get("referenceNodeType") is None
        or edit.get("referenceNodeIndex") is None
    ):
        return False
    if operation == "delete" and (edit.get("tagType") is None or edit.get("tagIndex") is None):
        return False
    return True


def _load_response(text: str) -> Any:
    stripped = text.strip()
    if stripped.startswith("["):
        start, end = stripped.find("["), stripped.rfind("]")
    else:
        start, end = stripped.find("{"), stripped.rfind("}")
    if start != -1 and end != -1 and start < end:
        return json.loads(stripped[start:end + 1])
    return json.loads(stripped)


def parse_suggestions(text: str) -> List[Dict[str, Any]]:
    """
    Turn the model's answer into a list of suggestions.

    Raises:
        SuggestionParseError: If the answer is not JSON or has an unexpected shape
    """
    if not text:
        return []

    try:
        parsed = _load_response(text)
    except json.JSONDecodeError as e:
        raise SuggestionParseError("Failed to parse AI suggestions") from e

    if isinstance(parsed, list):
        return parsed

    if isinstance(parsed, dict) and parsed.get("type") == "replace" and isinstance(parsed.get("edits"), list):
        parsed["edits"] = [edit for edit in parsed["edits"] if is_valid_edit(edit)]
        return [parsed] if parsed["edits"] else []

    raise SuggestionParseError("Failed to parse AI suggestions")


def suggest_edits(llm, content: str, instruction: str, html_summary: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    system_prompt = build_system_prompt(summarize_tags(html_summary))
    logger.info(f"AI edit system prompt length: {len(system_prompt)}")

    answer = llm.chat(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": f"HTML CONTENT:\n{content}\n\nINSTRUCTION: {instruction}"},
        ],
        temperature=0.7,
        model="gpt-4o",
        max_completion_tokens=5000,
    )

    suggestions = parse_suggestions(answer)
    edit_count = sum(len(s.get("edits") or [None]) for s in suggestions if isinstance(s, dict))
    logger.info(f"Parsed {len(suggestions)} suggestions with {edit_count} edits")
    return suggestions
