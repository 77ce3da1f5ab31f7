"""Prompt text for the research phases and the structured assistant flows."""

from __future__ import annotations

import json
from typing import Any, Sequence

PLANNING_PROMPT = """
You are helping an author plan a research-intensive non-fiction book. This phase
covers every planning activity before research begins.

- If the author only has a vague idea, brainstorm book topics within their area of
  interest and explain why each could work.
- Once there is a topic, explore the angle, what makes it distinctive, and refine it
  into a concrete book concept.
- Identify similar existing works and explain how this book can differ or fill gaps.
- Define the target audience, research depth, scope and tone.
- Propose a structure for the research: sections, the specific items to research in
  each section, and the information fields to collect for every item.
- Draft research instructions tailored to this book for the next phase.

Be exploratory: ask clarifying questions and let the author guide. Only when the
author confirms they are ready to start researching, reply with JSON and nothing else:

{
  "bookPlan": {
    "topic": "clear topic statement",
    "angle": "specific focus",
    "audience": "target readers",
    "depth": "research depth needed",
    "scope": "book length and scope"
  },
  "similarWorks": [
    {"title": "Book Title", "author": "Author", "howItsDifferent": "explanation"}
  ],
  "researchPlan": {
    "sections": [
      {
        "title": "Section title",
        "description": "What this section covers",
        "itemsToResearch": ["item1", "item2"]
      }
    ],
    "researchFields": ["field1", "field2"]
  },
  "phase2Prompt": "Research instructions customised for this book"
}

Start by finding out whether the author already has a clear topic or is still
developing the idea.
""".strip()

RESEARCH_PROMPT = """
You are researching items for a non-fiction book.

When the author asks you to research an item:
1. Gather thorough information from credible sources.
2. Structure the findings using the research fields defined in the research plan.
3. Provide complete citations with full bibliographic details.

Citation formats:
- Books: Author (Year). Title. Publisher. ISBN.
- Websites: "Title" - Source. URL (Accessed: Date)
- Articles: Author (Year). "Title". Journal, Volume(Issue), Pages.

Write each field under an UPPER_SNAKE_CASE header on its own line and finish with a
SOURCES section of numbered references such as [1], [2].
""".strip()

FACT_CHECKING_PROMPT = """
You are fact-checking the research collected for a non-fiction book.

1. Review research items for accuracy.
2. Look for contradictions between sources.
3. Verify that citations are complete and legitimate.
4. Identify gaps in research coverage.
5. Suggest corrections or additional research where needed.

Be thorough and call out any concern about source quality or missing information.
""".strip()

DEFAULT_PHASE_PROMPTS = {
    1: PLANNING_PROMPT,
    2: RESEARCH_PROMPT,
    3: FACT_CHECKING_PROMPT,
}

FIELD_BLOCK_EXAMPLE = "FIELD_NAME:\nContent for this field...\n\nSOURCES:\n[1] Full citation\n[2] Full citation"

SUMMARY_SYSTEM_PROMPT = "You condense research conversations for an author's assistant."

SUMMARY_PROMPT = """
Summarize the following conversation concisely in 2-3 sentences, focusing on the key
decisions made, actions taken and research completed.

{transcript}
""".strip()


def _field_header(field: str) -> str:
    return "_".join(field.strip().upper().split())


def build_research_prompt(item_name: str, section: str, research_fields: Sequence[str]) -> str:
    """Instruction asking for one labelled block per research field plus sources."""

    lines = [f"Research '{item_name}' from section '{section}'."]
    fields = [field for field in research_fields if field.strip()]
    if fields:
        headers = ", ".join(_field_header(field) for field in fields)
        lines.append(f"Cover these fields, one labelled block each: {headers}.")
    lines.append(
        "Output your findings in structured format with each field clearly labelled, "
        "followed by a SOURCES block with bracket-numbered citations. Use this format:"
    )
    lines.append("")
    lines.append(FIELD_BLOCK_EXAMPLE)
    lines.append("")
    lines.append("Make sure to include all relevant information, sources, and context.")
    return "\n".join(lines)


def build_edit_prompt(
    item_name: str,
    section: str,
    current_data: dict[str, Any],
    field_name: str | None = None,
) -> str:
    """Instruction asking for a complete replacement of an item's research data."""

    lines = [f"Edit the research for '{item_name}' from section '{section}'."]
    if field_name:
        lines.append(f"Focus on the field: {field_name.replace('_', ' ')}.")
    lines.append("")
    lines.append("Current research data:")
    lines.append(json.dumps(current_data, indent=2, ensure_ascii=False, default=str))
    lines.append("")
    lines.append(
        "Output the complete updated research in structured format with each field clearly "
        "labelled. Use this format:"
    )
    lines.append("")
    lines.append(FIELD_BLOCK_EXAMPLE)
    lines.append("")
    lines.append(
        "Include every field, even the ones that do not change, so the result can replace "
        "the current data entirely."
    )
    return "\n".join(lines)


def build_summary_prompt(turns: Sequence[tuple[str, str]]) -> str:
    transcript = "\n\n".join(f"{role.upper()}: {content}" for role, content in turns)
    return SUMMARY_PROMPT.format(transcript=transcript)


RESEARCH_NOT_FOUND_NOTICE = (
    "I couldn't find \"{name}\" in your research plan. Would you like me to add it to your research plan?"
)
EDIT_NOT_FOUND_NOTICE = "I couldn't find \"{name}\" in your research plan."
RESEARCH_PARSE_NOTICE = (
    "I had trouble parsing the research output. Please try again or ask me to research in a different format."
)
EDIT_PARSE_NOTICE = (
    "I had trouble parsing the edited research output. Please try again or ask me to edit in a "
    "different format."
)
RESEARCH_SAVED_NOTICE = (
    "Research for \"{name}\" has been saved successfully! You can view it in the Research Database."
)
EDIT_SAVED_NOTICE = (
    "Research for \"{name}\" has been updated successfully! You can view the changes in the Research Database."
)
RESEARCH_SAVE_FAILED_NOTICE = "Failed to save research. Please try again."
EDIT_SAVE_FAILED_NOTICE = "Failed to save edits. Please try again."
MESSAGE_SAVE_FAILED_NOTICE = "Failed to save the conversation. Please try again."
STRUCTURE_FAILED_NOTICE = "Failed to create research structure. Please try again."
STORE_UNAVAILABLE_NOTICE = "I couldn't load your project data. Please try again in a moment."


def structure_created_notice(item_count: int) -> str:
    plural = "" if item_count == 1 else "s"
    return (
        f"Research structure created! {item_count} item{plural} added to your research plan. "
        "You can now see them in the Research Database."
    )
