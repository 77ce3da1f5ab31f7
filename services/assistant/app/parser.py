"""Parsing of field-block model output and detection of user commands.

Model output contract::

    FIELD_NAME:
    Free text body...
    SOURCES:
    [1] Author (Year). Title. Publisher. ISBN.
    [2] "Title" - Site. https://example.com

Command grammar (matched against the trimmed message, case-insensitive)::

    research[:] <item>
    fix the <field> in <item>
    edit[:] <item> | update[:] <item>
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from word_pilot_schemas import Source, SourceType

SOURCES_FIELD = "sources"

_FIELD_HEADER = re.compile(r"^([A-Z_][A-Z0-9_]*):\s*$")
_SOURCE_MARKER = re.compile(r"\[(\d+)\]")
_URL = re.compile(r"https?://[^\s\"'<>\])]+")
_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")

_BOOK_HINTS = re.compile(r"\b(?:isbn|publisher)\b", re.IGNORECASE)
_ARTICLE_HINTS = re.compile(r"\b(?:journal|volume|issue|pages)\b", re.IGNORECASE)
_WEBSITE_HINTS = re.compile(r"https?://|\bwww\.", re.IGNORECASE)

_RESEARCH_COMMAND = re.compile(r"^research(?::\s*|\s+)(.+)$", re.IGNORECASE | re.DOTALL)
_FIX_COMMAND = re.compile(r"^fix\s+the\s+(.+?)\s+in\s+(.+)$", re.IGNORECASE | re.DOTALL)
_EDIT_COMMAND = re.compile(r"^(?:edit|update)(?::\s*|\s+)(.+)$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class EditCommand:
    item_name: str
    field_name: Optional[str] = None


def parse_research_output(text: str) -> Optional[dict[str, Any]]:
    """Split field-block text into ``{field: body}``.

    Field names are lower-cased and keep first-occurrence order; bodies are
    trimmed. The ``sources`` field becomes a list of :class:`Source`. Returns
    ``None`` when no header is found, which callers treat as a retryable
    format failure.
    """

    if not text:
        return None

    fields: dict[str, list[str]] = {}
    current: Optional[str] = None
    for line in text.splitlines():
        match = _FIELD_HEADER.match(line)
        if match:
            current = match.group(1).lower()
            fields[current] = []
        elif current is not None:
            fields[current].append(line)

    if not fields:
        return None

    result: dict[str, Any] = {}
    for name, lines in fields.items():
        body = "\n".join(lines).strip()
        result[name] = parse_sources(body) if name == SOURCES_FIELD else body
    return result


def parse_sources(text: str) -> list[Source]:
    """Extract one :class:`Source` per ``[n]`` marker, or per line when unnumbered."""

    if not text or not text.strip():
        return []

    pieces = _SOURCE_MARKER.split(text)
    sources: list[Source] = []
    if len(pieces) > 1:
        # pieces = [preamble, n1, body1, n2, body2, ...]
        for number, body in zip(pieces[1::2], pieces[2::2]):
            citation = " ".join(body.split())
            if citation:
                sources.append(_build_source(int(number), citation))
        return sources

    lines = [line for line in text.splitlines() if line.strip()]
    for index, line in enumerate(lines, start=1):
        citation = _LIST_MARKER.sub("", line).strip()
        if citation:
            sources.append(_build_source(index, citation))
    return sources


def _build_source(number: int, citation: str) -> Source:
    return Source(
        number=number,
        citation=citation,
        type=infer_source_type(citation),
        url=extract_url(citation),
    )


def extract_url(citation: str) -> Optional[str]:
    match = _URL.search(citation)
    if not match:
        return None
    return match.group(0).rstrip(".,;:")


def infer_source_type(citation: str) -> SourceType:
    if _BOOK_HINTS.search(citation):
        return SourceType.BOOK
    if _ARTICLE_HINTS.search(citation):
        return SourceType.ARTICLE
    if _WEBSITE_HINTS.search(citation):
        return SourceType.WEBSITE
    return SourceType.OTHER


def extract_item_name(message: str) -> Optional[str]:
    """Return the item named by a ``research`` command, or ``None`` for normal chat."""

    match = _RESEARCH_COMMAND.match(message.strip())
    if not match:
        return None
    name = match.group(1).strip()
    return name or None


def extract_edit_command(message: str) -> Optional[EditCommand]:
    """Return the edit target named by a fix/edit/update command, or ``None``."""

    trimmed = message.strip()
    match = _FIX_COMMAND.match(trimmed)
    if match:
        field_name = re.sub(r"\s+", "_", match.group(1).strip().lower())
        item_name = match.group(2).strip()
        if item_name:
            return EditCommand(item_name=item_name, field_name=field_name or None)

    match = _EDIT_COMMAND.match(trimmed)
    if match and match.group(1).strip():
        return EditCommand(item_name=match.group(1).strip())
    return None


def serialise_research_data(data: dict[str, Any]) -> dict[str, Any]:
    """Convert parsed research output into JSON-safe values for persistence."""

    serialised: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, list):
            serialised[key] = [
                item.model_dump(mode="json") if isinstance(item, Source) else item for item in value
            ]
        else:
            serialised[key] = value
    return serialised
