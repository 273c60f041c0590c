# parsing/extractor.py
"""Best-effort extraction of named sections from raw provider output.

Providers are asked to wrap each section in delimiters, either
``<<<NAME>>> ... <<<END_NAME>>>`` or ``⟪NAME⟫ ... ⟪/NAME⟫``, and frequently
emit both nested inside each other, only one of them, or neither. The
functions here never raise for malformed text: they fall back through an
ordered list of strategies and return ``None`` only when nothing usable
remains.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from models import AssemblerOutput, PlannerOutput, PolishNotes, PolishOutput
from utils.text_processing import LOCALIZED_CHAPTER_HEADING_RE

logger = structlog.get_logger(__name__)

SECTION_NAMES = ("OUTLINE_JSON", "CHECKLIST", "CHAPTERS", "TITLES", "SYNOPSIS", "NOTES")
BODY_SECTIONS = frozenset({"CHAPTERS"})
MIN_BODY_CHARS = 100

_ANY_MARKER_RE = re.compile(r"<<</?[A-Z_]+>>>|⟪/?[A-Z_]+⟫")
_ANY_HEADING_RE = re.compile(r"^# .+$", re.MULTILINE)


def ascii_markers(section: str) -> tuple[str, tuple[str, ...]]:
    return f"<<<{section}>>>", (f"<<<END_{section}>>>", f"<<</{section}>>>")


def unicode_markers(section: str) -> tuple[str, tuple[str, ...]]:
    return f"⟪{section}⟫", (f"⟪/{section}⟫",)


class ExtractionStrategy(Protocol):
    def try_extract(self, raw: str) -> str | None: ...


def _find_start(raw: str, marker: str) -> re.Match[str] | None:
    return re.search(re.escape(marker) + r"\s*\n?", raw, re.IGNORECASE)


def _find_end(text: str, markers: Iterable[str]) -> int | None:
    best: int | None = None
    for marker in markers:
        match = re.search(r"\s*" + re.escape(marker), text, re.IGNORECASE)
        if match and (best is None or match.start() < best):
            best = match.start()
    return best


@dataclass(frozen=True)
class DelimitedPair:
    """Text between a start marker and its matching end marker."""

    start: str
    ends: tuple[str, ...]

    def try_extract(self, raw: str) -> str | None:
        start = _find_start(raw, self.start)
        if start is None:
            return None
        remaining = raw[start.end() :]
        end = _find_end(remaining, self.ends)
        if end is None:
            return None
        return remaining[:end].strip()


@dataclass(frozen=True)
class UnterminatedStart:
    """Text after a start marker that was never closed.

    Runs until the next marker belonging to a different section, or to the
    end of the response.
    """

    section: str
    start: str

    def try_extract(self, raw: str) -> str | None:
        start = _find_start(raw, self.start)
        if start is None:
            return None
        remaining = raw[start.end() :]
        for marker in _ANY_MARKER_RE.finditer(remaining):
            if _marker_section(marker.group(0)) != self.section:
                remaining = remaining[: marker.start()]
                break
        return remaining.strip()


def _marker_section(marker: str) -> str:
    name = marker.strip("<>⟪⟫/")
    return name[4:] if name.startswith("END_") else name


def strategies_for(section: str) -> list[ExtractionStrategy]:
    """Ordered strategies: ASCII pair, Unicode pair, then unterminated starts."""
    ascii_start, ascii_ends = ascii_markers(section)
    uni_start, uni_ends = unicode_markers(section)
    return [
        DelimitedPair(ascii_start, ascii_ends),
        DelimitedPair(uni_start, uni_ends),
        UnterminatedStart(section, ascii_start),
        UnterminatedStart(section, uni_start),
    ]


def _unwrap_nested(text: str, section: str) -> str:
    """Strip an inner delimiter pair of the same section left by nested output."""
    starts = [ascii_markers(section)[0], unicode_markers(section)[0]]
    ends = [*ascii_markers(section)[1], *unicode_markers(section)[1]]
    changed = True
    while changed:
        changed = False
        for marker in starts:
            if text[: len(marker)].upper() == marker:
                text = text[len(marker) :].strip()
                changed = True
        for marker in ends:
            if text[-len(marker) :].upper() == marker:
                text = text[: -len(marker)].strip()
                changed = True
    return text


def _boundary_index(raw: str, section: str) -> int | None:
    """Earliest position (after 0) where another section or this one's end begins."""
    candidates: list[str] = [*ascii_markers(section)[1], *unicode_markers(section)[1]]
    for other in ("TITLES", "SYNOPSIS", "NOTES"):
        if other != section:
            candidates.extend([ascii_markers(other)[0], unicode_markers(other)[0]])
    indices = [idx for marker in candidates if (idx := raw.find(marker)) > 0]
    return min(indices) if indices else None


def _strip_other_blocks(text: str, section: str) -> str:
    for other in SECTION_NAMES:
        if other == section:
            continue
        for start, ends in (ascii_markers(other), unicode_markers(other)):
            for end in ends:
                text = re.sub(
                    re.escape(start) + r".*?" + re.escape(end), "", text, flags=re.S
                )
    return _ANY_MARKER_RE.sub("", text).strip()


def _body_fallback(raw: str, section: str) -> str:
    boundary = _boundary_index(raw, section)
    search_text = raw[:boundary] if boundary is not None else raw

    chapter = LOCALIZED_CHAPTER_HEADING_RE.search(search_text)
    if chapter:
        logger.debug("Body fallback matched localized heading", heading=chapter.group(0))
        return _ANY_MARKER_RE.sub("", search_text[chapter.start() :]).strip()

    heading = _ANY_HEADING_RE.search(search_text)
    if heading:
        logger.debug("Body fallback using first markdown heading")
        return _ANY_MARKER_RE.sub("", search_text[heading.start() :]).strip()

    logger.debug("Body fallback using the remaining response text")
    return _strip_other_blocks(search_text, section)


def extract(raw: str | None, section: str) -> str | None:
    """Return the content of ``section`` from ``raw``, or ``None`` if absent."""
    if not raw:
        return None
    section = section.upper()

    primary: str | None = None
    for strategy in strategies_for(section):
        result = strategy.try_extract(raw)
        if result is not None:
            primary = _unwrap_nested(result, section)
            break

    if section in BODY_SECTIONS and (primary is None or len(primary) < MIN_BODY_CHARS):
        fallback = _body_fallback(raw, section)
        if fallback and len(fallback) > len(primary or ""):
            logger.info(
                "Primary extraction too short, using fallback",
                section=section,
                chars=len(fallback),
            )
            primary = fallback

    return primary or None


def scan_json_span(text: str) -> str | None:
    """Isolate the first well-nested JSON array or object in ``text``.

    Brackets inside string literals are ignored, and both bracket kinds
    count toward depth so mixed nesting closes correctly.
    """
    start = next((i for i, ch in enumerate(text) if ch in "[{"), -1)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape_next = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if escape_next:
            escape_next = False
            continue
        if ch == "\\":
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def parse_outline_json(outline_text: str | None) -> dict[str, Any]:
    """Parse an outline block into ``{"beats": [...], "chapters": [...]}``."""
    empty: dict[str, Any] = {"beats": [], "chapters": []}
    if not outline_text:
        return empty
    sanitized = re.sub(r"⟪[A-Z_/]+⟫", "", outline_text)
    sanitized = re.sub(r"<<<[A-Z_/]+>>>", "", sanitized)
    sanitized = re.sub(r"^\s*```(?:json)?\s*|\s*```\s*$", "", sanitized)
    sanitized = re.sub(r",\s*([}\]])", r"\1", sanitized).strip()
    span = scan_json_span(sanitized) or sanitized
    try:
        parsed = json.loads(span)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Failed to parse outline JSON", error=str(exc), preview=outline_text[:200]
        )
        return empty

    if isinstance(parsed, list):
        return {"beats": parsed, "chapters": []}
    if isinstance(parsed, dict) and isinstance(parsed.get("beats"), list):
        chapters = parsed.get("chapters")
        return {
            "beats": parsed["beats"],
            "chapters": chapters if isinstance(chapters, list) else [],
        }
    logger.warning("Unknown outline JSON format", kind=type(parsed).__name__)
    return empty


def parse_bullets(block: str | None) -> list[str]:
    if not block:
        return []
    return [
        line.strip()[1:].strip()
        for line in block.splitlines()
        if line.strip().startswith("-")
    ]


def parse_planner_response(raw: str) -> PlannerOutput:
    """Parse outline, checklist, body, titles and synopsis from a planning call."""
    output = PlannerOutput(
        outline=parse_outline_json(extract(raw, "OUTLINE_JSON")),
        checklist=parse_bullets(extract(raw, "CHECKLIST")),
        chapters=extract(raw, "CHAPTERS") or "",
        titles=parse_bullets(extract(raw, "TITLES")),
        synopsis=extract(raw, "SYNOPSIS") or "",
    )
    return fill_planner_defaults(output)


def fill_planner_defaults(output: PlannerOutput) -> PlannerOutput:
    """Replace missing titles and synopsis with placeholders."""
    if not output.titles:
        logger.warning("Planner returned no titles; using placeholder")
        output.titles = ["Untitled Story"]
    if not output.synopsis.strip():
        logger.warning("Planner returned no synopsis; using placeholder")
        output.synopsis = "Synopsis unavailable"
    return output


def _list_after_colon(line: str) -> list[str]:
    content = line[line.index(":") + 1 :].strip()
    return [item.strip() for item in re.sub(r"[\[\]]", "", content).split(",") if item.strip()]


def parse_polish_notes(notes: str | None) -> PolishNotes:
    result = PolishNotes()
    if not notes:
        return result
    for line in notes.splitlines():
        if "repetition_rate_bigrams:" in line:
            match = re.search(r"(\d+\.?\d*)", line)
            if match:
                result.repetition_rate_bigrams = float(match.group(1))
        elif "pacing_flags:" in line:
            content = line[line.index(":") + 1 :].strip()
            if content not in ("none", "[]"):
                result.pacing_flags = _list_after_colon(line)
        elif "checklist_resolution:" in line:
            result.checklist_resolution = _list_after_colon(line)
    return result


def parse_polish_response(raw: str) -> PolishOutput:
    return PolishOutput(
        chapters=extract(raw, "CHAPTERS") or "",
        notes=parse_polish_notes(extract(raw, "NOTES")),
    )


_MARKDOWN_BLOCK_RE = re.compile(r"```markdown\s*\n(.*?)```", re.S)
_JSON_BLOCK_RE = re.compile(r"```json\s*\n(.*?)```", re.S)
_FIRST_HEADING_RE = re.compile(r"^(#\s+.+[\s\S]*)", re.M)


def parse_assembler_response(raw: str | None) -> AssemblerOutput:
    """Parse the merged document and its JSON metadata from an assembly call."""
    if not raw or not raw.strip():
        logger.error("Empty response from assembler")
        return AssemblerOutput()

    block = _MARKDOWN_BLOCK_RE.search(raw)
    markdown = block.group(1).strip() if block else ""
    if not markdown:
        heading = _FIRST_HEADING_RE.search(raw)
        if heading:
            markdown = heading.group(1).strip()
            markdown = _JSON_BLOCK_RE.sub("", markdown).strip()
        else:
            markdown = re.sub(r"```(?:markdown|json)?\s*\n?", "", raw)
            markdown = re.sub(r"```\s*$", "", markdown).strip()
        logger.warning("No markdown block in assembler output, used fallback")

    metadata: dict[str, Any] = {}
    meta_block = _JSON_BLOCK_RE.search(raw)
    if meta_block:
        try:
            loaded = json.loads(meta_block.group(1))
            if isinstance(loaded, dict):
                metadata = loaded
        except json.JSONDecodeError as exc:
            logger.warning("Failed to parse assembler metadata JSON", error=str(exc))

    return AssemblerOutput(markdown=markdown, metadata=metadata)
