# utils/text_processing.py
"""Language-aware word counting and chapter helpers."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

CHAPTER_LABELS = r"(?:Chapter|Rozdział|Розділ|Kapitel|Глава)"
LOCALIZED_CHAPTER_HEADING_RE = re.compile(
    rf"^#\s*{CHAPTER_LABELS}\s+\d+", re.IGNORECASE | re.MULTILINE
)
_HEADING_RE = re.compile(r"^#\s+(.+?)$", re.MULTILINE)
_CJK_RE = re.compile(r"[　-〿぀-ゟ゠-ヿ一-龯]")
_THAI_RE = re.compile(r"[฀-๿]")

_SPACELESS_DENSITY = {"ja": 2.5, "zh": 2.5, "th": 4.0}


@dataclass(frozen=True)
class Chapter:
    """A markdown chapter: the heading title and the body below it."""

    title: str
    text: str
    word_count: int


def _is_content_char(ch: str) -> bool:
    if ch.isspace():
        return False
    category = unicodedata.category(ch)
    return not (category.startswith("P") or category.startswith("C"))


def count_words(text: str | None, language: str | None = None) -> int:
    """Count words, converting characters to word-equivalents for spaceless scripts.

    Japanese, Chinese and Thai do not separate words with spaces, so the
    count is the number of non-space, non-punctuation characters divided by
    a density factor (2.5 for Japanese/Chinese, 4 for Thai). Scripts are
    detected from ``language`` or, when absent, from the text itself.
    """
    if not text or not text.strip():
        return 0
    trimmed = text.strip()
    short = (language or "").split("-")[0].lower()

    has_thai = short == "th" or bool(_THAI_RE.search(trimmed))
    has_cjk = short in ("ja", "zh") or bool(_CJK_RE.search(trimmed))
    if has_thai or has_cjk:
        content_chars = sum(1 for ch in trimmed if _is_content_char(ch))
        density = _SPACELESS_DENSITY["th"] if has_thai else _SPACELESS_DENSITY["ja"]
        return round(content_chars / density)

    return len(trimmed.split())


def extract_chapters(markdown: str, language: str | None = None) -> list[Chapter]:
    """Split markdown on level-one headings."""
    matches = list(_HEADING_RE.finditer(markdown or ""))
    chapters: list[Chapter] = []
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(markdown)
        body = markdown[match.end() : end].strip()
        chapters.append(
            Chapter(
                title=match.group(1).strip(),
                text=body,
                word_count=count_words(body, language),
            )
        )
    return chapters


def split_paragraphs(text: str) -> list[str]:
    return [p for p in re.split(r"\n\s*\n", text or "") if p.strip()]


def sanitize_control_markers(text: str) -> str:
    """Remove every control marker and chapter-number heading from final text."""
    if not text:
        return text
    cleaned = re.sub(r"^⟪CAMERA:[^⟫]+⟫\s*$", "", text, flags=re.MULTILINE)
    cleaned = re.sub(r"^⟪AUDIO_BEAT⟫\s*$", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"⟪[A-Z_:;/]+[^⟫]*⟫", "", cleaned)
    cleaned = re.sub(r"<<<[A-Z_/]+>>>", "", cleaned)
    cleaned = re.sub(r"^\s*```[a-z]*\s*$", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(
        rf"^#\s+{CHAPTER_LABELS}\s+\d+:.*$", "", cleaned, flags=re.MULTILINE
    )
    cleaned = re.sub(r"\n{4,}", "\n\n\n", cleaned)
    cleaned = re.sub(r"[ \t]+$", "", cleaned, flags=re.MULTILINE)
    return cleaned.strip()
