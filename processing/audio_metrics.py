# processing/audio_metrics.py
"""Listenability metrics for text that will be narrated aloud."""

from __future__ import annotations

import re
import statistics
from typing import Any

from profiles import LanguageProfile

BEAT_MIN_WORDS = 80
BEAT_MAX_WORDS = 140

_ATTRIBUTION_PATTERNS = [
    re.compile(
        r"(\w+)\s+(said|asked|replied|whispered|shouted|muttered|answered|continued)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(he|she|they)\s+(said|asked|replied|whispered|shouted|muttered)", re.IGNORECASE
    ),
    re.compile(r"(said|asked|replied)\s+(\w+)", re.IGNORECASE),
]
_ALL_CAPS_RE = re.compile(r"^[A-Z][A-Z \-:]{6,}$")
_LOGLINE_RE = re.compile(
    r"^(LOGLINE|SYNOPSIS|CTA|AFTER HOURS|THIS STORY|THEMES):", re.IGNORECASE
)
# Camera lines and audio beats are structure, not leaked markers.
_CONTROL_MARKER_RE = re.compile(
    r"<<</?[A-Z_/]+>>>|⟪(?!CAMERA:|AUDIO_BEAT⟫)/?[A-Z_]+(?:[:;][^⟫]*)?⟫"
)
_MARKETING_RE = re.compile(
    r"(explores themes of|set against|examines how|click to|subscribe|like and share)",
    re.IGNORECASE,
)
# Function words that leave a spoken sentence hanging.
_WEAK_ENDINGS = frozenset(
    {
        "a", "an", "the", "of", "to", "for", "with", "at", "in", "on", "from",
        "about", "into", "and", "or", "but", "that", "which", "than", "as",
    }
)


def sentence_median(text: str) -> float:
    sentences = [s for s in re.split(r"[.!?]+", text or "") if len(s.strip()) > 5]
    if not sentences:
        return 0.0
    return round(float(statistics.median(len(s.split()) for s in sentences)), 1)


def beat_compliance(text: str) -> float:
    """Fraction of paragraphs whose length falls in the narration beat window."""
    paragraphs = [p for p in re.split(r"\n\n+", text or "") if p.strip()]
    if not paragraphs:
        return 0.0
    compliant = sum(
        1 for p in paragraphs if BEAT_MIN_WORDS <= len(p.split()) <= BEAT_MAX_WORDS
    )
    return round(compliant / len(paragraphs), 2)


def transition_density(text: str, language: LanguageProfile) -> dict[str, float]:
    words = len((text or "").split()) or 1
    count = 0
    for phrase in language.transition_phrases:
        count += len(re.findall(re.escape(phrase), text or "", re.IGNORECASE))
    return {"count": count, "density": round(count / words * 1000, 2)}


def dialogue_attribution(text: str) -> float:
    """Speaker tags per two dialogue turns, capped at 1.0."""
    turns = len(re.findall(r'"[^"]{10,}"', text or ""))
    if turns == 0:
        return 1.0
    tags = sum(len(p.findall(text)) for p in _ATTRIBUTION_PATTERNS)
    return round(min(1.0, tags / (turns / 2)), 2)


def meta_intrusions(text: str) -> list[dict[str, str]]:
    intrusions = []
    for line in (text or "").split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if _CONTROL_MARKER_RE.search(stripped):
            intrusions.append({"line": stripped[:60], "type": "control_marker"})
        elif _ALL_CAPS_RE.match(stripped):
            intrusions.append({"line": stripped, "type": "all_caps"})
        elif _LOGLINE_RE.match(stripped):
            intrusions.append({"line": stripped, "type": "logline_marker"})
        elif _MARKETING_RE.search(stripped):
            intrusions.append({"line": stripped[:60], "type": "marketing"})
    return intrusions


def count_awkward_endings(text: str) -> int:
    """Sentences whose final word is an article, preposition or conjunction."""
    count = 0
    for sentence in re.split(r"[.!?]+", text or ""):
        words = re.findall(r"[^\W\d_]+", sentence.lower())
        if len(words) > 3 and words[-1] in _WEAK_ENDINGS:
            count += 1
    return count


def run_audio_metrics(text: str, language: LanguageProfile) -> dict[str, Any]:
    return {
        "sentence_median": sentence_median(text),
        "beat_compliance": beat_compliance(text),
        "transitions": transition_density(text, language),
        "dialogue_attribution": dialogue_attribution(text),
        "meta_intrusions": meta_intrusions(text),
        "awkward_endings": count_awkward_endings(text),
    }
