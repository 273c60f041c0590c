# processing/metrics.py
"""Deterministic text-quality metrics.

Every function here is pure: it takes the draft text plus the immutable
profiles it needs and returns plain values. Nothing raises on odd input;
empty text simply produces zero-valued metrics.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog

from profiles import LanguageProfile
from utils.text_processing import count_words, extract_chapters

logger = structlog.get_logger(__name__)

_QUOTED_RE = re.compile(r'"[^"]*"|\'[^\']*\'|«[^»]*»|“[^”]*”')
_HOOK_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"but\s+",
        r"however\s+",
        r"suddenly\s+",
        r"then\s+",
        r"until\s+",
        r"unless\s+",
        r"if\s+only",
        r"what\s+if",
        r"could\s+it\s+be",
        r"wondered",
        r"realized",
        r"discovered",
        r"heard",
        r"saw",
        r"felt",
    )
]
_EXPOSITION_RE = re.compile(r"\b(was|were|had been|used to|would often)\b", re.IGNORECASE)
_SOFT_RHETORICAL_RE = re.compile(
    r"\b(why|what if|isn't it|am i|could it be|was it)\b", re.IGNORECASE
)
_DIALOGUE_TURN_RE = re.compile(r'^["«“].+["»”]\s*$')
LONG_TURN_WORDS = 22

_SOUND_RE = re.compile(
    r"\b(hum|buzz|ring|clack|whisper|шурх|дзвін|гул|дзвоник|stuk|brzęk|szept|summen|klicken|flüstern)\b"
)
_TOUCH_RE = re.compile(
    r"\b(rough|warm|cold|slick|sharp|волога|гострий|тепл|холод|ciepły|chłodny|ostry|rau|kühl|scharf)\b"
)
_SPACE_RE = re.compile(
    r"\b(corridor|stairs|doorframe|window|wall|вікно|коридор|ліфт|двері|okno|korytarz|drzwi|fenster|tür|gang)\b"
)


@dataclass
class BigramStats:
    """Repetition figures for one text."""

    rate: float = 0.0
    repeated: int = 0
    high_frequency: list[tuple[str, int]] = field(default_factory=list)

    def top(self, limit: int = 15) -> list[dict[str, Any]]:
        return [{"bigram": b, "count": c} for b, c in self.high_frequency[:limit]]


@dataclass
class LengthCheck:
    actual_words: int
    target_words: int
    difference: int
    ratio: float
    percent_diff: float
    within_range: bool
    needs_adjustment: bool
    suggestion: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "actual_words": self.actual_words,
            "target_words": self.target_words,
            "difference": self.difference,
            "ratio": self.ratio,
            "percent_diff": self.percent_diff,
            "within_range": self.within_range,
            "needs_adjustment": self.needs_adjustment,
            "suggestion": self.suggestion,
        }


def content_tokens(text: str, language: LanguageProfile | None = None) -> list[str]:
    """Lowercased content words with markup, control markers and stopwords removed."""
    stopwords = language.stopwords if language else frozenset()
    cleaned = (text or "").lower()
    cleaned = re.sub(r"^\s*#+\s*chapter.*", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"<<<[^>]+>>>", " ", cleaned)
    cleaned = re.sub(r"⟪[^⟫]+⟫", " ", cleaned)
    cleaned = re.sub(r"^\s*[\"«»'–—-]+\s*$", " ", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"#[^\n]*\n", "\n", cleaned)
    cleaned = re.sub(r"[—–\-\"«»“”‘’']+", " ", cleaned)

    tokens = []
    for raw in cleaned.split():
        token = "".join(ch for ch in raw if ch.isalnum())
        if len(token) > 1 and token not in stopwords:
            tokens.append(token)
    return tokens


def bigram_repetition(
    text: str, language: LanguageProfile | None = None
) -> BigramStats:
    """Repeated content bigrams per 1000 bigrams."""
    tokens = content_tokens(text, language)
    if len(tokens) < 4:
        return BigramStats()

    counts = Counter(f"{a} {b}" for a, b in zip(tokens, tokens[1:]))
    total = len(tokens) - 1
    repeated = sum(c - 1 for c in counts.values() if c > 1)
    rate = repeated / total * 1000 if total else 0.0
    high_frequency = sorted(
        ((b, c) for b, c in counts.items() if c > 1), key=lambda item: -item[1]
    )
    logger.debug(
        "Bigram repetition computed",
        total_bigrams=total,
        repeated=repeated,
        rate=round(rate, 2),
        top=[f"{b}:{c}" for b, c in high_frequency[:10]],
    )
    return BigramStats(rate=rate, repeated=repeated, high_frequency=high_frequency)


def has_hook(chapter_text: str) -> bool:
    """True when a chapter ends on a question or a suspense/transition cue."""
    last_paragraphs = "\n\n".join((chapter_text or "").strip().split("\n\n")[-2:])
    if "?" in last_paragraphs:
        return True
    last_sentences = ". ".join(re.split(r"[.!?]+", last_paragraphs)[-3:])
    return any(p.search(last_sentences) for p in _HOOK_PATTERNS)


def missing_hooks(markdown: str) -> tuple[int, int]:
    """Return (chapters without a hook, total chapters)."""
    chapters = extract_chapters(markdown)
    missing = sum(1 for ch in chapters if not has_hook(ch.text))
    return missing, len(chapters)


def check_length(
    text: str,
    target_words: int,
    tolerance: float = 0.10,
    language: str | None = None,
) -> LengthCheck:
    actual = count_words(text, language)
    difference = actual - target_words
    ratio = actual / target_words if target_words > 0 else 0.0
    percent_diff = difference / target_words * 100 if target_words > 0 else 0.0
    within = abs(percent_diff) <= tolerance * 100

    suggestion = None
    if not within:
        verb = "condense" if difference > 0 else "expand"
        suggestion = f"{verb} by approximately {abs(difference)} words"

    return LengthCheck(
        actual_words=actual,
        target_words=target_words,
        difference=difference,
        ratio=ratio,
        percent_diff=round(percent_diff, 1),
        within_range=within,
        needs_adjustment=not within,
        suggestion=suggestion,
    )


def _pronoun_pattern(pronouns: tuple[str, ...]) -> re.Pattern[str] | None:
    if not pronouns:
        return None
    alternatives = "|".join(re.escape(p) for p in pronouns)
    return re.compile(rf"\b({alternatives})\b", re.IGNORECASE)


def pov_drift(
    text: str, pov: str | None, language: LanguageProfile
) -> dict[str, Any]:
    """Compare first/third-person pronoun counts outside quoted dialogue."""
    if not pov or not text:
        return {"drift": False, "first": 0, "third": 0, "pov": pov}

    scrubbed = _QUOTED_RE.sub("", text)
    first_re = _pronoun_pattern(language.first_person_pronouns)
    third_re = _pronoun_pattern(language.third_person_pronouns)
    first = len(first_re.findall(scrubbed)) if first_re else 0
    third = len(third_re.findall(scrubbed)) if third_re else 0

    drift = False
    if pov == "first":
        drift = third > max(5, first * 0.20)
    elif pov == "third":
        drift = first > max(5, third * 0.10)
    return {"drift": drift, "first": first, "third": third, "pov": pov}


def analyze_pacing(markdown: str) -> list[str]:
    """Flag exposition-heavy chapters and chapters without an ending hook."""
    flags: list[str] = []
    for idx, chapter in enumerate(extract_chapters(markdown), start=1):
        paragraphs = [p for p in chapter.text.split("\n\n") if p.strip()]
        exposition = sum(
            1 for p in paragraphs if len(_EXPOSITION_RE.findall(p)) > 2
        )
        ratio = exposition / len(paragraphs) if paragraphs else 0.0
        if ratio > 0.25:
            flags.append(f"Chapter {idx}: High exposition ratio ({ratio * 100:.0f}%)")
        if not has_hook(chapter.text):
            flags.append(f"Chapter {idx}: Missing soft hook at end")
    return flags


def avg_sentence_length(text: str) -> tuple[float, int]:
    """Average words per narrative sentence, quoted dialogue excluded."""
    no_quotes = _QUOTED_RE.sub(" ", text or "")
    sentences = [s for s in re.split(r"[.!?]+\s", no_quotes) if s.strip()]
    if not sentences:
        return 0.0, 0
    lengths = [len(s.split()) for s in sentences]
    return sum(lengths) / len(lengths), len(sentences)


def count_rhetorical(text: str) -> int:
    scrubbed = _QUOTED_RE.sub(" ", text or "")
    marks = len(re.findall(r"\?\s*(?:\n|$)", scrubbed))
    soft = len(_SOFT_RHETORICAL_RE.findall(scrubbed))
    return marks + max(0, soft - marks)


def dialogue_stats(text: str) -> dict[str, int]:
    total = 0
    long_turns = 0
    for line in (text or "").split("\n"):
        stripped = line.strip()
        if _DIALOGUE_TURN_RE.match(stripped):
            total += 1
            if len(stripped.split()) > LONG_TURN_WORDS:
                long_turns += 1
    return {"total_turns": total, "long_turns": long_turns}


def sensory_triplet(text: str) -> dict[str, bool]:
    lower = (text or "").lower()
    return {
        "sound": bool(_SOUND_RE.search(lower)),
        "touch": bool(_TOUCH_RE.search(lower)),
        "space": bool(_SPACE_RE.search(lower)),
    }
