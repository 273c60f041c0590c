# processing/motifs.py
"""Motif budget and density tracking plus quiet-noir finale checks."""

from __future__ import annotations

import math
import re
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_QUIET_NOIR_MOTIFS = [
    "timestamp",
    "auto-delete",
    "auto delete",
    "elevator bell",
    "elevator chime",
    "lift bell",
    "system clock",
    "digital clock",
    "countdown",
]

# Motif groups that should appear at most three times: introduction, pivot, consequence.
MOTIF_GROUPS: dict[str, re.Pattern[str]] = {
    "camera": re.compile(
        r"(camera|monitor|surveil(lance)?|feed|CCTV|відеоспостереження|камера|моніторинг)",
        re.IGNORECASE,
    ),
    "audit": re.compile(
        r"(audit|9 ?:?00 ?(am)?|IT (check|sweep)|аудит|перевірка)", re.IGNORECASE
    ),
    "letter": re.compile(
        r"(letter|envelope|attorney|legal notice|лист|конверт|адвокат)", re.IGNORECASE
    ),
    "remote": re.compile(
        r"(remote|stage-?light|dimmer|lighting preset|пульт|світло|освітлення)",
        re.IGNORECASE,
    ),
}
MIN_MOTIF_SPACING_WORDS = 250
ROLE_DEVIATION_WORDS = 500

_MOTIFS_IN_PROMPT_RE = re.compile(r"MOTIFS[^:]*:\s*\[([^\]]+)\]", re.IGNORECASE)
_DIALOGUE_LINE_RE = re.compile(r"^[\"«„—“]")

_VISIBLE_PRICE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"therapy|therapist|counseling|counsellor",
        r"moved out|moving out|packed|separate apartment|new place",
        r"quit|resigned|left (the|his|her) job|transferred",
        r"blocked|unfollowed|deleted (his|her|the) number",
        r"restraining order|legal|lawsuit",
        r"hospital|clinic|treatment",
    )
]
_ANCHOR_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"remembered|recalled|thought back|flashed back",
        r"years ago|months ago|once, (he|she)",
        r"used to|would always|had always",
        r"the way (he|she) used to",
        r"memory of|reminded (him|her) of",
    )
]


def extract_motifs_from_prompt(prompt: str | None) -> list[str]:
    """Motifs declared as ``MOTIFS: [a, b]`` in the premise, else the default list."""
    match = _MOTIFS_IN_PROMPT_RE.search(prompt or "")
    if match:
        motifs = [m.strip() for m in match.group(1).split(",") if m.strip()]
        if motifs:
            return motifs
    return list(DEFAULT_QUIET_NOIR_MOTIFS)


def track_motifs(text: str, motifs: list[str]) -> list[dict[str, Any]]:
    tracked = []
    for motif in motifs:
        positions = [
            m.start() for m in re.finditer(re.escape(motif), text, re.IGNORECASE)
        ]
        if positions:
            tracked.append({"motif": motif, "count": len(positions), "positions": positions})
    return tracked


def check_motif_budget(
    text: str, motifs: list[str], max_per_10k: int = 3
) -> dict[str, Any]:
    """Compare motif counts against a budget scaled by text length."""
    word_count = len(text.split())
    limit = math.ceil(max_per_10k * max(1.0, word_count / 10000))
    tracked = track_motifs(text, motifs)
    violations = [
        {
            "motif": t["motif"],
            "count": t["count"],
            "limit": limit,
            "excess": t["count"] - limit,
        }
        for t in tracked
        if t["count"] > limit
    ]
    return {
        "exceeded": bool(violations),
        "violations": violations,
        "tracked": tracked,
        "adjusted_limit": limit,
    }


def _word_offsets(text: str) -> list[int]:
    return [m.start() for m in re.finditer(r"\S+", text)]


def _word_position(offsets: list[int], char_index: int) -> int:
    # Index of the word containing char_index.
    lo, hi = 0, len(offsets)
    while lo < hi:
        mid = (lo + hi) // 2
        if offsets[mid] <= char_index:
            lo = mid + 1
        else:
            hi = mid
    return max(0, lo - 1)


def motif_density(text: str, target_words: int = 2000) -> dict[str, Any]:
    """Per-group ceiling and spacing checks.

    Count ceilings and spacing are reported as separate violation lists so
    the gate can emit distinct failure codes for each.
    """
    offsets = _word_offsets(text or "")
    word_count = len(offsets)
    scale = word_count / target_words if target_words > 0 else 1.0
    max_per_motif = math.ceil(3 * scale)

    count_violations: list[str] = []
    spacing_violations: list[str] = []
    details: dict[str, Any] = {}

    for name, pattern in MOTIF_GROUPS.items():
        matches = list(pattern.finditer(text or ""))
        if not matches:
            continue
        positions = [_word_position(offsets, m.start()) for m in matches]
        entry: dict[str, Any] = {
            "count": len(matches),
            "examples": [m.group(0) for m in matches],
            "word_positions": positions,
        }
        details[name] = entry

        if len(matches) > max_per_motif:
            count_violations.append(
                f"{name}: {len(matches)} appearances (max {max_per_motif} for {word_count}w story)"
            )

        for i in range(1, len(positions)):
            distance = positions[i] - positions[i - 1]
            if distance < MIN_MOTIF_SPACING_WORDS:
                spacing_violations.append(
                    f"{name}: appearances {i} and {i + 1} too close "
                    f"({distance}w apart, need ≥{MIN_MOTIF_SPACING_WORDS}w)"
                )

        if len(positions) == 3:
            third = word_count / 3
            expected = (third * 0.5, third * 1.5, third * 2.5)
            if any(abs(p - e) > ROLE_DEVIATION_WORDS for p, e in zip(positions, expected)):
                entry["role_warning"] = (
                    "Motif distribution may not follow intro→pivot→consequence pattern"
                )

    return {
        "passed": not count_violations and not spacing_violations,
        "count_violations": count_violations,
        "spacing_violations": spacing_violations,
        "violations": count_violations + spacing_violations,
        "details": details,
        "word_count": word_count,
        "max_per_motif": max_per_motif,
    }


def dialogue_ratio(text: str) -> dict[str, Any]:
    """Share of non-blank lines that open with a dialogue mark."""
    lines = [line.strip() for line in (text or "").split("\n")]
    non_blank = [line for line in lines if line]
    dialogue = [line for line in non_blank if _DIALOGUE_LINE_RE.match(line)]
    ratio = len(dialogue) / len(non_blank) if non_blank else 0.0
    return {"ratio": ratio, "dialogue_lines": len(dialogue), "total_lines": len(non_blank)}


def check_visible_price(final_chapter_text: str) -> dict[str, Any]:
    """Look for a concrete consequence (therapy, moving out, legal action) in the finale."""
    examples = []
    for pattern in _VISIBLE_PRICE_PATTERNS:
        match = pattern.search(final_chapter_text or "")
        if match:
            start = max(0, match.start() - 150)
            examples.append(final_chapter_text[start : match.start() + 150].strip())
    return {"found": bool(examples), "examples": examples[:2]}


def check_character_anchors(text: str) -> dict[str, Any]:
    count = 0
    examples: list[str] = []
    for pattern in _ANCHOR_PATTERNS:
        match = pattern.search(text or "")
        if match:
            count += 1
            if len(examples) < 2:
                examples.append(match.group(0))
    return {"found": count > 0, "count": count, "examples": examples, "sufficient": count >= 2}
