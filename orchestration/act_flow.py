# orchestration/act_flow.py
"""Planning prompts and multi-act bookkeeping shared by every generation mode."""

from __future__ import annotations

import math
import re

from config import settings
from models import GenerationMode
from orchestration.models import Act, GenerationJob
from processing.content_safety import applies_to
from processing.quality_gate import expected_chapters
from profiles import GenreProfile
from prompt_renderer import render_prompt
from utils.text_processing import count_words

SUMMARY_MAX_WORDS = 250
SUMMARY_FRACTION = 0.15
RULE = "━" * 43

_NARRATOR_PATTERNS = [
    re.compile(r"from\s+([A-Z][a-z]+)(?:'s|\s+)(?:perspective|pov|view|point)", re.IGNORECASE),
    re.compile(r"narrator:\s*([A-Z][a-z]+)", re.IGNORECASE),
    re.compile(r"tell(?:\s+(?:the\s+)?story)?\s+from\s+([A-Z][a-z]+)", re.IGNORECASE),
    re.compile(r"([A-Z][a-z]+)(?:'s|\s+)(?:pov|perspective|viewpoint)", re.IGNORECASE),
]


def act_count(target_words: int, mode: GenerationMode) -> int:
    per_act = settings.WORDS_PER_ACT
    if mode == "short-multi-act":
        return max(2, math.ceil(target_words / per_act))
    if mode == "long":
        return max(1, math.ceil(target_words / per_act))
    return 1


def act_temperature(act_number: int, total_acts: int, genre: GenreProfile) -> float:
    """Opening, middle or finale temperature by progress through the story."""
    progress = act_number / total_acts
    if genre.temps:
        opening, middle, finale = genre.temps
    elif total_acts <= 2:
        return 0.7
    else:
        opening, middle, finale = 0.8, 0.85, 0.65
    if progress < 0.25:
        return opening
    if progress < 0.75:
        return middle
    return finale


def act_summary(text: str, language: str | None = None) -> str:
    """Leading words of an act, used as a rolling summary for later acts."""
    length = min(SUMMARY_MAX_WORDS, math.floor(count_words(text, language) * SUMMARY_FRACTION))
    return " ".join(text.split()[:length]) + "..."


def cumulative_context(acts: list[Act]) -> str:
    """Summaries of every act but the last, then the last act in full."""
    previous = acts[-1]
    parts: list[str] = []
    if len(acts) > 1:
        parts.append(f"{RULE}\nPREVIOUS ACTS SUMMARY (for plot continuity):\n{RULE}\n")
        for act in acts[:-1]:
            parts.append(f"ACT {act.index} SUMMARY:\n{act.summary}\n")
    parts.append(
        f"{RULE}\nACT {previous.index} - FULL TEXT (continue from here):\n{RULE}\n\n"
        f"{previous.text}\n\n{RULE}\nEND OF ACT {previous.index}\n{RULE}\n"
    )
    parts.append(
        f"YOUR TASK: Write Act {previous.index + 1} that continues naturally from where "
        f"Act {previous.index} ended.\n"
        "- Maintain character voices, POV consistency, tone, and narrative momentum\n"
        "- Reference previous acts' events when relevant (you have summaries above)\n"
        "- DO NOT repeat exact phrases or sentence patterns from previous acts\n"
        "- Continue character arcs, don't restart them"
    )
    return "\n".join(parts)


def narrator_name(premise: str, pov: str | None) -> str | None:
    """Name of a single first-person narrator requested in the premise."""
    if pov != "first":
        return None
    for pattern in _NARRATOR_PATTERNS:
        match = pattern.search(premise or "")
        if match:
            return match.group(1)
    return None


def time_span(target_words: int) -> str:
    if target_words < 5000:
        return "24-48 hours"
    if target_words < 10000:
        return "2-5 days"
    if target_words < 20000:
        return "1-2 weeks"
    return "2-4 weeks"


def max_transitions(target_words: int) -> str:
    if target_words < 5000:
        return "2-3"
    if target_words < 10000:
        return "3-5"
    if target_words < 20000:
        return "5-7"
    return "7-10"


def chapter_count(
    target_words: int,
    genre: GenreProfile,
    mode: GenerationMode,
    act_number: int | None = None,
    total_acts: int | None = None,
) -> int:
    """Chapters to request from a planning call.

    Long-mode acts ask for fewer chapters per thousand words, and middle
    acts fewer still, since the provider tends to overshoot there.
    """
    if mode != "long" or not act_number or not total_acts:
        return expected_chapters(target_words)
    edge = act_number == 1 or act_number == total_acts
    multiplier = 0.6 if edge else 0.5
    return max(3, round(target_words / 1000 * genre.chapters_per_1k * multiplier))


def _camera_tense() -> str:
    return settings.POV_TENSE if settings.POV_TENSE in ("past", "present") else "past"


def build_planner_prompt(
    job: GenerationJob,
    *,
    target_words: int,
    act_number: int | None = None,
    total_acts: int | None = None,
    context_summary: str | None = None,
) -> tuple[str, str]:
    """Render the (system, user) pair for one planning call."""
    chapters = chapter_count(target_words, job.genre, job.mode, act_number, total_acts)
    romance = job.genre.romance_safety or applies_to(job.genre)
    pov = job.pov
    context = {
        "pov": pov,
        "tense": settings.POV_TENSE if settings.POV_TENSE in ("past", "present") else "consistent",
        "camera_tense": _camera_tense(),
        "narrator_name": narrator_name(job.premise, job.request.pov),
        "romance": romance,
        "genre": job.genre,
        "genre_code": job.genre.code,
        "style_policy": settings.STYLE_POLICY,
        "audio_mode": job.request.audio_mode,
        "transitions": job.language.transition_phrases[:8],
        "time_span": time_span(job.target_words),
        "max_transitions": max_transitions(job.target_words),
        "language": job.language.code,
        "language_name": job.language.name,
        "language_rules": job.language.rules,
        "mode": job.mode,
        "target_words": target_words,
        "policy": job.request.policy,
        "act_number": act_number,
        "total_acts": total_acts,
        "is_final_act": bool(act_number and act_number == total_acts),
        "context_summary": context_summary or "",
        "premise": job.premise,
        "chapter_count": chapters,
        "words_per_chapter": round(target_words / chapters),
        "min_words": round(target_words * 0.9),
        "max_words": round(target_words * 1.1),
        "banned_bigrams": list(job.language.banned_bigrams),
    }
    return (
        render_prompt("planner/system.j2", context),
        render_prompt("planner/user.j2", context),
    )
