# processing/patch_selector.py
"""Choose one corrective rewrite for a failed quality gate and build its prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from config import settings
from processing.text_cleanup import strip_audio_beats
from profiles import GenreProfile, LanguageProfile
from prompt_renderer import render_prompt, template_exists

logger = structlog.get_logger(__name__)

PATCH_STRATEGIES = (
    "pov_normalize_first",
    "pov_normalize_third",
    "implication_rewrite",
    "split_long_sentences",
    "insert_transitions",
    "tag_dialogue_speakers",
    "strip_meta_lines",
    "resolve_endings_single",
    "extreme_repetition",
    "motif_evolve",
    "anchor_inject",
    "visible_price",
    "chemistry_amplify",
    "clue_clarity",
    "reveal_tighten",
    "dread_intensifier",
    "pacing_condense",
    "style_compact_pass",
    "dialogue_tightener_pass",
)

# Genres whose missing chapter hooks get a dedicated rewrite.
HOOK_GAP_STRATEGIES = {
    "mystery": "clue_clarity",
    "thriller": "reveal_tighten",
    "horror": "dread_intensifier",
}


@dataclass(frozen=True)
class PatchThresholds:
    repetition_max: float
    extreme_factor: float = settings.EXTREME_REPETITION_FACTOR
    max_avg_sentence: float = 16
    audio_sentence_median: float = 20
    audio_transition_density: float = 1.2
    audio_attribution: float = 0.6
    audio_awkward_endings: int = 2


@dataclass
class PatchContext:
    chapters: str
    language: LanguageProfile
    genre: GenreProfile
    metrics: dict[str, Any] = field(default_factory=dict)
    repetition_max: float = 40.0


def _audio_patch(audio: dict[str, Any], thresholds: PatchThresholds) -> str | None:
    if audio.get("sentence_median", 0) > thresholds.audio_sentence_median:
        return "split_long_sentences"
    transitions = audio.get("transitions") or {}
    if transitions.get("density", thresholds.audio_transition_density) < (
        thresholds.audio_transition_density
    ):
        return "insert_transitions"
    if audio.get("dialogue_attribution", 1.0) < thresholds.audio_attribution:
        return "tag_dialogue_speakers"
    if audio.get("meta_intrusions"):
        return "strip_meta_lines"
    if audio.get("awkward_endings", 0) > thresholds.audio_awkward_endings:
        return "resolve_endings_single"
    return None


def pick_patch(
    genre: GenreProfile,
    metrics: dict[str, Any],
    thresholds: PatchThresholds,
    pov: str | None = None,
    audio_mode: bool = False,
) -> str | None:
    """Walk the priority ladder and return the first matching strategy."""
    pov_metrics = metrics.get("pov") or {}
    if pov and pov_metrics.get("drift"):
        return "pov_normalize_first" if pov == "first" else "pov_normalize_third"

    if (metrics.get("content_safety") or {}).get("needs_patch"):
        return "implication_rewrite"

    if audio_mode and metrics.get("audio"):
        strategy = _audio_patch(metrics["audio"], thresholds)
        if strategy:
            return strategy

    rate = metrics.get("repetition_rate", 0.0)
    if rate >= thresholds.repetition_max * thresholds.extreme_factor:
        return "extreme_repetition"

    if metrics.get("motif_violations"):
        return "motif_evolve"

    if genre.quiet_noir:
        anchors = metrics.get("character_anchors")
        if anchors is not None and anchors < 2:
            return "anchor_inject"
        if metrics.get("visible_price") is False:
            return "visible_price"

    if genre.code == "romance" and genre.dialogue_ratio is not None:
        ratio = metrics.get("dialogue_ratio")
        if ratio is not None and ratio < genre.dialogue_ratio.min:
            return "chemistry_amplify"

    if genre.code in HOOK_GAP_STRATEGIES and metrics.get("missing_hooks_count", 0) > 0:
        return HOOK_GAP_STRATEGIES[genre.code]

    if rate > thresholds.repetition_max:
        return "pacing_condense"

    if metrics.get("avg_sentence", 0) > thresholds.max_avg_sentence:
        return "style_compact_pass"

    if (metrics.get("dialogue_stats") or {}).get("long_turns", 0) > 0:
        return "dialogue_tightener_pass"

    return None


def build_patch_prompt(strategy: str, context: PatchContext) -> tuple[str, str] | None:
    """Render (system, user) prompts for ``strategy``; None when it is unknown."""
    template = f"patch/{strategy}.j2"
    if strategy not in PATCH_STRATEGIES or not template_exists(template):
        logger.warning("Unknown patch strategy", strategy=strategy)
        return None

    rate = context.metrics.get("repetition_rate", 0.0)
    dialogue_target = (
        context.genre.dialogue_ratio.target if context.genre.dialogue_ratio else 0.38
    )
    user_prompt = render_prompt(
        template,
        {
            "language_rules": context.language.rules,
            "chapters": strip_audio_beats(context.chapters),
            "repetition_max": context.repetition_max,
            "repetition_ratio": (
                round(rate / context.repetition_max) if context.repetition_max else 0
            ),
            "top_bigrams": context.metrics.get("high_frequency_bigrams", [])[:15],
            "motif_violations": context.metrics.get("motif_violations", []),
            "dialogue_target": dialogue_target,
            "audio": context.metrics.get("audio"),
        },
    )
    return render_prompt("patch/system.j2", {}), user_prompt
