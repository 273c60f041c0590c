# processing/quality_gate.py
"""Final quality gate: run every enabled check and collect failure codes.

Failure codes are stable prefixes (``length_too_short:``, ``high_repetition:``
and so on) followed by the measured value and its threshold. The gate never
stops at the first failure so the patch selector sees the whole picture.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

import structlog

from config import settings
from models import QualityReport
from processing import audio_metrics, content_safety, metrics, motifs
from processing.continuation import is_truncated
from profiles import GenreProfile, LanguageProfile
from utils.text_processing import count_words, extract_chapters

logger = structlog.get_logger(__name__)

OVER_TOLERANCE_MARGIN = 0.05
OVER_HARD_LIMIT = 0.25

DEFAULT_REPETITION_THRESHOLD = 40.0
GENRE_REPETITION_THRESHOLDS: dict[str, float] = {
    "noir_drama": 40,
    "thriller": 35,
    "tech_thriller": 35,
    "romance": 65,
    "sci_fi": 38,
    "scifi_adventure": 40,
    "fantasy": 42,
    "horror": 45,
    "comedy": 30,
    "mystery": 38,
    "family_drama": 65,
}

META_PHRASES = (
    "would you like",
    "shall i",
    "after careful review",
    "key observations",
    "shall we",
    "here are the",
    "let me know",
    "if you want",
    "should i",
    "minimal recommended edits",
    "polish recommendations",
)
_LEADING_MARKER_RE = re.compile(r"^\s*(?:<<<[^>\n]*>>>|⟪[^⟫\n]*⟫)\s*$")
_CHAPTER_HEADING_RE = re.compile(r"^# ", re.MULTILINE)


@dataclass(frozen=True)
class GateConfig:
    """Which checks run and with which thresholds."""

    length_tolerance: float = 0.10
    repetition_max: float = DEFAULT_REPETITION_THRESHOLD
    require_hooks: bool = True
    premise: str | None = None
    check_motifs: bool = False
    check_dialogue: bool = False
    check_visible_price: bool = False
    check_anchors: bool = False
    check_pov: bool = False
    check_content_safety: bool = False
    audio_mode: bool = False
    pov: str | None = None
    style_policy: bool = False
    max_avg_sentence: float = 16
    min_rhetorical_allowance: int = 1
    allow_long_dialogue_turns: int | None = None

    @classmethod
    def for_genre(
        cls,
        genre: GenreProfile,
        *,
        premise: str | None = None,
        pov: str | None = None,
        audio_mode: bool = False,
    ) -> GateConfig:
        """Build the production configuration for one genre from settings."""
        return cls(
            length_tolerance=settings.length_tolerance,
            repetition_max=repetition_threshold(genre),
            require_hooks=settings.HOOK_ENFORCE,
            premise=premise,
            check_motifs=True,
            check_dialogue=True,
            check_visible_price=genre.visible_price_required,
            check_anchors=genre.character_anchors_required,
            check_pov=True,
            check_content_safety=content_safety.applies_to(genre),
            audio_mode=audio_mode,
            pov=pov,
            style_policy=settings.STYLE_POLICY,
            max_avg_sentence=settings.MAX_AVG_SENTENCE,
            min_rhetorical_allowance=settings.MAX_RHETORICAL_PER_CHAPTER,
            allow_long_dialogue_turns=settings.ALLOW_LONG_DIALOGUE_TURNS,
        )


def repetition_threshold(genre: GenreProfile | str) -> float:
    """Repeated bigrams per 1000 tolerated for a genre.

    A profile's own threshold wins; bare codes fall back to the table.
    """
    if isinstance(genre, GenreProfile):
        if genre.repetition_threshold:
            return float(genre.repetition_threshold)
        genre = genre.code
    return float(GENRE_REPETITION_THRESHOLDS.get(genre, DEFAULT_REPETITION_THRESHOLD))


def expected_chapters(target_words: int) -> int:
    """About 350 words per chapter, clamped to 3..12."""
    return max(3, min(12, round(target_words / 350)))


def _dialogue_bounds(genre: GenreProfile) -> tuple[float, float]:
    if genre.dialogue_ratio is None:
        return 0.28, 1.0
    return genre.dialogue_ratio.min, genre.dialogue_ratio.max


def evaluate(
    text: str,
    target_words: int,
    config: GateConfig,
    language: LanguageProfile,
    genre: GenreProfile,
) -> QualityReport:
    """Run the ordered battery of checks against ``text``."""
    text = text or ""
    failures: list[str] = []
    report: dict[str, Any] = {}

    actual_words = count_words(text, language.code)
    max_long_turns = (
        config.allow_long_dialogue_turns
        if config.allow_long_dialogue_turns is not None
        else math.ceil(actual_words / 1000 * 2)
    )
    max_rhetorical = max(config.min_rhetorical_allowance, math.ceil(actual_words / 400))

    truncation = is_truncated(text, target_words, language.code)
    report["truncated"] = truncation.truncated
    if truncation.truncated:
        failures.append(f"text_truncated: {truncation.reason}")

    length = metrics.check_length(text, target_words, config.length_tolerance, language.code)
    report["length_ratio"] = length.ratio
    percent = f"{length.ratio * 100:.0f}%"
    if length.ratio < 1.0 - config.length_tolerance:
        failures.append(
            f"length_too_short: {length.actual_words}/{target_words} ({percent}) - story may be truncated"
        )
    elif length.ratio > 1.0 + OVER_HARD_LIMIT:
        failures.append(
            f"length_too_long: {length.actual_words}/{target_words} ({percent}) - exceeds 125% limit"
        )
    elif length.ratio > 1.0 + config.length_tolerance + OVER_TOLERANCE_MARGIN:
        logger.warning(
            "Length slightly over target; accepted",
            actual_words=length.actual_words,
            target_words=target_words,
            ratio=round(length.ratio, 3),
        )

    if config.require_hooks:
        missing, total = metrics.missing_hooks(text)
        report["missing_hooks_count"] = missing
        report["total_chapters"] = total
        if missing:
            failures.append(f"missing_hooks: {missing}/{total} chapters")

    bigrams = metrics.bigram_repetition(text, language)
    report["repetition_rate"] = bigrams.rate
    report["high_frequency_bigrams"] = bigrams.top(15)
    if bigrams.rate > config.repetition_max:
        failures.append(
            f"high_repetition: {bigrams.rate:.2f}/1000 (max: {config.repetition_max:g})"
        )

    if config.check_motifs and config.premise:
        budget = genre.motif_budget_per_10k or genre.motif_budget or 3
        motif_check = motifs.check_motif_budget(
            text, motifs.extract_motifs_from_prompt(config.premise), budget
        )
        report["motif_violations"] = [
            f"{v['motif']}: {v['count']} (limit {v['limit']})"
            for v in motif_check["violations"]
        ]
        if motif_check["exceeded"]:
            failures.append(
                f"motif_budget_exceeded: {len(motif_check['violations'])} motifs over limit"
            )

    density = motifs.motif_density(text, target_words)
    report["motif_density"] = density["details"]
    if not density["passed"]:
        report["motif_violations"] = density["violations"]
    if density["count_violations"]:
        failures.append(
            f"motif_count_exceeded: {len(density['count_violations'])} motifs over "
            f"{density['max_per_motif']} appearances"
        )
    if density["spacing_violations"]:
        failures.append(
            f"motif_spacing_violation: {len(density['spacing_violations'])} pairs closer "
            f"than {motifs.MIN_MOTIF_SPACING_WORDS}w"
        )

    if config.check_dialogue:
        ratio = motifs.dialogue_ratio(text)["ratio"]
        report["dialogue_ratio"] = ratio
        low, high = _dialogue_bounds(genre)
        if ratio < low:
            failures.append(f"low_dialogue_ratio: {ratio * 100:.0f}% (min: {low * 100:.0f}%)")
        elif ratio > high:
            failures.append(f"high_dialogue_ratio: {ratio * 100:.0f}% (max: {high * 100:.0f}%)")

    if config.check_visible_price:
        chapters = extract_chapters(text)
        if chapters:
            price = motifs.check_visible_price(chapters[-1].text)
            report["visible_price"] = price["found"]
            if not price["found"]:
                failures.append("missing_visible_price: no concrete consequence in finale")

    if config.check_anchors:
        anchors = motifs.check_character_anchors(text)
        report["character_anchors"] = anchors["count"]
        if not anchors["sufficient"]:
            failures.append(f"insufficient_character_anchors: {anchors['count']}/2 found")

    if config.check_pov and config.pov:
        pov = metrics.pov_drift(text, config.pov, language)
        report["pov"] = pov
        if pov["drift"]:
            failures.append(
                f"pov_drift: inconsistent {config.pov}-person perspective "
                f"(1st: {pov['first']}, 3rd: {pov['third']})"
            )

    if config.style_policy:
        avg, _ = metrics.avg_sentence_length(text)
        report["avg_sentence"] = avg
        if avg > config.max_avg_sentence:
            failures.append(f"pacing: avg_sentence={avg:.1f} > {config.max_avg_sentence:g}")

        rhetorical = metrics.count_rhetorical(text)
        report["rhetorical"] = rhetorical
        if rhetorical > max_rhetorical:
            failures.append(
                f"rhetorical: {rhetorical} exceeds limit of {max_rhetorical} (1 per 400 words)"
            )

        turns = metrics.dialogue_stats(text)
        report["dialogue_stats"] = turns
        if turns["long_turns"] > max_long_turns:
            failures.append(
                f"dialogue_long_turns: {turns['long_turns']} exceed limit of "
                f"{max_long_turns} (2 per 1000 words)"
            )

        sensory = metrics.sensory_triplet(text)
        report["sensory"] = sensory
        if not all(sensory.values()):
            failures.append("sensory_triplet_missing: need sound+touch+space for immersion")

    if config.check_content_safety:
        safety = content_safety.safety_check(text, language, genre)
        report["content_safety"] = {
            "status": safety["status"],
            "lexeme_density": safety["metrics"].get("lexeme_density", 0.0),
            "lexeme_hits": safety["metrics"].get("lexeme_hits", 0),
            "in_quotes_hits": safety["metrics"].get("in_quotes_hits", 0),
            "needs_patch": safety["needs_patch"],
        }
        if safety["status"] == "fail":
            failures.append(
                f"content_safety_fail: lexeme_density="
                f"{report['content_safety']['lexeme_density']}/1000, "
                f"in_quotes={report['content_safety']['in_quotes_hits']}"
            )
        elif safety["status"] == "warn":
            logger.warning(
                "Content safety warning",
                lexeme_density=report["content_safety"]["lexeme_density"],
            )

    if config.audio_mode:
        audio = audio_metrics.run_audio_metrics(text, language)
        report["audio"] = audio
        if audio["sentence_median"] > 20:
            failures.append(
                f"audio_sentence_length: median={audio['sentence_median']:g} words (max: 20)"
            )
        if audio["beat_compliance"] < 0.6:
            failures.append(
                f"audio_beats_sparse: {audio['beat_compliance'] * 100:.0f}% compliance (min: 60%)"
            )
        if audio["transitions"]["density"] < 1.2:
            failures.append(
                f"audio_missing_transitions: {audio['transitions']['density']:g}/1000 words (min: 1.2)"
            )
        if audio["dialogue_attribution"] < 0.6:
            failures.append(
                f"audio_dialogue_attribution_low: {audio['dialogue_attribution'] * 100:.0f}% (min: 60%)"
            )
        if audio["meta_intrusions"]:
            failures.append(
                f"audio_meta_intrusions: {len(audio['meta_intrusions'])} meta lines found"
            )

    return QualityReport(passed=not failures, failures=failures, metrics=report)


def validate_patch_response(response: str | None, min_words: int = 100) -> str | None:
    """Return why a corrective rewrite must be rejected, or None when it is usable."""
    lines = (response or "").strip().splitlines()
    while lines and (not lines[0].strip() or _LEADING_MARKER_RE.match(lines[0])):
        lines.pop(0)
    body = "\n".join(lines).strip()

    if not body.startswith("#"):
        return "does_not_start_with_chapter_heading"

    lowered = body.lower()
    for phrase in META_PHRASES:
        if phrase in lowered:
            return f'contains_meta_phrase: "{phrase}"'

    word_count = len(body.split())
    if word_count < min_words:
        return f"too_short: {word_count} words (min: {min_words})"

    chapter_count = len(_CHAPTER_HEADING_RE.findall(body))
    if chapter_count < 2:
        return f"too_few_chapters: {chapter_count} (min: 2)"
    return None


def generate_quality_report(
    markdown: str,
    target_words: int,
    language: LanguageProfile,
    notes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Human-readable summary of repetition, length and pacing."""
    bigrams = metrics.bigram_repetition(markdown, language)
    length = metrics.check_length(
        markdown, target_words, settings.length_tolerance, language.code
    )
    pacing_flags = metrics.analyze_pacing(markdown)
    return {
        "repetition": {
            "rate": round(bigrams.rate, 2),
            "high_frequency_bigrams": bigrams.top(5),
        },
        "length": length.as_dict(),
        "pacing": {"flags": pacing_flags, "acceptable": not pacing_flags},
        "notes": notes,
        "overall_quality": (
            "good"
            if length.within_range and len(pacing_flags) <= 2
            else "needs_review"
        ),
    }
