# profiles/models.py
"""Immutable language and genre profile records."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class ProfileBaseModel(BaseModel):
    """Frozen base for profile records loaded from static data."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class LanguageProfile(ProfileBaseModel):
    """Per-language formatting rules and lexical tables."""

    code: str
    name: str
    rules: str = ""
    words_per_minute: int = 145
    time_bridges: tuple[str, ...] = ()
    transition_phrases: tuple[str, ...] = ()
    stopwords: frozenset[str] = frozenset()
    banned_bigrams: tuple[str, ...] = ()
    banned_phrases_romance: tuple[str, ...] = ()
    first_person_pronouns: tuple[str, ...] = ()
    third_person_pronouns: tuple[str, ...] = ()
    risk_lexemes: tuple[str, ...] = ()
    spaceless: bool = False
    chars_per_word: float | None = None

    @property
    def short_code(self) -> str:
        return self.code.split("-")[0]


class DialogueRatioTarget(ProfileBaseModel):
    """Acceptable dialogue ratio band for a genre."""

    min: float
    target: float
    max: float = 1.0


class QuietNoirProfile(ProfileBaseModel):
    """Quiet noir mode settings for mature-reader genres."""

    reader_profile: str = ""
    intimacy_mode: str = ""
    motif_budget: int = 3
    visible_price_required: bool = False
    character_anchors_required: bool = False
    mid_compression_percent: int = 6
    dialogue_ratio_min: float = 0.28
    temps: tuple[float, float, float] | None = None
    tone_guidance: str = ""


class GenreProfile(ProfileBaseModel):
    """Genre rules, pacing targets and repair strategies."""

    code: str
    name: str
    rules: str = ""
    beats: tuple[str, ...] = ()
    twists: tuple[str, ...] = ()
    chapters_per_1k: float = 3.0
    dialogue_ratio: DialogueRatioTarget | None = None
    legacy_dialogue_ratio: bool = False
    motif_budget: int | None = None
    motif_budget_per_10k: int | None = None
    obligatory_scenes: tuple[str, ...] = ()
    temps: tuple[float, float, float] | None = None
    patches: tuple[str, ...] = ()
    repetition_threshold: float = 40.0
    romance_safety: bool = False
    quiet_noir: QuietNoirProfile | None = None

    @model_validator(mode="before")
    @classmethod
    def _expand_single_dialogue_ratio(cls, data: Any) -> Any:
        # A bare number means "at least 90% of this value, no upper bound".
        if isinstance(data, dict) and isinstance(
            data.get("dialogue_ratio"), (int, float)
        ):
            value = float(data["dialogue_ratio"])
            data = {
                **data,
                "dialogue_ratio": {"min": value * 0.9, "target": value, "max": 1.0},
                "legacy_dialogue_ratio": True,
            }
        return data

    @property
    def visible_price_required(self) -> bool:
        return bool(self.quiet_noir and self.quiet_noir.visible_price_required)

    @property
    def character_anchors_required(self) -> bool:
        return bool(self.quiet_noir and self.quiet_noir.character_anchors_required)

    def opening_temperature(self, default: float = 0.7) -> float:
        return self.temps[0] if self.temps else default

