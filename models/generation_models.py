# models/generation_models.py
"""Request, result and intermediate models for the generation pipeline."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .agent_models import AgentBaseModel

PointOfView = Literal["first", "third"]
GenerationMode = Literal["short", "short-multi-act", "long"]


class ContentPolicy(BaseModel):
    """Caller-supplied content policy flags."""

    model_config = ConfigDict(frozen=True)

    no_explicit_content: bool = True
    violence_level: str = "moderate"


class GenerationRequest(BaseModel):
    """A single narrative generation request. Immutable once accepted."""

    model_config = ConfigDict(frozen=True)

    language: str = "en-US"
    genre: str
    premise: str = ""
    target_minutes: float | None = Field(None, gt=0)
    target_words: int | None = Field(None, gt=0)
    pov: PointOfView | None = "third"
    audio_mode: bool = False
    policy: ContentPolicy = Field(default_factory=ContentPolicy)
    story_id: str | None = None

    @model_validator(mode="after")
    def _require_target(self) -> GenerationRequest:
        if self.target_minutes is None and self.target_words is None:
            raise ValueError("Either target_minutes or target_words is required")
        return self


class QualityReport(AgentBaseModel):
    """Verdict of one quality gate evaluation."""

    passed: bool
    failures: list[str] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)


class PatchAttempt(AgentBaseModel):
    """Record of the single corrective rewrite attempted for a job."""

    strategy: str
    metrics_before: dict[str, Any] = Field(default_factory=dict)
    validation: str | None = None
    accepted: bool = False


class PlannerOutput(AgentBaseModel):
    """Sections parsed out of a planning call."""

    outline: dict[str, Any] = Field(
        default_factory=lambda: {"beats": [], "chapters": []}
    )
    checklist: list[str] = Field(default_factory=list)
    chapters: str = ""
    titles: list[str] = Field(default_factory=list)
    synopsis: str = ""


class PolishNotes(AgentBaseModel):
    """Self-reported metrics from a polish call."""

    repetition_rate_bigrams: float = 0.0
    pacing_flags: list[str] = Field(default_factory=list)
    checklist_resolution: list[str] = Field(default_factory=list)


class PolishOutput(AgentBaseModel):
    chapters: str = ""
    notes: PolishNotes = Field(default_factory=PolishNotes)


class AssemblerOutput(AgentBaseModel):
    markdown: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class GenerationMetadata(AgentBaseModel):
    story_id: str
    language: str
    genre: str
    target_words: int
    actual_words: int
    mode: GenerationMode
    duration_seconds: float
    sanitized: bool = False


class GenerationResult(AgentBaseModel):
    """Final output returned to the caller."""

    body_text: str
    outline: Any = None
    titles: list[str] = Field(default_factory=list)
    synopsis: str = ""
    quality_report: QualityReport
    summary_report: dict[str, Any] = Field(default_factory=dict)
    patch_attempt: PatchAttempt | None = None
    ledger_summary: dict[str, Any] | None = None
    metadata: GenerationMetadata
