# orchestration/models.py
"""In-memory records for one generation job."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from models import GenerationMode, GenerationRequest, PatchAttempt, QualityReport
from processing.promise_ledger import PromiseLedger
from profiles import GenreProfile, LanguageProfile


@dataclass(frozen=True)
class Act:
    """One planned segment of a multi-act story."""

    index: int
    word_budget: int
    text: str
    summary: str = ""
    synopsis: str = ""


@dataclass
class GenerationJob:
    """Mutable state threaded through the pipeline stages of one request."""

    request: GenerationRequest
    language: LanguageProfile
    genre: GenreProfile
    target_words: int
    mode: GenerationMode
    premise: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    draft: str = ""
    acts: list[Act] = field(default_factory=list)
    ledger: PromiseLedger | None = None
    report: QualityReport | None = None
    patch_attempt: PatchAttempt | None = None
    outline: Any = None
    titles: list[str] = field(default_factory=list)
    synopsis: str = ""
    started_at: float = field(default_factory=time.monotonic)

    @property
    def pov(self) -> str:
        return self.request.pov or "third"

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at
