"""Central package for Narrata data models."""

from .agent_models import AgentBaseModel
from .generation_models import (
    AssemblerOutput,
    ContentPolicy,
    GenerationMetadata,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    PatchAttempt,
    PlannerOutput,
    PointOfView,
    PolishNotes,
    PolishOutput,
    QualityReport,
)

__all__ = [
    "AgentBaseModel",
    "AssemblerOutput",
    "ContentPolicy",
    "GenerationMetadata",
    "GenerationMode",
    "GenerationRequest",
    "GenerationResult",
    "PatchAttempt",
    "PlannerOutput",
    "PointOfView",
    "PolishNotes",
    "PolishOutput",
    "QualityReport",
]
