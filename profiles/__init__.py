"""Language and genre profiles used by the metrics and prompt layers."""

from .models import DialogueRatioTarget, GenreProfile, LanguageProfile, QuietNoirProfile
from .registry import ProfileNotFoundError, ProfileRegistry, get_registry

__all__ = [
    "DialogueRatioTarget",
    "GenreProfile",
    "LanguageProfile",
    "QuietNoirProfile",
    "ProfileNotFoundError",
    "ProfileRegistry",
    "get_registry",
]
