# profiles/registry.py
"""Load language and genre profiles once and resolve them by code."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog

from .models import GenreProfile, LanguageProfile

logger = structlog.get_logger(__name__)

DATA_PATH = Path(__file__).parent / "data"
DEFAULT_LANGUAGE = "en-US"

# Lexical tables a language may omit; such languages inherit the default's.
_INHERITED_FIELDS = (
    "first_person_pronouns",
    "third_person_pronouns",
    "transition_phrases",
    "risk_lexemes",
)


class ProfileNotFoundError(KeyError):
    """Raised when a language or genre code has no profile."""


def _read_json(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Profile file {path} must contain a JSON object")
    return data


class ProfileRegistry:
    """Read-only lookup of immutable profile records."""

    def __init__(
        self,
        languages: dict[str, LanguageProfile],
        genres: dict[str, GenreProfile],
    ) -> None:
        self._languages = dict(languages)
        self._genres = dict(genres)

    @classmethod
    def from_directory(cls, data_dir: Path = DATA_PATH) -> ProfileRegistry:
        raw_languages = _read_json(data_dir / "languages.json")
        raw_genres = _read_json(data_dir / "genres.json")

        base = raw_languages.get(DEFAULT_LANGUAGE, {})
        languages: dict[str, LanguageProfile] = {}
        for code, entry in raw_languages.items():
            merged = dict(entry)
            for field in _INHERITED_FIELDS:
                if not merged.get(field):
                    merged[field] = base.get(field, [])
            languages[code] = LanguageProfile(code=code, **merged)

        genres = {
            code: GenreProfile(code=code, **entry) for code, entry in raw_genres.items()
        }
        logger.debug(
            "Loaded profiles", languages=len(languages), genres=len(genres)
        )
        return cls(languages, genres)

    @property
    def language_codes(self) -> list[str]:
        return sorted(self._languages)

    @property
    def genre_codes(self) -> list[str]:
        return sorted(self._genres)

    def language(self, code: str) -> LanguageProfile:
        """Resolve ``code`` exactly, or by its short prefix (``en`` -> ``en-US``)."""
        if code in self._languages:
            return self._languages[code]
        prefix = code.split("-")[0].lower()
        for full_code, profile in self._languages.items():
            if full_code.split("-")[0].lower() == prefix:
                return profile
        raise ProfileNotFoundError(f"Language profile not found: {code}")

    def genre(self, code: str) -> GenreProfile:
        try:
            return self._genres[code]
        except KeyError:
            raise ProfileNotFoundError(f"Genre profile not found: {code}") from None


_registry: ProfileRegistry | None = None


def get_registry() -> ProfileRegistry:
    """Return the process-wide registry, loading the data files on first use."""
    global _registry
    if _registry is None:
        _registry = ProfileRegistry.from_directory()
    return _registry
