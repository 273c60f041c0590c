# processing/content_safety.py
"""Risk-lexeme density checks and the romance sanitiser."""

from __future__ import annotations

import re
from typing import Any

import structlog

from profiles import GenreProfile, LanguageProfile

logger = structlog.get_logger(__name__)

SAFETY_GENRES = frozenset({"romance", "family_drama", "noir_drama"})
DENSITY_FAIL = 4.0
DENSITY_WARN = 2.0
IN_QUOTES_WARN = 3

_QUOTE_PATTERNS = [
    re.compile(r'"([^"]+)"'),
    re.compile(r"«([^»]+)»"),
    re.compile(r"„([^“”\"]+)[“”\"]"),
    re.compile(r"'([^']+)'"),
]

FORBIDDEN_TERMS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(sexual slavery|sexual slave|sex slave)\b",
        r"\b(rape|raped|raping)\b",
        r"\b(molest|molested|molesting|molestation)\b",
        r"\b(incest|incestuous)\b",
        r"\b(child|minor|underage|teenager|teen|adolescent)[\s\-]*(sex|sexual|intimate|erotic|porn)",
        r"\b(non[\s\-]*consensual|forced sex|sexual assault)\b",
        r"\b(exploit|exploited|exploiting|exploitation)[\s\-]*(sexual|sex)",
        r"\b(traffick|trafficking)[\s\-]*(sex|sexual|human)\b",
        r"\bpornographic\b",
        r"\b(pedophil|paedophil)",
    )
]

# Applied in order before the generic fallback replacement.
REPLACEMENTS = {
    "sexual slavery": "coercive control",
    "sexual slave": "controlled person",
    "sex slave": "controlled person",
    "rape": "assault (off-screen)",
    "raped": "assaulted (acknowledged)",
    "raping": "assaulting (implied)",
    "molest": "inappropriate conduct",
    "molested": "inappropriate conduct (acknowledged)",
    "molesting": "inappropriate conduct",
    "molestation": "inappropriate conduct",
    "non-consensual": "improper",
    "forced sex": "assault (off-screen)",
    "sexual assault": "assault (acknowledged)",
    "sexual exploitation": "coercion",
    "sex trafficking": "trafficking (acknowledged)",
    "human trafficking": "trafficking (acknowledged)",
    "pornographic": "explicit",
}
REMOVED_PLACEHOLDER = "[content removed for safety]"


def applies_to(genre: GenreProfile | str) -> bool:
    code = genre if isinstance(genre, str) else genre.code
    return code in SAFETY_GENRES


def _lexeme_re(lexeme: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(lexeme)}\b", re.IGNORECASE)


def lexeme_density(text: str, language: LanguageProfile) -> dict[str, Any]:
    """Risk lexemes per 1000 words with the top offenders."""
    total_words = len((text or "").split()) or 1
    hits = []
    total_hits = 0
    for lexeme in language.risk_lexemes:
        count = len(_lexeme_re(lexeme).findall(text or ""))
        if count:
            hits.append({"word": lexeme, "count": count})
            total_hits += count
    density = round(total_hits / total_words * 1000, 2)
    if density > DENSITY_FAIL:
        threshold = "fail"
    elif density > DENSITY_WARN:
        threshold = "warn"
    else:
        threshold = "pass"
    return {
        "density": density,
        "total_hits": total_hits,
        "hits": sorted(hits, key=lambda h: -h["count"])[:10],
        "threshold": threshold,
    }


def scan_in_quotes(text: str, language: LanguageProfile) -> dict[str, Any]:
    """Count risk lexemes inside quoted dialogue, once per lexeme per quote."""
    quotes = [m.group(1) for p in _QUOTE_PATTERNS for m in p.finditer(text or "")]
    flagged = []
    total = 0
    for quote in quotes:
        issues = [lex for lex in language.risk_lexemes if _lexeme_re(lex).search(quote)]
        if issues:
            total += len(issues)
            preview = quote if len(quote) <= 50 else quote[:50] + "..."
            flagged.append({"quote": preview, "issues": issues})
    return {
        "in_quotes_hits": total,
        "flagged_quotes": flagged[:5],
        "threshold": "warn" if total > IN_QUOTES_WARN else "pass",
    }


def safety_check(
    text: str, language: LanguageProfile, genre: GenreProfile
) -> dict[str, Any]:
    """Overall status: ``passed``, ``warn`` or ``fail`` (fail means a patch is needed)."""
    if not applies_to(genre):
        return {"status": "passed", "metrics": {}, "needs_patch": False}

    density = lexeme_density(text, language)
    quotes = scan_in_quotes(text, language)

    status = "passed"
    if density["threshold"] == "fail" or quotes["threshold"] == "warn":
        status = "fail"
    elif density["threshold"] == "warn":
        status = "warn"

    return {
        "status": status,
        "metrics": {
            "lexeme_density": density["density"],
            "lexeme_hits": density["total_hits"],
            "top_lexemes": density["hits"],
            "in_quotes_hits": quotes["in_quotes_hits"],
            "flagged_quotes": quotes["flagged_quotes"],
        },
        "needs_patch": status == "fail",
    }


def sanitize_romance(text: str, genre: GenreProfile) -> tuple[str, bool]:
    """Replace forbidden terms for genres with romance safety enabled.

    Returns the (possibly rewritten) text and whether anything changed.
    """
    if not (genre.romance_safety or applies_to(genre)):
        return text, False
    if not any(p.search(text) for p in FORBIDDEN_TERMS):
        return text, False

    logger.info("Forbidden terms detected, sanitizing final text", genre=genre.code)
    sanitized = text
    for term, replacement in REPLACEMENTS.items():
        sanitized = _lexeme_re(term).sub(replacement, sanitized)
    for pattern in FORBIDDEN_TERMS:
        sanitized = pattern.sub(REMOVED_PLACEHOLDER, sanitized)
    return sanitized, True
