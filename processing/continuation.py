# processing/continuation.py
"""Detect truncated drafts and splice provider continuations onto them."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

import structlog

from prompt_renderer import render_prompt
from utils.text_processing import count_words

logger = structlog.get_logger(__name__)

CRITICAL_SHORTFALL = 0.8
MODERATE_SHORTFALL = 0.9
CONTEXT_CHARS = 500
DUPLICATE_WINDOW = 200
MAX_OVERLAP = 100
MIN_OVERLAP = 10
OVERLAP_SEARCH_LIMIT = 100

_TERMINAL_PUNCTUATION_RE = re.compile(r"[.!?…][\s\"'»”’)]*$")


@dataclass
class TruncationCheck:
    truncated: bool
    actual_words: int
    target_words: int
    missing_words: int = 0
    reason: str | None = None


def ends_with_terminal_punctuation(text: str) -> bool:
    return bool(_TERMINAL_PUNCTUATION_RE.search(text.strip()[-10:]))


def is_truncated(
    text: str, target_words: int, language: str | None = None
) -> TruncationCheck:
    """Flag drafts that stopped early.

    Below 80% of target the draft is treated as truncated regardless of how
    it ends. Between 80% and 90% it is truncated only when the last sentence
    is unfinished.
    """
    actual = count_words(text, language)
    missing = max(0, target_words - actual)

    if actual < target_words * CRITICAL_SHORTFALL:
        return TruncationCheck(
            truncated=True,
            actual_words=actual,
            target_words=target_words,
            missing_words=missing,
            reason=f"critical shortfall: {actual}/{target_words} words",
        )
    if actual < target_words * MODERATE_SHORTFALL and not ends_with_terminal_punctuation(
        text
    ):
        return TruncationCheck(
            truncated=True,
            actual_words=actual,
            target_words=target_words,
            missing_words=missing,
            reason="text is short and does not end with punctuation",
        )
    return TruncationCheck(truncated=False, actual_words=actual, target_words=target_words)


def build_continuation_prompt(
    text: str, missing_words: int, language_name: str
) -> tuple[str, str]:
    """Return (system, user) prompts asking for the missing tail of the story."""
    system_prompt = render_prompt("continuation/system.j2", {})
    user_prompt = render_prompt(
        "continuation/user.j2",
        {
            "context": text[-CONTEXT_CHARS:],
            "missing_words": missing_words,
            "language": language_name,
        },
    )
    return system_prompt, user_prompt


def _fingerprint(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()[:16]


def merge_continuation(original: str, continuation: str) -> str:
    """Join a continuation onto the original without duplicating the overlap."""
    if _fingerprint(original[-DUPLICATE_WINDOW:]) == _fingerprint(
        continuation[:DUPLICATE_WINDOW]
    ):
        logger.info("Continuation duplicates the original tail; using it as-is")
        return continuation

    for size in range(MAX_OVERLAP, MIN_OVERLAP - 1, -10):
        snippet = original[-size:]
        idx = continuation.find(snippet)
        if 0 <= idx < OVERLAP_SEARCH_LIMIT:
            logger.info("Continuation overlap found", overlap_chars=size)
            return original + continuation[idx + size :]

    logger.info("No continuation overlap detected; appending")
    return original + "\n\n" + continuation
