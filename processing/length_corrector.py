# processing/length_corrector.py
"""Expand or condense a draft toward its target length with one provider call."""

from __future__ import annotations

import re

import structlog

from config import Temperatures, settings
from core.llm_interface import ProviderError, TextProvider
from core.retry import POLISH_POLICY
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

_CHAPTERS_BLOCK_RE = re.compile(r"⟪CHAPTERS⟫([\s\S]*?)⟪/CHAPTERS⟫")


def build_length_prompt(
    text: str, adjustment: int, target_words: int
) -> tuple[str, str]:
    """``adjustment`` is target minus actual: positive expands, negative condenses."""
    action = "expand" if adjustment > 0 else "condense"
    system_prompt = render_prompt("length_corrector/system.j2", {"action": action})
    user_prompt = render_prompt(
        "length_corrector/user.j2",
        {
            "action": action,
            "amount": abs(adjustment),
            "target_words": target_words,
            "chapters": text,
        },
    )
    return system_prompt, user_prompt


def parse_corrected(response: str) -> str | None:
    # Take the last block; the prompt's own example block may be echoed first.
    blocks = [b.strip() for b in _CHAPTERS_BLOCK_RE.findall(response or "")]
    blocks = [b for b in blocks if b and b != "[Your adjusted text here]"]
    return blocks[-1] if blocks else None


async def correct_length(
    provider: TextProvider,
    text: str,
    adjustment: int,
    target_words: int,
    *,
    floor: int = settings.LENGTH_CORRECTOR_FLOOR,
) -> str:
    """Return the corrected text, or ``text`` unchanged when skipped or on failure."""
    if abs(adjustment) < floor:
        logger.debug("Length adjustment below floor; skipping", adjustment=adjustment)
        return text

    system_prompt, user_prompt = build_length_prompt(text, adjustment, target_words)
    try:
        response = await provider.call(
            system_prompt,
            user_prompt,
            temperature=Temperatures.LENGTH_CORRECTION,
            model=settings.POLISH_MODEL,
            retry_policy=POLISH_POLICY,
            stage="length_correction",
        )
    except ProviderError as exc:
        logger.warning("Length correction failed, using original", error=str(exc))
        return text

    corrected = parse_corrected(response)
    if not corrected:
        logger.warning("Length correction returned no chapters block, using original")
        return text
    logger.info("Length correction applied", adjustment=adjustment)
    return corrected
