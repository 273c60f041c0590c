# processing/text_cleanup.py
"""Deterministic clean-up passes applied to drafts and user input."""

from __future__ import annotations

import re

import structlog

logger = structlog.get_logger(__name__)

AUDIO_BEAT_MARKER = "[AUDIO_BEAT]"
MAX_PROMPT_CHARS = 10000
CONTROL_SECTION_NAMES = ("CHAPTERS", "OUTLINE_JSON", "CHECKLIST", "TITLES", "SYNOPSIS", "NOTES")

_META_LINE_PATTERNS = [
    re.compile(r"^(Logline|Synopsis|Tagline|Summary)\s*:", re.IGNORECASE),
    re.compile(
        r"^(The story explores|This is a story|This story|The narrative|Through|Set against|In this)",
        re.IGNORECASE,
    ),
    re.compile(r"^(Samantha and Marcus|Both characters|The two|Our protagonists)", re.IGNORECASE),
    re.compile(r"(explores themes|examines how|captures the|backdrop of|unfolds over)", re.IGNORECASE),
]

# Per-language motif tokens replaced by a neutral pronoun in carried-over context.
MOTIF_TOKEN_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "en-US": [
        re.compile(r"\b(camera|cameras|CCTV|surveillance|monitor|monitoring|feed)\b", re.I),
        re.compile(r"\b(audit|audits|IT check|IT sweep|inspection)\b", re.I),
        re.compile(r"\b(letter|letters|envelope|envelopes|attorney|legal notice)\b", re.I),
        re.compile(r"\b(remote|remotes|dimmer|stage-?light|lighting preset)\b", re.I),
        re.compile(r"\b(timestamp|timestamps|auto-?delete|countdown)\b", re.I),
    ],
    "uk-UA": [
        re.compile(r"\b(камера|камери|відеоспостереження|моніторинг|монітор)\b", re.I),
        re.compile(r"\b(аудит|перевірка|ІТ-перевірка)\b", re.I),
        re.compile(r"\b(лист|листи|конверт|конверти|адвокат|юридичне повідомлення)\b", re.I),
        re.compile(r"\b(пульт|пульти|світло|освітлення|димер)\b", re.I),
    ],
    "pl-PL": [
        re.compile(r"\b(kamera|kamery|monitoring|monitorowanie)\b", re.I),
        re.compile(r"\b(audyt|kontrola|inspekcja)\b", re.I),
        re.compile(r"\b(list|listy|koperta|koperty|adwokat)\b", re.I),
        re.compile(r"\b(pilot|piloty|światło|oświetlenie)\b", re.I),
    ],
    "de-DE": [
        re.compile(r"\b(Kamera|Kameras|Überwachung|Monitor)\b", re.I),
        re.compile(r"\b(Prüfung|Inspektion|Kontrolle)\b", re.I),
        re.compile(r"\b(Brief|Briefe|Umschlag|Anwalt)\b", re.I),
        re.compile(r"\b(Fernbedienung|Licht|Beleuchtung)\b", re.I),
    ],
}


def soft_dedupe(markdown: str) -> str:
    """Drop lines whose normalized first 120 characters were already seen."""
    seen: set[str] = set()
    kept: list[str] = []
    dropped = 0
    for line in markdown.split("\n"):
        normalized = re.sub(r"\s+", " ", line.lower()).strip()
        if not normalized:
            kept.append(line)
            continue
        key = normalized[:120]
        if key in seen:
            dropped += 1
            continue
        seen.add(key)
        kept.append(line)
    if dropped:
        logger.debug("Soft dedupe removed duplicate lines", count=dropped)
    return "\n".join(kept)


def strip_meta_lines(markdown: str) -> str:
    """Remove logline, synopsis and book-jacket lines from the body."""
    kept = [
        line
        for line in markdown.split("\n")
        if not any(p.search(line.strip()) for p in _META_LINE_PATTERNS)
    ]
    return "\n".join(kept).strip()


def strip_audio_beats(markdown: str) -> str:
    """Remove audio beat markers and any leaked 'audio beat' words."""
    lines = [line for line in markdown.split("\n") if line.strip() != AUDIO_BEAT_MARKER]
    text = "\n".join(lines)
    text = re.sub(r"\b(audio[\s_-]?beat|audiobeat)\b", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\[\s*\]", "", text)
    text = re.sub(r"[ \t]{3,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def escape_control_tokens(text: str) -> str:
    """Neutralize delimiter syntax so user text cannot open or close sections."""
    if not text:
        return text
    for name in CONTROL_SECTION_NAMES:
        pattern = "|".join(
            re.escape(m)
            for m in (f"⟪{name}⟫", f"<<<{name}>>>", f"⟪/{name}⟫", f"<<<END_{name}>>>")
        )
        text = re.sub(pattern, f"[{name}]", text, flags=re.IGNORECASE)
    text = text.replace("⟪", "⟨").replace("⟫", "⟩")
    return text.replace("<<<", "‹‹‹").replace(">>>", "›››")


def sanitize_user_prompt(prompt: str | None) -> str:
    """Escape, normalize and cap a caller-supplied premise."""
    if not prompt or not isinstance(prompt, str):
        return ""
    sanitized = escape_control_tokens(prompt)
    sanitized = re.sub(r"\n{4,}", "\n\n\n", sanitized).strip()
    if len(sanitized) > MAX_PROMPT_CHARS:
        logger.warning("Premise truncated", original_chars=len(sanitized))
        sanitized = sanitized[:MAX_PROMPT_CHARS] + "... [truncated]"
    return sanitized


def _neutral_pronoun(match: re.Match[str]) -> str:
    token = match.group(0)
    return "It" if token[0] == token[0].upper() and token[0].isalpha() else "it"


def scrub_motif_tokens(context: str, language: str = "en-US") -> str:
    """Replace tracked motif words with 'it' so carried context does not repeat them."""
    if not context:
        return context
    patterns = MOTIF_TOKEN_PATTERNS.get(language, MOTIF_TOKEN_PATTERNS["en-US"])
    for pattern in patterns:
        context = pattern.sub(_neutral_pronoun, context)
    return context
