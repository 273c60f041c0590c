# parsing/__init__.py
"""Parsing utilities for provider responses."""

from __future__ import annotations

from .extractor import (
    BODY_SECTIONS,
    SECTION_NAMES,
    DelimitedPair,
    ExtractionStrategy,
    UnterminatedStart,
    extract,
    parse_assembler_response,
    parse_bullets,
    parse_outline_json,
    parse_planner_response,
    parse_polish_notes,
    parse_polish_response,
    scan_json_span,
)

__all__ = [
    "BODY_SECTIONS",
    "SECTION_NAMES",
    "DelimitedPair",
    "ExtractionStrategy",
    "UnterminatedStart",
    "extract",
    "parse_assembler_response",
    "parse_bullets",
    "parse_outline_json",
    "parse_planner_response",
    "parse_polish_notes",
    "parse_polish_response",
    "scan_json_span",
]
