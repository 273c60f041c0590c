# utils/__init__.py
"""General utility functions for the Narrata engine."""

from __future__ import annotations

from .logging import setup_logging
from .text_processing import (
    Chapter,
    count_words,
    extract_chapters,
    sanitize_control_markers,
    split_paragraphs,
)

__all__ = [
    "Chapter",
    "count_words",
    "extract_chapters",
    "sanitize_control_markers",
    "setup_logging",
    "split_paragraphs",
]
