# main.py
"""CLI entry point for the Narrata story generator."""

from __future__ import annotations

import argparse
import sys

import structlog

from models import GenerationRequest
from orchestration.cli_runner import run

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a long-form story")
    parser.add_argument("--genre", required=True, help="Genre profile code")
    parser.add_argument("--language", default="en-US", help="Language profile code")
    parser.add_argument("--premise", default="", help="Story premise")
    parser.add_argument("--premise-file", default=None, help="Read the premise from a file")
    length = parser.add_mutually_exclusive_group(required=True)
    length.add_argument("--minutes", type=float, help="Target listening length in minutes")
    length.add_argument("--words", type=int, help="Target length in words")
    parser.add_argument("--pov", choices=["first", "third"], default="third")
    parser.add_argument("--audio", action="store_true", help="Optimize for narration")
    parser.add_argument("--story-id", default=None)
    parser.add_argument("--output", default=None, help="Output directory")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and generate one story."""
    args = build_parser().parse_args(argv)
    premise = args.premise
    if args.premise_file:
        try:
            with open(args.premise_file, encoding="utf-8") as f:
                premise = f.read()
        except OSError as exc:
            logger.error("Cannot read premise file", path=args.premise_file, error=str(exc))
            return 2
    request = GenerationRequest(
        language=args.language,
        genre=args.genre,
        premise=premise,
        target_minutes=args.minutes,
        target_words=args.words,
        pov=args.pov,
        audio_mode=args.audio,
        story_id=args.story_id,
    )
    return run(request, args.output)


if __name__ == "__main__":
    sys.exit(main())
