# orchestration/cli_runner.py
"""Command-line runner for the story orchestrator."""

from __future__ import annotations

import asyncio
import json
import os

import structlog

from config import settings
from core.llm_interface import ProviderService
from models import GenerationRequest, GenerationResult
from orchestration.orchestrator import GenerationError, StoryOrchestrator
from profiles import ProfileNotFoundError
from storage.artifact_sink import ArtifactSink
from ui.rich_display import RichDisplayManager
from utils.logging import setup_logging

logger = structlog.get_logger(__name__)


def write_result(result: GenerationResult, output_dir: str) -> str:
    """Write the story text and a JSON report; returns the story file path."""
    os.makedirs(output_dir, exist_ok=True)
    story_id = result.metadata.story_id
    story_path = os.path.join(output_dir, f"{story_id}.md")
    with open(story_path, "w", encoding="utf-8") as f:
        f.write(result.body_text)
    report_path = os.path.join(output_dir, f"{story_id}.report.json")
    with open(report_path, "w", encoding="utf-8") as f:
        json.dump(
            result.model_dump(mode="json", exclude={"body_text"}),
            f,
            ensure_ascii=False,
            indent=2,
        )
    return story_path


async def _run(request: GenerationRequest, output_dir: str) -> GenerationResult:
    provider = ProviderService()
    sink = ArtifactSink()
    display = RichDisplayManager(provider)
    orchestrator = StoryOrchestrator(provider, sink=sink, on_step=display.set_step)
    job = orchestrator.create_job(request)
    display.start(story=job.job_id, mode=job.mode)
    try:
        result = await orchestrator.generate(request.model_copy(update={"story_id": job.job_id}))
    finally:
        await display.stop()
        await provider.aclose()
        sink.rotate()
    path = write_result(result, output_dir)
    logger.info("Story written", path=path, words=result.metadata.actual_words)
    return result


def run(request: GenerationRequest, output_dir: str | None = None) -> int:
    """Run one generation job and return a process exit code."""
    setup_logging()
    try:
        asyncio.run(_run(request, output_dir or settings.BASE_OUTPUT_DIR))
    except KeyboardInterrupt:
        logger.info("Story generation interrupted; shutting down")
        return 130
    except ProfileNotFoundError as exc:
        logger.error("Unknown profile", error=str(exc))
        return 2
    except GenerationError as exc:
        logger.error(
            "Story generation failed",
            classification=exc.classification,
            error=str(exc),
        )
        return 1
    return 0
