# storage/artifact_sink.py
"""Fire-and-forget writer for raw provider responses."""

from __future__ import annotations

import asyncio
import os
import time
from datetime import datetime, timezone
from typing import Any

import structlog

from config import LLM_ARTIFACTS_DIR, settings

logger = structlog.get_logger(__name__)

TRUNCATION_NOTICE = "\n\n[... truncated ...]"


class ArtifactSink:
    """Persist raw responses for debugging. Write failures never reach the caller."""

    def __init__(
        self,
        artifacts_dir: str = LLM_ARTIFACTS_DIR,
        enabled: bool = settings.ENABLE_LLM_ARTIFACTS,
        max_chars: int = settings.ARTIFACT_MAX_CHARS,
        retention_days: int = settings.ARTIFACT_RETENTION_DAYS,
    ) -> None:
        self.artifacts_dir = artifacts_dir
        self.enabled = enabled
        self.max_chars = max_chars
        self.retention_days = retention_days

    async def record(self, stage: str, story_id: str, text: str | None) -> str | None:
        """Write one raw response and return its path, or None when skipped."""
        if not self.enabled or not text:
            return None
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, self._record_sync, stage, story_id, text
            )
        except Exception as exc:
            logger.warning(
                "Failed to write provider artifact",
                stage=stage,
                story_id=story_id,
                error=str(exc),
                exc_info=True,
            )
            return None

    def _record_sync(self, stage: str, story_id: str, text: str) -> str:
        os.makedirs(self.artifacts_dir, exist_ok=True)
        safe_stage = "".join(c if c.isalnum() or c in ["_", "-"] else "_" for c in stage)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        file_path = os.path.join(
            self.artifacts_dir, f"llm_raw_{safe_stage}_{story_id}_{timestamp}.txt"
        )
        content = text
        if len(content) > self.max_chars:
            content = content[: self.max_chars] + TRUNCATION_NOTICE
        with open(file_path, "w", encoding="utf-8", errors="replace") as f:
            f.write(content)
        logger.debug("Saved provider artifact", path=file_path, chars=len(text))
        return file_path

    def rotate(self) -> int:
        """Delete artifacts older than the retention window. Returns files removed."""
        if not os.path.isdir(self.artifacts_dir):
            return 0
        cutoff = time.time() - self.retention_days * 86400
        removed = 0
        for name in os.listdir(self.artifacts_dir):
            path = os.path.join(self.artifacts_dir, name)
            try:
                if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError as exc:
                logger.warning("Could not remove old artifact", path=path, error=str(exc))
        if removed:
            logger.info("Rotated provider artifacts", removed=removed)
        return removed


class RecordingProvider:
    """Wrap a provider so every raw response is handed to an :class:`ArtifactSink`."""

    def __init__(self, provider: Any, sink: ArtifactSink, story_id: str) -> None:
        self._provider = provider
        self._sink = sink
        self._story_id = story_id

    async def call(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> str:
        text = await self._provider.call(system_prompt, user_prompt, **kwargs)
        await self._sink.record(kwargs.get("stage") or "call", self._story_id, text)
        return text
