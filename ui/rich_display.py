# ui/rich_display.py
"""Live terminal panel showing the progress of one generation job."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from config import settings


class RichDisplayManager:
    """Handles Rich-based display updates."""

    def __init__(self, provider: Any = None, enabled: bool | None = None) -> None:
        self.provider = provider
        self.enabled = settings.ENABLE_RICH_PROGRESS if enabled is None else enabled
        self.live: Live | None = None
        self.group: Group | None = None
        self.status_text_story: Text = Text("Story: N/A")
        self.status_text_mode: Text = Text("Mode: N/A")
        self.status_text_current_step: Text = Text("Current Step: Initializing...")
        self.status_text_requests: Text = Text("Provider Requests: 0")
        self.status_text_elapsed_time: Text = Text("Elapsed Time: 0s")
        self.run_start_time: float = 0.0
        self._stop_event: asyncio.Event = asyncio.Event()
        self._task: asyncio.Task | None = None

        if self.enabled:
            self.group = Group(
                self.status_text_story,
                self.status_text_mode,
                self.status_text_current_step,
                self.status_text_requests,
                self.status_text_elapsed_time,
            )
            self.live = Live(
                Panel(
                    self.group,
                    title="Narrata Progress",
                    border_style="blue",
                    expand=True,
                ),
                refresh_per_second=4,
                transient=False,
                redirect_stdout=False,
                redirect_stderr=False,
            )

    def start(self, story: str = "N/A", mode: str = "N/A") -> None:
        self.run_start_time = time.time()
        self.status_text_story.plain = f"Story: {story}"
        self.status_text_mode.plain = f"Mode: {mode}"
        if self.live:
            self.live.start()
            self._stop_event.clear()
            self._task = asyncio.create_task(self._auto_refresh())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        if self.live and self.live.is_started:
            self.live.stop()

    async def _auto_refresh(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            await asyncio.sleep(1)

    def set_step(self, step: str) -> None:
        self.update(step=step)

    def update(self, step: str | None = None) -> None:
        if step is not None:
            self.status_text_current_step.plain = f"Current Step: {step}"
        requests = getattr(self.provider, "request_count", 0)
        self.status_text_requests.plain = f"Provider Requests: {requests}"
        elapsed_seconds = time.time() - self.run_start_time if self.run_start_time else 0
        self.status_text_elapsed_time.plain = (
            f"Elapsed Time: {time.strftime('%H:%M:%S', time.gmtime(elapsed_seconds))}"
        )
