"""Synchronous progress observer plumbing."""

from __future__ import annotations

import logging
from typing import Callable

LOGGER = logging.getLogger("render_slide_video")

PROGRESS_OBSERVER_CODE = "render_slide_video.progress.observer_failed"

ProgressCallback = Callable[[float, str], None]


class ProgressReporter:
    """Forwards (percent, message) to an observer; percent never moves backward."""

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self.percent = 0.0
        self.message = ""

    def report(self, percent: float, message: str) -> None:
        self.percent = max(self.percent, min(100.0, float(percent)))
        self.message = message
        if self._callback is None:
            return
        try:
            self._callback(self.percent, message)
        except Exception as exc:
            LOGGER.warning("%s: %s", PROGRESS_OBSERVER_CODE, str(exc).strip())


def log_progress(percent: float, message: str) -> None:
    """Observer used by the CLI."""
    LOGGER.info("render_slide_video.progress: %3.0f%% %s", percent, message)
