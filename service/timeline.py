"""Frame-index driven timeline for slide exports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from domain.slides import (
    EMPTY_PROJECT_CODE,
    INVALID_CONFIG_CODE,
    RenderValidationError,
    Slide,
)

RECORDING_PROGRESS_START = 10.0
RECORDING_PROGRESS_SPAN = 85.0


@dataclass(frozen=True)
class FrameSelection:
    """Active slide and timing for one frame."""

    frame_index: int
    slide_index: int
    elapsed_seconds: float
    slide_elapsed_seconds: float
    transition_progress: float


def compute_total_frames(duration_seconds: float, fps: int) -> int:
    """Compute total frames for a video duration."""
    total_frames = int(round(duration_seconds * fps))
    if total_frames <= 0:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "duration and fps produce zero frames"
        )
    return total_frames


@dataclass(frozen=True)
class SlideTimeline:
    """Cumulative slide start times over a fixed frame rate."""

    durations: Tuple[float, ...]
    fps: int
    transition_seconds: float

    def __post_init__(self) -> None:
        if not self.durations:
            raise RenderValidationError(EMPTY_PROJECT_CODE, "timeline has no slides")
        if self.fps <= 0:
            raise RenderValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if self.transition_seconds <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "transition_seconds must be positive"
            )
        if any(duration <= 0 for duration in self.durations):
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "slide durations must be positive"
            )

    @classmethod
    def from_slides(
        cls, slides: Sequence[Slide], fps: int, transition_seconds: float
    ) -> "SlideTimeline":
        return cls(
            durations=tuple(slide.duration_seconds for slide in slides),
            fps=fps,
            transition_seconds=transition_seconds,
        )

    @property
    def total_seconds(self) -> float:
        return sum(self.durations)

    @property
    def total_frames(self) -> int:
        return compute_total_frames(self.total_seconds, self.fps)

    @property
    def progress_interval_frames(self) -> int:
        """Report progress about twice per second of output."""
        return max(1, self.fps // 2)

    def select_time(self, elapsed_seconds: float) -> Tuple[int, float]:
        """Return the active slide index and time into it.

        Times past the end stay on the last slide.
        """
        slide_start = 0.0
        for slide_index, duration in enumerate(self.durations):
            if elapsed_seconds < slide_start + duration:
                return slide_index, max(0.0, elapsed_seconds - slide_start)
            slide_start += duration
        last_index = len(self.durations) - 1
        return last_index, elapsed_seconds - (slide_start - self.durations[last_index])

    def transition_progress(self, slide_elapsed_seconds: float) -> float:
        return min(slide_elapsed_seconds / self.transition_seconds, 1.0)

    def select_frame(self, frame_index: int) -> FrameSelection:
        elapsed_seconds = frame_index / self.fps
        slide_index, slide_elapsed = self.select_time(elapsed_seconds)
        return FrameSelection(
            frame_index=frame_index,
            slide_index=slide_index,
            elapsed_seconds=elapsed_seconds,
            slide_elapsed_seconds=slide_elapsed,
            transition_progress=self.transition_progress(slide_elapsed),
        )

    def progress_percent(self, elapsed_seconds: float) -> float:
        """Map output time onto the 10-95 recording progress band."""
        ratio = min(1.0, max(0.0, elapsed_seconds / self.total_seconds))
        return ratio * RECORDING_PROGRESS_SPAN + RECORDING_PROGRESS_START
