"""Background music routed into the recorder's encoder graph."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Callable, Sequence, Tuple

from service.ffmpeg_tools import (
    RenderPipelineError,
    probe_media,
    validate_ffmpeg_capabilities,
)

LOGGER = logging.getLogger("render_slide_video")

AUDIO_DEGRADED_CODE = "render_slide_video.audio.degraded"
AUDIO_CODEC = "libopus"

CapabilityCheck = Callable[[str, Sequence[str]], None]


@dataclass(frozen=True)
class AudioMix:
    """A decodable audio source played through a fixed gain stage."""

    source: str
    gain: float = 0.8

    def input_args(self) -> Tuple[str, ...]:
        """Input arguments; the bed loops until the video ends."""
        return ("-stream_loop", "-1", "-i", self.source)

    def output_args(self, input_index: int) -> Tuple[str, ...]:
        """Map the audio input through the gain filter into the combined stream."""
        return (
            "-map",
            f"{input_index}:a:0",
            "-filter:a",
            f"volume={self.gain:.3f}",
        )


def log_audio_degraded(reason: str) -> None:
    LOGGER.warning("%s: %s, exporting without audio", AUDIO_DEGRADED_CODE, reason)


async def build_audio_mix(
    source: str | None,
    ffprobe_path: str,
    timeout_seconds: float,
    gain: float,
    ffmpeg_path: str | None = None,
    capability_check: CapabilityCheck = validate_ffmpeg_capabilities,
) -> AudioMix | None:
    """Probe the audio source; any failure downgrades to an audio-less export.

    When ``ffmpeg_path`` is given the audio encoder is checked first, so an
    ffmpeg build without it also records silently.
    """
    if not source:
        return None
    try:
        if ffmpeg_path is not None:
            await asyncio.get_running_loop().run_in_executor(
                None, capability_check, ffmpeg_path, (AUDIO_CODEC,)
            )
        probe = await probe_media(ffprobe_path, source, timeout_seconds)
    except asyncio.TimeoutError:
        log_audio_degraded(f"audio not ready after {timeout_seconds:.1f}s")
        return None
    except RenderPipelineError as exc:
        log_audio_degraded(str(exc).strip())
        return None

    if not probe.has_audio:
        log_audio_degraded(f"{source} has no audio stream")
        return None
    return AudioMix(source=source, gain=gain)
