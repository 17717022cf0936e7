"""ffmpeg/ffprobe discovery, capability checks and probing."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Sequence

LOGGER = logging.getLogger("render_slide_video")

FFMPEG_NOT_FOUND_CODE = "render_slide_video.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_slide_video.ffmpeg.exec_error"
FFMPEG_UNSUPPORTED_CODE = "render_slide_video.ffmpeg.unsupported"
FFMPEG_PROCESS_CODE = "render_slide_video.ffmpeg.process_failed"
FFMPEG_PROBE_CODE = "render_slide_video.ffmpeg.probe_error"

STDERR_TAIL_CHARS = 2000


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class MediaProbe:
    """Stream summary of a media source."""

    duration_seconds: float
    has_video: bool
    has_audio: bool


def resolve_executable(executable: str) -> str:
    """Return the absolute path of an executable or raise not_found."""
    resolved = shutil.which(executable)
    if not resolved:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, f"{executable} not on PATH")
    return resolved


def ensure_executable_runs(executable: str) -> str:
    """Ensure ffmpeg (or ffprobe) is installed and executable."""
    resolved = resolve_executable(executable)
    try:
        subprocess.run(
            [resolved, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RenderPipelineError(
            FFMPEG_EXEC_CODE, f"{executable} exists but could not be executed"
        ) from exc
    return resolved


def validate_ffmpeg_capabilities(
    ffmpeg_path: str,
    encoder_names: Sequence[str],
    pixel_formats: Sequence[str] = (),
) -> None:
    """Validate that ffmpeg provides the encoders and pixel formats an export needs."""
    resolved = ensure_executable_runs(ffmpeg_path)
    encoders_result = subprocess.run(
        [resolved, "-hide_banner", "-encoders"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if encoders_result.returncode != 0:
        raise RenderPipelineError(FFMPEG_EXEC_CODE, "ffmpeg -encoders failed")
    for encoder_name in encoder_names:
        if encoder_name not in encoders_result.stdout:
            raise RenderPipelineError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support {encoder_name} encoder",
            )

    if not pixel_formats:
        return
    pixfmts_result = subprocess.run(
        [resolved, "-hide_banner", "-pix_fmts"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    for pixel_format in pixel_formats:
        if pixel_format not in pixfmts_result.stdout:
            raise RenderPipelineError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support {pixel_format} pixel format",
            )


def build_probe_command(ffprobe_path: str, source: str) -> list[str]:
    return [
        ffprobe_path,
        "-v",
        "error",
        "-show_entries",
        "format=duration:stream=codec_type",
        "-of",
        "json",
        source,
    ]


def parse_probe_output(stdout_text: str, source: str) -> MediaProbe:
    """Parse ffprobe JSON output into a MediaProbe."""
    try:
        payload = json.loads(stdout_text or "{}")
    except json.JSONDecodeError as exc:
        raise RenderPipelineError(
            FFMPEG_PROBE_CODE, f"ffprobe returned invalid JSON for {source}"
        ) from exc

    stream_types = {
        str(stream.get("codec_type"))
        for stream in payload.get("streams", [])
        if isinstance(stream, dict)
    }
    raw_duration = payload.get("format", {}).get("duration")
    try:
        duration_seconds = float(raw_duration) if raw_duration is not None else 0.0
    except (TypeError, ValueError):
        duration_seconds = 0.0
    return MediaProbe(
        duration_seconds=duration_seconds,
        has_video="video" in stream_types,
        has_audio="audio" in stream_types,
    )


async def probe_media(
    ffprobe_path: str, source: str, timeout_seconds: float
) -> MediaProbe:
    """Probe a path or URL with ffprobe under a timeout."""
    try:
        process = await asyncio.create_subprocess_exec(
            *build_probe_command(ffprobe_path, source),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise RenderPipelineError(
            FFMPEG_NOT_FOUND_CODE, f"ffprobe could not be started: {exc}"
        ) from exc

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout_seconds
        )
    except asyncio.TimeoutError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    if process.returncode != 0:
        stderr_text = stderr_bytes.decode("utf-8", errors="replace").strip()
        raise RenderPipelineError(
            FFMPEG_PROBE_CODE, f"ffprobe failed for {source}: {stderr_text}"
        )
    return parse_probe_output(stdout_bytes.decode("utf-8", errors="replace"), source)


def stderr_tail(stderr_bytes: bytes) -> str:
    """Last part of an ffmpeg stderr log, for error messages."""
    return stderr_bytes.decode("utf-8", errors="replace").strip()[-STDERR_TAIL_CHARS:]
