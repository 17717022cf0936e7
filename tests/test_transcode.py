"""Unit tests for the MP4 transcoder and its fallback behavior."""

from __future__ import annotations

import asyncio
from typing import List, Sequence

from service.ffmpeg_tools import FFMPEG_UNSUPPORTED_CODE, RenderPipelineError
from service.recorder import NATIVE_EXTENSION, NATIVE_MIME_TYPE, RecordedMedia
from service.transcode import (
    TARGET_ENCODERS,
    TARGET_MIME_TYPE,
    Transcoder,
    build_transcode_command,
)


def webm_media() -> RecordedMedia:
    """A small fake WebM recording."""
    return RecordedMedia(b"webm", NATIVE_MIME_TYPE, NATIVE_EXTENSION, 1)


def test_build_transcode_command_targets_h264_aac() -> None:
    """The conversion uses fast H.264, AAC and a faststart MP4."""
    command = build_transcode_command("ffmpeg", "in.webm", "out.mp4")

    assert command[0] == "ffmpeg"
    assert command[command.index("-c:v") + 1] == "libx264"
    assert command[command.index("-preset") + 1] == "ultrafast"
    assert command[command.index("-crf") + 1] == "28"
    assert command[command.index("-c:a") + 1] == "aac"
    assert command[command.index("-b:a") + 1] == "128k"
    assert "+faststart" in command
    assert command[-1] == "out.mp4"


def test_transcoder_loads_once() -> None:
    """Capability checks run on first use only."""
    checks: List[Sequence[str]] = []

    def capability_check(ffmpeg_path: str, encoders: Sequence[str]) -> None:
        checks.append(tuple(encoders))

    async def converter(data: bytes, extension: str) -> bytes:
        return b"mp4"

    async def run() -> None:
        async with Transcoder(
            "ffmpeg", capability_check=capability_check, converter=converter
        ) as transcoder:
            assert not transcoder.loaded
            first = await transcoder.transcode(webm_media())
            second = await transcoder.transcode(webm_media())
            assert transcoder.loaded
            assert first.mime_type == TARGET_MIME_TYPE
            assert second.data == b"mp4"
        assert not transcoder.loaded

    asyncio.run(run())
    assert checks == [TARGET_ENCODERS]


def test_transcoder_falls_back_when_encoders_missing() -> None:
    """An unsupported ffmpeg keeps the native container."""

    def capability_check(ffmpeg_path: str, encoders: Sequence[str]) -> None:
        raise RenderPipelineError(FFMPEG_UNSUPPORTED_CODE, "no libx264")

    async def converter(data: bytes, extension: str) -> bytes:
        raise AssertionError("converter must not run")

    transcoder = Transcoder(
        "ffmpeg", capability_check=capability_check, converter=converter
    )
    result = asyncio.run(transcoder.transcode(webm_media()))

    assert result.fallback is True
    assert result.mime_type == NATIVE_MIME_TYPE
    assert result.extension == NATIVE_EXTENSION
    assert result.data == b"webm"
    assert result.reason == "no libx264"


def test_transcoder_times_out_slow_conversions() -> None:
    """A conversion exceeding its timeout falls back."""

    async def converter(data: bytes, extension: str) -> bytes:
        await asyncio.sleep(5)
        return b"never"

    transcoder = Transcoder(
        "ffmpeg",
        transcode_timeout_seconds=0.01,
        capability_check=lambda ffmpeg_path, encoders: None,
        converter=converter,
    )
    result = asyncio.run(transcoder.transcode(webm_media()))

    assert result.fallback is True
    assert result.reason == "transcode timed out"


def test_transcoder_passes_mp4_through() -> None:
    """Input already in the target container is returned unchanged."""

    def capability_check(ffmpeg_path: str, encoders: Sequence[str]) -> None:
        raise AssertionError("no load needed")

    transcoder = Transcoder("ffmpeg", capability_check=capability_check)
    media = RecordedMedia(b"mp4", TARGET_MIME_TYPE, "mp4", 1)
    result = asyncio.run(transcoder.transcode(media))

    assert result.fallback is False
    assert result.data == b"mp4"


def test_transcoder_falls_back_on_unexpected_converter_errors() -> None:
    """Any converter crash keeps the recorded container."""

    async def converter(data: bytes, extension: str) -> bytes:
        raise RuntimeError("converter crashed")

    transcoder = Transcoder(
        "ffmpeg",
        capability_check=lambda ffmpeg_path, encoders: None,
        converter=converter,
    )
    result = asyncio.run(transcoder.transcode(webm_media()))

    assert result.fallback is True
    assert result.mime_type == NATIVE_MIME_TYPE
    assert result.data == b"webm"
    assert result.reason == "converter crashed"
