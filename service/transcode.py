"""Lazy WebM to MP4 transcoder that falls back to the native container."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import os
import tempfile
from typing import Awaitable, Callable, Sequence

from service.ffmpeg_tools import (
    FFMPEG_NOT_FOUND_CODE,
    FFMPEG_PROCESS_CODE,
    RenderPipelineError,
    stderr_tail,
    validate_ffmpeg_capabilities,
)
from service.recorder import RecordedMedia

LOGGER = logging.getLogger("render_slide_video")

TRANSCODE_FALLBACK_CODE = "render_slide_video.transcode.fallback"
TARGET_MIME_TYPE = "video/mp4"
TARGET_EXTENSION = "mp4"
TARGET_ENCODERS = ("libx264", "aac")

CapabilityCheck = Callable[[str, Sequence[str]], None]
Converter = Callable[[bytes, str], Awaitable[bytes]]


@dataclass(frozen=True)
class TranscodeResult:
    """Converted media, or the original when fallback is True."""

    data: bytes
    mime_type: str
    extension: str
    fallback: bool
    reason: str | None = None


def build_transcode_command(
    ffmpeg_path: str, input_path: str, output_path: str
) -> list[str]:
    return [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-i",
        input_path,
        "-c:v",
        "libx264",
        "-preset",
        "ultrafast",
        "-crf",
        "28",
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-movflags",
        "+faststart",
        output_path,
    ]


class Transcoder:
    """Owned transcoder instance with an explicit load/close lifecycle."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        load_timeout_seconds: float = 60.0,
        transcode_timeout_seconds: float = 120.0,
        capability_check: CapabilityCheck | None = None,
        converter: Converter | None = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.load_timeout_seconds = load_timeout_seconds
        self.transcode_timeout_seconds = transcode_timeout_seconds
        self._capability_check = capability_check or validate_ffmpeg_capabilities
        self._converter = converter or self._convert_with_ffmpeg
        self._loaded = False
        self._process: asyncio.subprocess.Process | None = None

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Verify encoder support once; later calls are no-ops."""
        if self._loaded:
            return
        loop = asyncio.get_running_loop()
        await asyncio.wait_for(
            loop.run_in_executor(
                None, self._capability_check, self.ffmpeg_path, TARGET_ENCODERS
            ),
            timeout=self.load_timeout_seconds,
        )
        self._loaded = True
        LOGGER.info("render_slide_video.transcode.loaded: %s", self.ffmpeg_path)

    async def transcode(self, media: RecordedMedia) -> TranscodeResult:
        """Convert to MP4; any failure returns the original marked as fallback."""
        if media.mime_type.split(";")[0].strip() == TARGET_MIME_TYPE:
            return TranscodeResult(media.data, media.mime_type, media.extension, False)
        try:
            await self.load()
            converted = await asyncio.wait_for(
                self._converter(media.data, media.extension),
                timeout=self.transcode_timeout_seconds,
            )
        except asyncio.TimeoutError:
            reason = "transcode timed out"
        except Exception as exc:
            reason = str(exc).strip() or type(exc).__name__
        else:
            return TranscodeResult(converted, TARGET_MIME_TYPE, TARGET_EXTENSION, False)

        LOGGER.warning(
            "%s: %s, keeping %s", TRANSCODE_FALLBACK_CODE, reason, media.mime_type
        )
        return TranscodeResult(
            media.data, media.mime_type, media.extension, True, reason
        )

    async def _convert_with_ffmpeg(self, data: bytes, extension: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="render_slide_video_") as work_dir:
            input_path = os.path.join(work_dir, f"input.{extension}")
            output_path = os.path.join(work_dir, f"output.{TARGET_EXTENSION}")
            with open(input_path, "wb") as file_handle:
                file_handle.write(data)
            try:
                self._process = await asyncio.create_subprocess_exec(
                    *build_transcode_command(self.ffmpeg_path, input_path, output_path),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise RenderPipelineError(
                    FFMPEG_NOT_FOUND_CODE, f"ffmpeg could not be started: {exc}"
                ) from exc
            try:
                _, stderr_bytes = await self._process.communicate()
                return_code = self._process.returncode
            finally:
                self._kill_process()
            if return_code != 0:
                raise RenderPipelineError(
                    FFMPEG_PROCESS_CODE,
                    f"ffmpeg failed with exit code {return_code}. "
                    f"{stderr_tail(stderr_bytes)}",
                )
            with open(output_path, "rb") as file_handle:
                return file_handle.read()

    def _kill_process(self) -> None:
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    async def close(self) -> None:
        """Stop any running conversion and forget the loaded state."""
        self._kill_process()
        self._loaded = False

    async def __aenter__(self) -> "Transcoder":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
