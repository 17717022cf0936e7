"""Live encoder fed with raw frames; collects the native WebM container."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Protocol

from PIL import Image

from service.audio_mix import AUDIO_CODEC, AudioMix
from service.ffmpeg_tools import RenderPipelineError, stderr_tail

LOGGER = logging.getLogger("render_slide_video")

RECORDER_INIT_CODE = "render_slide_video.recorder.init_failed"
RECORDER_WRITE_CODE = "render_slide_video.recorder.write_failed"
RECORDER_FAILED_CODE = "render_slide_video.recorder.encode_failed"

NATIVE_MIME_TYPE = "video/webm;codecs=vp8,opus"
NATIVE_EXTENSION = "webm"
VIDEO_CODEC = "libvpx"
PIXEL_FORMAT = "yuv420p"
CHUNK_SIZE = 64 * 1024
LONG_VIDEO_SECONDS = 30.0
MEDIUM_VIDEO_SECONDS = 15.0
LONG_VIDEO_BITRATE = 4_000_000
MEDIUM_VIDEO_BITRATE = 6_000_000
SHORT_VIDEO_BITRATE = 8_000_000


@dataclass(frozen=True)
class RecordedMedia:
    """Finished container produced by a recorder."""

    data: bytes
    mime_type: str
    extension: str
    chunk_count: int


class Recorder(Protocol):
    async def start(self) -> None:
        ...

    async def write_frame(self, frame: Image.Image) -> None:
        ...

    async def stop(self) -> RecordedMedia:
        ...

    def release(self) -> None:
        ...


def select_video_bitrate(total_seconds: float) -> int:
    """Longer videos get a lower bitrate tier."""
    if total_seconds > LONG_VIDEO_SECONDS:
        return LONG_VIDEO_BITRATE
    if total_seconds > MEDIUM_VIDEO_SECONDS:
        return MEDIUM_VIDEO_BITRATE
    return SHORT_VIDEO_BITRATE


def build_recorder_command(
    ffmpeg_path: str,
    width: int,
    height: int,
    fps: int,
    video_bitrate: int,
    audio_bitrate: int,
    audio: AudioMix | None,
) -> list[str]:
    """Start ffmpeg for a raw RGB frame stream, writing WebM to stdout."""
    command = [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "-s",
        f"{width}x{height}",
        "-r",
        str(fps),
        "-i",
        "pipe:0",
    ]
    if audio is not None:
        command.extend(audio.input_args())
        command.extend(["-map", "0:v:0"])
        command.extend(audio.output_args(1))
    else:
        command.append("-an")
    command.extend(
        [
            "-c:v",
            VIDEO_CODEC,
            "-b:v",
            str(video_bitrate),
            "-deadline",
            "realtime",
            "-cpu-used",
            "8",
            "-pix_fmt",
            PIXEL_FORMAT,
        ]
    )
    if audio is not None:
        command.extend(["-c:a", AUDIO_CODEC, "-b:a", str(audio_bitrate), "-shortest"])
    command.extend(["-f", "webm", "pipe:1"])
    return command


class ContainerRecorder:
    """Encodes frames as they are captured and accumulates the emitted chunks."""

    def __init__(
        self,
        ffmpeg_path: str,
        width: int,
        height: int,
        fps: int,
        video_bitrate: int,
        audio_bitrate: int,
        audio: AudioMix | None = None,
    ) -> None:
        self.command = build_recorder_command(
            ffmpeg_path, width, height, fps, video_bitrate, audio_bitrate, audio
        )
        self._chunks: list[bytes] = []
        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[bytes] | None = None

    async def start(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RenderPipelineError(
                RECORDER_INIT_CODE, f"failed to start encoder: {exc}"
            ) from exc
        if self._process.stdin is None or self._process.stdout is None:
            raise RenderPipelineError(RECORDER_INIT_CODE, "encoder pipes unavailable")
        self._stdout_task = asyncio.ensure_future(self._collect_chunks())
        assert self._process.stderr is not None
        self._stderr_task = asyncio.ensure_future(self._process.stderr.read())
        LOGGER.debug("render_slide_video.recorder.started: %s", " ".join(self.command))

    async def _collect_chunks(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        while True:
            chunk = await self._process.stdout.read(CHUNK_SIZE)
            if not chunk:
                return
            self._chunks.append(chunk)

    async def _stderr_text(self) -> str:
        if self._stderr_task is None:
            return ""
        return stderr_tail(await self._stderr_task)

    async def write_frame(self, frame: Image.Image) -> None:
        """Push one RGB frame into the encoder."""
        if self._process is None or self._process.stdin is None:
            raise RenderPipelineError(RECORDER_WRITE_CODE, "encoder is not running")
        try:
            self._process.stdin.write(frame.tobytes())
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self._process.wait()
            raise RenderPipelineError(
                RECORDER_WRITE_CODE,
                f"encoder stopped accepting frames. {await self._stderr_text()}",
            ) from exc

    async def stop(self) -> RecordedMedia:
        """Close the input, wait for the container and return it."""
        if self._process is None or self._process.stdin is None:
            raise RenderPipelineError(RECORDER_FAILED_CODE, "encoder is not running")
        self._process.stdin.close()
        if self._stdout_task is not None:
            await self._stdout_task
        return_code = await self._process.wait()
        if return_code != 0:
            raise RenderPipelineError(
                RECORDER_FAILED_CODE,
                f"encoder failed with exit code {return_code}. "
                f"{await self._stderr_text()}",
            )
        data = b"".join(self._chunks)
        LOGGER.info(
            "render_slide_video.recorder.stopped: %d chunks, %d bytes",
            len(self._chunks),
            len(data),
        )
        return RecordedMedia(
            data=data,
            mime_type=NATIVE_MIME_TYPE,
            extension=NATIVE_EXTENSION,
            chunk_count=len(self._chunks),
        )

    def release(self) -> None:
        """Kill the encoder if it is still running and drop pending tasks."""
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        self._stdout_task = None
        self._stderr_task = None
