"""Background media sources: still images, looping video decoders, gradient."""

from __future__ import annotations

import asyncio
import io
import logging
import subprocess
from typing import Protocol
import urllib.error
import urllib.request

from PIL import Image, ImageOps, UnidentifiedImageError

from domain.slides import (
    BACKGROUND_IMAGE_CODE,
    Asset,
    MediaKind,
    RenderValidationError,
)
from service.ffmpeg_tools import (
    FFMPEG_NOT_FOUND_CODE,
    RenderPipelineError,
    stderr_tail,
)

LOGGER = logging.getLogger("render_slide_video")

MEDIA_LOAD_CODE = "render_slide_video.media.load_failed"
MEDIA_DECODE_CODE = "render_slide_video.media.decode_failed"
URL_SCHEMES = ("http://", "https://")
DOWNLOAD_TIMEOUT_SECONDS = 30.0


class BackgroundSource(Protocol):
    """Frame provider for the compositor; None means draw the gradient."""

    async def next_frame(self) -> Image.Image | None:
        ...

    def stop(self) -> None:
        ...

    def release(self) -> None:
        ...


def is_url(source: str) -> bool:
    return source.lower().startswith(URL_SCHEMES)


def read_source_bytes(source: str) -> bytes:
    """Read a local path or an http(s) URL."""
    if is_url(source):
        try:
            with urllib.request.urlopen(
                source, timeout=DOWNLOAD_TIMEOUT_SECONDS
            ) as response:
                return response.read()
        except (urllib.error.URLError, OSError) as exc:
            raise RenderValidationError(
                BACKGROUND_IMAGE_CODE, f"failed to download background: {source}"
            ) from exc
    try:
        with open(source, "rb") as file_handle:
            return file_handle.read()
    except FileNotFoundError as exc:
        raise RenderValidationError(
            BACKGROUND_IMAGE_CODE, f"background image not found: {source}"
        ) from exc
    except OSError as exc:
        raise RenderValidationError(
            BACKGROUND_IMAGE_CODE, f"failed to read background image: {source}"
        ) from exc


def load_still_image(source: str, width: int, height: int) -> Image.Image:
    """Load a still image scaled and cropped to fill the canvas."""
    try:
        image = Image.open(io.BytesIO(read_source_bytes(source)))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise RenderValidationError(
            BACKGROUND_IMAGE_CODE, f"failed to decode background image: {source}"
        ) from exc
    image = ImageOps.exif_transpose(image).convert("RGB")
    return ImageOps.fit(image, (width, height), method=Image.Resampling.LANCZOS)


class GradientBackground:
    """No media; the compositor draws its gradient fallback."""

    async def next_frame(self) -> Image.Image | None:
        return None

    def stop(self) -> None:
        return None

    def release(self) -> None:
        return None


class StillBackground:
    """A single decoded image reused for every frame."""

    def __init__(self, image: Image.Image) -> None:
        self._image: Image.Image | None = image

    async def next_frame(self) -> Image.Image | None:
        return self._image

    def stop(self) -> None:
        return None

    def release(self) -> None:
        self._image = None


def build_decoder_command(
    ffmpeg_path: str, source: str, width: int, height: int, fps: int
) -> list[str]:
    """ffmpeg command decoding a looping source to canvas-sized rgb24 frames."""
    video_filter = (
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},fps={fps}"
    )
    return [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-stream_loop",
        "-1",
        "-i",
        source,
        "-an",
        "-vf",
        video_filter,
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "pipe:1",
    ]


class VideoBackground:
    """Looping background video decoded by an ffmpeg child process.

    Frames advance one per output frame, so playback is locked to the
    export timeline.
    """

    def __init__(
        self, source: str, width: int, height: int, fps: int, ffmpeg_path: str
    ) -> None:
        self.source = source
        self.width = width
        self.height = height
        self.fps = fps
        self._ffmpeg_path = ffmpeg_path
        self._frame_size = width * height * 3
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[bytes] | None = None
        self._last_frame: Image.Image | None = None
        self._primed = False

    async def start(self, timeout_seconds: float) -> None:
        """Spawn the decoder and wait for the first frame."""
        command = build_decoder_command(
            self._ffmpeg_path, self.source, self.width, self.height, self.fps
        )
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RenderPipelineError(
                FFMPEG_NOT_FOUND_CODE, f"ffmpeg could not be started: {exc}"
            ) from exc
        assert self._process.stderr is not None
        self._stderr_task = asyncio.ensure_future(self._process.stderr.read())

        try:
            await asyncio.wait_for(self._read_frame(), timeout=timeout_seconds)
        except asyncio.TimeoutError as exc:
            self.release()
            raise RenderPipelineError(
                MEDIA_LOAD_CODE,
                f"background video not ready after {timeout_seconds:.0f}s: "
                f"{self.source}",
            ) from exc
        except asyncio.IncompleteReadError as exc:
            stderr_text = await self._stderr_text()
            self.release()
            raise RenderPipelineError(
                MEDIA_LOAD_CODE,
                f"background video could not be decoded: {self.source}. "
                f"{stderr_text}",
            ) from exc
        self._primed = True
        LOGGER.info("render_slide_video.media.ready: decoding %s", self.source)

    async def _stderr_text(self) -> str:
        if self._stderr_task is None:
            return ""
        try:
            return stderr_tail(await asyncio.wait_for(self._stderr_task, timeout=1.0))
        except asyncio.TimeoutError:
            return ""

    async def _read_frame(self) -> Image.Image:
        assert self._process is not None and self._process.stdout is not None
        frame_bytes = await self._process.stdout.readexactly(self._frame_size)
        self._last_frame = Image.frombytes(
            "RGB", (self.width, self.height), frame_bytes
        )
        return self._last_frame

    async def next_frame(self) -> Image.Image | None:
        """Return the next decoded frame, or the last one once the decoder stopped."""
        if self._primed:
            self._primed = False
            return self._last_frame
        if self._process is None:
            return self._last_frame
        try:
            return await self._read_frame()
        except asyncio.IncompleteReadError:
            LOGGER.warning(
                "%s: background decoder ended early, holding last frame",
                MEDIA_DECODE_CODE,
            )
            self.stop()
            return self._last_frame

    def stop(self) -> None:
        """Stop playback; the last frame stays available."""
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def release(self) -> None:
        self.stop()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
        self._stderr_task = None
        self._last_frame = None


async def open_background(
    asset: Asset | None,
    width: int,
    height: int,
    fps: int,
    ffmpeg_path: str,
    timeout_seconds: float,
) -> BackgroundSource:
    """Open the background for a video export; video failures are fatal."""
    if asset is None:
        return GradientBackground()
    if asset.kind == MediaKind.IMAGE:
        image = await asyncio.get_running_loop().run_in_executor(
            None, load_still_image, asset.url, width, height
        )
        return StillBackground(image)
    background = VideoBackground(asset.url, width, height, fps, ffmpeg_path)
    await background.start(timeout_seconds)
    return background


def build_still_frame_command(
    ffmpeg_path: str, source: str, width: int, height: int
) -> list[str]:
    """ffmpeg command grabbing the first frame of a video as PNG on stdout."""
    return [
        ffmpeg_path,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        source,
        "-frames:v",
        "1",
        "-vf",
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height}",
        "-f",
        "image2pipe",
        "-vcodec",
        "png",
        "pipe:1",
    ]


def extract_video_still(
    ffmpeg_path: str, source: str, width: int, height: int, timeout_seconds: float
) -> Image.Image:
    """Decode the first frame of a background video."""
    try:
        result = subprocess.run(
            build_still_frame_command(ffmpeg_path, source, width, height),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout_seconds,
            check=False,
        )
    except FileNotFoundError as exc:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise RenderPipelineError(
            MEDIA_LOAD_CODE,
            f"background video not ready after {timeout_seconds:.0f}s: {source}",
        ) from exc
    if result.returncode != 0 or not result.stdout:
        raise RenderPipelineError(
            MEDIA_LOAD_CODE,
            f"background video could not be decoded: {source}. "
            f"{stderr_tail(result.stderr)}",
        )
    image = Image.open(io.BytesIO(result.stdout))
    image.load()
    return image.convert("RGB")


def load_still_background(
    asset: Asset | None,
    width: int,
    height: int,
    ffmpeg_path: str = "ffmpeg",
    timeout_seconds: float = 30.0,
) -> Image.Image | None:
    """Freshly loaded still background; a video asset contributes its first frame."""
    if asset is None:
        return None
    if asset.kind == MediaKind.IMAGE:
        return load_still_image(asset.url, width, height)
    return extract_video_still(ffmpeg_path, asset.url, width, height, timeout_seconds)
