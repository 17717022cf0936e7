#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy"
# ]
# ///
"""Render scripted text slides over a background into a video or a PNG carousel."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, replace
import json
import logging
import os
import sys
from typing import Any, Sequence, Tuple

from domain.slides import (
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    INVALID_PROJECT_CODE,
    MAX_GLOBAL_OVERLAY,
    Asset,
    MediaKind,
    Project,
    RenderValidationError,
    SlideStyle,
    parse_asset,
    parse_project,
)
from domain.text_import import parse_text_to_slides
from service.batch_export import BatchFormat, build_batch_items, export_batch
from service.capture_loop import VideoExporter, VideoExportResult
from service.compositor import FrameCompositor
from service.config import ExportConfig, load_export_config
from service.ffmpeg_tools import RenderPipelineError, validate_ffmpeg_capabilities
from service.fonts import FontBook
from service.media import load_still_background
from service.preview import render_preview
from service.progress import ProgressCallback, log_progress
from service.recorder import VIDEO_CODEC
from service.still_export import export_photos
from service.transcode import Transcoder

LOGGER = logging.getLogger("render_slide_video")

MODES = ("video", "photos", "batch", "preview")
DEFAULT_OUTPUTS = {
    "video": "slides.mp4",
    "photos": "slides.zip",
    "batch": "batch_export.zip",
    "preview": "preview.png",
}
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".bmp", ".gif")


@dataclass(frozen=True)
class RenderRequest:
    """Parsed command line."""

    mode: str
    project: Project
    assets: Tuple[Asset, ...]
    background: Asset | None
    output_file: str
    config: ExportConfig
    transcode: bool
    preview_time: float
    batch_formats: Tuple[BatchFormat, ...]
    caption: str | None = None


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def read_utf8_text_strict(file_path: str) -> str:
    """Read a UTF-8 file with strict decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"input file not found: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE,
            f"input file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc


def load_project_file(file_path: str) -> Tuple[Project, Tuple[Asset, ...]]:
    """Load a project JSON document and its optional asset list."""
    try:
        payload: Any = json.loads(read_utf8_text_strict(file_path))
    except json.JSONDecodeError as exc:
        raise RenderValidationError(
            INVALID_PROJECT_CODE,
            f"project file is not valid JSON (line {exc.lineno}): {file_path}",
        ) from exc
    project = parse_project(payload)
    raw_assets = payload.get("assets") or []
    if not isinstance(raw_assets, list):
        raise RenderValidationError(INVALID_PROJECT_CODE, "assets must be a list")
    return project, tuple(parse_asset(asset_payload) for asset_payload in raw_assets)


def infer_media_kind(source: str) -> MediaKind:
    path_part = source.split("?", 1)[0].lower()
    if path_part.endswith(IMAGE_EXTENSIONS):
        return MediaKind.IMAGE
    return MediaKind.VIDEO


def select_project_background(
    project: Project, assets: Sequence[Asset]
) -> Asset | None:
    """Background referenced by the first slide, if the asset list has it."""
    first_asset_id = project.slides[0].asset_id
    if not first_asset_id:
        return None
    for asset in assets:
        if asset.id == first_asset_id:
            return asset
    LOGGER.warning(
        "render_slide_video.input.asset_missing: asset %s not in project assets",
        first_asset_id,
    )
    return None


def parse_batch_formats(raw_value: str) -> Tuple[BatchFormat, ...]:
    formats: list[BatchFormat] = []
    for token in raw_value.split(","):
        if not token.strip():
            continue
        try:
            formats.append(BatchFormat(token.strip().lower()))
        except ValueError as exc:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, f"unknown batch format: {token.strip()!r}"
            ) from exc
    if not formats:
        raise RenderValidationError(INVALID_CONFIG_CODE, "batch-formats is empty")
    return tuple(formats)


def parse_args(argv: Sequence[str]) -> RenderRequest:
    """Parse CLI arguments into a RenderRequest."""
    parser = argparse.ArgumentParser(prog="render_slide_video.py", add_help=True)
    source_group = parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument("--project-file")
    source_group.add_argument("--input-text-file")
    parser.add_argument("--mode", choices=MODES, default="video")
    parser.add_argument("--output-file", default=None)
    parser.add_argument("--background", default=None, help="image/video path or URL")
    parser.add_argument(
        "--background-kind", choices=("video", "image"), default=None
    )
    parser.add_argument("--audio-track", default=None)
    parser.add_argument("--overlay", type=float, default=None)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--fast", action="store_true", help="disable realtime pacing")
    parser.add_argument("--no-transcode", action="store_true")
    parser.add_argument("--preview-time", type=float, default=0.0)
    parser.add_argument("--batch-formats", default="video,carousel")
    parser.add_argument("--caption", default=None)
    parsed = parser.parse_args(argv)

    if parsed.project_file:
        project, assets = load_project_file(parsed.project_file)
    else:
        slides = parse_text_to_slides(
            read_utf8_text_strict(parsed.input_text_file), "project", SlideStyle()
        )
        project, assets = Project(slides=slides), ()

    if parsed.overlay is not None and not 0 <= parsed.overlay <= MAX_GLOBAL_OVERLAY:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "overlay must be between 0 and 70"
        )
    if parsed.overlay is not None or parsed.audio_track:
        project = Project(
            slides=project.slides,
            global_overlay=(
                parsed.overlay if parsed.overlay is not None else project.global_overlay
            ),
            background_music_url=parsed.audio_track or project.background_music_url,
            id=project.id,
            name=project.name,
        )

    if parsed.background:
        kind = (
            MediaKind(parsed.background_kind)
            if parsed.background_kind
            else infer_media_kind(parsed.background)
        )
        background = Asset(url=parsed.background, kind=kind)
    else:
        if parsed.background_kind:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "background-kind requires background"
            )
        background = select_project_background(project, assets)

    if parsed.preview_time < 0:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "preview-time must be non-negative"
        )

    config = load_export_config(
        os.environ,
        fonts_dir=parsed.fonts_dir,
        realtime=False if parsed.fast else None,
    )
    return RenderRequest(
        mode=parsed.mode,
        project=project,
        assets=assets,
        background=background,
        output_file=parsed.output_file or DEFAULT_OUTPUTS[parsed.mode],
        config=config,
        transcode=not parsed.no_transcode,
        preview_time=parsed.preview_time,
        batch_formats=parse_batch_formats(parsed.batch_formats),
        caption=parsed.caption,
    )


def write_output(file_path: str, data: bytes) -> None:
    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)
    with open(file_path, "wb") as file_handle:
        file_handle.write(data)
    LOGGER.info("render_slide_video.output: wrote %s (%d bytes)", file_path, len(data))


def with_extension(file_path: str, extension: str) -> str:
    """Swap the output extension to match the effective container."""
    return f"{os.path.splitext(file_path)[0]}.{extension}"


def build_compositor(config: ExportConfig) -> FrameCompositor:
    return FrameCompositor(
        config.width,
        config.height,
        FontBook(config.fonts_dir),
        config.default_overlay_percent,
    )


def validate_video_capabilities(config: ExportConfig) -> None:
    """Audio encoder support is checked per export; its absence records silently."""
    validate_ffmpeg_capabilities(config.ffmpeg_path, (VIDEO_CODEC,), ("yuv420p",))


async def export_video_file(
    config: ExportConfig,
    project: Project,
    background: Asset | None,
    on_progress: ProgressCallback,
    transcode: bool,
) -> VideoExportResult:
    compositor = build_compositor(config)
    if not transcode:
        return await VideoExporter(config, compositor).export(
            project, background, on_progress
        )
    async with Transcoder(
        config.ffmpeg_path,
        config.transcoder_load_timeout_seconds,
        config.transcode_timeout_seconds,
    ) as transcoder:
        return await VideoExporter(config, compositor, transcoder).export(
            project, background, on_progress
        )


def export_photo_archive(
    config: ExportConfig,
    project: Project,
    background: Asset | None,
    on_progress: ProgressCallback,
) -> bytes:
    def load_background(asset: Asset | None):
        return load_still_background(
            asset,
            config.width,
            config.height,
            config.ffmpeg_path,
            config.media_load_timeout_seconds,
        )

    return export_photos(
        project, background, build_compositor(config), load_background, on_progress
    )


def run_request(request: RenderRequest) -> None:
    """Dispatch the parsed request to its export mode."""
    config = request.config
    if request.mode == "video":
        validate_video_capabilities(config)
        result = asyncio.run(
            export_video_file(
                config,
                request.project,
                request.background,
                log_progress,
                request.transcode,
            )
        )
        if result.fallback:
            LOGGER.warning(
                "render_slide_video.transcode.fallback: saved as %s (%s)",
                result.mime_type,
                result.reason,
            )
        write_output(with_extension(request.output_file, result.extension), result.data)
        return

    if request.mode == "photos":
        write_output(
            request.output_file,
            export_photo_archive(
                config, request.project, request.background, log_progress
            ),
        )
        return

    if request.mode == "preview":
        png_bytes = render_preview(
            request.project,
            request.background,
            build_compositor(config),
            lambda asset: load_still_background(
                asset,
                config.width,
                config.height,
                config.ffmpeg_path,
                config.media_load_timeout_seconds,
            ),
            request.preview_time,
            config.transition_seconds,
            config.fps,
        )
        write_output(request.output_file, png_bytes)
        return

    items = build_batch_items(
        request.project, request.assets, request.batch_formats, request.caption
    )
    if request.background is not None:
        items = tuple(replace(item, background=request.background) for item in items)

    async def video_export(
        project: Project, background: Asset | None, on_progress: ProgressCallback
    ) -> VideoExportResult:
        validate_video_capabilities(config)
        return await export_video_file(
            config, project, background, on_progress, request.transcode
        )

    def photo_export(
        project: Project, background: Asset | None, on_progress: ProgressCallback
    ) -> bytes:
        return export_photo_archive(config, project, background, on_progress)

    result = asyncio.run(export_batch(items, video_export, photo_export, log_progress))
    for outcome in result.outcomes:
        if not outcome.succeeded:
            LOGGER.warning(
                "render_slide_video.batch.item_failed: %s: %s",
                outcome.folder_name,
                outcome.error,
            )
    write_output(request.output_file, result.data)


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        run_request(parse_args(sys.argv[1:]))
        return 0
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_slide_video.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
