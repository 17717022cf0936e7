"""Carousel export: one PNG per slide, zipped."""

from __future__ import annotations

import io
import logging
from typing import Callable
import zipfile

from PIL import Image

from domain.slides import Asset, Project
from service.compositor import FrameCompositor
from service.progress import ProgressCallback, ProgressReporter

LOGGER = logging.getLogger("render_slide_video")

ZIP_COMPRESSION_LEVEL = 6

StillLoader = Callable[[Asset | None], Image.Image | None]


def slide_file_name(position: int, extension: str = "png") -> str:
    """File name for the slide at a zero-based position (slide_001.png, ...)."""
    return f"slide_{position + 1:03d}.{extension}"


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def render_still(
    compositor: FrameCompositor,
    project: Project,
    slide_position: int,
    background: Image.Image | None,
) -> bytes:
    """Render one slide fully transitioned in, with every text block shown."""
    surface = compositor.new_surface()
    compositor.render(
        surface,
        project.slides[slide_position],
        background,
        1.0,
        project.global_overlay,
    )
    return encode_png(surface)


def export_photos(
    project: Project,
    background_asset: Asset | None,
    compositor: FrameCompositor,
    background_loader: StillLoader,
    on_progress: ProgressCallback | None = None,
) -> bytes:
    """Render every slide to PNG and return a ZIP archive of the stills."""
    progress = ProgressReporter(on_progress)
    progress.report(5, "Preparing slides...")
    try:
        progress.report(10, "Loading background...")
        background = background_loader(background_asset)
        progress.report(20, "Rendering slides...")

        slide_count = len(project.slides)
        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=ZIP_COMPRESSION_LEVEL,
        ) as archive:
            for position in range(slide_count):
                progress.report(
                    20 + position / slide_count * 70,
                    f"Rendering slide {position + 1}/{slide_count}...",
                )
                archive.writestr(
                    slide_file_name(position),
                    render_still(compositor, project, position, background),
                )
            progress.report(90, "Creating ZIP archive...")
    finally:
        compositor.release()

    progress.report(100, "Complete!")
    LOGGER.info("render_slide_video.photos.done: %d slides", slide_count)
    return buffer.getvalue()
