"""Single-frame preview of the timeline at a given time."""

from __future__ import annotations

import logging

from domain.slides import Asset, Project, RenderValidationError
from service.compositor import FrameCompositor
from service.ffmpeg_tools import RenderPipelineError
from service.still_export import StillLoader, encode_png
from service.timeline import SlideTimeline

LOGGER = logging.getLogger("render_slide_video")

PREVIEW_DEGRADED_CODE = "render_slide_video.media.preview_degraded"


def render_preview(
    project: Project,
    background_asset: Asset | None,
    compositor: FrameCompositor,
    background_loader: StillLoader,
    at_seconds: float,
    transition_seconds: float,
    fps: int,
) -> bytes:
    """Render the frame shown at at_seconds as PNG.

    A background that fails to load is replaced by the gradient.
    """
    timeline = SlideTimeline.from_slides(project.slides, fps, transition_seconds)
    slide_index, slide_elapsed = timeline.select_time(max(0.0, at_seconds))
    try:
        background = background_loader(background_asset)
    except (RenderValidationError, RenderPipelineError) as exc:
        LOGGER.warning(
            "%s: %s, drawing gradient", PREVIEW_DEGRADED_CODE, str(exc).strip()
        )
        background = None

    surface = compositor.new_surface()
    try:
        compositor.render(
            surface,
            project.slides[slide_index],
            background,
            timeline.transition_progress(slide_elapsed),
            project.global_overlay,
            slide_elapsed,
        )
    finally:
        compositor.release()
    return encode_png(surface)
