"""Per-frame compositing of background, dim overlay, text and transitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from PIL import Image, ImageOps

from domain.slides import Slide, TransitionKind
from domain.styles import ResolvedTextStyle, resolve_text_style
from service.fonts import FontBook
from service.text_drawing import render_text_layer
from service.text_layout import layout_slide_text, visible_block_indices

GRADIENT_STOPS = (
    (0.0, (0x58, 0x1C, 0x87)),
    (0.5, (0x1E, 0x3A, 0x8A)),
    (1.0, (0x15, 0x5E, 0x75)),
)
FLASH_WINDOW = 0.3
FLASH_PEAK_BOOST = 3.0
SUNLIGHT_WINDOW = 0.2
SUNLIGHT_PEAK_BOOST = 5.0
SUNLIGHT_RAMP = 1.25
GLOW_CONTRAST_BOOST = 0.2
CONTRAST_PIVOT = 127.5


@dataclass(frozen=True)
class TransitionEffect:
    """Whole-frame adjustments for a slide entry transition."""

    opacity: float = 1.0
    brightness: float = 1.0
    contrast: float = 1.0
    offset_x: float = 0.0

    @property
    def is_identity(self) -> bool:
        return (
            self.opacity == 1.0
            and self.brightness == 1.0
            and self.contrast == 1.0
            and self.offset_x == 0.0
        )


def compute_transition_effect(
    kind: TransitionKind, progress: float, canvas_width: int
) -> TransitionEffect:
    """Return the transition adjustments at progress p in [0, 1]."""
    progress = max(0.0, min(1.0, progress))
    if progress >= 1.0:
        return TransitionEffect()

    if kind == TransitionKind.FADE:
        return TransitionEffect(opacity=progress)
    if kind == TransitionKind.FLASH:
        if progress < FLASH_WINDOW:
            return TransitionEffect(
                opacity=progress / FLASH_WINDOW,
                brightness=1
                + (FLASH_PEAK_BOOST - progress / FLASH_WINDOW * FLASH_PEAK_BOOST),
            )
        return TransitionEffect()
    if kind == TransitionKind.GLOW:
        return TransitionEffect(
            opacity=progress,
            brightness=1 + (1 - progress),
            contrast=1 + (GLOW_CONTRAST_BOOST - progress * GLOW_CONTRAST_BOOST),
        )
    if kind == TransitionKind.SUNLIGHT:
        if progress < SUNLIGHT_WINDOW:
            return TransitionEffect(
                opacity=progress / SUNLIGHT_WINDOW,
                brightness=1
                + SUNLIGHT_PEAK_BOOST
                - progress / SUNLIGHT_WINDOW * SUNLIGHT_PEAK_BOOST,
            )
        return TransitionEffect(
            opacity=min(
                1.0, SUNLIGHT_WINDOW + (progress - SUNLIGHT_WINDOW) * SUNLIGHT_RAMP
            )
        )
    if kind == TransitionKind.SLIDE_LEFT:
        return TransitionEffect(offset_x=canvas_width * (1 - progress))
    if kind == TransitionKind.SLIDE_RIGHT:
        return TransitionEffect(offset_x=-canvas_width * (1 - progress))
    return TransitionEffect()


def apply_transition(frame: Image.Image, effect: TransitionEffect) -> Image.Image:
    """Apply brightness, contrast, opacity over black, then a horizontal shift."""
    if effect.is_identity:
        return frame

    pixels = np.asarray(frame, dtype=np.float32)
    if effect.brightness != 1.0:
        pixels = np.clip(pixels * effect.brightness, 0.0, 255.0)
    if effect.contrast != 1.0:
        pixels = np.clip(
            (pixels - CONTRAST_PIVOT) * effect.contrast + CONTRAST_PIVOT, 0.0, 255.0
        )
    if effect.opacity != 1.0:
        pixels = pixels * effect.opacity
    adjusted = Image.fromarray(np.rint(pixels).astype(np.uint8), "RGB")

    if effect.offset_x == 0.0:
        return adjusted
    shifted = Image.new("RGB", frame.size, (0, 0, 0))
    shifted.paste(adjusted, (int(round(effect.offset_x)), 0))
    return shifted


def build_gradient_background(width: int, height: int) -> Image.Image:
    """Three-stop diagonal gradient from the top-left to the bottom-right corner."""
    y_grid, x_grid = np.mgrid[0:height, 0:width].astype(np.float32)
    diagonal = float(width * width + height * height)
    ratio = ((x_grid + 0.5) * width + (y_grid + 0.5) * height) / diagonal
    positions = [stop for stop, _ in GRADIENT_STOPS]
    channels = [
        np.interp(ratio, positions, [color[channel] for _, color in GRADIENT_STOPS])
        for channel in range(3)
    ]
    pixels = np.stack(channels, axis=-1)
    return Image.fromarray(np.rint(pixels).astype(np.uint8), "RGB")


def resolve_overlay_percent(
    slide: Slide, overlay_override: float | None, default_overlay: float
) -> float:
    """Per-slide overlay, else the project value, else the default."""
    if slide.style.overlay is not None:
        return slide.style.overlay
    if overlay_override is not None:
        return overlay_override
    return default_overlay


class FrameCompositor:
    """Draws complete frames for slides onto a caller-owned surface."""

    def __init__(
        self,
        width: int,
        height: int,
        fonts: FontBook,
        default_overlay_percent: float = 30.0,
    ) -> None:
        self.width = width
        self.height = height
        self._fonts = fonts
        self._default_overlay = default_overlay_percent
        self._gradient: Image.Image | None = None
        self._styles: dict[Tuple[str, int], ResolvedTextStyle] = {}
        self._text_layers: dict[Tuple[str, int, Tuple[int, ...]], Image.Image] = {}

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def new_surface(self) -> Image.Image:
        return Image.new("RGB", self.size, (0, 0, 0))

    def resolved_style(self, slide: Slide) -> ResolvedTextStyle:
        cache_key = (slide.id, slide.index)
        resolved = self._styles.get(cache_key)
        if resolved is None:
            resolved = resolve_text_style(slide.style)
            self._styles[cache_key] = resolved
        return resolved

    def text_layer(self, slide: Slide, slide_time: float | None) -> Image.Image:
        """Text layer for the blocks visible at slide_time, cached per visible set."""
        visible = visible_block_indices(slide, slide_time)
        cache_key = (slide.id, slide.index, visible)
        layer = self._text_layers.get(cache_key)
        if layer is None:
            style = self.resolved_style(slide)
            layout = layout_slide_text(
                slide, style, self.width, self.height, self._fonts, slide_time
            )
            layer = render_text_layer(layout, style, self.size, self._fonts)
            self._text_layers[cache_key] = layer
        return layer

    def background_image(self, background: Image.Image | None) -> Image.Image:
        if background is None:
            if self._gradient is None:
                self._gradient = build_gradient_background(self.width, self.height)
            return self._gradient
        if background.size != self.size:
            background = ImageOps.fit(
                background, self.size, method=Image.Resampling.LANCZOS
            )
        if background.mode != "RGB":
            background = background.convert("RGB")
        return background

    def compose(
        self,
        slide: Slide,
        background: Image.Image | None,
        transition_progress: float,
        overlay_override: float | None = None,
        slide_time: float | None = None,
    ) -> Image.Image:
        """Return a new RGB frame for the slide."""
        frame = self.background_image(background).convert("RGBA")
        overlay_percent = resolve_overlay_percent(
            slide, overlay_override, self._default_overlay
        )
        if overlay_percent > 0:
            dim = Image.new(
                "RGBA", self.size, (0, 0, 0, int(round(overlay_percent / 100 * 255)))
            )
            frame.alpha_composite(dim)
        frame.alpha_composite(self.text_layer(slide, slide_time))
        effect = compute_transition_effect(
            slide.transition, transition_progress, self.width
        )
        return apply_transition(frame.convert("RGB"), effect)

    def render(
        self,
        surface: Image.Image,
        slide: Slide,
        background: Image.Image | None,
        transition_progress: float,
        overlay_override: float | None = None,
        slide_time: float | None = None,
    ) -> None:
        """Draw one complete frame into surface; same inputs give the same pixels."""
        surface.paste(
            self.compose(
                slide, background, transition_progress, overlay_override, slide_time
            )
        )

    def release(self) -> None:
        """Drop cached layers and styles."""
        self._text_layers.clear()
        self._styles.clear()
        self._gradient = None
