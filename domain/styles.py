"""Resolved slide styles with every fallback applied once."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from domain.slides import (
    MAX_FONT_WEIGHT,
    MIN_FONT_WEIGHT,
    BoxPosition,
    PlateStyle,
    SlideStyle,
    TextAlignment,
    TextTransform,
    parse_color_to_rgba,
)

BODY_FONT_SIZE_RATIO = 0.5
BODY_WEIGHT_OFFSET = 200
BODY_LINE_HEIGHT_RATIO = 1.2
DEFAULT_SHADOW_INTENSITY = 10.0
DEFAULT_SHADOW_RADIUS = 20.0
DEFAULT_PLATE_BLUR_SIZE = 30.0
DEFAULT_STROKE_WIDTH = 2.0


@dataclass(frozen=True)
class ResolvedRunStyle:
    """Font and color for one text role (title or body)."""

    font_family: str
    font_size: float
    font_weight: int
    color_rgba: Tuple[int, int, int, int]
    line_height_px: float


@dataclass(frozen=True)
class ResolvedPlate:
    """Plate settings with parsed colors."""

    enabled: bool
    padding: float
    border_radius: float
    opacity: float
    color_rgb: Tuple[int, int, int]
    blur_size: float


@dataclass(frozen=True)
class ResolvedTextStyle:
    """Everything the layout engine and the text drawer need for one slide."""

    title: ResolvedRunStyle
    body: ResolvedRunStyle
    letter_spacing: float
    alignment: TextAlignment
    text_transform: TextTransform
    stroke_rgba: Tuple[int, int, int, int] | None
    stroke_width: int
    glow_rgba: Tuple[int, int, int, int] | None
    shadow_intensity: float
    shadow_radius: float
    position: BoxPosition | None
    plate: ResolvedPlate
    safe_margin_top: float
    safe_margin_bottom: float


def clamp_font_weight(weight: int) -> int:
    """Clamp a CSS font weight into the 100-900 range."""
    return max(MIN_FONT_WEIGHT, min(MAX_FONT_WEIGHT, int(weight)))


def resolve_plate(plate: PlateStyle) -> ResolvedPlate:
    """Resolve plate colors and the default halo size."""
    red, green, blue, _ = parse_color_to_rgba(plate.background_color)
    return ResolvedPlate(
        enabled=plate.enabled,
        padding=plate.padding,
        border_radius=plate.border_radius,
        opacity=plate.opacity,
        color_rgb=(red, green, blue),
        blur_size=(
            plate.blur_size if plate.blur_size is not None else DEFAULT_PLATE_BLUR_SIZE
        ),
    )


def resolve_text_style(style: SlideStyle) -> ResolvedTextStyle:
    """Resolve body fallbacks, colors and shadow defaults for a slide style."""
    text = style.text
    title_color = parse_color_to_rgba(text.color)
    title = ResolvedRunStyle(
        font_family=text.font_family,
        font_size=text.font_size,
        font_weight=clamp_font_weight(text.font_weight),
        color_rgba=title_color,
        line_height_px=text.font_size * text.line_height,
    )

    body_size = (
        text.body_font_size
        if text.body_font_size is not None
        else text.font_size * BODY_FONT_SIZE_RATIO
    )
    body_weight = (
        text.body_font_weight
        if text.body_font_weight is not None
        else text.font_weight - BODY_WEIGHT_OFFSET
    )
    body = ResolvedRunStyle(
        font_family=text.body_font_family or text.font_family,
        font_size=body_size,
        font_weight=clamp_font_weight(body_weight),
        color_rgba=(
            parse_color_to_rgba(text.body_color) if text.body_color else title_color
        ),
        line_height_px=body_size * text.line_height * BODY_LINE_HEIGHT_RATIO,
    )

    stroke_rgba = parse_color_to_rgba(text.stroke) if text.stroke else None
    stroke_width = 0
    if stroke_rgba is not None:
        stroke_width = max(
            1,
            int(round(text.stroke_width if text.stroke_width else DEFAULT_STROKE_WIDTH)),
        )

    return ResolvedTextStyle(
        title=title,
        body=body,
        letter_spacing=text.letter_spacing,
        alignment=text.alignment,
        text_transform=text.text_transform,
        stroke_rgba=stroke_rgba,
        stroke_width=stroke_width,
        glow_rgba=parse_color_to_rgba(text.glow) if text.glow else None,
        shadow_intensity=(
            text.shadow_intensity
            if text.shadow_intensity is not None
            else DEFAULT_SHADOW_INTENSITY
        ),
        shadow_radius=(
            text.shadow_radius
            if text.shadow_radius is not None
            else DEFAULT_SHADOW_RADIUS
        ),
        position=text.position,
        plate=resolve_plate(style.plate),
        safe_margin_top=style.safe_margin_top,
        safe_margin_bottom=style.safe_margin_bottom,
    )
