"""Rasterize a slide text layout: plate, shadow, glow, stroke and glyphs."""

from __future__ import annotations

from typing import Sequence, Tuple

from PIL import Image, ImageDraw, ImageFilter

from domain.styles import ResolvedPlate, ResolvedTextStyle
from service.fonts import FontBook
from service.text_layout import (
    AnchorLayout,
    PlacedLine,
    SlideTextLayout,
    apply_text_transform,
)

PLATE_HALO_LAYERS = 15
PLATE_HALO_ALPHA = 0.3
SHADOW_LAYERS = 8
SHADOW_GLOBAL_ALPHA = 0.3
GLOW_BLUR_RATIO = 0.15
MIN_GLOW_BLUR = 2.0


def _rect_shape(
    draw: ImageDraw.ImageDraw,
    rect: Tuple[float, float, float, float],
    radius: float,
    fill: Tuple[int, int, int, int],
) -> None:
    left, top, width, height = rect
    box = (left, top, left + width, top + height)
    radius = min(radius, width / 2, height / 2)
    if radius > 0:
        draw.rounded_rectangle(box, radius=radius, fill=fill)
    else:
        draw.rectangle(box, fill=fill)


def draw_plate(
    layer: Image.Image,
    rect: Tuple[float, float, float, float],
    plate: ResolvedPlate,
) -> None:
    """Draw the plate and its expanding translucent halo rings."""
    red, green, blue = plate.color_rgb
    shape = Image.new("RGBA", layer.size, (0, 0, 0, 0))
    _rect_shape(
        ImageDraw.Draw(shape),
        rect,
        plate.border_radius,
        (red, green, blue, int(round(plate.opacity * 255))),
    )
    layer.alpha_composite(shape)

    left, top, width, height = rect
    for layer_index in range(PLATE_HALO_LAYERS):
        offset = layer_index / PLATE_HALO_LAYERS * plate.blur_size
        alpha = plate.opacity * (1 - layer_index / PLATE_HALO_LAYERS) * PLATE_HALO_ALPHA
        ring = Image.new("RGBA", layer.size, (0, 0, 0, 0))
        _rect_shape(
            ImageDraw.Draw(ring),
            (left - offset, top - offset, width + offset * 2, height + offset * 2),
            plate.border_radius + offset if plate.border_radius > 0 else 0.0,
            (red, green, blue, int(round(alpha * 255))),
        )
        layer.alpha_composite(ring)


def draw_lines(
    draw: ImageDraw.ImageDraw,
    lines: Sequence[PlacedLine],
    style: ResolvedTextStyle,
    fonts: FontBook,
    fill_override: int | Tuple[int, int, int, int] | None = None,
    stroke_width: int = 0,
    stroke_fill: Tuple[int, int, int, int] | int | None = None,
) -> None:
    """Draw placed lines segment by segment, applying the text transform."""
    for line in lines:
        font = fonts.font(line.run)
        spacing_px = style.letter_spacing * line.run.font_size
        cursor_x = line.x
        for segment in line.segments:
            display_text = apply_text_transform(segment.text, style.text_transform)
            fill = segment.color_rgba if fill_override is None else fill_override
            if spacing_px == 0:
                draw.text(
                    (cursor_x, line.center_y),
                    display_text,
                    font=font,
                    fill=fill,
                    anchor="lm",
                    stroke_width=stroke_width,
                    stroke_fill=stroke_fill,
                )
                cursor_x += font.getlength(display_text)
                continue
            for character in display_text:
                draw.text(
                    (cursor_x, line.center_y),
                    character,
                    font=font,
                    fill=fill,
                    anchor="lm",
                    stroke_width=stroke_width,
                    stroke_fill=stroke_fill,
                )
                cursor_x += font.getlength(character) + spacing_px


def render_glyph_mask(
    size: Tuple[int, int],
    lines: Sequence[PlacedLine],
    style: ResolvedTextStyle,
    fonts: FontBook,
) -> Image.Image:
    mask = Image.new("L", size, 0)
    draw_lines(ImageDraw.Draw(mask), lines, style, fonts, fill_override=255)
    return mask


def _tinted(mask: Image.Image, rgb: Tuple[int, int, int], opacity: float) -> Image.Image:
    scaled = mask.point(lambda value: int(round(value * opacity)))
    tinted = Image.new("RGBA", mask.size, (*rgb, 0))
    tinted.putalpha(scaled)
    return tinted


def draw_shadow(
    layer: Image.Image, mask: Image.Image, intensity: float, radius: float
) -> None:
    """Stack blurred, offset copies of the glyph mask with fading opacity."""
    if intensity <= 0 or radius <= 0:
        return
    layer_blur = radius * 3 / SHADOW_LAYERS
    for layer_index in range(SHADOW_LAYERS):
        layer_opacity = (
            (intensity / 10) * (1 - layer_index / SHADOW_LAYERS) / SHADOW_LAYERS
        )
        layer_offset = int(round(radius * 0.5 * (1 + layer_index / SHADOW_LAYERS)))
        shifted = Image.new("L", mask.size, 0)
        shifted.paste(mask, (layer_offset, layer_offset))
        blurred = shifted.filter(ImageFilter.GaussianBlur(layer_blur / 2))
        layer.alpha_composite(
            _tinted(blurred, (0, 0, 0), layer_opacity * SHADOW_GLOBAL_ALPHA)
        )


def draw_glow(
    layer: Image.Image,
    mask: Image.Image,
    glow_rgba: Tuple[int, int, int, int],
    font_size: float,
) -> None:
    blur_radius = max(MIN_GLOW_BLUR, font_size * GLOW_BLUR_RATIO)
    blurred = mask.filter(ImageFilter.GaussianBlur(blur_radius))
    layer.alpha_composite(_tinted(blurred, glow_rgba[:3], glow_rgba[3] / 255))


def draw_anchor(
    layer: Image.Image,
    anchor: AnchorLayout,
    style: ResolvedTextStyle,
    fonts: FontBook,
) -> None:
    """Draw one anchor's plate (or shadow and glow), then its glyphs."""
    if anchor.plate_rect is not None:
        draw_plate(layer, anchor.plate_rect, style.plate)

    stroke_width = 0
    stroke_fill = None
    if not style.plate.enabled:
        mask = render_glyph_mask(layer.size, anchor.lines, style, fonts)
        draw_shadow(layer, mask, style.shadow_intensity, style.shadow_radius)
        if style.glow_rgba is not None:
            draw_glow(layer, mask, style.glow_rgba, style.title.font_size)
        if style.stroke_rgba is not None:
            stroke_width = style.stroke_width
            stroke_fill = style.stroke_rgba

    glyphs = Image.new("RGBA", layer.size, (0, 0, 0, 0))
    draw_lines(
        ImageDraw.Draw(glyphs),
        anchor.lines,
        style,
        fonts,
        stroke_width=stroke_width,
        stroke_fill=stroke_fill,
    )
    layer.alpha_composite(glyphs)


def render_text_layer(
    layout: SlideTextLayout,
    style: ResolvedTextStyle,
    size: Tuple[int, int],
    fonts: FontBook,
) -> Image.Image:
    """Render every anchor of a layout onto a transparent RGBA layer."""
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    for anchor in layout.anchors:
        draw_anchor(layer, anchor, style, fonts)
    return layer
