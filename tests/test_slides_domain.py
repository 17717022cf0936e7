"""Unit tests for slide parsing, validation and style resolution."""

from __future__ import annotations

import pytest

from domain.slides import (
    EMPTY_PROJECT_CODE,
    INVALID_COLOR_CODE,
    INVALID_PROJECT_CODE,
    INVALID_SLIDE_CODE,
    INVALID_STYLE_CODE,
    MediaKind,
    RenderValidationError,
    SlideStyle,
    TextBlock,
    TextStyle,
    TransitionKind,
    parse_asset,
    parse_color_to_rgba,
    parse_project,
    parse_slide,
    slide_to_payload,
    strip_leading_tag,
)
from domain.styles import resolve_text_style


def build_project_payload() -> dict:
    """Return a two-slide project payload with camelCase keys."""
    return {
        "id": "p1",
        "name": "Demo",
        "globalOverlay": 40,
        "backgroundMusicUrl": "music.mp3",
        "slides": [
            {
                "id": "s1",
                "title": "Hello",
                "body": "World",
                "durationSec": 2,
                "transition": "fade",
                "assetId": "a1",
                "language": "en",
            },
            {
                "id": "s2",
                "title": "",
                "durationSec": 3,
                "textBlocks": [
                    {"title": "A", "delay": 0},
                    {
                        "title": "B",
                        "delay": 2,
                        "duration": 1,
                        "position": {"x": 10, "y": 10, "width": 80, "height": 20},
                    },
                ],
                "style": {
                    "text": {"fontSize": 48, "alignment": "left"},
                    "plate": {"enabled": True, "opacity": 0.5},
                    "overlay": 10,
                },
            },
        ],
    }


def test_parse_project_reads_camel_case_fields() -> None:
    """Parse project, slide, block and style fields."""
    project = parse_project(build_project_payload())

    assert project.id == "p1"
    assert project.global_overlay == 40
    assert project.background_music_url == "music.mp3"
    assert project.total_duration_seconds == 5

    first, second = project.slides
    assert first.transition == TransitionKind.FADE
    assert first.asset_id == "a1"
    assert first.language == "en"
    assert first.project_id == "p1"
    assert second.index == 1
    assert second.transition == TransitionKind.NONE
    assert len(second.text_blocks) == 2
    assert second.text_blocks[1].position is not None
    assert second.text_blocks[1].position.width == 80
    assert second.style.text.font_size == 48
    assert second.style.plate.enabled is True
    assert second.style.overlay == 10


def test_parse_project_rejects_empty_slides() -> None:
    """Reject a project without slides."""
    with pytest.raises(RenderValidationError) as excinfo:
        parse_project({"slides": []})
    assert excinfo.value.code == EMPTY_PROJECT_CODE


def test_parse_project_rejects_overlay_above_limit() -> None:
    """Reject a global overlay above 70 percent."""
    payload = build_project_payload()
    payload["globalOverlay"] = 80
    with pytest.raises(RenderValidationError) as excinfo:
        parse_project(payload)
    assert excinfo.value.code == INVALID_PROJECT_CODE


def test_parse_slide_requires_positive_duration() -> None:
    """Reject missing and non-positive slide durations."""
    with pytest.raises(RenderValidationError) as excinfo:
        parse_slide({"title": "x"}, 0, "p")
    assert excinfo.value.code == INVALID_SLIDE_CODE

    with pytest.raises(RenderValidationError) as excinfo:
        parse_slide({"title": "x", "durationSec": 0}, 0, "p")
    assert excinfo.value.code == INVALID_SLIDE_CODE


def test_parse_slide_rejects_unknown_transition() -> None:
    """Reject a transition outside the supported set."""
    with pytest.raises(RenderValidationError) as excinfo:
        parse_slide({"title": "x", "durationSec": 1, "transition": "spin"}, 0, "p")
    assert excinfo.value.code == INVALID_SLIDE_CODE


def test_parse_asset_defaults_to_video() -> None:
    """Parse asset kind, defaulting to video."""
    assert parse_asset({"url": "clip.mp4"}).kind == MediaKind.VIDEO
    image = parse_asset({"url": "bg.png", "type": "image", "id": "a1"})
    assert image.kind == MediaKind.IMAGE
    assert image.id == "a1"


def test_parse_color_to_rgba_accepts_css_forms() -> None:
    """Parse hex, rgba() and named colors."""
    assert parse_color_to_rgba("#ff0000") == (255, 0, 0, 255)
    assert parse_color_to_rgba("rgba(0, 0, 255, 0)") == (0, 0, 255, 0)
    assert parse_color_to_rgba("white") == (255, 255, 255, 255)
    assert parse_color_to_rgba("transparent") == (0, 0, 0, 0)


def test_parse_color_to_rgba_rejects_garbage() -> None:
    """Reject unparseable colors with a coded error."""
    with pytest.raises(RenderValidationError) as excinfo:
        parse_color_to_rgba("not-a-color")
    assert excinfo.value.code == INVALID_COLOR_CODE


def test_strip_leading_tag_keeps_color_markers() -> None:
    """Strip a leading label but not a leading color marker."""
    assert strip_leading_tag("[Hook] Hello") == "Hello"
    assert strip_leading_tag("[#ff0000]red[] text") == "[#ff0000]red[] text"
    assert strip_leading_tag("Plain [tag]") == "Plain [tag]"


def test_text_block_visibility_window() -> None:
    """Blocks are visible from delay, until delay + duration when duration > 0."""
    forever = TextBlock(title="A")
    timed = TextBlock(title="B", delay=2, duration=1)

    assert forever.is_visible(0.0)
    assert forever.is_visible(100.0)
    assert not timed.is_visible(1.0)
    assert timed.is_visible(2.0)
    assert timed.is_visible(2.5)
    assert not timed.is_visible(3.0)


def test_text_block_rejects_negative_delay() -> None:
    """Reject negative delays."""
    with pytest.raises(RenderValidationError):
        TextBlock(title="A", delay=-1)


def test_effective_blocks_falls_back_to_title_and_body() -> None:
    """A slide without blocks renders its title and body as one block."""
    slide = parse_slide({"title": "T", "body": "B", "durationSec": 1}, 0, "p")
    blocks = slide.effective_blocks()
    assert len(blocks) == 1
    assert blocks[0].title == "T"
    assert blocks[0].body == "B"


def test_resolve_text_style_applies_body_fallbacks() -> None:
    """Body size, weight and color fall back to derived title values."""
    resolved = resolve_text_style(
        SlideStyle(text=TextStyle(font_size=64, font_weight=700, color="#112233"))
    )

    assert resolved.body.font_size == 32
    assert resolved.body.font_weight == 500
    assert resolved.body.font_family == resolved.title.font_family
    assert resolved.body.color_rgba == (0x11, 0x22, 0x33, 255)
    assert resolved.title.line_height_px == pytest.approx(64 * 1.2)
    assert resolved.body.line_height_px == pytest.approx(32 * 1.2 * 1.2)


def test_resolve_text_style_shadow_defaults_only_when_unset() -> None:
    """Unset shadow values use defaults; an explicit zero stays zero."""
    defaults = resolve_text_style(SlideStyle())
    assert defaults.shadow_intensity == 10
    assert defaults.shadow_radius == 20

    disabled = resolve_text_style(SlideStyle(text=TextStyle(shadow_intensity=0)))
    assert disabled.shadow_intensity == 0


def test_resolve_text_style_clamps_weights() -> None:
    """Body weight never drops below 100."""
    resolved = resolve_text_style(SlideStyle(text=TextStyle(font_weight=200)))
    assert resolved.body.font_weight == 100


def test_slide_style_rejects_margins_without_content_area() -> None:
    """Reject safe margins that cover the whole canvas."""
    with pytest.raises(RenderValidationError) as excinfo:
        SlideStyle(safe_margin_top=60, safe_margin_bottom=40)
    assert excinfo.value.code == INVALID_STYLE_CODE


def test_slide_to_payload_parses_back() -> None:
    """The batch slides.json payload parses back to an equal slide."""
    slide = parse_project(build_project_payload()).slides[1]
    payload = slide_to_payload(slide)

    assert payload["durationSec"] == 3
    assert "body" not in payload
    assert parse_slide(payload, 1, "p1") == slide
