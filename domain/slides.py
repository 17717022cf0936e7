"""Domain types and parsing for render_slide_video."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
import re
from typing import Any, Mapping, Sequence, Tuple

from PIL import ImageColor

INVALID_COLOR_CODE = "render_slide_video.input.invalid_color"
INVALID_CONFIG_CODE = "render_slide_video.input.invalid_config"
INVALID_SLIDE_CODE = "render_slide_video.input.invalid_slide"
INVALID_BLOCK_CODE = "render_slide_video.input.invalid_text_block"
INVALID_STYLE_CODE = "render_slide_video.input.invalid_style"
INVALID_ASSET_CODE = "render_slide_video.input.invalid_asset"
INVALID_PROJECT_CODE = "render_slide_video.input.invalid_project"
EMPTY_PROJECT_CODE = "render_slide_video.input.empty_project"
INPUT_FILE_CODE = "render_slide_video.input.file_error"
FONT_DIR_CODE = "render_slide_video.input.fonts_missing"
FONT_LOAD_CODE = "render_slide_video.input.fonts_unloadable"
BACKGROUND_IMAGE_CODE = "render_slide_video.input.background_image"

COLOR_MARKER_PATTERN = re.compile(r"\[#([0-9a-fA-F]{6})\](.*?)\[\]", re.DOTALL)
LEADING_TAG_PATTERN = re.compile(r"^\[(?!#[0-9a-fA-F]{6}\])[^\]]*\]\s*")

MAX_GLOBAL_OVERLAY = 70.0
MIN_FONT_WEIGHT = 100
MAX_FONT_WEIGHT = 900


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class TransitionKind(str, Enum):
    """Per-slide entry transitions."""

    NONE = "none"
    FADE = "fade"
    FLASH = "flash"
    GLOW = "glow"
    SLIDE_LEFT = "slide-left"
    SLIDE_RIGHT = "slide-right"
    SUNLIGHT = "sunlight"


class TextAlignment(str, Enum):
    """Horizontal alignment of wrapped lines."""

    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class TextTransform(str, Enum):
    """Case transform applied to segments at draw time."""

    NONE = "none"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    CAPITALIZE = "capitalize"


class MediaKind(str, Enum):
    """Background asset media kinds."""

    VIDEO = "video"
    IMAGE = "image"


@dataclass(frozen=True)
class BoxPosition:
    """Box in percent of the canvas."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for value in (self.x, self.y, self.width, self.height):
            if not math.isfinite(value):
                raise RenderValidationError(
                    INVALID_BLOCK_CODE, "position values must be finite"
                )
        if self.width <= 0 or self.height <= 0:
            raise RenderValidationError(
                INVALID_BLOCK_CODE, "position width and height must be positive"
            )

    def to_pixels(
        self, canvas_width: int, canvas_height: int
    ) -> Tuple[float, float, float, float]:
        """Return the box as (left, top, width, height) in pixels."""
        return (
            self.x / 100.0 * canvas_width,
            self.y / 100.0 * canvas_height,
            self.width / 100.0 * canvas_width,
            self.height / 100.0 * canvas_height,
        )


@dataclass(frozen=True)
class TextBlock:
    """Independently timed and positioned text fragment."""

    title: str
    body: str | None = None
    position: BoxPosition | None = None
    delay: float = 0.0
    duration: float = 0.0

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise RenderValidationError(
                INVALID_BLOCK_CODE, "text block delay must be non-negative"
            )
        if self.duration < 0:
            raise RenderValidationError(
                INVALID_BLOCK_CODE, "text block duration must be non-negative"
            )

    def is_visible(self, slide_time: float) -> bool:
        """Return True when the block is visible at the slide-relative time."""
        if slide_time < self.delay:
            return False
        if self.duration == 0:
            return True
        return slide_time < self.delay + self.duration


@dataclass(frozen=True)
class TextStyle:
    """Text styling as authored in the editor."""

    font_family: str = "Inter"
    font_size: float = 64.0
    font_weight: int = 700
    line_height: float = 1.2
    letter_spacing: float = 0.0
    color: str = "#ffffff"
    alignment: TextAlignment = TextAlignment.CENTER
    text_transform: TextTransform = TextTransform.NONE
    body_font_family: str | None = None
    body_font_size: float | None = None
    body_font_weight: int | None = None
    body_color: str | None = None
    stroke: str | None = None
    stroke_width: float | None = None
    glow: str | None = None
    shadow_intensity: float | None = None
    shadow_radius: float | None = None
    position: BoxPosition | None = None

    def __post_init__(self) -> None:
        if self.font_size <= 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "font size must be positive"
            )
        if self.body_font_size is not None and self.body_font_size <= 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "body font size must be positive"
            )
        if self.line_height <= 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "line height must be positive"
            )
        if self.shadow_intensity is not None and not (
            0 <= self.shadow_intensity <= 10
        ):
            raise RenderValidationError(
                INVALID_STYLE_CODE, "shadow intensity must be between 0 and 10"
            )
        if self.shadow_radius is not None and self.shadow_radius < 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "shadow radius must be non-negative"
            )


@dataclass(frozen=True)
class PlateStyle:
    """Translucent rounded panel drawn behind text."""

    enabled: bool = False
    padding: float = 40.0
    border_radius: float = 24.0
    opacity: float = 0.6
    background_color: str = "#000000"
    blur_size: float | None = None

    def __post_init__(self) -> None:
        if self.padding < 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "plate padding must be non-negative"
            )
        if self.border_radius < 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "plate border radius must be non-negative"
            )
        if not 0 <= self.opacity <= 1:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "plate opacity must be between 0 and 1"
            )


@dataclass(frozen=True)
class SlideStyle:
    """Complete style of one slide."""

    text: TextStyle = TextStyle()
    plate: PlateStyle = PlateStyle()
    safe_margin_top: float = 10.0
    safe_margin_bottom: float = 10.0
    overlay: float | None = None

    def __post_init__(self) -> None:
        if self.safe_margin_top < 0 or self.safe_margin_bottom < 0:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "safe margins must be non-negative"
            )
        if self.safe_margin_top + self.safe_margin_bottom >= 100:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "safe margins leave no content area"
            )
        if self.overlay is not None and not 0 <= self.overlay <= 100:
            raise RenderValidationError(
                INVALID_STYLE_CODE, "overlay must be between 0 and 100"
            )


@dataclass(frozen=True)
class Slide:
    """One timed unit of output."""

    id: str
    project_id: str
    index: int
    title: str
    duration_seconds: float
    style: SlideStyle = SlideStyle()
    body: str | None = None
    text_blocks: Tuple[TextBlock, ...] = ()
    asset_id: str | None = None
    transition: TransitionKind = TransitionKind.NONE
    language: str | None = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.duration_seconds) or self.duration_seconds <= 0:
            raise RenderValidationError(
                INVALID_SLIDE_CODE, "slide duration must be positive"
            )

    def effective_blocks(self) -> Tuple[TextBlock, ...]:
        """Return text blocks, or the implicit title/body block."""
        if self.text_blocks:
            return self.text_blocks
        return (TextBlock(title=self.title, body=self.body),)


@dataclass(frozen=True)
class Asset:
    """Background media descriptor."""

    url: str
    kind: MediaKind = MediaKind.VIDEO
    duration: float = 0.0
    width: int = 0
    height: int = 0
    id: str | None = None
    created_at: str | None = None

    def __post_init__(self) -> None:
        if not self.url.strip():
            raise RenderValidationError(INVALID_ASSET_CODE, "asset url must be non-empty")


@dataclass(frozen=True)
class Project:
    """Ordered slides sharing one overlay value and optional music."""

    slides: Tuple[Slide, ...]
    global_overlay: float | None = None
    background_music_url: str | None = None
    id: str = "project"
    name: str = "Untitled"

    def __post_init__(self) -> None:
        if not self.slides:
            raise RenderValidationError(EMPTY_PROJECT_CODE, "project has no slides")
        if self.global_overlay is not None and not (
            0 <= self.global_overlay <= MAX_GLOBAL_OVERLAY
        ):
            raise RenderValidationError(
                INVALID_PROJECT_CODE, "global overlay must be between 0 and 70"
            )

    @property
    def total_duration_seconds(self) -> float:
        """Sum of all slide durations."""
        return sum(slide.duration_seconds for slide in self.slides)


def parse_color_to_rgba(color_value: str) -> Tuple[int, int, int, int]:
    """Parse a CSS color (hex, rgb(), named) into an RGBA tuple."""
    normalized = color_value.strip()
    if normalized.lower() == "transparent":
        return (0, 0, 0, 0)
    try:
        parsed = ImageColor.getcolor(normalized, "RGBA")
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_COLOR_CODE, f"invalid color value: {color_value!r}"
        ) from exc
    return tuple(parsed)  # type: ignore[return-value]


def strip_leading_tag(text_value: str) -> str:
    """Remove a leading bracketed label such as "[Hook] " but keep color markers."""
    return LEADING_TAG_PATTERN.sub("", text_value, count=1)


def _require_mapping(value: Any, code: str, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise RenderValidationError(code, f"{label} must be an object")
    return value


def _read_number(
    payload: Mapping[str, Any], key: str, code: str, fallback: float | None
) -> float | None:
    raw_value = payload.get(key)
    if raw_value is None:
        return fallback
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise RenderValidationError(code, f"{key} must be a number")
    return float(raw_value)


def _read_text(
    payload: Mapping[str, Any], key: str, code: str, fallback: str | None
) -> str | None:
    raw_value = payload.get(key)
    if raw_value is None:
        return fallback
    if not isinstance(raw_value, str):
        raise RenderValidationError(code, f"{key} must be a string")
    return raw_value


def _parse_enum(enum_type: type[Enum], raw_value: Any, code: str, label: str) -> Any:
    if isinstance(raw_value, enum_type):
        return raw_value
    try:
        return enum_type(str(raw_value).strip().lower())
    except ValueError as exc:
        raise RenderValidationError(code, f"invalid {label}: {raw_value!r}") from exc


def parse_position(payload: Any) -> BoxPosition | None:
    """Parse an optional percent box."""
    if payload is None:
        return None
    mapping = _require_mapping(payload, INVALID_BLOCK_CODE, "position")
    values = []
    for key in ("x", "y", "width", "height"):
        value = _read_number(mapping, key, INVALID_BLOCK_CODE, None)
        if value is None:
            raise RenderValidationError(INVALID_BLOCK_CODE, f"position.{key} is required")
        values.append(value)
    return BoxPosition(*values)


def parse_text_block(payload: Any) -> TextBlock:
    """Parse one text block payload."""
    mapping = _require_mapping(payload, INVALID_BLOCK_CODE, "text block")
    title = _read_text(mapping, "title", INVALID_BLOCK_CODE, "")
    return TextBlock(
        title=title or "",
        body=_read_text(mapping, "body", INVALID_BLOCK_CODE, None),
        position=parse_position(mapping.get("position")),
        delay=_read_number(mapping, "delay", INVALID_BLOCK_CODE, 0.0) or 0.0,
        duration=_read_number(mapping, "duration", INVALID_BLOCK_CODE, 0.0) or 0.0,
    )


def parse_text_style(payload: Any) -> TextStyle:
    """Parse a text style payload, keeping unset optional fields unset."""
    if payload is None:
        return TextStyle()
    mapping = _require_mapping(payload, INVALID_STYLE_CODE, "style.text")
    defaults = TextStyle()
    code = INVALID_STYLE_CODE

    def optional_int(key: str) -> int | None:
        value = _read_number(mapping, key, code, None)
        return None if value is None else int(value)

    return TextStyle(
        font_family=_read_text(mapping, "fontFamily", code, defaults.font_family)
        or defaults.font_family,
        font_size=_read_number(mapping, "fontSize", code, defaults.font_size)
        or defaults.font_size,
        font_weight=optional_int("fontWeight") or defaults.font_weight,
        line_height=_read_number(mapping, "lineHeight", code, defaults.line_height)
        or defaults.line_height,
        letter_spacing=_read_number(mapping, "letterSpacing", code, 0.0) or 0.0,
        color=_read_text(mapping, "color", code, defaults.color) or defaults.color,
        alignment=_parse_enum(
            TextAlignment, mapping.get("alignment", "center"), code, "alignment"
        ),
        text_transform=_parse_enum(
            TextTransform, mapping.get("textTransform", "none"), code, "text transform"
        ),
        body_font_family=_read_text(mapping, "bodyFontFamily", code, None),
        body_font_size=_read_number(mapping, "bodyFontSize", code, None),
        body_font_weight=optional_int("bodyFontWeight"),
        body_color=_read_text(mapping, "bodyColor", code, None),
        stroke=_read_text(mapping, "stroke", code, None),
        stroke_width=_read_number(mapping, "strokeWidth", code, None),
        glow=_read_text(mapping, "glow", code, None),
        shadow_intensity=_read_number(mapping, "shadowIntensity", code, None),
        shadow_radius=_read_number(mapping, "shadowRadius", code, None),
        position=parse_position(mapping.get("position")),
    )


def parse_plate_style(payload: Any) -> PlateStyle:
    """Parse a plate style payload."""
    if payload is None:
        return PlateStyle()
    mapping = _require_mapping(payload, INVALID_STYLE_CODE, "style.plate")
    defaults = PlateStyle()
    code = INVALID_STYLE_CODE
    enabled = mapping.get("enabled", defaults.enabled)
    if not isinstance(enabled, bool):
        raise RenderValidationError(code, "plate.enabled must be a boolean")
    return PlateStyle(
        enabled=enabled,
        padding=_read_number(mapping, "padding", code, defaults.padding),
        border_radius=_read_number(
            mapping, "borderRadius", code, defaults.border_radius
        ),
        opacity=_read_number(mapping, "opacity", code, defaults.opacity),
        background_color=_read_text(
            mapping, "backgroundColor", code, defaults.background_color
        ),
        blur_size=_read_number(mapping, "blurSize", code, None),
    )


def parse_slide_style(payload: Any) -> SlideStyle:
    """Parse a slide style payload."""
    if payload is None:
        return SlideStyle()
    mapping = _require_mapping(payload, INVALID_STYLE_CODE, "style")
    defaults = SlideStyle()
    return SlideStyle(
        text=parse_text_style(mapping.get("text")),
        plate=parse_plate_style(mapping.get("plate")),
        safe_margin_top=_read_number(
            mapping, "safeMarginTop", INVALID_STYLE_CODE, defaults.safe_margin_top
        ),
        safe_margin_bottom=_read_number(
            mapping,
            "safeMarginBottom",
            INVALID_STYLE_CODE,
            defaults.safe_margin_bottom,
        ),
        overlay=_read_number(mapping, "overlay", INVALID_STYLE_CODE, None),
    )


def parse_slide(payload: Any, position_index: int, project_id: str) -> Slide:
    """Parse one slide payload."""
    mapping = _require_mapping(payload, INVALID_SLIDE_CODE, "slide")
    duration = _read_number(mapping, "durationSec", INVALID_SLIDE_CODE, None)
    if duration is None:
        raise RenderValidationError(INVALID_SLIDE_CODE, "durationSec is required")
    raw_blocks = mapping.get("textBlocks") or ()
    if not isinstance(raw_blocks, Sequence) or isinstance(raw_blocks, str):
        raise RenderValidationError(INVALID_SLIDE_CODE, "textBlocks must be a list")
    transition = mapping.get("transition") or TransitionKind.NONE.value
    raw_index = _read_number(mapping, "index", INVALID_SLIDE_CODE, position_index)
    return Slide(
        id=str(mapping.get("id") or f"slide-{position_index + 1}"),
        project_id=str(mapping.get("projectId") or project_id),
        index=int(raw_index if raw_index is not None else position_index),
        title=_read_text(mapping, "title", INVALID_SLIDE_CODE, "") or "",
        body=_read_text(mapping, "body", INVALID_SLIDE_CODE, None),
        duration_seconds=duration,
        text_blocks=tuple(parse_text_block(block) for block in raw_blocks),
        asset_id=_read_text(mapping, "assetId", INVALID_SLIDE_CODE, None),
        style=parse_slide_style(mapping.get("style")),
        transition=_parse_enum(
            TransitionKind, transition, INVALID_SLIDE_CODE, "transition"
        ),
        language=_read_text(mapping, "language", INVALID_SLIDE_CODE, None),
    )


def parse_project(payload: Any) -> Project:
    """Parse a project payload with camelCase keys into a Project."""
    mapping = _require_mapping(payload, INVALID_PROJECT_CODE, "project")
    project_id = str(mapping.get("id") or "project")
    raw_slides = mapping.get("slides")
    if not isinstance(raw_slides, Sequence) or isinstance(raw_slides, str):
        raise RenderValidationError(INVALID_PROJECT_CODE, "slides must be a list")
    slides = tuple(
        parse_slide(slide_payload, index_value, project_id)
        for index_value, slide_payload in enumerate(raw_slides)
    )
    return Project(
        slides=slides,
        global_overlay=_read_number(mapping, "globalOverlay", INVALID_PROJECT_CODE, None),
        background_music_url=_read_text(
            mapping, "backgroundMusicUrl", INVALID_PROJECT_CODE, None
        ),
        id=project_id,
        name=_read_text(mapping, "name", INVALID_PROJECT_CODE, "Untitled") or "Untitled",
    )


def parse_asset(payload: Any) -> Asset:
    """Parse an asset payload."""
    mapping = _require_mapping(payload, INVALID_ASSET_CODE, "asset")
    url = _read_text(mapping, "url", INVALID_ASSET_CODE, None)
    if not url:
        raise RenderValidationError(INVALID_ASSET_CODE, "asset url is required")
    return Asset(
        url=url,
        kind=_parse_enum(
            MediaKind, mapping.get("type", "video"), INVALID_ASSET_CODE, "asset type"
        ),
        duration=_read_number(mapping, "duration", INVALID_ASSET_CODE, 0.0) or 0.0,
        width=int(_read_number(mapping, "width", INVALID_ASSET_CODE, 0.0) or 0),
        height=int(_read_number(mapping, "height", INVALID_ASSET_CODE, 0.0) or 0),
        id=_read_text(mapping, "id", INVALID_ASSET_CODE, None),
        created_at=_read_text(mapping, "createdAt", INVALID_ASSET_CODE, None),
    )


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def position_to_payload(position: BoxPosition | None) -> dict[str, Any] | None:
    if position is None:
        return None
    return {
        "x": position.x,
        "y": position.y,
        "width": position.width,
        "height": position.height,
    }


def slide_to_payload(slide: Slide) -> dict[str, Any]:
    """Serialize a slide back to the camelCase project payload shape."""
    text = slide.style.text
    plate = slide.style.plate
    text_payload = _drop_none(
        {
            "fontFamily": text.font_family,
            "fontSize": text.font_size,
            "fontWeight": text.font_weight,
            "lineHeight": text.line_height,
            "letterSpacing": text.letter_spacing,
            "color": text.color,
            "alignment": text.alignment.value,
            "textTransform": text.text_transform.value,
            "bodyFontFamily": text.body_font_family,
            "bodyFontSize": text.body_font_size,
            "bodyFontWeight": text.body_font_weight,
            "bodyColor": text.body_color,
            "stroke": text.stroke,
            "strokeWidth": text.stroke_width,
            "glow": text.glow,
            "shadowIntensity": text.shadow_intensity,
            "shadowRadius": text.shadow_radius,
            "position": position_to_payload(text.position),
        }
    )
    plate_payload = _drop_none(
        {
            "enabled": plate.enabled,
            "padding": plate.padding,
            "borderRadius": plate.border_radius,
            "opacity": plate.opacity,
            "backgroundColor": plate.background_color,
            "blurSize": plate.blur_size,
        }
    )
    style_payload = _drop_none(
        {
            "text": text_payload,
            "plate": plate_payload,
            "safeMarginTop": slide.style.safe_margin_top,
            "safeMarginBottom": slide.style.safe_margin_bottom,
            "overlay": slide.style.overlay,
        }
    )
    blocks_payload = [
        _drop_none(
            {
                "title": block.title,
                "body": block.body,
                "position": position_to_payload(block.position),
                "delay": block.delay,
                "duration": block.duration,
            }
        )
        for block in slide.text_blocks
    ]
    return _drop_none(
        {
            "id": slide.id,
            "projectId": slide.project_id,
            "index": slide.index,
            "title": slide.title,
            "body": slide.body,
            "textBlocks": blocks_payload or None,
            "durationSec": slide.duration_seconds,
            "assetId": slide.asset_id,
            "style": style_payload,
            "transition": slide.transition.value,
            "language": slide.language,
        }
    )
