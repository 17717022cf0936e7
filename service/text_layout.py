"""Layout of slide text into wrapped, colored, positioned lines."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable, Protocol, Sequence, Tuple

from domain.slides import (
    COLOR_MARKER_PATTERN,
    BoxPosition,
    Slide,
    TextAlignment,
    TextBlock,
    TextTransform,
    parse_color_to_rgba,
    strip_leading_tag,
)
from domain.styles import ResolvedRunStyle, ResolvedTextStyle

BLOCK_SPACING_PX = 40.0
TITLE_BODY_SPACING_PX = 30.0
DEFAULT_BOX_WIDTH_RATIO = 0.80
CAPITALIZE_PATTERN = re.compile(r"\b\w")
WORD_PATTERN = re.compile(r"\S+")
INLINE_SPACE_PATTERN = re.compile(r"[^\S\n]")

Rgba = Tuple[int, int, int, int]


class TextMetrics(Protocol):
    """Measures the advance width of a string in a run style."""

    def measure(self, run: ResolvedRunStyle, text_value: str) -> float:
        ...


@dataclass(frozen=True)
class TextSegment:
    """Run of characters sharing one fill color."""

    text: str
    color_rgba: Rgba


@dataclass(frozen=True)
class MarkedText:
    """Plain text with the color of each character."""

    plain: str
    colors: Tuple[Rgba, ...]

    def segments(self, start: int, end: int) -> Tuple[TextSegment, ...]:
        """Group characters in [start, end) into same-color segments."""
        segments: list[TextSegment] = []
        run_start = start
        for char_index in range(start + 1, end + 1):
            if char_index == end or self.colors[char_index] != self.colors[run_start]:
                segments.append(
                    TextSegment(
                        self.plain[run_start:char_index], self.colors[run_start]
                    )
                )
                run_start = char_index
        return tuple(segments)


@dataclass(frozen=True)
class WrappedLine:
    text: str
    segments: Tuple[TextSegment, ...]
    width: float


@dataclass(frozen=True)
class WrappedText:
    """Wrapped lines of one role (title or body) of a block."""

    lines: Tuple[WrappedLine, ...]
    run: ResolvedRunStyle

    @property
    def max_width(self) -> float:
        return max((line.width for line in self.lines), default=0.0)

    @property
    def height(self) -> float:
        return len(self.lines) * self.run.line_height_px


@dataclass(frozen=True)
class WrappedBlock:
    title: WrappedText
    body: WrappedText | None

    @property
    def width(self) -> float:
        body_width = self.body.max_width if self.body else 0.0
        return max(self.title.max_width, body_width)

    @property
    def height(self) -> float:
        total_height = self.title.height
        if self.body is not None and self.body.lines:
            total_height += TITLE_BODY_SPACING_PX + self.body.height
        return total_height


@dataclass(frozen=True)
class AnchorBox:
    """Box that a group of blocks is centered in, in pixels."""

    center_x: float
    center_y: float
    width: float


@dataclass(frozen=True)
class PlacedLine:
    """One visual line ready to draw; x is the left edge, center_y the middle."""

    segments: Tuple[TextSegment, ...]
    run: ResolvedRunStyle
    x: float
    center_y: float
    width: float


@dataclass(frozen=True)
class AnchorLayout:
    box: AnchorBox
    lines: Tuple[PlacedLine, ...]
    content_width: float
    content_height: float
    plate_rect: Tuple[float, float, float, float] | None


@dataclass(frozen=True)
class SlideTextLayout:
    anchors: Tuple[AnchorLayout, ...]

    @property
    def is_empty(self) -> bool:
        return not any(anchor.lines for anchor in self.anchors)


def parse_color_markers(text_value: str, default_rgba: Rgba) -> MarkedText:
    """Remove [#RRGGBB]...[] markers, remembering each character's color."""
    plain_parts: list[str] = []
    colors: list[Rgba] = []
    last_index = 0
    for match_value in COLOR_MARKER_PATTERN.finditer(text_value):
        leading = text_value[last_index : match_value.start()]
        plain_parts.append(leading)
        colors.extend([default_rgba] * len(leading))
        marked_color = parse_color_to_rgba(f"#{match_value.group(1)}")
        inner = match_value.group(2)
        plain_parts.append(inner)
        colors.extend([marked_color] * len(inner))
        last_index = match_value.end()
    trailing = text_value[last_index:]
    plain_parts.append(trailing)
    colors.extend([default_rgba] * len(trailing))
    return MarkedText("".join(plain_parts), tuple(colors))


def split_color_segments(text_value: str, default_rgba: Rgba) -> Tuple[TextSegment, ...]:
    """Split marked-up text into colored segments."""
    marked = parse_color_markers(text_value, default_rgba)
    if not marked.plain:
        return ()
    return marked.segments(0, len(marked.plain))


def measure_with_spacing(
    metrics: TextMetrics,
    run: ResolvedRunStyle,
    text_value: str,
    letter_spacing: float,
) -> float:
    """Width of text including letter spacing (em) between characters."""
    if not text_value:
        return 0.0
    spacing_px = letter_spacing * run.font_size
    return metrics.measure(run, text_value) + (len(text_value) - 1) * spacing_px


def _trim_range(text_value: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and text_value[start].isspace():
        start += 1
    while end > start and text_value[end - 1].isspace():
        end -= 1
    return start, end


def wrap_text_ranges(
    text_value: str, max_width: float, measure: Callable[[str], float]
) -> Tuple[Tuple[int, int], ...]:
    """Greedy word wrap returning (start, end) offsets of each line.

    Words are runs of non-whitespace. Newlines always break. A word wider
    than max_width keeps its own line.
    """
    ranges: list[Tuple[int, int]] = []
    paragraph_start = 0
    for paragraph in text_value.split("\n"):
        line_start: int | None = None
        line_end = paragraph_start
        for word in WORD_PATTERN.finditer(paragraph):
            word_start = paragraph_start + word.start()
            word_end = paragraph_start + word.end()
            if line_start is None:
                line_start, line_end = word_start, word_end
                continue
            if measure(text_value[line_start:word_end]) <= max_width:
                line_end = word_end
            else:
                ranges.append((line_start, line_end))
                line_start, line_end = word_start, word_end
        if line_start is not None:
            ranges.append((line_start, line_end))
        paragraph_start += len(paragraph) + 1
    return tuple(
        trimmed
        for trimmed in (_trim_range(text_value, start, end) for start, end in ranges)
        if trimmed[0] < trimmed[1]
    )


def wrap_text(
    text_value: str,
    run: ResolvedRunStyle,
    letter_spacing: float,
    max_width: float,
    metrics: TextMetrics,
) -> WrappedText:
    """Strip a leading tag, parse markers, wrap the plain text into lines."""
    normalized = strip_leading_tag(text_value.replace("\r\n", "\n"))
    normalized = INLINE_SPACE_PATTERN.sub(" ", normalized)
    marked = parse_color_markers(normalized, run.color_rgba)

    def measure(candidate: str) -> float:
        return measure_with_spacing(metrics, run, candidate, letter_spacing)

    lines = tuple(
        WrappedLine(
            text=marked.plain[start:end],
            segments=marked.segments(start, end),
            width=measure(marked.plain[start:end]),
        )
        for start, end in wrap_text_ranges(marked.plain, max_width, measure)
    )
    return WrappedText(lines=lines, run=run)


def wrap_block(
    block: TextBlock,
    style: ResolvedTextStyle,
    max_width: float,
    metrics: TextMetrics,
) -> WrappedBlock:
    title = wrap_text(block.title, style.title, style.letter_spacing, max_width, metrics)
    body = None
    if block.body:
        body = wrap_text(block.body, style.body, style.letter_spacing, max_width, metrics)
    return WrappedBlock(title=title, body=body)


def anchor_box_from_position(
    position: BoxPosition, canvas_width: int, canvas_height: int
) -> AnchorBox:
    """Anchor box for a percent position."""
    left, top, width, height = position.to_pixels(canvas_width, canvas_height)
    return AnchorBox(center_x=left + width / 2, center_y=top + height / 2, width=width)


def centered_anchor_box(
    style: ResolvedTextStyle, canvas_width: int, canvas_height: int
) -> AnchorBox:
    """Synthetic anchor box for blocks without their own position.

    Uses the style position when set, else 80% of the canvas width centered
    in the area between the safe margins.
    """
    if style.position is not None:
        return anchor_box_from_position(style.position, canvas_width, canvas_height)
    safe_top = style.safe_margin_top / 100.0 * canvas_height
    safe_bottom = style.safe_margin_bottom / 100.0 * canvas_height
    content_height = canvas_height - safe_top - safe_bottom
    return AnchorBox(
        center_x=canvas_width / 2,
        center_y=safe_top + content_height / 2,
        width=canvas_width * DEFAULT_BOX_WIDTH_RATIO,
    )


def _line_left(
    alignment: TextAlignment, box: AnchorBox, content_width: float, line_width: float
) -> float:
    column_left = box.center_x - content_width / 2
    if alignment == TextAlignment.LEFT:
        return column_left
    if alignment == TextAlignment.RIGHT:
        return column_left + content_width - line_width
    return box.center_x - line_width / 2


def layout_anchor(
    blocks: Sequence[TextBlock],
    box: AnchorBox,
    style: ResolvedTextStyle,
    metrics: TextMetrics,
) -> AnchorLayout:
    """Stack blocks vertically, centered in the anchor box."""
    wrapped_blocks = [wrap_block(block, style, box.width, metrics) for block in blocks]
    content_width = max((wrapped.width for wrapped in wrapped_blocks), default=0.0)
    content_height = sum(wrapped.height for wrapped in wrapped_blocks)
    content_height += BLOCK_SPACING_PX * max(0, len(wrapped_blocks) - 1)

    top = box.center_y - content_height / 2
    cursor_y = top
    placed: list[PlacedLine] = []
    for block_index, wrapped in enumerate(wrapped_blocks):
        roles = [wrapped.title]
        if wrapped.body is not None and wrapped.body.lines:
            roles.append(wrapped.body)
        for role_index, role in enumerate(roles):
            if role_index:
                cursor_y += TITLE_BODY_SPACING_PX
            for line in role.lines:
                placed.append(
                    PlacedLine(
                        segments=line.segments,
                        run=role.run,
                        x=_line_left(style.alignment, box, content_width, line.width),
                        center_y=cursor_y + role.run.line_height_px / 2,
                        width=line.width,
                    )
                )
                cursor_y += role.run.line_height_px
        if block_index < len(wrapped_blocks) - 1:
            cursor_y += BLOCK_SPACING_PX

    plate_rect = None
    if style.plate.enabled and placed:
        padding = style.plate.padding
        plate_rect = (
            box.center_x - content_width / 2 - padding,
            top - padding,
            content_width + 2 * padding,
            content_height + 2 * padding,
        )
    return AnchorLayout(
        box=box,
        lines=tuple(placed),
        content_width=content_width,
        content_height=content_height,
        plate_rect=plate_rect,
    )


def visible_block_indices(slide: Slide, slide_time: float | None) -> Tuple[int, ...]:
    """Indices of blocks visible at slide_time; every block when slide_time is None."""
    return tuple(
        block_index
        for block_index, block in enumerate(slide.effective_blocks())
        if slide_time is None or block.is_visible(slide_time)
    )


def layout_slide_text(
    slide: Slide,
    style: ResolvedTextStyle,
    canvas_width: int,
    canvas_height: int,
    metrics: TextMetrics,
    slide_time: float | None = None,
) -> SlideTextLayout:
    """Lay out the blocks of a slide visible at slide_time.

    Centered blocks share one synthetic anchor box; each positioned block
    gets its own box.
    """
    blocks = slide.effective_blocks()
    visible = [blocks[index] for index in visible_block_indices(slide, slide_time)]
    centered = [block for block in visible if block.position is None]
    positioned = [block for block in visible if block.position is not None]

    anchors: list[AnchorLayout] = []
    if centered:
        box = centered_anchor_box(style, canvas_width, canvas_height)
        anchors.append(layout_anchor(centered, box, style, metrics))
    for block in positioned:
        box = anchor_box_from_position(block.position, canvas_width, canvas_height)
        anchors.append(layout_anchor([block], box, style, metrics))
    return SlideTextLayout(anchors=tuple(anchor for anchor in anchors if anchor.lines))


def apply_text_transform(text_value: str, transform: TextTransform) -> str:
    """Apply a case transform to already wrapped text."""
    if transform == TextTransform.UPPERCASE:
        return text_value.upper()
    if transform == TextTransform.LOWERCASE:
        return text_value.lower()
    if transform == TextTransform.CAPITALIZE:
        return CAPITALIZE_PATTERN.sub(
            lambda match_value: match_value.group(0).upper(), text_value
        )
    return text_value
