"""Font discovery and measurement for slide text."""

from __future__ import annotations

import logging
import os
import re
from typing import Sequence, Tuple

from PIL import ImageFont

from domain.slides import FONT_DIR_CODE, FONT_LOAD_CODE, RenderValidationError
from domain.styles import ResolvedRunStyle

LOGGER = logging.getLogger("render_slide_video")

FONT_SAMPLE_SIZE = 32
DEFAULT_WEIGHT = 400
WEIGHT_NAMES = {
    "thin": 100,
    "hairline": 100,
    "extralight": 200,
    "ultralight": 200,
    "light": 300,
    "regular": 400,
    "normal": 400,
    "book": 400,
    "medium": 500,
    "semibold": 600,
    "demibold": 600,
    "bold": 700,
    "extrabold": 800,
    "ultrabold": 800,
    "black": 900,
    "heavy": 900,
}
FONT_STEM_PATTERN = re.compile(r"^(?P<family>.+?)[-_](?P<weight>[A-Za-z]+|\d{3})$")

FontLike = ImageFont.FreeTypeFont | ImageFont.ImageFont


def normalize_family(family: str) -> str:
    """Normalize a family name for lookups ("Open Sans" -> "opensans")."""
    return re.sub(r"[\s_\-]+", "", family).lower()


def parse_font_file_name(font_file_path: str) -> Tuple[str, int]:
    """Return the normalized family and CSS weight encoded in a font file name."""
    stem = os.path.splitext(os.path.basename(font_file_path))[0]
    match_value = FONT_STEM_PATTERN.match(stem)
    if not match_value:
        return normalize_family(stem), DEFAULT_WEIGHT

    weight_token = match_value.group("weight").lower()
    if weight_token.isdigit():
        weight = int(weight_token)
    else:
        weight = WEIGHT_NAMES.get(weight_token.replace("italic", ""), -1)
        if weight < 0:
            return normalize_family(stem), DEFAULT_WEIGHT
    return normalize_family(match_value.group("family")), weight


def list_font_files(fonts_dir: str) -> list[str]:
    """List font files from the fonts directory."""
    if not os.path.isdir(fonts_dir):
        raise RenderValidationError(
            FONT_DIR_CODE, f"fonts directory does not exist: {fonts_dir}"
        )

    font_files = [
        os.path.join(fonts_dir, entry_name)
        for entry_name in sorted(os.listdir(fonts_dir))
        if entry_name.lower().endswith((".ttf", ".otf"))
    ]
    if not font_files:
        raise RenderValidationError(FONT_DIR_CODE, f"no font files found in {fonts_dir}")
    return font_files


def filter_loadable_fonts(font_files: Sequence[str], sample_size: int) -> list[str]:
    """Filter font files to those loadable at the sample size."""
    loadable_fonts: list[str] = []
    for font_file_path in font_files:
        try:
            ImageFont.truetype(font_file_path, size=sample_size)
        except OSError as exc:
            LOGGER.warning(
                "%s: skipped font %s (%s)",
                FONT_LOAD_CODE,
                font_file_path,
                str(exc).strip(),
            )
            continue
        loadable_fonts.append(font_file_path)

    if not loadable_fonts:
        raise RenderValidationError(
            FONT_LOAD_CODE, "failed to load any fonts from fonts directory"
        )
    return loadable_fonts


class FontBook:
    """Resolve (family, weight, size) to Pillow fonts and measure text with them."""

    def __init__(self, fonts_dir: str | None = None) -> None:
        self._font_files: list[str] = []
        self._index: dict[str, list[Tuple[int, str]]] = {}
        self._cache: dict[Tuple[str, int], FontLike] = {}
        if fonts_dir:
            self._font_files = filter_loadable_fonts(
                list_font_files(fonts_dir), FONT_SAMPLE_SIZE
            )
            for font_file_path in self._font_files:
                family, weight = parse_font_file_name(font_file_path)
                self._index.setdefault(family, []).append((weight, font_file_path))

    def resolve_file(self, family: str, weight: int) -> str | None:
        """Return the font file closest to the requested weight, if any."""
        candidates = self._index.get(normalize_family(family))
        if candidates:
            return min(
                candidates,
                key=lambda item: (abs(item[0] - weight), item[0] < weight, item[1]),
            )[1]
        if self._font_files:
            return self._font_files[0]
        return None

    def font(self, run: ResolvedRunStyle) -> FontLike:
        """Load (and cache) the font for a run style."""
        size = max(1, int(round(run.font_size)))
        font_file_path = self.resolve_file(run.font_family, run.font_weight)
        cache_key = (font_file_path or "<default>", size)
        cached_font = self._cache.get(cache_key)
        if cached_font is not None:
            return cached_font

        if font_file_path is None:
            font = ImageFont.load_default(size=size)
        else:
            try:
                font = ImageFont.truetype(font_file_path, size=size)
            except OSError as exc:
                raise RenderValidationError(
                    FONT_LOAD_CODE,
                    f"failed to load font {font_file_path} at size {size}",
                ) from exc
        self._cache[cache_key] = font
        return font

    def measure(self, run: ResolvedRunStyle, text_value: str) -> float:
        """Advance width of text without letter spacing."""
        if not text_value:
            return 0.0
        return float(self.font(run).getlength(text_value))
