"""Split a plain-text script into timed slides."""

from __future__ import annotations

import re
import uuid
from typing import Callable, Sequence, Tuple

from domain.slides import (
    EMPTY_PROJECT_CODE,
    RenderValidationError,
    Slide,
    SlideStyle,
)

READING_SPEED_WPM = 160
MIN_BODY_DURATION_SECONDS = 2.0
MAX_BODY_DURATION_SECONDS = 6.0
HEADLINE_DURATION_SECONDS = 3.0
TITLE_ONLY_DURATION_SECONDS = 2.0
SHORT_LINE_LIMIT = 80
BODY_LENGTH_RATIO = 1.5

MARKDOWN_HEADING_PATTERN = re.compile(r"^#+\s*")
INNER_SENTENCE_PATTERN = re.compile(r"[.!?;,]\s+[A-Z]")
UPPERCASE_PATTERN = re.compile(r"[A-Z]")


def is_heading(line: str, next_line: str | None = None) -> bool:
    """Return True when a line reads like a slide heading."""
    trimmed = line.strip()
    if trimmed.startswith("#"):
        return True

    words = trimmed.split()
    if (
        len(words) >= 2
        and trimmed == trimmed.upper()
        and UPPERCASE_PATTERN.search(trimmed)
    ):
        return True

    if next_line is not None and trimmed.endswith("."):
        if len(next_line.strip()) > len(trimmed) * BODY_LENGTH_RATIO:
            return True

    if len(trimmed) < SHORT_LINE_LIMIT and not INNER_SENTENCE_PATTERN.search(trimmed):
        if trimmed[:1].isascii() and trimmed[:1].isupper():
            return True

    return False


def estimate_reading_seconds(text_value: str) -> float:
    """Estimate on-screen time from word count, clamped to 2-6 seconds."""
    word_count = len(text_value.split())
    reading_seconds = word_count / READING_SPEED_WPM * 60.0
    return max(MIN_BODY_DURATION_SECONDS, min(MAX_BODY_DURATION_SECONDS, reading_seconds))


def clean_markdown(text_value: str) -> str:
    """Strip a markdown heading prefix."""
    return MARKDOWN_HEADING_PATTERN.sub("", text_value, count=1).strip()


def parse_text_to_slides(
    text_value: str,
    project_id: str,
    default_style: SlideStyle,
    id_factory: Callable[[], str] | None = None,
) -> Tuple[Slide, ...]:
    """Convert a text script into slides; the first line becomes the headline."""
    new_id = id_factory or (lambda: str(uuid.uuid4()))
    lines: Sequence[str] = [
        line.strip()
        for line in text_value.replace("\ufeff", "").splitlines()
        if line.strip()
    ]
    if not lines:
        raise RenderValidationError(EMPTY_PROJECT_CODE, "input text contains no lines")

    slides: list[Slide] = [
        Slide(
            id=new_id(),
            project_id=project_id,
            index=0,
            title=clean_markdown(lines[0]),
            duration_seconds=HEADLINE_DURATION_SECONDS,
            style=default_style,
        )
    ]

    line_index = 1
    while line_index < len(lines):
        line = lines[line_index]
        next_line = lines[line_index + 1] if line_index + 1 < len(lines) else None

        if not is_heading(line, next_line):
            slides.append(
                Slide(
                    id=new_id(),
                    project_id=project_id,
                    index=len(slides),
                    title=clean_markdown(line),
                    duration_seconds=TITLE_ONLY_DURATION_SECONDS,
                    style=default_style,
                )
            )
            line_index += 1
            continue

        title = clean_markdown(line)
        body_lines: list[str] = []
        line_index += 1
        while line_index < len(lines):
            upcoming = lines[line_index + 1] if line_index + 1 < len(lines) else None
            if is_heading(lines[line_index], upcoming):
                break
            body_lines.append(lines[line_index])
            line_index += 1

        body = "\n".join(body_lines).strip()
        duration = (
            estimate_reading_seconds(body) if body else TITLE_ONLY_DURATION_SECONDS
        )
        slides.append(
            Slide(
                id=new_id(),
                project_id=project_id,
                index=len(slides),
                title=title,
                body=body or None,
                duration_seconds=duration,
                style=default_style,
            )
        )

    return tuple(slides)
