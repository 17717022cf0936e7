"""Unit tests for plain-text script import."""

from __future__ import annotations

import itertools

import pytest

from domain.slides import EMPTY_PROJECT_CODE, RenderValidationError, SlideStyle
from domain.text_import import (
    HEADLINE_DURATION_SECONDS,
    TITLE_ONLY_DURATION_SECONDS,
    estimate_reading_seconds,
    is_heading,
    parse_text_to_slides,
)


def sequential_ids():
    """Return an id factory producing id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


def test_is_heading_detects_common_forms() -> None:
    """Markdown, all-caps and short capitalized lines read as headings."""
    assert is_heading("# Intro")
    assert is_heading("BIG NEWS TODAY")
    assert is_heading("Short title")
    assert not is_heading("lowercase words only")


def test_estimate_reading_seconds_is_clamped() -> None:
    """Reading time stays within 2 to 6 seconds."""
    assert estimate_reading_seconds("one") == 2.0
    assert estimate_reading_seconds(" ".join(["word"] * 100)) == 6.0
    assert estimate_reading_seconds(" ".join(["word"] * 12)) == pytest.approx(4.5)


def test_parse_text_to_slides_builds_headline_and_sections() -> None:
    """First line becomes the headline; headings collect the body below them."""
    script = (
        "\ufeffMy Video Title\n"
        "\n"
        "# Section One\n"
        "this is the body of the section, which explains things well.\n"
        "just a closing note\n"
    )

    slides = parse_text_to_slides(script, "p1", SlideStyle(), sequential_ids())

    assert [slide.title for slide in slides] == ["My Video Title", "Section One"]
    assert slides[0].duration_seconds == HEADLINE_DURATION_SECONDS
    assert slides[0].id == "id-1"
    assert slides[1].body == (
        "this is the body of the section, which explains things well.\n"
        "just a closing note"
    )
    assert slides[1].duration_seconds == pytest.approx(
        estimate_reading_seconds(slides[1].body)
    )
    assert [slide.index for slide in slides] == [0, 1]
    assert all(slide.project_id == "p1" for slide in slides)


def test_parse_text_to_slides_keeps_loose_lines_as_title_slides() -> None:
    """A non-heading line outside a section becomes a title-only slide."""
    slides = parse_text_to_slides(
        "Headline\nnot a heading line\n", "p1", SlideStyle(), sequential_ids()
    )

    assert len(slides) == 2
    assert slides[1].title == "not a heading line"
    assert slides[1].body is None
    assert slides[1].duration_seconds == TITLE_ONLY_DURATION_SECONDS


def test_parse_text_to_slides_rejects_blank_input() -> None:
    """Reject scripts without any non-blank line."""
    with pytest.raises(RenderValidationError) as excinfo:
        parse_text_to_slides("\n  \n", "p1", SlideStyle())
    assert excinfo.value.code == EMPTY_PROJECT_CODE
