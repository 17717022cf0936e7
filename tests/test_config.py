"""Unit tests for export configuration, fonts and progress reporting."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from domain.slides import (
    FONT_DIR_CODE,
    INVALID_CONFIG_CODE,
    RenderValidationError,
)
from domain.styles import ResolvedRunStyle
from service.config import (
    FFMPEG_PATH_ENV,
    REALTIME_ENV,
    TRANSCODE_TIMEOUT_ENV,
    ExportConfig,
    load_export_config,
)
from service.fonts import FontBook, normalize_family, parse_font_file_name
from service.progress import PROGRESS_OBSERVER_CODE, ProgressReporter


def test_defaults_target_vertical_hd() -> None:
    """Defaults render 1080x1920 at 30 fps."""
    config = load_export_config({})

    assert (config.width, config.height, config.fps) == (1080, 1920, 30)
    assert config.transition_seconds == 0.5
    assert config.default_overlay_percent == 30.0
    assert config.audio_gain == 0.8
    assert config.realtime is True
    assert config.ffmpeg_path == "ffmpeg"
    assert config.frame_interval_seconds == pytest.approx(1 / 30)


def test_environment_and_overrides() -> None:
    """Environment values apply, explicit overrides win, None overrides are ignored."""
    config = load_export_config(
        {
            FFMPEG_PATH_ENV: "/opt/ffmpeg",
            TRANSCODE_TIMEOUT_ENV: "30",
            REALTIME_ENV: "false",
        },
        fonts_dir=None,
        realtime=True,
    )

    assert config.ffmpeg_path == "/opt/ffmpeg"
    assert config.transcode_timeout_seconds == 30.0
    assert config.realtime is True
    assert config.fonts_dir is None


def test_invalid_environment_values_are_rejected() -> None:
    """Non-numeric or non-positive timeouts raise a config error."""
    for raw_value in ("soon", "0", "-5"):
        with pytest.raises(RenderValidationError) as excinfo:
            load_export_config({TRANSCODE_TIMEOUT_ENV: raw_value})
        assert excinfo.value.code == INVALID_CONFIG_CODE


def test_export_config_requires_even_dimensions() -> None:
    """Encoders need even frame sizes."""
    with pytest.raises(RenderValidationError):
        ExportConfig(width=1081)
    with pytest.raises(RenderValidationError):
        ExportConfig(fps=0)


def test_font_file_names_map_to_family_and_weight() -> None:
    """File stems encode family and weight."""
    assert parse_font_file_name("/fonts/Inter-Bold.ttf") == ("inter", 700)
    assert parse_font_file_name("OpenSans_600.otf") == ("opensans", 600)
    assert parse_font_file_name("Roboto.ttf") == ("roboto", 400)
    assert normalize_family("Open Sans") == "opensans"


def test_font_book_without_directory_uses_default_font() -> None:
    """Measurement works with Pillow's built-in font."""
    fonts = FontBook()
    run = ResolvedRunStyle("Inter", 32.0, 700, (255, 255, 255, 255), 38.4)

    assert fonts.resolve_file("Inter", 700) is None
    assert fonts.measure(run, "") == 0.0
    assert fonts.measure(run, "wide text") > fonts.measure(run, "w")
    assert fonts.font(run) is fonts.font(run)


def test_font_book_rejects_missing_directory(tmp_path: Path) -> None:
    """A configured font directory must exist."""
    with pytest.raises(RenderValidationError) as excinfo:
        FontBook(str(tmp_path / "missing"))
    assert excinfo.value.code == FONT_DIR_CODE


def test_progress_reporter_is_monotonic_and_capped() -> None:
    """Progress never moves backward or past 100."""
    events: list[tuple[float, str]] = []
    reporter = ProgressReporter(lambda percent, message: events.append((percent, message)))

    reporter.report(20, "a")
    reporter.report(10, "b")
    reporter.report(150, "c")

    assert events == [(20, "a"), (20, "b"), (100, "c")]


def test_progress_observer_errors_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    """A failing observer never breaks the export."""

    def observer(percent: float, message: str) -> None:
        raise RuntimeError("ui gone")

    reporter = ProgressReporter(observer)
    with caplog.at_level(logging.WARNING, logger="render_slide_video"):
        reporter.report(50, "halfway")

    assert reporter.percent == 50
    assert PROGRESS_OBSERVER_CODE in caplog.text
