"""Export configuration and environment overrides."""

from __future__ import annotations

import dataclasses
from typing import Mapping

from domain.slides import INVALID_CONFIG_CODE, RenderValidationError

TARGET_WIDTH = 1080
TARGET_HEIGHT = 1920
TARGET_FPS = 30
TRANSITION_SECONDS = 0.5
DEFAULT_OVERLAY_PERCENT = 30.0
AUDIO_GAIN = 0.8
AUDIO_BITRATE = 128_000
DEFAULT_MEDIA_LOAD_TIMEOUT_SECONDS = 30.0
DEFAULT_AUDIO_LOAD_TIMEOUT_SECONDS = 5.0
DEFAULT_TRANSCODER_LOAD_TIMEOUT_SECONDS = 60.0
DEFAULT_TRANSCODE_TIMEOUT_SECONDS = 120.0
DEFAULT_FLUSH_DELAY_SECONDS = 0.15

FFMPEG_PATH_ENV = "RENDER_SLIDE_VIDEO_FFMPEG_PATH"
FFPROBE_PATH_ENV = "RENDER_SLIDE_VIDEO_FFPROBE_PATH"
FONTS_DIR_ENV = "RENDER_SLIDE_VIDEO_FONTS_DIR"
MEDIA_LOAD_TIMEOUT_ENV = "RENDER_SLIDE_VIDEO_MEDIA_LOAD_TIMEOUT_SECONDS"
AUDIO_LOAD_TIMEOUT_ENV = "RENDER_SLIDE_VIDEO_AUDIO_LOAD_TIMEOUT_SECONDS"
TRANSCODER_LOAD_TIMEOUT_ENV = "RENDER_SLIDE_VIDEO_TRANSCODER_LOAD_TIMEOUT_SECONDS"
TRANSCODE_TIMEOUT_ENV = "RENDER_SLIDE_VIDEO_TRANSCODE_TIMEOUT_SECONDS"
REALTIME_ENV = "RENDER_SLIDE_VIDEO_REALTIME"


@dataclasses.dataclass(frozen=True)
class ExportConfig:
    """Validated settings shared by every export."""

    width: int = TARGET_WIDTH
    height: int = TARGET_HEIGHT
    fps: int = TARGET_FPS
    transition_seconds: float = TRANSITION_SECONDS
    default_overlay_percent: float = DEFAULT_OVERLAY_PERCENT
    audio_gain: float = AUDIO_GAIN
    audio_bitrate: int = AUDIO_BITRATE
    media_load_timeout_seconds: float = DEFAULT_MEDIA_LOAD_TIMEOUT_SECONDS
    audio_load_timeout_seconds: float = DEFAULT_AUDIO_LOAD_TIMEOUT_SECONDS
    transcoder_load_timeout_seconds: float = DEFAULT_TRANSCODER_LOAD_TIMEOUT_SECONDS
    transcode_timeout_seconds: float = DEFAULT_TRANSCODE_TIMEOUT_SECONDS
    flush_delay_seconds: float = DEFAULT_FLUSH_DELAY_SECONDS
    realtime: bool = True
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    fonts_dir: str | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "width and height must be positive"
            )
        if self.width % 2 or self.height % 2:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "width and height must be even"
            )
        if self.fps <= 0:
            raise RenderValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if self.transition_seconds <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "transition_seconds must be positive"
            )
        if not 0 <= self.default_overlay_percent <= 100:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "default overlay must be between 0 and 100"
            )
        if self.audio_gain < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "audio gain must be non-negative"
            )
        for label, value in (
            ("media load timeout", self.media_load_timeout_seconds),
            ("audio load timeout", self.audio_load_timeout_seconds),
            ("transcoder load timeout", self.transcoder_load_timeout_seconds),
            ("transcode timeout", self.transcode_timeout_seconds),
        ):
            if value <= 0:
                raise RenderValidationError(
                    INVALID_CONFIG_CODE, f"{label} must be positive"
                )
        if self.flush_delay_seconds < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "flush delay must be non-negative"
            )
        if not self.ffmpeg_path.strip() or not self.ffprobe_path.strip():
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "ffmpeg and ffprobe paths must be non-empty"
            )

    @property
    def frame_interval_seconds(self) -> float:
        """Seconds between scheduled frames."""
        return 1.0 / self.fps


def parse_bool(raw_value: str) -> bool:
    """Parse a boolean from a string."""
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def parse_positive_float(raw_value: str, label: str) -> float:
    """Parse a positive float from a string."""
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, f"{label} must be a number"
        ) from exc
    if value <= 0:
        raise RenderValidationError(INVALID_CONFIG_CODE, f"{label} must be positive")
    return value


def read_env_float(
    env: Mapping[str, str], key: str, label: str, fallback: float
) -> float:
    """Read a positive float from the environment."""
    raw_value = env.get(key, "").strip()
    if not raw_value:
        return fallback
    return parse_positive_float(raw_value, label)


def read_env_text(env: Mapping[str, str], key: str, fallback: str | None) -> str | None:
    """Read a non-empty string from the environment."""
    raw_value = env.get(key, "").strip()
    return raw_value or fallback


def load_export_config(env: Mapping[str, str], **overrides: object) -> ExportConfig:
    """Build an ExportConfig from environment values, then apply explicit overrides."""
    realtime_raw = env.get(REALTIME_ENV, "").strip()
    values: dict[str, object] = {
        "ffmpeg_path": read_env_text(env, FFMPEG_PATH_ENV, "ffmpeg"),
        "ffprobe_path": read_env_text(env, FFPROBE_PATH_ENV, "ffprobe"),
        "fonts_dir": read_env_text(env, FONTS_DIR_ENV, None),
        "media_load_timeout_seconds": read_env_float(
            env,
            MEDIA_LOAD_TIMEOUT_ENV,
            "media-load-timeout-seconds",
            DEFAULT_MEDIA_LOAD_TIMEOUT_SECONDS,
        ),
        "audio_load_timeout_seconds": read_env_float(
            env,
            AUDIO_LOAD_TIMEOUT_ENV,
            "audio-load-timeout-seconds",
            DEFAULT_AUDIO_LOAD_TIMEOUT_SECONDS,
        ),
        "transcoder_load_timeout_seconds": read_env_float(
            env,
            TRANSCODER_LOAD_TIMEOUT_ENV,
            "transcoder-load-timeout-seconds",
            DEFAULT_TRANSCODER_LOAD_TIMEOUT_SECONDS,
        ),
        "transcode_timeout_seconds": read_env_float(
            env,
            TRANSCODE_TIMEOUT_ENV,
            "transcode-timeout-seconds",
            DEFAULT_TRANSCODE_TIMEOUT_SECONDS,
        ),
        "realtime": parse_bool(realtime_raw) if realtime_raw else True,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ExportConfig(**values)  # type: ignore[arg-type]
