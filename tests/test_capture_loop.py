"""Unit tests for the video capture loop with fake recorder and media."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Tuple

from PIL import Image
import pytest

from domain.slides import Project, Slide
from service.audio_mix import AUDIO_DEGRADED_CODE, AudioMix
from service.capture_loop import ExportState, VideoExporter
from service.compositor import FrameCompositor
from service.config import ExportConfig
from service.ffmpeg_tools import RenderPipelineError
from service.fonts import FontBook
from service.recorder import (
    NATIVE_EXTENSION,
    NATIVE_MIME_TYPE,
    RECORDER_INIT_CODE,
    RECORDER_WRITE_CODE,
    RecordedMedia,
)
from service.transcode import TARGET_MIME_TYPE, Transcoder


class FakeRecorder:
    """Collects frames in memory and returns a fixed container."""

    def __init__(self, fail_on_frame: int | None = None) -> None:
        self.frames: List[bytes] = []
        self.started = False
        self.stopped = False
        self.released = False
        self.fail_on_frame = fail_on_frame
        self.audio: AudioMix | None = None
        self.total_seconds = 0.0

    async def start(self) -> None:
        self.started = True

    async def write_frame(self, frame: Image.Image) -> None:
        if self.fail_on_frame is not None and len(self.frames) == self.fail_on_frame:
            raise RenderPipelineError(RECORDER_WRITE_CODE, "gone")
        self.frames.append(frame.tobytes())

    async def stop(self) -> RecordedMedia:
        self.stopped = True
        return RecordedMedia(
            data=b"webm-bytes",
            mime_type=NATIVE_MIME_TYPE,
            extension=NATIVE_EXTENSION,
            chunk_count=len(self.frames),
        )

    def release(self) -> None:
        self.released = True


class FakeBackground:
    """Solid-color background that counts frame requests."""

    def __init__(self) -> None:
        self.requests = 0
        self.stopped = False
        self.released = False

    async def next_frame(self) -> Image.Image | None:
        self.requests += 1
        return Image.new("RGB", (64, 64), (self.requests % 256, 0, 0))

    def stop(self) -> None:
        self.stopped = True

    def release(self) -> None:
        self.released = True


class FakeClock:
    """Manual clock whose sleep advances time."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


def build_project(music: str | None = None) -> Project:
    """Two slides of one and two seconds."""
    return Project(
        slides=(
            Slide(id="s1", project_id="p", index=0, title="One", duration_seconds=1.0),
            Slide(id="s2", project_id="p", index=1, title="Two", duration_seconds=2.0),
        ),
        background_music_url=music,
    )


def build_exporter(
    recorder: FakeRecorder,
    background: FakeBackground,
    clock: FakeClock,
    transcoder: Transcoder | None = None,
    realtime: bool = True,
) -> VideoExporter:
    """Exporter on a 64x64 canvas at 10 fps with injected fakes."""
    config = ExportConfig(width=64, height=64, fps=10, realtime=realtime)

    def recorder_factory(total_seconds: float, audio: AudioMix | None) -> FakeRecorder:
        recorder.total_seconds = total_seconds
        recorder.audio = audio
        return recorder

    async def open_background(asset) -> FakeBackground:
        return background

    async def load_audio(source: str | None) -> AudioMix | None:
        return AudioMix(source) if source else None

    return VideoExporter(
        config,
        FrameCompositor(64, 64, FontBook()),
        transcoder=transcoder,
        recorder_factory=recorder_factory,
        background_opener=open_background,
        audio_loader=load_audio,
        clock=clock,
        sleep=clock.sleep,
    )


def collect_progress() -> Tuple[List[Tuple[float, str]], object]:
    """Return a list and an observer appending to it."""
    events: List[Tuple[float, str]] = []

    def observer(percent: float, message: str) -> None:
        events.append((percent, message))

    return events, observer


def test_export_records_every_frame() -> None:
    """Every timeline frame is rendered and written once."""
    recorder = FakeRecorder()
    background = FakeBackground()
    clock = FakeClock()
    exporter = build_exporter(recorder, background, clock)
    events, observer = collect_progress()

    result = asyncio.run(exporter.export(build_project(), None, observer))

    assert result.frame_count == 30
    assert len(recorder.frames) == 30
    assert background.requests == 30
    assert result.mime_type == NATIVE_MIME_TYPE
    assert result.extension == NATIVE_EXTENSION
    assert result.fallback is False
    assert recorder.total_seconds == 3.0
    assert exporter.state == ExportState.DONE
    assert background.stopped and background.released and recorder.released

    percents = [percent for percent, _ in events]
    assert percents == sorted(percents)
    assert events[0] == (5, "Initializing video recorder...")
    assert (10, "Recording video...") in events
    assert events[-1] == (100, "Complete!")
    assert any(message == "Recording slide 2/2..." for _, message in events)


def test_realtime_pacing_follows_absolute_schedule() -> None:
    """Frames wait for start + f / fps, then a short flush delay."""
    clock = FakeClock()
    exporter = build_exporter(FakeRecorder(), FakeBackground(), clock)

    asyncio.run(exporter.export(build_project()))

    frame_sleeps = clock.sleeps[:30]
    assert frame_sleeps[0] == 0
    assert all(delay == pytest.approx(0.1) for delay in frame_sleeps[1:])
    assert clock.sleeps[-1] == pytest.approx(0.15)


def test_fast_mode_only_yields() -> None:
    """Without realtime pacing the loop never waits."""
    clock = FakeClock()
    exporter = build_exporter(FakeRecorder(), FakeBackground(), clock, realtime=False)

    asyncio.run(exporter.export(build_project()))

    assert all(delay == 0 for delay in clock.sleeps[:30])


def test_music_reaches_recorder() -> None:
    """A music URL becomes the recorder's audio mix."""
    recorder = FakeRecorder()
    exporter = build_exporter(recorder, FakeBackground(), FakeClock())

    asyncio.run(exporter.export(build_project(music="bed.mp3")))

    assert recorder.audio is not None
    assert recorder.audio.source == "bed.mp3"


def test_transcode_timeout_keeps_native_container() -> None:
    """A timed-out conversion saves the recording and still completes."""

    async def slow_converter(data: bytes, extension: str) -> bytes:
        raise asyncio.TimeoutError()

    transcoder = Transcoder(
        "ffmpeg",
        capability_check=lambda ffmpeg_path, encoders: None,
        converter=slow_converter,
    )
    exporter = build_exporter(
        FakeRecorder(), FakeBackground(), FakeClock(), transcoder=transcoder
    )
    events, observer = collect_progress()

    result = asyncio.run(exporter.export(build_project(), None, observer))

    assert result.mime_type == NATIVE_MIME_TYPE
    assert result.fallback is True
    assert result.data == b"webm-bytes"
    assert (96, "Converting to MP4...") in events
    assert events[-1] == (100, "Complete! Saved as WEBM (conversion failed)")


def test_transcode_success_returns_mp4() -> None:
    """A successful conversion replaces the container."""

    async def converter(data: bytes, extension: str) -> bytes:
        assert extension == NATIVE_EXTENSION
        return b"mp4:" + data

    transcoder = Transcoder(
        "ffmpeg",
        capability_check=lambda ffmpeg_path, encoders: None,
        converter=converter,
    )
    exporter = build_exporter(
        FakeRecorder(), FakeBackground(), FakeClock(), transcoder=transcoder
    )

    result = asyncio.run(exporter.export(build_project()))

    assert result.mime_type == TARGET_MIME_TYPE
    assert result.extension == "mp4"
    assert result.data == b"mp4:webm-bytes"


def test_failure_releases_resources() -> None:
    """A recorder failure propagates after releasing everything."""
    recorder = FakeRecorder(fail_on_frame=5)
    background = FakeBackground()
    exporter = build_exporter(recorder, background, FakeClock())

    with pytest.raises(RenderPipelineError):
        asyncio.run(exporter.export(build_project()))

    assert exporter.state == ExportState.FAILED
    assert recorder.released
    assert background.released
    assert not recorder.stopped


class TickingClock(FakeClock):
    """Clock that moves forward on every read, as if each frame were slow."""

    def __init__(self, step: float) -> None:
        super().__init__()
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


def test_behind_schedule_yields_without_catching_up() -> None:
    """A slow loop yields once per frame and never bursts or skips frames."""
    clock = TickingClock(step=0.25)
    recorder = FakeRecorder()
    exporter = build_exporter(recorder, FakeBackground(), clock)

    asyncio.run(exporter.export(build_project()))

    assert clock.sleeps[:30] == [0] * 30
    assert len(recorder.frames) == 30
    assert clock.sleeps[-1] == pytest.approx(0.15)


class AudioSensitiveRecorder(FakeRecorder):
    """Recorder that breaks when an audio input is attached."""

    def __init__(self, audio: AudioMix | None, fail_on: str) -> None:
        super().__init__()
        self.audio = audio
        self.fail_on = fail_on

    async def start(self) -> None:
        if self.audio is not None and self.fail_on == "start":
            raise RenderPipelineError(
                RECORDER_INIT_CODE, "audio input could not be opened"
            )
        await super().start()

    async def write_frame(self, frame: Image.Image) -> None:
        if self.audio is not None and self.fail_on == "write":
            raise RenderPipelineError(RECORDER_WRITE_CODE, "encoder exited")
        await super().write_frame(frame)


def export_with_broken_audio(
    fail_on: str,
) -> Tuple[VideoExporter, List[AudioSensitiveRecorder], object]:
    """Export a project with music through recorders that reject audio."""
    recorders: List[AudioSensitiveRecorder] = []
    clock = FakeClock()

    def recorder_factory(
        total_seconds: float, audio: AudioMix | None
    ) -> AudioSensitiveRecorder:
        recorder = AudioSensitiveRecorder(audio, fail_on)
        recorders.append(recorder)
        return recorder

    async def open_background(asset) -> FakeBackground:
        return FakeBackground()

    async def load_audio(source: str | None) -> AudioMix | None:
        return AudioMix(source) if source else None

    exporter = VideoExporter(
        ExportConfig(width=64, height=64, fps=10),
        FrameCompositor(64, 64, FontBook()),
        recorder_factory=recorder_factory,
        background_opener=open_background,
        audio_loader=load_audio,
        clock=clock,
        sleep=clock.sleep,
    )
    result = asyncio.run(exporter.export(build_project(music="bed.mp3")))
    return exporter, recorders, result


@pytest.mark.parametrize("fail_on", ["start", "write"])
def test_broken_audio_records_silent_video(
    fail_on: str, caplog: pytest.LogCaptureFixture
) -> None:
    """An encoder that fails with the music attached is rebuilt without it."""
    with caplog.at_level(logging.WARNING, logger="render_slide_video"):
        exporter, recorders, result = export_with_broken_audio(fail_on)

    assert exporter.state == ExportState.DONE
    assert len(recorders) == 2
    assert recorders[0].audio is not None
    assert recorders[0].released
    assert recorders[1].audio is None
    assert len(recorders[1].frames) == 30
    assert result.data == b"webm-bytes"
    assert result.frame_count == 30
    assert AUDIO_DEGRADED_CODE in caplog.text


def test_silent_recorder_failure_still_propagates() -> None:
    """Without audio a recorder init failure is fatal."""

    class BrokenRecorder(FakeRecorder):
        async def start(self) -> None:
            raise RenderPipelineError(RECORDER_INIT_CODE, "no encoder")

    recorder = BrokenRecorder()
    exporter = build_exporter(recorder, FakeBackground(), FakeClock())

    with pytest.raises(RenderPipelineError):
        asyncio.run(exporter.export(build_project()))

    assert exporter.state == ExportState.FAILED
    assert recorder.released
