"""Fixed-rate capture loop driving the compositor, recorder and transcoder."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Awaitable, Callable

from domain.slides import Asset, Project
from service.audio_mix import AudioMix, build_audio_mix, log_audio_degraded
from service.compositor import FrameCompositor
from service.config import ExportConfig
from service.ffmpeg_tools import RenderPipelineError
from service.media import BackgroundSource, open_background
from service.progress import ProgressCallback, ProgressReporter
from service.recorder import ContainerRecorder, Recorder, select_video_bitrate
from service.timeline import SlideTimeline
from service.transcode import Transcoder

LOGGER = logging.getLogger("render_slide_video")

EXPORT_FAILED_CODE = "render_slide_video.export.failed"

RecorderFactory = Callable[[float, AudioMix | None], Recorder]
BackgroundOpener = Callable[[Asset | None], Awaitable[BackgroundSource]]
AudioLoader = Callable[[str | None], Awaitable[AudioMix | None]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class ExportState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class VideoExportResult:
    """Exported video plus its effective container type."""

    data: bytes
    mime_type: str
    extension: str
    fallback: bool
    frame_count: int
    reason: str | None = None


class VideoExporter:
    """Walks the slide timeline at a fixed frame rate and records every frame.

    Frame f is scheduled at start + f / fps. When the loop is behind it
    yields once and carries on; it never drift-corrects backward.
    """

    def __init__(
        self,
        config: ExportConfig,
        compositor: FrameCompositor,
        transcoder: Transcoder | None = None,
        recorder_factory: RecorderFactory | None = None,
        background_opener: BackgroundOpener | None = None,
        audio_loader: AudioLoader | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.compositor = compositor
        self.transcoder = transcoder
        self._recorder_factory = recorder_factory or self._default_recorder
        self._background_opener = background_opener or self._default_background
        self._audio_loader = audio_loader or self._default_audio
        self._clock = clock
        self._sleep = sleep
        self.state = ExportState.IDLE

    def _default_recorder(
        self, total_seconds: float, audio: AudioMix | None
    ) -> Recorder:
        return ContainerRecorder(
            ffmpeg_path=self.config.ffmpeg_path,
            width=self.config.width,
            height=self.config.height,
            fps=self.config.fps,
            video_bitrate=select_video_bitrate(total_seconds),
            audio_bitrate=self.config.audio_bitrate,
            audio=audio,
        )

    async def _default_background(self, asset: Asset | None) -> BackgroundSource:
        return await open_background(
            asset,
            self.config.width,
            self.config.height,
            self.config.fps,
            self.config.ffmpeg_path,
            self.config.media_load_timeout_seconds,
        )

    async def _default_audio(self, source: str | None) -> AudioMix | None:
        return await build_audio_mix(
            source,
            self.config.ffprobe_path,
            self.config.audio_load_timeout_seconds,
            self.config.audio_gain,
            ffmpeg_path=self.config.ffmpeg_path,
        )

    async def _start_recorder(
        self, total_seconds: float, audio: AudioMix | None
    ) -> Recorder:
        """Start a recorder; a failure caused by the audio input retries silently."""
        recorder = self._recorder_factory(total_seconds, audio)
        try:
            await recorder.start()
        except RenderPipelineError as exc:
            recorder.release()
            if audio is None:
                raise
            log_audio_degraded(str(exc).strip())
            return await self._start_recorder(total_seconds, None)
        return recorder

    async def _wait_for_frame(self, start_time: float, frame_index: int) -> None:
        if not self.config.realtime:
            await self._sleep(0)
            return
        target_time = start_time + frame_index * self.config.frame_interval_seconds
        delay = target_time - self._clock()
        await self._sleep(delay if delay > 0 else 0)

    async def export(
        self,
        project: Project,
        background_asset: Asset | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> VideoExportResult:
        """Render the project to a video; resources are released on every path."""
        progress = ProgressReporter(on_progress)
        timeline = SlideTimeline.from_slides(
            project.slides, self.config.fps, self.config.transition_seconds
        )
        total_frames = timeline.total_frames
        slide_count = len(project.slides)
        background: BackgroundSource | None = None
        recorder: Recorder | None = None

        self.state = ExportState.LOADING
        progress.report(5, "Initializing video recorder...")
        try:
            background = await self._background_opener(background_asset)
            audio = await self._audio_loader(project.background_music_url)
            recorder = await self._start_recorder(timeline.total_seconds, audio)
            surface = self.compositor.new_surface()

            self.state = ExportState.RECORDING
            progress.report(10, "Recording video...")
            start_time = self._clock()
            for frame_index in range(total_frames):
                await self._wait_for_frame(start_time, frame_index)
                selection = timeline.select_frame(frame_index)
                self.compositor.render(
                    surface,
                    project.slides[selection.slide_index],
                    await background.next_frame(),
                    selection.transition_progress,
                    project.global_overlay,
                    selection.slide_elapsed_seconds,
                )
                try:
                    await recorder.write_frame(surface)
                except RenderPipelineError as exc:
                    # A bad audio input kills the encoder right after start;
                    # it surfaces on the first frame write.
                    if frame_index > 0 or audio is None:
                        raise
                    recorder.release()
                    recorder = None
                    audio = None
                    log_audio_degraded(str(exc).strip())
                    recorder = await self._start_recorder(timeline.total_seconds, None)
                    await recorder.write_frame(surface)
                if frame_index % timeline.progress_interval_frames == 0:
                    progress.report(
                        timeline.progress_percent(selection.elapsed_seconds),
                        f"Recording slide {selection.slide_index + 1}/{slide_count}...",
                    )

            self.state = ExportState.FINALIZING
            progress.report(95, "Finalizing video...")
            background.stop()
            await self._sleep(self.config.flush_delay_seconds)
            recorded = await recorder.stop()

            if self.transcoder is None:
                result = VideoExportResult(
                    data=recorded.data,
                    mime_type=recorded.mime_type,
                    extension=recorded.extension,
                    fallback=False,
                    frame_count=total_frames,
                )
            else:
                progress.report(96, "Converting to MP4...")
                converted = await self.transcoder.transcode(recorded)
                result = VideoExportResult(
                    data=converted.data,
                    mime_type=converted.mime_type,
                    extension=converted.extension,
                    fallback=converted.fallback,
                    frame_count=total_frames,
                    reason=converted.reason,
                )

            self.state = ExportState.DONE
            if result.fallback:
                progress.report(
                    100,
                    f"Complete! Saved as {result.extension.upper()} (conversion failed)",
                )
            else:
                progress.report(100, "Complete!")
            return result
        except Exception as exc:
            self.state = ExportState.FAILED
            LOGGER.debug("%s: %s", EXPORT_FAILED_CODE, str(exc).strip())
            raise
        finally:
            if recorder is not None:
                recorder.release()
            if background is not None:
                background.release()
            self.compositor.release()
