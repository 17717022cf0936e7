"""Multi-language batch export into one ZIP with a folder per item."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import io
import json
import logging
from typing import Awaitable, Callable, Sequence, Tuple
import zipfile

from domain.slides import Asset, MediaKind, Project, Slide, slide_to_payload
from service.capture_loop import VideoExportResult
from service.progress import ProgressCallback, ProgressReporter

LOGGER = logging.getLogger("render_slide_video")

BATCH_ITEM_FAILED_CODE = "render_slide_video.batch.item_failed"
DEFAULT_LANGUAGE = "Default"
LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Russian",
    "uk": "Ukrainian",
    "es": "Spanish",
    "de": "German",
    "fr": "French",
    "it": "Italian",
    "pt": "Portuguese",
    "pl": "Polish",
    "tr": "Turkish",
    "ar": "Arabic",
    "hi": "Hindi",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
}


class BatchFormat(str, Enum):
    VIDEO = "video"
    CAROUSEL = "carousel"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class BatchItem:
    """One (language, format) export."""

    language: str
    format: BatchFormat
    project: Project
    background: Asset | None = None
    caption: str | None = None

    @property
    def folder_name(self) -> str:
        language_name = LANGUAGE_NAMES.get(self.language.lower(), self.language)
        return f"{language_name}_{self.format.display_name}".replace(" ", "_")


@dataclass(frozen=True)
class BatchItemOutcome:
    folder_name: str
    succeeded: bool
    error: str | None = None


@dataclass(frozen=True)
class BatchExportResult:
    data: bytes
    outcomes: Tuple[BatchItemOutcome, ...]


VideoExportFn = Callable[
    [Project, Asset | None, ProgressCallback], Awaitable[VideoExportResult]
]
PhotoExportFn = Callable[[Project, Asset | None, ProgressCallback], bytes]


def group_slides_by_language(slides: Sequence[Slide]) -> dict[str, list[Slide]]:
    """Group slides by language, keeping first-seen order."""
    groups: dict[str, list[Slide]] = {}
    for slide in slides:
        groups.setdefault(slide.language or DEFAULT_LANGUAGE, []).append(slide)
    return groups


def select_background(
    slides: Sequence[Slide], assets: Sequence[Asset], batch_format: BatchFormat
) -> Asset | None:
    """The first slide's asset, else the first asset of the format's media kind."""
    first_asset_id = slides[0].asset_id if slides else None
    if first_asset_id:
        for asset in assets:
            if asset.id == first_asset_id:
                return asset
    wanted_kind = (
        MediaKind.VIDEO if batch_format == BatchFormat.VIDEO else MediaKind.IMAGE
    )
    for asset in assets:
        if asset.kind == wanted_kind:
            return asset
    return None


def build_batch_items(
    project: Project,
    assets: Sequence[Asset],
    formats: Sequence[BatchFormat],
    caption: str | None = None,
) -> Tuple[BatchItem, ...]:
    """One item per language group and requested format."""
    items: list[BatchItem] = []
    for language, slides in group_slides_by_language(project.slides).items():
        group_project = Project(
            slides=tuple(slides),
            global_overlay=project.global_overlay,
            background_music_url=project.background_music_url,
            id=project.id,
            name=project.name,
        )
        for batch_format in formats:
            items.append(
                BatchItem(
                    language=language,
                    format=batch_format,
                    project=group_project,
                    background=select_background(slides, assets, batch_format),
                    caption=caption,
                )
            )
    return tuple(items)


def write_failure_files(
    archive: zipfile.ZipFile, item: BatchItem, error: Exception
) -> None:
    folder = item.folder_name
    slides_payload = [slide_to_payload(slide) for slide in item.project.slides]
    archive.writestr(
        f"{folder}/slides.json",
        json.dumps(slides_payload, ensure_ascii=False, indent=2),
    )
    label = "Video" if item.format == BatchFormat.VIDEO else "Photo"
    archive.writestr(
        f"{folder}/export_error.txt",
        f"{label} export failed: {str(error).strip() or type(error).__name__}",
    )


async def export_batch_item(
    archive: zipfile.ZipFile,
    item: BatchItem,
    video_export: VideoExportFn,
    photo_export: PhotoExportFn,
    on_progress: ProgressCallback,
) -> None:
    folder = item.folder_name
    if item.format == BatchFormat.VIDEO:
        result = await video_export(item.project, item.background, on_progress)
        archive.writestr(f"{folder}/video.{result.extension}", result.data)
        return
    photos = photo_export(item.project, item.background, on_progress)
    with zipfile.ZipFile(io.BytesIO(photos)) as inner_archive:
        for info in inner_archive.infolist():
            if not info.is_dir():
                archive.writestr(f"{folder}/{info.filename}", inner_archive.read(info))


async def export_batch(
    items: Sequence[BatchItem],
    video_export: VideoExportFn,
    photo_export: PhotoExportFn,
    on_progress: ProgressCallback | None = None,
) -> BatchExportResult:
    """Export every item into its own folder; a failing item never stops the rest."""
    progress = ProgressReporter(on_progress)
    outcomes: list[BatchItemOutcome] = []
    buffer = io.BytesIO()
    item_count = max(1, len(items))
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for item_index, item in enumerate(items):
            folder = item.folder_name

            def report_item(
                percent: float,
                message: str,
                item_index: int = item_index,
                folder: str = folder,
            ) -> None:
                progress.report(
                    (item_index + percent / 100.0) / item_count * 100.0,
                    f"{folder}: {message}",
                )

            report_item(0.0, "starting")
            try:
                await export_batch_item(
                    archive, item, video_export, photo_export, report_item
                )
            except Exception as exc:
                LOGGER.warning(
                    "%s: %s: %s", BATCH_ITEM_FAILED_CODE, folder, str(exc).strip()
                )
                write_failure_files(archive, item, exc)
                outcomes.append(BatchItemOutcome(folder, False, str(exc).strip()))
            else:
                outcomes.append(BatchItemOutcome(folder, True))

            if item.project.background_music_url:
                archive.writestr(
                    f"{folder}/music_url.txt", item.project.background_music_url
                )
            if item.caption:
                archive.writestr(f"{folder}/caption.txt", item.caption)

    progress.report(100, "Complete!")
    return BatchExportResult(data=buffer.getvalue(), outcomes=tuple(outcomes))
