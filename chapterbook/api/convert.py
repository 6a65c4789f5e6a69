"""Audiobook conversion endpoint: multipart upload in, streamed .m4b out."""

import asyncio
import logging
import shutil
from pathlib import Path

from fastapi import APIRouter, File, Form, UploadFile
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from chapterbook.api.deps import Coordinator
from chapterbook.config import get_settings
from chapterbook.exceptions import InvalidCoverArtError, InvalidFieldValueError
from chapterbook.services.delivery import OutputDelivery
from chapterbook.services.job_coordinator import UploadedChapter

settings = get_settings()
router = APIRouter()
logger = logging.getLogger(__name__)

_MB = 1024 * 1024


class AudiobookStreamingResponse(StreamingResponse):
    """Streams an OutputDelivery and reports the stream's terminal event back to it.

    finish() runs from a finally block around the whole ASGI exchange, so the
    job directory is released whether the body was fully sent, the read
    failed, or the client went away.
    """

    def __init__(self, delivery: OutputDelivery):
        super().__init__(
            delivery.stream(),
            media_type=delivery.media_type,
            headers=delivery.headers,
        )
        self.delivery = delivery

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        error: BaseException | None = None
        try:
            await super().__call__(scope, receive, send)
        except BaseException as e:
            error = e
            raise
        finally:
            self.delivery.finish(error)


def _safe_name(filename: str | None, fallback: str) -> str:
    name = Path(filename or "").name.strip()
    return name or fallback


def _copy_upload(upload: UploadFile, target: Path) -> int:
    upload.file.seek(0)
    with open(target, "wb") as f:
        shutil.copyfileobj(upload.file, f)
    return target.stat().st_size


def _declared_too_large(upload: UploadFile, limit_mb: int) -> bool:
    return upload.size is not None and upload.size > limit_mb * _MB


async def _stage_chapter(upload: UploadFile, staging_dir: Path, index: int) -> UploadedChapter:
    limit_mb = settings.max_upload_size_mb
    too_large = InvalidFieldValueError(
        f"Chapter file {upload.filename or index + 1} exceeds {limit_mb}MB",
        field="chapterFiles",
    )
    # Reject on the parser-reported size before writing a second copy
    if _declared_too_large(upload, limit_mb):
        raise too_large
    target = staging_dir / f"{index:03d}_{_safe_name(upload.filename, f'chapter_{index + 1}')}"
    size = await asyncio.to_thread(_copy_upload, upload, target)
    if size > limit_mb * _MB:
        raise too_large
    return UploadedChapter(path=target, filename=upload.filename or None)


def _has_cover(cover_art: UploadFile | None) -> bool:
    return cover_art is not None and bool(cover_art.filename)


async def _stage_cover(cover_art: UploadFile, staging_dir: Path) -> Path:
    if cover_art.content_type not in settings.allowed_image_types:
        raise InvalidCoverArtError(
            "Only .jpg, .jpeg, .png, .webp formats are accepted for cover art."
        )
    if _declared_too_large(cover_art, settings.max_cover_art_size_mb):
        raise InvalidCoverArtError(f"Max file size is {settings.max_cover_art_size_mb}MB.")
    suffix = Path(cover_art.filename or "").suffix.lower()
    target = staging_dir / f"cover_upload{suffix}"
    size = await asyncio.to_thread(_copy_upload, cover_art, target)
    if size > settings.max_cover_art_size_mb * _MB:
        raise InvalidCoverArtError(f"Max file size is {settings.max_cover_art_size_mb}MB.")
    return target


@router.post("/convert")
async def convert_audiobook(
    coordinator: Coordinator,
    book_title: str | None = Form(None, alias="bookTitle"),
    author: str | None = Form(None),
    chapter_metadata_json: str | None = Form(None, alias="chapterMetadataJson"),
    chapter_files: list[UploadFile] | None = File(None, alias="chapterFiles"),
    cover_art: UploadFile | None = File(None, alias="coverArt"),
) -> AudiobookStreamingResponse:
    """
    Convert uploaded chapter files into one chaptered .m4b.

    Chapter files are taken in upload order; chapterMetadataJson holds one
    {originalName, title} entry per file in the same order. The response body
    is the audiobook itself, or a JSON error envelope if anything fails before
    streaming starts.
    """
    chapter_files = chapter_files or []
    logger.info(
        f"Conversion request: title={book_title!r}, chapters={len(chapter_files)}, "
        f"cover={'present' if _has_cover(cover_art) else 'absent'}"
    )

    async with coordinator.workspace.staging_scope() as staging:
        cover_path = None
        if _has_cover(cover_art):
            cover_path = await _stage_cover(cover_art, staging.path)
        uploads = [
            await _stage_chapter(upload, staging.path, i)
            for i, upload in enumerate(chapter_files)
        ]

        delivery = await coordinator.convert(
            book_title=book_title,
            author=author,
            chapter_metadata=chapter_metadata_json,
            chapter_files=uploads,
            cover_art_path=cover_path,
        )

    try:
        return AudiobookStreamingResponse(delivery)
    except BaseException as e:
        delivery.finish(e)
        raise
