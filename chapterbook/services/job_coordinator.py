"""
Job coordination for audiobook conversion.

One request is one job, processed in a single pass:

    RECEIVED -> VALIDATED -> PROBED -> TIMELINE_BUILT -> ENCODING -> STREAMING -> DONE

with FAILED reachable from every non-terminal state. The job working
directory is acquired after validation, before any probe, and released on
every exit path: immediately on failure, or by the output delivery once the
stream reaches its terminal event.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from functools import partial
from pathlib import Path
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from chapterbook.exceptions import (
    ChapterCountMismatchError,
    DeliveryError,
    InternalError,
    InvalidFieldValueError,
    MissingRequiredFieldError,
    NoChaptersError,
    ValidationError,
)
from chapterbook.schemas.audiobook import (
    AudiobookRequest,
    ChapterMetadataEntry,
    ChapterSource,
    chapter_metadata_list,
)
from chapterbook.services.delivery import OutputDelivery
from chapterbook.services.engine import Engine, EngineInput
from chapterbook.services.muxer import MuxingOrchestrator
from chapterbook.services.prober import DurationProber
from chapterbook.services.timeline import ChapterTimelineBuilder
from chapterbook.services.workspace import ScopedDir, WorkspaceManager

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PROBED = "probed"
    TIMELINE_BUILT = "timeline_built"
    ENCODING = "encoding"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE = {
    JobState.RECEIVED: JobState.VALIDATED,
    JobState.VALIDATED: JobState.PROBED,
    JobState.PROBED: JobState.TIMELINE_BUILT,
    JobState.TIMELINE_BUILT: JobState.ENCODING,
    JobState.ENCODING: JobState.STREAMING,
    JobState.STREAMING: JobState.DONE,
}
TERMINAL_STATES = frozenset({JobState.DONE, JobState.FAILED})


@dataclass
class ProcessingJob:
    """Bookkeeping for one conversion; owns its working directory."""

    job_id: str = field(default_factory=lambda: uuid4().hex[:12])
    state: JobState = JobState.RECEIVED
    working_dir: Path | None = None
    input_plan: tuple[EngineInput, ...] = ()
    output_path: Path | None = None
    error: BaseException | None = None
    history: list[JobState] = field(default_factory=lambda: [JobState.RECEIVED])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, state: JobState) -> None:
        if self.is_terminal or _NEXT_STATE.get(self.state) is not state:
            raise InternalError(f"Illegal job transition: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        logger.info(f"[JOB {self.job_id}] {state.value}")

    def fail(self, error: BaseException) -> None:
        if self.is_terminal:
            return
        self.error = error
        failed_in = self.state
        self.state = JobState.FAILED
        self.history.append(JobState.FAILED)
        logger.warning(f"[JOB {self.job_id}] failed during {failed_in.value}: {error!r}")


@dataclass(frozen=True)
class UploadedChapter:
    """A chapter file already persisted by the upload layer."""

    path: Path
    filename: str | None = None


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def parse_chapter_metadata(raw: str | Sequence[ChapterMetadataEntry]) -> list[ChapterMetadataEntry]:
    if not isinstance(raw, str):
        return list(raw)
    try:
        return chapter_metadata_list.validate_json(raw)
    except PydanticValidationError as e:
        logger.error(f"Error parsing chapterMetadataJson: {e}")
        raise InvalidFieldValueError(
            "Invalid chapterMetadataJson format.", field="chapterMetadataJson"
        )


def build_request(
    *,
    book_title: str | None,
    author: str | None,
    chapter_metadata: str | Sequence[ChapterMetadataEntry] | None,
    chapter_files: Sequence[UploadedChapter],
    cover_art_path: Path | None = None,
) -> AudiobookRequest:
    """
    Structural validation of the upload layer's output.

    Raises:
        ValidationError: On missing fields, malformed chapter metadata, no
            chapter files, or a file/metadata count mismatch
    """
    missing = []
    if _blank(book_title):
        missing.append("bookTitle")
    if _blank(author):
        missing.append("author")
    if chapter_metadata is None or (isinstance(chapter_metadata, str) and _blank(chapter_metadata)):
        missing.append("chapterMetadataJson")
    if missing:
        raise MissingRequiredFieldError(*missing)

    entries = parse_chapter_metadata(chapter_metadata)
    if not chapter_files:
        raise NoChaptersError()
    if len(chapter_files) != len(entries):
        raise ChapterCountMismatchError(len(chapter_files), len(entries))

    chapters = []
    for i, (upload, entry) in enumerate(zip(chapter_files, entries)):
        title = entry.title.strip() if entry.title and entry.title.strip() else f"Chapter {i + 1}"
        original_name = upload.filename or entry.original_name or f"UnknownFile_{i + 1}"
        chapters.append(
            ChapterSource(
                source_path=upload.path,
                title=title,
                original_name=original_name,
                sequence_index=i,
            )
        )

    return AudiobookRequest(
        book_title=book_title.strip(),
        author=author.strip(),
        chapters=tuple(chapters),
        cover_art_path=cover_art_path,
    )


def check_request(request: AudiobookRequest) -> None:
    """Invariants every request must hold before any resource is allocated."""
    if _blank(request.book_title) or _blank(request.author):
        raise MissingRequiredFieldError("bookTitle" if _blank(request.book_title) else "author")
    if not request.chapters:
        raise NoChaptersError()
    indices = [c.sequence_index for c in request.chapters]
    if indices != list(range(len(indices))):
        raise ValidationError(
            f"Chapter sequence indices must run 0..{len(indices) - 1} in order, got {indices}"
        )


class JobCoordinator:
    """Sequences validation, probing, timeline building, encoding and delivery."""

    def __init__(
        self,
        engine: Engine,
        workspace: WorkspaceManager | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.workspace = workspace or WorkspaceManager()
        self.prober = DurationProber(engine)
        self.orchestrator = MuxingOrchestrator(engine)
        self.today = today

    async def convert(
        self,
        *,
        book_title: str | None,
        author: str | None,
        chapter_metadata: str | Sequence[ChapterMetadataEntry] | None,
        chapter_files: Sequence[UploadedChapter],
        cover_art_path: Path | None = None,
        job: ProcessingJob | None = None,
    ) -> OutputDelivery:
        """Validate raw upload-layer fields, then run the job."""
        job = job or ProcessingJob()
        try:
            request = self.validate(
                book_title=book_title,
                author=author,
                chapter_metadata=chapter_metadata,
                chapter_files=chapter_files,
                cover_art_path=cover_art_path,
            )
        except ValidationError as e:
            job.fail(e)
            raise
        return await self.run(request, job)

    def validate(
        self,
        *,
        book_title: str | None,
        author: str | None,
        chapter_metadata: str | Sequence[ChapterMetadataEntry] | None,
        chapter_files: Sequence[UploadedChapter],
        cover_art_path: Path | None = None,
    ) -> AudiobookRequest:
        request = build_request(
            book_title=book_title,
            author=author,
            chapter_metadata=chapter_metadata,
            chapter_files=chapter_files,
            cover_art_path=cover_art_path,
        )
        check_request(request)
        return request

    async def run(self, request: AudiobookRequest, job: ProcessingJob | None = None) -> OutputDelivery:
        """
        Run a job from validation to a ready-to-stream output.

        Args:
            request: The conversion request
            job: Optional job record to update (a fresh one is created otherwise)

        Returns:
            OutputDelivery whose finish() releases the job directory

        Raises:
            ValidationError: Request breaks structural invariants (nothing allocated)
            ProbeError: A chapter could not be measured (directory released)
            EncodeError: The engine failed (directory released)
        """
        job = job or ProcessingJob()
        try:
            check_request(request)
        except ValidationError as e:
            job.fail(e)
            raise
        job.advance(JobState.VALIDATED)
        logger.info(
            f"[JOB {job.job_id}] Starting conversion of '{request.book_title}' "
            f"({len(request.chapters)} chapters, cover={'yes' if request.has_cover_art else 'no'})"
        )

        scoped = self.workspace.acquire()
        job.working_dir = scoped.path
        try:
            durations_ms = []
            for chapter in request.chapters:
                durations_ms.append(await self.prober.probe(chapter))
            job.advance(JobState.PROBED)

            builder = ChapterTimelineBuilder(
                request.book_title,
                request.author,
                date_stamp=str(self.today().year),
            )
            timeline = builder.build(request.chapters, durations_ms)
            job.advance(JobState.TIMELINE_BUILT)

            invocation = await self.orchestrator.prepare(request, timeline, scoped.path)
            job.input_plan = invocation.inputs
            job.advance(JobState.ENCODING)
            job.output_path = await self.orchestrator.execute(request, invocation, timeline)

            delivery = OutputDelivery(
                job.output_path,
                on_complete=partial(self._delivery_finished, job, scoped),
            )
            job.advance(JobState.STREAMING)
            return delivery
        except BaseException as e:
            job.fail(e)
            await scoped.release_async()
            raise

    def _delivery_finished(
        self,
        job: ProcessingJob,
        scoped: ScopedDir,
        error: BaseException | None,
    ) -> None:
        try:
            if error is None:
                job.advance(JobState.DONE)
            else:
                job.fail(error if isinstance(error, DeliveryError) else DeliveryError(repr(error)))
        finally:
            scoped.release()
