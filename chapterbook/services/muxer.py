"""
Muxing orchestration: turns a validated request plus its chapter timeline into
one ffmpeg invocation producing a chaptered .m4b.

Input registration order is load-bearing. Audio chapters take indices
0..n-1, the cover copy (if any) takes n, and the metadata document comes
last; the concat filter and every -map directive address inputs by those
indices.
"""

import asyncio
import logging
import re
import shutil
from pathlib import Path

from chapterbook.config import get_settings
from chapterbook.exceptions import EncodeError
from chapterbook.schemas.audiobook import AudiobookRequest
from chapterbook.services.engine import (
    Engine,
    EngineError,
    EngineInput,
    EngineInvocation,
    InputRole,
)
from chapterbook.services.timeline import ChapterTimeline
from chapterbook.utils.redaction import redact_paths, tail

logger = logging.getLogger(__name__)

METADATA_FILENAME = "ffmpeg_metadata.txt"
CONCAT_OUTPUT_LABEL = "a_out"

_FILENAME_SEPARATORS = re.compile(r"[\s:/\\]+")


def output_filename(book_title: str) -> str:
    """Derive the download filename: whitespace, colon and slash runs become underscores."""
    settings = get_settings()
    stem = _FILENAME_SEPARATORS.sub("_", book_title)
    return f"{stem}{settings.output_suffix}{settings.output_extension}"


def plan_inputs(
    request: AudiobookRequest,
    metadata_path: Path,
    cover_path: Path | None = None,
) -> tuple[EngineInput, ...]:
    """Assign engine input indices: chapters, then cover, then metadata."""
    inputs: list[EngineInput] = []
    for chapter in sorted(request.chapters, key=lambda c: c.sequence_index):
        inputs.append(EngineInput(len(inputs), InputRole.AUDIO, chapter.source_path))
    if cover_path is not None:
        inputs.append(EngineInput(len(inputs), InputRole.COVER, cover_path))
    inputs.append(
        EngineInput(len(inputs), InputRole.METADATA, metadata_path, options=("-f", "ffmetadata"))
    )
    return tuple(inputs)


def build_concat_filter(audio_inputs: tuple[EngineInput, ...]) -> str:
    """Concatenate the audio inputs in registration order into [a_out]."""
    if not audio_inputs:
        raise ValueError("At least one audio input is required")
    streams = "".join(f"[{i.input_index}:a]" for i in audio_inputs)
    return f"{streams}concat=n={len(audio_inputs)}:v=0:a=1[{CONCAT_OUTPUT_LABEL}]"


def build_output_options(inputs: tuple[EngineInput, ...]) -> tuple[str, ...]:
    settings = get_settings()
    options = [
        "-map", f"[{CONCAT_OUTPUT_LABEL}]",
        "-c:a", settings.audio_codec,
        "-b:a", settings.audio_bitrate,
    ]

    covers = [i for i in inputs if i.role == InputRole.COVER]
    if covers:
        options += [
            "-map", f"{covers[0].input_index}:v?",
            "-c:v", "copy",  # Keep the image as-is, never transcode to a video codec
            "-disposition:v", "attached_pic",
        ]

    metadata_index = next(i.input_index for i in inputs if i.role == InputRole.METADATA)
    options += [
        "-map_metadata", str(metadata_index),
        "-map_chapters", str(metadata_index),
        "-movflags", "+faststart",
    ]
    return tuple(options)


def build_invocation(inputs: tuple[EngineInput, ...], output_path: Path) -> EngineInvocation:
    audio_inputs = tuple(i for i in inputs if i.role == InputRole.AUDIO)
    return EngineInvocation(
        inputs=inputs,
        filter_complex=build_concat_filter(audio_inputs),
        output_options=build_output_options(inputs),
        output_path=output_path,
    )


class MuxingOrchestrator:
    """Assembles chapters, cover and metadata into one audiobook container."""

    def __init__(self, engine: Engine):
        self.engine = engine

    async def prepare(
        self,
        request: AudiobookRequest,
        timeline: ChapterTimeline,
        working_dir: Path,
    ) -> EngineInvocation:
        """Write job artifacts into working_dir and return the invocation."""
        cover_path: Path | None = None
        if request.cover_art_path is not None:
            # Own a stable copy; the caller's upload may disappear mid-job
            cover_path = working_dir / f"cover{request.cover_art_path.suffix.lower()}"
            await asyncio.to_thread(shutil.copyfile, request.cover_art_path, cover_path)

        metadata_path = await asyncio.to_thread(timeline.write, working_dir / METADATA_FILENAME)

        inputs = plan_inputs(request, metadata_path, cover_path)
        output_path = working_dir / output_filename(request.book_title)
        return build_invocation(inputs, output_path)

    async def mux(
        self,
        request: AudiobookRequest,
        timeline: ChapterTimeline,
        working_dir: Path,
    ) -> Path:
        """
        Produce the audiobook file inside working_dir.

        Args:
            request: Validated request (chapters in sequence order)
            timeline: Chapter timeline and metadata document for the request
            working_dir: Job-owned directory for the cover copy, metadata
                document and output

        Returns:
            Path to the produced .m4b

        Raises:
            EncodeError: If the engine fails. The diagnostic text has host
                paths replaced by display names.
        """
        invocation = await self.prepare(request, timeline, working_dir)
        return await self.execute(request, invocation, timeline)

    async def execute(
        self,
        request: AudiobookRequest,
        invocation: EngineInvocation,
        timeline: ChapterTimeline,
    ) -> Path:
        """Run a prepared invocation, translating engine failures into EncodeError."""
        working_dir = invocation.output_path.parent
        logger.info(
            f"Muxing {len(request.chapters)} chapters "
            f"({timeline.total_duration_ms}ms, cover={'yes' if request.has_cover_art else 'no'})"
        )

        try:
            await self.engine.mux(invocation)
        except EngineError as e:
            scrub: dict[str | Path, str] = {working_dir: "<workdir>"}
            for chapter in request.chapters:
                scrub[chapter.source_path] = chapter.original_name
            if request.cover_art_path is not None:
                scrub[request.cover_art_path] = "<cover>"
            detail = tail(e.stderr) if e.stderr.strip() else str(e)
            message = "Audiobook encoding timed out" if e.timed_out else f"ffmpeg error: {e}"
            raise EncodeError(
                redact_paths(message, scrub),
                details=redact_paths(detail, scrub),
            ) from e

        return invocation.output_path
