"""Chapter duration probing."""

import logging
import math

from chapterbook.exceptions import ProbeError
from chapterbook.schemas.audiobook import ChapterSource
from chapterbook.services.engine import Engine, EngineError
from chapterbook.utils.redaction import redact_paths, tail

logger = logging.getLogger(__name__)


def seconds_to_ms(duration_s: float) -> int:
    """Round a duration in seconds to the nearest millisecond (halves round up)."""
    return int(math.floor(duration_s * 1000 + 0.5))


class DurationProber:
    """Measures chapter durations through the engine's probe operation."""

    def __init__(self, engine: Engine):
        self.engine = engine

    async def probe(self, chapter: ChapterSource) -> int:
        """
        Get a chapter's duration in milliseconds.

        Args:
            chapter: Chapter whose source file should be measured

        Returns:
            Duration in milliseconds. A probe that reports no duration counts
            as a zero-length chapter.

        Raises:
            ProbeError: If the file is missing, empty, unreadable or has no
                audio stream. The error names the chapter's original file
                name, never its path on this host.
        """
        path = chapter.source_path
        scrub = {path: chapter.original_name}

        try:
            size = path.stat().st_size
        except OSError:
            raise ProbeError(
                chapter.original_name,
                details="File is missing or unreadable",
                index=chapter.sequence_index,
            )
        if size == 0:
            raise ProbeError(
                chapter.original_name,
                details="File is empty",
                index=chapter.sequence_index,
            )

        try:
            result = await self.engine.probe(path)
        except EngineError as e:
            logger.error(f"Error probing file {chapter.original_name} ({path}): {e} {e.stderr}")
            detail = tail(f"{e}. {e.stderr}" if e.stderr.strip() else str(e))
            raise ProbeError(
                chapter.original_name,
                details=redact_paths(detail, scrub),
                index=chapter.sequence_index,
            ) from e

        if not result.has_audio:
            raise ProbeError(
                chapter.original_name,
                details="No audio stream found",
                index=chapter.sequence_index,
            )

        duration_ms = seconds_to_ms(result.duration_s) if result.duration_s else 0
        logger.debug(f"Probed {chapter.original_name}: {duration_ms}ms")
        return duration_ms
