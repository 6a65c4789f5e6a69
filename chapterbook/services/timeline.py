"""
Chapter timeline and FFMETADATA1 document construction.

The document layout follows what ffmpeg's ffmetadata demuxer expects:
global tags first, then one [CHAPTER] block per chapter with a
millisecond time base.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from chapterbook.config import get_settings
from chapterbook.schemas.audiobook import ChapterSource

METADATA_HEADER = ";FFMETADATA1"
CHAPTER_TIMEBASE = "1/1000"


@dataclass(frozen=True)
class ChapterTimestamp:
    start_ms: int
    end_ms: int
    title: str

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


@dataclass(frozen=True)
class ChapterTimeline:
    timestamps: tuple[ChapterTimestamp, ...]
    document: str

    @property
    def total_duration_ms(self) -> int:
        return self.timestamps[-1].end_ms if self.timestamps else 0

    def write(self, path: Path) -> Path:
        path.write_text(self.document, encoding="utf-8")
        return path


def escape_metadata_value(value: str) -> str:
    """Escape characters that are special in ffmetadata values."""
    escaped = str(value).replace("\\", "\\\\")
    for ch in ("=", ";", "#"):
        escaped = escaped.replace(ch, f"\\{ch}")
    return escaped.replace("\n", "\\\n")


def accumulate_timestamps(
    chapters: Sequence[ChapterSource],
    durations_ms: Sequence[int],
) -> list[ChapterTimestamp]:
    """Lay chapters end to end, starting at 0, in sequence_index order."""
    if len(chapters) != len(durations_ms):
        raise ValueError(
            f"Got {len(durations_ms)} durations for {len(chapters)} chapters"
        )

    ordered = sorted(zip(chapters, durations_ms), key=lambda pair: pair[0].sequence_index)
    timestamps: list[ChapterTimestamp] = []
    cursor_ms = 0
    for chapter, duration_ms in ordered:
        if duration_ms < 0:
            raise ValueError(f"Negative duration for chapter {chapter.original_name}")
        timestamps.append(
            ChapterTimestamp(
                start_ms=cursor_ms,
                end_ms=cursor_ms + duration_ms,
                title=chapter.title,
            )
        )
        cursor_ms += duration_ms
    return timestamps


class ChapterTimelineBuilder:
    """Builds the chapter timeline and its metadata document for one book.

    date_stamp is fixed at construction so repeated builds from the same
    inputs produce byte-identical documents.
    """

    def __init__(
        self,
        book_title: str,
        author: str,
        date_stamp: str | None = None,
        genre: str | None = None,
    ):
        self.book_title = book_title
        self.author = author
        self.date_stamp = date_stamp or str(date.today().year)
        self.genre = genre or get_settings().genre

    def render_document(self, timestamps: Sequence[ChapterTimestamp]) -> str:
        lines = [
            METADATA_HEADER,
            f"title={escape_metadata_value(self.book_title)}",
            f"artist={escape_metadata_value(self.author)}",
            f"album={escape_metadata_value(self.book_title)}",  # Album is the book for audiobooks
            f"genre={escape_metadata_value(self.genre)}",
            f"date={escape_metadata_value(self.date_stamp)}",
            "",
        ]
        for mark in timestamps:
            lines += [
                "[CHAPTER]",
                f"TIMEBASE={CHAPTER_TIMEBASE}",
                f"START={mark.start_ms}",
                f"END={mark.end_ms}",
                f"title={escape_metadata_value(mark.title)}",
                "",
            ]
        return "\n".join(lines) + "\n"

    def build(
        self,
        chapters: Sequence[ChapterSource],
        durations_ms: Sequence[int],
    ) -> ChapterTimeline:
        timestamps = accumulate_timestamps(chapters, durations_ms)
        return ChapterTimeline(
            timestamps=tuple(timestamps),
            document=self.render_document(timestamps),
        )
