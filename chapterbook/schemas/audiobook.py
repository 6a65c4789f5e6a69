from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ChapterMetadataEntry(BaseModel):
    """One entry of the chapterMetadataJson form field."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    original_name: str | None = Field(default=None, alias="originalName")
    title: str | None = None


chapter_metadata_list = TypeAdapter(list[ChapterMetadataEntry])


@dataclass(frozen=True)
class ChapterSource:
    """An uploaded chapter file, referenced read-only by the pipeline."""

    source_path: Path
    title: str
    original_name: str
    sequence_index: int  # Submission order; the only ordering key


@dataclass(frozen=True)
class AudiobookRequest:
    """A validated conversion request.

    chapters is non-empty and ordered by contiguous sequence_index from 0.
    """

    book_title: str
    author: str
    chapters: tuple[ChapterSource, ...]
    cover_art_path: Path | None = None

    @property
    def has_cover_art(self) -> bool:
        return self.cover_art_path is not None
