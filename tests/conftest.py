"""
Pytest fixtures for chapterbook tests.

Most tests run against FakeEngine, an in-process stand-in for ffmpeg that
reports configurable durations and records every invocation it receives.

CI/CD Note:
Tests that need real ffmpeg/ffprobe binaries are marked with
@pytest.mark.requires_ffmpeg and skipped when the binaries are not on PATH.
"""

import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from chapterbook.schemas.audiobook import AudiobookRequest, ChapterSource
from chapterbook.services.engine import EngineError, EngineInvocation, InputRole, ProbeResult


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg and ffprobe on PATH (skipped otherwise)"
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not available"
)


class FakeEngine:
    """Engine double: probes return scripted durations, mux writes a fixed payload.

    durations are consumed in probe order (seconds, default 1.0). probe_errors
    and no_audio are keyed by probe call index. mux_error is either an
    exception or a callable building one from the invocation.
    """

    def __init__(
        self,
        durations: Sequence[float | None] = (),
        probe_errors: dict[int, Exception] | None = None,
        no_audio: Sequence[int] = (),
        mux_error: Exception | Callable[[EngineInvocation], Exception] | None = None,
        output_bytes: bytes = b"\x00\x00\x00\x20ftypM4B fake audiobook payload",
    ):
        self.durations = list(durations)
        self.probe_errors = probe_errors or {}
        self.no_audio = set(no_audio)
        self.mux_error = mux_error
        self.output_bytes = output_bytes
        self.probed: list[Path] = []
        self.invocations: list[EngineInvocation] = []
        self.metadata_documents: list[str] = []

    async def probe(self, path: Path) -> ProbeResult:
        index = len(self.probed)
        self.probed.append(path)
        if index in self.probe_errors:
            raise self.probe_errors[index]
        duration = self.durations[index] if index < len(self.durations) else 1.0
        return ProbeResult(
            duration_s=duration,
            format_name="mp3",
            has_audio=index not in self.no_audio,
        )

    async def mux(self, invocation: EngineInvocation) -> None:
        self.invocations.append(invocation)
        metadata = invocation.inputs_for(InputRole.METADATA)[0].path
        self.metadata_documents.append(metadata.read_text(encoding="utf-8"))
        if self.mux_error is not None:
            if isinstance(self.mux_error, BaseException):
                raise self.mux_error
            raise self.mux_error(invocation)
        invocation.output_path.write_bytes(self.output_bytes)


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Temporary directory for test outputs."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir


@pytest.fixture
def make_chapters(tmp_path: Path):
    """Factory writing placeholder chapter files and returning ChapterSources."""
    def _make(titles: Sequence[str], content: bytes = b"ID3 fake audio") -> tuple[ChapterSource, ...]:
        uploads = tmp_path / "uploads"
        uploads.mkdir(exist_ok=True)
        chapters = []
        for i, title in enumerate(titles):
            path = uploads / f"{i:03d}_ch{i + 1}.mp3"
            path.write_bytes(content)
            chapters.append(
                ChapterSource(
                    source_path=path,
                    title=title,
                    original_name=f"ch{i + 1}.mp3",
                    sequence_index=i,
                )
            )
        return tuple(chapters)
    return _make


@pytest.fixture
def make_request(make_chapters, tmp_path: Path):
    """Factory for AudiobookRequest with optional cover art."""
    def _make(
        titles: Sequence[str] = ("Intro", "Middle", "End"),
        *,
        book_title: str = "My Book",
        author: str = "Jane Doe",
        with_cover: bool = False,
    ) -> AudiobookRequest:
        cover_path = None
        if with_cover:
            cover_path = tmp_path / "cover_upload.JPG"
            cover_path.write_bytes(b"\xff\xd8\xff\xe0 fake jpeg")
        return AudiobookRequest(
            book_title=book_title,
            author=author,
            chapters=make_chapters(titles),
            cover_art_path=cover_path,
        )
    return _make


def engine_failure(message: str, stderr: str = "", **kwargs) -> EngineError:
    return EngineError(message, stderr=stderr, **kwargs)
