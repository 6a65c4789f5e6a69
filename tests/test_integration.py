"""
End-to-end conversion with real ffmpeg/ffprobe.

Chapter audio is synthesized with ffmpeg's lavfi sine source, converted, and
the result inspected with ffprobe -show_chapters.
"""

import json
import subprocess
from pathlib import Path

import pytest

from chapterbook.schemas.audiobook import AudiobookRequest, ChapterSource
from chapterbook.services.engine import FFmpegEngine
from chapterbook.services.job_coordinator import JobCoordinator, JobState, ProcessingJob
from chapterbook.services.workspace import WorkspaceManager
from tests.conftest import requires_ffmpeg


def _make_tone(path: Path, seconds: float, frequency: int = 440) -> Path:
    subprocess.run(
        [
            "ffmpeg", "-y", "-f", "lavfi",
            "-i", f"sine=frequency={frequency}:duration={seconds}",
            str(path),
        ],
        capture_output=True, check=True,
    )
    return path


def _ffprobe(path: Path) -> dict:
    result = subprocess.run(
        [
            "ffprobe", "-v", "error", "-print_format", "json",
            "-show_format", "-show_chapters", "-show_streams", str(path),
        ],
        capture_output=True, text=True, check=True,
    )
    return json.loads(result.stdout)


@requires_ffmpeg
class TestRealConversion:
    """Convert synthesized chapters and verify the chaptered output."""

    @pytest.mark.asyncio
    async def test_two_chapter_audiobook(self, temp_output_dir: Path, tmp_path: Path):
        sources = [
            _make_tone(temp_output_dir / "one.wav", 2),
            _make_tone(temp_output_dir / "two.wav", 3, frequency=660),
        ]
        request = AudiobookRequest(
            book_title="Tone Book",
            author="Test Author",
            chapters=tuple(
                ChapterSource(source_path=p, title=title, original_name=p.name, sequence_index=i)
                for i, (p, title) in enumerate(zip(sources, ["First", "Second"]))
            ),
        )
        job = ProcessingJob()
        coordinator = JobCoordinator(FFmpegEngine(), WorkspaceManager(tmp_path / "work"))

        delivery = await coordinator.run(request, job)
        output = temp_output_dir / delivery.filename
        output.write_bytes(b"".join([chunk async for chunk in delivery.stream()]))
        delivery.finish()

        assert job.state == JobState.DONE
        assert not job.working_dir.exists()

        info = _ffprobe(output)
        chapters = info["chapters"]
        assert [c["tags"]["title"] for c in chapters] == ["First", "Second"]
        assert float(chapters[0]["start_time"]) == pytest.approx(0.0)
        assert float(chapters[0]["end_time"]) == pytest.approx(2.0, abs=0.01)
        assert float(chapters[1]["start_time"]) == pytest.approx(float(chapters[0]["end_time"]))
        assert float(chapters[1]["end_time"]) == pytest.approx(5.0, abs=0.01)
        assert info["format"]["tags"]["title"] == "Tone Book"
        assert info["format"]["tags"]["artist"] == "Test Author"
        assert [s["codec_name"] for s in info["streams"] if s["codec_type"] == "audio"] == ["aac"]
