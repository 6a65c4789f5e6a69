"""
Tests for muxing orchestration.

Test cases:
1. Input index assignment with and without cover art
2. Concat filter and output directives
3. Job artifacts written to the working directory
4. Engine failures become redacted EncodeErrors
5. Output filename derivation
"""

from pathlib import Path

import pytest

from chapterbook.exceptions import EncodeError
from chapterbook.services.engine import EngineError, EngineInput, InputRole
from chapterbook.services.muxer import (
    MuxingOrchestrator,
    build_concat_filter,
    build_output_options,
    output_filename,
    plan_inputs,
)
from chapterbook.services.timeline import ChapterTimelineBuilder
from tests.conftest import FakeEngine


def _timeline(request, durations_ms):
    builder = ChapterTimelineBuilder(request.book_title, request.author, date_stamp="2024")
    return builder.build(request.chapters, durations_ms)


class TestPlanInputs:
    """Test engine input index assignment."""

    def test_without_cover(self, make_request, tmp_path: Path):
        request = make_request(["A", "B", "C"])
        inputs = plan_inputs(request, tmp_path / "meta.txt")

        assert [(i.input_index, i.role) for i in inputs] == [
            (0, InputRole.AUDIO),
            (1, InputRole.AUDIO),
            (2, InputRole.AUDIO),
            (3, InputRole.METADATA),
        ]
        assert [i.path for i in inputs[:3]] == [c.source_path for c in request.chapters]
        assert inputs[3].options == ("-f", "ffmetadata")

    def test_with_cover(self, make_request, tmp_path: Path):
        """Cover takes index n, metadata n+1."""
        request = make_request(["A", "B", "C"], with_cover=True)
        inputs = plan_inputs(request, tmp_path / "meta.txt", tmp_path / "cover.jpg")

        assert [(i.input_index, i.role) for i in inputs[3:]] == [
            (3, InputRole.COVER),
            (4, InputRole.METADATA),
        ]

    def test_single_chapter(self, make_request, tmp_path: Path):
        request = make_request(["Only"])
        inputs = plan_inputs(request, tmp_path / "meta.txt")

        assert [i.input_index for i in inputs] == [0, 1]


class TestFilterAndOptions:
    """Test the concat filter graph and output directives."""

    def test_concat_filter_lists_streams_in_order(self, tmp_path: Path):
        audio = tuple(EngineInput(i, InputRole.AUDIO, tmp_path / f"{i}.mp3") for i in range(3))

        assert build_concat_filter(audio) == "[0:a][1:a][2:a]concat=n=3:v=0:a=1[a_out]"

    def test_concat_filter_requires_audio(self):
        with pytest.raises(ValueError):
            build_concat_filter(())

    def test_output_options_without_cover(self, make_request, tmp_path: Path):
        request = make_request(["A", "B"])
        options = build_output_options(plan_inputs(request, tmp_path / "meta.txt"))

        assert options == (
            "-map", "[a_out]",
            "-c:a", "aac",
            "-b:a", "64k",
            "-map_metadata", "2",
            "-map_chapters", "2",
            "-movflags", "+faststart",
        )

    def test_output_options_with_cover(self, make_request, tmp_path: Path):
        request = make_request(["A", "B"], with_cover=True)
        options = build_output_options(
            plan_inputs(request, tmp_path / "meta.txt", tmp_path / "cover.jpg")
        )

        assert options == (
            "-map", "[a_out]",
            "-c:a", "aac",
            "-b:a", "64k",
            "-map", "2:v?",
            "-c:v", "copy",
            "-disposition:v", "attached_pic",
            "-map_metadata", "3",
            "-map_chapters", "3",
            "-movflags", "+faststart",
        )


class TestOutputFilename:
    def test_spaces_become_underscores(self):
        assert output_filename("My Book") == "My_Book_Audiobook.m4b"

    def test_colons_and_whitespace_runs_collapse(self):
        assert output_filename("Dune:  Part One") == "Dune_Part_One_Audiobook.m4b"

    def test_slashes_never_leave_the_directory(self):
        assert "/" not in output_filename("AC/DC Live")
        assert "\\" not in output_filename("C:\\Temp book")


class TestMuxingOrchestrator:
    """Test MuxingOrchestrator against a recording engine."""

    @pytest.mark.asyncio
    async def test_mux_without_cover(self, make_request, temp_output_dir: Path):
        request = make_request(["Intro", "Middle", "End"])
        timeline = _timeline(request, [5000, 3000, 7000])
        engine = FakeEngine()

        output = await MuxingOrchestrator(engine).mux(request, timeline, temp_output_dir)

        assert output == temp_output_dir / "My_Book_Audiobook.m4b"
        assert output.read_bytes() == engine.output_bytes
        invocation = engine.invocations[0]
        assert invocation.filter_complex == "[0:a][1:a][2:a]concat=n=3:v=0:a=1[a_out]"
        assert invocation.inputs_for(InputRole.COVER) == ()
        assert engine.metadata_documents == [timeline.document]
        assert (temp_output_dir / "ffmpeg_metadata.txt").read_text(encoding="utf-8") == timeline.document

    @pytest.mark.asyncio
    async def test_prepare_copies_cover_into_working_dir(self, make_request, temp_output_dir: Path):
        request = make_request(["A", "B"], with_cover=True)
        timeline = _timeline(request, [1000, 1000])

        invocation = await MuxingOrchestrator(FakeEngine()).prepare(request, timeline, temp_output_dir)

        cover = invocation.inputs_for(InputRole.COVER)[0]
        assert cover.input_index == 2
        assert cover.path == temp_output_dir / "cover.jpg"
        assert cover.path.read_bytes() == request.cover_art_path.read_bytes()
        assert invocation.inputs_for(InputRole.METADATA)[0].input_index == 3

    @pytest.mark.asyncio
    async def test_engine_failure_is_redacted(self, make_request, temp_output_dir: Path):
        """EncodeError details show chapter names and <workdir>, never host paths."""
        request = make_request(["A", "B"], with_cover=True)
        timeline = _timeline(request, [1000, 1000])
        chapter_path = request.chapters[1].source_path

        def failure(invocation):
            return EngineError(
                "ffmpeg exited with code 1",
                stderr=(
                    f"{chapter_path}: Invalid data found when processing input\n"
                    f"Error opening output {invocation.output_path}\n"
                    f"Input {request.cover_art_path} skipped"
                ),
                returncode=1,
            )

        engine = FakeEngine(mux_error=failure)
        with pytest.raises(EncodeError) as exc_info:
            await MuxingOrchestrator(engine).mux(request, timeline, temp_output_dir)

        error = exc_info.value
        assert error.status_code == 500
        assert error.code == "ENCODE_FAILED"
        assert "ch2.mp3: Invalid data found" in error.details
        assert "<workdir>/My_Book_Audiobook.m4b" in error.details
        assert "<cover>" in error.details
        assert str(chapter_path.parent) not in error.details
        assert str(temp_output_dir) not in error.details

    @pytest.mark.asyncio
    async def test_engine_timeout(self, make_request, temp_output_dir: Path):
        request = make_request(["A"])
        timeline = _timeline(request, [1000])
        engine = FakeEngine(mux_error=EngineError("ffmpeg timed out after 10s", timed_out=True))

        with pytest.raises(EncodeError, match="timed out"):
            await MuxingOrchestrator(engine).mux(request, timeline, temp_output_dir)
