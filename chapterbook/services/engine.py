"""
FFmpeg engine seam.

Everything that touches the ffmpeg/ffprobe binaries lives here:
- EngineInvocation: an immutable description of inputs, filter graph and
  output directives for a single ffmpeg run
- Engine: the narrow probe/mux capability the pipeline depends on
- FFmpegEngine: the subprocess-backed implementation

Failures surface as EngineError; callers translate them into the
client-facing ProbeError/EncodeError.
"""

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from chapterbook.config import get_settings

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """An ffmpeg/ffprobe run failed, could not start, or ran past its deadline."""

    def __init__(
        self,
        message: str,
        *,
        stderr: str = "",
        returncode: int | None = None,
        timed_out: bool = False,
    ):
        self.stderr = stderr
        self.returncode = returncode
        self.timed_out = timed_out
        super().__init__(message)


class InputRole(str, Enum):
    AUDIO = "audio"
    COVER = "cover"
    METADATA = "metadata"


@dataclass(frozen=True)
class EngineInput:
    """One `-i` input. input_index is the position later directives refer to."""

    input_index: int
    role: InputRole
    path: Path
    options: tuple[str, ...] = ()  # Demuxer options placed before -i

    def to_args(self) -> list[str]:
        return [*self.options, "-i", str(self.path)]


@dataclass(frozen=True)
class EngineInvocation:
    """Immutable ffmpeg command description.

    Input indices must equal their position: `-map` and filter directives
    address inputs by index, so registration order is the contract.
    """

    inputs: tuple[EngineInput, ...]
    filter_complex: str
    output_options: tuple[str, ...]
    output_path: Path
    global_options: tuple[str, ...] = ("-y", "-hide_banner", "-nostdin")

    def __post_init__(self) -> None:
        for position, engine_input in enumerate(self.inputs):
            if engine_input.input_index != position:
                raise ValueError(
                    f"Input {engine_input.path.name} registered at position {position} "
                    f"but claims index {engine_input.input_index}"
                )

    def inputs_for(self, role: InputRole) -> tuple[EngineInput, ...]:
        return tuple(i for i in self.inputs if i.role == role)

    def to_args(self) -> list[str]:
        """Build the ffmpeg argument list (without the executable)."""
        args = list(self.global_options)
        for engine_input in self.inputs:
            args.extend(engine_input.to_args())
        args.extend(["-filter_complex", self.filter_complex])
        args.extend(self.output_options)
        args.append(str(self.output_path))
        return args


@dataclass(frozen=True)
class ProbeResult:
    """Subset of ffprobe's format/stream report the pipeline cares about."""

    duration_s: float | None
    format_name: str | None = None
    has_audio: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class Engine(Protocol):
    """Probe and mux capability. Any engine honoring the index rules is substitutable."""

    async def probe(self, path: Path) -> ProbeResult: ...

    async def mux(self, invocation: EngineInvocation) -> None: ...


def parse_probe_output(stdout: str) -> ProbeResult:
    """Parse ffprobe `-print_format json -show_format -show_streams` output."""
    try:
        data = json.loads(stdout or "{}")
    except json.JSONDecodeError as e:
        raise EngineError(f"Failed to parse ffprobe output: {e}")

    format_info = data.get("format", {})
    duration_s: float | None = None
    raw_duration = format_info.get("duration")
    if raw_duration not in (None, "", "N/A"):
        try:
            duration_s = float(raw_duration)
        except (TypeError, ValueError):
            raise EngineError(f"Unreadable duration in ffprobe output: {raw_duration!r}")

    has_audio = any(
        stream.get("codec_type") == "audio" for stream in data.get("streams", [])
    )
    return ProbeResult(
        duration_s=duration_s,
        format_name=format_info.get("format_name"),
        has_audio=has_audio,
        raw=data,
    )


class FFmpegEngine:
    """Engine backed by the ffmpeg and ffprobe executables."""

    def __init__(
        self,
        ffmpeg_path: str | None = None,
        ffprobe_path: str | None = None,
        probe_timeout_s: float | None = None,
        encode_timeout_s: float | None = None,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.probe_timeout_s = probe_timeout_s or settings.probe_timeout_s
        self.encode_timeout_s = encode_timeout_s or settings.encode_timeout_s

    async def _run(self, cmd: list[str], timeout: float, desc: str) -> str:
        """Run a command to completion and return stdout; raise EngineError otherwise."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            logger.error(f"[FFMPEG] {desc} executable not found: {cmd[0]}")
            raise EngineError(f"{desc} executable not found") from exc
        except OSError as exc:
            logger.error(f"[FFMPEG] Could not start {desc} ({cmd[0]}): {exc}")
            # strerror carries no path
            raise EngineError(f"{desc} could not be started: {exc.strerror or type(exc).__name__}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise EngineError(f"{desc} timed out after {timeout:.0f}s", timed_out=True)
        except asyncio.CancelledError:
            proc.kill()
            await asyncio.shield(proc.wait())
            raise

        stderr_text = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise EngineError(
                f"{desc} exited with code {proc.returncode}",
                stderr=stderr_text,
                returncode=proc.returncode,
            )
        return stdout.decode("utf-8", errors="replace")

    async def probe(self, path: Path) -> ProbeResult:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        stdout = await self._run(cmd, self.probe_timeout_s, "ffprobe")
        return parse_probe_output(stdout)

    async def mux(self, invocation: EngineInvocation) -> None:
        cmd = [self.ffmpeg_path, *invocation.to_args()]
        logger.info(f"[FFMPEG] Spawned ffmpeg with command: {shlex.join(cmd)}")

        try:
            await self._run(cmd, self.encode_timeout_s, "ffmpeg")
        except EngineError as e:
            logger.error(f"[FFMPEG] Encoding failed: {e}\n{e.stderr}")
            raise

        if not invocation.output_path.exists():
            raise EngineError(f"ffmpeg reported success but wrote no output: {invocation.output_path}")
        logger.info("[FFMPEG] Conversion finished successfully")
