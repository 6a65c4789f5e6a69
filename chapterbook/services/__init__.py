from chapterbook.services.delivery import OutputDelivery
from chapterbook.services.engine import Engine, EngineInvocation, FFmpegEngine
from chapterbook.services.job_coordinator import JobCoordinator, JobState, ProcessingJob
from chapterbook.services.muxer import MuxingOrchestrator
from chapterbook.services.prober import DurationProber
from chapterbook.services.timeline import ChapterTimelineBuilder
from chapterbook.services.workspace import ScopedDir, WorkspaceManager

__all__ = [
    "ChapterTimelineBuilder",
    "DurationProber",
    "Engine",
    "EngineInvocation",
    "FFmpegEngine",
    "JobCoordinator",
    "JobState",
    "MuxingOrchestrator",
    "OutputDelivery",
    "ProcessingJob",
    "ScopedDir",
    "WorkspaceManager",
]
