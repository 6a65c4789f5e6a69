from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from chapterbook.config import get_settings
from chapterbook.services.engine import FFmpegEngine
from chapterbook.services.job_coordinator import JobCoordinator
from chapterbook.services.workspace import WorkspaceManager


@lru_cache
def get_job_coordinator() -> JobCoordinator:
    """Process-wide coordinator. Jobs share no mutable state, so one instance serves all requests."""
    settings = get_settings()
    return JobCoordinator(
        engine=FFmpegEngine(),
        workspace=WorkspaceManager(settings.work_dir_root),
    )


Coordinator = Annotated[JobCoordinator, Depends(get_job_coordinator)]
