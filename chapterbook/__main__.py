"""Run the API server: python -m chapterbook"""

import uvicorn

from chapterbook.config import get_settings
from chapterbook.main import configure_logging


def main() -> None:
    settings = get_settings()
    configure_logging()
    uvicorn.run(
        "chapterbook.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
