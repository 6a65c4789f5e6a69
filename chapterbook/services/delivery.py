"""
Streamed output delivery with release-on-completion.

An OutputDelivery owns the finished file's job directory. Whoever streams it
must call finish() once the stream reaches a terminal event (fully sent,
failed, or abandoned); finish() runs the release callback exactly once and
resolves the `completed` future. The streaming response calls finish() from
a finally block, so the release cannot be skipped.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from urllib.parse import quote

import anyio

from chapterbook.config import get_settings
from chapterbook.exceptions import DeliveryError

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves untouched
_URI_COMPONENT_SAFE = "-_.!~*'()"


def content_disposition(filename: str) -> str:
    return f'attachment; filename="{quote(filename, safe=_URI_COMPONENT_SAFE)}"'


class OutputDelivery:
    """A produced audiobook file waiting to be streamed to the caller."""

    def __init__(
        self,
        path: Path,
        *,
        on_complete: Callable[[BaseException | None], None],
        chunk_size: int | None = None,
        media_type: str | None = None,
    ):
        settings = get_settings()
        self.path = path
        self.filename = path.name
        self.size = os.path.getsize(path)
        self.media_type = media_type or settings.output_media_type
        self.chunk_size = chunk_size or settings.stream_chunk_size
        self._on_complete = on_complete
        self.completed: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.bytes_sent = 0

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Disposition": content_disposition(self.filename),
            "Content-Length": str(self.size),
        }

    @property
    def finished(self) -> bool:
        return self.completed.done()

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield the file in chunks. Read failures surface as DeliveryError."""
        try:
            async with await anyio.open_file(self.path, "rb") as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    self.bytes_sent += len(chunk)
                    yield chunk
        except OSError as e:
            raise DeliveryError(f"Error during audiobook streaming: {e}") from e

    def finish(self, error: BaseException | None = None) -> None:
        """Terminal event of the stream. Idempotent."""
        if self.completed.done():
            return
        if error is None and self.bytes_sent < self.size:
            error = DeliveryError(
                f"Stream ended after {self.bytes_sent} of {self.size} bytes"
            )

        if error is None:
            logger.info(f"Audiobook stream completed: {self.filename} ({self.size} bytes)")
        else:
            logger.error(f"Audiobook stream failed for {self.filename}: {error!r}")

        try:
            self._on_complete(error)
        finally:
            if error is None:
                self.completed.set_result(None)
            else:
                self.completed.set_exception(
                    error if isinstance(error, DeliveryError) else DeliveryError(str(error) or repr(error))
                )
                # Nobody is required to await the future; don't warn about it
                self.completed.exception()
