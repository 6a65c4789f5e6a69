"""Scrub host filesystem paths out of engine diagnostics before they reach a client."""

from collections.abc import Mapping
from os import PathLike

# ffmpeg prints at most this much useful context at the tail of stderr
MAX_DIAGNOSTIC_CHARS = 2000


def redact_paths(text: str, replacements: Mapping[str | PathLike[str], str]) -> str:
    """
    Replace every occurrence of the given paths in text.

    Longer paths are replaced first so a directory never shadows a file
    inside it.

    Args:
        text: Diagnostic text, usually ffmpeg/ffprobe stderr
        replacements: Map of host path -> display text

    Returns:
        The text with all listed paths replaced
    """
    pairs = sorted(
        ((str(path), label) for path, label in replacements.items() if str(path)),
        key=lambda pair: len(pair[0]),
        reverse=True,
    )
    for path, label in pairs:
        text = text.replace(path, label)
    return text


def tail(text: str, limit: int = MAX_DIAGNOSTIC_CHARS) -> str:
    """Keep the last `limit` characters of text, stripped."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[-limit:]
