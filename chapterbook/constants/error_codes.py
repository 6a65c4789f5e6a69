"""Error codes dictionary for the conversion API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery hints. Used by exception handlers to generate
machine-readable error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str
    parameters: dict[str, Any]


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "MISSING_REQUIRED_FIELD": {
        "retryable": False,
        "suggested_fix": "Provide bookTitle, author and chapterMetadataJson form fields.",
    },
    "INVALID_FIELD_VALUE": {
        "retryable": False,
    },
    "CHAPTER_COUNT_MISMATCH": {
        "retryable": False,
        "suggested_fix": "Send exactly one chapterMetadataJson entry per uploaded chapter file.",
    },
    "NO_CHAPTERS": {
        "retryable": False,
        "suggested_fix": "Upload at least one audio file in the chapterFiles field.",
    },
    "INVALID_COVER_ART": {
        "retryable": False,
        "suggested_fix": "Use a single .jpg, .jpeg, .png or .webp image of at most 5MB.",
    },
    # ==========================================================================
    # Media errors
    # ==========================================================================
    "PROBE_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that the named chapter is a complete, playable audio file.",
    },
    "ENCODE_FAILED": {
        "retryable": False,
    },
    "DELIVERY_FAILED": {
        "retryable": True,
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "BAD_REQUEST": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})

