"""Custom exceptions for the chapterbook service.

These exceptions map onto the envelope error format, providing
machine-readable error codes and suggested fixes. ValidationError, ProbeError
and EncodeError are reported to the client as a single JSON error; a
DeliveryError happens after response headers are sent and can only be logged.
"""

from chapterbook.constants.error_codes import get_error_spec
from chapterbook.schemas.envelope import ErrorInfo, ErrorLocation


class ChapterbookError(Exception):
    """Base exception for all chapterbook application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: str | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            details=self.details,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ChapterbookError):
    """Base class for bad, missing or mismatched request fields."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request"


class MissingRequiredFieldError(ValidationError):
    """Required field is missing."""

    code = "MISSING_REQUIRED_FIELD"
    message = "Required field is missing"

    def __init__(self, *fields: str):
        if fields:
            message = f"Missing required fields: {', '.join(fields)}"
        else:
            message = self.message
        location = ErrorLocation(field=fields[0]) if len(fields) == 1 else None
        super().__init__(message, location=location)


class InvalidFieldValueError(ValidationError):
    """Field value is invalid."""

    code = "INVALID_FIELD_VALUE"
    message = "Invalid field value"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        location = ErrorLocation(field=field) if field else None
        super().__init__(message or self.message, location=location)


class NoChaptersError(ValidationError):
    """No chapter audio was supplied."""

    code = "NO_CHAPTERS"
    message = "No chapter files uploaded or files are invalid."


class ChapterCountMismatchError(ValidationError):
    """Chapter file count differs from chapter metadata count."""

    code = "CHAPTER_COUNT_MISMATCH"
    message = "Mismatch between number of chapter files and chapter metadata entries."

    def __init__(self, file_count: int | None = None, metadata_count: int | None = None):
        message = self.message
        if file_count is not None and metadata_count is not None:
            message = (
                f"Mismatch between number of chapter files ({file_count}) "
                f"and chapter metadata entries ({metadata_count})."
            )
        super().__init__(message, location=ErrorLocation(field="chapterMetadataJson"))


class InvalidCoverArtError(ValidationError):
    """Cover art image is too large or of an unsupported type."""

    code = "INVALID_COVER_ART"
    message = "Invalid cover art image"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message, location=ErrorLocation(field="coverArt"))


# =============================================================================
# Media Errors (422/500)
# =============================================================================


class ProbeError(ChapterbookError):
    """A chapter file could not be read or measured.

    Carries the chapter's original display name, never the staging path.
    """

    code = "PROBE_FAILED"
    status_code = 422
    message = "Failed to probe chapter file"

    def __init__(
        self,
        original_name: str,
        *,
        details: str | None = None,
        index: int | None = None,
    ):
        self.original_name = original_name
        super().__init__(
            f"Failed to probe chapter file: {original_name}",
            details=details,
            location=ErrorLocation(chapter=original_name, index=index),
        )


class EncodeError(ChapterbookError):
    """The encoding engine failed to produce the audiobook."""

    code = "ENCODE_FAILED"
    status_code = 500
    message = "Audiobook encoding failed"

    def __init__(self, message: str | None = None, *, details: str | None = None):
        super().__init__(message, details=details)


# =============================================================================
# Delivery / System Errors
# =============================================================================


class DeliveryError(ChapterbookError):
    """The output stream broke after the response had started."""

    code = "DELIVERY_FAILED"
    message = "Audiobook delivery failed"


class InternalError(ChapterbookError):
    """Internal server error."""

    code = "INTERNAL_ERROR"
    status_code = 500
    message = "Internal server error"
