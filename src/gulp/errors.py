from __future__ import annotations

__all__ = [
    "AcquisitionError",
    "ValidationError",
    "UpstreamError",
    "EmptyContentError",
    "GENERIC_ERROR_MESSAGE",
    "safe_error_message",
]

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request."
UPSTREAM_ERROR_MESSAGE = (
    "Failed to extract content from the source. It may be unavailable or blocked."
)
EMPTY_CONTENT_MESSAGE = "No readable content found."


class AcquisitionError(Exception):
    """Base class for failures that send the reader back to the input screen."""

    default_message = GENERIC_ERROR_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class ValidationError(AcquisitionError):
    """Raised when submitted content is rejected; the message is shown verbatim."""


class UpstreamError(AcquisitionError):
    """Raised when fetching or extracting content fails.

    The detail passed in is kept for logs only; users always see the generic
    upstream message.
    """

    default_message = UPSTREAM_ERROR_MESSAGE

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or UPSTREAM_ERROR_MESSAGE)
        self.detail = detail

    @property
    def user_message(self) -> str:
        return UPSTREAM_ERROR_MESSAGE


class EmptyContentError(AcquisitionError):
    """Raised when acquired text yields no tokens."""

    default_message = EMPTY_CONTENT_MESSAGE


def safe_error_message(exc: BaseException | str | None) -> str:
    if isinstance(exc, str):
        return exc.strip() or GENERIC_ERROR_MESSAGE
    if isinstance(exc, AcquisitionError):
        return exc.user_message
    return GENERIC_ERROR_MESSAGE
