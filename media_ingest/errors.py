from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TRANSFORM = "transform"
    AUTH = "auth"
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"


class UploadError(Exception):
    """Classified failure of an upload or delete call.

    The message is meant to be shown to the user as-is, so it names the
    concrete limit or condition that failed.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        return self.message


class RetriesExhaustedError(UploadError):
    def __init__(self, last_error: UploadError, attempts: int) -> None:
        super().__init__(
            f"Upload failed after retries ({attempts} attempts): {last_error.message}",
            kind=last_error.kind,
        )
        self.last_error = last_error
        self.attempts = attempts


class StorageError(Exception):
    """Raised by storage adapters. status_code is the provider's code, if any."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
