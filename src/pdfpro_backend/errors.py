"""Exception hierarchy shared by the request pipeline and the HTTP layer."""


class PdfProError(Exception):
    """Base exception for all errors reported to API clients."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingInputError(PdfProError):
    """Raised when no file or a required form field was supplied."""

    status_code = 400


class InvalidDocumentError(PdfProError):
    """Raised when an upload fails the file signature check."""

    status_code = 400


class ValidationError(PdfProError):
    """Raised when a request parameter is malformed or out of range."""

    status_code = 400


class PageSelectionError(ValidationError):
    """Raised when a page or range specification cannot be honoured."""


class InvalidPasswordError(ValidationError):
    """Raised when a document cannot be decrypted with the given password."""


class UploadTooLargeError(PdfProError):
    """Raised when an upload exceeds the configured size or count ceiling."""

    status_code = 413


class EngineError(PdfProError):
    """Raised when the underlying document or image library fails."""


class ArchiveError(PdfProError):
    """Raised when the zip archive cannot be written or finalized."""


class StorageError(PdfProError):
    """Raised when reading or writing a temporary file fails."""
