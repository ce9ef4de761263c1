from __future__ import annotations


class ImageScanError(RuntimeError):
    pass


class ScannerError(ImageScanError):
    """An external binary (trivy, grype, cosign) is missing or failed."""


class MalformedReportError(ImageScanError):
    """Scanner output is not JSON or lacks the nested objects we need."""


class DigestMissingError(ImageScanError):
    """The scanner reported no repository digest for the image."""


class StoredRowDecodeError(ImageScanError):
    """A persisted scan row could not be turned back into a summary."""

    def __init__(self, message: str, row_id: str | None = None, image: str | None = None) -> None:
        super().__init__(message)
        self.row_id = row_id
        self.image = image


class StorageError(ImageScanError):
    """The analytical store rejected a write or a query."""
