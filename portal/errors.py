"""Ingestion error hierarchy.

Every error that aborts a submission derives from ``IngestionError`` and
carries a stable ``code``, the HTTP status the API maps it to, and a
``context`` dict with diagnostic detail for the caller.
"""
from __future__ import annotations

from typing import Any


class IngestionError(Exception):
    """Base exception for failures that abort a whole submission."""

    code = "ingestion_error"
    status_code = 500

    def __init__(self, detail: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context or {}


class InputValidationError(IngestionError):
    """Raised when a submission is rejected before extraction."""

    code = "input_validation"
    status_code = 400

    def __init__(
        self,
        detail: str,
        *,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail, context=context)
        if status_code is not None:
            self.status_code = status_code


class ArchiveCorruptError(IngestionError):
    """Raised when an archive cannot be fully decompressed."""

    code = "archive_corrupt"
    status_code = 422


class PayloadNotFoundError(IngestionError):
    """Raised when a required payload file is absent under every accepted name."""

    code = "payload_not_found"
    status_code = 422


class MalformedPayloadError(IngestionError):
    """Raised when a payload file cannot be decoded into its expected shape."""

    code = "malformed_payload"
    status_code = 422


class RecordRejectedError(IngestionError):
    """Raised when the store refuses the profile record of a submission."""

    code = "record_rejected"
    status_code = 422


class StoreUnavailableError(IngestionError):
    """Raised when the persistent store cannot be reached."""

    code = "store_unavailable"
    status_code = 503
