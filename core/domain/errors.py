"""
Error hierarchy for the medical-record core.

Each error carries a stable code and structured details so the API layer can
map it to a response without string matching.
"""

from typing import Any


class MedicalRecordError(Exception):
    """Base exception for all medical-record errors."""

    code = "MEDICAL_RECORD_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"error": self.code, "message": self.message, "details": self.details}


class InvalidInput(MedicalRecordError):
    """Caller supplied data the core refuses to process."""

    code = "INVALID_INPUT"


class NotFound(MedicalRecordError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found", details={"kind": kind, "id": record_id})
        self.kind = kind
        self.record_id = record_id


class Unauthorized(MedicalRecordError):
    code = "UNAUTHORIZED"


class StorageError(MedicalRecordError):
    """The key-value backend failed; the operation may be retried."""

    code = "STORAGE_ERROR"
