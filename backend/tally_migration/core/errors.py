"""
Error taxonomy for the migration pipeline.

ValidationError  – malformed input, unresolvable required reference,
                   business-rule violation. Message is shown to the caller.
NotFoundError    – batch or entity absent.
InternalError    – unexpected failure; logged in full, surfaced opaquely.
ImportCancelled  – cooperative cancellation, distinct from failure.
"""
from __future__ import annotations


class MigrationError(Exception):
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(MigrationError):
    code = "validation"


class NotFoundError(MigrationError):
    code = "not_found"


class InternalError(MigrationError):
    code = "internal"


class ImportCancelled(MigrationError):
    code = "cancelled"

    def __init__(self, message: str = "Import was cancelled"):
        super().__init__(message)
