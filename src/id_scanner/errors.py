"""Exception types shared by the extraction client, record store and routes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import IdentityRecord


class IdScannerError(Exception):
    """Base class for every error raised by the ID scanner package."""


class ConfigurationError(IdScannerError, ValueError):
    """Raised when an environment setting cannot be interpreted."""


class MissingInputError(IdScannerError, ValueError):
    """Raised when a required request value (such as the image) is absent."""


class ValidationFailedError(MissingInputError):
    """Raised when required identity fields are missing from a save request."""

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__("Missing required fields: " + ", ".join(self.missing))


class DuplicateKeyError(IdScannerError):
    """Raised when an ID number already exists in the record store."""

    def __init__(self, id_number: str, existing: Optional["IdentityRecord"] = None) -> None:
        self.id_number = id_number
        self.existing = existing
        super().__init__(f"A record with ID number {id_number!r} already exists.")


class ExternalServiceError(IdScannerError):
    """Raised internally when the extraction API returns unusable content."""


class PersistenceError(IdScannerError):
    """Raised when the record store fails for a reason other than duplication."""
