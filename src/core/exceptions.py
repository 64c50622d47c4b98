"""Custom exceptions for the cook_property aggregator.

Every exception carries a machine-readable ``code`` and the HTTP status the
API layer answers with, so handlers render ``{success, error, code}``
without a lookup table.
"""
from __future__ import annotations

from typing import Optional


class CookPropertyError(Exception):
    """Base exception for all application errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_envelope(self) -> dict:
        """Render as the API error envelope."""
        return {"success": False, "error": self.message, "code": self.code}


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CookPropertyError):
    """Raised when required configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class MissingCredentialsError(ConfigurationError):
    """Raised when an optional integration is used without its API key."""

    code = "MISSING_CREDENTIALS"
    status_code = 400


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(CookPropertyError):
    """Base exception for database-related errors."""

    code = "DATABASE_ERROR"


class BackendUnavailableError(DatabaseError):
    """Raised when the persistence backend cannot be reached."""

    code = "BACKEND_UNAVAILABLE"
    status_code = 502


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(CookPropertyError):
    """Raised when caller input fails validation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class PinValidationError(ValidationError):
    """Raised when a PIN does not match the dashed 14-digit form."""

    code = "INVALID_PIN"

    def __init__(self, message: str = "Invalid PIN format") -> None:
        super().__init__(message)


class BidValidationError(ValidationError):
    """Raised when a bid or overbid is not a usable amount."""

    code = "INVALID_BID"


class ImportFileError(ValidationError):
    """Raised when an uploaded PIN list is missing, too large or empty."""

    code = "INVALID_IMPORT"


class JobNotFoundError(CookPropertyError):
    """Raised when an import job id is unknown."""

    code = "JOB_NOT_FOUND"
    status_code = 404


# =============================================================================
# External Data Service Errors
# =============================================================================


class ExternalServiceError(CookPropertyError):
    """Base exception for all external service errors."""

    code = "EXTERNAL_ERROR"
    status_code = 502


class ScraperError(ExternalServiceError):
    """Raised when a county site session fails."""

    pass


class SourceFetchError(ScraperError):
    """Raised when an upstream site is unreachable, times out or rejects the session."""

    code = "FETCH_ERROR"


class SourceNotFoundError(ScraperError):
    """Raised when the upstream site has no record for the PIN."""

    code = "NOT_FOUND"
    status_code = 404


class SourceParseError(ScraperError):
    """Raised when an upstream page lacks the structure needed to extract it."""

    code = "PARSE_ERROR"


class IllegalTransitionError(ScraperError):
    """Raised when a session state machine is driven out of order."""

    code = "ILLEGAL_TRANSITION"
    status_code = 500


class GoogleImageryError(ExternalServiceError):
    """Raised when no Google imagery could be fetched for a coordinate."""

    code = "FETCH_ERROR"


# HTTP status for records that carry an error code but were not raised
STATUS_BY_CODE = {
    "INVALID_PIN": 400,
    "NOT_FOUND": 404,
    "PARSE_ERROR": 502,
    "FETCH_ERROR": 502,
    "BACKEND_UNAVAILABLE": 502,
}


def status_for_code(code: Optional[str]) -> int:
    return STATUS_BY_CODE.get(code or "", 500)


__all__ = [
    # Base
    "CookPropertyError",
    # Configuration
    "ConfigurationError",
    "MissingCredentialsError",
    # Database
    "DatabaseError",
    "BackendUnavailableError",
    # Validation
    "ValidationError",
    "PinValidationError",
    "BidValidationError",
    "ImportFileError",
    "JobNotFoundError",
    # External Services
    "ExternalServiceError",
    "ScraperError",
    "SourceFetchError",
    "SourceNotFoundError",
    "SourceParseError",
    "IllegalTransitionError",
    "GoogleImageryError",
    "STATUS_BY_CODE",
    "status_for_code",
]
