"""Core module exports."""
from __future__ import annotations

from core.config import Settings, get_settings, reload_settings
from core.db import Base, SessionLocal, get_session, get_session_factory
from core.exceptions import (
    # Base
    CookPropertyError,
    # Configuration
    ConfigurationError,
    MissingCredentialsError,
    # Database
    DatabaseError,
    BackendUnavailableError,
    # Validation
    ValidationError,
    PinValidationError,
    BidValidationError,
    # External Services
    ExternalServiceError,
    ScraperError,
    SourceFetchError,
    SourceNotFoundError,
    SourceParseError,
    IllegalTransitionError,
)
from core.logging_config import (
    setup_logging,
    get_logger,
    get_context_logger,
    log_external_call,
    JSONFormatter,
    ContextLogger,
)
from core.models import (
    PropertyCache,
    PinBid,
    ImportJob,
    ImportPin,
)
from core.types import PropertyIdentifier, SourceKind, SourceRecord

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Database
    "get_session",
    "get_session_factory",
    "SessionLocal",
    "Base",
    # Models
    "PropertyCache",
    "PinBid",
    "ImportJob",
    "ImportPin",
    # Types
    "PropertyIdentifier",
    "SourceKind",
    "SourceRecord",
    # Exceptions
    "CookPropertyError",
    "ConfigurationError",
    "MissingCredentialsError",
    "DatabaseError",
    "BackendUnavailableError",
    "ValidationError",
    "PinValidationError",
    "BidValidationError",
    "ExternalServiceError",
    "ScraperError",
    "SourceFetchError",
    "SourceNotFoundError",
    "SourceParseError",
    "IllegalTransitionError",
    # Logging
    "setup_logging",
    "get_logger",
    "get_context_logger",
    "log_external_call",
    "JSONFormatter",
    "ContextLogger",
]
