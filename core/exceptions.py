"""
Custom exceptions for bookkeeping services.

Services raise these; the API layer turns them into ``{"error": ...}``
responses using ``status_code``.
"""
from typing import Any, Dict, Optional


class BookkeepingError(Exception):
    """Base exception for all bookkeeping errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotAuthenticatedError(BookkeepingError):
    """Raised when the request carries no authenticated user."""
    status_code = 401


class BusinessNotFoundError(BookkeepingError):
    """Raised when the authenticated user has no business profile."""
    status_code = 404

    def __init__(self, message: str = "Business not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class DataNotFoundError(BookkeepingError):
    """Raised when a record does not exist within the user's business."""
    status_code = 404


class ValidationError(BookkeepingError):
    """Raised when input data or a requested state change is invalid."""
    status_code = 422


class EmptyJournalEntryError(ValidationError):
    """Raised when a journal entry has no lines to classify."""
    pass


class ConflictError(BookkeepingError):
    """Raised when an operation conflicts with the current record state."""
    status_code = 409


class DatabaseError(BookkeepingError):
    """Raised when a database operation fails."""
    status_code = 500


class ExchangeRateError(BookkeepingError):
    """Raised when the exchange rate provider cannot supply a rate."""
    status_code = 502


class EmailDeliveryError(BookkeepingError):
    """Raised when the email provider rejects a message."""
    status_code = 502


class LLMError(BookkeepingError):
    """Raised when LLM API call fails."""
    status_code = 502


class ConfigurationError(BookkeepingError):
    """Raised when configuration is invalid."""
    status_code = 503


class ExportError(BookkeepingError):
    """Raised when Excel export fails."""
    status_code = 500
