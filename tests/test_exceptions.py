"""
Unit tests for custom exceptions.
"""
from core.exceptions import (
    BookkeepingError,
    BusinessNotFoundError,
    ConfigurationError,
    ConflictError,
    DataNotFoundError,
    EmailDeliveryError,
    EmptyJournalEntryError,
    ExchangeRateError,
    ExportError,
    LLMError,
    NotAuthenticatedError,
    ValidationError,
)


def test_base_exception():
    """Test base exception class."""
    exc = BookkeepingError("Test error", details={"key": "value"})
    assert str(exc) == "Test error"
    assert exc.message == "Test error"
    assert exc.details == {"key": "value"}
    assert exc.status_code == 500


def test_exception_hierarchy():
    """Test exception inheritance."""
    for cls in (
        NotAuthenticatedError,
        BusinessNotFoundError,
        DataNotFoundError,
        ValidationError,
        ConflictError,
        ExchangeRateError,
        EmailDeliveryError,
        LLMError,
        ConfigurationError,
        ExportError,
    ):
        assert issubclass(cls, BookkeepingError)
    assert issubclass(EmptyJournalEntryError, ValidationError)


def test_status_codes():
    assert NotAuthenticatedError("x").status_code == 401
    assert BusinessNotFoundError().status_code == 404
    assert DataNotFoundError("x").status_code == 404
    assert ValidationError("x").status_code == 422
    assert ConflictError("x").status_code == 409
    assert LLMError("x").status_code == 502


def test_business_not_found_default_message():
    assert BusinessNotFoundError().message == "Business not found"


def test_exception_with_details():
    """Test exception with details dictionary."""
    details = {"invoice_id": "inv-1", "balance_due": 42.5}
    exc = ValidationError("Payment exceeds balance", details=details)
    assert exc.message == "Payment exceeds balance"
    assert exc.details["invoice_id"] == "inv-1"
    assert exc.details["balance_due"] == 42.5


def test_exception_without_details():
    """Test exception without details."""
    exc = LLMError("API call failed")
    assert exc.message == "API call failed"
    assert exc.details == {}
