"""
Unit tests for the exchange rate provider client.
"""
import pytest
import requests
from tenacity import wait_none

from core.exceptions import ExchangeRateError
from services.rate_provider import ExchangeRateProvider
from tests.fakes import FakeResponse, FakeSession


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(ExchangeRateProvider._get_json.retry, "wait", wait_none())


def make_provider(*responses):
    session = FakeSession(list(responses))
    provider = ExchangeRateProvider(api_url="https://rates.test/v6", api_key="key-123", session=session)
    return provider, session


def test_fetch_rates_returns_conversion_table():
    provider, session = make_provider(
        FakeResponse(200, {"result": "success", "conversion_rates": {"USD": 1.0, "EUR": 0.9}})
    )
    assert provider.fetch_rates("USD") == {"USD": 1.0, "EUR": 0.9}
    assert session.requests[0]["url"] == "https://rates.test/v6/key-123/latest/USD"


def test_missing_api_key_raises_without_request():
    session = FakeSession([FakeResponse(200, {})])
    provider = ExchangeRateProvider(api_key="", session=session)
    with pytest.raises(ExchangeRateError):
        provider.fetch_rates("USD")
    assert session.requests == []


def test_transient_status_is_retried():
    provider, session = make_provider(
        FakeResponse(503),
        FakeResponse(200, {"conversion_rates": {"EUR": 0.9}}),
    )
    assert provider.fetch_rates("USD") == {"EUR": 0.9}
    assert len(session.requests) == 2


def test_timeouts_exhaust_retries():
    provider, session = make_provider(requests.exceptions.Timeout("slow"))
    with pytest.raises(ExchangeRateError) as exc_info:
        provider.fetch_rates("USD")
    assert len(session.requests) == 3
    assert exc_info.value.message == "Exchange rate provider unavailable"


def test_client_error_is_not_retried():
    provider, session = make_provider(FakeResponse(403, text="forbidden"))
    with pytest.raises(ExchangeRateError) as exc_info:
        provider.fetch_rates("USD")
    assert exc_info.value.details["status_code"] == 403
    assert len(session.requests) == 1


def test_invalid_json():
    provider, _ = make_provider(FakeResponse(200, None))
    with pytest.raises(ExchangeRateError, match="invalid JSON"):
        provider.fetch_rates("USD")


def test_error_body_without_rates():
    provider, _ = make_provider(FakeResponse(200, {"result": "error", "error-type": "unsupported-code"}))
    with pytest.raises(ExchangeRateError) as exc_info:
        provider.fetch_rates("XXX")
    assert exc_info.value.details["result"] == "error"
