"""
Unit tests for email rendering and delivery.
"""
import pytest
import requests
from tenacity import wait_none

from core.exceptions import EmailDeliveryError
from core.schema import EmailPayload
from services.email_service import EmailClient, render_email
from tests.fakes import FakeResponse, FakeSession

PAYLOAD = EmailPayload(to="owner@example.com", subject="Hello", html="<p>Hi</p>", text="Hi")


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(EmailClient._post.retry, "wait", wait_none())


@pytest.fixture
def configured(settings):
    return settings.model_copy(update={"resend_api_key": "re_test", "resend_from": "books@example.com"})


def test_unconfigured_email_is_skipped(settings):
    session = FakeSession([FakeResponse(200, {"id": "x"})])
    result = EmailClient(settings=settings, session=session).send_email(PAYLOAD)
    assert result.skipped is True
    assert session.requests == []


def test_send_posts_to_provider(configured):
    session = FakeSession([FakeResponse(200, {"id": "msg-42"})])
    result = EmailClient(settings=configured, session=session).send_email(PAYLOAD)

    assert result.id == "msg-42"
    assert result.skipped is False
    request = session.requests[0]
    assert request["headers"]["Authorization"] == "Bearer re_test"
    assert "Idempotency-Key" in request["headers"]


def test_retries_reuse_idempotency_key(configured):
    session = FakeSession([FakeResponse(500), FakeResponse(200, {"id": "msg-1"})])
    EmailClient(settings=configured, session=session).send_email(PAYLOAD)

    keys = {r["headers"]["Idempotency-Key"] for r in session.requests}
    assert len(session.requests) == 2
    assert len(keys) == 1


def test_rejected_message_raises(configured):
    session = FakeSession([FakeResponse(422, text="invalid recipient")])
    with pytest.raises(EmailDeliveryError) as exc_info:
        EmailClient(settings=configured, session=session).send_email(PAYLOAD)
    assert exc_info.value.details["status_code"] == 422


def test_unreachable_provider_raises(configured):
    session = FakeSession([requests.exceptions.ConnectionError("down")])
    with pytest.raises(EmailDeliveryError):
        EmailClient(settings=configured, session=session).send_email(PAYLOAD)
    assert len(session.requests) == 3


def test_render_low_balance_templates():
    context = {
        "user_name": "Jane",
        "currency": "USD",
        "current_cash": 100.0,
        "total_receivables": 0.0,
        "total_to_pay": 300.0,
        "remaining_balance": -200.0,
        "safe_cash": 125.0,
        "deficit": 200.0,
    }
    html = render_email("low_balance.html", **context)
    text = render_email("low_balance.txt", **context)
    assert "Jane" in html
    assert "200.00" in text
