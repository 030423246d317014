"""
Tests for the cash position, business health dashboard and notifications.
"""
import json
from datetime import timedelta

import pytest

from core.exceptions import DatabaseError
from core.schema import (
    BusinessCreate,
    CurrentUser,
    InvoiceCreate,
    InvoiceItemInput,
    PlannedPaymentCreate,
    TransactionCreate,
)
from services.business_service import BusinessService
from services.cashflow import CashPositionCalculator, get_outstanding_invoices
from services.email_service import EmailClient
from services.health_service import HealthService, build_alerts
from services.invoice_service import InvoiceService
from services.notification_service import NotificationService
from services.payment_service import PlannedPaymentService
from services.transaction_service import TransactionService
from tests.fakes import FakeResponse, FakeSession


@pytest.fixture
def books(db, business, user, category_ids, today):
    """Helpers that add cash, bills and invoices to the test business."""

    class Books:
        def cash(self, amount):
            TransactionService(db).create_transaction(user, TransactionCreate(
                category_id=category_ids["Sales"], amount=amount, currency="USD", transaction_date=today,
            ))

        def bill(self, name, amount, days, currency=None):
            return PlannedPaymentService(db).create_payment(user.id, PlannedPaymentCreate(
                name=name, amount=amount, currency=currency, due_date=today + timedelta(days=days),
            ))

        def invoice(self, amount, due_in, status="sent", client_name="Globex"):
            service = InvoiceService(db)
            issue = min(today, today + timedelta(days=due_in))
            invoice = service.create_invoice(user, InvoiceCreate(
                title="Work",
                issue_date=issue,
                due_date=today + timedelta(days=due_in),
                client_name=client_name,
                currency="USD",
                items=[InvoiceItemInput(description="Work", unit_price=amount)],
            ))
            if status != "draft":
                service.update_invoice_status(user.id, invoice["id"], status)
            return invoice

    return Books()


def sent_subjects(session):
    return [json.loads(r["data"])["subject"] for r in session.requests]


def test_safe_position(db, business, books):
    books.cash(1000)
    books.invoice(500, due_in=20)

    position = CashPositionCalculator(db).compute(business)
    assert position.current_cash == 1000.0
    assert position.total_receivables == 500.0
    assert position.remaining_balance == 1500.0
    assert position.safe_cash == 1250.0
    assert position.status == "safe"


def test_warning_position(db, business, books):
    books.cash(1000)
    books.bill("Software", 100, days=3)

    position = CashPositionCalculator(db).compute(business)
    assert position.remaining_balance == 900.0
    assert position.status == "warning"
    assert "safe cash threshold" in position.explanation


def test_bills_beyond_horizon_are_ignored(db, business, books):
    books.cash(100)
    books.bill("Annual insurance", 5000, days=60)
    assert CashPositionCalculator(db).compute(business).total_to_pay == 0.0


def test_overdue_bills_are_counted(db, business, books, today):
    books.bill("Late rent", 300, days=-2)
    position = CashPositionCalculator(db).compute(business)
    assert position.upcoming[0].is_overdue is True
    assert position.status == "at-risk"
    assert position.deficit == 300.0


def test_foreign_bill_converted_to_base(db, business, books):
    books.bill("Supplier", 100, days=1, currency="EUR")
    position = CashPositionCalculator(db).compute(business)
    assert position.upcoming[0].base_amount == 110.0
    assert position.total_to_pay == 110.0


def test_outstanding_invoices_skip_draft_paid_and_cancelled(db, business, books):
    books.invoice(100, due_in=5, status="draft")
    books.invoice(200, due_in=5, status="cancelled")
    books.invoice(300, due_in=5)
    remaining = sorted(row["remaining"] for row in get_outstanding_invoices(db, business["id"]))
    assert remaining == [100.0, 300.0]


def test_health_dashboard_at_risk_sends_alert_once(db, books, user, email_client, email_session):
    books.cash(1000)
    books.bill("Rent", 1500, days=5)

    service = HealthService(db)
    result = service.get_health_dashboard(user)

    health = result["health_data"]
    assert health["status"] == "at-risk"
    assert health["remaining_balance"] == -500.0
    assert health["total_to_pay"] == 1500.0
    assert result["expenses"][0]["name"] == "Rent"
    assert {a["icon"] for a in result["alerts"]} == {"clock", "trend"}
    assert sent_subjects(email_session) == ["Negative Balance Alert"]

    service.get_health_dashboard(user)
    assert len(email_session.requests) == 1


def test_health_dashboard_invoice_reminders(db, books, user, email_client, email_session):
    books.cash(5000)
    books.invoice(100, due_in=2)
    books.invoice(200, due_in=-4, client_name="Initech")

    result = HealthService(db).get_health_dashboard(user)
    assert sent_subjects(email_session) == ["Invoice Due Reminder (1)", "Overdue Invoices (1)"]
    assert any(a["message"] == "1 payment overdue" for a in result["alerts"])


def test_email_failure_does_not_fail_dashboard(db, books, user, settings):
    books.cash(100)
    books.bill("Rent", 500, days=1)

    configured = settings.model_copy(update={"resend_api_key": "re_test", "resend_from": "books@example.com"})
    failing = EmailClient(settings=configured, session=FakeSession([FakeResponse(422, text="bad")]))
    notifications = NotificationService(db, email_client=failing)

    result = HealthService(db, notifications=notifications).get_health_dashboard(user)
    assert result["health_data"]["status"] == "at-risk"
    assert db.fetch_all("SELECT * FROM notification_log") == []


def test_build_alerts_pluralizes(db, business, books):
    books.invoice(100, due_in=-1)
    books.invoice(100, due_in=-2)
    position = CashPositionCalculator(db).compute(business)
    messages = [a.message for a in build_alerts(position)]
    assert "2 payments overdue" in messages


def test_skipped_email_still_deduplicates(db, business, user):
    service = NotificationService(db)
    context = {"currency": "USD", "deficit": 10}
    assert service.notify(business["id"], user, "LOW_BALANCE", {
        **context, "current_cash": 0, "total_receivables": 0, "total_to_pay": 10,
        "remaining_balance": -10, "safe_cash": 0,
    }) is True
    assert service.was_sent_today(business["id"], "LOW_BALANCE") is True
    assert service.notify(business["id"], user, "LOW_BALANCE", context) is False


def test_user_without_email_is_not_notified(db, business):
    service = NotificationService(db)
    assert service.notify(business["id"], CurrentUser(id="user-1"), "LOW_BALANCE", {}) is False


def test_expense_triggers_low_balance_alert(db, business, user, category_ids, today, email_client, email_session):
    TransactionService(db).create_transaction(user, TransactionCreate(
        category_id=category_ids["Rent"], amount=250, currency="USD", transaction_date=today,
    ))
    assert sent_subjects(email_session) == ["Negative Balance Alert"]


def test_low_balance_check_failure_keeps_expense(db, business, user, category_ids, today):
    class BrokenCalculator:
        def compute(self, business, today=None):
            raise DatabaseError("Database operation failed")

    notifications = NotificationService(db, calculator=BrokenCalculator())
    tx = TransactionService(db, notifications=notifications).create_transaction(user, TransactionCreate(
        category_id=category_ids["Rent"], amount=250, currency="USD", transaction_date=today,
    ))
    assert tx["base_amount"] == 250
    assert notifications.check_low_balance(business, user) is False


def test_smart_notifications_run(db, books, user, email_client, email_session):
    books.invoice(100, due_in=1)
    books.bill("Rent", 500, days=2)
    BusinessService(db).create_business(CurrentUser(id="no-email"), BusinessCreate(name="Silent Co"))

    result = NotificationService(db).run_smart_notifications()
    assert result == {
        "reminders_sent": 1,
        "overdue_alerts": 0,
        "negative_balance_alerts": 1,
        "processed": 2,
        "errors": [],
    }

    again = NotificationService(db).run_smart_notifications()
    assert again["reminders_sent"] == 0
    assert again["negative_balance_alerts"] == 0
