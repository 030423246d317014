"""
Tests for invoices, invoice payments and catalog items.
"""
from datetime import date

import pytest

from core.exceptions import ConflictError, DataNotFoundError, ValidationError
from core.schema import (
    CatalogItemCreate,
    CatalogItemUpdate,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceItemInput,
    InvoicePaymentCreate,
    InvoiceUpdate,
)
from services.catalog_service import CatalogService
from services.invoice_service import InvoiceService, calculate_totals, payment_status_for


@pytest.fixture
def service(db, business):
    return InvoiceService(db)


def make_invoice(service, user, number=None, items=None, tax_rate=10, client_name="Globex", **extra):
    return service.create_invoice(user, InvoiceCreate(
        invoice_number=number,
        title="Website build",
        issue_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
        client_name=client_name,
        currency="USD",
        tax_rate=tax_rate,
        items=items or [
            InvoiceItemInput(description="Design", quantity=2, unit_price=150),
            InvoiceItemInput(description="Hosting", quantity=1, unit_price=100),
        ],
        **extra,
    ))


def pay(service, user, invoice, amount):
    return service.record_payment(user.id, invoice["id"], InvoicePaymentCreate(
        amount=amount, payment_date=date(2024, 3, 15)
    ))


def test_calculate_totals():
    totals = calculate_totals([{"amount": 100.0}, {"amount": 33.33}], 7.5)
    assert totals == {"subtotal": 133.33, "tax_amount": 10.0, "total_amount": 143.33}


def test_payment_status_for():
    assert payment_status_for(100, 0) == "unpaid"
    assert payment_status_for(100, 40) == "partial"
    assert payment_status_for(100, 99.999) == "paid"


def test_create_computes_totals_server_side(service, user):
    invoice = make_invoice(service, user)
    assert invoice["invoice_number"] == "INV-001"
    assert invoice["subtotal"] == 400.0
    assert invoice["tax_amount"] == 40.0
    assert invoice["total_amount"] == 440.0
    assert invoice["status"] == "draft"
    assert invoice["payment_status"] == "unpaid"
    assert [i["amount"] for i in invoice["items"]] == [300.0, 100.0]
    assert invoice["balance_due"] == 440.0


def test_numbers_follow_highest_suffix(service, user):
    make_invoice(service, user, number="INV-007")
    make_invoice(service, user, number="CUSTOM-1")
    assert service.generate_invoice_number(user.id) == "INV-008"
    assert make_invoice(service, user)["invoice_number"] == "INV-008"


def test_duplicate_number_conflicts(service, user):
    make_invoice(service, user, number="INV-010")
    with pytest.raises(ConflictError):
        make_invoice(service, user, number="INV-010")


def test_catalog_item_prices_line(service, db, user):
    item = CatalogService(db).create_item(user.id, CatalogItemCreate(name="Logo design", unit_price=250, unit="item"))
    invoice = make_invoice(service, user, tax_rate=0, items=[InvoiceItemInput(catalog_item_id=item["id"], quantity=2)])
    assert invoice["items"][0]["description"] == "Logo design"
    assert invoice["items"][0]["unit_price"] == 250
    assert invoice["total_amount"] == 500.0


def test_inactive_catalog_item_rejected(service, db, user):
    catalog = CatalogService(db)
    item = catalog.create_item(user.id, CatalogItemCreate(name="Retired", unit_price=10))
    catalog.delete_item(user.id, item["id"])
    with pytest.raises(ValidationError):
        make_invoice(service, user, items=[InvoiceItemInput(catalog_item_id=item["id"])])


def test_partial_then_full_payment(service, user):
    invoice = make_invoice(service, user)

    partial = pay(service, user, invoice, 140)
    assert partial["payment_status"] == "partial"
    assert partial["amount_paid"] == 140.0
    assert partial["balance_due"] == 300.0

    paid = pay(service, user, invoice, 300)
    assert paid["payment_status"] == "paid"
    assert paid["status"] == "paid"
    assert len(paid["payments"]) == 2


def test_overpayment_rejected(service, user):
    invoice = make_invoice(service, user)
    pay(service, user, invoice, 400)
    with pytest.raises(ValidationError, match="exceeds"):
        pay(service, user, invoice, 40.01)
    assert service.get_invoice(user.id, invoice["id"])["amount_paid"] == 400.0


def test_payment_on_cancelled_invoice_rejected(service, user):
    invoice = make_invoice(service, user)
    service.update_invoice_status(user.id, invoice["id"], "cancelled")
    with pytest.raises(ValidationError):
        pay(service, user, invoice, 10)


def test_status_transitions(service, user):
    invoice = make_invoice(service, user)
    assert service.update_invoice_status(user.id, invoice["id"], "sent")["status"] == "sent"
    assert service.update_invoice_status(user.id, invoice["id"], "sent")["status"] == "sent"
    with pytest.raises(ValidationError):
        service.update_invoice_status(user.id, invoice["id"], "draft")


def test_update_items_recomputes_totals(service, user):
    invoice = make_invoice(service, user)
    updated = service.update_invoice(user.id, invoice["id"], InvoiceUpdate(
        items=[InvoiceItemInput(description="Retainer", quantity=1, unit_price=1000)],
        tax_rate=0,
    ))
    assert updated["total_amount"] == 1000.0
    assert [i["description"] for i in updated["items"]] == ["Retainer"]


def test_update_total_below_paid_rejected(service, user):
    invoice = make_invoice(service, user)
    pay(service, user, invoice, 300)
    with pytest.raises(ValidationError):
        service.update_invoice(user.id, invoice["id"], InvoiceUpdate(
            items=[InvoiceItemInput(description="Small", unit_price=50)],
        ))


def test_update_total_down_to_paid_settles_invoice(service, user):
    invoice = make_invoice(service, user, tax_rate=0, items=[InvoiceItemInput(description="Build", unit_price=100)])
    service.update_invoice_status(user.id, invoice["id"], "sent")
    pay(service, user, invoice, 60)

    updated = service.update_invoice(user.id, invoice["id"], InvoiceUpdate(
        items=[InvoiceItemInput(description="Build", unit_price=60)],
    ))
    assert updated["payment_status"] == "paid"
    assert updated["status"] == "paid"
    assert updated["balance_due"] == 0.0


def test_update_rejects_due_before_issue(service, user):
    invoice = make_invoice(service, user)
    with pytest.raises(ValidationError):
        service.update_invoice(user.id, invoice["id"], InvoiceUpdate(due_date=date(2024, 2, 1)))


def test_paid_invoice_is_read_only(service, user):
    invoice = make_invoice(service, user)
    pay(service, user, invoice, 440)
    with pytest.raises(ValidationError):
        service.update_invoice(user.id, invoice["id"], InvoiceUpdate(title="Changed"))


def test_filter_and_search(service, user):
    make_invoice(service, user, client_name="Globex Corporation")
    second = make_invoice(service, user, client_name="Initech")
    service.update_invoice_status(user.id, second["id"], "sent")

    assert [i["client_name"] for i in service.get_invoices(user.id, InvoiceFilters(status="sent"))] == ["Initech"]
    assert [i["client_name"] for i in service.get_invoices(user.id, InvoiceFilters(search="globex"))] == [
        "Globex Corporation"
    ]


def test_delete_invoice(service, user):
    invoice = make_invoice(service, user)
    assert service.delete_invoice(user.id, invoice["id"]) == {"success": True}
    with pytest.raises(DataNotFoundError):
        service.get_invoice(user.id, invoice["id"])


def test_catalog_update_and_soft_delete(db, business, user):
    catalog = CatalogService(db)
    item = catalog.create_item(user.id, CatalogItemCreate(name="Hourly", unit_price=80, unit="hour"))

    updated = catalog.update_item(user.id, item["id"], CatalogItemUpdate(unit_price=95))
    assert updated["unit_price"] == 95
    assert updated["unit"] == "hour"

    catalog.delete_item(user.id, item["id"])
    assert catalog.get_items(user.id) == []

    restored = catalog.update_item(user.id, item["id"], CatalogItemUpdate(is_active=True))
    assert restored["is_active"] == 1
