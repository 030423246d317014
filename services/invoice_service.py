"""
Invoice service.

Totals are always computed here from the line items; client-supplied totals
are never trusted. Payments are checked against the outstanding balance
inside the same database transaction that records them.
"""
import re
import sqlite3
from typing import Any, Dict, List, Optional

from core.db import Database, get_db, insert_row, new_id, update_row, utc_now
from core.exceptions import ConflictError, DataNotFoundError, ValidationError
from core.logger import setup_logger
from core.matching import fuzzy_filter
from core.schema import (
    CurrentUser,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceItemInput,
    InvoicePaymentCreate,
    InvoiceStatus,
    InvoiceUpdate,
)
from services.business_service import require_business

logger = setup_logger(__name__)

INVOICE_NUMBER_PATTERN = re.compile(r"^INV-(\d+)$")
SEARCH_FIELDS = ["invoice_number", "client_name", "title"]
REQUIRED_FIELDS = ("title", "client_name", "tax_rate", "currency", "issue_date", "due_date")

# Allowed status changes; paid and cancelled are terminal
STATUS_TRANSITIONS: Dict[str, set] = {
    "draft": {"sent", "cancelled"},
    "sent": {"viewed", "paid", "overdue", "cancelled"},
    "viewed": {"paid", "overdue", "cancelled"},
    "overdue": {"paid", "cancelled"},
    "paid": set(),
    "cancelled": set(),
}


def calculate_totals(items: List[Dict[str, Any]], tax_rate: float) -> Dict[str, float]:
    """
    Compute subtotal, tax and total from priced line items.

    Args:
        items: Line items with ``amount``
        tax_rate: Percentage (0-100)

    Returns:
        Dict with subtotal, tax_amount and total_amount
    """
    subtotal = round(sum(item["amount"] for item in items), 2)
    tax_amount = round(subtotal * tax_rate / 100, 2)
    return {
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "total_amount": round(subtotal + tax_amount, 2),
    }


def payment_status_for(total_amount: float, paid: float) -> str:
    if paid <= 0:
        return "unpaid"
    if paid + 0.005 >= total_amount:
        return "paid"
    return "partial"


class InvoiceService:
    """Create, price, track and collect invoices of the user's business."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def _price_items(self, business_id: str, items: List[InvoiceItemInput]) -> List[Dict[str, Any]]:
        """Resolve catalog references and compute each line amount."""
        priced = []
        for position, item in enumerate(items):
            description = item.description
            unit_price = item.unit_price
            if item.catalog_item_id:
                catalog = self.db.fetch_one(
                    "SELECT name, description, unit_price FROM invoice_catalog_items "
                    "WHERE id = ? AND business_id = ? AND is_active = 1",
                    (item.catalog_item_id, business_id)
                )
                if catalog is None:
                    raise ValidationError(
                        "Catalog item not found",
                        details={"catalog_item_id": item.catalog_item_id}
                    )
                description = description or catalog["description"] or catalog["name"]
                if unit_price is None:
                    unit_price = catalog["unit_price"]

            priced.append({
                "catalog_item_id": item.catalog_item_id,
                "description": description,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "amount": round(item.quantity * unit_price, 2),
                "position": position,
            })
        return priced

    def _insert_items(self, conn: sqlite3.Connection, invoice_id: str, items: List[Dict[str, Any]]) -> None:
        for item in items:
            insert_row(conn, "invoice_items", {"id": new_id(), "invoice_id": invoice_id, **item})

    def _get_row(self, business_id: str, invoice_id: str) -> Dict[str, Any]:
        invoice = self.db.fetch_one(
            "SELECT * FROM invoices WHERE id = ? AND business_id = ?",
            (invoice_id, business_id)
        )
        if invoice is None:
            raise DataNotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        return invoice

    def _next_number(self, business_id: str) -> str:
        highest = 0
        for row in self.db.fetch_all(
            "SELECT invoice_number FROM invoices WHERE business_id = ?", (business_id,)
        ):
            match = INVOICE_NUMBER_PATTERN.match(row["invoice_number"] or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return f"INV-{highest + 1:03d}"

    def generate_invoice_number(self, user_id: str) -> str:
        """
        Next free number in the ``INV-001`` sequence of the user's business.
        """
        business = require_business(self.db, user_id)
        return self._next_number(business["id"])

    def create_invoice(self, user: CurrentUser, data: InvoiceCreate) -> Dict[str, Any]:
        """
        Create a draft invoice with server-computed totals.

        Args:
            user: Authenticated user
            data: Invoice with line items

        Returns:
            Invoice with items, payments and balance

        Raises:
            ValidationError: If a referenced catalog item is missing
            ConflictError: If the invoice number is already used
        """
        business = require_business(self.db, user.id)
        items = self._price_items(business["id"], data.items)
        totals = calculate_totals(items, data.tax_rate)

        invoice_number = data.invoice_number or self._next_number(business["id"])
        clash = self.db.fetch_one(
            "SELECT id FROM invoices WHERE business_id = ? AND invoice_number = ?",
            (business["id"], invoice_number)
        )
        if clash:
            raise ConflictError("Invoice number already exists", details={"invoice_number": invoice_number})

        invoice_id = new_id()
        now = utc_now()
        with self.db.connection() as conn:
            insert_row(conn, "invoices", {
                "id": invoice_id,
                "user_id": user.id,
                "business_id": business["id"],
                "invoice_number": invoice_number,
                "title": data.title,
                "description": data.description,
                "issue_date": data.issue_date.isoformat(),
                "due_date": data.due_date.isoformat(),
                "client_name": data.client_name,
                "client_email": data.client_email,
                "client_address": data.client_address,
                "client_phone": data.client_phone,
                "tax_rate": data.tax_rate,
                "currency": data.currency,
                "status": "draft",
                "payment_status": "unpaid",
                "notes": data.notes,
                "terms": data.terms,
                "created_at": now,
                "updated_at": now,
                **totals,
            })
            self._insert_items(conn, invoice_id, items)

        logger.info(f"Created invoice {invoice_number} ({totals['total_amount']} {data.currency})")
        return self._load(business["id"], invoice_id)

    def _load(self, business_id: str, invoice_id: str) -> Dict[str, Any]:
        invoice = self._get_row(business_id, invoice_id)
        invoice["items"] = self.db.fetch_all(
            "SELECT * FROM invoice_items WHERE invoice_id = ? ORDER BY position", (invoice_id,)
        )
        invoice["payments"] = self.db.fetch_all(
            "SELECT * FROM invoice_payments WHERE invoice_id = ? ORDER BY payment_date, created_at",
            (invoice_id,)
        )
        paid = round(sum(p["amount"] for p in invoice["payments"]), 2)
        invoice["amount_paid"] = paid
        invoice["balance_due"] = round(max(invoice["total_amount"] - paid, 0.0), 2)
        return invoice

    def get_invoice(self, user_id: str, invoice_id: str) -> Dict[str, Any]:
        """Invoice with items, payments, amount paid and balance due."""
        business = require_business(self.db, user_id)
        return self._load(business["id"], invoice_id)

    def get_invoices(self, user_id: str, filters: Optional[InvoiceFilters] = None) -> List[Dict[str, Any]]:
        business = require_business(self.db, user_id)
        filters = filters or InvoiceFilters()

        clauses = ["business_id = ?"]
        params: List[Any] = [business["id"]]
        if filters.status:
            clauses.append("status = ?")
            params.append(filters.status)
        if filters.date_from:
            clauses.append("issue_date >= ?")
            params.append(filters.date_from.isoformat())
        if filters.date_to:
            clauses.append("issue_date <= ?")
            params.append(filters.date_to.isoformat())

        rows = self.db.fetch_all(
            f"SELECT * FROM invoices WHERE {' AND '.join(clauses)} ORDER BY created_at DESC",
            params
        )
        if filters.search:
            rows = fuzzy_filter(rows, filters.search, SEARCH_FIELDS)
        return rows

    def update_invoice(self, user_id: str, invoice_id: str, updates: InvoiceUpdate) -> Dict[str, Any]:
        """
        Update invoice fields. Supplying ``items`` replaces every line item;
        totals are recomputed whenever items or the tax rate change.

        Raises:
            ValidationError: If the invoice is paid or cancelled, or the new
                total is below what was already paid
        """
        business = require_business(self.db, user_id)
        invoice = self._load(business["id"], invoice_id)
        if invoice["status"] in ("paid", "cancelled"):
            raise ValidationError(
                f"Cannot edit a {invoice['status']} invoice",
                details={"invoice_id": invoice_id, "status": invoice["status"]}
            )

        values = {
            key: value for key, value in updates.model_dump(exclude_unset=True, exclude={"items"}).items()
            if value is not None or key not in REQUIRED_FIELDS
        }
        for key in ("issue_date", "due_date"):
            if key in values:
                values[key] = values[key].isoformat()

        issue_date = values.get("issue_date", invoice["issue_date"])
        due_date = values.get("due_date", invoice["due_date"])
        if due_date < issue_date:
            raise ValidationError("due_date must not be before issue_date")

        items = None
        if updates.items is not None:
            items = self._price_items(business["id"], updates.items)
        if items is not None or "tax_rate" in values:
            priced = items if items is not None else invoice["items"]
            totals = calculate_totals(priced, values.get("tax_rate", invoice["tax_rate"]))
            if totals["total_amount"] + 0.005 < invoice["amount_paid"]:
                raise ValidationError(
                    "Invoice total cannot be lower than the amount already paid",
                    details={"total_amount": totals["total_amount"], "amount_paid": invoice["amount_paid"]}
                )
            values.update(totals)
            values["payment_status"] = payment_status_for(totals["total_amount"], invoice["amount_paid"])
            if values["payment_status"] == "paid":
                values["status"] = "paid"

        values["updated_at"] = utc_now()
        with self.db.connection() as conn:
            update_row(conn, "invoices", invoice_id, values, scope={"business_id": business["id"]})
            if items is not None:
                conn.execute("DELETE FROM invoice_items WHERE invoice_id = ?", (invoice_id,))
                self._insert_items(conn, invoice_id, items)

        logger.info(f"Updated invoice {invoice['invoice_number']}")
        return self._load(business["id"], invoice_id)

    def update_invoice_status(self, user_id: str, invoice_id: str, status: InvoiceStatus) -> Dict[str, Any]:
        """
        Move an invoice through its lifecycle.

        Raises:
            ValidationError: If the transition is not allowed
        """
        business = require_business(self.db, user_id)
        invoice = self._get_row(business["id"], invoice_id)
        current = invoice["status"]
        if status == current:
            return self._load(business["id"], invoice_id)
        if status not in STATUS_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot change invoice status from {current} to {status}",
                details={"from": current, "to": status, "allowed": sorted(STATUS_TRANSITIONS[current])}
            )

        self.db.execute(
            "UPDATE invoices SET status = ?, updated_at = ? WHERE id = ? AND business_id = ?",
            (status, utc_now(), invoice_id, business["id"])
        )
        logger.info(f"Invoice {invoice['invoice_number']}: {current} -> {status}")
        return self._load(business["id"], invoice_id)

    def record_payment(self, user_id: str, invoice_id: str, payment: InvoicePaymentCreate) -> Dict[str, Any]:
        """
        Record a payment against an invoice.

        The payment status is recomputed from all payments; a fully paid
        invoice moves to status ``paid``.

        Raises:
            ValidationError: If the invoice is cancelled or the payment
                exceeds the balance due
        """
        business = require_business(self.db, user_id)

        with self.db.connection() as conn:
            invoice = conn.execute(
                "SELECT * FROM invoices WHERE id = ? AND business_id = ?",
                (invoice_id, business["id"])
            ).fetchone()
            if invoice is None:
                raise DataNotFoundError("Invoice not found", details={"invoice_id": invoice_id})
            if invoice["status"] == "cancelled":
                raise ValidationError(
                    "Cannot record a payment on a cancelled invoice",
                    details={"invoice_id": invoice_id}
                )

            paid = conn.execute(
                "SELECT COALESCE(SUM(amount), 0) AS paid FROM invoice_payments WHERE invoice_id = ?",
                (invoice_id,)
            ).fetchone()["paid"]
            balance_due = round(invoice["total_amount"] - paid, 2)
            if payment.amount > balance_due + 0.005:
                raise ValidationError(
                    "Payment exceeds the balance due",
                    details={"amount": payment.amount, "balance_due": balance_due}
                )

            insert_row(conn, "invoice_payments", {
                "id": new_id(),
                "invoice_id": invoice_id,
                "amount": payment.amount,
                "payment_date": payment.payment_date.isoformat(),
                "payment_method": payment.payment_method,
                "notes": payment.notes,
                "created_at": utc_now(),
            })

            payment_status = payment_status_for(invoice["total_amount"], paid + payment.amount)
            values = {"payment_status": payment_status, "updated_at": utc_now()}
            if payment_status == "paid":
                values["status"] = "paid"
            update_row(conn, "invoices", invoice_id, values, scope={"business_id": business["id"]})

        logger.info(f"Recorded payment of {payment.amount} on invoice {invoice['invoice_number']} ({payment_status})")
        return self._load(business["id"], invoice_id)

    def delete_invoice(self, user_id: str, invoice_id: str) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        self._get_row(business["id"], invoice_id)
        self.db.execute(
            "DELETE FROM invoices WHERE id = ? AND business_id = ?",
            (invoice_id, business["id"])
        )
        return {"success": True}

