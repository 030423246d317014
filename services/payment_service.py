"""
Planned payments (bills to pay).

A pending payment past its due date is reported as ``overdue``; marking a
payment paid records the matching expense transaction.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from core.db import Database, get_db, new_id, update_row, utc_now
from core.exceptions import BookkeepingError, ConflictError, DataNotFoundError, ValidationError
from core.logger import setup_logger
from core.schema import (
    BulkPaymentAction,
    CurrentUser,
    PlannedPaymentCreate,
    PlannedPaymentStatus,
    TransactionCreate,
)
from services.business_service import require_business
from services.transaction_service import TransactionService

logger = setup_logger(__name__)

FALLBACK_EXPENSE_CATEGORY = "Other Expenses"


def effective_status(payment: Dict[str, Any], today: date) -> PlannedPaymentStatus:
    if payment["status"] == "pending" and date.fromisoformat(payment["due_date"]) < today:
        return "overdue"
    return payment["status"]


class PlannedPaymentService:
    """Track upcoming bills and turn them into transactions once paid."""

    def __init__(
        self,
        db: Optional[Database] = None,
        transactions: Optional[TransactionService] = None,
    ):
        self.db = db or get_db()
        self._transactions = transactions

    @property
    def transactions(self) -> TransactionService:
        if self._transactions is None:
            self._transactions = TransactionService(self.db)
        return self._transactions

    def _get_payment(self, business_id: str, payment_id: str) -> Dict[str, Any]:
        payment = self.db.fetch_one(
            """
            SELECT p.*, c.name AS category_name
            FROM planned_payments p
            LEFT JOIN categories c ON c.id = p.category_id
            WHERE p.id = ? AND p.business_id = ?
            """,
            (payment_id, business_id)
        )
        if payment is None:
            raise DataNotFoundError("Payment not found", details={"payment_id": payment_id})
        payment["status"] = effective_status(payment, date.today())
        return payment

    def get_payments(
        self,
        user_id: str,
        status: Optional[PlannedPaymentStatus] = None,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        Planned payments ordered by due date.

        Args:
            user_id: Authenticated user
            status: Keep only payments with this (effective) status
            today: Reference day for the overdue check

        Returns:
            Payment rows with category name and effective status
        """
        business = require_business(self.db, user_id)
        today = today or date.today()
        rows = self.db.fetch_all(
            """
            SELECT p.*, c.name AS category_name
            FROM planned_payments p
            LEFT JOIN categories c ON c.id = p.category_id
            WHERE p.business_id = ?
            ORDER BY p.due_date, p.created_at
            """,
            (business["id"],)
        )
        for row in rows:
            row["status"] = effective_status(row, today)
        if status:
            rows = [row for row in rows if row["status"] == status]
        return rows

    def get_payment_summary(self, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Totals over unpaid planned payments.

        Returns:
            total_amount, payment_count, next_payment_date, upcoming_count,
            overdue_count and base_currency
        """
        business = require_business(self.db, user_id)
        today = today or date.today()
        unpaid = [p for p in self.get_payments(user_id, today=today) if p["status"] != "paid"]
        upcoming = [p for p in unpaid if p["status"] == "pending"]

        return {
            "total_amount": round(sum(p["amount"] for p in unpaid), 2),
            "payment_count": len(unpaid),
            "next_payment_date": upcoming[0]["due_date"] if upcoming else None,
            "upcoming_count": len(upcoming),
            "overdue_count": len(unpaid) - len(upcoming),
            "base_currency": business["base_currency"],
        }

    def create_payment(self, user_id: str, data: PlannedPaymentCreate) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        if data.category_id:
            category = self.db.fetch_one(
                "SELECT type FROM categories WHERE id = ? AND business_id = ?",
                (data.category_id, business["id"])
            )
            if category is None or category["type"] != "expense":
                raise ValidationError("Invalid expense category", details={"category_id": data.category_id})

        payment_id = new_id()
        self.db.insert("planned_payments", {
            "id": payment_id,
            "business_id": business["id"],
            "category_id": data.category_id,
            "name": data.name,
            "amount": data.amount,
            "currency": data.currency or business["base_currency"],
            "due_date": data.due_date.isoformat(),
            "status": "pending",
            "notes": data.notes,
            "created_at": utc_now(),
        })
        logger.info(f"Planned payment '{data.name}' due {data.due_date}")
        return self._get_payment(business["id"], payment_id)

    def _expense_category_id(self, business_id: str, payment: Dict[str, Any]) -> str:
        if payment["category_id"]:
            return payment["category_id"]
        category = self.db.fetch_one(
            """
            SELECT id FROM categories WHERE business_id = ? AND type = 'expense'
            ORDER BY CASE WHEN name = ? THEN 0 ELSE 1 END, name LIMIT 1
            """,
            (business_id, FALLBACK_EXPENSE_CATEGORY)
        )
        if category is None:
            raise ValidationError("No expense category available to record the payment")
        return category["id"]

    def mark_as_paid(self, user: CurrentUser, payment_id: str, paid_on: Optional[date] = None) -> Dict[str, Any]:
        """
        Mark a planned payment paid and record it as an expense transaction.

        Args:
            user: Authenticated user
            payment_id: Planned payment id
            paid_on: Transaction date (defaults to today)

        Returns:
            Updated payment with ``transaction_id`` set

        Raises:
            ConflictError: If the payment is already paid
        """
        business = require_business(self.db, user.id)
        payment = self._get_payment(business["id"], payment_id)
        if payment["status"] == "paid":
            raise ConflictError("Payment is already paid", details={"payment_id": payment_id})
        category_id = self._expense_category_id(business["id"], payment)

        # Only one caller can move the row from pending to paid
        claimed = self.db.execute(
            "UPDATE planned_payments SET status = 'paid' "
            "WHERE id = ? AND business_id = ? AND status = 'pending'",
            (payment_id, business["id"])
        )
        if claimed == 0:
            raise ConflictError("Payment is already paid", details={"payment_id": payment_id})

        try:
            transaction = self.transactions.create_transaction(user, TransactionCreate(
                category_id=category_id,
                amount=payment["amount"],
                currency=payment["currency"],
                transaction_date=paid_on or date.today(),
                payment_method="other",
                client_vendor=payment["name"],
                notes=payment["notes"],
            ))
        except BookkeepingError:
            self.db.execute(
                "UPDATE planned_payments SET status = 'pending' WHERE id = ? AND business_id = ?",
                (payment_id, business["id"])
            )
            raise

        with self.db.connection() as conn:
            update_row(
                conn, "planned_payments", payment_id,
                {"transaction_id": transaction["id"]},
                scope={"business_id": business["id"]}
            )
        logger.info(f"Planned payment {payment_id} paid via transaction {transaction['id']}")
        return self._get_payment(business["id"], payment_id)

    def delete_payment(self, user_id: str, payment_id: str) -> Dict[str, Any]:
        """Delete a planned payment. A transaction it produced is kept."""
        business = require_business(self.db, user_id)
        self._get_payment(business["id"], payment_id)
        self.db.execute(
            "DELETE FROM planned_payments WHERE id = ? AND business_id = ?",
            (payment_id, business["id"])
        )
        return {"success": True}

    def bulk_action(self, user: CurrentUser, action: BulkPaymentAction) -> Dict[str, Any]:
        """
        Apply ``mark_paid`` or ``delete`` to several payments.

        Failures are reported per id; the remaining ids are still processed.
        """
        succeeded: List[str] = []
        failed: List[Dict[str, str]] = []
        for payment_id in action.ids:
            try:
                if action.action == "mark_paid":
                    self.mark_as_paid(user, payment_id)
                else:
                    self.delete_payment(user.id, payment_id)
                succeeded.append(payment_id)
            except (DataNotFoundError, ConflictError, ValidationError) as e:
                failed.append({"id": payment_id, "error": e.message})

        logger.info(f"Bulk {action.action}: {len(succeeded)} ok, {len(failed)} failed")
        return {"succeeded": succeeded, "failed": failed}
