"""
Transaction service.
Records income and expenses in the business base currency, keeps the linked
journal entry in step, and exports transactions to Excel.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from core.currency import ExchangeRateResolver, get_resolver
from core.db import Database, get_db, insert_row, new_id, update_row, utc_now
from core.exceptions import ConflictError, DataNotFoundError, ValidationError
from core.exporters import create_output_filename, export_transactions_to_excel
from core.logger import setup_logger
from core.matching import fuzzy_filter
from core.schema import (
    CurrentUser,
    RateQuote,
    TransactionCreate,
    TransactionFilters,
    TransactionUpdate,
)
from services.business_service import require_business
from services.cashflow import get_cash_balance
from services.journal_service import create_entry_from_transaction, replace_entry_lines
from services.notification_service import NotificationService

logger = setup_logger(__name__)

SEARCH_FIELDS = ["client_vendor", "notes", "category_name"]

TRANSACTION_SELECT = """
    SELECT t.*, c.name AS category_name, c.type AS category_type
    FROM transactions t
    JOIN categories c ON c.id = t.category_id
"""


class TransactionService:
    """Service for recording and querying income/expense transactions."""

    def __init__(
        self,
        db: Optional[Database] = None,
        resolver: Optional[ExchangeRateResolver] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.db = db or get_db()
        self.resolver = resolver or get_resolver()
        self._notifications = notifications

    @property
    def notifications(self) -> NotificationService:
        if self._notifications is None:
            self._notifications = NotificationService(self.db)
        return self._notifications

    def _get_category(self, business_id: str, category_id: str) -> Dict[str, Any]:
        category = self.db.fetch_one(
            "SELECT * FROM categories WHERE id = ? AND business_id = ?",
            (category_id, business_id)
        )
        if category is None:
            raise ValidationError("Invalid category", details={"category_id": category_id})
        return category

    def _get_transaction(self, business_id: str, transaction_id: str) -> Dict[str, Any]:
        row = self.db.fetch_one(
            f"{TRANSACTION_SELECT} WHERE t.id = ? AND t.business_id = ?",
            (transaction_id, business_id)
        )
        if row is None:
            raise DataNotFoundError("Transaction not found", details={"transaction_id": transaction_id})
        return row

    def _convert(self, amount: float, currency: str, base_currency: str, on_date: date) -> RateQuote:
        quote = self.resolver.resolve(currency, base_currency, on_date)
        if quote.estimated:
            logger.warning(
                f"No rate for {currency}->{base_currency} on {on_date}; "
                f"recording {amount} {currency} at an estimated rate of {quote.rate}"
            )
        return quote

    def get_transactions(self, user_id: str, filters: Optional[TransactionFilters] = None) -> List[Dict[str, Any]]:
        """
        List transactions of the user's business, newest first.

        Args:
            user_id: Authenticated user
            filters: Category, date range, payment method, fuzzy search and
                whether to include void transactions

        Returns:
            Transaction rows with category name and type
        """
        business = require_business(self.db, user_id)
        filters = filters or TransactionFilters()

        clauses = ["t.business_id = ?"]
        params: List[Any] = [business["id"]]
        if filters.category_id:
            clauses.append("t.category_id = ?")
            params.append(filters.category_id)
        if filters.start_date:
            clauses.append("t.transaction_date >= ?")
            params.append(filters.start_date.isoformat())
        if filters.end_date:
            clauses.append("t.transaction_date <= ?")
            params.append(filters.end_date.isoformat())
        if filters.payment_method:
            clauses.append("t.payment_method = ?")
            params.append(filters.payment_method)
        if not filters.include_void:
            clauses.append("t.status = 'posted'")

        rows = self.db.fetch_all(
            f"{TRANSACTION_SELECT} WHERE {' AND '.join(clauses)} "
            "ORDER BY t.transaction_date DESC, t.created_at DESC",
            params
        )
        if filters.search:
            rows = fuzzy_filter(rows, filters.search, SEARCH_FIELDS)
        return rows

    def get_transaction(self, user_id: str, transaction_id: str) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        return self._get_transaction(business["id"], transaction_id)

    def get_total_cash_balance(self, user_id: str) -> Dict[str, Any]:
        """Income minus expenses of posted transactions, in base currency."""
        business = require_business(self.db, user_id)
        return {
            "balance": get_cash_balance(self.db, business["id"]),
            "currency": business["base_currency"],
        }

    def create_transaction(self, user: CurrentUser, data: TransactionCreate) -> Dict[str, Any]:
        """
        Record a transaction and post its journal entry.

        The amount is converted to the business base currency at the rate of
        the transaction date. Recording an expense re-checks the projected
        balance and may send a low balance alert.

        Args:
            user: Authenticated user
            data: Validated transaction

        Returns:
            Created transaction row with category name and type

        Raises:
            ValidationError: If the category does not belong to the business
        """
        business = require_business(self.db, user.id)
        category = self._get_category(business["id"], data.category_id)

        quote = self._convert(data.amount, data.currency, business["base_currency"], data.transaction_date)
        base_amount = round(data.amount * quote.rate, 2)

        transaction_id = new_id()
        now = utc_now()
        with self.db.connection() as conn:
            entry_id = create_entry_from_transaction(
                conn,
                business["id"],
                category,
                base_amount,
                data.transaction_date,
                description=data.client_vendor or data.notes or category["name"],
            )
            insert_row(conn, "transactions", {
                "id": transaction_id,
                "business_id": business["id"],
                "category_id": category["id"],
                "amount": data.amount,
                "currency": data.currency,
                "base_amount": base_amount,
                "exchange_rate": quote.rate,
                "rate_estimated": int(quote.estimated),
                "transaction_date": data.transaction_date.isoformat(),
                "payment_method": data.payment_method,
                "client_vendor": data.client_vendor,
                "notes": data.notes,
                "status": "posted",
                "journal_entry_id": entry_id,
                "created_at": now,
                "updated_at": now,
            })

        logger.info(
            f"Recorded {category['type']} {data.amount} {data.currency} "
            f"({base_amount} {business['base_currency']}) for business {business['id']}"
        )

        if category["type"] == "expense":
            self.notifications.check_low_balance(business, user)

        return self._get_transaction(business["id"], transaction_id)

    def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        updates: TransactionUpdate,
    ) -> Dict[str, Any]:
        """
        Update a transaction.

        When amount, currency or date change, the base amount is recomputed at
        the rate of the effective transaction date and the journal lines are
        rewritten.

        Raises:
            DataNotFoundError: If the transaction is not in the user's business
            ConflictError: If the transaction is void
        """
        business = require_business(self.db, user_id)
        current = self._get_transaction(business["id"], transaction_id)
        if current["status"] == "void":
            raise ConflictError("Cannot update a void transaction", details={"transaction_id": transaction_id})

        # Only the free-text fields can be cleared
        values = {
            key: value for key, value in updates.model_dump(exclude_unset=True).items()
            if value is not None or key in ("client_vendor", "notes")
        }
        if not values:
            return current

        if "category_id" in values:
            category = self._get_category(business["id"], values["category_id"])
        else:
            category = {"name": current["category_name"], "type": current["category_type"]}

        amount = values.get("amount", current["amount"])
        currency = values.get("currency", current["currency"])
        effective_date = values.get("transaction_date") or date.fromisoformat(current["transaction_date"])

        if "transaction_date" in values:
            values["transaction_date"] = effective_date.isoformat()

        rebook = any(key in values for key in ("amount", "currency", "transaction_date", "category_id"))
        if {"amount", "currency", "transaction_date"} & set(values):
            quote = self._convert(amount, currency, business["base_currency"], effective_date)
            values["base_amount"] = round(amount * quote.rate, 2)
            values["exchange_rate"] = quote.rate
            values["rate_estimated"] = int(quote.estimated)
        base_amount = values.get("base_amount", current["base_amount"])

        values["updated_at"] = utc_now()
        with self.db.connection() as conn:
            update_row(conn, "transactions", transaction_id, values, scope={"business_id": business["id"]})
            if rebook and current["journal_entry_id"]:
                replace_entry_lines(
                    conn,
                    business["id"],
                    current["journal_entry_id"],
                    category,
                    base_amount,
                    effective_date,
                )

        logger.info(f"Updated transaction {transaction_id}: {sorted(values)}")
        return self._get_transaction(business["id"], transaction_id)

    def void_transaction(self, user_id: str, transaction_id: str) -> Dict[str, Any]:
        """
        Mark a transaction and its journal entry void. Void transactions stay
        listed but no longer count towards balances or reports.

        Raises:
            ConflictError: If the transaction is already void
        """
        business = require_business(self.db, user_id)
        current = self._get_transaction(business["id"], transaction_id)
        if current["status"] == "void":
            raise ConflictError("Transaction is already void", details={"transaction_id": transaction_id})

        with self.db.connection() as conn:
            update_row(
                conn, "transactions", transaction_id,
                {"status": "void", "updated_at": utc_now()},
                scope={"business_id": business["id"]}
            )
            if current["journal_entry_id"]:
                update_row(
                    conn, "journal_entries", current["journal_entry_id"],
                    {"status": "void"},
                    scope={"business_id": business["id"]}
                )

        logger.info(f"Voided transaction {transaction_id}")
        return self._get_transaction(business["id"], transaction_id)

    def delete_transaction(self, user_id: str, transaction_id: str) -> Dict[str, Any]:
        """Delete a transaction together with its journal entry."""
        business = require_business(self.db, user_id)
        current = self._get_transaction(business["id"], transaction_id)

        with self.db.connection() as conn:
            conn.execute(
                "UPDATE planned_payments SET transaction_id = NULL WHERE transaction_id = ? AND business_id = ?",
                (transaction_id, business["id"])
            )
            conn.execute(
                "DELETE FROM transactions WHERE id = ? AND business_id = ?",
                (transaction_id, business["id"])
            )
            if current["journal_entry_id"]:
                conn.execute(
                    "DELETE FROM journal_entries WHERE id = ? AND business_id = ?",
                    (current["journal_entry_id"], business["id"])
                )

        logger.info(f"Deleted transaction {transaction_id}")
        return {"success": True}

    def export_transactions(self, user_id: str, filters: Optional[TransactionFilters] = None) -> str:
        """
        Export the filtered transactions to an Excel workbook.

        Returns:
            Path to the created file
        """
        business = require_business(self.db, user_id)
        rows = self.get_transactions(user_id, filters)
        output_path = create_output_filename(business["id"])
        return export_transactions_to_excel(rows, output_path, business["base_currency"])
