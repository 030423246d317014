"""
Cash position queries shared by the health dashboard, notifications and
transaction posting.

Amounts in other currencies are converted to the business base currency at
today's rate through the exchange rate resolver.
"""
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from core.config import Settings, get_settings
from core.currency import ExchangeRateResolver, get_resolver
from core.db import Database
from core.logger import setup_logger
from core.schema import CashPosition, Receivable, UpcomingPayment

logger = setup_logger(__name__)


def get_cash_balance(db: Database, business_id: str) -> float:
    """
    Income minus expenses over all posted transactions, in base currency.
    """
    row = db.fetch_one(
        """
        SELECT
            COALESCE(SUM(CASE WHEN c.type = 'income' THEN t.base_amount ELSE 0 END), 0) AS income,
            COALESCE(SUM(CASE WHEN c.type = 'expense' THEN t.base_amount ELSE 0 END), 0) AS expense
        FROM transactions t
        JOIN categories c ON c.id = t.category_id
        WHERE t.business_id = ? AND t.status = 'posted'
        """,
        (business_id,)
    )
    return round(row["income"] - row["expense"], 2)


def get_outstanding_invoices(db: Database, business_id: str) -> List[Dict[str, Any]]:
    """Unpaid or partially paid invoices (not cancelled) with their remaining balance."""
    rows = db.fetch_all(
        """
        SELECT i.id, i.invoice_number, i.client_name, i.due_date, i.total_amount,
               i.currency, i.status, i.payment_status,
               COALESCE((SELECT SUM(p.amount) FROM invoice_payments p WHERE p.invoice_id = i.id), 0) AS paid
        FROM invoices i
        WHERE i.business_id = ?
          AND i.payment_status IN ('unpaid', 'partial')
          AND i.status NOT IN ('cancelled', 'paid')
        ORDER BY i.due_date
        """,
        (business_id,)
    )
    for row in rows:
        row["remaining"] = round(max(row["total_amount"] - row["paid"], 0.0), 2)
    return [row for row in rows if row["remaining"] > 0]


class CashPositionCalculator:
    """Compute the projected cash position of one business."""

    def __init__(
        self,
        db: Database,
        resolver: Optional[ExchangeRateResolver] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.resolver = resolver or get_resolver()
        self.settings = settings or get_settings()

    def _to_base(self, amount: float, currency: str, base_currency: str, on_date: date) -> float:
        rate = self.resolver.get_exchange_rate(currency, base_currency, on_date)
        return round(amount * rate, 2)

    def upcoming_payments(self, business: Dict[str, Any], today: date) -> List[UpcomingPayment]:
        """
        Pending planned payments due on or before the upcoming-expense horizon.
        Past-due pending payments are included and flagged overdue.
        """
        horizon = today + timedelta(days=self.settings.upcoming_expense_days)
        rows = self.db.fetch_all(
            """
            SELECT id, name, amount, currency, due_date FROM planned_payments
            WHERE business_id = ? AND status = 'pending' AND due_date <= ?
            ORDER BY due_date
            """,
            (business["id"], horizon.isoformat())
        )
        payments = []
        for row in rows:
            due = date.fromisoformat(row["due_date"])
            payments.append(UpcomingPayment(
                id=row["id"],
                name=row["name"],
                due_date=due,
                amount=row["amount"],
                currency=row["currency"],
                base_amount=self._to_base(row["amount"], row["currency"], business["base_currency"], today),
                is_overdue=due < today,
            ))
        return payments

    def receivables(self, business: Dict[str, Any], today: date) -> List[Receivable]:
        receivables = []
        for row in get_outstanding_invoices(self.db, business["id"]):
            due = date.fromisoformat(row["due_date"])
            receivables.append(Receivable(
                id=row["id"],
                invoice_number=row["invoice_number"],
                client_name=row["client_name"],
                due_date=due,
                remaining=row["remaining"],
                currency=row["currency"],
                base_remaining=self._to_base(row["remaining"], row["currency"], business["base_currency"], today),
                days_until_due=(due - today).days,
                is_overdue=row["status"] == "overdue" or due < today,
            ))
        return receivables

    def compute(self, business: Dict[str, Any], today: Optional[date] = None) -> CashPosition:
        """
        Build the cash position and its health status.

        Args:
            business: Business row
            today: Reference day (defaults to the current date)

        Returns:
            Cash position with status ``safe``, ``warning`` or ``at-risk``
        """
        today = today or date.today()
        currency = business["base_currency"]

        current_cash = get_cash_balance(self.db, business["id"])
        upcoming = self.upcoming_payments(business, today)
        receivables = self.receivables(business, today)

        total_to_pay = round(sum(p.base_amount for p in upcoming), 2)
        total_receivables = round(sum(r.base_remaining for r in receivables), 2)
        remaining_balance = round(current_cash + total_receivables - total_to_pay, 2)
        safe_cash = round(current_cash * (1 + self.settings.safe_cash_buffer), 2)

        if remaining_balance < 0:
            status = "at-risk"
            explanation = (
                f"Your projected remaining balance is negative ({currency} {remaining_balance:,.2f}). "
                f"You need {currency} {abs(remaining_balance):,.2f} more to cover upcoming expenses."
            )
        elif remaining_balance < safe_cash:
            status = "warning"
            explanation = (
                f"After paying bills and receiving payments you will have {currency} {remaining_balance:,.2f}, "
                f"below the safe cash threshold of {currency} {safe_cash:,.2f}. "
                "Consider delaying non-essential expenses or collecting receivables sooner."
            )
        else:
            status = "safe"
            explanation = (
                f"Your projected remaining balance is healthy at {currency} {remaining_balance:,.2f} "
                "after all pending payments."
            )

        return CashPosition(
            currency=currency,
            current_cash=current_cash,
            total_receivables=total_receivables,
            total_to_pay=total_to_pay,
            remaining_balance=remaining_balance,
            safe_cash=safe_cash,
            status=status,
            explanation=explanation,
            upcoming=upcoming,
            receivables=receivables,
        )
