"""
Dashboard aggregates: period totals, monthly income/expense series and the
expense breakdown by category. Void transactions are excluded everywhere.
"""
from typing import Any, Dict, List, Optional

import pandas as pd

from core.db import Database, get_db
from core.logger import setup_logger
from core.schema import Period
from services.business_service import require_business
from services.cashflow import get_cash_balance

logger = setup_logger(__name__)


class DashboardService:
    """Aggregate posted transactions of the user's business with pandas."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def _load_frame(self, business_id: str, period: Optional[Period] = None) -> pd.DataFrame:
        """
        Posted transactions as a DataFrame with columns
        transaction_date, base_amount, category_name, category_type.
        """
        query = """
            SELECT t.transaction_date, t.base_amount,
                   c.name AS category_name, c.type AS category_type
            FROM transactions t
            JOIN categories c ON c.id = t.category_id
            WHERE t.business_id = ? AND t.status = 'posted'
        """
        params: List[Any] = [business_id]
        if period:
            query += " AND t.transaction_date >= ? AND t.transaction_date <= ?"
            params += [period.start_date.isoformat(), period.end_date.isoformat()]

        rows = self.db.fetch_all(query, params)
        df = pd.DataFrame(rows, columns=["transaction_date", "base_amount", "category_name", "category_type"])
        df["base_amount"] = df["base_amount"].astype(float)
        return df

    @staticmethod
    def _total(df: pd.DataFrame, category_type: str) -> float:
        return round(float(df.loc[df["category_type"] == category_type, "base_amount"].sum()), 2)

    @staticmethod
    def _monthly(df: pd.DataFrame) -> List[Dict[str, Any]]:
        if df.empty:
            return []
        df = df.assign(month=df["transaction_date"].str[:7])
        pivot = (
            df.pivot_table(
                index="month",
                columns="category_type",
                values="base_amount",
                aggfunc="sum",
                fill_value=0.0,
            )
            .reindex(columns=["income", "expense"], fill_value=0.0)
            .sort_index()
        )
        return [
            {"month": month, "income": round(float(row["income"]), 2), "expenses": round(float(row["expense"]), 2)}
            for month, row in pivot.iterrows()
        ]

    @staticmethod
    def _breakdown(df: pd.DataFrame) -> Dict[str, float]:
        expenses = df[df["category_type"] == "expense"]
        if expenses.empty:
            return {}
        grouped = expenses.groupby(expenses["category_name"].fillna("Uncategorized"))["base_amount"].sum()
        return {name: round(float(value), 2) for name, value in grouped.items()}

    def get_dashboard_data(self, user_id: str, period: Optional[Period] = None) -> Dict[str, Any]:
        """
        Headline numbers for the dashboard.

        Args:
            user_id: Authenticated user
            period: Optional inclusive date range for income, expenses and the
                breakdown; the cash balance always covers all time

        Returns:
            income, expenses, profit, cash_balance, expense_breakdown, currency
        """
        business = require_business(self.db, user_id)
        df = self._load_frame(business["id"], period)

        income = self._total(df, "income")
        expenses = self._total(df, "expense")
        return {
            "income": income,
            "expenses": expenses,
            "profit": round(income - expenses, 2),
            "cash_balance": get_cash_balance(self.db, business["id"]),
            "expense_breakdown": self._breakdown(df),
            "currency": business["base_currency"],
        }

    def get_income_expense_comparison(self, user_id: str) -> Dict[str, Any]:
        """Monthly income vs. expenses over all time, with totals."""
        business = require_business(self.db, user_id)
        df = self._load_frame(business["id"])
        chart = self._monthly(df)

        total_income = round(sum(point["income"] for point in chart), 2)
        total_expenses = round(sum(point["expenses"] for point in chart), 2)
        return {
            "chart_data": chart,
            "summary": {
                "total_income": total_income,
                "total_expenses": total_expenses,
                "net_profit": round(total_income - total_expenses, 2),
            },
            "currency": business["base_currency"],
        }

    def get_income_expense_chart(self, user_id: str) -> List[Dict[str, Any]]:
        """Monthly series keyed by ``date`` (YYYY-MM)."""
        business = require_business(self.db, user_id)
        return [
            {"date": point["month"], "income": point["income"], "expenses": point["expenses"]}
            for point in self._monthly(self._load_frame(business["id"]))
        ]

    def get_expense_breakdown_chart(self, user_id: str, period: Optional[Period] = None) -> List[Dict[str, Any]]:
        """Expense totals per category; categories summing to zero are left out."""
        business = require_business(self.db, user_id)
        breakdown = self._breakdown(self._load_frame(business["id"], period))
        return [{"name": name, "value": value} for name, value in breakdown.items() if value > 0]
