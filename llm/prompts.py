"""
System and user prompts for financial insights and document extraction.
Builds the financial summary block from dashboard data and recent activity.
"""
from typing import Any, Dict, List, Optional

from core.schema import JournalDisplayRecord

INSIGHTS_SYSTEM_PROMPT = (
    "You are a helpful financial advisor for small businesses. Provide clear, "
    "actionable insights in plain language without accounting jargon."
)

MONTHLY_SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful financial advisor generating monthly summaries for small "
    "businesses. Be clear, encouraging, and actionable."
)


def format_money(currency: str, amount: float) -> str:
    return f"{currency} {amount:,.2f}"


def build_financial_summary(dashboard: Dict[str, Any], include_cash: bool = True) -> str:
    """
    Render the dashboard numbers as a bullet list.

    Args:
        dashboard: Output of DashboardService.get_dashboard_data
        include_cash: Add the all-time cash balance line

    Returns:
        Summary text
    """
    currency = dashboard["currency"]
    lines = [
        f"- Total Income: {format_money(currency, dashboard['income'])}",
        f"- Total Expenses: {format_money(currency, dashboard['expenses'])}",
        f"- Net Profit: {format_money(currency, dashboard['profit'])}",
    ]
    if include_cash:
        lines.append(f"- Cash Balance: {format_money(currency, dashboard['cash_balance'])}")

    breakdown = dashboard.get("expense_breakdown") or {}
    if breakdown:
        lines.append("")
        lines.append("Expense Breakdown:")
        for name, amount in sorted(breakdown.items(), key=lambda item: item[1], reverse=True):
            lines.append(f"- {name}: {format_money(currency, amount)}")
    return "\n".join(lines)


def build_recent_activity(records: List[JournalDisplayRecord], currency: str, limit: int = 10) -> str:
    """List the latest classified journal entries, one per line."""
    if not records:
        return "No recorded activity."
    return "\n".join(
        f"- {r.date.isoformat()} {r.type}: {r.account_name} {format_money(currency, r.amount)}"
        for r in records[:limit]
    )


def build_insights_prompt(
    dashboard: Dict[str, Any],
    records: List[JournalDisplayRecord],
    question: Optional[str] = None,
) -> str:
    """
    Build the user prompt for general insights or a specific question.
    """
    summary = build_financial_summary(dashboard)
    activity = build_recent_activity(records, dashboard["currency"])

    if question:
        return f"""As a financial advisor for a small business, answer this question based on the following financial data:

Financial Summary:
{summary}

Recent Activity ({len(records)} entries in total):
{activity}

Question: {question}

Provide a clear, actionable answer in plain language (no accounting jargon). Be specific and helpful."""

    return f"""As a financial advisor for a small business, analyze the following financial data and provide insights:

Financial Summary:
{summary}

Recent Activity ({len(records)} entries in total):
{activity}

Provide:
1. A brief summary of financial health
2. Key trends or patterns you notice
3. Actionable recommendations
4. Any potential risks or concerns

Use plain language (no accounting jargon). Be specific and helpful."""


def build_monthly_summary_prompt(dashboard: Dict[str, Any], month: int, year: int) -> str:
    summary = build_financial_summary(dashboard, include_cash=False)
    return f"""Generate a monthly financial summary for a small business:

Month: {month:02d}/{year}
{summary}

Provide a concise monthly summary (2-3 paragraphs) covering:
1. Performance overview
2. Key highlights
3. Recommendations for next month

Use plain language, be encouraging but honest."""


CURRENCY_HINT = (
    "ISO currency code such as USD, EUR, GBP, JPY or THB; read $ as USD, "
    "€ as EUR, £ as GBP, ¥ as JPY and ฿ as THB; USD when nothing is shown"
)

RECEIPT_EXTRACTION_PROMPT = f"""Read this receipt and answer with a single JSON object:
{{
  "merchant_name": "store or merchant name",
  "date": "YYYY-MM-DD",
  "total_amount": number,
  "currency": "{CURRENCY_HINT}",
  "category": "suggested bookkeeping category, e.g. Food, Transportation, Office Supplies",
  "items": [{{"description": "item", "amount": number}}],
  "tax_amount": number,
  "payment_method": "payment method if printed"
}}

Use null for anything that is not visible. Answer with JSON only."""

INVOICE_EXTRACTION_PROMPT = f"""Read this invoice and answer with a single JSON object:
{{
  "invoice_number": "invoice number",
  "invoice_date": "YYYY-MM-DD",
  "due_date": "YYYY-MM-DD",
  "customer_name": "customer name",
  "customer_email": "customer email",
  "customer_address": "customer address",
  "items": [{{"description": "item or service", "quantity": number, "unit_price": number, "amount": number}}],
  "subtotal": number,
  "tax_amount": number,
  "total_amount": number,
  "currency": "{CURRENCY_HINT}",
  "notes": "additional notes or payment terms"
}}

Use null for anything that is not visible. Answer with JSON only."""


def build_extraction_prompt(document_type: str) -> str:
    return RECEIPT_EXTRACTION_PROMPT if document_type == "receipt" else INVOICE_EXTRACTION_PROMPT
