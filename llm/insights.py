"""
AI financial insights: free-form advice over the dashboard numbers and a
written monthly summary.
"""
import calendar
from datetime import date
from typing import Any, Dict, Optional

from core.exceptions import ValidationError
from core.logger import setup_logger
from core.schema import Period
from llm.client import LLMClient, get_client
from llm.prompts import (
    INSIGHTS_SYSTEM_PROMPT,
    MONTHLY_SUMMARY_SYSTEM_PROMPT,
    build_insights_prompt,
    build_monthly_summary_prompt,
)
from services.dashboard_service import DashboardService
from services.journal_service import JournalService

logger = setup_logger(__name__)


def generate_financial_insights(
    user_id: str,
    question: Optional[str] = None,
    client: Optional[LLMClient] = None,
    dashboard_service: Optional[DashboardService] = None,
    journal_service: Optional[JournalService] = None,
) -> Dict[str, Any]:
    """
    Ask the LLM for insights on the business, or to answer ``question``.

    Args:
        user_id: Authenticated user
        question: Optional question; general insights when omitted
        client: LLM client (defaults to the configured singleton)

    Returns:
        Dict with the generated ``insights`` text

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set
        LLMError: If the provider call fails
    """
    client = client or get_client()
    dashboard = (dashboard_service or DashboardService()).get_dashboard_data(user_id)
    records = (journal_service or JournalService()).get_display_entries(user_id)

    prompt = build_insights_prompt(dashboard, records, question)
    logger.info(f"Generating insights ({'question' if question else 'overview'}) for user {user_id}")
    text = client.chat(INSIGHTS_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=500)
    return {"insights": text or "No response generated"}


def generate_monthly_summary(
    user_id: str,
    month: int,
    year: int,
    client: Optional[LLMClient] = None,
    dashboard_service: Optional[DashboardService] = None,
) -> Dict[str, Any]:
    """
    Write a short summary of one calendar month.

    Raises:
        ValidationError: If month is not 1-12
        ConfigurationError: If OPENAI_API_KEY is not set
        LLMError: If the provider call fails
    """
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12", details={"month": month})

    client = client or get_client()
    last_day = calendar.monthrange(year, month)[1]
    period = Period(start_date=date(year, month, 1), end_date=date(year, month, last_day))
    dashboard = (dashboard_service or DashboardService()).get_dashboard_data(user_id, period)

    prompt = build_monthly_summary_prompt(dashboard, month, year)
    text = client.chat(MONTHLY_SUMMARY_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=400)
    return {
        "summary": text or "No summary generated",
        "period": {"start_date": period.start_date.isoformat(), "end_date": period.end_date.isoformat()},
    }
