"""
Tests for the LLM client and the insight generators.
"""
import json
from datetime import date

import pytest
import requests
from tenacity import wait_none

from core.exceptions import ConfigurationError, LLMError, ValidationError
from core.schema import JournalDisplayRecord, TransactionCreate
from llm.client import LLMClient, parse_json_content
from llm.insights import generate_financial_insights, generate_monthly_summary
from llm.prompts import (
    build_extraction_prompt,
    build_financial_summary,
    build_insights_prompt,
    build_recent_activity,
)
from services.transaction_service import TransactionService
from tests.fakes import FakeResponse, FakeSession

COMPLETION = {
    "choices": [{"message": {"role": "assistant", "content": "  Keep an eye on rent.  "}}],
    "usage": {"prompt_tokens": 120, "completion_tokens": 8},
}

DASHBOARD = {
    "income": 1000.0,
    "expenses": 400.0,
    "profit": 600.0,
    "cash_balance": 600.0,
    "expense_breakdown": {"Utilities": 100.0, "Rent": 300.0},
    "currency": "USD",
}


class FakeLLM:
    def __init__(self, answer="Looks healthy."):
        self.answer = answer
        self.calls = []

    def chat(self, system_prompt, user_message, temperature=0.7, max_tokens=500):
        self.calls.append({"system": system_prompt, "user": user_message, "max_tokens": max_tokens})
        return self.answer


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(LLMClient._post.retry, "wait", wait_none())


@pytest.fixture
def llm_settings(settings):
    return settings.model_copy(update={"openai_api_key": "sk-test"})


def test_client_requires_api_key(settings):
    with pytest.raises(ConfigurationError):
        LLMClient(settings=settings)


def test_chat_returns_stripped_content(llm_settings):
    session = FakeSession([FakeResponse(200, COMPLETION)])
    answer = LLMClient(settings=llm_settings, session=session).chat("system", "question", max_tokens=50)

    assert answer == "Keep an eye on rent."
    sent = json.loads(session.requests[0]["data"])
    assert sent["max_tokens"] == 50
    assert [m["role"] for m in sent["messages"]] == ["system", "user"]
    assert session.requests[0]["headers"]["Authorization"] == "Bearer sk-test"


def test_chat_retries_rate_limit(llm_settings):
    session = FakeSession([FakeResponse(429), FakeResponse(200, COMPLETION)])
    assert LLMClient(settings=llm_settings, session=session).chat("s", "u") == "Keep an eye on rent."
    assert len(session.requests) == 2


def test_chat_gives_up_after_three_attempts(llm_settings):
    session = FakeSession([requests.exceptions.ConnectionError("refused")])
    with pytest.raises(LLMError, match="unavailable"):
        LLMClient(settings=llm_settings, session=session).chat("s", "u")
    assert len(session.requests) == 3


def test_chat_http_error(llm_settings):
    session = FakeSession([FakeResponse(401, text="bad key")])
    with pytest.raises(LLMError) as exc_info:
        LLMClient(settings=llm_settings, session=session).chat("s", "u")
    assert exc_info.value.details["status_code"] == 401


def test_chat_unexpected_body(llm_settings):
    session = FakeSession([FakeResponse(200, {"choices": []})])
    with pytest.raises(LLMError, match="Unexpected response"):
        LLMClient(settings=llm_settings, session=session).chat("s", "u")


def test_parse_json_content_variants():
    assert parse_json_content('{"total_amount": 12.5}') == {"total_amount": 12.5}
    assert parse_json_content('```json\n{"currency": "EUR"}\n```') == {"currency": "EUR"}
    assert parse_json_content('Here you go: {"date": "2024-01-02"} Thanks!') == {"date": "2024-01-02"}


def test_parse_json_content_rejects_non_objects():
    with pytest.raises(LLMError, match="parse"):
        parse_json_content("I could not read this receipt.")
    with pytest.raises(LLMError, match="not a JSON object"):
        parse_json_content("[1, 2]")


def test_extract_json_sends_image(llm_settings):
    answer = {"choices": [{"message": {"content": '```json\n{"merchant_name": "Cafe"}\n```'}}]}
    session = FakeSession([FakeResponse(200, answer)])
    result = LLMClient(settings=llm_settings, session=session).extract_json(
        build_extraction_prompt("receipt"), b"\x89PNG", "image/png"
    )

    assert result == {"merchant_name": "Cafe"}
    sent = json.loads(session.requests[0]["data"])
    assert sent["temperature"] == 0.0
    assert sent["max_tokens"] == 1000
    text, image = sent["messages"][0]["content"]
    assert "merchant_name" in text["text"]
    assert image["image_url"]["url"] == "data:image/png;base64,iVBORw=="


def test_financial_summary_sorts_breakdown():
    summary = build_financial_summary(DASHBOARD)
    assert "- Total Income: USD 1,000.00" in summary
    assert "- Cash Balance: USD 600.00" in summary
    assert summary.index("Rent") < summary.index("Utilities")
    assert "Cash Balance" not in build_financial_summary(DASHBOARD, include_cash=False)


def test_recent_activity():
    assert build_recent_activity([], "USD") == "No recorded activity."
    record = JournalDisplayRecord(
        id="je-1", date=date(2024, 3, 1), account_name="Rent", type="expense", amount=300.0,
    )
    assert build_recent_activity([record], "USD") == "- 2024-03-01 expense: Rent USD 300.00"


def test_question_prompt_includes_question():
    prompt = build_insights_prompt(DASHBOARD, [], "Can I afford a new laptop?")
    assert "Question: Can I afford a new laptop?" in prompt
    assert "Provide:" not in prompt


def test_generate_insights_uses_books(db, business, user, category_ids):
    TransactionService(db).create_transaction(user, TransactionCreate(
        category_id=category_ids["Sales"], amount=800, currency="USD", transaction_date=date(2024, 3, 1),
    ))
    fake = FakeLLM()
    result = generate_financial_insights(user.id, client=fake)

    assert result == {"insights": "Looks healthy."}
    prompt = fake.calls[0]["user"]
    assert "Total Income: USD 800.00" in prompt
    assert "income: Sales" in prompt


def test_generate_insights_empty_answer(db, business, user):
    result = generate_financial_insights(user.id, question="Why?", client=FakeLLM(answer=""))
    assert result["insights"] == "No response generated"


def test_monthly_summary_period(db, business, user):
    fake = FakeLLM(answer="A good month.")
    result = generate_monthly_summary(user.id, 2, 2024, client=fake)
    assert result["summary"] == "A good month."
    assert result["period"] == {"start_date": "2024-02-01", "end_date": "2024-02-29"}
    assert "Month: 02/2024" in fake.calls[0]["user"]


def test_monthly_summary_rejects_bad_month(db, business, user):
    with pytest.raises(ValidationError):
        generate_monthly_summary(user.id, 13, 2024, client=FakeLLM())
