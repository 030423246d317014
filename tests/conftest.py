"""
Shared fixtures: an isolated SQLite database per test, an in-memory rate
provider and a signed-up business owner.
"""
from datetime import date

import pytest

import core.currency as currency_module
import services.email_service as email_module
from core.config import get_settings, reset_settings
from core.currency import ExchangeRateResolver, RateCache, reset_resolver
from core.db import get_db, reset_db
from core.schema import BusinessCreate, CurrentUser
from llm.client import reset_client
from services.business_service import BusinessService
from services.email_service import EmailClient, reset_email_client
from services.rate_provider import reset_rate_provider
from tests.fakes import FakeRateProvider, FakeResponse, FakeSession

CLEARED_ENV = [
    "OPENAI_API_KEY",
    "EXCHANGE_RATE_API_KEY",
    "RESEND_API_KEY",
    "RESEND_FROM",
    "CRON_SECRET",
    "PORT",
    "LOG_LEVEL",
    "DEFAULT_CURRENCY",
    "MAX_UPLOAD_MB",
]


@pytest.fixture(autouse=True)
def settings(tmp_path, monkeypatch):
    """Point storage at a temp directory and drop every cached singleton."""
    for name in CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "books.db"))
    monkeypatch.setenv("EXPORT_PATH", str(tmp_path / "exports"))
    monkeypatch.setenv("UPLOAD_PATH", str(tmp_path / "uploads"))

    for reset in (reset_settings, reset_db, reset_resolver, reset_rate_provider, reset_email_client, reset_client):
        reset()
    yield get_settings()
    for reset in (reset_settings, reset_db, reset_resolver, reset_rate_provider, reset_email_client, reset_client):
        reset()


@pytest.fixture
def db(settings):
    database = get_db()
    database.init_db()
    return database


@pytest.fixture
def rate_provider():
    return FakeRateProvider({
        "EUR": {"EUR": 1.0, "USD": 1.1, "GBP": 0.85},
        "GBP": {"GBP": 1.0, "USD": 1.25, "EUR": 1.18},
        "USD": {"USD": 1.0, "EUR": 0.9, "GBP": 0.8, "KZT": 500.0},
    })


@pytest.fixture
def resolver(db, rate_provider, monkeypatch):
    instance = ExchangeRateResolver(db=db, provider=rate_provider, cache=RateCache(ttl_seconds=3600))
    monkeypatch.setattr(currency_module, "_resolver", instance)
    return instance


@pytest.fixture
def email_session():
    return FakeSession([FakeResponse(200, {"id": "email-1"})])


@pytest.fixture
def email_client(settings, email_session, monkeypatch):
    """Configured email client whose HTTP calls go to ``email_session``."""
    configured = settings.model_copy(update={"resend_api_key": "re_test", "resend_from": "books@example.com"})
    client = EmailClient(settings=configured, session=email_session)
    monkeypatch.setattr(email_module, "_client", client)
    return client


@pytest.fixture
def user():
    return CurrentUser(id="user-1", email="owner@example.com", full_name="Jane Owner")


@pytest.fixture
def business(db, resolver, user):
    return BusinessService(db).create_business(user, BusinessCreate(name="Acme Studio", base_currency="USD"))


@pytest.fixture
def category_ids(db, business):
    rows = db.fetch_all("SELECT id, name FROM categories WHERE business_id = ?", (business["id"],))
    return {row["name"]: row["id"] for row in rows}


@pytest.fixture
def today():
    return date.today()
