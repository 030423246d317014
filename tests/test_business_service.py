"""
Tests for business profile and category services.
"""
import pytest

from core.exceptions import (
    BusinessNotFoundError,
    ConflictError,
    DataNotFoundError,
    NotAuthenticatedError,
)
from core.journal import DEFAULT_ACCOUNTS, DEFAULT_CATEGORIES
from core.schema import BusinessCreate, BusinessUpdate, CategoryCreate, CurrentUser, TransactionCreate
from services.business_service import BusinessService, require_business
from services.category_service import CategoryService
from services.transaction_service import TransactionService


def test_require_business_without_user(db):
    with pytest.raises(NotAuthenticatedError):
        require_business(db, None)


def test_require_business_without_profile(db):
    with pytest.raises(BusinessNotFoundError):
        require_business(db, "nobody")


def test_create_business_seeds_accounts_and_categories(db, business, user):
    assert business["name"] == "Acme Studio"
    assert business["base_currency"] == "USD"
    assert business["user_id"] == user.id

    accounts = db.fetch_all("SELECT * FROM accounts WHERE business_id = ?", (business["id"],))
    categories = db.fetch_all("SELECT * FROM categories WHERE business_id = ?", (business["id"],))
    assert len(accounts) == len(DEFAULT_ACCOUNTS)
    assert len(categories) == len(DEFAULT_CATEGORIES)
    assert all(a["is_default"] == 1 for a in accounts)

    owner = db.fetch_one("SELECT * FROM users WHERE id = ?", (user.id,))
    assert owner["email"] == "owner@example.com"


def test_second_business_conflicts(db, business, user):
    with pytest.raises(ConflictError):
        BusinessService(db).create_business(user, BusinessCreate(name="Another"))


def test_update_business(db, business, user):
    updated = BusinessService(db).update_business(user.id, BusinessUpdate(name="Acme Ltd", base_currency="eur"))
    assert updated["name"] == "Acme Ltd"
    assert updated["base_currency"] == "EUR"
    assert updated["business_type"] == business["business_type"]


def test_delete_business_cascades(db, business, user):
    assert BusinessService(db).delete_business(user.id) == {"success": True}
    assert db.fetch_all("SELECT * FROM categories WHERE business_id = ?", (business["id"],)) == []
    with pytest.raises(BusinessNotFoundError):
        BusinessService(db).get_business(user.id)


def test_categories_are_scoped_to_business(db, business, user):
    other = CurrentUser(id="user-2", email="other@example.com")
    BusinessService(db).create_business(other, BusinessCreate(name="Other Co"))

    service = CategoryService(db)
    mine = service.create_category(user.id, CategoryCreate(name="Consulting", type="income"))

    assert mine["id"] in [c["id"] for c in service.get_categories(user.id)]
    assert mine["id"] not in [c["id"] for c in service.get_categories(other.id)]
    with pytest.raises(DataNotFoundError):
        service.delete_category(other.id, mine["id"])


def test_categories_sorted_by_type_then_name(db, business, user):
    categories = CategoryService(db).get_categories(user.id)
    keys = [(c["type"], c["name"]) for c in categories]
    assert keys == sorted(keys)


def test_delete_category_in_use(db, business, user, category_ids, today):
    TransactionService(db).create_transaction(user, TransactionCreate(
        category_id=category_ids["Rent"], amount=500, currency="USD", transaction_date=today,
    ))
    with pytest.raises(ConflictError):
        CategoryService(db).delete_category(user.id, category_ids["Rent"])


def test_delete_unused_category(db, business, user, category_ids):
    service = CategoryService(db)
    assert service.delete_category(user.id, category_ids["Marketing"]) == {"success": True}
    assert "Marketing" not in [c["name"] for c in service.get_categories(user.id)]
