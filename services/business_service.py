"""
Business profile service.

Every other service resolves the authenticated user's business through
``require_business`` and scopes its queries to that business id.
"""
from typing import Any, Dict, Optional

from core.db import Database, get_db, insert_row, new_id, update_row, utc_now
from core.exceptions import BusinessNotFoundError, ConflictError, NotAuthenticatedError
from core.journal import DEFAULT_ACCOUNTS, DEFAULT_CATEGORIES
from core.logger import setup_logger
from core.schema import BusinessCreate, BusinessUpdate, CurrentUser

logger = setup_logger(__name__)


def require_business(db: Database, user_id: Optional[str]) -> Dict[str, Any]:
    """
    Load the business owned by ``user_id``.

    Raises:
        NotAuthenticatedError: If no user id is given
        BusinessNotFoundError: If the user has no business yet
    """
    if not user_id:
        raise NotAuthenticatedError("Not authenticated")
    business = db.fetch_one("SELECT * FROM businesses WHERE user_id = ?", (user_id,))
    if business is None:
        raise BusinessNotFoundError()
    return business


class BusinessService:
    """Create, read, update and delete the user's business profile."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def get_business(self, user_id: str) -> Dict[str, Any]:
        return require_business(self.db, user_id)

    def create_business(self, user: CurrentUser, data: BusinessCreate) -> Dict[str, Any]:
        """
        Create the business with its default chart of accounts and categories.

        Args:
            user: Authenticated user (mirrored into ``users`` for notifications)
            data: Business profile

        Returns:
            The new business row

        Raises:
            ConflictError: If the user already has a business
        """
        existing = self.db.fetch_one("SELECT id FROM businesses WHERE user_id = ?", (user.id,))
        if existing:
            raise ConflictError("Business already exists", details={"business_id": existing["id"]})

        now = utc_now()
        business_id = new_id()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, full_name, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email = excluded.email, full_name = excluded.full_name
                """,
                (user.id, user.email, user.full_name, now)
            )
            insert_row(conn, "businesses", {
                "id": business_id,
                "user_id": user.id,
                "name": data.name,
                "business_type": data.business_type,
                "base_currency": data.base_currency,
                "fiscal_year_start_month": data.fiscal_year_start_month,
                "fiscal_year_start_day": data.fiscal_year_start_day,
                "created_at": now,
                "updated_at": now,
            })
            for account in DEFAULT_ACCOUNTS:
                insert_row(conn, "accounts", {
                    "id": new_id(),
                    "business_id": business_id,
                    "name": account["name"],
                    "type": account["type"],
                    "code": account["code"],
                    "is_default": 1,
                    "created_at": now,
                })
            for category in DEFAULT_CATEGORIES:
                insert_row(conn, "categories", {
                    "id": new_id(),
                    "business_id": business_id,
                    "name": category["name"],
                    "type": category["type"],
                    "is_default": 1,
                    "created_at": now,
                })

        logger.info(f"Created business {business_id} for user {user.id}")
        return self.get_business(user.id)

    def update_business(self, user_id: str, updates: BusinessUpdate) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        values = updates.model_dump(exclude_unset=True)
        if values:
            values["updated_at"] = utc_now()
            with self.db.connection() as conn:
                update_row(conn, "businesses", business["id"], values, scope={"user_id": user_id})
            logger.info(f"Updated business {business['id']}: {sorted(values)}")
        return self.get_business(user_id)

    def delete_business(self, user_id: str) -> Dict[str, Any]:
        """Delete the business and, through cascades, all of its records."""
        business = require_business(self.db, user_id)
        self.db.execute("DELETE FROM businesses WHERE id = ? AND user_id = ?", (business["id"], user_id))
        logger.info(f"Deleted business {business['id']}")
        return {"success": True}
