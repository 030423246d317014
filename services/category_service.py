"""Income/expense categories of the user's business."""
from typing import Any, Dict, List, Optional

from core.db import Database, get_db, new_id, utc_now
from core.exceptions import ConflictError, DataNotFoundError
from core.logger import setup_logger
from core.schema import CategoryCreate
from services.business_service import require_business

logger = setup_logger(__name__)


class CategoryService:

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def get_categories(self, user_id: str) -> List[Dict[str, Any]]:
        business = require_business(self.db, user_id)
        return self.db.fetch_all(
            "SELECT * FROM categories WHERE business_id = ? ORDER BY type, name",
            (business["id"],)
        )

    def get_category(self, business_id: str, category_id: str) -> Dict[str, Any]:
        """Load a category belonging to ``business_id``."""
        category = self.db.fetch_one(
            "SELECT * FROM categories WHERE id = ? AND business_id = ?",
            (category_id, business_id)
        )
        if category is None:
            raise DataNotFoundError("Category not found", details={"category_id": category_id})
        return category

    def create_category(self, user_id: str, data: CategoryCreate) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        category_id = new_id()
        self.db.insert("categories", {
            "id": category_id,
            "business_id": business["id"],
            "name": data.name,
            "type": data.type,
            "is_default": 0,
            "created_at": utc_now(),
        })
        logger.info(f"Created {data.type} category '{data.name}'")
        return self.get_category(business["id"], category_id)

    def delete_category(self, user_id: str, category_id: str) -> Dict[str, Any]:
        """
        Delete a category of the user's business.

        Raises:
            DataNotFoundError: If the category is not in the user's business
            ConflictError: If transactions still use it
        """
        business = require_business(self.db, user_id)
        self.get_category(business["id"], category_id)

        in_use = self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM transactions WHERE category_id = ? AND business_id = ?",
            (category_id, business["id"])
        )
        if in_use and in_use["n"]:
            raise ConflictError(
                "Category is used by existing transactions",
                details={"category_id": category_id, "transactions": in_use["n"]}
            )

        self.db.execute(
            "DELETE FROM categories WHERE id = ? AND business_id = ?",
            (category_id, business["id"])
        )
        return {"success": True}
