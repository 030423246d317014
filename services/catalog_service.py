"""Reusable invoice line templates (catalog items)."""
from typing import Any, Dict, List, Optional

from core.db import Database, get_db, new_id, update_row, utc_now
from core.exceptions import DataNotFoundError
from core.logger import setup_logger
from core.schema import CatalogItemCreate, CatalogItemUpdate
from services.business_service import require_business

logger = setup_logger(__name__)


class CatalogService:

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def _get_item(self, business_id: str, item_id: str) -> Dict[str, Any]:
        item = self.db.fetch_one(
            "SELECT * FROM invoice_catalog_items WHERE id = ? AND business_id = ?",
            (item_id, business_id)
        )
        if item is None:
            raise DataNotFoundError("Catalog item not found", details={"item_id": item_id})
        return item

    def get_items(self, user_id: str) -> List[Dict[str, Any]]:
        """Active catalog items, ordered by name."""
        business = require_business(self.db, user_id)
        return self.db.fetch_all(
            "SELECT * FROM invoice_catalog_items WHERE business_id = ? AND is_active = 1 ORDER BY name",
            (business["id"],)
        )

    def create_item(self, user_id: str, data: CatalogItemCreate) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        item_id = new_id()
        now = utc_now()
        self.db.insert("invoice_catalog_items", {
            "id": item_id,
            "business_id": business["id"],
            "user_id": user_id,
            "name": data.name,
            "description": data.description,
            "unit_price": data.unit_price,
            "unit": data.unit,
            "category": data.category,
            "is_active": 1,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Created catalog item '{data.name}' at {data.unit_price}/{data.unit}")
        return self._get_item(business["id"], item_id)

    def update_item(self, user_id: str, item_id: str, updates: CatalogItemUpdate) -> Dict[str, Any]:
        business = require_business(self.db, user_id)
        self._get_item(business["id"], item_id)

        values = {
            key: value for key, value in updates.model_dump(exclude_unset=True).items()
            if value is not None or key in ("description", "category")
        }
        if "is_active" in values:
            values["is_active"] = int(values["is_active"])
        if values:
            values["updated_at"] = utc_now()
            with self.db.connection() as conn:
                update_row(conn, "invoice_catalog_items", item_id, values, scope={"business_id": business["id"]})
        return self._get_item(business["id"], item_id)

    def delete_item(self, user_id: str, item_id: str) -> Dict[str, Any]:
        """
        Deactivate a catalog item. Invoices that already use it keep their
        copied description and price.
        """
        business = require_business(self.db, user_id)
        self._get_item(business["id"], item_id)
        self.db.execute(
            "UPDATE invoice_catalog_items SET is_active = 0, updated_at = ? WHERE id = ? AND business_id = ?",
            (utc_now(), item_id, business["id"])
        )
        logger.info(f"Deactivated catalog item {item_id}")
        return {"success": True}
