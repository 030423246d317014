"""
Receipt and invoice uploads.

An uploaded image is read by the vision model into structured fields; the
caller reviews them and books the document with ``auto_save``, which records
a transaction for a receipt or a draft invoice for an invoice.
"""
import re
import time
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.config import Settings, get_settings
from core.db import Database, get_db, new_id, utc_now
from core.exceptions import ValidationError
from core.logger import setup_logger
from core.schema import (
    CategoryType,
    CurrentUser,
    DocumentSaveRequest,
    DocumentType,
    InvoiceCreate,
    InvoiceItemInput,
    PaymentMethod,
    TransactionCreate,
)
from llm.client import LLMClient, get_client
from llm.prompts import build_extraction_prompt
from services.business_service import require_business
from services.invoice_service import InvoiceService
from services.transaction_service import TransactionService

logger = setup_logger(__name__)

IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")

INCOME_KEYWORDS = (
    "income", "revenue", "sales", "sale", "refund", "reimbursement",
    "interest", "dividend", "commission", "bonus",
)

# Checked in order, so longer names come before their substrings
CURRENCY_NAMES = (
    ("US DOLLAR", "USD"),
    ("AMERICAN DOLLAR", "USD"),
    ("CANADIAN", "CAD"),
    ("AUSTRALIAN", "AUD"),
    ("DOLLAR", "USD"),
    ("EURO", "EUR"),
    ("BRITISH POUND", "GBP"),
    ("POUND", "GBP"),
    ("YEN", "JPY"),
    ("RUPEE", "INR"),
    ("PESO", "MXN"),
    ("SWISS", "CHF"),
    ("YUAN", "CNY"),
    ("BAHT", "THB"),
)

CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY", "฿": "THB"}


def normalize_payment_method(value: Any) -> PaymentMethod:
    raw = str(value or "").lower()
    if any(word in raw for word in ("card", "credit", "debit", "visa", "mastercard")):
        return "card"
    if "cash" in raw:
        return "cash"
    if "transfer" in raw or "bank" in raw:
        return "transfer"
    return "other"


def clean_text(value: Any, limit: int = 200) -> Optional[str]:
    """Extracted text as a trimmed string, or None when blank."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text[:limit] if text else None


def normalize_category_name(value: Any) -> str:
    return clean_text(value, limit=100) or "Other"


def infer_category_type(
    category_name: str,
    amount: Optional[float],
    receipt_origin: Optional[CategoryType] = None,
) -> CategoryType:
    """Explicit origin wins; otherwise income keywords or a negative total mean income."""
    if receipt_origin:
        return receipt_origin
    lowered = category_name.lower()
    if any(keyword in lowered for keyword in INCOME_KEYWORDS):
        return "income"
    if amount is not None and amount < 0:
        return "income"
    return "expense"


def normalize_currency(value: Any, default: str = "USD") -> str:
    """Map a currency code, symbol or name read off a document to an ISO code."""
    raw = str(value or "").strip().upper()
    if not raw:
        return default
    if re.fullmatch(r"[A-Z]{3}", raw) and raw not in dict(CURRENCY_NAMES):
        return raw
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in raw:
            return code
    for name, code in CURRENCY_NAMES:
        if name in raw:
            return code
    return default


def parse_amount(value: Any) -> Optional[float]:
    """Numbers arrive as numbers or as strings with symbols and separators."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_date(value: Any, default: date) -> date:
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            logger.warning(f"Ignoring unreadable document date: {value!r}")
    return default


class DocumentService:
    """Extract fields from uploaded documents and book them."""

    def __init__(
        self,
        db: Optional[Database] = None,
        client: Optional[LLMClient] = None,
        settings: Optional[Settings] = None,
        transactions: Optional[TransactionService] = None,
        invoices: Optional[InvoiceService] = None,
    ):
        self.db = db or get_db()
        self.settings = settings or get_settings()
        self._client = client
        self.transactions = transactions or TransactionService(self.db)
        self.invoices = invoices or InvoiceService(self.db)

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = get_client()
        return self._client

    def _store_file(self, business_id: str, filename: str, content: bytes) -> Optional[str]:
        suffix = Path(filename).suffix.lower()[:10]
        stored = Path(self.settings.upload_path) / business_id / f"{int(time.time())}-{new_id()[:8]}{suffix}"
        try:
            stored.parent.mkdir(parents=True, exist_ok=True)
            stored.write_bytes(content)
        except OSError as e:
            logger.error(f"Could not store uploaded file {filename}: {e}")
            return None
        return str(stored)

    def extract_document(
        self,
        user_id: str,
        filename: Optional[str],
        content: bytes,
        content_type: Optional[str],
        document_type: DocumentType,
        receipt_origin: Optional[CategoryType] = None,
    ) -> Dict[str, Any]:
        """
        Read an uploaded receipt or invoice image.

        The file is kept under ``UPLOAD_PATH``; a storage failure is logged
        and the extracted fields are still returned.

        Args:
            user_id: Authenticated user
            filename: Original file name
            content: File bytes
            content_type: Declared MIME type
            document_type: ``receipt`` or ``invoice``
            receipt_origin: Forces income or expense for a receipt

        Returns:
            Dict with ``type``, extracted ``data``, ``receipt_origin`` and
            stored ``file`` info

        Raises:
            ValidationError: If the file is missing, too large or not an image
            ConfigurationError: If OPENAI_API_KEY is not set
            LLMError: If the model call fails or returns no JSON
        """
        business = require_business(self.db, user_id)
        if not content:
            raise ValidationError("No file provided")

        limit = self.settings.max_upload_mb * 1024 * 1024
        if len(content) > limit:
            raise ValidationError(
                f"File size exceeds {self.settings.max_upload_mb}MB limit",
                details={"size": len(content), "limit": limit}
            )
        if content_type not in IMAGE_TYPES:
            raise ValidationError(
                "Unsupported file type",
                details={"content_type": content_type, "allowed": list(IMAGE_TYPES)}
            )

        filename = filename or "upload"
        logger.info(f"Extracting {document_type} from {filename} ({len(content)} bytes)")
        data = self.client.extract_json(build_extraction_prompt(document_type), content, content_type)

        return {
            "type": document_type,
            "data": data,
            "receipt_origin": receipt_origin if document_type == "receipt" else None,
            "file": {"name": filename, "path": self._store_file(business["id"], filename, content)},
        }

    def auto_save(self, user: CurrentUser, request: DocumentSaveRequest) -> Dict[str, Any]:
        """
        Book extracted document fields.

        Returns:
            ``{"saved": True, "saved_record": {"type", "id", "data"}}``

        Raises:
            ValidationError: If a receipt has no usable total
        """
        business = require_business(self.db, user.id)
        if request.type == "receipt":
            record = self._save_receipt(user, business, request)
            return {"saved": True, "saved_record": {"type": "transaction", "id": record["id"], "data": record}}

        record = self._save_invoice(user, business, request)
        return {"saved": True, "saved_record": {"type": "invoice", "id": record["id"], "data": record}}

    def _category_id(self, business_id: str, name: str, category_type: CategoryType) -> str:
        row = self.db.fetch_one(
            "SELECT id FROM categories WHERE business_id = ? AND name = ? AND type = ?",
            (business_id, name, category_type)
        )
        if row:
            return row["id"]

        category_id = new_id()
        self.db.insert("categories", {
            "id": category_id,
            "business_id": business_id,
            "name": name,
            "type": category_type,
            "is_default": 0,
            "created_at": utc_now(),
        })
        logger.info(f"Created {category_type} category '{name}' from uploaded receipt")
        return category_id

    def _save_receipt(
        self,
        user: CurrentUser,
        business: Dict[str, Any],
        request: DocumentSaveRequest,
    ) -> Dict[str, Any]:
        data = request.extracted_data
        total = parse_amount(data.get("total_amount"))
        if not total:
            raise ValidationError("Receipt has no total amount", details={"total_amount": data.get("total_amount")})

        category_name = normalize_category_name(data.get("category"))
        category_type = infer_category_type(category_name, total, request.receipt_origin)
        merchant = clean_text(data.get("merchant_name")) or "Unknown"

        return self.transactions.create_transaction(user, TransactionCreate(
            category_id=self._category_id(business["id"], category_name, category_type),
            amount=abs(total),
            currency=normalize_currency(data.get("currency"), business["base_currency"]),
            transaction_date=parse_date(data.get("date"), date.today()),
            payment_method=normalize_payment_method(data.get("payment_method")),
            client_vendor=merchant,
            notes=f"Receipt from {merchant}. File: {request.file_name or 'unknown'}",
        ))

    def _invoice_items(self, data: Dict[str, Any]) -> List[InvoiceItemInput]:
        items = []
        for raw in data.get("items") or []:
            if not isinstance(raw, dict):
                continue
            quantity = parse_amount(raw.get("quantity")) or 1
            unit_price = parse_amount(raw.get("unit_price"))
            if unit_price is None:
                amount = parse_amount(raw.get("amount")) or 0
                unit_price = amount / quantity if quantity > 0 else amount
            items.append(InvoiceItemInput(
                description=clean_text(raw.get("description"), limit=500) or "Item",
                quantity=quantity if quantity > 0 else 1,
                unit_price=abs(unit_price),
            ))

        if not items:
            subtotal = parse_amount(data.get("subtotal")) or parse_amount(data.get("total_amount")) or 0
            items.append(InvoiceItemInput(description="Invoice total", unit_price=abs(subtotal)))
        return items

    def _save_invoice(
        self,
        user: CurrentUser,
        business: Dict[str, Any],
        request: DocumentSaveRequest,
    ) -> Dict[str, Any]:
        data = request.extracted_data
        items = self._invoice_items(data)

        subtotal = sum(item.quantity * item.unit_price for item in items)
        tax_amount = parse_amount(data.get("tax_amount")) or 0
        tax_rate = round(min(max(tax_amount / subtotal * 100, 0), 100), 2) if subtotal > 0 else 0

        issue_date = parse_date(data.get("invoice_date"), date.today())
        due_date = max(parse_date(data.get("due_date"), issue_date), issue_date)
        source_number = clean_text(data.get("invoice_number"), limit=60)
        notes = [f"Invoice from uploaded file: {request.file_name or 'unknown'}"]
        if clean_text(data.get("notes"), limit=2000):
            notes.append(clean_text(data["notes"], limit=2000))

        return self.invoices.create_invoice(user, InvoiceCreate(
            title=f"Invoice {source_number}" if source_number else "Uploaded invoice",
            issue_date=issue_date,
            due_date=due_date,
            client_name=clean_text(data.get("customer_name")) or "Unknown",
            client_email=clean_text(data.get("customer_email")),
            client_address=clean_text(data.get("customer_address"), limit=500),
            tax_rate=tax_rate,
            currency=normalize_currency(data.get("currency"), business["base_currency"]),
            notes="\n".join(notes),
            items=items,
        ))
