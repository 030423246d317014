"""
Pydantic schemas for request validation and core bookkeeping records.
"""
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator

AccountType = Literal["revenue", "expense", "asset", "liability", "equity"]
Direction = Literal["debit", "credit"]
CategoryType = Literal["income", "expense"]
PaymentMethod = Literal["cash", "card", "transfer", "other"]
RecordStatus = Literal["posted", "void"]
InvoiceStatus = Literal["draft", "sent", "viewed", "paid", "overdue", "cancelled"]
InvoicePaymentStatus = Literal["unpaid", "partial", "paid"]
PlannedPaymentStatus = Literal["pending", "paid", "overdue"]
RateSource = Literal["identity", "cache", "database", "provider", "fallback"]
NotificationType = Literal["LOW_BALANCE", "INVOICE_DUE_SOON", "INVOICE_OVERDUE"]
HealthStatus = Literal["safe", "warning", "at-risk"]
DocumentType = Literal["receipt", "invoice"]


def normalize_currency_code(v):
    """Normalize currency codes to upper-case ISO 4217 form."""
    if v is None:
        return v
    if isinstance(v, str):
        return v.strip().upper()
    return v


def normalize_optional_text(v):
    """Treat blank strings as missing values."""
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


CurrencyCode = Annotated[
    str,
    BeforeValidator(normalize_currency_code),
    Field(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$"),
]
OptionalText = Annotated[Optional[str], BeforeValidator(normalize_optional_text)]


class CurrentUser(BaseModel):
    """Identity forwarded by the authenticating gateway."""
    id: str = Field(..., min_length=1)
    email: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Full name, else the local part of the email, else 'there'."""
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return "there"


# =============================================================================
# Business, categories, transactions
# =============================================================================

class BusinessCreate(BaseModel):
    """Business profile created during setup."""
    name: str = Field(..., min_length=1, max_length=200)
    business_type: OptionalText = None
    base_currency: CurrencyCode = "USD"
    fiscal_year_start_month: int = Field(default=1, ge=1, le=12)
    fiscal_year_start_day: int = Field(default=1, ge=1, le=31)


class BusinessUpdate(BaseModel):
    """Partial update of the business profile."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    business_type: OptionalText = None
    base_currency: Optional[CurrencyCode] = None
    fiscal_year_start_month: Optional[int] = Field(default=None, ge=1, le=12)
    fiscal_year_start_day: Optional[int] = Field(default=None, ge=1, le=31)


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Category name must not be blank")
        return v


class TransactionCreate(BaseModel):
    """New income/expense transaction."""
    category_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: CurrencyCode
    transaction_date: date
    payment_method: PaymentMethod = "other"
    client_vendor: OptionalText = None
    notes: OptionalText = None


class TransactionUpdate(BaseModel):
    """Partial update of a transaction."""
    category_id: Optional[str] = None
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[CurrencyCode] = None
    transaction_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    client_vendor: OptionalText = None
    notes: OptionalText = None


class Period(BaseModel):
    """Inclusive date range."""
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_order(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class TransactionFilters(BaseModel):
    category_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    search: OptionalText = None
    include_void: bool = True


# =============================================================================
# Journal
# =============================================================================

class AccountRef(BaseModel):
    """Account name and type attached to a journal line."""
    name: str
    type: AccountType


UNKNOWN_ACCOUNT = AccountRef(name="Unknown", type="expense")


class JournalLine(BaseModel):
    """One side (debit or credit) of a double-entry record."""
    id: Optional[str] = None
    account: AccountRef = UNKNOWN_ACCOUNT
    type: Direction
    amount: float


class JournalEntry(BaseModel):
    id: str
    transaction_date: date
    description: Optional[str] = None
    status: RecordStatus = "posted"
    lines: List[JournalLine] = Field(default_factory=list)


class JournalDisplayRecord(BaseModel):
    """Flattened entry as shown in ledgers and recent-activity widgets."""
    id: str
    date: date
    description: Optional[str] = None
    account_name: str
    type: CategoryType
    amount: float
    status: RecordStatus = "posted"


# =============================================================================
# Exchange rates
# =============================================================================

class RateQuote(BaseModel):
    """
    Resolved conversion rate with provenance.

    ``estimated`` is True when no real rate could be obtained and the identity
    rate was substituted.
    """
    from_currency: str
    to_currency: str
    date: date
    rate: float = Field(..., gt=0)
    source: RateSource
    estimated: bool = False


# =============================================================================
# Invoices and catalog items
# =============================================================================

class InvoiceItemInput(BaseModel):
    """
    Invoice line. Either reference a catalog item (its name and unit price
    are used unless overridden) or give description and unit price directly.
    """
    catalog_item_id: Optional[str] = None
    description: OptionalText = None
    quantity: float = Field(default=1, gt=0)
    unit_price: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def require_source(self):
        if not self.catalog_item_id and (self.description is None or self.unit_price is None):
            raise ValueError("Line items need a catalog_item_id or both description and unit_price")
        return self


class InvoiceCreate(BaseModel):
    invoice_number: OptionalText = None
    title: str = Field(..., min_length=1, max_length=200)
    description: OptionalText = None
    issue_date: date
    due_date: date
    client_name: str = Field(..., min_length=1, max_length=200)
    client_email: OptionalText = None
    client_address: OptionalText = None
    client_phone: OptionalText = None
    tax_rate: float = Field(default=0, ge=0, le=100)
    currency: CurrencyCode
    notes: OptionalText = None
    terms: OptionalText = None
    items: List[InvoiceItemInput] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dates(self):
        if self.due_date < self.issue_date:
            raise ValueError("due_date must not be before issue_date")
        return self


class InvoiceUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: OptionalText = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    client_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    client_email: OptionalText = None
    client_address: OptionalText = None
    client_phone: OptionalText = None
    tax_rate: Optional[float] = Field(default=None, ge=0, le=100)
    currency: Optional[CurrencyCode] = None
    notes: OptionalText = None
    terms: OptionalText = None
    items: Optional[List[InvoiceItemInput]] = None


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class InvoiceFilters(BaseModel):
    status: Optional[InvoiceStatus] = None
    search: OptionalText = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class InvoicePaymentCreate(BaseModel):
    amount: float = Field(..., gt=0)
    payment_date: date
    payment_method: str = "bank_transfer"
    notes: OptionalText = None


class CatalogItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: OptionalText = None
    unit_price: float = Field(..., ge=0)
    unit: str = Field(default="unit", min_length=1, max_length=30)
    category: OptionalText = None


class CatalogItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: OptionalText = None
    unit_price: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=30)
    category: OptionalText = None
    is_active: Optional[bool] = None


# =============================================================================
# Planned payments
# =============================================================================

class PlannedPaymentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., gt=0)
    currency: Optional[CurrencyCode] = None
    due_date: date
    category_id: Optional[str] = None
    notes: OptionalText = None


class BulkPaymentAction(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    action: Literal["mark_paid", "delete"]


# =============================================================================
# Business health
# =============================================================================

class UpcomingPayment(BaseModel):
    """Pending planned payment counted as money to pay."""
    id: str
    name: str
    due_date: date
    amount: float
    currency: str
    base_amount: float
    is_overdue: bool = False


class Receivable(BaseModel):
    """Outstanding part of an unpaid invoice."""
    id: str
    invoice_number: str
    client_name: str
    due_date: date
    remaining: float
    currency: str
    base_remaining: float
    days_until_due: int
    is_overdue: bool = False


class HealthAlert(BaseModel):
    type: Literal["urgent", "warning"]
    message: str
    icon: Literal["clock", "alert", "trend"]


class CashPosition(BaseModel):
    """
    Projected cash: current cash plus receivables minus upcoming payments,
    all in the business base currency.
    """
    currency: str
    current_cash: float
    total_receivables: float
    total_to_pay: float
    remaining_balance: float
    safe_cash: float
    status: HealthStatus
    explanation: str
    upcoming: List[UpcomingPayment] = Field(default_factory=list)
    receivables: List[Receivable] = Field(default_factory=list)

    @property
    def deficit(self) -> float:
        return abs(min(self.remaining_balance, 0.0))


# =============================================================================
# Email and AI
# =============================================================================

class EmailPayload(BaseModel):
    to: str = Field(..., min_length=3)
    subject: str = Field(..., min_length=1)
    html: str
    text: Optional[str] = None


class EmailResult(BaseModel):
    id: Optional[str] = None
    skipped: bool = False


class InsightRequest(BaseModel):
    question: OptionalText = Field(default=None, max_length=2000)


# =============================================================================
# Uploaded documents
# =============================================================================

class DocumentSaveRequest(BaseModel):
    """Fields extracted from an uploaded receipt or invoice, to be booked."""
    type: DocumentType
    extracted_data: Dict[str, Any]
    file_name: OptionalText = None
    receipt_origin: Optional[CategoryType] = None
