"""
FastAPI routes for the bookkeeping service.

Identity comes from headers set by the authenticating gateway. Services raise
``BookkeepingError`` subclasses; the handlers below turn them into
``{"error": ..., "details": ...}`` responses. Successful responses wrap their
payload as ``{"data": ...}``.
"""
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.config import get_settings
from core.currency import convert_amount, get_resolver
from core.db import get_db
from core.exceptions import BookkeepingError, NotAuthenticatedError, ValidationError
from core.logger import setup_logger
from core.schema import (
    BulkPaymentAction,
    BusinessCreate,
    BusinessUpdate,
    CatalogItemCreate,
    CatalogItemUpdate,
    CategoryCreate,
    CategoryType,
    CurrentUser,
    DocumentSaveRequest,
    DocumentType,
    InsightRequest,
    InvoiceCreate,
    InvoiceFilters,
    InvoicePaymentCreate,
    InvoiceStatusUpdate,
    InvoiceUpdate,
    Period,
    PlannedPaymentCreate,
    TransactionCreate,
    TransactionFilters,
    TransactionUpdate,
)
from llm.insights import generate_financial_insights, generate_monthly_summary
from services.business_service import BusinessService
from services.catalog_service import CatalogService
from services.category_service import CategoryService
from services.dashboard_service import DashboardService
from services.document_service import DocumentService
from services.health_service import HealthService
from services.invoice_service import InvoiceService
from services.journal_service import JournalService
from services.notification_service import NotificationService
from services.payment_service import PlannedPaymentService
from services.rate_provider import get_rate_provider
from services.transaction_service import TransactionService

logger = setup_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    settings.ensure_directories()
    get_db().init_db()
    logger.info(f"{settings.app_name} ready")
    yield


app = FastAPI(
    title="Small Business Bookkeeping Service",
    description="Transactions, invoices, planned payments and cash health for small businesses",
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Error handling and request helpers
# =============================================================================

@app.exception_handler(BookkeepingError)
async def bookkeeping_error_handler(request: Request, exc: BookkeepingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "details": exc.details})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"error": "Invalid request", "details": {"errors": errors}})


def build_model(model: Type[ModelT], **values: Any) -> ModelT:
    """Validate query parameters into a model, reporting failures as ValidationError."""
    try:
        return model(**values)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid query parameters",
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]}
        )


def optional_period(start_date: Optional[date], end_date: Optional[date]) -> Optional[Period]:
    if start_date is None and end_date is None:
        return None
    if start_date is None or end_date is None:
        raise ValidationError("Both start_date and end_date are required for a period")
    return build_model(Period, start_date=start_date, end_date=end_date)


def get_current_user(request: Request) -> CurrentUser:
    """
    Read the authenticated user from the gateway headers.

    Raises:
        NotAuthenticatedError: If the user id header is missing
    """
    settings = get_settings()
    user_id = (request.headers.get(settings.user_id_header) or "").strip()
    if not user_id:
        raise NotAuthenticatedError("Not authenticated")
    return CurrentUser(
        id=user_id,
        email=request.headers.get(settings.user_email_header) or None,
        full_name=request.headers.get(settings.user_name_header) or None,
    )


def ok(data: Any) -> Dict[str, Any]:
    return {"data": data}


# =============================================================================
# Service health
# =============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "bookkeeping",
        "version": "1.0.0",
    }


# =============================================================================
# Business and categories
# =============================================================================

@app.get("/business")
def get_business(user: CurrentUser = Depends(get_current_user)):
    return ok(BusinessService().get_business(user.id))


@app.post("/business", status_code=201)
def create_business(data: BusinessCreate, user: CurrentUser = Depends(get_current_user)):
    return ok(BusinessService().create_business(user, data))


@app.patch("/business")
def update_business(updates: BusinessUpdate, user: CurrentUser = Depends(get_current_user)):
    return ok(BusinessService().update_business(user.id, updates))


@app.delete("/business")
def delete_business(user: CurrentUser = Depends(get_current_user)):
    return ok(BusinessService().delete_business(user.id))


@app.get("/categories")
def list_categories(user: CurrentUser = Depends(get_current_user)):
    return ok(CategoryService().get_categories(user.id))


@app.post("/categories", status_code=201)
def create_category(data: CategoryCreate, user: CurrentUser = Depends(get_current_user)):
    return ok(CategoryService().create_category(user.id, data))


@app.delete("/categories/{category_id}")
def delete_category(category_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(CategoryService().delete_category(user.id, category_id))


# =============================================================================
# Transactions
# =============================================================================

def transaction_filters(
    category_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[str] = None,
    search: Optional[str] = None,
    include_void: bool = True,
) -> TransactionFilters:
    return build_model(
        TransactionFilters,
        category_id=category_id,
        start_date=start_date,
        end_date=end_date,
        payment_method=payment_method,
        search=search,
        include_void=include_void,
    )


@app.get("/transactions")
def list_transactions(
    filters: TransactionFilters = Depends(transaction_filters),
    user: CurrentUser = Depends(get_current_user),
):
    return ok(TransactionService().get_transactions(user.id, filters))


@app.get("/transactions/balance")
def get_cash_balance(user: CurrentUser = Depends(get_current_user)):
    return ok(TransactionService().get_total_cash_balance(user.id))


@app.get("/transactions/export")
def export_transactions(
    filters: TransactionFilters = Depends(transaction_filters),
    user: CurrentUser = Depends(get_current_user),
):
    output_path = TransactionService().export_transactions(user.id, filters)
    return FileResponse(
        path=output_path,
        filename=Path(output_path).name,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


@app.post("/transactions", status_code=201)
def create_transaction(data: TransactionCreate, user: CurrentUser = Depends(get_current_user)):
    return ok(TransactionService().create_transaction(user, data))


@app.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(TransactionService().get_transaction(user.id, transaction_id))


@app.patch("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    updates: TransactionUpdate,
    user: CurrentUser = Depends(get_current_user),
):
    return ok(TransactionService().update_transaction(user.id, transaction_id, updates))


@app.post("/transactions/{transaction_id}/void")
def void_transaction(transaction_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(TransactionService().void_transaction(user.id, transaction_id))


@app.delete("/transactions/{transaction_id}")
def delete_transaction(transaction_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(TransactionService().delete_transaction(user.id, transaction_id))


# =============================================================================
# Journal
# =============================================================================

@app.get("/journal")
def list_journal_entries(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: CurrentUser = Depends(get_current_user),
):
    return ok(JournalService().get_journal_entries(user.id, start_date, end_date))


@app.get("/journal/display")
def list_display_entries(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
):
    return ok(JournalService().get_display_entries(user.id, start_date, end_date, limit))


@app.post("/journal/{entry_id}/void")
def void_journal_entry(entry_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(JournalService().void_journal_entry(user.id, entry_id))


# =============================================================================
# Dashboard
# =============================================================================

@app.get("/dashboard")
def get_dashboard(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: CurrentUser = Depends(get_current_user),
):
    return ok(DashboardService().get_dashboard_data(user.id, optional_period(start_date, end_date)))


@app.get("/dashboard/comparison")
def get_income_expense_comparison(user: CurrentUser = Depends(get_current_user)):
    return ok(DashboardService().get_income_expense_comparison(user.id))


@app.get("/dashboard/chart")
def get_income_expense_chart(user: CurrentUser = Depends(get_current_user)):
    return ok(DashboardService().get_income_expense_chart(user.id))


@app.get("/dashboard/expense-breakdown")
def get_expense_breakdown(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: CurrentUser = Depends(get_current_user),
):
    return ok(DashboardService().get_expense_breakdown_chart(user.id, optional_period(start_date, end_date)))


# =============================================================================
# Invoices and catalog items
# =============================================================================

@app.get("/invoices")
def list_invoices(
    status: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user: CurrentUser = Depends(get_current_user),
):
    filters = build_model(InvoiceFilters, status=status, search=search, date_from=date_from, date_to=date_to)
    return ok(InvoiceService().get_invoices(user.id, filters))


@app.get("/invoices/next-number")
def next_invoice_number(user: CurrentUser = Depends(get_current_user)):
    return ok({"invoice_number": InvoiceService().generate_invoice_number(user.id)})


@app.post("/invoices", status_code=201)
def create_invoice(data: InvoiceCreate, user: CurrentUser = Depends(get_current_user)):
    return ok(InvoiceService().create_invoice(user, data))


@app.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(InvoiceService().get_invoice(user.id, invoice_id))


@app.patch("/invoices/{invoice_id}")
def update_invoice(invoice_id: str, updates: InvoiceUpdate, user: CurrentUser = Depends(get_current_user)):
    return ok(InvoiceService().update_invoice(user.id, invoice_id, updates))


@app.patch("/invoices/{invoice_id}/status")
def update_invoice_status(
    invoice_id: str,
    data: InvoiceStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
):
    return ok(InvoiceService().update_invoice_status(user.id, invoice_id, data.status))


@app.post("/invoices/{invoice_id}/payments", status_code=201)
def record_invoice_payment(
    invoice_id: str,
    payment: InvoicePaymentCreate,
    user: CurrentUser = Depends(get_current_user),
):
    return ok(InvoiceService().record_payment(user.id, invoice_id, payment))


@app.delete("/invoices/{invoice_id}")
def delete_invoice(invoice_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(InvoiceService().delete_invoice(user.id, invoice_id))


@app.get("/invoice-items")
def list_catalog_items(user: CurrentUser = Depends(get_current_user)):
    return ok(CatalogService().get_items(user.id))


@app.post("/invoice-items", status_code=201)
def create_catalog_item(data: CatalogItemCreate, user: CurrentUser = Depends(get_current_user)):
    return ok(CatalogService().create_item(user.id, data))


@app.patch("/invoice-items/{item_id}")
def update_catalog_item(item_id: str, updates: CatalogItemUpdate, user: CurrentUser = Depends(get_current_user)):
    return ok(CatalogService().update_item(user.id, item_id, updates))


@app.delete("/invoice-items/{item_id}")
def delete_catalog_item(item_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(CatalogService().delete_item(user.id, item_id))


# =============================================================================
# Planned payments and business health
# =============================================================================

@app.get("/payments")
def list_payments(status: Optional[str] = None, user: CurrentUser = Depends(get_current_user)):
    if status is not None and status not in ("pending", "paid", "overdue"):
        raise ValidationError("Invalid payment status", details={"status": status})
    return ok(PlannedPaymentService().get_payments(user.id, status))


@app.get("/payments/summary")
def get_payment_summary(user: CurrentUser = Depends(get_current_user)):
    return ok(PlannedPaymentService().get_payment_summary(user.id))


@app.post("/payments", status_code=201)
def create_payment(data: PlannedPaymentCreate, user: CurrentUser = Depends(get_current_user)):
    return ok(PlannedPaymentService().create_payment(user.id, data))


@app.post("/payments/bulk")
def bulk_payment_action(action: BulkPaymentAction, user: CurrentUser = Depends(get_current_user)):
    return ok(PlannedPaymentService().bulk_action(user, action))


@app.post("/payments/{payment_id}/paid")
def mark_payment_paid(payment_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(PlannedPaymentService().mark_as_paid(user, payment_id))


@app.delete("/payments/{payment_id}")
def delete_payment(payment_id: str, user: CurrentUser = Depends(get_current_user)):
    return ok(PlannedPaymentService().delete_payment(user.id, payment_id))


@app.get("/business-health")
def get_business_health(user: CurrentUser = Depends(get_current_user)):
    return ok(HealthService().get_health_dashboard(user))


# =============================================================================
# Currency
# =============================================================================

@app.get("/currency/rate")
def get_rate(
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    on_date: Optional[date] = Query(default=None, alias="date"),
    user: CurrentUser = Depends(get_current_user),
):
    quote = get_resolver().resolve(from_currency, to_currency, on_date or date.today())
    return ok(quote)


@app.get("/currency/rates")
def get_rates(
    base: Optional[str] = Query(default=None, min_length=3, max_length=3),
    user: CurrentUser = Depends(get_current_user),
):
    base = (base or get_settings().default_currency).upper()
    return ok({"base": base, "rates": get_rate_provider().fetch_rates(base)})


@app.get("/currency/convert")
def convert(
    amount: float = Query(..., ge=0),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    user: CurrentUser = Depends(get_current_user),
):
    base = get_settings().default_currency
    from_currency, to_currency = from_currency.upper(), to_currency.upper()
    rates = {base: 1.0, **get_rate_provider().fetch_rates(base)}
    converted = convert_amount(amount, from_currency, to_currency, rates)
    return ok({
        "amount": amount,
        "from": from_currency,
        "to": to_currency,
        "result": round(converted, 2),
        "rate": converted / amount if amount else None,
    })


# =============================================================================
# Uploaded documents
# =============================================================================

@app.post("/documents/upload")
def upload_document(
    file: UploadFile = File(...),
    document_type: DocumentType = Form(..., alias="type"),
    receipt_origin: Optional[CategoryType] = Form(default=None),
    user: CurrentUser = Depends(get_current_user),
):
    """Read a receipt or invoice image into fields for review."""
    content = file.file.read()
    return ok(DocumentService().extract_document(
        user.id, file.filename, content, file.content_type, document_type, receipt_origin
    ))


@app.post("/documents/auto-save", status_code=201)
def auto_save_document(request: DocumentSaveRequest, user: CurrentUser = Depends(get_current_user)):
    return ok(DocumentService().auto_save(user, request))


# =============================================================================
# AI insights
# =============================================================================

@app.post("/ai/insights")
def ai_insights(request: InsightRequest, user: CurrentUser = Depends(get_current_user)):
    return ok(generate_financial_insights(user.id, request.question))


@app.get("/ai/monthly-summary")
def ai_monthly_summary(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1900, le=2100),
    user: CurrentUser = Depends(get_current_user),
):
    return ok(generate_monthly_summary(user.id, month, year))


# =============================================================================
# Scheduled jobs
# =============================================================================

@app.get("/cron/smart-notifications")
def run_smart_notifications(x_cron_secret: Optional[str] = Header(default=None)):
    """Daily job; requires the x-cron-secret header when CRON_SECRET is set."""
    secret = get_settings().cron_secret
    if secret and x_cron_secret != secret:
        raise NotAuthenticatedError("Unauthorized")
    return ok(NotificationService().run_smart_notifications())


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
