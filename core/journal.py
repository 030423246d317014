"""
Double-entry helpers: display classification of journal entries, the default
chart of accounts, and the debit/credit pair posted for each transaction.
"""
from typing import Dict, List, Tuple

from core.exceptions import EmptyJournalEntryError, ValidationError
from core.schema import (
    AccountRef,
    AccountType,
    CategoryType,
    Direction,
    JournalDisplayRecord,
    JournalEntry,
    JournalLine,
)

CASH_ACCOUNT_NAME = "Cash"

# How the main line of an entry reads on an income/expense display.
# Equity is ambiguous (owner draw vs. capital contribution) and is listed
# explicitly as expense in both directions so the choice stays reviewable.
DISPLAY_TYPE_BY_LINE: Dict[Tuple[AccountType, Direction], CategoryType] = {
    ("revenue", "debit"): "income",
    ("revenue", "credit"): "income",
    ("asset", "debit"): "expense",
    ("asset", "credit"): "income",
    ("liability", "debit"): "income",
    ("liability", "credit"): "expense",
    ("expense", "debit"): "expense",
    ("expense", "credit"): "expense",
    ("equity", "debit"): "expense",
    ("equity", "credit"): "expense",
}

DEFAULT_ACCOUNTS: List[Dict[str, str]] = [
    # Assets
    {"name": "Cash", "type": "asset", "code": "1010"},
    {"name": "Accounts Receivable", "type": "asset", "code": "1200"},
    {"name": "Inventory", "type": "asset", "code": "1400"},
    {"name": "Prepaid Expenses", "type": "asset", "code": "1500"},
    {"name": "Fixed Assets", "type": "asset", "code": "1600"},
    # Liabilities
    {"name": "Accounts Payable", "type": "liability", "code": "2010"},
    {"name": "Credit Card", "type": "liability", "code": "2020"},
    {"name": "Sales Tax Payable", "type": "liability", "code": "2100"},
    {"name": "Loans Payable", "type": "liability", "code": "2500"},
    # Equity
    {"name": "Owner's Equity", "type": "equity", "code": "3010"},
    {"name": "Retained Earnings", "type": "equity", "code": "3020"},
    # Revenue
    {"name": "Sales Revenue", "type": "revenue", "code": "4010"},
    {"name": "Service Revenue", "type": "revenue", "code": "4020"},
    {"name": "Other Income", "type": "revenue", "code": "4900"},
    # Expenses
    {"name": "Cost of Goods Sold", "type": "expense", "code": "5010"},
    {"name": "Advertising Expense", "type": "expense", "code": "6010"},
    {"name": "Bank Fees", "type": "expense", "code": "6020"},
    {"name": "Office Supplies", "type": "expense", "code": "6030"},
    {"name": "Rent Expense", "type": "expense", "code": "6040"},
    {"name": "Utilities Expense", "type": "expense", "code": "6050"},
    {"name": "Wages Expense", "type": "expense", "code": "6060"},
]

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {"name": "Sales", "type": "income"},
    {"name": "Services", "type": "income"},
    {"name": "Other Income", "type": "income"},
    {"name": "Rent", "type": "expense"},
    {"name": "Utilities", "type": "expense"},
    {"name": "Supplies", "type": "expense"},
    {"name": "Salaries", "type": "expense"},
    {"name": "Marketing", "type": "expense"},
    {"name": "Other Expenses", "type": "expense"},
]


def classify_line(line: JournalLine) -> CategoryType:
    """
    Infer whether a journal line reads as income or expense.

    Args:
        line: Journal line with account type and direction

    Returns:
        "income" or "expense"
    """
    return DISPLAY_TYPE_BY_LINE[(line.account.type, line.type)]


def select_main_line(entry: JournalEntry) -> JournalLine:
    """
    Pick the line that describes the entry: the first non-Cash line, or the
    first line when every line hits Cash.

    Raises:
        EmptyJournalEntryError: If the entry has no lines
    """
    if not entry.lines:
        raise EmptyJournalEntryError(
            "Journal entry has no lines",
            details={"journal_entry_id": entry.id}
        )
    for line in entry.lines:
        if line.account.name != CASH_ACCOUNT_NAME:
            return line
    return entry.lines[0]


def process_journal_for_display(entry: JournalEntry) -> JournalDisplayRecord:
    """
    Flatten a journal entry into a single display record.

    Args:
        entry: Journal entry with its lines

    Returns:
        Display record with the main line's account, inferred type and amount

    Raises:
        EmptyJournalEntryError: If the entry has no lines
    """
    main_line = select_main_line(entry)
    return JournalDisplayRecord(
        id=entry.id,
        date=entry.transaction_date,
        description=entry.description,
        account_name=main_line.account.name,
        type=classify_line(main_line),
        amount=main_line.amount,
        status=entry.status,
    )


def build_transaction_lines(
    category_type: CategoryType,
    account: AccountRef,
    amount: float,
) -> List[JournalLine]:
    """
    Build the balanced debit/credit pair for a cash transaction.

    Income debits Cash and credits the category's account; expenses debit the
    category's account and credit Cash.

    Args:
        category_type: "income" or "expense"
        account: Account the category posts to
        amount: Amount in base currency

    Returns:
        Two journal lines, the category line first
    """
    if amount <= 0:
        raise ValidationError("Journal amount must be positive", details={"amount": amount})

    cash = AccountRef(name=CASH_ACCOUNT_NAME, type="asset")
    if category_type == "income":
        return [
            JournalLine(account=account, type="credit", amount=amount),
            JournalLine(account=cash, type="debit", amount=amount),
        ]
    return [
        JournalLine(account=account, type="debit", amount=amount),
        JournalLine(account=cash, type="credit", amount=amount),
    ]


def account_type_for_category(category_type: CategoryType) -> AccountType:
    """Ledger account type used when a category gets its own account."""
    return "revenue" if category_type == "income" else "expense"
