"""
Journal service.
Posts the double-entry record behind each transaction and reads entries back
for ledgers and recent-activity widgets.
"""
import sqlite3
from datetime import date
from typing import Any, Dict, List, Optional

from core.db import Database, get_db, insert_row, new_id, utc_now
from core.exceptions import ConflictError, DataNotFoundError, EmptyJournalEntryError
from core.journal import (
    account_type_for_category,
    build_transaction_lines,
    process_journal_for_display,
)
from core.logger import setup_logger
from core.schema import (
    UNKNOWN_ACCOUNT,
    AccountRef,
    JournalDisplayRecord,
    JournalEntry,
    JournalLine,
)
from services.business_service import require_business

logger = setup_logger(__name__)


def _ensure_account(conn: sqlite3.Connection, business_id: str, account: AccountRef) -> str:
    """Return the id of the account with this name and type, creating it when missing."""
    row = conn.execute(
        "SELECT id FROM accounts WHERE business_id = ? AND name = ? AND type = ?",
        (business_id, account.name, account.type)
    ).fetchone()
    if row:
        return row["id"]

    account_id = new_id()
    insert_row(conn, "accounts", {
        "id": account_id,
        "business_id": business_id,
        "name": account.name,
        "type": account.type,
        "is_default": 0,
        "created_at": utc_now(),
    })
    logger.info(f"Created {account.type} account '{account.name}' for business {business_id}")
    return account_id


def _insert_lines(
    conn: sqlite3.Connection,
    business_id: str,
    entry_id: str,
    lines: List[JournalLine],
) -> None:
    for position, line in enumerate(lines):
        insert_row(conn, "journal_lines", {
            "id": new_id(),
            "journal_entry_id": entry_id,
            "account_id": _ensure_account(conn, business_id, line.account),
            "type": line.type,
            "amount": line.amount,
            "position": position,
        })


def create_entry_from_transaction(
    conn: sqlite3.Connection,
    business_id: str,
    category: Dict[str, Any],
    amount: float,
    transaction_date: date,
    description: Optional[str] = None,
) -> str:
    """
    Post the journal entry for a transaction on an open connection.

    The category posts to the account of the same name and type (created on
    first use), balanced against Cash.

    Args:
        conn: Connection of the enclosing database transaction
        business_id: Owning business
        category: Category row (name and type)
        amount: Amount in base currency
        transaction_date: Entry date
        description: Entry description

    Returns:
        New journal entry id
    """
    account = AccountRef(name=category["name"], type=account_type_for_category(category["type"]))
    lines = build_transaction_lines(category["type"], account, amount)

    entry_id = new_id()
    insert_row(conn, "journal_entries", {
        "id": entry_id,
        "business_id": business_id,
        "transaction_date": transaction_date.isoformat(),
        "description": description or category["name"],
        "status": "posted",
        "created_at": utc_now(),
    })
    _insert_lines(conn, business_id, entry_id, lines)
    return entry_id


def replace_entry_lines(
    conn: sqlite3.Connection,
    business_id: str,
    entry_id: str,
    category: Dict[str, Any],
    amount: float,
    transaction_date: date,
) -> None:
    """Rewrite an entry's lines after its transaction changed."""
    conn.execute("DELETE FROM journal_lines WHERE journal_entry_id = ?", (entry_id,))
    conn.execute(
        "UPDATE journal_entries SET transaction_date = ? WHERE id = ? AND business_id = ?",
        (transaction_date.isoformat(), entry_id, business_id)
    )
    account = AccountRef(name=category["name"], type=account_type_for_category(category["type"]))
    _insert_lines(conn, business_id, entry_id, build_transaction_lines(category["type"], account, amount))


class JournalService:
    """Read and void journal entries of the user's business."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def _load_entries(
        self,
        business_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[JournalEntry]:
        clauses = ["business_id = ?"]
        params: List[Any] = [business_id]
        if start_date:
            clauses.append("transaction_date >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("transaction_date <= ?")
            params.append(end_date.isoformat())

        query = (
            f"SELECT * FROM journal_entries WHERE {' AND '.join(clauses)} "
            "ORDER BY transaction_date DESC, created_at DESC"
        )
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        entries = self.db.fetch_all(query, params)
        if not entries:
            return []

        placeholders = ", ".join("?" for _ in entries)
        lines = self.db.fetch_all(
            f"""
            SELECT l.id, l.journal_entry_id, l.type, l.amount,
                   a.name AS account_name, a.type AS account_type
            FROM journal_lines l
            LEFT JOIN accounts a ON a.id = l.account_id
            WHERE l.journal_entry_id IN ({placeholders})
            ORDER BY l.position
            """,
            [entry["id"] for entry in entries]
        )

        lines_by_entry: Dict[str, List[JournalLine]] = {}
        for row in lines:
            # Lines whose account was removed read as the Unknown expense account
            if row["account_name"] is None:
                account = UNKNOWN_ACCOUNT
            else:
                account = AccountRef(name=row["account_name"], type=row["account_type"])
            lines_by_entry.setdefault(row["journal_entry_id"], []).append(
                JournalLine(id=row["id"], account=account, type=row["type"], amount=row["amount"])
            )

        return [
            JournalEntry(
                id=entry["id"],
                transaction_date=date.fromisoformat(entry["transaction_date"]),
                description=entry["description"],
                status=entry["status"],
                lines=lines_by_entry.get(entry["id"], []),
            )
            for entry in entries
        ]

    def get_journal_entries(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[JournalEntry]:
        """
        Journal entries with their lines, newest first.

        Args:
            user_id: Authenticated user
            start_date: Inclusive lower bound
            end_date: Inclusive upper bound

        Returns:
            Entries with account name and type on every line
        """
        business = require_business(self.db, user_id)
        return self._load_entries(business["id"], start_date, end_date)

    def get_display_entries(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[JournalDisplayRecord]:
        """
        Entries flattened into income/expense display records.

        Entries without lines cannot be classified and are left out with a
        warning.
        """
        business = require_business(self.db, user_id)
        records = []
        for entry in self._load_entries(business["id"], start_date, end_date, limit=limit):
            try:
                records.append(process_journal_for_display(entry))
            except EmptyJournalEntryError:
                logger.warning(f"Skipping journal entry {entry.id} without lines")
        return records

    def void_journal_entry(self, user_id: str, entry_id: str) -> Dict[str, Any]:
        """
        Mark a journal entry and its linked transaction void.

        Raises:
            DataNotFoundError: If the entry is not in the user's business
            ConflictError: If it is already void
        """
        business = require_business(self.db, user_id)
        entry = self.db.fetch_one(
            "SELECT id, status FROM journal_entries WHERE id = ? AND business_id = ?",
            (entry_id, business["id"])
        )
        if entry is None:
            raise DataNotFoundError("Journal entry not found", details={"journal_entry_id": entry_id})
        if entry["status"] == "void":
            raise ConflictError("Journal entry is already void", details={"journal_entry_id": entry_id})

        now = utc_now()
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE journal_entries SET status = 'void' WHERE id = ? AND business_id = ?",
                (entry_id, business["id"])
            )
            conn.execute(
                "UPDATE transactions SET status = 'void', updated_at = ? "
                "WHERE journal_entry_id = ? AND business_id = ?",
                (now, entry_id, business["id"])
            )
        logger.info(f"Voided journal entry {entry_id}")
        return {"success": True}
