"""
Excel export of transactions.
"""
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from core.config import get_settings
from core.exceptions import ExportError
from core.logger import setup_logger

logger = setup_logger(__name__)

SHEET_NAME = "Transactions"

EXPORT_COLUMNS = {
    "transaction_date": "Date",
    "category_name": "Category",
    "category_type": "Type",
    "client_vendor": "Client / Vendor",
    "amount": "Amount",
    "currency": "Currency",
    "exchange_rate": "Rate",
    "base_amount": "Base Amount",
    "rate_estimated": "Rate Estimated",
    "payment_method": "Payment Method",
    "status": "Status",
    "notes": "Notes",
}


def build_export_frame(transactions: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Shape transaction rows into the export sheet layout.

    Args:
        transactions: Transaction rows joined with their category

    Returns:
        DataFrame with human-readable column headers
    """
    df = pd.DataFrame(transactions, columns=list(EXPORT_COLUMNS))
    if not df.empty:
        df["rate_estimated"] = df["rate_estimated"].fillna(0).astype(bool).map({True: "yes", False: "no"})
    return df.rename(columns=EXPORT_COLUMNS)


def export_transactions_to_excel(
    transactions: List[Dict[str, Any]],
    output_path: str,
    base_currency: str,
) -> str:
    """
    Write transactions to an Excel workbook with a totals row.

    Args:
        transactions: Transaction rows joined with their category
        output_path: Output file path
        base_currency: Business base currency, shown in the totals row

    Returns:
        Path to created file

    Raises:
        ExportError: If the workbook cannot be written
    """
    logger.info(f"Exporting {len(transactions)} transactions to {output_path}")

    df = build_export_frame(transactions)
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
            df.to_excel(writer, sheet_name=SHEET_NAME, index=False)

            workbook = writer.book
            worksheet = writer.sheets[SHEET_NAME]
            money_format = workbook.add_format({"num_format": "#,##0.00"})
            bold_format = workbook.add_format({"bold": True, "num_format": "#,##0.00"})

            for idx, col in enumerate(df.columns):
                max_len = len(str(col))
                if not df.empty:
                    max_len = max(max_len, int(df[col].fillna("").astype(str).map(len).max()))
                cell_format = money_format if col in ("Amount", "Base Amount") else None
                worksheet.set_column(idx, idx, min(max_len + 2, 50), cell_format)

            if not df.empty:
                posted = df[df["Status"] == "posted"]
                income = posted.loc[posted["Type"] == "income", "Base Amount"].sum()
                expense = posted.loc[posted["Type"] == "expense", "Base Amount"].sum()
                base_col = df.columns.get_loc("Base Amount")
                row = len(df) + 2
                worksheet.write(row, base_col - 1, f"Income ({base_currency})")
                worksheet.write_number(row, base_col, float(income), bold_format)
                worksheet.write(row + 1, base_col - 1, f"Expenses ({base_currency})")
                worksheet.write_number(row + 1, base_col, float(expense), bold_format)
                worksheet.write(row + 2, base_col - 1, f"Net ({base_currency})")
                worksheet.write_number(row + 2, base_col, float(income - expense), bold_format)

        logger.info(f"Successfully exported to {output_path}")
        return output_path

    except Exception as e:
        logger.error(f"Failed to export Excel: {e}")
        raise ExportError(
            "Failed to export transactions to Excel",
            details={"output_path": output_path, "error": str(e)}
        )


def create_output_filename(business_id: str, base_path: Optional[str] = None) -> str:
    """
    Create a timestamped export filename.

    Args:
        business_id: Owning business (keeps exports of different businesses apart)
        base_path: Base directory path (defaults to EXPORT_PATH)

    Returns:
        Full path to output file
    """
    base_path = base_path or get_settings().export_path
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(Path(base_path) / f"transactions_{business_id[:8]}_{timestamp}.xlsx")
