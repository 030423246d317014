"""
Email notifications about cash flow and invoices.

Each notification type is sent at most once per business per calendar day
(UTC); sends are recorded in ``notification_log``.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from core.config import Settings, get_settings
from core.db import Database, get_db, new_id, utc_now
from core.exceptions import BookkeepingError
from core.logger import mask_email, setup_logger
from core.schema import CashPosition, CurrentUser, EmailPayload, NotificationType
from services.cashflow import CashPositionCalculator
from services.email_service import EmailClient, get_email_client, render_email

logger = setup_logger(__name__)

TEMPLATES: Dict[str, str] = {
    "LOW_BALANCE": "low_balance",
    "INVOICE_DUE_SOON": "invoice_due_soon",
    "INVOICE_OVERDUE": "invoice_overdue",
}


def _subject(notification_type: NotificationType, context: Dict[str, Any]) -> str:
    if notification_type == "LOW_BALANCE":
        return "Negative Balance Alert"
    count = len(context.get("invoices", []))
    if notification_type == "INVOICE_DUE_SOON":
        return f"Invoice Due Reminder ({count})"
    return f"Overdue Invoices ({count})"


class NotificationService:
    """Send de-duplicated notification emails to business owners."""

    def __init__(
        self,
        db: Optional[Database] = None,
        email_client: Optional[EmailClient] = None,
        settings: Optional[Settings] = None,
        calculator: Optional[CashPositionCalculator] = None,
    ):
        self.db = db or get_db()
        self.email_client = email_client or get_email_client()
        self.settings = settings or get_settings()
        self.calculator = calculator or CashPositionCalculator(self.db, settings=self.settings)

    def was_sent_today(self, business_id: str, notification_type: NotificationType) -> bool:
        today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        row = self.db.fetch_one(
            """
            SELECT id FROM notification_log
            WHERE business_id = ? AND notification_type = ? AND created_at >= ?
            LIMIT 1
            """,
            (business_id, notification_type, today_start.isoformat())
        )
        return row is not None

    def log_notification(self, business_id: str, notification_type: NotificationType) -> None:
        self.db.insert("notification_log", {
            "id": new_id(),
            "business_id": business_id,
            "notification_type": notification_type,
            "created_at": utc_now(),
        })

    def notify(
        self,
        business_id: str,
        user: CurrentUser,
        notification_type: NotificationType,
        context: Dict[str, Any],
    ) -> bool:
        """
        Send one notification unless it already went out today.

        Args:
            business_id: Business the notification is about
            user: Recipient (owner of the business)
            notification_type: LOW_BALANCE, INVOICE_DUE_SOON or INVOICE_OVERDUE
            context: Template variables

        Returns:
            True when the notification was sent (or skipped because email is
            not configured), False when it was de-duplicated or the user has
            no email address

        Raises:
            EmailDeliveryError: If the email provider rejects the message
        """
        if not user.email:
            logger.info(f"No email address for user {user.id}, skipping {notification_type}")
            return False
        if self.was_sent_today(business_id, notification_type):
            logger.debug(f"{notification_type} already sent today for business {business_id}")
            return False

        context = {"user_name": user.display_name, **context}
        template = TEMPLATES[notification_type]
        payload = EmailPayload(
            to=user.email,
            subject=_subject(notification_type, context),
            html=render_email(f"{template}.html", **context),
            text=render_email(f"{template}.txt", **context),
        )
        self.email_client.send_email(payload)
        self.log_notification(business_id, notification_type)
        logger.info(f"Sent {notification_type} for business {business_id} to {mask_email(user.email)}")
        return True

    def _low_balance_context(self, position: CashPosition) -> Dict[str, Any]:
        return {
            "currency": position.currency,
            "current_cash": position.current_cash,
            "total_receivables": position.total_receivables,
            "total_to_pay": position.total_to_pay,
            "remaining_balance": position.remaining_balance,
            "safe_cash": position.safe_cash,
            "deficit": position.deficit,
        }

    def _due_soon_context(self, position: CashPosition) -> Optional[Dict[str, Any]]:
        window = self.settings.invoice_reminder_days
        invoices = [
            {
                "invoice_number": r.invoice_number,
                "client_name": r.client_name,
                "due_date": r.due_date.isoformat(),
                "days_until_due": r.days_until_due,
                "remaining": r.remaining,
                "currency": r.currency,
            }
            for r in position.receivables
            if 0 <= r.days_until_due <= window and r.remaining > 0
        ]
        if not invoices:
            return None
        return {"currency": position.currency, "window_days": window, "invoices": invoices}

    def _overdue_context(self, position: CashPosition) -> Optional[Dict[str, Any]]:
        invoices = [
            {
                "invoice_number": r.invoice_number,
                "client_name": r.client_name,
                "due_date": r.due_date.isoformat(),
                "days_overdue": -r.days_until_due,
                "remaining": r.remaining,
                "currency": r.currency,
            }
            for r in position.receivables
            if r.days_until_due < 0
        ]
        if not invoices:
            return None
        return {"currency": position.currency, "invoices": invoices}

    def notify_for_position(
        self,
        business: Dict[str, Any],
        user: CurrentUser,
        position: CashPosition,
    ) -> List[str]:
        """
        Send every notification the cash position calls for.

        Raises:
            EmailDeliveryError: If the email provider rejects a message
        """
        sent = []
        candidates = [
            ("INVOICE_DUE_SOON", self._due_soon_context(position)),
            ("INVOICE_OVERDUE", self._overdue_context(position)),
            ("LOW_BALANCE", self._low_balance_context(position) if position.remaining_balance < 0 else None),
        ]
        for notification_type, context in candidates:
            if context is not None and self.notify(business["id"], user, notification_type, context):
                sent.append(notification_type)
        return sent

    def check_low_balance(self, business: Dict[str, Any], user: CurrentUser) -> bool:
        """
        Alert the owner when the projected balance turned negative.

        Called after an expense is recorded. Failures are logged and do not
        fail the caller.

        Returns:
            True if an alert was sent
        """
        try:
            position = self.calculator.compute(business)
            if position.remaining_balance >= 0:
                return False
            return self.notify(business["id"], user, "LOW_BALANCE", self._low_balance_context(position))
        except BookkeepingError as e:
            logger.error(f"Low balance check failed for business {business['id']}: {e.message}")
            return False

    def run_smart_notifications(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Scheduled run over every business: invoice due reminders, overdue
        invoices and negative projected balance alerts.

        Returns:
            Counts of sent reminders and alerts plus per-business errors
        """
        today = today or date.today()
        businesses = self.db.fetch_all(
            """
            SELECT b.*, u.email AS owner_email, u.full_name AS owner_name
            FROM businesses b
            LEFT JOIN users u ON u.id = b.user_id
            """
        )

        counts = {"INVOICE_DUE_SOON": 0, "INVOICE_OVERDUE": 0, "LOW_BALANCE": 0}
        errors: List[str] = []
        for business in businesses:
            if not business["owner_email"]:
                continue
            user = CurrentUser(id=business["user_id"], email=business["owner_email"], full_name=business["owner_name"])
            try:
                position = self.calculator.compute(business, today)
                for notification_type in self.notify_for_position(business, user, position):
                    counts[notification_type] += 1
            except BookkeepingError as e:
                logger.error(f"Smart notifications failed for business {business['id']}: {e.message}")
                errors.append(f"Error processing business {business['id']}: {e.message}")

        logger.info(
            f"Smart notifications: {counts['INVOICE_DUE_SOON']} reminders, "
            f"{counts['INVOICE_OVERDUE']} overdue, {counts['LOW_BALANCE']} balance alerts"
        )
        return {
            "reminders_sent": counts["INVOICE_DUE_SOON"],
            "overdue_alerts": counts["INVOICE_OVERDUE"],
            "negative_balance_alerts": counts["LOW_BALANCE"],
            "processed": len(businesses),
            "errors": errors,
        }
