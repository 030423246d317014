"""
Business health dashboard.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from core.db import Database, get_db
from core.exceptions import EmailDeliveryError
from core.logger import setup_logger
from core.schema import CashPosition, CurrentUser, HealthAlert
from services.business_service import require_business
from services.cashflow import CashPositionCalculator
from services.notification_service import NotificationService

logger = setup_logger(__name__)


def build_alerts(position: CashPosition) -> List[HealthAlert]:
    """
    Alerts shown above the health card: the next bill, overdue receivables
    and low cash flow.
    """
    alerts = []
    if position.upcoming:
        upcoming = position.upcoming[0]
        alerts.append(HealthAlert(
            type="urgent",
            message=f"{upcoming.name} due on {upcoming.due_date.strftime('%b %d, %Y')}",
            icon="clock",
        ))

    overdue = [r for r in position.receivables if r.is_overdue]
    if overdue:
        plural = "s" if len(overdue) > 1 else ""
        alerts.append(HealthAlert(type="warning", message=f"{len(overdue)} payment{plural} overdue", icon="alert"))

    if position.status != "safe":
        alerts.append(HealthAlert(type="warning", message="Cash flow is below recommended levels", icon="trend"))
    return alerts


class HealthService:

    def __init__(
        self,
        db: Optional[Database] = None,
        calculator: Optional[CashPositionCalculator] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.db = db or get_db()
        self.calculator = calculator or CashPositionCalculator(self.db)
        self._notifications = notifications

    @property
    def notifications(self) -> NotificationService:
        if self._notifications is None:
            self._notifications = NotificationService(self.db, calculator=self.calculator)
        return self._notifications

    def get_health_dashboard(self, user: CurrentUser, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Cash position, health status and alerts for the user's business.

        Sends the notifications the position calls for (each at most once per
        day); a failed send is logged and does not fail the dashboard.

        Args:
            user: Authenticated user
            today: Reference day (defaults to the current date)

        Returns:
            Dict with health_data, expenses, receivables and alerts
        """
        business = require_business(self.db, user.id)
        position = self.calculator.compute(business, today)

        try:
            sent = self.notifications.notify_for_position(business, user, position)
            if sent:
                logger.info(f"Health check sent {sent} for business {business['id']}")
        except EmailDeliveryError as e:
            logger.error(f"Health notifications failed for business {business['id']}: {e.message}")

        return {
            "health_data": {
                "currency": position.currency,
                "current_cash": position.current_cash,
                "total_receivables": position.total_receivables,
                "total_to_pay": position.total_to_pay,
                "remaining_balance": position.remaining_balance,
                "safe_cash": position.safe_cash,
                "status": position.status,
                "explanation": position.explanation,
            },
            "expenses": [p.model_dump(mode="json") for p in position.upcoming],
            "receivables": [r.model_dump(mode="json") for r in position.receivables],
            "alerts": [a.model_dump() for a in build_alerts(position)],
        }
