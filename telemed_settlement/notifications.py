"""Fire-and-forget notifications to patients and doctors."""

import logging

from telemed_settlement.ledger.database import NotificationRepository

logger = logging.getLogger(__name__)


class DatabaseNotifier:
    """Writes in-app notifications to the notifications table."""

    def __init__(self, repo: NotificationRepository | None = None):
        self.repo = repo or NotificationRepository()

    def notify(self, recipient_id: str, message: str, context: dict | None = None) -> None:
        self.repo.create(recipient_id, message, context)


def send_notification(notifier, recipient_id: str, message: str, context: dict | None = None) -> bool:
    """Deliver a notification; delivery failures never undo the caller's state change."""
    if notifier is None:
        return False
    try:
        notifier.notify(recipient_id, message, context or {})
        return True
    except Exception:
        logger.warning(
            "Notification to %s failed (context=%s)", recipient_id, context, exc_info=True,
        )
        return False
