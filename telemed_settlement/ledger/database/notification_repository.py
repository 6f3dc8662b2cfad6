"""In-app notification storage."""

import json
import uuid
from datetime import datetime

from .connection import get_connection


class NotificationRepository:

    def create(self, recipient_id: str, message: str, context: dict | None = None) -> str:
        """Store a notification and return its id."""
        notification_id = str(uuid.uuid4())
        conn = get_connection()
        conn.execute("""
            INSERT INTO notifications (id, recipient_id, message, context, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            notification_id, recipient_id, message,
            json.dumps(context, default=str) if context else None,
            datetime.now().isoformat(),
        ))
        conn.commit()
        conn.close()
        return notification_id

    def list_for_recipient(self, recipient_id: str) -> list[dict]:
        """Get notifications for a recipient, newest first."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM notifications WHERE recipient_id = ? ORDER BY created_at DESC, rowid DESC",
            (recipient_id,),
        )
        rows = cursor.fetchall()
        conn.close()
        notifications = []
        for row in rows:
            item = dict(row)
            item["context"] = json.loads(item["context"]) if item["context"] else None
            item["read"] = bool(item["read"])
            notifications.append(item)
        return notifications
