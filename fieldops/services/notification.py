"""
Field Operations Platform
Notification Service.

Central service for creating and querying in-app notifications.
Every write is idempotent on ``dedupe_key``: a second event with the same
key returns the stored record instead of inserting a duplicate.
"""

from sqlalchemy import select

from fieldops.models import db
from fieldops.models.notification import NOTIFICATION_PRIORITIES, NOTIFICATION_TYPES, Notification


def default_dedupe_key(recipient_id, related_type, related_id, type_) -> str:
    """Key used when the caller does not supply one."""
    return f"{recipient_id}:{related_type}:{related_id}:{type_}"


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create_once(*, recipient_id, title, message="", type="system", priority="normal",
                    related_type="", related_id=None, action_url=None, metadata=None,
                    dedupe_key=None):
        """
        Create a notification unless one with the same dedupe key exists.

        Returns:
            (Notification, created): ``created`` is False when the record
            already existed.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type {type!r}")
        if priority not in NOTIFICATION_PRIORITIES:
            raise ValueError(f"Unknown notification priority {priority!r}")
        key = dedupe_key or default_dedupe_key(recipient_id, related_type, related_id, type)
        existing = db.session.execute(
            select(Notification).where(Notification.dedupe_key == key)
        ).scalar_one_or_none()
        if existing is not None:
            return existing, False

        notif = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            priority=priority,
            related_type=related_type,
            related_id=str(related_id) if related_id is not None else None,
            action_url=action_url,
            metadata_json=metadata,
            dedupe_key=key,
        )
        db.session.add(notif)
        db.session.commit()
        return notif, True
