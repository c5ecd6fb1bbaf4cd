"""
Field Operations Platform
Notification domain model.

Models:
    - Notification: in-app notification record, deduplicated by ``dedupe_key``
"""

from datetime import datetime, timezone

from fieldops.models import db
from fieldops.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {"stage_decision", "stage_approved", "system"}
NOTIFICATION_PRIORITIES = {"low", "normal", "high"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  ``dedupe_key`` is unique so a
    repeated event for the same recipient and entity is not stored twice.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.String(36), nullable=False, index=True, comment="User id or role name")
    type = db.Column(db.String(40), nullable=False, default="system")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    # Link to source entity
    related_type = db.Column(db.String(40), default="", comment="project_stage | stage_effect | …")
    related_id = db.Column(db.String(36), nullable=True)

    priority = db.Column(db.String(20), default="normal")
    status = db.Column(db.String(20), default="unread", comment="unread | read")
    action_url = db.Column(db.String(500), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)
    dedupe_key = db.Column(db.String(300), unique=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "related_type": self.related_type,
            "related_id": self.related_id,
            "priority": self.priority,
            "status": self.status,
            "action_url": self.action_url,
            "metadata": self.metadata_json or {},
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
