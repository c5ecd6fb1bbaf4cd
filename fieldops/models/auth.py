"""
Auth Models: field users and their role.

Authentication (login, sessions) is handled outside this service; the
engine only reads users to authorize actions and to address notifications.
"""

from datetime import datetime, timezone

from fieldops.models import db
from fieldops.utils.helpers import new_id


class User(db.Model):
    """A crew member, supervisor or administrator."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    username = db.Column(db.String(100), nullable=False, unique=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(
        db.String(20), nullable=False, default="tech",
        comment="tech | supervisor | admin",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"
