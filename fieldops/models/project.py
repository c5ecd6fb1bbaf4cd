"""Project domain model: the unit of field work that stages belong to."""

from datetime import datetime, timezone

from fieldops.models import db
from fieldops.utils.helpers import isoformat, new_id


class Project(db.Model):
    """A marine-service job (hull blast & coat, tank lining, ...)."""

    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    location = db.Column(db.String(200), nullable=False, default="")
    status = db.Column(
        db.String(30), nullable=False, default="pending",
        comment="pending | active | completed | cancelled",
    )
    supervisor_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    stages = db.relationship("ProjectStage", backref="project", lazy="dynamic")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "status": self.status,
            "supervisor_id": self.supervisor_id,
            "notes": self.notes,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
