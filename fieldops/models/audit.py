"""
Field Operations Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for EPM mutations.
"""

from datetime import datetime, timezone

from fieldops.models import db
from fieldops.utils.helpers import isoformat

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "project_stage",
    "project_checklist",
    "checklist_item",
    "stage_approval",
    "stage_effect",
    "checklist_template",
}

AUDIT_ACTIONS = {
    "create",
    "update",
    "override",
    "retry",
    "error",
}


class AuditLog(db.Model):
    """
    Immutable audit trail entry.

    One row per mutation.  ``before_json`` / ``after_json`` hold plain
    snapshots of the entity; either may be empty (create has no before).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_at", "at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(36), nullable=True)

    # Polymorphic entity reference
    entity = db.Column(
        db.String(40), nullable=False,
        comment="project_stage | project_checklist | checklist_item | stage_approval | …",
    )
    entity_id = db.Column(db.String(36), nullable=False, comment="PK of the referenced entity")

    action = db.Column(db.String(30), nullable=False, comment="create | update | override | retry | error")
    actor_id = db.Column(db.String(36), nullable=True, comment="User id; NULL for system entries")

    before_json = db.Column(db.JSON, nullable=True)
    after_json = db.Column(db.JSON, nullable=True)

    at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "before": self.before_json,
            "after": self.after_json,
            "at": isoformat(self.at),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity}/{self.entity_id}>"


# ── Convenience builder ──────────────────────────────────────────────────────

def make_audit_entry(
    *,
    entity: str,
    entity_id,
    action: str,
    actor_id: str | None = None,
    project_id: str | None = None,
    before: dict | None = None,
    after: dict | None = None,
    at: datetime | None = None,
) -> AuditLog:
    """
    Build (but do not persist) a single audit row.

    Repositories persist it, so services stay independent of the session.
    """
    if entity not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity {entity!r}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")
    return AuditLog(
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor_id,
        project_id=project_id,
        before_json=before,
        after_json=after,
        at=at or datetime.now(timezone.utc),
    )
