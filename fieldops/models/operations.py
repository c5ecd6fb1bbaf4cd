"""
Field Operations Platform
Downstream operations records created by stage-approval effects.

Models:
    - SafetyForm: draft safety form spawned for a stage (e.g. "hot_work_permit")
    - InventoryReservation: reservation of an inventory item for a stage
    - CommissioningJob: scheduled equipment-commissioning job
"""

from datetime import datetime, timezone

from fieldops.models import db
from fieldops.utils.helpers import isoformat, new_id


def _utcnow():
    return datetime.now(timezone.utc)


class SafetyForm(db.Model):
    __tablename__ = "safety_forms"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    stage_id = db.Column(db.String(36), db.ForeignKey("project_stages.id", ondelete="SET NULL"), nullable=True)
    type = db.Column(db.String(100), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft", comment="draft | submitted | closed")
    form_data = db.Column(db.JSON, nullable=False, default=dict)
    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "form_data": self.form_data or {},
            "created_at": isoformat(self.created_at),
        }


class InventoryReservation(db.Model):
    __tablename__ = "inventory_reservations"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    stage_id = db.Column(db.String(36), db.ForeignKey("project_stages.id", ondelete="SET NULL"), nullable=True)
    item_ref = db.Column(db.String(200), nullable=False, comment="Inventory item id or SKU")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default="reserved", comment="reserved | released | consumed")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "item_ref": self.item_ref,
            "quantity": self.quantity,
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }


class CommissioningJob(db.Model):
    __tablename__ = "commissioning_jobs"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    stage_id = db.Column(db.String(36), db.ForeignKey("project_stages.id", ondelete="SET NULL"), nullable=True)
    equipment_ref = db.Column(db.String(200), nullable=True)
    scheduled_for = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="scheduled", comment="scheduled | done | cancelled")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "equipment_ref": self.equipment_ref,
            "scheduled_for": isoformat(self.scheduled_for),
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }
