"""
Field Operations Platform
Enhanced Project Management (EPM) domain models.

Models:
    - ChecklistTemplate: catalog entry, ordered item definitions (read-only to the engine)
    - ProjectStage: ordered, gated phase of a project
    - ProjectChecklist: one instantiation of a template for a project (optionally a stage)
    - ChecklistItem: one template item instance inside a project checklist
    - StageApproval: append-only approve / reject decision
    - StageEffect: one post-approval side effect request and its dispatch outcome

Template metadata (label, type, required, validations) is never copied onto
checklist items; it is joined from the template at read time.
"""

from datetime import datetime, timezone

from fieldops.models import db
from fieldops.models.epm_config import (
    ApprovalStatus,
    ChecklistStatus,
    EffectStatus,
    GateRules,
    ItemStatus,
    TemplateItemDef,
)
from fieldops.utils.helpers import isoformat, new_id


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Template catalog
# ═════════════════════════════════════════════════════════════════════════════


class ChecklistTemplate(db.Model):
    """Checklist template; ``items`` is an ordered JSON list of item definitions."""

    __tablename__ = "checklist_templates"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(
        db.String(50), nullable=False, default="project_stage",
        comment="project_stage | safety | daily_maintenance",
    )
    items = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def item_defs(self) -> list[TemplateItemDef]:
        """Typed view of ``items`` in template order, tolerant of loose stored items."""
        return [TemplateItemDef.from_stored(raw, position) for position, raw in enumerate(self.items or [])]

    def item_map(self) -> dict[str, TemplateItemDef]:
        return {d.id: d for d in self.item_defs()}

    def to_dict(self) -> dict:
        defs = self.item_defs()
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "version": self.version,
            "is_active": self.is_active,
            "items": [d.to_dict() for d in defs],
            "required_count": sum(1 for d in defs if d.required),
            "optional_count": sum(1 for d in defs if not d.required),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<ChecklistTemplate {self.id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════════


class ProjectStage(db.Model):
    """
    Ordered phase of a project.

    ``completion_percentage`` and ``approval_status`` are derived on every read
    by the stage manager and are intentionally not columns.
    """

    __tablename__ = "project_stages"
    __table_args__ = (
        db.Index("ix_project_stages_project_order", "project_id", "order"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    required_approver_role = db.Column(
        db.String(20), nullable=True,
        comment="tech | supervisor | admin; NULL = any approver",
    )
    gate_rules_json = db.Column("gate_rules", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def gate_rules(self) -> GateRules:
        return GateRules.from_dict(self.gate_rules_json)

    @gate_rules.setter
    def gate_rules(self, rules: GateRules) -> None:
        self.gate_rules_json = rules.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "order": self.order,
            "required_approver_role": self.required_approver_role,
            "gate_rules": self.gate_rules.to_dict(),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<ProjectStage {self.id}: #{self.order} {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# Checklists
# ═════════════════════════════════════════════════════════════════════════════


class ProjectChecklist(db.Model):
    """A template instantiated for a project; ``status`` is derived from its items."""

    __tablename__ = "project_checklists"
    __table_args__ = (
        db.Index("ix_project_checklists_project_stage", "project_id", "stage_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_id = db.Column(
        db.String(36), db.ForeignKey("project_stages.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    template_id = db.Column(
        db.String(36), db.ForeignKey("checklist_templates.id", ondelete="RESTRICT"), nullable=False,
    )
    status = db.Column(
        db.String(20), nullable=False, default=ChecklistStatus.NOT_STARTED.value,
        comment="not_started | in_progress | blocked | done",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "template_id": self.template_id,
            "status": self.status,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<ProjectChecklist {self.id}: {self.status}>"


class ChecklistItem(db.Model):
    """
    One template item instance.

    Invariant: ``completed_at`` is set if and only if ``status == complete``.
    """

    __tablename__ = "checklist_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_checklist_id = db.Column(
        db.String(36), db.ForeignKey("project_checklists.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    template_item_id = db.Column(db.String(64), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0, comment="Template order")
    value = db.Column(db.JSON, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=ItemStatus.PENDING.value,
        comment="pending | complete | na | blocked",
    )
    assignee_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_checklist_id": self.project_checklist_id,
            "template_item_id": self.template_item_id,
            "value": self.value,
            "status": self.status,
            "assignee_id": self.assignee_id,
            "due_at": isoformat(self.due_at),
            "completed_at": isoformat(self.completed_at),
        }

    def __repr__(self):
        return f"<ChecklistItem {self.id}: {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# Approvals & effects
# ═════════════════════════════════════════════════════════════════════════════


class StageApproval(db.Model):
    """
    Immutable approve / reject decision for a stage.

    Business rules:
    - Records are never updated or deleted; the latest (created_at, id) is
      the stage's current approval status.
    - ``supersedes_id`` points at the decision this one replaced.
    - ``is_override`` marks a decision by a strictly higher role than the
      decision it supersedes.
    - ``approver_role`` is captured at decision time.
    """

    __tablename__ = "stage_approvals"
    __table_args__ = (
        db.Index("ix_stage_approvals_stage", "project_id", "stage_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    stage_id = db.Column(
        db.String(36), db.ForeignKey("project_stages.id", ondelete="CASCADE"), nullable=False,
    )
    approver_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_role = db.Column(db.String(20), nullable=True)
    status = db.Column(db.String(20), nullable=False, comment="approved | rejected")
    note = db.Column(db.Text, nullable=True)
    is_override = db.Column(db.Boolean, nullable=False, default=False)
    supersedes_id = db.Column(db.Integer, db.ForeignKey("stage_approvals.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def is_approved(self) -> bool:
        return self.status == ApprovalStatus.APPROVED.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "approver_id": self.approver_id,
            "approver_role": self.approver_role,
            "status": self.status,
            "note": self.note,
            "is_override": self.is_override,
            "supersedes_id": self.supersedes_id,
            "decided_at": isoformat(self.decided_at),
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<StageApproval #{self.id} {self.stage_id} {self.status}>"


class StageEffect(db.Model):
    """
    One post-approval side effect request.

    Persisted before dispatch; ``status`` records the outcome so failures
    can be inspected and retried without touching the approval record.
    """

    __tablename__ = "stage_effects"
    __table_args__ = (
        db.Index("ix_stage_effects_stage_key", "stage_id", "dedupe_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    approval_id = db.Column(
        db.Integer, db.ForeignKey("stage_approvals.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(db.String(36), nullable=False)
    stage_id = db.Column(db.String(36), nullable=False)
    kind = db.Column(
        db.String(40), nullable=False,
        comment="safety_form | inventory_reservation | equipment_commissioning",
    )
    target = db.Column(db.String(200), nullable=True, comment="Form type or inventory item ref")
    dedupe_key = db.Column(db.String(300), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=EffectStatus.PENDING.value,
        comment="pending | succeeded | failed | skipped",
    )
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    result_ref = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "approval_id": self.approval_id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "kind": self.kind,
            "target": self.target,
            "dedupe_key": self.dedupe_key,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "result_ref": self.result_ref,
        }

    def __repr__(self):
        return f"<StageEffect #{self.id} {self.kind}:{self.target} {self.status}>"
