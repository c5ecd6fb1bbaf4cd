"""
EPM persistence contract and its SQLAlchemy implementation.

The engine talks only to ``EpmRepository``.  ``SqlEpmRepository`` is the
production implementation on ``db.session``; tests also run the engine
against an in-memory implementation of the same interface.

Writers (``add_*``) make the object visible to later reads in the same
unit of work and assign integer keys; ``commit`` ends the unit of work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sqlalchemy import select

from fieldops.models import db
from fieldops.models.audit import AuditLog
from fieldops.models.auth import User
from fieldops.models.epm import (
    ChecklistItem,
    ChecklistTemplate,
    ProjectChecklist,
    ProjectStage,
    StageApproval,
    StageEffect,
)
from fieldops.models.epm_config import EffectStatus
from fieldops.models.project import Project


class EpmRepository(ABC):
    """Storage operations the EPM engine depends on."""

    # ── Reference data ───────────────────────────────────────────────────

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None: ...

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> User | None: ...

    @abstractmethod
    def get_template(self, template_id: str) -> ChecklistTemplate | None: ...

    @abstractmethod
    def list_templates(self, active_only: bool = True) -> list[ChecklistTemplate]: ...

    @abstractmethod
    def add_template(self, template: ChecklistTemplate) -> ChecklistTemplate: ...

    # ── Stages ───────────────────────────────────────────────────────────

    @abstractmethod
    def get_stage(self, stage_id: str) -> ProjectStage | None: ...

    @abstractmethod
    def list_stages(self, project_id: str) -> list[ProjectStage]:
        """Stages of a project ordered by ``order`` ascending."""

    @abstractmethod
    def add_stage(self, stage: ProjectStage) -> ProjectStage: ...

    # ── Checklists ───────────────────────────────────────────────────────

    @abstractmethod
    def get_checklist(self, checklist_id: str, lock: bool = False) -> ProjectChecklist | None: ...

    @abstractmethod
    def list_checklists(self, project_id: str, stage_id: str | None = None) -> list[ProjectChecklist]: ...

    @abstractmethod
    def list_stage_checklists(self, stage_id: str) -> list[ProjectChecklist]: ...

    @abstractmethod
    def add_checklist(self, checklist: ProjectChecklist) -> ProjectChecklist: ...

    @abstractmethod
    def get_item(self, item_id: str, lock: bool = False) -> ChecklistItem | None: ...

    @abstractmethod
    def list_items(self, checklist_id: str) -> list[ChecklistItem]:
        """Items of a checklist in template order."""

    @abstractmethod
    def add_item(self, item: ChecklistItem) -> ChecklistItem: ...

    # ── Approvals & effects ──────────────────────────────────────────────

    @abstractmethod
    def list_approvals(self, stage_id: str) -> list[StageApproval]:
        """Decisions for a stage, oldest first (created_at, then id)."""

    def latest_approval(self, stage_id: str) -> StageApproval | None:
        approvals = self.list_approvals(stage_id)
        return approvals[-1] if approvals else None

    @abstractmethod
    def add_approval(self, approval: StageApproval) -> StageApproval: ...

    @abstractmethod
    def add_effect(self, effect: StageEffect) -> StageEffect: ...

    @abstractmethod
    def list_effects(self, stage_id: str, status: str | None = None) -> list[StageEffect]: ...

    def has_succeeded_effect(self, stage_id: str, dedupe_key: str) -> bool:
        return any(
            e.dedupe_key == dedupe_key
            for e in self.list_effects(stage_id, status=EffectStatus.SUCCEEDED.value)
        )

    # ── Audit & transaction ──────────────────────────────────────────────

    @abstractmethod
    def add_audit(self, entry: AuditLog) -> AuditLog: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...


class SqlEpmRepository(EpmRepository):
    """``EpmRepository`` on the Flask-SQLAlchemy session."""

    def __init__(self, session=None):
        self.session = session or db.session

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    # ── Reference data ───────────────────────────────────────────────────

    def get_project(self, project_id):
        return self.session.get(Project, project_id)

    def get_user(self, user_id):
        return self.session.get(User, user_id)

    def get_user_by_username(self, username):
        return self.session.execute(
            select(User).where(User.username == username)
        ).scalar_one_or_none()

    def get_template(self, template_id):
        return self.session.get(ChecklistTemplate, template_id)

    def list_templates(self, active_only=True):
        stmt = select(ChecklistTemplate)
        if active_only:
            stmt = stmt.where(ChecklistTemplate.is_active.is_(True))
        stmt = stmt.order_by(ChecklistTemplate.name, ChecklistTemplate.version)
        return self.session.execute(stmt).scalars().all()

    def add_template(self, template):
        return self._add(template)

    # ── Stages ───────────────────────────────────────────────────────────

    def get_stage(self, stage_id):
        return self.session.get(ProjectStage, stage_id)

    def list_stages(self, project_id):
        return self.session.execute(
            select(ProjectStage)
            .where(ProjectStage.project_id == project_id)
            .order_by(ProjectStage.order, ProjectStage.created_at, ProjectStage.id)
        ).scalars().all()

    def add_stage(self, stage):
        return self._add(stage)

    # ── Checklists ───────────────────────────────────────────────────────

    def get_checklist(self, checklist_id, lock=False):
        stmt = select(ProjectChecklist).where(ProjectChecklist.id == checklist_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def list_checklists(self, project_id, stage_id=None):
        stmt = select(ProjectChecklist).where(ProjectChecklist.project_id == project_id)
        if stage_id is not None:
            stmt = stmt.where(ProjectChecklist.stage_id == stage_id)
        stmt = stmt.order_by(ProjectChecklist.created_at, ProjectChecklist.id)
        return self.session.execute(stmt).scalars().all()

    def list_stage_checklists(self, stage_id):
        return self.session.execute(
            select(ProjectChecklist)
            .where(ProjectChecklist.stage_id == stage_id)
            .order_by(ProjectChecklist.created_at, ProjectChecklist.id)
        ).scalars().all()

    def add_checklist(self, checklist):
        return self._add(checklist)

    def get_item(self, item_id, lock=False):
        stmt = select(ChecklistItem).where(ChecklistItem.id == item_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def list_items(self, checklist_id):
        return self.session.execute(
            select(ChecklistItem)
            .where(ChecklistItem.project_checklist_id == checklist_id)
            .order_by(ChecklistItem.position, ChecklistItem.id)
        ).scalars().all()

    def add_item(self, item):
        return self._add(item)

    # ── Approvals & effects ──────────────────────────────────────────────

    def list_approvals(self, stage_id):
        return self.session.execute(
            select(StageApproval)
            .where(StageApproval.stage_id == stage_id)
            .order_by(StageApproval.created_at, StageApproval.id)
        ).scalars().all()

    def latest_approval(self, stage_id):
        return self.session.execute(
            select(StageApproval)
            .where(StageApproval.stage_id == stage_id)
            .order_by(StageApproval.created_at.desc(), StageApproval.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def add_approval(self, approval):
        return self._add(approval)

    def add_effect(self, effect):
        return self._add(effect)

    def list_effects(self, stage_id, status=None):
        stmt = select(StageEffect).where(StageEffect.stage_id == stage_id)
        if status is not None:
            stmt = stmt.where(StageEffect.status == status)
        stmt = stmt.order_by(StageEffect.id)
        return self.session.execute(stmt).scalars().all()

    def has_succeeded_effect(self, stage_id, dedupe_key):
        found = self.session.execute(
            select(StageEffect.id)
            .where(
                StageEffect.stage_id == stage_id,
                StageEffect.dedupe_key == dedupe_key,
                StageEffect.status == EffectStatus.SUCCEEDED.value,
            )
            .limit(1)
        ).first()
        return found is not None

    # ── Audit & transaction ──────────────────────────────────────────────

    def add_audit(self, entry):
        return self._add(entry)

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
