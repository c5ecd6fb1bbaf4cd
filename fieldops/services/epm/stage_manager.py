"""
Stage Manager: stage CRUD and read-time completion.

Completion is never stored: every read recomputes it from the required
items of all checklists attached to the stage.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from fieldops.core.exceptions import InvalidReferenceError, NotFoundError
from fieldops.models.audit import make_audit_entry
from fieldops.models.epm import ProjectStage
from fieldops.models.epm_config import ApprovalStatus, GateRules, ItemStatus
from fieldops.services.epm.contracts import CompletionSummary, StageCreate, StageUpdate, StageView
from fieldops.services.epm.repository import EpmRepository
from fieldops.utils.helpers import new_id, utcnow

logger = logging.getLogger(__name__)


def half_up_percent(part: int, whole: int) -> int:
    """round(100 * part / whole) with .5 rounded up, in integer arithmetic."""
    return (200 * part + whole) // (2 * whole)


class StageManager:
    def __init__(self, repo: EpmRepository, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock

    # ── Derived fields ───────────────────────────────────────────────────

    def completion(self, stage_id: str) -> CompletionSummary:
        """Required-item completion across every checklist bound to the stage.

        No checklists → 0%.  Checklists without required items → 100%.
        Only ``complete`` counts; ``na`` on a required item does not.
        """
        checklists = self.repo.list_stage_checklists(stage_id)
        total = done = 0
        for checklist in checklists:
            template = self.repo.get_template(checklist.template_id)
            required_ids = {d.id for d in template.item_defs() if d.required} if template else set()
            for item in self.repo.list_items(checklist.id):
                if item.template_item_id in required_ids:
                    total += 1
                    if item.status == ItemStatus.COMPLETE.value:
                        done += 1

        if not checklists:
            pct = 0
        elif total == 0:
            pct = 100
        else:
            pct = half_up_percent(done, total)
        return CompletionSummary(
            checklists=len(checklists), required_total=total, required_complete=done, percentage=pct,
        )

    def approval_status(self, stage_id: str) -> str:
        latest = self.repo.latest_approval(stage_id)
        return latest.status if latest else ApprovalStatus.PENDING.value

    def view(self, stage: ProjectStage) -> StageView:
        return StageView(
            stage=stage,
            completion_percentage=self.completion(stage.id).percentage,
            approval_status=self.approval_status(stage.id),
        )

    # ── Lookups ──────────────────────────────────────────────────────────

    def _project_or_404(self, project_id):
        project = self.repo.get_project(project_id)
        if project is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    def load_stage(self, project_id: str, stage_id: str) -> ProjectStage:
        """Return the stage, checking it belongs to ``project_id``."""
        stage = self.repo.get_stage(stage_id)
        if stage is None:
            raise NotFoundError(resource="ProjectStage", resource_id=stage_id)
        if stage.project_id != project_id:
            raise InvalidReferenceError(
                "Stage does not belong to this project",
                details={"stage_id": stage_id, "project_id": project_id},
            )
        return stage

    # ── Operations ───────────────────────────────────────────────────────

    def create_stages(self, project_id, stages: list[StageCreate], actor_id=None) -> list[StageView]:
        self._project_or_404(project_id)
        now = self.clock()
        created = []
        for new_stage in stages:
            stage = self.repo.add_stage(ProjectStage(
                id=new_id(),
                project_id=project_id,
                name=new_stage.name,
                order=new_stage.order,
                required_approver_role=new_stage.required_approver_role,
                gate_rules_json=new_stage.gate_rules.to_dict(),
                created_at=now,
                updated_at=now,
            ))
            self.repo.add_audit(make_audit_entry(
                entity="project_stage",
                entity_id=stage.id,
                action="create",
                actor_id=actor_id,
                project_id=project_id,
                after=stage.to_dict(),
                at=now,
            ))
            created.append(stage)
        self.repo.commit()
        logger.info("Created %d stage(s)", len(created), extra={"project_id": project_id})
        return [
            StageView(stage=s, completion_percentage=0, approval_status=ApprovalStatus.PENDING.value)
            for s in created
        ]

    def list_stages_with_pct(self, project_id) -> list[StageView]:
        self._project_or_404(project_id)
        stages = sorted(self.repo.list_stages(project_id), key=lambda s: s.order)
        return [self.view(s) for s in stages]

    def get_stage(self, project_id, stage_id) -> StageView:
        return self.view(self.load_stage(project_id, stage_id))

    def update_stage(self, project_id, stage_id, changes: StageUpdate, actor_id=None) -> StageView:
        stage = self.load_stage(project_id, stage_id)
        before = stage.to_dict()
        for field_name, value in changes.changes().items():
            if isinstance(value, GateRules):
                stage.gate_rules = value
            else:
                setattr(stage, field_name, value)
        now = self.clock()
        stage.updated_at = now

        self.repo.add_audit(make_audit_entry(
            entity="project_stage",
            entity_id=stage.id,
            action="update",
            actor_id=actor_id,
            project_id=project_id,
            before=before,
            after=stage.to_dict(),
            at=now,
        ))
        self.repo.commit()
        return self.view(stage)

    def stage_approval_history(self, project_id, stage_id):
        self.load_stage(project_id, stage_id)
        return self.repo.list_approvals(stage_id)
