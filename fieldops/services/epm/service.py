"""
EPM Service: facade over the checklist engine, stage manager, approval
workflow and progress aggregator.

Blueprints build one per request with ``build_epm_service()``; tests
construct it directly with their own repository, gateway and notifier.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from flask import current_app

from fieldops.core.exceptions import ConflictError, NotFoundError, ValidationError
from fieldops.models.audit import make_audit_entry
from fieldops.models.epm import ChecklistTemplate
from fieldops.models.epm_config import TemplateItemDef
from fieldops.services.epm.approval_workflow import ApprovalWorkflow
from fieldops.services.epm.checklist_engine import ChecklistEngine
from fieldops.services.epm.effects import (
    DEFAULT_COMMISSIONING_LEAD_DAYS,
    DEFAULT_MAX_ATTEMPTS,
    EffectDispatcher,
    OperationsGateway,
    SqlOperationsGateway,
)
from fieldops.services.epm.progress import ProgressAggregator
from fieldops.services.epm.repository import EpmRepository, SqlEpmRepository
from fieldops.services.epm.stage_manager import StageManager
from fieldops.services.notification import NotificationService
from fieldops.utils.helpers import new_id, utcnow


class EpmService:
    """Single entry point for every EPM operation."""

    def __init__(
        self,
        repo: EpmRepository,
        gateway: OperationsGateway,
        notifier,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        commissioning_lead_days: int = DEFAULT_COMMISSIONING_LEAD_DAYS,
        fallback_recipient: str = "admin",
    ):
        self.repo = repo
        self.clock = clock
        self.checklists = ChecklistEngine(repo, clock=clock)
        self.stages = StageManager(repo, clock=clock)
        self.dispatcher = EffectDispatcher(
            repo, gateway, clock=clock,
            max_attempts=max_attempts, commissioning_lead_days=commissioning_lead_days,
        )
        self.approvals = ApprovalWorkflow(
            repo, self.stages, self.dispatcher, notifier,
            clock=clock, fallback_recipient=fallback_recipient,
        )
        self.progress = ProgressAggregator(self.stages)

    # ── Checklists ───────────────────────────────────────────────────────

    def instantiate_checklist(self, project_id, template_id, stage_id=None, actor_id=None):
        return self.checklists.instantiate_checklist(project_id, template_id, stage_id=stage_id, actor_id=actor_id)

    def get_checklist(self, checklist_id):
        return self.checklists.get_checklist(checklist_id)

    def list_checklists(self, project_id, stage_id=None):
        return self.checklists.list_checklists(project_id, stage_id=stage_id)

    def get_checklist_item(self, item_id):
        return self.checklists.get_item(item_id)

    def update_checklist_item(self, item_id, patch, actor_id=None):
        return self.checklists.update_checklist_item(item_id, patch, actor_id=actor_id)

    # ── Stages ───────────────────────────────────────────────────────────

    def create_stages(self, project_id, stages, actor_id=None):
        return self.stages.create_stages(project_id, stages, actor_id=actor_id)

    def list_stages_with_pct(self, project_id):
        return self.stages.list_stages_with_pct(project_id)

    def get_stage(self, project_id, stage_id):
        return self.stages.get_stage(project_id, stage_id)

    def update_stage(self, project_id, stage_id, changes, actor_id=None):
        return self.stages.update_stage(project_id, stage_id, changes, actor_id=actor_id)

    def stage_approval_history(self, project_id, stage_id):
        return self.stages.stage_approval_history(project_id, stage_id)

    # ── Approvals ────────────────────────────────────────────────────────

    def approve_stage(self, project_id, stage_id, decision, approver):
        return self.approvals.approve_stage(project_id, stage_id, decision, approver)

    def retry_failed_effects(self, project_id, stage_id, actor_id=None):
        return self.approvals.retry_failed_effects(project_id, stage_id, actor_id=actor_id)

    # ── Progress ─────────────────────────────────────────────────────────

    def get_project_progress(self, project_id):
        return self.progress.get_project_progress(project_id)

    # ── Template catalog ─────────────────────────────────────────────────

    def list_templates(self, active_only=True):
        return self.repo.list_templates(active_only=active_only)

    def get_template(self, template_id):
        template = self.repo.get_template(template_id)
        if template is None:
            raise NotFoundError(resource="ChecklistTemplate", resource_id=template_id)
        return template

    def create_template(self, data: dict, actor_id=None) -> ChecklistTemplate:
        """Validate and store a template.

        Item ids must be unique within the template and the name unique among
        active templates.
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required", details={"name": "is required"})
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items must be a non-empty list", details={"items": "is required"})

        defs, errors = [], {}
        for index, raw in enumerate(raw_items):
            try:
                defs.append(TemplateItemDef.from_dict(raw))
            except ValidationError as exc:
                errors[str(index)] = exc.details or str(exc)
        if errors:
            raise ValidationError("Invalid template items", details={"items": errors})
        ids = [d.id for d in defs]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValidationError("Duplicate template item ids", details={"items": {"duplicate_ids": duplicates}})

        if any(t.name == name.strip() for t in self.repo.list_templates(active_only=True)):
            raise ConflictError(resource="ChecklistTemplate", field="name", value=name.strip())

        now = self.clock()
        template = self.repo.add_template(ChecklistTemplate(
            id=new_id(),
            name=name.strip(),
            type=str(data.get("type") or "project_stage"),
            items=[d.to_dict() for d in defs],
            version=1,
            is_active=True,
            created_at=now,
        ))
        self.repo.add_audit(make_audit_entry(
            entity="checklist_template",
            entity_id=template.id,
            action="create",
            actor_id=actor_id,
            after={"name": template.name, "items_count": len(defs)},
            at=now,
        ))
        self.repo.commit()
        return template


def build_epm_service() -> EpmService:
    """EpmService wired to the SQL repository and the app's EPM settings."""
    cfg = current_app.config
    return EpmService(
        SqlEpmRepository(),
        SqlOperationsGateway(),
        NotificationService,
        max_attempts=cfg.get("EPM_EFFECT_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        commissioning_lead_days=cfg.get("EPM_COMMISSIONING_LEAD_DAYS", DEFAULT_COMMISSIONING_LEAD_DAYS),
        fallback_recipient=cfg.get("EPM_NOTIFICATION_FALLBACK_RECIPIENT", "admin"),
    )
