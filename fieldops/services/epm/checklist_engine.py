"""
Checklist Engine: instantiates checklists from templates and applies
item updates.

Template metadata is joined at read time; items store only their own
state.  Every mutation recomputes and persists the owning checklist's
status and writes one audit entry.

Usage:
    engine = ChecklistEngine(SqlEpmRepository())
    view = engine.instantiate_checklist(project_id, template_id, stage_id=stage_id, actor_id=user.id)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from fieldops.core.exceptions import InvalidReferenceError, NotFoundError
from fieldops.models.audit import make_audit_entry
from fieldops.models.epm import ChecklistItem, ProjectChecklist
from fieldops.models.epm_config import UNKNOWN_TEMPLATE_ITEM, ChecklistStatus, ItemStatus
from fieldops.services.epm.contracts import (
    UNSET,
    ChecklistItemPatch,
    ChecklistSummary,
    ChecklistView,
    ItemView,
)
from fieldops.services.epm.repository import EpmRepository
from fieldops.utils.helpers import new_id, utcnow

logger = logging.getLogger(__name__)

_FINISHED = {ItemStatus.COMPLETE.value, ItemStatus.NA.value}


def derive_checklist_status(statuses: Iterable[str]) -> ChecklistStatus:
    """Checklist status from its item statuses.

    blocked beats everything; an empty checklist is not_started; ``na``
    counts toward done but does not by itself start a checklist.
    """
    statuses = list(statuses)
    if any(s == ItemStatus.BLOCKED.value for s in statuses):
        return ChecklistStatus.BLOCKED
    if statuses and all(s in _FINISHED for s in statuses):
        return ChecklistStatus.DONE
    if any(s == ItemStatus.COMPLETE.value for s in statuses):
        return ChecklistStatus.IN_PROGRESS
    return ChecklistStatus.NOT_STARTED


def join_items(template, items) -> list[ItemView]:
    """Pair each item with its template definition (``Unknown`` when vanished)."""
    defs = template.item_map()
    return [ItemView(item=i, definition=defs.get(i.template_item_id, UNKNOWN_TEMPLATE_ITEM)) for i in items]


class ChecklistEngine:
    def __init__(self, repo: EpmRepository, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock

    # ── Lookups ──────────────────────────────────────────────────────────

    def _project_or_404(self, project_id):
        project = self.repo.get_project(project_id)
        if project is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    def _template_or_404(self, template_id):
        template = self.repo.get_template(template_id)
        if template is None:
            raise NotFoundError(resource="ChecklistTemplate", resource_id=template_id)
        return template

    def get_item(self, item_id: str) -> ChecklistItem:
        item = self.repo.get_item(item_id)
        if item is None:
            raise NotFoundError(resource="ChecklistItem", resource_id=item_id)
        return item

    # ── Operations ───────────────────────────────────────────────────────

    def instantiate_checklist(self, project_id, template_id, stage_id=None, actor_id=None) -> ChecklistView:
        """Create a checklist with one pending item per template item."""
        self._project_or_404(project_id)
        template = self._template_or_404(template_id)
        if stage_id is not None:
            stage = self.repo.get_stage(stage_id)
            if stage is None:
                raise NotFoundError(resource="ProjectStage", resource_id=stage_id)
            if stage.project_id != project_id:
                raise InvalidReferenceError(
                    "Stage does not belong to this project",
                    details={"stage_id": stage_id, "project_id": project_id},
                )

        now = self.clock()
        checklist = self.repo.add_checklist(ProjectChecklist(
            id=new_id(),
            project_id=project_id,
            stage_id=stage_id,
            template_id=template.id,
            status=ChecklistStatus.NOT_STARTED.value,
            created_at=now,
            updated_at=now,
        ))
        items = []
        for position, definition in enumerate(template.item_defs()):
            items.append(self.repo.add_item(ChecklistItem(
                id=new_id(),
                project_checklist_id=checklist.id,
                template_item_id=definition.id,
                position=position,
                value=None,
                status=ItemStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )))

        self.repo.add_audit(make_audit_entry(
            entity="project_checklist",
            entity_id=checklist.id,
            action="create",
            actor_id=actor_id,
            project_id=project_id,
            after={**checklist.to_dict(), "items_count": len(items)},
            at=now,
        ))
        self.repo.commit()
        logger.info(
            "Checklist %s created from template %s (%d items)",
            checklist.id, template.id, len(items),
            extra={"project_id": project_id, "stage_id": stage_id},
        )
        return ChecklistView(checklist=checklist, template_name=template.name, items=join_items(template, items))

    def get_checklist(self, checklist_id) -> ChecklistView:
        checklist = self.repo.get_checklist(checklist_id)
        if checklist is None:
            raise NotFoundError(resource="ProjectChecklist", resource_id=checklist_id)
        template = self._template_or_404(checklist.template_id)
        items = self.repo.list_items(checklist.id)
        return ChecklistView(checklist=checklist, template_name=template.name, items=join_items(template, items))

    def list_checklists(self, project_id, stage_id=None) -> list[ChecklistSummary]:
        self._project_or_404(project_id)
        summaries = []
        names: dict[str, str] = {}
        for checklist in self.repo.list_checklists(project_id, stage_id=stage_id):
            if checklist.template_id not in names:
                template = self.repo.get_template(checklist.template_id)
                names[checklist.template_id] = template.name if template else "Unknown"
            items = self.repo.list_items(checklist.id)
            summaries.append(ChecklistSummary(
                id=checklist.id,
                template_id=checklist.template_id,
                template_name=names[checklist.template_id],
                stage_id=checklist.stage_id,
                status=checklist.status,
                items_total=len(items),
                items_complete=sum(1 for i in items if i.status == ItemStatus.COMPLETE.value),
            ))
        return summaries

    def update_checklist_item(self, item_id, patch: ChecklistItemPatch, actor_id=None) -> ChecklistItem:
        """Apply ``patch`` to one item and recompute its checklist's status.

        The checklist and item rows are locked for the duration of the
        mutation.
        """
        item = self.repo.get_item(item_id)
        if item is None:
            raise NotFoundError(resource="ChecklistItem", resource_id=item_id)
        checklist = self.repo.get_checklist(item.project_checklist_id, lock=True)
        if checklist is None:
            raise NotFoundError(resource="ProjectChecklist", resource_id=item.project_checklist_id)
        item = self.repo.get_item(item_id, lock=True)

        before = item.to_dict()
        now = self.clock()

        if patch.value is not UNSET:
            item.value = patch.value
        if patch.assignee_id is not UNSET:
            item.assignee_id = patch.assignee_id
        if patch.due_at is not UNSET:
            item.due_at = patch.due_at
        if patch.status is not UNSET:
            new_status = patch.status.value
            was_complete = item.status == ItemStatus.COMPLETE.value
            if new_status == ItemStatus.COMPLETE.value and not was_complete:
                item.completed_at = now
            elif new_status != ItemStatus.COMPLETE.value:
                item.completed_at = None
            item.status = new_status
        item.updated_at = now

        statuses = [i.status for i in self.repo.list_items(checklist.id)]
        new_checklist_status = derive_checklist_status(statuses).value
        if checklist.status != new_checklist_status:
            logger.debug("Checklist %s: %s -> %s", checklist.id, checklist.status, new_checklist_status)
            checklist.status = new_checklist_status
        checklist.updated_at = now

        self.repo.add_audit(make_audit_entry(
            entity="checklist_item",
            entity_id=item.id,
            action="update",
            actor_id=actor_id,
            project_id=checklist.project_id,
            before=before,
            after=item.to_dict(),
            at=now,
        ))
        self.repo.commit()
        return item
