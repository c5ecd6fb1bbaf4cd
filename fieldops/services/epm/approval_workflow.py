"""
Approval Workflow: gated, role-checked stage decisions.

Business rules:
  1. The stage's ``required_approver_role`` is checked first, for approve
     and reject alike.
  2. Approving requires 100% required-item completion; the error names
     the shortfall.  Rejecting has no gate.
  3. Decisions are appended, never overwritten.  A decision supersedes the
     previous one; a strictly higher role than the previous approver
     makes it an override (audit action ``override``).
  4. The decision and its audit entry are committed before any effect
     runs.  Effects and notifications never fail the decision.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from fieldops.auth import Role, role_satisfies
from fieldops.core.exceptions import GateNotSatisfiedError, InsufficientRoleError, ValidationError
from fieldops.models.audit import make_audit_entry
from fieldops.models.epm import StageApproval
from fieldops.models.epm_config import ApprovalStatus, EffectStatus
from fieldops.services.epm.contracts import ApprovalOutcome, StageDecision
from fieldops.services.epm.effects import EffectDispatcher, build_effect_requests
from fieldops.services.epm.repository import EpmRepository
from fieldops.services.epm.stage_manager import StageManager
from fieldops.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _rank(role) -> int:
    try:
        return int(Role.parse(role))
    except ValueError:
        return 0


class ApprovalWorkflow:
    def __init__(
        self,
        repo: EpmRepository,
        stages: StageManager,
        dispatcher: EffectDispatcher,
        notifier,
        clock: Callable[[], datetime] = utcnow,
        fallback_recipient: str = "admin",
    ):
        self.repo = repo
        self.stages = stages
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.clock = clock
        self.fallback_recipient = fallback_recipient

    # ── Decide ───────────────────────────────────────────────────────────

    def approve_stage(self, project_id, stage_id, decision: StageDecision, approver) -> ApprovalOutcome:
        stage = self.stages.load_stage(project_id, stage_id)
        log_extra = {"project_id": project_id, "stage_id": stage_id}

        required = stage.required_approver_role
        if required and not role_satisfies(approver.role, required):
            logger.warning(
                "User %s (%s) may not decide stage requiring %s", approver.id, approver.role, required,
                extra=log_extra,
            )
            raise InsufficientRoleError(required, approver.role, action=f"decide stage '{stage.name}'")

        if decision.is_approval:
            completion = self.stages.completion(stage.id)
            if not completion.satisfied:
                raise GateNotSatisfiedError(completion.shortfall_message(), details=completion.to_dict())

        previous = self.repo.latest_approval(stage.id)
        is_override = previous is not None and _rank(approver.role) > _rank(previous.approver_role)
        now = self.clock()

        approval = self.repo.add_approval(StageApproval(
            project_id=project_id,
            stage_id=stage.id,
            approver_id=approver.id,
            approver_role=approver.role,
            status=decision.status.value,
            note=decision.note,
            is_override=is_override,
            supersedes_id=previous.id if previous else None,
            decided_at=now,
            created_at=now,
        ))
        self.repo.add_audit(make_audit_entry(
            entity="stage_approval",
            entity_id=approval.id,
            action="override" if is_override else "create",
            actor_id=approver.id,
            project_id=project_id,
            before=previous.to_dict() if previous else None,
            after=approval.to_dict(),
            at=now,
        ))
        self.repo.commit()
        logger.info(
            "Stage %s %s by %s%s", stage.id, approval.status, approver.id,
            " (override)" if is_override else "", extra=log_extra,
        )

        effects = []
        if decision.is_approval:
            requests = build_effect_requests(stage.gate_rules)
            effects = self.dispatcher.dispatch(approval, stage, requests, actor_id=approver.id)

        self._notify(stage, approval, approver, effects)

        failed = sum(1 for e in effects if e.status == EffectStatus.FAILED.value)
        message = "Stage approved successfully" if decision.is_approval else "Stage rejected"
        if failed:
            message += f"; {failed} follow-up action(s) failed and can be retried"
        return ApprovalOutcome(approval=approval, effects=effects, message=message)

    def retry_failed_effects(self, project_id, stage_id, actor_id=None):
        """Re-dispatch the stage's failed effects; the stage must currently be approved."""
        stage = self.stages.load_stage(project_id, stage_id)
        latest = self.repo.latest_approval(stage.id)
        if latest is None or latest.status != ApprovalStatus.APPROVED.value:
            raise ValidationError("Stage is not approved", details={"approval_status": latest.status if latest else "pending"})
        failed = self.repo.list_effects(stage.id, status=EffectStatus.FAILED.value)
        return self.dispatcher.retry(failed, stage, actor_id=actor_id)

    # ── Notifications ────────────────────────────────────────────────────

    def _recipient(self, stage) -> str:
        project = self.repo.get_project(stage.project_id)
        if project is not None and project.supervisor_id:
            return project.supervisor_id
        fallback = self.repo.get_user_by_username(self.fallback_recipient)
        return fallback.id if fallback else self.fallback_recipient

    def _notify(self, stage, approval, approver, effects) -> None:
        try:
            recipient = self._recipient(stage)
            verb = "approved" if approval.is_approved else "rejected"
            approver_name = getattr(approver, "full_name", None) or approver.id
            self.notifier.create_once(
                recipient_id=recipient,
                type="stage_decision",
                title=f"Stage {verb}: {stage.name}",
                message=f"{approver_name} {verb} stage '{stage.name}'."
                        + (f" Note: {approval.note}" if approval.note else ""),
                priority="normal" if approval.is_approved else "high",
                related_type="project_stage",
                related_id=stage.id,
                action_url=f"/projects/{stage.project_id}/stages/{stage.id}",
                metadata={
                    "approval_id": approval.id,
                    "is_override": approval.is_override,
                    "effects": [{"kind": e.kind, "target": e.target, "status": e.status} for e in effects],
                },
                dedupe_key=f"stage_decision:{approval.id}",
            )
            if approval.is_approved:
                self.notifier.create_once(
                    recipient_id=recipient,
                    type="stage_approved",
                    title=f"Stage complete: {stage.name}",
                    message=f"Stage '{stage.name}' passed its gate and was approved.",
                    related_type="project_stage",
                    related_id=stage.id,
                    action_url=f"/projects/{stage.project_id}/stages/{stage.id}",
                )
        except Exception:  # notification delivery never fails a recorded decision
            self.repo.rollback()
            logger.warning(
                "Notification for stage %s decision %s failed", stage.id, approval.id,
                exc_info=True, extra={"project_id": stage.project_id, "stage_id": stage.id},
            )
