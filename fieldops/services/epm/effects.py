"""
Post-approval effects: request building, the operations gateway and the
dispatcher that runs each request in isolation.

Flow per approved decision:
  build_effect_requests(gate_rules)            → ordered EffectRequest list
  EffectDispatcher.dispatch(approval, stage)   → one StageEffect row each

Dispatch rules:
  - each effect is persisted (``pending``) before it is attempted
  - up to ``max_attempts`` tries; a failure is rolled back, logged and
    recorded as ``failed`` with ``last_error`` and never raised
  - an effect whose dedupe key already succeeded for the stage is
    recorded as ``skipped`` and not re-run
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from fieldops.models import db
from fieldops.models.audit import make_audit_entry
from fieldops.models.epm import StageEffect
from fieldops.models.epm_config import EffectKind, EffectStatus, GateRules
from fieldops.models.operations import CommissioningJob, InventoryReservation, SafetyForm
from fieldops.services.epm.repository import EpmRepository
from fieldops.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_COMMISSIONING_LEAD_DAYS = 7


# ═════════════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EffectRequest:
    kind: EffectKind
    target: str | None = None

    def dedupe_key(self, stage_id: str) -> str:
        return f"{stage_id}:{self.kind.value}:{self.target or ''}"


def build_effect_requests(rules: GateRules) -> list[EffectRequest]:
    """Effect requests for an approved stage: forms, then reservations, then commissioning."""
    requests = [EffectRequest(EffectKind.SAFETY_FORM, form) for form in rules.required_forms]
    requests += [EffectRequest(EffectKind.INVENTORY_RESERVATION, ref) for ref in rules.inventory_reservations]
    if rules.equipment_commissioning:
        requests.append(EffectRequest(EffectKind.EQUIPMENT_COMMISSIONING))
    return requests


# ═════════════════════════════════════════════════════════════════════════════
# Operations gateway
# ═════════════════════════════════════════════════════════════════════════════


class OperationsGateway(ABC):
    """Downstream operations the effects land in.  Each method returns a reference id."""

    @abstractmethod
    def create_safety_form(self, *, project_id: str, stage_id: str, form_type: str,
                           title: str, actor_id: str | None) -> str:
        """Create a draft safety form of ``form_type``."""

    @abstractmethod
    def reserve_inventory(self, *, project_id: str, stage_id: str, item_ref: str) -> str:
        """Reserve one unit of ``item_ref`` for the stage."""

    @abstractmethod
    def schedule_commissioning(self, *, project_id: str, stage_id: str, scheduled_for: datetime) -> str:
        """Schedule an equipment-commissioning job."""


class SqlOperationsGateway(OperationsGateway):
    """Writes the downstream records to the local database."""

    def _add(self, obj) -> str:
        db.session.add(obj)
        db.session.flush()
        return obj.id

    def create_safety_form(self, *, project_id, stage_id, form_type, title, actor_id):
        return self._add(SafetyForm(
            project_id=project_id,
            stage_id=stage_id,
            type=form_type,
            title=title,
            status="draft",
            form_data={},
            created_by=actor_id,
        ))

    def reserve_inventory(self, *, project_id, stage_id, item_ref):
        return self._add(InventoryReservation(
            project_id=project_id,
            stage_id=stage_id,
            item_ref=item_ref,
            quantity=1,
            status="reserved",
        ))

    def schedule_commissioning(self, *, project_id, stage_id, scheduled_for):
        return self._add(CommissioningJob(
            project_id=project_id,
            stage_id=stage_id,
            scheduled_for=scheduled_for,
            status="scheduled",
        ))


# ═════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═════════════════════════════════════════════════════════════════════════════


class EffectDispatcher:
    def __init__(
        self,
        repo: EpmRepository,
        gateway: OperationsGateway,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        commissioning_lead_days: int = DEFAULT_COMMISSIONING_LEAD_DAYS,
    ):
        self.repo = repo
        self.gateway = gateway
        self.clock = clock
        self.max_attempts = max(1, max_attempts)
        self.commissioning_lead_days = commissioning_lead_days

    def dispatch(self, approval, stage, requests: list[EffectRequest], actor_id=None) -> list[StageEffect]:
        """Persist and run each request; returns the effect rows in request order."""
        effects = []
        for request in requests:
            key = request.dedupe_key(stage.id)
            now = self.clock()
            already_done = self.repo.has_succeeded_effect(stage.id, key)
            effect = self.repo.add_effect(StageEffect(
                approval_id=approval.id,
                project_id=stage.project_id,
                stage_id=stage.id,
                kind=request.kind.value,
                target=request.target,
                dedupe_key=key,
                status=(EffectStatus.SKIPPED if already_done else EffectStatus.PENDING).value,
                attempts=0,
                created_at=now,
                updated_at=now,
            ))
            self.repo.commit()
            if already_done:
                logger.info(
                    "Effect %s already succeeded for stage; skipped", key,
                    extra={"project_id": stage.project_id, "stage_id": stage.id},
                )
            else:
                self._run(effect, stage, actor_id)
            effects.append(effect)
        return effects

    def retry(self, effects: list[StageEffect], stage, actor_id=None) -> list[StageEffect]:
        """Re-run failed effects in place."""
        retried = []
        for effect in effects:
            if effect.status != EffectStatus.FAILED.value:
                continue
            if self.repo.has_succeeded_effect(stage.id, effect.dedupe_key):
                effect.status = EffectStatus.SKIPPED.value
                effect.updated_at = self.clock()
                self.repo.commit()
            else:
                self.repo.add_audit(make_audit_entry(
                    entity="stage_effect",
                    entity_id=effect.id,
                    action="retry",
                    actor_id=actor_id,
                    project_id=stage.project_id,
                    before={"status": effect.status, "attempts": effect.attempts},
                    at=self.clock(),
                ))
                self.repo.commit()
                self._run(effect, stage, actor_id)
            retried.append(effect)
        return retried

    # ── Internals ────────────────────────────────────────────────────────

    def _perform(self, effect: StageEffect, stage, actor_id) -> str:
        kind = EffectKind(effect.kind)
        if kind == EffectKind.SAFETY_FORM:
            title = f"{effect.target.replace('_', ' ').title()}: {stage.name}"
            return self.gateway.create_safety_form(
                project_id=stage.project_id, stage_id=stage.id,
                form_type=effect.target, title=title, actor_id=actor_id,
            )
        if kind == EffectKind.INVENTORY_RESERVATION:
            return self.gateway.reserve_inventory(
                project_id=stage.project_id, stage_id=stage.id, item_ref=effect.target,
            )
        return self.gateway.schedule_commissioning(
            project_id=stage.project_id, stage_id=stage.id,
            scheduled_for=self.clock() + timedelta(days=self.commissioning_lead_days),
        )

    def _run(self, effect: StageEffect, stage, actor_id) -> None:
        last_error = None
        attempts = effect.attempts or 0
        for _ in range(self.max_attempts):
            attempts += 1
            try:
                ref = self._perform(effect, stage, actor_id)
            except Exception as exc:  # downstream failures must not escape the approval
                self.repo.rollback()
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Effect %s attempt %d/%d failed: %s",
                    effect.dedupe_key, attempts, self.max_attempts, last_error,
                    extra={"project_id": stage.project_id, "stage_id": stage.id, "effect_kind": effect.kind},
                )
                continue

            effect.status = EffectStatus.SUCCEEDED.value
            effect.attempts = attempts
            effect.result_ref = str(ref) if ref is not None else None
            effect.last_error = None
            effect.updated_at = self.clock()
            self.repo.commit()
            logger.info(
                "Effect %s succeeded (ref=%s)", effect.dedupe_key, effect.result_ref,
                extra={"project_id": stage.project_id, "stage_id": stage.id, "effect_kind": effect.kind},
            )
            return

        now = self.clock()
        effect.status = EffectStatus.FAILED.value
        effect.attempts = attempts
        effect.last_error = last_error
        effect.updated_at = now
        self.repo.add_audit(make_audit_entry(
            entity="stage_effect",
            entity_id=effect.id,
            action="error",
            actor_id=actor_id,
            project_id=stage.project_id,
            after={"kind": effect.kind, "target": effect.target, "attempts": attempts, "error": last_error},
            at=now,
        ))
        self.repo.commit()
        logger.error(
            "Effect %s failed after %d attempt(s)", effect.dedupe_key, attempts,
            extra={"project_id": stage.project_id, "stage_id": stage.id, "effect_kind": effect.kind},
        )
