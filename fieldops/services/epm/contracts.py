"""
EPM request and result contracts.

Request bodies are parsed here into typed objects before they reach the
engine; any shape violation raises ``ValidationError`` with a field map.
Result objects are what the engine returns and what blueprints serialise.

Usage:
    from fieldops.services.epm.contracts import ChecklistItemPatch
    patch = ChecklistItemPatch.from_dict(request.get_json(silent=True) or {})
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fieldops.auth import ROLES
from fieldops.core.exceptions import ValidationError
from fieldops.models.epm_config import (
    ApprovalStatus,
    GateRules,
    ItemStatus,
    TemplateItemDef,
)
from fieldops.utils.helpers import parse_datetime_input


class _Unset:
    """Marker for a patch field that was not sent (distinct from null)."""

    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET: Any = _Unset()


def _require_object(raw, what="Request body"):
    if not isinstance(raw, dict):
        raise ValidationError(f"{what} must be a JSON object")
    return raw


def _optional_role(raw, errors, key="required_approver_role"):
    if raw is None:
        return None
    if not isinstance(raw, str) or raw not in ROLES:
        errors[key] = f"must be one of {list(ROLES)}"
        return None
    return raw


def _gate_rules(raw, errors):
    try:
        return GateRules.from_dict(raw)
    except ValidationError as exc:
        errors["gate_rules"] = exc.details or str(exc)
        return GateRules()


def _int(raw, key, errors):
    if isinstance(raw, bool) or not isinstance(raw, int):
        errors[key] = "must be an integer"
        return None
    return raw


def _non_empty_str(raw, key, errors, max_len=200):
    if not isinstance(raw, str) or not raw.strip():
        errors[key] = "is required"
        return None
    value = raw.strip()
    if len(value) > max_len:
        errors[key] = f"must be at most {max_len} characters"
        return None
    return value


# ═════════════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StageCreate:
    name: str
    order: int
    required_approver_role: str | None = None
    gate_rules: GateRules = field(default_factory=GateRules)

    @classmethod
    def from_dict(cls, raw, default_order: int = 0) -> "StageCreate":
        _require_object(raw, "Stage")
        errors: dict = {}
        name = _non_empty_str(raw.get("name"), "name", errors)
        order = _int(raw["order"], "order", errors) if "order" in raw else default_order
        role = _optional_role(raw.get("required_approver_role"), errors)
        rules = _gate_rules(raw.get("gate_rules"), errors)
        if errors:
            raise ValidationError("Invalid stage", details=errors)
        return cls(name=name, order=order, required_approver_role=role, gate_rules=rules)


def parse_stage_creates(raw) -> list[StageCreate]:
    """Parse ``{"stages": [...]}``; stages without ``order`` get their 1-based position."""
    _require_object(raw)
    stages = raw.get("stages")
    if not isinstance(stages, list) or not stages:
        raise ValidationError("stages must be a non-empty list", details={"stages": "is required"})

    parsed, errors = [], {}
    for index, entry in enumerate(stages):
        try:
            parsed.append(StageCreate.from_dict(entry, default_order=index + 1))
        except ValidationError as exc:
            errors[str(index)] = exc.details or str(exc)
    if errors:
        raise ValidationError("Invalid stages", details={"stages": errors})
    return parsed


@dataclass(frozen=True)
class StageUpdate:
    name: Any = UNSET
    order: Any = UNSET
    required_approver_role: Any = UNSET
    gate_rules: Any = UNSET

    @classmethod
    def from_dict(cls, raw) -> "StageUpdate":
        _require_object(raw)
        errors: dict = {}
        values = {}
        if "name" in raw:
            values["name"] = _non_empty_str(raw["name"], "name", errors)
        if "order" in raw:
            values["order"] = _int(raw["order"], "order", errors)
        if "required_approver_role" in raw:
            values["required_approver_role"] = _optional_role(raw["required_approver_role"], errors)
        if "gate_rules" in raw:
            values["gate_rules"] = _gate_rules(raw["gate_rules"], errors)
        if errors:
            raise ValidationError("Invalid stage update", details=errors)
        if not values:
            raise ValidationError("No updatable fields supplied")
        return cls(**values)

    def changes(self) -> dict:
        return {
            k: getattr(self, k)
            for k in ("name", "order", "required_approver_role", "gate_rules")
            if getattr(self, k) is not UNSET
        }


@dataclass(frozen=True)
class ChecklistRequest:
    template_id: str
    stage_id: str | None = None

    @classmethod
    def from_dict(cls, raw) -> "ChecklistRequest":
        _require_object(raw)
        errors: dict = {}
        template_id = _non_empty_str(raw.get("template_id"), "template_id", errors, max_len=36)
        stage_id = raw.get("stage_id")
        if stage_id is not None and (not isinstance(stage_id, str) or not stage_id.strip()):
            errors["stage_id"] = "must be a string id"
        if errors:
            raise ValidationError("Invalid checklist request", details=errors)
        return cls(template_id=template_id, stage_id=stage_id.strip() if stage_id else None)


@dataclass(frozen=True)
class ChecklistItemPatch:
    """Partial update of a checklist item; UNSET fields are left untouched."""

    value: Any = UNSET
    status: Any = UNSET
    assignee_id: Any = UNSET
    due_at: Any = UNSET

    @classmethod
    def from_dict(cls, raw) -> "ChecklistItemPatch":
        _require_object(raw)
        errors: dict = {}
        values = {}
        if "value" in raw:
            values["value"] = raw["value"]
        if "status" in raw:
            try:
                values["status"] = ItemStatus(raw["status"])
            except ValueError:
                errors["status"] = f"must be one of {[s.value for s in ItemStatus]}"
        if "assignee_id" in raw:
            assignee = raw["assignee_id"]
            if assignee is not None and (not isinstance(assignee, str) or not assignee):
                errors["assignee_id"] = "must be a user id or null"
            values["assignee_id"] = assignee
        if "due_at" in raw:
            try:
                values["due_at"] = parse_datetime_input(raw["due_at"])
            except ValueError as exc:
                errors["due_at"] = str(exc)
        if errors:
            raise ValidationError("Invalid checklist item update", details=errors)
        return cls(**values)

    def is_empty(self) -> bool:
        return all(
            getattr(self, k) is UNSET for k in ("value", "status", "assignee_id", "due_at")
        )


@dataclass(frozen=True)
class StageDecision:
    status: ApprovalStatus
    note: str | None = None

    @classmethod
    def from_dict(cls, raw) -> "StageDecision":
        _require_object(raw)
        errors: dict = {}
        status = raw.get("status")
        if status not in (ApprovalStatus.APPROVED.value, ApprovalStatus.REJECTED.value):
            errors["status"] = "must be 'approved' or 'rejected'"
        note = raw.get("note")
        if note is not None and not isinstance(note, str):
            errors["note"] = "must be a string"
        if errors:
            raise ValidationError("Invalid approval request", details=errors)
        return cls(status=ApprovalStatus(status), note=note.strip() if note else None)

    @property
    def is_approval(self) -> bool:
        return self.status == ApprovalStatus.APPROVED


# ═════════════════════════════════════════════════════════════════════════════
# Results
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CompletionSummary:
    """Required-item completion across all checklists of a stage."""

    checklists: int
    required_total: int
    required_complete: int
    percentage: int

    @property
    def satisfied(self) -> bool:
        return self.percentage == 100

    def shortfall_message(self) -> str:
        if self.checklists == 0:
            return "No checklists attached to this stage (0%)"
        return (
            f"{self.required_complete} of {self.required_total} required checklist items "
            f"complete ({self.percentage}%)"
        )

    def to_dict(self) -> dict:
        return {
            "checklists": self.checklists,
            "required_total": self.required_total,
            "required_complete": self.required_complete,
            "percentage": self.percentage,
        }


@dataclass
class StageView:
    """A stage with its read-time derived fields."""

    stage: Any
    completion_percentage: int
    approval_status: str

    @property
    def id(self):
        return self.stage.id

    def to_dict(self) -> dict:
        data = self.stage.to_dict()
        data["completion_percentage"] = self.completion_percentage
        data["approval_status"] = self.approval_status
        return data


@dataclass
class ItemView:
    """A checklist item joined with its template definition."""

    item: Any
    definition: TemplateItemDef

    @property
    def required(self) -> bool:
        return self.definition.required

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data.update({
            "label": self.definition.label,
            "type": self.definition.type.value,
            "required": self.definition.required,
            "validations": self.definition.validations.to_dict(),
        })
        return data


@dataclass
class ChecklistView:
    checklist: Any
    template_name: str
    items: list[ItemView]

    @property
    def required_items(self) -> list[ItemView]:
        return [i for i in self.items if i.required]

    @property
    def optional_items(self) -> list[ItemView]:
        return [i for i in self.items if not i.required]

    def to_dict(self) -> dict:
        data = self.checklist.to_dict()
        data["template_name"] = self.template_name
        data["items"] = [i.to_dict() for i in self.items]
        data["required_items"] = [i.to_dict() for i in self.required_items]
        data["optional_items"] = [i.to_dict() for i in self.optional_items]
        return data


@dataclass(frozen=True)
class ChecklistSummary:
    id: str
    template_id: str
    template_name: str
    stage_id: str | None
    status: str
    items_total: int
    items_complete: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "stage_id": self.stage_id,
            "status": self.status,
            "items_total": self.items_total,
            "items_complete": self.items_complete,
        }


@dataclass(frozen=True)
class StageProgress:
    stage_id: str
    name: str
    order: int
    percentage: int
    status: str
    approval_status: str

    def to_dict(self) -> dict:
        return {
            "stage_id": self.stage_id,
            "name": self.name,
            "order": self.order,
            "percentage": self.percentage,
            "status": self.status,
            "approval_status": self.approval_status,
        }


@dataclass(frozen=True)
class ProjectProgress:
    project_id: str
    overall_percentage: int
    stages: list[StageProgress]

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "overall_percentage": self.overall_percentage,
            "stages": [s.to_dict() for s in self.stages],
        }


@dataclass
class ApprovalOutcome:
    approval: Any
    effects: list = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "approval": self.approval.to_dict(),
            "effects": [e.to_dict() for e in self.effects],
        }
