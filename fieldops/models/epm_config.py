"""
EPM structured configuration types.

Stage gate rules and checklist-template item definitions are stored as JSON
columns, but every reader goes through the dataclasses below so the shape
the approval workflow and checklist engine depend on is explicit.

Also holds the status enumerations shared by models, services and routes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from fieldops.core.exceptions import ValidationError


# ═════════════════════════════════════════════════════════════════════════════
# Enumerations
# ═════════════════════════════════════════════════════════════════════════════


class ItemType(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"
    TEXT = "text"
    SELECT = "select"
    PHOTO = "photo"
    SIGNATURE = "signature"


class ItemStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    NA = "na"
    BLOCKED = "blocked"


class ChecklistStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EffectKind(str, Enum):
    SAFETY_FORM = "safety_form"
    INVENTORY_RESERVATION = "inventory_reservation"
    EQUIPMENT_COMMISSIONING = "equipment_commissioning"


class EffectStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


def _values(enum_cls) -> list[str]:
    return [m.value for m in enum_cls]


# ═════════════════════════════════════════════════════════════════════════════
# Checklist item validations (one tagged type per item type)
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class NoValidations:
    kind: str = "none"

    def to_dict(self) -> dict:
        return {}


@dataclass(frozen=True)
class NumberValidations:
    min: float | None = None
    max: float | None = None
    kind: str = "number"

    def to_dict(self) -> dict:
        return {k: v for k, v in (("min", self.min), ("max", self.max)) if v is not None}


@dataclass(frozen=True)
class TextValidations:
    max_length: int | None = None
    kind: str = "text"

    def to_dict(self) -> dict:
        return {"max_length": self.max_length} if self.max_length is not None else {}


@dataclass(frozen=True)
class SelectValidations:
    options: tuple[str, ...] = ()
    kind: str = "select"

    def to_dict(self) -> dict:
        return {"options": list(self.options)}


@dataclass(frozen=True)
class PhotoValidations:
    min_count: int | None = None
    kind: str = "photo"

    def to_dict(self) -> dict:
        return {"min_count": self.min_count} if self.min_count is not None else {}


Validations = Union[NoValidations, NumberValidations, TextValidations, SelectValidations, PhotoValidations]


def _number(raw, name: str, errors: dict):
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        errors[name] = "must be a number"
        return None
    return raw


def _non_negative_int(raw, name: str, errors: dict):
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        errors[name] = "must be a non-negative integer"
        return None
    return raw


def parse_validations(item_type: ItemType, raw) -> Validations:
    """Build the validations object for ``item_type`` from its JSON form.

    Raises ValidationError on a malformed constraint.
    """
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValidationError("validations must be an object")

    errors: dict[str, str] = {}
    if item_type == ItemType.NUMBER:
        result = NumberValidations(
            min=_number(raw.get("min"), "min", errors),
            max=_number(raw.get("max"), "max", errors),
        )
        if not errors and result.min is not None and result.max is not None and result.min > result.max:
            errors["min"] = "must not exceed max"
    elif item_type == ItemType.TEXT:
        result = TextValidations(
            max_length=_non_negative_int(raw.get("max_length", raw.get("maxLength")), "max_length", errors),
        )
    elif item_type == ItemType.SELECT:
        options = raw.get("options", [])
        if not isinstance(options, list) or not all(isinstance(o, str) and o for o in options):
            errors["options"] = "must be a list of non-empty strings"
            options = []
        result = SelectValidations(options=tuple(options))
    elif item_type == ItemType.PHOTO:
        result = PhotoValidations(
            min_count=_non_negative_int(raw.get("min_count", raw.get("minCount")), "min_count", errors),
        )
    else:
        result = NoValidations()

    if errors:
        raise ValidationError("Invalid validations", details=errors)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Template item definition
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TemplateItemDef:
    """One item of a checklist template, as stored in ``checklist_templates.items``."""

    id: str
    label: str
    type: ItemType
    required: bool = False
    validations: Validations = field(default_factory=NoValidations)

    @classmethod
    def from_dict(cls, raw: dict) -> "TemplateItemDef":
        if not isinstance(raw, dict):
            raise ValidationError("Template item must be an object")

        errors: dict[str, str] = {}
        item_id = raw.get("id")
        if not isinstance(item_id, str) or not item_id.strip():
            errors["id"] = "is required"

        label = raw.get("label") or raw.get("text")
        if not isinstance(label, str) or not label.strip():
            errors["label"] = "is required"

        try:
            item_type = ItemType(raw.get("type", ItemType.TEXT.value))
        except ValueError:
            errors["type"] = f"must be one of {_values(ItemType)}"
            item_type = ItemType.TEXT

        required = raw.get("required", False)
        if not isinstance(required, bool):
            errors["required"] = "must be a boolean"

        if errors:
            raise ValidationError("Invalid template item", details=errors)

        return cls(
            id=item_id.strip(),
            label=label.strip(),
            type=item_type,
            required=required,
            validations=parse_validations(item_type, raw.get("validations")),
        )

    @classmethod
    def from_stored(cls, raw, position: int) -> "TemplateItemDef":
        """Read an item already held by the template store.

        Never raises: a missing id becomes ``item-<position>``, a missing
        label becomes "Unknown", an unknown type reads as text and
        malformed validations are dropped.
        """
        if not isinstance(raw, dict):
            raw = {}

        item_id = raw.get("id")
        item_id = str(item_id).strip() if item_id not in (None, "") else ""
        label = raw.get("label") or raw.get("text")
        label = label.strip() if isinstance(label, str) and label.strip() else UNKNOWN_TEMPLATE_ITEM.label

        try:
            item_type = ItemType(raw.get("type", ItemType.TEXT.value))
        except ValueError:
            item_type = ItemType.TEXT
        try:
            validations = parse_validations(item_type, raw.get("validations"))
        except ValidationError:
            validations = NoValidations()

        return cls(
            id=item_id or f"item-{position}",
            label=label,
            type=item_type,
            required=bool(raw.get("required", False)),
            validations=validations,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type.value,
            "required": self.required,
            "validations": self.validations.to_dict(),
        }


# Rendered in place of a template item that has disappeared from its template
UNKNOWN_TEMPLATE_ITEM = TemplateItemDef(id="", label="Unknown", type=ItemType.TEXT, required=False)


# ═════════════════════════════════════════════════════════════════════════════
# Stage gate rules
# ═════════════════════════════════════════════════════════════════════════════


def _string_list(raw, name: str, errors: dict) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(v, str) and v.strip() for v in raw):
        errors[name] = "must be a list of non-empty strings"
        return []
    return [v.strip() for v in raw]


@dataclass(frozen=True)
class GateRules:
    """Side effects a stage declares for when it is approved."""

    required_forms: tuple[str, ...] = ()
    inventory_reservations: tuple[str, ...] = ()
    equipment_commissioning: bool = False

    @classmethod
    def from_dict(cls, raw) -> "GateRules":
        """Parse gate rules; missing keys take their defaults."""
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ValidationError("gate_rules must be an object")

        errors: dict[str, str] = {}
        forms = _string_list(raw.get("required_forms"), "required_forms", errors)
        reservations = _string_list(raw.get("inventory_reservations"), "inventory_reservations", errors)
        commissioning = raw.get("equipment_commissioning", False)
        if not isinstance(commissioning, bool):
            errors["equipment_commissioning"] = "must be a boolean"

        if errors:
            raise ValidationError("Invalid gate_rules", details=errors)
        return cls(
            required_forms=tuple(forms),
            inventory_reservations=tuple(reservations),
            equipment_commissioning=commissioning,
        )

    def to_dict(self) -> dict:
        return {
            "required_forms": list(self.required_forms),
            "inventory_reservations": list(self.inventory_reservations),
            "equipment_commissioning": self.equipment_commissioning,
        }
