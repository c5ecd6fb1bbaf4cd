"""Request contract parsing tests (no database needed)."""

from datetime import datetime, timezone

import pytest

from fieldops.core.exceptions import ValidationError
from fieldops.models.epm_config import (
    GateRules,
    ItemStatus,
    ItemType,
    NumberValidations,
    SelectValidations,
    TemplateItemDef,
)
from fieldops.services.epm.contracts import (
    UNSET,
    ChecklistItemPatch,
    ChecklistRequest,
    StageDecision,
    StageUpdate,
    parse_stage_creates,
)


class TestStageCreates:
    def test_defaults(self):
        stages = parse_stage_creates({"stages": [{"name": "Prep"}, {"name": "Blast", "order": 7}]})
        assert [(s.name, s.order) for s in stages] == [("Prep", 1), ("Blast", 7)]
        assert stages[0].required_approver_role is None
        assert stages[0].gate_rules == GateRules()

    @pytest.mark.parametrize("body", [{}, {"stages": []}, {"stages": "Prep"}, []])
    def test_requires_stage_list(self, body):
        with pytest.raises(ValidationError):
            parse_stage_creates(body)

    def test_field_errors_by_index(self):
        with pytest.raises(ValidationError) as exc:
            parse_stage_creates({"stages": [
                {"name": "Ok"},
                {"name": "Bad", "order": "first", "gate_rules": {"required_forms": [1]}},
            ]})
        errors = exc.value.details["stages"]
        assert list(errors) == ["1"]
        assert set(errors["1"]) == {"order", "gate_rules"}


class TestGateRules:
    def test_missing_keys_default(self):
        rules = GateRules.from_dict({"required_forms": ["safety_briefing"]})
        assert rules.inventory_reservations == ()
        assert rules.equipment_commissioning is False

    def test_round_trip_shape(self):
        raw = {"required_forms": ["a"], "inventory_reservations": ["b"], "equipment_commissioning": True}
        assert GateRules.from_dict(raw).to_dict() == raw

    def test_rejects_non_boolean(self):
        with pytest.raises(ValidationError):
            GateRules.from_dict({"equipment_commissioning": "yes"})


class TestTemplateItemDef:
    def test_number_validations(self):
        item = TemplateItemDef.from_dict({"id": "temp", "label": "Temp", "type": "number", "required": True,
                                          "validations": {"min": 45, "max": 100}})
        assert item.type == ItemType.NUMBER
        assert item.validations == NumberValidations(min=45, max=100)

    def test_select_options(self):
        item = TemplateItemDef.from_dict({"id": "grade", "label": "Grade", "type": "select",
                                          "validations": {"options": ["SA2", "SA2.5"]}})
        assert item.validations == SelectValidations(options=("SA2", "SA2.5"))

    def test_missing_id_and_label(self):
        with pytest.raises(ValidationError) as exc:
            TemplateItemDef.from_dict({"type": "boolean"})
        assert set(exc.value.details) == {"id", "label"}


class TestItemPatch:
    def test_unset_fields(self):
        patch = ChecklistItemPatch.from_dict({"status": "na"})
        assert patch.status == ItemStatus.NA
        assert patch.value is UNSET
        assert not patch.is_empty()
        assert ChecklistItemPatch.from_dict({}).is_empty()

    def test_explicit_nulls_are_kept(self):
        patch = ChecklistItemPatch.from_dict({"value": None, "assignee_id": None, "due_at": None})
        assert patch.value is None
        assert patch.assignee_id is None
        assert patch.due_at is None

    def test_due_at_parsed(self):
        patch = ChecklistItemPatch.from_dict({"due_at": "2026-05-10"})
        assert patch.due_at == datetime(2026, 5, 10, tzinfo=timezone.utc)

    def test_errors(self):
        with pytest.raises(ValidationError) as exc:
            ChecklistItemPatch.from_dict({"status": "done", "assignee_id": 7, "due_at": "soon"})
        assert set(exc.value.details) == {"status", "assignee_id", "due_at"}


class TestOtherRequests:
    def test_checklist_request(self):
        req = ChecklistRequest.from_dict({"template_id": "tpl-1"})
        assert req.stage_id is None
        with pytest.raises(ValidationError):
            ChecklistRequest.from_dict({"template_id": "tpl-1", "stage_id": 3})

    def test_stage_update_changes(self):
        update = StageUpdate.from_dict({"order": 2, "required_approver_role": None})
        assert update.changes() == {"order": 2, "required_approver_role": None}

    def test_decision(self):
        decision = StageDecision.from_dict({"status": "rejected", "note": "  redo  "})
        assert not decision.is_approval
        assert decision.note == "redo"
        with pytest.raises(ValidationError):
            StageDecision.from_dict({"status": "pending"})
