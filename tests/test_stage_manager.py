"""
Stage manager tests: stage CRUD and read-time completion percentage.

Completion rules:
  - no checklists on the stage → 0
  - checklists but no required items → 100
  - otherwise round-half-up of complete required items / required items
  - ``na`` on a required item does not count as complete
"""

import pytest

from fieldops.core.exceptions import InvalidReferenceError, NotFoundError, ValidationError
from fieldops.models.epm_config import GateRules
from fieldops.services.epm.contracts import StageCreate, StageUpdate, parse_stage_creates
from fieldops.services.epm.stage_manager import half_up_percent


@pytest.mark.parametrize(
    "part, whole, expected",
    [(0, 5, 0), (1, 5, 20), (1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 200, 1), (1, 201, 0), (5, 5, 100)],
)
def test_half_up_percent(part, whole, expected):
    assert half_up_percent(part, whole) == expected


# ═════════════════════════════════════════════════════════════════════════
# Create / read / update
# ═════════════════════════════════════════════════════════════════════════


class TestStageCrud:
    def test_create_stages(self, epm, world, audits):
        specs = parse_stage_creates({"stages": [
            {"name": "Preparation & Setup", "required_approver_role": "supervisor",
             "gate_rules": {"required_forms": ["safety_briefing"], "equipment_commissioning": True}},
            {"name": "Hull Blasting Operations"},
        ]})
        views = epm.create_stages(world.project.id, specs, actor_id=world.admin.id)

        assert [v.stage.order for v in views] == [1, 2]
        first = views[0].to_dict()
        assert first["completion_percentage"] == 0
        assert first["approval_status"] == "pending"
        assert first["gate_rules"]["required_forms"] == ["safety_briefing"]
        assert first["gate_rules"]["equipment_commissioning"] is True
        assert views[1].stage.required_approver_role is None
        assert [a.action for a in audits("project_stage")] == ["create", "create"]

    def test_create_unknown_project(self, epm):
        with pytest.raises(NotFoundError):
            epm.create_stages("missing", [StageCreate(name="X", order=1)])

    def test_list_ordered_by_order(self, epm, world, add_stage):
        add_stage(name="Coating Application", order=3)
        add_stage(name="Preparation & Setup", order=1)
        add_stage(name="Hull Blasting Operations", order=2)

        names = [v.stage.name for v in epm.list_stages_with_pct(world.project.id)]
        assert names == ["Preparation & Setup", "Hull Blasting Operations", "Coating Application"]

    def test_list_excludes_other_projects(self, epm, world, add_stage):
        add_stage()
        add_stage(project=world.other_project)
        assert len(epm.list_stages_with_pct(world.project.id)) == 1

    def test_get_stage_wrong_project(self, epm, world, add_stage):
        stage = add_stage(project=world.other_project)
        with pytest.raises(InvalidReferenceError):
            epm.get_stage(world.project.id, stage.id)

    def test_get_unknown_stage(self, epm, world):
        with pytest.raises(NotFoundError):
            epm.get_stage(world.project.id, "missing")

    def test_update_stage(self, epm, world, add_stage, audits):
        stage = add_stage()
        changes = StageUpdate.from_dict({
            "name": "Prep", "required_approver_role": "admin",
            "gate_rules": {"inventory_reservations": ["blast-media-001"]},
        })
        view = epm.update_stage(world.project.id, stage.id, changes, actor_id=world.supervisor.id)

        assert view.stage.name == "Prep"
        assert view.stage.required_approver_role == "admin"
        assert view.stage.gate_rules == GateRules(inventory_reservations=("blast-media-001",))
        entry = audits("project_stage", stage.id)[-1]
        assert entry.action == "update"
        assert entry.before_json["name"] == "Preparation & Setup"
        assert entry.after_json["name"] == "Prep"

    def test_update_requires_a_field(self):
        with pytest.raises(ValidationError):
            StageUpdate.from_dict({})


# ═════════════════════════════════════════════════════════════════════════
# Completion
# ═════════════════════════════════════════════════════════════════════════


class TestCompletion:
    def test_no_checklists_is_zero(self, epm, world, add_stage):
        stage = add_stage()
        assert epm.get_stage(world.project.id, stage.id).completion_percentage == 0

    def test_counts_required_items_only(self, epm, world, add_stage, mark):
        stage = add_stage()
        view = epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id)

        mark(view, world.optional_ids)
        assert epm.get_stage(world.project.id, stage.id).completion_percentage == 0

        mark(view, world.required_ids[:1])
        assert epm.get_stage(world.project.id, stage.id).completion_percentage == 20

        mark(view, world.required_ids)
        assert epm.get_stage(world.project.id, stage.id).completion_percentage == 100

    def test_na_required_item_does_not_count(self, epm, world, add_stage, mark):
        stage = add_stage()
        view = epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id)
        mark(view, world.required_ids[:4])
        mark(view, world.required_ids[4:], status="na")

        summary = epm.stages.completion(stage.id)
        assert summary.required_complete == 4
        assert summary.percentage == 80
        assert not summary.satisfied

    def test_no_required_items_is_hundred(self, epm, world, add_stage):
        stage = add_stage()
        optional_only = world.new_template([
            {"id": "notes", "label": "Notes", "type": "text", "required": False},
        ])
        epm.instantiate_checklist(world.project.id, optional_only.id, stage_id=stage.id)
        assert epm.get_stage(world.project.id, stage.id).completion_percentage == 100

    def test_aggregates_across_checklists(self, epm, world, add_stage, mark):
        stage = add_stage()
        first = epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id)
        epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id)
        mark(first, world.required_ids)

        summary = epm.stages.completion(stage.id)
        assert (summary.required_complete, summary.required_total) == (5, 10)
        assert summary.percentage == 50

    def test_unattached_checklists_ignored(self, epm, world, add_stage, mark):
        stage = add_stage()
        loose = epm.instantiate_checklist(world.project.id, world.template.id)
        mark(loose, world.required_ids)
        assert epm.get_stage(world.project.id, stage.id).completion_percentage == 0

    def test_shortfall_message(self, epm, world, add_stage, mark):
        stage = add_stage()
        assert epm.stages.completion(stage.id).shortfall_message() == "No checklists attached to this stage (0%)"

        view = epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id)
        mark(view, world.required_ids[:3])
        assert epm.stages.completion(stage.id).shortfall_message() == \
            "3 of 5 required checklist items complete (60%)"
