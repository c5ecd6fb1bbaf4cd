"""
Checklist engine tests: instantiation, item updates and status derivation.

Every test that takes ``epm`` runs twice: against the SQL repository and
against the in-memory repository from conftest.py.
"""

import pytest

from fieldops.core.exceptions import InvalidReferenceError, NotFoundError, ValidationError
from fieldops.models.epm_config import ChecklistStatus, ItemType, NoValidations, TemplateItemDef
from fieldops.services.epm.checklist_engine import derive_checklist_status
from fieldops.services.epm.contracts import ChecklistItemPatch


# ═════════════════════════════════════════════════════════════════════════
# Status derivation
# ═════════════════════════════════════════════════════════════════════════


class TestDeriveChecklistStatus:
    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ([], ChecklistStatus.NOT_STARTED),
            (["pending", "pending"], ChecklistStatus.NOT_STARTED),
            (["na", "pending"], ChecklistStatus.NOT_STARTED),
            (["complete", "pending"], ChecklistStatus.IN_PROGRESS),
            (["complete", "na"], ChecklistStatus.DONE),
            (["na", "na"], ChecklistStatus.DONE),
            (["complete", "complete"], ChecklistStatus.DONE),
            (["complete", "blocked"], ChecklistStatus.BLOCKED),
            (["blocked", "na"], ChecklistStatus.BLOCKED),
        ],
    )
    def test_status(self, statuses, expected):
        assert derive_checklist_status(statuses) == expected


# ═════════════════════════════════════════════════════════════════════════
# Instantiation
# ═════════════════════════════════════════════════════════════════════════


class TestInstantiate:
    def test_items_follow_template(self, epm, world, add_stage):
        stage = add_stage()
        view = epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id,
                                         actor_id=world.admin.id)

        assert view.checklist.status == "not_started"
        assert view.checklist.stage_id == stage.id
        assert view.template_name == "Hull Blast Inspection Checklist"
        assert [i.item.template_item_id for i in view.items] == world.required_ids + world.optional_ids
        assert all(i.item.status == "pending" and i.item.value is None for i in view.items)
        assert len(view.required_items) == 5
        assert len(view.optional_items) == 3

    def test_template_metadata_joined(self, epm, world):
        view = epm.instantiate_checklist(world.project.id, world.template.id)
        temp = next(i for i in view.items if i.item.template_item_id == "environmental-temp")
        data = temp.to_dict()
        assert data["label"] == "Temperature (°F)"
        assert data["type"] == "number"
        assert data["required"] is True
        assert data["validations"] == {"min": 45, "max": 100}

    def test_without_stage(self, epm, world):
        view = epm.instantiate_checklist(world.project.id, world.template.id)
        assert view.checklist.stage_id is None

    def test_audit_written(self, epm, world, audits):
        view = epm.instantiate_checklist(world.project.id, world.template.id, actor_id=world.admin.id)
        entry = audits("project_checklist", view.checklist.id)[-1]
        assert entry.action == "create"
        assert entry.actor_id == world.admin.id
        assert entry.after_json["items_count"] == 8

    def test_unknown_project(self, epm, world):
        with pytest.raises(NotFoundError):
            epm.instantiate_checklist("missing", world.template.id)

    def test_unknown_template(self, epm, world):
        with pytest.raises(NotFoundError):
            epm.instantiate_checklist(world.project.id, "missing")

    def test_unknown_stage(self, epm, world):
        with pytest.raises(NotFoundError):
            epm.instantiate_checklist(world.project.id, world.template.id, stage_id="missing")

    def test_stage_of_other_project(self, epm, world, add_stage):
        foreign = add_stage(project=world.other_project)
        with pytest.raises(InvalidReferenceError):
            epm.instantiate_checklist(world.project.id, world.template.id, stage_id=foreign.id)


# ═════════════════════════════════════════════════════════════════════════
# Item updates
# ═════════════════════════════════════════════════════════════════════════


class TestUpdateItem:
    @pytest.fixture()
    def view(self, epm, world):
        return epm.instantiate_checklist(world.project.id, world.template.id)

    def _item(self, view, template_item_id):
        return next(i.item for i in view.items if i.item.template_item_id == template_item_id)

    def test_complete_sets_completed_at(self, epm, view):
        item = epm.update_checklist_item(self._item(view, "dust-removal").id,
                                         ChecklistItemPatch.from_dict({"value": True, "status": "complete"}))
        assert item.status == "complete"
        assert item.value is True
        assert item.completed_at is not None

    def test_leaving_complete_clears_completed_at(self, epm, view):
        item_id = self._item(view, "dust-removal").id
        epm.update_checklist_item(item_id, ChecklistItemPatch.from_dict({"status": "complete"}))
        item = epm.update_checklist_item(item_id, ChecklistItemPatch.from_dict({"status": "pending"}))
        assert item.status == "pending"
        assert item.completed_at is None

    def test_value_only_keeps_status(self, epm, view):
        item = epm.update_checklist_item(self._item(view, "environmental-temp").id,
                                         ChecklistItemPatch.from_dict({"value": 72}))
        assert item.value == 72
        assert item.status == "pending"

    def test_value_not_validated(self, epm, view):
        # out-of-range values are stored as given
        item = epm.update_checklist_item(self._item(view, "environmental-temp").id,
                                         ChecklistItemPatch.from_dict({"value": 150}))
        assert item.value == 150

    def test_assignee_and_due_date(self, epm, view, world):
        item = epm.update_checklist_item(
            self._item(view, "wind-speed").id,
            ChecklistItemPatch.from_dict({"assignee_id": world.tech.id, "due_at": "2026-05-10T12:00:00Z"}),
        )
        assert item.assignee_id == world.tech.id
        assert item.due_at is not None

    def test_checklist_status_progression(self, epm, view, world, mark):
        checklist_id = view.checklist.id
        mark(view, ["dust-removal"])
        assert epm.get_checklist(checklist_id).checklist.status == "in_progress"

        mark(view, ["quality-photos"], status="blocked")
        assert epm.get_checklist(checklist_id).checklist.status == "blocked"

        mark(view, ["quality-photos"], status="na")
        mark(view, world.required_ids)
        mark(view, ["wind-speed", "additional-notes"], status="na")
        assert epm.get_checklist(checklist_id).checklist.status == "done"

    def test_na_alone_does_not_start(self, epm, view, mark):
        mark(view, ["wind-speed"], status="na")
        assert epm.get_checklist(view.checklist.id).checklist.status == "not_started"

    def test_audit_before_after(self, epm, view, world, audits):
        item_id = self._item(view, "dust-removal").id
        epm.update_checklist_item(item_id, ChecklistItemPatch.from_dict({"status": "complete"}),
                                  actor_id=world.tech.id)
        entry = audits("checklist_item", item_id)[-1]
        assert entry.action == "update"
        assert entry.actor_id == world.tech.id
        assert entry.before_json["status"] == "pending"
        assert entry.after_json["status"] == "complete"

    def test_unknown_item(self, epm):
        with pytest.raises(NotFoundError):
            epm.update_checklist_item("missing", ChecklistItemPatch.from_dict({"status": "complete"}))


# ═════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════


class TestReads:
    def test_vanished_template_item_shown_as_unknown(self, epm, world):
        view = epm.instantiate_checklist(world.project.id, world.template.id)
        world.template.items = [i for i in world.template.items if i["id"] != "quality-photos"]

        items = epm.get_checklist(view.checklist.id).items
        photos = next(i for i in items if i.item.template_item_id == "quality-photos")
        assert photos.definition.label == "Unknown"
        assert photos.required is False
        assert len(items) == 8

    def test_list_checklists_summary(self, epm, world, add_stage, mark):
        stage = add_stage()
        view = epm.instantiate_checklist(world.project.id, world.template.id, stage_id=stage.id)
        epm.instantiate_checklist(world.project.id, world.template.id)
        mark(view, ["dust-removal", "wind-speed"])

        everything = epm.list_checklists(world.project.id)
        assert len(everything) == 2

        on_stage = epm.list_checklists(world.project.id, stage_id=stage.id)
        assert len(on_stage) == 1
        summary = on_stage[0].to_dict()
        assert summary["items_total"] == 8
        assert summary["items_complete"] == 2
        assert summary["status"] == "in_progress"
        assert summary["template_name"] == "Hull Blast Inspection Checklist"

    def test_list_checklists_unknown_project(self, epm):
        with pytest.raises(NotFoundError):
            epm.list_checklists("missing")

    def test_get_unknown_checklist(self, epm):
        with pytest.raises(NotFoundError):
            epm.get_checklist("missing")



# ═════════════════════════════════════════════════════════════════════════
# Loose items from the template store
# ═════════════════════════════════════════════════════════════════════════


class TestStoredTemplateItems:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ({"label": "Hull dry", "type": "boolean", "required": True},
             ("item-3", "Hull dry", ItemType.BOOLEAN, True)),
            ({"id": "notes", "text": "Notes"}, ("notes", "Notes", ItemType.TEXT, False)),
            ({"id": "when", "label": "Inspection date", "type": "date"},
             ("when", "Inspection date", ItemType.TEXT, False)),
            ({"id": "flag", "required": "yes"}, ("flag", "Unknown", ItemType.TEXT, True)),
            ("not-an-object", ("item-3", "Unknown", ItemType.TEXT, False)),
        ],
    )
    def test_from_stored(self, raw, expected):
        definition = TemplateItemDef.from_stored(raw, 3)
        assert (definition.id, definition.label, definition.type, definition.required) == expected

    def test_malformed_validations_dropped(self):
        definition = TemplateItemDef.from_stored(
            {"id": "temp", "label": "Temp", "type": "number", "validations": {"min": 10, "max": 1}}, 0,
        )
        assert definition.validations == NoValidations()

    def test_strict_parser_still_rejects(self):
        with pytest.raises(ValidationError):
            TemplateItemDef.from_dict({"label": "Hull dry", "type": "boolean"})

    def test_instantiate_item_without_id(self, epm, world):
        template = world.new_template([
            {"label": "Hull dry", "type": "boolean", "required": True},
            {"id": "notes", "label": "Notes", "type": "text"},
        ])

        view = epm.instantiate_checklist(world.project.id, template.id)
        assert [i.item.template_item_id for i in view.items] == ["item-0", "notes"]
        assert len(view.required_items) == 1

        items = epm.get_checklist(view.checklist.id).items
        assert items[0].definition.label == "Hull dry"
        assert items[0].required is True

    def test_unknown_type_in_store_reads_as_text(self, epm, world):
        view = epm.instantiate_checklist(world.project.id, world.template.id)
        world.template.items = [{**world.template.items[0], "type": "date"}, *world.template.items[1:]]

        items = epm.get_checklist(view.checklist.id).items
        assert items[0].definition.type == ItemType.TEXT
        assert items[0].required is True
        assert epm.get_template(world.template.id).to_dict()["items"][0]["type"] == "text"
