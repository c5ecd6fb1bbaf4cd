"""
Demo data for the EPM workflow (``flask seed-epm-demo``).

Creates three users (admin, supervisor, tech), a hull-blasting project
with three gated stages, the "Hull Blast Inspection Checklist" template
(5 required + 3 optional items) and one checklist on the first stage.
Idempotent: does nothing when the demo project already exists, and reuses
an active template of the same name instead of creating a second one.
"""

import logging

from sqlalchemy import select

from fieldops.models import db
from fieldops.models.auth import User
from fieldops.models.epm_config import GateRules
from fieldops.models.project import Project
from fieldops.services.epm.contracts import StageCreate

logger = logging.getLogger(__name__)

DEMO_PROJECT_NAME = "Vessel Hull Blasting - MV Atlas"

DEMO_USERS = [
    {"username": "admin", "first_name": "Ada", "last_name": "Marsh", "role": "admin"},
    {"username": "supervisor", "first_name": "Sam", "last_name": "Keel", "role": "supervisor"},
    {"username": "tech", "first_name": "Toni", "last_name": "Reyes", "role": "tech"},
]

DEMO_STAGES = [
    StageCreate(
        name="Preparation & Setup", order=1, required_approver_role="supervisor",
        gate_rules=GateRules(
            required_forms=("safety_briefing", "equipment_inspection"),
            inventory_reservations=("blast-media-001", "paint-primer-002"),
            equipment_commissioning=True,
        ),
    ),
    StageCreate(
        name="Hull Blasting Operations", order=2, required_approver_role="supervisor",
        gate_rules=GateRules(
            required_forms=("environmental_clearance", "containment_check"),
            inventory_reservations=("blast-media-002",),
        ),
    ),
    StageCreate(
        name="Coating Application", order=3, required_approver_role="admin",
        gate_rules=GateRules(
            required_forms=("surface_prep_verification", "coating_plan"),
            inventory_reservations=("primer-001", "topcoat-001"),
        ),
    ),
]

HULL_BLAST_TEMPLATE = {
    "name": "Hull Blast Inspection Checklist",
    "type": "quality_control",
    "items": [
        {"id": "surface-prep-check", "label": "Surface preparation completed to SA2.5 standard",
         "type": "boolean", "required": True},
        {"id": "dust-removal", "label": "All dust and debris removed from surface",
         "type": "boolean", "required": True},
        {"id": "environmental-temp", "label": "Environmental temperature reading (°F)",
         "type": "number", "required": True, "validations": {"min": 45, "max": 100}},
        {"id": "humidity-reading", "label": "Relative humidity percentage",
         "type": "number", "required": True, "validations": {"min": 0, "max": 85}},
        {"id": "equipment-inspection", "label": "All blasting equipment inspected and certified",
         "type": "boolean", "required": True},
        {"id": "wind-speed", "label": "Wind speed measurement (mph)",
         "type": "number", "required": False, "validations": {"min": 0, "max": 25}},
        {"id": "additional-notes", "label": "Additional inspection notes or observations",
         "type": "text", "required": False, "validations": {"max_length": 500}},
        {"id": "quality-photos", "label": "Additional quality documentation photos",
         "type": "photo", "required": False},
    ],
}


def _get_or_create_user(data: dict) -> User:
    user = db.session.execute(select(User).where(User.username == data["username"])).scalar_one_or_none()
    if user is None:
        user = User(**data)
        db.session.add(user)
        db.session.flush()
    return user


def _get_or_create_template(service, actor_id):
    """Reuse the active demo template when one is already in the catalog."""
    for template in service.list_templates():
        if template.name == HULL_BLAST_TEMPLATE["name"]:
            return template
    return service.create_template(HULL_BLAST_TEMPLATE, actor_id=actor_id)


def seed_epm_demo(service) -> dict:
    """Seed the demo project through ``service`` (an EpmService).

    Returns a summary dict; ``created`` is False when the demo already existed.
    """
    existing = db.session.execute(
        select(Project).where(Project.name == DEMO_PROJECT_NAME)
    ).scalar_one_or_none()
    if existing is not None:
        logger.info("Demo project already exists (%s); skipping seed", existing.id)
        return {"created": False, "project_id": existing.id}

    users = {u["username"]: _get_or_create_user(u) for u in DEMO_USERS}
    admin_id = users["admin"].id
    template = _get_or_create_template(service, admin_id)

    project = Project(
        name=DEMO_PROJECT_NAME,
        location="Port of Houston - Dry Dock 3",
        status="active",
        supervisor_id=users["supervisor"].id,
        notes="Large container vessel requiring full hull blast and protective coating application",
    )
    db.session.add(project)
    db.session.flush()

    stages = service.create_stages(project.id, DEMO_STAGES, actor_id=admin_id)
    checklist = service.instantiate_checklist(
        project.id, template.id, stage_id=stages[0].id, actor_id=admin_id,
    )

    logger.info("Seeded demo project %s with %d stages", project.id, len(stages))
    return {
        "created": True,
        "project_id": project.id,
        "stage_ids": [s.id for s in stages],
        "template_id": template.id,
        "checklist_id": checklist.checklist.id,
        "user_ids": {name: u.id for name, u in users.items()},
    }
