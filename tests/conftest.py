"""
Shared pytest fixtures for the Field Operations EPM test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - users / project / template: pre-created SQL entities for API tests
    - auth_headers: Bearer-token headers for a user
    - repo: EPM repository, parametrised over SQL and in-memory backends
    - epm / world: EpmService wired to ``repo`` with fake collaborators,
      plus the seeded users, project and template in that backend
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from fieldops import create_app
from fieldops.models import db as _db
from fieldops.models.audit import AuditLog
from fieldops.models.auth import User
from fieldops.models.epm import ChecklistTemplate
from fieldops.models.epm_config import GateRules, ItemStatus
from fieldops.models.project import Project
from fieldops.services.epm.contracts import ChecklistItemPatch, StageCreate
from fieldops.services.epm.effects import OperationsGateway
from fieldops.services.epm.repository import EpmRepository, SqlEpmRepository
from fieldops.services.epm.service import EpmService
from fieldops.services.jwt_service import generate_access_token
from fieldops.utils.helpers import new_id


# Hull blast inspection template: 5 required + 3 optional items
HULL_BLAST_ITEMS = [
    {"id": "surface-prep-check", "label": "Surface preparation to SA2.5", "type": "boolean", "required": True},
    {"id": "dust-removal", "label": "Dust and debris removed", "type": "boolean", "required": True},
    {"id": "environmental-temp", "label": "Temperature (°F)", "type": "number", "required": True,
     "validations": {"min": 45, "max": 100}},
    {"id": "humidity-reading", "label": "Relative humidity", "type": "number", "required": True,
     "validations": {"min": 0, "max": 85}},
    {"id": "equipment-inspection", "label": "Equipment certified", "type": "boolean", "required": True},
    {"id": "wind-speed", "label": "Wind speed (mph)", "type": "number", "required": False,
     "validations": {"min": 0, "max": 25}},
    {"id": "additional-notes", "label": "Additional notes", "type": "text", "required": False,
     "validations": {"max_length": 500}},
    {"id": "quality-photos", "label": "Quality photos", "type": "photo", "required": False},
]
REQUIRED_IDS = [i["id"] for i in HULL_BLAST_ITEMS if i["required"]]
OPTIONAL_IDS = [i["id"] for i in HULL_BLAST_ITEMS if not i["required"]]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Builders ─────────────────────────────────────────────────────────────


def make_user(role: str, username: str | None = None) -> User:
    username = username or f"{role}-{new_id()[:8]}"
    return User(
        id=new_id(), username=username, first_name=role.title(), last_name="Tester",
        role=role, is_active=True, created_at=datetime.now(timezone.utc),
    )


def make_project(supervisor_id=None, name="MV Atlas Hull Blast") -> Project:
    return Project(
        id=new_id(), name=name, location="Dry Dock 3", status="active",
        supervisor_id=supervisor_id, created_at=datetime.now(timezone.utc),
    )


def make_template(items=None, name="Hull Blast Inspection Checklist") -> ChecklistTemplate:
    return ChecklistTemplate(
        id=new_id(), name=name, type="quality_control",
        items=list(HULL_BLAST_ITEMS if items is None else items),
        version=1, is_active=True, created_at=datetime.now(timezone.utc),
    )


def _persist(*objs):
    for obj in objs:
        _db.session.add(obj)
    _db.session.commit()
    return objs


# ── SQL entity fixtures (API tests) ──────────────────────────────────────


@pytest.fixture()
def users():
    """admin, supervisor and two techs, committed."""
    created = {
        "admin": make_user("admin", "admin"),
        "supervisor": make_user("supervisor", "supervisor"),
        "tech": make_user("tech", "tech"),
        "tech2": make_user("tech", "tech2"),
    }
    _persist(*created.values())
    return created


@pytest.fixture()
def project(users):
    proj = make_project(supervisor_id=users["supervisor"].id)
    _persist(proj)
    return proj


@pytest.fixture()
def template():
    tpl = make_template()
    _persist(tpl)
    return tpl


@pytest.fixture()
def auth_headers():
    """Return a builder: auth_headers(user) → {"Authorization": "Bearer …"}."""

    def _build(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}

    return _build


# ── Fakes ────────────────────────────────────────────────────────────────


class Clock:
    """Deterministic clock; each call advances one second."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class InMemoryEpmRepository(EpmRepository):
    """Dict-backed repository; integer keys come from a shared counter."""

    def __init__(self):
        self.projects, self.users, self.templates = {}, {}, {}
        self.stages, self.checklists, self.items = {}, {}, {}
        self.approvals, self.effects, self.audits = [], [], []
        self.commits = 0
        self.rollbacks = 0
        self._seq = 0

    def _next_id(self):
        self._seq += 1
        return self._seq

    # seeding helpers
    def put_user(self, user):
        self.users[user.id] = user
        return user

    def put_project(self, project):
        self.projects[project.id] = project
        return project

    def get_project(self, project_id):
        return self.projects.get(project_id)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def get_user_by_username(self, username):
        return next((u for u in self.users.values() if u.username == username), None)

    def get_template(self, template_id):
        return self.templates.get(template_id)

    def list_templates(self, active_only=True):
        return [t for t in self.templates.values() if t.is_active or not active_only]

    def add_template(self, template):
        self.templates[template.id] = template
        return template

    def get_stage(self, stage_id):
        return self.stages.get(stage_id)

    def list_stages(self, project_id):
        stages = [s for s in self.stages.values() if s.project_id == project_id]
        return sorted(stages, key=lambda s: (s.order, s.created_at))

    def add_stage(self, stage):
        self.stages[stage.id] = stage
        return stage

    def get_checklist(self, checklist_id, lock=False):
        return self.checklists.get(checklist_id)

    def list_checklists(self, project_id, stage_id=None):
        return [
            c for c in self.checklists.values()
            if c.project_id == project_id and (stage_id is None or c.stage_id == stage_id)
        ]

    def list_stage_checklists(self, stage_id):
        return [c for c in self.checklists.values() if c.stage_id == stage_id]

    def add_checklist(self, checklist):
        self.checklists[checklist.id] = checklist
        return checklist

    def get_item(self, item_id, lock=False):
        return self.items.get(item_id)

    def list_items(self, checklist_id):
        items = [i for i in self.items.values() if i.project_checklist_id == checklist_id]
        return sorted(items, key=lambda i: i.position)

    def add_item(self, item):
        self.items[item.id] = item
        return item

    def list_approvals(self, stage_id):
        found = [a for a in self.approvals if a.stage_id == stage_id]
        return sorted(found, key=lambda a: (a.created_at, a.id))

    def add_approval(self, approval):
        approval.id = self._next_id()
        self.approvals.append(approval)
        return approval

    def add_effect(self, effect):
        effect.id = self._next_id()
        self.effects.append(effect)
        return effect

    def list_effects(self, stage_id, status=None):
        return [
            e for e in self.effects
            if e.stage_id == stage_id and (status is None or e.status == status)
        ]

    def add_audit(self, entry):
        entry.id = self._next_id()
        self.audits.append(entry)
        return entry

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeOperationsGateway(OperationsGateway):
    """Records every call; targets listed in ``failing`` raise RuntimeError."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def _call(self, kind, target, **kwargs):
        self.calls.append((kind, target, kwargs))
        if target in self.failing:
            raise RuntimeError(f"{kind} backend unavailable for {target}")
        return f"{kind}-{len(self.calls)}"

    def create_safety_form(self, *, project_id, stage_id, form_type, title, actor_id):
        return self._call("safety_form", form_type, title=title)

    def reserve_inventory(self, *, project_id, stage_id, item_ref):
        return self._call("inventory_reservation", item_ref)

    def schedule_commissioning(self, *, project_id, stage_id, scheduled_for):
        return self._call("equipment_commissioning", "commissioning", scheduled_for=scheduled_for)

    def succeeded(self, kind):
        return [c for c in self.calls if c[0] == kind]


class RecordingNotifier:
    """``create_once`` with the same dedupe semantics as NotificationService."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = {}

    def create_once(self, *, recipient_id, title, type="system", related_type="", related_id=None,
                    dedupe_key=None, **kwargs):
        if self.fail:
            raise RuntimeError("notification backend down")
        key = dedupe_key or f"{recipient_id}:{related_type}:{related_id}:{type}"
        if key in self.sent:
            return self.sent[key], False
        self.sent[key] = {"recipient_id": recipient_id, "title": title, "type": type, **kwargs}
        return self.sent[key], True

    def of_type(self, type_):
        return [n for n in self.sent.values() if n["type"] == type_]


# ── Service fixtures (both backends) ─────────────────────────────────────


@pytest.fixture(params=["sql", "memory"])
def repo(request):
    if request.param == "sql":
        return SqlEpmRepository()
    return InMemoryEpmRepository()


@pytest.fixture()
def gateway():
    return FakeOperationsGateway()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def clock():
    return Clock()


class World:
    """Users, project and template seeded into one repository backend."""

    def __init__(self, repo):
        self.repo = repo
        self.admin = make_user("admin", "admin")
        self.supervisor = make_user("supervisor", "supervisor")
        self.tech = make_user("tech", "tech")
        self.project = make_project(supervisor_id=self.supervisor.id)
        self.other_project = make_project(name="Tank Lining")
        self.template = make_template()
        self.required_ids = list(REQUIRED_IDS)
        self.optional_ids = list(OPTIONAL_IDS)
        self.add(self.admin, self.supervisor, self.tech)
        self.add(self.project, self.other_project)
        self.add(self.template)

    def add(self, *objs):
        if isinstance(self.repo, SqlEpmRepository):
            _persist(*objs)
            return
        for obj in objs:
            if isinstance(obj, User):
                self.repo.put_user(obj)
            elif isinstance(obj, Project):
                self.repo.put_project(obj)
            else:
                self.repo.add_template(obj)

    def new_template(self, items):
        tpl = make_template(items=items, name="Custom")
        self.add(tpl)
        return tpl


@pytest.fixture()
def world(repo):
    return World(repo)


@pytest.fixture()
def epm(world, gateway, notifier, clock):
    return EpmService(world.repo, gateway, notifier, clock=clock, max_attempts=2, commissioning_lead_days=7)



@pytest.fixture()
def add_stage(epm, world):
    """Create one stage through the service; returns the ProjectStage."""

    def _add(name="Preparation & Setup", order=1, role="supervisor", gate_rules=None, project=None):
        project_id = (project or world.project).id
        new_stage = StageCreate(
            name=name, order=order, required_approver_role=role,
            gate_rules=gate_rules or GateRules(),
        )
        return epm.create_stages(project_id, [new_stage], actor_id=world.admin.id)[0].stage

    return _add


@pytest.fixture()
def mark(epm, world):
    """mark(view, template_item_ids, status="complete") updates items of a checklist view."""

    def _mark(view, template_item_ids, status="complete"):
        by_template_id = {iv.item.template_item_id: iv.item for iv in view.items}
        for template_item_id in template_item_ids:
            epm.update_checklist_item(
                by_template_id[template_item_id].id,
                ChecklistItemPatch(status=ItemStatus(status)),
                actor_id=world.tech.id,
            )

    return _mark


@pytest.fixture()
def audits(world):
    """audits(entity, entity_id=None) → audit rows in write order, from either backend."""

    def _audits(entity, entity_id=None):
        if isinstance(world.repo, SqlEpmRepository):
            stmt = select(AuditLog).where(AuditLog.entity == entity).order_by(AuditLog.id)
            if entity_id is not None:
                stmt = stmt.where(AuditLog.entity_id == str(entity_id))
            return _db.session.execute(stmt).scalars().all()
        return [
            a for a in world.repo.audits
            if a.entity == entity and (entity_id is None or a.entity_id == str(entity_id))
        ]

    return _audits
