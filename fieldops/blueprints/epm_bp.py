"""
EPM Blueprint: stages, checklists, approvals and progress.

Endpoints (all under /api/v1, Bearer JWT required):
    POST   /projects/<pid>/stages                          create stages (supervisor+)
    GET    /projects/<pid>/stages                          stages with completion
    GET    /projects/<pid>/stages/<sid>                    one stage
    PATCH  /projects/<pid>/stages/<sid>                    update stage (supervisor+)
    GET    /projects/<pid>/stages/<sid>/approvals          decision history
    POST   /projects/<pid>/stages/<sid>/approve            approve / reject
    POST   /projects/<pid>/stages/<sid>/effects/retry      re-run failed effects (supervisor+)
    POST   /projects/<pid>/checklists                      instantiate checklist
    GET    /projects/<pid>/checklists                      checklist summaries
    GET    /checklists/<cid>                               full checklist
    PATCH  /checklist-items/<iid>                          update one item
    GET    /projects/<pid>/progress                        project progress

Layer contract:
    - Blueprint: parse the body into a contract object, check route-level
      roles, call EpmService, serialise the result.
    - NO db.session calls here: all writes owned by the service.
"""

import logging

from flask import Blueprint, jsonify, request

from fieldops.auth import Role, get_current_user, require_auth, require_role, role_satisfies
from fieldops.blueprints.errors import register_error_handlers
from fieldops.services.epm.contracts import (
    ChecklistItemPatch,
    ChecklistRequest,
    StageDecision,
    StageUpdate,
    parse_stage_creates,
)
from fieldops.services.epm.service import build_epm_service
from fieldops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

epm_bp = Blueprint("epm", __name__, url_prefix="/api/v1")
register_error_handlers(epm_bp)


def _body():
    return request.get_json(silent=True) or {}


def _actor_id():
    return get_current_user().id


# ═════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════


@epm_bp.route("/projects/<project_id>/stages", methods=["POST"])
@require_role(Role.SUPERVISOR)
def create_stages(project_id):
    stages = parse_stage_creates(_body())
    views = build_epm_service().create_stages(project_id, stages, actor_id=_actor_id())
    return jsonify([v.to_dict() for v in views]), 201


@epm_bp.route("/projects/<project_id>/stages", methods=["GET"])
@require_auth
def list_stages(project_id):
    views = build_epm_service().list_stages_with_pct(project_id)
    return jsonify([v.to_dict() for v in views])


@epm_bp.route("/projects/<project_id>/stages/<stage_id>", methods=["GET"])
@require_auth
def get_stage(project_id, stage_id):
    return jsonify(build_epm_service().get_stage(project_id, stage_id).to_dict())


@epm_bp.route("/projects/<project_id>/stages/<stage_id>", methods=["PATCH"])
@require_role(Role.SUPERVISOR)
def update_stage(project_id, stage_id):
    changes = StageUpdate.from_dict(_body())
    view = build_epm_service().update_stage(project_id, stage_id, changes, actor_id=_actor_id())
    return jsonify(view.to_dict())


@epm_bp.route("/projects/<project_id>/stages/<stage_id>/approvals", methods=["GET"])
@require_auth
def stage_approval_history(project_id, stage_id):
    approvals = build_epm_service().stage_approval_history(project_id, stage_id)
    return jsonify([a.to_dict() for a in approvals])


@epm_bp.route("/projects/<project_id>/stages/<stage_id>/approve", methods=["POST"])
@require_role(config_key="EPM_MIN_APPROVER_ROLE")
def approve_stage(project_id, stage_id):
    """Approve or reject a stage.

    400 when the gate is not satisfied, 403 when the caller's role is
    below the stage's required approver role. The role is checked first,
    so a caller failing both gets 403.
    """
    decision = StageDecision.from_dict(_body())
    outcome = build_epm_service().approve_stage(project_id, stage_id, decision, get_current_user())
    return jsonify(outcome.to_dict())


@epm_bp.route("/projects/<project_id>/stages/<stage_id>/effects/retry", methods=["POST"])
@require_role(Role.SUPERVISOR)
def retry_effects(project_id, stage_id):
    effects = build_epm_service().retry_failed_effects(project_id, stage_id, actor_id=_actor_id())
    return jsonify({"retried": len(effects), "effects": [e.to_dict() for e in effects]})


# ═════════════════════════════════════════════════════════════════════════
# Checklists
# ═════════════════════════════════════════════════════════════════════════


@epm_bp.route("/projects/<project_id>/checklists", methods=["POST"])
@require_auth
def create_checklist(project_id):
    req = ChecklistRequest.from_dict(_body())
    view = build_epm_service().instantiate_checklist(
        project_id, req.template_id, stage_id=req.stage_id, actor_id=_actor_id(),
    )
    return jsonify(view.to_dict()), 201


@epm_bp.route("/projects/<project_id>/checklists", methods=["GET"])
@require_auth
def list_checklists(project_id):
    stage_id = request.args.get("stage_id") or None
    summaries = build_epm_service().list_checklists(project_id, stage_id=stage_id)
    return jsonify([s.to_dict() for s in summaries])


@epm_bp.route("/checklists/<checklist_id>", methods=["GET"])
@require_auth
def get_checklist(checklist_id):
    return jsonify(build_epm_service().get_checklist(checklist_id).to_dict())


@epm_bp.route("/checklist-items/<item_id>", methods=["PATCH"])
@require_auth
def update_checklist_item(item_id):
    """Update one checklist item.

    Techs may only touch items assigned to them or unassigned items.
    """
    user = get_current_user()
    service = build_epm_service()
    patch = ChecklistItemPatch.from_dict(_body())

    if not role_satisfies(user.role, Role.SUPERVISOR):
        item = service.get_checklist_item(item_id)
        if item.assignee_id is not None and item.assignee_id != user.id:
            logger.warning("User %s denied update of item %s assigned to %s", user.id, item_id, item.assignee_id)
            return api_error(E.FORBIDDEN, "You can only update checklist items assigned to you")

    item = service.update_checklist_item(item_id, patch, actor_id=user.id)
    return jsonify(item.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Progress
# ═════════════════════════════════════════════════════════════════════════


@epm_bp.route("/projects/<project_id>/progress", methods=["GET"])
@require_auth
def project_progress(project_id):
    return jsonify(build_epm_service().get_project_progress(project_id).to_dict())
