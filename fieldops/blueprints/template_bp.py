"""
Checklist Template catalog Blueprint.

Endpoints:
    GET    /api/v1/checklist-templates          active templates (?include_inactive=1)
    GET    /api/v1/checklist-templates/<id>     one template with its items
    POST   /api/v1/checklist-templates          create (admin)
"""

from flask import Blueprint, jsonify, request

from fieldops.auth import Role, get_current_user, require_auth, require_role
from fieldops.blueprints.errors import register_error_handlers
from fieldops.services.epm.service import build_epm_service

template_bp = Blueprint("checklist_template", __name__, url_prefix="/api/v1/checklist-templates")
register_error_handlers(template_bp)


@template_bp.route("", methods=["GET"])
@require_auth
def list_templates():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    templates = build_epm_service().list_templates(active_only=not include_inactive)
    return jsonify([t.to_dict() for t in templates])


@template_bp.route("/<template_id>", methods=["GET"])
@require_auth
def get_template(template_id):
    return jsonify(build_epm_service().get_template(template_id).to_dict())


@template_bp.route("", methods=["POST"])
@require_role(Role.ADMIN)
def create_template():
    template = build_epm_service().create_template(
        request.get_json(silent=True) or {}, actor_id=get_current_user().id,
    )
    return jsonify(template.to_dict()), 201
