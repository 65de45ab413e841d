"""
Role assignment Blueprint.

Endpoints:
    GET   /api/v1/roles?all=true          active assignments (all with ?all=true)
    POST  /api/v1/roles/assign            Body: {"role_type", "user_id", "assigned_by"}
    GET   /api/v1/roles/resolve?role=&project_id=
"""

import logging

from flask import Blueprint, jsonify, request

from workflow_engine.models.project import Project
from workflow_engine.services.role_directory import get_directory
from workflow_engine.utils.errors import E, api_error
from workflow_engine.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

roles_bp = Blueprint("roles", __name__, url_prefix="/api/v1/roles")


@roles_bp.route("", methods=["GET"])
def list_roles():
    active_only = request.args.get("all", "false").lower() != "true"
    items = [a.to_dict() for a in get_directory().list_assignments(active_only=active_only)]
    return jsonify({"items": items, "total": len(items)}), 200


@roles_bp.route("/assign", methods=["POST"])
def assign_role():
    data = request.get_json(silent=True) or {}
    role_type = (data.get("role_type") or "").strip().upper()
    if not role_type:
        return api_error(E.VALIDATION_REQUIRED, "Field 'role_type' is required.")
    try:
        user_id = int(data.get("user_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_id' is required and must be an integer.")

    assignment = get_directory().assign_role(role_type, user_id, assigned_by=data.get("assigned_by"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(assignment.to_dict()), 201


@roles_bp.route("/resolve", methods=["GET"])
def resolve_role():
    """Who would receive an alert for *role* right now (after fallbacks)."""
    role = (request.args.get("role") or "").strip().upper()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "Query parameter 'role' is required.")

    project = None
    project_id = request.args.get("project_id", type=int)
    if project_id is not None:
        project, err = get_or_404(Project, project_id)
        if err:
            return err

    user_id = get_directory().resolve(role, project)
    return jsonify({"role": role, "project_id": project_id, "user_id": user_id}), 200
