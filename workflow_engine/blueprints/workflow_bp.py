"""
Workflow Blueprint - catalog, per-project progression, reconciliation.

Endpoints:
    GET    /api/v1/workflow/catalog?kind=
    GET    /api/v1/workflow/integrity
    POST   /api/v1/workflow/reconcile-all

    POST   /api/v1/projects/<pid>/workflow                     Body: {"workflow_kind"}
    GET    /api/v1/projects/<pid>/workflow/position?kind=
    GET    /api/v1/projects/<pid>/workflow/status?kind=
    GET    /api/v1/projects/<pid>/workflow/history?kind=
    POST   /api/v1/projects/<pid>/workflow/line-items/<lid>/complete
           Body: {"user_id": <int>, "notes": "...", "workflow_kind": "..."}
    DELETE /api/v1/projects/<pid>/workflow/line-items/<lid>/completion?kind=&actor=
    GET    /api/v1/projects/<pid>/workflow/phases/<phase_type>/incomplete?kind=
    GET    /api/v1/projects/<pid>/workflow/phases/<phase_type>/readiness?kind=
    POST   /api/v1/projects/<pid>/workflow/reconcile?kind=

``kind`` is optional everywhere: a project with a single run uses it.

Layer contract:
    - Blueprint: parse input, call workflow_service, return JSON.
    - Service exceptions map to HTTP codes in utils/errors.register_error_handlers.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from workflow_engine.services import workflow_service
from workflow_engine.services.catalog import get_catalog, known_kinds
from workflow_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")


def _kind(data=None):
    """workflow_kind from the query string or the JSON body (None if absent)."""
    kind = request.args.get("kind") or request.args.get("workflow_kind")
    if not kind and data:
        kind = data.get("workflow_kind") or data.get("kind")
    return (kind or "").strip().upper() or None


def _actor(data=None):
    actor = request.args.get("actor") or (data or {}).get("actor")
    return str(actor) if actor else "api"


# ── Catalog ────────────────────────────────────────────────────────────────────


@workflow_bp.route("/workflow/catalog", methods=["GET"])
def get_workflow_catalog():
    """Full ordered catalog for one workflow kind (default kind if omitted)."""
    kind = _kind() or current_app.config.get("WORKFLOW_DEFAULT_KIND", "ROOFING")
    if kind not in known_kinds():
        return api_error(E.NOT_FOUND, f"No catalog for workflow kind {kind!r}")
    return jsonify(get_catalog(kind).to_dict()), 200


# ── Cross-project administration ───────────────────────────────────────────────


@workflow_bp.route("/workflow/integrity", methods=["GET"])
def workflow_integrity():
    """Report-only tracker validation."""
    return jsonify(workflow_service.check_integrity()), 200


@workflow_bp.route("/workflow/reconcile-all", methods=["POST"])
def workflow_reconcile_all():
    data = request.get_json(silent=True) or {}
    return jsonify(workflow_service.reconcile_all(actor=_actor(data))), 200


# ── Per-project run ────────────────────────────────────────────────────────────


@workflow_bp.route("/projects/<int:project_id>/workflow", methods=["POST"])
def initialize_workflow(project_id):
    """Create the project's run for a workflow kind.  201 when created, 200 if it existed."""
    data = request.get_json(silent=True) or {}
    result = workflow_service.initialize_workflow(project_id, _kind(data), actor=_actor(data))
    return jsonify(result), 201 if result["created"] else 200


@workflow_bp.route("/projects/<int:project_id>/workflow/position", methods=["GET"])
def get_position(project_id):
    return jsonify(workflow_service.get_current_position(project_id, _kind())), 200


@workflow_bp.route("/projects/<int:project_id>/workflow/status", methods=["GET"])
def get_status(project_id):
    return jsonify(workflow_service.get_workflow_status(project_id, _kind())), 200


@workflow_bp.route("/projects/<int:project_id>/workflow/history", methods=["GET"])
def get_history(project_id):
    history = workflow_service.get_history(project_id, _kind())
    return jsonify({"items": history, "total": len(history)}), 200


@workflow_bp.route(
    "/projects/<int:project_id>/workflow/line-items/<int:line_item_id>/complete",
    methods=["POST"],
)
def complete_line_item(project_id, line_item_id):
    """Mark a line item complete.  Re-completing returns 200 with already_completed=true."""
    data = request.get_json(silent=True) or {}

    user_id = data.get("user_id")
    if user_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_id' is required.")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "Field 'user_id' must be an integer.")

    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        return api_error(E.VALIDATION_INVALID, "Field 'notes' must be a string.")

    result = workflow_service.complete_line_item(
        project_id, line_item_id, user_id, workflow_kind=_kind(data), notes=notes,
    )
    return jsonify(result), 200 if result["already_completed"] else 201


@workflow_bp.route(
    "/projects/<int:project_id>/workflow/line-items/<int:line_item_id>/completion",
    methods=["DELETE"],
)
def reset_line_item(project_id, line_item_id):
    """Administrative un-complete followed by reconcile."""
    data = request.get_json(silent=True) or {}
    result = workflow_service.reset_line_item(
        project_id, line_item_id, actor=_actor(data), workflow_kind=_kind(data),
    )
    return jsonify(result), 200


@workflow_bp.route(
    "/projects/<int:project_id>/workflow/phases/<phase_type>/incomplete", methods=["GET"],
)
def get_incomplete_items(project_id, phase_type):
    items = workflow_service.get_incomplete_items(project_id, phase_type.upper(), _kind())
    return jsonify({"phase_type": phase_type.upper(), "items": items, "total": len(items)}), 200


@workflow_bp.route(
    "/projects/<int:project_id>/workflow/phases/<phase_type>/readiness", methods=["GET"],
)
def get_phase_readiness(project_id, phase_type):
    return jsonify(workflow_service.can_advance_phase(project_id, phase_type.upper(), _kind())), 200


@workflow_bp.route("/projects/<int:project_id>/workflow/reconcile", methods=["POST"])
def reconcile_project(project_id):
    data = request.get_json(silent=True) or {}
    result = workflow_service.reconcile(project_id, _kind(data), actor=_actor(data))
    return jsonify(result), 200
