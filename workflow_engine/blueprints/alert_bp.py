"""
Alert Blueprint - workflow alerts and their in-app notifications.

Endpoints:
    GET    /api/v1/alerts?user_id=                 open alerts for a user (cached)
    GET    /api/v1/projects/<pid>/alerts           open alerts for a project (cached)
    PATCH  /api/v1/alerts/<aid>/assign             Body: {"user_id", "actor"}
    PATCH  /api/v1/alerts/<aid>/acknowledge        Body: {"user_id"}
    GET    /api/v1/alerts/stats?project_id=
    GET    /api/v1/alerts/cache/stats

    GET    /api/v1/notifications?user_id=&project_id=&unread_only=
    PATCH  /api/v1/notifications/<nid>/read
"""

import logging

from flask import Blueprint, jsonify, request

from workflow_engine.models.notification import Notification
from workflow_engine.services import alert_manager
from workflow_engine.services.alert_cache import get_alert_cache
from workflow_engine.services.notification import NotificationService
from workflow_engine.utils.errors import E, api_error
from workflow_engine.utils.helpers import get_or_404, pagination_args

logger = logging.getLogger(__name__)

alert_bp = Blueprint("alert", __name__, url_prefix="/api/v1")


def _int_field(data, name, required=True):
    """Return (value, err_response)."""
    raw = data.get(name)
    if raw is None:
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, f"Field '{name}' is required.")
        return None, None
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"Field '{name}' must be an integer.")


# ═══════════════════════════════════════════════════════════════════════════
#  ALERTS
# ═══════════════════════════════════════════════════════════════════════════


@alert_bp.route("/alerts", methods=["GET"])
def list_user_alerts():
    user_id = request.args.get("user_id", type=int)
    if user_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Query parameter 'user_id' is required.")
    items = alert_manager.alerts_for_user(user_id)
    return jsonify({"items": items, "total": len(items)}), 200


@alert_bp.route("/projects/<int:project_id>/alerts", methods=["GET"])
def list_project_alerts(project_id):
    items = alert_manager.alerts_for_project(project_id)
    return jsonify({"items": items, "total": len(items)}), 200


@alert_bp.route("/alerts/<int:alert_id>/assign", methods=["PATCH"])
def reassign_alert(alert_id):
    """Hand an open alert to another user (due date and position unchanged)."""
    data = request.get_json(silent=True) or {}
    user_id, err = _int_field(data, "user_id")
    if err:
        return err
    alert = alert_manager.reassign(alert_id, user_id, actor=data.get("actor") or "api")
    return jsonify(alert.to_dict()), 200


@alert_bp.route("/alerts/<int:alert_id>/acknowledge", methods=["PATCH"])
def acknowledge_alert(alert_id):
    data = request.get_json(silent=True) or {}
    user_id, err = _int_field(data, "user_id", required=False)
    if err:
        return err
    alert = alert_manager.acknowledge(alert_id, user_id)
    return jsonify(alert.to_dict()), 200


@alert_bp.route("/alerts/stats", methods=["GET"])
def alert_stats():
    return jsonify(alert_manager.alert_stats(request.args.get("project_id", type=int))), 200


@alert_bp.route("/alerts/cache/stats", methods=["GET"])
def alert_cache_stats():
    return jsonify(get_alert_cache().stats()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS (side channel)
# ═══════════════════════════════════════════════════════════════════════════


@alert_bp.route("/notifications", methods=["GET"])
def list_notifications():
    user_id = request.args.get("user_id", type=int)
    if user_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Query parameter 'user_id' is required.")
    limit, offset = pagination_args()
    items, total = NotificationService.list_for_recipient(
        user_id,
        project_id=request.args.get("project_id", type=int),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread": NotificationService.unread_count(user_id),
    }), 200


@alert_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
def mark_notification_read(notification_id):
    _notif, err = get_or_404(Notification, notification_id)
    if err:
        return err
    notif = NotificationService.mark_read(notification_id)
    return jsonify(notif.to_dict()), 200
