"""
Alert manager - WorkflowAlert lifecycle tied to a run's current line item.

Rules:
    - An alert is created when a line item becomes the tracker's current
      item, assigned through the RoleAssignmentDirectory.
    - At most one open (ACTIVE or ACKNOWLEDGED) alert per
      (project_id, line_item_id).  Creation is a conditional insert; a second
      attempt for the same key is a no-op.
    - Completing or superseding the item moves its alert to RESOLVED.
    - Reassignment changes ``assigned_to`` only; due date and position stay.

Every lifecycle event writes an in-app Notification (side channel).

Functions that run inside the advancement transaction only ``flush``;
``reassign`` and ``acknowledge`` are standalone and commit themselves.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from workflow_engine.core.exceptions import NotFoundError, TransientStoreError, ValidationError
from workflow_engine.models import db
from workflow_engine.models.audit import write_audit
from workflow_engine.models.workflow import (
    ALERT_PRIORITIES,
    ALERT_STATUSES,
    OPEN_ALERT_STATUSES,
    WorkflowAlert,
)
from workflow_engine.services import alert_cache
from workflow_engine.services.notification import NotificationService
from workflow_engine.services.role_directory import get_directory

logger = logging.getLogger(__name__)

# Due within this window: at least MEDIUM.  Past due: HIGH.
DUE_SOON = timedelta(days=2)
# Days past due at which the assignee is reminded again.
OVERDUE_INTERVAL_DAYS = (1, 3, 7, 14)


def _utcnow():
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _initial_priority(item) -> str:
    return "MEDIUM" if timedelta(days=item.alert_lead_days) <= DUE_SOON else "LOW"


def _raise_priority(alert, priority: str) -> bool:
    """Raise *alert* to *priority* if it is lower.  Returns True when changed."""
    if ALERT_PRIORITIES.index(priority) <= ALERT_PRIORITIES.index(alert.priority or "LOW"):
        return False
    logger.info(
        "Alert %s escalated %s → %s", alert.id, alert.priority, priority,
        extra={"project_id": alert.project_id, "alert_id": alert.id},
    )
    alert.priority = priority
    return True


# ── Queries ──────────────────────────────────────────────────────────────


def open_alerts_for_item(project_id: int, line_item_id: int) -> list[WorkflowAlert]:
    return (
        WorkflowAlert.query
        .filter(
            WorkflowAlert.project_id == project_id,
            WorkflowAlert.line_item_id == line_item_id,
            WorkflowAlert.status.in_(OPEN_ALERT_STATUSES),
        )
        .order_by(WorkflowAlert.created_at, WorkflowAlert.id)
        .all()
    )


def open_alerts_for_run(run_id: int) -> list[WorkflowAlert]:
    return (
        WorkflowAlert.query
        .filter(WorkflowAlert.run_id == run_id, WorkflowAlert.status.in_(OPEN_ALERT_STATUSES))
        .order_by(WorkflowAlert.created_at, WorkflowAlert.id)
        .all()
    )


# ── Lifecycle (inside the advancement transaction) ───────────────────────


def create_alert(run, item, *, catalog, project) -> WorkflowAlert | None:
    """Conditional insert of the open alert for *item*.

    Returns the new alert, or None when an open alert already exists.
    """
    if open_alerts_for_item(run.project_id, item.id):
        logger.debug(
            "Open alert already exists - skipping",
            extra={"project_id": run.project_id, "line_item_id": item.id},
        )
        return None

    section = catalog.section(item.section_id)
    phase = catalog.phase(item.phase_id)
    assignee = get_directory().resolve(item.responsible_role, project)
    now = _utcnow()
    project_name = project.name if project is not None else f"#{run.project_id}"

    alert = WorkflowAlert(
        run_id=run.id,
        project_id=run.project_id,
        line_item_id=item.id,
        responsible_role=item.responsible_role,
        assigned_to=assignee,
        status="ACTIVE",
        priority=_initial_priority(item),
        title=f"{item.name} - {project_name}",
        message=f"{item.name} is now ready to be completed for project {project_name}.",
        context={
            "workflow_kind": run.workflow_kind,
            "phase": phase.phase_type if phase else None,
            "phase_name": phase.name if phase else None,
            "section": section.name if section else None,
            "line_item": item.name,
        },
        due_date=now + timedelta(days=item.alert_lead_days),
        created_at=now,
    )
    db.session.add(alert)
    db.session.flush()

    NotificationService.for_alert(alert, "alert.created")
    logger.info(
        "Alert created: %s → user %s", alert.title, assignee,
        extra={"project_id": run.project_id, "run_id": run.id, "alert_id": alert.id,
               "line_item_id": item.id, "user_id": assignee},
    )
    return alert


def resolve_item_alerts(run, line_item_id: int) -> set:
    """RESOLVE every open alert of *line_item_id*.  Returns affected user ids."""
    affected = set()
    for alert in open_alerts_for_item(run.project_id, line_item_id):
        _resolve(alert)
        affected.add(alert.assigned_to)
    return affected


def _resolve(alert) -> None:
    alert.resolve()
    db.session.flush()
    NotificationService.for_alert(
        alert, "alert.resolved", severity="success",
        message=f"{alert.title} has been resolved.",
    )
    logger.info(
        "Alert resolved: %s", alert.title,
        extra={"project_id": alert.project_id, "alert_id": alert.id,
               "line_item_id": alert.line_item_id},
    )


def on_advance(run, resolved_for_item_id, new_current_item, *, catalog, project=None) -> set:
    """Retire the previous item's alert and ensure one for the new current item.

    Args:
        resolved_for_item_id: line item whose open alert is resolved (or None).
        new_current_item: CatalogLineItem now current, or None when complete.

    Returns:
        Set of user ids whose cached alert lists are affected.
    """
    affected = set()
    if resolved_for_item_id is not None:
        affected |= resolve_item_alerts(run, resolved_for_item_id)

    if new_current_item is not None:
        alert = create_alert(run, new_current_item, catalog=catalog, project=project)
        if alert is not None:
            affected.add(alert.assigned_to)

    affected.discard(None)
    return affected


def converge_alerts(run, position, *, catalog, project=None) -> tuple[list, set]:
    """Make the run's open alerts match *position* exactly.

    Resolves alerts for any other item, resolves duplicates for the current
    item (oldest one kept), and creates the current item's alert if missing.

    Returns:
        (corrections, affected_user_ids)
    """
    corrections = []
    affected = set()
    current_item_id = None if position.is_complete else position.line_item_id

    kept = None
    for alert in open_alerts_for_run(run.id):
        if alert.line_item_id == current_item_id and kept is None:
            kept = alert
            continue
        reason = "duplicate_alert" if alert.line_item_id == current_item_id else "stale_alert"
        corrections.append({
            "type": reason,
            "alert_id": alert.id,
            "line_item_id": alert.line_item_id,
        })
        affected.add(alert.assigned_to)
        _resolve(alert)

    if current_item_id is not None and kept is None:
        item = catalog.line_item(current_item_id)
        alert = create_alert(run, item, catalog=catalog, project=project)
        if alert is not None:
            corrections.append({
                "type": "missing_alert",
                "alert_id": alert.id,
                "line_item_id": current_item_id,
            })
            affected.add(alert.assigned_to)

    affected.discard(None)
    return corrections, affected


# ── Standalone operations ────────────────────────────────────────────────


def _commit():
    try:
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        logger.warning("Store unavailable while committing alert change: %s", exc)
        raise TransientStoreError() from exc


def get_alert(alert_id: int) -> WorkflowAlert:
    alert = db.session.get(WorkflowAlert, alert_id)
    if alert is None:
        raise NotFoundError(resource="WorkflowAlert", resource_id=alert_id)
    return alert


def reassign(alert_id: int, new_user_id: int, actor="system") -> WorkflowAlert:
    """Hand an open alert to another user.  Position and due date are unchanged."""
    alert = get_alert(alert_id)
    if alert.status == "RESOLVED":
        raise ValidationError(
            "Resolved alerts cannot be reassigned",
            details={"alert_id": alert_id, "status": alert.status},
        )
    if not get_directory().user_exists(new_user_id):
        raise NotFoundError(resource="User", resource_id=new_user_id)

    previous = alert.assigned_to
    if previous == new_user_id:
        return alert

    alert.assigned_to = new_user_id
    write_audit(
        entity_type="workflow_alert",
        entity_id=alert.id,
        action="alert.reassign",
        actor=actor,
        project_id=alert.project_id,
        diff={"assigned_to": {"old": previous, "new": new_user_id}},
    )
    NotificationService.for_alert(
        alert, "alert.reassigned",
        message=f"{alert.title} has been assigned to you.",
    )
    _commit()

    alert_cache.get_alert_cache().invalidate_project_related(alert.project_id, {previous, new_user_id})
    logger.info(
        "Alert %s reassigned %s → %s", alert.id, previous, new_user_id,
        extra={"project_id": alert.project_id, "alert_id": alert.id, "user_id": new_user_id},
    )
    return alert


def acknowledge(alert_id: int, user_id: int | None = None) -> WorkflowAlert:
    """ACTIVE → ACKNOWLEDGED.  Acknowledging twice is a no-op."""
    alert = get_alert(alert_id)
    if alert.status == "RESOLVED":
        raise ValidationError(
            "Resolved alerts cannot be acknowledged",
            details={"alert_id": alert_id, "status": alert.status},
        )
    if alert.status == "ACKNOWLEDGED":
        return alert

    alert.acknowledge()
    _commit()
    alert_cache.get_alert_cache().invalidate_project_related(alert.project_id, {alert.assigned_to})
    logger.info(
        "Alert %s acknowledged", alert.id,
        extra={"project_id": alert.project_id, "alert_id": alert.id, "user_id": user_id},
    )
    return alert


# ── Cached read paths ────────────────────────────────────────────────────


def alerts_for_user(user_id: int) -> list[dict]:
    def _load():
        rows = (
            WorkflowAlert.query
            .filter(WorkflowAlert.assigned_to == user_id,
                    WorkflowAlert.status.in_(OPEN_ALERT_STATUSES))
            .order_by(WorkflowAlert.due_date, WorkflowAlert.id)
            .all()
        )
        return [a.to_dict() for a in rows]

    return alert_cache.get_alert_cache().get_or_load(alert_cache.user_key(user_id), _load)


def alerts_for_project(project_id: int) -> list[dict]:
    def _load():
        rows = (
            WorkflowAlert.query
            .filter(WorkflowAlert.project_id == project_id,
                    WorkflowAlert.status.in_(OPEN_ALERT_STATUSES))
            .order_by(WorkflowAlert.due_date, WorkflowAlert.id)
            .all()
        )
        return [a.to_dict() for a in rows]

    return alert_cache.get_alert_cache().get_or_load(alert_cache.project_key(project_id), _load)


def alert_stats(project_id: int | None = None) -> dict:
    q = db.session.query(WorkflowAlert.status, func.count(WorkflowAlert.id))
    if project_id is not None:
        q = q.filter(WorkflowAlert.project_id == project_id)
    by_status = {s: 0 for s in ALERT_STATUSES}
    for status, n in q.group_by(WorkflowAlert.status).all():
        by_status[status] = n

    overdue_q = WorkflowAlert.query.filter(
        WorkflowAlert.status.in_(OPEN_ALERT_STATUSES),
        WorkflowAlert.due_date < _utcnow(),
    )
    if project_id is not None:
        overdue_q = overdue_q.filter(WorkflowAlert.project_id == project_id)

    prio_q = db.session.query(WorkflowAlert.priority, func.count(WorkflowAlert.id)).filter(
        WorkflowAlert.status.in_(OPEN_ALERT_STATUSES),
    )
    if project_id is not None:
        prio_q = prio_q.filter(WorkflowAlert.project_id == project_id)
    by_priority = {p: 0 for p in ALERT_PRIORITIES}
    for priority, n in prio_q.group_by(WorkflowAlert.priority).all():
        by_priority[priority] = n

    return {
        "project_id": project_id,
        "total": sum(by_status.values()),
        "by_status": by_status,
        "open": sum(by_status[s] for s in OPEN_ALERT_STATUSES),
        "open_by_priority": by_priority,
        "overdue": overdue_q.count(),
    }


# ── Overdue scan (scheduled) ─────────────────────────────────────────────


def scan_overdue(now: datetime | None = None) -> dict:
    """Escalate open alerts as their due date nears or passes.

    - Due within ``DUE_SOON``: raised to MEDIUM, assignee told once.
    - Past due: raised to HIGH; an ``alert.overdue`` notification when the
      alert crosses a new day mark in ``OVERDUE_INTERVAL_DAYS`` (several
      marks crossed between scans produce a single reminder).

    Priorities only go up.  Caller commits and invalidates cached lists
    when ``escalated`` is non-zero.
    """
    now = now or _utcnow()
    candidates = (
        WorkflowAlert.query
        .filter(
            WorkflowAlert.status.in_(OPEN_ALERT_STATUSES),
            WorkflowAlert.due_date < now + DUE_SOON,
        )
        .order_by(WorkflowAlert.due_date, WorkflowAlert.id)
        .all()
    )
    overdue = created = escalated = 0
    for alert in candidates:
        due = _aware(alert.due_date)
        if due >= now:
            if _raise_priority(alert, "MEDIUM"):
                escalated += 1
                NotificationService.for_alert(
                    alert, "alert.due_soon", message=f"{alert.title} is due soon.",
                )
                created += 1
            continue

        overdue += 1
        if _raise_priority(alert, "HIGH"):
            escalated += 1
        days_overdue = math.ceil((now - due) / timedelta(days=1))
        marks = sum(1 for d in OVERDUE_INTERVAL_DAYS if days_overdue >= d)
        if marks > (alert.overdue_marks or 0):
            alert.overdue_marks = marks
            NotificationService.for_alert(
                alert, "alert.overdue", severity="warning",
                message=f"{alert.title} is overdue by {days_overdue} day(s).",
            )
            created += 1

    return {"overdue": overdue, "escalated": escalated, "notifications_created": created}
