"""
Workflow Progression & Alert Engine
Workflow service - advancement protocol, reconciliation and read queries.

Data flow for a completion:

    complete_line_item
        → completion_ledger.record_completion           (source of truth)
        → position_resolver.resolve                     (pure)
        → ProjectWorkflowTracker update                 (cache, version-checked)
        → alert_manager.on_advance + converge_alerts    (side effect)
        → commit
        → alert cache invalidation                      (after commit)

Ledger write, tracker write and alert changes share one transaction per
attempt; any failure rolls all of them back, so callers never observe a
half-advanced run.

Serialization per run:
    - a process-local striped lock keyed by run id
    - optimistic compare-and-swap on ``tracker.version`` across processes

Lost races (StaleDataError / IntegrityError) are retried with fresh state up
to WORKFLOW_MAX_RETRIES times, then surface as ConcurrentModificationError.
Store outages (OperationalError) are retried with exponential backoff, then
surface as TransientStoreError.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from workflow_engine.core.exceptions import (
    ConcurrentModificationError,
    InvariantViolation,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from workflow_engine.models import db
from workflow_engine.models.audit import write_audit
from workflow_engine.models.catalog import PHASE_TYPES
from workflow_engine.models.project import Project
from workflow_engine.models.workflow import (
    OPEN_ALERT_STATUSES,
    CompletionRecord,
    ProjectWorkflowTracker,
    WorkflowAlert,
    WorkflowRun,
)
from workflow_engine.services import alert_cache, alert_manager, completion_ledger as ledger
from workflow_engine.services.catalog import get_catalog, known_kinds
from workflow_engine.services.position_resolver import (
    COMPLETE,
    describe,
    position_from_pointer,
    progress,
    resolve,
)
from workflow_engine.services.role_directory import get_directory

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Per-run serialization
# ═══════════════════════════════════════════════════════════════════════════

RUN_LOCK_STRIPES = 64
_run_locks = tuple(threading.RLock() for _ in range(RUN_LOCK_STRIPES))


def _run_lock(run_id: int) -> threading.RLock:
    """Striped lock for *run_id*; runs sharing a stripe just serialize."""
    return _run_locks[run_id % RUN_LOCK_STRIPES]


def _with_retries(run_id: int, fn):
    """Run *fn* under the run lock, retrying lost races and store outages."""
    max_retries = current_app.config.get("WORKFLOW_MAX_RETRIES", 3)
    backoff = current_app.config.get("WORKFLOW_RETRY_BACKOFF_SECONDS", 0.05)

    with _run_lock(run_id):
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except (StaleDataError, IntegrityError, ConcurrentModificationError) as exc:
                db.session.rollback()
                if attempt > max_retries:
                    logger.error(
                        "Run %s: giving up after %d conflicting attempts", run_id, attempt,
                        extra={"run_id": run_id},
                    )
                    raise ConcurrentModificationError(run_id=run_id, attempts=attempt) from exc
                logger.warning(
                    "Run %s: concurrent modification (attempt %d) - retrying: %s",
                    run_id, attempt, exc, extra={"run_id": run_id},
                )
            except OperationalError as exc:
                db.session.rollback()
                if attempt > max_retries:
                    logger.error(
                        "Run %s: store unavailable after %d attempts", run_id, attempt,
                        extra={"run_id": run_id},
                    )
                    raise TransientStoreError() from exc
                delay = backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Run %s: store error (attempt %d), retrying in %.2fs: %s",
                    run_id, attempt, delay, exc, extra={"run_id": run_id},
                )
                if delay:
                    time.sleep(delay)


# ═══════════════════════════════════════════════════════════════════════════
#  Lookups
# ═══════════════════════════════════════════════════════════════════════════


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def list_runs(project_id: int) -> list[WorkflowRun]:
    return WorkflowRun.query.filter_by(project_id=project_id).order_by(WorkflowRun.id).all()


def get_run(project_id: int, workflow_kind: str | None = None) -> WorkflowRun:
    """Resolve the run addressed by (project, optional kind).

    Without a kind, a project with exactly one run uses it; several runs
    make the kind mandatory.
    """
    get_project(project_id)
    if workflow_kind:
        run = WorkflowRun.query.filter_by(project_id=project_id, workflow_kind=workflow_kind).first()
        if run is None:
            raise NotFoundError(resource="WorkflowRun", resource_id=f"{project_id}/{workflow_kind}")
        return run

    runs = list_runs(project_id)
    if not runs:
        raise NotFoundError(resource="WorkflowRun", resource_id=project_id)
    if len(runs) > 1:
        raise ValidationError(
            "Project has several workflow runs; workflow_kind is required",
            details={"workflow_kinds": [r.workflow_kind for r in runs]},
        )
    return runs[0]


def _catalog_item(catalog, line_item_id: int):
    item = catalog.line_item(line_item_id)
    if item is None:
        raise NotFoundError(resource="WorkflowLineItem", resource_id=line_item_id)
    return item


def _stored_position(tracker, catalog):
    if tracker is None:
        return None
    return position_from_pointer(catalog, *tracker.pointer(), is_complete=tracker.is_complete)


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  Tracker writes
# ═══════════════════════════════════════════════════════════════════════════


def _ensure_tracker(run) -> tuple[ProjectWorkflowTracker, bool]:
    if run.tracker is not None:
        return run.tracker, False
    tracker = ProjectWorkflowTracker(project_id=run.project_id, is_complete=False)
    run.tracker = tracker
    return tracker, True


def _apply_position(tracker, position, last_completed_item_id) -> list[dict]:
    """Overwrite tracker fields that differ from *position*.

    Returns the field-level changes; an empty list means nothing was written.
    """
    target = {
        "current_phase_id": None if position.is_complete else position.phase_id,
        "current_section_id": None if position.is_complete else position.section_id,
        "current_line_item_id": None if position.is_complete else position.line_item_id,
        "last_completed_item_id": last_completed_item_id,
        "is_complete": position.is_complete,
    }
    changes = []
    for field, new in target.items():
        old = getattr(tracker, field)
        if old != new:
            setattr(tracker, field, new)
            changes.append({"type": "tracker_field", "field": field, "old": old, "new": new})
    if changes:
        tracker.updated_at = _utcnow()
    return changes


def _last_completed_item_id(run_id: int) -> int | None:
    row = (
        CompletionRecord.query
        .filter_by(run_id=run_id)
        .order_by(CompletionRecord.completed_at.desc(), CompletionRecord.id.desc())
        .first()
    )
    return row.line_item_id if row else None


def _converge(run, catalog, *, last_completed_item_id=None) -> tuple[object, list, set]:
    """Overwrite tracker and alerts with the resolver's output (no commit)."""
    tracker, created = _ensure_tracker(run)
    completed = ledger.completed_set(run.id)
    position = resolve(catalog, completed)
    if last_completed_item_id is None:
        last_completed_item_id = _last_completed_item_id(run.id)

    corrections = []
    if created:
        corrections.append({"type": "missing_tracker"})
    corrections.extend(_apply_position(tracker, position, last_completed_item_id))
    if corrections:
        db.session.flush()

    alert_corrections, affected = alert_manager.converge_alerts(
        run, position, catalog=catalog, project=run.project,
    )
    corrections.extend(alert_corrections)
    return position, corrections, affected


def _invalidate(project_id: int, user_ids) -> None:
    alert_cache.get_alert_cache().invalidate_project_related(project_id, user_ids)


# ═══════════════════════════════════════════════════════════════════════════
#  Initialization
# ═══════════════════════════════════════════════════════════════════════════


def initialize_workflow(project_id: int, workflow_kind: str | None = None, actor="system") -> dict:
    """Create the run, its tracker at the first line item, and the first alert.

    Idempotent: an existing run for (project, kind) is returned unchanged.
    """
    workflow_kind = workflow_kind or current_app.config.get("WORKFLOW_DEFAULT_KIND", "ROOFING")
    project = get_project(project_id)

    existing = WorkflowRun.query.filter_by(project_id=project_id, workflow_kind=workflow_kind).first()
    if existing is not None:
        catalog = get_catalog(workflow_kind)
        position = _stored_position(existing.tracker, catalog) or resolve(
            catalog, ledger.completed_set(existing.id),
        )
        return {"run": existing.to_dict(), "created": False, "position": describe(catalog, position)}

    if workflow_kind not in known_kinds():
        raise NotFoundError(resource="WorkflowCatalog", resource_id=workflow_kind)
    catalog = get_catalog(workflow_kind)

    run = WorkflowRun(project_id=project_id, workflow_kind=workflow_kind)
    db.session.add(run)
    db.session.flush()

    tracker = ProjectWorkflowTracker(project_id=project_id, is_complete=False)
    run.tracker = tracker
    position = resolve(catalog, frozenset())
    _apply_position(tracker, position, None)

    new_item = None if position is COMPLETE else catalog.line_item(position.line_item_id)
    affected = alert_manager.on_advance(run, None, new_item, catalog=catalog, project=project)
    write_audit(
        entity_type="workflow_run",
        entity_id=run.id,
        action="workflow.initialize",
        actor=actor,
        project_id=project_id,
        diff={"workflow_kind": workflow_kind, "position": position.to_dict()},
    )

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if WorkflowRun.query.filter_by(project_id=project_id, workflow_kind=workflow_kind).first() is None:
            raise ConcurrentModificationError(attempts=1) from exc
        logger.info("Concurrent initialization for project %s/%s - returning winner",
                    project_id, workflow_kind, extra={"project_id": project_id})
        return initialize_workflow(project_id, workflow_kind, actor)
    except OperationalError as exc:
        db.session.rollback()
        raise TransientStoreError() from exc

    _invalidate(project_id, affected)
    logger.info(
        "Workflow initialized: project=%s kind=%s run=%s", project_id, workflow_kind, run.id,
        extra={"project_id": project_id, "run_id": run.id},
    )
    return {"run": run.to_dict(), "created": True, "position": describe(catalog, position)}


# ═══════════════════════════════════════════════════════════════════════════
#  Advancement protocol
# ═══════════════════════════════════════════════════════════════════════════


def complete_line_item(
    project_id: int,
    line_item_id: int,
    user_id: int,
    workflow_kind: str | None = None,
    notes: str | None = None,
) -> dict:
    """Record a completion and advance the run's position.

    Out-of-order completion is accepted: the ledger records it, and the
    resolver keeps the run on the first incomplete item.

    Returns:
        {"position", "previous_position", "already_completed", "is_complete",
         "run_id", "completion"}
    """
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    item = _catalog_item(catalog, line_item_id)
    if not get_directory().user_exists(user_id):
        raise NotFoundError(resource="User", resource_id=user_id)

    run_id = run.id
    return _with_retries(run_id, lambda: _complete_once(run_id, item, user_id, notes, catalog))


def _complete_once(run_id, item, user_id, notes, catalog) -> dict:
    run = db.session.get(WorkflowRun, run_id)
    tracker, _created = _ensure_tracker(run)
    previous = _stored_position(tracker, catalog)
    previous_item_id = tracker.current_line_item_id

    outcome = ledger.record_completion(run, item.id, user_id, notes)
    position = resolve(catalog, ledger.completed_set(run.id))

    if outcome["already_completed"]:
        affected = set()
        if previous != position:
            logger.warning(
                "Run %s: tracker disagrees with ledger on replay - converging", run.id,
                extra={"project_id": run.project_id, "run_id": run.id, "line_item_id": item.id},
            )
            position, corrections, affected = _converge(run, catalog)
            if corrections:
                write_audit(
                    entity_type="workflow_run",
                    entity_id=run.id,
                    action="workflow.reconcile",
                    project_id=run.project_id,
                    diff={"trigger": "replay", "corrections": corrections},
                )
            db.session.commit()
            _invalidate(run.project_id, affected)
        return _completion_result(run, catalog, position, previous, outcome, already_completed=True)

    _apply_position(tracker, position, item.id)
    db.session.flush()

    new_item_id = None if position is COMPLETE else position.line_item_id
    new_item = catalog.line_item(new_item_id) if new_item_id is not None else None
    resolved_for = previous_item_id if previous_item_id != new_item_id else None
    affected = alert_manager.on_advance(run, resolved_for, new_item, catalog=catalog, project=run.project)
    # Any other open alert off the new position (out-of-order completion,
    # earlier drift) is retired here too.
    stray, swept = alert_manager.converge_alerts(run, position, catalog=catalog, project=run.project)
    affected |= swept
    if stray:
        logger.warning(
            "Run %s: retired %d alert(s) off the current position", run.id, len(stray),
            extra={"project_id": run.project_id, "run_id": run.id, "line_item_id": item.id},
        )

    db.session.commit()
    _invalidate(run.project_id, affected)

    logger.info(
        "Line item %s completed: run=%s now at %s", item.id, run.id,
        "COMPLETE" if position is COMPLETE else position.line_item_id,
        extra={"project_id": run.project_id, "run_id": run.id,
               "line_item_id": item.id, "user_id": user_id},
    )
    return _completion_result(run, catalog, position, previous, outcome, already_completed=False)


def _completion_result(run, catalog, position, previous, outcome, *, already_completed) -> dict:
    return {
        "run_id": run.id,
        "position": describe(catalog, position),
        "previous_position": describe(catalog, previous) if previous is not None else None,
        "already_completed": already_completed,
        "is_complete": position is COMPLETE,
        "completion": outcome["record"].to_dict(),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Administrative reset
# ═══════════════════════════════════════════════════════════════════════════


def reset_line_item(project_id: int, line_item_id: int, actor="system",
                    workflow_kind: str | None = None) -> dict:
    """Remove a completion, then reconcile the run in the same transaction."""
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    _catalog_item(catalog, line_item_id)
    run_id = run.id

    def _reset():
        target = db.session.get(WorkflowRun, run_id)
        removed = ledger.reset_completion(target, line_item_id, actor)
        result = _reconcile_once(run_id, catalog, actor, trigger="completion_reset")
        result["removed"] = removed
        return result

    return _with_retries(run_id, _reset)


# ═══════════════════════════════════════════════════════════════════════════
#  Reconciliation
# ═══════════════════════════════════════════════════════════════════════════


def reconcile(project_id: int, workflow_kind: str | None = None, actor="system") -> dict:
    """Overwrite tracker and alerts with what the ledger implies.

    A converged run produces no writes, so a second call reports
    ``changed=False``.
    """
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    run_id = run.id
    return _with_retries(run_id, lambda: _reconcile_once(run_id, catalog, actor))


def _reconcile_once(run_id, catalog, actor, trigger="reconcile") -> dict:
    run = db.session.get(WorkflowRun, run_id)
    for violation in _tracker_violations(run, run.tracker, catalog):
        logger.warning("Reconcile found %s", violation, extra={"run_id": run_id})

    position, corrections, affected = _converge(run, catalog)
    if corrections:
        write_audit(
            entity_type="workflow_run",
            entity_id=run.id,
            action="workflow.reconcile",
            actor=actor,
            project_id=run.project_id,
            diff={"trigger": trigger, "corrections": corrections},
        )
    db.session.commit()
    if corrections:
        _invalidate(run.project_id, affected)
        logger.warning(
            "Run %s reconciled with %d correction(s)", run.id, len(corrections),
            extra={"project_id": run.project_id, "run_id": run.id},
        )
    return {
        "run_id": run.id,
        "project_id": run.project_id,
        "workflow_kind": run.workflow_kind,
        "changed": bool(corrections),
        "corrections": corrections,
        "position": describe(catalog, position),
    }


def reconcile_all(actor="system") -> dict:
    """Reconcile every run.  A failing run is logged and counted, not fatal."""
    summary = {"runs": 0, "changed": 0, "unchanged": 0, "failed": 0, "errors": []}
    targets = [
        (r.id, r.project_id, r.workflow_kind)
        for r in WorkflowRun.query.order_by(WorkflowRun.id).all()
    ]
    for run_id, project_id, kind in targets:
        summary["runs"] += 1
        try:
            result = reconcile(project_id, kind, actor=actor)
        except Exception as exc:
            db.session.rollback()
            summary["failed"] += 1
            summary["errors"].append({"run_id": run_id, "error": str(exc)})
            logger.exception("Reconcile failed for run %s", run_id, extra={"run_id": run_id})
            continue
        summary["changed" if result["changed"] else "unchanged"] += 1

    logger.info("Reconcile-all: %s", {k: v for k, v in summary.items() if k != "errors"})
    return summary


# ═══════════════════════════════════════════════════════════════════════════
#  Integrity check (report-only)
# ═══════════════════════════════════════════════════════════════════════════


def _tracker_violations(run, tracker, catalog) -> list[InvariantViolation]:
    if tracker is None:
        return [InvariantViolation("missing_tracker", run.id)]

    violations = []
    phase_id, section_id, item_id = tracker.pointer()

    if item_id is not None:
        item = catalog.line_item(item_id)
        if item is None:
            violations.append(InvariantViolation(
                "unknown_line_item", run.id, {"current_line_item_id": item_id}))
        elif item.section_id != section_id:
            violations.append(InvariantViolation(
                "line_item_section_mismatch", run.id,
                {"current_line_item_id": item_id, "item_section_id": item.section_id,
                 "current_section_id": section_id}))

    if section_id is not None:
        section = catalog.section(section_id)
        if section is None:
            violations.append(InvariantViolation(
                "unknown_section", run.id, {"current_section_id": section_id}))
        elif section.phase_id != phase_id:
            violations.append(InvariantViolation(
                "section_phase_mismatch", run.id,
                {"current_section_id": section_id, "section_phase_id": section.phase_id,
                 "current_phase_id": phase_id}))

    project = run.project
    if not tracker.is_complete and project is not None and project.is_active:
        missing = [
            name for name, value in (
                ("current_phase_id", phase_id),
                ("current_section_id", section_id),
                ("current_line_item_id", item_id),
            ) if value is None
        ]
        if missing:
            violations.append(InvariantViolation(
                "null_pointer_on_active_project", run.id, {"missing": missing}))

    if tracker.is_complete and any(v is not None for v in (phase_id, section_id, item_id)):
        violations.append(InvariantViolation(
            "terminal_tracker_with_pointer", run.id,
            {"pointer": [phase_id, section_id, item_id]}))

    expected = resolve(catalog, ledger.completed_set(run.id))
    if expected.pointer() != (phase_id, section_id, item_id) or expected.is_complete != tracker.is_complete:
        violations.append(InvariantViolation(
            "position_drift", run.id,
            {"stored": [phase_id, section_id, item_id], "expected": list(expected.pointer())}))

    return violations


def check_integrity() -> dict:
    """Validate every run's tracker against the catalog and the ledger.

    Violations are reported, never fixed here; ``reconcile`` fixes them.
    """
    report = {"checked": 0, "ok": True, "violations": []}
    for run in WorkflowRun.query.order_by(WorkflowRun.id).all():
        report["checked"] += 1
        catalog = get_catalog(run.workflow_kind)
        for violation in _tracker_violations(run, run.tracker, catalog):
            logger.warning(
                "Integrity violation: %s", violation,
                extra={"project_id": run.project_id, "run_id": run.id},
            )
            entry = violation.to_dict()
            entry["project_id"] = run.project_id
            report["violations"].append(entry)

    report["ok"] = not report["violations"]
    logger.info("Integrity check: %d run(s), %d violation(s)",
                report["checked"], len(report["violations"]))
    return report


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════


def get_current_position(project_id: int, workflow_kind: str | None = None) -> dict:
    """Tracker read; falls back to the resolver when the tracker is unusable."""
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    position = _stored_position(run.tracker, catalog)
    if position is None:
        logger.warning(
            "Run %s: tracker unusable, answering from the ledger", run.id,
            extra={"project_id": project_id, "run_id": run.id},
        )
        position = resolve(catalog, ledger.completed_set(run.id))
    result = describe(catalog, position)
    result["run_id"] = run.id
    result["workflow_kind"] = run.workflow_kind
    return result


def _phase_items(catalog, phase_type: str):
    if phase_type not in PHASE_TYPES:
        raise ValidationError(
            f"Unknown phase_type {phase_type!r}", details={"allowed": list(PHASE_TYPES)},
        )
    if catalog.phase_by_type(phase_type) is None:
        raise NotFoundError(resource="WorkflowPhase", resource_id=phase_type)
    return catalog.items_in_phase(phase_type)


def get_incomplete_items(project_id: int, phase_type: str, workflow_kind: str | None = None) -> list[dict]:
    """Ordered line items of *phase_type* that the ledger does not cover."""
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    items = _phase_items(catalog, phase_type)
    completed = ledger.completed_set(run.id)
    return [li.to_dict() for li in items if li.id not in completed]


def can_advance_phase(project_id: int, phase_type: str, workflow_kind: str | None = None) -> dict:
    incomplete = get_incomplete_items(project_id, phase_type, workflow_kind)
    return {
        "phase_type": phase_type,
        "ready": not incomplete,
        "blocker": incomplete[0] if incomplete else None,
        "remaining": len(incomplete),
    }


def get_history(project_id: int, workflow_kind: str | None = None) -> list[dict]:
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    history = []
    for rec in ledger.records(run.id):
        d = rec.to_dict()
        item = catalog.line_item(rec.line_item_id)
        d["line_item_name"] = item.name if item else None
        history.append(d)
    return history


def get_workflow_status(project_id: int, workflow_kind: str | None = None) -> dict:
    """Position plus presentation projections (progress, per-phase readiness)."""
    run = get_run(project_id, workflow_kind)
    catalog = get_catalog(run.workflow_kind)
    completed = ledger.completed_set(run.id)

    position = _stored_position(run.tracker, catalog) or resolve(catalog, completed)
    phases = []
    for phase in catalog.phases:
        items = catalog.items_in_phase(phase.phase_type)
        done = sum(1 for li in items if li.id in completed)
        phases.append({
            "phase_id": phase.id,
            "phase_type": phase.phase_type,
            "name": phase.name,
            "completed": done,
            "total": len(items),
            "ready": done == len(items),
        })

    open_alerts = WorkflowAlert.query.filter(
        WorkflowAlert.run_id == run.id,
        WorkflowAlert.status.in_(OPEN_ALERT_STATUSES),
    ).count()

    return {
        "run": run.to_dict(),
        "project": run.project.to_dict() if run.project else None,
        "position": describe(catalog, position),
        "tracker": run.tracker.to_dict() if run.tracker else None,
        "progress": progress(catalog, completed),
        "phases": phases,
        "completions": len(completed),
        "open_alerts": open_alerts,
    }
