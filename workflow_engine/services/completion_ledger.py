"""
Completion ledger - append-only record of finished line items per run.

The ledger is the source of truth for workflow progress; trackers and
alerts are rebuilt from it.  Writes only ``flush``; the advancement
protocol owns the transaction.

A unique-key race on ``(run_id, line_item_id)`` surfaces as
``IntegrityError`` at flush.  The caller rolls back and retries, and the
retry observes the winner's row as ``already_completed``.
"""

from __future__ import annotations

import logging

from workflow_engine.core.exceptions import NotFoundError
from workflow_engine.models import db
from workflow_engine.models.audit import write_audit
from workflow_engine.models.workflow import CompletionRecord

logger = logging.getLogger(__name__)


def get_record(run_id: int, line_item_id: int) -> CompletionRecord | None:
    return CompletionRecord.query.filter_by(run_id=run_id, line_item_id=line_item_id).first()


def record_completion(run, line_item_id: int, user_id: int | None, notes: str | None = None) -> dict:
    """Insert a completion unless one exists.  First completion wins.

    Returns:
        {"already_completed": bool, "record": CompletionRecord}
    """
    existing = get_record(run.id, line_item_id)
    if existing is not None:
        logger.debug(
            "Line item already completed",
            extra={"run_id": run.id, "line_item_id": line_item_id},
        )
        return {"already_completed": True, "record": existing}

    record = CompletionRecord(
        run_id=run.id,
        project_id=run.project_id,
        line_item_id=line_item_id,
        completed_by=user_id,
        notes=notes,
    )
    db.session.add(record)
    db.session.flush()
    logger.info(
        "Completion recorded: run=%s item=%s by=%s", run.id, line_item_id, user_id,
        extra={"project_id": run.project_id, "run_id": run.id,
               "line_item_id": line_item_id, "user_id": user_id},
    )
    return {"already_completed": False, "record": record}


def completed_set(run_id: int) -> frozenset:
    rows = (
        db.session.query(CompletionRecord.line_item_id)
        .filter(CompletionRecord.run_id == run_id)
        .all()
    )
    return frozenset(r[0] for r in rows)


def records(run_id: int) -> list[CompletionRecord]:
    """Completion history in the order it happened."""
    return (
        CompletionRecord.query
        .filter_by(run_id=run_id)
        .order_by(CompletionRecord.completed_at, CompletionRecord.id)
        .all()
    )


def count(run_id: int) -> int:
    return CompletionRecord.query.filter_by(run_id=run_id).count()


def reset_completion(run, line_item_id: int, actor="system") -> dict:
    """Administrative un-complete.  The caller must reconcile the run afterwards."""
    record = get_record(run.id, line_item_id)
    if record is None:
        raise NotFoundError(resource="CompletionRecord", resource_id=line_item_id)

    snapshot = record.to_dict()
    db.session.delete(record)
    write_audit(
        entity_type="workflow_run",
        entity_id=run.id,
        action="workflow.completion_reset",
        actor=actor,
        project_id=run.project_id,
        diff={"removed": snapshot},
    )
    logger.warning(
        "Completion reset: run=%s item=%s by %s", run.id, line_item_id, actor,
        extra={"project_id": run.project_id, "run_id": run.id, "line_item_id": line_item_id},
    )
    return snapshot
