"""
Workflow Progression & Alert Engine
Audit model.

Models:
    - AuditLog: immutable, append-only trail for administrative workflow events
      (completion resets, reconcile corrections, alert reassignment).
"""

import json
from datetime import datetime, timezone

from workflow_engine.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "workflow.initialize",
    "workflow.completion_reset",
    "workflow.reconcile",
    "alert.reassign",
}


class AuditLog(db.Model):
    """
    Immutable audit trail.

    One row per action.  ``diff_json`` carries an old→new snapshot.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="workflow_run | workflow_alert | …",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    # What happened
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor="system",
    project_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=str(actor),
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
