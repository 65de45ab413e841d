"""
Workflow Progression & Alert Engine
Workflow state models - the three tables this engine owns, plus the run.

Models:
    - WorkflowRun:            one workflow instance of a given kind for a project
    - CompletionRecord:       append-only completion ledger (source of truth)
    - ProjectWorkflowTracker: cached current position of a run (derived)
    - WorkflowAlert:          task alert for the tracker's current line item (side effect)

Ownership:
    CompletionRecord is authoritative.  The tracker and the alerts can be
    rebuilt from it at any time (see WorkflowService.reconcile).
"""

from datetime import datetime, timezone

from workflow_engine.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ALERT_STATUSES = ("ACTIVE", "ACKNOWLEDGED", "RESOLVED")
OPEN_ALERT_STATUSES = ("ACTIVE", "ACKNOWLEDGED")
ALERT_PRIORITIES = ("LOW", "MEDIUM", "HIGH")  # ascending; only ever raised


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class WorkflowRun(db.Model):
    """A project's run through one workflow kind.

    A project may run several kinds at once; each run owns exactly one
    tracker and its own completion ledger.
    """

    __tablename__ = "workflow_runs"
    __table_args__ = (
        db.UniqueConstraint("project_id", "workflow_kind", name="uq_run_project_kind"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workflow_kind = db.Column(db.String(40), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    tracker = db.relationship(
        "ProjectWorkflowTracker", back_populates="run", uselist=False, cascade="all, delete-orphan",
    )
    project = db.relationship("Project")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "workflow_kind": self.workflow_kind,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<WorkflowRun {self.id}: project={self.project_id} kind={self.workflow_kind}>"


class CompletionRecord(db.Model):
    """
    "Line item X completed for run R by user U at time T".

    Business rules:
    - (run_id, line_item_id) is unique - re-completing is a no-op.
    - First completion wins; completed_at is never overwritten.
    - Rows are deleted only by the administrative reset operation.
    """

    __tablename__ = "workflow_completions"
    __table_args__ = (
        db.UniqueConstraint("run_id", "line_item_id", name="uq_completion_run_item"),
        db.Index("ix_completion_project", "project_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.Integer, db.ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(db.Integer, nullable=False)
    line_item_id = db.Column(
        db.Integer, db.ForeignKey("workflow_line_items.id", ondelete="RESTRICT"), nullable=False,
    )
    completed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "project_id": self.project_id,
            "line_item_id": self.line_item_id,
            "completed_by": self.completed_by,
            "completed_at": _iso(self.completed_at),
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<CompletionRecord run={self.run_id} item={self.line_item_id}>"


class ProjectWorkflowTracker(db.Model):
    """
    Cached position of a run.

    Pointer fields are all-or-nothing: a live tracker has phase, section and
    line item set and mutually consistent; a terminal tracker has all three
    NULL and ``is_complete`` set.

    ``version`` is the optimistic-lock column: every UPDATE is issued as
    ``... WHERE id = :id AND version = :expected`` and a lost race surfaces
    as ``StaleDataError`` on flush.
    """

    __tablename__ = "project_workflow_trackers"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.Integer, db.ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    project_id = db.Column(db.Integer, nullable=False, index=True)

    current_phase_id = db.Column(
        db.Integer, db.ForeignKey("workflow_phases.id", ondelete="SET NULL"), nullable=True,
    )
    current_section_id = db.Column(
        db.Integer, db.ForeignKey("workflow_sections.id", ondelete="SET NULL"), nullable=True,
    )
    current_line_item_id = db.Column(
        db.Integer, db.ForeignKey("workflow_line_items.id", ondelete="SET NULL"), nullable=True,
    )
    last_completed_item_id = db.Column(
        db.Integer, db.ForeignKey("workflow_line_items.id", ondelete="SET NULL"), nullable=True,
    )
    is_complete = db.Column(db.Boolean, nullable=False, default=False)

    version = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    run = db.relationship("WorkflowRun", back_populates="tracker")

    def pointer(self) -> tuple:
        """(phase, section, line item) ids - compared against resolver output."""
        return (self.current_phase_id, self.current_section_id, self.current_line_item_id)

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "project_id": self.project_id,
            "current_phase_id": self.current_phase_id,
            "current_section_id": self.current_section_id,
            "current_line_item_id": self.current_line_item_id,
            "last_completed_item_id": self.last_completed_item_id,
            "is_complete": self.is_complete,
            "version": self.version,
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProjectWorkflowTracker run={self.run_id} item={self.current_line_item_id}>"


class WorkflowAlert(db.Model):
    """
    Task alert for the line item a run is currently waiting on.

    Business rules:
    - At most one ACTIVE alert per (project_id, line_item_id); the partial
      unique index backs up the conditional insert in AlertManager.
    - ACKNOWLEDGED still counts as open: the item is still current.
    - Completing or superseding the item moves the alert to RESOLVED.
    """

    __tablename__ = "workflow_alerts"
    __table_args__ = (
        db.Index(
            "uq_workflow_alert_active_item", "project_id", "line_item_id",
            unique=True,
            postgresql_where=db.text("status = 'ACTIVE'"),
            sqlite_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_workflow_alert_assignee_status", "assigned_to", "status"),
        db.Index("ix_workflow_alert_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.Integer, db.ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(db.Integer, nullable=False)
    line_item_id = db.Column(
        db.Integer, db.ForeignKey("workflow_line_items.id", ondelete="CASCADE"), nullable=False,
    )
    responsible_role = db.Column(db.String(30), nullable=False)
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default="ACTIVE",
                       comment="ACTIVE | ACKNOWLEDGED | RESOLVED")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM",
                         comment="LOW | MEDIUM | HIGH - raised by the overdue scan")
    overdue_marks = db.Column(db.Integer, nullable=False, default=0,
                              comment="overdue reminder day marks already notified")
    context = db.Column(db.JSON, default=dict,
                        comment="phase / section / item names at creation time")

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES

    def resolve(self):
        self.status = "RESOLVED"
        self.resolved_at = _utcnow()

    def acknowledge(self):
        self.status = "ACKNOWLEDGED"
        self.acknowledged_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "project_id": self.project_id,
            "line_item_id": self.line_item_id,
            "responsible_role": self.responsible_role,
            "assigned_to": self.assigned_to,
            "status": self.status,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "overdue_marks": self.overdue_marks or 0,
            "context": self.context or {},
            "due_date": _iso(self.due_date),
            "created_at": _iso(self.created_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved_at": _iso(self.resolved_at),
        }

    def __repr__(self):
        return f"<WorkflowAlert {self.id}: project={self.project_id} item={self.line_item_id} [{self.status}]>"
