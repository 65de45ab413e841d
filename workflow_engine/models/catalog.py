"""
Workflow Progression & Alert Engine
Workflow catalog models - static reference data.

Models:
    - WorkflowPhase:    top level of the hierarchy (LEAD → … → COMPLETION)
    - WorkflowSection:  ordered group of line items inside a phase
    - WorkflowLineItem: single unit of work, owned by a responsible role

The three tables are read-mostly configuration.  They are loaded once into
an immutable ``WorkflowCatalog`` (see services/catalog.py); request paths
never walk these tables directly.
"""

from datetime import datetime, timezone

from workflow_engine.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PHASE_TYPES = (
    "LEAD",
    "PROSPECT",
    "APPROVED",
    "EXECUTION",
    "SECOND_SUPPLEMENT",
    "COMPLETION",
)

RESPONSIBLE_ROLES = frozenset({
    "OFFICE",
    "ADMINISTRATION",
    "PROJECT_MANAGER",
    "FIELD_DIRECTOR",
    "ROOF_SUPERVISOR",
})

DEFAULT_WORKFLOW_KIND = "ROOFING"


class WorkflowPhase(db.Model):
    """One phase of a workflow kind. ``display_order`` is unique per kind."""

    __tablename__ = "workflow_phases"
    __table_args__ = (
        db.UniqueConstraint("workflow_kind", "display_order", name="uq_phase_kind_order"),
        db.UniqueConstraint("workflow_kind", "phase_type", name="uq_phase_kind_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_kind = db.Column(db.String(40), nullable=False, default=DEFAULT_WORKFLOW_KIND, index=True)
    phase_type = db.Column(db.String(30), nullable=False, comment="LEAD | PROSPECT | APPROVED | ...")
    name = db.Column(db.String(120), nullable=False)
    display_order = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    sections = db.relationship(
        "WorkflowSection", backref="phase", lazy="select",
        order_by="WorkflowSection.display_order", cascade="all, delete-orphan",
    )

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "workflow_kind": self.workflow_kind,
            "phase_type": self.phase_type,
            "name": self.name,
            "display_order": self.display_order,
        }
        if include_children:
            d["sections"] = [s.to_dict(include_children=True) for s in self.sections]
        return d

    def __repr__(self):
        return f"<WorkflowPhase {self.id}: {self.workflow_kind}/{self.phase_type}>"


class WorkflowSection(db.Model):
    """Section inside a phase. ``display_order`` is unique per phase."""

    __tablename__ = "workflow_sections"
    __table_args__ = (
        db.UniqueConstraint("phase_id", "display_order", name="uq_section_phase_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(
        db.Integer, db.ForeignKey("workflow_phases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    display_order = db.Column(db.Integer, nullable=False)

    line_items = db.relationship(
        "WorkflowLineItem", backref="section", lazy="select",
        order_by="WorkflowLineItem.display_order", cascade="all, delete-orphan",
    )

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "phase_id": self.phase_id,
            "name": self.name,
            "display_order": self.display_order,
        }
        if include_children:
            d["line_items"] = [li.to_dict() for li in self.line_items]
        return d

    def __repr__(self):
        return f"<WorkflowSection {self.id}: {self.name}>"


class WorkflowLineItem(db.Model):
    """Single checklist item. ``display_order`` is unique per section."""

    __tablename__ = "workflow_line_items"
    __table_args__ = (
        db.UniqueConstraint("section_id", "display_order", name="uq_line_item_section_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer, db.ForeignKey("workflow_sections.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    display_order = db.Column(db.Integer, nullable=False)
    responsible_role = db.Column(
        db.String(30), nullable=False, default="OFFICE",
        comment="OFFICE | ADMINISTRATION | PROJECT_MANAGER | FIELD_DIRECTOR | ROOF_SUPERVISOR",
    )
    alert_lead_days = db.Column(db.Integer, nullable=False, default=1,
                                comment="Days between alert creation and due date")

    def to_dict(self):
        return {
            "id": self.id,
            "section_id": self.section_id,
            "name": self.name,
            "display_order": self.display_order,
            "responsible_role": self.responsible_role,
            "alert_lead_days": self.alert_lead_days,
        }

    def __repr__(self):
        return f"<WorkflowLineItem {self.id}: {self.name[:40]}>"
