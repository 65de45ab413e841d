"""
Project and user-directory models.

These rows belong to the surrounding construction-management application;
the workflow engine only reads them:

    - Project:        status / archived flag (integrity checks) and the
                      project manager (alert assignment fallback)
    - User:           existence check for completed_by / assigned_to
    - RoleAssignment: responsible-role → user mapping
"""

from datetime import datetime, timezone

from workflow_engine.models import db

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"PENDING", "IN_PROGRESS", "COMPLETED", "ON_HOLD", "CANCELLED"}
ACTIVE_PROJECT_STATUSES = frozenset({"PENDING", "IN_PROGRESS"})

ROLE_TYPES = frozenset({
    "OFFICE_STAFF",
    "ADMINISTRATION",
    "PROJECT_MANAGER",
    "FIELD_DIRECTOR",
})


class Project(db.Model):
    """Construction project (owned by the host application)."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    project_number = db.Column(db.String(50), nullable=True, unique=True)
    status = db.Column(db.String(30), nullable=False, default="PENDING",
                       comment="Presentation status - never read by the position resolver")
    archived = db.Column(db.Boolean, nullable=False, default=False)
    project_manager_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project_manager = db.relationship("User", foreign_keys=[project_manager_id])

    @property
    def is_active(self) -> bool:
        return not self.archived and self.status in ACTIVE_PROJECT_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "project_number": self.project_number,
            "status": self.status,
            "archived": self.archived,
            "project_manager_id": self.project_manager_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class User(db.Model):
    """Directory entry.  Authentication lives elsewhere."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class RoleAssignment(db.Model):
    """Which user currently fills a company role.

    At most one active row per role_type; assigning a role deactivates the
    previous holder instead of deleting it.
    """

    __tablename__ = "role_assignments"
    __table_args__ = (
        db.Index("ix_role_assignment_type_active", "role_type", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    role_type = db.Column(db.String(30), nullable=False,
                          comment="OFFICE_STAFF | ADMINISTRATION | PROJECT_MANAGER | FIELD_DIRECTOR")
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    assigned_by = db.Column(db.Integer, nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "role_type": self.role_type,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "is_active": self.is_active,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
        }

    def __repr__(self):
        return f"<RoleAssignment {self.role_type}={self.user_id}>"
