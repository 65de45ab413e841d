"""
Role assignment directory - responsible role → concrete user.

Default-bucket policy, applied in this order and nowhere else:

    1. Alias the catalog role onto a company role type
       (OFFICE → OFFICE_STAFF, ROOF_SUPERVISOR → FIELD_DIRECTOR).
    2. Active RoleAssignment for that role type (latest wins).
    3. The project's manager.
    4. ``WORKFLOW_DEFAULT_ASSIGNEE_ID`` from config.
    5. None - the alert is created unassigned.

Inactive users are skipped at every step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app

from workflow_engine.core.exceptions import NotFoundError, ValidationError
from workflow_engine.models import db
from workflow_engine.models.project import ROLE_TYPES, RoleAssignment, User

logger = logging.getLogger(__name__)

ROLE_ALIASES = {
    "OFFICE": "OFFICE_STAFF",
    "ROOF_SUPERVISOR": "FIELD_DIRECTOR",
}


def role_type_for(role: str) -> str:
    return ROLE_ALIASES.get(role, role)


class RoleAssignmentDirectory:
    """SQL-backed directory over ``role_assignments`` and ``users``."""

    def __init__(self, default_assignee_id: int | None = None) -> None:
        self.default_assignee_id = default_assignee_id

    # ── User directory ───────────────────────────────────────────────────

    def user_exists(self, user_id) -> bool:
        if user_id is None:
            return False
        user = db.session.get(User, user_id)
        return user is not None and bool(user.is_active)

    # ── Resolution ───────────────────────────────────────────────────────

    def resolve(self, role: str, project=None) -> int | None:
        role_type = role_type_for(role)

        assignment = (
            RoleAssignment.query
            .join(User, RoleAssignment.user_id == User.id)
            .filter(
                RoleAssignment.role_type == role_type,
                RoleAssignment.is_active.is_(True),
                User.is_active.is_(True),
            )
            .order_by(RoleAssignment.assigned_at.desc(), RoleAssignment.id.desc())
            .first()
        )
        if assignment:
            return assignment.user_id

        if project is not None and self.user_exists(project.project_manager_id):
            logger.debug("No %s assignment - falling back to project manager", role_type)
            return project.project_manager_id

        if self.user_exists(self.default_assignee_id):
            logger.debug("No %s assignment - falling back to default assignee", role_type)
            return self.default_assignee_id

        logger.warning(
            "No assignee for role %s; alert will be unassigned", role,
            extra={"project_id": project.id if project is not None else None},
        )
        return None

    # ── Administration ───────────────────────────────────────────────────

    def assign_role(self, role_type: str, user_id: int, assigned_by: int | None = None) -> RoleAssignment:
        """Make *user_id* the active holder of *role_type*.  Caller commits."""
        role_type = role_type_for(role_type)
        if role_type not in ROLE_TYPES:
            raise ValidationError(
                f"Unknown role_type {role_type!r}",
                details={"allowed": sorted(ROLE_TYPES)},
            )
        if not self.user_exists(user_id):
            raise NotFoundError(resource="User", resource_id=user_id)

        now = datetime.now(timezone.utc)
        RoleAssignment.query.filter_by(role_type=role_type, is_active=True).update(
            {"is_active": False}, synchronize_session="fetch",
        )
        assignment = RoleAssignment(
            role_type=role_type,
            user_id=user_id,
            is_active=True,
            assigned_by=assigned_by,
            assigned_at=now,
        )
        db.session.add(assignment)
        db.session.flush()
        logger.info("Role %s assigned to user %s", role_type, user_id, extra={"user_id": user_id})
        return assignment

    def list_assignments(self, active_only: bool = True) -> list[RoleAssignment]:
        q = RoleAssignment.query
        if active_only:
            q = q.filter_by(is_active=True)
        return q.order_by(RoleAssignment.role_type, RoleAssignment.id).all()


def get_directory() -> RoleAssignmentDirectory:
    """Directory bound to the current app (created by ``create_app``)."""
    directory = current_app.extensions.get("role_directory")
    if directory is None:
        directory = RoleAssignmentDirectory(current_app.config.get("WORKFLOW_DEFAULT_ASSIGNEE_ID"))
        current_app.extensions["role_directory"] = directory
    return directory
