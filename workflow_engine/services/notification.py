"""
Workflow Progression & Alert Engine
Notification Service - in-app side channel for alert events.

Alert creation / resolution / reassignment / overdue each write one
Notification row per recipient.  Delivery (email, push, sockets) belongs to
the host application, which reads these rows.

``create`` only flushes: it runs inside the advancement transaction, so a
rolled-back completion leaves no orphan notifications behind.
"""

from workflow_engine.models import db
from workflow_engine.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, event_type, message="", category="workflow", severity="info",
               recipient_id=None, project_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            project_id=project_id,
            recipient_id=recipient_id,
            event_type=event_type,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @staticmethod
    def for_alert(alert, event_type, *, recipient_id=None, severity="info", message=None):
        """Notification for a WorkflowAlert event, addressed to its assignee by default."""
        return NotificationService.create(
            title=alert.title,
            event_type=event_type,
            message=message if message is not None else (alert.message or ""),
            severity=severity,
            recipient_id=recipient_id if recipient_id is not None else alert.assigned_to,
            project_id=alert.project_id,
            entity_type="workflow_alert",
            entity_id=alert.id,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, project_id=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a user (plus broadcasts), newest first.
        """
        q = Notification.query.filter(
            (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None))
        )
        if project_id:
            q = q.filter_by(project_id=project_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id, project_id=None):
        """Return count of unread notifications."""
        q = Notification.query.filter(
            (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None))
        ).filter_by(is_read=False)
        if project_id:
            q = q.filter_by(project_id=project_id)
        return q.count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif
