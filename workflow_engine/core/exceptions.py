"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register a handler per type once
and get consistent HTTP status codes everywhere.

Taxonomy:
    NotFoundError               unknown project / run / line item / alert / user  → 404
    ValidationError             well-formed input that breaks a business rule     → 422
    ConcurrentModificationError per-run version conflict after bounded retries    → 409
    TransientStoreError         backing-store timeout / connection failure        → 503
    InvariantViolation          tracker/catalog mismatch (reported, not raised to HTTP)
    CatalogError                malformed catalog at load time (fail fast)

"Already completed" is deliberately absent: it is a status flag on the
completion result, never an exception.

Usage:
    from workflow_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkflowLineItem", resource_id=42)
    raise ValidationError("workflow_kind is required", details={"kind": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "WorkflowAlert").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConcurrentModificationError(Exception):
    """Raised when a per-run mutation lost a version race.

    The advancement protocol retries these internally; the exception only
    reaches callers once the retry budget is spent.  Maps to HTTP 409.
    """

    def __init__(self, run_id: int | None = None, attempts: int = 0) -> None:
        self.run_id = run_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification on workflow run {run_id} "
            f"(gave up after {attempts} attempt(s))"
        )


class TransientStoreError(Exception):
    """Raised when the backing store timed out or dropped the connection.

    Every write in the advancement protocol is idempotent, so callers may
    retry the same request.  Maps to HTTP 503.
    """

    def __init__(self, message: str = "Backing store unavailable", retry_after: int = 1) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class InvariantViolation(Exception):
    """A tracker disagrees with the catalog or with the completion ledger.

    Produced by the integrity checker and by reconcile.  The checker reports
    these as data; reconcile logs them before overwriting the tracker.

    Args:
        code: Machine-readable rule id (``line_item_section_mismatch`` ...).
        run_id: Run whose tracker broke the rule.
        details: Offending field values.
    """

    def __init__(self, code: str, run_id: int | None = None, details: dict | None = None) -> None:
        self.code = code
        self.run_id = run_id
        self.details = details or {}
        super().__init__(f"{code} on run {run_id}: {self.details}")

    def to_dict(self) -> dict:
        return {"code": self.code, "run_id": self.run_id, "details": self.details}


class CatalogError(Exception):
    """Raised once, at catalog load time, when the catalog is malformed."""
