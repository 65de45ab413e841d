"""Standardised API error responses.

Usage
-----
    from workflow_engine.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Project not found")
    return api_error(E.VALIDATION_REQUIRED, "user_id is required")
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_CONCURRENT = "ERR_CONFLICT_CONCURRENT"

    # Store – HTTP 503 (retryable)
    STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_CONCURRENT: 409,
    E.STORE_UNAVAILABLE: 503,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (blocking item, field errors, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map the service-layer exception hierarchy onto JSON error responses."""
    import logging

    from workflow_engine.core.exceptions import (
        CatalogError,
        ConcurrentModificationError,
        NotFoundError,
        TransientStoreError,
        ValidationError,
    )

    logger = logging.getLogger(__name__)

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_RULE, str(exc), details=exc.details)

    @app.errorhandler(ConcurrentModificationError)
    def _concurrent(exc):
        logger.warning("Concurrent modification surfaced to caller: %s", exc)
        return api_error(E.CONFLICT_CONCURRENT, str(exc), details={"retryable": True})

    @app.errorhandler(TransientStoreError)
    def _transient(exc):
        logger.warning("Transient store error surfaced to caller: %s", exc)
        resp, status = api_error(E.STORE_UNAVAILABLE, str(exc), details={"retryable": True})
        resp.headers["Retry-After"] = str(exc.retry_after)
        return resp, status

    @app.errorhandler(CatalogError)
    def _catalog(exc):
        logger.error("Workflow catalog is malformed: %s", exc)
        return api_error(E.INTERNAL, f"Workflow catalog is malformed: {exc}")
