"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in workflow_engine/__init__.py with no
default limits; this module applies limits per route category.

Usage:
    from workflow_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

MUTATION_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow / roles / scheduler: 60/minute  (completions, reconcile, jobs)
        - Alerts / notifications:       200/minute (polled by the SPA)
        - Health check:                 exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("workflow", "roles", "scheduler"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(MUTATION_LIMIT)(bp)

    bp = app.blueprints.get("alert")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured - workflow: %s, alerts: %s",
                    MUTATION_LIMIT, READ_LIMIT)
