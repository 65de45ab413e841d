"""
Workflow Progression & Alert Engine
Scheduled Jobs.

Jobs:
    - workflow_reconcile_all:      rebuild every tracker/alert set from the ledger
    - workflow_integrity_check:    report-only tracker validation
    - workflow_alert_overdue_scan: escalate priority by due date, remind assignees
"""

from __future__ import annotations

import logging
from typing import Any

from workflow_engine.models import db
from workflow_engine.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Reconcile all runs
# ═══════════════════════════════════════════════════════════════════════════

@register_job("workflow_reconcile_all")
def reconcile_all_runs(app) -> dict[str, Any]:
    """Reconcile every workflow run against its completion ledger."""
    from workflow_engine.services.workflow_service import reconcile_all

    results = reconcile_all(actor="scheduler")
    logger.info("Reconcile job: %d run(s), %d changed, %d failed",
                results["runs"], results["changed"], results["failed"])
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Integrity check
# ═══════════════════════════════════════════════════════════════════════════

@register_job("workflow_integrity_check")
def check_workflow_integrity(app) -> dict[str, Any]:
    """Validate tracker pointers; notify when violations are found (no repair)."""
    from workflow_engine.services.notification import NotificationService
    from workflow_engine.services.workflow_service import check_integrity

    report = check_integrity()
    results = {
        "checked": report["checked"],
        "violations": len(report["violations"]),
        "codes": sorted({v["code"] for v in report["violations"]}),
        "notifications_created": 0,
    }

    if report["violations"]:
        NotificationService.create(
            title=f"Workflow integrity: {results['violations']} violation(s)",
            event_type="integrity.violation",
            message="Affected runs: " + ", ".join(
                sorted({str(v["run_id"]) for v in report["violations"]})
            ) + ". Run reconcile to repair.",
            category="system",
            severity="warning",
            entity_type="workflow_run",
        )
        results["notifications_created"] = 1
        db.session.commit()

    logger.info("Integrity check job: %s", results)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Overdue alert scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("workflow_alert_overdue_scan")
def scan_overdue_alerts(app) -> dict[str, Any]:
    """Escalate alerts nearing or past their due date and remind assignees."""
    from workflow_engine.services.alert_cache import get_alert_cache
    from workflow_engine.services.alert_manager import scan_overdue

    results = scan_overdue()
    db.session.commit()
    if results["escalated"]:
        get_alert_cache().invalidate_pattern("-alerts:")
    logger.info("Overdue alert scan: %s", results)
    return results
