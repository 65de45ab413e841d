"""
Workflow Progression & Alert Engine
Catalog service - immutable, ordered Phases → Sections → Line Items.

The catalog tables are read once per workflow kind, validated, and frozen
into a ``WorkflowCatalog``.  Malformed catalogs fail at load time with
``CatalogError``; nothing downstream re-validates them per request.

Public API:
    get_catalog(workflow_kind)        cached per app in ``app.extensions``
    load_catalog(workflow_kind)       uncached read + validation
    known_kinds()                     workflow kinds that have catalog rows
    invalidate_catalogs()             drop cached catalogs (after reseeding)
    seed_catalog(kind, phases)        insert a catalog from seed data
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from flask import current_app

from workflow_engine.core.exceptions import CatalogError
from workflow_engine.models import db
from workflow_engine.models.catalog import (
    PHASE_TYPES,
    RESPONSIBLE_ROLES,
    WorkflowLineItem,
    WorkflowPhase,
    WorkflowSection,
)

logger = logging.getLogger(__name__)

_EXTENSION_KEY = "workflow_catalogs"
_load_lock = threading.Lock()


# ═══════════════════════════════════════════════════════════════════════════
#  Immutable catalog values
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CatalogLineItem:
    id: int
    section_id: int
    phase_id: int
    name: str
    display_order: int
    responsible_role: str
    alert_lead_days: int = 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "section_id": self.section_id,
            "phase_id": self.phase_id,
            "name": self.name,
            "display_order": self.display_order,
            "responsible_role": self.responsible_role,
            "alert_lead_days": self.alert_lead_days,
        }


@dataclass(frozen=True)
class CatalogSection:
    id: int
    phase_id: int
    name: str
    display_order: int
    line_items: tuple = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "name": self.name,
            "display_order": self.display_order,
            "line_items": [li.to_dict() for li in self.line_items],
        }


@dataclass(frozen=True)
class CatalogPhase:
    id: int
    phase_type: str
    name: str
    display_order: int
    sections: tuple = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_type": self.phase_type,
            "name": self.name,
            "display_order": self.display_order,
            "sections": [s.to_dict() for s in self.sections],
        }


class WorkflowCatalog:
    """Validated, ordered catalog for one workflow kind.

    Phases, sections and line items are held in ascending ``display_order``,
    so iterating ``ordered_line_items`` walks the global total order
    ``(phase.order, section.order, item.order)``.
    """

    __slots__ = (
        "workflow_kind", "phases", "ordered_line_items",
        "_phases_by_id", "_phases_by_type", "_sections_by_id", "_items_by_id",
    )

    def __init__(self, workflow_kind: str, phases) -> None:
        ordered = tuple(sorted(
            (
                CatalogPhase(
                    id=p.id,
                    phase_type=p.phase_type,
                    name=p.name,
                    display_order=p.display_order,
                    sections=tuple(sorted(
                        (
                            CatalogSection(
                                id=s.id,
                                phase_id=s.phase_id,
                                name=s.name,
                                display_order=s.display_order,
                                line_items=tuple(sorted(s.line_items, key=lambda li: li.display_order)),
                            )
                            for s in p.sections
                        ),
                        key=lambda s: s.display_order,
                    )),
                )
                for p in phases
            ),
            key=lambda p: p.display_order,
        ))
        _validate(workflow_kind, ordered)

        object.__setattr__(self, "workflow_kind", workflow_kind)
        object.__setattr__(self, "phases", ordered)
        object.__setattr__(self, "_phases_by_id", {p.id: p for p in ordered})
        object.__setattr__(self, "_phases_by_type", {p.phase_type: p for p in ordered})
        object.__setattr__(
            self, "_sections_by_id", {s.id: s for p in ordered for s in p.sections},
        )
        items = tuple(li for p in ordered for s in p.sections for li in s.line_items)
        object.__setattr__(self, "ordered_line_items", items)
        object.__setattr__(self, "_items_by_id", {li.id: li for li in items})

    def __setattr__(self, name, value):
        raise AttributeError("WorkflowCatalog is immutable")

    def __len__(self) -> int:
        return len(self.ordered_line_items)

    def __contains__(self, line_item_id) -> bool:
        return line_item_id in self._items_by_id

    def __repr__(self) -> str:
        return f"<WorkflowCatalog {self.workflow_kind}: {len(self)} items>"

    # ── Lookups ──────────────────────────────────────────────────────────

    def line_item(self, line_item_id: int) -> CatalogLineItem | None:
        return self._items_by_id.get(line_item_id)

    def section(self, section_id: int) -> CatalogSection | None:
        return self._sections_by_id.get(section_id)

    def phase(self, phase_id: int) -> CatalogPhase | None:
        return self._phases_by_id.get(phase_id)

    def phase_by_type(self, phase_type: str) -> CatalogPhase | None:
        return self._phases_by_type.get(phase_type)

    def items_in_phase(self, phase_type: str) -> tuple:
        """Line items of one phase in checklist order (empty if unknown)."""
        phase = self.phase_by_type(phase_type)
        if phase is None:
            return ()
        return tuple(li for s in phase.sections for li in s.line_items)

    def to_dict(self) -> dict:
        return {
            "workflow_kind": self.workflow_kind,
            "total_items": len(self),
            "phases": [p.to_dict() for p in self.phases],
        }


def _validate(workflow_kind: str, phases: tuple) -> None:
    """Raise CatalogError on the first structural problem found."""
    if not phases:
        raise CatalogError(f"Catalog for workflow kind {workflow_kind!r} is empty")

    def _dupes(values):
        seen, dupes = set(), set()
        for v in values:
            (dupes if v in seen else seen).add(v)
        return dupes

    if dup := _dupes(p.display_order for p in phases):
        raise CatalogError(f"{workflow_kind}: duplicate phase display_order {sorted(dup)}")
    if dup := _dupes(p.phase_type for p in phases):
        raise CatalogError(f"{workflow_kind}: duplicate phase_type {sorted(dup)}")

    item_count = 0
    for phase in phases:
        if phase.phase_type not in PHASE_TYPES:
            raise CatalogError(f"{workflow_kind}: unknown phase_type {phase.phase_type!r}")
        if dup := _dupes(s.display_order for s in phase.sections):
            raise CatalogError(
                f"{workflow_kind}/{phase.phase_type}: duplicate section display_order {sorted(dup)}"
            )
        for section in phase.sections:
            if section.phase_id != phase.id:
                raise CatalogError(f"Section {section.id} does not belong to phase {phase.id}")
            if dup := _dupes(li.display_order for li in section.line_items):
                raise CatalogError(
                    f"{workflow_kind}/{section.name}: duplicate line item display_order {sorted(dup)}"
                )
            for li in section.line_items:
                if li.section_id != section.id or li.phase_id != phase.id:
                    raise CatalogError(f"Line item {li.id} is attached to the wrong section/phase")
                if li.responsible_role not in RESPONSIBLE_ROLES:
                    raise CatalogError(
                        f"Line item {li.id}: unknown responsible_role {li.responsible_role!r}"
                    )
                if li.alert_lead_days is None or li.alert_lead_days < 0:
                    raise CatalogError(f"Line item {li.id}: alert_lead_days must be >= 0")
                item_count += 1

    if item_count == 0:
        raise CatalogError(f"Catalog for workflow kind {workflow_kind!r} has no line items")


# ═══════════════════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════════════════


def load_catalog(workflow_kind: str) -> WorkflowCatalog:
    """Read the catalog tables for *workflow_kind* and freeze them."""
    rows = (
        WorkflowPhase.query
        .filter_by(workflow_kind=workflow_kind)
        .order_by(WorkflowPhase.display_order)
        .all()
    )
    phases = [
        CatalogPhase(
            id=p.id,
            phase_type=p.phase_type,
            name=p.name,
            display_order=p.display_order,
            sections=tuple(
                CatalogSection(
                    id=s.id,
                    phase_id=s.phase_id,
                    name=s.name,
                    display_order=s.display_order,
                    line_items=tuple(
                        CatalogLineItem(
                            id=li.id,
                            section_id=li.section_id,
                            phase_id=p.id,
                            name=li.name,
                            display_order=li.display_order,
                            responsible_role=li.responsible_role,
                            alert_lead_days=li.alert_lead_days,
                        )
                        for li in s.line_items
                    ),
                )
                for s in p.sections
            ),
        )
        for p in rows
    ]
    catalog = WorkflowCatalog(workflow_kind, phases)
    logger.info(
        "Workflow catalog loaded: kind=%s phases=%d items=%d",
        workflow_kind, len(catalog.phases), len(catalog),
    )
    return catalog


def get_catalog(workflow_kind: str) -> WorkflowCatalog:
    """Return the cached catalog for *workflow_kind*, loading it on first use."""
    cache = current_app.extensions.setdefault(_EXTENSION_KEY, {})
    catalog = cache.get(workflow_kind)
    if catalog is not None:
        return catalog
    with _load_lock:
        catalog = cache.get(workflow_kind)
        if catalog is None:
            catalog = load_catalog(workflow_kind)
            cache[workflow_kind] = catalog
    return catalog


def invalidate_catalogs() -> None:
    current_app.extensions[_EXTENSION_KEY] = {}


def known_kinds() -> list[str]:
    rows = db.session.query(WorkflowPhase.workflow_kind).distinct().all()
    return sorted(r[0] for r in rows)


# ═══════════════════════════════════════════════════════════════════════════
#  Seeding
# ═══════════════════════════════════════════════════════════════════════════


def seed_catalog(workflow_kind: str | None = None, phases: list[dict] | None = None) -> int:
    """Insert a catalog from seed data; skip kinds that already have rows.

    Returns the number of line items created.  Caller commits.
    """
    if phases is None:
        from workflow_engine.seed_data import roofing_catalog

        workflow_kind = workflow_kind or roofing_catalog.WORKFLOW_KIND
        phases = roofing_catalog.PHASES

    if WorkflowPhase.query.filter_by(workflow_kind=workflow_kind).first():
        logger.info("Catalog for %s already seeded - skipping", workflow_kind)
        return 0

    created = 0
    for p in phases:
        phase = WorkflowPhase(
            workflow_kind=workflow_kind,
            phase_type=p["phase_type"],
            name=p["name"],
            display_order=p["display_order"],
        )
        db.session.add(phase)
        for s in p.get("sections", []):
            section = WorkflowSection(name=s["name"], display_order=s["display_order"])
            phase.sections.append(section)
            for li in s.get("line_items", []):
                section.line_items.append(WorkflowLineItem(
                    name=li["name"],
                    display_order=li["display_order"],
                    responsible_role=li.get("responsible_role", "OFFICE"),
                    alert_lead_days=li.get("alert_lead_days", 1),
                ))
                created += 1
    db.session.flush()

    current_app.extensions.setdefault(_EXTENSION_KEY, {}).pop(workflow_kind, None)
    logger.info("Seeded %d line items for workflow kind %s", created, workflow_kind)
    return created
