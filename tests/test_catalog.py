"""
Tests - Workflow catalog loading, validation and seeding.

Covers:
    1. Ordering of the frozen catalog
    2. Fail-fast validation (duplicate orders, unknown roles/phases, empty)
    3. Immutability
    4. seed_catalog idempotence + caching
    5. GET /api/v1/workflow/catalog
"""

import pytest

from workflow_engine.core.exceptions import CatalogError
from workflow_engine.models import db
from workflow_engine.models.catalog import WorkflowLineItem, WorkflowPhase
from workflow_engine.services.catalog import (
    CatalogLineItem,
    CatalogPhase,
    CatalogSection,
    WorkflowCatalog,
    get_catalog,
    known_kinds,
    load_catalog,
    seed_catalog,
)


def _item(id_, order, section_id=10, phase_id=1, role="OFFICE", lead=1):
    return CatalogLineItem(id=id_, section_id=section_id, phase_id=phase_id, name=f"item{id_}",
                           display_order=order, responsible_role=role, alert_lead_days=lead)


def _phase(items, phase_id=1, phase_type="LEAD", order=1, section_order=1):
    section = CatalogSection(id=10, phase_id=phase_id, name="A", display_order=section_order,
                             line_items=tuple(items))
    return CatalogPhase(id=phase_id, phase_type=phase_type, name=phase_type.title(),
                        display_order=order, sections=(section,))


class TestCatalogValidation:

    def test_valid_catalog_orders_items(self):
        cat = WorkflowCatalog("T", [_phase([_item(2, 2), _item(1, 1)])])
        assert [li.id for li in cat.ordered_line_items] == [1, 2]
        assert len(cat) == 2
        assert 1 in cat and 3 not in cat

    def test_empty_catalog_rejected(self):
        with pytest.raises(CatalogError):
            WorkflowCatalog("T", [])

    def test_catalog_without_items_rejected(self):
        with pytest.raises(CatalogError, match="no line items"):
            WorkflowCatalog("T", [_phase([])])

    def test_duplicate_item_order_rejected(self):
        with pytest.raises(CatalogError, match="duplicate line item display_order"):
            WorkflowCatalog("T", [_phase([_item(1, 1), _item(2, 1)])])

    def test_duplicate_phase_order_rejected(self):
        lead = _phase([_item(1, 1)])
        prospect = CatalogPhase(id=2, phase_type="PROSPECT", name="Prospect", display_order=1, sections=())
        with pytest.raises(CatalogError, match="duplicate phase display_order"):
            WorkflowCatalog("T", [lead, prospect])

    def test_unknown_phase_type_rejected(self):
        with pytest.raises(CatalogError, match="unknown phase_type"):
            WorkflowCatalog("T", [_phase([_item(1, 1)], phase_type="DEMOLITION")])

    def test_unknown_role_rejected(self):
        with pytest.raises(CatalogError, match="responsible_role"):
            WorkflowCatalog("T", [_phase([_item(1, 1, role="JANITOR")])])

    def test_negative_lead_days_rejected(self):
        with pytest.raises(CatalogError, match="alert_lead_days"):
            WorkflowCatalog("T", [_phase([_item(1, 1, lead=-1)])])

    def test_item_attached_to_wrong_section_rejected(self):
        with pytest.raises(CatalogError, match="wrong section"):
            WorkflowCatalog("T", [_phase([_item(1, 1, section_id=11)])])

    def test_catalog_is_immutable(self):
        cat = WorkflowCatalog("T", [_phase([_item(1, 1)])])
        with pytest.raises(AttributeError):
            cat.workflow_kind = "OTHER"


class TestSeedAndLoad:

    def test_seed_default_roofing(self):
        created = seed_catalog()
        db.session.commit()
        assert created == WorkflowLineItem.query.count()
        assert created > 0
        cat = get_catalog("ROOFING")
        assert [p.phase_type for p in cat.phases] == [
            "LEAD", "PROSPECT", "APPROVED", "EXECUTION", "SECOND_SUPPLEMENT", "COMPLETION",
        ]
        assert cat.ordered_line_items[0].name == "Confirm name spelled correctly"

    def test_seed_is_idempotent(self, roofing):
        phases_before = WorkflowPhase.query.count()
        assert seed_catalog() == 0
        assert WorkflowPhase.query.count() == phases_before

    def test_get_catalog_is_cached(self, roofing):
        assert get_catalog("ROOFING") is roofing

    def test_known_kinds(self, roofing, mini):
        assert known_kinds() == ["MINI", "ROOFING"]

    def test_load_rejects_malformed_rows(self):
        phase = WorkflowPhase(workflow_kind="BROKEN", phase_type="LEAD", name="Lead", display_order=1)
        db.session.add(phase)
        db.session.commit()
        with pytest.raises(CatalogError):
            load_catalog("BROKEN")

    def test_every_item_knows_its_phase(self, roofing):
        for li in roofing.ordered_line_items:
            assert roofing.section(li.section_id).phase_id == li.phase_id


class TestCatalogAPI:

    def test_get_default_catalog(self, client, roofing):
        res = client.get("/api/v1/workflow/catalog")
        assert res.status_code == 200
        data = res.get_json()
        assert data["workflow_kind"] == "ROOFING"
        assert data["total_items"] == len(roofing)
        assert data["phases"][0]["sections"][0]["line_items"][0]["display_order"] == 1

    def test_unknown_kind_404(self, client, roofing):
        res = client.get("/api/v1/workflow/catalog?kind=plumbing")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
