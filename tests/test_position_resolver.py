"""
Tests - Position resolver (pure function over catalog + completed set).

Covers:
    1. First-gap resolution in (phase, section, item) order
    2. Out-of-order completion does not skip the gap
    3. COMPLETE sentinel
    4. Pointer rebuild from stored tracker fields
    5. Progress / describe projections
"""

import pytest

from workflow_engine.services.catalog import (
    CatalogLineItem,
    CatalogPhase,
    CatalogSection,
    WorkflowCatalog,
)
from workflow_engine.services.position_resolver import (
    COMPLETE,
    Position,
    describe,
    position_from_pointer,
    progress,
    resolve,
)


def _catalog():
    """LEAD {A: 1, 2}, PROSPECT {B: 3, C: 4}; input deliberately unsorted."""
    a = CatalogSection(id=10, phase_id=1, name="A", display_order=1, line_items=(
        CatalogLineItem(id=2, section_id=10, phase_id=1, name="item2", display_order=2,
                        responsible_role="PROJECT_MANAGER"),
        CatalogLineItem(id=1, section_id=10, phase_id=1, name="item1", display_order=1,
                        responsible_role="OFFICE"),
    ))
    b = CatalogSection(id=20, phase_id=2, name="B", display_order=1, line_items=(
        CatalogLineItem(id=3, section_id=20, phase_id=2, name="item3", display_order=1,
                        responsible_role="ADMINISTRATION"),
    ))
    c = CatalogSection(id=21, phase_id=2, name="C", display_order=2, line_items=(
        CatalogLineItem(id=4, section_id=21, phase_id=2, name="item4", display_order=1,
                        responsible_role="OFFICE", alert_lead_days=3),
    ))
    return WorkflowCatalog("TEST", [
        CatalogPhase(id=2, phase_type="PROSPECT", name="Prospect", display_order=2, sections=(c, b)),
        CatalogPhase(id=1, phase_type="LEAD", name="Lead", display_order=1, sections=(a,)),
    ])


class TestResolve:

    def test_empty_ledger_points_at_first_item(self):
        pos = resolve(_catalog(), frozenset())
        assert pos == Position(phase_id=1, phase_type="LEAD", section_id=10, line_item_id=1)
        assert pos.is_complete is False

    def test_advances_within_section(self):
        pos = resolve(_catalog(), {1})
        assert pos.line_item_id == 2
        assert pos.section_id == 10

    def test_crosses_phase_boundary(self):
        pos = resolve(_catalog(), {1, 2})
        assert pos.phase_type == "PROSPECT"
        assert pos.pointer() == (2, 20, 3)

    def test_out_of_order_completion_keeps_first_gap(self):
        pos = resolve(_catalog(), {1, 3, 4})
        assert pos.line_item_id == 2

    def test_all_completed_is_complete(self):
        pos = resolve(_catalog(), {1, 2, 3, 4})
        assert pos is COMPLETE
        assert pos.is_complete is True
        assert pos.pointer() == (None, None, None)

    def test_unknown_ids_in_ledger_are_ignored(self):
        assert resolve(_catalog(), {999}).line_item_id == 1

    def test_deterministic(self):
        cat = _catalog()
        assert resolve(cat, {1, 3}) == resolve(cat, frozenset({3, 1}))


class TestPositionFromPointer:

    def test_full_pointer(self):
        pos = position_from_pointer(_catalog(), 2, 21, 4)
        assert pos == Position(phase_id=2, phase_type="PROSPECT", section_id=21, line_item_id=4)

    def test_terminal_pointer(self):
        assert position_from_pointer(_catalog(), None, None, None, is_complete=True) is COMPLETE

    @pytest.mark.parametrize("pointer", [
        (None, None, None),
        (1, None, 1),
        (1, 10, None),
        (99, 10, 1),
    ])
    def test_partial_or_unknown_pointer_is_none(self, pointer):
        assert position_from_pointer(_catalog(), *pointer) is None


class TestProjections:

    def test_progress(self):
        assert progress(_catalog(), {1, 3}) == {"completed": 2, "total": 4, "percent": 50.0}

    def test_progress_ignores_foreign_ids(self):
        assert progress(_catalog(), {42})["completed"] == 0

    def test_describe_adds_names(self):
        cat = _catalog()
        d = describe(cat, resolve(cat, {1, 2, 3}))
        assert d["line_item_name"] == "item4"
        assert d["section_name"] == "C"
        assert d["phase_name"] == "Prospect"
        assert d["responsible_role"] == "OFFICE"

    def test_describe_complete(self):
        d = describe(_catalog(), COMPLETE)
        assert d["is_complete"] is True
        assert d["line_item_id"] is None
