"""
Position resolver - pure function over (catalog, completed set).

    resolve(catalog, completed_ids)  -> Position | COMPLETE
    progress(catalog, completed_ids) -> {"completed", "total", "percent"}

``resolve`` walks the catalog in (phase, section, item) display order and
returns the first line item whose id is not in ``completed_ids``.  It reads
nothing else: project status strings and progress percentages are
presentation fields and never feed back into the position.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Position:
    """Current (phase, section, line item) of a workflow run."""

    phase_id: int
    phase_type: str
    section_id: int
    line_item_id: int

    is_complete = False

    def pointer(self) -> tuple:
        return (self.phase_id, self.section_id, self.line_item_id)

    def to_dict(self) -> dict:
        return {
            "is_complete": False,
            "phase_id": self.phase_id,
            "phase_type": self.phase_type,
            "section_id": self.section_id,
            "line_item_id": self.line_item_id,
        }


class _Complete:
    """Terminal position sentinel; use the ``COMPLETE`` singleton."""

    _instance = None
    is_complete = True

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def pointer(self) -> tuple:
        return (None, None, None)

    def to_dict(self) -> dict:
        return {
            "is_complete": True,
            "phase_id": None,
            "phase_type": None,
            "section_id": None,
            "line_item_id": None,
        }

    def __repr__(self) -> str:
        return "COMPLETE"


COMPLETE = _Complete()


def resolve(catalog, completed_ids) -> Position | _Complete:
    """First incomplete line item in catalog order, or ``COMPLETE``."""
    for phase in catalog.phases:
        for section in phase.sections:
            for item in section.line_items:
                if item.id not in completed_ids:
                    return Position(
                        phase_id=phase.id,
                        phase_type=phase.phase_type,
                        section_id=section.id,
                        line_item_id=item.id,
                    )
    return COMPLETE


def position_from_pointer(catalog, phase_id, section_id, line_item_id, is_complete=False):
    """Rebuild a Position from stored tracker fields.

    Returns ``None`` when the pointer is partial or does not exist in the
    catalog; the caller treats that as drift.
    """
    if is_complete and phase_id is None and section_id is None and line_item_id is None:
        return COMPLETE
    phase = catalog.phase(phase_id) if phase_id is not None else None
    if phase is None or section_id is None or line_item_id is None:
        return None
    return Position(
        phase_id=phase_id,
        phase_type=phase.phase_type,
        section_id=section_id,
        line_item_id=line_item_id,
    )


def progress(catalog, completed_ids) -> dict:
    """Presentation projection: how much of the catalog the ledger covers."""
    total = len(catalog)
    done = sum(1 for li in catalog.ordered_line_items if li.id in completed_ids)
    percent = round(100.0 * done / total, 1) if total else 0.0
    return {"completed": done, "total": total, "percent": percent}


def describe(catalog, position) -> dict:
    """Position plus catalog names, for API responses."""
    d = position.to_dict()
    if position is COMPLETE:
        return d
    phase = catalog.phase(position.phase_id)
    section = catalog.section(position.section_id)
    item = catalog.line_item(position.line_item_id)
    d.update({
        "phase_name": phase.name if phase else None,
        "section_name": section.name if section else None,
        "line_item_name": item.name if item else None,
        "responsible_role": item.responsible_role if item else None,
    })
    return d
