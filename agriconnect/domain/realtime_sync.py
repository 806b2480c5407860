"""Merge change-feed events into a page's in-memory listing array."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence

from ..schemas import ChangeEvent, ChangeType, ProduceListing
from .normalizers import normalize_listing


def apply_change(
    rows: Sequence[ProduceListing],
    event: ChangeEvent,
    normalize: Callable[[Dict], ProduceListing] = normalize_listing,
) -> List[ProduceListing]:
    """Return a new list with ``event`` applied; ``rows`` is left untouched.

    Events are applied in arrival order with no sequence check, so a late
    stale update overwrites a newer one.
    """
    current = list(rows)
    row_id = event.row_id
    if not row_id:
        return current
    if event.type == ChangeType.DELETE:
        return [row for row in current if row.id != row_id]

    incoming = normalize(event.new)
    if not incoming.is_available:
        return [row for row in current if row.id != incoming.id]

    for index, row in enumerate(current):
        if row.id == incoming.id:
            current[index] = row.model_copy(update=incoming.model_dump())
            return current
    return [incoming, *current]


def apply_detail_change(
    listing: Optional[ProduceListing],
    event: ChangeEvent,
    normalize: Callable[[Dict], ProduceListing] = normalize_listing,
) -> Optional[ProduceListing]:
    """Single-row variant used by the product detail page."""
    if event.type == ChangeType.DELETE:
        return None
    if not event.new:
        return listing
    return normalize(event.new)
