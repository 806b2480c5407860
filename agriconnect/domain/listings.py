"""Search, filter and sort reducers shared by every listing page."""

from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, List

from ..schemas import ListingCriteria, ProduceListing
from .normalizers import safe_number, timestamp_key


ALL = "all"


def search_haystack(listing: ProduceListing) -> str:
    parts = [
        listing.crop_name,
        listing.variety or "",
        listing.farmer_name,
        listing.farmer_location,
        listing.crop_category,
    ]
    return " ".join(parts).lower()


def matches_query(listing: ProduceListing, query: str) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    return needle in search_haystack(listing)


def matches_category(listing: ProduceListing, category: str) -> bool:
    wanted = (category or ALL).strip().lower()
    if wanted == ALL:
        return True
    return listing.crop_category.lower() == wanted or wanted in listing.crop_name.lower()


def matches_quality(listing: ProduceListing, quality: str) -> bool:
    wanted = (quality or ALL).strip().lower()
    if wanted == ALL:
        return True
    return listing.quality.lower() == wanted


def within_price(listing: ProduceListing, max_price) -> bool:
    if max_price is None:
        return True
    ceiling = safe_number(max_price, 0.0)
    return safe_number(listing.price_per_unit, 0.0) <= ceiling


def _price(listing: ProduceListing) -> float:
    return safe_number(listing.price_per_unit, 0.0)


def _distance(listing: ProduceListing) -> float:
    value = listing.distance_km
    if value is None:
        return math.inf
    return safe_number(value, math.inf)


_SORTS: Dict[str, Callable[[List[ProduceListing]], List[ProduceListing]]] = {
    "price_low": lambda rows: sorted(rows, key=_price),
    "price_high": lambda rows: sorted(rows, key=_price, reverse=True),
    "newest": lambda rows: sorted(
        rows, key=lambda row: timestamp_key(row.listed_at), reverse=True
    ),
    "distance": lambda rows: sorted(rows, key=_distance),
    "name": lambda rows: sorted(rows, key=lambda row: row.crop_name.lower()),
}

SORT_KEYS = tuple(_SORTS)


def sort_listings(rows: Iterable[ProduceListing], sort: str) -> List[ProduceListing]:
    """Stable sort by one of ``SORT_KEYS``; unknown keys sort newest first.

    ``sorted(reverse=True)`` keeps equal elements in their original order,
    so descending sorts stay stable as well.
    """
    key = (sort or "newest").strip().lower().replace("-", "_")
    sorter = _SORTS.get(key, _SORTS["newest"])
    return sorter(list(rows))


def filter_listings(
    rows: Iterable[ProduceListing], criteria: ListingCriteria
) -> List[ProduceListing]:
    filtered = [
        row
        for row in rows
        if matches_query(row, criteria.query)
        and matches_category(row, criteria.category)
        and matches_quality(row, criteria.quality)
        and within_price(row, criteria.max_price)
    ]
    return sort_listings(filtered, criteria.sort)
