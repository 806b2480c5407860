from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from ..schemas import ProduceListing
from .normalizers import safe_number


def _now(now: Optional[datetime]) -> datetime:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current


def relative_time(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Short card label: "Just now", "3h ago", "2d ago", "5w ago"."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    hours = int((_now(now) - value).total_seconds() // 3600)
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return f"{days // 7}w ago"


def relative_date(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    days = (_now(now).date() - value.date()).days
    if days <= 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    return value.strftime("%d %b %Y")


def format_price(value) -> str:
    return f"UGX {safe_number(value, 0.0):,.0f}"


def listed_labels(rows: Iterable[ProduceListing], now: Optional[datetime] = None) -> Dict[str, str]:
    """Card "listed" labels keyed by listing id; rows without a timestamp are left out."""
    labels = {}
    for row in rows:
        label = relative_time(row.listed_at, now)
        if label:
            labels[row.id] = label
    return labels
