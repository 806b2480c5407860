from __future__ import annotations

from datetime import datetime
from typing import Optional

from ...domain.normalizers import normalize_demand
from ...domain.stats import build_trending
from ...infra.backend_client import BackendClient
from ...infra.backend_errors import BackendError
from ...infra.config import get_config
from ...observability.logging_utils import log_event, log_failure
from ...schemas import TrendingSnapshot
from .listing_service import load_available


DEMAND_SAMPLE_LIMIT = 100
LOAD_FAILED = "Failed to load trending data"


async def trending(
    backend: BackendClient,
    *,
    time_range: str = "7d",
    now: Optional[datetime] = None,
) -> TrendingSnapshot:
    try:
        listings = await load_available(backend, limit=get_config().trending_listing_limit)
        demand_rows = await backend.fetch(
            backend.table("buyer_demands")
            .select("crop_name,status")
            .eq("status", "open")
            .limit(DEMAND_SAMPLE_LIMIT)
        )
    except BackendError as exc:
        log_failure("trending_failed", kind=exc.kind.value, error=exc.message)
        return TrendingSnapshot(success=False, message=LOAD_FAILED, time_range=time_range)

    demands = [normalize_demand({"id": index, **row}) for index, row in enumerate(demand_rows)]
    snapshot = build_trending(listings, demands, now=now, time_range=time_range)
    log_event(
        "trending",
        listings=len(listings),
        demands=len(demands),
        arrivals=len(snapshot.new_arrivals),
    )
    return snapshot
