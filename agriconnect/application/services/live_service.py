"""Server-side live listing arrays fed by the change feed."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Tuple

from ...domain.listings import filter_listings
from ...domain.realtime_sync import apply_change, apply_detail_change
from ...infra.backend_errors import BackendError
from ...infra.realtime import RealtimeClient, Subscription
from ...observability.logging_utils import log_event, log_failure
from ...schemas import ChangeEvent, ChangeType, ListingCriteria, ProduceListing
from .listing_service import DELETED


LISTING_TABLE = "farm_produce"

SimilarLoader = Callable[[ProduceListing], Awaitable[Sequence[ProduceListing]]]

_ENDED = object()


def _channel(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class LiveListings:
    """Rows of one listing page kept in sync with ``farm_produce`` changes."""

    def __init__(
        self,
        rows: Sequence[ProduceListing],
        criteria: Optional[ListingCriteria] = None,
    ) -> None:
        self.rows: List[ProduceListing] = list(rows)
        self.criteria = criteria or ListingCriteria()

    def apply(self, event: ChangeEvent) -> List[ProduceListing]:
        self.rows = apply_change(self.rows, event)
        return self.snapshot()

    def snapshot(self) -> List[ProduceListing]:
        return filter_listings(self.rows, self.criteria)

    async def follow(self, realtime: RealtimeClient) -> AsyncIterator[List[ProduceListing]]:
        """Yield a fresh snapshot after every change; stops when the feed ends."""
        async with realtime.subscribe(_channel("products-realtime"), table=LISTING_TABLE) as sub:
            async for event in sub:
                log_event("live_change", type=event.type.value, row_id=event.row_id)
                yield self.apply(event)


class LiveListing:
    """A product detail row and its similar listings, kept live.

    The row follows its own ``id`` channel. When ``reload_similar`` is given a
    second channel on the row's category reloads the similar listings after
    every change there. Deletion of the row ends the stream with a message.
    """

    def __init__(
        self,
        listing: ProduceListing,
        similar: Optional[Sequence[ProduceListing]] = None,
    ) -> None:
        self.listing: Optional[ProduceListing] = listing
        self.similar: List[ProduceListing] = list(similar or [])
        self.message: Optional[str] = None

    def apply(self, event: ChangeEvent) -> Optional[ProduceListing]:
        self.listing = apply_detail_change(self.listing, event)
        if event.type == ChangeType.DELETE:
            self.message = DELETED
        return self.listing

    async def follow(
        self,
        realtime: RealtimeClient,
        reload_similar: Optional[SimilarLoader] = None,
    ) -> AsyncIterator[Tuple[str, Any]]:
        """Yield ``("listing", row)`` and ``("similar", rows)`` updates."""
        if self.listing is None:
            return
        listing = self.listing
        queue: asyncio.Queue = asyncio.Queue()
        watchers = [
            asyncio.create_task(
                _watch(
                    queue,
                    "listing",
                    realtime.subscribe(
                        _channel(f"product-{listing.id}"),
                        table=LISTING_TABLE,
                        filter=f"id=eq.{listing.id}",
                    ),
                )
            )
        ]
        if reload_similar is not None and listing.crop_category:
            watchers.append(
                asyncio.create_task(
                    _watch(
                        queue,
                        "similar",
                        realtime.subscribe(
                            _channel(f"similar-products-{listing.id}"),
                            table=LISTING_TABLE,
                            filter=f"crop_category=eq.{listing.crop_category}",
                        ),
                    )
                )
            )
        try:
            while True:
                kind, item = await queue.get()
                if isinstance(item, BaseException):
                    if kind == "listing":
                        raise item
                    log_failure("similar_feed_failed", listing_id=listing.id, error=str(item))
                    continue
                if kind == "listing":
                    if item is _ENDED:
                        return
                    yield kind, self.apply(item)
                    if self.listing is None:
                        return
                elif item is not _ENDED:
                    log_event("similar_reload", listing_id=listing.id, type=item.type.value)
                    try:
                        self.similar = list(await reload_similar(listing))
                    except BackendError as exc:
                        log_failure("similar_reload_failed", listing_id=listing.id, kind=exc.kind.value)
                        continue
                    yield kind, self.similar
        finally:
            for task in watchers:
                task.cancel()
            await asyncio.gather(*watchers, return_exceptions=True)


async def _watch(queue: asyncio.Queue, kind: str, subscription: Subscription) -> None:
    try:
        async with subscription as sub:
            async for event in sub:
                queue.put_nowait((kind, event))
    except Exception as exc:
        queue.put_nowait((kind, exc))
        return
    queue.put_nowait((kind, _ENDED))
