"""Change-feed subscriptions over the platform's realtime websocket."""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..observability.logging_utils import log_event, log_failure
from ..schemas import ChangeEvent, ChangeType


HEARTBEAT_INTERVAL = 30.0
QUEUE_SIZE = 256

_CHANGE_TYPES = {
    "INSERT": ChangeType.INSERT,
    "UPDATE": ChangeType.UPDATE,
    "DELETE": ChangeType.DELETE,
}


def parse_change_payload(payload: Any) -> Optional[ChangeEvent]:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return None
    change_type = _CHANGE_TYPES.get(str(data.get("type") or data.get("eventType") or "").upper())
    if change_type is None:
        return None
    new = data.get("record") or data.get("new") or {}
    old = data.get("old_record") or data.get("old") or {}
    return ChangeEvent(
        type=change_type,
        table=str(data.get("table") or ""),
        schema_name=str(data.get("schema") or "public"),
        new=new if isinstance(new, dict) else {},
        old=old if isinstance(old, dict) else {},
        commit_timestamp=data.get("commit_timestamp"),
    )


class Subscription:
    """Cancellable stream of change events for one channel.

    Use as ``async with client.subscribe(...) as sub: async for event in sub``.
    Leaving the block sends the channel leave and ends the stream.
    """

    def __init__(self, client: "RealtimeClient", topic: str, config: dict) -> None:
        self._client = client
        self.topic = topic
        self.config = config
        self.join_ref: Optional[str] = None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "Subscription":
        await self._client._join(self)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.unsubscribe()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        await self._client._leave(self)
        self._finish()

    def _finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    def _dispatch(self, message: dict) -> None:
        if self._closed:
            return
        event = message.get("event")
        payload = message.get("payload") or {}
        if event == "postgres_changes":
            change = parse_change_payload(payload)
            if change is None:
                return
            try:
                self._queue.put_nowait(change)
            except asyncio.QueueFull:
                log_failure("realtime_event_dropped", topic=self.topic)
        elif event == "phx_reply":
            status = payload.get("status") if isinstance(payload, dict) else None
            if status and status != "ok":
                log_failure("realtime_join_failed", topic=self.topic, payload=payload)
                self._finish()
        elif event in {"phx_error", "phx_close"}:
            log_event("realtime_channel_closed", topic=self.topic, event=event)
            self._finish()


class RealtimeClient:
    """One websocket connection shared by every channel of the process."""

    def __init__(
        self,
        url: str,
        *,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        access_token: Optional[str] = None,
    ) -> None:
        self._url = url
        self._connect = connect or websockets.connect
        self._heartbeat_interval = heartbeat_interval
        self._access_token = access_token
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._subscriptions: Dict[str, Subscription] = {}
        self._refs = itertools.count(1)
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        channel: str,
        *,
        table: str,
        schema: str = "public",
        event: str = "*",
        filter: Optional[str] = None,
    ) -> Subscription:
        change = {"event": event, "schema": schema, "table": table}
        if filter:
            change["filter"] = filter
        config = {
            "broadcast": {"self": False},
            "presence": {"key": ""},
            "postgres_changes": [change],
        }
        return Subscription(self, f"realtime:{channel}", config)

    async def _ensure_connected(self) -> None:
        async with self._lock:
            if self._ws is not None:
                return
            self._ws = await self._connect(self._url)
            self._reader = asyncio.create_task(self._read_loop())
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(self._ws))
            log_event("realtime_connected")

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _send(
        self,
        topic: str,
        event: str,
        payload: dict,
        *,
        ref: Optional[str] = None,
        join_ref: Optional[str] = None,
    ) -> None:
        message = {
            "topic": topic,
            "event": event,
            "payload": payload,
            "ref": ref or self._next_ref(),
        }
        if join_ref:
            message["join_ref"] = join_ref
        await self._ws.send(json.dumps(message))

    async def _join(self, subscription: Subscription) -> None:
        await self._ensure_connected()
        ref = self._next_ref()
        subscription.join_ref = ref
        self._subscriptions[subscription.topic] = subscription
        payload = {"config": subscription.config}
        if self._access_token:
            payload["access_token"] = self._access_token
        await self._send(subscription.topic, "phx_join", payload, ref=ref, join_ref=ref)
        log_event("realtime_join", topic=subscription.topic)

    async def _leave(self, subscription: Subscription) -> None:
        current = self._subscriptions.get(subscription.topic)
        if current is subscription:
            self._subscriptions.pop(subscription.topic, None)
        if self._ws is None:
            return
        try:
            await self._send(
                subscription.topic, "phx_leave", {}, join_ref=subscription.join_ref
            )
        except ConnectionClosed:
            return
        log_event("realtime_leave", topic=subscription.topic)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    continue
                if not isinstance(message, dict):
                    continue
                subscription = self._subscriptions.get(message.get("topic"))
                if subscription is not None:
                    subscription._dispatch(message)
        except ConnectionClosed as exc:
            log_failure("realtime_disconnected", error=str(exc))
        finally:
            for subscription in list(self._subscriptions.values()):
                subscription._finish()
            self._subscriptions.clear()
            self._ws = None
            if self._heartbeat is not None:
                self._heartbeat.cancel()

    async def _heartbeat_loop(self, ws) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if self._ws is not ws:
                return
            try:
                await self._send("phoenix", "heartbeat", {})
            except ConnectionClosed:
                return

    async def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            await subscription.unsubscribe()
        tasks = [task for task in (self._heartbeat, self._reader) if task]
        for task in tasks:
            task.cancel()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        for task in tasks:
            try:
                await task
            except (asyncio.CancelledError, ConnectionClosed):
                pass
        self._heartbeat = None
        self._reader = None
